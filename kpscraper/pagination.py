"""
Search URL building and page-count discovery.
"""
import logging
import re
from typing import Optional, Set
from urllib.parse import parse_qs, urlencode, urlsplit

from bs4 import BeautifulSoup

from .models import SearchParameters

logger = logging.getLogger(__name__)

SEARCH_PATH = "/konzole-i-igrice/sony-playstation-igrice/pretraga"
PAGE_COUNT_CEILING = 500

SUMMARY_RE = re.compile(r"\b(\d{1,4})\s*(?:/|od|of)\s*(\d{1,4})\b", re.I)
PAGINATION_CLASS_RE = re.compile(r"pagination", re.I)
PAGE_SUMMARY_TEXT_RE = re.compile(r"\b(?:strana|stranica|page)\s+\d{1,4}\s*(?:/|od|of)\s*(\d{1,4})\b", re.I)


def _fmt_number(value: float) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def build_search_url(
    base_url: str,
    params: SearchParameters,
    page: Optional[int] = None,
    search_path: str = SEARCH_PATH,
) -> str:
    """Build a search URL; page 1 (or None) is left implicit."""
    query = [("keywords", params.keywords)]
    if params.category_id:
        query.append(("categoryId", params.category_id))
    if params.group_id:
        query.append(("groupId", params.group_id))
    if params.has_price:
        query.append(("hasPrice", "yes"))
    if params.order:
        query.append(("order", params.order))
    if params.location:
        query.append(("location", params.location))
    if params.min_price:
        query.append(("minPrice", _fmt_number(params.min_price)))
    if params.max_price:
        query.append(("maxPrice", _fmt_number(params.max_price)))
    query.append(("ignoreUserId", "no"))
    if page is not None and page > 1:
        query.append(("page", str(page)))
    return f"{base_url.rstrip('/')}{search_path}?{urlencode(query)}"


def _page_from_href(href: str) -> Optional[int]:
    try:
        values = parse_qs(urlsplit(href).query).get("page")
    except ValueError:
        return None
    if values and values[0].isdigit():
        return int(values[0])
    return None


def detect_page_count(html: str, ceiling: int = PAGE_COUNT_CEILING) -> int:
    """
    Highest page index referenced by pagination links or summary text.

    Numbers above `ceiling` are ignored, they usually come from unrelated
    content (prices, ids). Returns at least 1.
    """
    if not html:
        return 1
    soup = BeautifulSoup(html, "lxml")
    candidates: Set[int] = set()

    for a in soup.select("a[href]"):
        page = _page_from_href(a.get("href") or "")
        if page is not None:
            candidates.add(page)

    for node in soup.find_all(class_=PAGINATION_CLASS_RE):
        text = node.get_text(" ", strip=True)
        for token in re.findall(r"\b\d{1,4}\b", text):
            candidates.add(int(token))
        for m in SUMMARY_RE.finditer(text):
            candidates.add(int(m.group(2)))

    for m in PAGE_SUMMARY_TEXT_RE.finditer(soup.get_text(" ")):
        candidates.add(int(m.group(1)))

    valid = [c for c in candidates if 1 <= c <= ceiling]
    count = max(valid) if valid else 1
    logger.debug(f"Detected page count {count} from {len(candidates)} candidates")
    return count
