"""
Field extractors: raw text fragment -> typed value.

Every function here is pure and tolerant. Malformed input degrades to a
documented default instead of raising; the builder decides whether a default
is worth a warning.
"""
import re
from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Sequence, Tuple

from .models import AdImage, AdLocation, AdMetrics, AdPrice, AdSeller
from .utils import clean_text, now_utc, to_int

DEFAULT_CURRENCY = "RSD"

CURRENCY_MAP = {
    "din": "RSD",
    "rsd": "RSD",
    "eur": "EUR",
    "€": "EUR",
    "usd": "USD",
    "$": "USD",
}

# "12 500", "12.500", "1.234,50", "690"
PRICE_RE = re.compile(
    r"(\d{1,3}(?:[ \xa0]\d{3})+(?:[.,]\d+)?|\d[\d.,]*\d|\d)\s*(din|rsd|eur|usd|\$|€)",
    re.I,
)
POSTED_RE = re.compile(r"pre\s+(\d+)\s+(dana|dan|sata|sati|sat|minuta|minut)", re.I)
DAYS_AGO_RE = re.compile(r"pre\s+(\d+)\s+dan", re.I)
STYLE_DIM_RE = r"(?:^|;)\s*{}\s*:\s*([^;]+)"

UNIT_DURATIONS = {
    "dan": timedelta(days=1),
    "sat": timedelta(hours=1),
    "minut": timedelta(minutes=1),
}

DESCRIPTION_MIN_LENGTH = 20


def normalize_number(token: str) -> Optional[float]:
    """
    Convert a locale-formatted numeric token to float.

    Handles formats like:
    - "12.500"     (dot as thousands separator) -> 12500
    - "1.234,50"   -> 1234.5
    - "1,234.50"   -> 1234.5
    - "12,5"       -> 12.5
    """
    num = token.replace(" ", "").replace("\xa0", "")
    last_comma = num.rfind(",")
    last_dot = num.rfind(".")

    if last_comma != -1 and last_dot != -1:
        # Last separator is the decimal one, the other groups thousands.
        if last_comma > last_dot:
            num = num.replace(".", "").replace(",", ".")
        else:
            num = num.replace(",", "")
    elif last_comma != -1:
        digits_after = len(num) - last_comma - 1
        if num.count(",") == 1 and 1 <= digits_after <= 2:
            num = num.replace(",", ".")
        else:
            num = num.replace(",", "")
    elif last_dot != -1:
        digits_after = len(num) - last_dot - 1
        if num.count(".") == 1 and 1 <= digits_after <= 2:
            pass
        else:
            num = num.replace(".", "")

    try:
        return float(num)
    except ValueError:
        return None


def parse_price(price_text: Optional[str]) -> AdPrice:
    """
    Parse "<number> <currency>" price text.

    The cleaned display text is always kept in `formatted`, parsed or not.
    """
    clean = clean_text(price_text)
    m = PRICE_RE.search(clean)
    if m:
        amount = normalize_number(m.group(1))
        if amount is not None:
            currency = CURRENCY_MAP.get(m.group(2).lower(), m.group(2).upper())
            return AdPrice(amount=amount, currency=currency, formatted=clean)
    return AdPrice(amount=0.0, currency=DEFAULT_CURRENCY, formatted=clean)


def parse_location(location_text: Optional[str], has_delivery: bool = False) -> AdLocation:
    """Delivery detection is not read from the page yet; callers pass it explicitly."""
    return AdLocation(name=clean_text(location_text), has_delivery=has_delivery)


def parse_posted_date(posted_text: Optional[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """
    Convert "pre N dana|sati|minuta" into an absolute timestamp.

    Returns None when the text is not recognised; "unknown" must stay
    distinguishable from "just posted".
    """
    if not posted_text:
        return None
    m = POSTED_RE.search(posted_text)
    if not m:
        return None
    number = int(m.group(1))
    unit = m.group(2).lower()
    now = now or now_utc()
    for prefix, duration in UNIT_DURATIONS.items():
        if unit.startswith(prefix):
            try:
                return now - number * duration
            except (OverflowError, ValueError):
                return None
    return None


def extract_days_ago(posted_text: Optional[str]) -> int:
    """
    Whole days from "pre N dana"; 0 for hours, minutes or anything else.

    Hour/minute postings count as 0 days ago. Downstream consumers rely on it.
    """
    if not posted_text:
        return 0
    m = DAYS_AGO_RE.search(posted_text)
    return int(m.group(1)) if m else 0


def parse_seller(store_href: Optional[str], store_text: Optional[str] = "") -> AdSeller:
    if store_href is None:
        return AdSeller(has_storefront=False)
    return AdSeller(
        has_storefront=True,
        store_url=store_href,
        store_id=re.sub(r"[^\w-]", "", (store_text or "").strip(), flags=re.ASCII),
    )


def parse_count(text: Optional[str]) -> int:
    value = to_int(clean_text(text))
    return value if value > 0 else 0


def parse_metrics(
    counter_texts: Sequence[str],
    posted_text: Optional[str],
    now: Optional[datetime] = None,
) -> AdMetrics:
    """
    Build metrics from the counter widgets of a container.

    Counters are positional: the first widget is views, the second favorites.
    There is no label check, so a layout change will silently swap them.
    """
    views = parse_count(counter_texts[0]) if len(counter_texts) > 0 else 0
    favorites = parse_count(counter_texts[1]) if len(counter_texts) > 1 else 0
    posted = clean_text(posted_text)
    return AdMetrics(
        views=views,
        favorites=favorites,
        posted_ago_text=posted,
        posted_date=parse_posted_date(posted, now=now),
    )


def _style_value(style: str, prop: str) -> str:
    m = re.search(STYLE_DIM_RE.format(prop), style or "", re.I)
    return m.group(1).strip() if m else ""


def parse_images(image_attrs: Optional[Dict[str, str]]) -> Tuple[AdImage, ...]:
    """Search results show one thumbnail per ad, so at most one image is returned."""
    if not image_attrs:
        return ()
    style = image_attrs.get("style", "")
    loading = image_attrs.get("loading")
    return (
        AdImage(
            url=image_attrs.get("src", "") or "",
            alt_text=image_attrs.get("alt", "") or "",
            width=image_attrs.get("width") or _style_value(style, "width"),
            height=image_attrs.get("height") or _style_value(style, "height"),
            loading=loading if loading in ("eager", "lazy") else None,
        ),
    )


def extract_description(paragraphs: Iterable[str]) -> str:
    """
    Best-effort description: the first paragraph that does not look like a
    price or a posted-time line.
    """
    for p in paragraphs:
        text = (p or "").strip()
        if len(text) > DESCRIPTION_MIN_LENGTH and "din" not in text and "pre " not in text:
            return text
    return ""
