"""
Ad record builder: one ad-container node -> ParsedAdResult.

Work is split in two steps. `collect` runs the DOM queries and returns a
RawFieldBag of plain strings; `build` types and validates the bag. Nothing
downstream of `collect` touches BeautifulSoup objects.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Tuple
from urllib.parse import urljoin, urlsplit

from bs4 import Tag

from .extractors import (
    extract_days_ago,
    extract_description,
    parse_images,
    parse_location,
    parse_metrics,
    parse_price,
    parse_seller,
)
from .models import (
    AdRecord,
    AdSourceMetadata,
    AdStatus,
    ErrorType,
    ParsedAdResult,
    ParsedFields,
    ParsingError,
    ParsingWarning,
    RawFieldBag,
    ScrapingProvenance,
    WarningType,
)
from .selector_config import DEFAULT_SELECTORS, SelectorSet
from .utils import clean_text, now_utc

logger = logging.getLogger(__name__)

BASE_URL_DEFAULT = "https://www.kupujemprodajem.com"
CATEGORY_DEFAULT = "konzole-i-igrice"
SUBCATEGORY_DEFAULT = "sony-playstation-igrice"

# Required fields in validation order: (bag field, selector name)
REQUIRED_FIELDS = (
    ("title", "title"),
    ("price", "price"),
    ("url", "ad_url"),
)

# Fields whose absence degrades the record but does not reject it
OPTIONAL_FIELDS = ("location", "posted_time")


def resolve_url(base_url: str, href: str) -> str:
    """Join container-relative hrefs to the site; absolute ones pass through."""
    href = (href or "").strip()
    if not href:
        return ""
    if urlsplit(href).scheme in ("http", "https"):
        return href
    return urljoin(base_url.rstrip("/") + "/", href)


@dataclass(frozen=True)
class BuildOutcome:
    """Result of building one ad: either `result` or `rejection` is set."""

    result: Optional[ParsedAdResult]
    rejection: Optional[ParsingError]
    warnings: Tuple[ParsingWarning, ...] = ()


class AdRecordBuilder:
    def __init__(
        self,
        base_url: str = BASE_URL_DEFAULT,
        selectors: SelectorSet = DEFAULT_SELECTORS,
        category: str = CATEGORY_DEFAULT,
        subcategory: str = SUBCATEGORY_DEFAULT,
    ):
        self.base_url = base_url
        self.selectors = selectors
        self.category = category
        self.subcategory = subcategory

    # ------------------------------------------------------------------ DOM

    def _select(self, node: Tag, name: str, bag: RawFieldBag) -> List[Tag]:
        """Try primary then fallback selector for `name`."""
        candidates = self.selectors.candidates(name)
        for i, selector in enumerate(candidates):
            found = node.select(selector)
            if found:
                if i > 0:
                    bag.fallbacks_used.append(name)
                return found
        bag.missing.append(name)
        return []

    def collect(self, node: Tag) -> RawFieldBag:
        """Run all DOM queries for one container."""
        bag = RawFieldBag()
        bag.section_id = node.get("id") or ""
        classes = node.get("class") or []
        bag.classes = list(classes) if isinstance(classes, list) else str(classes).split(" ")
        bag.scrolled = node.get("data-scrolled") == "true"

        titles = self._select(node, "title", bag)
        bag.title = clean_text(titles[0].get_text()) if titles else ""

        links = self._select(node, "ad_url", bag)
        bag.href = (links[0].get("href") or "") if links else ""

        prices = self._select(node, "price", bag)
        bag.price_text = prices[0].get_text() if prices else ""

        locations = self._select(node, "location", bag)
        bag.location_text = locations[0].get_text() if locations else ""

        bag.paragraphs = [p.get_text().strip() for p in node.select(self.selectors.primary.description)]

        img = node.select_one(self.selectors.primary.image)
        if img is not None:
            bag.image_attrs = {k: (" ".join(v) if isinstance(v, list) else v) for k, v in img.attrs.items()}

        store = node.select_one(self.selectors.primary.store_link)
        if store is not None:
            bag.store_href = store.get("href") or ""
            bag.store_text = store.get_text()

        holders = self._select(node, "counter_holder", bag)
        value_candidates = self.selectors.candidates("counter_value")
        for holder in holders:
            text = ""
            for selector in value_candidates:
                values = holder.select(selector)
                if values:
                    text = values[0].get_text().strip()
                    break
            bag.counter_texts.append(text)

        posted = self._select(node, "posted_time", bag)
        bag.posted_text = posted[0].get_text() if posted else ""

        bag.is_promoted = any(node.select(sel) for sel in self.selectors.candidates("promotion"))
        return bag

    # --------------------------------------------------------------- typing

    def rejection_reason(self, bag: RawFieldBag, url: str, formatted_price: str) -> Optional[Tuple[str, str]]:
        """First required field that is empty, as (field, selector name)."""
        values = {"title": bag.title, "price": formatted_price, "url": url}
        for field_name, selector_name in REQUIRED_FIELDS:
            if not values[field_name]:
                return field_name, selector_name
        return None

    def build(self, bag: RawFieldBag, now: Optional[datetime] = None) -> Optional[ParsedAdResult]:
        """Typed, validated result for `bag`, or None when a required field is empty."""
        return self.build_outcome(bag, now=now).result

    def build_outcome(
        self,
        bag: RawFieldBag,
        ad_index: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BuildOutcome:
        now = now or now_utc()
        price = parse_price(bag.price_text)
        url = resolve_url(self.base_url, bag.href)

        reason = self.rejection_reason(bag, url, price.formatted)
        if reason is not None:
            field_name, selector_name = reason
            selector = getattr(self.selectors.primary, selector_name)
            if selector_name in bag.missing:
                err_type = ErrorType.MISSING_SELECTOR
                message = f"Ad at index {ad_index}: no element for required field '{field_name}'"
            else:
                err_type = ErrorType.INVALID_DATA
                message = f"Ad at index {ad_index}: required field '{field_name}' is empty"
            return BuildOutcome(
                result=None,
                rejection=ParsingError(
                    type=err_type,
                    message=message,
                    ad_index=ad_index,
                    field_name=field_name,
                    selector=selector,
                ),
            )

        warnings = self._warnings(bag, price.amount, price.formatted, ad_index)
        images = parse_images(bag.image_attrs)
        metrics = parse_metrics(bag.counter_texts, bag.posted_text, now=now)
        if metrics.posted_ago_text and metrics.posted_date is None:
            warnings.append(ParsingWarning(
                type=WarningType.INCOMPLETE_DATA,
                message=f"Unrecognised posted time '{metrics.posted_ago_text}'",
                ad_index=ad_index,
                field_name="posted_time",
                value=metrics.posted_ago_text,
            ))

        record = AdRecord(
            id=bag.section_id,
            title=bag.title,
            price=price,
            location=parse_location(bag.location_text),
            description=extract_description(bag.paragraphs),
            images=images,
            url=url,
            seller=parse_seller(bag.store_href, bag.store_text),
            metrics=metrics,
            # Anything listed in search results is live
            status=AdStatus(is_active=True, is_promoted=bag.is_promoted),
            source_metadata=AdSourceMetadata(
                section_id=bag.section_id,
                classes=tuple(bag.classes),
                scrolled=bag.scrolled,
                category=self.category,
                subcategory=self.subcategory,
            ),
        )
        result = ParsedAdResult(
            record=record,
            parsed=ParsedFields(
                price_numeric=price.amount,
                posted_days_ago=extract_days_ago(metrics.posted_ago_text),
                image_urls=tuple(img.url for img in images),
                is_valid_ad=True,
            ),
            provenance=ScrapingProvenance(
                scraped_at=now,
                source_url=url,
                parsing_success=True,
                parsing_errors=(),
            ),
        )
        return BuildOutcome(result=result, rejection=None, warnings=tuple(warnings))

    def _warnings(
        self,
        bag: RawFieldBag,
        amount: float,
        formatted_price: str,
        ad_index: Optional[int],
    ) -> List[ParsingWarning]:
        warnings = []
        for name in bag.fallbacks_used:
            warnings.append(ParsingWarning(
                type=WarningType.FALLBACK_USED,
                message=f"Primary selector for '{name}' matched nothing, used fallback",
                ad_index=ad_index,
                field_name=name,
                value=self.selectors.fallback_for(name),
            ))
        for name in OPTIONAL_FIELDS:
            if name in bag.missing:
                warnings.append(ParsingWarning(
                    type=WarningType.INCOMPLETE_DATA,
                    message=f"No element found for '{name}'",
                    ad_index=ad_index,
                    field_name=name,
                ))
        if amount == 0:
            warnings.append(ParsingWarning(
                type=WarningType.SUSPICIOUS_VALUE,
                message=f"Could not read an amount from price '{formatted_price}'",
                ad_index=ad_index,
                field_name="price",
                value=formatted_price,
            ))
        return warnings

    def build_from_node(
        self,
        node: Tag,
        ad_index: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> BuildOutcome:
        bag = self.collect(node)
        outcome = self.build_outcome(bag, ad_index=ad_index, now=now)
        if outcome.result is None:
            logger.debug("Rejected ad %s (%s)", ad_index, bag.section_id or "no id")
        return outcome
