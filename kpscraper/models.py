"""
Data models for the KupujemProdajem search-results scraper.
"""
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .utils import iso_or_none


@dataclass(frozen=True)
class AdPrice:
    amount: float
    currency: str
    formatted: str  # display string as shown on the page, e.g. "690 din"

    def to_dict(self) -> Dict[str, Any]:
        return {"amount": self.amount, "currency": self.currency, "formatted": self.formatted}


@dataclass(frozen=True)
class AdLocation:
    name: str
    has_delivery: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "has_delivery": self.has_delivery}


@dataclass(frozen=True)
class AdImage:
    url: str
    alt_text: str = ""
    width: str = ""
    height: str = ""
    loading: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "alt_text": self.alt_text,
            "width": self.width,
            "height": self.height,
            "loading": self.loading,
        }


@dataclass(frozen=True)
class AdSeller:
    has_storefront: bool
    store_url: Optional[str] = None
    store_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "has_storefront": self.has_storefront,
            "store_url": self.store_url,
            "store_id": self.store_id,
        }


@dataclass(frozen=True)
class AdMetrics:
    views: int
    favorites: int
    posted_ago_text: str
    posted_date: Optional[datetime] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "views": self.views,
            "favorites": self.favorites,
            "posted_ago_text": self.posted_ago_text,
            "posted_date": iso_or_none(self.posted_date),
        }


@dataclass(frozen=True)
class AdStatus:
    is_active: bool = True
    is_promoted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"is_active": self.is_active, "is_promoted": self.is_promoted}


@dataclass(frozen=True)
class AdSourceMetadata:
    """Provenance of the container an ad was read from."""

    section_id: str
    classes: Tuple[str, ...] = ()
    scrolled: bool = False
    category: str = ""
    subcategory: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "section_id": self.section_id,
            "classes": list(self.classes),
            "scrolled": self.scrolled,
            "category": self.category,
            "subcategory": self.subcategory,
        }


@dataclass(frozen=True)
class AdRecord:
    """One marketplace listing as shown on a search-results page."""

    id: str
    title: str
    price: AdPrice
    location: AdLocation
    description: str
    images: Tuple[AdImage, ...]
    url: str
    seller: AdSeller
    metrics: AdMetrics
    status: AdStatus
    source_metadata: AdSourceMetadata

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "price": self.price.to_dict(),
            "location": self.location.to_dict(),
            "description": self.description,
            "images": [img.to_dict() for img in self.images],
            "url": self.url,
            "seller": self.seller.to_dict(),
            "metrics": self.metrics.to_dict(),
            "status": self.status.to_dict(),
            "source_metadata": self.source_metadata.to_dict(),
        }


@dataclass(frozen=True)
class ParsedFields:
    """Derived values computed from an AdRecord."""

    price_numeric: float
    posted_days_ago: int
    image_urls: Tuple[str, ...]
    is_valid_ad: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "price_numeric": self.price_numeric,
            "posted_days_ago": self.posted_days_ago,
            "image_urls": list(self.image_urls),
            "is_valid_ad": self.is_valid_ad,
        }


@dataclass(frozen=True)
class ScrapingProvenance:
    scraped_at: datetime
    source_url: str
    parsing_success: bool
    parsing_errors: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "scraped_at": self.scraped_at.isoformat(),
            "source_url": self.source_url,
            "parsing_success": self.parsing_success,
            "parsing_errors": list(self.parsing_errors),
        }


@dataclass(frozen=True)
class ParsedAdResult:
    record: AdRecord
    parsed: ParsedFields
    provenance: ScrapingProvenance
    page_number: Optional[int] = None

    @property
    def posted_date(self) -> Optional[datetime]:
        return self.record.metrics.posted_date

    def with_page(self, page_number: int) -> "ParsedAdResult":
        return replace(self, page_number=page_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw": self.record.to_dict(),
            "parsed": self.parsed.to_dict(),
            "scraping_metadata": self.provenance.to_dict(),
            "page_number": self.page_number,
        }


class ErrorType(str, Enum):
    MISSING_SELECTOR = "MISSING_SELECTOR"
    INVALID_DATA = "INVALID_DATA"
    EXTRACTION_FAILED = "EXTRACTION_FAILED"
    PAGE_FETCH_FAILED = "PAGE_FETCH_FAILED"


class WarningType(str, Enum):
    FALLBACK_USED = "FALLBACK_USED"
    INCOMPLETE_DATA = "INCOMPLETE_DATA"
    SUSPICIOUS_VALUE = "SUSPICIOUS_VALUE"


@dataclass(frozen=True)
class ParsingError:
    type: ErrorType
    message: str
    ad_index: Optional[int] = None
    field_name: Optional[str] = None
    selector: Optional[str] = None
    page_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "ad_index": self.ad_index,
            "field_name": self.field_name,
            "selector": self.selector,
            "page_number": self.page_number,
        }


@dataclass(frozen=True)
class ParsingWarning:
    type: WarningType
    message: str
    ad_index: Optional[int] = None
    field_name: Optional[str] = None
    value: Optional[str] = None
    page_number: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type.value,
            "message": self.message,
            "ad_index": self.ad_index,
            "field_name": self.field_name,
            "value": self.value,
            "page_number": self.page_number,
        }


@dataclass(frozen=True)
class PageStats:
    total_found: int = 0
    succeeded: int = 0
    failed: int = 0
    elapsed_ms: int = 0
    html_size_kb: int = 0

    def __add__(self, other: "PageStats") -> "PageStats":
        return PageStats(
            total_found=self.total_found + other.total_found,
            succeeded=self.succeeded + other.succeeded,
            failed=self.failed + other.failed,
            elapsed_ms=self.elapsed_ms + other.elapsed_ms,
            html_size_kb=self.html_size_kb + other.html_size_kb,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_ads_found": self.total_found,
            "successfully_parsed": self.succeeded,
            "failed_to_parse": self.failed,
            "parsing_time_ms": self.elapsed_ms,
            "html_size_kb": self.html_size_kb,
        }


@dataclass(frozen=True)
class PageParseResult:
    """Outcome of parsing one search-results page."""

    success: bool
    ads: Tuple[ParsedAdResult, ...] = ()
    errors: Tuple[ParsingError, ...] = ()
    warnings: Tuple[ParsingWarning, ...] = ()
    stats: PageStats = field(default_factory=PageStats)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "extracted_ads": [ad.to_dict() for ad in self.ads],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "stats": self.stats.to_dict(),
        }


@dataclass(frozen=True)
class PageSummary:
    page_number: int
    ad_count: int
    source: str
    html_size_kb: int = 0
    fetched: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "page": self.page_number,
            "ads": self.ad_count,
            "source": self.source,
            "html_size_kb": self.html_size_kb,
            "fetched": self.fetched,
        }


@dataclass(frozen=True)
class SearchParameters:
    keywords: str
    category_id: Optional[str] = None
    group_id: Optional[str] = None
    has_price: Optional[bool] = None
    order: Optional[str] = None  # price | date | popularity
    location: Optional[str] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "keywords": self.keywords,
            "category_id": self.category_id,
            "group_id": self.group_id,
            "has_price": self.has_price,
            "order": self.order,
            "location": self.location,
            "min_price": self.min_price,
            "max_price": self.max_price,
        }


UNDATED = datetime.min.replace(tzinfo=timezone.utc)


def _posted_key(ad: ParsedAdResult) -> datetime:
    posted = ad.posted_date
    if posted is None:
        return UNDATED
    if posted.tzinfo is None:
        posted = posted.replace(tzinfo=timezone.utc)
    return posted


def sort_ads(ads: Iterable[ParsedAdResult]) -> List[ParsedAdResult]:
    """
    Newest first by posted date. Undated ads sink to the end; ties keep input
    order (sorted() stays stable with reverse=True).
    """
    return sorted(ads, key=_posted_key, reverse=True)


@dataclass(frozen=True)
class CombinedResult:
    """
    Merge of several PageParseResults from one session.

    `ads` keeps page order; use `sorted_ads()` for the newest-first view.
    """

    ads: Tuple[ParsedAdResult, ...]
    errors: Tuple[ParsingError, ...]
    warnings: Tuple[ParsingWarning, ...]
    stats: PageStats
    pages: Tuple[PageSummary, ...]
    search_params: Optional[SearchParameters] = None
    source_urls: Tuple[str, ...] = ()
    total_pages: int = 0
    cancelled: bool = False
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    @property
    def success(self) -> bool:
        return not self.errors

    @property
    def duration_ms(self) -> int:
        if self.started_at is None or self.finished_at is None:
            return 0
        return int((self.finished_at - self.started_at).total_seconds() * 1000)

    def sorted_ads(self) -> Tuple[ParsedAdResult, ...]:
        return tuple(sort_ads(self.ads))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "extracted_ads": [ad.to_dict() for ad in self.ads],
            "errors": [e.to_dict() for e in self.errors],
            "warnings": [w.to_dict() for w in self.warnings],
            "stats": self.stats.to_dict(),
            "pages": [p.to_dict() for p in self.pages],
            "search_params": self.search_params.to_dict() if self.search_params else {},
            "source_urls": list(self.source_urls),
            "total_pages": self.total_pages,
            "cancelled": self.cancelled,
            "started_at": iso_or_none(self.started_at),
            "finished_at": iso_or_none(self.finished_at),
        }


@dataclass
class RawFieldBag:
    """
    Raw strings collected from one ad container, before typing.

    Everything here is exactly what the DOM gave us (or a default when the
    element was absent); `missing` lists fields whose selector matched nothing.
    """

    section_id: str = ""
    classes: List[str] = field(default_factory=list)
    scrolled: bool = False
    title: str = ""
    href: str = ""
    price_text: str = ""
    location_text: str = ""
    paragraphs: List[str] = field(default_factory=list)
    image_attrs: Optional[Dict[str, str]] = None
    store_href: Optional[str] = None
    store_text: str = ""
    counter_texts: List[str] = field(default_factory=list)
    posted_text: str = ""
    is_promoted: bool = False
    missing: List[str] = field(default_factory=list)
    fallbacks_used: List[str] = field(default_factory=list)
