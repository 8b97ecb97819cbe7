"""
KupujemProdajem Search Results Scraper Package
"""
from .models import (
    AdRecord,
    CombinedResult,
    ErrorType,
    PageParseResult,
    ParsedAdResult,
    ParsingError,
    ParsingWarning,
    SearchParameters,
    WarningType,
)
from .ad_builder import AdRecordBuilder
from .html_parser import PageParser
from .models import sort_ads
from .aggregator import MultiPageAggregator, aggregate_pages
from .config import ScraperConfig, create_playstation_search_params
from .errors import ConfigError, RendererError, ScraperError
from .pagination import build_search_url, detect_page_count
from .selector_config import SelectorConfig, SelectorSet
from .utils import init_logger, now_iso

__version__ = "1.0.0"

__all__ = [
    "AdRecord",
    "CombinedResult",
    "ErrorType",
    "PageParseResult",
    "ParsedAdResult",
    "ParsingError",
    "ParsingWarning",
    "SearchParameters",
    "WarningType",
    "AdRecordBuilder",
    "PageParser",
    "MultiPageAggregator",
    "aggregate_pages",
    "sort_ads",
    "ScraperConfig",
    "create_playstation_search_params",
    "ConfigError",
    "RendererError",
    "ScraperError",
    "build_search_url",
    "detect_page_count",
    "SelectorConfig",
    "SelectorSet",
    "init_logger",
    "now_iso",
]
