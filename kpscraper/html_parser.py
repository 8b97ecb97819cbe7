"""
Page parser: search-results HTML -> PageParseResult.
"""
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Tuple, Union

from bs4 import BeautifulSoup, Tag

from .ad_builder import BASE_URL_DEFAULT, AdRecordBuilder
from .models import (
    ErrorType,
    PageParseResult,
    PageStats,
    ParsedAdResult,
    ParsingError,
    ParsingWarning,
    WarningType,
)
from .selector_config import DEFAULT_SELECTORS, SelectorSet
from .utils import now_utc

logger = logging.getLogger(__name__)

HTML_PARSER_BACKEND = "lxml"


class PageParser:
    """
    Parses one search-results page.

    One bad ad never aborts the page: exceptions while building an ad become
    EXTRACTION_FAILED errors tagged with the ad's position.
    """

    def __init__(
        self,
        base_url: str = BASE_URL_DEFAULT,
        selectors: SelectorSet = DEFAULT_SELECTORS,
        builder: Optional[AdRecordBuilder] = None,
    ):
        self.base_url = base_url
        self.selectors = selectors
        self.builder = builder or AdRecordBuilder(base_url=base_url, selectors=selectors)

    def _failed(self, message: str, started: float, html_size_kb: int = 0) -> PageParseResult:
        logger.error(message)
        return PageParseResult(
            success=False,
            ads=(),
            errors=(ParsingError(type=ErrorType.EXTRACTION_FAILED, message=message),),
            warnings=(),
            stats=PageStats(
                total_found=0,
                succeeded=0,
                failed=0,
                elapsed_ms=int((time.perf_counter() - started) * 1000),
                html_size_kb=html_size_kb,
            ),
        )

    def find_containers(self, soup: BeautifulSoup) -> Tuple[List[Tag], Optional[ParsingWarning]]:
        primary, *rest = self.selectors.candidates("ad_container")
        containers = soup.select(primary)
        if containers or not rest:
            return containers, None
        containers = soup.select(rest[0])
        if not containers:
            return [], None
        return containers, ParsingWarning(
            type=WarningType.FALLBACK_USED,
            message=f"No ad containers matched '{primary}', used fallback '{rest[0]}'",
            field_name="ad_container",
            value=rest[0],
        )

    def parse(
        self,
        html: Union[str, bytes],
        now: Optional[datetime] = None,
    ) -> PageParseResult:
        """
        Parse a full HTML document.

        Never raises for bad HTML; a document that cannot be read at all yields
        an unsuccessful result with zero ads and one top-level error.
        """
        if html is None:
            raise TypeError("PageParser.parse() requires HTML text, got None")

        started = time.perf_counter()
        if isinstance(html, bytes):
            try:
                html = html.decode("utf-8")
            except UnicodeDecodeError as e:
                return self._failed(f"Failed to decode HTML: {e}", started)
        if not isinstance(html, str):
            raise TypeError(f"PageParser.parse() requires str or bytes, got {type(html).__name__}")

        html_size_kb = round(len(html) / 1024)
        if not html.strip():
            return self._failed("Failed to parse HTML: document is empty", started)

        try:
            soup = BeautifulSoup(html, HTML_PARSER_BACKEND)
        except Exception as e:
            return self._failed(f"Failed to parse HTML: {e}", started, html_size_kb)

        containers, container_warning = self.find_containers(soup)
        logger.info(f"Found {len(containers)} ad containers")

        now = now or now_utc()
        ads: List[ParsedAdResult] = []
        errors: List[ParsingError] = []
        warnings: List[ParsingWarning] = [container_warning] if container_warning else []

        for index, node in enumerate(containers):
            try:
                outcome = self.builder.build_from_node(node, ad_index=index, now=now)
            except Exception as e:
                logger.debug("Ad %d raised during extraction", index, exc_info=True)
                errors.append(ParsingError(
                    type=ErrorType.EXTRACTION_FAILED,
                    message=f"Failed to parse ad at index {index}: {e}",
                    ad_index=index,
                ))
                continue
            warnings.extend(outcome.warnings)
            if outcome.result is not None:
                ads.append(outcome.result)
            else:
                errors.append(outcome.rejection)

        stats = PageStats(
            total_found=len(containers),
            succeeded=len(ads),
            failed=len(errors),
            elapsed_ms=int((time.perf_counter() - started) * 1000),
            html_size_kb=html_size_kb,
        )
        logger.info(
            f"Parsing completed: found={stats.total_found} parsed={stats.succeeded} "
            f"failed={stats.failed} time={stats.elapsed_ms}ms"
        )
        return PageParseResult(
            success=not errors,
            ads=tuple(ads),
            errors=tuple(errors),
            warnings=tuple(warnings),
            stats=stats,
        )

    def parse_file(self, path: Union[str, Path], now: Optional[datetime] = None) -> PageParseResult:
        """Parse a saved HTML file; an unreadable file is a page-level failure."""
        started = time.perf_counter()
        try:
            html = Path(path).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            return self._failed(f"Failed to parse HTML file {path}: {e}", started)
        return self.parse(html, now=now)
