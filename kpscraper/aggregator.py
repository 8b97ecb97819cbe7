"""
Multi-page aggregation: fetch, parse and merge every results page of a search.

A session moves forward through

    NOT_STARTED -> DETECTING_PAGE_COUNT -> FETCHING_PAGE(i) -> PARSING_PAGE(i)
                -> ... -> AGGREGATING -> DONE

and never goes back. A page that fails to render or parse contributes zero
ads and one error; the session carries on with the next page.
"""
import asyncio
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from .config import ScraperConfig
from .html_parser import PageParser
from .models import (
    CombinedResult,
    ErrorType,
    PageParseResult,
    PageStats,
    PageSummary,
    ParsedAdResult,
    ParsingError,
    SearchParameters,
    sort_ads,
)
from .pagination import build_search_url, detect_page_count
from .renderer import PageRenderer
from .utils import now_utc

logger = logging.getLogger(__name__)

# (page_number, html) -> identifier of the stored artifact, e.g. a file path
HtmlSink = Callable[[int, str], Optional[str]]


class AggregatorState(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    DETECTING_PAGE_COUNT = "DETECTING_PAGE_COUNT"
    FETCHING_PAGE = "FETCHING_PAGE"
    PARSING_PAGE = "PARSING_PAGE"
    AGGREGATING = "AGGREGATING"
    DONE = "DONE"


ALLOWED_TRANSITIONS = {
    AggregatorState.NOT_STARTED: {AggregatorState.DETECTING_PAGE_COUNT},
    AggregatorState.DETECTING_PAGE_COUNT: {AggregatorState.FETCHING_PAGE, AggregatorState.AGGREGATING},
    AggregatorState.FETCHING_PAGE: {
        AggregatorState.FETCHING_PAGE,
        AggregatorState.PARSING_PAGE,
        AggregatorState.AGGREGATING,
    },
    AggregatorState.PARSING_PAGE: {
        AggregatorState.FETCHING_PAGE,
        AggregatorState.PARSING_PAGE,
        AggregatorState.AGGREGATING,
    },
    AggregatorState.AGGREGATING: {AggregatorState.DONE},
    AggregatorState.DONE: set(),
}


@dataclass(frozen=True)
class PageOutcome:
    """One page's contribution to a session."""

    page_number: int
    url: str
    result: PageParseResult
    fetched: bool = True
    source: Optional[str] = None


def _tag_page(outcome: PageOutcome) -> PageOutcome:
    """Stamp the page number onto everything the page produced."""
    n = outcome.page_number
    result = outcome.result
    return replace(
        outcome,
        result=replace(
            result,
            ads=tuple(ad.with_page(n) for ad in result.ads),
            errors=tuple(replace(e, page_number=n) for e in result.errors),
            warnings=tuple(replace(w, page_number=n) for w in result.warnings),
        ),
    )


def merge_outcomes(
    outcomes: Sequence[PageOutcome],
    search_params: Optional[SearchParameters] = None,
    total_pages: Optional[int] = None,
    cancelled: bool = False,
    started_at: Optional[datetime] = None,
    finished_at: Optional[datetime] = None,
) -> CombinedResult:
    """Concatenate per-page results in page order into one CombinedResult."""
    ordered = sorted((_tag_page(o) for o in outcomes), key=lambda o: o.page_number)
    ads: List[ParsedAdResult] = []
    errors: List[ParsingError] = []
    warnings = []
    stats = PageStats()
    pages: List[PageSummary] = []
    for o in ordered:
        ads.extend(o.result.ads)
        errors.extend(o.result.errors)
        warnings.extend(o.result.warnings)
        stats = stats + o.result.stats
        pages.append(PageSummary(
            page_number=o.page_number,
            ad_count=len(o.result.ads),
            source=o.source or o.url,
            html_size_kb=o.result.stats.html_size_kb,
            fetched=o.fetched,
        ))
    return CombinedResult(
        ads=tuple(ads),
        errors=tuple(errors),
        warnings=tuple(warnings),
        stats=stats,
        pages=tuple(pages),
        search_params=search_params,
        source_urls=tuple(o.url for o in ordered),
        total_pages=total_pages if total_pages is not None else len(ordered),
        cancelled=cancelled,
        started_at=started_at,
        finished_at=finished_at,
    )


def aggregate_pages(
    page_results: Sequence[Tuple[str, PageParseResult]],
    search_params: Optional[SearchParameters] = None,
) -> CombinedResult:
    """Merge already-parsed pages, given as (source, result) in page order."""
    outcomes = [
        PageOutcome(page_number=i, url=source, result=result, source=source)
        for i, (source, result) in enumerate(page_results, 1)
    ]
    return merge_outcomes(outcomes, search_params=search_params)


class MultiPageAggregator:
    """
    Drives one search session over the external renderer.

    Pages are fetched one at a time with a fixed delay in between. With
    `page_concurrency > 1` pages after the first are fetched through a bounded
    pool and then parsed in page order.
    """

    def __init__(
        self,
        renderer: PageRenderer,
        parser: Optional[PageParser] = None,
        config: Optional[ScraperConfig] = None,
        html_sink: Optional[HtmlSink] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.renderer = renderer
        self.config = config or ScraperConfig()
        self.parser = parser or PageParser(base_url=self.config.base_url)
        self.html_sink = html_sink
        self._sleep = sleep
        self.state = AggregatorState.NOT_STARTED
        self.current_page: Optional[int] = None
        self.history: List[Tuple[AggregatorState, Optional[int]]] = [(self.state, None)]

    # -------------------------------------------------------------- state

    def _advance(self, state: AggregatorState, page: Optional[int] = None) -> None:
        if state not in ALLOWED_TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid aggregator transition {self.state.value} -> {state.value}")
        if page is not None and self.current_page is not None and page < self.current_page:
            raise RuntimeError(f"Page index went backwards: {self.current_page} -> {page}")
        self.state = state
        if page is not None:
            self.current_page = page
        self.history.append((state, page))
        logger.debug(f"Aggregator state -> {state.value}" + (f" (page {page})" if page else ""))

    # ------------------------------------------------------------- helpers

    def _page_url(self, params: SearchParameters, page: int) -> str:
        return build_search_url(self.config.base_url, params, page=page)

    async def _fetch(self, page: int, url: str) -> Tuple[Optional[str], Optional[ParsingError]]:
        try:
            html = await self.renderer.fetch_page(
                url,
                wait_selector=self.config.wait_selector,
                scroll_to_bottom=self.config.scroll_to_bottom,
            )
            return html, None
        except Exception as e:
            logger.error(f">>> Page {page} failed to render: {e}")
            return None, ParsingError(
                type=ErrorType.PAGE_FETCH_FAILED,
                message=f"Failed to fetch page {page}: {e}",
                page_number=page,
            )

    def _store_html(self, page: int, html: str) -> Optional[str]:
        if self.html_sink is None:
            return None
        try:
            return self.html_sink(page, html)
        except Exception as e:
            logger.warning(f"Could not store HTML for page {page}: {e}")
            return None

    def _parse(self, page: int, url: str, html: Optional[str], error: Optional[ParsingError]) -> PageOutcome:
        if html is None:
            return PageOutcome(
                page_number=page,
                url=url,
                result=PageParseResult(success=False, errors=(error,)),
                fetched=False,
            )
        source = self._store_html(page, html)
        try:
            result = self.parser.parse(html)
        except Exception as e:
            logger.exception(f"Parser raised on page {page}")
            result = PageParseResult(
                success=False,
                errors=(ParsingError(
                    type=ErrorType.EXTRACTION_FAILED,
                    message=f"Failed to parse page {page}: {e}",
                    page_number=page,
                ),),
            )
        logger.info(f">>> Page {page}: {result.stats.succeeded} ads parsed, {len(result.errors)} errors")
        return PageOutcome(page_number=page, url=url, result=result, fetched=True, source=source)

    @staticmethod
    def _cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
        return cancel_event is not None and cancel_event.is_set()

    # ----------------------------------------------------------------- run

    async def run(
        self,
        params: SearchParameters,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> CombinedResult:
        if self.state is not AggregatorState.NOT_STARTED:
            raise RuntimeError("MultiPageAggregator.run() can only be called once per instance")

        started_at = now_utc()
        outcomes: Dict[int, PageOutcome] = {}
        cancelled = False

        self._advance(AggregatorState.DETECTING_PAGE_COUNT)
        first_url = self._page_url(params, 1)
        first_html, first_error = await self._fetch(1, first_url)
        if first_html is not None:
            detected = detect_page_count(first_html, ceiling=self.config.page_count_ceiling)
        else:
            detected = 1
        total_pages = min(detected, self.config.max_pages)
        logger.info(f">>> Detected {detected} page(s), scraping {total_pages}")

        self._advance(AggregatorState.FETCHING_PAGE, 1)
        if first_html is not None:
            self._advance(AggregatorState.PARSING_PAGE, 1)
        outcomes[1] = self._parse(1, first_url, first_html, first_error)

        remaining = list(range(2, total_pages + 1))
        if self.config.page_concurrency > 1 and len(remaining) > 1:
            cancelled = await self._run_pooled(params, remaining, outcomes, cancel_event)
        else:
            cancelled = await self._run_sequential(params, remaining, outcomes, cancel_event)

        self._advance(AggregatorState.AGGREGATING)
        combined = merge_outcomes(
            [outcomes[p] for p in sorted(outcomes)],
            search_params=params,
            total_pages=total_pages,
            cancelled=cancelled,
            started_at=started_at,
            finished_at=now_utc(),
        )
        self._advance(AggregatorState.DONE)
        logger.info(
            f">>> Session done: {len(combined.ads)} ads from {len(combined.pages)} page(s), "
            f"{len(combined.errors)} errors"
        )
        return combined

    async def _run_sequential(
        self,
        params: SearchParameters,
        pages: Sequence[int],
        outcomes: Dict[int, PageOutcome],
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        for page in pages:
            if self._cancelled(cancel_event):
                logger.info(f">>> Cancelled before page {page}")
                return True
            await self._sleep(self.config.page_delay_s)
            url = self._page_url(params, page)
            self._advance(AggregatorState.FETCHING_PAGE, page)
            html, error = await self._fetch(page, url)
            if html is not None:
                self._advance(AggregatorState.PARSING_PAGE, page)
            outcomes[page] = self._parse(page, url, html, error)
        return False

    async def _run_pooled(
        self,
        params: SearchParameters,
        pages: Sequence[int],
        outcomes: Dict[int, PageOutcome],
        cancel_event: Optional[asyncio.Event],
    ) -> bool:
        semaphore = asyncio.Semaphore(self.config.page_concurrency)
        fetched: Dict[int, Tuple[str, Optional[str], Optional[ParsingError]]] = {}
        skipped: List[int] = []

        async def fetch_one(page: int) -> None:
            async with semaphore:
                if self._cancelled(cancel_event):
                    skipped.append(page)
                    return
                url = self._page_url(params, page)
                html, error = await self._fetch(page, url)
                fetched[page] = (url, html, error)
                await self._sleep(self.config.page_delay_s)

        self._advance(AggregatorState.FETCHING_PAGE, pages[0])
        await asyncio.gather(*(fetch_one(p) for p in pages))

        # Reassemble by page index, not completion order
        for page in sorted(fetched):
            url, html, error = fetched[page]
            if html is not None:
                self._advance(AggregatorState.PARSING_PAGE, page)
            outcomes[page] = self._parse(page, url, html, error)
        if skipped:
            logger.info(f">>> Cancelled, skipped pages {sorted(skipped)}")
        return bool(skipped)
