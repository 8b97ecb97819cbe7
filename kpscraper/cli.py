"""
Command line entry point: scrape KupujemProdajem search results or re-parse
saved HTML pages.
"""
import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import List, Optional

from .aggregator import MultiPageAggregator, aggregate_pages
from .config import ScraperConfig, create_playstation_search_params, search_keywords_from_env
from .database import db_connect, db_init, save_combined_result
from .errors import ConfigError
from .export import (
    HtmlArchive,
    export_new_since_run,
    save_ads_json,
    save_dataframe,
    save_output_rows,
)
from .html_parser import PageParser
from .models import CombinedResult, SearchParameters
from .pagination import build_search_url
from .renderer import PlaywrightRenderer
from .utils import init_logger, now_iso

logger = logging.getLogger("kpscraper")


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    ap = argparse.ArgumentParser(description="KupujemProdajem search-results scraper (PlayStation games)")
    ap.add_argument("--keywords", type=str, default=None, help="Search keywords (default from env SEARCH_KEYWORDS)")
    ap.add_argument("--max-pages", type=int, default=None, help="Maximum pages to scrape (default from env MAX_PAGES or 5)")
    ap.add_argument("--headless", action=argparse.BooleanOptionalAction, default=None, help="Run browser without UI")
    ap.add_argument("--timeout", type=int, default=None, help="Navigation timeout in ms")
    ap.add_argument("--scroll", action=argparse.BooleanOptionalAction, default=None,
                    help="Scroll to the bottom of each page before reading it")
    ap.add_argument("--delay", type=float, default=None, help="Delay between pages in seconds")
    ap.add_argument("--concurrency", type=int, default=None, help="Pages fetched at once (default 1)")
    ap.add_argument("--base-url", type=str, default=None, help="Marketplace base URL")
    ap.add_argument("--min-price", type=float, default=None, help="Minimum price filter")
    ap.add_argument("--max-price", type=float, default=None, help="Maximum price filter")
    ap.add_argument("--location", type=str, default=None, help="Location filter")
    ap.add_argument("--order", choices=["price", "date", "popularity"], default=None, help="Result ordering")
    ap.add_argument("--parse-file", nargs="+", default=None, metavar="HTML",
                    help="Parse saved HTML page(s) instead of scraping")
    ap.add_argument("--output-dir", type=str, default=None, help="Directory for artifacts (default from env OUTPUT_DIR or ./output)")
    ap.add_argument("--save-html", action="store_true", help="Keep rendered HTML of each page in the output dir")
    ap.add_argument("--out-json", type=str, default=None, help="JSON output path (default <output-dir>/ads.json)")
    ap.add_argument("--out", type=str, default="", help="Also export ads to CSV/XLSX")
    ap.add_argument("--db", type=str, default="", help="Path to SQLite DB to upsert ads into")
    ap.add_argument("--export-new", action="store_true", help="With --db and --out: export only ads new since this run")
    # Logging
    lvl_choices = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    ap.add_argument("--log-level", choices=lvl_choices, default=None,
                    help="Global log level for both console and file (overrides --log-console/--log-file).")
    ap.add_argument("--log-console", choices=lvl_choices, default=os.getenv("LOG_CONSOLE", "INFO"),
                    help="Console log level (default from env LOG_CONSOLE or INFO).")
    ap.add_argument("--log-file", choices=lvl_choices, default=os.getenv("LOG_FILE", "DEBUG"),
                    help="File log level (default from env LOG_FILE or DEBUG).")
    ap.add_argument("--log-file-path", default=os.getenv("LOG_FILE_PATH", "kpscraper.log"),
                    help="Path to log file (default from env LOG_FILE_PATH or kpscraper.log).")
    ap.add_argument("--no-file-log", action="store_true",
                    help="Disable file logging (only console output).")
    return ap.parse_args(argv)


def build_config(args: argparse.Namespace) -> ScraperConfig:
    return ScraperConfig.from_env(
        base_url=args.base_url,
        max_pages=args.max_pages,
        headless=args.headless,
        navigation_timeout_ms=args.timeout,
        scroll_to_bottom=args.scroll,
        page_delay_s=args.delay,
        page_concurrency=args.concurrency,
        output_dir=Path(args.output_dir) if args.output_dir else None,
        save_html=args.save_html or None,
    )


def build_search_params(args: argparse.Namespace) -> SearchParameters:
    return create_playstation_search_params(
        args.keywords or search_keywords_from_env(),
        min_price=args.min_price,
        max_price=args.max_price,
        location=args.location,
        order=args.order,
    )


async def run_session(
    cfg: ScraperConfig,
    params: SearchParameters,
    output_dir: Path,
) -> CombinedResult:
    """Open the browser, run one aggregation session and close the browser."""
    cancel_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel_event.set)
    except (NotImplementedError, RuntimeError):
        pass  # not available on this platform

    html_sink = HtmlArchive(output_dir / "html") if cfg.save_html else None
    async with PlaywrightRenderer(
        headless=cfg.headless,
        navigation_timeout_ms=cfg.navigation_timeout_ms,
        wait_timeout_ms=cfg.wait_timeout_ms,
    ) as renderer:
        aggregator = MultiPageAggregator(renderer, config=cfg, html_sink=html_sink)
        return await aggregator.run(params, cancel_event=cancel_event)


def parse_files(cfg: ScraperConfig, paths: List[str]) -> CombinedResult:
    parser = PageParser(base_url=cfg.base_url)
    return aggregate_pages([(p, parser.parse_file(p)) for p in paths])


def log_summary(result: CombinedResult) -> None:
    s = result.stats
    logger.info("=== MULTI-PAGE SCRAPING RESULTS ===")
    logger.info(f"Total ads found: {s.total_found}")
    logger.info(f"Successfully parsed: {s.succeeded}")
    logger.info(f"Failed to parse: {s.failed}")
    logger.info(f"Total parsing time: {s.elapsed_ms}ms")
    logger.info(f"Total HTML size: {s.html_size_kb}KB")
    if result.cancelled:
        logger.warning("Session was cancelled before all pages were scraped")

    for i, err in enumerate(result.errors, 1):
        logger.warning(f"Error {i}: [{err.type.value}] {err.message}")
    for i, warn in enumerate(result.warnings, 1):
        logger.debug(f"Warning {i}: [{warn.type.value}] {warn.message}")

    for i, ad in enumerate(result.sorted_ads()[:3], 1):
        r = ad.record
        logger.info(f"{i}. {r.title} | {r.price.formatted} | {r.location.name} | "
                    f"views={r.metrics.views} favorites={r.metrics.favorites} | "
                    f"{r.metrics.posted_ago_text} | {r.url}")


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    eff_console = args.log_level or args.log_console
    eff_file = args.log_level or args.log_file
    init_logger(
        console_level=eff_console,
        file_level=eff_file,
        log_file=None if args.no_file_log else args.log_file_path
    )

    try:
        cfg = build_config(args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    output_dir = cfg.output_dir or Path("output")
    run_started_iso = now_iso()
    logger.info(f">>> Run started at {run_started_iso}")

    if args.parse_file:
        result = parse_files(cfg, args.parse_file)
    else:
        params = build_search_params(args)
        logger.info(f">>> Search keywords: {params.keywords}")
        logger.info(f">>> Target URL: {build_search_url(cfg.base_url, params)}")
        result = asyncio.run(run_session(cfg, params, output_dir))

    log_summary(result)

    out_json = Path(args.out_json) if args.out_json else output_dir / "ads.json"
    save_ads_json(result, out_json, base_url=cfg.base_url)

    conn = None
    if args.db:
        os.makedirs(os.path.dirname(args.db) or ".", exist_ok=True)
        conn = db_connect(args.db)
        db_init(conn)
        new_ads, price_changes = save_combined_result(conn, result)
        logger.info(f">>> In DB: new ads added: {new_ads}, price changes: {price_changes}")

    if args.out:
        if args.export_new and conn is not None:
            dfn = export_new_since_run(conn, run_started_iso)
            save_dataframe(dfn, args.out)
            logger.info(f">>> Export only new ads: {len(dfn)} rows -> {args.out}")
        else:
            save_output_rows(result.sorted_ads(), args.out)

    if conn is not None:
        conn.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
