"""
Export utilities: JSON session artifact, CSV/XLSX rows and raw HTML archive.
"""
import json
import logging
import sqlite3
from collections import Counter
from pathlib import Path
from typing import Any, Dict, Optional, Sequence, Union

import pandas as pd

from .models import CombinedResult, ParsedAdResult
from .renderer import USER_AGENT
from .utils import iso_or_none, now_iso

logger = logging.getLogger(__name__)


def location_distribution(ads: Sequence[ParsedAdResult]) -> Dict[str, int]:
    return dict(Counter(ad.record.location.name for ad in ads))


def posting_time_distribution(ads: Sequence[ParsedAdResult]) -> Dict[str, int]:
    return dict(Counter(ad.record.metrics.posted_ago_text for ad in ads))


def build_statistics(result: CombinedResult, ads: Optional[Sequence[ParsedAdResult]] = None) -> Dict[str, Any]:
    """Summary statistics over the ads of a session."""
    ads = list(result.ads if ads is None else ads)
    amounts = [ad.record.price.amount for ad in ads]
    pages = result.pages
    ads_per_page = [{"page": p.page_number, "ads": p.ad_count} for p in pages]

    return {
        "total_ads_found": len(ads),
        "average_price": sum(amounts) / len(amounts) if amounts else 0,
        "price_range": {"min": min(amounts), "max": max(amounts)} if amounts else {"min": 0, "max": 0},
        "location_distribution": location_distribution(ads),
        "posting_time_distribution": posting_time_distribution(ads),
        "promoted_ads_count": sum(1 for ad in ads if ad.record.status.is_promoted),
        "ads_with_storefront": sum(1 for ad in ads if ad.record.seller.has_storefront),
        "page_statistics": {
            "total_pages": result.total_pages or 1,
            "ads_per_page": ads_per_page,
            "average_ads_per_page": (
                sum(p.ad_count for p in pages) / len(pages) if pages else len(ads)
            ),
            "pages_scraped": len(pages) or 1,
        },
        "sorting_info": {
            "sorted_by": "posting_date",
            "sort_order": "newest_first",
            "sorted_at": now_iso(),
        },
    }


def build_session_document(result: CombinedResult, base_url: str = "") -> Dict[str, Any]:
    """Complete JSON-ready document for one session, ads sorted newest first."""
    sorted_ads = result.sorted_ads()
    search_url = result.source_urls[0] if result.source_urls else "unknown"
    return {
        "timestamp": now_iso(),
        "total_ads": len(sorted_ads),
        "scraping_session": {
            "search_url": search_url,
            "search_params": result.search_params.to_dict() if result.search_params else {},
            "source_urls": list(result.source_urls),
            "total_pages": result.total_pages or 1,
            "page_results": [p.to_dict() for p in result.pages],
            "total_html_size_kb": result.stats.html_size_kb,
            "scraping_start_time": iso_or_none(result.started_at),
            "scraping_end_time": iso_or_none(result.finished_at),
            "scraping_duration_ms": result.duration_ms,
            "cancelled": result.cancelled,
            "base_url": base_url,
            "user_agent": USER_AGENT,
            "parsing_time": now_iso(),
        },
        "parsing_stats": result.stats.to_dict(),
        "statistics": build_statistics(result, sorted_ads),
        "errors": [e.to_dict() for e in result.errors],
        "warnings": [w.to_dict() for w in result.warnings],
        "ads": [ad.to_dict() for ad in sorted_ads],
    }


def save_ads_json(result: CombinedResult, out_path: Union[str, Path], base_url: str = "") -> Path:
    """Write the session document to `out_path`."""
    out_path = Path(out_path)
    out_path.parent.mkdir(parents=True, exist_ok=True)
    document = build_session_document(result, base_url=base_url)
    text = json.dumps(document, ensure_ascii=False, indent=2)
    out_path.write_text(text, encoding="utf-8")
    logger.info(
        f">>> Saved {document['total_ads']} ads from {document['scraping_session']['total_pages']} "
        f"page(s) to {out_path} (sorted newest to oldest, {len(text) / 1024:.2f} KB)"
    )
    return out_path


def ads_to_rows(ads: Sequence[ParsedAdResult]) -> list:
    rows = []
    for ad in ads:
        r = ad.record
        rows.append({
            "id": r.id,
            "title": r.title,
            "price_text": r.price.formatted,
            "price_value": r.price.amount,
            "price_currency": r.price.currency,
            "location": r.location.name,
            "has_delivery": r.location.has_delivery,
            "posted_text": r.metrics.posted_ago_text,
            "posted_date": iso_or_none(r.metrics.posted_date),
            "posted_days_ago": ad.parsed.posted_days_ago,
            "views": r.metrics.views,
            "favorites": r.metrics.favorites,
            "is_promoted": r.status.is_promoted,
            "has_storefront": r.seller.has_storefront,
            "store_id": r.seller.store_id or "",
            "img_urls": "|".join(ad.parsed.image_urls),
            "description": r.description,
            "url": r.url,
            "page_number": ad.page_number,
            "scraped_at": ad.provenance.scraped_at.isoformat(),
        })
    return rows


def save_output_rows(ads: Sequence[ParsedAdResult], out_path: Union[str, Path]) -> pd.DataFrame:
    """Save ads to a CSV or Excel file, picked by extension."""
    df = pd.DataFrame(ads_to_rows(ads))
    save_dataframe(df, out_path)
    logger.info(f">>> Saved {len(df)} rows to {out_path}")
    return df


def export_new_since_run(conn: sqlite3.Connection, run_started_iso: str) -> pd.DataFrame:
    """Export ads that were first seen since the given timestamp."""
    q = """
    SELECT *
    FROM ads
    WHERE first_seen >= ?
    ORDER BY first_seen DESC
    """
    return pd.read_sql_query(q, conn, params=(run_started_iso,))


def export_price_history(conn: sqlite3.Connection, ad_id: Optional[str] = None) -> pd.DataFrame:
    """Export price history for all ads or a specific ad."""
    if ad_id:
        q = "SELECT * FROM price_history WHERE ad_id=? ORDER BY ts ASC"
        return pd.read_sql_query(q, conn, params=(ad_id,))
    q = "SELECT * FROM price_history ORDER BY ad_id, ts ASC"
    return pd.read_sql_query(q, conn)


def save_dataframe(df: pd.DataFrame, out_path: Union[str, Path]) -> None:
    out_path = str(out_path)
    if out_path.lower().endswith(".xlsx"):
        df.to_excel(out_path, index=False)
    else:
        df.to_csv(out_path, index=False)


class HtmlArchive:
    """Stores each rendered page as page_<n>.html; usable as an aggregator html_sink."""

    def __init__(self, output_dir: Union[str, Path], prefix: str = "page"):
        self.output_dir = Path(output_dir)
        self.prefix = prefix

    def __call__(self, page_number: int, html: str) -> str:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / f"{self.prefix}_{page_number}.html"
        path.write_text(html, encoding="utf-8")
        logger.debug(f"Saved HTML for page {page_number} to {path}")
        return str(path)
