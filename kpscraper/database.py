"""
SQLite store for scraped ads with price history.
"""
import sqlite3
from typing import Dict, Optional, Tuple

from .models import CombinedResult, ParsedAdResult
from .utils import iso_or_none, now_iso


# Schema definitions
DDL_ADS = """
CREATE TABLE IF NOT EXISTS ads (
  ad_id TEXT PRIMARY KEY,
  url TEXT,
  title TEXT,
  price_text TEXT,
  price_value REAL,
  price_currency TEXT,
  location TEXT,
  posted_text TEXT,
  posted_date TEXT,
  views INTEGER,
  favorites INTEGER,
  is_promoted INTEGER,
  has_storefront INTEGER,
  store_id TEXT,
  img_urls TEXT,
  description TEXT,
  first_seen TEXT,
  last_seen TEXT
);
"""

DDL_PRICE_HISTORY = """
CREATE TABLE IF NOT EXISTS price_history (
  ad_id TEXT,
  ts TEXT,
  price_value REAL,
  price_currency TEXT,
  PRIMARY KEY (ad_id, ts)
);
"""

DDL_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_ads_last_seen ON ads(last_seen);",
    "CREATE INDEX IF NOT EXISTS idx_price_history_ad ON price_history(ad_id);"
]

AD_COLUMNS = (
    "url", "title", "price_text", "price_value", "price_currency", "location",
    "posted_text", "posted_date", "views", "favorites", "is_promoted",
    "has_storefront", "store_id", "img_urls", "description",
)


def db_connect(path: str) -> sqlite3.Connection:
    """Create database connection with optimized settings."""
    conn = sqlite3.connect(path)
    conn.execute("PRAGMA journal_mode=WAL;")
    conn.execute("PRAGMA synchronous=NORMAL;")
    return conn


def db_init(conn: sqlite3.Connection):
    """Initialize database schema with tables and indexes."""
    conn.execute(DDL_ADS)
    conn.execute(DDL_PRICE_HISTORY)
    for ddl in DDL_INDEXES:
        conn.execute(ddl)
    conn.commit()


def row_to_dict(cur, row):
    """Convert sqlite3 row to dictionary."""
    return {desc[0]: row[i] for i, desc in enumerate(cur.description)}


def ad_key(ad: ParsedAdResult) -> str:
    """Section id when the page gave one, else the ad URL."""
    return ad.record.id or ad.record.url


def _ad_values(ad: ParsedAdResult) -> Tuple:
    r = ad.record
    return (
        r.url, r.title, r.price.formatted, r.price.amount, r.price.currency, r.location.name,
        r.metrics.posted_ago_text, iso_or_none(r.metrics.posted_date), r.metrics.views,
        r.metrics.favorites, int(r.status.is_promoted), int(r.seller.has_storefront),
        r.seller.store_id or "", "|".join(ad.parsed.image_urls), r.description,
    )


def db_get_ad(conn: sqlite3.Connection, ad_id: str) -> Optional[Dict]:
    """Retrieve existing ad by id."""
    cur = conn.cursor()
    cur.execute("SELECT * FROM ads WHERE ad_id = ?", (ad_id,))
    r = cur.fetchone()
    if not r:
        return None
    return row_to_dict(cur, r)


def db_insert_ad(conn: sqlite3.Connection, ad: ParsedAdResult):
    ts = now_iso()
    columns = ("ad_id",) + AD_COLUMNS + ("first_seen", "last_seen")
    placeholders = ",".join("?" for _ in columns)
    conn.execute(
        f"INSERT INTO ads ({','.join(columns)}) VALUES ({placeholders})",
        (ad_key(ad),) + _ad_values(ad) + (ts, ts),
    )
    conn.commit()


def db_update_ad(conn: sqlite3.Connection, ad: ParsedAdResult):
    assignments = ", ".join(f"{c}=?" for c in AD_COLUMNS + ("last_seen",))
    conn.execute(
        f"UPDATE ads SET {assignments} WHERE ad_id=?",
        _ad_values(ad) + (now_iso(), ad_key(ad)),
    )
    conn.commit()


def db_insert_price_event(conn: sqlite3.Connection, ad_id: str, price_value: Optional[float], price_currency: Optional[str]):
    """Insert price change event into price history."""
    if price_value is None:
        return
    conn.execute("""
    INSERT OR REPLACE INTO price_history (ad_id, ts, price_value, price_currency)
    VALUES (?, ?, ?, ?)
    """, (ad_id, now_iso(), price_value, price_currency))
    conn.commit()


def upsert_with_price_history(conn: sqlite3.Connection, ad: ParsedAdResult) -> Tuple[bool, bool]:
    """
    Insert or update an ad and track price changes.

    Unparsed prices (amount 0) are stored on the ad but never recorded as
    a price event.

    Returns:
        Tuple of (is_new_ad, price_changed)
    """
    key = ad_key(ad)
    price = ad.record.price
    price_value = price.amount if price.amount > 0 else None
    existing = db_get_ad(conn, key)
    if existing is None:
        db_insert_ad(conn, ad)
        db_insert_price_event(conn, key, price_value, price.currency)
        return True, price_value is not None

    old_price = existing.get("price_value")
    old_cur = existing.get("price_currency")
    price_changed = (
        price_value is not None and
        (not old_price or
         float(old_price) != float(price_value) or
         (price.currency or "") != (old_cur or ""))
    )
    db_update_ad(conn, ad)
    if price_changed:
        db_insert_price_event(conn, key, price_value, price.currency)
    return False, price_changed


def save_combined_result(conn: sqlite3.Connection, result: CombinedResult) -> Tuple[int, int]:
    """Upsert every ad of a session. Returns (new_ads, price_changes)."""
    new_ads = 0
    price_changes = 0
    for ad in result.ads:
        is_new, changed = upsert_with_price_history(conn, ad)
        new_ads += int(is_new)
        price_changes += int(changed)
    return new_ads, price_changes
