"""
Tests for JSON/CSV export, the HTML archive and the SQLite store.
"""
import json
from dataclasses import replace
from datetime import datetime, timezone

import pandas as pd
import pytest

from kpscraper.aggregator import aggregate_pages
from kpscraper.config import create_playstation_search_params
from kpscraper.conftest import ad_html, page_html
from kpscraper.database import (
    db_connect,
    db_get_ad,
    db_init,
    save_combined_result,
    upsert_with_price_history,
)
from kpscraper.export import (
    HtmlArchive,
    build_statistics,
    export_price_history,
    save_ads_json,
    save_output_rows,
)
from kpscraper.html_parser import PageParser
from kpscraper.models import AdPrice

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
PARAMS = create_playstation_search_params("ps5")


@pytest.fixture
def combined():
    parser = PageParser()
    page1 = parser.parse(page_html([
        ad_html(ad_id="a1", price="10.000 din", posted="pre 4 dana", location="Beograd", href="/x/oglas/1"),
        ad_html(ad_id="a2", price="2.000 din", posted="pre 1 sat", location="Niš", href="/x/oglas/2",
                store="GameZone", promoted=True),
    ], total_pages=2), now=NOW)
    page2 = parser.parse(page_html([
        ad_html(ad_id="a3", price="6.000 din", posted="pre 2 dana", location="Beograd", href="/x/oglas/3"),
        ad_html(ad_id="broken", title=None),
    ], total_pages=2, current=2), now=NOW)
    return aggregate_pages([("page_1.html", page1), ("page_2.html", page2)], search_params=PARAMS)


def test_build_statistics(combined):
    stats = build_statistics(combined)
    assert stats["total_ads_found"] == 3
    assert stats["average_price"] == 6000
    assert stats["price_range"] == {"min": 2000, "max": 10000}
    assert stats["location_distribution"] == {"Beograd": 2, "Niš": 1}
    assert stats["promoted_ads_count"] == 1
    assert stats["ads_with_storefront"] == 1
    assert stats["page_statistics"]["ads_per_page"] == [{"page": 1, "ads": 2}, {"page": 2, "ads": 1}]
    assert stats["page_statistics"]["average_ads_per_page"] == 1.5


def test_save_ads_json(tmp_path, combined):
    path = save_ads_json(combined, tmp_path / "out" / "ads.json", base_url="https://www.kupujemprodajem.com")
    doc = json.loads(path.read_text(encoding="utf-8"))

    assert doc["total_ads"] == 3
    assert [ad["raw"]["id"] for ad in doc["ads"]] == ["a2", "a3", "a1"]
    assert doc["ads"][0]["page_number"] == 1
    assert doc["ads"][0]["raw"]["location"]["name"] == "Niš"
    assert doc["parsing_stats"]["total_ads_found"] == 4
    assert doc["scraping_session"]["total_pages"] == 2
    assert doc["scraping_session"]["search_params"]["keywords"] == "ps5"
    assert "Chrome" in doc["scraping_session"]["user_agent"]
    assert len(doc["errors"]) == 1
    assert doc["errors"][0]["type"] == "MISSING_SELECTOR"
    assert doc["errors"][0]["page_number"] == 2


def test_save_output_rows_csv(tmp_path, combined):
    path = tmp_path / "ads.csv"
    df = save_output_rows(combined.sorted_ads(), path)
    assert len(df) == 3
    loaded = pd.read_csv(path)
    assert list(loaded["id"]) == ["a2", "a3", "a1"]
    assert list(loaded["price_value"]) == [2000, 6000, 10000]
    assert loaded.loc[0, "store_id"] == "GameZone"


def test_html_archive(tmp_path):
    archive = HtmlArchive(tmp_path / "html")
    path = archive(3, "<html>ok</html>")
    assert path.endswith("page_3.html")
    assert (tmp_path / "html" / "page_3.html").read_text(encoding="utf-8") == "<html>ok</html>"


def test_database_upsert_and_price_history(tmp_path, combined):
    conn = db_connect(str(tmp_path / "ads.db"))
    db_init(conn)

    assert save_combined_result(conn, combined) == (3, 3)
    assert db_get_ad(conn, "a1")["price_value"] == 10000
    assert db_get_ad(conn, "a2")["has_storefront"] == 1

    # same ads again, nothing changed
    assert save_combined_result(conn, combined) == (0, 0)

    ad = combined.ads[0]
    cheaper = replace(ad, record=replace(ad.record, price=AdPrice(9000.0, "RSD", "9.000 din")))
    assert upsert_with_price_history(conn, cheaper) == (False, True)
    assert db_get_ad(conn, "a1")["price_text"] == "9.000 din"

    history = export_price_history(conn, "a1")
    assert history["price_value"].iloc[-1] == 9000
    conn.close()


def test_unparsed_price_is_not_a_price_event(tmp_path):
    parser = PageParser()
    result = parser.parse(page_html([ad_html(ad_id="d1", price="Dogovor", href="/x/oglas/7")]), now=NOW)
    conn = db_connect(str(tmp_path / "ads.db"))
    db_init(conn)
    assert upsert_with_price_history(conn, result.ads[0]) == (True, False)
    assert export_price_history(conn).empty
    conn.close()
