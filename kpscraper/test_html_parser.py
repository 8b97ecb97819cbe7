"""
Tests for the page parser.
"""
from datetime import datetime, timezone

import pytest

from kpscraper.ad_builder import AdRecordBuilder
from kpscraper.conftest import ad_html, page_html
from kpscraper.html_parser import PageParser
from kpscraper.models import ErrorType, WarningType

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def three_ads(second_title="Horizon Forbidden West"):
    return [
        ad_html(ad_id="a1", title="PS5 Bundle", href="/x/oglas/1"),
        ad_html(ad_id="a2", title=second_title, price="3.500 din", posted="pre 5 sati", href="/x/oglas/2"),
        ad_html(ad_id="a3", title="DualSense", price="45 EUR", posted="pre 20 minuta", href="/x/oglas/3"),
    ]


def test_parse_page_stats():
    result = PageParser().parse(page_html(three_ads()), now=NOW)
    assert result.success is True
    assert result.stats.total_found == 3
    assert result.stats.succeeded == 3
    assert result.stats.failed == 0
    assert result.errors == ()
    assert [ad.record.id for ad in result.ads] == ["a1", "a2", "a3"]
    assert [ad.parsed.posted_days_ago for ad in result.ads] == [3, 0, 0]
    assert result.ads[2].record.price.currency == "EUR"
    assert result.stats.elapsed_ms >= 0


def test_missing_title_increments_failed_by_one():
    parser = PageParser()
    good = parser.parse(page_html(three_ads()), now=NOW)
    bad = parser.parse(page_html(three_ads(second_title=None)), now=NOW)
    assert bad.stats.total_found == good.stats.total_found
    assert bad.stats.failed == good.stats.failed + 1
    assert bad.stats.succeeded == good.stats.succeeded - 1
    assert bad.success is False
    assert bad.errors[0].ad_index == 1
    assert bad.errors[0].field_name == "title"


def test_page_without_ads():
    result = PageParser().parse("<html><body><p>Nema rezultata</p></body></html>")
    assert result.success is True
    assert result.ads == ()
    assert result.stats.total_found == 0


@pytest.mark.parametrize(
    "html",
    [
        "",
        "   \n ",
        "<<<>>>",
        "<section id='x' class='AdItem_adOuterHolder__a'>",
        "plain text, no markup at all",
        b"\xff\xfe\x00<html>",
        b"<html><body></body></html>",
        "<html><body><section id='x' class='AdItem_adOuterHolder__a'><div class='AdItem_name__Knlo6'>",
    ],
)
def test_parse_never_raises(html):
    result = PageParser().parse(html)
    assert result.stats.succeeded == len(result.ads)
    if not result.success and result.stats.total_found == 0:
        assert len(result.errors) == 1


def test_empty_document_is_total_failure():
    result = PageParser().parse("")
    assert result.success is False
    assert result.stats.total_found == 0
    assert result.stats.succeeded == 0
    assert result.stats.failed == 0
    assert len(result.errors) == 1
    assert result.errors[0].type == ErrorType.EXTRACTION_FAILED
    # counts do not add up to total_found on a total failure
    assert result.stats.succeeded + result.stats.failed == result.stats.total_found == 0


def test_parse_none_is_a_programming_error():
    with pytest.raises(TypeError):
        PageParser().parse(None)


class ExplodingBuilder(AdRecordBuilder):
    def build_from_node(self, node, ad_index=None, now=None):
        if ad_index == 1:
            raise ValueError("boom")
        return super().build_from_node(node, ad_index=ad_index, now=now)


def test_one_bad_ad_does_not_abort_page():
    parser = PageParser(builder=ExplodingBuilder())
    result = parser.parse(page_html(three_ads()), now=NOW)
    assert result.stats.total_found == 3
    assert result.stats.succeeded == 2
    assert result.stats.failed == 1
    err = result.errors[0]
    assert err.type == ErrorType.EXTRACTION_FAILED
    assert err.ad_index == 1
    assert "boom" in err.message


def test_reparse_is_idempotent():
    html = page_html(three_ads())
    parser = PageParser()
    first = parser.parse(html, now=NOW)
    second = parser.parse(html, now=NOW)
    assert [a.record for a in first.ads] == [a.record for a in second.ads]
    assert [a.record.to_dict() for a in first.ads] == [a.record.to_dict() for a in second.ads]


def test_container_fallback_selector():
    html = page_html(three_ads()).replace('section id="', 'section data-x="1" data-id="')
    result = PageParser().parse(html, now=NOW)
    assert result.stats.total_found == 3
    assert result.warnings[0].type == WarningType.FALLBACK_USED
    assert result.warnings[0].field_name == "ad_container"


def test_parse_file(tmp_path):
    path = tmp_path / "page_1.html"
    path.write_text(page_html(three_ads()), encoding="utf-8")
    result = PageParser().parse_file(path, now=NOW)
    assert result.stats.succeeded == 3
    assert result.stats.html_size_kb == round(len(path.read_text(encoding="utf-8")) / 1024)


def test_parse_missing_file(tmp_path):
    result = PageParser().parse_file(tmp_path / "nope.html")
    assert result.success is False
    assert result.stats.total_found == 0
    assert len(result.errors) == 1


def test_out_of_range_posted_time_keeps_the_ad():
    html = page_html([ad_html(ad_id="far", posted="pre 999999 dana", href="/x/oglas/1")])
    result = PageParser().parse(html, now=NOW)
    assert result.stats.total_found == 1
    assert result.stats.succeeded == 1
    assert result.errors == ()
    ad = result.ads[0]
    assert ad.record.metrics.posted_date is None
    assert ad.record.metrics.posted_ago_text == "pre 999999 dana"
    assert [(w.type, w.field_name) for w in result.warnings] == [(WarningType.INCOMPLETE_DATA, "posted_time")]
