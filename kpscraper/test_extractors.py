"""
Tests for the field extractors.
"""
from datetime import datetime, timedelta, timezone

import pytest

from kpscraper.extractors import (
    extract_days_ago,
    extract_description,
    normalize_number,
    parse_count,
    parse_images,
    parse_location,
    parse_metrics,
    parse_posted_date,
    parse_price,
    parse_seller,
)

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "text, amount, currency",
    [
        ("690 din", 690.0, "RSD"),
        ("12.500 din", 12500.0, "RSD"),
        ("1.250.000 din", 1250000.0, "RSD"),
        ("12500din", 12500.0, "RSD"),
        ("12 500 din", 12500.0, "RSD"),
        ("12\xa0500 din", 12500.0, "RSD"),
        ("1 250 000 din", 1250000.0, "RSD"),
        ("1 234,50 €", 1234.5, "EUR"),
        ("  4.999   DIN ", 4999.0, "RSD"),
        ("300 rsd", 300.0, "RSD"),
        ("45 EUR", 45.0, "EUR"),
        ("49,99 €", 49.99, "EUR"),
        ("1.234,50 €", 1234.5, "EUR"),
        ("20 $", 20.0, "USD"),
        ("15 usd", 15.0, "USD"),
        ("Cena: 7 din", 7.0, "RSD"),
    ],
)
def test_parse_price_known_formats(text, amount, currency):
    price = parse_price(text)
    assert price.amount == amount
    assert price.currency == currency
    assert price.formatted == " ".join(text.split())


@pytest.mark.parametrize("text", ["Dogovor", "Kontakt", "Pozvati", "din", "", "€ na upit"])
def test_parse_price_unparsed_keeps_text(text):
    price = parse_price(text)
    assert price.amount == 0
    assert price.currency == "RSD"
    assert price.formatted == " ".join(text.split())


def test_parse_price_none():
    price = parse_price(None)
    assert price.amount == 0
    assert price.formatted == ""


@pytest.mark.parametrize(
    "token, expected",
    [("12.500", 12500.0), ("12.5", 12.5), ("1,5", 1.5), ("1,500", 1500.0), ("1,234.50", 1234.5)],
)
def test_normalize_number(token, expected):
    assert normalize_number(token) == expected


def test_parse_location_normalizes_whitespace():
    loc = parse_location("  Novi   Sad \n")
    assert loc.name == "Novi Sad"
    assert loc.has_delivery is False


def test_parse_location_delivery_is_explicit():
    assert parse_location("Niš", has_delivery=True).has_delivery is True


@pytest.mark.parametrize(
    "text, delta",
    [
        ("pre 3 dana", timedelta(days=3)),
        ("pre 1 dan", timedelta(days=1)),
        ("pre 5 sati", timedelta(hours=5)),
        ("pre 2 sata", timedelta(hours=2)),
        ("pre 1 sat", timedelta(hours=1)),
        ("pre 45 minuta", timedelta(minutes=45)),
        ("Pre 10 Minuta", timedelta(minutes=10)),
    ],
)
def test_parse_posted_date(text, delta):
    assert parse_posted_date(text, now=NOW) == NOW - delta


@pytest.mark.parametrize(
    "text",
    ["", None, "juče", "danas u 10:15", "pre nekoliko dana", "pre 3 nedelje",
     "pre 999999 dana", "pre 99999999999 minuta"],
)
def test_parse_posted_date_unknown_is_none(text):
    assert parse_posted_date(text, now=NOW) is None


@pytest.mark.parametrize(
    "text, days",
    [
        ("pre 3 dana", 3),
        ("pre 1 dan", 1),
        ("pre 12 dana", 12),
        # hour and minute postings count as 0 days ago
        ("pre 5 sati", 0),
        ("pre 30 minuta", 0),
        ("juče", 0),
        ("", 0),
        (None, 0),
    ],
)
def test_extract_days_ago(text, days):
    assert extract_days_ago(text) == days


def test_parse_seller_with_storefront():
    seller = parse_seller("https://gamezone.kpizlog.rs", " Game Zone! ")
    assert seller.has_storefront is True
    assert seller.store_url == "https://gamezone.kpizlog.rs"
    assert seller.store_id == "GameZone"


def test_parse_seller_without_storefront():
    seller = parse_seller(None, "ignored")
    assert seller.has_storefront is False
    assert seller.store_url is None
    assert seller.store_id is None


@pytest.mark.parametrize("text, expected", [("120", 120), (" 7 ", 7), ("", 0), (None, 0), ("n/a", 0), ("-3", 0)])
def test_parse_count(text, expected):
    assert parse_count(text) == expected


def test_parse_metrics_positional_counters():
    metrics = parse_metrics(["120", "7"], "pre 2 dana", now=NOW)
    assert metrics.views == 120
    assert metrics.favorites == 7
    assert metrics.posted_ago_text == "pre 2 dana"
    assert metrics.posted_date == NOW - timedelta(days=2)


def test_parse_metrics_missing_widgets_default_to_zero():
    metrics = parse_metrics([], "", now=NOW)
    assert (metrics.views, metrics.favorites) == (0, 0)
    assert metrics.posted_date is None

    only_views = parse_metrics(["33"], "pre 1 dan", now=NOW)
    assert (only_views.views, only_views.favorites) == (33, 0)


def test_parse_images_uses_style_when_attributes_missing():
    images = parse_images({"src": "https://img/1.jpg", "alt": "PS5", "style": "width: 160px; height: 120px"})
    assert len(images) == 1
    assert images[0].url == "https://img/1.jpg"
    assert images[0].alt_text == "PS5"
    assert images[0].width == "160px"
    assert images[0].height == "120px"
    assert images[0].loading is None


def test_parse_images_empty():
    assert parse_images(None) == ()
    assert parse_images({}) == ()


def test_extract_description_skips_price_and_time_lines():
    paragraphs = ["Beograd", "12.500 din za ceo paket bez cenjkanja", "pre 3 dana je postavljeno", "Konzola je u odlicnom stanju, malo koriscena"]
    assert extract_description(paragraphs) == "Konzola je u odlicnom stanju, malo koriscena"
    assert extract_description(["kratko"]) == ""
