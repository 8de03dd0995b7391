import pytest

from ingest.normalize import best_thumbnail, clamp_limit, date_prefix, parse_counter, parse_iso_duration


@pytest.mark.parametrize(
    "value, seconds",
    [("PT1H2M3S", 3723), ("PT45S", 45), ("PT2M", 120), ("PT1H", 3600), ("P0D", 0), ("", 0), (None, 0)],
)
def test_parse_iso_duration(value, seconds):
    assert parse_iso_duration(value) == seconds


@pytest.mark.parametrize("value, expected", [("1234", 1234), (56, 56), (None, 0), ("n/a", 0), ("-5", 0)])
def test_parse_counter(value, expected):
    assert parse_counter(value) == expected


def test_best_thumbnail_prefers_highest_resolution():
    thumbs = {
        "default": {"url": "d.jpg"},
        "high": {"url": "h.jpg"},
        "standard": {"url": "s.jpg"},
    }
    assert best_thumbnail(thumbs) == "s.jpg"
    assert best_thumbnail({"default": {"url": "d.jpg"}}) == "d.jpg"
    assert best_thumbnail({}) == ""
    assert best_thumbnail(None) == ""


def test_date_prefix():
    assert date_prefix("2024-03-01T12:00:00Z") == "2024-03-01"
    assert date_prefix("2024-03-01") == "2024-03-01"
    assert date_prefix(None) == ""


@pytest.mark.parametrize(
    "raw, expected",
    [(None, 10), ("abc", 10), (25, 25), ("25", 25), (0, 1), (-3, 1), (500, 100), ("7.9", 7)],
)
def test_clamp_limit(raw, expected):
    assert clamp_limit(raw) == expected


def test_clamp_limit_ceiling_cannot_be_raised(monkeypatch):
    import config

    monkeypatch.setattr(config, "INGEST_MAX_LIMIT", 5000)
    assert clamp_limit(500) == 100
    assert clamp_limit(500, maximum=1000) == 100
    assert clamp_limit(30, maximum=50) == 30
