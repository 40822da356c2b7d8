"""Tests for date formatting helpers."""

from datetime import date, datetime

import pytest

from carelink_log.dates import date_key, format_date, parse_date_key, day_of_week, is_weekend


def test_format_date():
    timestamp = datetime(2024, 1, 5, 7, 3, 59)
    assert format_date(timestamp, "date") == "2024-01-05"
    assert format_date(timestamp, "time") == "07:03"
    assert format_date(timestamp, "datetime") == "2024-01-05 07:03"


def test_format_date_unknown_format():
    with pytest.raises(ValueError, match="Unknown date format"):
        format_date(datetime(2024, 1, 5), "week")


def test_parse_date_key():
    assert parse_date_key("2024-02-29") == date(2024, 2, 29)
    with pytest.raises(ValueError):
        parse_date_key("2024/02/29")


@pytest.mark.parametrize("value,expected", [
    ("2024-01-01", "Mon"),
    ("2024-01-03", "Wed"),
    ("2024-01-06", "Sat"),
    (date(2024, 1, 7), "Sun"),
])
def test_day_of_week(value, expected):
    assert day_of_week(value) == expected


def test_is_weekend():
    assert is_weekend("2024-01-06")
    assert is_weekend(date(2024, 1, 7))
    assert not is_weekend("2024-01-08")


def test_date_key_pads_year():
    assert date_key(date(999, 12, 31)) == "0999-12-31"
    assert date_key(datetime(1, 1, 1, 0, 10)) == "0001-01-01"
    assert format_date(datetime(1, 1, 1, 0, 10), "datetime") == "0001-01-01 00:10"
    assert parse_date_key(date_key(date(1, 1, 1))) == date(1, 1, 1)
    assert day_of_week("0001-01-01") == "Mon"
