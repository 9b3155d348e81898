"""Tests for time utilities."""

from datetime import date, datetime, time
from zoneinfo import ZoneInfo

import pytest

from dosewatch.utils.time_utils import (
    format_duration,
    format_weekdays,
    from_utc,
    local_today,
    normalize_weekdays,
    parse_time_of_day,
    parse_weekdays,
    to_utc,
)


def test_to_utc():
    """Test timezone conversion to UTC."""
    # Create a datetime in EDT (March is DST)
    dt = datetime(2026, 3, 15, 14, 30, tzinfo=ZoneInfo("America/New_York"))
    utc_dt = to_utc(dt, "America/New_York")

    assert utc_dt.tzinfo == ZoneInfo("UTC")
    # EDT is UTC-4, so 14:30 EDT = 18:30 UTC
    assert utc_dt.hour == 18


def test_to_utc_naive_uses_given_timezone():
    """A naive datetime is read in the given timezone."""
    utc_dt = to_utc(datetime(2026, 3, 2, 14, 0), "Asia/Kolkata")
    assert (utc_dt.hour, utc_dt.minute) == (8, 30)


def test_from_utc():
    """Test timezone conversion from UTC."""
    # Create a UTC datetime
    dt = datetime(2026, 3, 15, 19, 30, tzinfo=ZoneInfo("UTC"))
    edt_dt = from_utc(dt, "America/New_York")

    assert edt_dt.tzinfo == ZoneInfo("America/New_York")
    assert edt_dt.hour == 15  # 19:30 UTC = 15:30 EDT


def test_local_today_crosses_midnight():
    """Late UTC evening is already tomorrow in India."""
    now = datetime(2026, 3, 2, 20, 0, tzinfo=ZoneInfo("UTC"))
    assert local_today("UTC", now) == date(2026, 3, 2)
    assert local_today("Asia/Kolkata", now) == date(2026, 3, 3)


def test_parse_time_of_day():
    assert parse_time_of_day("08:30") == time(8, 30)
    assert parse_time_of_day(" 23:59:58 ") == time(23, 59, 58)


@pytest.mark.parametrize("value", ["8:30", "24:00", "12:60", "noon", "12:00:00:00", ""])
def test_parse_time_of_day_invalid(value):
    with pytest.raises(ValueError):
        parse_time_of_day(value)


def test_parse_weekdays():
    """Test weekday parsing."""
    assert parse_weekdays("") == list(range(7))
    assert parse_weekdays("daily") == list(range(7))
    assert parse_weekdays("weekdays") == [1, 2, 3, 4, 5]
    assert parse_weekdays("weekends") == [0, 6]
    assert parse_weekdays("mon,wed,fri") == [1, 3, 5]
    assert parse_weekdays("Sunday, 3") == [0, 3]


def test_parse_weekdays_invalid():
    with pytest.raises(ValueError):
        parse_weekdays("funday")
    with pytest.raises(ValueError):
        parse_weekdays("7")


def test_normalize_weekdays():
    assert normalize_weekdays([5, 1, 1, 0]) == [0, 1, 5]
    with pytest.raises(ValueError):
        normalize_weekdays([-1])


def test_format_weekdays():
    assert format_weekdays(range(7)) == "daily"
    assert format_weekdays([5, 4, 3, 2, 1]) == "weekdays"
    assert format_weekdays([0, 6]) == "Sun, Sat"


def test_format_duration():
    """Test duration formatting."""
    assert format_duration(1) == "1 minute"
    assert format_duration(15) == "15 minutes"
    assert format_duration(60) == "1 hour"
    assert format_duration(90) == "1.5 hours"
    assert format_duration(120) == "2 hours"
