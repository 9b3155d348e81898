"""Time and timezone utilities."""

from datetime import date, datetime, time
from typing import Iterable, List
from zoneinfo import ZoneInfo

from dosewatch.utils.constants import ALL_WEEKDAYS, WEEKDAY_NAMES

UTC = ZoneInfo("UTC")


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def to_utc(dt: datetime, tz: str) -> datetime:
    """Convert a timezone-aware datetime to UTC."""
    if dt.tzinfo is None:
        # Assume it's in the given timezone
        dt = dt.replace(tzinfo=ZoneInfo(tz))
    return dt.astimezone(UTC)


def from_utc(dt: datetime, tz: str) -> datetime:
    """Convert a UTC datetime to the given timezone."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(ZoneInfo(tz))


def local_today(tz: str, now: datetime | None = None) -> date:
    """The calendar date in the given timezone."""
    if now is None:
        now = utc_now()
    return from_utc(now, tz).date()


def parse_time_of_day(value: str) -> time:
    """Parse a 24h clock value in HH:MM or HH:MM:SS format.

    Raises:
        ValueError: If the value is not a valid 24h clock time
    """
    parts = value.strip().split(":")
    if len(parts) not in (2, 3) or not all(p.isdigit() and len(p) == 2 for p in parts):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")

    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    if hour > 23 or minute > 59 or second > 59:
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")

    return time(hour, minute, second)


def normalize_weekdays(days: Iterable[int]) -> List[int]:
    """Validate a weekday set and return it sorted without duplicates.

    Raises:
        ValueError: If any value is outside 0..6
    """
    result = sorted(set(days))
    invalid = [d for d in result if d not in ALL_WEEKDAYS]
    if invalid:
        raise ValueError(f"Invalid weekdays {invalid}: expected values 0 (Sun) to 6 (Sat)")
    return result


def parse_weekdays(text: str) -> List[int]:
    """Parse weekdays from text like "1,2,3", "mon,wed,fri", "daily" or "weekdays"."""
    text = text.lower().strip()

    if text in ("", "daily", "everyday", "all"):
        return list(range(7))
    if text == "weekdays":
        return [1, 2, 3, 4, 5]
    if text == "weekends":
        return [0, 6]

    names = [name.lower() for name in WEEKDAY_NAMES]
    days = []
    for token in text.split(","):
        token = token.strip()
        if token.isdigit():
            days.append(int(token))
        elif token[:3] in names:
            days.append(names.index(token[:3]))
        else:
            raise ValueError(f"Unknown weekday: {token!r}")

    return normalize_weekdays(days)


def format_weekdays(days: Iterable[int]) -> str:
    """Format a weekday set for display."""
    days = sorted(days)
    if days == list(range(7)):
        return "daily"
    if days == [1, 2, 3, 4, 5]:
        return "weekdays"
    return ", ".join(WEEKDAY_NAMES[d] for d in days)


def format_duration(minutes: int) -> str:
    """Format minutes into a human-readable duration.

    Examples:
        15 -> "15 minutes"
        60 -> "1 hour"
        90 -> "1.5 hours"
    """
    if minutes < 60:
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    hours = minutes / 60
    if hours == int(hours):
        return f"{int(hours)} hour{'s' if hours != 1 else ''}"
    return f"{hours:.1f} hours"
