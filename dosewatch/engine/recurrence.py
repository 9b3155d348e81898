"""RRULE-based recurrence for weekday/time-of-day reminders."""

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from dateutil.rrule import WEEKLY, rrule, weekday

from dosewatch.db.models import Reminder
from dosewatch.utils.time_utils import parse_time_of_day, to_utc


def to_rrule_weekday(day: int) -> weekday:
    """Map a Sunday-based weekday number (0 = Sunday) to a dateutil weekday."""
    return weekday((day - 1) % 7)


def build_rrule(reminder: Reminder, dtstart: datetime) -> rrule | None:
    """Build the weekly rule for a reminder, or None if it has no weekdays."""
    if not reminder.days_of_week:
        return None

    at = parse_time_of_day(reminder.scheduled_time)
    return rrule(
        WEEKLY,
        dtstart=dtstart,
        byweekday=[to_rrule_weekday(d) for d in reminder.days_of_week],
        byhour=at.hour,
        byminute=at.minute,
        bysecond=at.second,
    )


def occurrence_on(reminder: Reminder, day: date, tz: str) -> datetime | None:
    """When the reminder fires on a given local calendar day.

    Args:
        reminder: The reminder definition
        day: Calendar date in the patient's timezone
        tz: The patient's timezone

    Returns:
        The firing time as a UTC datetime, or None if the reminder does not
        fire on that weekday
    """
    start = datetime.combine(day, time(0), tzinfo=ZoneInfo(tz))
    rule = build_rrule(reminder, start)
    if rule is None:
        return None

    # between() with inc=True also returns the next midnight
    window = rule.between(start, start + timedelta(days=1), inc=True)
    matches = [m for m in window if m.date() == day]
    if not matches:
        return None

    return to_utc(matches[0], tz)

