"""Tests for reminder recurrence rules."""

from datetime import date, datetime

from dateutil.rrule import MO, SU

from dosewatch.db.models import Reminder
from dosewatch.engine.recurrence import occurrence_on, to_rrule_weekday
from dosewatch.utils.time_utils import UTC


def make_reminder(at="08:00", days=None) -> Reminder:
    return Reminder(
        user_id=1,
        medicine_id=1,
        scheduled_time=at,
        days_of_week=list(range(7)) if days is None else days,
    )


def test_to_rrule_weekday():
    """0 = Sunday maps onto dateutil's Monday-based weekdays."""
    assert to_rrule_weekday(0) == SU
    assert to_rrule_weekday(1) == MO


def test_occurrence_on_daily():
    fires = occurrence_on(make_reminder("08:00"), date(2026, 3, 2), "UTC")
    assert fires == datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def test_occurrence_on_keeps_seconds():
    fires = occurrence_on(make_reminder("08:00:05"), date(2026, 3, 2), "UTC")
    assert fires == datetime(2026, 3, 2, 8, 0, 5, tzinfo=UTC)


def test_occurrence_on_local_timezone():
    """The time of day is in the patient's timezone; the result is UTC."""
    fires = occurrence_on(make_reminder("14:00"), date(2026, 3, 2), "Asia/Kolkata")
    assert fires == datetime(2026, 3, 2, 8, 30, tzinfo=UTC)


def test_occurrence_on_other_weekday():
    """A Sunday-only reminder does not fire on Monday."""
    reminder = make_reminder("08:00", days=[0])
    assert occurrence_on(reminder, date(2026, 3, 2), "UTC") is None
    assert occurrence_on(reminder, date(2026, 3, 1), "UTC") is not None


def test_occurrence_on_no_days():
    assert occurrence_on(make_reminder("08:00", days=[]), date(2026, 3, 2), "UTC") is None



def test_occurrence_on_midnight_belongs_to_its_own_day():
    """A Tuesday 00:00 reminder does not fire on Monday."""
    reminder = make_reminder("00:00", days=[2])
    assert occurrence_on(reminder, date(2026, 3, 2), "UTC") is None
    assert occurrence_on(reminder, date(2026, 3, 3), "UTC") == datetime(2026, 3, 3, 0, 0, tzinfo=UTC)


def test_occurrence_on_daily_midnight():
    fires = occurrence_on(make_reminder("00:00"), date(2026, 3, 2), "Asia/Kolkata")
    assert fires == datetime(2026, 3, 1, 18, 30, tzinfo=UTC)
