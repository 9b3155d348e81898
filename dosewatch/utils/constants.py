"""Constants and default values."""

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class EscalationDelays:
    """Delays between the three escalation steps."""

    voice: timedelta = timedelta(minutes=15)  # message -> voice call
    caregiver: timedelta = timedelta(minutes=15)  # voice call -> caregiver alert

    @classmethod
    def from_minutes(cls, voice: int, caregiver: int) -> "EscalationDelays":
        return cls(voice=timedelta(minutes=voice), caregiver=timedelta(minutes=caregiver))


DEFAULT_ESCALATION_DELAYS = EscalationDelays()

# Occurrence statuses
OPEN_STATUSES = frozenset({"pending", "sent", "voice_escalated"})

# An occurrence in one of these states means the scheduler must not queue it again
ALREADY_SCHEDULED_STATUSES = frozenset(
    {"sent", "confirmed", "voice_escalated", "caregiver_escalated"}
)

# Voice call statuses recorded on an occurrence
CALL_INITIATED = "initiated"
CALL_FAILED = "failed"

# Stock
DEFAULT_LOW_STOCK_THRESHOLD = 5

# Weekdays, 0 = Sunday
WEEKDAY_NAMES = ["Sun", "Mon", "Tue", "Wed", "Thu", "Fri", "Sat"]
ALL_WEEKDAYS = frozenset(range(7))

# Snooze
DEFAULT_SNOOZE_MINUTES = 15
MAX_SNOOZE_MINUTES = 24 * 60
