"""Data models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Literal

from dosewatch.utils.constants import DEFAULT_LOW_STOCK_THRESHOLD


OccurrenceStatus = Literal[
    "pending",
    "sent",
    "voice_escalated",
    "caregiver_escalated",
    "confirmed",
    "skipped",
]
ConfirmationSource = Literal["message", "voice"]


@dataclass
class Patient:
    """A patient taking medicine."""

    name: str
    phone_number: str  # voice recipient
    chat_id: str  # message recipient
    timezone: str
    is_active: bool = True
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class Medicine:
    """A medicine with a tracked stock."""

    user_id: int
    name: str
    dosage: str | None = None
    stock_quantity: int = 0
    low_stock_threshold: int = DEFAULT_LOW_STOCK_THRESHOLD
    notes: str | None = None
    is_active: bool = True
    created_at: datetime | None = None
    id: int | None = None

    @property
    def is_low(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold


@dataclass
class Caregiver:
    """Family member or nurse alerted at the last escalation step."""

    user_id: int
    name: str
    phone_number: str
    chat_id: str | None = None
    relationship: str | None = None
    should_notify: bool = True
    created_at: datetime | None = None
    id: int | None = None


@dataclass
class Reminder:
    """A recurring medicine schedule (time of day on a set of weekdays)."""

    user_id: int
    medicine_id: int
    scheduled_time: str  # HH:MM, 24-hour
    days_of_week: List[int] = field(default_factory=lambda: list(range(7)))  # 0 = Sunday
    is_active: bool = True
    last_sent_at: datetime | None = None  # UTC
    created_at: datetime | None = None
    updated_at: datetime | None = None
    id: int | None = None


@dataclass
class Occurrence:
    """One concrete firing of a reminder, tracked through escalation.

    Identity is (reminder_id, scheduled_for).
    """

    reminder_id: int
    user_id: int
    medicine_id: int
    scheduled_for: datetime  # UTC
    status: OccurrenceStatus = "pending"
    sent_at: datetime | None = None
    confirmed_at: datetime | None = None
    confirmation_source: ConfirmationSource | None = None
    voice_call_id: str | None = None
    voice_call_status: str | None = None
    escalated_at: datetime | None = None
    skipped_reason: str | None = None
    created_at: datetime | None = None
    id: int | None = None
