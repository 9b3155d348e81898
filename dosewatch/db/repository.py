"""Database repository - all SQL queries."""

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, List

import aiosqlite

from dosewatch.db.models import Caregiver, Medicine, Occurrence, OccurrenceStatus, Patient, Reminder
from dosewatch.utils.constants import OPEN_STATUSES
from dosewatch.utils.time_utils import UTC

logger = logging.getLogger(__name__)

# Columns an escalation step may write alongside a status change
OCCURRENCE_FIELDS = frozenset(
    {
        "sent_at",
        "confirmed_at",
        "confirmation_source",
        "voice_call_id",
        "voice_call_status",
        "escalated_at",
        "skipped_reason",
    }
)


def _ts(dt: datetime | None) -> str | None:
    """Serialize a datetime as an ISO-8601 UTC string."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat()


def _dt(value: str | None) -> datetime | None:
    return datetime.fromisoformat(value) if value else None


class Repository:
    """Database access layer."""

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def connect(self) -> None:
        """Open database connection."""
        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA foreign_keys = ON")
        logger.info(f"Connected to database at {self.db_path}")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            logger.info("Database connection closed")

    @property
    def db(self) -> aiosqlite.Connection:
        """Get the database connection."""
        if self._db is None:
            raise RuntimeError("Database not connected")
        return self._db

    async def _fetch_one(self, query: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        async with self.db.execute(query, tuple(params)) as cursor:
            return await cursor.fetchone()

    async def _fetch_all(self, query: str, params: Iterable[Any] = ()) -> List[aiosqlite.Row]:
        async with self.db.execute(query, tuple(params)) as cursor:
            return list(await cursor.fetchall())

    async def _write_returning(self, query: str, params: Iterable[Any] = ()) -> aiosqlite.Row | None:
        """Run an INSERT/UPDATE ... RETURNING statement and commit."""
        async with self.db.execute(query, tuple(params)) as cursor:
            rows = await cursor.fetchall()
        await self.db.commit()
        return rows[0] if rows else None

    # Patient operations

    async def create_user(self, patient: Patient) -> Patient:
        """Register a new patient."""
        row = await self._write_returning(
            """
            INSERT INTO users (name, phone_number, chat_id, timezone, is_active)
            VALUES (?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                patient.name,
                patient.phone_number,
                patient.chat_id,
                patient.timezone,
                1 if patient.is_active else 0,
            ),
        )
        logger.info(f"Created patient {row['id']} ({patient.name})")
        return self._row_to_patient(row)

    async def get_user_by_id(self, user_id: int) -> Patient | None:
        """Get a patient by database ID."""
        row = await self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))
        return self._row_to_patient(row) if row else None

    async def get_user_by_chat_id(self, chat_id: str) -> Patient | None:
        """Get a patient by messaging chat ID."""
        row = await self._fetch_one("SELECT * FROM users WHERE chat_id = ?", (str(chat_id),))
        return self._row_to_patient(row) if row else None

    # Medicine operations

    async def create_medicine(self, medicine: Medicine) -> Medicine:
        """Create a new medicine."""
        row = await self._write_returning(
            """
            INSERT INTO medicines (
                user_id, name, dosage, stock_quantity, low_stock_threshold, notes, is_active
            ) VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                medicine.user_id,
                medicine.name,
                medicine.dosage,
                max(medicine.stock_quantity, 0),
                medicine.low_stock_threshold,
                medicine.notes,
                1 if medicine.is_active else 0,
            ),
        )
        return self._row_to_medicine(row)

    async def get_medicine(self, medicine_id: int) -> Medicine | None:
        """Get a medicine by ID."""
        row = await self._fetch_one("SELECT * FROM medicines WHERE id = ?", (medicine_id,))
        return self._row_to_medicine(row) if row else None

    async def get_medicines_by_user(self, user_id: int) -> List[Medicine]:
        """Get all medicines of a patient."""
        rows = await self._fetch_all(
            "SELECT * FROM medicines WHERE user_id = ? ORDER BY name", (user_id,)
        )
        return [self._row_to_medicine(row) for row in rows]

    async def decrement_stock(self, medicine_id: int) -> Medicine | None:
        """Take one unit out of stock, never going below zero.

        A single UPDATE so concurrent confirmations cannot lose a decrement.
        Returns the updated medicine, or None if it does not exist.
        """
        row = await self._write_returning(
            """
            UPDATE medicines
            SET stock_quantity = MAX(stock_quantity - 1, 0)
            WHERE id = ?
            RETURNING *
            """,
            (medicine_id,),
        )
        return self._row_to_medicine(row) if row else None

    # Caregiver operations

    async def create_caregiver(self, caregiver: Caregiver) -> Caregiver:
        """Add a caregiver for a patient."""
        row = await self._write_returning(
            """
            INSERT INTO caregivers (user_id, name, phone_number, chat_id, relationship, should_notify)
            VALUES (?, ?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                caregiver.user_id,
                caregiver.name,
                caregiver.phone_number,
                caregiver.chat_id,
                caregiver.relationship,
                1 if caregiver.should_notify else 0,
            ),
        )
        return self._row_to_caregiver(row)

    async def get_notifiable_caregivers(self, user_id: int) -> List[Caregiver]:
        """Get the caregivers of a patient that want escalation alerts."""
        rows = await self._fetch_all(
            "SELECT * FROM caregivers WHERE user_id = ? AND should_notify = 1 ORDER BY id",
            (user_id,),
        )
        return [self._row_to_caregiver(row) for row in rows]

    # Reminder operations

    async def create_reminder(self, reminder: Reminder) -> Reminder:
        """Create a new reminder definition."""
        row = await self._write_returning(
            """
            INSERT INTO reminders (user_id, medicine_id, scheduled_time, days_of_week, is_active)
            VALUES (?, ?, ?, ?, ?)
            RETURNING *
            """,
            (
                reminder.user_id,
                reminder.medicine_id,
                reminder.scheduled_time,
                ",".join(str(d) for d in reminder.days_of_week),
                1 if reminder.is_active else 0,
            ),
        )
        return self._row_to_reminder(row)

    async def get_reminder(self, reminder_id: int) -> Reminder | None:
        """Get a reminder by ID."""
        row = await self._fetch_one("SELECT * FROM reminders WHERE id = ?", (reminder_id,))
        return self._row_to_reminder(row) if row else None

    async def get_active_reminders(self) -> List[Reminder]:
        """Get every active reminder (daily scheduler query)."""
        rows = await self._fetch_all(
            "SELECT * FROM reminders WHERE is_active = 1 ORDER BY scheduled_time"
        )
        return [self._row_to_reminder(row) for row in rows]

    async def get_reminders_by_user(
        self, user_id: int, active_only: bool = True
    ) -> List[Reminder]:
        """Get the reminders of a patient."""
        query = "SELECT * FROM reminders WHERE user_id = ?"
        if active_only:
            query += " AND is_active = 1"
        rows = await self._fetch_all(query + " ORDER BY scheduled_time", (user_id,))
        return [self._row_to_reminder(row) for row in rows]

    async def set_reminder_active(self, reminder_id: int, is_active: bool) -> bool:
        """Toggle a reminder on or off. Returns False if it does not exist."""
        cursor = await self.db.execute(
            "UPDATE reminders SET is_active = ?, updated_at = datetime('now') WHERE id = ?",
            (1 if is_active else 0, reminder_id),
        )
        await self.db.commit()
        return cursor.rowcount > 0

    async def mark_reminder_sent(self, reminder_id: int, sent_at: datetime) -> None:
        """Record when a reminder last fired."""
        await self.db.execute(
            "UPDATE reminders SET last_sent_at = ?, updated_at = datetime('now') WHERE id = ?",
            (_ts(sent_at), reminder_id),
        )
        await self.db.commit()

    # Occurrence operations

    async def get_or_create_occurrence(
        self,
        reminder_id: int,
        user_id: int,
        medicine_id: int,
        scheduled_for: datetime,
    ) -> Occurrence:
        """Get the occurrence for an identity key, creating it as pending if absent."""
        await self.db.execute(
            """
            INSERT INTO occurrences (reminder_id, user_id, medicine_id, scheduled_for, status)
            VALUES (?, ?, ?, ?, 'pending')
            ON CONFLICT (reminder_id, scheduled_for) DO NOTHING
            """,
            (reminder_id, user_id, medicine_id, _ts(scheduled_for)),
        )
        await self.db.commit()

        occurrence = await self.get_occurrence_by_key(reminder_id, scheduled_for)
        if occurrence is None:
            raise RuntimeError(
                f"Occurrence for reminder {reminder_id} at {scheduled_for.isoformat()} "
                "vanished after insert"
            )
        return occurrence

    async def get_occurrence(self, occurrence_id: int) -> Occurrence | None:
        """Get an occurrence by ID."""
        row = await self._fetch_one("SELECT * FROM occurrences WHERE id = ?", (occurrence_id,))
        return self._row_to_occurrence(row) if row else None

    async def get_occurrence_by_key(
        self, reminder_id: int, scheduled_for: datetime
    ) -> Occurrence | None:
        """Get an occurrence by its identity key."""
        row = await self._fetch_one(
            "SELECT * FROM occurrences WHERE reminder_id = ? AND scheduled_for = ?",
            (reminder_id, _ts(scheduled_for)),
        )
        return self._row_to_occurrence(row) if row else None

    async def occurrence_exists(
        self,
        reminder_id: int,
        scheduled_for: datetime,
        statuses: Iterable[OccurrenceStatus],
    ) -> bool:
        """Check whether the identity key has an occurrence in one of the statuses."""
        statuses = list(statuses)
        placeholders = ", ".join("?" for _ in statuses)
        row = await self._fetch_one(
            f"""
            SELECT 1 FROM occurrences
            WHERE reminder_id = ? AND scheduled_for = ? AND status IN ({placeholders})
            """,
            (reminder_id, _ts(scheduled_for), *statuses),
        )
        return row is not None

    async def get_latest_open_occurrence(
        self, user_id: int, reminder_id: int | None = None
    ) -> Occurrence | None:
        """Get the most recent non-terminal occurrence of a patient."""
        statuses = sorted(OPEN_STATUSES)
        placeholders = ", ".join("?" for _ in statuses)
        query = f"SELECT * FROM occurrences WHERE user_id = ? AND status IN ({placeholders})"
        params: list[Any] = [user_id, *statuses]
        if reminder_id is not None:
            query += " AND reminder_id = ?"
            params.append(reminder_id)

        row = await self._fetch_one(query + " ORDER BY scheduled_for DESC, id DESC LIMIT 1", params)
        return self._row_to_occurrence(row) if row else None

    async def get_occurrences_by_user(
        self,
        user_id: int,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> List[Occurrence]:
        """Get the escalation log of a patient, oldest first."""
        query = "SELECT * FROM occurrences WHERE user_id = ?"
        params: list[Any] = [user_id]
        if since is not None:
            query += " AND scheduled_for >= ?"
            params.append(_ts(since))
        if until is not None:
            query += " AND scheduled_for < ?"
            params.append(_ts(until))

        rows = await self._fetch_all(query + " ORDER BY scheduled_for, id", params)
        return [self._row_to_occurrence(row) for row in rows]

    async def transition_occurrence(
        self,
        occurrence_id: int,
        from_statuses: Iterable[OccurrenceStatus],
        to_status: OccurrenceStatus,
        **fields: Any,
    ) -> Occurrence | None:
        """Compare-and-set the status of one occurrence.

        The row is only updated while its status is still one of
        ``from_statuses``. Returns the updated occurrence, or None when another
        writer got there first.
        """
        updates, params = self._occurrence_updates(fields)
        updates.insert(0, "status = ?")
        params.insert(0, to_status)

        from_statuses = list(from_statuses)
        placeholders = ", ".join("?" for _ in from_statuses)
        row = await self._write_returning(
            f"""
            UPDATE occurrences SET {', '.join(updates)}
            WHERE id = ? AND status IN ({placeholders})
            RETURNING *
            """,
            (*params, occurrence_id, *from_statuses),
        )
        return self._row_to_occurrence(row) if row else None

    async def update_occurrence(self, occurrence_id: int, **fields: Any) -> None:
        """Write escalation details without touching the status."""
        updates, params = self._occurrence_updates(fields)
        if not updates:
            return

        params.append(occurrence_id)
        await self.db.execute(
            f"UPDATE occurrences SET {', '.join(updates)} WHERE id = ?", params
        )
        await self.db.commit()

    # Helper methods

    def _occurrence_updates(self, fields: dict[str, Any]) -> tuple[list[str], list[Any]]:
        unknown = set(fields) - OCCURRENCE_FIELDS
        if unknown:
            raise ValueError(f"Unknown occurrence fields: {sorted(unknown)}")

        updates = []
        params = []
        for name, value in fields.items():
            updates.append(f"{name} = ?")
            params.append(_ts(value) if isinstance(value, datetime) else value)
        return updates, params

    def _row_to_patient(self, row: aiosqlite.Row) -> Patient:
        return Patient(
            id=row["id"],
            name=row["name"],
            phone_number=row["phone_number"],
            chat_id=row["chat_id"],
            timezone=row["timezone"],
            is_active=bool(row["is_active"]),
            created_at=_dt(row["created_at"]),
        )

    def _row_to_medicine(self, row: aiosqlite.Row) -> Medicine:
        return Medicine(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            dosage=row["dosage"],
            stock_quantity=row["stock_quantity"],
            low_stock_threshold=row["low_stock_threshold"],
            notes=row["notes"],
            is_active=bool(row["is_active"]),
            created_at=_dt(row["created_at"]),
        )

    def _row_to_caregiver(self, row: aiosqlite.Row) -> Caregiver:
        return Caregiver(
            id=row["id"],
            user_id=row["user_id"],
            name=row["name"],
            phone_number=row["phone_number"],
            chat_id=row["chat_id"],
            relationship=row["relationship"],
            should_notify=bool(row["should_notify"]),
            created_at=_dt(row["created_at"]),
        )

    def _row_to_reminder(self, row: aiosqlite.Row) -> Reminder:
        """Convert a database row to a Reminder object."""
        days = row["days_of_week"]
        return Reminder(
            id=row["id"],
            user_id=row["user_id"],
            medicine_id=row["medicine_id"],
            scheduled_time=row["scheduled_time"],
            days_of_week=[int(d) for d in days.split(",")] if days else [],
            is_active=bool(row["is_active"]),
            last_sent_at=_dt(row["last_sent_at"]),
            created_at=_dt(row["created_at"]),
            updated_at=_dt(row["updated_at"]),
        )

    def _row_to_occurrence(self, row: aiosqlite.Row) -> Occurrence:
        """Convert a database row to an Occurrence object."""
        return Occurrence(
            id=row["id"],
            reminder_id=row["reminder_id"],
            user_id=row["user_id"],
            medicine_id=row["medicine_id"],
            scheduled_for=datetime.fromisoformat(row["scheduled_for"]),
            status=row["status"],  # type: ignore
            sent_at=_dt(row["sent_at"]),
            confirmed_at=_dt(row["confirmed_at"]),
            confirmation_source=row["confirmation_source"],  # type: ignore
            voice_call_id=row["voice_call_id"],
            voice_call_status=row["voice_call_status"],
            escalated_at=_dt(row["escalated_at"]),
            skipped_reason=row["skipped_reason"],
            created_at=_dt(row["created_at"]),
        )
