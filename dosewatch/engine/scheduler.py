"""Daily scheduler: turns reminder definitions into queued occurrences."""

import logging
from datetime import date, datetime, time, timedelta
from typing import Callable, Dict, List
from zoneinfo import ZoneInfo

from dosewatch.db.models import Occurrence, Patient, Reminder
from dosewatch.db.repository import Repository
from dosewatch.engine.errors import NotFoundError
from dosewatch.engine.recurrence import occurrence_on
from dosewatch.engine.task_queue import DelayedTaskQueue, Task, sends_of, task_id_for
from dosewatch.utils.constants import ALREADY_SCHEDULED_STATUSES
from dosewatch.utils.time_utils import (
    local_today,
    normalize_weekdays,
    parse_time_of_day,
    to_utc,
    utc_now,
)

logger = logging.getLogger(__name__)


class DailyScheduler:
    """Queues today's send-message tasks, idempotently."""

    def __init__(
        self,
        repo: Repository,
        queue: DelayedTaskQueue,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.queue = queue
        self.clock = clock

    async def create_reminder(self, reminder: Reminder) -> Reminder:
        """Validate and save a reminder, then schedule it for today if due.

        Raises:
            ValueError: If the time of day or weekdays are invalid
            NotFoundError: If the medicine does not exist or belongs to someone else
        """
        at = parse_time_of_day(reminder.scheduled_time)
        reminder.scheduled_time = at.strftime("%H:%M:%S" if at.second else "%H:%M")
        reminder.days_of_week = normalize_weekdays(reminder.days_of_week)

        medicine = await self.repo.get_medicine(reminder.medicine_id)
        if medicine is None or medicine.user_id != reminder.user_id:
            raise NotFoundError(f"Medicine {reminder.medicine_id} not found")

        saved = await self.repo.create_reminder(reminder)
        logger.info(f"Reminder created: {saved.id}")

        await self.schedule_reminder_for_today(saved)
        return saved

    async def schedule_today(self) -> int:
        """Queue every active reminder due later today.

        Safe to run any number of times a day. Returns how many tasks were
        newly queued.
        """
        reminders = await self.repo.get_active_reminders()
        logger.info(f"Scheduling reminders for today ({len(reminders)} active)")

        patients: Dict[int, Patient | None] = {}
        scheduled = 0
        for reminder in reminders:
            if reminder.user_id not in patients:
                patients[reminder.user_id] = await self.repo.get_user_by_id(reminder.user_id)

            try:
                if await self.schedule_reminder_for_today(reminder, patients[reminder.user_id]):
                    scheduled += 1
            except Exception:
                logger.error(f"Failed to schedule reminder {reminder.id}", exc_info=True)

        logger.info(f"{scheduled} reminders scheduled")
        return scheduled

    async def schedule_reminder_for_today(
        self, reminder: Reminder, patient: Patient | None = None
    ) -> bool:
        """Queue one reminder's send-message task for today.

        Returns True if a new task was queued.
        """
        if not reminder.is_active:
            return False

        if patient is None:
            patient = await self.repo.get_user_by_id(reminder.user_id)
        if patient is None:
            logger.error(f"Patient {reminder.user_id} of reminder {reminder.id} not found")
            return False

        now = self.clock()
        scheduled_for = occurrence_on(reminder, local_today(patient.timezone, now), patient.timezone)
        if scheduled_for is None:
            return False

        if scheduled_for < now:
            logger.debug(f"Skipping past reminder {reminder.id}")
            return False

        if await self.repo.occurrence_exists(
            reminder.id, scheduled_for, ALREADY_SCHEDULED_STATUSES  # type: ignore
        ):
            logger.debug(f"Already scheduled: {reminder.id}")
            return False

        task = Task(
            kind="send_message",
            reminder_id=reminder.id,  # type: ignore
            user_id=reminder.user_id,
            medicine_id=reminder.medicine_id,
            scheduled_for=scheduled_for,
        )
        delay = max(scheduled_for - now, timedelta(0))
        if await self.queue.enqueue(task_id_for(task), task, delay) == "duplicate":
            logger.debug(f"Already queued: {reminder.id}")
            return False

        logger.info(
            f"Scheduled: {reminder.id} at {scheduled_for.isoformat()} "
            f"(in {round(delay.total_seconds())}s)"
        )
        return True

    async def trigger_now(self, reminder_id: int, delay: timedelta = timedelta(seconds=5)) -> datetime:
        """Fire a reminder shortly, whatever its schedule says.

        Returns the scheduled time of the new occurrence (UTC).
        """
        reminder = await self.repo.get_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder {reminder_id} not found")

        now = self.clock()
        scheduled_for = (now + delay).replace(microsecond=0)
        task = Task(
            kind="send_message",
            reminder_id=reminder_id,
            user_id=reminder.user_id,
            medicine_id=reminder.medicine_id,
            scheduled_for=scheduled_for,
        )
        await self.queue.enqueue(task_id_for(task), task, max(scheduled_for - now, timedelta(0)))

        logger.info(f"Test trigger queued for reminder {reminder_id} at {scheduled_for.isoformat()}")
        return scheduled_for

    async def set_reminder_active(self, reminder_id: int, is_active: bool) -> Reminder:
        """Pause or resume a reminder. Resuming schedules it for today if due."""
        if not await self.repo.set_reminder_active(reminder_id, is_active):
            raise NotFoundError(f"Reminder {reminder_id} not found")

        reminder = await self.repo.get_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder {reminder_id} not found")

        if is_active:
            logger.info(f"Reminder {reminder_id} resumed")
            await self.schedule_reminder_for_today(reminder)
        else:
            cancelled = await self.queue.cancel_all(sends_of(reminder_id))
            logger.info(f"Reminder {reminder_id} paused ({cancelled} queued sends cancelled)")
        return reminder

    async def list_reminders(self, user_id: int) -> List[Reminder]:
        """A patient's reminder definitions, paused ones included."""
        return await self.repo.get_reminders_by_user(user_id, active_only=False)

    async def list_logs(self, user_id: int, day: date | None = None) -> List[Occurrence]:
        """A patient's occurrences on a local calendar day (default today)."""
        patient = await self.repo.get_user_by_id(user_id)
        if patient is None:
            raise NotFoundError(f"Patient {user_id} not found")

        if day is None:
            day = local_today(patient.timezone, self.clock())
        start = to_utc(datetime.combine(day, time(0), tzinfo=ZoneInfo(patient.timezone)), patient.timezone)
        end = to_utc(
            datetime.combine(day + timedelta(days=1), time(0), tzinfo=ZoneInfo(patient.timezone)),
            patient.timezone,
        )
        return await self.repo.get_occurrences_by_user(user_id, since=start, until=end)
