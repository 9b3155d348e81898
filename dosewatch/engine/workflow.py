"""Escalation workflow: message, then voice call, then caregivers.

Every step reads the occurrence, asks :func:`decide` whether it may act, and
claims the next status with a compare-and-set before any side effect. A task
that fires after the occurrence was confirmed or skipped therefore does
nothing, even when queue cancellation lost the race.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, Callable

from dosewatch.bot.formatters import (
    format_caregiver_alert,
    format_dose_reminder,
    format_low_stock_alert,
)
from dosewatch.db.models import (
    ConfirmationSource,
    Medicine,
    Occurrence,
    OccurrenceStatus,
    Patient,
)
from dosewatch.db.repository import Repository
from dosewatch.engine.errors import NotFoundError, TransportFailure
from dosewatch.engine.escalation import Trigger, allowed_from, decide
from dosewatch.engine.stock import StockLedger
from dosewatch.engine.task_queue import (
    DelayedTaskQueue,
    Task,
    escalation_of,
    snooze_task_id,
    task_id_for,
)
from dosewatch.transport.messenger import Messenger
from dosewatch.transport.voice import CallScript, VoiceCaller
from dosewatch.utils.constants import (
    CALL_FAILED,
    CALL_INITIATED,
    DEFAULT_ESCALATION_DELAYS,
    DEFAULT_SNOOZE_MINUTES,
    MAX_SNOOZE_MINUTES,
    EscalationDelays,
)
from dosewatch.utils.time_utils import utc_now

logger = logging.getLogger(__name__)


class EscalationEngine:
    """Executes escalation steps and patient responses for occurrences."""

    def __init__(
        self,
        repo: Repository,
        queue: DelayedTaskQueue,
        messenger: Messenger,
        caller: VoiceCaller | None,
        ledger: StockLedger,
        delays: EscalationDelays = DEFAULT_ESCALATION_DELAYS,
        snooze_minutes: int = DEFAULT_SNOOZE_MINUTES,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.repo = repo
        self.queue = queue
        self.messenger = messenger
        self.caller = caller
        self.ledger = ledger
        self.delays = delays
        self.snooze_minutes = snooze_minutes
        self.clock = clock

    async def handle_task(self, task: Task) -> None:
        """Queue entry point. Failures stay scoped to the one task."""
        handlers = {
            "send_message": self.send_reminder,
            "voice_escalation": self.escalate_to_voice,
            "caregiver_escalation": self.escalate_to_caregivers,
            "low_stock_alert": self.send_low_stock_alert,
        }

        try:
            await handlers[task.kind](task)
        except NotFoundError as e:
            logger.error(f"{task.kind} aborted for reminder {task.reminder_id}: {e}")
        except Exception:
            logger.error(
                f"Error in {task.kind} for reminder {task.reminder_id}", exc_info=True
            )

    # Escalation steps

    async def send_reminder(self, task: Task) -> None:
        """Step 1: create the occurrence and message the patient."""
        reminder = await self.repo.get_reminder(task.reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder {task.reminder_id} not found")
        if not reminder.is_active:
            logger.info(f"Reminder {reminder.id} is paused, not sending")
            return
        patient, medicine = await self._load_patient_and_medicine(task.user_id, task.medicine_id)

        occurrence = await self.repo.get_or_create_occurrence(
            task.reminder_id, task.user_id, task.medicine_id, task.scheduled_for
        )

        now = self.clock()
        claimed = await self._claim(occurrence, "send_message", sent_at=now)
        if claimed is None:
            return

        # Once claimed, the voice step must be queued whatever happens to the send
        logger.info(f"STEP 1: Sending reminder {reminder.id} to {patient.name}")
        delivered = await self._deliver(
            patient.chat_id,
            format_dose_reminder(patient, medicine, self.snooze_minutes),
            occurrence_id=claimed.id,
        )
        if not delivered:
            logger.error(f"Message failed for occurrence {claimed.id}, escalating to voice now")

        await self._follow_up(claimed, "send_message", occurrence.status, delivered)
        await self.repo.mark_reminder_sent(reminder.id, now)  # type: ignore

    async def escalate_to_voice(self, task: Task) -> None:
        """Step 2: call the patient if the message went unanswered."""
        occurrence = await self._load_occurrence(task)
        patient, medicine = await self._load_patient_and_medicine(
            occurrence.user_id, occurrence.medicine_id
        )

        claimed = await self._claim(occurrence, "voice_escalation")
        if claimed is None:
            return

        logger.info(f"STEP 2: Voice escalation for occurrence {claimed.id}")
        script = CallScript(
            patient_name=patient.name,
            medicine_name=medicine.name,
            dosage=medicine.dosage,
            occurrence_id=claimed.id,  # type: ignore
            snooze_minutes=self.snooze_minutes,
        )

        call_id = None
        try:
            if self.caller is None:
                raise TransportFailure("voice calls are not configured")
            call_id = await self.caller.place_call(patient.phone_number, script)
        except TransportFailure as e:
            logger.error(f"Voice call failed for occurrence {claimed.id}: {e}")
        except Exception:
            logger.error(f"Unexpected error calling for occurrence {claimed.id}", exc_info=True)

        if call_id is None:
            await self.repo.update_occurrence(claimed.id, voice_call_status=CALL_FAILED)  # type: ignore
        else:
            await self.repo.update_occurrence(
                claimed.id, voice_call_id=call_id, voice_call_status=CALL_INITIATED  # type: ignore
            )
            logger.info(f"Voice call initiated: {call_id}")

        await self._follow_up(claimed, "voice_escalation", occurrence.status, call_id is not None)

    async def escalate_to_caregivers(self, task: Task) -> None:
        """Step 3: alert every caregiver that wants notifications.

        If no alert gets through, the occurrence goes back to the status it
        had, so a late confirmation still counts.
        """
        occurrence = await self._load_occurrence(task)
        if decide(occurrence.status, "caregiver_escalation") is None:
            logger.info(f"Occurrence {occurrence.id} is {occurrence.status}, no caregiver alert needed")
            return

        patient, medicine = await self._load_patient_and_medicine(
            occurrence.user_id, occurrence.medicine_id
        )

        caregivers = await self.repo.get_notifiable_caregivers(occurrence.user_id)
        recipients = [c for c in caregivers if c.chat_id]
        if len(recipients) < len(caregivers):
            logger.warning(
                f"{len(caregivers) - len(recipients)} caregivers of patient {patient.id} "
                "have no chat id and cannot be messaged"
            )
        if not recipients:
            # Nothing was notified, so the occurrence stays where it is
            logger.warning(f"No caregivers to notify for patient {patient.id}")
            return

        claimed = await self._claim(occurrence, "caregiver_escalation", escalated_at=self.clock())
        if claimed is None:
            return

        logger.info(f"STEP 3: Alerting {len(recipients)} caregivers for occurrence {claimed.id}")
        text = format_caregiver_alert(patient, medicine, claimed.scheduled_for)
        notified = 0
        for caregiver in recipients:
            if await self._deliver(caregiver.chat_id, text):  # type: ignore
                notified += 1
                logger.info(f"Caregiver notified: {caregiver.name}")
            else:
                logger.error(f"Failed to notify caregiver {caregiver.name}")

        if notified == 0:
            logger.error(
                f"No caregiver of patient {patient.id} could be reached for occurrence {claimed.id}"
            )
            await self.repo.transition_occurrence(
                claimed.id,  # type: ignore
                {claimed.status},
                occurrence.status,
                escalated_at=None,
            )

    async def send_low_stock_alert(self, task: Task) -> None:
        """One-shot low stock message to the medicine's owner."""
        patient, medicine = await self._load_patient_and_medicine(task.user_id, task.medicine_id)

        if await self._deliver(patient.chat_id, format_low_stock_alert(medicine)):
            logger.info(f"Low stock alert sent to {patient.name}")
        else:
            logger.error(f"Failed to send low stock alert to {patient.name}")

    # Patient responses

    async def confirm(
        self,
        reminder_id: int,
        user_id: int,
        source: ConfirmationSource = "message",
        scheduled_for: datetime | None = None,
    ) -> Occurrence:
        """Record that the patient took the dose.

        Cancels the pending escalation steps of that occurrence and updates
        stock. Without ``scheduled_for`` the latest open occurrence of the
        reminder is confirmed. Confirming a closed occurrence changes nothing.

        Raises:
            NotFoundError: If there is no matching occurrence
        """
        occurrence = await self._find_occurrence(reminder_id, user_id, scheduled_for)

        claimed = await self._claim(
            occurrence, "confirm", confirmed_at=self.clock(), confirmation_source=source
        )
        if claimed is None:
            return await self._reload(occurrence)

        cancelled = await self.queue.cancel_all(
            escalation_of(claimed.reminder_id, claimed.scheduled_for)
        )
        logger.info(
            f"Reminder {reminder_id} confirmed via {source} "
            f"(occurrence {claimed.id}, {cancelled} pending steps cancelled)"
        )

        await self.ledger.record_dose(claimed)
        return claimed

    async def skip(
        self,
        reminder_id: int,
        user_id: int,
        reason: str | None = None,
        scheduled_for: datetime | None = None,
    ) -> Occurrence:
        """Close an occurrence without taking the dose.

        Raises:
            NotFoundError: If there is no matching occurrence
        """
        occurrence = await self._find_occurrence(reminder_id, user_id, scheduled_for)

        claimed = await self._claim(occurrence, "skip", skipped_reason=reason)
        if claimed is None:
            return await self._reload(occurrence)

        cancelled = await self.queue.cancel_all(
            escalation_of(claimed.reminder_id, claimed.scheduled_for)
        )
        logger.info(
            f"Reminder {reminder_id} skipped (occurrence {claimed.id}, "
            f"{cancelled} pending steps cancelled)"
        )
        return claimed

    async def snooze(self, reminder_id: int, minutes: int) -> datetime:
        """Send the reminder again in ``minutes``.

        The snoozed send is a new occurrence with its own identity key; the
        current occurrence and its escalation steps are left alone.

        Returns:
            When the snoozed reminder will fire (UTC)
        """
        if minutes <= 0 or minutes > MAX_SNOOZE_MINUTES:
            raise ValueError(f"Snooze must be between 1 and {MAX_SNOOZE_MINUTES} minutes")

        reminder = await self.repo.get_reminder(reminder_id)
        if reminder is None:
            raise NotFoundError(f"Reminder {reminder_id} not found")

        now = self.clock()
        snooze_until = now + timedelta(minutes=minutes)
        task = Task(
            kind="send_message",
            reminder_id=reminder_id,
            user_id=reminder.user_id,
            medicine_id=reminder.medicine_id,
            scheduled_for=snooze_until,
        )
        await self.queue.enqueue(snooze_task_id(reminder_id, now), task, timedelta(minutes=minutes))

        logger.info(f"Reminder snoozed for {minutes} minutes: {reminder_id}")
        return snooze_until

    # Helper methods

    async def _claim(
        self, occurrence: Occurrence, trigger: Trigger, **fields: Any
    ) -> Occurrence | None:
        """Move an occurrence to the status the trigger leads to, if still allowed."""
        decision = decide(occurrence.status, trigger, delays=self.delays)
        if decision is None:
            logger.info(f"Occurrence {occurrence.id} is {occurrence.status}, ignoring {trigger}")
            return None

        claimed = await self.repo.transition_occurrence(
            occurrence.id,  # type: ignore
            allowed_from(trigger),
            decision.to_status,
            **fields,
        )
        if claimed is None:
            logger.info(f"Occurrence {occurrence.id} changed concurrently, ignoring {trigger}")
        return claimed

    async def _follow_up(
        self,
        occurrence: Occurrence,
        trigger: Trigger,
        from_status: OccurrenceStatus,
        delivered: bool,
    ) -> None:
        """Queue the step that follows ``trigger`` on a claimed occurrence."""
        decision = decide(from_status, trigger, delivered, self.delays)
        if decision is None or decision.follow_up is None:
            return

        kind = decision.follow_up
        delay = decision.follow_up_delay or timedelta(0)
        task = Task(
            kind=kind,
            reminder_id=occurrence.reminder_id,
            user_id=occurrence.user_id,
            medicine_id=occurrence.medicine_id,
            scheduled_for=occurrence.scheduled_for,
        )
        result = await self.queue.enqueue(task_id_for(task), task, delay)
        if result == "duplicate":
            logger.debug(f"{kind} already queued for occurrence {occurrence.id}")
            return

        minutes = delay.total_seconds() / 60
        logger.info(f"{kind} scheduled in {minutes:.0f} min for occurrence {occurrence.id}")

    async def _deliver(
        self, recipient: str, text: str, occurrence_id: int | None = None
    ) -> bool:
        """Send a message, counting any unexpected error as not delivered."""
        try:
            return await self.messenger.send_message(recipient, text, occurrence_id=occurrence_id)
        except Exception:
            logger.error(f"Unexpected error messaging {recipient}", exc_info=True)
            return False

    async def _load_occurrence(self, task: Task) -> Occurrence:
        occurrence = await self.repo.get_occurrence_by_key(task.reminder_id, task.scheduled_for)
        if occurrence is None:
            raise NotFoundError(
                f"No occurrence for reminder {task.reminder_id} at {task.scheduled_for.isoformat()}"
            )
        return occurrence

    async def _find_occurrence(
        self, reminder_id: int, user_id: int, scheduled_for: datetime | None
    ) -> Occurrence:
        if scheduled_for is None:
            occurrence = await self.repo.get_latest_open_occurrence(user_id, reminder_id)
        else:
            occurrence = await self.repo.get_occurrence_by_key(reminder_id, scheduled_for)
            if occurrence is not None and occurrence.user_id != user_id:
                occurrence = None

        if occurrence is None:
            raise NotFoundError(f"No open occurrence of reminder {reminder_id} for patient {user_id}")
        return occurrence

    async def _reload(self, occurrence: Occurrence) -> Occurrence:
        current = await self.repo.get_occurrence(occurrence.id)  # type: ignore
        return current or occurrence

    async def _load_patient_and_medicine(
        self, user_id: int, medicine_id: int
    ) -> tuple[Patient, Medicine]:
        patient = await self.repo.get_user_by_id(user_id)
        if patient is None:
            raise NotFoundError(f"Patient {user_id} not found")

        medicine = await self.repo.get_medicine(medicine_id)
        if medicine is None:
            raise NotFoundError(f"Medicine {medicine_id} not found")

        return patient, medicine
