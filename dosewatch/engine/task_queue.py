"""Delayed task queue.

The queue is only a timer: it stores a :class:`Task` and hands it back to a
bound handler once its delay has elapsed. All decisions and guards live in
the escalation workflow, so any implementation with these semantics works:

* ``enqueue`` rejects a task id that is still pending (``"duplicate"``)
* ``cancel_all`` removes pending tasks whose payload matches a predicate
* delivery is at-least-once with no ordering across task ids, and may race
  with cancellation
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, List, Literal, Tuple

from telegram.ext import CallbackContext, JobQueue

from dosewatch.utils.time_utils import UTC, utc_now

logger = logging.getLogger(__name__)

TaskKind = Literal["send_message", "voice_escalation", "caregiver_escalation", "low_stock_alert"]
EnqueueResult = Literal["accepted", "duplicate"]
TaskHandler = Callable[["Task"], Awaitable[None]]

# Steps that belong to one occurrence's escalation chain
ESCALATION_KINDS = frozenset({"voice_escalation", "caregiver_escalation"})


@dataclass(frozen=True)
class Task:
    """Payload of a queued step.

    ``scheduled_for`` together with ``reminder_id`` is the identity key of the
    occurrence the task belongs to.
    """

    kind: TaskKind
    reminder_id: int
    user_id: int
    medicine_id: int
    scheduled_for: datetime

    def belongs_to(self, reminder_id: int, scheduled_for: datetime) -> bool:
        return self.reminder_id == reminder_id and self.scheduled_for == scheduled_for


def occurrence_key(reminder_id: int, scheduled_for: datetime) -> str:
    """Deterministic string form of an identity key."""
    return f"{reminder_id}-{scheduled_for.astimezone(UTC).isoformat()}"


def task_id_for(task: Task) -> str:
    """Deterministic task id for a step of an occurrence.

    The send-message task id is the identity key itself, so scheduling the
    same occurrence twice collapses in the queue.
    """
    key = occurrence_key(task.reminder_id, task.scheduled_for)
    if task.kind == "send_message":
        return key
    if task.kind == "voice_escalation":
        return f"voice-{key}"
    if task.kind == "caregiver_escalation":
        return f"caregiver-{key}"
    return f"low-stock-{task.medicine_id}-{key}"


def snooze_task_id(reminder_id: int, now: datetime) -> str:
    """Task id for a snoozed reminder, independent of the original occurrence."""
    return f"snooze-{reminder_id}-{int(now.timestamp() * 1000)}"


def escalation_of(reminder_id: int, scheduled_for: datetime) -> Callable[[Task], bool]:
    """Predicate matching the pending escalation steps of one occurrence."""

    def predicate(task: Task) -> bool:
        return task.kind in ESCALATION_KINDS and task.belongs_to(reminder_id, scheduled_for)

    return predicate


def sends_of(reminder_id: int) -> Callable[[Task], bool]:
    """Predicate matching every queued send of one reminder, snoozes included."""

    def predicate(task: Task) -> bool:
        return task.kind == "send_message" and task.reminder_id == reminder_id

    return predicate


class DelayedTaskQueue(ABC):
    """Contract required from the delayed task queue."""

    def __init__(self) -> None:
        self._handler: TaskHandler | None = None

    def bind(self, handler: TaskHandler) -> None:
        """Set the coroutine that executes tasks when they fire."""
        self._handler = handler

    async def dispatch(self, task: Task) -> None:
        if self._handler is None:
            raise RuntimeError("Task queue has no handler bound")
        await self._handler(task)

    @abstractmethod
    async def enqueue(self, task_id: str, task: Task, delay: timedelta) -> EnqueueResult:
        """Schedule a task to fire after ``delay``."""

    @abstractmethod
    async def cancel_all(self, predicate: Callable[[Task], bool]) -> int:
        """Cancel pending tasks whose payload matches. Returns the count cancelled."""


class JobQueueTaskQueue(DelayedTaskQueue):
    """Task queue backed by python-telegram-bot's JobQueue (APScheduler)."""

    def __init__(self, job_queue: JobQueue):
        super().__init__()
        self.job_queue = job_queue

    async def enqueue(self, task_id: str, task: Task, delay: timedelta) -> EnqueueResult:
        if self.job_queue.get_jobs_by_name(task_id):
            logger.debug(f"Duplicate task rejected: {task_id}")
            return "duplicate"

        self.job_queue.run_once(
            self._run_job,
            when=max(delay, timedelta(0)),
            data=task,
            name=task_id,
        )
        logger.debug(f"Queued {task.kind} task {task_id} (in {delay.total_seconds():.0f}s)")
        return "accepted"

    async def cancel_all(self, predicate: Callable[[Task], bool]) -> int:
        cancelled = 0
        for job in self.job_queue.jobs():
            if isinstance(job.data, Task) and predicate(job.data):
                job.schedule_removal()
                cancelled += 1
                logger.debug(f"Cancelled task {job.name}")
        return cancelled

    async def _run_job(self, context: CallbackContext) -> None:
        """Job callback: hand the payload to the bound handler."""
        if context.job is None or not isinstance(context.job.data, Task):
            return
        await self.dispatch(context.job.data)


class InMemoryTaskQueue(DelayedTaskQueue):
    """Clock-driven task queue.

    Tasks fire only when :meth:`run_due` is called, which makes the whole
    escalation workflow replayable without a scheduler thread.
    """

    def __init__(self, clock: Callable[[], datetime] = utc_now):
        super().__init__()
        self.clock = clock
        self._pending: Dict[str, Tuple[datetime, Task]] = {}
        self._sequence = 0
        self._order: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._pending

    def pending(self) -> List[Tuple[str, datetime, Task]]:
        """Pending tasks as (task_id, due_at, task), soonest first."""
        return sorted(
            ((task_id, due, task) for task_id, (due, task) in self._pending.items()),
            key=lambda item: (item[1], self._order[item[0]]),
        )

    async def enqueue(self, task_id: str, task: Task, delay: timedelta) -> EnqueueResult:
        if task_id in self._pending:
            logger.debug(f"Duplicate task rejected: {task_id}")
            return "duplicate"

        self._pending[task_id] = (self.clock() + max(delay, timedelta(0)), task)
        self._sequence += 1
        self._order[task_id] = self._sequence
        return "accepted"

    async def cancel_all(self, predicate: Callable[[Task], bool]) -> int:
        matched = [task_id for task_id, (_, task) in self._pending.items() if predicate(task)]
        for task_id in matched:
            del self._pending[task_id]
            del self._order[task_id]
        return len(matched)

    async def run_due(self) -> int:
        """Execute every task due at the current clock time.

        Follow-ups that become due while running (zero-delay escalations) are
        executed in the same call. Returns the number of tasks executed.
        """
        executed = 0
        while True:
            now = self.clock()
            due = [item for item in self.pending() if item[1] <= now]
            if not due:
                return executed

            task_id, _, task = due[0]
            del self._pending[task_id]
            del self._order[task_id]
            await self.dispatch(task)
            executed += 1
