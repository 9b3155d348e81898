"""Tests for the delayed task queue implementations."""

from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from dosewatch.engine.task_queue import (
    InMemoryTaskQueue,
    JobQueueTaskQueue,
    Task,
    escalation_of,
    snooze_task_id,
    task_id_for,
)
from dosewatch.utils.time_utils import UTC


START = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)


def make_task(kind="send_message", reminder_id=1, scheduled_for=START) -> Task:
    return Task(
        kind=kind,
        reminder_id=reminder_id,
        user_id=1,
        medicine_id=7,
        scheduled_for=scheduled_for,
    )


def test_task_ids_are_deterministic():
    key = "1-2026-03-02T08:00:00+00:00"
    assert task_id_for(make_task("send_message")) == key
    assert task_id_for(make_task("voice_escalation")) == f"voice-{key}"
    assert task_id_for(make_task("caregiver_escalation")) == f"caregiver-{key}"
    assert task_id_for(make_task("low_stock_alert")) == f"low-stock-7-{key}"


def test_snooze_task_id_is_not_the_occurrence_key():
    task_id = snooze_task_id(1, START)
    assert task_id.startswith("snooze-1-")
    assert task_id != task_id_for(make_task())


def test_escalation_of_matches_only_escalation_steps_of_one_occurrence():
    matches = escalation_of(1, START)
    assert matches(make_task("voice_escalation"))
    assert matches(make_task("caregiver_escalation"))
    assert not matches(make_task("send_message"))
    assert not matches(make_task("low_stock_alert"))
    assert not matches(make_task("voice_escalation", reminder_id=2))
    assert not matches(make_task("voice_escalation", scheduled_for=START + timedelta(days=1)))


@pytest.mark.asyncio
async def test_in_memory_rejects_pending_duplicates(clock):
    """A task id can be queued again only after it ran."""
    queue = InMemoryTaskQueue(clock)
    ran = []

    async def handler(task):
        ran.append(task)

    queue.bind(handler)
    task = make_task()

    assert await queue.enqueue("a", task, timedelta(seconds=5)) == "accepted"
    assert await queue.enqueue("a", task, timedelta(seconds=1)) == "duplicate"
    assert len(queue) == 1

    clock.advance(seconds=5)
    assert await queue.run_due() == 1
    assert ran == [task]
    assert await queue.enqueue("a", task, timedelta(0)) == "accepted"


@pytest.mark.asyncio
async def test_in_memory_runs_only_due_tasks_in_order(clock):
    queue = InMemoryTaskQueue(clock)
    ran = []

    async def handler(task):
        ran.append(task.kind)

    queue.bind(handler)
    await queue.enqueue("late", make_task("caregiver_escalation"), timedelta(minutes=30))
    await queue.enqueue("second", make_task("voice_escalation"), timedelta(minutes=10))
    await queue.enqueue("first", make_task("send_message"), timedelta(minutes=5))

    clock.advance(minutes=10)
    assert await queue.run_due() == 2
    assert ran == ["send_message", "voice_escalation"]
    assert "late" in queue
    assert [task_id for task_id, _, _ in queue.pending()] == ["late"]


@pytest.mark.asyncio
async def test_in_memory_runs_zero_delay_follow_ups(clock):
    """Tasks queued with no delay while running fire in the same pass."""
    queue = InMemoryTaskQueue(clock)
    ran = []

    async def handler(task):
        ran.append(task.kind)
        if task.kind == "send_message":
            await queue.enqueue("next", make_task("voice_escalation"), timedelta(0))

    queue.bind(handler)
    await queue.enqueue("start", make_task(), timedelta(0))

    assert await queue.run_due() == 2
    assert ran == ["send_message", "voice_escalation"]
    assert len(queue) == 0


@pytest.mark.asyncio
async def test_in_memory_cancel_all(clock):
    queue = InMemoryTaskQueue(clock)
    await queue.enqueue("send", make_task("send_message"), timedelta(0))
    await queue.enqueue("voice", make_task("voice_escalation"), timedelta(minutes=15))
    await queue.enqueue("other", make_task("voice_escalation", reminder_id=2), timedelta(minutes=15))

    assert await queue.cancel_all(escalation_of(1, START)) == 1
    assert "voice" not in queue
    assert "send" in queue
    assert "other" in queue


@pytest.mark.asyncio
async def test_dispatch_without_handler(clock):
    queue = InMemoryTaskQueue(clock)
    with pytest.raises(RuntimeError):
        await queue.dispatch(make_task())


@pytest.mark.asyncio
async def test_job_queue_enqueue():
    """Tasks become named one-off jobs; a pending name is a duplicate."""
    job_queue = MagicMock()
    job_queue.get_jobs_by_name.return_value = ()
    queue = JobQueueTaskQueue(job_queue)
    task = make_task()

    assert await queue.enqueue("a", task, timedelta(seconds=5)) == "accepted"
    job_queue.run_once.assert_called_once_with(
        queue._run_job, when=timedelta(seconds=5), data=task, name="a"
    )

    job_queue.get_jobs_by_name.return_value = (MagicMock(),)
    assert await queue.enqueue("a", task, timedelta(seconds=5)) == "duplicate"
    assert job_queue.run_once.call_count == 1


@pytest.mark.asyncio
async def test_job_queue_cancel_all():
    voice = MagicMock(data=make_task("voice_escalation"))
    send = MagicMock(data=make_task("send_message"))
    heartbeat = MagicMock(data=None)
    job_queue = MagicMock()
    job_queue.jobs.return_value = (voice, send, heartbeat)
    queue = JobQueueTaskQueue(job_queue)

    assert await queue.cancel_all(escalation_of(1, START)) == 1
    voice.schedule_removal.assert_called_once()
    send.schedule_removal.assert_not_called()
    heartbeat.schedule_removal.assert_not_called()


@pytest.mark.asyncio
async def test_job_queue_runs_bound_handler():
    queue = JobQueueTaskQueue(MagicMock())
    handler = AsyncMock()
    queue.bind(handler)
    task = make_task()

    await queue._run_job(SimpleNamespace(job=SimpleNamespace(data=task)))
    handler.assert_awaited_once_with(task)
