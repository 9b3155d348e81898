"""Shared fixtures: a real SQLite store, an in-memory queue and fake transports."""

from datetime import datetime, timedelta
from typing import List, Tuple

import pytest
import pytest_asyncio

from dosewatch.db.migrations import run_migrations
from dosewatch.db.models import Caregiver, Medicine, Patient, Reminder
from dosewatch.db.repository import Repository
from dosewatch.engine.errors import TransportFailure
from dosewatch.engine.scheduler import DailyScheduler
from dosewatch.engine.stock import StockLedger
from dosewatch.engine.task_queue import InMemoryTaskQueue
from dosewatch.engine.workflow import EscalationEngine
from dosewatch.transport.messenger import Messenger
from dosewatch.transport.voice import CallScript, VoiceCaller
from dosewatch.utils.time_utils import UTC

# Monday
START = datetime(2026, 3, 2, 8, 0, tzinfo=UTC)

PATIENT_CHAT = "100"


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeMessenger(Messenger):
    def __init__(self):
        self.sent: List[Tuple[str, str, int | None]] = []
        self.fail_for: set[str] = set()
        self.raise_for: set[str] = set()

    async def send_message(self, recipient, text, *, occurrence_id=None):
        if recipient in self.raise_for:
            raise RuntimeError(f"connection to {recipient} dropped")
        if recipient in self.fail_for:
            return False
        self.sent.append((recipient, text, occurrence_id))
        return True

    def recipients(self) -> List[str]:
        return [recipient for recipient, _, _ in self.sent]


class FakeCaller(VoiceCaller):
    def __init__(self):
        self.calls: List[Tuple[str, CallScript]] = []
        self.fail = False

    async def place_call(self, recipient, script):
        if self.fail:
            raise TransportFailure("line busy")
        self.calls.append((recipient, script))
        return "CA123"


@pytest.fixture
def clock():
    return FakeClock()


@pytest_asyncio.fixture
async def repo(tmp_path):
    db_path = tmp_path / "dosewatch.db"
    await run_migrations(db_path)

    repository = Repository(db_path)
    await repository.connect()
    yield repository
    await repository.close()


@pytest.fixture
def queue(clock):
    return InMemoryTaskQueue(clock)


@pytest.fixture
def messenger():
    return FakeMessenger()


@pytest.fixture
def caller():
    return FakeCaller()


@pytest.fixture
def ledger(repo, queue):
    return StockLedger(repo, queue)


@pytest.fixture
def engine(repo, queue, messenger, caller, ledger, clock):
    escalation_engine = EscalationEngine(repo, queue, messenger, caller, ledger, clock=clock)
    queue.bind(escalation_engine.handle_task)
    return escalation_engine


@pytest.fixture
def scheduler(repo, queue, clock):
    return DailyScheduler(repo, queue, clock=clock)


@pytest_asyncio.fixture
async def patient(repo):
    return await repo.create_user(
        Patient(name="Asha", phone_number="+15550000100", chat_id=PATIENT_CHAT, timezone="UTC")
    )


@pytest_asyncio.fixture
async def medicine(repo, patient):
    return await repo.create_medicine(
        Medicine(
            user_id=patient.id,
            name="Metformin",
            dosage="500mg",
            stock_quantity=10,
            low_stock_threshold=5,
        )
    )


@pytest_asyncio.fixture
async def caregivers(repo, patient):
    return [
        await repo.create_caregiver(
            Caregiver(user_id=patient.id, name="Ravi", phone_number="+15550000200", chat_id="200")
        ),
        await repo.create_caregiver(
            Caregiver(user_id=patient.id, name="Meena", phone_number="+15550000201", chat_id="201")
        ),
        await repo.create_caregiver(
            Caregiver(
                user_id=patient.id,
                name="Dr. Rao",
                phone_number="+15550000202",
                chat_id="202",
                should_notify=False,
            )
        ),
    ]


@pytest_asyncio.fixture
async def reminder(repo, patient, medicine):
    """Daily reminder due five seconds after START. Saved, not yet scheduled."""
    return await repo.create_reminder(
        Reminder(user_id=patient.id, medicine_id=medicine.id, scheduled_time="08:00:05")
    )


@pytest_asyncio.fixture
async def sent_occurrence(clock, repo, queue, engine, scheduler, reminder):
    """The reminder's occurrence after its message went out."""
    await scheduler.schedule_today()
    clock.advance(seconds=5)
    await queue.run_due()
    return await repo.get_occurrence_by_key(reminder.id, clock.now)
