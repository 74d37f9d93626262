"""Pytest configuration and fixtures."""

import os
import sys
import tempfile
from datetime import datetime, timedelta

import pytest

# Keep logs and databases out of the working tree
os.environ.setdefault("APP_DATA_DIR", tempfile.mkdtemp(prefix="med-reminders-test-"))

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from domains.reminders.action_log import ActionLog
from domains.reminders.backends import NotificationBackend, ScheduledTrigger
from domains.reminders.errors import BackendSchedulingError
from domains.reminders.reconcile import ReconciliationLoop
from domains.reminders.scheduler import NotificationScheduler, SchedulerContext
from domains.reminders.service import ReminderService
from domains.reminders.storage import CollectionStorage
from domains.reminders.store import ReminderStore


class FakeClock:
    """Settable clock."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class FakeBackend(NotificationBackend):
    """In-memory backend with an optional horizon and a failure switch."""

    name = "fake"

    def __init__(self, clock, horizon=None):
        super().__init__(clock, horizon)
        self.triggers = {}
        self.fail = False
        self.schedule_calls = []
        self.cancel_calls = []
        self.before_commit = None  # async hook run inside schedule()

    async def schedule(self, trigger_id, fires_at, payload):
        self._check_schedulable(trigger_id, fires_at)
        self.schedule_calls.append(trigger_id)
        if self.before_commit is not None:
            await self.before_commit(trigger_id)
        if self.fail:
            raise BackendSchedulingError("backend rejected trigger", trigger_id)
        if not self.within_horizon(fires_at):
            return False  # dropped, like the platform does
        self.triggers[trigger_id] = (fires_at, payload)
        return True

    async def cancel(self, trigger_id):
        self.cancel_calls.append(trigger_id)
        self.triggers.pop(trigger_id, None)

    async def list_scheduled(self):
        return [ScheduledTrigger(tid, at) for tid, (at, _) in self.triggers.items()]

    async def fire(self, trigger_id):
        """Simulate the platform delivering a trigger."""
        fires_at, payload = self.triggers.pop(trigger_id)
        await self._deliver(trigger_id, fires_at, payload)
        return fires_at, payload

    def ids_for(self, reminder_id):
        return sorted(t for t in self.triggers if reminder_id in t)


@pytest.fixture
def clock():
    return FakeClock(datetime(2024, 1, 1, 9, 0))


@pytest.fixture
def db_path(tmp_path):
    return str(tmp_path / "reminders.db")


@pytest.fixture
def storage(db_path):
    storage = CollectionStorage(db_path)
    yield storage
    storage.close()


@pytest.fixture
def backend(clock):
    return FakeBackend(clock)


@pytest.fixture
def make_backend(clock):
    def make(horizon=None, clock_override=None):
        return FakeBackend(clock_override or clock, horizon)
    return make


@pytest.fixture
def store(storage, clock):
    return ReminderStore(storage, clock)


@pytest.fixture
def action_log(storage, store, clock):
    return ActionLog(storage, store, clock)


@pytest.fixture
def context(store, action_log, backend, clock):
    return SchedulerContext(store=store, log=action_log, backend=backend, clock=clock)


@pytest.fixture
def scheduling_warnings():
    return []


@pytest.fixture
def scheduler(context, scheduling_warnings):
    return NotificationScheduler(context, on_warning=scheduling_warnings.append, retry_budget=3)


@pytest.fixture
def service(context, scheduler):
    return ReminderService(context, scheduler)


@pytest.fixture
def reconciler(context, scheduler):
    return ReconciliationLoop(context, scheduler)
