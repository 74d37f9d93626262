"""Tests for the reconciliation pass."""

from datetime import datetime, timedelta

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from domains.reminders.reconcile import ReconcileReport, ReconciliationLoop
from domains.reminders.scheduler import NotificationScheduler, SchedulerContext
from domains.reminders.service import ReminderService
from domains.reminders.types import CustomDays, weekdays


@pytest.fixture
def short_horizon(store, action_log, clock, make_backend):
    """Service and reconciler over a backend that only holds triggers for 24h."""
    backend = make_backend(timedelta(hours=24))
    context = SchedulerContext(store=store, log=action_log, backend=backend, clock=clock)
    scheduler = NotificationScheduler(context, retry_budget=3)
    return backend, ReminderService(context, scheduler), ReconciliationLoop(context, scheduler)


@pytest.mark.asyncio
async def test_missing_trigger_is_rearmed(service, reconciler, backend):
    reminder = await service.create("Aspirin", ["08:00", "20:00"])
    # Platform lost a trigger
    del backend.triggers[f"{reminder.id}_1"]

    report = await reconciler.run_once()

    assert report.armed == [f"{reminder.id}_1"]
    assert backend.triggers[f"{reminder.id}_1"][0] == datetime(2024, 1, 1, 20, 0)
    assert report.ok


@pytest.mark.asyncio
async def test_steady_state_is_a_no_op(service, reconciler, backend):
    await service.create("Aspirin", ["08:00", "20:00"])
    await service.create("Metformin", ["12:00"], CustomDays(2))
    backend.schedule_calls.clear()
    backend.cancel_calls.clear()

    report = await reconciler.run_once()

    assert report.checked == 3
    assert not report.changed
    assert backend.schedule_calls == []
    assert backend.cancel_calls == []


@pytest.mark.asyncio
async def test_wrong_instant_is_rearmed(service, reconciler, backend):
    reminder = await service.create("Aspirin", ["08:00"])
    trigger_id = f"{reminder.id}_0"
    _, payload = backend.triggers[trigger_id]
    backend.triggers[trigger_id] = (datetime(2024, 1, 5, 8, 0), payload)

    report = await reconciler.run_once()

    assert report.rearmed == [trigger_id]
    assert backend.triggers[trigger_id][0] == datetime(2024, 1, 2, 8, 0)


@pytest.mark.asyncio
async def test_orphans_are_cancelled(service, store, reconciler, backend):
    kept = await service.create("Aspirin", ["08:00"])
    gone = await service.create("Metformin", ["12:00", "18:00"])
    _, payload = backend.triggers[f"{kept.id}_0"]

    # Deleted behind the scheduler's back, plus a slot the reminder no longer has
    await store.delete(gone.id)
    backend.triggers[f"{kept.id}_4"] = (datetime(2024, 1, 1, 10, 0), payload)

    report = await reconciler.run_once()

    assert sorted(report.cancelled) == sorted([f"{gone.id}_0", f"{gone.id}_1", f"{kept.id}_4"])
    assert sorted(backend.triggers) == [f"{kept.id}_0"]


@pytest.mark.asyncio
async def test_disabled_reminder_triggers_are_cancelled(service, store, reconciler, backend):
    reminder = await service.create("Aspirin", ["08:00"])
    await store.set_enabled(reminder.id, False)

    report = await reconciler.run_once()

    assert report.cancelled == [f"{reminder.id}_0"]
    assert backend.ids_for(reminder.id) == []


@pytest.mark.asyncio
async def test_foreign_triggers_are_left_alone(reconciler, backend):
    backend.triggers["daily_backup"] = (datetime(2024, 1, 2, 3, 0), None)

    report = await reconciler.run_once()

    assert "daily_backup" in backend.triggers
    assert report.cancelled == []


@pytest.mark.asyncio
async def test_beyond_horizon_is_deferred_then_armed(short_horizon, clock):
    backend, service, reconciler = short_horizon
    reminder = await service.create("Vitamin D", ["08:00"], weekdays(4))
    trigger_id = f"{reminder.id}_0"

    # Thursday 2024-01-04 08:00 is three days out; the backend drops it
    assert trigger_id not in backend.triggers

    report = await reconciler.run_once()
    assert report.deferred == [trigger_id]
    assert report.armed == []

    clock.now = datetime(2024, 1, 3, 9, 0)
    report = await reconciler.run_once()

    assert report.armed == [trigger_id]
    assert backend.triggers[trigger_id][0] == datetime(2024, 1, 4, 8, 0)


@pytest.mark.asyncio
async def test_failed_slot_is_retried_until_backend_recovers(service, reconciler, backend):
    backend.fail = True
    reminder = await service.create("Aspirin", ["08:00"])

    report = await reconciler.run_once()
    assert report.failed == [f"{reminder.id}_0"]
    assert not report.ok

    backend.fail = False
    report = await reconciler.run_once()
    assert report.armed == [f"{reminder.id}_0"]
    assert report.ok


@pytest.mark.asyncio
async def test_failures_across_passes_escalate(service, reconciler, backend, scheduling_warnings):
    backend.fail = True
    reminder = await service.create("Aspirin", ["08:00"])

    await reconciler.run_once()
    await reconciler.run_once()

    assert [w.trigger_id for w in scheduling_warnings] == [f"{reminder.id}_0"]


@pytest.mark.asyncio
async def test_listing_failure_is_reported_not_raised(service, reconciler, backend, monkeypatch):
    async def broken_listing():
        raise RuntimeError("platform unavailable")

    monkeypatch.setattr(backend, "list_scheduled", broken_listing)

    report = await reconciler.run_once()

    assert report.error == "platform unavailable"
    assert reconciler.last_report is report


@pytest.mark.asyncio
async def test_on_foreground_drains_events_first(service, reconciler, backend, clock):
    reminder = await service.create("Aspirin", ["08:00"])
    trigger_id = f"{reminder.id}_0"
    clock.now = datetime(2024, 1, 2, 8, 0)
    _, payload = await backend.fire(trigger_id)
    backend.invoke_action(trigger_id, "taken", payload.data)

    report = await reconciler.on_foreground()

    assert backend.events.empty()
    assert len(await service.history(reminder.id)) == 1
    # The delivery already re-armed the slot, so nothing is left to fix
    assert not report.changed
    assert backend.triggers[trigger_id][0] == datetime(2024, 1, 3, 8, 0)


@pytest.mark.asyncio
async def test_start_registers_interval_job(reconciler):
    aps = AsyncIOScheduler()

    reconciler.start(aps, interval_seconds=60)

    jobs = aps.get_jobs()
    assert [j.id for j in jobs] == [ReconciliationLoop.JOB_ID]
    assert jobs[0].trigger.interval == timedelta(seconds=60)

    reconciler.stop(aps)
    assert aps.get_jobs() == []


def test_report_summary():
    report = ReconcileReport(started_at=datetime(2024, 1, 1, 9, 0), checked=3, armed=["a_0"], failed=["b_1"])

    assert report.summary() == "checked=3 armed=1 rearmed=0 deferred=0 failed=1 cancelled=0"
    assert report.changed
    assert not report.ok
