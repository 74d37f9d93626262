"""Periodic reconciliation of backend triggers against stored reminders.

The backend cannot be trusted to hold triggers for long (horizon limits,
process restarts, silently lost timers), so the desired schedule is
re-derived from the ReminderStore on a fixed cadence and on every app
foreground, and the live trigger set is corrected to match it.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from logger import logger
from . import config
from .errors import StorageError
from .scheduler import NotificationScheduler, SchedulerContext
from .types import Reminder, parse_trigger_id


@dataclass
class ReconcileReport:
    """What one reconciliation pass did."""
    started_at: datetime
    checked: int = 0
    armed: list[str] = field(default_factory=list)
    rearmed: list[str] = field(default_factory=list)
    deferred: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and not self.failed

    @property
    def changed(self) -> bool:
        return bool(self.armed or self.rearmed or self.cancelled)

    def summary(self) -> str:
        return (
            f"checked={self.checked} armed={len(self.armed)} rearmed={len(self.rearmed)} "
            f"deferred={len(self.deferred)} failed={len(self.failed)} cancelled={len(self.cancelled)}"
        )


class ReconciliationLoop:
    """Self-healing pass: store + recurrence rules are the source of truth."""

    JOB_ID = "reminder_reconciliation"

    def __init__(self, context: SchedulerContext, scheduler: NotificationScheduler):
        self.context = context
        self.scheduler = scheduler
        self.last_report: Optional[ReconcileReport] = None

    async def run_once(self) -> ReconcileReport:
        """Run one pass. Never raises; problems are reported and logged."""
        now = self.context.clock()
        report = ReconcileReport(started_at=now)
        backend = self.context.backend

        try:
            reminders = await self.context.store.list()
            live = {t.id: t.fires_at for t in await backend.list_scheduled()}
        except StorageError as e:
            report.error = str(e)
            logger.error(f"Reconciliation skipped, cannot read reminders: {e}")
            self.last_report = report
            return report
        except Exception as e:
            report.error = str(e)
            logger.error(f"Reconciliation skipped, cannot list backend triggers: {e}")
            self.last_report = report
            return report

        by_id = {r.id: r for r in reminders}

        for trigger_id in live:
            await self._prune_if_orphaned(trigger_id, by_id, report)

        for reminder in reminders:
            if not reminder.enabled:
                continue
            try:
                await self._reconcile_reminder(reminder, live, now, report)
            except Exception as e:
                report.failed.append(reminder.id)
                logger.error(f"Reconciliation failed for reminder {reminder.id}: {e}")

        if report.changed or report.failed:
            logger.info(f"Reconciliation pass: {report.summary()}")
        else:
            logger.debug(f"Reconciliation pass: {report.summary()}")

        self.last_report = report
        return report

    async def _reconcile_reminder(
        self,
        reminder: Reminder,
        live: dict[str, datetime],
        now: datetime,
        report: ReconcileReport,
    ) -> None:
        backend = self.context.backend

        for occurrence in self.scheduler.desired_occurrences(reminder, now):
            report.checked += 1
            trigger_id = occurrence.trigger_id
            live_at = live.get(trigger_id)

            if live_at == occurrence.scheduled_instant:
                continue

            if live_at is None and not backend.within_horizon(occurrence.scheduled_instant, now):
                # The backend would drop it; arm once it comes into range
                report.deferred.append(trigger_id)
                continue

            armed = await self.scheduler.arm_slot(reminder, occurrence.slot, now)
            if armed is None:
                report.failed.append(trigger_id)
            elif live_at is None:
                report.armed.append(trigger_id)
            else:
                report.rearmed.append(trigger_id)

    async def _prune_if_orphaned(
        self,
        trigger_id: str,
        by_id: dict[str, Reminder],
        report: ReconcileReport,
    ) -> None:
        """Cancel a live trigger whose reminder is gone, disabled or has fewer slots now."""
        ref = parse_trigger_id(trigger_id)
        if ref is None:
            return

        if not self._is_orphan(by_id.get(ref.reminder_id), ref.slot):
            return

        # Re-check under the reminder's lock: it may have been edited since the listing
        async with self.scheduler.lock_for(ref.reminder_id):
            current = await self.context.store.find(ref.reminder_id)
            if not self._is_orphan(current, ref.slot):
                return
            await self.context.backend.cancel(trigger_id)

        report.cancelled.append(trigger_id)
        logger.info(f"Cancelled orphaned trigger {trigger_id}")

    @staticmethod
    def _is_orphan(reminder: Optional[Reminder], slot: int) -> bool:
        return reminder is None or not reminder.enabled or slot >= reminder.slot_count

    async def on_foreground(self) -> ReconcileReport:
        """App came to the foreground: apply queued events, then reconcile."""
        await self.scheduler.drain_events()
        return await self.run_once()

    def start(self, scheduler: AsyncIOScheduler, interval_seconds: Optional[int] = None) -> None:
        """Register the pass as a recurring APScheduler job.

        Args:
            scheduler: APScheduler instance
            interval_seconds: Cadence (defaults to RECONCILE_INTERVAL_SECONDS)
        """
        interval_seconds = interval_seconds or config.RECONCILE_INTERVAL_SECONDS
        scheduler.add_job(
            self.run_once,
            trigger=IntervalTrigger(seconds=interval_seconds),
            id=self.JOB_ID,
            name="Reconcile reminder triggers",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Started reminder reconciliation (every {interval_seconds}s)")

    def stop(self, scheduler: AsyncIOScheduler) -> None:
        if scheduler.get_job(self.JOB_ID) is not None:
            scheduler.remove_job(self.JOB_ID)
            logger.info("Stopped reminder reconciliation")
