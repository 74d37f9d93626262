"""Arm and disarm notification triggers for reminder slots.

Slot lifecycle: Unscheduled -> Scheduled -> Fired -> AwaitingAction ->
LoggedTaken / LoggedSkipped / Expired.

- Unscheduled -> Scheduled: rearm() or reconciliation computes the next
  occurrence and arms trigger "<reminder>_<slot>"
- Any edit or disable: every affected trigger is cancelled before anything
  new is armed, so a slot never has two live triggers
- Scheduled -> Fired: owned by the backend, reported as a DELIVERED event
- Fired: the same slot is re-armed for its next occurrence straight away,
  whether or not the user ever acts on this one
- AwaitingAction -> Logged*: an action event appends to the ActionLog
- AwaitingAction -> Expired: nothing happens; not an error
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional

from dateutil.parser import isoparse

from logger import logger
from . import config
from .action_log import ActionLog
from .backends import EventType, NotificationAction, NotificationBackend, NotificationEvent
from .errors import BackendSchedulingError, NotFoundError, ReminderError, ValidationError
from .recurrence import next_occurrence
from .store import ReminderStore
from .types import (
    ActionStatus,
    Daily,
    NotificationPayload,
    Reminder,
    ScheduledOccurrence,
    parse_trigger_id,
    slot_trigger_id,
    snooze_trigger_id,
)


@dataclass
class SchedulerContext:
    """Collaborators shared by the scheduler, reconciliation and service."""
    store: ReminderStore
    log: ActionLog
    backend: NotificationBackend
    clock: Callable[[], datetime]


@dataclass(frozen=True)
class SchedulingWarning:
    """Raised to the user when a slot keeps failing to arm."""
    reminder_id: str
    trigger_id: str
    failures: int
    message: str


class NotificationScheduler:
    """Keeps backend triggers in line with reminder definitions."""

    def __init__(
        self,
        context: SchedulerContext,
        on_warning: Optional[Callable[[SchedulingWarning], None]] = None,
        retry_budget: Optional[int] = None,
    ):
        self.context = context
        self.on_warning = on_warning
        self.retry_budget = retry_budget or config.BACKEND_RETRY_BUDGET

        # Serializes arm/cancel sequences per reminder
        self._locks: dict[str, asyncio.Lock] = {}
        # Consecutive scheduling failures per trigger id
        self._failures: dict[str, int] = {}
        self._pump_task: Optional[asyncio.Task] = None

    @property
    def backend(self) -> NotificationBackend:
        return self.context.backend

    def lock_for(self, reminder_id: str) -> asyncio.Lock:
        lock = self._locks.get(reminder_id)
        if lock is None:
            lock = self._locks[reminder_id] = asyncio.Lock()
        return lock

    # --- Occurrence computation ---

    def desired_occurrence(
        self,
        reminder: Reminder,
        slot: int,
        reference: datetime,
    ) -> Optional[ScheduledOccurrence]:
        """Where a slot's trigger should point, strictly after the reference.

        Interval rules only step once, so the step can still be at or before
        the reference late in the day. The slot then waits for its next daily
        anchor instead of arming a past instant.
        """
        time_of_day = reminder.times[slot]
        instant = next_occurrence(time_of_day.hour, time_of_day.minute, reminder.recurrence, reference)
        if instant is None:
            logger.warning(f"Reminder {reminder.id} slot {slot} has no possible occurrence")
            return None

        if instant <= reference:
            instant = next_occurrence(time_of_day.hour, time_of_day.minute, Daily(), reference)

        return ScheduledOccurrence(
            reminder_id=reminder.id,
            slot=slot,
            time_of_day=time_of_day,
            scheduled_instant=instant,
        )

    def desired_occurrences(self, reminder: Reminder, reference: datetime) -> list[ScheduledOccurrence]:
        occurrences = []
        for slot in range(reminder.slot_count):
            occurrence = self.desired_occurrence(reminder, slot, reference)
            if occurrence is not None:
                occurrences.append(occurrence)
        return occurrences

    @staticmethod
    def build_payload(reminder: Reminder, occurrence: ScheduledOccurrence, snoozed: bool = False) -> NotificationPayload:
        return NotificationPayload(
            title=config.SNOOZED_TITLE if snoozed else config.NOTIFICATION_TITLE,
            body=f"Time to take {reminder.medication_name}",
            data={
                "reminderId": reminder.id,
                "medicationName": reminder.medication_name,
                "slot": occurrence.slot,
                "scheduledTime": occurrence.scheduled_instant.isoformat(),
                "snoozed": snoozed,
            },
        )

    # --- Arming ---

    async def _commit_trigger(self, reminder: Reminder, trigger_id: str, fires_at: datetime, payload: NotificationPayload) -> bool:
        """Cancel, schedule, then confirm the reminder is still live. Caller holds the lock.

        Returns:
            True if the trigger is armed and still wanted
        """
        backend = self.backend
        await backend.cancel(trigger_id)

        try:
            held = await backend.schedule(trigger_id, fires_at, payload)
        except BackendSchedulingError as e:
            self._record_failure(reminder.id, trigger_id, str(e))
            return False

        if not held:
            self._failures.pop(trigger_id, None)
            logger.info(f"Deferred {trigger_id}: {fires_at.isoformat()} is past the {backend.name} backend's horizon")
            return False

        # A delete or disable that landed while we were scheduling wins
        current = await self.context.store.find(reminder.id)
        if current is None or not current.enabled:
            await backend.cancel(trigger_id)
            logger.info(f"Discarded stale trigger {trigger_id}: reminder deleted or disabled meanwhile")
            return False

        self._failures.pop(trigger_id, None)
        return True

    async def _arm_locked(self, reminder: Reminder, slot: int, reference: datetime) -> Optional[ScheduledOccurrence]:
        occurrence = self.desired_occurrence(reminder, slot, reference)
        if occurrence is None:
            await self.backend.cancel(slot_trigger_id(reminder.id, slot))
            return None

        payload = self.build_payload(reminder, occurrence)
        if not await self._commit_trigger(reminder, occurrence.trigger_id, occurrence.scheduled_instant, payload):
            return None

        logger.info(
            f"Armed {occurrence.trigger_id} ({reminder.medication_name} {occurrence.time_of_day}) "
            f"for {occurrence.scheduled_instant.isoformat()}"
        )
        return occurrence

    async def arm_slot(
        self,
        reminder: Reminder,
        slot: int,
        reference: Optional[datetime] = None,
    ) -> Optional[ScheduledOccurrence]:
        """Arm one slot's next occurrence.

        Backend failures are absorbed: the slot stays unscheduled, the failure
        is counted, and None is returned for the reconciliation loop to retry.
        The stored definition is re-read under the lock, so a caller holding an
        older copy cannot arm an edited, disabled or deleted reminder.
        """
        async with self.lock_for(reminder.id):
            current = await self.context.store.find(reminder.id)
            if current is None or not current.enabled or slot >= current.slot_count:
                return None
            return await self._arm_locked(current, slot, reference or self.context.clock())

    async def rearm(self, reminder_id: str) -> list[ScheduledOccurrence]:
        """Cancel and re-arm every slot of a reminder from its stored definition.

        Safe to call repeatedly; a slot never ends up with more than one trigger.

        Returns:
            The occurrences that were armed (empty for a disabled reminder)

        Raises:
            NotFoundError: If the reminder does not exist
        """
        async with self.lock_for(reminder_id):
            reminder = await self.context.store.get(reminder_id)

            if not reminder.enabled:
                await self._cancel_derived(reminder_id, reminder.slot_count, include_snoozes=True)
                return []

            await self._cancel_derived(reminder_id, reminder.slot_count, include_snoozes=False)

            reference = self.context.clock()
            armed = []
            for slot in range(reminder.slot_count):
                occurrence = await self._arm_locked(reminder, slot, reference)
                if occurrence is not None:
                    armed.append(occurrence)
            return armed

    async def disarm(self, reminder_id: str) -> int:
        """Cancel every trigger derived from a reminder, snoozes included.

        Best effort: works for reminders that no longer exist.

        Returns:
            Number of trigger ids cancelled
        """
        async with self.lock_for(reminder_id):
            reminder = await self.context.store.find(reminder_id)
            slot_count = reminder.slot_count if reminder else 0
            cancelled = await self._cancel_derived(reminder_id, slot_count, include_snoozes=True)

        for trigger_id in [t for t in self._failures if _reminder_of(t) == reminder_id]:
            del self._failures[trigger_id]

        logger.info(f"Disarmed {cancelled} trigger(s) for reminder {reminder_id}")
        return cancelled

    async def _cancel_derived(self, reminder_id: str, slot_count: int, include_snoozes: bool) -> int:
        """Cancel the slot ids we know of plus any live id that maps back to this reminder."""
        ids = {slot_trigger_id(reminder_id, slot) for slot in range(slot_count)}
        for trigger in await self.backend.list_scheduled():
            ref = parse_trigger_id(trigger.id)
            if ref is None or ref.reminder_id != reminder_id:
                continue
            if ref.snoozed and not include_snoozes:
                continue
            ids.add(trigger.id)

        for trigger_id in ids:
            await self.backend.cancel(trigger_id)
        return len(ids)

    async def snooze(
        self,
        reminder_id: str,
        slot: int,
        minutes: Optional[int] = None,
        scheduled_time: Optional[datetime] = None,
    ) -> datetime:
        """Re-notify about a fired occurrence a few minutes from now.

        Args:
            reminder_id: Reminder the occurrence belongs to
            slot: Time-of-day slot that fired
            minutes: Delay (defaults to SNOOZE_MINUTES)
            scheduled_time: When the dose was due; carried in the snoozed
                notification so a later taken/skip logs the original time.
                Defaults to now.

        Returns:
            When the snoozed notification fires

        Raises:
            NotFoundError: If the reminder does not exist
            ValidationError: If the slot does not exist
            BackendSchedulingError: If the backend refuses the trigger
        """
        minutes = minutes or config.SNOOZE_MINUTES
        async with self.lock_for(reminder_id):
            reminder = await self.context.store.get(reminder_id)
            if not 0 <= slot < reminder.slot_count:
                raise ValidationError(f"Reminder {reminder_id} has no slot {slot}")

            now = self.context.clock()
            fires_at = now.replace(microsecond=0) + timedelta(minutes=minutes)
            due = ScheduledOccurrence(reminder_id, slot, reminder.times[slot], scheduled_time or now)
            trigger_id = snooze_trigger_id(reminder_id, slot)

            await self.backend.cancel(trigger_id)
            held = await self.backend.schedule(trigger_id, fires_at, self.build_payload(reminder, due, snoozed=True))

        if not held:
            logger.warning(f"Snooze {trigger_id} at {fires_at.isoformat()} dropped by the {self.backend.name} backend")
        else:
            logger.info(f"Snoozed {reminder.medication_name} ({trigger_id}) until {fires_at.isoformat()}")
        return fires_at

    async def disarm_all(self) -> int:
        """Cancel every trigger this engine armed, snoozes included.

        Foreign triggers on the same backend are left alone.

        Returns:
            Number of trigger ids cancelled
        """
        by_reminder: dict[str, list[str]] = {}
        for trigger in await self.backend.list_scheduled():
            ref = parse_trigger_id(trigger.id)
            if ref is not None:
                by_reminder.setdefault(ref.reminder_id, []).append(trigger.id)

        cancelled = 0
        for reminder_id, trigger_ids in by_reminder.items():
            async with self.lock_for(reminder_id):
                for trigger_id in trigger_ids:
                    await self.backend.cancel(trigger_id)
                    cancelled += 1

        self._failures.clear()
        logger.info(f"Disarmed all {cancelled} reminder trigger(s)")
        return cancelled

    def _record_failure(self, reminder_id: str, trigger_id: str, message: str) -> None:
        failures = self._failures.get(trigger_id, 0) + 1
        self._failures[trigger_id] = failures
        logger.warning(f"Failed to arm {trigger_id} (attempt {failures}): {message}")

        if failures == self.retry_budget:
            warning = SchedulingWarning(
                reminder_id=reminder_id,
                trigger_id=trigger_id,
                failures=failures,
                message=f"Reminder could not be scheduled after {failures} attempts: {message}",
            )
            logger.warning(f"Escalating scheduling failure for {trigger_id}: {message}")
            if self.on_warning is not None:
                try:
                    self.on_warning(warning)
                except Exception as e:
                    logger.error(f"Warning callback failed for {trigger_id}: {e}")

    # --- Event channel ---

    async def handle_event(self, event: NotificationEvent) -> None:
        """Apply one backend event."""
        ref = parse_trigger_id(event.trigger_id)
        if ref is None:
            logger.debug(f"Ignoring event for foreign trigger {event.trigger_id}")
            return

        if event.type == EventType.DELIVERED:
            if ref.snoozed:
                return
            await self._renew_slot(ref.reminder_id, ref.slot, event.fires_at)

        elif event.type == EventType.PRESSED:
            logger.info(f"Notification {event.trigger_id} pressed")

        elif event.type == EventType.ACTION:
            await self._apply_action(event, ref.reminder_id, ref.slot)

    async def _renew_slot(self, reminder_id: str, slot: int, fired_at: Optional[datetime]) -> None:
        """Arm the next occurrence of a slot that just fired.

        The reference is never earlier than the fired instant, so a duplicate
        or early delivery overwrites the trigger instead of re-arming it.
        """
        async with self.lock_for(reminder_id):
            reminder = await self.context.store.find(reminder_id)
            if reminder is None or not reminder.enabled or slot >= reminder.slot_count:
                return

            reference = self.context.clock()
            if fired_at is not None and fired_at > reference:
                reference = fired_at
            await self._arm_locked(reminder, slot, reference)

    async def _apply_action(self, event: NotificationEvent, reminder_id: str, slot: int) -> None:
        scheduled = event.data.get("scheduledTime")
        scheduled_time = isoparse(scheduled) if isinstance(scheduled, str) else event.fires_at

        if event.action == NotificationAction.SNOOZE:
            await self.snooze(reminder_id, slot, scheduled_time=scheduled_time)
            return

        status = ActionStatus.TAKEN if event.action == NotificationAction.TAKEN else ActionStatus.SKIPPED
        await self.context.log.append(reminder_id, scheduled_time or self.context.clock(), status)

    async def _safe_handle(self, event: NotificationEvent) -> None:
        try:
            await self.handle_event(event)
        except NotFoundError as e:
            logger.warning(f"Event {event.type.value} for {event.trigger_id} ignored: {e}")
        except ReminderError as e:
            logger.warning(f"Event {event.type.value} for {event.trigger_id} failed: {e}")
        except Exception as e:
            logger.error(f"Unexpected error handling {event.type.value} for {event.trigger_id}: {e}")

    async def drain_events(self) -> int:
        """Handle every event already queued, without waiting for more.

        Returns:
            Number of events handled
        """
        handled = 0
        while True:
            try:
                event = self.backend.events.get_nowait()
            except asyncio.QueueEmpty:
                return handled
            await self._safe_handle(event)
            handled += 1

    async def run_event_pump(self) -> None:
        """Handle events forever as they arrive."""
        while True:
            event = await self.backend.events.get()
            await self._safe_handle(event)

    def start_event_pump(self) -> asyncio.Task:
        if self._pump_task is None or self._pump_task.done():
            self._pump_task = asyncio.create_task(self.run_event_pump())
            logger.info("Notification event pump started")
        return self._pump_task

    async def stop_event_pump(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None

    def status(self) -> dict:
        """Snapshot for diagnostics."""
        return {
            "backend": self.backend.name,
            "failing_triggers": dict(self._failures),
            "pending_events": self.backend.events.qsize(),
            "event_pump_running": self._pump_task is not None and not self._pump_task.done(),
        }


def _reminder_of(trigger_id: str) -> Optional[str]:
    ref = parse_trigger_id(trigger_id)
    return ref.reminder_id if ref else None
