"""Reminder operations as a UI calls them.

Each write goes to the store first and then to the scheduler. Backend
problems never undo a saved reminder: the slot stays unscheduled and the
reconciliation loop repairs it.
"""

from datetime import datetime
from typing import Iterable, Optional, Union

from logger import logger
from .errors import BackendSchedulingError
from .scheduler import NotificationScheduler, SchedulerContext
from .types import (
    ActionStatus,
    LogEntry,
    Recurrence,
    Reminder,
    ScheduledOccurrence,
    TimeOfDay,
)


class ReminderService:
    """Facade over store, scheduler and action log."""

    def __init__(self, context: SchedulerContext, scheduler: NotificationScheduler):
        self.context = context
        self.scheduler = scheduler

    async def create(
        self,
        medication_name: str,
        times: Iterable[Union[str, TimeOfDay]],
        recurrence: Optional[Recurrence] = None,
        enabled: bool = True,
    ) -> Reminder:
        """Validate, save and arm a new reminder.

        Raises:
            ValidationError: Bad input (nothing saved)
            StorageError: Save failed (nothing saved)
        """
        draft = Reminder.create(medication_name, times, recurrence, enabled)
        reminder = await self.context.store.upsert(draft)
        await self._rearm(reminder.id)
        return reminder

    async def edit(self, reminder_id: str, **changes) -> Reminder:
        """Change name, times, recurrence or enabled, then re-arm.

        Raises:
            NotFoundError: Unknown reminder
            ValidationError: Bad input (nothing saved)
            StorageError: Save failed (nothing saved)
        """
        reminder = await self.context.store.update(reminder_id, **changes)
        await self._rearm(reminder_id)
        return reminder

    async def set_enabled(self, reminder_id: str, enabled: bool) -> Reminder:
        """Enable or disable. Disabling removes every live trigger."""
        reminder = await self.context.store.set_enabled(reminder_id, enabled)
        if enabled:
            await self._rearm(reminder_id)
        else:
            await self.scheduler.disarm(reminder_id)
        return reminder

    async def delete(self, reminder_id: str) -> None:
        """Delete the reminder and its triggers. History is kept."""
        await self.context.store.delete(reminder_id)
        await self.scheduler.disarm(reminder_id)

    async def clear_all(self) -> int:
        """Delete every reminder and the whole history, then cancel our triggers.

        Returns:
            Number of triggers cancelled

        Raises:
            StorageError: If either collection cannot be saved
        """
        await self.context.store.clear()
        await self.context.log.clear()
        cancelled = await self.scheduler.disarm_all()
        logger.info(f"Cleared all reminder data ({cancelled} trigger(s) cancelled)")
        return cancelled

    async def _rearm(self, reminder_id: str) -> list[ScheduledOccurrence]:
        try:
            return await self.scheduler.rearm(reminder_id)
        except BackendSchedulingError as e:
            logger.warning(f"Reminder {reminder_id} saved but not scheduled: {e}")
            return []

    async def mark_taken(self, reminder_id: str, scheduled_time: datetime) -> LogEntry:
        return await self.context.log.append(reminder_id, scheduled_time, ActionStatus.TAKEN)

    async def mark_skipped(self, reminder_id: str, scheduled_time: datetime) -> LogEntry:
        return await self.context.log.append(reminder_id, scheduled_time, ActionStatus.SKIPPED)

    async def snooze(
        self,
        reminder_id: str,
        slot: int,
        minutes: Optional[int] = None,
        scheduled_time: Optional[datetime] = None,
    ) -> datetime:
        return await self.scheduler.snooze(reminder_id, slot, minutes, scheduled_time)

    async def get(self, reminder_id: str) -> Reminder:
        return await self.context.store.get(reminder_id)

    async def reminders(self) -> list[Reminder]:
        """All reminders, oldest first."""
        reminders = await self.context.store.list()
        return sorted(reminders, key=lambda r: (r.created_at is None, r.created_at or datetime.min, r.id))

    async def upcoming(self, reference: Optional[datetime] = None) -> list[ScheduledOccurrence]:
        """Next occurrence of every enabled slot, soonest first."""
        reference = reference or self.context.clock()
        occurrences = []
        for reminder in await self.context.store.list():
            if reminder.enabled:
                occurrences.extend(self.scheduler.desired_occurrences(reminder, reference))
        return sorted(occurrences, key=lambda o: o.scheduled_instant)

    async def history(self, reminder_id: Optional[str] = None, limit: Optional[int] = None) -> list[LogEntry]:
        """Action log, newest first; one reminder's entries if an id is given."""
        if reminder_id is not None:
            return await self.context.log.list_for(reminder_id, limit)
        entries = await self.context.log.list()
        return entries if limit is None else entries[:limit]

    async def delete_log(self, log_id: str) -> None:
        await self.context.log.delete_by_id(log_id)
