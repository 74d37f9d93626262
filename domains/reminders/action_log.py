"""Append-only history of what the user did with each occurrence."""

import asyncio
import uuid
from datetime import datetime
from typing import Callable, Optional

from logger import logger
from . import config
from .errors import NotFoundError, ValidationError
from .storage import CollectionStorage
from .store import ReminderStore
from .types import ActionStatus, LogEntry


class ActionLog:
    """Taken/skipped records with a snapshot of the reminder at logging time.

    Entries are never updated. They only reference their reminder softly, so
    deleting the reminder leaves its history readable.
    """

    def __init__(
        self,
        storage: CollectionStorage,
        reminders: ReminderStore,
        clock: Callable[[], datetime],
    ):
        self.storage = storage
        self.reminders = reminders
        self.clock = clock
        # Independent of the reminders collection lock
        self._lock = asyncio.Lock()

    async def _load(self) -> list[LogEntry]:
        records = await asyncio.to_thread(self.storage.load, config.LOGS_COLLECTION)
        entries = []
        for record in records:
            try:
                entries.append(LogEntry.from_record(record))
            except ValidationError as e:
                logger.warning(f"Skipping invalid log record {record.get('id')}: {e}")
        return entries

    async def _save(self, entries: list[LogEntry]) -> None:
        records = [e.to_record() for e in entries]
        await asyncio.to_thread(self.storage.save, config.LOGS_COLLECTION, records)

    async def append(
        self,
        reminder_id: str,
        scheduled_time: datetime,
        status: ActionStatus,
        action_time: Optional[datetime] = None,
    ) -> LogEntry:
        """Record an outcome for one occurrence.

        Args:
            reminder_id: Reminder the occurrence belongs to (must exist now)
            scheduled_time: When the occurrence was due
            status: taken or skipped
            action_time: When the user acted (defaults to now)

        Returns:
            The stored entry, id assigned

        Raises:
            NotFoundError: If the reminder is unknown (no snapshot to take)
        """
        reminder = await self.reminders.find(reminder_id)
        if reminder is None:
            raise NotFoundError("reminder", reminder_id)

        entry = LogEntry(
            id=uuid.uuid4().hex,
            reminder_id=reminder_id,
            scheduled_time=scheduled_time,
            status=ActionStatus(status),
            action_time=action_time or self.clock(),
            medication_name=reminder.medication_name,
            times=reminder.times,
            recurrence=reminder.recurrence,
        )

        async with self._lock:
            entries = await self._load()
            entries.append(entry)
            await self._save(entries)

        logger.info(
            f"Logged {entry.status.value} for reminder {reminder_id} "
            f"({reminder.medication_name}) due {scheduled_time.isoformat()}"
        )
        return entry

    async def list_for(self, reminder_id: str, limit: Optional[int] = None) -> list[LogEntry]:
        """History for one reminder, newest first, including deleted reminders."""
        limit = config.ACTION_LOG_DEFAULT_LIMIT if limit is None else limit
        entries = [e for e in await self.list() if e.reminder_id == reminder_id]
        return entries[:limit]

    async def list(self) -> list[LogEntry]:
        """All entries, newest action first."""
        async with self._lock:
            entries = await self._load()
        return sorted(entries, key=lambda e: e.action_time, reverse=True)

    async def delete_by_id(self, log_id: str) -> None:
        """Delete one entry at the user's request.

        Raises:
            NotFoundError: If no entry has this id
        """
        async with self._lock:
            entries = await self._load()
            remaining = [e for e in entries if e.id != log_id]
            if len(remaining) == len(entries):
                raise NotFoundError("log entry", log_id)
            await self._save(remaining)

        logger.info(f"Deleted log entry {log_id}")

    async def clear(self) -> None:
        """Delete the whole history."""
        async with self._lock:
            await self._save([])

        logger.info("Cleared action log")
