"""Durable keyed collection of reminder definitions."""

import asyncio
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Callable, Optional

from logger import logger
from . import config
from .errors import NotFoundError, ValidationError
from .storage import CollectionStorage
from .types import Reminder, new_reminder_id


class ReminderStore:
    """CRUD over the reminders collection.

    Every operation takes the collection lock, loads the cached collection,
    mutates a copy, persists it and only then swaps the cache. Persistence
    failures propagate as StorageError and leave the cache untouched.
    """

    def __init__(self, storage: CollectionStorage, clock: Callable[[], datetime]):
        self.storage = storage
        self.clock = clock
        self._lock = asyncio.Lock()
        self._cache: Optional[dict[str, Reminder]] = None

    async def _load(self) -> dict[str, Reminder]:
        """Load the collection (cached). Caller must hold the lock."""
        if self._cache is not None:
            return self._cache

        records = await asyncio.to_thread(self.storage.load, config.REMINDERS_COLLECTION)
        reminders: dict[str, Reminder] = {}
        for record in records:
            try:
                reminder = Reminder.from_record(record)
            except (ValidationError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid reminder record {record.get('id')}: {e}")
                continue
            reminders[reminder.id] = reminder

        self._cache = reminders
        return reminders

    async def _commit(self, reminders: dict[str, Reminder]) -> None:
        """Persist a new version of the collection, then adopt it. Caller must hold the lock."""
        records = [r.to_record() for r in reminders.values()]
        await asyncio.to_thread(self.storage.save, config.REMINDERS_COLLECTION, records)
        self._cache = reminders

    def _stamp(self, previous: Optional[datetime]) -> datetime:
        """Current time, forced strictly past the previous updatedAt."""
        now = self.clock()
        if previous is not None and now <= previous:
            now = previous + timedelta(microseconds=1)
        return now

    async def upsert(self, reminder: Reminder) -> Reminder:
        """Create or replace a reminder.

        A reminder without an id (or with an id the store has never seen) is
        created; an existing id keeps its createdAt and gets a fresh updatedAt.

        Returns:
            The stored reminder with id and timestamps filled in

        Raises:
            ValidationError: If the reminder is malformed (nothing saved)
        """
        # Reminder() itself does no checks, so re-run the input validation
        validated = Reminder.create(
            reminder.medication_name,
            reminder.times,
            reminder.recurrence,
            reminder.enabled,
            reminder.id,
        )
        reminder = replace(
            reminder,
            medication_name=validated.medication_name,
            times=validated.times,
            recurrence=validated.recurrence,
            enabled=validated.enabled,
        )

        async with self._lock:
            current = await self._load()
            existing = current.get(reminder.id) if reminder.id else None

            if existing is None:
                now = self.clock()
                stored = replace(
                    reminder,
                    id=reminder.id or new_reminder_id(),
                    created_at=now,
                    updated_at=now,
                )
                action = "Added"
            else:
                stored = replace(
                    reminder,
                    created_at=existing.created_at,
                    updated_at=self._stamp(existing.updated_at),
                )
                action = "Updated"

            updated = dict(current)
            updated[stored.id] = stored
            await self._commit(updated)

        logger.info(f"{action} reminder {stored.id} ({stored.medication_name})")
        return stored

    async def update(self, reminder_id: str, **changes) -> Reminder:
        """Merge user-editable field changes into an existing reminder.

        Raises:
            NotFoundError: If the reminder does not exist
            ValidationError: If the merged reminder is invalid
        """
        async with self._lock:
            current = await self._load()
            existing = current.get(reminder_id)
            if existing is None:
                raise NotFoundError("reminder", reminder_id)

            stored = replace(
                existing.with_changes(**changes),
                updated_at=self._stamp(existing.updated_at),
            )
            updated = dict(current)
            updated[reminder_id] = stored
            await self._commit(updated)

        logger.info(f"Updated reminder {reminder_id}: {', '.join(sorted(changes))}")
        return stored

    async def get(self, reminder_id: str) -> Reminder:
        """Get a reminder by id.

        Raises:
            NotFoundError: If the reminder does not exist
        """
        reminder = await self.find(reminder_id)
        if reminder is None:
            raise NotFoundError("reminder", reminder_id)
        return reminder

    async def find(self, reminder_id: str) -> Optional[Reminder]:
        """Get a reminder by id, or None."""
        async with self._lock:
            return (await self._load()).get(reminder_id)

    async def list(self) -> list[Reminder]:
        """All reminders, in no particular order."""
        async with self._lock:
            return list((await self._load()).values())

    async def delete(self, reminder_id: str) -> None:
        """Delete a reminder. Its history in the action log is left alone.

        Raises:
            NotFoundError: If the reminder does not exist
        """
        async with self._lock:
            current = await self._load()
            if reminder_id not in current:
                raise NotFoundError("reminder", reminder_id)

            updated = {rid: r for rid, r in current.items() if rid != reminder_id}
            await self._commit(updated)

        logger.info(f"Deleted reminder {reminder_id} (history preserved)")

    async def set_enabled(self, reminder_id: str, enabled: bool) -> Reminder:
        """Toggle a reminder without touching its other fields.

        Raises:
            NotFoundError: If the reminder does not exist
        """
        return await self.update(reminder_id, enabled=bool(enabled))

    async def clear(self) -> None:
        """Delete every reminder."""
        async with self._lock:
            await self._commit({})

        logger.info("Cleared all reminders")

    async def reload(self) -> None:
        """Drop the cache so the next read comes from disk."""
        async with self._lock:
            self._cache = None
