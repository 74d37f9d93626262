"""Notification backends - where armed triggers actually live.

A backend can arm a one-shot trigger at an absolute instant, cancel it by id
and list what is currently armed. Platform callbacks (delivery, presses,
action buttons) are not registered as listeners; they are pushed as typed
events onto the backend's queue for the scheduler to drain.

Implementations:
- APSchedulerBackend: one APScheduler date job per trigger ("native")
- TimerBackend: event-loop timers with a short horizon ("timer"); triggers
  past the horizon are dropped without error, like the mobile fallback
"""

import asyncio
import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Awaitable, Callable, Optional, Union

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger

from config import LOCAL_TZ
from logger import logger
from . import config
from .errors import BackendSchedulingError
from .types import NotificationPayload

Presenter = Callable[[str, NotificationPayload], Union[None, Awaitable[None]]]


class EventType(str, Enum):
    """What the platform reported about a notification."""
    DELIVERED = "delivered"
    PRESSED = "pressed"
    ACTION = "action"


class NotificationAction(str, Enum):
    """Action buttons shown on a reminder notification."""
    TAKEN = "taken"
    SKIP = "skip"
    SNOOZE = "snooze"


@dataclass(frozen=True)
class ScheduledTrigger:
    """A trigger the backend currently holds."""
    id: str
    fires_at: datetime


@dataclass(frozen=True)
class NotificationEvent:
    """A platform notification event, queued for the scheduler."""
    type: EventType
    trigger_id: str
    fires_at: Optional[datetime] = None
    data: dict = field(default_factory=dict)
    action: Optional[NotificationAction] = None


def seconds_between(start: datetime, end: datetime) -> float:
    """Elapsed seconds from start to end.

    Aware datetimes are compared in UTC: subtracting two values that share a
    ZoneInfo ignores their offsets, which is off by an hour across a DST change.
    """
    if start.tzinfo is not None and end.tzinfo is not None:
        start = start.astimezone(timezone.utc)
        end = end.astimezone(timezone.utc)
    return (end - start).total_seconds()


async def log_presenter(trigger_id: str, payload: NotificationPayload) -> None:
    """Default display layer: write the notification to the log."""
    logger.info(f"[{trigger_id}] {payload.title}: {payload.body}")


class NotificationBackend(ABC):
    """Capability interface for arming notification triggers."""

    name = "backend"

    def __init__(
        self,
        clock: Callable[[], datetime],
        horizon: Optional[timedelta] = None,
        presenter: Optional[Presenter] = None,
    ):
        self.clock = clock
        self.horizon = horizon
        self.presenter = presenter or log_presenter
        self.permission_granted = True
        self.events: asyncio.Queue[NotificationEvent] = asyncio.Queue()

    @abstractmethod
    async def schedule(self, trigger_id: str, fires_at: datetime, payload: NotificationPayload) -> bool:
        """Arm (or overwrite) a one-shot trigger.

        Returns:
            False if the instant is past the horizon and the trigger was dropped

        Raises:
            BackendSchedulingError: If the trigger cannot be armed
        """

    @abstractmethod
    async def cancel(self, trigger_id: str) -> None:
        """Disarm a trigger. Unknown ids are ignored."""

    @abstractmethod
    async def list_scheduled(self) -> list[ScheduledTrigger]:
        """Triggers currently armed."""

    def within_horizon(self, fires_at: datetime, now: Optional[datetime] = None) -> bool:
        """Whether the backend can be trusted to hold a trigger for this instant."""
        if self.horizon is None:
            return True
        now = now or self.clock()
        return seconds_between(now, fires_at) <= self.horizon.total_seconds()

    def _check_schedulable(self, trigger_id: str, fires_at: datetime) -> None:
        if not self.permission_granted:
            raise BackendSchedulingError("Notification permission not granted", trigger_id)
        if fires_at <= self.clock():
            raise BackendSchedulingError(f"Trigger time {fires_at.isoformat()} is not in the future", trigger_id)

    # --- Event channel ---

    def emit(self, event: NotificationEvent) -> None:
        self.events.put_nowait(event)

    def press(self, trigger_id: str, data: Optional[dict] = None) -> None:
        """Called by the display layer when the user taps a notification."""
        self.emit(NotificationEvent(EventType.PRESSED, trigger_id, data=dict(data or {})))

    def invoke_action(
        self,
        trigger_id: str,
        action: Union[NotificationAction, str],
        data: Optional[dict] = None,
    ) -> None:
        """Called by the display layer when the user taps an action button."""
        self.emit(NotificationEvent(
            EventType.ACTION,
            trigger_id,
            data=dict(data or {}),
            action=NotificationAction(action),
        ))

    async def _deliver(self, trigger_id: str, fires_at: datetime, payload: NotificationPayload) -> None:
        """Show a fired notification and report the delivery."""
        try:
            result = self.presenter(trigger_id, payload)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(f"Failed to display notification {trigger_id}: {e}")

        self.emit(NotificationEvent(
            EventType.DELIVERED,
            trigger_id,
            fires_at=fires_at,
            data=dict(payload.data),
        ))


class APSchedulerBackend(NotificationBackend):
    """Native triggers: one APScheduler DateTrigger job per trigger id."""

    name = "native"

    def __init__(
        self,
        scheduler: AsyncIOScheduler,
        clock: Callable[[], datetime],
        horizon: Optional[timedelta] = None,
        presenter: Optional[Presenter] = None,
    ):
        super().__init__(clock, horizon, presenter)
        self.scheduler = scheduler
        # Job next_run_time is unset until the scheduler starts, so track fire times here
        self._fires_at: dict[str, datetime] = {}

    async def schedule(self, trigger_id: str, fires_at: datetime, payload: NotificationPayload) -> bool:
        self._check_schedulable(trigger_id, fires_at)
        # A stopped scheduler queues jobs without honouring replace_existing
        await self.cancel(trigger_id)

        try:
            self.scheduler.add_job(
                self._fire,
                trigger=DateTrigger(run_date=fires_at),
                args=[trigger_id, fires_at, payload],
                id=trigger_id,
                name=f"reminder:{payload.body[:30]}",
                replace_existing=True,
                misfire_grace_time=3600,
            )
        except Exception as e:
            raise BackendSchedulingError(f"Failed to add job {trigger_id}: {e}", trigger_id) from e

        self._fires_at[trigger_id] = fires_at
        logger.debug(f"Armed job {trigger_id} at {fires_at.isoformat()}")
        return True

    async def cancel(self, trigger_id: str) -> None:
        self._fires_at.pop(trigger_id, None)
        try:
            self.scheduler.remove_job(trigger_id)
        except JobLookupError:
            pass

    async def list_scheduled(self) -> list[ScheduledTrigger]:
        live_ids = {job.id for job in self.scheduler.get_jobs()}
        # Drop ids whose job already ran or was removed behind our back
        for trigger_id in list(self._fires_at):
            if trigger_id not in live_ids:
                del self._fires_at[trigger_id]
        return [ScheduledTrigger(tid, at) for tid, at in self._fires_at.items()]

    async def _fire(self, trigger_id: str, fires_at: datetime, payload: NotificationPayload) -> None:
        self._fires_at.pop(trigger_id, None)
        await self._deliver(trigger_id, fires_at, payload)


class TimerBackend(NotificationBackend):
    """Fallback triggers held as event-loop timers.

    Timers do not survive the process and the platform will not keep them
    alive for long, so anything past the horizon is dropped (logged, not
    raised). The reconciliation loop arms it once it comes into range.
    """

    name = "timer"

    def __init__(
        self,
        clock: Callable[[], datetime],
        horizon: Optional[timedelta] = timedelta(hours=24),
        presenter: Optional[Presenter] = None,
    ):
        super().__init__(clock, horizon, presenter)
        self._timers: dict[str, tuple[asyncio.TimerHandle, datetime]] = {}
        self._tasks: set[asyncio.Task] = set()

    async def schedule(self, trigger_id: str, fires_at: datetime, payload: NotificationPayload) -> bool:
        self._check_schedulable(trigger_id, fires_at)
        await self.cancel(trigger_id)

        now = self.clock()
        if not self.within_horizon(fires_at, now):
            logger.debug(f"Timer {trigger_id} at {fires_at.isoformat()} is past the horizon, dropped")
            return False

        loop = asyncio.get_running_loop()
        delay = seconds_between(now, fires_at)
        handle = loop.call_later(delay, self._fire, trigger_id, fires_at, payload)
        self._timers[trigger_id] = (handle, fires_at)
        return True

    async def cancel(self, trigger_id: str) -> None:
        entry = self._timers.pop(trigger_id, None)
        if entry is not None:
            entry[0].cancel()

    async def list_scheduled(self) -> list[ScheduledTrigger]:
        return [ScheduledTrigger(tid, at) for tid, (_, at) in self._timers.items()]

    def _fire(self, trigger_id: str, fires_at: datetime, payload: NotificationPayload) -> None:
        self._timers.pop(trigger_id, None)
        task = asyncio.ensure_future(self._deliver(trigger_id, fires_at, payload))
        # Keep a reference until done so the task is not garbage collected
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)


def create_backend(
    kind: Optional[str] = None,
    clock: Optional[Callable[[], datetime]] = None,
    scheduler: Optional[AsyncIOScheduler] = None,
    presenter: Optional[Presenter] = None,
) -> NotificationBackend:
    """Pick the backend for this platform.

    Args:
        kind: "native" or "timer" (defaults to NOTIFICATION_BACKEND)
        clock: Returns the current time
        scheduler: APScheduler instance for the native backend
        presenter: Display layer callback

    Raises:
        ValueError: For an unknown backend kind
    """
    kind = (kind or config.NOTIFICATION_BACKEND).lower()
    clock = clock or (lambda: datetime.now(LOCAL_TZ))
    horizon = (
        timedelta(hours=config.NOTIFICATION_HORIZON_HOURS)
        if config.NOTIFICATION_HORIZON_HOURS > 0 else None
    )

    if kind == "native":
        return APSchedulerBackend(
            scheduler or AsyncIOScheduler(timezone=LOCAL_TZ),
            clock,
            presenter=presenter,
        )
    if kind == "timer":
        return TimerBackend(clock, horizon=horizon, presenter=presenter)

    raise ValueError(f"Unknown notification backend: {kind!r}")
