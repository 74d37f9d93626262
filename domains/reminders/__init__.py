"""Medication reminders: recurrence, scheduling, reconciliation and history.

Reminders are stored in SQLite; triggers are armed on a notification backend
(APScheduler date jobs or event-loop timers) and kept honest by a periodic
reconciliation pass.
"""

from .action_log import ActionLog
from .backends import (
    APSchedulerBackend,
    EventType,
    NotificationAction,
    NotificationBackend,
    NotificationEvent,
    ScheduledTrigger,
    TimerBackend,
    create_backend,
)
from .engine import ReminderEngine, build_engine
from .errors import (
    BackendSchedulingError,
    NotFoundError,
    ReminderError,
    StorageError,
    ValidationError,
)
from .reconcile import ReconcileReport, ReconciliationLoop
from .recurrence import next_occurrence, next_occurrences
from .scheduler import NotificationScheduler, SchedulerContext, SchedulingWarning
from .service import ReminderService
from .storage import CollectionStorage
from .store import ReminderStore
from .types import (
    ActionStatus,
    CustomDays,
    Daily,
    IntervalHours,
    LogEntry,
    Reminder,
    ScheduledOccurrence,
    TimeOfDay,
    Weekday,
    Weekdays,
    weekdays,
)

__all__ = [
    "ActionLog",
    "APSchedulerBackend",
    "EventType",
    "NotificationAction",
    "NotificationBackend",
    "NotificationEvent",
    "ScheduledTrigger",
    "TimerBackend",
    "create_backend",
    "ReminderEngine",
    "build_engine",
    "BackendSchedulingError",
    "NotFoundError",
    "ReminderError",
    "StorageError",
    "ValidationError",
    "ReconcileReport",
    "ReconciliationLoop",
    "next_occurrence",
    "next_occurrences",
    "NotificationScheduler",
    "SchedulerContext",
    "SchedulingWarning",
    "ReminderService",
    "CollectionStorage",
    "ReminderStore",
    "ActionStatus",
    "CustomDays",
    "Daily",
    "IntervalHours",
    "LogEntry",
    "Reminder",
    "ScheduledOccurrence",
    "TimeOfDay",
    "Weekday",
    "Weekdays",
    "weekdays",
]
