"""Type definitions for medication reminders and their history."""

import re
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum, IntEnum
from typing import Iterable, Optional, Union

from dateutil.parser import isoparse

from .errors import ValidationError

TIME_PATTERN = re.compile(r"^([0-1]?[0-9]|2[0-3]):[0-5][0-9]$")

SNOOZE_PREFIX = "snooze_"


class Weekday(IntEnum):
    """Day of week as stored in reminder records (Sunday first)."""
    SUNDAY = 0
    MONDAY = 1
    TUESDAY = 2
    WEDNESDAY = 3
    THURSDAY = 4
    FRIDAY = 5
    SATURDAY = 6

    @classmethod
    def of(cls, moment: datetime) -> "Weekday":
        # datetime.weekday() counts from Monday
        return cls((moment.weekday() + 1) % 7)


class RecurrenceType(str, Enum):
    """Persisted recurrence tags."""
    DAILY = "daily"
    WEEKDAYS = "weekdays"
    INTERVAL_HOURS = "interval"
    CUSTOM_DAYS = "custom"


class ActionStatus(str, Enum):
    """Outcome the user recorded for an occurrence."""
    TAKEN = "taken"
    SKIPPED = "skipped"


@dataclass(frozen=True, order=True)
class TimeOfDay:
    """A wall-clock time of day (minute precision)."""
    hour: int
    minute: int

    def __post_init__(self):
        if not (0 <= self.hour <= 23 and 0 <= self.minute <= 59):
            raise ValidationError(f"Time of day out of range: {self.hour}:{self.minute}")

    @classmethod
    def parse(cls, value: Union[str, "TimeOfDay"]) -> "TimeOfDay":
        """Parse a strict 24-hour HH:MM string."""
        if isinstance(value, TimeOfDay):
            return value
        if not isinstance(value, str) or not TIME_PATTERN.match(value.strip()):
            raise ValidationError(f"Invalid time (expected HH:MM): {value!r}")
        hour, minute = value.strip().split(":")
        return cls(int(hour), int(minute))

    def __str__(self) -> str:
        return f"{self.hour:02d}:{self.minute:02d}"


# --- Recurrence variants ---


@dataclass(frozen=True)
class Daily:
    type = RecurrenceType.DAILY

    def to_record(self) -> dict:
        return {"type": self.type.value}


@dataclass(frozen=True)
class Weekdays:
    days: frozenset[Weekday]
    type = RecurrenceType.WEEKDAYS

    def __post_init__(self):
        if not self.days:
            raise ValidationError("Weekly recurrence needs at least one weekday")

    def to_record(self) -> dict:
        return {"type": self.type.value, "weekdays": sorted(int(d) for d in self.days)}


@dataclass(frozen=True)
class IntervalHours:
    n: int
    type = RecurrenceType.INTERVAL_HOURS

    def __post_init__(self):
        _check_interval(self.n, "hours")

    def to_record(self) -> dict:
        return {"type": self.type.value, "intervalHours": self.n}


@dataclass(frozen=True)
class CustomDays:
    n: int
    type = RecurrenceType.CUSTOM_DAYS

    def __post_init__(self):
        _check_interval(self.n, "days")

    def to_record(self) -> dict:
        return {"type": self.type.value, "intervalDays": self.n}


Recurrence = Union[Daily, Weekdays, IntervalHours, CustomDays]


def _check_interval(n, unit: str) -> None:
    if isinstance(n, bool) or not isinstance(n, int) or n < 1:
        raise ValidationError(f"Interval in {unit} must be a whole number >= 1, got {n!r}")


def weekdays(*days: int) -> Weekdays:
    """Build a Weekdays recurrence from day numbers (0=Sunday)."""
    try:
        return Weekdays(frozenset(Weekday(d) for d in days))
    except ValueError as e:
        raise ValidationError(f"Invalid weekday: {e}") from e


def recurrence_from_record(record: dict) -> Recurrence:
    """Parse the persisted {type, weekdays?, intervalHours?, intervalDays?} shape."""
    if not isinstance(record, dict):
        raise ValidationError(f"Recurrence must be an object, got {record!r}")

    kind = record.get("type")
    if kind == RecurrenceType.DAILY.value:
        return Daily()
    if kind == RecurrenceType.WEEKDAYS.value:
        return weekdays(*(record.get("weekdays") or []))
    if kind == RecurrenceType.INTERVAL_HOURS.value:
        return IntervalHours(record.get("intervalHours"))
    if kind == RecurrenceType.CUSTOM_DAYS.value:
        return CustomDays(record.get("intervalDays"))

    raise ValidationError(f"Unknown recurrence type: {kind!r}")


def normalize_times(times: Iterable[Union[str, TimeOfDay]]) -> tuple[TimeOfDay, ...]:
    """Parse, de-duplicate and sort times of day.

    Sorting keeps slot indices stable for a given set of times.
    """
    if isinstance(times, str):
        times = [times]
    parsed = {TimeOfDay.parse(t) for t in times}
    if not parsed:
        raise ValidationError("A reminder needs at least one time of day")
    return tuple(sorted(parsed))


def normalize_name(name: str) -> str:
    if not isinstance(name, str) or not name.strip():
        raise ValidationError("Medication name must not be empty")
    return name.strip()


def new_reminder_id() -> str:
    return f"remind_{uuid.uuid4().hex[:12]}"


def _parse_instant(value) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return isoparse(value)


@dataclass(frozen=True)
class Reminder:
    """A user-declared medication reminder."""
    id: str
    medication_name: str
    times: tuple[TimeOfDay, ...]
    recurrence: Recurrence
    enabled: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def create(
        cls,
        medication_name: str,
        times: Iterable[Union[str, TimeOfDay]],
        recurrence: Optional[Recurrence] = None,
        enabled: bool = True,
        reminder_id: str = "",
    ) -> "Reminder":
        """Validate user input and build an unsaved reminder.

        Args:
            medication_name: Name shown in the notification
            times: "HH:MM" strings or TimeOfDay values
            recurrence: Recurrence rule (defaults to Daily)
            enabled: Whether triggers should be armed
            reminder_id: Leave empty to have the store assign one

        Raises:
            ValidationError: If any field is malformed
        """
        recurrence = recurrence if recurrence is not None else Daily()
        if not isinstance(recurrence, (Daily, Weekdays, IntervalHours, CustomDays)):
            raise ValidationError(f"Unsupported recurrence: {recurrence!r}")
        return cls(
            id=reminder_id,
            medication_name=normalize_name(medication_name),
            times=normalize_times(times),
            recurrence=recurrence,
            enabled=bool(enabled),
        )

    def with_changes(self, **changes) -> "Reminder":
        """Return a validated copy with some user-editable fields replaced."""
        allowed = {"medication_name", "times", "recurrence", "enabled"}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Cannot change fields: {', '.join(sorted(unknown))}")

        merged = {
            "medication_name": self.medication_name,
            "times": self.times,
            "recurrence": self.recurrence,
            "enabled": self.enabled,
        }
        merged.update(changes)
        validated = Reminder.create(reminder_id=self.id, **merged)
        return replace(self, **{k: getattr(validated, k) for k in allowed})

    @property
    def slot_count(self) -> int:
        return len(self.times)

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "medicationName": self.medication_name,
            "times": [str(t) for t in self.times],
            "recurrence": self.recurrence.to_record(),
            "enabled": self.enabled,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_record(cls, record: dict) -> "Reminder":
        """Create a Reminder from a persisted record."""
        if not record.get("id"):
            raise ValidationError("Reminder record has no id")
        reminder = cls.create(
            medication_name=record.get("medicationName"),
            times=record.get("times") or [],
            recurrence=recurrence_from_record(record.get("recurrence")),
            enabled=record.get("enabled", True) is not False,
            reminder_id=str(record["id"]),
        )
        return replace(
            reminder,
            created_at=_parse_instant(record.get("createdAt")),
            updated_at=_parse_instant(record.get("updatedAt")),
        )


@dataclass(frozen=True)
class LogEntry:
    """One recorded outcome, carrying a snapshot of the reminder it came from."""
    id: str
    reminder_id: str
    scheduled_time: datetime
    status: ActionStatus
    action_time: datetime
    # Snapshot taken at append time
    medication_name: str
    times: tuple[TimeOfDay, ...]
    recurrence: Recurrence

    def to_record(self) -> dict:
        return {
            "id": self.id,
            "reminderId": self.reminder_id,
            "scheduledTime": self.scheduled_time.isoformat(),
            "status": self.status.value,
            "actionTime": self.action_time.isoformat(),
            "medicationName": self.medication_name,
            "times": [str(t) for t in self.times],
            "recurrence": self.recurrence.to_record(),
        }

    @classmethod
    def from_record(cls, record: dict) -> "LogEntry":
        try:
            return cls(
                id=str(record["id"]),
                reminder_id=str(record["reminderId"]),
                scheduled_time=_parse_instant(record["scheduledTime"]),
                status=ActionStatus(record["status"]),
                action_time=_parse_instant(record["actionTime"]),
                medication_name=record.get("medicationName") or "",
                times=tuple(TimeOfDay.parse(t) for t in record.get("times") or []),
                recurrence=recurrence_from_record(record.get("recurrence") or {"type": "daily"}),
            )
        except (KeyError, ValueError, TypeError) as e:
            raise ValidationError(f"Malformed log record: {e}") from e


# --- Trigger ids ---


def slot_trigger_id(reminder_id: str, slot: int) -> str:
    return f"{reminder_id}_{slot}"


def snooze_trigger_id(reminder_id: str, slot: int) -> str:
    return f"{SNOOZE_PREFIX}{slot_trigger_id(reminder_id, slot)}"


@dataclass(frozen=True)
class TriggerRef:
    """A backend trigger id broken back into its parts."""
    reminder_id: str
    slot: int
    snoozed: bool = False


def parse_trigger_id(trigger_id: str) -> Optional[TriggerRef]:
    """Split "<reminder>_<slot>" or "snooze_<reminder>_<slot>".

    Returns None for ids this engine did not create.
    """
    snoozed = trigger_id.startswith(SNOOZE_PREFIX)
    body = trigger_id[len(SNOOZE_PREFIX):] if snoozed else trigger_id
    reminder_id, sep, slot = body.rpartition("_")
    if not sep or not reminder_id or not slot.isdigit():
        return None
    return TriggerRef(reminder_id=reminder_id, slot=int(slot), snoozed=snoozed)


@dataclass(frozen=True)
class ScheduledOccurrence:
    """The next instant a reminder slot should fire. Derived, never persisted."""
    reminder_id: str
    slot: int
    time_of_day: TimeOfDay
    scheduled_instant: datetime

    @property
    def trigger_id(self) -> str:
        return slot_trigger_id(self.reminder_id, self.slot)


@dataclass(frozen=True)
class NotificationPayload:
    """What the platform displays when a trigger fires."""
    title: str
    body: str
    data: dict = field(default_factory=dict)
