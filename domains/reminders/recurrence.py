"""Next-occurrence computation for reminder recurrence rules.

Pure functions: the only notion of "now" is the reference instant passed in,
so the same inputs always give the same answer.
"""

from datetime import datetime, timedelta
from typing import Optional

from .types import (
    CustomDays,
    Daily,
    IntervalHours,
    Recurrence,
    Reminder,
    ScheduledOccurrence,
    Weekday,
    Weekdays,
)


def _at(reference: datetime, hour: int, minute: int) -> datetime:
    return reference.replace(hour=hour, minute=minute, second=0, microsecond=0)


def next_occurrence(
    hour: int,
    minute: int,
    recurrence: Recurrence,
    reference: datetime,
) -> Optional[datetime]:
    """Next instant for one time-of-day slot under a recurrence rule.

    Interval rules add exactly one interval when today's time has passed;
    they do not loop forward until the result is after the reference.

    Args:
        hour: Slot hour (0-23)
        minute: Slot minute (0-59)
        recurrence: Daily, Weekdays, IntervalHours or CustomDays
        reference: Instant to compute from (tzinfo is preserved)

    Returns:
        The occurrence, or None if the rule can never match
    """
    candidate = _at(reference, hour, minute)

    if isinstance(recurrence, Daily):
        if candidate <= reference:
            candidate += timedelta(days=1)
        return candidate

    if isinstance(recurrence, Weekdays):
        for offset in range(7):
            day = candidate + timedelta(days=offset)
            if Weekday.of(day) in recurrence.days and (offset > 0 or day > reference):
                return day
        # Only reachable with an empty day set
        return None

    if isinstance(recurrence, IntervalHours):
        if candidate <= reference:
            candidate += timedelta(hours=recurrence.n)
        return candidate

    if isinstance(recurrence, CustomDays):
        if candidate <= reference:
            candidate += timedelta(days=recurrence.n)
        return candidate

    raise TypeError(f"Unsupported recurrence: {recurrence!r}")


def next_occurrences(reminder: Reminder, reference: datetime) -> list[ScheduledOccurrence]:
    """One occurrence per time-of-day slot, skipping slots that can never fire."""
    occurrences = []
    for slot, time_of_day in enumerate(reminder.times):
        instant = next_occurrence(time_of_day.hour, time_of_day.minute, reminder.recurrence, reference)
        if instant is None:
            continue
        occurrences.append(ScheduledOccurrence(
            reminder_id=reminder.id,
            slot=slot,
            time_of_day=time_of_day,
            scheduled_instant=instant,
        ))
    return occurrences
