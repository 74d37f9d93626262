"""Tests for next-occurrence computation."""

from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from domains.reminders.errors import ValidationError
from domains.reminders.recurrence import next_occurrence, next_occurrences
from domains.reminders.types import (
    CustomDays,
    Daily,
    IntervalHours,
    Reminder,
    Weekday,
    Weekdays,
    weekdays,
)


class TestDaily:
    def test_before_time_is_today(self):
        ref = datetime(2024, 1, 1, 7, 59, 59)
        assert next_occurrence(8, 0, Daily(), ref) == datetime(2024, 1, 1, 8, 0)

    def test_exactly_at_time_is_tomorrow(self):
        ref = datetime(2024, 1, 1, 8, 0)
        assert next_occurrence(8, 0, Daily(), ref) == datetime(2024, 1, 2, 8, 0)

    def test_after_time_is_tomorrow(self):
        ref = datetime(2024, 1, 1, 9, 0)
        assert next_occurrence(8, 0, Daily(), ref) == datetime(2024, 1, 2, 8, 0)

    def test_month_and_year_rollover(self):
        ref = datetime(2024, 12, 31, 23, 30)
        assert next_occurrence(0, 15, Daily(), ref) == datetime(2025, 1, 1, 0, 15)

    def test_seconds_are_dropped(self):
        ref = datetime(2024, 1, 1, 7, 0, 42, 123456)
        result = next_occurrence(8, 30, Daily(), ref)
        assert result.second == 0 and result.microsecond == 0

    def test_every_reference_in_a_day(self):
        """Before HH:MM -> today, at or after -> tomorrow, for every minute of the day."""
        start = datetime(2024, 3, 5, 0, 0)
        for minutes in range(0, 24 * 60, 7):
            ref = start + timedelta(minutes=minutes)
            today = ref.replace(hour=14, minute=45)
            expected = today if ref < today else today + timedelta(days=1)
            assert next_occurrence(14, 45, Daily(), ref) == expected


class TestWeekdays:
    # 2024-01-01 is a Monday

    def test_same_day_later_time(self):
        ref = datetime(2024, 1, 1, 7, 0)
        assert next_occurrence(8, 0, weekdays(Weekday.MONDAY), ref) == datetime(2024, 1, 1, 8, 0)

    def test_same_day_time_passed_goes_to_next_week(self):
        ref = datetime(2024, 1, 1, 9, 0)
        assert next_occurrence(8, 0, weekdays(Weekday.MONDAY), ref) == datetime(2024, 1, 8, 8, 0)

    def test_skips_to_next_listed_day(self):
        ref = datetime(2024, 1, 1, 9, 0)
        rule = weekdays(Weekday.WEDNESDAY, Weekday.FRIDAY)
        assert next_occurrence(8, 0, rule, ref) == datetime(2024, 1, 3, 8, 0)

    def test_sunday_is_day_zero(self):
        ref = datetime(2024, 1, 1, 9, 0)
        assert next_occurrence(10, 0, weekdays(0), ref) == datetime(2024, 1, 7, 10, 0)

    @pytest.mark.parametrize("days", [
        (Weekday.MONDAY,),
        (Weekday.SUNDAY, Weekday.SATURDAY),
        (Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY),
        tuple(Weekday),
    ])
    def test_result_is_first_qualifying_instant(self, days):
        rule = weekdays(*days)
        start = datetime(2024, 1, 1, 0, 0)
        for hours in range(0, 14 * 24, 5):
            ref = start + timedelta(hours=hours)
            result = next_occurrence(12, 30, rule, ref)

            assert result > ref
            assert Weekday.of(result) in rule.days
            assert (result.hour, result.minute) == (12, 30)

            # No earlier qualifying instant between reference and result
            candidate = ref.replace(hour=12, minute=30, second=0, microsecond=0)
            while candidate < result:
                if candidate > ref:
                    assert Weekday.of(candidate) not in rule.days
                candidate += timedelta(days=1)

    def test_empty_day_set_is_rejected(self):
        with pytest.raises(ValidationError):
            Weekdays(frozenset())

    def test_invalid_day_number_is_rejected(self):
        with pytest.raises(ValidationError):
            weekdays(7)


class TestIntervals:
    def test_interval_hours_adds_one_step(self):
        ref = datetime(2024, 1, 1, 11, 0)
        assert next_occurrence(10, 0, IntervalHours(3), ref) == datetime(2024, 1, 1, 13, 0)

    def test_interval_hours_does_not_catch_up(self):
        ref = datetime(2024, 1, 1, 18, 0)
        # One interval only, even though the result is not after the reference
        assert next_occurrence(10, 0, IntervalHours(3), ref) == datetime(2024, 1, 1, 13, 0)

    def test_interval_hours_before_time(self):
        ref = datetime(2024, 1, 1, 9, 0)
        assert next_occurrence(10, 0, IntervalHours(3), ref) == datetime(2024, 1, 1, 10, 0)

    def test_custom_days(self):
        ref = datetime(2024, 1, 1, 11, 0)
        assert next_occurrence(10, 0, CustomDays(3), ref) == datetime(2024, 1, 4, 10, 0)

    def test_custom_days_before_time(self):
        ref = datetime(2024, 1, 1, 9, 0)
        assert next_occurrence(10, 0, CustomDays(3), ref) == datetime(2024, 1, 1, 10, 0)

    @pytest.mark.parametrize("n", [0, -1, 1.5, True])
    def test_interval_must_be_positive_int(self, n):
        with pytest.raises(ValidationError):
            IntervalHours(n)
        with pytest.raises(ValidationError):
            CustomDays(n)


def test_deterministic():
    ref = datetime(2024, 6, 15, 13, 37)
    for rule in (Daily(), weekdays(1, 4), IntervalHours(2), CustomDays(5)):
        assert next_occurrence(9, 15, rule, ref) == next_occurrence(9, 15, rule, ref)


def test_timezone_is_preserved():
    tz = ZoneInfo("Europe/London")
    ref = datetime(2024, 7, 1, 9, 0, tzinfo=tz)
    result = next_occurrence(8, 0, Daily(), ref)
    assert result.tzinfo is tz
    assert result == datetime(2024, 7, 2, 8, 0, tzinfo=tz)


def test_next_occurrences_one_per_slot():
    reminder = Reminder.create("Metformin", ["20:00", "08:00"], Daily(), reminder_id="remind_abc")
    occurrences = next_occurrences(reminder, datetime(2024, 1, 1, 9, 0))

    assert [o.slot for o in occurrences] == [0, 1]
    assert [o.trigger_id for o in occurrences] == ["remind_abc_0", "remind_abc_1"]
    assert occurrences[0].scheduled_instant == datetime(2024, 1, 2, 8, 0)
    assert occurrences[1].scheduled_instant == datetime(2024, 1, 1, 20, 0)
