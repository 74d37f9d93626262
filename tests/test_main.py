"""Tests for the command line."""

import pytest

from domains.reminders.types import CustomDays, Daily, IntervalHours, weekdays
from main import _recurrence_from_args, build_parser


@pytest.mark.parametrize("argv, expected", [
    (["add", "Aspirin", "--time", "08:00"], Daily()),
    (["add", "Aspirin", "--time", "08:00", "--weekdays", "1,3,5"], weekdays(1, 3, 5)),
    (["add", "Aspirin", "--time", "08:00", "--every-hours", "6"], IntervalHours(6)),
    (["add", "Aspirin", "--time", "08:00", "--every-days", "2"], CustomDays(2)),
])
def test_add_recurrence_flags(argv, expected):
    args = build_parser().parse_args(argv)
    assert _recurrence_from_args(args) == expected


def test_add_collects_times():
    args = build_parser().parse_args(["add", "Metformin", "--time", "08:00", "--time", "20:00", "--disabled"])
    assert args.time == ["08:00", "20:00"]
    assert args.disabled is True


def test_recurrence_flags_are_exclusive():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["add", "Aspirin", "--time", "08:00", "--daily", "--every-days", "2"])


def test_history_arguments():
    args = build_parser().parse_args(["history", "remind_abc", "--limit", "5"])
    assert (args.command, args.id, args.limit) == ("history", "remind_abc", 5)


def test_clear_needs_confirmation_flag():
    assert build_parser().parse_args(["clear"]).yes is False
    assert build_parser().parse_args(["clear", "--yes"]).yes is True
