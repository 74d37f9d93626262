"""Medication reminder engine - process entry point and command line.

Usage:
    python main.py                      # run the engine (same as "run")
    python main.py add Aspirin --time 08:00 --time 20:00 --weekdays 1,3,5
    python main.py list | upcoming | history [ID]
    python main.py enable ID | disable ID | delete ID
"""

import argparse
import asyncio
import signal
import sys

from logger import logger
from domains.reminders import (
    CustomDays,
    Daily,
    IntervalHours,
    ReminderError,
    build_engine,
    weekdays,
)


def _recurrence_from_args(args):
    if args.weekdays:
        return weekdays(*(int(d) for d in args.weekdays.split(",") if d.strip()))
    if args.every_hours:
        return IntervalHours(args.every_hours)
    if args.every_days:
        return CustomDays(args.every_days)
    return Daily()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Medication reminder engine")
    sub = parser.add_subparsers(dest="command")

    sub.add_parser("run", help="Run the scheduler until interrupted")
    sub.add_parser("list", help="List reminders")
    sub.add_parser("upcoming", help="Show the next occurrence of every slot")

    add = sub.add_parser("add", help="Create a reminder")
    add.add_argument("name", help="Medication name")
    add.add_argument("--time", action="append", required=True, help="Time of day, HH:MM (repeatable)")
    recurrence = add.add_mutually_exclusive_group()
    recurrence.add_argument("--daily", action="store_true", help="Every day (default)")
    recurrence.add_argument("--weekdays", help="Comma-separated days, 0=Sunday .. 6=Saturday")
    recurrence.add_argument("--every-hours", type=int, help="Repeat N hours after the time of day")
    recurrence.add_argument("--every-days", type=int, help="Repeat every N days")
    add.add_argument("--disabled", action="store_true", help="Save without arming")

    for name, help_text in (("delete", "Delete a reminder (history is kept)"),
                            ("enable", "Enable a reminder"),
                            ("disable", "Disable a reminder")):
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("id", help="Reminder ID")

    clear = sub.add_parser("clear", help="Delete every reminder and all history")
    clear.add_argument("--yes", action="store_true", help="Confirm; nothing is deleted without it")

    history = sub.add_parser("history", help="Show taken/skipped history")
    history.add_argument("id", nargs="?", help="Only this reminder")
    history.add_argument("--limit", type=int, default=None)

    return parser


async def run_forever(engine) -> None:
    """Run the engine until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: rely on KeyboardInterrupt
            pass

    await engine.start()
    logger.info("Reminder engine running")
    try:
        await stop.wait()
    finally:
        await engine.stop()
        logger.info("Reminder engine stopped")


async def run_command(args) -> int:
    engine = build_engine()
    service = engine.service

    if args.command in (None, "run"):
        await run_forever(engine)
        return 0

    try:
        if args.command == "list":
            for r in await service.reminders():
                state = "on " if r.enabled else "off"
                times = ", ".join(str(t) for t in r.times)
                print(f"{r.id}  [{state}]  {r.medication_name}  {times}  {r.recurrence.to_record()}")

        elif args.command == "upcoming":
            for o in await service.upcoming():
                print(f"{o.scheduled_instant:%a %d %b %H:%M}  {o.trigger_id}")

        elif args.command == "add":
            reminder = await service.create(
                args.name,
                args.time,
                _recurrence_from_args(args),
                enabled=not args.disabled,
            )
            print(f"Added {reminder.id}")

        elif args.command == "delete":
            await service.delete(args.id)
            print(f"Deleted {args.id}")

        elif args.command in ("enable", "disable"):
            await service.set_enabled(args.id, args.command == "enable")
            print(f"{args.command.capitalize()}d {args.id}")

        elif args.command == "clear":
            if not args.yes:
                print("Refusing to clear without --yes")
                return 1
            cancelled = await service.clear_all()
            print(f"Cleared all reminders and history ({cancelled} trigger(s) cancelled)")

        elif args.command == "history":
            for e in await service.history(args.id, args.limit):
                print(f"{e.action_time:%Y-%m-%d %H:%M}  {e.status.value:<7}  {e.medication_name}  "
                      f"(due {e.scheduled_time:%Y-%m-%d %H:%M})")

    except ReminderError as e:
        print(f"Error: {e}")
        return 1
    finally:
        engine.storage.close()

    return 0


def main() -> None:
    args = build_parser().parse_args()
    sys.exit(asyncio.run(run_command(args)))


if __name__ == "__main__":
    main()
