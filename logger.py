"""Logging configuration for the medication reminder engine."""

import logging
import sys
from datetime import datetime

from config import LOG_DIR, LOG_LEVEL, LOG_TO_CONSOLE

FILE_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
CONSOLE_FORMAT = "%(asctime)s | %(levelname)-8s | %(message)s"


def _wants_console() -> bool:
    if LOG_TO_CONSOLE is not None:
        return LOG_TO_CONSOLE
    # Default: only when attached to a terminal (not under a service manager)
    return sys.stdout is not None and sys.stdout.isatty()


def setup_logging() -> logging.Logger:
    """Set up the engine logger, plus APScheduler's, on a dated file and optionally the console."""
    logger = logging.getLogger("med_reminders")
    logger.setLevel(LOG_LEVEL)
    logger.handlers.clear()

    log_file = LOG_DIR / f"reminders-{datetime.now().strftime('%Y-%m-%d')}.log"
    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    handlers = [file_handler]

    if _wants_console():
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, datefmt="%H:%M:%S"))
        handlers.append(console_handler)

    for handler in handlers:
        handler.setLevel(LOG_LEVEL)
        logger.addHandler(handler)

    # APScheduler logs every job run at INFO; keep only its problems
    aps_logger = logging.getLogger("apscheduler")
    aps_logger.setLevel(logging.WARNING)
    aps_logger.handlers.clear()
    aps_logger.addHandler(file_handler)

    return logger


# Global logger instance
logger = setup_logging()
