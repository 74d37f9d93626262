"""Global configuration for the medication reminder engine."""

import os
from pathlib import Path
from zoneinfo import ZoneInfo

from dotenv import load_dotenv

load_dotenv()

# Local data (SQLite collections live here unless overridden per domain)
APP_DATA_DIR = Path(os.getenv("APP_DATA_DIR", Path(os.getenv("LOCALAPPDATA", ".")) / "med-reminders"))

# Wall-clock zone that reminder times of day are interpreted in
TIMEZONE = os.getenv("TIMEZONE", "Europe/London")
LOCAL_TZ = ZoneInfo(TIMEZONE)

# Logging
LOG_DIR = Path(os.getenv("LOG_DIR", APP_DATA_DIR / "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
# "1"/"0" forces console logging on or off; unset means "only on a terminal"
LOG_TO_CONSOLE = {"1": True, "0": False}.get(os.getenv("LOG_TO_CONSOLE", ""))
