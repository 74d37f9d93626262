"""Reminder domain configuration - storage, backend horizon and reconciliation cadence."""

import os

from config import APP_DATA_DIR

# SQLite file holding the reminder and log collections
REMINDER_DB_PATH = os.environ.get("REMINDER_DB_PATH", str(APP_DATA_DIR / "reminders.db"))

# Collection names inside the database
REMINDERS_COLLECTION = "reminders"
LOGS_COLLECTION = "reminder_logs"

# Which notification backend to use: "native" (APScheduler date triggers)
# or "timer" (event-loop timers, the mobile fallback)
NOTIFICATION_BACKEND = os.environ.get("NOTIFICATION_BACKEND", "native").lower()

# How far ahead the backend can hold a trigger. 0 disables the limit.
NOTIFICATION_HORIZON_HOURS = int(os.environ.get("NOTIFICATION_HORIZON_HOURS", 24))

# Reconciliation pass cadence
RECONCILE_INTERVAL_SECONDS = int(os.environ.get("RECONCILE_INTERVAL_SECONDS", 900))

# Consecutive scheduling failures per slot before the user is warned
BACKEND_RETRY_BUDGET = int(os.environ.get("BACKEND_RETRY_BUDGET", 3))

# Snooze
SNOOZE_MINUTES = int(os.environ.get("SNOOZE_MINUTES", 10))

# History
ACTION_LOG_DEFAULT_LIMIT = 50

# Notification content
NOTIFICATION_TITLE = "💊 Medication Reminder"
SNOOZED_TITLE = "💊 Medication Reminder (Snoozed)"
