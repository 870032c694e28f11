from __future__ import annotations

from decimal import Decimal
from typing import Any

CURRENT_SCHEMA_VERSION = 2

DEFAULT_TZ = "UTC"
DEFAULT_USD_PER_HOUR = Decimal("18")
MIN_USD_PER_HOUR = Decimal("0.01")

DEFAULT_MILESTONES: tuple[int, ...] = (3, 7, 30)

# Manual entry bounds per unit.
TIME_ENTRY_MIN_MINUTES = 1
TIME_ENTRY_MAX_MINUTES = 600
COUNT_ENTRY_MIN = 1
COUNT_ENTRY_MAX = 500

# Streak risk alert tuning. Pending product confirmation, kept overridable via settings.
QUIT_WARNING_RATIO = Decimal("0.7")
GOOD_CRITICAL_REMAINING_RATIO = Decimal("0.25")

RECENT_BADGES_LIMIT = 5

IMPORTED_CATEGORY_TITLE = "Imported Category"
IMPORT_DEFAULT_DAILY_GOAL = {
    "time": 30,
    "count": 10,
    "money": 0,
}

FULL_BACKUP_TYPE = "grind-ledger-full-backup"
FULL_BACKUP_VERSION = 1

STATE_STORAGE_KEY = "grind-ledger.v1"

STARTER_CATEGORIES: list[dict[str, Any]] = [
    {
        "title": "Deep Work",
        "type": "goodHabit",
        "unit": "time",
        "multiplier": "1.5",
        "daily_goal_value": 120,
    },
    {
        "title": "Reading",
        "type": "goodHabit",
        "unit": "time",
        "multiplier": "1.1",
        "daily_goal_value": 45,
    },
    {
        "title": "Gaming Relapse",
        "type": "quitHabit",
        "unit": "time",
        "multiplier": "1",
        "daily_goal_value": 0,
    },
]

BACKUP_REMINDER_INTERVAL_DAYS = 7
BACKUP_REMINDER_SNOOZE_HOURS = 24

MAX_RESTORE_POINTS = 3
