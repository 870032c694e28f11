from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from grind_ledger.constants import CURRENT_SCHEMA_VERSION, DEFAULT_MILESTONES, DEFAULT_USD_PER_HOUR
from grind_ledger.decimal_utils import absolute


class CategoryType(str, Enum):
    GOOD_HABIT = "goodHabit"
    QUIT_HABIT = "quitHabit"


class CategoryUnit(str, Enum):
    TIME = "time"
    COUNT = "count"
    MONEY = "money"


class TimeConversionMode(str, Enum):
    MULTIPLIER = "multiplier"
    HOURLY_RATE = "hourlyRate"


class StreakCadence(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ConflictPolicy(str, Enum):
    REPLACE_EXISTING = "replaceExisting"
    KEEP_EXISTING = "keepExisting"


@dataclass(frozen=True)
class Category:
    id: UUID
    title: str
    type: CategoryType = CategoryType.GOOD_HABIT
    unit: CategoryUnit = CategoryUnit.TIME
    multiplier: Decimal = Decimal("1")
    time_conversion_mode: TimeConversionMode = TimeConversionMode.MULTIPLIER
    hourly_rate_usd: Decimal | None = None
    usd_per_count: Decimal | None = None
    daily_goal_value: int = 0
    streak_enabled: bool = True
    streak_cadence: StreakCadence = StreakCadence.DAILY
    badge_enabled: bool = True
    badge_milestones: tuple[int, ...] = DEFAULT_MILESTONES
    streak_bonus_enabled: bool = False
    streak_bonus_schedule: dict[int, Decimal] = field(default_factory=dict)
    streak_bonus_amount_usd: Decimal | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_quit_habit(self) -> bool:
        return self.type is CategoryType.QUIT_HABIT


@dataclass(frozen=True)
class Entry:
    id: UUID
    timestamp: datetime
    category_id: UUID
    amount_usd: Decimal
    duration_minutes: int = 0
    quantity: Decimal | None = None
    unit: CategoryUnit | None = None
    note: str = ""
    bonus_key: str | None = None
    is_manual: bool = False
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def resolved_unit(self, category_unit: CategoryUnit | None = None) -> CategoryUnit:
        if self.unit is not None:
            return self.unit
        if self.duration_minutes > 0:
            return CategoryUnit.TIME
        if category_unit is not None:
            return category_unit
        return CategoryUnit.MONEY

    def resolved_quantity(self, category_unit: CategoryUnit | None = None) -> Decimal:
        if self.quantity is not None:
            return self.quantity
        if self.resolved_unit(category_unit) is CategoryUnit.MONEY:
            return absolute(self.amount_usd)
        return Decimal(max(0, self.duration_minutes))


@dataclass(frozen=True)
class BadgeAward:
    id: UUID
    award_key: str
    date_awarded: datetime
    category_id: UUID | None = None
    milestone: int | None = None
    cadence: StreakCadence = StreakCadence.DAILY


@dataclass(frozen=True)
class ActiveSession:
    category_id: UUID
    start_time: datetime
    is_paused: bool = False
    accumulated_elapsed_seconds: int = 0
    running_segment_start_time: datetime | None = None


@dataclass(frozen=True)
class AppSettings:
    usd_per_hour: Decimal = DEFAULT_USD_PER_HOUR
    last_full_backup_at: datetime | None = None
    last_backup_reminder_dismissed_at: datetime | None = None


@dataclass(frozen=True)
class RestorePoint:
    """Serialized state captured before a destructive operation."""

    id: UUID
    created_at: datetime
    reason: str
    summary: str
    state: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CategoryDeleteUndo:
    deleted_at: datetime
    category: Category
    entries: tuple[Entry, ...] = ()
    badge_awards: tuple[BadgeAward, ...] = ()


@dataclass(frozen=True)
class EntryDeleteUndo:
    deleted_at: datetime
    entries: tuple[Entry, ...] = ()


@dataclass(frozen=True)
class AppState:
    settings: AppSettings = field(default_factory=AppSettings)
    categories: tuple[Category, ...] = ()
    entries: tuple[Entry, ...] = ()
    badge_awards: tuple[BadgeAward, ...] = ()
    active_session: ActiveSession | None = None
    restore_points: tuple[RestorePoint, ...] = ()
    # Wire form of the last import's UndoPayload.
    last_import_undo: dict[str, Any] | None = None
    last_category_delete: CategoryDeleteUndo | None = None
    last_entry_delete: EntryDeleteUndo | None = None
    schema_version: int = CURRENT_SCHEMA_VERSION

    def category(self, category_id: UUID) -> Category | None:
        for category in self.categories:
            if category.id == category_id:
                return category
        return None

    def entry(self, entry_id: UUID) -> Entry | None:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def entries_for(self, category_id: UUID) -> list[Entry]:
        return [entry for entry in self.entries if entry.category_id == category_id]

    @property
    def award_keys(self) -> set[str]:
        return {award.award_key for award in self.badge_awards}

