from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable
from uuid import UUID
from zoneinfo import ZoneInfo

from grind_ledger.constants import GOOD_CRITICAL_REMAINING_RATIO, QUIT_WARNING_RATIO
from grind_ledger.decimal_utils import ZERO, absolute, round2
from grind_ledger.messages import good_habit_alert, progress_text, quit_habit_alert
from grind_ledger.models import Category, CategoryType, CategoryUnit, Entry, StreakCadence
from grind_ledger.time_utils import (
    cadence_suffix,
    full_periods_between,
    localize,
    period_key_date,
    period_range,
    shift_period,
)


@dataclass(frozen=True)
class AlertThresholds:
    quit_warning_ratio: Decimal = QUIT_WARNING_RATIO
    good_critical_remaining_ratio: Decimal = GOOD_CRITICAL_REMAINING_RATIO


@dataclass(frozen=True)
class StreakAlert:
    category_id: UUID
    title: str
    type: CategoryType
    severity: int
    message: str


@dataclass(frozen=True)
class StreakHighlight:
    category_id: UUID
    title: str
    type: CategoryType
    unit: CategoryUnit
    cadence: StreakCadence
    streak: int
    suffix: str
    progress_text: str


def progress_value(entry: Entry, category: Category) -> Decimal:
    if entry.bonus_key:
        return ZERO
    if category.unit is CategoryUnit.TIME:
        return Decimal(max(0, entry.duration_minutes))
    if category.unit is CategoryUnit.COUNT:
        if entry.resolved_unit(category.unit) is CategoryUnit.COUNT:
            return max(ZERO, entry.resolved_quantity(category.unit))
        return Decimal(max(0, entry.duration_minutes))
    return absolute(entry.amount_usd)


def _scoped(category: Category, entries: Iterable[Entry]) -> list[Entry]:
    return [entry for entry in entries if entry.category_id == category.id]


def total_progress(category: Category, entries: Iterable[Entry], on: datetime, tz: ZoneInfo) -> Decimal:
    window = period_range(on, category.streak_cadence, tz)
    total = ZERO
    for entry in _scoped(category, entries):
        if window.contains(localize(entry.timestamp, tz)):
            total += progress_value(entry, category)
    return round2(total)


def _good_habit_streak(category: Category, entries: list[Entry], now: datetime, tz: ZoneInfo) -> int:
    goal = Decimal(max(0, category.daily_goal_value))
    if goal <= ZERO:
        return 0
    cadence = category.streak_cadence

    totals: dict[date, Decimal] = defaultdict(lambda: ZERO)
    for entry in entries:
        totals[period_key_date(entry.timestamp, cadence, tz)] += progress_value(entry, category)

    cursor = period_key_date(now, cadence, tz)
    if totals.get(cursor, ZERO) < goal:
        cursor = shift_period(cursor, cadence, -1)

    streak = 0
    while totals.get(cursor, ZERO) >= goal:
        streak += 1
        cursor = shift_period(cursor, cadence, -1)
    return streak


def _quit_habit_streak(category: Category, entries: list[Entry], now: datetime, tz: ZoneInfo) -> int:
    relapses = [entry for entry in entries if not entry.bonus_key]
    if not relapses:
        return 0
    latest = max(relapses, key=lambda entry: localize(entry.timestamp, tz))
    cadence = category.streak_cadence
    start = period_key_date(latest.timestamp, cadence, tz)
    end = period_key_date(now, cadence, tz)
    return full_periods_between(start, end, cadence)


def streak_for_category(category: Category, entries: Iterable[Entry], now: datetime, tz: ZoneInfo) -> int:
    if not category.streak_enabled:
        return 0
    scoped = _scoped(category, entries)
    if category.is_quit_habit:
        return _quit_habit_streak(category, scoped, now, tz)
    return _good_habit_streak(category, scoped, now, tz)


def progress_text_for_category(category: Category, entries: Iterable[Entry], now: datetime, tz: ZoneInfo) -> str:
    return progress_text(
        is_quit_habit=category.is_quit_habit,
        progress=total_progress(category, entries, now, tz),
        goal=max(0, category.daily_goal_value),
        unit=category.unit,
        cadence=category.streak_cadence,
    )


def _rank(category_type: CategoryType, title: str) -> tuple[int, str]:
    return (0 if category_type is CategoryType.GOOD_HABIT else 1, title.casefold())


def streak_risk_alerts(
    categories: Iterable[Category],
    entries: Iterable[Entry],
    now: datetime,
    tz: ZoneInfo,
    thresholds: AlertThresholds | None = None,
) -> list[StreakAlert]:
    thresholds = thresholds or AlertThresholds()
    entries = list(entries)
    alerts: list[StreakAlert] = []

    for category in categories:
        if not category.streak_enabled:
            continue
        goal = max(0, category.daily_goal_value)
        progress = total_progress(category, entries, now, tz)

        if not category.is_quit_habit:
            streak = streak_for_category(category, entries, now, tz)
            if streak <= 0 or goal <= 0 or progress >= goal:
                continue
            remaining = round2(Decimal(goal) - progress)
            severity = 3 if remaining / Decimal(goal) <= thresholds.good_critical_remaining_ratio else 2
            message = good_habit_alert(remaining, category.unit, category.streak_cadence, streak)
        else:
            if goal <= 0 or progress <= ZERO:
                continue
            if progress >= goal:
                severity = 3
            elif progress >= Decimal(goal) * thresholds.quit_warning_ratio:
                severity = 2
            else:
                continue
            message = quit_habit_alert(severity == 3, progress, goal, category.unit, category.streak_cadence)

        alerts.append(
            StreakAlert(
                category_id=category.id,
                title=category.title,
                type=category.type,
                severity=severity,
                message=message,
            )
        )

    alerts.sort(key=lambda alert: (-alert.severity, *_rank(alert.type, alert.title)))
    return alerts


def streak_highlight(
    categories: Iterable[Category],
    entries: Iterable[Entry],
    now: datetime,
    tz: ZoneInfo,
) -> StreakHighlight | None:
    entries = list(entries)
    candidates: list[StreakHighlight] = []
    for category in categories:
        streak = streak_for_category(category, entries, now, tz)
        if streak <= 0:
            continue
        candidates.append(
            StreakHighlight(
                category_id=category.id,
                title=category.title,
                type=category.type,
                unit=category.unit,
                cadence=category.streak_cadence,
                streak=streak,
                suffix=cadence_suffix(category.streak_cadence),
                progress_text=progress_text_for_category(category, entries, now, tz),
            )
        )
    if not candidates:
        return None
    candidates.sort(key=lambda item: (-item.streak, *_rank(item.type, item.title)))
    return candidates[0]
