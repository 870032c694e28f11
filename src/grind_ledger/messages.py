from __future__ import annotations

from decimal import ROUND_FLOOR, Decimal

from grind_ledger.decimal_utils import ZERO, absolute, decimal_string, round2
from grind_ledger.models import BadgeAward, CategoryUnit, StreakCadence
from grind_ledger.time_utils import cadence_suffix

PROGRESS_LABELS = {
    StreakCadence.DAILY: "today",
    StreakCadence.WEEKLY: "this week",
    StreakCadence.MONTHLY: "this month",
}

CADENCE_UNIT_LABELS = {
    StreakCadence.DAILY: "day",
    StreakCadence.WEEKLY: "week",
    StreakCadence.MONTHLY: "month",
}


def format_minutes_hm(minutes: int) -> str:
    sign = "-" if minutes < 0 else ""
    total = abs(minutes)
    h, m = divmod(total, 60)
    if m == 0:
        return f"{sign}{h}h"
    if h == 0:
        return f"{sign}{m}m"
    return f"{sign}{h}h {m}m"


def format_usd(value: Decimal) -> str:
    amount = round2(value)
    sign = "-" if amount < ZERO else ""
    return f"{sign}${absolute(amount):,.2f}"


def format_by_unit(value: Decimal | int, unit: CategoryUnit) -> str:
    amount = Decimal(value)
    if unit is CategoryUnit.TIME:
        return f"{max(0, int(amount.to_integral_value(rounding=ROUND_FLOOR)))}m"
    if unit is CategoryUnit.COUNT:
        return decimal_string(amount)
    return format_usd(amount)


def progress_label(cadence: StreakCadence) -> str:
    return PROGRESS_LABELS[cadence]


def cadence_unit_label(cadence: StreakCadence) -> str:
    return CADENCE_UNIT_LABELS[cadence]


def badge_label(award: BadgeAward) -> str:
    if award.milestone is None or award.milestone <= 0:
        return award.award_key or "Badge"
    return f"{award.milestone}-{cadence_unit_label(award.cadence)} streak"


def bonus_note(milestone: int, cadence: StreakCadence) -> str:
    return f"Streak bonus ({milestone}{cadence_suffix(cadence)})"


def progress_text(
    is_quit_habit: bool,
    progress: Decimal,
    goal: int,
    unit: CategoryUnit,
    cadence: StreakCadence,
) -> str:
    threshold = format_by_unit(goal, unit)
    label = progress_label(cadence)
    if is_quit_habit:
        if progress == ZERO:
            return f"No relapses {label} - Target < {threshold}"
        return f"{format_by_unit(progress, unit)} logged {label} - Target < {threshold}"
    return f"{format_by_unit(progress, unit)}/{threshold} {label}"


def good_habit_alert(remaining: Decimal, unit: CategoryUnit, cadence: StreakCadence, streak: int) -> str:
    return (
        f"Needs {format_by_unit(remaining, unit)} {progress_label(cadence)} "
        f"to protect {streak}{cadence_suffix(cadence)} streak."
    )


def quit_habit_alert(exceeded: bool, progress: Decimal, goal: int, unit: CategoryUnit, cadence: StreakCadence) -> str:
    prefix = "Target exceeded" if exceeded else "Close to limit"
    return f"{prefix} {progress_label(cadence)}: {format_by_unit(progress, unit)} / {format_by_unit(goal, unit)}."
