from __future__ import annotations

from collections import defaultdict
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Any, Iterable
from zoneinfo import ZoneInfo

from grind_ledger.decimal_utils import ONE, ZERO, absolute, round2, to_decimal
from grind_ledger.models import Category, CategoryUnit, Entry, TimeConversionMode
from grind_ledger.time_utils import localize

MINUTES_PER_HOUR = Decimal("60")


def amount_usd(category: Category, quantity: Any, usd_per_hour: Decimal) -> Decimal:
    qty = to_decimal(quantity, fallback=ZERO)
    if qty <= ZERO:
        return round2(ZERO)

    if category.unit is CategoryUnit.TIME:
        hours = qty / MINUTES_PER_HOUR
        rate = category.hourly_rate_usd
        if category.time_conversion_mode is TimeConversionMode.HOURLY_RATE and rate is not None and rate > ZERO:
            raw = hours * rate
        else:
            multiplier = category.multiplier if category.multiplier > ZERO else ONE
            raw = hours * usd_per_hour * multiplier
    elif category.unit is CategoryUnit.COUNT:
        per_count = category.usd_per_count
        if per_count is None or per_count <= ZERO:
            per_count = ONE
        raw = qty * per_count
    else:
        raw = qty

    if category.is_quit_habit and raw > ZERO:
        raw = -raw
    return round2(raw)


def balance(entries: Iterable[Entry]) -> Decimal:
    total = round2(ZERO)
    for entry in entries:
        total = round2(total + entry.amount_usd)
    return total


@dataclass(frozen=True)
class DailySummary:
    day: date
    ledger_change: Decimal
    grind: Decimal
    chill: Decimal
    entry_count: int

    @property
    def spent(self) -> Decimal:
        return absolute(self.chill)


def _summarize(day: date, entries: Iterable[Entry]) -> DailySummary:
    ledger_change = round2(ZERO)
    grind = round2(ZERO)
    chill = round2(ZERO)
    count = 0
    for entry in entries:
        count += 1
        ledger_change = round2(ledger_change + entry.amount_usd)
        if entry.amount_usd >= ZERO:
            grind = round2(grind + entry.amount_usd)
        else:
            chill = round2(chill + entry.amount_usd)
    return DailySummary(day=day, ledger_change=ledger_change, grind=grind, chill=chill, entry_count=count)


def daily_ledger_summary(entries: Iterable[Entry], day: date, tz: ZoneInfo) -> DailySummary:
    return _summarize(day, (entry for entry in entries if localize(entry.timestamp, tz).date() == day))


def daily_summaries(entries: Iterable[Entry], tz: ZoneInfo) -> list[DailySummary]:
    """One summary per local calendar day, newest first."""
    by_day: dict[date, list[Entry]] = defaultdict(list)
    for entry in entries:
        by_day[localize(entry.timestamp, tz).date()].append(entry)
    return [_summarize(day, by_day[day]) for day in sorted(by_day, reverse=True)]
