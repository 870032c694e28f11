from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone, tzinfo
from zoneinfo import ZoneInfo

from grind_ledger.constants import DEFAULT_TZ
from grind_ledger.models import StreakCadence


def now_local(tz_name: str = DEFAULT_TZ) -> datetime:
    return datetime.now(tz=ZoneInfo(tz_name))


def now_utc() -> datetime:
    return datetime.now(tz=timezone.utc)


def localize(dt: datetime, tz: tzinfo) -> datetime:
    """Express ``dt`` in ``tz``; naive values are taken to already be local."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt.astimezone(tz)


def ensure_aware(dt: datetime, tz: tzinfo) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=tz)
    return dt


def parse_timestamp(raw: str | None) -> datetime | None:
    if not raw:
        return None
    value = raw.strip()
    if value.endswith("Z") or value.endswith("z"):
        value = value[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def to_iso_utc(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def date_key(dt: datetime, tz: ZoneInfo) -> str:
    return localize(dt, tz).date().isoformat()


@dataclass(frozen=True)
class PeriodRange:
    start: datetime
    end: datetime

    def contains(self, dt: datetime) -> bool:
        return self.start <= dt < self.end


def period_start_date(day: date, cadence: StreakCadence) -> date:
    if cadence is StreakCadence.WEEKLY:
        # Weeks start on Sunday; date.weekday() is Monday=0.
        return day - timedelta(days=(day.weekday() + 1) % 7)
    if cadence is StreakCadence.MONTHLY:
        return day.replace(day=1)
    return day


def shift_period(start: date, cadence: StreakCadence, delta: int) -> date:
    if cadence is StreakCadence.WEEKLY:
        return start + timedelta(days=7 * delta)
    if cadence is StreakCadence.MONTHLY:
        month_index = start.year * 12 + (start.month - 1) + delta
        return date(month_index // 12, month_index % 12 + 1, 1)
    return start + timedelta(days=delta)


def period_key_date(dt: datetime, cadence: StreakCadence, tz: ZoneInfo) -> date:
    """Local calendar date on which the period containing ``dt`` begins."""
    return period_start_date(localize(dt, tz).date(), cadence)


def period_range(dt: datetime, cadence: StreakCadence, tz: ZoneInfo) -> PeriodRange:
    start = period_key_date(dt, cadence, tz)
    end = shift_period(start, cadence, 1)
    return PeriodRange(
        start=datetime(start.year, start.month, start.day, tzinfo=tz),
        end=datetime(end.year, end.month, end.day, tzinfo=tz),
    )


def full_periods_between(start: date, end: date, cadence: StreakCadence) -> int:
    if end <= start:
        return 0
    if cadence is StreakCadence.WEEKLY:
        return (end - start).days // 7
    if cadence is StreakCadence.MONTHLY:
        return (end.year - start.year) * 12 + (end.month - start.month)
    return (end - start).days


def cadence_period_key(cadence: StreakCadence, now: datetime, tz: ZoneInfo) -> str:
    local_day = localize(now, tz).date()
    if cadence is StreakCadence.WEEKLY:
        iso_year, iso_week, _ = local_day.isocalendar()
        return f"w{iso_year:04d}-W{iso_week:02d}"
    if cadence is StreakCadence.MONTHLY:
        return f"m{local_day.year:04d}-{local_day.month:02d}"
    return local_day.isoformat()


def cadence_suffix(cadence: StreakCadence) -> str:
    if cadence is StreakCadence.WEEKLY:
        return "w"
    if cadence is StreakCadence.MONTHLY:
        return "m"
    return "d"
