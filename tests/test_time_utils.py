from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

from grind_ledger.models import StreakCadence
from grind_ledger.time_utils import (
    cadence_period_key,
    date_key,
    full_periods_between,
    localize,
    parse_timestamp,
    period_range,
    period_start_date,
    shift_period,
)

OSLO = ZoneInfo("Europe/Oslo")


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=OSLO)


def test_week_starts_on_sunday() -> None:
    # 2026-02-04 is a Wednesday.
    assert period_start_date(date(2026, 2, 4), StreakCadence.WEEKLY) == date(2026, 2, 1)
    assert period_start_date(date(2026, 2, 1), StreakCadence.WEEKLY) == date(2026, 2, 1)
    assert period_start_date(date(2026, 2, 7), StreakCadence.WEEKLY) == date(2026, 2, 1)


def test_weekly_period_range_oslo() -> None:
    week = period_range(_dt(2026, 2, 4, 10, 30), StreakCadence.WEEKLY, OSLO)
    assert week.start.strftime("%Y-%m-%d %H:%M") == "2026-02-01 00:00"
    assert week.end.strftime("%Y-%m-%d %H:%M") == "2026-02-08 00:00"
    assert week.contains(_dt(2026, 2, 7, 23, 59))
    assert not week.contains(_dt(2026, 2, 8, 0, 0))


def test_shift_period_months_across_year() -> None:
    assert shift_period(date(2026, 1, 1), StreakCadence.MONTHLY, -1) == date(2025, 12, 1)
    assert shift_period(date(2025, 12, 1), StreakCadence.MONTHLY, 1) == date(2026, 1, 1)


def test_full_periods_between() -> None:
    assert full_periods_between(date(2026, 2, 7), date(2026, 2, 10), StreakCadence.DAILY) == 3
    assert full_periods_between(date(2026, 2, 1), date(2026, 2, 15), StreakCadence.WEEKLY) == 2
    assert full_periods_between(date(2025, 11, 1), date(2026, 2, 1), StreakCadence.MONTHLY) == 3
    assert full_periods_between(date(2026, 2, 10), date(2026, 2, 10), StreakCadence.DAILY) == 0


def test_cadence_period_keys() -> None:
    now = _dt(2026, 2, 4)
    assert cadence_period_key(StreakCadence.DAILY, now, OSLO) == "2026-02-04"
    assert cadence_period_key(StreakCadence.WEEKLY, now, OSLO) == "w2026-W06"
    assert cadence_period_key(StreakCadence.MONTHLY, now, OSLO) == "m2026-02"


def test_parse_timestamp_variants() -> None:
    assert parse_timestamp("2026-02-04T09:00:00Z") == datetime(2026, 2, 4, 9, 0, tzinfo=timezone.utc)
    naive = parse_timestamp("2026-02-04T09:00:00")
    assert naive is not None and naive.tzinfo == timezone.utc
    assert parse_timestamp("not a date") is None
    assert parse_timestamp(None) is None


def test_local_day_boundary() -> None:
    late_utc = datetime(2026, 2, 4, 23, 30, tzinfo=timezone.utc)
    assert date_key(late_utc, OSLO) == "2026-02-05"
    assert localize(datetime(2026, 2, 4, 12, 0), OSLO).tzinfo == OSLO
