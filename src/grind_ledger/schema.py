from __future__ import annotations

import logging
import re
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from grind_ledger.constants import (
    CURRENT_SCHEMA_VERSION,
    DEFAULT_MILESTONES,
    DEFAULT_USD_PER_HOUR,
    MAX_RESTORE_POINTS,
    MIN_USD_PER_HOUR,
)
from grind_ledger.decimal_utils import ONE, ZERO, money_string, round2, to_decimal, to_int
from grind_ledger.models import (
    ActiveSession,
    AppSettings,
    AppState,
    BadgeAward,
    Category,
    CategoryDeleteUndo,
    CategoryType,
    CategoryUnit,
    Entry,
    EntryDeleteUndo,
    RestorePoint,
    StreakCadence,
    TimeConversionMode,
)
from grind_ledger.time_utils import now_utc, parse_timestamp, to_iso_utc

logger = logging.getLogger(__name__)

_MILESTONE_SPLIT = re.compile(r"[\s,]+")


def parse_uuid(value: Any) -> UUID | None:
    if isinstance(value, UUID):
        return value
    if value is None:
        return None
    try:
        return UUID(str(value).strip())
    except ValueError:
        return None


def as_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value in ("true", "1", 1):
        return True
    if value in ("false", "0", 0):
        return False
    return default


def resolve_enum(enum_cls: Any, raw: Any, default: Any) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        return default


def _milestone_tokens(raw: Any) -> list[Any]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    return [token for token in _MILESTONE_SPLIT.split(str(raw)) if token]


def resolve_milestones(raw: Any, defaults: tuple[int, ...] = DEFAULT_MILESTONES) -> tuple[int, ...]:
    parsed: set[int] = set()
    for token in _milestone_tokens(raw):
        value = to_int(token, fallback=0) if not isinstance(token, str) else _parse_positive_int(token)
        if value and value > 0:
            parsed.add(value)
    if not parsed:
        return tuple(defaults)
    return tuple(sorted(parsed))


def parse_milestones_strict(raw: Any) -> tuple[int, ...] | None:
    """Like ``resolve_milestones`` but ``None`` when any token is not a positive integer."""
    tokens = _milestone_tokens(raw)
    if not tokens:
        return None
    parsed: set[int] = set()
    for token in tokens:
        if isinstance(token, bool):
            return None
        value = token if isinstance(token, int) else _parse_positive_int(str(token))
        if value is None or value <= 0:
            return None
        parsed.add(value)
    return tuple(sorted(parsed))


def _parse_positive_int(token: str) -> int | None:
    token = token.strip()
    if not token.isdigit():
        return None
    return int(token)


def bonus_schedule_pairs(raw: Any) -> list[tuple[Any, Any]]:
    if raw is None:
        return []
    if isinstance(raw, dict):
        return list(raw.items())
    pairs: list[tuple[Any, Any]] = []
    for chunk in str(raw).split(","):
        if ":" not in chunk:
            continue
        key, value = chunk.split(":", maxsplit=1)
        pairs.append((key, value))
    return pairs


def parse_bonus_schedule(raw: Any) -> dict[int, Decimal]:
    """Parse ``"3:1.25,7:3.50"`` (or an already-decoded mapping) into milestone -> USD."""
    schedule: dict[int, Decimal] = {}
    for key, value in bonus_schedule_pairs(raw):
        milestone = _parse_positive_int(str(key))
        amount = to_decimal(value, fallback=None)
        if milestone is None or milestone <= 0 or amount is None or amount <= ZERO:
            continue
        schedule[milestone] = round2(amount)
    return schedule


def encode_bonus_schedule(schedule: dict[int, Decimal]) -> str | None:
    if not schedule:
        return None
    return ",".join(f"{milestone}:{money_string(schedule[milestone])}" for milestone in sorted(schedule))


def normalize_category(category: Category) -> Category:
    """Force unit-dependent fields into a consistent shape."""
    unit = category.unit
    mode = category.time_conversion_mode if unit is CategoryUnit.TIME else TimeConversionMode.MULTIPLIER
    multiplier = category.multiplier if unit is CategoryUnit.TIME and category.multiplier > ZERO else ONE

    hourly_rate = category.hourly_rate_usd
    if unit is not CategoryUnit.TIME or mode is not TimeConversionMode.HOURLY_RATE:
        hourly_rate = None
    elif hourly_rate is not None and hourly_rate <= ZERO:
        hourly_rate = None

    usd_per_count = category.usd_per_count
    if unit is not CategoryUnit.COUNT:
        usd_per_count = None
    elif usd_per_count is None or usd_per_count <= ZERO:
        usd_per_count = ONE

    streak_enabled = category.streak_enabled
    legacy_bonus = category.streak_bonus_amount_usd
    if legacy_bonus is not None and legacy_bonus <= ZERO:
        legacy_bonus = None

    return replace(
        category,
        time_conversion_mode=mode,
        multiplier=multiplier,
        hourly_rate_usd=hourly_rate,
        usd_per_count=usd_per_count,
        daily_goal_value=max(0, category.daily_goal_value),
        badge_enabled=category.badge_enabled if streak_enabled else False,
        streak_bonus_enabled=category.streak_bonus_enabled if streak_enabled else False,
        badge_milestones=resolve_milestones(category.badge_milestones),
        streak_bonus_amount_usd=legacy_bonus,
    )


def _timestamp(raw: Any, fallback: datetime) -> datetime:
    if isinstance(raw, datetime):
        return raw
    parsed = parse_timestamp(raw if isinstance(raw, str) else None)
    return parsed if parsed is not None else fallback


def _optional_timestamp(raw: Any) -> datetime | None:
    return parse_timestamp(raw) if isinstance(raw, str) else None


def _optional_decimal(raw: Any) -> Decimal | None:
    return to_decimal(raw, fallback=None)


def category_from_dict(raw: Any, now: datetime) -> Category | None:
    if not isinstance(raw, dict):
        return None
    category_id = parse_uuid(raw.get("id"))
    title = str(raw.get("title") or "").strip()
    if category_id is None or not title:
        return None

    category = Category(
        id=category_id,
        title=title,
        type=resolve_enum(CategoryType, raw.get("type"), CategoryType.GOOD_HABIT),
        unit=resolve_enum(CategoryUnit, raw.get("unit"), CategoryUnit.TIME),
        multiplier=to_decimal(raw.get("multiplier"), fallback=ONE),
        time_conversion_mode=resolve_enum(
            TimeConversionMode, raw.get("timeConversionMode"), TimeConversionMode.MULTIPLIER
        ),
        hourly_rate_usd=_optional_decimal(raw.get("hourlyRateUSD")),
        usd_per_count=_optional_decimal(raw.get("usdPerCount")),
        daily_goal_value=to_int(raw.get("dailyGoalValue", raw.get("dailyGoalMinutes")), fallback=0),
        streak_enabled=as_bool(raw.get("streakEnabled"), True),
        streak_cadence=resolve_enum(StreakCadence, raw.get("streakCadence"), StreakCadence.DAILY),
        badge_enabled=as_bool(raw.get("badgeEnabled"), True),
        badge_milestones=resolve_milestones(raw.get("badgeMilestones")),
        streak_bonus_enabled=as_bool(raw.get("streakBonusEnabled"), False),
        streak_bonus_schedule=parse_bonus_schedule(raw.get("streakBonusSchedule")),
        streak_bonus_amount_usd=_optional_decimal(raw.get("streakBonusAmountUSD")),
        created_at=_timestamp(raw.get("createdAt"), now),
        updated_at=_timestamp(raw.get("updatedAt"), now),
    )
    return normalize_category(category)


def entry_from_dict(raw: Any, now: datetime) -> Entry | None:
    if not isinstance(raw, dict):
        return None
    entry_id = parse_uuid(raw.get("id"))
    category_id = parse_uuid(raw.get("categoryId"))
    if entry_id is None or category_id is None:
        return None

    quantity = _optional_decimal(raw.get("quantity"))
    if quantity is not None and quantity < ZERO:
        quantity = ZERO
    unit_raw = raw.get("unit")
    bonus_key = raw.get("bonusKey")
    return Entry(
        id=entry_id,
        timestamp=_timestamp(raw.get("timestamp"), now),
        category_id=category_id,
        amount_usd=round2(to_decimal(raw.get("amountUSD"), fallback=ZERO)),
        duration_minutes=max(0, to_int(raw.get("durationMinutes"), fallback=0)),
        quantity=quantity,
        unit=resolve_enum(CategoryUnit, unit_raw, None) if unit_raw is not None else None,
        note=str(raw.get("note") or ""),
        bonus_key=str(bonus_key) if bonus_key else None,
        is_manual=bool(raw.get("isManual")),
        created_at=_timestamp(raw.get("createdAt"), now),
        updated_at=_timestamp(raw.get("updatedAt"), now),
    )


def badge_award_from_dict(raw: Any, now: datetime) -> BadgeAward | None:
    if not isinstance(raw, dict):
        return None
    award_key = str(raw.get("awardKey") or "").strip()
    if not award_key:
        return None
    milestone = to_int(raw.get("milestone"), fallback=0)
    return BadgeAward(
        id=parse_uuid(raw.get("id")) or uuid.uuid5(uuid.NAMESPACE_URL, award_key),
        award_key=award_key,
        date_awarded=_timestamp(raw.get("dateAwarded"), now),
        category_id=parse_uuid(raw.get("categoryId")),
        milestone=milestone if milestone > 0 else None,
        cadence=resolve_enum(StreakCadence, raw.get("cadence"), StreakCadence.DAILY),
    )


def session_from_dict(raw: Any) -> ActiveSession | None:
    if not isinstance(raw, dict):
        return None
    category_id = parse_uuid(raw.get("categoryId"))
    start_time = parse_timestamp(raw.get("startTime")) if isinstance(raw.get("startTime"), str) else None
    if category_id is None or start_time is None:
        return None
    is_paused = bool(raw.get("isPaused"))
    segment_raw = raw.get("runningSegmentStartTime")
    segment = parse_timestamp(segment_raw) if isinstance(segment_raw, str) else None
    if not is_paused and segment is None:
        segment = start_time
    return ActiveSession(
        category_id=category_id,
        start_time=start_time,
        is_paused=is_paused,
        accumulated_elapsed_seconds=max(0, to_int(raw.get("accumulatedElapsedSeconds"), fallback=0)),
        running_segment_start_time=None if is_paused else segment,
    )


def settings_from_dict(raw: Any, default_usd_per_hour: Decimal = DEFAULT_USD_PER_HOUR) -> AppSettings:
    if not isinstance(raw, dict):
        return AppSettings(usd_per_hour=default_usd_per_hour)
    rate = to_decimal(raw.get("usdPerHour"), fallback=None)
    return AppSettings(
        usd_per_hour=round2(max(MIN_USD_PER_HOUR, rate)) if rate is not None else default_usd_per_hour,
        last_full_backup_at=_optional_timestamp(raw.get("lastFullBackupAt")),
        last_backup_reminder_dismissed_at=_optional_timestamp(raw.get("lastBackupReminderDismissedAt")),
    )


def _items(raw: dict[str, Any], key: str) -> list[Any]:
    value = raw.get(key)
    return value if isinstance(value, list) else []


# Undo journal keys are not part of a restore point's snapshot.
_JOURNAL_KEYS = ("restorePoints", "lastImportUndo", "lastCategoryDelete", "lastEntryDelete")


def restore_point_from_dict(raw: Any, now: datetime) -> RestorePoint | None:
    if not isinstance(raw, dict):
        return None
    point_id = parse_uuid(raw.get("id"))
    state = raw.get("state")
    if point_id is None or not isinstance(state, dict):
        return None
    return RestorePoint(
        id=point_id,
        created_at=_timestamp(raw.get("createdAt"), now),
        reason=str(raw.get("reason") or "Restore point"),
        summary=str(raw.get("summary") or ""),
        state={key: value for key, value in state.items() if key not in _JOURNAL_KEYS},
    )


def _entries_from(raw: Any, now: datetime) -> tuple[Entry, ...]:
    if not isinstance(raw, list):
        return ()
    entries = (entry_from_dict(item, now) for item in raw)
    return tuple(entry for entry in entries if entry is not None)


def category_delete_from_dict(raw: Any, now: datetime) -> CategoryDeleteUndo | None:
    if not isinstance(raw, dict):
        return None
    category = category_from_dict(raw.get("category"), now)
    if category is None:
        return None
    awards = (badge_award_from_dict(item, now) for item in _items(raw, "badgeAwards"))
    return CategoryDeleteUndo(
        deleted_at=_timestamp(raw.get("deletedAt"), now),
        category=category,
        entries=tuple(e for e in _entries_from(raw.get("entries"), now) if e.category_id == category.id),
        badge_awards=tuple(a for a in awards if a is not None and a.category_id == category.id),
    )


def entry_delete_from_dict(raw: Any, now: datetime) -> EntryDeleteUndo | None:
    if not isinstance(raw, dict):
        return None
    entries = _entries_from(raw.get("entries"), now)
    if not entries:
        return None
    return EntryDeleteUndo(deleted_at=_timestamp(raw.get("deletedAt"), now), entries=entries)


def normalize_state(
    raw: Any,
    now: datetime | None = None,
    default_usd_per_hour: Decimal = DEFAULT_USD_PER_HOUR,
) -> AppState:
    """Repair a persisted or imported state dict into a consistent AppState.

    Records that cannot be salvaged are dropped: categories without id/title,
    entries or awards pointing at unknown categories, sessions on a missing
    category. Scalar drift is clamped in place.
    """
    if not isinstance(raw, dict):
        return AppState(settings=AppSettings(usd_per_hour=default_usd_per_hour))
    now = now or now_utc()

    raw_categories = _items(raw, "categories")
    categories: list[Category] = []
    seen_categories: set[UUID] = set()
    for item in raw_categories:
        category = category_from_dict(item, now)
        if category is None or category.id in seen_categories:
            continue
        seen_categories.add(category.id)
        categories.append(category)

    raw_entries = _items(raw, "entries")
    entries: list[Entry] = []
    seen_entries: set[UUID] = set()
    for item in raw_entries:
        entry = entry_from_dict(item, now)
        if entry is None or entry.category_id not in seen_categories or entry.id in seen_entries:
            continue
        seen_entries.add(entry.id)
        entries.append(entry)

    raw_awards = _items(raw, "badgeAwards")
    awards: list[BadgeAward] = []
    seen_keys: set[str] = set()
    for item in raw_awards:
        award = badge_award_from_dict(item, now)
        if award is None or award.award_key in seen_keys:
            continue
        if award.category_id is not None and award.category_id not in seen_categories:
            continue
        seen_keys.add(award.award_key)
        awards.append(award)
    awards.sort(key=lambda award: award.date_awarded, reverse=True)

    session = session_from_dict(raw.get("activeSession"))
    if session is not None and session.category_id not in seen_categories:
        session = None

    dropped = (
        len(raw_categories) - len(categories)
        + len(raw_entries) - len(entries)
        + len(raw_awards) - len(awards)
    )
    if dropped:
        logger.warning("state repair dropped records count=%s", dropped)

    points = (restore_point_from_dict(item, now) for item in _items(raw, "restorePoints"))
    import_undo = raw.get("lastImportUndo")
    return AppState(
        settings=settings_from_dict(raw.get("settings"), default_usd_per_hour),
        categories=tuple(categories),
        entries=tuple(entries),
        badge_awards=tuple(awards),
        active_session=session,
        restore_points=tuple(point for point in points if point is not None)[:MAX_RESTORE_POINTS],
        last_import_undo=import_undo if isinstance(import_undo, dict) else None,
        last_category_delete=category_delete_from_dict(raw.get("lastCategoryDelete"), now),
        last_entry_delete=entry_delete_from_dict(raw.get("lastEntryDelete"), now),
        schema_version=CURRENT_SCHEMA_VERSION,
    )


def _dec(value: Decimal | None) -> str | None:
    return None if value is None else str(value)


def _iso(value: datetime | None) -> str | None:
    return None if value is None else to_iso_utc(value)


def category_to_dict(category: Category) -> dict[str, Any]:
    return {
        "id": str(category.id),
        "title": category.title,
        "type": category.type.value,
        "unit": category.unit.value,
        "multiplier": _dec(category.multiplier),
        "timeConversionMode": category.time_conversion_mode.value,
        "hourlyRateUSD": _dec(category.hourly_rate_usd),
        "usdPerCount": _dec(category.usd_per_count),
        "dailyGoalValue": category.daily_goal_value,
        "streakEnabled": category.streak_enabled,
        "streakCadence": category.streak_cadence.value,
        "badgeEnabled": category.badge_enabled,
        "badgeMilestones": list(category.badge_milestones),
        "streakBonusEnabled": category.streak_bonus_enabled,
        "streakBonusSchedule": encode_bonus_schedule(category.streak_bonus_schedule),
        "streakBonusAmountUSD": _dec(category.streak_bonus_amount_usd),
        "createdAt": _iso(category.created_at),
        "updatedAt": _iso(category.updated_at),
    }


def entry_to_dict(entry: Entry) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "timestamp": _iso(entry.timestamp),
        "categoryId": str(entry.category_id),
        "durationMinutes": entry.duration_minutes,
        "quantity": _dec(entry.quantity),
        "unit": entry.unit.value if entry.unit is not None else None,
        "amountUSD": money_string(entry.amount_usd),
        "note": entry.note,
        "bonusKey": entry.bonus_key,
        "isManual": entry.is_manual,
        "createdAt": _iso(entry.created_at),
        "updatedAt": _iso(entry.updated_at),
    }


def badge_award_to_dict(award: BadgeAward) -> dict[str, Any]:
    return {
        "id": str(award.id),
        "awardKey": award.award_key,
        "dateAwarded": _iso(award.date_awarded),
        "categoryId": str(award.category_id) if award.category_id is not None else None,
        "milestone": award.milestone,
        "cadence": award.cadence.value,
    }


def session_to_dict(session: ActiveSession | None) -> dict[str, Any] | None:
    if session is None:
        return None
    return {
        "categoryId": str(session.category_id),
        "startTime": _iso(session.start_time),
        "isPaused": session.is_paused,
        "accumulatedElapsedSeconds": session.accumulated_elapsed_seconds,
        "runningSegmentStartTime": _iso(session.running_segment_start_time),
    }


def restore_point_to_dict(point: RestorePoint, include_state: bool = True) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": str(point.id),
        "createdAt": _iso(point.created_at),
        "reason": point.reason,
        "summary": point.summary,
    }
    if include_state:
        data["state"] = point.state
    return data


def category_delete_to_dict(undo: CategoryDeleteUndo | None) -> dict[str, Any] | None:
    if undo is None:
        return None
    return {
        "deletedAt": _iso(undo.deleted_at),
        "category": category_to_dict(undo.category),
        "entries": [entry_to_dict(entry) for entry in undo.entries],
        "badgeAwards": [badge_award_to_dict(award) for award in undo.badge_awards],
    }


def entry_delete_to_dict(undo: EntryDeleteUndo | None) -> dict[str, Any] | None:
    if undo is None:
        return None
    return {
        "deletedAt": _iso(undo.deleted_at),
        "entries": [entry_to_dict(entry) for entry in undo.entries],
    }


def state_to_dict(state: AppState) -> dict[str, Any]:
    return {
        "schemaVersion": state.schema_version,
        "settings": {
            "usdPerHour": money_string(state.settings.usd_per_hour),
            "lastFullBackupAt": _iso(state.settings.last_full_backup_at),
            "lastBackupReminderDismissedAt": _iso(state.settings.last_backup_reminder_dismissed_at),
        },
        "categories": [category_to_dict(category) for category in state.categories],
        "entries": [entry_to_dict(entry) for entry in state.entries],
        "badgeAwards": [badge_award_to_dict(award) for award in state.badge_awards],
        "activeSession": session_to_dict(state.active_session),
        "restorePoints": [restore_point_to_dict(point) for point in state.restore_points],
        "lastImportUndo": state.last_import_undo,
        "lastCategoryDelete": category_delete_to_dict(state.last_category_delete),
        "lastEntryDelete": entry_delete_to_dict(state.last_entry_delete),
    }


def snapshot_for_restore_point(state: AppState) -> dict[str, Any]:
    data = state_to_dict(state)
    for key in _JOURNAL_KEYS:
        data.pop(key, None)
    return data
