import uuid
from datetime import datetime, timezone
from decimal import Decimal

from grind_ledger.constants import DEFAULT_MILESTONES
from grind_ledger.models import Category, CategoryUnit, TimeConversionMode
from grind_ledger.schema import (
    encode_bonus_schedule,
    normalize_category,
    normalize_state,
    parse_bonus_schedule,
    parse_milestones_strict,
    resolve_milestones,
    state_to_dict,
)

NOW = datetime(2026, 2, 10, 9, 0, tzinfo=timezone.utc)


def _raw_category(category_id: str, title: str = "Deep Work", **extra) -> dict:
    return {"id": category_id, "title": title, "type": "goodHabit", "unit": "time", "multiplier": "1.5", **extra}


def _raw_entry(entry_id: str, category_id: str, amount: str = "10.00") -> dict:
    return {
        "id": entry_id,
        "timestamp": "2026-02-09T10:00:00Z",
        "categoryId": category_id,
        "amountUSD": amount,
        "durationMinutes": 30,
    }


def test_bonus_schedule_codec() -> None:
    schedule = parse_bonus_schedule("3:1.25, 7:3.5,bad,0:2,10:-1")
    assert schedule == {3: Decimal("1.25"), 7: Decimal("3.50")}
    assert encode_bonus_schedule(schedule) == "3:1.25,7:3.50"
    assert encode_bonus_schedule({}) is None


def test_milestone_parsing() -> None:
    assert resolve_milestones("7, 3,3, x") == (3, 7)
    assert resolve_milestones("") == DEFAULT_MILESTONES
    assert parse_milestones_strict("30 7 3") == (3, 7, 30)
    assert parse_milestones_strict("3, x") is None
    assert parse_milestones_strict("0") is None


def test_normalize_category_unit_fields() -> None:
    pushups = normalize_category(
        Category(
            id=uuid.uuid4(),
            title="Pushups",
            unit=CategoryUnit.COUNT,
            multiplier=Decimal("3"),
            time_conversion_mode=TimeConversionMode.HOURLY_RATE,
            hourly_rate_usd=Decimal("40"),
        )
    )
    assert pushups.usd_per_count == Decimal("1")
    assert pushups.multiplier == Decimal("1")
    assert pushups.hourly_rate_usd is None
    assert pushups.time_conversion_mode is TimeConversionMode.MULTIPLIER


def test_streak_disabled_turns_off_badges_and_bonus() -> None:
    category = normalize_category(
        Category(id=uuid.uuid4(), title="Reading", streak_enabled=False, streak_bonus_enabled=True)
    )
    assert category.badge_enabled is False
    assert category.streak_bonus_enabled is False


def test_normalize_state_drops_orphans_and_duplicates() -> None:
    deep_id = str(uuid.uuid4())
    entry_id = str(uuid.uuid4())
    raw = {
        "settings": {"usdPerHour": "25"},
        "categories": [
            _raw_category(deep_id),
            _raw_category(deep_id, "Duplicate"),
            {"id": str(uuid.uuid4()), "title": "   "},
        ],
        "entries": [
            _raw_entry(entry_id, deep_id),
            _raw_entry(entry_id, deep_id, "99.00"),
            _raw_entry(str(uuid.uuid4()), str(uuid.uuid4())),
            {"id": "not-a-uuid"},
        ],
        "badgeAwards": [
            {"awardKey": "streak-3", "dateAwarded": "2026-02-01T00:00:00Z"},
            {"awardKey": "streak-3", "dateAwarded": "2026-02-02T00:00:00Z"},
            {"awardKey": "streak-7", "dateAwarded": "2026-02-05T00:00:00Z", "categoryId": str(uuid.uuid4())},
        ],
        "activeSession": {"categoryId": str(uuid.uuid4()), "startTime": "2026-02-10T08:00:00Z"},
    }
    state = normalize_state(raw, now=NOW)

    assert [category.title for category in state.categories] == ["Deep Work"]
    assert len(state.entries) == 1
    assert state.entries[0].amount_usd == Decimal("10.00")
    assert [award.award_key for award in state.badge_awards] == ["streak-3"]
    assert state.active_session is None
    assert state.settings.usd_per_hour == Decimal("25.00")


def test_normalize_state_reads_legacy_goal_field() -> None:
    deep_id = str(uuid.uuid4())
    raw = {"categories": [{"id": deep_id, "title": "Deep Work", "dailyGoalMinutes": 90}]}
    state = normalize_state(raw, now=NOW)
    assert state.categories[0].daily_goal_value == 90


def test_unrecognized_root_gives_empty_state() -> None:
    state = normalize_state(["nope"], now=NOW, default_usd_per_hour=Decimal("30"))
    assert state.categories == ()
    assert state.settings.usd_per_hour == Decimal("30")


def test_state_dict_survives_normalization() -> None:
    deep_id = str(uuid.uuid4())
    raw = {
        "categories": [
            _raw_category(deep_id, streakBonusEnabled=True, streakBonusSchedule="3:1.25"),
        ],
        "entries": [_raw_entry(str(uuid.uuid4()), deep_id)],
        "activeSession": {"categoryId": deep_id, "startTime": "2026-02-10T08:00:00Z"},
    }
    state = normalize_state(raw, now=NOW)
    again = normalize_state(state_to_dict(state), now=NOW)
    assert again == state
    assert state_to_dict(state)["categories"][0]["streakBonusSchedule"] == "3:1.25"
    assert state.active_session is not None
    assert state.active_session.running_segment_start_time == state.active_session.start_time


def test_restore_points_and_undo_journal_are_repaired() -> None:
    deep_id = str(uuid.uuid4())
    entry_id = str(uuid.uuid4())
    snapshot = {"categories": [_raw_category(deep_id)], "restorePoints": [{"id": "nested"}]}
    points = [
        {"id": str(uuid.uuid4()), "createdAt": f"2026-02-0{day}T10:00:00Z", "reason": "Before reset", "state": snapshot}
        for day in range(1, 6)
    ]
    raw = {
        "restorePoints": [{"id": str(uuid.uuid4()), "state": "broken"}, *points],
        "lastImportUndo": "not a payload",
        "lastCategoryDelete": {
            "deletedAt": "2026-02-09T10:00:00Z",
            "category": _raw_category(deep_id),
            "entries": [_raw_entry(entry_id, deep_id), _raw_entry(str(uuid.uuid4()), str(uuid.uuid4()))],
        },
        "lastEntryDelete": {"deletedAt": "2026-02-09T10:00:00Z", "entries": [{"id": "nope"}]},
    }
    state = normalize_state(raw, now=NOW)

    assert len(state.restore_points) == 3
    assert state.restore_points[0].reason == "Before reset"
    assert "restorePoints" not in state.restore_points[0].state
    assert state.last_import_undo is None
    assert state.last_entry_delete is None
    assert state.last_category_delete is not None
    assert [str(entry.id) for entry in state.last_category_delete.entries] == [entry_id]

    again = normalize_state(state_to_dict(state), now=NOW)
    assert again == state
