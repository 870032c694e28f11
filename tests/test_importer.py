from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any
from zoneinfo import ZoneInfo

from grind_ledger.errors import ErrorKind, Failure, Ok
from grind_ledger.importer import INVALID_EXPORT_MESSAGE, UndoPayload, parse_item
from grind_ledger.models import CategoryType, CategoryUnit, ConflictPolicy
from grind_ledger.storage import MemoryStateStorage
from grind_ledger.store import LedgerStore


def _dt(y: int, m: int, d: int, h: int = 10, minute: int = 0) -> datetime:
    return datetime(y, m, d, h, minute, tzinfo=ZoneInfo("Europe/Oslo"))


def _store() -> LedgerStore:
    return LedgerStore(MemoryStateStorage(), tz_name="Europe/Oslo", default_usd_per_hour=Decimal("20"))


def _ok(result: Any) -> Any:
    assert isinstance(result, Ok), result
    return result.value


def _item(entry_id: str, title: str = "Deep Work", **extra: Any) -> dict[str, Any]:
    item = {
        "id": entry_id,
        "timestamp": "2026-02-09T09:00:00Z",
        "categoryTitle": title,
        "categoryType": "goodHabit",
        "unit": "time",
        "quantity": "60",
        "durationMinutes": 60,
        "amountUSD": "20",
        "isManual": True,
        "note": "",
    }
    item.update(extra)
    return item


def test_parse_item_defaults() -> None:
    now = _dt(2026, 2, 10)
    item = parse_item({"id": str(uuid.uuid4()), "amountUSD": "5", "categoryType": "quitHabit"}, now)
    assert item is not None
    assert item.category_title == "Imported Category"
    assert item.category_type is CategoryType.QUIT_HABIT
    assert item.unit is CategoryUnit.MONEY
    assert item.amount_usd == Decimal("-5")
    assert item.quantity == Decimal("5.00")
    assert item.timestamp == now
    assert parse_item({"id": "nope"}, now) is None
    assert parse_item({"note": "missing id"}, now) is None


def test_preview_counts_without_mutating() -> None:
    store = _store()
    payload = {
        "entries": [
            _item(str(uuid.uuid4())),
            _item(str(uuid.uuid4()), "  deep work "),
            _item(str(uuid.uuid4()), "Pushups", unit="count", quantity="10", amountUSD="5"),
            {"id": "broken"},
        ]
    }
    preview = _ok(store.preview_import(json.dumps(payload)))
    assert preview.processed_entries == 4
    assert preview.entries_to_create == 3
    assert preview.entries_to_update == 0
    assert preview.skipped_entries == 1
    assert preview.categories_to_create == 2
    assert preview.has_changes is True
    assert store.snapshot().entries == ()


def test_invalid_payloads_are_rejected() -> None:
    store = _store()
    for source in (b"not json", json.dumps([1, 2]), json.dumps({"entries": "x"}), {"other": []}):
        result = store.import_data(source)
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.INVALID_PAYLOAD
        assert result.message == INVALID_EXPORT_MESSAGE


def test_import_creates_categories_and_undo_removes_them() -> None:
    store = _store()
    payload = {
        "entries": [
            _item(str(uuid.uuid4())),
            _item(str(uuid.uuid4()), "Pushups", unit="count", quantity="10", amountUSD="5", durationMinutes=0),
        ]
    }
    report = _ok(store.import_data(payload, now=_dt(2026, 2, 10)))
    assert (report.created_entries, report.updated_entries, report.created_categories) == (2, 0, 2)
    assert report.undo_payload is not None

    state = store.snapshot()
    pushups = next(category for category in state.categories if category.title == "Pushups")
    assert pushups.usd_per_count == Decimal("0.50")
    assert pushups.daily_goal_value == 10
    deep_work = next(category for category in state.categories if category.title == "Deep Work")
    assert deep_work.daily_goal_value == 30

    undo = _ok(store.undo_import(report.undo_payload.to_json()))
    assert undo.removed_created_entries == 2
    assert undo.removed_created_categories == 2
    assert undo.missing_records == 0
    assert store.snapshot().categories == ()
    assert store.snapshot().entries == ()


def test_replace_existing_updates_and_undo_restores() -> None:
    store = _store()
    deep_work = _ok(store.create_category({"title": "Deep Work", "multiplier": "1.5"}))
    original = _ok(store.add_manual_entry(deep_work.id, 90, note="focus", timestamp=_dt(2026, 2, 9))).entry

    payload = {"entries": [_item(str(original.id), amountUSD="60", durationMinutes=120, quantity="120")]}
    preview = _ok(store.preview_import(payload))
    assert (preview.entries_to_update, preview.categories_to_create) == (1, 0)

    report = _ok(store.import_data(payload))
    assert report.updated_entries == 1
    updated = store.snapshot().entry(original.id)
    assert updated is not None
    assert updated.amount_usd == Decimal("60.00")
    assert updated.duration_minutes == 120
    assert updated.category_id == deep_work.id

    undo = _ok(store.undo_import(report.undo_payload.to_dict()))
    assert undo.reverted_updated_entries == 1
    restored = store.snapshot().entry(original.id)
    assert restored is not None
    assert restored.amount_usd == Decimal("45.00")
    assert restored.duration_minutes == 90
    assert restored.note == "focus"
    assert [category.title for category in store.snapshot().categories] == ["Deep Work"]


def test_keep_existing_skips_conflicts_without_commit() -> None:
    storage = MemoryStateStorage()
    store = LedgerStore(storage, tz_name="Europe/Oslo", default_usd_per_hour=Decimal("20"))
    deep_work = _ok(store.create_category({"title": "Deep Work"}))
    original = _ok(store.add_manual_entry(deep_work.id, 30)).entry
    writes = storage.write_count

    payload = {"entries": [_item(str(original.id), amountUSD="99")]}
    report = _ok(store.import_data(payload, ConflictPolicy.KEEP_EXISTING))
    assert report.skipped_entries == 1
    assert report.updated_entries == 0
    assert report.undo_payload is None
    assert storage.write_count == writes
    assert store.snapshot().entry(original.id).amount_usd == original.amount_usd


def test_undo_counts_missing_records() -> None:
    store = _store()
    report = _ok(store.import_data({"entries": [_item(str(uuid.uuid4()))]}))
    created = report.undo_payload.created_entry_ids[0]
    _ok(store.delete_entry(created))

    undo = _ok(store.undo_import(report.undo_payload))
    assert undo.removed_created_entries == 0
    assert undo.missing_records == 1
    assert undo.removed_created_categories == 1


def test_malformed_undo_payload() -> None:
    store = _store()
    for payload in ("{", {"createdEntryIDs": ["x"]}):
        result = store.undo_import(payload)
        assert isinstance(result, Failure)
        assert result.kind is ErrorKind.INVALID_PAYLOAD


def test_undo_payload_json_round_trip() -> None:
    store = _store()
    report = _ok(store.import_data({"entries": [_item(str(uuid.uuid4()))]}))
    assert UndoPayload.from_json(report.undo_payload.to_json()) == report.undo_payload


def test_history_export_imports_into_fresh_store() -> None:
    source = _store()
    deep_work = _ok(source.create_category({"title": "Deep Work", "multiplier": "1.5"}))
    takeout = _ok(source.create_category({"title": "Takeout", "type": "quitHabit", "unit": "money"}))
    _ok(source.add_manual_entry(deep_work.id, 90, timestamp=_dt(2026, 2, 8)))
    _ok(source.add_manual_entry(takeout.id, "12.5", timestamp=_dt(2026, 2, 9)))
    exported = source.export_history()

    target = _store()
    report = _ok(target.import_data(json.dumps(exported)))
    assert report.created_entries == 2
    assert report.created_categories == 2

    view = target.compute_dashboard()
    assert view.balance == Decimal("32.50")
    titles = {(category.title, category.type, category.unit) for category in target.snapshot().categories}
    assert titles == {
        ("Deep Work", CategoryType.GOOD_HABIT, CategoryUnit.TIME),
        ("Takeout", CategoryType.QUIT_HABIT, CategoryUnit.MONEY),
    }

    again = _ok(target.preview_import(exported))
    assert again.entries_to_update == 2
    assert again.categories_to_create == 0


def test_oversized_numbers_are_skipped() -> None:
    store = _store()
    payload = {
        "entries": [
            _item(str(uuid.uuid4()), "Cash", unit="money", amountUSD="1e30", quantity=None),
            _item(str(uuid.uuid4()), quantity="1e30"),
            _item(str(uuid.uuid4()), durationMinutes=10**40),
            _item(str(uuid.uuid4())),
        ]
    }
    preview = _ok(store.preview_import(payload))
    assert (preview.processed_entries, preview.entries_to_create, preview.skipped_entries) == (4, 1, 3)

    report = _ok(store.import_data(json.dumps(payload)))
    assert (report.created_entries, report.skipped_entries) == (1, 3)
    assert store.compute_dashboard().balance == Decimal("20.00")


def test_malformed_numeric_items_are_skipped() -> None:
    store = _store()
    payload = {
        "entries": [
            _item(str(uuid.uuid4()), durationMinutes="soon"),
            _item(str(uuid.uuid4()), quantity=[60]),
            _item(str(uuid.uuid4()), amountUSD={"value": 20}),
            _item(str(uuid.uuid4())),
        ]
    }
    report = _ok(store.import_data(payload))
    assert (report.processed_entries, report.created_entries, report.skipped_entries) == (4, 1, 3)
    assert len(store.snapshot().entries) == 1


def test_undo_keeps_created_category_still_in_use() -> None:
    store = _store()
    report = _ok(store.import_data({"entries": [_item(str(uuid.uuid4()))]}))
    imported = store.snapshot().categories[0]
    manual = _ok(store.add_manual_entry(imported.id, 30)).entry

    undo = _ok(store.undo_import(report.undo_payload))
    assert undo.removed_created_entries == 1
    assert undo.removed_created_categories == 0
    state = store.snapshot()
    assert state.category(imported.id) is not None
    assert [entry.id for entry in state.entries] == [manual.id]


def test_undo_reads_naive_timestamps_as_utc() -> None:
    store = _store()
    deep_work = _ok(store.create_category({"title": "Deep Work"}))
    original = _ok(store.add_manual_entry(deep_work.id, 90, timestamp=_dt(2026, 2, 9))).entry
    other = _ok(store.add_manual_entry(deep_work.id, 30, timestamp=_dt(2026, 2, 10))).entry

    payload = {
        "createdAt": "2026-02-10T10:00:00",
        "updatedEntries": [
            {
                "id": str(original.id),
                "timestamp": "2026-02-09T10:00:00",
                "durationMinutes": 60,
                "amountUSD": "30",
                "categoryID": str(deep_work.id),
            }
        ],
    }
    undo = _ok(store.undo_import(payload))
    assert undo.reverted_updated_entries == 1
    restored = store.snapshot().entry(original.id)
    assert restored is not None
    assert restored.timestamp == datetime(2026, 2, 9, 10, tzinfo=timezone.utc)
    assert restored.amount_usd == Decimal("30.00")
    assert [entry.id for entry in store.snapshot().entries] == [other.id, original.id]


def test_last_import_undo_is_remembered() -> None:
    store = _store()
    _ok(store.import_data({"entries": [_item(str(uuid.uuid4()))]}, now=_dt(2026, 2, 10)))
    assert store.snapshot().last_import_undo is not None
    assert store.list_restore_points()[0].reason == "Before history import"

    undo = _ok(store.undo_import())
    assert undo.removed_created_entries == 1
    assert store.snapshot().last_import_undo is None
    assert store.snapshot().entries == ()

    missing = store.undo_import()
    assert isinstance(missing, Failure)
    assert missing.kind is ErrorKind.RECORD_NOT_FOUND
    assert missing.message == "No import is available to undo."
