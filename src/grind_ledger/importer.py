from __future__ import annotations

import json
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, Mapping, Union
from uuid import UUID

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from grind_ledger.constants import IMPORT_DEFAULT_DAILY_GOAL, IMPORTED_CATEGORY_TITLE
from grind_ledger.decimal_utils import ZERO, absolute, decimal_string, is_out_of_range, round2, to_decimal
from grind_ledger.errors import InvalidPayload
from grind_ledger.models import (
    AppState,
    Category,
    CategoryType,
    CategoryUnit,
    ConflictPolicy,
    Entry,
    TimeConversionMode,
)
from grind_ledger.schema import normalize_category, parse_uuid, resolve_enum
from grind_ledger.time_utils import ensure_aware, parse_timestamp, to_iso_utc

logger = logging.getLogger(__name__)

ImportSource = Union[bytes, str, Mapping[str, Any]]

INVALID_EXPORT_MESSAGE = "The selected file is not a valid history export."


class ImportEntryModel(BaseModel):
    id: str
    timestamp: Any = None
    category_title: str | None = Field(default="", alias="categoryTitle")
    category_type: str | None = Field(default=None, alias="categoryType")
    unit: str | None = None
    quantity: str | int | float | None = None
    duration_minutes: int | None = Field(default=0, alias="durationMinutes")
    amount_usd: str | int | float | None = Field(default=None, alias="amountUSD")
    is_manual: bool = Field(default=False, alias="isManual")
    note: str | None = ""


class UndoSnapshotModel(BaseModel):
    id: UUID
    timestamp: datetime
    duration_minutes: int = Field(alias="durationMinutes")
    amount_usd: str = Field(alias="amountUSD")
    quantity: str | None = None
    unit_raw_value: str | None = Field(default=None, alias="unitRawValue")
    note: str = ""
    is_manual: bool = Field(default=False, alias="isManual")
    category_id: UUID | None = Field(default=None, alias="categoryID")


class UndoPayloadModel(BaseModel):
    created_at: datetime = Field(alias="createdAt")
    created_entry_ids: list[UUID] = Field(default_factory=list, alias="createdEntryIDs")
    created_category_ids: list[UUID] = Field(default_factory=list, alias="createdCategoryIDs")
    updated_entries: list[UndoSnapshotModel] = Field(default_factory=list, alias="updatedEntries")


@dataclass(frozen=True)
class ParsedImportEntry:
    id: UUID
    timestamp: datetime
    category_title: str
    category_type: CategoryType
    unit: CategoryUnit
    quantity: Decimal
    duration_minutes: int
    amount_usd: Decimal
    is_manual: bool
    note: str

    @property
    def category_key(self) -> str:
        return category_key(self.category_title, self.category_type, self.unit)


@dataclass(frozen=True)
class ImportPreview:
    processed_entries: int = 0
    entries_to_create: int = 0
    entries_to_update: int = 0
    skipped_entries: int = 0
    categories_to_create: int = 0

    @property
    def has_changes(self) -> bool:
        return self.entries_to_create > 0 or self.entries_to_update > 0 or self.categories_to_create > 0


@dataclass(frozen=True)
class UndoEntrySnapshot:
    id: UUID
    timestamp: datetime
    duration_minutes: int
    amount_usd: str
    quantity: str | None
    unit_raw_value: str | None
    note: str
    is_manual: bool
    category_id: UUID | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": str(self.id),
            "timestamp": to_iso_utc(self.timestamp),
            "durationMinutes": self.duration_minutes,
            "amountUSD": self.amount_usd,
            "quantity": self.quantity,
            "unitRawValue": self.unit_raw_value,
            "note": self.note,
            "isManual": self.is_manual,
            "categoryID": str(self.category_id) if self.category_id is not None else None,
        }


@dataclass(frozen=True)
class UndoPayload:
    created_at: datetime
    created_entry_ids: tuple[UUID, ...] = ()
    created_category_ids: tuple[UUID, ...] = ()
    updated_entry_snapshots: tuple[UndoEntrySnapshot, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "createdAt": to_iso_utc(self.created_at),
            "createdEntryIDs": [str(entry_id) for entry_id in self.created_entry_ids],
            "createdCategoryIDs": [str(category_id) for category_id in self.created_category_ids],
            "updatedEntries": [snapshot.to_dict() for snapshot in self.updated_entry_snapshots],
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_dict(cls, raw: Any) -> UndoPayload:
        try:
            model = UndoPayloadModel.model_validate(raw)
        except PydanticValidationError as exc:
            raise InvalidPayload("Undo payload is malformed.") from exc
        return cls(
            created_at=ensure_aware(model.created_at, timezone.utc),
            created_entry_ids=tuple(model.created_entry_ids),
            created_category_ids=tuple(model.created_category_ids),
            updated_entry_snapshots=tuple(
                UndoEntrySnapshot(
                    id=item.id,
                    timestamp=ensure_aware(item.timestamp, timezone.utc),
                    duration_minutes=item.duration_minutes,
                    amount_usd=item.amount_usd,
                    quantity=item.quantity,
                    unit_raw_value=item.unit_raw_value,
                    note=item.note,
                    is_manual=item.is_manual,
                    category_id=item.category_id,
                )
                for item in model.updated_entries
            ),
        )

    @classmethod
    def from_json(cls, raw: str | bytes) -> UndoPayload:
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidPayload("Undo payload is malformed.") from exc
        return cls.from_dict(data)


@dataclass(frozen=True)
class ImportReport:
    processed_entries: int = 0
    created_entries: int = 0
    updated_entries: int = 0
    skipped_entries: int = 0
    created_categories: int = 0
    undo_payload: UndoPayload | None = None


@dataclass(frozen=True)
class UndoReport:
    removed_created_entries: int = 0
    reverted_updated_entries: int = 0
    removed_created_categories: int = 0
    missing_records: int = 0


@dataclass
class _Analysis:
    preview: ImportPreview
    entries: list[ParsedImportEntry] = field(default_factory=list)


def normalized_title(title: str | None) -> str:
    trimmed = (title or "").strip()
    return trimmed or IMPORTED_CATEGORY_TITLE


def category_key(title: str, category_type: CategoryType, unit: CategoryUnit) -> str:
    return f"{title.strip().lower()}|{category_type.value}|{unit.value}"


def decode_payload(source: ImportSource) -> list[Any]:
    if isinstance(source, Mapping):
        root: Any = source
    else:
        try:
            root = json.loads(source)
        except (json.JSONDecodeError, UnicodeDecodeError, TypeError) as exc:
            raise InvalidPayload(INVALID_EXPORT_MESSAGE) from exc
    if not isinstance(root, Mapping):
        raise InvalidPayload(INVALID_EXPORT_MESSAGE)
    items = root.get("entries")
    if not isinstance(items, list):
        raise InvalidPayload(INVALID_EXPORT_MESSAGE)
    return items


def _normalized_quantity(raw: Decimal | None, unit: CategoryUnit, duration_minutes: int, amount: Decimal) -> Decimal:
    if raw is not None and raw > ZERO:
        return round2(raw)
    if unit is CategoryUnit.MONEY:
        return round2(absolute(amount))
    return Decimal(max(0, duration_minutes))


def parse_item(raw: Any, now: datetime) -> ParsedImportEntry | None:
    try:
        item = ImportEntryModel.model_validate(raw)
    except PydanticValidationError:
        return None
    entry_id = parse_uuid(item.id)
    if entry_id is None:
        return None
    if any(is_out_of_range(value) for value in (item.amount_usd, item.quantity, item.duration_minutes)):
        return None

    category_type = resolve_enum(CategoryType, item.category_type, CategoryType.GOOD_HABIT)
    unit = resolve_enum(CategoryUnit, item.unit, CategoryUnit.MONEY)
    amount = to_decimal(item.amount_usd, fallback=ZERO)
    if category_type is CategoryType.QUIT_HABIT and amount > ZERO:
        amount = -amount
    duration = max(0, item.duration_minutes or 0)
    timestamp = parse_timestamp(item.timestamp if isinstance(item.timestamp, str) else None) or now

    return ParsedImportEntry(
        id=entry_id,
        timestamp=timestamp,
        category_title=normalized_title(item.category_title),
        category_type=category_type,
        unit=unit,
        quantity=_normalized_quantity(to_decimal(item.quantity, fallback=None), unit, duration, amount),
        duration_minutes=duration,
        amount_usd=amount,
        is_manual=item.is_manual,
        note=(item.note or "").strip(),
    )


def _newest_first(entries: Iterable[Entry]) -> tuple[Entry, ...]:
    return tuple(sorted(entries, key=lambda entry: entry.timestamp, reverse=True))


def _analyze(state: AppState, source: ImportSource, now: datetime) -> _Analysis:
    items = decode_payload(source)
    category_keys = {category_key(c.title, c.type, c.unit) for c in state.categories}
    known_ids = {entry.id for entry in state.entries}

    processed = skipped = to_create = to_update = categories_to_create = 0
    parsed: list[ParsedImportEntry] = []
    for raw in items:
        processed += 1
        item = parse_item(raw, now)
        if item is None:
            skipped += 1
            continue
        if item.category_key not in category_keys:
            category_keys.add(item.category_key)
            categories_to_create += 1
        if item.id in known_ids:
            to_update += 1
        else:
            known_ids.add(item.id)
            to_create += 1
        parsed.append(item)

    preview = ImportPreview(
        processed_entries=processed,
        entries_to_create=to_create,
        entries_to_update=to_update,
        skipped_entries=skipped,
        categories_to_create=categories_to_create,
    )
    return _Analysis(preview=preview, entries=parsed)


def preview_import(state: AppState, source: ImportSource, now: datetime) -> ImportPreview:
    return _analyze(state, source, now).preview


def _new_category(item: ParsedImportEntry, now: datetime) -> Category:
    usd_per_count = None
    if item.unit is CategoryUnit.COUNT and item.quantity > ZERO:
        usd_per_count = round2(absolute(item.amount_usd) / item.quantity)
    return normalize_category(
        Category(
            id=uuid.uuid4(),
            title=item.category_title,
            type=item.category_type,
            unit=item.unit,
            multiplier=Decimal("1"),
            time_conversion_mode=TimeConversionMode.MULTIPLIER,
            usd_per_count=usd_per_count,
            daily_goal_value=IMPORT_DEFAULT_DAILY_GOAL[item.unit.value],
            created_at=now,
            updated_at=now,
        )
    )


def snapshot_entry(entry: Entry) -> UndoEntrySnapshot:
    return UndoEntrySnapshot(
        id=entry.id,
        timestamp=entry.timestamp,
        duration_minutes=entry.duration_minutes,
        amount_usd=decimal_string(entry.amount_usd),
        quantity=decimal_string(entry.quantity) if entry.quantity is not None else None,
        unit_raw_value=entry.unit.value if entry.unit is not None else None,
        note=entry.note,
        is_manual=entry.is_manual,
        category_id=entry.category_id,
    )


def import_data(
    state: AppState,
    source: ImportSource,
    policy: ConflictPolicy,
    now: datetime,
) -> tuple[AppState, ImportReport]:
    analysis = _analyze(state, source, now)

    categories = list(state.categories)
    categories_by_key = {category_key(c.title, c.type, c.unit): c for c in categories}
    entries_by_id: dict[UUID, Entry] = {entry.id: entry for entry in state.entries}

    created_entry_ids: list[UUID] = []
    created_category_ids: set[UUID] = set()
    snapshots: dict[UUID, UndoEntrySnapshot] = {}
    skipped = analysis.preview.skipped_entries
    updated = 0

    for item in analysis.entries:
        existing = entries_by_id.get(item.id)
        if existing is not None and policy is ConflictPolicy.KEEP_EXISTING:
            skipped += 1
            continue

        category = categories_by_key.get(item.category_key)
        if category is None:
            category = _new_category(item, now)
            categories_by_key[item.category_key] = category
            categories.append(category)
            created_category_ids.add(category.id)

        if existing is not None:
            if item.id not in snapshots:
                snapshots[item.id] = snapshot_entry(existing)
            entries_by_id[item.id] = replace(
                existing,
                timestamp=item.timestamp,
                duration_minutes=item.duration_minutes,
                amount_usd=round2(item.amount_usd),
                quantity=item.quantity,
                unit=item.unit,
                category_id=category.id,
                note=item.note,
                is_manual=item.is_manual,
                updated_at=now,
            )
            updated += 1
        else:
            entries_by_id[item.id] = Entry(
                id=item.id,
                timestamp=item.timestamp,
                category_id=category.id,
                amount_usd=round2(item.amount_usd),
                duration_minutes=item.duration_minutes,
                quantity=item.quantity,
                unit=item.unit,
                note=item.note,
                is_manual=item.is_manual,
                created_at=now,
                updated_at=now,
            )
            created_entry_ids.append(item.id)

    undo_payload = None
    if created_entry_ids or created_category_ids or snapshots:
        undo_payload = UndoPayload(
            created_at=now,
            created_entry_ids=tuple(sorted(created_entry_ids, key=str)),
            created_category_ids=tuple(sorted(created_category_ids, key=str)),
            updated_entry_snapshots=tuple(snapshots[key] for key in sorted(snapshots, key=str)),
        )

    report = ImportReport(
        processed_entries=analysis.preview.processed_entries,
        created_entries=len(created_entry_ids),
        updated_entries=updated,
        skipped_entries=skipped,
        created_categories=len(created_category_ids),
        undo_payload=undo_payload,
    )
    logger.info(
        "import applied processed=%s created=%s updated=%s skipped=%s categories=%s",
        report.processed_entries,
        report.created_entries,
        report.updated_entries,
        report.skipped_entries,
        report.created_categories,
    )
    new_state = replace(state, categories=tuple(categories), entries=_newest_first(entries_by_id.values()))
    return new_state, report


def _restore(entry: Entry, snapshot: UndoEntrySnapshot, category_id: UUID) -> Entry:
    quantity = to_decimal(snapshot.quantity, fallback=None) if snapshot.quantity is not None else None
    unit = resolve_enum(CategoryUnit, snapshot.unit_raw_value, None) if snapshot.unit_raw_value else None
    return replace(
        entry,
        timestamp=snapshot.timestamp,
        duration_minutes=snapshot.duration_minutes,
        amount_usd=round2(to_decimal(snapshot.amount_usd, fallback=entry.amount_usd)),
        quantity=quantity,
        unit=unit,
        note=snapshot.note,
        is_manual=snapshot.is_manual,
        category_id=category_id,
    )


def undo_import(state: AppState, payload: UndoPayload) -> tuple[AppState, UndoReport]:
    entries_by_id: dict[UUID, Entry] = {entry.id: entry for entry in state.entries}
    category_ids = {category.id for category in state.categories}
    removed_entries = reverted = removed_categories = missing = 0

    for entry_id in payload.created_entry_ids:
        if entries_by_id.pop(entry_id, None) is None:
            missing += 1
            continue
        removed_entries += 1

    for snapshot in payload.updated_entry_snapshots:
        entry = entries_by_id.get(snapshot.id)
        if entry is None:
            missing += 1
            continue
        target = snapshot.category_id
        if target is None or target not in category_ids:
            missing += 1
            target = entry.category_id
        entries_by_id[snapshot.id] = _restore(entry, snapshot, target)
        reverted += 1

    used = {entry.category_id for entry in entries_by_id.values()}
    removed: set[UUID] = set()
    for category_id in payload.created_category_ids:
        if category_id not in category_ids:
            missing += 1
            continue
        if category_id in used:
            continue
        removed.add(category_id)
        removed_categories += 1

    report = UndoReport(
        removed_created_entries=removed_entries,
        reverted_updated_entries=reverted,
        removed_created_categories=removed_categories,
        missing_records=missing,
    )
    logger.info(
        "import undone entries=%s reverted=%s categories=%s missing=%s",
        removed_entries,
        reverted,
        removed_categories,
        missing,
    )
    new_state = replace(
        state,
        categories=tuple(c for c in state.categories if c.id not in removed),
        entries=_newest_first(entries_by_id.values()),
        badge_awards=tuple(a for a in state.badge_awards if a.category_id not in removed),
    )
    return new_state, report
