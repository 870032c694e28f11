from __future__ import annotations

import logging
import threading
import uuid
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Iterable, Mapping, TypeVar
from uuid import UUID
from zoneinfo import ZoneInfo

from grind_ledger.badges import BadgeOutcome, award_badges_if_needed
from grind_ledger.constants import (
    BACKUP_REMINDER_INTERVAL_DAYS,
    BACKUP_REMINDER_SNOOZE_HOURS,
    COUNT_ENTRY_MAX,
    COUNT_ENTRY_MIN,
    DEFAULT_TZ,
    DEFAULT_USD_PER_HOUR,
    MAX_RESTORE_POINTS,
    MIN_USD_PER_HOUR,
    TIME_ENTRY_MAX_MINUTES,
    TIME_ENTRY_MIN_MINUTES,
)
from grind_ledger.decimal_utils import ZERO, is_out_of_range, round2, round_half_up, to_decimal, to_int
from grind_ledger.errors import (
    ActiveSessionConflict,
    Failure,
    LedgerError,
    Ok,
    RecordNotFound,
    Result,
    SessionStateError,
    ValidationError,
)
from grind_ledger.exporter import build_full_backup, export_csv, export_history, parse_full_backup
from grind_ledger.importer import ImportPreview, ImportReport, ImportSource, UndoPayload, UndoReport
from grind_ledger.importer import import_data as apply_import
from grind_ledger.importer import preview_import as analyze_import
from grind_ledger.importer import undo_import as apply_undo
from grind_ledger.ledger import amount_usd
from grind_ledger.models import (
    ActiveSession,
    AppSettings,
    AppState,
    BadgeAward,
    Category,
    CategoryDeleteUndo,
    CategoryType,
    CategoryUnit,
    ConflictPolicy,
    Entry,
    EntryDeleteUndo,
    RestorePoint,
    StreakCadence,
    TimeConversionMode,
)
from grind_ledger.schema import (
    as_bool,
    bonus_schedule_pairs,
    normalize_category,
    normalize_state,
    parse_milestones_strict,
    snapshot_for_restore_point,
    state_to_dict,
)
from grind_ledger.service import DashboardView, compute_dashboard, session_elapsed_seconds
from grind_ledger.storage import StateStorage
from grind_ledger.streaks import AlertThresholds
from grind_ledger.time_utils import ensure_aware, now_utc

logger = logging.getLogger(__name__)

T = TypeVar("T")
Listener = Callable[[AppState], None]

MILESTONES_MESSAGE = "Milestones must be comma-separated positive days (example: 3, 7, 30)."
BONUS_MESSAGE = "Each streak bonus amount must be greater than zero."
OUT_OF_RANGE_MESSAGE = "Value is too large."


@dataclass(frozen=True)
class EntryOutcome:
    entry: Entry
    awards: list[BadgeAward]
    bonus_entries: list[Entry]


@dataclass(frozen=True)
class DeleteUndoReport:
    restored_categories: int = 0
    restored_entries: int = 0
    skipped_categories: int = 0
    skipped_entries: int = 0


def _category_fields(category: Category) -> dict[str, Any]:
    fields = asdict(category)
    for key in ("id", "created_at", "updated_at"):
        fields.pop(key)
    return fields


def _enum_field(enum_cls: Any, raw: Any, field: str) -> Any:
    try:
        return enum_cls(raw)
    except ValueError:
        raise ValidationError(f"Unknown {field.replace('_', ' ')}: {raw}.", field) from None


def _positive(raw: Any, message: str, field: str) -> Decimal:
    if is_out_of_range(raw):
        raise ValidationError(OUT_OF_RANGE_MESSAGE, field)
    value = to_decimal(raw, fallback=None)
    if value is None or value <= ZERO:
        raise ValidationError(message, field)
    return value


def _bonus_schedule(raw: Any) -> dict[int, Decimal]:
    schedule: dict[int, Decimal] = {}
    for key, value in bonus_schedule_pairs(raw):
        milestone = to_int(key, fallback=0)
        amount = round2(_positive(value, BONUS_MESSAGE, "streak_bonus_schedule"))
        if milestone <= 0 or amount <= ZERO:
            raise ValidationError(BONUS_MESSAGE, "streak_bonus_schedule")
        schedule[milestone] = amount
    return schedule


def build_category(data: Mapping[str, Any], base: Category | None, now: datetime) -> Category:
    """Validate category input and return a normalized Category.

    ``base`` supplies the current field values on update; keys absent from
    ``data`` keep them.
    """
    merged: dict[str, Any] = _category_fields(base) if base is not None else {}
    merged.update({key: value for key, value in data.items() if key not in ("id", "created_at", "updated_at")})

    title = str(merged.get("title") or "").strip()
    if not title:
        raise ValidationError("Category title is required.", "title")

    category_type = _enum_field(CategoryType, merged.get("type", CategoryType.GOOD_HABIT), "type")
    unit = _enum_field(CategoryUnit, merged.get("unit", CategoryUnit.TIME), "unit")
    mode = _enum_field(
        TimeConversionMode,
        merged.get("time_conversion_mode", TimeConversionMode.MULTIPLIER),
        "time_conversion_mode",
    )
    cadence = _enum_field(StreakCadence, merged.get("streak_cadence", StreakCadence.DAILY), "streak_cadence")

    multiplier = Decimal("1")
    hourly_rate = None
    usd_per_count = None
    if unit is CategoryUnit.TIME:
        if mode is TimeConversionMode.HOURLY_RATE:
            hourly_rate = _positive(
                merged.get("hourly_rate_usd"), "Hourly rate must be greater than zero.", "hourly_rate_usd"
            )
        else:
            multiplier = _positive(
                merged.get("multiplier", Decimal("1")), "Multiplier must be greater than zero.", "multiplier"
            )
    elif unit is CategoryUnit.COUNT:
        usd_per_count = _positive(
            merged.get("usd_per_count"), "Value per count must be greater than zero.", "usd_per_count"
        )

    goal = to_int(merged.get("daily_goal_value", 0), fallback=-1)
    if goal < 0:
        raise ValidationError("Daily goal cannot be negative.", "daily_goal_value")

    raw_milestones = merged.get("badge_milestones")
    if raw_milestones in (None, "", [], ()):
        milestones = None
    else:
        milestones = parse_milestones_strict(raw_milestones)
        if milestones is None:
            raise ValidationError(MILESTONES_MESSAGE, "badge_milestones")

    streak_enabled = as_bool(merged.get("streak_enabled"), True)
    bonus_enabled = streak_enabled and as_bool(merged.get("streak_bonus_enabled"), False)
    schedule: dict[int, Decimal] = {}
    legacy_amount = None
    if bonus_enabled:
        schedule = _bonus_schedule(merged.get("streak_bonus_schedule"))
        if merged.get("streak_bonus_amount_usd") is not None:
            legacy_amount = round2(
                _positive(merged.get("streak_bonus_amount_usd"), BONUS_MESSAGE, "streak_bonus_amount_usd")
            )

    category = Category(
        id=base.id if base is not None else uuid.uuid4(),
        title=title,
        type=category_type,
        unit=unit,
        multiplier=multiplier,
        time_conversion_mode=mode,
        hourly_rate_usd=hourly_rate,
        usd_per_count=usd_per_count,
        daily_goal_value=goal,
        streak_enabled=streak_enabled,
        streak_cadence=cadence,
        badge_enabled=as_bool(merged.get("badge_enabled"), True),
        badge_milestones=milestones or (),
        streak_bonus_enabled=bonus_enabled,
        streak_bonus_schedule=schedule,
        streak_bonus_amount_usd=legacy_amount,
        created_at=base.created_at if base is not None else now,
        updated_at=now,
    )
    return normalize_category(category)


def _newest_first(entries: Iterable[Entry]) -> tuple[Entry, ...]:
    return tuple(sorted(entries, key=lambda entry: entry.timestamp, reverse=True))


class LedgerStore:
    """Authoritative in-memory state with write-through persistence.

    Mutations run under one lock, persist, and then notify subscribers with
    the new frozen snapshot. Errors come back as ``Failure`` values.
    """

    def __init__(
        self,
        storage: StateStorage,
        tz_name: str = DEFAULT_TZ,
        default_usd_per_hour: Decimal = DEFAULT_USD_PER_HOUR,
        thresholds: AlertThresholds | None = None,
    ) -> None:
        self._storage = storage
        self.tz = ZoneInfo(tz_name)
        self.default_usd_per_hour = default_usd_per_hour
        self.thresholds = thresholds or AlertThresholds()
        self._state = AppState(settings=AppSettings(usd_per_hour=default_usd_per_hour))
        self._lock = threading.RLock()
        self._listeners: list[Listener] = []

    def _now(self, now: datetime | None) -> datetime:
        return ensure_aware(now, self.tz) if now is not None else now_utc()

    def _notify(self) -> None:
        snapshot = self._state
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("state listener failed")

    def _commit(self, state: AppState, action: str, **fields: Any) -> AppState:
        self._state = state
        if not self._storage.write(state_to_dict(state)):
            logger.warning("persist failed action=%s; keeping in-memory state", action)
        details = " ".join(f"{key}={value}" for key, value in fields.items())
        if details:
            logger.info("%s %s", action, details)
        else:
            logger.info(action)
        self._notify()
        return state

    def _run(self, action: str, operation: Callable[[], T]) -> Result[T]:
        with self._lock:
            try:
                return Ok(operation())
            except LedgerError as exc:
                logger.info("%s rejected kind=%s message=%s", action, exc.kind.value, exc.message)
                return Failure.from_error(exc)
            except InvalidOperation:
                logger.warning("%s rejected: decimal overflow", action)
                return Failure.from_error(ValidationError(OUT_OF_RANGE_MESSAGE))

    def _require_category(self, category_id: UUID, message: str = "Category not found.") -> Category:
        category = self._state.category(category_id)
        if category is None:
            raise RecordNotFound(message, "category_id")
        return category

    def _with_badges(self, state: AppState, category: Category, now: datetime) -> tuple[AppState, BadgeOutcome]:
        outcome = award_badges_if_needed(category, state.entries, state.award_keys, now, self.tz)
        if outcome.empty:
            return state, outcome
        awards = sorted(
            (*outcome.awards, *state.badge_awards), key=lambda award: award.date_awarded, reverse=True
        )
        return (
            replace(
                state,
                entries=_newest_first((*state.entries, *outcome.bonus_entries)),
                badge_awards=tuple(awards),
            ),
            outcome,
        )

    def _restore_point(self, reason: str, now: datetime) -> RestorePoint:
        state = self._state
        return RestorePoint(
            id=uuid.uuid4(),
            created_at=now,
            reason=reason,
            summary=(
                f"categories={len(state.categories)}, entries={len(state.entries)}, "
                f"badges={len(state.badge_awards)}"
            ),
            state=snapshot_for_restore_point(state),
        )

    @staticmethod
    def _with_restore_point(state: AppState, point: RestorePoint) -> AppState:
        return replace(state, restore_points=(point, *state.restore_points)[:MAX_RESTORE_POINTS])

    def load(self) -> Result[AppState]:
        with self._lock:
            raw = self._storage.read()
            self._state = normalize_state(raw, now=now_utc(), default_usd_per_hour=self.default_usd_per_hour)
            if raw is not None:
                self._storage.write(state_to_dict(self._state))
            logger.info(
                "state loaded categories=%s entries=%s awards=%s",
                len(self._state.categories),
                len(self._state.entries),
                len(self._state.badge_awards),
            )
            self._notify()
            return Ok(self._state)

    def snapshot(self) -> AppState:
        return self._state

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)
        listener(self._state)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def set_usd_per_hour(self, value: Any) -> Result[Decimal]:
        def operation() -> Decimal:
            rate = _positive(value, "USD per hour must be greater than zero.", "usd_per_hour")
            stored = round2(max(MIN_USD_PER_HOUR, rate))
            settings = replace(self._state.settings, usd_per_hour=stored)
            self._commit(replace(self._state, settings=settings), "usd_per_hour updated", value=stored)
            return stored

        return self._run("set_usd_per_hour", operation)

    def create_category(self, data: Mapping[str, Any], now: datetime | None = None) -> Result[Category]:
        def operation() -> Category:
            category = build_category(data, None, self._now(now))
            state = replace(self._state, categories=(*self._state.categories, category))
            self._commit(state, "category created", id=category.id, title=category.title)
            return category

        return self._run("create_category", operation)

    def update_category(
        self,
        category_id: UUID,
        patch: Mapping[str, Any],
        now: datetime | None = None,
    ) -> Result[Category]:
        def operation() -> Category:
            current = self._require_category(category_id)
            updated = build_category(patch, current, self._now(now))
            categories = tuple(updated if c.id == category_id else c for c in self._state.categories)
            self._commit(replace(self._state, categories=categories), "category updated", id=category_id)
            return updated

        return self._run("update_category", operation)

    def delete_category(self, category_id: UUID, now: datetime | None = None) -> Result[Category]:
        def operation() -> Category:
            category = self._require_category(category_id)
            session = self._state.active_session
            if session is not None and session.category_id == category_id:
                raise ActiveSessionConflict(category.title)
            deleted = self._now(now)
            point = self._restore_point(f"Before deleting category: {category.title}", deleted)
            undo = CategoryDeleteUndo(
                deleted_at=deleted,
                category=category,
                entries=tuple(self._state.entries_for(category_id)),
                badge_awards=tuple(a for a in self._state.badge_awards if a.category_id == category_id),
            )
            state = replace(
                self._state,
                categories=tuple(c for c in self._state.categories if c.id != category_id),
                entries=tuple(e for e in self._state.entries if e.category_id != category_id),
                badge_awards=tuple(a for a in self._state.badge_awards if a.category_id != category_id),
                last_category_delete=undo,
            )
            self._commit(
                self._with_restore_point(state, point),
                "category deleted",
                id=category_id,
                entries=len(undo.entries),
            )
            return category

        return self._run("delete_category", operation)

    def undo_category_delete(self) -> Result[DeleteUndoReport]:
        """Bring back the last deleted category with its entries and badges.

        Nothing is restored when a category with the same id exists again;
        entries and awards already present are left alone.
        """

        def operation() -> DeleteUndoReport:
            undo = self._state.last_category_delete
            if undo is None:
                raise RecordNotFound("No deleted category to undo.")
            state = replace(self._state, last_category_delete=None)
            if state.category(undo.category.id) is not None:
                report = DeleteUndoReport(skipped_categories=1)
                self._commit(state, "category delete undo skipped", id=undo.category.id)
                return report

            known_entries = {entry.id for entry in state.entries}
            entries = [entry for entry in undo.entries if entry.id not in known_entries]
            known_keys = state.award_keys
            awards = [award for award in undo.badge_awards if award.award_key not in known_keys]
            state = replace(
                state,
                categories=(*state.categories, undo.category),
                entries=_newest_first((*state.entries, *entries)),
                badge_awards=tuple(
                    sorted((*state.badge_awards, *awards), key=lambda award: award.date_awarded, reverse=True)
                ),
            )
            report = DeleteUndoReport(
                restored_categories=1,
                restored_entries=len(entries),
                skipped_entries=len(undo.entries) - len(entries),
            )
            self._commit(state, "category delete undone", id=undo.category.id, entries=len(entries))
            return report

        return self._run("undo_category_delete", operation)

    def add_manual_entry(
        self,
        category_id: UUID,
        quantity: Any,
        note: str = "",
        timestamp: datetime | None = None,
        now: datetime | None = None,
    ) -> Result[EntryOutcome]:
        def operation() -> EntryOutcome:
            category = self._require_category(category_id, "Pick a valid category first.")
            raw = _positive(quantity, "Quantity must be greater than zero.", "quantity")
            if category.unit is CategoryUnit.TIME and not (TIME_ENTRY_MIN_MINUTES <= raw <= TIME_ENTRY_MAX_MINUTES):
                raise ValidationError("Time entries must be between 1 and 600 minutes.", "quantity")
            if category.unit is CategoryUnit.COUNT and not (COUNT_ENTRY_MIN <= raw <= COUNT_ENTRY_MAX):
                raise ValidationError("Count entries must be between 1 and 500.", "quantity")

            created = self._now(now)
            when = ensure_aware(timestamp, self.tz) if timestamp is not None else created
            qty = round2(raw)
            entry = Entry(
                id=uuid.uuid4(),
                timestamp=when,
                category_id=category.id,
                amount_usd=amount_usd(category, qty, self._state.settings.usd_per_hour),
                duration_minutes=max(1, round_half_up(qty)) if category.unit is CategoryUnit.TIME else 0,
                quantity=qty,
                unit=category.unit,
                note=(note or "").strip(),
                is_manual=True,
                created_at=created,
                updated_at=created,
            )
            state = replace(self._state, entries=_newest_first((*self._state.entries, entry)))
            state, outcome = self._with_badges(state, category, when)
            self._commit(
                state,
                "entry added",
                id=entry.id,
                category=category.id,
                amount=entry.amount_usd,
                awards=len(outcome.awards),
            )
            return EntryOutcome(entry=entry, awards=outcome.awards, bonus_entries=outcome.bonus_entries)

        return self._run("add_manual_entry", operation)

    def delete_entry(self, entry_id: UUID, now: datetime | None = None) -> Result[Entry]:
        def operation() -> Entry:
            entry = self._state.entry(entry_id)
            if entry is None:
                raise RecordNotFound("Entry not found.", "entry_id")
            deleted = self._now(now)
            point = self._restore_point(f"Before deleting entry: {str(entry_id)[:8]}", deleted)
            state = replace(
                self._state,
                entries=tuple(e for e in self._state.entries if e.id != entry_id),
                last_entry_delete=EntryDeleteUndo(deleted_at=deleted, entries=(entry,)),
            )
            self._commit(self._with_restore_point(state, point), "entry deleted", id=entry_id)
            return entry

        return self._run("delete_entry", operation)

    def undo_entry_delete(self) -> Result[DeleteUndoReport]:
        def operation() -> DeleteUndoReport:
            undo = self._state.last_entry_delete
            if undo is None:
                raise RecordNotFound("No deleted entry is available to undo.")
            known = {entry.id for entry in self._state.entries}
            category_ids = {category.id for category in self._state.categories}
            # An entry can only come back while its category still exists.
            restored = [e for e in undo.entries if e.id not in known and e.category_id in category_ids]
            state = replace(
                self._state,
                entries=_newest_first((*self._state.entries, *restored)),
                last_entry_delete=None,
            )
            report = DeleteUndoReport(
                restored_entries=len(restored),
                skipped_entries=len(undo.entries) - len(restored),
            )
            self._commit(
                state,
                "entry delete undone",
                restored=report.restored_entries,
                skipped=report.skipped_entries,
            )
            return report

        return self._run("undo_entry_delete", operation)

    def start_session(self, category_id: UUID, now: datetime | None = None) -> Result[ActiveSession]:
        def operation() -> ActiveSession:
            if self._state.active_session is not None:
                raise SessionStateError("A session is already running.")
            category = self._require_category(category_id, "Pick a valid category before starting.")
            if category.unit is not CategoryUnit.TIME:
                raise ValidationError("Live timer is only available for Time categories.", "category_id")
            started = self._now(now)
            session = ActiveSession(
                category_id=category_id,
                start_time=started,
                is_paused=False,
                accumulated_elapsed_seconds=0,
                running_segment_start_time=started,
            )
            self._commit(replace(self._state, active_session=session), "session started", category=category_id)
            return session

        return self._run("start_session", operation)

    def pause_session(self, now: datetime | None = None) -> Result[ActiveSession]:
        def operation() -> ActiveSession:
            session = self._state.active_session
            if session is None:
                raise SessionStateError("No running session to pause.")
            if session.is_paused:
                raise SessionStateError("Session is already paused.")
            paused = replace(
                session,
                accumulated_elapsed_seconds=session_elapsed_seconds(session, self._now(now)),
                is_paused=True,
                running_segment_start_time=None,
            )
            self._commit(
                replace(self._state, active_session=paused),
                "session paused",
                elapsed=paused.accumulated_elapsed_seconds,
            )
            return paused

        return self._run("pause_session", operation)

    def resume_session(self, now: datetime | None = None) -> Result[ActiveSession]:
        def operation() -> ActiveSession:
            session = self._state.active_session
            if session is None:
                raise SessionStateError("No paused session to resume.")
            if not session.is_paused:
                raise SessionStateError("Session is already running.")
            resumed = replace(session, is_paused=False, running_segment_start_time=self._now(now))
            self._commit(replace(self._state, active_session=resumed), "session resumed")
            return resumed

        return self._run("resume_session", operation)

    def elapsed_seconds(self, now: datetime | None = None) -> int:
        session = self._state.active_session
        if session is None:
            return 0
        return session_elapsed_seconds(session, self._now(now))

    def stop_session_and_save(self, note: str = "", now: datetime | None = None) -> Result[EntryOutcome]:
        def operation() -> EntryOutcome:
            session = self._state.active_session
            if session is None:
                raise SessionStateError("No running session to stop.")
            category = self._state.category(session.category_id)
            if category is None or category.unit is not CategoryUnit.TIME:
                self._commit(replace(self._state, active_session=None), "session cleared", reason="invalid_category")
                raise SessionStateError("Active session category is missing or invalid.")

            stopped = self._now(now)
            elapsed = session_elapsed_seconds(session, stopped)
            minutes = max(1, (elapsed + 30) // 60)
            entry = Entry(
                id=uuid.uuid4(),
                timestamp=stopped,
                category_id=category.id,
                amount_usd=amount_usd(category, minutes, self._state.settings.usd_per_hour),
                duration_minutes=minutes,
                quantity=Decimal(minutes),
                unit=CategoryUnit.TIME,
                note=(note or "").strip(),
                is_manual=False,
                created_at=stopped,
                updated_at=stopped,
            )
            state = replace(
                self._state,
                entries=_newest_first((*self._state.entries, entry)),
                active_session=None,
            )
            state, outcome = self._with_badges(state, category, stopped)
            self._commit(state, "session saved", id=entry.id, minutes=minutes, awards=len(outcome.awards))
            return EntryOutcome(entry=entry, awards=outcome.awards, bonus_entries=outcome.bonus_entries)

        return self._run("stop_session_and_save", operation)

    def discard_session(self) -> Result[None]:
        def operation() -> None:
            if self._state.active_session is None:
                return None
            self._commit(replace(self._state, active_session=None), "session discarded")
            return None

        return self._run("discard_session", operation)

    def compute_dashboard(self, now: datetime | None = None) -> DashboardView:
        return compute_dashboard(self._state, self._now(now), self.tz, self.thresholds)

    def preview_import(self, source: ImportSource, now: datetime | None = None) -> Result[ImportPreview]:
        return self._run("preview_import", lambda: analyze_import(self._state, source, self._now(now)))

    def import_data(
        self,
        source: ImportSource,
        policy: ConflictPolicy = ConflictPolicy.REPLACE_EXISTING,
        now: datetime | None = None,
    ) -> Result[ImportReport]:
        def operation() -> ImportReport:
            imported = self._now(now)
            state, report = apply_import(self._state, source, policy, imported)
            if report.undo_payload is not None:
                point = self._restore_point("Before history import", imported)
                state = replace(state, last_import_undo=report.undo_payload.to_dict())
                self._commit(
                    self._with_restore_point(state, point),
                    "import committed",
                    entries=report.created_entries + report.updated_entries,
                )
            return report

        return self._run("import_data", operation)

    def undo_import(
        self,
        payload: UndoPayload | Mapping[str, Any] | str | bytes | None = None,
    ) -> Result[UndoReport]:
        """Revert an import; without ``payload`` the last import's stored undo is used."""

        def operation() -> UndoReport:
            if isinstance(payload, UndoPayload):
                undo = payload
            elif isinstance(payload, (str, bytes)):
                undo = UndoPayload.from_json(payload)
            elif payload is not None:
                undo = UndoPayload.from_dict(payload)
            elif self._state.last_import_undo is not None:
                undo = UndoPayload.from_dict(self._state.last_import_undo)
            else:
                raise RecordNotFound("No import is available to undo.")
            state, report = apply_undo(self._state, undo)
            self._commit(replace(state, last_import_undo=None), "import undone", missing=report.missing_records)
            return report

        return self._run("undo_import", operation)

    def export_history(self, manual_only: bool = False, now: datetime | None = None) -> dict[str, Any]:
        return export_history(self._state, manual_only, self._now(now), self.tz)

    def export_csv(self, manual_only: bool = False) -> str:
        return export_csv(self._state, manual_only, self.tz)

    def export_full_backup(self, now: datetime | None = None) -> Result[dict[str, Any]]:
        def operation() -> dict[str, Any]:
            exported = self._now(now)
            settings = replace(
                self._state.settings,
                last_full_backup_at=exported,
                last_backup_reminder_dismissed_at=None,
            )
            state = self._commit(replace(self._state, settings=settings), "full backup exported")
            return build_full_backup(state, exported)

        return self._run("export_full_backup", operation)

    def restore_full_backup(self, payload: Any, now: datetime | None = None) -> Result[AppState]:
        def operation() -> AppState:
            restored_at = self._now(now)
            state = parse_full_backup(payload, restored_at, self.default_usd_per_hour)
            point = self._restore_point("Before full backup restore", restored_at)
            return self._commit(
                self._with_restore_point(state, point),
                "full backup restored",
                categories=len(state.categories),
                entries=len(state.entries),
            )

        return self._run("restore_full_backup", operation)

    def should_show_backup_reminder(self, now: datetime | None = None) -> bool:
        current = self._now(now)
        settings = self._state.settings
        if settings.last_full_backup_at is not None:
            if current - settings.last_full_backup_at < timedelta(days=BACKUP_REMINDER_INTERVAL_DAYS):
                return False
        if settings.last_backup_reminder_dismissed_at is not None:
            if current - settings.last_backup_reminder_dismissed_at < timedelta(hours=BACKUP_REMINDER_SNOOZE_HOURS):
                return False
        return True

    def dismiss_backup_reminder(self, now: datetime | None = None) -> Result[datetime]:
        def operation() -> datetime:
            dismissed = self._now(now)
            settings = replace(self._state.settings, last_backup_reminder_dismissed_at=dismissed)
            self._commit(replace(self._state, settings=settings), "backup reminder dismissed")
            return dismissed

        return self._run("dismiss_backup_reminder", operation)

    def reset_all_data(self, now: datetime | None = None) -> Result[None]:
        def operation() -> None:
            point = self._restore_point("Before reset all data", self._now(now))
            state = AppState(settings=AppSettings(usd_per_hour=self.default_usd_per_hour), restore_points=(point,))
            self._commit(state, "data reset")
            return None

        return self._run("reset_all_data", operation)

    def list_restore_points(self) -> tuple[RestorePoint, ...]:
        return self._state.restore_points

    def restore_from_point(self, point_id: UUID, now: datetime | None = None) -> Result[AppState]:
        def operation() -> AppState:
            points = self._state.restore_points
            target = next((point for point in points if point.id == point_id), None)
            if target is None:
                raise RecordNotFound("Restore point not found.", "point_id")
            restored_at = self._now(now)
            before = self._restore_point("Before restore", restored_at)
            restored = normalize_state(target.state, now=restored_at, default_usd_per_hour=self.default_usd_per_hour)
            remaining = tuple(point for point in points if point.id != point_id)
            state = replace(restored, restore_points=(before, *remaining)[:MAX_RESTORE_POINTS])
            return self._commit(
                state,
                "restore point applied",
                id=point_id,
                categories=len(state.categories),
                entries=len(state.entries),
            )

        return self._run("restore_from_point", operation)

    def delete_restore_point(self, point_id: UUID) -> Result[RestorePoint]:
        def operation() -> RestorePoint:
            points = self._state.restore_points
            target = next((point for point in points if point.id == point_id), None)
            if target is None:
                raise RecordNotFound("Restore point not found.", "point_id")
            remaining = tuple(point for point in points if point.id != point_id)
            self._commit(replace(self._state, restore_points=remaining), "restore point deleted", id=point_id)
            return target

        return self._run("delete_restore_point", operation)

    def seed_starter_categories(
        self,
        seeds: Iterable[Mapping[str, Any]],
        now: datetime | None = None,
    ) -> Result[int]:
        def operation() -> int:
            if self._state.categories:
                return 0
            created = self._now(now)
            categories = tuple(build_category(seed, None, created) for seed in seeds)
            if not categories:
                return 0
            self._commit(replace(self._state, categories=categories), "starter categories seeded", count=len(categories))
            return len(categories)

        return self._run("seed_starter_categories", operation)
