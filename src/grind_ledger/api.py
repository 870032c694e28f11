from __future__ import annotations

from dataclasses import asdict
from typing import Any, NoReturn, Union
from uuid import UUID

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from grind_ledger.decimal_utils import money_string
from grind_ledger.errors import ErrorKind, Failure, Ok, Result
from grind_ledger.importer import ImportPreview, ImportReport
from grind_ledger.models import ConflictPolicy
from grind_ledger.schema import (
    badge_award_to_dict,
    category_to_dict,
    entry_to_dict,
    restore_point_to_dict,
    session_to_dict,
    state_to_dict,
)
from grind_ledger.service import DashboardView
from grind_ledger.store import EntryOutcome, LedgerStore
from grind_ledger.time_utils import parse_timestamp, to_iso_utc

NumberInput = Union[str, int, float]

STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 422,
    ErrorKind.RECORD_NOT_FOUND: 404,
    ErrorKind.ACTIVE_SESSION_CONFLICT: 409,
    ErrorKind.SESSION_STATE: 409,
    ErrorKind.INVALID_PAYLOAD: 400,
}


def _require_auth(request: Request, token: str | None) -> None:
    if not token:
        return
    header = request.headers.get("x-api-token")
    query = request.query_params.get("token")
    if header == token or query == token:
        return
    raise HTTPException(status_code=401, detail="Unauthorized")


def _fail(failure: Failure) -> NoReturn:
    raise HTTPException(
        status_code=STATUS_BY_KIND.get(failure.kind, 400),
        detail={"kind": failure.kind.value, "message": failure.message, "field": failure.field},
    )


def _unwrap(result: Result[Any]) -> Any:
    if isinstance(result, Ok):
        return result.value
    _fail(result)


class SettingsUpdateRequest(BaseModel):
    usd_per_hour: NumberInput


class CategoryRequest(BaseModel):
    title: str | None = None
    type: str | None = None
    unit: str | None = None
    multiplier: NumberInput | None = None
    time_conversion_mode: str | None = None
    hourly_rate_usd: NumberInput | None = None
    usd_per_count: NumberInput | None = None
    daily_goal_value: int | None = None
    streak_enabled: bool | None = None
    streak_cadence: str | None = None
    badge_enabled: bool | None = None
    badge_milestones: list[int] | str | None = None
    streak_bonus_enabled: bool | None = None
    streak_bonus_schedule: dict[int, NumberInput] | str | None = None
    streak_bonus_amount_usd: NumberInput | None = None

    def changes(self) -> dict[str, Any]:
        return {key: value for key, value in self.model_dump(exclude_unset=True).items() if value is not None}


class EntryRequest(BaseModel):
    category_id: UUID
    quantity: NumberInput
    note: str = ""
    timestamp: str | None = None


class SessionStartRequest(BaseModel):
    category_id: UUID


class SessionStopRequest(BaseModel):
    note: str = ""


def _entry_outcome(outcome: EntryOutcome) -> dict[str, Any]:
    return {
        "entry": entry_to_dict(outcome.entry),
        "awards": [badge_award_to_dict(award) for award in outcome.awards],
        "bonus_entries": [entry_to_dict(entry) for entry in outcome.bonus_entries],
    }


def _import_report(report: ImportReport) -> dict[str, Any]:
    return {
        "processed_entries": report.processed_entries,
        "created_entries": report.created_entries,
        "updated_entries": report.updated_entries,
        "skipped_entries": report.skipped_entries,
        "created_categories": report.created_categories,
        "undo_payload": report.undo_payload.to_dict() if report.undo_payload is not None else None,
    }


def _preview(preview: ImportPreview) -> dict[str, Any]:
    return {**asdict(preview), "has_changes": preview.has_changes}


def dashboard_to_dict(view: DashboardView) -> dict[str, Any]:
    session = None
    if view.session is not None:
        session = {
            "category_id": str(view.session.category_id),
            "category_title": view.session.category_title,
            "elapsed_seconds": view.session.elapsed_seconds,
            "elapsed_text": view.session.elapsed_text,
            "live_amount_usd": money_string(view.session.live_amount_usd),
            "is_paused": view.session.is_paused,
        }
    highlight = None
    if view.highlight is not None:
        highlight = {
            "category_id": str(view.highlight.category_id),
            "title": view.highlight.title,
            "type": view.highlight.type.value,
            "cadence": view.highlight.cadence.value,
            "streak": view.highlight.streak,
            "suffix": view.highlight.suffix,
            "progress_text": view.highlight.progress_text,
        }
    return {
        "balance_usd": money_string(view.balance),
        "today": {
            "date": view.today.day.isoformat(),
            "ledger_change_usd": money_string(view.today.ledger_change),
            "grind_usd": money_string(view.today.grind),
            "chill_usd": money_string(view.today.chill),
            "entry_count": view.today.entry_count,
        },
        "session": session,
        "highlight": highlight,
        "alerts": [
            {
                "category_id": str(alert.category_id),
                "title": alert.title,
                "type": alert.type.value,
                "severity": alert.severity,
                "message": alert.message,
            }
            for alert in view.alerts
        ],
        "recent_badges": [
            {
                "award_key": badge.award_key,
                "label": badge.label,
                "date_awarded": to_iso_utc(badge.date_awarded),
                "category_title": badge.category_title,
            }
            for badge in view.recent_badges
        ],
        "entry_count": view.entry_count,
        "category_count": view.category_count,
    }


def build_app(store: LedgerStore, api_token: str | None) -> FastAPI:
    app = FastAPI(title="Grind Ledger", version="1.0.0")

    @app.get("/api/state")
    async def api_state(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        return state_to_dict(store.snapshot())

    @app.get("/api/dashboard")
    async def api_dashboard(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        return dashboard_to_dict(store.compute_dashboard())

    @app.put("/api/settings")
    async def api_settings(request: Request, payload: SettingsUpdateRequest) -> dict[str, Any]:
        _require_auth(request, api_token)
        rate = _unwrap(store.set_usd_per_hour(payload.usd_per_hour))
        return {"ok": True, "usd_per_hour": money_string(rate)}

    @app.get("/api/categories")
    async def api_categories(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        return {"categories": [category_to_dict(c) for c in store.snapshot().categories]}

    @app.post("/api/categories", status_code=201)
    async def api_create_category(request: Request, payload: CategoryRequest) -> dict[str, Any]:
        _require_auth(request, api_token)
        category = _unwrap(store.create_category(payload.changes()))
        return {"ok": True, "category": category_to_dict(category)}

    @app.patch("/api/categories/{category_id}")
    async def api_update_category(category_id: UUID, request: Request, payload: CategoryRequest) -> dict[str, Any]:
        _require_auth(request, api_token)
        category = _unwrap(store.update_category(category_id, payload.changes()))
        return {"ok": True, "category": category_to_dict(category)}

    @app.delete("/api/categories/{category_id}")
    async def api_delete_category(category_id: UUID, request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        _unwrap(store.delete_category(category_id))
        return {"ok": True}

    @app.get("/api/entries")
    async def api_entries(request: Request, manual_only: bool = False, limit: int = 200) -> dict[str, Any]:
        _require_auth(request, api_token)
        entries = [e for e in store.snapshot().entries if e.is_manual or not manual_only]
        return {"entries": [entry_to_dict(e) for e in entries[: max(0, limit)]]}

    @app.post("/api/entries", status_code=201)
    async def api_add_entry(request: Request, payload: EntryRequest) -> dict[str, Any]:
        _require_auth(request, api_token)
        timestamp = None
        if payload.timestamp:
            timestamp = parse_timestamp(payload.timestamp)
            if timestamp is None:
                raise HTTPException(status_code=422, detail="timestamp must be ISO 8601")
        outcome = _unwrap(store.add_manual_entry(payload.category_id, payload.quantity, payload.note, timestamp))
        return {"ok": True, **_entry_outcome(outcome)}

    @app.delete("/api/entries/{entry_id}")
    async def api_delete_entry(entry_id: UUID, request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        _unwrap(store.delete_entry(entry_id))
        return {"ok": True}

    @app.post("/api/session/start")
    async def api_session_start(request: Request, payload: SessionStartRequest) -> dict[str, Any]:
        _require_auth(request, api_token)
        session = _unwrap(store.start_session(payload.category_id))
        return {"ok": True, "session": session_to_dict(session)}

    @app.post("/api/session/pause")
    async def api_session_pause(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        session = _unwrap(store.pause_session())
        return {"ok": True, "session": session_to_dict(session)}

    @app.post("/api/session/resume")
    async def api_session_resume(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        session = _unwrap(store.resume_session())
        return {"ok": True, "session": session_to_dict(session)}

    @app.post("/api/session/stop")
    async def api_session_stop(request: Request, payload: SessionStopRequest) -> dict[str, Any]:
        _require_auth(request, api_token)
        outcome = _unwrap(store.stop_session_and_save(payload.note))
        return {"ok": True, **_entry_outcome(outcome)}

    @app.post("/api/session/discard")
    async def api_session_discard(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        _unwrap(store.discard_session())
        return {"ok": True}

    @app.post("/api/import/preview")
    async def api_import_preview(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        preview = _unwrap(store.preview_import(await request.body()))
        return {"ok": True, "preview": _preview(preview)}

    @app.post("/api/import")
    async def api_import(
        request: Request,
        policy: ConflictPolicy = ConflictPolicy.REPLACE_EXISTING,
    ) -> dict[str, Any]:
        _require_auth(request, api_token)
        report = _unwrap(store.import_data(await request.body(), policy))
        return {"ok": True, "report": _import_report(report)}

    @app.post("/api/import/undo")
    async def api_import_undo(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        body = await request.body()
        report = _unwrap(store.undo_import(body if body.strip() else None))
        return {"ok": True, "report": asdict(report)}

    @app.get("/api/export/json")
    async def api_export_json(request: Request, manual_only: bool = False) -> dict[str, Any]:
        _require_auth(request, api_token)
        return store.export_history(manual_only)

    @app.get("/api/export/csv", response_class=PlainTextResponse)
    async def api_export_csv(request: Request, manual_only: bool = False) -> PlainTextResponse:
        _require_auth(request, api_token)
        return PlainTextResponse(store.export_csv(manual_only), media_type="text/csv")

    @app.post("/api/backup")
    async def api_backup(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        return _unwrap(store.export_full_backup())

    @app.post("/api/backup/restore")
    async def api_backup_restore(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        state = _unwrap(store.restore_full_backup(await request.body()))
        return {"ok": True, "categories": len(state.categories), "entries": len(state.entries)}

    @app.get("/api/undo")
    async def api_undo_status(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        state = store.snapshot()
        return {
            "import": state.last_import_undo is not None,
            "category_delete": state.last_category_delete is not None,
            "entry_delete": state.last_entry_delete is not None,
        }

    @app.post("/api/categories/undo-delete")
    async def api_undo_category_delete(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        report = _unwrap(store.undo_category_delete())
        return {"ok": True, "report": asdict(report)}

    @app.post("/api/entries/undo-delete")
    async def api_undo_entry_delete(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        report = _unwrap(store.undo_entry_delete())
        return {"ok": True, "report": asdict(report)}

    @app.get("/api/restore-points")
    async def api_restore_points(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        points = store.list_restore_points()
        return {"restore_points": [restore_point_to_dict(point, include_state=False) for point in points]}

    @app.post("/api/restore-points/{point_id}/restore")
    async def api_restore_point(point_id: UUID, request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        state = _unwrap(store.restore_from_point(point_id))
        return {
            "ok": True,
            "categories": len(state.categories),
            "entries": len(state.entries),
            "badges": len(state.badge_awards),
        }

    @app.delete("/api/restore-points/{point_id}")
    async def api_delete_restore_point(point_id: UUID, request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        _unwrap(store.delete_restore_point(point_id))
        return {"ok": True}

    @app.get("/api/backup/reminder")
    async def api_backup_reminder(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        return {"show": store.should_show_backup_reminder()}

    @app.post("/api/backup/reminder/dismiss")
    async def api_backup_reminder_dismiss(request: Request) -> dict[str, Any]:
        _require_auth(request, api_token)
        dismissed = _unwrap(store.dismiss_backup_reminder())
        return {"ok": True, "dismissed_at": to_iso_utc(dismissed)}

    return app

