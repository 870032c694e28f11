from __future__ import annotations

import csv
import io
import json
from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any
from zoneinfo import ZoneInfo

from grind_ledger.constants import CURRENT_SCHEMA_VERSION, DEFAULT_USD_PER_HOUR, FULL_BACKUP_TYPE, FULL_BACKUP_VERSION
from grind_ledger.decimal_utils import decimal_string, money_string
from grind_ledger.errors import InvalidPayload
from grind_ledger.ledger import DailySummary, daily_summaries
from grind_ledger.models import AppState, Entry
from grind_ledger.schema import normalize_state, state_to_dict
from grind_ledger.time_utils import to_iso_utc

CSV_FIELDS = ["date", "ledgerChange", "gain", "spent", "entryCount"]


def _selected_entries(state: AppState, manual_only: bool) -> list[Entry]:
    entries = [entry for entry in state.entries if entry.is_manual or not manual_only]
    entries.sort(key=lambda entry: to_iso_utc(entry.timestamp), reverse=True)
    return entries


def _summary_to_dict(summary: DailySummary) -> dict[str, Any]:
    return {
        "date": summary.day.isoformat(),
        "ledgerChangeUSD": money_string(summary.ledger_change),
        "gainUSD": money_string(summary.grind),
        "spentUSD": money_string(summary.spent),
        "entryCount": summary.entry_count,
    }


def _entry_to_export(state: AppState, entry: Entry) -> dict[str, Any] | None:
    category = state.category(entry.category_id)
    if category is None:
        return None
    return {
        "id": str(entry.id),
        "timestamp": to_iso_utc(entry.timestamp),
        "categoryTitle": category.title,
        "categoryType": category.type.value,
        "unit": category.unit.value,
        "quantity": decimal_string(entry.resolved_quantity(category.unit)),
        "durationMinutes": entry.duration_minutes,
        "amountUSD": decimal_string(entry.amount_usd),
        "isManual": entry.is_manual,
        "note": entry.note,
    }


def export_history(state: AppState, manual_only: bool, now: datetime, tz: ZoneInfo) -> dict[str, Any]:
    entries = _selected_entries(state, manual_only)
    exported = [_entry_to_export(state, entry) for entry in entries]
    return {
        "exportedAt": to_iso_utc(now),
        "manualOnlyFilter": manual_only,
        "dailySummaries": [_summary_to_dict(summary) for summary in daily_summaries(entries, tz)],
        "entries": [item for item in exported if item is not None],
    }


def export_csv(state: AppState, manual_only: bool, tz: ZoneInfo) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_FIELDS, lineterminator="\n")
    writer.writeheader()
    for summary in daily_summaries(_selected_entries(state, manual_only), tz):
        writer.writerow(
            {
                "date": summary.day.isoformat(),
                "ledgerChange": money_string(summary.ledger_change),
                "gain": money_string(summary.grind),
                "spent": money_string(summary.spent),
                "entryCount": summary.entry_count,
            }
        )
    return buffer.getvalue()


def build_full_backup(state: AppState, now: datetime) -> dict[str, Any]:
    return {
        "backupType": FULL_BACKUP_TYPE,
        "backupVersion": FULL_BACKUP_VERSION,
        "schemaVersion": CURRENT_SCHEMA_VERSION,
        "exportedAt": to_iso_utc(now),
        "state": state_to_dict(state),
    }


def parse_full_backup(
    raw: Any,
    now: datetime,
    default_usd_per_hour: Decimal = DEFAULT_USD_PER_HOUR,
) -> AppState:
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise InvalidPayload("Backup file is not valid JSON.") from exc
    if not isinstance(raw, dict) or raw.get("backupType") != FULL_BACKUP_TYPE:
        raise InvalidPayload("Not a full backup file.")
    if not isinstance(raw.get("state"), dict):
        raise InvalidPayload("Backup file has no state.")
    return normalize_state(raw["state"], now=now, default_usd_per_hour=default_usd_per_hour)


def write_local_backup(payload: dict[str, Any], backup_dir: Path, now: datetime) -> Path:
    day_dir = backup_dir / now.date().isoformat()
    day_dir.mkdir(parents=True, exist_ok=True)
    path = day_dir / f"backup_{now.strftime('%H%M%S')}.json"
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return path
