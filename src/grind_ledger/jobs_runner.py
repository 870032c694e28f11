from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path

from grind_ledger.config import Settings
from grind_ledger.errors import Failure
from grind_ledger.exporter import write_local_backup
from grind_ledger.storage import SqliteStateStorage
from grind_ledger.store import LedgerStore
from grind_ledger.time_utils import now_local

logger = logging.getLogger(__name__)

JOB_NAMES = ("backup", "export_csv")


def run_backup(store: LedgerStore, backup_dir: Path, now: datetime) -> Path | None:
    result = store.export_full_backup(now)
    if isinstance(result, Failure):
        logger.warning("backup failed message=%s", result.message)
        return None
    path = write_local_backup(result.value, backup_dir, now)
    logger.info("backup written path=%s entries=%s", path, len(store.snapshot().entries))
    return path


def run_export_csv(store: LedgerStore, backup_dir: Path, now: datetime) -> Path:
    day_dir = backup_dir / now.date().isoformat()
    day_dir.mkdir(parents=True, exist_ok=True)
    path = day_dir / f"ledger_{now.strftime('%H%M%S')}.csv"
    path.write_text(store.export_csv(), encoding="utf-8")
    logger.info("csv export written path=%s", path)
    return path


def run_job(
    job_name: str,
    store: LedgerStore,
    settings: Settings,
    storage: SqliteStateStorage | None = None,
    now: datetime | None = None,
) -> Path | None:
    now = now or now_local(settings.tz)
    if job_name == "backup":
        path = run_backup(store, settings.backup_dir, now)
        if path is not None and storage is not None:
            storage.record_backup(path, now)
        return path
    if job_name == "export_csv":
        return run_export_csv(store, settings.backup_dir, now)
    raise SystemExit(f"Unknown job '{job_name}'. Expected one of: {', '.join(JOB_NAMES)}")
