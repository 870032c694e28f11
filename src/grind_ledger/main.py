from __future__ import annotations

import logging

import uvicorn

from grind_ledger.api import build_app
from grind_ledger.config import Settings, load_settings
from grind_ledger.errors import Failure
from grind_ledger.jobs_runner import run_job
from grind_ledger.logging_setup import setup_logging
from grind_ledger.seed import load_seed_categories
from grind_ledger.storage import SqliteStateStorage
from grind_ledger.store import LedgerStore

logger = logging.getLogger(__name__)


def create_store(settings: Settings, storage: SqliteStateStorage | None = None) -> LedgerStore:
    store = LedgerStore(
        storage or SqliteStateStorage(settings.database_path),
        tz_name=settings.tz,
        default_usd_per_hour=settings.usd_per_hour,
        thresholds=settings.alert_thresholds,
    )
    store.load()
    if settings.seed_starter_categories and not store.snapshot().categories:
        result = store.seed_starter_categories(load_seed_categories(settings.seed_categories_path))
        if isinstance(result, Failure):
            logger.warning("starter categories rejected field=%s message=%s", result.field, result.message)
    return store


def run_server() -> None:
    setup_logging()
    settings = load_settings()
    store = create_store(settings)
    app = build_app(store, settings.api_token)
    uvicorn.run(app, host=settings.api_host, port=settings.api_port)


def run_jobs(job_names: list[str]) -> None:
    setup_logging()
    settings = load_settings()
    storage = SqliteStateStorage(settings.database_path)
    store = create_store(settings, storage)
    for job_name in job_names:
        run_job(job_name, store, settings, storage)
