from __future__ import annotations

import copy
import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Protocol

from grind_ledger.constants import STATE_STORAGE_KEY

logger = logging.getLogger(__name__)


class StateStorage(Protocol):
    def read(self) -> dict[str, Any] | None: ...

    def write(self, data: dict[str, Any]) -> bool: ...

    def clear(self) -> None: ...


class MemoryStateStorage:
    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._data = copy.deepcopy(initial) if initial is not None else None
        self.write_count = 0

    def read(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._data) if self._data is not None else None

    def write(self, data: dict[str, Any]) -> bool:
        self._data = copy.deepcopy(data)
        self.write_count += 1
        return True

    def clear(self) -> None:
        self._data = None


class SqliteStateStorage:
    def __init__(self, path: Path, key: str = STATE_STORAGE_KEY) -> None:
        self.path = path
        self.key = key
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_migrations (
                    version INTEGER PRIMARY KEY,
                    applied_at TEXT NOT NULL
                )
                """
            )
            current = {row["version"] for row in conn.execute("SELECT version FROM schema_migrations")}

            migrations: dict[int, str] = {
                1: """
                    CREATE TABLE app_state (
                        key TEXT PRIMARY KEY,
                        value_json TEXT NOT NULL,
                        updated_at TEXT NOT NULL
                    );
                """,
                2: """
                    CREATE TABLE backup_runs (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        path TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    );
                """,
            }

            now = datetime.now().isoformat(timespec="seconds")
            for version in sorted(migrations):
                if version in current:
                    continue
                conn.executescript(migrations[version])
                conn.execute(
                    "INSERT INTO schema_migrations(version, applied_at) VALUES (?, ?)",
                    (version, now),
                )

    def applied_migrations(self) -> list[int]:
        with self._connect() as conn:
            rows = conn.execute("SELECT version FROM schema_migrations ORDER BY version").fetchall()
        return [int(row["version"]) for row in rows]

    def read(self) -> dict[str, Any] | None:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT value_json FROM app_state WHERE key = ?", (self.key,)).fetchone()
        except sqlite3.Error:
            logger.warning("state read failed path=%s", self.path, exc_info=True)
            return None
        if row is None:
            return None
        try:
            data = json.loads(row["value_json"])
        except json.JSONDecodeError:
            logger.warning("stored state is not valid json key=%s", self.key)
            return None
        return data if isinstance(data, dict) else None

    def write(self, data: dict[str, Any]) -> bool:
        payload = json.dumps(data, ensure_ascii=False)
        try:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO app_state(key, value_json, updated_at)
                    VALUES (?, ?, ?)
                    ON CONFLICT(key) DO UPDATE SET
                        value_json=excluded.value_json,
                        updated_at=excluded.updated_at
                    """,
                    (self.key, payload, datetime.now(tz=timezone.utc).isoformat()),
                )
        except sqlite3.Error:
            logger.warning("state write failed path=%s", self.path, exc_info=True)
            return False
        return True

    def clear(self) -> None:
        with self._connect() as conn:
            conn.execute("DELETE FROM app_state WHERE key = ?", (self.key,))

    def record_backup(self, path: Path, created_at: datetime) -> None:
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO backup_runs(path, created_at) VALUES (?, ?)",
                (str(path), created_at.isoformat()),
            )

    def list_backups(self, limit: int = 20) -> list[dict[str, Any]]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, path, created_at FROM backup_runs ORDER BY id DESC LIMIT ?",
                (limit,),
            ).fetchall()
        return [dict(row) for row in rows]
