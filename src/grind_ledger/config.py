from __future__ import annotations

import os
from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path

from grind_ledger.constants import (
    DEFAULT_TZ,
    DEFAULT_USD_PER_HOUR,
    GOOD_CRITICAL_REMAINING_RATIO,
    QUIT_WARNING_RATIO,
)
from grind_ledger.decimal_utils import ZERO, to_decimal
from grind_ledger.streaks import AlertThresholds


@dataclass(frozen=True)
class Settings:
    database_path: Path
    tz: str
    usd_per_hour: Decimal
    api_token: str | None
    api_host: str
    api_port: int
    backup_dir: Path
    seed_categories_path: Path
    seed_starter_categories: bool
    quit_warning_ratio: Decimal
    good_critical_remaining_ratio: Decimal

    @property
    def alert_thresholds(self) -> AlertThresholds:
        return AlertThresholds(
            quit_warning_ratio=self.quit_warning_ratio,
            good_critical_remaining_ratio=self.good_critical_remaining_ratio,
        )


def _load_env_file(path: Path) -> None:
    if not path.exists():
        return
    for line in path.read_text().splitlines():
        raw = line.strip()
        if not raw or raw.startswith("#") or "=" not in raw:
            continue
        key, value = raw.split("=", maxsplit=1)
        key = key.strip()
        value = value.strip().strip('"').strip("'")
        if key and key not in os.environ:
            os.environ[key] = value


def _parse_bool(value: str | None, default: bool = False) -> bool:
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _parse_positive_decimal(value: str | None, default: Decimal) -> Decimal:
    parsed = to_decimal(value, fallback=None)
    if parsed is None or parsed <= ZERO:
        return default
    return parsed


def load_settings(env_path: Path = Path(".env")) -> Settings:
    _load_env_file(env_path)

    api_port_raw = os.getenv("API_PORT", "8080")
    try:
        api_port = int(api_port_raw)
    except ValueError:
        api_port = 8080

    return Settings(
        database_path=Path(os.getenv("DATABASE_PATH", "./data/ledger.db")),
        tz=os.getenv("TZ", DEFAULT_TZ) or DEFAULT_TZ,
        usd_per_hour=_parse_positive_decimal(os.getenv("USD_PER_HOUR"), DEFAULT_USD_PER_HOUR),
        api_token=os.getenv("API_TOKEN") or None,
        api_host=os.getenv("API_HOST", "127.0.0.1"),
        api_port=api_port,
        backup_dir=Path(os.getenv("BACKUP_DIR", "./data/backups")),
        seed_categories_path=Path(os.getenv("SEED_CATEGORIES_PATH", "./seed_categories.yaml")),
        seed_starter_categories=_parse_bool(os.getenv("SEED_STARTER_CATEGORIES"), default=True),
        quit_warning_ratio=_parse_positive_decimal(os.getenv("ALERT_QUIT_WARNING_RATIO"), QUIT_WARNING_RATIO),
        good_critical_remaining_ratio=_parse_positive_decimal(
            os.getenv("ALERT_GOOD_CRITICAL_REMAINING_RATIO"), GOOD_CRITICAL_REMAINING_RATIO
        ),
    )
