from __future__ import annotations

import copy
import logging
from pathlib import Path
from typing import Any

import yaml

from grind_ledger.constants import STARTER_CATEGORIES

logger = logging.getLogger(__name__)

SEED_FIELDS = {
    "title",
    "type",
    "unit",
    "multiplier",
    "time_conversion_mode",
    "hourly_rate_usd",
    "usd_per_count",
    "daily_goal_value",
    "streak_enabled",
    "streak_cadence",
    "badge_enabled",
    "badge_milestones",
    "streak_bonus_enabled",
    "streak_bonus_schedule",
    "streak_bonus_amount_usd",
}


def load_seed_categories(path: Path) -> list[dict[str, Any]]:
    if not path.exists():
        return copy.deepcopy(STARTER_CATEGORIES)

    raw = yaml.safe_load(path.read_text()) or {}
    items = raw.get("categories", []) if isinstance(raw, dict) else []
    seeds: list[dict[str, Any]] = []
    if isinstance(items, list):
        for item in items:
            if not isinstance(item, dict):
                continue
            title = str(item.get("title", "")).strip()
            if not title:
                continue
            seed = {key: value for key, value in item.items() if key in SEED_FIELDS}
            seed["title"] = title
            seeds.append(seed)

    if not seeds:
        logger.warning("seed file has no categories path=%s", path)
    return seeds
