from __future__ import annotations

from grind_ledger.constants import STARTER_CATEGORIES
from grind_ledger.seed import load_seed_categories


def test_missing_file_uses_starter_categories(tmp_path) -> None:
    seeds = load_seed_categories(tmp_path / "nope.yaml")
    assert seeds == STARTER_CATEGORIES
    seeds[0]["title"] = "changed"
    assert STARTER_CATEGORIES[0]["title"] != "changed"


def test_yaml_seed_file(tmp_path) -> None:
    path = tmp_path / "seed.yaml"
    path.write_text(
        """
categories:
  - title: "  Guitar  "
    type: goodHabit
    unit: time
    multiplier: 1.2
    daily_goal_value: 30
    color: red
  - title: Pushups
    unit: count
    usd_per_count: 0.1
  - title: ""
  - just a string
"""
    )
    seeds = load_seed_categories(path)
    assert seeds == [
        {"title": "Guitar", "type": "goodHabit", "unit": "time", "multiplier": 1.2, "daily_goal_value": 30},
        {"title": "Pushups", "unit": "count", "usd_per_count": 0.1},
    ]


def test_empty_seed_file(tmp_path, caplog) -> None:
    path = tmp_path / "seed.yaml"
    path.write_text("")
    assert load_seed_categories(path) == []
    assert "seed file has no categories" in caplog.text
