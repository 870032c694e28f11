from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import Iterable
from zoneinfo import ZoneInfo

from grind_ledger.decimal_utils import ZERO, round2
from grind_ledger.messages import bonus_note
from grind_ledger.models import BadgeAward, Category, CategoryUnit, Entry
from grind_ledger.streaks import streak_for_category
from grind_ledger.time_utils import cadence_period_key


@dataclass(frozen=True)
class BadgeOutcome:
    awards: list[BadgeAward] = field(default_factory=list)
    bonus_entries: list[Entry] = field(default_factory=list)

    @property
    def empty(self) -> bool:
        return not self.awards and not self.bonus_entries


def award_key(category: Category, milestone: int, period_key: str) -> str:
    return f"streak:{category.id}:{milestone}:{period_key}"


def resolved_bonus_amounts(category: Category) -> dict[int, Decimal]:
    if category.streak_bonus_schedule:
        return dict(category.streak_bonus_schedule)
    flat = category.streak_bonus_amount_usd
    if flat is None or flat <= ZERO:
        return {}
    return {milestone: flat for milestone in category.badge_milestones}


def award_badges_if_needed(
    category: Category,
    entries: Iterable[Entry],
    existing_award_keys: set[str],
    now: datetime,
    tz: ZoneInfo,
) -> BadgeOutcome:
    if not category.streak_enabled or not category.badge_enabled:
        return BadgeOutcome()

    entries = list(entries)
    streak = streak_for_category(category, entries, now, tz)
    if streak <= 0:
        return BadgeOutcome()

    period_key = cadence_period_key(category.streak_cadence, now, tz)
    paid_keys = {entry.bonus_key for entry in entries if entry.bonus_key}
    bonus_amounts = resolved_bonus_amounts(category) if category.streak_bonus_enabled else {}

    awards: list[BadgeAward] = []
    bonus_entries: list[Entry] = []
    for milestone in category.badge_milestones:
        if streak < milestone:
            continue
        key = award_key(category, milestone, period_key)
        if key in existing_award_keys:
            continue
        awards.append(
            BadgeAward(
                id=uuid.uuid4(),
                award_key=key,
                date_awarded=now,
                category_id=category.id,
                milestone=milestone,
                cadence=category.streak_cadence,
            )
        )

        amount = bonus_amounts.get(milestone, ZERO)
        if amount <= ZERO or key in paid_keys:
            continue
        bonus = round2(amount)
        bonus_entries.append(
            Entry(
                id=uuid.uuid4(),
                timestamp=now,
                category_id=category.id,
                amount_usd=bonus,
                duration_minutes=0,
                quantity=bonus,
                unit=CategoryUnit.MONEY,
                note=bonus_note(milestone, category.streak_cadence),
                bonus_key=key,
                is_manual=False,
                created_at=now,
                updated_at=now,
            )
        )

    return BadgeOutcome(awards=awards, bonus_entries=bonus_entries)
