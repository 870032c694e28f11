from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from uuid import UUID
from zoneinfo import ZoneInfo

from grind_ledger.constants import RECENT_BADGES_LIMIT
from grind_ledger.decimal_utils import ZERO, round2
from grind_ledger.ledger import DailySummary, amount_usd, balance, daily_ledger_summary
from grind_ledger.messages import badge_label, format_minutes_hm
from grind_ledger.models import ActiveSession, AppState
from grind_ledger.streaks import AlertThresholds, StreakAlert, StreakHighlight, streak_highlight, streak_risk_alerts
from grind_ledger.time_utils import localize


@dataclass(frozen=True)
class SessionView:
    category_id: UUID
    category_title: str
    elapsed_seconds: int
    elapsed_text: str
    live_amount_usd: Decimal
    is_paused: bool


@dataclass(frozen=True)
class BadgeView:
    award_key: str
    label: str
    date_awarded: datetime
    category_title: str | None


@dataclass(frozen=True)
class DashboardView:
    balance: Decimal
    today: DailySummary
    session: SessionView | None
    highlight: StreakHighlight | None
    alerts: list[StreakAlert]
    recent_badges: list[BadgeView]
    entry_count: int
    category_count: int


def session_elapsed_seconds(session: ActiveSession, now: datetime) -> int:
    elapsed = session.accumulated_elapsed_seconds
    if not session.is_paused and session.running_segment_start_time is not None:
        running = int((now - session.running_segment_start_time).total_seconds())
        elapsed += max(0, running)
    return max(0, elapsed)


def _session_view(state: AppState, now: datetime) -> SessionView | None:
    session = state.active_session
    if session is None:
        return None
    category = state.category(session.category_id)
    elapsed = session_elapsed_seconds(session, now)
    live_amount = ZERO
    if category is not None:
        live_amount = amount_usd(category, Decimal(elapsed) / Decimal(60), state.settings.usd_per_hour)
    return SessionView(
        category_id=session.category_id,
        category_title=category.title if category is not None else "",
        elapsed_seconds=elapsed,
        elapsed_text=format_minutes_hm(elapsed // 60),
        live_amount_usd=round2(live_amount),
        is_paused=session.is_paused,
    )


def compute_dashboard(
    state: AppState,
    now: datetime,
    tz: ZoneInfo,
    thresholds: AlertThresholds | None = None,
) -> DashboardView:
    recent = sorted(state.badge_awards, key=lambda award: award.date_awarded, reverse=True)[:RECENT_BADGES_LIMIT]
    badges = []
    for award in recent:
        category = state.category(award.category_id) if award.category_id is not None else None
        badges.append(
            BadgeView(
                award_key=award.award_key,
                label=badge_label(award),
                date_awarded=award.date_awarded,
                category_title=category.title if category is not None else None,
            )
        )

    return DashboardView(
        balance=balance(state.entries),
        today=daily_ledger_summary(state.entries, localize(now, tz).date(), tz),
        session=_session_view(state, now),
        highlight=streak_highlight(state.categories, state.entries, now, tz),
        alerts=streak_risk_alerts(state.categories, state.entries, now, tz, thresholds),
        recent_badges=badges,
        entry_count=len(state.entries),
        category_count=len(state.categories),
    )
