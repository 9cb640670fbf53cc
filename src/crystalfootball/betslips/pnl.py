"""Profit and loss calculations for published betslips.

Two error policies live here on purpose. ``unit_win`` and ``unit_loss`` raise
``ValueError`` on an invalid stake or odds: those values are checked when a
betslip is created, so reaching them here means corrupted data. Everything
else (aggregation, Kelly sizing, break-even) returns a safe default such as 0
for empty or degenerate input, since new accounts routinely have no bets.
"""

from __future__ import annotations

import calendar
import math
from collections.abc import Iterable, Sequence
from datetime import datetime, timedelta, timezone

from crystalfootball.betslips.types import (
    MIN_ODDS,
    Betslip,
    BetslipLeg,
    BetslipOutcome,
    BetslipType,
    LegStatus,
    LegStatusSummary,
    MonthlyPnlSummary,
    PeriodPnlSummary,
    PnlResult,
    SettlementDecision,
    WeeklyPnlSummary,
)

KELLY_CAP = 0.25


def _round2(value: float) -> float:
    # half-up, not banker's rounding
    return math.floor(value * 100 + 0.5) / 100


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def unit_win(stake_units: float, odds_decimal: float) -> float:
    """Total units returned (stake included) for a winning bet."""

    if stake_units <= 0 or odds_decimal <= MIN_ODDS:
        raise ValueError("Invalid stake or odds for unit win calculation")
    return stake_units * odds_decimal


def unit_loss(stake_units: float) -> float:
    """Units lost for a losing bet, as a negative number."""

    if stake_units <= 0:
        raise ValueError("Invalid stake for unit loss calculation")
    return -stake_units


def get_effective_odds(betslip: Betslip) -> float:
    """Odds used for settlement.

    Multi-leg bets use the cached ``combined_odds`` and fall back to
    ``odds_decimal`` when it is missing; callers should refresh the cache
    from the legs first.
    """

    if betslip.betslip_type == BetslipType.MULTI:
        return betslip.combined_odds or betslip.odds_decimal
    return betslip.odds_decimal


def outcome_pnl(betslip: Betslip) -> PnlResult:
    stake_units = betslip.stake_units

    if betslip.outcome == BetslipOutcome.WON:
        return_units = unit_win(stake_units, get_effective_odds(betslip))
        return PnlResult(stake_units, return_units, return_units - stake_units)
    if betslip.outcome == BetslipOutcome.LOST:
        return PnlResult(stake_units, 0.0, unit_loss(stake_units))
    if betslip.outcome == BetslipOutcome.VOID:
        return PnlResult(stake_units, stake_units, 0.0)
    return PnlResult(stake_units, 0.0, 0.0)


def aggregate_pnl(betslips: Sequence[Betslip]) -> PeriodPnlSummary:
    """Aggregate P&L over a collection of betslips.

    Win rate divides by settled bets (anything not pending, voids included)
    while average confidence divides by every bet, pending ones too.
    """

    total_units_staked = 0.0
    total_units_won = 0.0
    won_count = lost_count = void_count = pending_count = 0
    total_odds = 0.0
    total_confidence = 0.0

    for betslip in betslips:
        pnl = outcome_pnl(betslip)
        total_units_staked += pnl.stake_units
        if betslip.outcome == BetslipOutcome.WON:
            total_units_won += pnl.return_units
            won_count += 1
            total_odds += get_effective_odds(betslip)
        elif betslip.outcome == BetslipOutcome.LOST:
            lost_count += 1
            total_odds += get_effective_odds(betslip)
        elif betslip.outcome == BetslipOutcome.VOID:
            total_units_won += pnl.return_units
            void_count += 1
        else:
            pending_count += 1
        total_confidence += betslip.confidence_pct

    total = len(betslips)
    settled = total - pending_count
    decided = won_count + lost_count
    net_profit_units = total_units_won - total_units_staked

    win_rate = (won_count / settled) * 100 if settled > 0 else 0.0
    roi = (net_profit_units / total_units_staked) * 100 if total_units_staked > 0 else 0.0
    average_odds = total_odds / decided if decided > 0 else 0.0
    average_confidence = total_confidence / total if total > 0 else 0.0

    return PeriodPnlSummary(
        period_label="Custom Period",
        period_start=None,
        period_end=None,
        total_betslips=total,
        won_count=won_count,
        lost_count=lost_count,
        void_count=void_count,
        pending_count=pending_count,
        total_units_staked=total_units_staked,
        total_units_won=total_units_won,
        net_profit_units=net_profit_units,
        win_rate_percentage=_round2(win_rate),
        roi_percentage=_round2(roi),
        average_odds=_round2(average_odds),
        average_confidence=_round2(average_confidence),
    )


def week_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """Monday 00:00 through Sunday 23:59:59.999999 of the week containing ``moment``."""

    midnight = moment.replace(hour=0, minute=0, second=0, microsecond=0)
    start = midnight - timedelta(days=moment.weekday())
    return start, start + timedelta(days=7) - timedelta(microseconds=1)


def month_bounds(year: int, month: int, tzinfo=timezone.utc) -> tuple[datetime, datetime]:
    start = datetime(year, month, 1, tzinfo=tzinfo)
    last_day = calendar.monthrange(year, month)[1]
    end = datetime(year, month, last_day, 23, 59, 59, 999999, tzinfo=tzinfo)
    return start, end


def _posted_between(betslips: Iterable[Betslip], start: datetime, end: datetime) -> list[Betslip]:
    return [b for b in betslips if start <= _as_utc(b.posted_at) <= end]


def aggregate_by_week(
    betslips: Sequence[Betslip],
    weeks: int = 12,
    now: datetime | None = None,
) -> list[WeeklyPnlSummary]:
    """P&L for the trailing ``weeks`` Monday-Sunday weeks, oldest first."""

    now = _as_utc(now or datetime.now(timezone.utc))
    summaries: list[WeeklyPnlSummary] = []
    for i in range(weeks):
        week_start, week_end = week_bounds(now - timedelta(days=7 * i))
        pnl = aggregate_pnl(_posted_between(betslips, week_start, week_end))
        fields = vars(pnl) | {
            "period_label": f"Week of {week_start.month}/{week_start.day}/{week_start.year}",
            "period_start": week_start,
            "period_end": week_end,
        }
        summaries.append(WeeklyPnlSummary(**fields, week_start=week_start, week_end=week_end))
    summaries.reverse()
    return summaries


def aggregate_by_month(
    betslips: Sequence[Betslip],
    months: int = 6,
    now: datetime | None = None,
) -> list[MonthlyPnlSummary]:
    """P&L for the trailing ``months`` calendar months, oldest first."""

    now = _as_utc(now or datetime.now(timezone.utc))
    summaries: list[MonthlyPnlSummary] = []
    for i in range(months):
        year, month_index = divmod(now.year * 12 + (now.month - 1) - i, 12)
        month = month_index + 1
        month_start, month_end = month_bounds(year, month, now.tzinfo)
        pnl = aggregate_pnl(_posted_between(betslips, month_start, month_end))
        month_name = calendar.month_name[month]
        fields = vars(pnl) | {
            "period_label": f"{month_name} {year}",
            "period_start": month_start,
            "period_end": month_end,
        }
        summaries.append(MonthlyPnlSummary(**fields, month=month_name, year=year))
    summaries.reverse()
    return summaries


def format_units(units: float, decimals: int = 2) -> str:
    formatted = f"{units:.{decimals}f}"
    return f"+{formatted}" if units > 0 else formatted


def format_percentage(percentage: float, decimals: int = 1) -> str:
    return f"{percentage:.{decimals}f}%"


def kelly_stake(win_probability: float, odds_decimal: float) -> float:
    """Kelly fraction of bankroll, floored at 0 and capped at a quarter."""

    if win_probability <= 0 or win_probability >= 1 or odds_decimal <= 1:
        return 0.0
    b = odds_decimal - 1
    q = 1 - win_probability
    kelly = (b * win_probability - q) / b
    return max(0.0, min(kelly, KELLY_CAP))


def break_even_win_rate(odds_decimal: float) -> float:
    if odds_decimal <= 1:
        return 100.0
    return (1 / odds_decimal) * 100


def calculate_combined_odds(legs: Iterable[BetslipLeg]) -> float:
    """Product of leg odds; 1.0 for no legs."""

    combined = 1.0
    for leg in legs:
        combined *= leg.odds_decimal
    return combined


def should_settle_multi_leg(legs: Sequence[BetslipLeg]) -> SettlementDecision:
    if not legs:
        return SettlementDecision(False, BetslipOutcome.PENDING, "No legs defined")

    lost = [leg for leg in legs if leg.status == LegStatus.LOST]
    won = [leg for leg in legs if leg.status == LegStatus.WON]
    pending = [leg for leg in legs if leg.status == LegStatus.PENDING]

    if lost:
        titles = ", ".join(leg.title for leg in lost)
        return SettlementDecision(True, BetslipOutcome.LOST, f"{len(lost)} leg(s) lost: {titles}")
    if len(won) == len(legs):
        return SettlementDecision(True, BetslipOutcome.WON, "All legs won")
    return SettlementDecision(False, BetslipOutcome.PENDING, f"{len(pending)} leg(s) still pending")


def get_leg_status_summary(legs: Sequence[BetslipLeg]) -> LegStatusSummary:
    total = len(legs)
    won = sum(1 for leg in legs if leg.status == LegStatus.WON)
    lost = sum(1 for leg in legs if leg.status == LegStatus.LOST)
    pending = sum(1 for leg in legs if leg.status == LegStatus.PENDING)

    def pct(count: int) -> float:
        return (count / total) * 100 if total > 0 else 0.0

    return LegStatusSummary(
        total=total,
        won=won,
        lost=lost,
        pending=pending,
        won_percentage=pct(won),
        lost_percentage=pct(lost),
        pending_percentage=pct(pending),
    )
