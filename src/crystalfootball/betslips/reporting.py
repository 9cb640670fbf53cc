"""Tabular P&L views for the dashboard and the admin CSV export."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict

import pandas as pd

from crystalfootball.betslips.pnl import outcome_pnl
from crystalfootball.betslips.types import Betslip, PeriodPnlSummary

EXPORT_COLUMNS = [
    "id",
    "posted_at",
    "event_datetime",
    "league",
    "home_team",
    "away_team",
    "title",
    "market_type",
    "selection",
    "betslip_type",
    "odds_decimal",
    "combined_odds",
    "stake_units",
    "confidence_pct",
    "status",
    "outcome",
    "profit_units",
    "min_tier",
    "is_vip",
    "tags",
    "settled_at",
]


def summaries_frame(summaries: Sequence[PeriodPnlSummary]) -> pd.DataFrame:
    """One row per period, indexed by its label, in the order given."""

    if not summaries:
        return pd.DataFrame(columns=["net_profit_units", "roi_percentage", "win_rate_percentage"])
    frame = pd.DataFrame([asdict(summary) for summary in summaries])
    return frame.set_index("period_label")


def export_frame(betslips: Sequence[Betslip]) -> pd.DataFrame:
    rows = []
    for betslip in betslips:
        rows.append(
            {
                "id": betslip.id,
                "posted_at": betslip.posted_at,
                "event_datetime": betslip.event_datetime,
                "league": betslip.league,
                "home_team": betslip.home_team,
                "away_team": betslip.away_team,
                "title": betslip.title,
                "market_type": betslip.market_type,
                "selection": betslip.selection,
                "betslip_type": betslip.betslip_type.value,
                "odds_decimal": betslip.odds_decimal,
                "combined_odds": betslip.combined_odds,
                "stake_units": betslip.stake_units,
                "confidence_pct": betslip.confidence_pct,
                "status": betslip.status.value,
                "outcome": betslip.outcome.value,
                "profit_units": outcome_pnl(betslip).profit_units,
                "min_tier": betslip.min_tier.value,
                "is_vip": betslip.is_vip,
                "tags": ", ".join(sorted(betslip.tags)),
                "settled_at": betslip.settled_at,
            }
        )
    return pd.DataFrame(rows, columns=EXPORT_COLUMNS)


def export_csv(betslips: Sequence[Betslip]) -> str:
    return export_frame(betslips).to_csv(index=False)
