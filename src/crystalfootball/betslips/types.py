"""Dataclasses and enums for betslip settlement and P&L modeling."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum

MIN_ODDS = 1.01


class BetslipStatus(StrEnum):
    POSTED = "posted"
    SETTLED = "settled"
    VOID = "void"


class BetslipOutcome(StrEnum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"
    VOID = "void"


class BetslipType(StrEnum):
    SINGLE = "single"
    MULTI = "multi"


class LegStatus(StrEnum):
    PENDING = "pending"
    WON = "won"
    LOST = "lost"


class PackageTier(StrEnum):
    MONTHLY = "monthly"
    HALF_SEASON = "half_season"
    FULL_SEASON = "full_season"


# The only (status, outcome) pairs a betslip may be in.
VALID_STATES: frozenset[tuple[BetslipStatus, BetslipOutcome]] = frozenset(
    {
        (BetslipStatus.POSTED, BetslipOutcome.PENDING),
        (BetslipStatus.SETTLED, BetslipOutcome.WON),
        (BetslipStatus.SETTLED, BetslipOutcome.LOST),
        (BetslipStatus.VOID, BetslipOutcome.VOID),
    }
)


class BetslipStateError(ValueError):
    """Raised for an illegal betslip state or transition."""


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class BetslipLeg:
    title: str
    odds_decimal: float
    leg_order: int = 1
    description: str = ""
    status: LegStatus = LegStatus.PENDING
    notes: str | None = None
    settled_at: datetime | None = None
    id: int | None = None

    def __post_init__(self) -> None:
        self.status = LegStatus(self.status)


@dataclass
class Betslip:
    """A published tip, single or multi-leg.

    Stake and odds are not validated here; callers check them before
    construction so that P&L helpers can surface bad data by raising.
    """

    title: str
    odds_decimal: float
    stake_units: float = 1.0
    confidence_pct: float = 0.0
    status: BetslipStatus = BetslipStatus.POSTED
    outcome: BetslipOutcome = BetslipOutcome.PENDING
    betslip_type: BetslipType = BetslipType.SINGLE
    league: str = ""
    event_datetime: datetime | None = None
    home_team: str = ""
    away_team: str = ""
    market_type: str = ""
    selection: str = ""
    combined_odds: float | None = None
    min_tier: PackageTier = PackageTier.MONTHLY
    is_vip: bool = True
    posted_at: datetime = field(default_factory=utcnow)
    settled_at: datetime | None = None
    notes: str | None = None
    legs: list[BetslipLeg] = field(default_factory=list)
    tags: set[str] = field(default_factory=set)
    id: int | None = None

    def __post_init__(self) -> None:
        self.status = BetslipStatus(self.status)
        self.outcome = BetslipOutcome(self.outcome)
        self.betslip_type = BetslipType(self.betslip_type)
        self.min_tier = PackageTier(self.min_tier)
        if (self.status, self.outcome) not in VALID_STATES:
            raise BetslipStateError(
                f"Invalid betslip state: status={self.status.value}, outcome={self.outcome.value}"
            )


@dataclass
class PnlResult:
    stake_units: float
    return_units: float
    profit_units: float


@dataclass
class PeriodPnlSummary:
    period_label: str
    period_start: datetime | None
    period_end: datetime | None
    total_betslips: int
    won_count: int
    lost_count: int
    void_count: int
    pending_count: int
    total_units_staked: float
    total_units_won: float
    net_profit_units: float
    win_rate_percentage: float
    roi_percentage: float
    average_odds: float
    average_confidence: float


@dataclass
class WeeklyPnlSummary(PeriodPnlSummary):
    week_start: datetime
    week_end: datetime


@dataclass
class MonthlyPnlSummary(PeriodPnlSummary):
    month: str
    year: int


@dataclass
class SettlementDecision:
    should_settle: bool
    outcome: BetslipOutcome
    reason: str


@dataclass
class LegStatusSummary:
    total: int
    won: int
    lost: int
    pending: int
    won_percentage: float
    lost_percentage: float
    pending_percentage: float


@dataclass
class SubscriptionAccess:
    has_active_subscription: bool
    subscription_tier: PackageTier | None
    expires_at: datetime | None

    @classmethod
    def denied(cls) -> SubscriptionAccess:
        return cls(has_active_subscription=False, subscription_tier=None, expires_at=None)
