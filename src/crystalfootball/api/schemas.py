"""Pydantic schemas for the Crystal Football API."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from crystalfootball.betslips.types import (
    MIN_ODDS,
    BetslipOutcome,
    BetslipStatus,
    BetslipType,
    LegStatus,
    PackageTier,
)

SettleOutcome = Literal["won", "lost", "void"]


class BetslipLegInput(BaseModel):
    title: str = Field(min_length=1)
    description: str = ""
    odds_decimal: float = Field(gt=MIN_ODDS)
    notes: str | None = None


class LegCreate(BetslipLegInput):
    description: str = Field(min_length=1)


class LegUpdate(BaseModel):
    title: str | None = None
    description: str | None = None
    odds_decimal: float | None = Field(default=None, gt=MIN_ODDS)
    status: LegStatus | None = None
    notes: str | None = None


class BetslipCreate(BaseModel):
    title: str = Field(min_length=1)
    league: str = Field(min_length=1)
    event_datetime: datetime
    home_team: str = Field(min_length=1)
    away_team: str = Field(min_length=1)
    market_type: str = Field(min_length=1)
    selection: str = Field(min_length=1)
    odds_decimal: float = Field(gt=MIN_ODDS)
    confidence_pct: float = Field(ge=0, le=100)
    stake_units: float | None = Field(default=None, gt=0)
    betslip_type: BetslipType | None = None
    legs: list[BetslipLegInput] = Field(default_factory=list)
    notes: str | None = None
    is_vip: bool = True
    min_tier: PackageTier = PackageTier.MONTHLY
    tags: list[str] = Field(default_factory=list)


class BetslipUpdate(BaseModel):
    title: str | None = None
    league: str | None = None
    event_datetime: datetime | None = None
    home_team: str | None = None
    away_team: str | None = None
    market_type: str | None = None
    selection: str | None = None
    odds_decimal: float | None = Field(default=None, gt=MIN_ODDS)
    confidence_pct: float | None = Field(default=None, ge=0, le=100)
    stake_units: float | None = Field(default=None, gt=0)
    notes: str | None = None
    is_vip: bool | None = None
    min_tier: PackageTier | None = None
    tags: list[str] | None = None


class SettleRequest(BaseModel):
    outcome: SettleOutcome
    notes: str | None = None


class BulkSettleRequest(BaseModel):
    betslip_ids: list[int] = Field(min_length=1)
    outcome: SettleOutcome
    notes: str | None = None


class BulkSettleError(BaseModel):
    betslip_id: int
    error: str


class BulkSettleResponse(BaseModel):
    success_count: int
    failed_count: int
    errors: list[BulkSettleError]


class VoidRequest(BaseModel):
    notes: str | None = None


class SettlementDigestRequest(BaseModel):
    betslip_ids: list[int] = Field(min_length=1)


class LegResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    betslip_id: int
    leg_order: int
    title: str
    description: str
    odds_decimal: float
    status: LegStatus
    notes: str | None
    settled_at: datetime | None


class BetslipResponse(BaseModel):
    id: int
    title: str
    league: str
    event_datetime: datetime
    home_team: str
    away_team: str
    market_type: str
    selection: str
    odds_decimal: float
    confidence_pct: float
    stake_units: float
    status: BetslipStatus
    outcome: BetslipOutcome
    betslip_type: BetslipType
    combined_odds: float | None
    notes: str | None
    is_vip: bool
    min_tier: PackageTier
    posted_at: datetime
    settled_at: datetime | None
    tags: list[str]
    legs: list[LegResponse]
    calculated_combined_odds: float


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    pages: int


class BetslipListResponse(BaseModel):
    betslips: list[BetslipResponse]
    pagination: Pagination


class SettlementResponse(BaseModel):
    betslip: BetslipResponse
    outcome: BetslipOutcome
    profit_units: float
    settled_by: str
    settled_at: datetime | None


class PeriodSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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


class StatsResponse(BaseModel):
    overall: PeriodSummaryResponse
    weekly: list[PeriodSummaryResponse]
    monthly: list[PeriodSummaryResponse]
    last_updated: datetime


class SubscriptionStatusResponse(BaseModel):
    has_active_subscription: bool
    subscription_tier: PackageTier | None
    tier_name: str | None
    expires_at: datetime | None
    days_remaining: int
    expiry_message: str
    expiring_soon: bool


class FeedResponse(BaseModel):
    subscription_tier: PackageTier | None
    groups: dict[str, list[BetslipResponse]]


class PackageFeatureResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    label: str
    sort_index: int


class PackageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    slug: str
    name: str
    tier: PackageTier
    description: str | None
    duration_days: int
    price_cents: int
    original_price_cents: int | None
    is_active: bool
    sort_index: int
    features: list[PackageFeatureResponse] = Field(default_factory=list)


class PackageCreate(BaseModel):
    slug: str | None = None
    name: str = Field(min_length=1)
    tier: PackageTier
    description: str | None = None
    duration_days: int = Field(gt=0)
    price_cents: int = Field(gt=0)
    original_price_cents: int | None = Field(default=None, ge=0)
    is_active: bool = True
    sort_index: int = 0


class PackageUpdate(BaseModel):
    slug: str | None = None
    name: str | None = Field(default=None, min_length=1)
    tier: PackageTier | None = None
    description: str | None = None
    duration_days: int | None = Field(default=None, gt=0)
    price_cents: int | None = Field(default=None, gt=0)
    original_price_cents: int | None = Field(default=None, ge=0)
    is_active: bool | None = None
    sort_index: int | None = None


class SlugCheckResponse(BaseModel):
    available: bool
    slug: str


class FeatureCreate(BaseModel):
    label: str = Field(min_length=1)
    sort_index: int = 100


class FeatureOrder(BaseModel):
    id: int
    sort_index: int
    label: str | None = None


class FeatureReorderRequest(BaseModel):
    features: list[FeatureOrder]


class PaymentMethodResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    type: str
    label: str
    notes: str | None
    fields: dict[str, Any]


class PaymentReferenceResponse(BaseModel):
    reference: str


class SubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    package_id: int
    status: str
    start_at: datetime | None
    end_at: datetime | None
    notes: str | None
    created_at: datetime


class PaymentSubmission(BaseModel):
    package_id: int | None = None
    subscription_id: int | None = None
    amount_cents: int = Field(gt=0)
    method_id: int
    reference: str
    receipt_url: str = Field(min_length=1)


class PaymentSubmissionResponse(BaseModel):
    success: bool = True
    subscription_id: int
    message: str = "Payment submitted successfully"


class ApproveRequest(BaseModel):
    subscription_id: int
    start_at: datetime | None = None
    end_at: datetime | None = None


class RejectRequest(BaseModel):
    subscription_id: int
    reason: str


class ExpireRequest(BaseModel):
    subscription_id: int
    reason: str | None = None


class ActionResponse(BaseModel):
    success: bool = True
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


class ExpiringSubscriptionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: str
    end_at: datetime
    package_name: str
    user_email: str
