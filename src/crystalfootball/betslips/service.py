"""Persistence-backed betslip operations used by the admin and subscriber APIs."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from crystalfootball.api.schemas import BetslipCreate, BetslipLegInput, BetslipUpdate, LegCreate, LegUpdate
from crystalfootball.betslips import lifecycle
from crystalfootball.betslips.guards import filter_betslips_by_tier
from crystalfootball.betslips.pnl import (
    aggregate_by_month,
    aggregate_by_week,
    aggregate_pnl,
    calculate_combined_odds,
    outcome_pnl,
)
from crystalfootball.betslips.types import (
    MIN_ODDS,
    Betslip,
    BetslipLeg,
    BetslipStatus,
    BetslipType,
    LegStatus,
    MonthlyPnlSummary,
    PeriodPnlSummary,
    SubscriptionAccess,
    WeeklyPnlSummary,
)
from crystalfootball.config import get_settings
from crystalfootball.db.models import Betslip as BetslipModel
from crystalfootball.db.models import BetslipLeg as BetslipLegModel
from crystalfootball.db.models import BetslipTag
from crystalfootball.errors import CrystalFootballError, InvalidRequestError, NotFoundError

logger = logging.getLogger(__name__)

settings = get_settings()


@dataclass
class BetslipFilters:
    status: str | None = None
    outcome: str | None = None
    league: str | None = None
    tag: str | None = None
    min_tier: str | None = None
    is_vip: bool | None = None
    date_from: datetime | None = None
    date_to: datetime | None = None
    search: str | None = None


@dataclass
class BulkSettleResult:
    success_count: int = 0
    failed_count: int = 0
    errors: list[tuple[int, str]] = field(default_factory=list)


@dataclass
class PerformanceReport:
    overall: PeriodPnlSummary
    weekly: list[WeeklyPnlSummary]
    monthly: list[MonthlyPnlSummary]
    last_updated: datetime


def _aware(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; everything is stored as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _leg_to_domain(row: BetslipLegModel) -> BetslipLeg:
    return BetslipLeg(
        id=row.id,
        title=row.title,
        description=row.description,
        odds_decimal=row.odds_decimal,
        leg_order=row.leg_order,
        status=row.status,
        notes=row.notes,
        settled_at=_aware(row.settled_at),
    )


def to_domain(row: BetslipModel) -> Betslip:
    return Betslip(
        id=row.id,
        title=row.title,
        league=row.league,
        event_datetime=_aware(row.event_datetime),
        home_team=row.home_team,
        away_team=row.away_team,
        market_type=row.market_type,
        selection=row.selection,
        odds_decimal=row.odds_decimal,
        confidence_pct=row.confidence_pct,
        stake_units=row.stake_units,
        status=row.status,
        outcome=row.outcome,
        betslip_type=row.betslip_type,
        combined_odds=row.combined_odds,
        min_tier=row.min_tier,
        is_vip=row.is_vip,
        posted_at=_aware(row.posted_at),
        settled_at=_aware(row.settled_at),
        notes=row.notes,
        legs=[_leg_to_domain(leg) for leg in row.legs],
        tags={tag.tag for tag in row.tags},
    )


def _write_back(row: BetslipModel, betslip: Betslip) -> None:
    row.status = betslip.status.value
    row.outcome = betslip.outcome.value
    row.betslip_type = betslip.betslip_type.value
    row.combined_odds = betslip.combined_odds
    row.settled_at = betslip.settled_at
    row.notes = betslip.notes


def _validate_wager(
    odds_decimal: float | None = None,
    confidence_pct: float | None = None,
    stake_units: float | None = None,
) -> None:
    if odds_decimal is not None and odds_decimal <= MIN_ODDS:
        raise InvalidRequestError("Odds must be greater than 1.01")
    if confidence_pct is not None and not 0 <= confidence_pct <= 100:
        raise InvalidRequestError("Confidence must be between 0 and 100")
    if stake_units is not None and stake_units <= 0:
        raise InvalidRequestError("Stake must be greater than 0")


def _clean_tags(tags: list[str]) -> list[str]:
    cleaned: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def _base_query():
    return select(BetslipModel).options(
        selectinload(BetslipModel.legs),
        selectinload(BetslipModel.tags),
    )


def list_betslips(
    session: Session,
    filters: BetslipFilters | None = None,
    page: int = 1,
    limit: int = 50,
) -> tuple[list[BetslipModel], int]:
    """Return one page of betslips, newest first, and the total match count."""

    filters = filters or BetslipFilters()
    stmt = select(BetslipModel)
    if filters.status:
        stmt = stmt.where(BetslipModel.status == filters.status)
    if filters.outcome:
        stmt = stmt.where(BetslipModel.outcome == filters.outcome)
    if filters.league:
        stmt = stmt.where(BetslipModel.league.ilike(f"%{filters.league}%"))
    if filters.tag:
        stmt = stmt.where(BetslipModel.tags.any(BetslipTag.tag == filters.tag))
    if filters.min_tier:
        stmt = stmt.where(BetslipModel.min_tier == filters.min_tier)
    if filters.is_vip is not None:
        stmt = stmt.where(BetslipModel.is_vip.is_(filters.is_vip))
    if filters.date_from:
        stmt = stmt.where(BetslipModel.posted_at >= _aware(filters.date_from))
    if filters.date_to:
        stmt = stmt.where(BetslipModel.posted_at <= _aware(filters.date_to))
    if filters.search:
        pattern = f"%{filters.search}%"
        stmt = stmt.where(
            or_(
                BetslipModel.title.ilike(pattern),
                BetslipModel.home_team.ilike(pattern),
                BetslipModel.away_team.ilike(pattern),
                BetslipModel.selection.ilike(pattern),
            )
        )

    total = session.execute(select(func.count()).select_from(stmt.subquery())).scalar_one()
    page_stmt = (
        stmt.options(selectinload(BetslipModel.legs), selectinload(BetslipModel.tags))
        .order_by(BetslipModel.posted_at.desc(), BetslipModel.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    rows = list(session.execute(page_stmt).scalars().all())
    return rows, total


def page_count(total: int, limit: int) -> int:
    return math.ceil(total / limit) if limit else 0


def get_betslip(session: Session, betslip_id: int) -> BetslipModel:
    row = session.execute(_base_query().where(BetslipModel.id == betslip_id)).scalars().first()
    if row is None:
        raise NotFoundError("Betslip not found")
    return row


def create_betslip(session: Session, payload: BetslipCreate, actor: str | None = None) -> BetslipModel:
    stake_units = payload.stake_units if payload.stake_units is not None else settings.default_stake_units
    _validate_wager(payload.odds_decimal, payload.confidence_pct, stake_units)
    for leg in payload.legs:
        _validate_wager(odds_decimal=leg.odds_decimal)

    betslip_type = payload.betslip_type or lifecycle.betslip_type_for_leg_count(len(payload.legs))
    if betslip_type == BetslipType.MULTI and len(payload.legs) < 2:
        raise InvalidRequestError("Multi-leg betslips must have at least 2 legs")
    if betslip_type == BetslipType.SINGLE and len(payload.legs) > 1:
        raise InvalidRequestError("Single betslips cannot have more than one leg")

    legs = payload.legs or [
        BetslipLegInput(
            title=payload.title,
            description=f"{payload.market_type}: {payload.selection}",
            odds_decimal=payload.odds_decimal,
            notes=payload.notes,
        )
    ]
    row = BetslipModel(
        title=payload.title.strip(),
        league=payload.league.strip(),
        event_datetime=_aware(payload.event_datetime),
        home_team=payload.home_team.strip(),
        away_team=payload.away_team.strip(),
        market_type=payload.market_type,
        selection=payload.selection.strip(),
        odds_decimal=payload.odds_decimal,
        confidence_pct=payload.confidence_pct,
        stake_units=stake_units,
        status=BetslipStatus.POSTED.value,
        outcome="pending",
        betslip_type=betslip_type.value,
        notes=payload.notes,
        is_vip=payload.is_vip,
        min_tier=payload.min_tier.value,
        created_by=actor,
        updated_by=actor,
    )
    row.legs = [
        BetslipLegModel(
            leg_order=order,
            title=leg.title.strip(),
            description=leg.description.strip(),
            odds_decimal=leg.odds_decimal,
            status=LegStatus.PENDING.value,
            notes=leg.notes,
        )
        for order, leg in enumerate(legs, start=1)
    ]
    row.tags = [BetslipTag(tag=tag) for tag in _clean_tags(payload.tags)]
    if betslip_type == BetslipType.MULTI:
        row.combined_odds = calculate_combined_odds(
            BetslipLeg(title=leg.title, odds_decimal=leg.odds_decimal) for leg in legs
        )

    session.add(row)
    session.flush()
    logger.info(
        "Betslip created by %s: id=%s title=%s type=%s legs=%d",
        actor or "admin",
        row.id,
        row.title,
        row.betslip_type,
        len(row.legs),
    )
    return row


def update_betslip(
    session: Session,
    betslip_id: int,
    payload: BetslipUpdate,
    actor: str | None = None,
) -> BetslipModel:
    """Edit descriptive fields; status and outcome only change through settlement."""

    row = get_betslip(session, betslip_id)
    changes = payload.model_dump(exclude_unset=True)
    _validate_wager(
        changes.get("odds_decimal"),
        changes.get("confidence_pct"),
        changes.get("stake_units"),
    )

    tags = changes.pop("tags", None)
    for name, value in changes.items():
        if value is None and name != "notes":
            continue
        if name == "min_tier":
            value = value.value if hasattr(value, "value") else value
        if name == "event_datetime":
            value = _aware(value)
        setattr(row, name, value)
    if tags is not None:
        row.tags = [BetslipTag(tag=tag) for tag in _clean_tags(tags)]
    row.updated_by = actor

    session.flush()
    logger.info(
        "Betslip updated by %s: id=%s changes=%s",
        actor or "admin",
        row.id,
        sorted(changes) + (["tags"] if tags is not None else []),
    )
    return row


def delete_betslip(session: Session, betslip_id: int, actor: str | None = None) -> None:
    row = get_betslip(session, betslip_id)
    logger.info(
        "Betslip deleted by %s: id=%s title=%s league=%s selection=%s",
        actor or "admin",
        row.id,
        row.title,
        row.league,
        row.selection,
    )
    session.delete(row)
    session.flush()


def settle_betslip(
    session: Session,
    betslip_id: int,
    outcome: str,
    notes: str | None = None,
    actor: str | None = None,
) -> tuple[BetslipModel, float]:
    """Settle a single betslip and return the row with its realized profit."""

    row = get_betslip(session, betslip_id)
    settled = lifecycle.settle(to_domain(row), outcome, notes=notes)
    _write_back(row, settled)
    row.updated_by = actor
    session.flush()

    profit_units = outcome_pnl(settled).profit_units
    logger.info(
        "Betslip settled by %s: id=%s outcome=%s stake=%s odds=%s profit=%s",
        actor or "admin",
        row.id,
        settled.outcome.value,
        row.stake_units,
        row.odds_decimal,
        profit_units,
    )
    return row, profit_units


def void_betslip(
    session: Session,
    betslip_id: int,
    notes: str | None = None,
    actor: str | None = None,
) -> BetslipModel:
    row = get_betslip(session, betslip_id)
    _write_back(row, lifecycle.void(to_domain(row), notes=notes))
    row.updated_by = actor
    session.flush()
    logger.info("Betslip voided by %s: id=%s", actor or "admin", row.id)
    return row


def load_betslips(session: Session, betslip_ids: list[int]) -> list[Betslip]:
    stmt = _base_query().where(BetslipModel.id.in_(betslip_ids)).order_by(BetslipModel.event_datetime)
    return [to_domain(row) for row in session.execute(stmt).scalars()]


def bulk_settle(
    session: Session,
    betslip_ids: list[int],
    outcome: str,
    notes: str | None = None,
    actor: str | None = None,
) -> BulkSettleResult:
    """Settle each betslip independently; one failure never aborts the batch."""

    result = BulkSettleResult()
    for betslip_id in betslip_ids:
        try:
            settle_betslip(session, betslip_id, outcome, notes=notes, actor=actor)
        except (CrystalFootballError, ValueError) as exc:
            result.failed_count += 1
            result.errors.append((betslip_id, str(exc)))
            logger.warning("Bulk settle skipped betslip %s: %s", betslip_id, exc)
        else:
            result.success_count += 1

    logger.info(
        "Bulk settlement by %s: outcome=%s success=%d failed=%d",
        actor or "admin",
        outcome,
        result.success_count,
        result.failed_count,
    )
    return result


def _resync(row: BetslipModel) -> None:
    """Re-derive type, cached odds and multi-leg outcome from the current legs."""

    row.betslip_type = lifecycle.betslip_type_for_leg_count(len(row.legs)).value
    if row.betslip_type == BetslipType.SINGLE:
        row.combined_odds = None
        return
    _write_back(row, lifecycle.apply_leg_results(to_domain(row)))


def list_legs(session: Session, betslip_id: int) -> list[BetslipLegModel]:
    return list(get_betslip(session, betslip_id).legs)


def get_leg(session: Session, betslip_id: int, leg_id: int) -> BetslipLegModel:
    leg = session.execute(
        select(BetslipLegModel).where(
            BetslipLegModel.id == leg_id,
            BetslipLegModel.betslip_id == betslip_id,
        )
    ).scalar_one_or_none()
    if leg is None:
        raise NotFoundError("Leg not found")
    return leg


def add_leg(session: Session, betslip_id: int, payload: LegCreate, actor: str | None = None) -> BetslipLegModel:
    _validate_wager(odds_decimal=payload.odds_decimal)
    row = get_betslip(session, betslip_id)
    next_order = max((leg.leg_order for leg in row.legs), default=0) + 1
    leg = BetslipLegModel(
        leg_order=next_order,
        title=payload.title.strip(),
        description=payload.description.strip(),
        odds_decimal=payload.odds_decimal,
        status=LegStatus.PENDING.value,
        notes=payload.notes,
    )
    row.legs.append(leg)
    _resync(row)
    row.updated_by = actor
    session.flush()
    logger.info("Leg %s added to betslip %s by %s", leg.leg_order, row.id, actor or "admin")
    return leg


def update_leg(
    session: Session,
    betslip_id: int,
    leg_id: int,
    payload: LegUpdate,
    actor: str | None = None,
) -> BetslipLegModel:
    changes = payload.model_dump(exclude_unset=True)
    _validate_wager(odds_decimal=changes.get("odds_decimal"))
    row = get_betslip(session, betslip_id)
    leg = next((item for item in row.legs if item.id == leg_id), None)
    if leg is None:
        raise NotFoundError("Leg not found")

    status = changes.pop("status", None)
    for name, value in changes.items():
        if value is not None or name == "notes":
            setattr(leg, name, value)
    if status is not None:
        leg.status = LegStatus(status).value
        leg.settled_at = None if leg.status == LegStatus.PENDING else datetime.now(timezone.utc)

    _resync(row)
    row.updated_by = actor
    session.flush()
    logger.info(
        "Leg %s of betslip %s updated by %s: status=%s betslip=%s/%s",
        leg.id,
        row.id,
        actor or "admin",
        leg.status,
        row.status,
        row.outcome,
    )
    return leg


def delete_leg(session: Session, betslip_id: int, leg_id: int, actor: str | None = None) -> None:
    row = get_betslip(session, betslip_id)
    leg = next((item for item in row.legs if item.id == leg_id), None)
    if leg is None:
        raise NotFoundError("Leg not found")
    if not lifecycle.can_remove_leg(len(row.legs)):
        raise InvalidRequestError("Cannot delete the last remaining leg of a betslip")

    row.legs.remove(leg)
    _resync(row)
    row.updated_by = actor
    session.flush()
    logger.info("Leg %s removed from betslip %s by %s", leg_id, row.id, actor or "admin")


def load_feed(session: Session, access: SubscriptionAccess, limit: int | None = None) -> list[Betslip]:
    """Latest VIP betslips the subscriber's tier unlocks."""

    stmt = (
        _base_query()
        .where(BetslipModel.is_vip.is_(True))
        .order_by(BetslipModel.event_datetime.desc())
        .limit(limit or settings.feed_limit)
    )
    betslips = [to_domain(row) for row in session.execute(stmt).scalars()]
    return filter_betslips_by_tier(betslips, access.subscription_tier)


def load_performance(
    session: Session,
    weeks: int = 12,
    months: int = 6,
    now: datetime | None = None,
) -> PerformanceReport:
    stmt = _base_query().order_by(BetslipModel.posted_at.desc()).limit(settings.stats_limit)
    betslips = [to_domain(row) for row in session.execute(stmt).scalars()]
    now = now or datetime.now(timezone.utc)
    return PerformanceReport(
        overall=aggregate_pnl(betslips),
        weekly=aggregate_by_week(betslips, weeks=weeks, now=now),
        monthly=aggregate_by_month(betslips, months=months, now=now),
        last_updated=now,
    )
