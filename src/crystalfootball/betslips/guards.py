"""Subscription tier gating and expiry helpers for the subscriber dashboard."""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Protocol, TypeVar

from sqlalchemy import select
from sqlalchemy.orm import Session

from crystalfootball.betslips.types import PackageTier, SubscriptionAccess
from crystalfootball.db.models import Package, Subscription

logger = logging.getLogger(__name__)

TIER_RANKS: dict[PackageTier, int] = {
    PackageTier.MONTHLY: 1,
    PackageTier.HALF_SEASON: 2,
    PackageTier.FULL_SEASON: 3,
}

TIER_DISPLAY_NAMES: dict[PackageTier, str] = {
    PackageTier.MONTHLY: "Monthly",
    PackageTier.HALF_SEASON: "Half Season",
    PackageTier.FULL_SEASON: "Full Season",
}

EXPIRING_SOON_DAYS = 7
RECENT_RESULTS_DAYS = 14

TODAY = "Today"
TOMORROW = "Tomorrow"
THIS_WEEK = "This Week"
UPCOMING = "Upcoming"
RECENT_RESULTS = "Recent Results"


class TierGated(Protocol):
    min_tier: PackageTier


class Scheduled(Protocol):
    event_datetime: datetime


T = TypeVar("T", bound=TierGated)
S = TypeVar("S", bound=Scheduled)


class SubscriptionRequired(Exception):
    """Raised to short-circuit a request from a user without an active subscription."""

    def __init__(self, redirect_path: str = "/packages") -> None:
        super().__init__(f"Active subscription required; redirect to {redirect_path}")
        self.redirect_path = redirect_path


def _to_datetime(value: datetime | str) -> datetime:
    parsed = datetime.fromisoformat(value) if isinstance(value, str) else value
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def _resolve_tier(value: str | None) -> PackageTier | None:
    if value is None:
        return None
    try:
        return PackageTier(value)
    except ValueError:
        logger.warning("Unknown package tier %r on active subscription", value)
        return None


def check_active_subscription(
    session: Session,
    user_id: str,
    now: datetime | None = None,
) -> SubscriptionAccess:
    """Look up the user's active, unexpired subscription.

    Never raises: a failed query, a missing row or more than one matching row
    all mean no access.
    """

    now = _to_datetime(now or datetime.now(timezone.utc)).astimezone(timezone.utc)
    stmt = (
        select(Subscription.end_at, Package.tier)
        .join(Package, Subscription.package_id == Package.id)
        .where(
            Subscription.user_id == user_id,
            Subscription.status == "active",
            Subscription.end_at > now,
        )
    )
    try:
        row = session.execute(stmt).one_or_none()
    except Exception:  # noqa: BLE001 - any lookup failure denies access
        logger.exception("Error checking subscription for user %s", user_id)
        return SubscriptionAccess.denied()

    if row is None:
        return SubscriptionAccess.denied()

    end_at, tier = row
    return SubscriptionAccess(
        has_active_subscription=True,
        subscription_tier=_resolve_tier(tier),
        expires_at=_to_datetime(end_at) if end_at else None,
    )


def enforce_subscription(access: SubscriptionAccess, redirect_path: str = "/packages") -> SubscriptionAccess:
    if not access.has_active_subscription:
        raise SubscriptionRequired(redirect_path)
    return access


def require_active_subscriber(
    session: Session,
    user_id: str,
    redirect_path: str = "/packages",
) -> SubscriptionAccess:
    """Return the caller's access or raise ``SubscriptionRequired``."""

    return enforce_subscription(check_active_subscription(session, user_id), redirect_path)


def can_access_betslip(user_tier: PackageTier | str | None, required_tier: PackageTier | str) -> bool:
    if not user_tier:
        return False
    return TIER_RANKS[PackageTier(user_tier)] >= TIER_RANKS[PackageTier(required_tier)]


def filter_betslips_by_tier(betslips: Iterable[T], user_tier: PackageTier | str | None) -> list[T]:
    if not user_tier:
        return []
    return [betslip for betslip in betslips if can_access_betslip(user_tier, betslip.min_tier)]


def get_tier_display_name(tier: PackageTier | str) -> str:
    return TIER_DISPLAY_NAMES[PackageTier(tier)]


def get_days_until_expiry(expires_at: datetime | str | None, now: datetime | None = None) -> int:
    """Whole days until expiry, rounded up; negative once expired."""

    if not expires_at:
        return 0
    expiry = _to_datetime(expires_at)
    now = _to_datetime(now or datetime.now(timezone.utc))
    return math.ceil((expiry - now) / timedelta(days=1))


def format_expiry_message(expires_at: datetime | str | None, now: datetime | None = None) -> str:
    if not expires_at:
        return "No active subscription"

    days_remaining = get_days_until_expiry(expires_at, now)
    if days_remaining < 0:
        return "Subscription expired"
    if days_remaining == 0:
        return "Expires today"
    if days_remaining == 1:
        return "Expires tomorrow"
    if days_remaining <= EXPIRING_SOON_DAYS:
        return f"Expires in {days_remaining} days"
    expiry = _to_datetime(expires_at)
    return f"Expires {expiry.month}/{expiry.day}/{expiry.year}"


def is_expiring_soon(expires_at: datetime | str | None, now: datetime | None = None) -> bool:
    if not expires_at:
        return False
    days_remaining = get_days_until_expiry(expires_at, now)
    return 0 < days_remaining <= EXPIRING_SOON_DAYS


def group_betslips_by_time(betslips: Iterable[S], now: datetime | None = None) -> dict[str, list[S]]:
    """Bucket betslips by event time for the dashboard.

    Past events older than two weeks are left out of every bucket, and empty
    buckets are dropped from the result.
    """

    now = _to_datetime(now or datetime.now(timezone.utc))
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    tomorrow = today + timedelta(days=1)
    day_after = tomorrow + timedelta(days=1)
    week_from_now = today + timedelta(days=7)

    groups: dict[str, list[S]] = {
        TODAY: [],
        TOMORROW: [],
        THIS_WEEK: [],
        UPCOMING: [],
        RECENT_RESULTS: [],
    }
    for betslip in betslips:
        if betslip.event_datetime is None:
            continue
        event = _to_datetime(betslip.event_datetime)
        if event >= now:
            if event < tomorrow:
                groups[TODAY].append(betslip)
            elif event < day_after:
                groups[TOMORROW].append(betslip)
            elif event < week_from_now:
                groups[THIS_WEEK].append(betslip)
            else:
                groups[UPCOMING].append(betslip)
        elif (now - event) // timedelta(days=1) <= RECENT_RESULTS_DAYS:
            groups[RECENT_RESULTS].append(betslip)

    return {label: items for label, items in groups.items() if items}
