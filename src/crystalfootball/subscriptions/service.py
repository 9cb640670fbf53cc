"""Subscription purchase, review and expiry workflows."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session, joinedload

from crystalfootball.api.schemas import PaymentSubmission
from crystalfootball.db.models import (
    Package,
    PaymentMethod,
    PaymentReceipt,
    Profile,
    Subscription,
    SubscriptionEvent,
)
from crystalfootball.errors import InvalidRequestError, NotFoundError
from crystalfootball.subscriptions.rules import (
    MIN_REJECTION_REASON,
    SubscriptionAction,
    SubscriptionStatus,
    append_note,
    calculate_end_date,
    can_submit_receipt,
    generate_payment_reference,
    is_valid_status_transition,
    subscription_sort_priority,
    validate_payment_reference,
)

logger = logging.getLogger(__name__)


@dataclass
class ExpiringSubscription:
    id: int
    user_id: str
    end_at: datetime
    package_name: str
    user_email: str


def _utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _record_event(
    session: Session,
    subscription_id: int,
    actor: str,
    action: SubscriptionAction,
    notes: str | None = None,
) -> None:
    session.add(
        SubscriptionEvent(
            subscription_id=subscription_id,
            actor_user_id=actor,
            action=action.value,
            notes=notes,
        )
    )


def list_packages(session: Session, active_only: bool = True) -> list[Package]:
    stmt = select(Package).order_by(Package.sort_index.asc(), Package.id.asc())
    if active_only:
        stmt = stmt.where(Package.is_active.is_(True))
    return list(session.execute(stmt).scalars().all())


def list_payment_methods(session: Session) -> list[PaymentMethod]:
    stmt = (
        select(PaymentMethod)
        .where(PaymentMethod.is_active.is_(True))
        .order_by(PaymentMethod.sort_index.asc(), PaymentMethod.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_subscription(session: Session, subscription_id: int) -> Subscription:
    subscription = session.get(Subscription, subscription_id)
    if subscription is None:
        raise NotFoundError("Subscription not found")
    return subscription


def list_subscriptions(session: Session, status: str | None = None) -> list[Subscription]:
    """Admin queue: pending first, then active, expired, rejected; newest first within a status."""

    stmt = select(Subscription).order_by(Subscription.created_at.desc(), Subscription.id.desc())
    if status:
        stmt = stmt.where(Subscription.status == status)
    subscriptions = list(session.execute(stmt).scalars().all())
    return sorted(subscriptions, key=lambda item: subscription_sort_priority(item.status))


def suggest_payment_reference(
    session: Session,
    user_id: str,
    method_id: int,
    now: datetime | None = None,
) -> str:
    method = session.get(PaymentMethod, method_id)
    if method is None or not method.is_active:
        raise InvalidRequestError("Invalid or inactive payment method")
    profile = session.get(Profile, user_id)
    if profile is None:
        raise NotFoundError("Profile not found")
    return generate_payment_reference(method.type, profile.email, now=now)


def submit_payment(session: Session, user_id: str, payload: PaymentSubmission) -> Subscription:
    """Attach a payment receipt to the user's pending subscription, creating it if needed."""

    error = validate_payment_reference(payload.reference.strip())
    if error:
        raise InvalidRequestError(error)
    if not payload.receipt_url.strip():
        raise InvalidRequestError("Receipt file is required")

    method = session.get(PaymentMethod, payload.method_id)
    if method is None or not method.is_active:
        raise InvalidRequestError("Invalid or inactive payment method")
    receipt_context = {
        "method_type": method.type,
        "method_label": method.label,
        "fields": dict(method.fields or {}),
    }

    if payload.subscription_id is not None:
        subscription = session.get(Subscription, payload.subscription_id)
        if subscription is None or subscription.user_id != user_id:
            raise NotFoundError("Subscription not found")
    else:
        if payload.package_id is None:
            raise InvalidRequestError("Package ID is required for new subscriptions")
        subscription = session.execute(
            select(Subscription).where(
                Subscription.user_id == user_id,
                Subscription.status == SubscriptionStatus.PENDING.value,
            )
        ).scalars().first()
        if subscription is None:
            package = session.get(Package, payload.package_id)
            if package is None or not package.is_active:
                raise NotFoundError("Package not found")
            subscription = Subscription(
                user_id=user_id,
                package_id=package.id,
                status=SubscriptionStatus.PENDING.value,
                notes="Subscription created via payment submission",
            )
            session.add(subscription)
            session.flush()
            _record_event(session, subscription.id, user_id, SubscriptionAction.CREATED, "Subscription created via API")

    if not can_submit_receipt(subscription.status):
        raise InvalidRequestError("Can only add receipts to pending subscriptions")

    reference = payload.reference.strip()
    session.add(
        PaymentReceipt(
            subscription_id=subscription.id,
            method_id=method.id,
            method=method.type,
            amount_cents=payload.amount_cents,
            reference=reference,
            receipt_url=payload.receipt_url,
            receipt_context=receipt_context,
        )
    )
    _record_event(
        session,
        subscription.id,
        user_id,
        SubscriptionAction.SUBMITTED_PAYMENT,
        f"Payment submitted: {method.type} ({method.label}) - {reference}",
    )
    session.flush()
    logger.info("Payment submitted by %s for subscription %s", user_id, subscription.id)
    return subscription


def find_conflicts(
    session: Session,
    user_id: str,
    start_at: datetime,
    end_at: datetime,
    exclude_id: int | None = None,
) -> list[Subscription]:
    """Active subscriptions of ``user_id`` whose window overlaps ``[start_at, end_at]``."""

    stmt = select(Subscription).where(
        Subscription.user_id == user_id,
        Subscription.status == SubscriptionStatus.ACTIVE.value,
    )
    if exclude_id is not None:
        stmt = stmt.where(Subscription.id != exclude_id)

    start_at, end_at = _utc(start_at), _utc(end_at)
    conflicts = []
    for subscription in session.execute(stmt).scalars():
        if subscription.start_at is None or subscription.end_at is None:
            continue
        if start_at <= _utc(subscription.end_at) and end_at >= _utc(subscription.start_at):
            conflicts.append(subscription)
    return conflicts


def approve(
    session: Session,
    subscription_id: int,
    start_at: datetime | None,
    end_at: datetime | None,
    actor: str,
) -> tuple[Subscription, list[Subscription]]:
    """Activate a pending subscription; overlapping active ones are expired.

    Without explicit dates the subscription starts now and runs for the package duration.
    """

    subscription = get_subscription(session, subscription_id)
    if not is_valid_status_transition(subscription.status, SubscriptionStatus.ACTIVE):
        raise InvalidRequestError("Cannot approve subscription with current status")
    start_at = _utc(start_at or datetime.now(timezone.utc))
    end_at = _utc(end_at or calculate_end_date(start_at, subscription.package.duration_days))
    if end_at <= start_at:
        raise InvalidRequestError("End date must be after start date")

    conflicts = find_conflicts(session, subscription.user_id, start_at, end_at, exclude_id=subscription.id)
    for conflict in conflicts:
        conflict.status = SubscriptionStatus.EXPIRED.value
        _record_event(
            session,
            conflict.id,
            actor,
            SubscriptionAction.EXPIRED,
            "Auto-expired due to new subscription approval",
        )

    subscription.status = SubscriptionStatus.ACTIVE.value
    subscription.start_at = start_at
    subscription.end_at = end_at
    _record_event(
        session,
        subscription.id,
        actor,
        SubscriptionAction.APPROVED,
        f"Approved by admin ({actor}), active from {start_at.isoformat()} to {end_at.isoformat()}",
    )
    session.flush()
    logger.info(
        "Subscription %s approved by %s (%d conflicting expired)", subscription.id, actor, len(conflicts)
    )
    return subscription, conflicts


def reject(session: Session, subscription_id: int, reason: str, actor: str) -> Subscription:
    reason = (reason or "").strip()
    if len(reason) < MIN_REJECTION_REASON:
        raise InvalidRequestError("Rejection reason must be at least 5 characters")
    subscription = get_subscription(session, subscription_id)
    if not is_valid_status_transition(subscription.status, SubscriptionStatus.REJECTED):
        raise InvalidRequestError("Cannot reject subscription with current status")

    subscription.status = SubscriptionStatus.REJECTED.value
    subscription.notes = append_note(subscription.notes, f"REJECTED: {reason}")
    _record_event(session, subscription.id, actor, SubscriptionAction.REJECTED, f"Rejected by admin ({actor}): {reason}")
    session.flush()
    logger.info("Subscription %s rejected by %s", subscription.id, actor)
    return subscription


def expire(session: Session, subscription_id: int, actor: str, reason: str | None = None) -> Subscription:
    subscription = get_subscription(session, subscription_id)
    if not is_valid_status_transition(subscription.status, SubscriptionStatus.EXPIRED):
        raise InvalidRequestError("Cannot expire subscription with current status")

    reason = (reason or "").strip()
    subscription.status = SubscriptionStatus.EXPIRED.value
    if reason:
        subscription.notes = append_note(subscription.notes, f"MANUALLY EXPIRED: {reason}")
    _record_event(
        session,
        subscription.id,
        actor,
        SubscriptionAction.EXPIRED,
        f"Expired by admin ({actor}): {reason or 'Manually expired by admin'}",
    )
    session.flush()
    logger.info("Subscription %s expired by %s", subscription.id, actor)
    return subscription


def expire_ended(session: Session, now: datetime | None = None) -> list[Subscription]:
    """Mark every active subscription past its end date as expired."""

    now = _utc(now or datetime.now(timezone.utc))
    stmt = select(Subscription).where(
        Subscription.status == SubscriptionStatus.ACTIVE.value,
        Subscription.end_at.is_not(None),
        Subscription.end_at < now,
    )
    ended = list(session.execute(stmt).scalars().all())
    for subscription in ended:
        subscription.status = SubscriptionStatus.EXPIRED.value
        _record_event(
            session,
            subscription.id,
            subscription.user_id,
            SubscriptionAction.EXPIRED,
            "Automatically expired due to end date reached",
        )
    session.flush()
    if ended:
        logger.info("Expired %d ended subscriptions", len(ended))
    return ended


def get_expiring(session: Session, days_ahead: int = 5, now: datetime | None = None) -> list[ExpiringSubscription]:
    """Active subscriptions ending within ``days_ahead`` days, soonest first."""

    now = _utc(now or datetime.now(timezone.utc))
    target = now + timedelta(days=days_ahead)
    stmt = (
        select(Subscription)
        .options(joinedload(Subscription.package), joinedload(Subscription.profile))
        .where(
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_at.is_not(None),
            Subscription.end_at >= now,
            Subscription.end_at <= target,
        )
        .order_by(Subscription.end_at.asc())
    )
    return [
        ExpiringSubscription(
            id=subscription.id,
            user_id=subscription.user_id,
            end_at=_utc(subscription.end_at),
            package_name=subscription.package.name if subscription.package else "Unknown Package",
            user_email=subscription.profile.email if subscription.profile else "No email",
        )
        for subscription in session.execute(stmt).scalars()
    ]


def get_profile(session: Session, user_id: str) -> Profile | None:
    return session.get(Profile, user_id)


def active_subscriber_emails(session: Session, now: datetime | None = None) -> list[str]:
    """Distinct emails of users holding an unexpired active subscription."""

    now = _utc(now or datetime.now(timezone.utc))
    stmt = (
        select(Profile.email)
        .join(Subscription, Subscription.user_id == Profile.user_id)
        .where(
            Subscription.status == SubscriptionStatus.ACTIVE.value,
            Subscription.end_at > now,
        )
        .distinct()
        .order_by(Profile.email)
    )
    return list(session.execute(stmt).scalars())
