"""Subscription status rules and small helpers for the manual payment flow."""

from __future__ import annotations

import math
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import StrEnum


class SubscriptionStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    REJECTED = "rejected"


class SubscriptionAction(StrEnum):
    CREATED = "created"
    SUBMITTED_PAYMENT = "submitted_payment"
    APPROVED = "approved"
    REJECTED = "rejected"
    EXPIRED = "expired"


VALID_TRANSITIONS: dict[SubscriptionStatus, frozenset[SubscriptionStatus]] = {
    SubscriptionStatus.PENDING: frozenset({SubscriptionStatus.ACTIVE, SubscriptionStatus.REJECTED}),
    SubscriptionStatus.ACTIVE: frozenset({SubscriptionStatus.EXPIRED}),
    SubscriptionStatus.EXPIRED: frozenset(),
    SubscriptionStatus.REJECTED: frozenset(),
}

_SORT_PRIORITY = {
    SubscriptionStatus.PENDING: 1,
    SubscriptionStatus.ACTIVE: 2,
    SubscriptionStatus.EXPIRED: 3,
    SubscriptionStatus.REJECTED: 4,
}

_REFERENCE_PATTERN = re.compile(r"^[a-zA-Z0-9\-_\s.@]+$")
_SLUG_PATTERN = re.compile(r"^[a-z0-9]+(?:-[a-z0-9]+)*$")
MAX_SLUG_LENGTH = 50
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"

MIN_REJECTION_REASON = 5


@dataclass
class SubscriptionTimeInfo:
    days_remaining: int
    is_expired: bool
    expires_at: datetime | None


def is_valid_status_transition(current: SubscriptionStatus | str, new: SubscriptionStatus | str) -> bool:
    try:
        return SubscriptionStatus(new) in VALID_TRANSITIONS[SubscriptionStatus(current)]
    except ValueError:
        return False


def can_submit_receipt(status: SubscriptionStatus | str) -> bool:
    return status == SubscriptionStatus.PENDING


def calculate_end_date(start: datetime, duration_days: int) -> datetime:
    return start + timedelta(days=duration_days)


def calculate_time_info(
    status: SubscriptionStatus | str,
    end_at: datetime | None,
    now: datetime | None = None,
) -> SubscriptionTimeInfo:
    """Days left on an active subscription, never below zero."""

    if status != SubscriptionStatus.ACTIVE or end_at is None:
        return SubscriptionTimeInfo(
            days_remaining=0,
            is_expired=status == SubscriptionStatus.EXPIRED,
            expires_at=None,
        )

    if end_at.tzinfo is None:
        end_at = end_at.replace(tzinfo=timezone.utc)
    now = now or datetime.now(timezone.utc)
    days_remaining = math.ceil((end_at - now) / timedelta(days=1))
    return SubscriptionTimeInfo(
        days_remaining=max(0, days_remaining),
        is_expired=days_remaining <= 0,
        expires_at=end_at,
    )


def validate_payment_reference(reference: str | None) -> str | None:
    """Return an error message, or ``None`` when the reference is acceptable."""

    if not reference or not reference.strip():
        return "Payment reference is required"
    if len(reference) < 5:
        return "Payment reference must be at least 5 characters"
    if len(reference) > 100:
        return "Payment reference must be less than 100 characters"
    if not _REFERENCE_PATTERN.match(reference):
        return "Payment reference contains invalid characters"
    return None


def _to_base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            break
    return "".join(reversed(digits))


def generate_payment_reference(method: str, user_email: str, now: datetime | None = None) -> str:
    """Suggest a reference like ``WIS-JOHNDO-LZ3K9Q1B`` for the payment form."""

    now = now or datetime.now(timezone.utc)
    timestamp = _to_base36(int(now.timestamp() * 1000))
    email_prefix = user_email.split("@")[0][:6]
    method_prefix = method.upper()[:3]
    return f"{method_prefix}-{email_prefix}-{timestamp}".upper()


def format_currency(cents: int) -> str:
    """USD with up to two decimals: 2000 -> ``$20``, 1950 -> ``$19.5``."""

    dollars = cents / 100
    text = f"{abs(dollars):,.2f}".rstrip("0").rstrip(".")
    return f"-${text}" if dollars < 0 else f"${text}"


def subscription_sort_priority(status: SubscriptionStatus | str) -> int:
    try:
        return _SORT_PRIORITY[SubscriptionStatus(status)]
    except ValueError:
        return 999


def append_note(existing: str | None, note: str) -> str:
    return "\n\n".join(part for part in (existing, note) if part)


def generate_slug(text: str) -> str:
    """``"Half Season VIP!"`` -> ``"half-season-vip"``."""

    return re.sub(r"[\s\W_-]+", "-", text.lower().strip()).strip("-")


def is_valid_slug(slug: str) -> bool:
    return 0 < len(slug) <= MAX_SLUG_LENGTH and bool(_SLUG_PATTERN.match(slug))


def unique_slug(name: str, existing: set[str]) -> str:
    base = generate_slug(name)
    slug, counter = base, 1
    while slug in existing:
        slug = f"{base}-{counter}"
        counter += 1
    return slug
