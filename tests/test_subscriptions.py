"""Subscription rules and workflow tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select

from crystalfootball.api.schemas import PaymentSubmission
from crystalfootball.db.models import PaymentReceipt, SubscriptionEvent
from crystalfootball.errors import InvalidRequestError, NotFoundError
from crystalfootball.subscriptions import rules
from crystalfootball.subscriptions import service as subscriptions

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def _events(session, subscription_id: int) -> list[str]:
    stmt = (
        select(SubscriptionEvent.action)
        .where(SubscriptionEvent.subscription_id == subscription_id)
        .order_by(SubscriptionEvent.id)
    )
    return list(session.execute(stmt).scalars())


def test_status_transitions() -> None:
    assert rules.is_valid_status_transition("pending", "active")
    assert rules.is_valid_status_transition("pending", "rejected")
    assert rules.is_valid_status_transition("active", "expired")
    assert not rules.is_valid_status_transition("active", "pending")
    assert not rules.is_valid_status_transition("expired", "active")
    assert not rules.is_valid_status_transition("rejected", "active")
    assert not rules.is_valid_status_transition("unknown", "active")


def test_calculate_time_info() -> None:
    info = rules.calculate_time_info("active", NOW + timedelta(days=2, hours=1), now=NOW)
    assert info.days_remaining == 3
    assert info.is_expired is False

    ended = rules.calculate_time_info("active", NOW - timedelta(days=1), now=NOW)
    assert ended.days_remaining == 0
    assert ended.is_expired is True

    expired = rules.calculate_time_info("expired", None, now=NOW)
    assert expired.is_expired is True
    assert expired.expires_at is None


def test_payment_reference_validation() -> None:
    assert rules.validate_payment_reference("WISH-12345") is None
    assert rules.validate_payment_reference("   ") == "Payment reference is required"
    assert rules.validate_payment_reference("abc") == "Payment reference must be at least 5 characters"
    assert rules.validate_payment_reference("x" * 101) == "Payment reference must be less than 100 characters"
    assert rules.validate_payment_reference("ref<script>") == "Payment reference contains invalid characters"


def test_generate_payment_reference() -> None:
    reference = rules.generate_payment_reference("wish", "johndoe@example.com", now=NOW)
    prefix, email_part, stamp = reference.split("-")
    assert prefix == "WIS"
    assert email_part == "JOHNDO"
    assert int(stamp, 36) == int(NOW.timestamp() * 1000)
    assert rules.validate_payment_reference(reference) is None


def test_format_currency_and_helpers() -> None:
    assert rules.format_currency(2000) == "$20"
    assert rules.format_currency(1999) == "$19.99"
    assert rules.format_currency(1950) == "$19.5"
    assert rules.format_currency(150000) == "$1,500"
    assert rules.calculate_end_date(NOW, 30) == NOW + timedelta(days=30)
    assert rules.subscription_sort_priority("pending") < rules.subscription_sort_priority("rejected")
    assert rules.subscription_sort_priority("mystery") == 999
    assert rules.append_note(None, "REJECTED: blurry") == "REJECTED: blurry"
    assert rules.append_note("first", "second") == "first\n\nsecond"


def test_submit_payment_creates_pending_subscription(session, make_package, make_profile, payment_method) -> None:
    package = make_package()
    make_profile("user-1")
    payload = PaymentSubmission(
        package_id=package.id,
        amount_cents=2000,
        method_id=payment_method.id,
        reference=" WISH-889900 ",
        receipt_url="receipts/user-1/wish.png",
    )
    subscription = subscriptions.submit_payment(session, "user-1", payload)
    assert subscription.status == "pending"
    receipt = session.execute(select(PaymentReceipt)).scalar_one()
    assert receipt.reference == "WISH-889900"
    assert receipt.method == "wish"
    assert receipt.receipt_context["method_label"] == "Wish Money"
    assert receipt.receipt_context["fields"]["account_name"] == "Crystal Football"
    assert _events(session, subscription.id) == ["created", "submitted_payment"]

    again = subscriptions.submit_payment(session, "user-1", payload)
    assert again.id == subscription.id


def test_submit_payment_rejections(
    session, make_package, make_profile, make_subscription, payment_method
) -> None:
    package = make_package()
    make_profile("user-1")
    active = make_subscription("user-1", package)

    def submit(**overrides):
        data = {
            "package_id": package.id,
            "amount_cents": 2000,
            "method_id": payment_method.id,
            "reference": "WISH-12345",
            "receipt_url": "receipt.png",
        }
        data.update(overrides)
        return subscriptions.submit_payment(session, "user-1", PaymentSubmission(**data))

    with pytest.raises(InvalidRequestError, match="pending subscriptions"):
        submit(package_id=None, subscription_id=active.id)
    with pytest.raises(NotFoundError):
        subscriptions.submit_payment(
            session,
            "someone-else",
            PaymentSubmission(
                subscription_id=active.id,
                amount_cents=2000,
                method_id=payment_method.id,
                reference="WISH-12345",
                receipt_url="receipt.png",
            ),
        )
    with pytest.raises(InvalidRequestError, match="Package ID"):
        submit(package_id=None)
    with pytest.raises(InvalidRequestError, match="at least 5"):
        submit(reference="abc")
    payment_method.is_active = False
    with pytest.raises(InvalidRequestError, match="inactive payment method"):
        submit()


def test_approve_expires_overlapping_active(session, make_package, make_profile, make_subscription) -> None:
    package = make_package()
    make_profile("user-1")
    current = make_subscription("user-1", package, start_at=NOW - timedelta(days=20), end_at=NOW + timedelta(days=10))
    pending = make_subscription("user-1", package, status="pending")

    approved, conflicts = subscriptions.approve(session, pending.id, NOW, NOW + timedelta(days=30), actor="admin-1")
    assert approved.status == "active"
    assert [c.id for c in conflicts] == [current.id]
    assert current.status == "expired"
    assert _events(session, current.id) == ["expired"]
    assert _events(session, pending.id) == ["approved"]


def test_approve_requires_pending(session, make_package, make_profile, make_subscription) -> None:
    package = make_package()
    make_profile("user-1")
    active = make_subscription("user-1", package)
    with pytest.raises(InvalidRequestError, match="Cannot approve"):
        subscriptions.approve(session, active.id, NOW, NOW + timedelta(days=30), actor="admin")
    pending = make_subscription("user-1", package, status="pending")
    with pytest.raises(InvalidRequestError, match="End date"):
        subscriptions.approve(session, pending.id, NOW, NOW - timedelta(days=1), actor="admin")
    with pytest.raises(NotFoundError):
        subscriptions.approve(session, 12345, NOW, NOW + timedelta(days=1), actor="admin")


def test_reject_appends_reason(session, make_package, make_profile, make_subscription) -> None:
    package = make_package()
    make_profile("user-1")
    pending = make_subscription("user-1", package, status="pending")
    pending.notes = "Subscription created via payment submission"

    with pytest.raises(InvalidRequestError, match="at least 5"):
        subscriptions.reject(session, pending.id, " no ", actor="admin")

    rejected = subscriptions.reject(session, pending.id, "Receipt is unreadable", actor="admin")
    assert rejected.status == "rejected"
    assert rejected.notes.endswith("\n\nREJECTED: Receipt is unreadable")
    with pytest.raises(InvalidRequestError, match="Cannot reject"):
        subscriptions.reject(session, pending.id, "Receipt is unreadable", actor="admin")


def test_manual_expire(session, make_package, make_profile, make_subscription) -> None:
    package = make_package()
    make_profile("user-1")
    active = make_subscription("user-1", package)
    expired = subscriptions.expire(session, active.id, actor="admin", reason="Refunded")
    assert expired.status == "expired"
    assert "MANUALLY EXPIRED: Refunded" in expired.notes
    with pytest.raises(InvalidRequestError):
        subscriptions.expire(session, active.id, actor="admin")


def test_expire_ended_and_get_expiring(session, make_package, make_profile, make_subscription) -> None:
    package = make_package(name="Monthly VIP")
    make_profile("ended")
    make_profile("soon", email="soon@example.com")
    make_profile("later")
    ended = make_subscription("ended", package, start_at=NOW - timedelta(days=31), end_at=NOW - timedelta(hours=1))
    soon = make_subscription("soon", package, start_at=NOW - timedelta(days=27), end_at=NOW + timedelta(days=3))
    make_subscription("later", package, start_at=NOW, end_at=NOW + timedelta(days=25))

    expiring = subscriptions.get_expiring(session, days_ahead=5, now=NOW)
    assert [(item.id, item.user_email, item.package_name) for item in expiring] == [
        (soon.id, "soon@example.com", "Monthly VIP")
    ]

    expired = subscriptions.expire_ended(session, now=NOW)
    assert [s.id for s in expired] == [ended.id]
    assert ended.status == "expired"
    assert _events(session, ended.id) == ["expired"]
    assert subscriptions.expire_ended(session, now=NOW) == []


def test_find_conflicts_ignores_non_overlapping(session, make_package, make_profile, make_subscription) -> None:
    package = make_package()
    make_profile("user-1")
    make_subscription("user-1", package, start_at=NOW - timedelta(days=60), end_at=NOW - timedelta(days=30))
    assert subscriptions.find_conflicts(session, "user-1", NOW, NOW + timedelta(days=30)) == []


def test_list_packages_orders_and_hides_inactive(session, make_package) -> None:
    make_package(tier="full_season", duration_days=300, sort_index=3)
    make_package(tier="monthly", duration_days=30, sort_index=1)
    make_package(tier="half_season", duration_days=150, sort_index=2, is_active=False)
    assert [p.tier for p in subscriptions.list_packages(session)] == ["monthly", "full_season"]
    assert len(subscriptions.list_packages(session, active_only=False)) == 3


def test_slug_helpers() -> None:
    assert rules.generate_slug("  Half Season VIP! ") == "half-season-vip"
    assert rules.generate_slug("Full_Season -- 2024/25") == "full-season-2024-25"
    assert rules.is_valid_slug("monthly-vip")
    assert not rules.is_valid_slug("Monthly VIP")
    assert not rules.is_valid_slug("-monthly")
    assert not rules.is_valid_slug("")
    assert not rules.is_valid_slug("a" * 51)
    assert rules.unique_slug("Monthly VIP", {"monthly-vip", "monthly-vip-1"}) == "monthly-vip-2"


def test_approve_defaults_dates_from_package(session, make_package, make_profile, make_subscription) -> None:
    package = make_package(duration_days=150)
    make_profile("user-1")
    pending = make_subscription("user-1", package, status="pending")

    approved, _ = subscriptions.approve(session, pending.id, NOW, None, actor="admin")
    assert approved.end_at == NOW + timedelta(days=150)

    other = make_subscription("user-1", package, status="pending")
    before = datetime.now(timezone.utc)
    approved, _ = subscriptions.approve(session, other.id, None, None, actor="admin")
    assert approved.start_at >= before
    assert approved.end_at - approved.start_at == timedelta(days=150)


def test_list_subscriptions_by_review_priority(session, make_package, make_profile, make_subscription) -> None:
    package = make_package()
    for user_id in ("a", "b", "c", "d"):
        make_profile(user_id)
    rejected = make_subscription("a", package, status="rejected")
    active = make_subscription("b", package)
    pending = make_subscription("c", package, status="pending")
    expired = make_subscription("d", package, status="expired")

    ordered = subscriptions.list_subscriptions(session)
    assert [s.id for s in ordered] == [pending.id, active.id, expired.id, rejected.id]
    assert [s.id for s in subscriptions.list_subscriptions(session, status="pending")] == [pending.id]


def test_suggest_payment_reference(session, make_profile, payment_method) -> None:
    make_profile("johndoe", email="johndoe@example.com")
    reference = subscriptions.suggest_payment_reference(session, "johndoe", payment_method.id, now=NOW)
    assert reference == rules.generate_payment_reference("wish", "johndoe@example.com", now=NOW)

    with pytest.raises(NotFoundError, match="Profile"):
        subscriptions.suggest_payment_reference(session, "ghost", payment_method.id)
    payment_method.is_active = False
    with pytest.raises(InvalidRequestError, match="inactive payment method"):
        subscriptions.suggest_payment_reference(session, "johndoe", payment_method.id)
