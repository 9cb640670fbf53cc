"""Tier gating and subscription access tests."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import pytest

from crystalfootball.betslips import guards
from crystalfootball.betslips.types import PackageTier

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def test_can_access_betslip_by_rank() -> None:
    assert guards.can_access_betslip("monthly", "full_season") is False
    assert guards.can_access_betslip("full_season", "monthly") is True
    assert guards.can_access_betslip("half_season", "half_season") is True
    assert guards.can_access_betslip(None, "monthly") is False


def test_filter_betslips_by_tier_preserves_order() -> None:
    bets = [
        SimpleNamespace(id=1, min_tier=PackageTier.FULL_SEASON),
        SimpleNamespace(id=2, min_tier=PackageTier.MONTHLY),
        SimpleNamespace(id=3, min_tier=PackageTier.HALF_SEASON),
        SimpleNamespace(id=4, min_tier=PackageTier.MONTHLY),
    ]
    assert [b.id for b in guards.filter_betslips_by_tier(bets, "half_season")] == [2, 3, 4]
    assert guards.filter_betslips_by_tier(bets, None) == []


def test_tier_display_name() -> None:
    assert guards.get_tier_display_name("half_season") == "Half Season"
    assert guards.get_tier_display_name(PackageTier.FULL_SEASON) == "Full Season"


def test_days_until_expiry_rounds_up() -> None:
    assert guards.get_days_until_expiry(NOW + timedelta(hours=23, minutes=59), NOW) == 1
    assert guards.get_days_until_expiry(NOW, NOW) == 0
    assert guards.get_days_until_expiry(NOW - timedelta(days=1), NOW) < 0
    assert guards.get_days_until_expiry(None, NOW) == 0


def test_days_until_expiry_accepts_iso_strings() -> None:
    assert guards.get_days_until_expiry("2024-05-18T12:00:00+00:00", NOW) == 3
    assert guards.get_days_until_expiry("2024-05-18T12:00:00", NOW) == 3


def test_is_expiring_soon_window() -> None:
    assert guards.is_expiring_soon(NOW + timedelta(days=7), NOW) is True
    assert guards.is_expiring_soon(NOW + timedelta(days=1), NOW) is True
    assert guards.is_expiring_soon(NOW + timedelta(days=8), NOW) is False
    assert guards.is_expiring_soon(NOW, NOW) is False
    assert guards.is_expiring_soon(NOW - timedelta(days=2), NOW) is False
    assert guards.is_expiring_soon(None, NOW) is False


@pytest.mark.parametrize(
    ("offset", "message"),
    [
        (timedelta(days=-2), "Subscription expired"),
        (timedelta(0), "Expires today"),
        (timedelta(hours=5), "Expires tomorrow"),
        (timedelta(days=4), "Expires in 4 days"),
        (timedelta(days=30), "Expires 6/14/2024"),
    ],
)
def test_format_expiry_message(offset: timedelta, message: str) -> None:
    assert guards.format_expiry_message(NOW + offset, NOW) == message


def test_format_expiry_message_without_subscription() -> None:
    assert guards.format_expiry_message(None, NOW) == "No active subscription"


def test_group_betslips_by_time() -> None:
    bets = [
        SimpleNamespace(id="later-today", event_datetime=NOW + timedelta(hours=3)),
        SimpleNamespace(id="tomorrow", event_datetime=NOW + timedelta(days=1)),
        SimpleNamespace(id="this-week", event_datetime=NOW + timedelta(days=4)),
        SimpleNamespace(id="upcoming", event_datetime=NOW + timedelta(days=10)),
        SimpleNamespace(id="recent", event_datetime=NOW - timedelta(days=3)),
        SimpleNamespace(id="stale", event_datetime=NOW - timedelta(days=20)),
        SimpleNamespace(id="unscheduled", event_datetime=None),
    ]
    groups = guards.group_betslips_by_time(bets, NOW)
    assert {label: [b.id for b in items] for label, items in groups.items()} == {
        guards.TODAY: ["later-today"],
        guards.TOMORROW: ["tomorrow"],
        guards.THIS_WEEK: ["this-week"],
        guards.UPCOMING: ["upcoming"],
        guards.RECENT_RESULTS: ["recent"],
    }


def test_group_betslips_drops_empty_buckets() -> None:
    groups = guards.group_betslips_by_time([SimpleNamespace(event_datetime=NOW + timedelta(days=2))], NOW)
    assert list(groups) == [guards.THIS_WEEK]


def test_check_active_subscription(session, make_package, make_profile, make_subscription) -> None:
    package = make_package(tier="half_season", duration_days=180)
    make_profile("user-1")
    make_subscription("user-1", package, end_at=NOW + timedelta(days=20))

    access = guards.check_active_subscription(session, "user-1", now=NOW)
    assert access.has_active_subscription is True
    assert access.subscription_tier == PackageTier.HALF_SEASON
    assert access.expires_at == NOW + timedelta(days=20)


def test_check_active_subscription_denies_expired_and_pending(
    session, make_package, make_profile, make_subscription
) -> None:
    package = make_package()
    make_profile("late")
    make_profile("waiting")
    make_subscription("late", package, start_at=NOW - timedelta(days=40), end_at=NOW - timedelta(days=1))
    make_subscription("waiting", package, status="pending")

    assert guards.check_active_subscription(session, "late", now=NOW).has_active_subscription is False
    assert guards.check_active_subscription(session, "waiting", now=NOW).has_active_subscription is False
    assert guards.check_active_subscription(session, "nobody", now=NOW).has_active_subscription is False


def test_check_active_subscription_denies_on_multiple_rows(
    session, make_package, make_profile, make_subscription
) -> None:
    package = make_package()
    make_profile("dup")
    make_subscription("dup", package)
    make_subscription("dup", package)

    access = guards.check_active_subscription(session, "dup", now=NOW)
    assert access.has_active_subscription is False
    assert access.subscription_tier is None


def test_check_active_subscription_fails_safe() -> None:
    class BrokenSession:
        def execute(self, *_args, **_kwargs):
            raise RuntimeError("database unavailable")

    access = guards.check_active_subscription(BrokenSession(), "user-1", now=NOW)
    assert access.has_active_subscription is False


def test_require_active_subscriber_raises_redirect(session) -> None:
    with pytest.raises(guards.SubscriptionRequired) as excinfo:
        guards.require_active_subscriber(session, "nobody")
    assert excinfo.value.redirect_path == "/packages"
