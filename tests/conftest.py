"""Shared fixtures: an isolated in-memory database per test."""

from __future__ import annotations

from collections.abc import Callable, Iterator
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crystalfootball.db.models import Base, Package, PaymentMethod, Profile, Subscription

NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine() -> Iterator[Engine]:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> sessionmaker:
    return sessionmaker(bind=engine, class_=Session, expire_on_commit=False, autoflush=False)


@pytest.fixture()
def session(session_factory: sessionmaker) -> Iterator[Session]:
    db = session_factory()
    yield db
    db.close()


@pytest.fixture()
def make_package(session: Session) -> Callable[..., Package]:
    def _make(tier: str = "monthly", duration_days: int = 30, price_cents: int = 2000, **kwargs) -> Package:
        package = Package(
            slug=kwargs.pop("slug", f"{tier}-{duration_days}"),
            name=kwargs.pop("name", f"{tier.replace('_', ' ').title()} VIP"),
            tier=tier,
            duration_days=duration_days,
            price_cents=price_cents,
            **kwargs,
        )
        session.add(package)
        session.flush()
        return package

    return _make


@pytest.fixture()
def make_profile(session: Session) -> Callable[..., Profile]:
    def _make(user_id: str = "user-1", **kwargs) -> Profile:
        profile = Profile(user_id=user_id, email=kwargs.pop("email", f"{user_id}@example.com"), **kwargs)
        session.add(profile)
        session.flush()
        return profile

    return _make


@pytest.fixture()
def make_subscription(session: Session) -> Callable[..., Subscription]:
    def _make(
        user_id: str,
        package: Package,
        status: str = "active",
        start_at: datetime | None = None,
        end_at: datetime | None = None,
    ) -> Subscription:
        if status == "active":
            start_at = start_at or NOW - timedelta(days=10)
            end_at = end_at or NOW + timedelta(days=20)
        subscription = Subscription(
            user_id=user_id,
            package_id=package.id,
            status=status,
            start_at=start_at,
            end_at=end_at,
        )
        session.add(subscription)
        session.flush()
        return subscription

    return _make


@pytest.fixture()
def payment_method(session: Session) -> PaymentMethod:
    method = PaymentMethod(
        type="wish",
        label="Wish Money",
        is_active=True,
        fields={"account_name": "Crystal Football", "phone": "+96170000000"},
    )
    session.add(method)
    session.flush()
    return method
