"""ORM models for Crystal Football."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base declarative class."""


class Profile(Base):
    """Account profile mirrored from the hosted auth provider."""

    __tablename__ = "profiles"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    display_name: Mapped[str | None] = mapped_column(String(128))
    role: Mapped[str] = mapped_column(String(32), default="user")
    phone_e164: Mapped[str | None] = mapped_column(String(32))
    whatsapp_opt_in: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Package(Base):
    """A purchasable subscription package."""

    __tablename__ = "packages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    slug: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    tier: Mapped[str] = mapped_column(String(32), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    duration_days: Mapped[int] = mapped_column(Integer, nullable=False)
    price_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    original_price_cents: Mapped[int | None] = mapped_column(Integer)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_index: Mapped[int] = mapped_column(Integer, default=0)
    created_by: Mapped[str | None] = mapped_column(String(64))
    updated_by: Mapped[str | None] = mapped_column(String(64))

    subscriptions: Mapped[list[Subscription]] = relationship(back_populates="package")
    features: Mapped[list[PackageFeature]] = relationship(
        back_populates="package",
        cascade="all, delete-orphan",
        order_by="PackageFeature.sort_index",
    )


class PackageFeature(Base):
    """Selling point listed on a package card."""

    __tablename__ = "package_features"
    __table_args__ = (UniqueConstraint("package_id", "label"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id"), nullable=False)
    label: Mapped[str] = mapped_column(String(255), nullable=False)
    sort_index: Mapped[int] = mapped_column(Integer, default=100)

    package: Mapped[Package] = relationship(back_populates="features")


class PaymentMethod(Base):
    """Manual payment channel (Wish Money, crypto wallet) shown at checkout."""

    __tablename__ = "payment_methods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    label: Mapped[str] = mapped_column(String(128), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    sort_index: Mapped[int] = mapped_column(Integer, default=0)
    fields: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[str] = mapped_column(ForeignKey("profiles.user_id"), nullable=False, index=True)
    package_id: Mapped[int] = mapped_column(ForeignKey("packages.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="pending")
    start_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    end_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    package: Mapped[Package] = relationship(back_populates="subscriptions")
    profile: Mapped[Profile] = relationship()
    receipts: Mapped[list[PaymentReceipt]] = relationship(
        back_populates="subscription", cascade="all, delete-orphan"
    )
    events: Mapped[list[SubscriptionEvent]] = relationship(
        back_populates="subscription", cascade="all, delete-orphan"
    )


class PaymentReceipt(Base):
    __tablename__ = "payment_receipts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id"), nullable=False)
    method_id: Mapped[int | None] = mapped_column(ForeignKey("payment_methods.id"))
    method: Mapped[str] = mapped_column(String(32), nullable=False)
    amount_cents: Mapped[int] = mapped_column(Integer, nullable=False)
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    receipt_url: Mapped[str | None] = mapped_column(String(512))
    receipt_context: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    submitted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    subscription: Mapped[Subscription] = relationship(back_populates="receipts")


class SubscriptionEvent(Base):
    """Audit trail for subscription state changes."""

    __tablename__ = "subscription_events"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subscription_id: Mapped[int] = mapped_column(ForeignKey("subscriptions.id"), nullable=False)
    actor_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    subscription: Mapped[Subscription] = relationship(back_populates="events")


class Betslip(Base):
    """Published betting tip."""

    __tablename__ = "betslips"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    league: Mapped[str] = mapped_column(String(128), nullable=False)
    event_datetime: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    home_team: Mapped[str] = mapped_column(String(128), nullable=False)
    away_team: Mapped[str] = mapped_column(String(128), nullable=False)
    market_type: Mapped[str] = mapped_column(String(64), nullable=False)
    selection: Mapped[str] = mapped_column(String(255), nullable=False)
    odds_decimal: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_pct: Mapped[float] = mapped_column(Float, nullable=False)
    stake_units: Mapped[float] = mapped_column(Float, default=1.0)
    status: Mapped[str] = mapped_column(String(16), default="posted")
    outcome: Mapped[str] = mapped_column(String(16), default="pending")
    betslip_type: Mapped[str] = mapped_column(String(16), default="single")
    combined_odds: Mapped[float | None] = mapped_column(Float)
    notes: Mapped[str | None] = mapped_column(Text)
    is_vip: Mapped[bool] = mapped_column(Boolean, default=True)
    min_tier: Mapped[str] = mapped_column(String(32), default="monthly")
    posted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, index=True)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_by: Mapped[str | None] = mapped_column(String(64))
    updated_by: Mapped[str | None] = mapped_column(String(64))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    legs: Mapped[list[BetslipLeg]] = relationship(
        back_populates="betslip",
        cascade="all, delete-orphan",
        order_by="BetslipLeg.leg_order",
    )
    tags: Mapped[list[BetslipTag]] = relationship(
        back_populates="betslip",
        cascade="all, delete-orphan",
    )


class BetslipLeg(Base):
    """One selection of a betslip."""

    __tablename__ = "betslip_legs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    betslip_id: Mapped[int] = mapped_column(ForeignKey("betslips.id"), nullable=False)
    leg_order: Mapped[int] = mapped_column(Integer, default=1)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="")
    odds_decimal: Mapped[float] = mapped_column(Float, nullable=False)
    status: Mapped[str] = mapped_column(String(16), default="pending")
    notes: Mapped[str | None] = mapped_column(Text)
    settled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    betslip: Mapped[Betslip] = relationship(back_populates="legs")


class BetslipTag(Base):
    __tablename__ = "betslip_tags"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    betslip_id: Mapped[int] = mapped_column(ForeignKey("betslips.id"), nullable=False)
    tag: Mapped[str] = mapped_column(String(64), nullable=False)

    betslip: Mapped[Betslip] = relationship(back_populates="tags")
