"""Admin management of subscription packages and their feature lists."""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from crystalfootball.api.schemas import FeatureCreate, FeatureOrder, PackageCreate, PackageUpdate
from crystalfootball.db.models import Package, PackageFeature, Subscription
from crystalfootball.errors import InvalidRequestError, NotFoundError
from crystalfootball.subscriptions.rules import is_valid_slug, unique_slug

logger = logging.getLogger(__name__)


def list_all_packages(session: Session) -> list[Package]:
    stmt = (
        select(Package)
        .options(selectinload(Package.features))
        .order_by(Package.sort_index.asc(), Package.id.asc())
    )
    return list(session.execute(stmt).scalars().all())


def get_package(session: Session, package_id: int) -> Package:
    package = session.get(Package, package_id)
    if package is None:
        raise NotFoundError("Package not found")
    return package


def is_slug_available(session: Session, slug: str, exclude_id: int | None = None) -> bool:
    stmt = select(Package.id).where(Package.slug == slug)
    if exclude_id is not None:
        stmt = stmt.where(Package.id != exclude_id)
    return session.execute(stmt).first() is None


def _check_slug(session: Session, slug: str, exclude_id: int | None = None) -> None:
    if not is_valid_slug(slug):
        raise InvalidRequestError("Invalid slug format")
    if not is_slug_available(session, slug, exclude_id):
        raise InvalidRequestError("Package slug already exists")


def create_package(session: Session, payload: PackageCreate, actor: str | None = None) -> Package:
    if payload.slug:
        slug = payload.slug.strip()
        _check_slug(session, slug)
    else:
        existing = set(session.execute(select(Package.slug)).scalars())
        slug = unique_slug(payload.name, existing)
        if not is_valid_slug(slug):
            raise InvalidRequestError("Invalid slug format")

    package = Package(
        slug=slug,
        name=payload.name.strip(),
        tier=payload.tier.value,
        description=payload.description,
        duration_days=payload.duration_days,
        price_cents=payload.price_cents,
        original_price_cents=payload.original_price_cents,
        is_active=payload.is_active,
        sort_index=payload.sort_index,
        created_by=actor,
        updated_by=actor,
    )
    session.add(package)
    session.flush()
    logger.info("Package created by %s: id=%s slug=%s", actor or "admin", package.id, package.slug)
    return package


def update_package(
    session: Session,
    package_id: int,
    payload: PackageUpdate,
    actor: str | None = None,
) -> Package:
    package = get_package(session, package_id)
    changes = payload.model_dump(exclude_unset=True)
    if changes.get("slug") is not None:
        changes["slug"] = changes["slug"].strip()
        _check_slug(session, changes["slug"], exclude_id=package.id)
    for name, value in changes.items():
        if value is None and name not in {"description", "original_price_cents"}:
            continue
        if name == "tier":
            value = value.value
        setattr(package, name, value)
    package.updated_by = actor
    session.flush()
    logger.info("Package %s updated by %s: %s", package.id, actor or "admin", sorted(changes))
    return package


def delete_package(session: Session, package_id: int, actor: str | None = None) -> None:
    """Remove a package nobody has subscribed to; sold packages can only be deactivated."""

    package = get_package(session, package_id)
    used = session.execute(
        select(func.count()).select_from(Subscription).where(Subscription.package_id == package.id)
    ).scalar_one()
    if used:
        raise InvalidRequestError("Package has subscriptions; deactivate it instead")
    session.delete(package)
    session.flush()
    logger.info("Package %s deleted by %s", package_id, actor or "admin")


def add_feature(session: Session, package_id: int, payload: FeatureCreate) -> PackageFeature:
    package = get_package(session, package_id)
    label = payload.label.strip()
    if not label:
        raise InvalidRequestError("Feature label is required")
    if any(feature.label == label for feature in package.features):
        raise InvalidRequestError("Feature with this label already exists for this package")
    feature = PackageFeature(label=label, sort_index=payload.sort_index)
    package.features.append(feature)
    session.flush()
    return feature


def reorder_features(session: Session, package_id: int, features: list[FeatureOrder]) -> list[PackageFeature]:
    """Apply new sort positions (and optional labels); ids from other packages are ignored."""

    package = get_package(session, package_id)
    by_id = {feature.id: feature for feature in package.features}
    for item in features:
        feature = by_id.get(item.id)
        if feature is None:
            continue
        feature.sort_index = item.sort_index
        if item.label is not None:
            feature.label = item.label.strip()
    session.flush()
    return sorted(package.features, key=lambda feature: (feature.sort_index, feature.id))


def delete_feature(session: Session, package_id: int, feature_id: int) -> None:
    package = get_package(session, package_id)
    feature = next((item for item in package.features if item.id == feature_id), None)
    if feature is None:
        raise NotFoundError("Feature not found")
    package.features.remove(feature)
    session.flush()
