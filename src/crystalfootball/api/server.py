"""FastAPI backend for Crystal Football."""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator, Iterator
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated, Any

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session

from crystalfootball import __version__
from crystalfootball.api.schemas import (
    ActionResponse,
    ApproveRequest,
    BetslipCreate,
    BetslipListResponse,
    BetslipResponse,
    BetslipUpdate,
    BulkSettleError,
    BulkSettleRequest,
    BulkSettleResponse,
    ExpireRequest,
    ExpiringSubscriptionResponse,
    FeatureCreate,
    FeatureReorderRequest,
    FeedResponse,
    LegCreate,
    LegResponse,
    LegUpdate,
    PackageCreate,
    PackageFeatureResponse,
    PackageResponse,
    PackageUpdate,
    Pagination,
    PaymentMethodResponse,
    PaymentReferenceResponse,
    PaymentSubmission,
    PaymentSubmissionResponse,
    PeriodSummaryResponse,
    RejectRequest,
    SettleRequest,
    SettlementDigestRequest,
    SettlementResponse,
    SlugCheckResponse,
    StatsResponse,
    SubscriptionResponse,
    SubscriptionStatusResponse,
    VoidRequest,
)
from crystalfootball.betslips import service as betslips
from crystalfootball.betslips.guards import (
    SubscriptionRequired,
    check_active_subscription,
    format_expiry_message,
    get_days_until_expiry,
    get_tier_display_name,
    group_betslips_by_time,
    is_expiring_soon,
    require_active_subscriber,
)
from crystalfootball.betslips.pnl import calculate_combined_odds
from crystalfootball.betslips.reporting import export_csv
from crystalfootball.betslips.types import Betslip, BetslipOutcome, BetslipStateError, BetslipType
from crystalfootball.config import get_admin_api_key, get_settings
from crystalfootball.db.database import SessionLocal, init_db
from crystalfootball.errors import InvalidRequestError, NotFoundError
from crystalfootball.notifications.service import NotificationService
from crystalfootball.scheduling.jobs import run_daily_job
from crystalfootball.subscriptions import packages
from crystalfootball.subscriptions import service as subscriptions

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

EXPORT_LIMIT = 10_000


@asynccontextmanager
async def lifespan(_: FastAPI) -> AsyncIterator[None]:
    init_db()
    yield


app = FastAPI(
    title="Crystal Football API",
    version=__version__,
    description="Betslip publishing, P&L tracking and subscription access for Crystal Football.",
    lifespan=lifespan,
)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NotFoundError)
def _not_found(_: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


@app.exception_handler(InvalidRequestError)
@app.exception_handler(BetslipStateError)
def _bad_request(_: Request, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"detail": str(exc)})


@app.exception_handler(SubscriptionRequired)
def _subscription_required(_: Request, exc: SubscriptionRequired) -> RedirectResponse:
    return RedirectResponse(url=exc.redirect_path, status_code=status.HTTP_303_SEE_OTHER)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_notifier() -> NotificationService:
    return NotificationService()


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    expected = get_admin_api_key()
    if not x_api_key or x_api_key != expected:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")


def admin_actor(x_admin_user: str | None = Header(default=None, alias="X-Admin-User")) -> str:
    return x_admin_user or "admin"


def require_user(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")
    return x_user_id


SessionDep = Annotated[Session, Depends(get_db)]
NotifierDep = Annotated[NotificationService, Depends(get_notifier)]
APIKeyDep = Annotated[None, Depends(require_api_key)]
ActorDep = Annotated[str, Depends(admin_actor)]
UserDep = Annotated[str, Depends(require_user)]
PageQuery = Annotated[int, Query(ge=1)]
LimitQuery = Annotated[int, Query(ge=1, le=200)]
WeeksQuery = Annotated[int, Query(ge=1, le=52)]
MonthsQuery = Annotated[int, Query(ge=1, le=24)]


def _betslip_response(betslip: Betslip) -> BetslipResponse:
    legs = [
        LegResponse(
            id=leg.id,
            betslip_id=betslip.id,
            leg_order=leg.leg_order,
            title=leg.title,
            description=leg.description,
            odds_decimal=leg.odds_decimal,
            status=leg.status,
            notes=leg.notes,
            settled_at=leg.settled_at,
        )
        for leg in betslip.legs
    ]
    if betslip.betslip_type == BetslipType.MULTI and betslip.legs:
        calculated = calculate_combined_odds(betslip.legs)
    else:
        calculated = betslip.odds_decimal
    fields = vars(betslip) | {
        "tags": sorted(betslip.tags),
        "legs": legs,
        "calculated_combined_odds": calculated,
    }
    return BetslipResponse(**fields)


def _row_response(row: Any) -> BetslipResponse:
    return _betslip_response(betslips.to_domain(row))


@app.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/version")
def version() -> dict[str, Any]:
    return {"name": "crystal-football", "version": __version__}


@app.get("/packages", response_model=list[PackageResponse])
def list_packages(session: SessionDep) -> list[PackageResponse]:
    return [PackageResponse.model_validate(package) for package in subscriptions.list_packages(session)]


@app.get("/payment-methods", response_model=list[PaymentMethodResponse])
def list_payment_methods(session: SessionDep) -> list[PaymentMethodResponse]:
    return [PaymentMethodResponse.model_validate(method) for method in subscriptions.list_payment_methods(session)]


@app.get("/me/subscription", response_model=SubscriptionStatusResponse)
def my_subscription(user_id: UserDep, session: SessionDep) -> SubscriptionStatusResponse:
    access = check_active_subscription(session, user_id)
    tier = access.subscription_tier
    return SubscriptionStatusResponse(
        has_active_subscription=access.has_active_subscription,
        subscription_tier=tier,
        tier_name=get_tier_display_name(tier) if tier else None,
        expires_at=access.expires_at,
        days_remaining=max(0, get_days_until_expiry(access.expires_at)),
        expiry_message=format_expiry_message(access.expires_at),
        expiring_soon=is_expiring_soon(access.expires_at),
    )


@app.get("/feed", response_model=FeedResponse)
def feed(user_id: UserDep, session: SessionDep) -> FeedResponse:
    access = require_active_subscriber(session, user_id)
    visible = betslips.load_feed(session, access)
    groups = group_betslips_by_time(visible)
    return FeedResponse(
        subscription_tier=access.subscription_tier,
        groups={label: [_betslip_response(item) for item in items] for label, items in groups.items()},
    )


@app.get("/stats", response_model=StatsResponse)
def stats(
    user_id: UserDep,
    session: SessionDep,
    weeks: WeeksQuery = 12,
    months: MonthsQuery = 6,
) -> StatsResponse:
    require_active_subscriber(session, user_id)
    report = betslips.load_performance(session, weeks=weeks, months=months)
    return StatsResponse(
        overall=PeriodSummaryResponse.model_validate(report.overall),
        weekly=[PeriodSummaryResponse.model_validate(item) for item in report.weekly],
        monthly=[PeriodSummaryResponse.model_validate(item) for item in report.monthly],
        last_updated=report.last_updated,
    )


@app.get("/subscriptions/payment-reference", response_model=PaymentReferenceResponse)
def payment_reference(method_id: int, user_id: UserDep, session: SessionDep) -> PaymentReferenceResponse:
    return PaymentReferenceResponse(reference=subscriptions.suggest_payment_reference(session, user_id, method_id))


@app.post("/subscriptions/payment", response_model=PaymentSubmissionResponse)
def submit_payment(
    payload: PaymentSubmission,
    user_id: UserDep,
    session: SessionDep,
    notifier: NotifierDep,
) -> PaymentSubmissionResponse:
    subscription = subscriptions.submit_payment(session, user_id, payload)
    session.commit()
    profile = subscriptions.get_profile(session, user_id)
    if profile:
        notifier.send_payment_received(profile.email, subscription.package.name, subscription.id)
    notifier.notify_admins_payment_pending(subscription.id, payload.amount_cents, user_id)
    return PaymentSubmissionResponse(subscription_id=subscription.id)


@app.get("/admin/betslips/export.csv")
def export_betslips(
    _: APIKeyDep,
    session: SessionDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    league: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> Response:
    filters = betslips.BetslipFilters(
        status=status_filter, league=league, date_from=date_from, date_to=date_to
    )
    rows, _total = betslips.list_betslips(session, filters, page=1, limit=EXPORT_LIMIT)
    content = export_csv([betslips.to_domain(row) for row in rows])
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": 'attachment; filename="betslips.csv"'},
    )


@app.get("/admin/betslips", response_model=BetslipListResponse)
def list_betslips(
    _: APIKeyDep,
    session: SessionDep,
    page: PageQuery = 1,
    limit: LimitQuery = 50,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    outcome: str | None = None,
    league: str | None = None,
    tag: str | None = None,
    min_tier: str | None = None,
    is_vip: bool | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    search: str | None = None,
) -> BetslipListResponse:
    filters = betslips.BetslipFilters(
        status=status_filter,
        outcome=outcome,
        league=league,
        tag=tag,
        min_tier=min_tier,
        is_vip=is_vip,
        date_from=date_from,
        date_to=date_to,
        search=search,
    )
    rows, total = betslips.list_betslips(session, filters, page=page, limit=limit)
    return BetslipListResponse(
        betslips=[_row_response(row) for row in rows],
        pagination=Pagination(page=page, limit=limit, total=total, pages=betslips.page_count(total, limit)),
    )


@app.post("/admin/betslips", response_model=BetslipResponse, status_code=status.HTTP_201_CREATED)
def create_betslip(payload: BetslipCreate, _: APIKeyDep, actor: ActorDep, session: SessionDep) -> BetslipResponse:
    row = betslips.create_betslip(session, payload, actor=actor)
    session.commit()
    return _row_response(row)


@app.post("/admin/betslips/bulk-settle", response_model=BulkSettleResponse)
def bulk_settle(
    payload: BulkSettleRequest,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> BulkSettleResponse:
    result = betslips.bulk_settle(session, payload.betslip_ids, payload.outcome, notes=payload.notes, actor=actor)
    session.commit()
    return BulkSettleResponse(
        success_count=result.success_count,
        failed_count=result.failed_count,
        errors=[BulkSettleError(betslip_id=betslip_id, error=error) for betslip_id, error in result.errors],
    )


@app.get("/admin/betslips/{betslip_id}", response_model=BetslipResponse)
def get_betslip(betslip_id: int, _: APIKeyDep, session: SessionDep) -> BetslipResponse:
    return _row_response(betslips.get_betslip(session, betslip_id))


@app.put("/admin/betslips/{betslip_id}", response_model=BetslipResponse)
def update_betslip(
    betslip_id: int,
    payload: BetslipUpdate,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> BetslipResponse:
    row = betslips.update_betslip(session, betslip_id, payload, actor=actor)
    session.commit()
    return _row_response(row)


@app.delete("/admin/betslips/{betslip_id}", response_model=ActionResponse)
def delete_betslip(betslip_id: int, _: APIKeyDep, actor: ActorDep, session: SessionDep) -> ActionResponse:
    betslips.delete_betslip(session, betslip_id, actor=actor)
    session.commit()
    return ActionResponse(message="Betslip deleted successfully")


@app.post("/admin/betslips/{betslip_id}/settle", response_model=SettlementResponse)
def settle_betslip(
    betslip_id: int,
    payload: SettleRequest,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> SettlementResponse:
    row, profit_units = betslips.settle_betslip(
        session, betslip_id, payload.outcome, notes=payload.notes, actor=actor
    )
    session.commit()
    response = _row_response(row)
    return SettlementResponse(
        betslip=response,
        outcome=response.outcome,
        profit_units=profit_units,
        settled_by=actor,
        settled_at=response.settled_at,
    )


@app.post("/admin/betslips/{betslip_id}/void", response_model=BetslipResponse)
def void_betslip(
    betslip_id: int,
    payload: VoidRequest,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> BetslipResponse:
    row = betslips.void_betslip(session, betslip_id, notes=payload.notes, actor=actor)
    session.commit()
    return _row_response(row)


@app.post("/admin/notifications/settlement-digest", response_model=ActionResponse)
def settlement_digest(
    payload: SettlementDigestRequest,
    _: APIKeyDep,
    session: SessionDep,
    notifier: NotifierDep,
) -> ActionResponse:
    resolved = [
        item
        for item in betslips.load_betslips(session, payload.betslip_ids)
        if item.outcome != BetslipOutcome.PENDING
    ]
    recipients = subscriptions.active_subscriber_emails(session)
    sent = notifier.send_settlement_digest(resolved, recipients)
    return ActionResponse(
        success=sent,
        message="Settlement digest sent" if sent else "Settlement digest not sent",
        details={"betslips": len(resolved), "recipients": len(recipients)},
    )


@app.get("/admin/betslips/{betslip_id}/legs", response_model=list[LegResponse])
def list_legs(betslip_id: int, _: APIKeyDep, session: SessionDep) -> list[LegResponse]:
    return [LegResponse.model_validate(leg) for leg in betslips.list_legs(session, betslip_id)]


@app.post(
    "/admin/betslips/{betslip_id}/legs",
    response_model=LegResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_leg(
    betslip_id: int,
    payload: LegCreate,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> LegResponse:
    leg = betslips.add_leg(session, betslip_id, payload, actor=actor)
    session.commit()
    return LegResponse.model_validate(leg)


@app.get("/admin/betslips/{betslip_id}/legs/{leg_id}", response_model=LegResponse)
def get_leg(betslip_id: int, leg_id: int, _: APIKeyDep, session: SessionDep) -> LegResponse:
    return LegResponse.model_validate(betslips.get_leg(session, betslip_id, leg_id))


@app.put("/admin/betslips/{betslip_id}/legs/{leg_id}", response_model=LegResponse)
def update_leg(
    betslip_id: int,
    leg_id: int,
    payload: LegUpdate,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> LegResponse:
    leg = betslips.update_leg(session, betslip_id, leg_id, payload, actor=actor)
    session.commit()
    return LegResponse.model_validate(leg)


@app.delete("/admin/betslips/{betslip_id}/legs/{leg_id}", response_model=ActionResponse)
def delete_leg(
    betslip_id: int,
    leg_id: int,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> ActionResponse:
    betslips.delete_leg(session, betslip_id, leg_id, actor=actor)
    session.commit()
    return ActionResponse(message="Leg deleted successfully")


@app.post("/admin/subscriptions/approve", response_model=ActionResponse)
def approve_subscription(
    payload: ApproveRequest,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
    notifier: NotifierDep,
) -> ActionResponse:
    subscription, conflicts = subscriptions.approve(
        session, payload.subscription_id, payload.start_at, payload.end_at, actor
    )
    session.commit()
    if subscription.profile:
        notifier.send_subscription_approved(
            subscription.profile.email, subscription.package.name, subscription.end_at
        )
    return ActionResponse(
        message="Subscription approved successfully",
        details={"expired_conflicts": [conflict.id for conflict in conflicts]},
    )


@app.post("/admin/subscriptions/reject", response_model=ActionResponse)
def reject_subscription(
    payload: RejectRequest,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
    notifier: NotifierDep,
) -> ActionResponse:
    subscription = subscriptions.reject(session, payload.subscription_id, payload.reason, actor)
    session.commit()
    if subscription.profile:
        notifier.send_subscription_rejected(
            subscription.profile.email, subscription.package.name, payload.reason.strip()
        )
    return ActionResponse(message="Subscription rejected successfully")


@app.post("/admin/subscriptions/expire", response_model=ActionResponse)
def expire_subscription(
    payload: ExpireRequest,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> ActionResponse:
    subscriptions.expire(session, payload.subscription_id, actor, reason=payload.reason)
    session.commit()
    return ActionResponse(message="Subscription expired successfully")


@app.post("/admin/subscriptions/expire-ended", response_model=ActionResponse)
def expire_ended_subscriptions(_: APIKeyDep, session: SessionDep) -> ActionResponse:
    expired = subscriptions.expire_ended(session)
    session.commit()
    return ActionResponse(
        message=f"Expired {len(expired)} subscriptions",
        details={"expired_count": len(expired)},
    )


@app.get("/admin/subscriptions/expiring", response_model=list[ExpiringSubscriptionResponse])
def expiring_subscriptions(
    _: APIKeyDep,
    session: SessionDep,
    days_ahead: Annotated[int, Query(ge=1, le=60)] = 5,
) -> list[ExpiringSubscriptionResponse]:
    return [
        ExpiringSubscriptionResponse.model_validate(item)
        for item in subscriptions.get_expiring(session, days_ahead=days_ahead)
    ]


@app.get("/admin/subscriptions", response_model=list[SubscriptionResponse])
def list_subscriptions(
    _: APIKeyDep,
    session: SessionDep,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
) -> list[SubscriptionResponse]:
    return [
        SubscriptionResponse.model_validate(subscription)
        for subscription in subscriptions.list_subscriptions(session, status=status_filter)
    ]


@app.get("/admin/packages", response_model=list[PackageResponse])
def admin_list_packages(_: APIKeyDep, session: SessionDep) -> list[PackageResponse]:
    return [PackageResponse.model_validate(package) for package in packages.list_all_packages(session)]


@app.get("/admin/packages/check-slug", response_model=SlugCheckResponse)
def check_package_slug(
    slug: str,
    _: APIKeyDep,
    session: SessionDep,
    exclude: int | None = None,
) -> SlugCheckResponse:
    slug = slug.strip()
    return SlugCheckResponse(available=packages.is_slug_available(session, slug, exclude_id=exclude), slug=slug)


@app.post("/admin/packages", response_model=PackageResponse, status_code=status.HTTP_201_CREATED)
def create_package(payload: PackageCreate, _: APIKeyDep, actor: ActorDep, session: SessionDep) -> PackageResponse:
    package = packages.create_package(session, payload, actor=actor)
    session.commit()
    return PackageResponse.model_validate(package)


@app.get("/admin/packages/{package_id}", response_model=PackageResponse)
def get_package(package_id: int, _: APIKeyDep, session: SessionDep) -> PackageResponse:
    return PackageResponse.model_validate(packages.get_package(session, package_id))


@app.put("/admin/packages/{package_id}", response_model=PackageResponse)
def update_package(
    package_id: int,
    payload: PackageUpdate,
    _: APIKeyDep,
    actor: ActorDep,
    session: SessionDep,
) -> PackageResponse:
    package = packages.update_package(session, package_id, payload, actor=actor)
    session.commit()
    return PackageResponse.model_validate(package)


@app.delete("/admin/packages/{package_id}", response_model=ActionResponse)
def delete_package(package_id: int, _: APIKeyDep, actor: ActorDep, session: SessionDep) -> ActionResponse:
    packages.delete_package(session, package_id, actor=actor)
    session.commit()
    return ActionResponse(message="Package deleted successfully")


@app.post(
    "/admin/packages/{package_id}/features",
    response_model=PackageFeatureResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_package_feature(
    package_id: int,
    payload: FeatureCreate,
    _: APIKeyDep,
    session: SessionDep,
) -> PackageFeatureResponse:
    feature = packages.add_feature(session, package_id, payload)
    session.commit()
    return PackageFeatureResponse.model_validate(feature)


@app.put("/admin/packages/{package_id}/features", response_model=list[PackageFeatureResponse])
def reorder_package_features(
    package_id: int,
    payload: FeatureReorderRequest,
    _: APIKeyDep,
    session: SessionDep,
) -> list[PackageFeatureResponse]:
    features = packages.reorder_features(session, package_id, payload.features)
    session.commit()
    return [PackageFeatureResponse.model_validate(feature) for feature in features]


@app.delete("/admin/packages/{package_id}/features/{feature_id}", response_model=ActionResponse)
def delete_package_feature(package_id: int, feature_id: int, _: APIKeyDep, session: SessionDep) -> ActionResponse:
    packages.delete_feature(session, package_id, feature_id)
    session.commit()
    return ActionResponse(message="Feature deleted successfully")


@app.post("/admin/run-daily-job", response_model=ActionResponse)
def api_run_daily_job(_: APIKeyDep) -> ActionResponse:
    try:
        summary = run_daily_job()
    except Exception as exc:  # pragma: no cover
        raise HTTPException(status_code=500, detail=f"Daily job failed: {exc}") from exc
    return ActionResponse(message="Daily job completed", details=summary)
