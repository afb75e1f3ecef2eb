"""
Admin / observability endpoints
===============================

GET    /api/v1/admin/deliveries                  -- all deliveries (optional status filter)
GET    /api/v1/admin/deliveries/delivered        -- completed deliveries
POST   /api/v1/admin/deliveries/{id}/assign      -- hand a pending delivery to a rider
POST   /api/v1/admin/deliveries/{id}/reassign    -- move an active delivery to another rider
POST   /api/v1/admin/deliveries/{id}/cancel      -- cancel a pending / assigned delivery
DELETE /api/v1/admin/deliveries/{id}             -- delete a finished delivery
GET    /api/v1/admin/riders                      -- rider applications
POST   /api/v1/admin/riders/{id}/decision        -- approve / reject an application
GET    /api/v1/admin/profiles                    -- user accounts
PATCH  /api/v1/admin/profiles/{id}/status        -- suspend / reactivate an account
GET    /api/v1/admin/analytics                   -- delivery counts and revenue
GET    /api/v1/admin/health                      -- simple health check
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from lastmile.api.dependencies import (
    Services,
    get_admin_view,
    get_db,
    get_services,
    get_session,
)
from lastmile.api.middleware import limiter
from lastmile.api.schemas import (
    AccountStatusRequest,
    AnalyticsResponse,
    AssignRequest,
    DecisionRequest,
    DeleteResponse,
    DeliveryResponse,
    ErrorResponse,
    HealthResponse,
    ProfileResponse,
    RiderResponse,
    TopCustomer,
)
from lastmile.config import settings
from lastmile.domain.entities import Session
from lastmile.domain.enums import ApprovalStatus, DeliveryStatus, UserRole
from lastmile.views.roles import AdminView

router = APIRouter(prefix="/admin", tags=["admin"])


# ── Deliveries ────────────────────────────────────────────────────────


@router.get(
    "/deliveries",
    response_model=list[DeliveryResponse],
    summary="List all deliveries",
)
@limiter.limit(settings.rate_limit)
async def deliveries(
    request: Request,
    status: Optional[DeliveryStatus] = None,
    view: AdminView = Depends(get_admin_view),
):
    return await view.deliveries(status)


@router.get(
    "/deliveries/delivered",
    response_model=list[DeliveryResponse],
    summary="Delivered deliveries, most recently completed first",
)
@limiter.limit(settings.rate_limit)
async def delivered(request: Request, view: AdminView = Depends(get_admin_view)):
    return await view.history()


@router.post(
    "/deliveries/{delivery_id}/assign",
    response_model=DeliveryResponse,
    summary="Assign a pending delivery to an approved rider",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def assign(
    request: Request,
    delivery_id: int,
    body: AssignRequest,
    view: AdminView = Depends(get_admin_view),
):
    return await view.assign(delivery_id, body.rider_id)


@router.post(
    "/deliveries/{delivery_id}/reassign",
    response_model=DeliveryResponse,
    summary="Move an active delivery to another rider",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def reassign(
    request: Request,
    delivery_id: int,
    body: AssignRequest,
    view: AdminView = Depends(get_admin_view),
):
    return await view.reassign(delivery_id, body.rider_id)


@router.post(
    "/deliveries/{delivery_id}/cancel",
    response_model=DeliveryResponse,
    summary="Cancel a pending or assigned delivery",
    responses={409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def cancel(
    request: Request,
    delivery_id: int,
    view: AdminView = Depends(get_admin_view),
):
    return await view.cancel(delivery_id)


@router.delete(
    "/deliveries/{delivery_id}",
    response_model=DeleteResponse,
    summary="Delete a delivered or cancelled delivery",
)
@limiter.limit(settings.rate_limit)
async def delete(
    request: Request,
    delivery_id: int,
    view: AdminView = Depends(get_admin_view),
):
    return DeleteResponse(tracking_events_removed=await view.delete(delivery_id))


# ── Riders & accounts ─────────────────────────────────────────────────


@router.get("/riders", response_model=list[RiderResponse], summary="List riders")
@limiter.limit(settings.rate_limit)
async def riders(
    request: Request,
    approval: Optional[ApprovalStatus] = None,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.admin.list_riders(session, approval)


@router.post(
    "/riders/{rider_id}/decision",
    response_model=RiderResponse,
    summary="Approve or reject a rider application",
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def decide(
    request: Request,
    rider_id: int,
    body: DecisionRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.admin.decide_rider(session, rider_id, body.approval_status)


@router.get("/profiles", response_model=list[ProfileResponse], summary="List accounts")
@limiter.limit(settings.rate_limit)
async def profiles(
    request: Request,
    role: Optional[UserRole] = None,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.admin.list_profiles(session, role)


@router.patch(
    "/profiles/{profile_id}/status",
    response_model=ProfileResponse,
    summary="Suspend or reactivate an account",
)
@limiter.limit(settings.rate_limit)
async def set_status(
    request: Request,
    profile_id: int,
    body: AccountStatusRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.admin.set_account_status(session, profile_id, body.status)


@router.get("/analytics", response_model=AnalyticsResponse, summary="Dashboard numbers")
@limiter.limit(settings.rate_limit)
async def analytics(
    request: Request,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    stats = await services.admin.analytics(session)
    return AnalyticsResponse(
        deliveries_today=stats.deliveries_today,
        deliveries_week=stats.deliveries_week,
        deliveries_month=stats.deliveries_month,
        revenue_today=float(stats.revenue_today),
        revenue_week=float(stats.revenue_week),
        revenue_month=float(stats.revenue_month),
        top_customers=[TopCustomer(**row) for row in stats.top_customers],
        recent_deliveries=[
            DeliveryResponse.model_validate(d) for d in stats.recent_deliveries
        ],
    )


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(db: AsyncSession = Depends(get_db)):
    await db.execute(text("SELECT 1"))
    return HealthResponse()
