"""
Rider endpoints
===============

POST   /api/v1/rider/profile                   -- submit a rider application
GET    /api/v1/rider/profile                   -- my rider profile
PUT    /api/v1/rider/profile                   -- update vehicle / bank details
PATCH  /api/v1/rider/availability              -- go online / offline
PATCH  /api/v1/rider/position                  -- report current position
GET    /api/v1/rider/earnings                  -- today / week / month credits
GET    /api/v1/rider/deliveries/available      -- unclaimed pending deliveries
GET    /api/v1/rider/deliveries/active         -- my in-progress deliveries
GET    /api/v1/rider/deliveries/history        -- my delivered deliveries
POST   /api/v1/rider/deliveries/{id}/accept    -- claim a pending delivery
POST   /api/v1/rider/deliveries/{id}/advance   -- move to the next status
DELETE /api/v1/rider/deliveries/{id}           -- remove a finished delivery
"""

from fastapi import APIRouter, Depends, Request

from lastmile.api.dependencies import (
    Services,
    get_rider_view,
    get_services,
    get_session,
)
from lastmile.api.middleware import limiter
from lastmile.api.schemas import (
    AdvanceRequest,
    AvailabilityRequest,
    DeleteResponse,
    DeliveryResponse,
    EarningsResponse,
    ErrorResponse,
    PositionRequest,
    RiderDetailsRequest,
    RiderResponse,
)
from lastmile.config import settings
from lastmile.domain.entities import Session
from lastmile.services.riders import RiderDetails
from lastmile.views.roles import RiderView

router = APIRouter(prefix="/rider", tags=["rider"])

_CLAIM_ERRORS = {
    403: {"model": ErrorResponse, "description": "Rider not approved"},
    409: {"model": ErrorResponse, "description": "Lost the race or stale status"},
}


# ── Profile ───────────────────────────────────────────────────────────


@router.post(
    "/profile",
    status_code=201,
    response_model=RiderResponse,
    summary="Submit a rider application",
)
@limiter.limit(settings.rate_limit)
async def register(
    request: Request,
    body: RiderDetailsRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.riders.register(session, RiderDetails(**body.model_dump()))


@router.get("/profile", response_model=RiderResponse, summary="My rider profile")
@limiter.limit(settings.rate_limit)
async def profile(
    request: Request,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.riders.profile(session)


@router.put("/profile", response_model=RiderResponse, summary="Update rider details")
@limiter.limit(settings.rate_limit)
async def update_profile(
    request: Request,
    body: RiderDetailsRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.riders.update_details(
        session, RiderDetails(**body.model_dump())
    )


@router.patch("/availability", response_model=RiderResponse, summary="Go online / offline")
@limiter.limit(settings.rate_limit)
async def availability(
    request: Request,
    body: AvailabilityRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.riders.set_availability(session, body.is_available)


@router.patch("/position", response_model=RiderResponse, summary="Report position")
@limiter.limit(settings.rate_limit)
async def position(
    request: Request,
    body: PositionRequest,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.riders.update_position(session, body.lat, body.lng)


@router.get("/earnings", response_model=EarningsResponse, summary="Rider earnings")
@limiter.limit(settings.rate_limit)
async def earnings(
    request: Request,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    totals = await services.riders.earnings(session)
    return EarningsResponse(
        today=float(totals.today), week=float(totals.week), month=float(totals.month)
    )


# ── Deliveries ────────────────────────────────────────────────────────


@router.get(
    "/deliveries/available",
    response_model=list[DeliveryResponse],
    summary="Pending deliveries nobody has claimed",
)
@limiter.limit(settings.rate_limit)
async def available(request: Request, view: RiderView = Depends(get_rider_view)):
    return await view.available()


@router.get(
    "/deliveries/active",
    response_model=list[DeliveryResponse],
    summary="My assigned / picked up / in transit deliveries",
)
@limiter.limit(settings.rate_limit)
async def active(request: Request, view: RiderView = Depends(get_rider_view)):
    return await view.active()


@router.get(
    "/deliveries/history",
    response_model=list[DeliveryResponse],
    summary="My delivered deliveries",
)
@limiter.limit(settings.rate_limit)
async def history(request: Request, view: RiderView = Depends(get_rider_view)):
    return await view.history()


@router.post(
    "/deliveries/{delivery_id}/accept",
    response_model=DeliveryResponse,
    summary="Claim a pending delivery",
    responses=_CLAIM_ERRORS,
)
@limiter.limit(settings.rate_limit)
async def accept(
    request: Request,
    delivery_id: int,
    view: RiderView = Depends(get_rider_view),
):
    return await view.accept(delivery_id)


@router.post(
    "/deliveries/{delivery_id}/advance",
    response_model=DeliveryResponse,
    summary="Move a delivery to its next status",
    responses={**_CLAIM_ERRORS, 500: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def advance(
    request: Request,
    delivery_id: int,
    body: AdvanceRequest,
    view: RiderView = Depends(get_rider_view),
):
    return await view.advance(delivery_id, body.status)


@router.delete(
    "/deliveries/{delivery_id}",
    response_model=DeleteResponse,
    summary="Delete a delivered or cancelled delivery",
)
@limiter.limit(settings.rate_limit)
async def delete(
    request: Request,
    delivery_id: int,
    view: RiderView = Depends(get_rider_view),
):
    return DeleteResponse(tracking_events_removed=await view.delete(delivery_id))
