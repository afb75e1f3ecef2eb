"""
Public tracking
===============

GET /api/v1/track/{tracking_number} -- status and history, no sign-in
"""

from fastapi import APIRouter, Depends, Request

from lastmile.api.dependencies import Services, get_services
from lastmile.api.middleware import limiter
from lastmile.api.schemas import (
    ErrorResponse,
    PublicTrackingResponse,
    TrackingEventResponse,
)
from lastmile.config import settings

router = APIRouter(prefix="/track", tags=["public"])


@router.get(
    "/{tracking_number}",
    response_model=PublicTrackingResponse,
    summary="Track a delivery by its tracking number",
    responses={404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def track(
    request: Request,
    tracking_number: str,
    services: Services = Depends(get_services),
):
    result = await services.controller.track_public(tracking_number)
    d = result.delivery
    return PublicTrackingResponse(
        tracking_number=d.tracking_number,
        status=d.status,
        pickup_address=d.pickup_address,
        dropoff_address=d.dropoff_address,
        recipient_name=d.recipient_name,
        created_at=d.created_at,
        completed_at=d.completed_at,
        rider_name=result.rider_name,
        vehicle_type=result.vehicle_type,
        delivery_type=result.delivery_type,
        events=[TrackingEventResponse.model_validate(e) for e in result.events],
    )
