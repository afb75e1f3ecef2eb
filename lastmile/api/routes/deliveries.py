"""
Shared delivery / inbox endpoints (any signed-in role)
======================================================

GET  /api/v1/deliveries/{id}           -- one delivery, if visible to me
GET  /api/v1/deliveries/{id}/tracking  -- its tracking events, newest first
GET  /api/v1/notifications             -- my inbox
POST /api/v1/notifications/{id}/read   -- mark one as read
"""

from fastapi import APIRouter, Depends, Request

from lastmile.api.dependencies import Services, get_services, get_session
from lastmile.api.middleware import limiter
from lastmile.api.schemas import (
    DeliveryResponse,
    ErrorResponse,
    NotificationResponse,
    TrackingEventResponse,
)
from lastmile.config import settings
from lastmile.domain.entities import Session
from lastmile.views.roles import view_for

router = APIRouter(tags=["deliveries"])


@router.get(
    "/deliveries/{delivery_id}",
    response_model=DeliveryResponse,
    summary="Get one delivery",
    responses={403: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def get_delivery(
    request: Request,
    delivery_id: int,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await view_for(session, services.controller, services.feed).get(delivery_id)


@router.get(
    "/deliveries/{delivery_id}/tracking",
    response_model=list[TrackingEventResponse],
    summary="Tracking history of a delivery",
)
@limiter.limit(settings.rate_limit)
async def get_tracking(
    request: Request,
    delivery_id: int,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    view = view_for(session, services.controller, services.feed)
    return await view.tracking(delivery_id)


@router.get(
    "/notifications",
    response_model=list[NotificationResponse],
    summary="My notifications, newest first",
)
@limiter.limit(settings.rate_limit)
async def inbox(
    request: Request,
    unread_only: bool = False,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    return await services.notifications.inbox(session, unread_only)


@router.post(
    "/notifications/{notification_id}/read",
    status_code=204,
    summary="Mark a notification as read",
)
@limiter.limit(settings.rate_limit)
async def mark_read(
    request: Request,
    notification_id: int,
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
):
    await services.notifications.mark_read(session, notification_id)
