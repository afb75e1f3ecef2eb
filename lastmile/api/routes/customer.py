"""
Customer endpoints
==================

GET  /api/v1/customer/delivery-types -- bookable service tiers
POST /api/v1/customer/quote          -- fare preview, no writes
POST /api/v1/customer/deliveries     -- book a delivery
GET  /api/v1/customer/deliveries     -- my deliveries, newest first
"""

from fastapi import APIRouter, Depends, Request

from lastmile.api.dependencies import get_customer_view
from lastmile.api.middleware import limiter
from lastmile.api.schemas import (
    BookingRequestBody,
    DeliveryResponse,
    DeliveryTypeResponse,
    ErrorResponse,
    QuoteResponse,
)
from lastmile.config import settings
from lastmile.services.lifecycle import BookingRequest
from lastmile.views.roles import CustomerView

router = APIRouter(prefix="/customer", tags=["customer"])


def _booking(body: BookingRequestBody) -> BookingRequest:
    return BookingRequest(**body.model_dump())


@router.get(
    "/delivery-types",
    response_model=list[DeliveryTypeResponse],
    summary="List bookable service tiers",
)
@limiter.limit(settings.rate_limit)
async def delivery_types(
    request: Request,
    view: CustomerView = Depends(get_customer_view),
):
    return await view.controller.service_tiers()


@router.post("/quote", response_model=QuoteResponse, summary="Preview the fare")
@limiter.limit(settings.rate_limit)
async def quote(
    request: Request,
    body: BookingRequestBody,
    view: CustomerView = Depends(get_customer_view),
):
    return QuoteResponse(fare_estimate=await view.quote(_booking(body)))


@router.post(
    "/deliveries",
    status_code=201,
    response_model=DeliveryResponse,
    summary="Book a delivery",
    responses={400: {"model": ErrorResponse}},
)
@limiter.limit(settings.rate_limit)
async def book(
    request: Request,
    body: BookingRequestBody,
    view: CustomerView = Depends(get_customer_view),
):
    return await view.book(_booking(body))


@router.get(
    "/deliveries",
    response_model=list[DeliveryResponse],
    summary="List my deliveries",
)
@limiter.limit(settings.rate_limit)
async def my_deliveries(
    request: Request,
    view: CustomerView = Depends(get_customer_view),
):
    return await view.deliveries()
