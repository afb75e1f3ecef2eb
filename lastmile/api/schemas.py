"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from lastmile.domain.enums import (
    AccountStatus,
    ApprovalStatus,
    DeliveryStatus,
    NotificationType,
    PackageWeight,
    PaymentMethod,
    PaymentStatus,
    UserRole,
    VehicleType,
)


# ── Requests ──────────────────────────────────────────────────────────


class SignupRequestBody(BaseModel):
    email: str = Field(..., min_length=3, max_length=255)
    password: str = Field(..., min_length=6)
    full_name: str = Field(..., min_length=1, max_length=120)
    phone: str = Field(..., min_length=1)
    role: UserRole


class BookingRequestBody(BaseModel):
    pickup_address: str = Field(..., min_length=1)
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_address: str = Field(..., min_length=1)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    package_details: str = Field(..., min_length=1)
    package_weight: PackageWeight = PackageWeight.LIGHT
    recipient_name: str = Field(..., min_length=1)
    recipient_phone: str = Field(..., min_length=1)
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = Field(None, max_length=1000)
    delivery_type_id: Optional[int] = None


class AssignRequest(BaseModel):
    rider_id: int


class AdvanceRequest(BaseModel):
    status: DeliveryStatus = Field(
        ...,
        description="The next status; a repeated request is rejected.",
    )


class RiderDetailsRequest(BaseModel):
    vehicle_type: VehicleType
    vehicle_number: str = Field(..., min_length=1, max_length=32)
    driver_license: str = Field(..., min_length=1, max_length=64)
    bank_account: Optional[str] = Field(None, max_length=64)


class AvailabilityRequest(BaseModel):
    is_available: bool


class PositionRequest(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)


class DecisionRequest(BaseModel):
    approval_status: ApprovalStatus


class AccountStatusRequest(BaseModel):
    status: AccountStatus


# ── Responses ─────────────────────────────────────────────────────────


class ProfileResponse(BaseModel):
    id: int
    email: str
    full_name: str
    phone: Optional[str] = None
    role: UserRole
    status: AccountStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class SignupResponse(BaseModel):
    success: bool = True
    message: str
    profile: ProfileResponse


class PromotionResponse(BaseModel):
    success: bool = True
    message: str
    user: ProfileResponse


class RiderResponse(BaseModel):
    id: int
    user_id: int
    vehicle_type: VehicleType
    vehicle_number: str
    driver_license: str
    bank_account: Optional[str] = None
    is_available: bool
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    rating: float
    total_deliveries: int
    approval_status: ApprovalStatus
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class DeliveryTypeResponse(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    base_price: int
    estimated_hours: int

    model_config = {"from_attributes": True}


class DeliveryResponse(BaseModel):
    id: int
    customer_id: int
    rider_id: Optional[int] = None
    delivery_type_id: Optional[int] = None
    tracking_number: str
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    dropoff_address: str
    dropoff_lat: float
    dropoff_lng: float
    package_details: str
    package_weight: PackageWeight
    recipient_name: str
    recipient_phone: str
    fare_estimate: int
    final_fare: Optional[int] = None
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    status: DeliveryStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class TrackingEventResponse(BaseModel):
    id: int
    delivery_id: int
    rider_lat: float
    rider_lng: float
    status_update: str
    timestamp: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PublicTrackingResponse(BaseModel):
    tracking_number: str
    status: DeliveryStatus
    pickup_address: str
    dropoff_address: str
    recipient_name: str
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    rider_name: Optional[str] = None
    vehicle_type: Optional[str] = None
    delivery_type: Optional[str] = None
    events: list[TrackingEventResponse] = []


class QuoteResponse(BaseModel):
    fare_estimate: int


class NotificationResponse(BaseModel):
    id: int
    title: str
    message: str
    type: NotificationType
    is_read: bool
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class EarningsResponse(BaseModel):
    today: float
    week: float
    month: float


class TopCustomer(BaseModel):
    customer_id: int
    name: str
    deliveries: int


class AnalyticsResponse(BaseModel):
    deliveries_today: int
    deliveries_week: int
    deliveries_month: int
    revenue_today: float
    revenue_week: float
    revenue_month: float
    top_customers: list[TopCustomer] = []
    recent_deliveries: list[DeliveryResponse] = []


class DeleteResponse(BaseModel):
    deleted: bool = True
    tracking_events_removed: int


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    retryable: bool = False
    failed_steps: list[str] = []
