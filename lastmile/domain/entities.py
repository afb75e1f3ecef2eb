"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Delivery``: enforces valid lifecycle transitions
  (PENDING -> ASSIGNED -> PICKED_UP -> IN_TRANSIT -> DELIVERED | CANCELLED).
- ``Rider.decide`` keeps the approval decision one-shot.
- ``Session`` is the explicit "who is acting" context passed to every
  controller call instead of a process-wide current user.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from .enums import (
    APPROVAL_TRANSITIONS,
    DELIVERY_TRANSITIONS,
    RIDER_PROGRESSION,
    UNASSIGNED_STATUSES,
    ApprovalStatus,
    DeliveryStatus,
    PackageWeight,
    UserRole,
)
from .errors import AuthorizationError, InvalidStateTransition


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Delivery:
    id: Optional[int] = None
    customer_id: int = 0
    rider_id: Optional[int] = None
    tracking_number: str = ""
    pickup: Location = field(default_factory=lambda: Location(0, 0))
    dropoff: Location = field(default_factory=lambda: Location(0, 0))
    package_weight: PackageWeight = PackageWeight.LIGHT
    status: DeliveryStatus = DeliveryStatus.PENDING
    fare_estimate: int = 0
    final_fare: Optional[int] = None
    completed_at: Optional[datetime] = None

    def transition_to(self, new_status: DeliveryStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        allowed = DELIVERY_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition from {self.status.value} to {new_status.value}"
            )
        self.status = new_status

    def next_status(self) -> DeliveryStatus:
        """The single step a rider may take from the current status."""
        step = RIDER_PROGRESSION.get(self.status)
        if step is None:
            raise InvalidStateTransition(
                f"No rider step available from {self.status.value}"
            )
        return step[0]

    def check_invariants(self) -> None:
        unassigned = self.status in UNASSIGNED_STATUSES
        if unassigned and self.rider_id is not None:
            raise InvalidStateTransition(
                f"A {self.status.value} delivery cannot have a rider"
            )
        if not unassigned and self.rider_id is None:
            raise InvalidStateTransition(
                f"A {self.status.value} delivery must have a rider"
            )
        delivered = self.status == DeliveryStatus.DELIVERED
        if not delivered and (
            self.final_fare is not None or self.completed_at is not None
        ):
            raise InvalidStateTransition(
                "final_fare / completed_at are only set on delivered deliveries"
            )
        if delivered and (self.final_fare is None or self.completed_at is None):
            raise InvalidStateTransition(
                "A delivered delivery must carry final_fare and completed_at"
            )


@dataclass
class Rider:
    id: Optional[int] = None
    user_id: int = 0
    approval_status: ApprovalStatus = ApprovalStatus.PENDING
    is_available: bool = False
    position: Optional[Location] = None
    total_deliveries: int = 0

    def can_take_work(self) -> bool:
        return self.approval_status == ApprovalStatus.APPROVED and self.is_available

    def decide(self, decision: ApprovalStatus) -> None:
        allowed = APPROVAL_TRANSITIONS.get(self.approval_status, set())
        if decision not in allowed:
            raise InvalidStateTransition(
                f"Rider approval is already {self.approval_status.value}"
            )
        self.approval_status = decision


@dataclass(frozen=True)
class Session:
    """The authenticated actor behind one request or connection."""

    profile_id: int
    role: UserRole
    rider_id: Optional[int] = None

    def require(self, *roles: UserRole) -> None:
        if self.role not in roles:
            raise AuthorizationError(
                f"Role {self.role.value} may not perform this action"
            )
