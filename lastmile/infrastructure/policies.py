"""
Row access policies, checked at the store boundary.

Every check runs against rows freshly loaded inside the operation's own
session, never against state the caller passed in, so a view cannot widen
its rights by sending a doctored delivery or rider.

    customer  create deliveries; read own deliveries and their tracking
    rider     read pending deliveries; mutate only deliveries assigned to
              them; delete own terminal deliveries
    admin     read and mutate everything
"""

from __future__ import annotations

from lastmile.domain.entities import Session
from lastmile.domain.enums import (
    TERMINAL_STATUSES,
    AccountStatus,
    ApprovalStatus,
    DeliveryStatus,
    UserRole,
)
from lastmile.domain.errors import AuthorizationError

from .models import DeliveryModel, ProfileModel, RiderModel


def require_active(profile: ProfileModel | None) -> ProfileModel:
    if profile is None:
        raise AuthorizationError("Unknown account")
    if AccountStatus(profile.status) == AccountStatus.SUSPENDED:
        raise AuthorizationError("Account is suspended")
    return profile


def require_session_matches(session: Session, profile: ProfileModel) -> None:
    """The stored role wins over whatever role the session claims."""
    if UserRole(profile.role) != session.role:
        raise AuthorizationError("Session role does not match the account")


def can_read_delivery(session: Session, delivery: DeliveryModel) -> bool:
    if session.role == UserRole.ADMIN:
        return True
    if session.role == UserRole.CUSTOMER:
        return delivery.customer_id == session.profile_id
    if session.role == UserRole.RIDER:
        return (
            DeliveryStatus(delivery.status) == DeliveryStatus.PENDING
            or (session.rider_id is not None and delivery.rider_id == session.rider_id)
        )
    return False


def check_read_delivery(session: Session, delivery: DeliveryModel) -> None:
    if not can_read_delivery(session, delivery):
        raise AuthorizationError("Not allowed to view this delivery")


def check_rider_may_work(rider: RiderModel | None) -> RiderModel:
    """Approved riders only; availability is checked by the claim itself."""
    if rider is None:
        raise AuthorizationError("No rider profile for this account")
    if ApprovalStatus(rider.approval_status) != ApprovalStatus.APPROVED:
        raise AuthorizationError(
            f"Rider approval is {ApprovalStatus(rider.approval_status).value}"
        )
    return rider


def check_assigned_rider(rider: RiderModel, delivery: DeliveryModel) -> None:
    if delivery.rider_id != rider.id:
        raise AuthorizationError("Delivery is not assigned to this rider")


def check_delete_delivery(session: Session, delivery: DeliveryModel) -> None:
    if session.role == UserRole.ADMIN:
        return
    if (
        session.role == UserRole.RIDER
        and session.rider_id is not None
        and delivery.rider_id == session.rider_id
        and DeliveryStatus(delivery.status) in TERMINAL_STATUSES
    ):
        return
    raise AuthorizationError("Not allowed to delete this delivery")
