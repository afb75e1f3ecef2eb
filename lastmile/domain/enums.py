"""Domain enumerations and state-transition rules."""

import enum


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    RIDER = "rider"
    ADMIN = "admin"


class AccountStatus(str, enum.Enum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    PENDING = "pending"


class ApprovalStatus(str, enum.Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VehicleType(str, enum.Enum):
    BIKE = "bike"
    CAR = "car"
    VAN = "van"
    TRUCK = "truck"


class PackageWeight(str, enum.Enum):
    LIGHT = "light"
    MEDIUM = "medium"
    HEAVY = "heavy"


class PaymentMethod(str, enum.Enum):
    CARD = "card"
    TRANSFER = "transfer"
    WALLET = "wallet"
    CASH = "cash"


class PaymentStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class TransactionType(str, enum.Enum):
    DEBIT = "debit"
    CREDIT = "credit"


class TransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationType(str, enum.Enum):
    DELIVERY = "delivery"
    ACCOUNT = "account"
    SYSTEM = "system"


class ChangeType(str, enum.Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE = "delete"


# State machine: maps current status -> set of valid next statuses.
# ASSIGNED appearing in the picked_up / in_transit rows (and as a self-loop)
# is the admin reassignment edge.
DELIVERY_TRANSITIONS: dict[DeliveryStatus, set[DeliveryStatus]] = {
    DeliveryStatus.PENDING: {DeliveryStatus.ASSIGNED, DeliveryStatus.CANCELLED},
    DeliveryStatus.ASSIGNED: {
        DeliveryStatus.PICKED_UP,
        DeliveryStatus.CANCELLED,
        DeliveryStatus.ASSIGNED,
    },
    DeliveryStatus.PICKED_UP: {DeliveryStatus.IN_TRANSIT, DeliveryStatus.ASSIGNED},
    DeliveryStatus.IN_TRANSIT: {DeliveryStatus.DELIVERED, DeliveryStatus.ASSIGNED},
    DeliveryStatus.DELIVERED: set(),
    DeliveryStatus.CANCELLED: set(),
}

# One-step rider progression with the message recorded on each step.
RIDER_PROGRESSION: dict[DeliveryStatus, tuple[DeliveryStatus, str]] = {
    DeliveryStatus.ASSIGNED: (
        DeliveryStatus.PICKED_UP,
        "Your package has been picked up and is on the way",
    ),
    DeliveryStatus.PICKED_UP: (
        DeliveryStatus.IN_TRANSIT,
        "Your package is now in transit to the destination",
    ),
    DeliveryStatus.IN_TRANSIT: (
        DeliveryStatus.DELIVERED,
        "Your package has been successfully delivered",
    ),
}

TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})
UNASSIGNED_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.CANCELLED})
REASSIGNABLE_STATUSES = frozenset(
    {DeliveryStatus.ASSIGNED, DeliveryStatus.PICKED_UP, DeliveryStatus.IN_TRANSIT}
)
CANCELLABLE_STATUSES = frozenset({DeliveryStatus.PENDING, DeliveryStatus.ASSIGNED})

# Approval is a one-shot admin decision.
APPROVAL_TRANSITIONS: dict[ApprovalStatus, set[ApprovalStatus]] = {
    ApprovalStatus.PENDING: {ApprovalStatus.APPROVED, ApprovalStatus.REJECTED},
    ApprovalStatus.APPROVED: set(),
    ApprovalStatus.REJECTED: set(),
}
