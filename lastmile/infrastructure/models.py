"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``auth_identities`` -- login credentials (email + bcrypt hash)
* ``profiles``        -- one per identity; role, account status, contact
* ``wallets``         -- customer wallet, created at signup
* ``riders``          -- rider extension of a profile
* ``delivery_types``  -- priced service tiers
* ``deliveries``      -- the aggregate root
* ``tracking_events`` -- append-only log per delivery
* ``transactions``    -- append-only ledger
* ``notifications``   -- per-user messages

Constraints
-----------
* ``tracking_events.delivery_id`` references ``deliveries`` with no cascade:
  a delivery can only be deleted after its events are removed.
* ``transactions.delivery_id`` is a plain indexed column so ledger rows are
  never touched when a delivery is deleted.

Indexes
-------
* **B-Tree** on ``status``, ``customer_id``, ``rider_id`` and the unique
  ``tracking_number`` for the role-scoped queries and the public lookup.
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
)

from .database import Base
from lastmile.domain.enums import (
    AccountStatus,
    ApprovalStatus,
    DeliveryStatus,
    NotificationType,
    PackageWeight,
    PaymentMethod,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
    UserRole,
    VehicleType,
)


def _enum(enum_cls):
    """Persist enum *values* (lower-case) rather than member names."""
    return Enum(
        enum_cls,
        name=enum_cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )


class AuthIdentityModel(Base):
    __tablename__ = "auth_identities"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class ProfileModel(Base):
    __tablename__ = "profiles"

    id = Column(Integer, ForeignKey("auth_identities.id"), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(120), nullable=False)
    phone = Column(String(32), nullable=True)
    role = Column(_enum(UserRole), nullable=False)
    status = Column(_enum(AccountStatus), default=AccountStatus.ACTIVE, nullable=False)
    avatar_url = Column(String(512), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (Index("idx_profiles_role", "role"),)


class WalletModel(Base):
    __tablename__ = "wallets"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), unique=True, nullable=False)
    balance = Column(Numeric(12, 2), default=0, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RiderModel(Base):
    __tablename__ = "riders"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), unique=True, nullable=False)
    vehicle_type = Column(_enum(VehicleType), default=VehicleType.BIKE, nullable=False)
    vehicle_number = Column(String(32), nullable=False)
    driver_license = Column(String(64), nullable=False)
    bank_account = Column(String(64), nullable=True)
    is_available = Column(Boolean, default=False, nullable=False)
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    rating = Column(Float, default=5.0, nullable=False)
    total_deliveries = Column(Integer, default=0, nullable=False)
    approval_status = Column(
        _enum(ApprovalStatus), default=ApprovalStatus.PENDING, nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_riders_approval", "approval_status"),
        Index("idx_riders_available", "is_available"),
    )


class DeliveryTypeModel(Base):
    __tablename__ = "delivery_types"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(60), nullable=False)
    description = Column(String(255), nullable=True)
    base_price = Column(Integer, nullable=False)
    estimated_hours = Column(Integer, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)


class DeliveryModel(Base):
    __tablename__ = "deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    customer_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    rider_id = Column(Integer, ForeignKey("riders.id"), nullable=True)
    delivery_type_id = Column(Integer, ForeignKey("delivery_types.id"), nullable=True)
    tracking_number = Column(String(32), unique=True, nullable=False)

    pickup_address = Column(String(255), nullable=False)
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_address = Column(String(255), nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    package_details = Column(String(255), nullable=False)
    package_weight = Column(_enum(PackageWeight), nullable=False)
    recipient_name = Column(String(120), nullable=False)
    recipient_phone = Column(String(32), nullable=False)

    fare_estimate = Column(Integer, nullable=False)
    final_fare = Column(Integer, nullable=True)
    payment_method = Column(
        _enum(PaymentMethod), default=PaymentMethod.CASH, nullable=False
    )
    payment_status = Column(
        _enum(PaymentStatus), default=PaymentStatus.PENDING, nullable=False
    )
    status = Column(
        _enum(DeliveryStatus), default=DeliveryStatus.PENDING, nullable=False
    )
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("idx_deliveries_status", "status"),
        Index("idx_deliveries_customer", "customer_id"),
        Index("idx_deliveries_rider", "rider_id"),
        Index("idx_deliveries_created", "created_at"),
    )


class TrackingEventModel(Base):
    __tablename__ = "tracking_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    delivery_id = Column(Integer, ForeignKey("deliveries.id"), nullable=False)
    rider_lat = Column(Float, nullable=False)
    rider_lng = Column(Float, nullable=False)
    status_update = Column(String(255), nullable=False)
    timestamp = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_tracking_delivery", "delivery_id"),)


class TransactionModel(Base):
    __tablename__ = "transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    delivery_id = Column(Integer, nullable=True)
    type = Column(_enum(TransactionType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    description = Column(String(255), nullable=False)
    status = Column(
        _enum(TransactionStatus), default=TransactionStatus.COMPLETED, nullable=False
    )
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index("idx_transactions_user", "user_id"),
        Index("idx_transactions_delivery", "delivery_id"),
        Index("idx_transactions_type_created", "type", "created_at"),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("profiles.id"), nullable=False)
    title = Column(String(120), nullable=False)
    message = Column(String(500), nullable=False)
    type = Column(
        _enum(NotificationType), default=NotificationType.DELIVERY, nullable=False
    )
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_notifications_user", "user_id"),)
