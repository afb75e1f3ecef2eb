"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Status changes on ``deliveries`` are
conditional ``UPDATE ... WHERE`` statements evaluated atomically by the
database; each returns ``True`` only if it matched the row, so a lost race
shows up as ``False`` rather than a silent overwrite.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    AuthIdentityModel,
    DeliveryModel,
    DeliveryTypeModel,
    NotificationModel,
    ProfileModel,
    RiderModel,
    TrackingEventModel,
    TransactionModel,
    WalletModel,
)
from lastmile.domain.enums import (
    CANCELLABLE_STATUSES,
    REASSIGNABLE_STATUSES,
    AccountStatus,
    ApprovalStatus,
    DeliveryStatus,
    NotificationType,
    PaymentStatus,
    TransactionStatus,
    TransactionType,
    UserRole,
)


class DeliveryRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, delivery: DeliveryModel) -> DeliveryModel:
        self.session.add(delivery)
        await self.session.flush()
        return delivery

    async def get_by_id(self, delivery_id: int) -> Optional[DeliveryModel]:
        return await self.session.get(
            DeliveryModel, delivery_id, populate_existing=True
        )

    async def get_by_tracking_number(self, code: str) -> Optional[DeliveryModel]:
        result = await self.session.execute(
            select(DeliveryModel).where(DeliveryModel.tracking_number == code)
        )
        return result.scalar_one_or_none()

    async def tracking_number_exists(self, code: str) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(DeliveryModel)
            .where(DeliveryModel.tracking_number == code)
        )
        return bool(result.scalar())

    async def list_for_customer(self, customer_id: int) -> list[DeliveryModel]:
        result = await self.session.execute(
            select(DeliveryModel)
            .where(DeliveryModel.customer_id == customer_id)
            .order_by(DeliveryModel.created_at.desc(), DeliveryModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_rider(
        self,
        rider_id: int,
        statuses: Optional[Iterable[DeliveryStatus]] = None,
    ) -> list[DeliveryModel]:
        query = select(DeliveryModel).where(DeliveryModel.rider_id == rider_id)
        if statuses is not None:
            query = query.where(DeliveryModel.status.in_(list(statuses)))
        result = await self.session.execute(
            query.order_by(DeliveryModel.updated_at.desc(), DeliveryModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_pending(self) -> list[DeliveryModel]:
        result = await self.session.execute(
            select(DeliveryModel)
            .where(DeliveryModel.status == DeliveryStatus.PENDING)
            .order_by(DeliveryModel.created_at.desc(), DeliveryModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_all(
        self, status: Optional[DeliveryStatus] = None
    ) -> list[DeliveryModel]:
        query = select(DeliveryModel)
        if status is not None:
            query = query.where(DeliveryModel.status == status)
        result = await self.session.execute(
            query.order_by(DeliveryModel.created_at.desc(), DeliveryModel.id.desc())
        )
        return list(result.scalars().all())

    async def list_delivered(
        self, rider_id: Optional[int] = None
    ) -> list[DeliveryModel]:
        query = select(DeliveryModel).where(
            DeliveryModel.status == DeliveryStatus.DELIVERED
        )
        if rider_id is not None:
            query = query.where(DeliveryModel.rider_id == rider_id)
        result = await self.session.execute(
            query.order_by(DeliveryModel.completed_at.desc(), DeliveryModel.id.desc())
        )
        return list(result.scalars().all())

    async def recent(self, limit: int = 5) -> list[DeliveryModel]:
        result = await self.session.execute(
            select(DeliveryModel)
            .order_by(DeliveryModel.created_at.desc(), DeliveryModel.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def count_created_since(self, since: datetime) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(DeliveryModel)
            .where(DeliveryModel.created_at >= since)
        )
        return result.scalar() or 0

    async def top_customers(self, limit: int = 5) -> list[tuple[int, str, int]]:
        """(customer_id, full_name, delivered_count), busiest first."""
        delivered = func.count(DeliveryModel.id).label("delivered")
        result = await self.session.execute(
            select(DeliveryModel.customer_id, ProfileModel.full_name, delivered)
            .join(ProfileModel, ProfileModel.id == DeliveryModel.customer_id)
            .where(DeliveryModel.status == DeliveryStatus.DELIVERED)
            .group_by(DeliveryModel.customer_id, ProfileModel.full_name)
            .order_by(delivered.desc(), DeliveryModel.customer_id)
            .limit(limit)
        )
        return [tuple(row) for row in result.all()]

    # ── Conditional status writes ─────────────────────────────────

    async def _conditional_update(self, delivery_id: int, *criteria, **values) -> bool:
        result = await self.session.execute(
            update(DeliveryModel)
            .where(DeliveryModel.id == delivery_id, *criteria)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def claim_pending(self, delivery_id: int, rider_id: int) -> bool:
        """Attach *rider_id* only if nobody has claimed the delivery yet."""
        return await self._conditional_update(
            delivery_id,
            DeliveryModel.status == DeliveryStatus.PENDING,
            DeliveryModel.rider_id.is_(None),
            rider_id=rider_id,
            status=DeliveryStatus.ASSIGNED,
        )

    async def reassign(
        self, delivery_id: int, from_rider_id: int, to_rider_id: int
    ) -> bool:
        return await self._conditional_update(
            delivery_id,
            DeliveryModel.status.in_(list(REASSIGNABLE_STATUSES)),
            DeliveryModel.rider_id == from_rider_id,
            rider_id=to_rider_id,
            status=DeliveryStatus.ASSIGNED,
        )

    async def advance(
        self,
        delivery_id: int,
        rider_id: int,
        expected: DeliveryStatus,
        new_status: DeliveryStatus,
    ) -> bool:
        return await self._conditional_update(
            delivery_id,
            DeliveryModel.status == expected,
            DeliveryModel.rider_id == rider_id,
            status=new_status,
        )

    async def complete(
        self, delivery_id: int, rider_id: int, completed_at: datetime
    ) -> bool:
        """in_transit -> delivered, freezing the fare."""
        return await self._conditional_update(
            delivery_id,
            DeliveryModel.status == DeliveryStatus.IN_TRANSIT,
            DeliveryModel.rider_id == rider_id,
            status=DeliveryStatus.DELIVERED,
            completed_at=completed_at,
            final_fare=DeliveryModel.fare_estimate,
            payment_status=PaymentStatus.COMPLETED,
        )

    async def cancel(self, delivery_id: int, expected: DeliveryStatus) -> bool:
        if expected not in CANCELLABLE_STATUSES:
            return False
        return await self._conditional_update(
            delivery_id,
            DeliveryModel.status == expected,
            status=DeliveryStatus.CANCELLED,
            rider_id=None,
        )

    async def delete(self, delivery_id: int) -> int:
        """Delete the row; fails at the store if tracking events remain."""
        result = await self.session.execute(
            delete(DeliveryModel).where(DeliveryModel.id == delivery_id)
        )
        return result.rowcount


class TrackingEventRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(
        self, delivery_id: int, lat: float, lng: float, message: str
    ) -> TrackingEventModel:
        event = TrackingEventModel(
            delivery_id=delivery_id,
            rider_lat=lat,
            rider_lng=lng,
            status_update=message,
        )
        self.session.add(event)
        await self.session.flush()
        return event

    async def list_for_delivery(self, delivery_id: int) -> list[TrackingEventModel]:
        """Newest first."""
        result = await self.session.execute(
            select(TrackingEventModel)
            .where(TrackingEventModel.delivery_id == delivery_id)
            .order_by(TrackingEventModel.timestamp.desc(), TrackingEventModel.id.desc())
        )
        return list(result.scalars().all())

    async def count_for_delivery(self, delivery_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(TrackingEventModel)
            .where(TrackingEventModel.delivery_id == delivery_id)
        )
        return result.scalar() or 0

    async def delete_for_delivery(self, delivery_id: int) -> int:
        result = await self.session.execute(
            delete(TrackingEventModel).where(
                TrackingEventModel.delivery_id == delivery_id
            )
        )
        return result.rowcount


class TransactionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def record(
        self,
        *,
        user_id: int,
        delivery_id: Optional[int],
        type: TransactionType,
        amount: Decimal,
        description: str,
        status: TransactionStatus = TransactionStatus.COMPLETED,
    ) -> TransactionModel:
        entry = TransactionModel(
            user_id=user_id,
            delivery_id=delivery_id,
            type=type,
            amount=amount,
            description=description,
            status=status,
        )
        self.session.add(entry)
        await self.session.flush()
        return entry

    async def list_for_delivery(self, delivery_id: int) -> list[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.delivery_id == delivery_id)
            .order_by(TransactionModel.id)
        )
        return list(result.scalars().all())

    async def list_for_user(self, user_id: int) -> list[TransactionModel]:
        result = await self.session.execute(
            select(TransactionModel)
            .where(TransactionModel.user_id == user_id)
            .order_by(TransactionModel.created_at.desc(), TransactionModel.id.desc())
        )
        return list(result.scalars().all())

    async def total(
        self,
        type: TransactionType,
        since: datetime,
        user_id: Optional[int] = None,
    ) -> Decimal:
        query = select(func.coalesce(func.sum(TransactionModel.amount), 0)).where(
            TransactionModel.type == type,
            TransactionModel.created_at >= since,
        )
        if user_id is not None:
            query = query.where(TransactionModel.user_id == user_id)
        result = await self.session.execute(query)
        return Decimal(str(result.scalar() or 0))


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def push(
        self,
        user_id: int,
        title: str,
        message: str,
        type: NotificationType = NotificationType.DELIVERY,
    ) -> NotificationModel:
        note = NotificationModel(
            user_id=user_id, title=title, message=message, type=type
        )
        self.session.add(note)
        await self.session.flush()
        return note

    async def list_for_user(
        self, user_id: int, unread_only: bool = False
    ) -> list[NotificationModel]:
        query = select(NotificationModel).where(NotificationModel.user_id == user_id)
        if unread_only:
            query = query.where(NotificationModel.is_read.is_(False))
        result = await self.session.execute(
            query.order_by(NotificationModel.created_at.desc(), NotificationModel.id.desc())
        )
        return list(result.scalars().all())

    async def mark_read(self, notification_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            update(NotificationModel)
            .where(
                NotificationModel.id == notification_id,
                NotificationModel.user_id == user_id,
            )
            .values(is_read=True)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class RiderRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, rider: RiderModel) -> RiderModel:
        self.session.add(rider)
        await self.session.flush()
        return rider

    async def get_by_id(self, rider_id: int) -> Optional[RiderModel]:
        return await self.session.get(RiderModel, rider_id, populate_existing=True)

    async def get_by_user_id(self, user_id: int) -> Optional[RiderModel]:
        result = await self.session.execute(
            select(RiderModel).where(RiderModel.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def find(
        self, approval: Optional[ApprovalStatus] = None
    ) -> list[RiderModel]:
        query = select(RiderModel)
        if approval is not None:
            query = query.where(RiderModel.approval_status == approval)
        result = await self.session.execute(
            query.order_by(RiderModel.created_at.desc(), RiderModel.id.desc())
        )
        return list(result.scalars().all())

    async def increment_completed(self, rider_id: int) -> bool:
        result = await self.session.execute(
            update(RiderModel)
            .where(RiderModel.id == rider_id)
            .values(total_deliveries=RiderModel.total_deliveries + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def decide(self, rider_id: int, decision: ApprovalStatus) -> bool:
        """pending -> approved | rejected, once."""
        result = await self.session.execute(
            update(RiderModel)
            .where(
                RiderModel.id == rider_id,
                RiderModel.approval_status == ApprovalStatus.PENDING,
            )
            .values(approval_status=decision)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class ProfileRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_identity(
        self, email: str, password_hash: str
    ) -> AuthIdentityModel:
        identity = AuthIdentityModel(email=email, password_hash=password_hash)
        self.session.add(identity)
        await self.session.flush()
        return identity

    async def get_identity_by_email(self, email: str) -> Optional[AuthIdentityModel]:
        result = await self.session.execute(
            select(AuthIdentityModel).where(AuthIdentityModel.email == email)
        )
        return result.scalar_one_or_none()

    async def create(self, profile: ProfileModel) -> ProfileModel:
        self.session.add(profile)
        await self.session.flush()
        return profile

    async def create_wallet(self, user_id: int) -> WalletModel:
        wallet = WalletModel(user_id=user_id, balance=0)
        self.session.add(wallet)
        await self.session.flush()
        return wallet

    async def get_by_id(self, profile_id: int) -> Optional[ProfileModel]:
        return await self.session.get(ProfileModel, profile_id, populate_existing=True)

    async def get_by_email(self, email: str) -> Optional[ProfileModel]:
        result = await self.session.execute(
            select(ProfileModel).where(ProfileModel.email == email)
        )
        return result.scalar_one_or_none()

    async def find(self, role: Optional[UserRole] = None) -> list[ProfileModel]:
        query = select(ProfileModel)
        if role is not None:
            query = query.where(ProfileModel.role == role)
        result = await self.session.execute(
            query.order_by(ProfileModel.created_at.desc(), ProfileModel.id.desc())
        )
        return list(result.scalars().all())

    async def set_status(self, profile_id: int, status: AccountStatus) -> bool:
        result = await self.session.execute(
            update(ProfileModel)
            .where(ProfileModel.id == profile_id)
            .values(status=status)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def promote_to_admin(self, email: str) -> bool:
        result = await self.session.execute(
            update(ProfileModel)
            .where(ProfileModel.email == email)
            .values(role=UserRole.ADMIN, status=AccountStatus.ACTIVE)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class DeliveryTypeRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, type_id: int) -> Optional[DeliveryTypeModel]:
        return await self.session.get(DeliveryTypeModel, type_id)

    async def list_active(self) -> list[DeliveryTypeModel]:
        result = await self.session.execute(
            select(DeliveryTypeModel)
            .where(DeliveryTypeModel.is_active.is_(True))
            .order_by(DeliveryTypeModel.base_price)
        )
        return list(result.scalars().all())
