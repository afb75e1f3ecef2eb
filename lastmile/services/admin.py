"""Admin oversight: rider approval, account status, listings and analytics."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lastmile.domain.entities import Rider, Session
from lastmile.domain.enums import (
    AccountStatus,
    ApprovalStatus,
    ChangeType,
    NotificationType,
    TransactionType,
    UserRole,
)
from lastmile.domain.errors import ConflictError, NotFoundError, ValidationError
from lastmile.infrastructure.change_feed import ChangeEvent, ChangeFeed, snapshot
from lastmile.infrastructure.models import DeliveryModel, ProfileModel, RiderModel
from lastmile.infrastructure.repositories import (
    DeliveryRepository,
    NotificationRepository,
    ProfileRepository,
    RiderRepository,
    TransactionRepository,
)

from .lifecycle import DeliveryController
from .riders import earning_windows

logger = logging.getLogger(__name__)

# Profile status that follows each approval decision.
DECISION_ACCOUNT_STATUS = {
    ApprovalStatus.APPROVED: AccountStatus.ACTIVE,
    ApprovalStatus.REJECTED: AccountStatus.SUSPENDED,
}


@dataclass
class Analytics:
    deliveries_today: int = 0
    deliveries_week: int = 0
    deliveries_month: int = 0
    revenue_today: Decimal = Decimal(0)
    revenue_week: Decimal = Decimal(0)
    revenue_month: Decimal = Decimal(0)
    top_customers: list[dict] = field(default_factory=list)
    recent_deliveries: list[DeliveryModel] = field(default_factory=list)


class AdminService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        controller: DeliveryController,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self.controller = controller

    async def _admin(self, db: AsyncSession, session: Session) -> Session:
        actor = await self.controller.authenticate(db, session)
        actor.require(UserRole.ADMIN)
        return actor

    async def _publish(self, *events: ChangeEvent) -> None:
        for event in events:
            try:
                await self.feed.publish(event)
            except Exception:
                logger.exception("Failed to publish %s change", event.table)

    async def list_riders(
        self, session: Session, approval: Optional[ApprovalStatus] = None
    ) -> list[RiderModel]:
        async with self.session_factory() as db:
            await self._admin(db, session)
            return await RiderRepository(db).find(approval)

    async def list_profiles(
        self, session: Session, role: Optional[UserRole] = None
    ) -> list[ProfileModel]:
        async with self.session_factory() as db:
            await self._admin(db, session)
            return await ProfileRepository(db).find(role)

    async def decide_rider(
        self, session: Session, rider_id: int, decision: ApprovalStatus
    ) -> RiderModel:
        """Approve or reject a pending rider application (one-shot)."""
        decision = ApprovalStatus(decision)
        if decision == ApprovalStatus.PENDING:
            raise ValidationError("Decision must be approved or rejected")
        async with self.session_factory() as db:
            actor = await self._admin(db, session)
            riders = RiderRepository(db)
            rider = await riders.get_by_id(rider_id)
            if rider is None:
                raise NotFoundError(f"Rider {rider_id} not found")
            Rider(
                id=rider.id,
                user_id=rider.user_id,
                approval_status=ApprovalStatus(rider.approval_status),
            ).decide(decision)
            if not await riders.decide(rider_id, decision):
                await db.rollback()
                raise ConflictError("Rider application was decided concurrently")
            profiles = ProfileRepository(db)
            await profiles.set_status(rider.user_id, DECISION_ACCOUNT_STATUS[decision])
            note = await NotificationRepository(db).push(
                rider.user_id,
                "Rider Application",
                f"Your rider application has been {decision.value}",
                NotificationType.ACCOUNT,
            )
            rider = await riders.get_by_id(rider_id)
            profile = await profiles.get_by_id(rider.user_id)
            await db.commit()

        logger.info(
            "Rider %s %s by admin %s", rider_id, decision.value, actor.profile_id
        )
        await self._publish(
            ChangeEvent("riders", ChangeType.UPDATE, snapshot(rider)),
            ChangeEvent("profiles", ChangeType.UPDATE, snapshot(profile)),
            ChangeEvent("notifications", ChangeType.INSERT, snapshot(note)),
        )
        return rider

    async def set_account_status(
        self, session: Session, profile_id: int, status: AccountStatus
    ) -> ProfileModel:
        status = AccountStatus(status)
        async with self.session_factory() as db:
            actor = await self._admin(db, session)
            if profile_id == actor.profile_id:
                raise ValidationError("Admins cannot change their own account status")
            profiles = ProfileRepository(db)
            if not await profiles.set_status(profile_id, status):
                raise NotFoundError(f"Profile {profile_id} not found")
            profile = await profiles.get_by_id(profile_id)
            await db.commit()

        logger.info("Profile %s set to %s", profile_id, status.value)
        await self._publish(ChangeEvent("profiles", ChangeType.UPDATE, snapshot(profile)))
        return profile

    async def analytics(
        self, session: Session, now: Optional[datetime] = None
    ) -> Analytics:
        today, week, month = earning_windows(now or datetime.now(timezone.utc))
        async with self.session_factory() as db:
            await self._admin(db, session)
            deliveries = DeliveryRepository(db)
            ledger = TransactionRepository(db)
            return Analytics(
                deliveries_today=await deliveries.count_created_since(today),
                deliveries_week=await deliveries.count_created_since(week),
                deliveries_month=await deliveries.count_created_since(month),
                revenue_today=await ledger.total(TransactionType.DEBIT, today),
                revenue_week=await ledger.total(TransactionType.DEBIT, week),
                revenue_month=await ledger.total(TransactionType.DEBIT, month),
                top_customers=[
                    {"customer_id": cid, "name": name, "deliveries": count}
                    for cid, name, count in await deliveries.top_customers()
                ],
                recent_deliveries=await deliveries.recent(5),
            )
