"""Rider self-service: registration, profile, availability, position, earnings."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lastmile.domain.entities import Session
from lastmile.domain.enums import (
    ApprovalStatus,
    ChangeType,
    TransactionType,
    UserRole,
    VehicleType,
)
from lastmile.domain.errors import ConflictError, NotFoundError, ValidationError
from lastmile.infrastructure.change_feed import ChangeEvent, ChangeFeed, snapshot
from lastmile.infrastructure.models import RiderModel
from lastmile.infrastructure.repositories import RiderRepository, TransactionRepository

from .lifecycle import DeliveryController

logger = logging.getLogger(__name__)


@dataclass
class RiderDetails:
    vehicle_type: VehicleType | str
    vehicle_number: str
    driver_license: str
    bank_account: Optional[str] = None

    def validate(self) -> None:
        if not self.vehicle_number.strip() or not self.driver_license.strip():
            raise ValidationError("Vehicle number and driver license are required")
        try:
            self.vehicle_type = VehicleType(self.vehicle_type)
        except ValueError:
            raise ValidationError(f"Unknown vehicle type {self.vehicle_type!r}") from None


@dataclass(frozen=True)
class Earnings:
    today: Decimal
    week: Decimal
    month: Decimal


def earning_windows(now: datetime) -> tuple[datetime, datetime, datetime]:
    """Start of today (UTC), and 7 / 30 days before that."""
    today = now.astimezone(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return today, today - timedelta(days=7), today - timedelta(days=30)


class RiderService:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        controller: DeliveryController,
    ):
        self.session_factory = session_factory
        self.feed = feed
        self.controller = controller

    async def _mine(self, db: AsyncSession, session: Session) -> RiderModel:
        actor = await self.controller.authenticate(db, session)
        actor.require(UserRole.RIDER)
        rider = await RiderRepository(db).get_by_user_id(actor.profile_id)
        if rider is None:
            raise NotFoundError("Complete your rider profile first")
        return rider

    async def _changed(self, rider: RiderModel, type: ChangeType = ChangeType.UPDATE) -> None:
        try:
            await self.feed.publish(ChangeEvent("riders", type, snapshot(rider)))
        except Exception:
            logger.exception("Failed to publish rider %s change", rider.id)

    async def profile(self, session: Session) -> RiderModel:
        async with self.session_factory() as db:
            return await self._mine(db, session)

    async def register(self, session: Session, details: RiderDetails) -> RiderModel:
        """Submit a rider application; it waits for an admin decision."""
        details.validate()
        async with self.session_factory() as db:
            actor = await self.controller.authenticate(db, session)
            actor.require(UserRole.RIDER)
            riders = RiderRepository(db)
            if await riders.get_by_user_id(actor.profile_id) is not None:
                raise ConflictError("A rider profile already exists for this account")
            rider = await riders.create(
                RiderModel(
                    user_id=actor.profile_id,
                    vehicle_type=details.vehicle_type,
                    vehicle_number=details.vehicle_number.strip(),
                    driver_license=details.driver_license.strip(),
                    bank_account=details.bank_account,
                    approval_status=ApprovalStatus.PENDING,
                    is_available=False,
                )
            )
            await db.commit()
        logger.info("Rider application %s submitted by %s", rider.id, actor.profile_id)
        await self._changed(rider, ChangeType.INSERT)
        return rider

    async def update_details(self, session: Session, details: RiderDetails) -> RiderModel:
        details.validate()
        async with self.session_factory() as db:
            rider = await self._mine(db, session)
            rider.vehicle_type = details.vehicle_type
            rider.vehicle_number = details.vehicle_number.strip()
            rider.driver_license = details.driver_license.strip()
            rider.bank_account = details.bank_account
            await db.commit()
        await self._changed(rider)
        return rider

    async def set_availability(self, session: Session, available: bool) -> RiderModel:
        async with self.session_factory() as db:
            rider = await self._mine(db, session)
            if available and ApprovalStatus(rider.approval_status) != ApprovalStatus.APPROVED:
                raise ValidationError("Only approved riders can go online")
            rider.is_available = available
            await db.commit()
        logger.info("Rider %s is now %s", rider.id, "online" if available else "offline")
        await self._changed(rider)
        return rider

    async def update_position(self, session: Session, lat: float, lng: float) -> RiderModel:
        if not (-90 <= lat <= 90 and -180 <= lng <= 180):
            raise ValidationError("Position out of range")
        async with self.session_factory() as db:
            rider = await self._mine(db, session)
            rider.current_lat = lat
            rider.current_lng = lng
            await db.commit()
        await self._changed(rider)
        return rider

    async def earnings(self, session: Session, now: Optional[datetime] = None) -> Earnings:
        today, week, month = earning_windows(now or datetime.now(timezone.utc))
        async with self.session_factory() as db:
            actor = await self.controller.authenticate(db, session)
            actor.require(UserRole.RIDER)
            ledger = TransactionRepository(db)
            return Earnings(
                today=await ledger.total(TransactionType.CREDIT, today, actor.profile_id),
                week=await ledger.total(TransactionType.CREDIT, week, actor.profile_id),
                month=await ledger.total(TransactionType.CREDIT, month, actor.profile_id),
            )
