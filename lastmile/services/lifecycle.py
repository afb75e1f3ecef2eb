"""
Delivery Lifecycle Controller
=============================

Owns every status change of a delivery and the writes that go with it.

    pending -> assigned -> picked_up -> in_transit -> delivered
       |          |
       +----------+--> cancelled

Transaction boundaries
----------------------
Each operation runs in one session opened from ``session_factory``:
policy checks on freshly loaded rows, a conditional status ``UPDATE``,
the tracking / notification side effects, commit, then change-feed
publication.  A conditional update that matches nothing rolls the session
back and raises, so a failed call leaves the delivery untouched.

Completion is the exception: the status write (delivered, final fare,
completed_at, payment status) is the primary write and always commits.
The ledger debit, the rider credit, the rider counter, the tracking event
and the customer notification each run in their own SAVEPOINT.  A failed
step is reported on the ``lastmile.reconciliation`` logger and surfaced
as ``PartialFailureError`` after commit.

Nothing here retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Awaitable, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lastmile.config import settings
from lastmile.domain.entities import Delivery, Location, Rider, Session
from lastmile.domain.enums import (
    CANCELLABLE_STATUSES,
    REASSIGNABLE_STATUSES,
    RIDER_PROGRESSION,
    TERMINAL_STATUSES,
    ApprovalStatus,
    ChangeType,
    DeliveryStatus,
    PackageWeight,
    PaymentMethod,
    TransactionType,
    UserRole,
)
from lastmile.domain.errors import (
    ConflictError,
    InvalidStateTransition,
    LastMileError,
    NotFoundError,
    PartialFailureError,
    ValidationError,
)
from lastmile.domain.pricing import FareEstimator
from lastmile.domain.tracking import (
    generate_tracking_number,
    normalize_tracking_number,
)
from lastmile.infrastructure.change_feed import (
    ChangeEvent,
    ChangeFeed,
    snapshot,
)
from lastmile.infrastructure.models import (
    DeliveryModel,
    DeliveryTypeModel,
    ProfileModel,
    RiderModel,
    TrackingEventModel,
)
from lastmile.infrastructure.policies import (
    check_assigned_rider,
    check_delete_delivery,
    check_read_delivery,
    check_rider_may_work,
    require_active,
    require_session_matches,
)
from lastmile.infrastructure.repositories import (
    DeliveryRepository,
    DeliveryTypeRepository,
    NotificationRepository,
    ProfileRepository,
    RiderRepository,
    TrackingEventRepository,
    TransactionRepository,
)

logger = logging.getLogger(__name__)
reconciliation_log = logging.getLogger("lastmile.reconciliation")

MSG_RIDER_ASSIGNED = "Rider has been assigned to your delivery"
MSG_REASSIGNED = "Delivery has been reassigned to a new rider"
MSG_CANCELLED = "Delivery has been cancelled"

REQUIRED_BOOKING_FIELDS = (
    "pickup_address",
    "dropoff_address",
    "package_details",
    "recipient_name",
    "recipient_phone",
)

TRACKING_NUMBER_ATTEMPTS = 5


@dataclass
class BookingRequest:
    pickup_address: str
    pickup_lat: float
    pickup_lng: float
    dropoff_address: str
    dropoff_lat: float
    dropoff_lng: float
    package_details: str
    recipient_name: str
    recipient_phone: str
    package_weight: PackageWeight = PackageWeight.LIGHT
    payment_method: PaymentMethod = PaymentMethod.CASH
    notes: Optional[str] = None
    delivery_type_id: Optional[int] = None

    def validate(self) -> None:
        missing = [
            name
            for name in REQUIRED_BOOKING_FIELDS
            if not str(getattr(self, name) or "").strip()
        ]
        if missing:
            raise ValidationError("Missing required fields: " + ", ".join(missing))
        for name, value, bound in (
            ("pickup_lat", self.pickup_lat, 90),
            ("dropoff_lat", self.dropoff_lat, 90),
            ("pickup_lng", self.pickup_lng, 180),
            ("dropoff_lng", self.dropoff_lng, 180),
        ):
            if value is None or not -bound <= value <= bound:
                raise ValidationError(f"{name} must be within ±{bound}")
        try:
            self.package_weight = PackageWeight(self.package_weight)
            self.payment_method = PaymentMethod(self.payment_method)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None


@dataclass
class PublicTracking:
    delivery: DeliveryModel
    events: list[TrackingEventModel]
    rider_name: Optional[str] = None
    vehicle_type: Optional[str] = None
    delivery_type: Optional[str] = None


@dataclass
class _Outbox:
    """Change events gathered during a transaction, published after commit."""

    events: list[ChangeEvent] = field(default_factory=list)

    def add(self, table: str, type: ChangeType, row) -> None:
        self.events.append(ChangeEvent(table, type, snapshot(row)))


def to_entity(delivery: DeliveryModel) -> Delivery:
    return Delivery(
        id=delivery.id,
        customer_id=delivery.customer_id,
        rider_id=delivery.rider_id,
        tracking_number=delivery.tracking_number,
        pickup=Location(delivery.pickup_lat, delivery.pickup_lng),
        dropoff=Location(delivery.dropoff_lat, delivery.dropoff_lng),
        package_weight=PackageWeight(delivery.package_weight),
        status=DeliveryStatus(delivery.status),
        fare_estimate=delivery.fare_estimate,
        final_fare=delivery.final_fare,
        completed_at=delivery.completed_at,
    )


def to_rider_entity(rider: RiderModel) -> Rider:
    return Rider(
        id=rider.id,
        user_id=rider.user_id,
        approval_status=ApprovalStatus(rider.approval_status),
        is_available=bool(rider.is_available),
        total_deliveries=rider.total_deliveries or 0,
    )


class DeliveryController:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        feed: ChangeFeed,
        estimator: Optional[FareEstimator] = None,
        *,
        rider_share: float = settings.rider_share,
        tracking_prefix: str = settings.tracking_prefix,
        tracking_code_length: int = settings.tracking_code_length,
        default_position: Location = Location(settings.default_lat, settings.default_lng),
    ):
        self.session_factory = session_factory
        self.feed = feed
        self.estimator = estimator or FareEstimator(
            settings.default_base_fare, settings.degrees_to_km, settings.rate_per_km
        )
        self.rider_share = Decimal(str(rider_share))
        self.tracking_prefix = tracking_prefix
        self.tracking_code_length = tracking_code_length
        self.default_position = default_position

    # ── Helpers ───────────────────────────────────────────────────

    async def authenticate(self, db: AsyncSession, session: Session) -> Session:
        """Re-derive the actor from the store; the caller's claims are not trusted."""
        profile = require_active(await ProfileRepository(db).get_by_id(session.profile_id))
        require_session_matches(session, profile)
        rider_id = None
        if UserRole(profile.role) == UserRole.RIDER:
            rider = await RiderRepository(db).get_by_user_id(profile.id)
            rider_id = rider.id if rider else None
        return Session(profile.id, UserRole(profile.role), rider_id)

    async def _acting_rider(self, db: AsyncSession, actor: Session) -> RiderModel:
        actor.require(UserRole.RIDER)
        return check_rider_may_work(
            await RiderRepository(db).get_by_user_id(actor.profile_id)
        )

    async def _approved_rider(self, db: AsyncSession, rider_id: int) -> RiderModel:
        rider = await RiderRepository(db).get_by_id(rider_id)
        if rider is None:
            raise NotFoundError(f"Rider {rider_id} not found")
        return check_rider_may_work(rider)

    @staticmethod
    async def _load(db: AsyncSession, delivery_id: int) -> DeliveryModel:
        delivery = await DeliveryRepository(db).get_by_id(delivery_id)
        if delivery is None:
            raise NotFoundError(f"Delivery {delivery_id} not found")
        return delivery

    @staticmethod
    async def _reload_checked(
        deliveries: DeliveryRepository, delivery_id: int
    ) -> DeliveryModel:
        """Re-read a just-written row; a broken invariant aborts the commit."""
        delivery = await deliveries.get_by_id(delivery_id)
        to_entity(delivery).check_invariants()
        return delivery

    def _position(self, rider: Optional[RiderModel]) -> Location:
        if rider is None or rider.current_lat is None or rider.current_lng is None:
            return self.default_position
        return Location(rider.current_lat, rider.current_lng)

    async def _publish(self, outbox: _Outbox) -> None:
        for event in outbox.events:
            try:
                await self.feed.publish(event)
            except Exception:
                logger.exception(
                    "Failed to publish %s %s change", event.table, event.type.value
                )

    async def _new_tracking_number(self, deliveries: DeliveryRepository) -> str:
        for _ in range(TRACKING_NUMBER_ATTEMPTS):
            code = generate_tracking_number(self.tracking_prefix, self.tracking_code_length)
            if not await deliveries.tracking_number_exists(code):
                return code
        raise ConflictError("Could not allocate a unique tracking number")

    # ── Book ──────────────────────────────────────────────────────

    async def service_tiers(self) -> list[DeliveryTypeModel]:
        """Tiers a customer can book, cheapest first."""
        async with self.session_factory() as db:
            return await DeliveryTypeRepository(db).list_active()

    async def quote(self, request: BookingRequest) -> int:
        """Fare preview for a booking form; no writes."""
        base_price = None
        if request.delivery_type_id is not None:
            async with self.session_factory() as db:
                tier = await self._active_tier(db, request.delivery_type_id)
                base_price = tier.base_price
        return self.estimator.estimate(
            Location(request.pickup_lat, request.pickup_lng),
            Location(request.dropoff_lat, request.dropoff_lng),
            request.package_weight,
            base_price,
        )

    @staticmethod
    async def _active_tier(db: AsyncSession, type_id: int) -> DeliveryTypeModel:
        tier = await DeliveryTypeRepository(db).get_by_id(type_id)
        if tier is None or not tier.is_active:
            raise ValidationError(f"Unknown service tier {type_id}")
        return tier

    async def book(self, session: Session, request: BookingRequest) -> DeliveryModel:
        request.validate()
        outbox = _Outbox()
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            actor.require(UserRole.CUSTOMER)

            base_price = None
            if request.delivery_type_id is not None:
                base_price = (await self._active_tier(db, request.delivery_type_id)).base_price
            fare = self.estimator.estimate(
                Location(request.pickup_lat, request.pickup_lng),
                Location(request.dropoff_lat, request.dropoff_lng),
                request.package_weight,
                base_price,
            )

            deliveries = DeliveryRepository(db)
            delivery = await deliveries.create(
                DeliveryModel(
                    customer_id=actor.profile_id,
                    rider_id=None,
                    delivery_type_id=request.delivery_type_id,
                    tracking_number=await self._new_tracking_number(deliveries),
                    pickup_address=request.pickup_address.strip(),
                    pickup_lat=request.pickup_lat,
                    pickup_lng=request.pickup_lng,
                    dropoff_address=request.dropoff_address.strip(),
                    dropoff_lat=request.dropoff_lat,
                    dropoff_lng=request.dropoff_lng,
                    package_details=request.package_details.strip(),
                    package_weight=request.package_weight,
                    recipient_name=request.recipient_name.strip(),
                    recipient_phone=request.recipient_phone.strip(),
                    fare_estimate=fare,
                    payment_method=request.payment_method,
                    status=DeliveryStatus.PENDING,
                    notes=request.notes,
                )
            )
            note = await NotificationRepository(db).push(
                actor.profile_id,
                "Delivery Booked",
                "Your delivery has been booked. "
                f"Tracking number: {delivery.tracking_number}",
            )
            await db.commit()
            outbox.add("deliveries", ChangeType.INSERT, delivery)
            outbox.add("notifications", ChangeType.INSERT, note)

        logger.info(
            "Delivery %s booked by customer %s (fare=%s)",
            delivery.tracking_number, actor.profile_id, fare,
        )
        await self._publish(outbox)
        return delivery

    # ── Accept / assign / reassign ────────────────────────────────

    async def accept(self, session: Session, delivery_id: int) -> DeliveryModel:
        """Rider claims a pending delivery; the claim is a conditional write."""
        outbox = _Outbox()
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            rider = await self._acting_rider(db, actor)
            if not to_rider_entity(rider).can_take_work():
                raise ValidationError("Go online before accepting deliveries")

            delivery = await self._load(db, delivery_id)
            if (
                DeliveryStatus(delivery.status) != DeliveryStatus.PENDING
                or delivery.rider_id is not None
            ):
                raise ConflictError("Delivery is no longer available")

            rider_id = rider.id
            deliveries = DeliveryRepository(db)
            if not await deliveries.claim_pending(delivery_id, rider_id):
                # Rollback expires loaded rows; only plain values past this point.
                await db.rollback()
                logger.info(
                    "Rider %s lost the claim on delivery %s", rider_id, delivery_id
                )
                raise ConflictError("Delivery is no longer available")

            event = await TrackingEventRepository(db).append(
                delivery_id, *self._location_tuple(rider), MSG_RIDER_ASSIGNED
            )
            note = await NotificationRepository(db).push(
                delivery.customer_id,
                "Rider Assigned",
                "A rider has been assigned to your delivery and will pick up "
                "your package soon.",
            )
            delivery = await self._reload_checked(deliveries, delivery_id)
            await db.commit()
            outbox.add("deliveries", ChangeType.UPDATE, delivery)
            outbox.add("tracking_events", ChangeType.INSERT, event)
            outbox.add("notifications", ChangeType.INSERT, note)

        logger.info("Delivery %s accepted by rider %s", delivery_id, rider.id)
        await self._publish(outbox)
        return delivery

    def _location_tuple(self, rider: Optional[RiderModel]) -> tuple[float, float]:
        position = self._position(rider)
        return position.latitude, position.longitude

    async def assign(
        self, session: Session, delivery_id: int, rider_id: int
    ) -> DeliveryModel:
        """Admin attaches an approved rider to a pending delivery."""
        outbox = _Outbox()
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            actor.require(UserRole.ADMIN)
            rider = await self._approved_rider(db, rider_id)
            delivery = await self._load(db, delivery_id)
            to_entity(delivery).transition_to(DeliveryStatus.ASSIGNED)
            if DeliveryStatus(delivery.status) != DeliveryStatus.PENDING:
                raise InvalidStateTransition(
                    "Only pending deliveries can be assigned; reassign instead"
                )

            deliveries = DeliveryRepository(db)
            if not await deliveries.claim_pending(delivery_id, rider.id):
                await db.rollback()
                raise ConflictError("Delivery is no longer available")

            event = await TrackingEventRepository(db).append(
                delivery_id, *self._location_tuple(rider), MSG_RIDER_ASSIGNED
            )
            note = await NotificationRepository(db).push(
                rider.user_id,
                "New Delivery Assigned",
                f"You have been assigned delivery {delivery.tracking_number}",
            )
            delivery = await self._reload_checked(deliveries, delivery_id)
            await db.commit()
            outbox.add("deliveries", ChangeType.UPDATE, delivery)
            outbox.add("tracking_events", ChangeType.INSERT, event)
            outbox.add("notifications", ChangeType.INSERT, note)

        logger.info(
            "Delivery %s assigned to rider %s by admin %s",
            delivery_id, rider.id, actor.profile_id,
        )
        await self._publish(outbox)
        return delivery

    async def reassign(
        self, session: Session, delivery_id: int, rider_id: int
    ) -> DeliveryModel:
        """Admin swaps the rider on an active delivery; status returns to assigned."""
        outbox = _Outbox()
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            actor.require(UserRole.ADMIN)
            rider = await self._approved_rider(db, rider_id)
            delivery = await self._load(db, delivery_id)
            status = DeliveryStatus(delivery.status)
            if status not in REASSIGNABLE_STATUSES or delivery.rider_id is None:
                raise InvalidStateTransition(
                    f"Cannot reassign a {status.value} delivery"
                )
            if delivery.rider_id == rider.id:
                raise ValidationError("Delivery is already assigned to this rider")

            deliveries = DeliveryRepository(db)
            if not await deliveries.reassign(delivery_id, delivery.rider_id, rider.id):
                await db.rollback()
                raise ConflictError("Delivery changed while reassigning; refresh")

            event = await TrackingEventRepository(db).append(
                delivery_id, *self._location_tuple(rider), MSG_REASSIGNED
            )
            note = await NotificationRepository(db).push(
                rider.user_id,
                "New Delivery Assigned",
                f"You have been reassigned delivery {delivery.tracking_number}",
            )
            delivery = await self._reload_checked(deliveries, delivery_id)
            await db.commit()
            outbox.add("deliveries", ChangeType.UPDATE, delivery)
            outbox.add("tracking_events", ChangeType.INSERT, event)
            outbox.add("notifications", ChangeType.INSERT, note)

        logger.info("Delivery %s reassigned to rider %s", delivery_id, rider.id)
        await self._publish(outbox)
        return delivery

    # ── Advance ───────────────────────────────────────────────────

    async def advance(
        self,
        session: Session,
        delivery_id: int,
        target: DeliveryStatus,
    ) -> DeliveryModel:
        """
        Move one step along assigned -> picked_up -> in_transit -> delivered.

        *target* must be exactly the next step, so repeating a request that
        already succeeded fails without writing anything.
        """
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            rider = await self._acting_rider(db, actor)
            delivery = await self._load(db, delivery_id)
            check_assigned_rider(rider, delivery)

            current = DeliveryStatus(delivery.status)
            next_status = to_entity(delivery).next_status()
            if DeliveryStatus(target) != next_status:
                raise InvalidStateTransition(
                    f"Cannot move from {current.value} to "
                    f"{DeliveryStatus(target).value}; next step is {next_status.value}"
                )
            message = RIDER_PROGRESSION[current][1]

            if next_status == DeliveryStatus.DELIVERED:
                return await self._complete(db, rider, delivery, message)

            outbox = _Outbox()
            deliveries = DeliveryRepository(db)
            if not await deliveries.advance(delivery_id, rider.id, current, next_status):
                await db.rollback()
                raise ConflictError("Delivery changed while updating; refresh")

            event = await TrackingEventRepository(db).append(
                delivery_id, *self._location_tuple(rider), message
            )
            note = await NotificationRepository(db).push(
                delivery.customer_id, "Delivery Update", message
            )
            delivery = await self._reload_checked(deliveries, delivery_id)
            await db.commit()
            outbox.add("deliveries", ChangeType.UPDATE, delivery)
            outbox.add("tracking_events", ChangeType.INSERT, event)
            outbox.add("notifications", ChangeType.INSERT, note)

        logger.info(
            "Delivery %s moved %s -> %s", delivery_id, current.value, next_status.value
        )
        await self._publish(outbox)
        return delivery

    async def _complete(
        self,
        db: AsyncSession,
        rider: RiderModel,
        delivery: DeliveryModel,
        message: str,
    ) -> DeliveryModel:
        deliveries = DeliveryRepository(db)
        delivery_id = delivery.id
        if not await deliveries.complete(
            delivery_id, rider.id, datetime.now(timezone.utc)
        ):
            await db.rollback()
            raise ConflictError("Delivery changed while completing; refresh")
        delivery = await self._reload_checked(deliveries, delivery_id)

        fare = Decimal(delivery.final_fare)
        earning = (fare * self.rider_share).quantize(
            Decimal("0.01"), rounding=ROUND_HALF_UP
        )
        code = delivery.tracking_number
        transactions = TransactionRepository(db)
        position = self._location_tuple(rider)

        async def increment_counter():
            if not await RiderRepository(db).increment_completed(rider.id):
                raise NotFoundError(f"Rider {rider.id} not found")

        steps: list[tuple[str, str, Callable[[], Awaitable]]] = [
            ("customer_debit", "transactions", lambda: transactions.record(
                user_id=delivery.customer_id,
                delivery_id=delivery_id,
                type=TransactionType.DEBIT,
                amount=fare,
                description=f"Payment for delivery {code}",
            )),
            ("rider_credit", "transactions", lambda: transactions.record(
                user_id=rider.user_id,
                delivery_id=delivery_id,
                type=TransactionType.CREDIT,
                amount=earning,
                description=f"Earning from delivery {code}",
            )),
            ("rider_counter", "riders", increment_counter),
            ("tracking_event", "tracking_events", lambda: TrackingEventRepository(
                db).append(delivery_id, *position, message)),
            ("customer_notification", "notifications", lambda: NotificationRepository(
                db).push(delivery.customer_id, "Delivery Update", message)),
        ]

        outbox = _Outbox()
        written = []
        failed: list[str] = []
        for name, table, step in steps:
            try:
                async with db.begin_nested():
                    row = await step()
            except (SQLAlchemyError, LastMileError) as exc:
                failed.append(name)
                reconciliation_log.error(
                    "Delivery %s (%s) delivered but %s failed: %s",
                    delivery_id, code, name, exc,
                )
                continue
            if row is not None:
                written.append((table, row))

        await db.commit()
        outbox.add("deliveries", ChangeType.UPDATE, delivery)
        for table, row in written:
            outbox.add(table, ChangeType.INSERT, row)
        if "rider_counter" not in failed:
            refreshed = await RiderRepository(db).get_by_id(rider.id)
            if refreshed is not None:
                outbox.add("riders", ChangeType.UPDATE, refreshed)
        await self._publish(outbox)

        if failed:
            raise PartialFailureError(delivery_id, failed)
        logger.info(
            "Delivery %s delivered by rider %s (fare=%s, earning=%s)",
            delivery_id, rider.id, fare, earning,
        )
        return delivery

    # ── Cancel / delete ───────────────────────────────────────────

    async def cancel(self, session: Session, delivery_id: int) -> DeliveryModel:
        """Admin cancels a pending or assigned delivery; nothing is charged."""
        outbox = _Outbox()
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            actor.require(UserRole.ADMIN)
            delivery = await self._load(db, delivery_id)
            status = DeliveryStatus(delivery.status)
            if status not in CANCELLABLE_STATUSES:
                raise InvalidStateTransition(f"Cannot cancel a {status.value} delivery")

            deliveries = DeliveryRepository(db)
            if not await deliveries.cancel(delivery_id, status):
                await db.rollback()
                raise ConflictError("Delivery changed while cancelling; refresh")

            event = await TrackingEventRepository(db).append(
                delivery_id,
                self.default_position.latitude,
                self.default_position.longitude,
                MSG_CANCELLED,
            )
            note = await NotificationRepository(db).push(
                delivery.customer_id,
                "Delivery Cancelled",
                f"Delivery {delivery.tracking_number} has been cancelled",
            )
            delivery = await self._reload_checked(deliveries, delivery_id)
            await db.commit()
            outbox.add("deliveries", ChangeType.UPDATE, delivery)
            outbox.add("tracking_events", ChangeType.INSERT, event)
            outbox.add("notifications", ChangeType.INSERT, note)

        logger.info("Delivery %s cancelled by admin %s", delivery_id, actor.profile_id)
        await self._publish(outbox)
        return delivery

    async def delete(self, session: Session, delivery_id: int) -> int:
        """
        Permanently remove a terminal delivery.  Tracking events go first;
        the store rejects deleting a delivery that still has any.
        Returns the number of tracking events removed.
        """
        outbox = _Outbox()
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            actor.require(UserRole.ADMIN, UserRole.RIDER)
            delivery = await self._load(db, delivery_id)
            check_delete_delivery(actor, delivery)
            status = DeliveryStatus(delivery.status)
            if status not in TERMINAL_STATUSES:
                raise InvalidStateTransition(
                    f"Only delivered or cancelled deliveries can be deleted, not {status.value}"
                )
            outbox.add("deliveries", ChangeType.DELETE, delivery)

            removed = await TrackingEventRepository(db).delete_for_delivery(delivery_id)
            await DeliveryRepository(db).delete(delivery_id)
            await db.commit()

        logger.info(
            "Delivery %s deleted by %s %s (%d tracking events)",
            delivery_id, actor.role.value, actor.profile_id, removed,
        )
        await self._publish(outbox)
        return removed

    # ── Reads ─────────────────────────────────────────────────────

    async def get(self, session: Session, delivery_id: int) -> DeliveryModel:
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            delivery = await self._load(db, delivery_id)
            check_read_delivery(actor, delivery)
            return delivery

    async def tracking_events(
        self, session: Session, delivery_id: int
    ) -> list[TrackingEventModel]:
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            check_read_delivery(actor, await self._load(db, delivery_id))
            return await TrackingEventRepository(db).list_for_delivery(delivery_id)

    async def list_deliveries(
        self,
        session: Session,
        status: Optional[DeliveryStatus] = None,
    ) -> list[DeliveryModel]:
        """Role-scoped listing: own deliveries for customers and riders."""
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            deliveries = DeliveryRepository(db)
            if actor.role == UserRole.ADMIN:
                return await deliveries.list_all(status)
            if actor.role == UserRole.CUSTOMER:
                rows = await deliveries.list_for_customer(actor.profile_id)
            elif actor.rider_id is None:
                return []
            else:
                rows = await deliveries.list_for_rider(actor.rider_id)
            if status is not None:
                rows = [r for r in rows if DeliveryStatus(r.status) == status]
            return rows

    async def active_for_rider(self, session: Session) -> list[DeliveryModel]:
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            rider = await self._acting_rider(db, actor)
            return await DeliveryRepository(db).list_for_rider(
                rider.id, REASSIGNABLE_STATUSES
            )

    async def available(self, session: Session) -> list[DeliveryModel]:
        """Pending deliveries a rider could accept right now."""
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            rider = await self._acting_rider(db, actor)
            if not rider.is_available:
                return []
            return await DeliveryRepository(db).list_pending()

    async def delivered_history(self, session: Session) -> list[DeliveryModel]:
        async with self.session_factory() as db:
            actor = await self.authenticate(db, session)
            deliveries = DeliveryRepository(db)
            if actor.role == UserRole.ADMIN:
                return await deliveries.list_delivered()
            rider = await self._acting_rider(db, actor)
            return await deliveries.list_delivered(rider.id)

    async def track_public(self, code: str) -> PublicTracking:
        """Unauthenticated lookup by tracking number (case-insensitive)."""
        code = normalize_tracking_number(code)
        async with self.session_factory() as db:
            delivery = await DeliveryRepository(db).get_by_tracking_number(code)
            if delivery is None:
                raise NotFoundError(f"No delivery with tracking number {code}")
            result = PublicTracking(
                delivery=delivery,
                events=await TrackingEventRepository(db).list_for_delivery(delivery.id),
            )
            if delivery.rider_id is not None:
                rider = await RiderRepository(db).get_by_id(delivery.rider_id)
                if rider is not None:
                    result.vehicle_type = rider.vehicle_type.value
                    profile: Optional[ProfileModel] = await ProfileRepository(
                        db
                    ).get_by_id(rider.user_id)
                    result.rider_name = profile.full_name if profile else None
            if delivery.delivery_type_id is not None:
                tier = await DeliveryTypeRepository(db).get_by_id(delivery.delivery_type_id)
                result.delivery_type = tier.name if tier else None
            return result
