"""
Lifecycle controller tests against a real (SQLite) store.

Covers booking, claims, rider progression, the completion ledger,
partial failure reporting, cancellation, deletion and the role-scoped
reads.
"""

from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from lastmile.domain.enums import (
    AccountStatus,
    ApprovalStatus,
    ChangeType,
    DeliveryStatus,
    PackageWeight,
    PaymentStatus,
    TransactionType,
)
from lastmile.domain.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransition,
    NotFoundError,
    PartialFailureError,
    ValidationError,
)
from lastmile.infrastructure.models import DeliveryModel
from lastmile.infrastructure.repositories import (
    DeliveryRepository,
    NotificationRepository,
    ProfileRepository,
    RiderRepository,
    TrackingEventRepository,
    TransactionRepository,
)
from lastmile.services.lifecycle import (
    MSG_CANCELLED,
    MSG_REASSIGNED,
    MSG_RIDER_ASSIGNED,
)
from tests.conftest import RIDER_STEPS, booking

PICKED_UP, IN_TRANSIT, DELIVERED = RIDER_STEPS


async def _assigned(controller, factory, **rider_kwargs):
    customer = await factory.customer()
    rider = await factory.rider(**rider_kwargs)
    delivery = await controller.book(customer, booking())
    delivery = await controller.accept(rider, delivery.id)
    return customer, rider, delivery


async def _deliver(controller, rider, delivery_id):
    for step in RIDER_STEPS:
        delivery = await controller.advance(rider, delivery_id, step)
    return delivery


# ── Booking ───────────────────────────────────────────────────────────


class TestBooking:
    @pytest.mark.asyncio
    async def test_book_creates_pending_delivery(self, controller, factory, session_factory):
        customer = await factory.customer()
        delivery = await controller.book(customer, booking())

        assert delivery.status == DeliveryStatus.PENDING
        assert delivery.rider_id is None
        assert delivery.customer_id == customer.profile_id
        assert delivery.fare_estimate == 13603
        assert delivery.tracking_number.startswith("LM")
        assert delivery.final_fare is None

        async with session_factory() as db:
            notes = await NotificationRepository(db).list_for_user(customer.profile_id)
        assert [n.title for n in notes] == ["Delivery Booked"]
        assert delivery.tracking_number in notes[0].message

    @pytest.mark.asyncio
    async def test_book_uses_tier_base_price(self, controller, factory):
        customer = await factory.customer()
        tier = await factory.tier(base_price=1000)
        delivery = await controller.book(customer, booking(delivery_type_id=tier.id))
        assert delivery.fare_estimate == 14103

    @pytest.mark.asyncio
    async def test_book_weight_multiplier(self, controller, factory):
        customer = await factory.customer()
        delivery = await controller.book(
            customer, booking(package_weight=PackageWeight.HEAVY)
        )
        assert delivery.fare_estimate == 21765

    @pytest.mark.asyncio
    async def test_inactive_tier_rejected(self, controller, factory):
        customer = await factory.customer()
        tier = await factory.tier(active=False)
        with pytest.raises(ValidationError):
            await controller.book(customer, booking(delivery_type_id=tier.id))

    @pytest.mark.asyncio
    async def test_missing_fields_rejected_before_any_write(
        self, controller, factory, session_factory
    ):
        customer = await factory.customer()
        with pytest.raises(ValidationError, match="recipient_name"):
            await controller.book(customer, booking(recipient_name="   "))
        async with session_factory() as db:
            assert await DeliveryRepository(db).list_for_customer(customer.profile_id) == []

    @pytest.mark.asyncio
    async def test_only_customers_book(self, controller, factory):
        rider = await factory.rider()
        with pytest.raises(AuthorizationError):
            await controller.book(rider, booking())

    @pytest.mark.asyncio
    async def test_quote_matches_booking(self, controller, factory):
        customer = await factory.customer()
        quoted = await controller.quote(booking(package_weight=PackageWeight.MEDIUM))
        booked = await controller.book(
            customer, booking(package_weight=PackageWeight.MEDIUM)
        )
        assert quoted == booked.fare_estimate == 17684

    @pytest.mark.asyncio
    async def test_booking_is_published(self, controller, factory, feed):
        customer = await factory.customer()
        sub = feed.subscribe("deliveries", {"customer_id": customer.profile_id})
        delivery = await controller.book(customer, booking())
        events = sub.pending()
        assert [e.type for e in events] == [ChangeType.INSERT]
        assert events[0].record["id"] == delivery.id
        assert events[0].record["status"] == "pending"


# ── Accept / assign / reassign ────────────────────────────────────────


class TestAccept:
    @pytest.mark.asyncio
    async def test_accept_assigns_rider(self, controller, factory, session_factory):
        customer, rider, delivery = await _assigned(controller, factory)

        assert delivery.status == DeliveryStatus.ASSIGNED
        assert delivery.rider_id == rider.rider_id

        async with session_factory() as db:
            events = await TrackingEventRepository(db).list_for_delivery(delivery.id)
            notes = await NotificationRepository(db).list_for_user(customer.profile_id)
        assert [e.status_update for e in events] == [MSG_RIDER_ASSIGNED]
        assert (events[0].rider_lat, events[0].rider_lng) == (9.0600, 7.4900)
        assert notes[0].title == "Rider Assigned"

    @pytest.mark.asyncio
    async def test_rider_without_position_uses_default(self, controller, factory, session_factory):
        _, _, delivery = await _assigned(controller, factory, lat=None, lng=None)
        async with session_factory() as db:
            events = await TrackingEventRepository(db).list_for_delivery(delivery.id)
        assert (events[0].rider_lat, events[0].rider_lng) == (9.0820, 8.6753)

    @pytest.mark.asyncio
    async def test_second_accept_conflicts(self, controller, factory):
        _, _, delivery = await _assigned(controller, factory)
        other = await factory.rider()
        with pytest.raises(ConflictError):
            await controller.accept(other, delivery.id)

    @pytest.mark.asyncio
    async def test_unapproved_rider_cannot_accept(self, controller, factory):
        customer = await factory.customer()
        rider = await factory.rider(approval=ApprovalStatus.PENDING)
        delivery = await controller.book(customer, booking())
        with pytest.raises(AuthorizationError):
            await controller.accept(rider, delivery.id)

    @pytest.mark.asyncio
    async def test_offline_rider_cannot_accept(self, controller, factory):
        customer = await factory.customer()
        rider = await factory.rider(available=False)
        delivery = await controller.book(customer, booking())
        with pytest.raises(ValidationError):
            await controller.accept(rider, delivery.id)

    @pytest.mark.asyncio
    async def test_customer_cannot_accept(self, controller, factory):
        customer = await factory.customer()
        delivery = await controller.book(customer, booking())
        with pytest.raises(AuthorizationError):
            await controller.accept(customer, delivery.id)

    @pytest.mark.asyncio
    async def test_unknown_delivery(self, controller, factory):
        rider = await factory.rider()
        with pytest.raises(NotFoundError):
            await controller.accept(rider, 9999)


class TestAdminAssignment:
    @pytest.mark.asyncio
    async def test_assign_pending(self, controller, factory, session_factory):
        admin = await factory.admin()
        customer = await factory.customer()
        rider = await factory.rider()
        delivery = await controller.book(customer, booking())

        delivery = await controller.assign(admin, delivery.id, rider.rider_id)
        assert delivery.status == DeliveryStatus.ASSIGNED
        assert delivery.rider_id == rider.rider_id

        async with session_factory() as db:
            notes = await NotificationRepository(db).list_for_user(rider.profile_id)
        assert notes[0].title == "New Delivery Assigned"

    @pytest.mark.asyncio
    async def test_assign_requires_approved_rider(self, controller, factory):
        admin = await factory.admin()
        customer = await factory.customer()
        rider = await factory.rider(approval=ApprovalStatus.REJECTED)
        delivery = await controller.book(customer, booking())
        with pytest.raises(AuthorizationError):
            await controller.assign(admin, delivery.id, rider.rider_id)

    @pytest.mark.asyncio
    async def test_assign_non_pending_fails(self, controller, factory):
        admin = await factory.admin()
        _, _, delivery = await _assigned(controller, factory)
        other = await factory.rider()
        with pytest.raises(InvalidStateTransition):
            await controller.assign(admin, delivery.id, other.rider_id)

    @pytest.mark.asyncio
    async def test_reassign_in_transit_returns_to_assigned(
        self, controller, factory, session_factory
    ):
        admin = await factory.admin()
        _, rider, delivery = await _assigned(controller, factory)
        await controller.advance(rider, delivery.id, PICKED_UP)
        await controller.advance(rider, delivery.id, IN_TRANSIT)
        replacement = await factory.rider()

        delivery = await controller.reassign(admin, delivery.id, replacement.rider_id)
        assert delivery.status == DeliveryStatus.ASSIGNED
        assert delivery.rider_id == replacement.rider_id

        async with session_factory() as db:
            events = await TrackingEventRepository(db).list_for_delivery(delivery.id)
        assert events[0].status_update == MSG_REASSIGNED

        # The previous rider has lost write access.
        with pytest.raises(AuthorizationError):
            await controller.advance(rider, delivery.id, PICKED_UP)

    @pytest.mark.asyncio
    async def test_reassign_to_same_rider_rejected(self, controller, factory):
        admin = await factory.admin()
        _, rider, delivery = await _assigned(controller, factory)
        with pytest.raises(ValidationError):
            await controller.reassign(admin, delivery.id, rider.rider_id)

    @pytest.mark.asyncio
    async def test_reassign_pending_rejected(self, controller, factory):
        admin = await factory.admin()
        customer = await factory.customer()
        rider = await factory.rider()
        delivery = await controller.book(customer, booking())
        with pytest.raises(InvalidStateTransition):
            await controller.reassign(admin, delivery.id, rider.rider_id)

    @pytest.mark.asyncio
    async def test_only_admins_assign(self, controller, factory):
        customer = await factory.customer()
        rider = await factory.rider()
        delivery = await controller.book(customer, booking())
        with pytest.raises(AuthorizationError):
            await controller.assign(rider, delivery.id, rider.rider_id)


# ── Progress & completion ─────────────────────────────────────────────


class TestAdvance:
    @pytest.mark.asyncio
    async def test_steps_in_order(self, controller, factory, session_factory):
        customer, rider, delivery = await _assigned(controller, factory)

        delivery = await controller.advance(rider, delivery.id, PICKED_UP)
        assert delivery.status == DeliveryStatus.PICKED_UP
        delivery = await controller.advance(rider, delivery.id, IN_TRANSIT)
        assert delivery.status == DeliveryStatus.IN_TRANSIT

        async with session_factory() as db:
            notes = await NotificationRepository(db).list_for_user(customer.profile_id)
        assert notes[0].title == "Delivery Update"
        assert notes[0].message == "Your package is now in transit to the destination"

    @pytest.mark.asyncio
    async def test_skipping_a_step_fails_without_writing(
        self, controller, factory, session_factory
    ):
        _, rider, delivery = await _assigned(controller, factory)
        with pytest.raises(InvalidStateTransition):
            await controller.advance(rider, delivery.id, DELIVERED)

        async with session_factory() as db:
            current = await DeliveryRepository(db).get_by_id(delivery.id)
            events = await TrackingEventRepository(db).count_for_delivery(delivery.id)
        assert current.status == DeliveryStatus.ASSIGNED
        assert events == 1

    @pytest.mark.asyncio
    async def test_repeating_a_step_fails_without_writing(
        self, controller, factory, session_factory
    ):
        customer, rider, delivery = await _assigned(controller, factory)
        await controller.advance(rider, delivery.id, PICKED_UP)
        with pytest.raises(InvalidStateTransition):
            await controller.advance(rider, delivery.id, PICKED_UP)

        async with session_factory() as db:
            current = await DeliveryRepository(db).get_by_id(delivery.id)
            events = await TrackingEventRepository(db).count_for_delivery(delivery.id)
            notes = await NotificationRepository(db).list_for_user(customer.profile_id)
        assert current.status == DeliveryStatus.PICKED_UP
        assert events == 2
        assert [n.title for n in notes].count("Delivery Update") == 1

    @pytest.mark.asyncio
    async def test_other_rider_cannot_advance(self, controller, factory):
        _, _, delivery = await _assigned(controller, factory)
        other = await factory.rider()
        with pytest.raises(AuthorizationError):
            await controller.advance(other, delivery.id, PICKED_UP)

    @pytest.mark.asyncio
    async def test_delivered_is_final(self, controller, factory):
        _, rider, delivery = await _assigned(controller, factory)
        await _deliver(controller, rider, delivery.id)
        with pytest.raises(InvalidStateTransition):
            await controller.advance(rider, delivery.id, DELIVERED)


class TestCompletion:
    @pytest.mark.asyncio
    async def test_completion_posts_ledger(self, controller, factory, session_factory):
        customer, rider, delivery = await _assigned(controller, factory)
        delivery = await _deliver(controller, rider, delivery.id)

        assert delivery.status == DeliveryStatus.DELIVERED
        assert delivery.final_fare == delivery.fare_estimate == 13603
        assert delivery.completed_at is not None
        assert delivery.payment_status == PaymentStatus.COMPLETED

        async with session_factory() as db:
            ledger = await TransactionRepository(db).list_for_delivery(delivery.id)
            stored_rider = await RiderRepository(db).get_by_id(rider.rider_id)
            events = await TrackingEventRepository(db).list_for_delivery(delivery.id)

        by_type = {t.type: t for t in ledger}
        assert len(ledger) == 2
        assert by_type[TransactionType.DEBIT].user_id == customer.profile_id
        assert by_type[TransactionType.DEBIT].amount == Decimal("13603")
        assert by_type[TransactionType.CREDIT].user_id == rider.profile_id
        assert by_type[TransactionType.CREDIT].amount == Decimal("10882.40")
        assert stored_rider.total_deliveries == 1
        assert len(events) == 4
        assert events[0].status_update == "Your package has been successfully delivered"

    @pytest.mark.asyncio
    async def test_completion_events_published(self, controller, factory, feed):
        _, rider, delivery = await _assigned(controller, factory)
        await controller.advance(rider, delivery.id, PICKED_UP)
        await controller.advance(rider, delivery.id, IN_TRANSIT)
        ledger = feed.subscribe("transactions", {"delivery_id": delivery.id})
        deliveries = feed.subscribe("deliveries", {"id": delivery.id})

        await controller.advance(rider, delivery.id, DELIVERED)

        assert sorted(e.record["type"] for e in ledger.pending()) == ["credit", "debit"]
        [update] = deliveries.pending()
        assert update.record["status"] == "delivered"

    @pytest.mark.asyncio
    async def test_failed_credit_is_reported_not_hidden(
        self, controller, factory, session_factory, monkeypatch, caplog
    ):
        _, rider, delivery = await _assigned(controller, factory)
        await controller.advance(rider, delivery.id, PICKED_UP)
        await controller.advance(rider, delivery.id, IN_TRANSIT)

        original = TransactionRepository.record

        async def failing_credit(self, **kwargs):
            if kwargs["type"] == TransactionType.CREDIT:
                raise OperationalError("INSERT INTO transactions", {}, Exception("disk full"))
            return await original(self, **kwargs)

        monkeypatch.setattr(TransactionRepository, "record", failing_credit)

        with caplog.at_level("ERROR", logger="lastmile.reconciliation"):
            with pytest.raises(PartialFailureError) as info:
                await controller.advance(rider, delivery.id, DELIVERED)

        assert info.value.failed_steps == ["rider_credit"]
        assert info.value.retryable is False
        assert "rider_credit" in caplog.text

        async with session_factory() as db:
            stored = await DeliveryRepository(db).get_by_id(delivery.id)
            ledger = await TransactionRepository(db).list_for_delivery(delivery.id)
            stored_rider = await RiderRepository(db).get_by_id(rider.rider_id)
        assert stored.status == DeliveryStatus.DELIVERED
        assert [t.type for t in ledger] == [TransactionType.DEBIT]
        assert stored_rider.total_deliveries == 1


# ── Cancel / delete ───────────────────────────────────────────────────


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_pending(self, controller, factory, session_factory):
        admin = await factory.admin()
        customer = await factory.customer()
        delivery = await controller.book(customer, booking())

        delivery = await controller.cancel(admin, delivery.id)
        assert delivery.status == DeliveryStatus.CANCELLED

        async with session_factory() as db:
            events = await TrackingEventRepository(db).list_for_delivery(delivery.id)
            notes = await NotificationRepository(db).list_for_user(customer.profile_id)
            ledger = await TransactionRepository(db).list_for_delivery(delivery.id)
        assert events[0].status_update == MSG_CANCELLED
        assert notes[0].title == "Delivery Cancelled"
        assert ledger == []

    @pytest.mark.asyncio
    async def test_cancel_assigned_releases_rider(self, controller, factory):
        admin = await factory.admin()
        _, _, delivery = await _assigned(controller, factory)
        delivery = await controller.cancel(admin, delivery.id)
        assert delivery.status == DeliveryStatus.CANCELLED
        assert delivery.rider_id is None

    @pytest.mark.asyncio
    async def test_write_breaking_invariants_is_not_committed(
        self, controller, factory, session_factory, monkeypatch
    ):
        admin = await factory.admin()
        _, _, delivery = await _assigned(controller, factory)

        async def cancel_keeping_rider(self, delivery_id, expected):
            return await self._conditional_update(
                delivery_id,
                DeliveryModel.status == expected,
                status=DeliveryStatus.CANCELLED,
            )

        monkeypatch.setattr(DeliveryRepository, "cancel", cancel_keeping_rider)
        with pytest.raises(InvalidStateTransition, match="cannot have a rider"):
            await controller.cancel(admin, delivery.id)

        async with session_factory() as db:
            stored = await DeliveryRepository(db).get_by_id(delivery.id)
            events = await TrackingEventRepository(db).count_for_delivery(delivery.id)
        assert stored.status == DeliveryStatus.ASSIGNED
        assert events == 1

    @pytest.mark.asyncio
    async def test_cannot_cancel_picked_up(self, controller, factory):
        admin = await factory.admin()
        _, rider, delivery = await _assigned(controller, factory)
        await controller.advance(rider, delivery.id, PICKED_UP)
        with pytest.raises(InvalidStateTransition):
            await controller.cancel(admin, delivery.id)

    @pytest.mark.asyncio
    async def test_customers_cannot_cancel(self, controller, factory):
        customer = await factory.customer()
        delivery = await controller.book(customer, booking())
        with pytest.raises(AuthorizationError):
            await controller.cancel(customer, delivery.id)


class TestDelete:
    @pytest.mark.asyncio
    async def test_rider_deletes_own_delivered(self, controller, factory, session_factory):
        _, rider, delivery = await _assigned(controller, factory)
        await _deliver(controller, rider, delivery.id)

        removed = await controller.delete(rider, delivery.id)
        assert removed == 4

        async with session_factory() as db:
            assert await DeliveryRepository(db).get_by_id(delivery.id) is None
            assert await TrackingEventRepository(db).count_for_delivery(delivery.id) == 0
            # The ledger outlives the delivery.
            assert len(await TransactionRepository(db).list_for_delivery(delivery.id)) == 2

    @pytest.mark.asyncio
    async def test_active_delivery_cannot_be_deleted(self, controller, factory):
        admin = await factory.admin()
        _, _, delivery = await _assigned(controller, factory)
        with pytest.raises(InvalidStateTransition):
            await controller.delete(admin, delivery.id)

    @pytest.mark.asyncio
    async def test_customer_cannot_delete(self, controller, factory):
        admin = await factory.admin()
        customer = await factory.customer()
        delivery = await controller.book(customer, booking())
        await controller.cancel(admin, delivery.id)
        with pytest.raises(AuthorizationError):
            await controller.delete(customer, delivery.id)

    @pytest.mark.asyncio
    async def test_admin_deletes_cancelled(self, controller, factory, feed):
        admin = await factory.admin()
        customer = await factory.customer()
        delivery = await controller.book(customer, booking())
        await controller.cancel(admin, delivery.id)
        sub = feed.subscribe("deliveries", events=[ChangeType.DELETE])

        assert await controller.delete(admin, delivery.id) == 1
        [event] = sub.pending()
        assert event.record["id"] == delivery.id
        with pytest.raises(NotFoundError):
            await controller.get(admin, delivery.id)

    @pytest.mark.asyncio
    async def test_store_refuses_delete_with_tracking_left(
        self, controller, factory, session_factory
    ):
        _, _, delivery = await _assigned(controller, factory)
        async with session_factory() as db:
            with pytest.raises(IntegrityError):
                await DeliveryRepository(db).delete(delivery.id)
                await db.commit()


# ── Reads ─────────────────────────────────────────────────────────────


class TestReads:
    @pytest.mark.asyncio
    async def test_role_scoped_listing(self, controller, factory):
        admin = await factory.admin()
        alice = await factory.customer()
        bob = await factory.customer()
        rider = await factory.rider()
        mine = await controller.book(alice, booking())
        theirs = await controller.book(bob, booking())
        await controller.accept(rider, theirs.id)

        assert [d.id for d in await controller.list_deliveries(alice)] == [mine.id]
        assert [d.id for d in await controller.list_deliveries(rider)] == [theirs.id]
        assert {d.id for d in await controller.list_deliveries(admin)} == {mine.id, theirs.id}
        pending = await controller.list_deliveries(admin, DeliveryStatus.PENDING)
        assert [d.id for d in pending] == [mine.id]

    @pytest.mark.asyncio
    async def test_customer_cannot_read_others(self, controller, factory):
        alice = await factory.customer()
        bob = await factory.customer()
        delivery = await controller.book(alice, booking())
        with pytest.raises(AuthorizationError):
            await controller.get(bob, delivery.id)
        with pytest.raises(AuthorizationError):
            await controller.tracking_events(bob, delivery.id)

    @pytest.mark.asyncio
    async def test_available_only_for_online_riders(self, controller, factory):
        customer = await factory.customer()
        online = await factory.rider()
        offline = await factory.rider(available=False)
        delivery = await controller.book(customer, booking())

        assert [d.id for d in await controller.available(online)] == [delivery.id]
        assert await controller.available(offline) == []

    @pytest.mark.asyncio
    async def test_active_and_history(self, controller, factory):
        _, rider, first = await _assigned(controller, factory)
        customer = await factory.customer()
        second = await controller.book(customer, booking())
        await controller.accept(rider, second.id)
        await _deliver(controller, rider, first.id)

        assert [d.id for d in await controller.active_for_rider(rider)] == [second.id]
        assert [d.id for d in await controller.delivered_history(rider)] == [first.id]

    @pytest.mark.asyncio
    async def test_suspended_account_is_locked_out(self, controller, factory, session_factory):
        customer = await factory.customer()
        async with session_factory() as db:
            await ProfileRepository(db).set_status(customer.profile_id, AccountStatus.SUSPENDED)
            await db.commit()
        with pytest.raises(AuthorizationError):
            await controller.book(customer, booking())

    @pytest.mark.asyncio
    async def test_public_tracking_is_case_insensitive(self, controller, factory):
        _, rider, delivery = await _assigned(controller, factory)
        result = await controller.track_public(delivery.tracking_number.lower())

        assert result.delivery.id == delivery.id
        assert result.vehicle_type == "bike"
        assert result.rider_name.startswith("Rider")
        assert [e.status_update for e in result.events] == [MSG_RIDER_ASSIGNED]

    @pytest.mark.asyncio
    async def test_public_tracking_unknown_code(self, controller):
        with pytest.raises(NotFoundError):
            await controller.track_public("LMNOPE")
