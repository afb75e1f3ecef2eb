"""
Role views: one class per role, each exposing only the lifecycle
operations that role may invoke.

The store boundary still re-checks every call; a view narrows the surface,
it does not grant anything.  ``view_for`` picks the class from the
session's role.
"""

from __future__ import annotations

from typing import Optional

from lastmile.domain.entities import Session
from lastmile.domain.enums import DeliveryStatus, UserRole
from lastmile.domain.errors import AuthorizationError
from lastmile.infrastructure.change_feed import ChangeFeed, snapshot
from lastmile.infrastructure.models import DeliveryModel, TrackingEventModel
from lastmile.services.lifecycle import BookingRequest, DeliveryController

from .live import LiveCollection


class RoleView:
    role: UserRole

    def __init__(
        self,
        session: Session,
        controller: DeliveryController,
        feed: ChangeFeed,
    ):
        if session.role != self.role:
            raise AuthorizationError(
                f"{type(self).__name__} needs a {self.role.value} session"
            )
        self.session = session
        self.controller = controller
        self.feed = feed
        self._live: list[LiveCollection] = []

    async def _watch(self, collection: LiveCollection) -> LiveCollection:
        self._live.append(collection)
        return await collection.start()

    async def get(self, delivery_id: int) -> DeliveryModel:
        return await self.controller.get(self.session, delivery_id)

    async def tracking(self, delivery_id: int) -> list[TrackingEventModel]:
        return await self.controller.tracking_events(self.session, delivery_id)

    async def watch_tracking(self, delivery_id: int) -> LiveCollection:
        """Tracking events of one delivery, newest first."""

        async def load():
            return [snapshot(e) for e in await self.tracking(delivery_id)]

        return await self._watch(
            LiveCollection(
                self.feed,
                "tracking_events",
                load,
                filters={"delivery_id": delivery_id},
            )
        )

    async def close(self) -> None:
        """Unsubscribe everything this view opened (sign-out / unmount)."""
        for collection in self._live:
            await collection.close()
        self._live.clear()


class CustomerView(RoleView):
    role = UserRole.CUSTOMER

    async def quote(self, request: BookingRequest) -> int:
        return await self.controller.quote(request)

    async def book(self, request: BookingRequest) -> DeliveryModel:
        return await self.controller.book(self.session, request)

    async def deliveries(self) -> list[DeliveryModel]:
        return await self.controller.list_deliveries(self.session)

    async def watch_deliveries(self) -> LiveCollection:
        async def load():
            return [snapshot(d) for d in await self.deliveries()]

        return await self._watch(
            LiveCollection(
                self.feed,
                "deliveries",
                load,
                filters={"customer_id": self.session.profile_id},
            )
        )


class RiderView(RoleView):
    role = UserRole.RIDER

    async def available(self) -> list[DeliveryModel]:
        return await self.controller.available(self.session)

    async def accept(self, delivery_id: int) -> DeliveryModel:
        return await self.controller.accept(self.session, delivery_id)

    async def advance(self, delivery_id: int, target: DeliveryStatus) -> DeliveryModel:
        return await self.controller.advance(self.session, delivery_id, target)

    async def active(self) -> list[DeliveryModel]:
        return await self.controller.active_for_rider(self.session)

    async def history(self) -> list[DeliveryModel]:
        return await self.controller.delivered_history(self.session)

    async def delete(self, delivery_id: int) -> int:
        return await self.controller.delete(self.session, delivery_id)

    async def watch_available(self) -> LiveCollection:
        # Unfiltered subscription: a claim turns the row non-pending and
        # the predicate drops it.
        async def load():
            return [snapshot(d) for d in await self.available()]

        return await self._watch(
            LiveCollection(
                self.feed,
                "deliveries",
                load,
                predicate=lambda row: row.get("status") == DeliveryStatus.PENDING.value
                and row.get("rider_id") is None,
            )
        )

    async def watch_assigned(self) -> LiveCollection:
        # Unfiltered as well, so a reassignment away from this rider is seen.
        rider_id = self.session.rider_id

        async def load():
            return [snapshot(d) for d in await self.controller.list_deliveries(self.session)]

        return await self._watch(
            LiveCollection(
                self.feed,
                "deliveries",
                load,
                predicate=lambda row: rider_id is not None
                and row.get("rider_id") == rider_id,
            )
        )


class AdminView(RoleView):
    role = UserRole.ADMIN

    async def deliveries(
        self, status: Optional[DeliveryStatus] = None
    ) -> list[DeliveryModel]:
        return await self.controller.list_deliveries(self.session, status)

    async def assign(self, delivery_id: int, rider_id: int) -> DeliveryModel:
        return await self.controller.assign(self.session, delivery_id, rider_id)

    async def reassign(self, delivery_id: int, rider_id: int) -> DeliveryModel:
        return await self.controller.reassign(self.session, delivery_id, rider_id)

    async def cancel(self, delivery_id: int) -> DeliveryModel:
        return await self.controller.cancel(self.session, delivery_id)

    async def delete(self, delivery_id: int) -> int:
        return await self.controller.delete(self.session, delivery_id)

    async def history(self) -> list[DeliveryModel]:
        return await self.controller.delivered_history(self.session)

    async def watch_deliveries(
        self, status: Optional[DeliveryStatus] = None
    ) -> LiveCollection:
        async def load():
            return [snapshot(d) for d in await self.deliveries(status)]

        wanted = status.value if status is not None else None
        return await self._watch(
            LiveCollection(
                self.feed,
                "deliveries",
                load,
                predicate=lambda row: wanted is None or row.get("status") == wanted,
            )
        )


VIEWS: dict[UserRole, type[RoleView]] = {
    UserRole.CUSTOMER: CustomerView,
    UserRole.RIDER: RiderView,
    UserRole.ADMIN: AdminView,
}


def view_for(
    session: Session, controller: DeliveryController, feed: ChangeFeed
) -> RoleView:
    return VIEWS[session.role](session, controller, feed)
