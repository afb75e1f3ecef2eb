"""FastAPI dependency injection helpers."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lastmile.domain.entities import Session
from lastmile.domain.enums import UserRole
from lastmile.infrastructure.change_feed import ChangeFeed
from lastmile.infrastructure.repositories import ProfileRepository
from lastmile.services.accounts import AccountService
from lastmile.services.admin import AdminService
from lastmile.services.lifecycle import DeliveryController
from lastmile.services.notifications import NotificationService
from lastmile.services.riders import RiderService
from lastmile.views.roles import AdminView, CustomerView, RiderView


@dataclass
class Services:
    session_factory: async_sessionmaker[AsyncSession]
    feed: ChangeFeed
    controller: DeliveryController
    accounts: AccountService
    riders: RiderService
    admin: AdminService
    notifications: NotificationService


def build_services(
    session_factory: async_sessionmaker[AsyncSession], feed: ChangeFeed
) -> Services:
    controller = DeliveryController(session_factory, feed)
    return Services(
        session_factory=session_factory,
        feed=feed,
        controller=controller,
        accounts=AccountService(session_factory),
        riders=RiderService(session_factory, feed, controller),
        admin=AdminService(session_factory, feed, controller),
        notifications=NotificationService(session_factory, controller),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


async def get_db(services: Services = Depends(get_services)) -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with services.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def resolve_session(services: Services, user_id: Optional[int]) -> Session:
    """Build the acting ``Session`` for ``user_id`` from stored state."""
    if user_id is None:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    async with services.session_factory() as db:
        profile = await ProfileRepository(db).get_by_id(user_id)
        if profile is None:
            raise HTTPException(status_code=401, detail="Unknown user")
        return await services.controller.authenticate(
            db, Session(profile.id, UserRole(profile.role))
        )


async def get_session(
    x_user_id: Optional[int] = Header(None),
    services: Services = Depends(get_services),
) -> Session:
    return await resolve_session(services, x_user_id)


def get_customer_view(
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
) -> CustomerView:
    return CustomerView(session, services.controller, services.feed)


def get_rider_view(
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
) -> RiderView:
    return RiderView(session, services.controller, services.feed)


def get_admin_view(
    session: Session = Depends(get_session),
    services: Services = Depends(get_services),
) -> AdminView:
    return AdminView(session, services.controller, services.feed)
