"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) per test so tests run
without Docker / PostgreSQL / Redis.  A file rather than ``:memory:`` so
concurrent sessions get their own connections and really race; foreign
keys are switched on for every connection so the no-cascade rule on
``tracking_events`` is enforced.
"""

import os

# Settings are read at import time.
os.environ.setdefault("USE_REDIS_FEED", "false")
os.environ.setdefault("RATE_LIMIT", "10000/minute")

from typing import AsyncGenerator, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from lastmile.domain.entities import Session
from lastmile.domain.enums import (
    AccountStatus,
    ApprovalStatus,
    DeliveryStatus,
    UserRole,
    VehicleType,
)
from lastmile.infrastructure.change_feed import InMemoryChangeFeed
from lastmile.infrastructure.database import Base
from lastmile.infrastructure.models import (
    AuthIdentityModel,
    DeliveryTypeModel,
    ProfileModel,
    RiderModel,
    WalletModel,
)
from lastmile.services.lifecycle import BookingRequest, DeliveryController


# ── Test DB (SQLite file per test) ────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'lastmile.db'}", echo=False
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _enable_foreign_keys(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def feed() -> InMemoryChangeFeed:
    return InMemoryChangeFeed()


@pytest.fixture
def controller(session_factory, feed) -> DeliveryController:
    return DeliveryController(session_factory, feed)


# ── Factories ─────────────────────────────────────────────────────────


class Factory:
    """Writes fixture rows straight through the ORM."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._seq = 0

    async def profile(
        self,
        role: UserRole,
        *,
        status: AccountStatus = AccountStatus.ACTIVE,
        name: Optional[str] = None,
    ) -> Session:
        self._seq += 1
        email = f"{role.value}{self._seq}@example.com"
        async with self.session_factory() as db:
            identity = AuthIdentityModel(email=email, password_hash="x")
            db.add(identity)
            await db.flush()
            db.add(
                ProfileModel(
                    id=identity.id,
                    email=email,
                    full_name=name or f"{role.value.title()} {self._seq}",
                    phone="+2348000000000",
                    role=role,
                    status=status,
                )
            )
            if role == UserRole.CUSTOMER:
                db.add(WalletModel(user_id=identity.id, balance=0))
            await db.commit()
            return Session(identity.id, role)

    async def customer(self) -> Session:
        return await self.profile(UserRole.CUSTOMER)

    async def admin(self) -> Session:
        return await self.profile(UserRole.ADMIN)

    async def rider(
        self,
        *,
        approval: ApprovalStatus = ApprovalStatus.APPROVED,
        available: bool = True,
        lat: Optional[float] = 9.0600,
        lng: Optional[float] = 7.4900,
    ) -> Session:
        session = await self.profile(UserRole.RIDER)
        async with self.session_factory() as db:
            rider = RiderModel(
                user_id=session.profile_id,
                vehicle_type=VehicleType.BIKE,
                vehicle_number=f"ABJ-{self._seq:03d}",
                driver_license=f"DL-{self._seq:05d}",
                is_available=available,
                current_lat=lat,
                current_lng=lng,
                approval_status=approval,
            )
            db.add(rider)
            await db.commit()
            return Session(session.profile_id, UserRole.RIDER, rider.id)

    async def tier(
        self, name: str = "Express", base_price: int = 1000, active: bool = True
    ) -> DeliveryTypeModel:
        async with self.session_factory() as db:
            tier = DeliveryTypeModel(
                name=name,
                description=f"{name} delivery",
                base_price=base_price,
                estimated_hours=24,
                is_active=active,
            )
            db.add(tier)
            await db.commit()
            return tier


@pytest.fixture
def factory(session_factory) -> Factory:
    return Factory(session_factory)


def booking(**overrides) -> BookingRequest:
    """Abuja-bound parcel from the reference pickup point."""
    fields = dict(
        pickup_address="12 Unity Road, Lafia",
        pickup_lat=9.0820,
        pickup_lng=8.6753,
        dropoff_address="Central Business District, Abuja",
        dropoff_lat=9.0579,
        dropoff_lng=7.4951,
        package_details="Documents",
        recipient_name="Ada Recipient",
        recipient_phone="+2348011111111",
    )
    fields.update(overrides)
    return BookingRequest(**fields)


# Rider steps after a claim, in order.
RIDER_STEPS = (
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.DELIVERED,
)


# ── HTTP client ───────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def client(session_factory, feed) -> AsyncGenerator[AsyncClient, None]:
    from lastmile.api.app import create_app

    app = create_app(session_factory=session_factory, feed=feed)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


def as_user(session: Session) -> dict[str, str]:
    return {"X-User-Id": str(session.profile_id)}
