"""
FastAPI application factory.

* Registers routes for auth, customers, riders, admins, public tracking
  and the WebSocket change stream.
* Starts / stops the change relay via lifespan events.
* Maps the domain error taxonomy onto HTTP status codes.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from lastmile.api.dependencies import build_services
from lastmile.api.middleware import limiter
from lastmile.api.routes import admin, auth, customer, deliveries, public, rider, ws
from lastmile.config import settings
from lastmile.domain.errors import (
    AuthorizationError,
    ConflictError,
    InvalidStateTransition,
    LastMileError,
    NotFoundError,
    PartialFailureError,
    ValidationError,
)
from lastmile.infrastructure.change_feed import (
    ChangeFeed,
    InMemoryChangeFeed,
    RedisChangeFeed,
)
from lastmile.infrastructure.database import async_session_factory
from lastmile.infrastructure.redis_client import redis_connection
from lastmile.workers import change_relay as _relay

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

# Most specific first; the first isinstance match wins.
ERROR_STATUS: list[tuple[type[LastMileError], int]] = [
    (PartialFailureError, 500),
    (InvalidStateTransition, 409),
    (ValidationError, 400),
    (ConflictError, 409),
    (AuthorizationError, 403),
    (NotFoundError, 404),
]


def status_for(exc: LastMileError) -> int:
    for cls, status in ERROR_STATUS:
        if isinstance(exc, cls):
            return status
    return 500


async def _domain_error(request: Request, exc: LastMileError) -> JSONResponse:
    content = {"detail": exc.message, "retryable": exc.retryable}
    if isinstance(exc, PartialFailureError):
        content["failed_steps"] = exc.failed_steps
    return JSONResponse(status_code=status_for(exc), content=content)


async def _store_unavailable(request: Request, exc: DBAPIError) -> JSONResponse:
    logger.error("Store call failed: %s", exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Store unavailable, try again", "retryable": True},
    )


def default_feed() -> ChangeFeed:
    if settings.use_redis_feed:
        return RedisChangeFeed(redis_connection(), settings.change_channel_prefix)
    return InMemoryChangeFeed()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the change relay on startup; stop it and close subscribers on shutdown."""
    feed = app.state.services.feed
    await _relay.start_change_relay(feed)
    yield
    await _relay.stop_change_relay()
    await feed.aclose()


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    feed: Optional[ChangeFeed] = None,
) -> FastAPI:
    app = FastAPI(
        title="Last-Mile Delivery API",
        description=(
            "Book parcel deliveries, let approved riders claim and progress "
            "them, and follow every change live.  Status changes are "
            "race-safe conditional writes; completion posts the customer "
            "debit and the rider's share to the ledger."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.services = build_services(
        session_factory or async_session_factory, feed or default_feed()
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Error taxonomy
    app.add_exception_handler(LastMileError, _domain_error)
    app.add_exception_handler(OperationalError, _store_unavailable)
    app.add_exception_handler(InterfaceError, _store_unavailable)

    # Routers
    for module in (auth, customer, deliveries, rider, admin, public):
        app.include_router(module.router, prefix="/api/v1")
    app.include_router(ws.router)

    return app
