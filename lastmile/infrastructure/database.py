"""
Async SQLAlchemy engine and session factory.

Production runs on ``asyncpg``; tests build their own engine on
``aiosqlite`` and hand its session factory to the app factory.  The
lifecycle controller opens its own sessions from ``async_session_factory``
because it owns the transaction boundaries of each operation.
"""

from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from lastmile.config import settings

engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,  # drop connections the store closed while idle
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Declarative base for the delivery schema."""

    # Fetch server-generated timestamps on flush; lazy loads are not
    # available under asyncio.
    __mapper_args__ = {"eager_defaults": True}
