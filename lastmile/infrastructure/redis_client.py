"""Redis async connection pool backing the change feed."""

import redis.asyncio as aioredis

from lastmile.config import settings

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url, decode_responses=True
)


def redis_connection() -> aioredis.Redis:
    """Client on the shared pool; connects lazily on first command."""
    return aioredis.Redis(connection_pool=_pool)

