from typing import Optional

from redis.asyncio import ConnectionPool

from westroy.core.config import settings

redis_pool: Optional[ConnectionPool] = None


def get_redis_pool() -> ConnectionPool:
    """Get or create the shared Redis connection pool.

    Redis sits on the write path only through the rate limiter, so timeouts
    are short: a slow Redis must not hold up request creation.
    """
    global redis_pool
    if redis_pool is None:
        redis_pool = ConnectionPool.from_url(
            settings.REDIS_URL,
            max_connections=50,
            decode_responses=True,
            encoding="utf-8",
            socket_timeout=0.5,
            socket_connect_timeout=0.5,
        )
    return redis_pool


async def close_redis() -> None:
    """Close the connection pool."""
    global redis_pool
    if redis_pool is not None:
        await redis_pool.disconnect()
        redis_pool = None
