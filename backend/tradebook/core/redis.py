"""
Redis connection management.

Provides the synchronous Redis client used for metric streams.
"""

from typing import Optional
from redis import Redis
from tradebook.core.config import settings

redis_client: Optional[Redis] = None


def get_redis() -> Redis:
    """Get synchronous Redis client."""
    global redis_client
    if redis_client is None:
        redis_client = Redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            max_connections=settings.REDIS_MAX_CONNECTIONS,
        )
    return redis_client


def close_redis() -> None:
    """Close Redis connections."""
    global redis_client

    if redis_client is not None:
        redis_client.close()
        redis_client = None


class StreamNames:
    """Redis Stream names."""

    METRICS = "metrics"
