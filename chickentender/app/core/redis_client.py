"""
Redis connection.

Redis only holds short-lived security state: the per-user token revocation
flags written when an administrator disables an account. Everything else
lives in the database.
"""

import logging

import redis.asyncio as redis
from chickentender.app.core.config import settings

logger = logging.getLogger(__name__)

redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """Shared client; also usable as a FastAPI dependency."""
    return redis_client


async def ping_redis() -> bool:
    """True when Redis answers, for the health endpoint."""
    try:
        return bool(await redis_client.ping())
    except Exception as e:
        logger.warning("Redis ping failed: %s", e)
        return False


async def close_redis() -> None:
    """Release the connection pool on shutdown."""
    try:
        await redis_client.aclose()
    except Exception as e:
        logger.warning("Error closing Redis connection: %s", e)
