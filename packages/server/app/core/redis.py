"""Redis connection management and key namespace."""

from __future__ import annotations

import redis.asyncio as redis

from app.core.config import get_settings

settings = get_settings()

KEY_NAMESPACE = "dms"

_redis_pool: redis.Redis | None = None


def redis_key(*parts: object) -> str:
    """Build a namespaced key, e.g. ``redis_key("batch", "lock", "assessments")``."""
    return ":".join([KEY_NAMESPACE, *(str(p) for p in parts)])


async def get_redis() -> redis.Redis:
    """Get or create the Redis connection."""
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(
            settings.redis_url,
            decode_responses=True,
        )
    return _redis_pool


async def close_redis() -> None:
    """Close the Redis connection pool."""
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None
