"""
Redis-backed response cache and rate limiting.

The service boots and serves without Redis: every helper degrades to a
no-op (cache miss, request allowed) and logs a warning.
"""

import logging
import os
from functools import lru_cache
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

REDIS_URL = os.getenv("REDIS_URL", "")


@lru_cache
def get_redis_client() -> Optional[redis.Redis]:
    """
    Get the shared Redis client.
    Returns None if Redis is not configured.
    """
    if not REDIS_URL:
        logger.warning("REDIS_URL not set. Caching and rate limiting are disabled.")
        return None
    return redis.from_url(
        REDIS_URL,
        decode_responses=True,
        socket_connect_timeout=2,
        socket_timeout=2,
    )


async def cache_get(key: str) -> Optional[str]:
    """Get value from cache. Returns None if Redis unavailable or key not found."""
    client = get_redis_client()
    if not client:
        return None
    try:
        return await client.get(key)
    except RedisError as e:
        logger.warning("Redis GET error for key '%s': %s", key, e)
        return None


async def cache_set(key: str, value: str, ttl: int = 60) -> bool:
    """Set value in cache with TTL (seconds). Returns False if Redis unavailable."""
    client = get_redis_client()
    if not client:
        return False
    try:
        await client.setex(key, ttl, value)
        return True
    except RedisError as e:
        logger.warning("Redis SET error for key '%s': %s", key, e)
        return False


async def hit_rate_limit(key: str, window_ms: int, max_requests: int) -> bool:
    """
    Count one request against a fixed window.
    Returns True when the caller is over the limit.
    """
    client = get_redis_client()
    if not client:
        return False
    bucket = f"ratelimit:{key}"
    try:
        count = await client.incr(bucket)
        if count == 1:
            await client.pexpire(bucket, window_ms)
    except RedisError as e:
        logger.warning("Redis rate limit error for key '%s': %s", key, e)
        return False
    return count > max_requests
