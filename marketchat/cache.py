"""
Redis-backed helpers: counters with TTL and per-user rate limiting
Everything degrades to a no-op (allow) when Redis is not connected
"""
import os
from typing import Optional
from . import core
import logging

logger = logging.getLogger(__name__)

SEND_RATE_LIMIT = int(os.getenv('SEND_RATE_LIMIT', '100'))  # messages per hour


class CacheManager:
    """Thin wrapper over the shared Redis connection"""

    def __init__(self):
        self.default_ttl = 3600  # 1 hour default TTL

    def _make_key(self, key: str, prefix: str = "") -> str:
        """Generate cache key with prefix"""
        if prefix:
            return f"{prefix}:{key}"
        return key

    async def increment(self, key: str, ttl: int = None, prefix: str = "") -> Optional[int]:
        """Increment a counter, starting its TTL on first use"""
        if not core.REDIS:
            return None
        cache_key = self._make_key(key, prefix)
        try:
            value = await core.REDIS.incr(cache_key)
            if value == 1:
                await core.REDIS.expire(cache_key, ttl or self.default_ttl)
            return value
        except Exception as e:
            logger.error(f"Cache increment failed for key {cache_key}: {str(e)}")
            return None


cache = CacheManager()


async def check_rate_limit(user_id: int, action: str, limit: int = 100, window: int = 3600) -> bool:
    """Check if user is within rate limit"""
    key = f"rate_limit:{user_id}:{action}"

    current = await cache.increment(key, window, "rate")
    if current is None:
        return True
    return current <= limit
