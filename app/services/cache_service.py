"""
OpsGuard - Cache Service

Redis-based caching for per-guard net-pay estimates shown next to a guard.
Entries are invalidated when the guard's salary override changes and when a
new rate-table version is published.

The cache is never authoritative: a miss or a Redis outage just means the
value is recomputed.
"""

import json
import logging
from functools import wraps
from typing import Any, Dict, Optional

import redis.asyncio as redis

from app.config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()


class CacheService:
    """Redis-based caching service."""

    # Cache key prefixes
    PREFIX_NET_PAY = "payroll:net_pay"

    # Default TTL values (in seconds)
    TTL_NET_PAY = settings.net_pay_cache_ttl_seconds

    def __init__(self, redis_url: Optional[str] = None):
        self.redis_url = redis_url or settings.redis_url
        self._client: Optional[redis.Redis] = None

    async def get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # GENERIC CACHE OPERATIONS
    # =========================================================================

    async def get(self, key: str) -> Optional[str]:
        """Get a value from cache."""
        try:
            client = await self.get_client()
            return await client.get(key)
        except Exception as e:
            logger.warning("Cache get failed for %s: %s", key, e)
            return None

    async def set(
        self,
        key: str,
        value: str,
        ttl: Optional[int] = None,
    ) -> bool:
        """Set a value in cache with optional TTL."""
        try:
            client = await self.get_client()
            if ttl:
                await client.setex(key, ttl, value)
            else:
                await client.set(key, value)
            return True
        except Exception as e:
            logger.warning("Cache set failed for %s: %s", key, e)
            return False

    # =========================================================================
    # NET-PAY ESTIMATES
    # =========================================================================

    def _net_pay_key(self, guard_id: str) -> str:
        """Generate cache key for a guard's net-pay estimate."""
        return f"{self.PREFIX_NET_PAY}:{guard_id}"

    async def get_net_pay_estimate(self, guard_id: str) -> Optional[Dict[str, Any]]:
        """Cached estimate, or None on a miss or an unreadable entry."""
        raw = await self.get(self._net_pay_key(guard_id))
        if not raw:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Discarding unreadable net-pay entry for guard %s", guard_id)
            return None

    async def set_net_pay_estimate(
        self,
        guard_id: str,
        data: Dict[str, Any],
        ttl: Optional[int] = None,
    ) -> bool:
        # Decimal and UUID values are stored as strings
        return await self.set(
            self._net_pay_key(guard_id),
            json.dumps(data, default=str),
            ttl or self.TTL_NET_PAY,
        )

    async def invalidate_net_pay(self, guard_id: Optional[str] = None) -> int:
        """
        Drop cached estimates for one guard, or for every guard (a new
        rate-table version changes them all). Returns the number of keys removed.
        """
        try:
            client = await self.get_client()
            if guard_id:
                return await client.delete(self._net_pay_key(guard_id))
            keys = [key async for key in client.scan_iter(match=f"{self.PREFIX_NET_PAY}:*")]
            return await client.delete(*keys) if keys else 0
        except Exception as e:
            logger.warning("Net-pay invalidation failed (guard=%s): %s", guard_id or "*", e)
            return 0

    # =========================================================================
    # UTILITY METHODS
    # =========================================================================

    async def health_check(self) -> Dict[str, Any]:
        """Check cache health."""
        try:
            client = await self.get_client()
            await client.ping()
            return {"status": "healthy", "connected": True}
        except Exception as e:
            return {
                "status": "unhealthy",
                "connected": False,
                "error": str(e),
            }


# =========================================================================
# GLOBAL CACHE INSTANCE
# =========================================================================

_cache_service: Optional[CacheService] = None


def get_cache_service() -> CacheService:
    """Get global cache service instance."""
    global _cache_service
    if _cache_service is None:
        _cache_service = CacheService()
    return _cache_service


async def close_cache_service():
    """Close global cache service."""
    global _cache_service
    if _cache_service:
        await _cache_service.close()
        _cache_service = None


# =========================================================================
# DECORATORS FOR CACHING
# =========================================================================

def cached_net_pay_estimate(ttl: Optional[int] = None):
    """
    Decorator to cache per-guard net-pay estimates.

    The wrapped coroutine takes the guard id first and returns a JSON-safe
    dict. Hits are returned with `cached` set to True.

    Usage:
        @cached_net_pay_estimate()
        async def get_net_pay_estimate(self, guard_id):
            ...
    """
    def decorator(func):
        @wraps(func)
        async def wrapper(self, guard_id, *args, **kwargs):
            cache = getattr(self, "cache", None) or get_cache_service()

            cached = await cache.get_net_pay_estimate(str(guard_id))
            if cached is not None:
                cached["cached"] = True
                return cached

            result = await func(self, guard_id, *args, **kwargs)

            if result is not None:
                await cache.set_net_pay_estimate(str(guard_id), result, ttl)

            return result
        return wrapper
    return decorator
