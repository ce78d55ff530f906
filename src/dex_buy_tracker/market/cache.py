"""Optional Redis-backed cache shared by market-data clients and de-duplication."""

from __future__ import annotations

import json
import logging
from typing import Any

from redis.asyncio import Redis

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 30


class RedisCache:
    """Namespaced JSON cache over ``redis.asyncio``.

    Every method degrades to a miss when Redis is unavailable; cache errors
    are logged and never raised.
    """

    def __init__(
        self,
        redis: Redis | None,
        *,
        prefix: str,
        ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self._redis = redis
        self._prefix = prefix
        self._ttl = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self._redis is not None and self._ttl > 0

    def key(self, *parts: str) -> str:
        return self._prefix + ":".join(p.lower() for p in parts)

    async def get_json(self, key: str) -> Any | None:
        """Get a cached JSON value."""
        if not self.enabled or self._redis is None:
            return None
        try:
            value = await self._redis.get(key)
        except Exception as e:
            logger.warning("Cache get failed: %s", e)
            return None
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode()
        try:
            return json.loads(value)
        except ValueError:
            logger.warning("Discarding undecodable cache entry %s", key)
            return None

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> None:
        """Set a JSON value with TTL."""
        if not self.enabled or self._redis is None:
            return
        try:
            await self._redis.set(key, json.dumps(value), ex=ttl or self._ttl)
        except Exception as e:
            logger.warning("Cache set failed: %s", e)

    async def add_if_absent(self, key: str, ttl: int) -> bool | None:
        """Atomically claim a key (``SET NX EX``).

        Returns:
            True if the key was newly set, False if it already existed,
            None if Redis is unavailable.
        """
        if self._redis is None:
            return None
        try:
            result = await self._redis.set(key, "1", ex=ttl, nx=True)
        except Exception as e:
            logger.warning("Cache claim failed: %s", e)
            return None
        return bool(result)
