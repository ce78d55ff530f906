"""De-duplication of swap events redelivered after a reconnect."""

from __future__ import annotations

import logging
from collections import OrderedDict

from dex_buy_tracker.chain.models import SwapEvent
from dex_buy_tracker.market.cache import RedisCache

logger = logging.getLogger(__name__)

DEFAULT_MAX_ENTRIES = 10_000
DEFAULT_TTL_SECONDS = 3600


class SwapDeduplicator:
    """Remembers recently processed (chain, tx hash, log index) keys.

    Uses Redis ``SET NX EX`` when a cache is available, so several processes
    share one view; otherwise, or when Redis fails, a bounded in-memory LRU.
    """

    def __init__(
        self,
        cache: RedisCache | None = None,
        *,
        ttl_seconds: int = DEFAULT_TTL_SECONDS,
        max_entries: int = DEFAULT_MAX_ENTRIES,
    ) -> None:
        self._cache = cache
        self._ttl = ttl_seconds
        self._max_entries = max_entries
        self._seen: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def _remember_locally(self, key: str) -> bool:
        if key in self._seen:
            self._seen.move_to_end(key)
            return False
        self._seen[key] = None
        while len(self._seen) > self._max_entries:
            self._seen.popitem(last=False)
        return True

    async def first_seen(self, chain: str, event: SwapEvent) -> bool:
        """Record the event and report whether it is new."""
        key = f"{chain.lower()}:{event.dedup_key}"
        is_new_locally = self._remember_locally(key)
        if not is_new_locally:
            return False

        if self._cache is not None:
            claimed = await self._cache.add_if_absent(self._cache.key("swap", key), self._ttl)
            if claimed is False:
                logger.debug("Swap %s already processed elsewhere", key)
                return False
        return True
