"""Pool subscription registry.

Tracks which (chain, pool) pairs have a live swap subscription and resolves
each pool's token0/token1 once, when the subscription is created.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from dex_buy_tracker.chain.connection import ChainConnection, ChainError, ChainRPCError
from dex_buy_tracker.chain.models import PoolSubscription
from dex_buy_tracker.chain.pool import ChainConnectionPool

logger = logging.getLogger(__name__)

DEFAULT_RESOLVE_RETRY_DELAY_SECONDS = 1.0


class PoolResolutionError(ChainError):
    """Raised when a pool's token0/token1 cannot be read."""


@dataclass
class RegistryStats:
    """Statistics for subscription attempts."""

    attempts: int = 0
    created: int = 0
    failures: int = 0
    dropped: int = 0


class PoolSubscriptionRegistry:
    """Creates at most one PoolSubscription per (chain, pool), case-insensitive.

    Failures are never remembered: a pool that could not be resolved or
    subscribed is simply attempted again on the next call.
    """

    def __init__(
        self,
        connections: ChainConnectionPool,
        *,
        resolve_retry_delay_seconds: float = DEFAULT_RESOLVE_RETRY_DELAY_SECONDS,
    ) -> None:
        self._connections = connections
        self._retry_delay = resolve_retry_delay_seconds
        self._subscriptions: dict[tuple[str, str], PoolSubscription] = {}
        # Keys with a subscription attempt in flight.
        self._pending: set[tuple[str, str]] = set()
        self._stats = RegistryStats()

    @property
    def stats(self) -> RegistryStats:
        return self._stats

    def get(self, chain: str, pool_address: str) -> PoolSubscription | None:
        return self._subscriptions.get((chain.lower(), pool_address.lower()))

    def count(self, chain: str | None = None) -> int:
        if chain is None:
            return len(self._subscriptions)
        key = chain.lower()
        return sum(1 for c, _ in self._subscriptions if c == key)

    def subscriptions(self, chain: str | None = None) -> list[PoolSubscription]:
        return [
            sub
            for (c, _), sub in self._subscriptions.items()
            if chain is None or c == chain.lower()
        ]

    def drop_chain(self, chain: str) -> int:
        """Forget every subscription of a chain (its connection was lost).

        Returns:
            Number of subscriptions dropped.
        """
        key = chain.lower()
        stale = [k for k in self._subscriptions if k[0] == key]
        for k in stale:
            del self._subscriptions[k]
        self._stats.dropped += len(stale)
        if stale:
            logger.info("Dropped %d subscription(s) for chain %s", len(stale), key)
        return len(stale)

    def _is_live(self, key: tuple[str, str]) -> bool:
        if key not in self._subscriptions:
            return False
        connection = self._connections.get(key[0])
        if connection is not None and connection.has_pool(key[1]):
            return True
        # The connection lost the pool without a disconnect callback reaching us.
        del self._subscriptions[key]
        self._stats.dropped += 1
        return False

    async def ensure_subscribed(self, chain: str, pool_address: str, token_address: str) -> bool:
        """Subscribe to a pool's swaps unless already subscribed.

        Args:
            chain: Chain id.
            pool_address: Pool address (any case).
            token_address: Tracked token the pool was listed for.

        Returns:
            True if a subscription attempt was made (successful or not),
            False if the pool is already subscribed or being subscribed.

        Raises:
            UnknownChainError: If the chain has no endpoint configuration.
        """
        key = (chain.lower(), pool_address.lower())
        if key in self._pending or self._is_live(key):
            return False

        self._pending.add(key)
        try:
            connection = self._connections.get_or_create(key[0])
            self._stats.attempts += 1
            try:
                token0, token1 = await self._resolve_tokens(connection, key[1])
                handle = await connection.subscribe_pool(key[1])
            except ChainError as e:
                self._stats.failures += 1
                logger.warning("Skipping pool %s on %s this tick: %s", key[1], key[0], e)
                return True

            subscription = PoolSubscription(
                chain=key[0],
                pool_address=key[1],
                token0=token0,
                token1=token1,
                handle=handle,
            )
            if not subscription.has_token(token_address):
                logger.warning(
                    "Pool %s on %s does not contain token %s (token0=%s, token1=%s)",
                    key[1],
                    key[0],
                    token_address.lower(),
                    token0,
                    token1,
                )
            self._subscriptions[key] = subscription
            self._stats.created += 1
            logger.info("Subscribed to pool %s on %s", key[1], key[0])
            return True
        finally:
            self._pending.discard(key)

    async def _resolve_tokens(self, connection: ChainConnection, pool: str) -> tuple[str, str]:
        try:
            return await connection.get_pair_tokens(pool)
        except ChainRPCError as e:
            logger.debug("token0/token1 read failed for %s, retrying once: %s", pool, e)

        await asyncio.sleep(self._retry_delay)
        try:
            return await connection.get_pair_tokens(pool)
        except ChainRPCError as e:
            raise PoolResolutionError(f"Cannot resolve tokens of pool {pool}: {e}") from e
