"""Pool discovery and subscription resync loop.

Every tick, for every configured group (concurrently):

1. ensure the group's chain connection is open,
2. discover the token's pools through the market-data provider when the
   group's pool set is sparse or due for a refresh, keeping pools above the
   liquidity floor ordered by descending liquidity (ties by address),
3. ensure a subscription exists for every pool in the group's set.

This loop is the only writer of a group's derived pool set.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import Protocol

from dex_buy_tracker.chain.pool import ChainConnectionPool
from dex_buy_tracker.groups import GroupConfig, GroupConfigStore
from dex_buy_tracker.market.http import MarketDataError
from dex_buy_tracker.market.models import PoolListing
from dex_buy_tracker.tracker.registry import PoolSubscriptionRegistry

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_RESYNC_INTERVAL_SECONDS = 15.0
DEFAULT_POOL_REFRESH_INTERVAL_SECONDS = 600.0
DEFAULT_MIN_POOL_LIQUIDITY_USD = Decimal("1000")


class PoolDiscovery(Protocol):
    async def list_token_pools(self, chain: str, token_address: str) -> list[PoolListing]: ...


class ResyncState(str, Enum):
    """State of the resync loop."""

    STOPPED = "stopped"
    IDLE = "idle"
    SYNCING = "syncing"
    STOPPING = "stopping"


@dataclass
class ResyncStats:
    """Statistics for the resync loop."""

    ticks: int = 0
    group_failures: int = 0
    discoveries: int = 0
    discovery_failures: int = 0
    subscription_attempts: int = 0
    last_tick_time: datetime | None = None
    last_tick_duration_seconds: float = 0.0
    last_error: str | None = None


def rank_pools(listings: list[PoolListing], min_liquidity_usd: Decimal) -> list[PoolListing]:
    """Keep pools above the liquidity floor, highest liquidity first.

    Equal liquidity is ordered by lowercase address so repeated discovery
    over unchanged data yields the same order.
    """
    eligible = [p for p in listings if p.liquidity_usd > min_liquidity_usd]
    return sorted(eligible, key=lambda p: (-p.liquidity_usd, p.address.lower()))


class ResyncLoop:
    """Background task keeping pool sets and subscriptions up to date.

    Example:
        ```python
        loop = ResyncLoop(store, connections, registry, dexscreener)
        await loop.start()  # first tick runs immediately
        ...
        await loop.stop()
        ```
    """

    def __init__(
        self,
        groups: GroupConfigStore,
        connections: ChainConnectionPool,
        registry: PoolSubscriptionRegistry,
        discovery: PoolDiscovery,
        *,
        interval_seconds: float = DEFAULT_RESYNC_INTERVAL_SECONDS,
        pool_refresh_interval_seconds: float = DEFAULT_POOL_REFRESH_INTERVAL_SECONDS,
        discover_all_pools: bool = True,
        min_pool_liquidity_usd: Decimal = DEFAULT_MIN_POOL_LIQUIDITY_USD,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._groups = groups
        self._connections = connections
        self._registry = registry
        self._discovery = discovery
        self._interval = interval_seconds
        self._refresh_interval = pool_refresh_interval_seconds
        self._discover_all = discover_all_pools
        self._min_liquidity = min_pool_liquidity_usd
        self._clock = clock

        self._state = ResyncState.STOPPED
        self._stats = ResyncStats()
        self._stop_event = asyncio.Event()
        self._task: asyncio.Task[None] | None = None

        self._last_discovery: dict[str, float] = {}
        self._main_pair_liquidity: dict[str, Decimal] = {}

    @property
    def state(self) -> ResyncState:
        return self._state

    @property
    def stats(self) -> ResyncStats:
        return self._stats

    def main_pair_liquidity(self, group_id: str) -> Decimal | None:
        """Liquidity of the group's main pair from the latest discovery."""
        return self._main_pair_liquidity.get(group_id)

    def _set_state(self, new_state: ResyncState) -> None:
        if self._state != new_state:
            logger.debug("Resync state: %s -> %s", self._state.value, new_state.value)
            self._state = new_state

    def _needs_discovery(self, group_id: str, config: GroupConfig) -> bool:
        if not self._discover_all:
            return False
        if not config.all_pair_addresses or config.has_only_main_pair:
            return True
        if self._refresh_interval <= 0:
            return False
        last = self._last_discovery.get(group_id)
        return last is None or self._clock() - last >= self._refresh_interval

    async def _discover(self, group_id: str, config: GroupConfig) -> GroupConfig:
        try:
            listings = await self._discovery.list_token_pools(config.chain, config.token_address)
        except MarketDataError as e:
            self._stats.discovery_failures += 1
            logger.warning("Pool discovery failed for group %s: %s", group_id, e)
            return config

        self._stats.discoveries += 1
        self._last_discovery[group_id] = self._clock()
        ranked = rank_pools(listings, self._min_liquidity)
        if not ranked:
            logger.debug("Discovery found no eligible pools for group %s", group_id)
            return config

        self._main_pair_liquidity[group_id] = ranked[0].liquidity_usd
        addresses = tuple(p.address.lower() for p in ranked)
        if addresses == config.all_pair_addresses:
            return config

        updated = self._groups.set_pool_addresses(group_id, addresses)
        logger.info(
            "Group %s pool set updated: main=%s, %d pool(s)",
            group_id,
            updated.pair_address,
            len(updated.all_pair_addresses),
        )
        return updated

    async def sync_group(self, group_id: str, config: GroupConfig) -> int:
        """Run one tick for one group.

        Returns:
            Number of subscription attempts made.

        Raises:
            ChainError: If the group's chain is unknown or unreachable.
        """
        await self._connections.ensure_connected(config.chain)

        if self._needs_discovery(group_id, config):
            config = await self._discover(group_id, config)

        results = await asyncio.gather(
            *(
                self._registry.ensure_subscribed(config.chain, address, config.token_address)
                for address in config.all_pair_addresses
            )
        )
        return sum(1 for attempted in results if attempted)

    async def run_once(self) -> int:
        """Run one resync tick over all groups.

        Per-group failures are logged and do not affect other groups.

        Returns:
            Total number of subscription attempts made.
        """
        self._set_state(ResyncState.SYNCING)
        started = self._clock()
        self._stats.ticks += 1

        groups = self._groups.items()
        results = await asyncio.gather(
            *(self.sync_group(group_id, config) for group_id, config in groups),
            return_exceptions=True,
        )

        attempts = 0
        for (group_id, _), result in zip(groups, results, strict=True):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                self._stats.group_failures += 1
                self._stats.last_error = str(result)
                logger.warning("Resync failed for group %s: %s", group_id, result)
                continue
            attempts += result

        self._stats.subscription_attempts += attempts
        self._stats.last_tick_time = datetime.now(UTC)
        self._stats.last_tick_duration_seconds = self._clock() - started
        if attempts:
            logger.info(
                "Resync tick: %d subscription attempt(s), %d active subscription(s)",
                attempts,
                self._registry.count(),
            )
        self._set_state(ResyncState.IDLE)
        return attempts

    async def start(self) -> None:
        """Start the background loop; the first tick runs immediately."""
        if self._state != ResyncState.STOPPED:
            logger.warning("Cannot start resync: already in state %s", self._state.value)
            return
        self._stop_event.clear()
        self._set_state(ResyncState.IDLE)
        self._task = asyncio.create_task(self._loop())
        logger.info("Resync loop started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        """Stop the background loop."""
        if self._state == ResyncState.STOPPED:
            return
        self._set_state(ResyncState.STOPPING)
        self._stop_event.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
            self._task = None
        self._set_state(ResyncState.STOPPED)
        logger.info("Resync loop stopped")

    async def _loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                await self.run_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                self._stats.last_error = str(e)
                logger.error("Resync tick error: %s", e)
                self._set_state(ResyncState.IDLE)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
                break
            except TimeoutError:
                pass
