"""Main pipeline orchestrator for the DEX buy tracker.

This module provides the Pipeline class that owns every long-lived component
(chain connections, subscription registry, resync loop, enrichment and
alerting) and routes swap events from the chain connections to alerts.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

import httpx
from redis.asyncio import Redis

from dex_buy_tracker.alerter.dispatcher import AlertDispatcher, MessagingGateway
from dex_buy_tracker.alerter.formatter import AlertFormatter
from dex_buy_tracker.alerter.gateway import TelegramGateway
from dex_buy_tracker.chain.models import SwapEvent
from dex_buy_tracker.chain.pool import ChainConnectionPool
from dex_buy_tracker.config import Settings, get_settings
from dex_buy_tracker.groups import GroupConfig, GroupConfigError, GroupConfigStore
from dex_buy_tracker.market.cache import RedisCache
from dex_buy_tracker.market.dexscreener import DexScreenerClient
from dex_buy_tracker.market.prices import NativePriceClient
from dex_buy_tracker.tracker.classifier import classify
from dex_buy_tracker.tracker.dedup import SwapDeduplicator
from dex_buy_tracker.tracker.enrichment import MetricsEnricher
from dex_buy_tracker.tracker.registry import PoolSubscriptionRegistry
from dex_buy_tracker.tracker.resync import ResyncLoop

logger = logging.getLogger(__name__)

CACHE_KEY_PREFIX = "dexbuy:"


class PipelineState(str, Enum):
    """Pipeline lifecycle states."""

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class PipelineStats:
    """Statistics for the pipeline."""

    started_at: datetime | None = None
    swaps_received: int = 0
    duplicates_skipped: int = 0
    buys_detected: int = 0
    alerts_sent: int = 0
    errors: int = 0
    last_swap_time: datetime | None = None
    last_error: str | None = None


class Pipeline:
    """Main pipeline orchestrator for the DEX buy tracker.

    Pipeline flow:
        Resync Loop → Subscription Registry → Chain Connection (swap logs)
        → Swap Classifier → Metrics Enrichment → Alert Dispatcher → Telegram

    Components not passed in are built from settings in start().

    Example:
        ```python
        from dex_buy_tracker.config import get_settings
        from dex_buy_tracker.pipeline import Pipeline

        settings = get_settings()
        pipeline = Pipeline(settings)

        await pipeline.start()
        # Pipeline runs until stop() is called
        await pipeline.stop()
        ```
    """

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        dry_run: bool | None = None,
        groups: GroupConfigStore | None = None,
        market: DexScreenerClient | None = None,
        prices: NativePriceClient | None = None,
        gateway: MessagingGateway | None = None,
        connections: ChainConnectionPool | None = None,
    ) -> None:
        """Initialize the pipeline.

        Args:
            settings: Application settings. If not provided, uses get_settings().
            dry_run: If True, log alerts instead of sending. Overrides settings.dry_run.
            groups: Group configuration; loaded from settings.groups_file if omitted.
            market: Market-data client.
            prices: Native price client.
            gateway: Messaging gateway; built from the Telegram token if omitted.
            connections: Chain connection pool.
        """
        self._settings = settings or get_settings()
        self._dry_run = dry_run if dry_run is not None else self._settings.dry_run

        self._state = PipelineState.STOPPED
        self._stats = PipelineStats()

        # Components (initialized in start() unless injected)
        self._groups = groups
        self._market = market
        self._prices = prices
        self._gateway = gateway
        self._connections = connections
        self._redis: Redis | None = None
        self._http: httpx.AsyncClient | None = None
        self._telegram: TelegramGateway | None = None
        self._registry: PoolSubscriptionRegistry | None = None
        self._resync: ResyncLoop | None = None
        self._enricher: MetricsEnricher | None = None
        self._dispatcher: AlertDispatcher | None = None
        self._dedup: SwapDeduplicator | None = None

        # Synchronization
        self._stop_event: asyncio.Event | None = None
        self._event_tasks: set[asyncio.Task[None]] = set()

    @property
    def state(self) -> PipelineState:
        """Current pipeline state."""
        return self._state

    @property
    def stats(self) -> PipelineStats:
        """Current pipeline statistics."""
        return self._stats

    @property
    def is_running(self) -> bool:
        """Check if pipeline is running."""
        return self._state == PipelineState.RUNNING

    @property
    def groups(self) -> GroupConfigStore | None:
        return self._groups

    @property
    def registry(self) -> PoolSubscriptionRegistry | None:
        return self._registry

    @property
    def resync(self) -> ResyncLoop | None:
        return self._resync

    @property
    def dispatcher(self) -> AlertDispatcher | None:
        return self._dispatcher

    async def start(self) -> None:
        """Start the pipeline.

        Initializes all components and starts the resync loop, whose first
        tick runs immediately.

        Raises:
            RuntimeError: If pipeline is already running.
            GroupConfigError: If the group configuration is missing or invalid.
        """
        if self._state != PipelineState.STOPPED:
            raise RuntimeError(f"Cannot start pipeline in state {self._state}")

        self._state = PipelineState.STARTING
        self._stop_event = asyncio.Event()
        logger.info("Starting pipeline...")

        try:
            await self._initialize_components()
            if self._resync:
                await self._resync.start()
            self._stats.started_at = datetime.now(UTC)
            self._state = PipelineState.RUNNING
            logger.info("Pipeline started successfully")
        except Exception as e:
            self._state = PipelineState.ERROR
            self._stats.last_error = str(e)
            logger.error("Failed to start pipeline: %s", e)
            await self._cleanup()
            self._state = PipelineState.STOPPED
            raise

    async def stop(self) -> None:
        """Stop the pipeline gracefully.

        Stops the resync loop, cancels in-flight event processing and closes
        all connections.
        """
        if self._state == PipelineState.STOPPED:
            return

        self._state = PipelineState.STOPPING
        logger.info("Stopping pipeline...")

        if self._stop_event:
            self._stop_event.set()

        if self._resync:
            await self._resync.stop()

        tasks = list(self._event_tasks)
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task
        self._event_tasks.clear()

        await self._cleanup()

        self._state = PipelineState.STOPPED
        logger.info("Pipeline stopped")

    async def _initialize_components(self) -> None:
        """Initialize all pipeline components."""
        settings = self._settings

        if self._groups is None:
            self._groups = GroupConfigStore.load(settings.groups_file)
        unknown = sorted(self._groups.chains() - set(settings.chains))
        if unknown:
            raise GroupConfigError(f"Groups reference unconfigured chain(s): {', '.join(unknown)}")

        if settings.redis.enabled and settings.redis.url:
            self._redis = Redis.from_url(settings.redis.url)
            logger.info("Redis cache enabled")

        ttl = settings.market_data.cache_ttl_seconds
        if self._market is None:
            self._market = DexScreenerClient(
                self._http_client(),
                base_url=settings.market_data.dexscreener_url,
                cache=RedisCache(self._redis, prefix=f"{CACHE_KEY_PREFIX}pair:", ttl_seconds=ttl),
                max_retries=settings.market_data.max_retries,
            )
        if self._prices is None:
            self._prices = NativePriceClient(
                settings.chains,
                self._http_client(),
                base_url=settings.market_data.price_api_url,
                cache=RedisCache(self._redis, prefix=f"{CACHE_KEY_PREFIX}price:", ttl_seconds=ttl),
                max_retries=settings.market_data.max_retries,
            )

        if self._connections is None:
            self._connections = ChainConnectionPool(
                settings.chains,
                settings.tracker,
                on_swap=self._on_swap,
                on_disconnect=self._on_chain_disconnect,
            )

        self._registry = PoolSubscriptionRegistry(
            self._connections,
            resolve_retry_delay_seconds=settings.tracker.resolve_retry_delay_seconds,
        )
        self._resync = ResyncLoop(
            self._groups,
            self._connections,
            self._registry,
            self._market,
            interval_seconds=settings.tracker.resync_interval_seconds,
            pool_refresh_interval_seconds=settings.tracker.pool_refresh_interval_seconds,
            discover_all_pools=settings.tracker.discover_all_pools,
            min_pool_liquidity_usd=settings.tracker.min_pool_liquidity_usd,
        )
        self._enricher = MetricsEnricher(self._market, self._prices, self._connections)
        self._dedup = SwapDeduplicator(
            RedisCache(self._redis, prefix=CACHE_KEY_PREFIX) if self._redis else None,
            ttl_seconds=settings.tracker.dedup_ttl_seconds,
            max_entries=settings.tracker.dedup_max_entries,
        )

        formatter = AlertFormatter(settings.chains, settings.alert)
        self._dispatcher = AlertDispatcher(
            formatter,
            self._build_gateway(),
            dry_run=self._dry_run,
        )
        if self._telegram is not None:
            await self._telegram.start()

        logger.info(
            "Pipeline components initialized: %d group(s), chains=%s, dry_run=%s",
            len(self._groups),
            ",".join(sorted(self._groups.chains())),
            self._dry_run,
        )

    def _http_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._settings.tracker.request_timeout_seconds)
        return self._http

    def _build_gateway(self) -> MessagingGateway | None:
        if self._gateway is not None:
            return self._gateway
        if self._dry_run:
            return None
        token = self._settings.telegram.bot_token
        if token is None:
            logger.warning("TELEGRAM_BOT_TOKEN not set; alerts will only be logged")
            return None
        self._telegram = TelegramGateway.from_token(token.get_secret_value())
        logger.info("Telegram gateway enabled")
        return self._telegram

    async def _cleanup(self) -> None:
        """Clean up resources."""
        if self._connections:
            await self._connections.aclose()

        if self._telegram:
            await self._telegram.aclose()
            self._telegram = None

        if self._http:
            await self._http.aclose()
            self._http = None

        if self._redis:
            await self._redis.aclose()
            self._redis = None

        logger.debug("Resources cleaned up")

    async def _on_chain_disconnect(self, chain: str) -> None:
        if self._registry:
            self._registry.drop_chain(chain)

    async def _on_swap(self, chain: str, event: SwapEvent) -> None:
        """Schedule processing of one swap without blocking the listener."""
        self._stats.swaps_received += 1
        self._stats.last_swap_time = datetime.now(UTC)
        task = asyncio.create_task(self.process_swap(chain, event))
        self._event_tasks.add(task)
        task.add_done_callback(self._event_tasks.discard)

    async def process_swap(self, chain: str, event: SwapEvent) -> int:
        """Classify, enrich and dispatch one swap to every group watching its pool.

        Returns:
            Number of alerts delivered.
        """
        try:
            return await self._process_swap(chain, event)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._stats.errors += 1
            self._stats.last_error = str(e)
            logger.error("Error processing swap %s on %s: %s", event.tx_hash, chain, e)
            return 0

    async def _process_swap(self, chain: str, event: SwapEvent) -> int:
        if self._registry is None or self._groups is None or self._dedup is None:
            return 0

        subscription = self._registry.get(chain, event.pool_address)
        if subscription is None:
            logger.debug("Swap on unsubscribed pool %s (%s)", event.pool_address, chain)
            return 0

        if not await self._dedup.first_seen(chain, event):
            self._stats.duplicates_skipped += 1
            return 0

        # Groups on the same pool may track different tokens.
        by_token: dict[str, list[tuple[str, GroupConfig]]] = defaultdict(list)
        for group_id, config in self._groups.groups_for_pool(chain, event.pool_address):
            by_token[config.token_address].append((group_id, config))

        results = await asyncio.gather(
            *(
                self._alert_token(token, members, event, subscription.token0, subscription.token1)
                for token, members in by_token.items()
            )
        )
        return sum(results)

    async def _alert_token(
        self,
        token: str,
        members: list[tuple[str, GroupConfig]],
        event: SwapEvent,
        token0: str,
        token1: str,
    ) -> int:
        if self._enricher is None or self._dispatcher is None:
            return 0

        signal = classify(event, token0, token1, token)
        if signal is None:
            return 0
        self._stats.buys_detected += 1
        logger.debug("Buy detected: tx=%s pool=%s token=%s", event.tx_hash, event.pool_address, token)

        alert = await self._enricher.enrich(signal, members[0][1])

        dispatches = []
        for group_id, config in members:
            main_liquidity = self._resync.main_pair_liquidity(group_id) if self._resync else None
            group_alert = (
                dataclasses.replace(alert, main_pair_liquidity_usd=main_liquidity)
                if main_liquidity is not None
                else alert
            )
            dispatches.append(self._dispatcher.maybe_alert(group_id, config, group_alert))

        outcomes = await asyncio.gather(*dispatches, return_exceptions=True)
        sent = 0
        for (group_id, _), outcome in zip(members, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                self._stats.errors += 1
                logger.error("Dispatch to group %s failed: %s", group_id, outcome)
            elif outcome:
                sent += 1
        self._stats.alerts_sent += sent
        return sent

    async def run(self) -> None:
        """Start the pipeline and run until interrupted.

        Example:
            ```python
            pipeline = Pipeline()
            try:
                await pipeline.run()
            except KeyboardInterrupt:
                pass
            ```
        """
        await self.start()

        try:
            if self._stop_event:
                await self._stop_event.wait()
        except asyncio.CancelledError:
            pass
        finally:
            await self.stop()

    async def __aenter__(self) -> Pipeline:
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.stop()


__all__ = ["Pipeline", "PipelineState", "PipelineStats"]
