"""Tests for the pool discovery resync loop."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from dex_buy_tracker.groups import GroupConfigStore
from dex_buy_tracker.market.http import MarketDataError
from dex_buy_tracker.market.models import PoolListing
from dex_buy_tracker.tracker.registry import PoolSubscriptionRegistry
from dex_buy_tracker.tracker.resync import ResyncLoop, ResyncState, rank_pools
from fakes import FakeConnection, FakeConnectionPool, FakeMarketData

TOKEN = "0x" + "ab" * 20
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
CONFIGURED_PAIR = "0x" + "cd" * 20
P1 = "0x" + "51" * 20
P2 = "0x" + "52" * 20
P3 = "0x" + "53" * 20


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def connection() -> FakeConnection:
    return FakeConnection(
        "bsc",
        {
            CONFIGURED_PAIR: (TOKEN, WBNB),
            P1: (TOKEN, WBNB),
            P2: (WBNB, TOKEN),
            P3: (TOKEN, WBNB),
        },
    )


@pytest.fixture
def connections(connection: FakeConnection) -> FakeConnectionPool:
    return FakeConnectionPool(connection)


@pytest.fixture
def store() -> GroupConfigStore:
    return GroupConfigStore.from_dict(
        {"-1001": {"chain": "bsc", "token_address": TOKEN, "pair_address": CONFIGURED_PAIR}}
    )


@pytest.fixture
def market() -> FakeMarketData:
    return FakeMarketData(
        listings={
            TOKEN: [
                PoolListing(P2.upper().replace("0X", "0x"), Decimal("10000")),
                PoolListing(P3, Decimal("500")),
                PoolListing(P1, Decimal("50000")),
            ]
        }
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


def _loop(
    store: GroupConfigStore,
    connections: FakeConnectionPool,
    market: FakeMarketData,
    clock: FakeClock,
    **kwargs: object,
) -> tuple[ResyncLoop, PoolSubscriptionRegistry]:
    registry = PoolSubscriptionRegistry(connections, resolve_retry_delay_seconds=0)
    loop = ResyncLoop(
        store,
        connections,
        registry,
        market,
        clock=clock,
        **kwargs,  # type: ignore[arg-type]
    )
    return loop, registry


class TestRankPools:
    """Tests for rank_pools ordering."""

    def test_orders_by_liquidity_and_drops_small_pools(self) -> None:
        ranked = rank_pools(
            [
                PoolListing(P2, Decimal("10000")),
                PoolListing(P3, Decimal("1000")),
                PoolListing(P1, Decimal("50000")),
            ],
            Decimal("1000"),
        )

        assert [p.address for p in ranked] == [P1, P2]

    def test_ties_broken_by_address(self) -> None:
        ranked = rank_pools(
            [PoolListing(P2, Decimal("5000")), PoolListing(P1, Decimal("5000"))],
            Decimal("0"),
        )

        assert [p.address for p in ranked] == [P1, P2]


class TestRunOnce:
    """Tests for a single resync tick."""

    @pytest.mark.asyncio
    async def test_discovery_replaces_pool_set(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        loop, registry = _loop(store, connections, market, clock)

        attempts = await loop.run_once()

        config = store.get("-1001")
        assert config is not None
        assert config.pair_address == P1
        assert config.all_pair_addresses == (P1, P2)
        assert attempts == 2
        assert registry.get("bsc", P1) is not None
        assert registry.get("bsc", P2) is not None
        assert loop.main_pair_liquidity("-1001") == Decimal("50000")
        assert loop.state == ResyncState.IDLE

    @pytest.mark.asyncio
    async def test_unchanged_upstream_is_idempotent(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        loop, registry = _loop(store, connections, market, clock, pool_refresh_interval_seconds=60)
        await loop.run_once()
        first = store.get("-1001")

        clock.now += 120  # refresh due: discovery runs again
        attempts = await loop.run_once()

        assert market.list_calls == 2
        assert attempts == 0
        assert store.get("-1001") == first
        assert registry.count() == 2

    @pytest.mark.asyncio
    async def test_refresh_not_due_skips_discovery(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        loop, _ = _loop(store, connections, market, clock, pool_refresh_interval_seconds=600)
        await loop.run_once()
        clock.now += 10
        await loop.run_once()

        assert market.list_calls == 1

    @pytest.mark.asyncio
    async def test_discovery_failure_keeps_pool_set(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        market.error = MarketDataError("rate limited")
        loop, registry = _loop(store, connections, market, clock)

        attempts = await loop.run_once()

        config = store.get("-1001")
        assert config is not None
        assert config.all_pair_addresses == (CONFIGURED_PAIR,)
        assert attempts == 1
        assert registry.get("bsc", CONFIGURED_PAIR) is not None
        assert loop.stats.discovery_failures == 1

    @pytest.mark.asyncio
    async def test_empty_discovery_keeps_pool_set(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        clock: FakeClock,
    ) -> None:
        loop, _ = _loop(store, connections, FakeMarketData(), clock)

        await loop.run_once()

        config = store.get("-1001")
        assert config is not None
        assert config.pair_address == CONFIGURED_PAIR
        assert loop.main_pair_liquidity("-1001") is None

    @pytest.mark.asyncio
    async def test_discovery_disabled(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        loop, _ = _loop(store, connections, market, clock, discover_all_pools=False)

        await loop.run_once()

        assert market.list_calls == 0

    @pytest.mark.asyncio
    async def test_group_failure_is_contained(
        self,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        store = GroupConfigStore.from_dict(
            {
                "-1001": {"chain": "bsc", "token_address": TOKEN, "pair_address": CONFIGURED_PAIR},
                "-1002": {"chain": "base", "token_address": TOKEN, "pair_address": CONFIGURED_PAIR},
            }
        )
        loop, registry = _loop(store, connections, market, clock)

        attempts = await loop.run_once()

        assert attempts == 2
        assert registry.count("bsc") == 2
        assert loop.stats.group_failures == 1

    @pytest.mark.asyncio
    async def test_unreachable_chain_retried_next_tick(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        connections.unreachable.add("bsc")
        loop, registry = _loop(store, connections, market, clock)

        assert await loop.run_once() == 0
        assert registry.count() == 0

        connections.unreachable.clear()
        assert await loop.run_once() == 2


class TestLoopLifecycle:
    @pytest.mark.asyncio
    async def test_first_tick_runs_immediately(
        self,
        store: GroupConfigStore,
        connections: FakeConnectionPool,
        market: FakeMarketData,
        clock: FakeClock,
    ) -> None:
        loop, registry = _loop(store, connections, market, clock, interval_seconds=3600)

        await loop.start()
        for _ in range(100):
            if registry.count() == 2:
                break
            await asyncio.sleep(0.01)
        await loop.stop()

        assert registry.count() == 2
        assert loop.stats.ticks == 1
        assert loop.state == ResyncState.STOPPED
