"""Tests for the chain connection pool."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from dex_buy_tracker.chain.connection import PollingChainConnection, StreamingChainConnection
from dex_buy_tracker.chain.pool import ChainConnectionPool, UnknownChainError
from dex_buy_tracker.config import ChainSettings, TrackerSettings


@pytest.fixture
def pool() -> ChainConnectionPool:
    chains = {
        "BSC": ChainSettings(rpc_url="wss://bsc-rpc.publicnode.com", explorer_url="https://bscscan.com"),
        "base": ChainSettings(rpc_url="https://mainnet.base.org", explorer_url="https://basescan.org"),
    }
    tracker = TrackerSettings(max_poll_block_range=25, max_poll_failures=5)
    return ChainConnectionPool(chains, tracker, on_swap=AsyncMock())


class TestChainConnectionPool:
    """Tests for ChainConnectionPool."""

    def test_get_or_create_is_idempotent(self, pool: ChainConnectionPool) -> None:
        first = pool.get_or_create("bsc")

        assert pool.get_or_create("BSC") is first
        assert pool.get("bsc") is first
        assert pool.get("base") is None

    def test_transport_per_chain(self, pool: ChainConnectionPool) -> None:
        assert isinstance(pool.get_or_create("bsc"), StreamingChainConnection)
        assert isinstance(pool.get_or_create("base"), PollingChainConnection)

    def test_unknown_chain(self, pool: ChainConnectionPool) -> None:
        with pytest.raises(UnknownChainError, match="solana"):
            pool.get_or_create("solana")
        assert pool.get("solana") is None

    @pytest.mark.asyncio
    async def test_ensure_connected_delegates(self, pool: ChainConnectionPool) -> None:
        connection = pool.get_or_create("base")
        connection.ensure_connected = AsyncMock()  # type: ignore[method-assign]

        assert await pool.ensure_connected("base") is connection
        connection.ensure_connected.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_aclose_closes_every_connection(self, pool: ChainConnectionPool) -> None:
        bsc = pool.get_or_create("bsc")
        base = pool.get_or_create("base")
        bsc.aclose = AsyncMock(side_effect=RuntimeError("boom"))  # type: ignore[method-assign]
        base.aclose = AsyncMock()  # type: ignore[method-assign]

        await pool.aclose()

        bsc.aclose.assert_awaited_once()
        base.aclose.assert_awaited_once()
