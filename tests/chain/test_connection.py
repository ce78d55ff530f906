"""Tests for chain connections."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from dex_buy_tracker.chain.connection import (
    ChainConnectionError,
    ChainRPCError,
    ConnectionState,
    PollingChainConnection,
    StreamingChainConnection,
    create_connection,
)
from dex_buy_tracker.chain.models import SwapEvent
from dex_buy_tracker.config import ChainSettings
from fakes import make_swap_log

POOL = "0x" + "cd" * 20
OTHER_POOL = "0x4444444444444444444444444444444444444444"


class FakeEth:
    """AsyncWeb3.eth stand-in for eth_blockNumber / eth_getLogs."""

    def __init__(self) -> None:
        self.latest = 100
        self.logs: list[dict[str, Any]] = []
        self.error: Exception | None = None
        # Raised once each, before `error`.
        self.transient_errors: list[Exception] = []
        self.block_number_calls = 0
        self.get_logs_calls: list[dict[str, Any]] = []

    async def _block_number(self) -> int:
        self.block_number_calls += 1
        if self.transient_errors:
            raise self.transient_errors.pop(0)
        if self.error is not None:
            raise self.error
        return self.latest

    @property
    def block_number(self) -> Any:
        return self._block_number()

    async def get_logs(self, params: dict[str, Any]) -> list[dict[str, Any]]:
        self.get_logs_calls.append(params)
        return list(self.logs)


def _too_many_requests() -> aiohttp.ClientResponseError:
    return aiohttp.ClientResponseError(
        request_info=MagicMock(), history=(), status=429, message="Too Many Requests"
    )


class FakeWeb3:
    def __init__(self) -> None:
        self.eth = FakeEth()
        self.provider = None


class ScriptedPolling(PollingChainConnection):
    def __init__(self, w3: Any, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.fake_w3 = w3

    async def _open(self) -> Any:
        return self.fake_w3


class ScriptedStreaming(StreamingChainConnection):
    def __init__(self, w3: Any, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self.fake_w3 = w3

    async def _open(self) -> Any:
        return self.fake_w3


def _chain_settings(rpc_url: str = "https://rpc.example", poll: float = 60.0) -> ChainSettings:
    return ChainSettings(
        rpc_url=rpc_url,
        explorer_url="https://bscscan.com",
        native_symbol="BNB",
        poll_interval_seconds=poll,
    )


class TestCreateConnection:
    def test_transport_follows_url_scheme(self) -> None:
        on_swap = AsyncMock()
        streaming = create_connection("bsc", _chain_settings("wss://rpc.example"), on_swap=on_swap)
        polling = create_connection("bsc", _chain_settings("https://rpc.example"), on_swap=on_swap)

        assert isinstance(streaming, StreamingChainConnection)
        assert isinstance(polling, PollingChainConnection)
        assert streaming.state == ConnectionState.DISCONNECTED


class TestConnectionLifecycle:
    """Tests for the connection state machine."""

    @pytest.mark.asyncio
    async def test_connect_and_subscribe(self) -> None:
        conn = ScriptedPolling(FakeWeb3(), "bsc", _chain_settings(), on_swap=AsyncMock())

        await conn.ensure_connected()
        handle = await conn.subscribe_pool(POOL.upper().replace("0X", "0x"))

        assert conn.state == ConnectionState.SUBSCRIBED
        assert conn.is_connected
        assert conn.has_pool(POOL)
        assert handle == POOL
        assert await conn.subscribe_pool(POOL) == handle
        assert conn.pool_count == 1
        await conn.aclose()
        assert conn.state == ConnectionState.DISCONNECTED
        assert conn.pool_count == 0

    @pytest.mark.asyncio
    async def test_connect_failure_raises(self) -> None:
        class Unreachable(PollingChainConnection):
            async def _open(self) -> Any:
                raise OSError("connection refused")

        conn = Unreachable("bsc", _chain_settings(), on_swap=AsyncMock())

        with pytest.raises(ChainConnectionError, match="bsc"):
            await conn.ensure_connected()
        assert conn.state == ConnectionState.DISCONNECTED
        assert conn.stats.last_error == "connection refused"

    @pytest.mark.asyncio
    async def test_subscribe_requires_connection(self) -> None:
        conn = ScriptedPolling(FakeWeb3(), "bsc", _chain_settings(), on_swap=AsyncMock())
        with pytest.raises(ChainConnectionError):
            await conn.subscribe_pool(POOL)


class TestPolling:
    """Tests for eth_getLogs polling."""

    @pytest.mark.asyncio
    async def test_poll_dispatches_subscribed_pool_logs_in_order(self) -> None:
        w3 = FakeWeb3()
        on_swap = AsyncMock()
        conn = ScriptedPolling(w3, "bsc", _chain_settings(), on_swap=on_swap, max_block_range=10)
        await conn.ensure_connected()
        await conn.subscribe_pool(POOL)

        assert await conn.poll_once(w3) == 0  # sets the starting block

        w3.eth.latest = 150
        w3.eth.logs = [
            make_swap_log(POOL, amount1_in=1, amount0_out=1, block_number=102, log_index=1),
            make_swap_log(POOL, amount1_in=1, amount0_out=1, block_number=101, log_index=5),
            make_swap_log(OTHER_POOL, amount1_in=1, amount0_out=1, block_number=101, log_index=0),
            {**make_swap_log(POOL, block_number=101), "data": "0x00"},
        ]
        fetched = await conn.poll_once(w3)

        assert fetched == 4
        params = w3.eth.get_logs_calls[0]
        assert params["fromBlock"] == 101
        assert params["toBlock"] == 110
        assert [a.lower() for a in params["address"]] == [POOL]

        events: list[SwapEvent] = [call.args[1] for call in on_swap.await_args_list]
        assert [(e.block_number, e.log_index) for e in events] == [(101, 5), (102, 1)]
        assert all(call.args[0] == "bsc" for call in on_swap.await_args_list)
        assert conn.stats.events_malformed == 1
        await conn.aclose()

    @pytest.mark.asyncio
    async def test_no_new_blocks(self) -> None:
        w3 = FakeWeb3()
        conn = ScriptedPolling(w3, "bsc", _chain_settings(), on_swap=AsyncMock())
        await conn.ensure_connected()
        await conn.subscribe_pool(POOL)
        await conn.poll_once(w3)

        assert await conn.poll_once(w3) == 0
        assert w3.eth.get_logs_calls == []
        await conn.aclose()

    @pytest.mark.asyncio
    async def test_repeated_failures_disconnect(self) -> None:
        w3 = FakeWeb3()
        disconnected = asyncio.Event()

        async def on_disconnect(chain: str) -> None:
            assert chain == "bsc"
            disconnected.set()

        conn = ScriptedPolling(
            w3,
            "bsc",
            _chain_settings(poll=0.01),
            on_swap=AsyncMock(),
            on_disconnect=on_disconnect,
            max_failures=2,
        )
        await conn.ensure_connected()
        await conn.subscribe_pool(POOL)
        w3.eth.error = OSError("rpc down")

        await asyncio.wait_for(disconnected.wait(), timeout=2.0)

        assert conn.state == ConnectionState.DISCONNECTED
        assert not conn.has_pool(POOL)
        assert conn.stats.disconnect_count == 1
        await conn.aclose()

    @pytest.mark.asyncio
    async def test_rate_limited_poll_is_retried(self) -> None:
        w3 = FakeWeb3()
        on_disconnect = AsyncMock()
        conn = ScriptedPolling(
            w3,
            "bsc",
            _chain_settings(poll=0.01),
            on_swap=AsyncMock(),
            on_disconnect=on_disconnect,
            max_failures=3,
        )
        await conn.ensure_connected()
        await conn.subscribe_pool(POOL)
        w3.eth.transient_errors = [_too_many_requests()]

        for _ in range(200):
            if w3.eth.block_number_calls >= 3:
                break
            await asyncio.sleep(0.01)

        assert w3.eth.block_number_calls >= 3
        on_disconnect.assert_not_awaited()
        assert conn.state == ConnectionState.SUBSCRIBED
        assert conn.has_pool(POOL)
        await conn.aclose()


class TestStreaming:
    """Tests for eth_subscribe delivery."""

    @pytest.mark.asyncio
    async def test_messages_routed_and_stream_end_disconnects(self) -> None:
        queue: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()

        async def process_subscriptions() -> AsyncIterator[dict[str, Any]]:
            while True:
                message = await queue.get()
                if message is None:
                    return
                yield message

        w3 = MagicMock()
        w3.provider = None
        w3.eth.subscribe = AsyncMock(return_value="0xsub1")
        w3.socket.process_subscriptions = process_subscriptions

        on_swap = AsyncMock()
        on_disconnect = AsyncMock()
        conn = ScriptedStreaming(
            w3,
            "bsc",
            _chain_settings("wss://rpc.example"),
            on_swap=on_swap,
            on_disconnect=on_disconnect,
        )
        await conn.ensure_connected()
        handle = await conn.subscribe_pool(POOL)

        assert handle == "0xsub1"
        subscribe_args = w3.eth.subscribe.await_args.args
        assert subscribe_args[0] == "logs"
        assert subscribe_args[1]["address"].lower() == POOL

        log = make_swap_log(POOL, amount1_in=5, amount0_out=7)
        await queue.put({"subscription": "0xunknown", "result": log})
        await queue.put({"subscription": "0xsub1", "result": log})
        await queue.put(None)

        for _ in range(100):
            if on_disconnect.await_count:
                break
            await asyncio.sleep(0.01)

        on_swap.assert_awaited_once()
        assert on_swap.await_args.args[1].amount0_out == 7
        on_disconnect.assert_awaited_once_with("bsc")
        assert conn.state == ConnectionState.DISCONNECTED
        assert conn.pool_count == 0


class TestReads:
    """Tests for pair and balance reads."""

    @staticmethod
    def _connected(w3: Any) -> ScriptedPolling:
        return ScriptedPolling(w3, "bsc", _chain_settings(), on_swap=AsyncMock())

    @pytest.mark.asyncio
    async def test_get_pair_tokens_lowercases(self) -> None:
        w3 = MagicMock()
        w3.provider = None
        contract = w3.eth.contract.return_value
        contract.functions.token0.return_value.call = AsyncMock(return_value="0x" + "AB" * 20)
        contract.functions.token1.return_value.call = AsyncMock(return_value="0x" + "CD" * 20)
        conn = self._connected(w3)
        await conn.ensure_connected()

        assert await conn.get_pair_tokens(POOL) == ("0x" + "ab" * 20, "0x" + "cd" * 20)
        await conn.aclose()

    @pytest.mark.asyncio
    async def test_get_pair_tokens_failure(self) -> None:
        w3 = MagicMock()
        w3.provider = None
        contract = w3.eth.contract.return_value
        contract.functions.token0.return_value.call = AsyncMock(side_effect=ValueError("revert"))
        contract.functions.token1.return_value.call = AsyncMock(return_value="0x" + "cd" * 20)
        conn = self._connected(w3)
        await conn.ensure_connected()

        with pytest.raises(ChainRPCError):
            await conn.get_pair_tokens(POOL)
        await conn.aclose()

    @pytest.mark.asyncio
    async def test_get_token_balance_at_block(self) -> None:
        w3 = MagicMock()
        w3.provider = None
        call = AsyncMock(return_value=1500)
        w3.eth.contract.return_value.functions.balanceOf.return_value.call = call
        conn = self._connected(w3)
        await conn.ensure_connected()

        balance = await conn.get_token_balance(POOL, "0x" + "bb" * 20, 99)

        assert balance == 1500
        call.assert_awaited_once_with(block_identifier=99)
        with pytest.raises(ValueError):
            await conn.get_token_balance(POOL, "0x" + "bb" * 20, -1)
        await conn.aclose()

    @pytest.mark.asyncio
    async def test_http_errors_become_rpc_errors(self) -> None:
        w3 = MagicMock()
        w3.provider = None
        contract = w3.eth.contract.return_value
        contract.functions.token0.return_value.call = AsyncMock(side_effect=_too_many_requests())
        contract.functions.token1.return_value.call = AsyncMock(return_value="0x" + "cd" * 20)
        contract.functions.balanceOf.return_value.call = AsyncMock(
            side_effect=_too_many_requests()
        )
        conn = self._connected(w3)
        await conn.ensure_connected()

        with pytest.raises(ChainRPCError, match="429"):
            await conn.get_pair_tokens(POOL)
        with pytest.raises(ChainRPCError, match="429"):
            await conn.get_token_balance(POOL, "0x" + "bb" * 20, 99)
        await conn.aclose()


class TestMalformedLogs:
    """Malformed logs are counted and skipped without breaking the listener."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "broken",
        [
            lambda log: {**log, "transactionHash": None},
            lambda log: {k: v for k, v in log.items() if k != "address"},
            lambda log: {k: v for k, v in log.items() if k != "blockNumber"},
            lambda log: {**log, "logIndex": None},
        ],
        ids=["null-tx-hash", "missing-address", "missing-block", "null-log-index"],
    )
    async def test_dispatch_skips_broken_log(self, broken: Any) -> None:
        on_swap = AsyncMock()
        conn = ScriptedPolling(FakeWeb3(), "bsc", _chain_settings(), on_swap=on_swap)
        await conn.ensure_connected()
        await conn.subscribe_pool(POOL)

        await conn._dispatch_log(broken(make_swap_log(POOL, amount1_in=1, amount0_out=1)))

        on_swap.assert_not_awaited()
        assert conn.stats.events_malformed == 1
        assert conn.state == ConnectionState.SUBSCRIBED
        await conn.aclose()
