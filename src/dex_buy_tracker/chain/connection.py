"""Per-chain RPC connections with swap log delivery.

A ChainConnection owns one web3 handle for a chain and delivers decoded
Swap events for the pools subscribed on it. Two transports are provided:

- StreamingChainConnection: ``eth_subscribe("logs")`` over a WebSocket
  endpoint, one subscription per pool.
- PollingChainConnection: ``eth_getLogs`` over newly mined blocks for all
  subscribed pools at once, for HTTP-only endpoints.

Each connection follows an explicit state machine::

    DISCONNECTED -> CONNECTING -> SUBSCRIBED(n pools) -> DISCONNECTED on error

Only ``ensure_connected`` leaves DISCONNECTED. When the listener fails the
handle is dropped, the subscription table is cleared and ``on_disconnect``
is invoked so the owner can forget the pools of this chain; they are
re-subscribed by the next resync tick.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from enum import Enum
from typing import Any

import aiohttp
import websockets
from web3 import AsyncWeb3, WebSocketProvider
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from dex_buy_tracker.chain.models import (
    ERC20_BALANCE_ABI,
    PAIR_ABI,
    SWAP_TOPIC_HEX,
    SwapEvent,
    quantity_to_int,
)
from dex_buy_tracker.config import ChainSettings

logger = logging.getLogger(__name__)

# Default configuration
DEFAULT_REQUEST_TIMEOUT_SECONDS = 8.0
DEFAULT_MAX_POLL_BLOCK_RANGE = 100
DEFAULT_MAX_POLL_FAILURES = 3

# Errors raised by a web3 call that mean "try again later".
# AsyncHTTPProvider raises aiohttp errors (e.g. HTTP 429) without wrapping them.
_RPC_ERRORS = (Web3Exception, aiohttp.ClientError, TimeoutError, OSError, ValueError)


class ConnectionState(str, Enum):
    """Lifecycle state of a chain connection."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SUBSCRIBED = "subscribed"


@dataclass
class ConnectionStats:
    """Statistics for a chain connection."""

    connect_count: int = 0
    disconnect_count: int = 0
    events_received: int = 0
    events_malformed: int = 0
    connected_since: float | None = None
    last_event_time: float | None = None
    last_error: str | None = None


class ChainError(Exception):
    """Base exception for chain access errors."""


class ChainConnectionError(ChainError):
    """Raised when a chain connection cannot be established or is lost."""


class ChainRPCError(ChainError):
    """Raised when a read call against the chain fails."""


SwapCallback = Callable[[str, SwapEvent], Awaitable[None]]
DisconnectCallback = Callable[[str], Awaitable[None]]


class ChainConnection:
    """Base class for a single chain's RPC connection.

    Subclasses implement ``_open``, ``_subscribe`` and ``_listen``.
    """

    def __init__(
        self,
        chain: str,
        config: ChainSettings,
        *,
        on_swap: SwapCallback,
        on_disconnect: DisconnectCallback | None = None,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    ) -> None:
        """Initialize the connection.

        Args:
            chain: Chain identifier (e.g. "bsc").
            config: Endpoint configuration for the chain.
            on_swap: Awaited for every decoded Swap on a subscribed pool.
            on_disconnect: Awaited with the chain id after the connection drops.
            request_timeout: Upper bound in seconds for any single RPC call.
        """
        self._chain = chain
        self._config = config
        self._on_swap = on_swap
        self._on_disconnect = on_disconnect
        self._timeout = request_timeout

        self._state = ConnectionState.DISCONNECTED
        self._stats = ConnectionStats()
        self._w3: AsyncWeb3[Any] | None = None
        self._listener_task: asyncio.Task[None] | None = None
        self._connect_lock = asyncio.Lock()

        # Lowercase pool address -> transport subscription handle.
        self._pools: dict[str, str] = {}

    @property
    def chain(self) -> str:
        return self._chain

    @property
    def config(self) -> ChainSettings:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def stats(self) -> ConnectionStats:
        return self._stats

    @property
    def is_connected(self) -> bool:
        return self._w3 is not None and self._state == ConnectionState.SUBSCRIBED

    @property
    def pool_count(self) -> int:
        return len(self._pools)

    def has_pool(self, pool_address: str) -> bool:
        return pool_address.lower() in self._pools

    def _set_state(self, new_state: ConnectionState) -> None:
        if self._state != new_state:
            old = self._state
            self._state = new_state
            logger.info(
                "Chain %s connection state: %s -> %s (%d pools)",
                self._chain,
                old.value,
                new_state.value,
                len(self._pools),
            )

    def _require_w3(self) -> AsyncWeb3[Any]:
        if self._w3 is None:
            raise ChainConnectionError(f"Chain {self._chain} is not connected")
        return self._w3

    async def ensure_connected(self) -> None:
        """Open the connection if it is not open yet.

        Raises:
            ChainConnectionError: If the endpoint cannot be reached.
        """
        async with self._connect_lock:
            if self._w3 is not None:
                return

            self._set_state(ConnectionState.CONNECTING)
            try:
                w3 = await asyncio.wait_for(self._open(), timeout=self._timeout)
            except Exception as e:
                self._stats.last_error = str(e)
                self._set_state(ConnectionState.DISCONNECTED)
                raise ChainConnectionError(
                    f"Failed to connect to chain {self._chain}: {e}"
                ) from e

            self._w3 = w3
            self._pools.clear()
            self._stats.connect_count += 1
            self._stats.connected_since = time.time()
            self._set_state(ConnectionState.SUBSCRIBED)
            self._listener_task = asyncio.create_task(self._run_listener(w3))

    async def subscribe_pool(self, pool_address: str) -> str:
        """Start delivering Swap events for a pool.

        Returns:
            Transport-level subscription handle.

        Raises:
            ChainConnectionError: If the connection is not open.
            ChainRPCError: If the subscription request fails.
        """
        pool = pool_address.lower()
        existing = self._pools.get(pool)
        if existing is not None:
            return existing

        w3 = self._require_w3()
        try:
            handle = await asyncio.wait_for(self._subscribe(w3, pool), timeout=self._timeout)
        except _RPC_ERRORS as e:
            raise ChainRPCError(f"Failed to subscribe to pool {pool}: {e}") from e

        self._pools[pool] = handle
        logger.debug("Chain %s subscribed pool %s (%d pools)", self._chain, pool, len(self._pools))
        return handle

    async def get_pair_tokens(self, pool_address: str) -> tuple[str, str]:
        """Read token0/token1 of a pair contract.

        Returns:
            Lowercase (token0, token1) addresses.

        Raises:
            ChainRPCError: If either read fails or times out.
        """
        w3 = self._require_w3()
        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(pool_address),
            abi=PAIR_ABI,
        )
        try:
            token0, token1 = await asyncio.wait_for(
                asyncio.gather(
                    contract.functions.token0().call(),
                    contract.functions.token1().call(),
                ),
                timeout=self._timeout,
            )
        except _RPC_ERRORS as e:
            raise ChainRPCError(f"Failed to read tokens of pair {pool_address}: {e}") from e
        return str(token0).lower(), str(token1).lower()

    async def get_token_balance(self, token_address: str, holder: str, block_number: int) -> int:
        """Get an ERC20 balance as of a specific block.

        Raises:
            ValueError: If block_number is negative.
            ChainRPCError: If the read fails or times out.
        """
        if block_number < 0:
            raise ValueError("block_number must be >= 0")

        w3 = self._require_w3()
        contract = w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(token_address),
            abi=ERC20_BALANCE_ABI,
        )
        try:
            balance = await asyncio.wait_for(
                contract.functions.balanceOf(AsyncWeb3.to_checksum_address(holder)).call(
                    block_identifier=block_number
                ),
                timeout=self._timeout,
            )
        except _RPC_ERRORS as e:
            raise ChainRPCError(f"Failed to get token balance: {e}") from e
        return int(balance)

    async def _dispatch_log(self, log: Mapping[str, Any]) -> None:
        try:
            event = SwapEvent.from_log(log)
        except ValueError as e:
            self._stats.events_malformed += 1
            logger.warning("Chain %s: ignoring malformed swap log: %s", self._chain, e)
            return

        if event.pool_address not in self._pools:
            return

        self._stats.events_received += 1
        self._stats.last_event_time = time.time()
        try:
            await self._on_swap(self._chain, event)
        except Exception as e:
            logger.error("Chain %s: swap callback failed for %s: %s", self._chain, event.tx_hash, e)

    async def _run_listener(self, w3: AsyncWeb3[Any]) -> None:
        reason = "stream ended"
        try:
            await self._listen(w3)
        except asyncio.CancelledError:
            raise
        except websockets.ConnectionClosed as e:
            reason = f"connection closed: {e}"
        except Exception as e:
            reason = str(e) or type(e).__name__
        logger.warning("Chain %s listener stopped: %s", self._chain, reason)
        await self._mark_disconnected(w3, reason)

    async def _mark_disconnected(self, w3: AsyncWeb3[Any], reason: str) -> None:
        if self._w3 is not w3:
            return
        self._w3 = None
        self._listener_task = None
        self._pools.clear()
        self._stats.disconnect_count += 1
        self._stats.connected_since = None
        self._stats.last_error = reason
        self._set_state(ConnectionState.DISCONNECTED)
        await _disconnect_provider(w3)

        if self._on_disconnect:
            try:
                await self._on_disconnect(self._chain)
            except Exception as e:
                logger.error("Chain %s: disconnect callback failed: %s", self._chain, e)

    async def aclose(self) -> None:
        """Stop the listener and close the provider."""
        task = self._listener_task
        self._listener_task = None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        w3 = self._w3
        self._w3 = None
        self._pools.clear()
        if w3 is not None:
            await _disconnect_provider(w3)
        self._set_state(ConnectionState.DISCONNECTED)

    async def _open(self) -> AsyncWeb3[Any]:
        raise NotImplementedError

    async def _subscribe(self, w3: AsyncWeb3[Any], pool: str) -> str:
        raise NotImplementedError

    async def _listen(self, w3: AsyncWeb3[Any]) -> None:
        raise NotImplementedError


class StreamingChainConnection(ChainConnection):
    """Chain connection using ``eth_subscribe`` over a WebSocket endpoint."""

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        # Subscription id -> lowercase pool address.
        self._subscriptions: dict[str, str] = {}

    async def _open(self) -> AsyncWeb3[Any]:
        self._subscriptions.clear()
        w3 = await AsyncWeb3(WebSocketProvider(self._config.rpc_url))
        _inject_poa_middleware(w3, rpc_url=self._config.rpc_url)
        return w3

    async def _subscribe(self, w3: AsyncWeb3[Any], pool: str) -> str:
        subscription_id = await w3.eth.subscribe(
            "logs",
            {
                "address": AsyncWeb3.to_checksum_address(pool),
                "topics": [SWAP_TOPIC_HEX],
            },
        )
        handle = str(subscription_id)
        self._subscriptions[handle] = pool
        return handle

    async def _listen(self, w3: AsyncWeb3[Any]) -> None:
        async for message in w3.socket.process_subscriptions():
            subscription_id = str(message.get("subscription", ""))
            if subscription_id not in self._subscriptions:
                logger.debug("Chain %s: message for unknown subscription %s", self._chain, subscription_id)
                continue
            result = message.get("result")
            if isinstance(result, Mapping):
                await self._dispatch_log(result)


class PollingChainConnection(ChainConnection):
    """Chain connection polling ``eth_getLogs`` over an HTTP endpoint."""

    def __init__(
        self,
        *args: Any,
        max_block_range: int = DEFAULT_MAX_POLL_BLOCK_RANGE,
        max_failures: int = DEFAULT_MAX_POLL_FAILURES,
        **kwargs: Any,
    ) -> None:
        super().__init__(*args, **kwargs)
        self._max_block_range = max_block_range
        self._max_failures = max_failures
        self._next_block: int | None = None

    async def _open(self) -> AsyncWeb3[Any]:
        w3 = AsyncWeb3(
            AsyncHTTPProvider(
                self._config.rpc_url,
                request_kwargs={"timeout": self._timeout},
            )
        )
        _inject_poa_middleware(w3, rpc_url=self._config.rpc_url)
        # Start at the next block; missed history is not backfilled.
        self._next_block = int(await w3.eth.block_number) + 1
        return w3

    async def _subscribe(self, w3: AsyncWeb3[Any], pool: str) -> str:
        return pool

    async def poll_once(self, w3: AsyncWeb3[Any]) -> int:
        """Fetch and dispatch Swap logs mined since the last poll.

        Returns:
            Number of logs fetched.
        """
        latest = int(await asyncio.wait_for(w3.eth.block_number, timeout=self._timeout))
        if self._next_block is None:
            self._next_block = latest + 1
            return 0
        if latest < self._next_block:
            return 0

        from_block = self._next_block
        to_block = min(latest, from_block + self._max_block_range - 1)
        pools = sorted(self._pools)
        logs: list[Any] = []
        if pools:
            logs = list(
                await asyncio.wait_for(
                    w3.eth.get_logs(
                        {
                            "fromBlock": from_block,
                            "toBlock": to_block,
                            "address": [AsyncWeb3.to_checksum_address(p) for p in pools],
                            "topics": [SWAP_TOPIC_HEX],
                        }
                    ),
                    timeout=self._timeout,
                )
            )
        self._next_block = to_block + 1

        logs.sort(
            key=lambda log: (
                quantity_to_int(log.get("blockNumber", 0)),
                quantity_to_int(log.get("logIndex", 0)),
            )
        )
        for log in logs:
            await self._dispatch_log(log)
        return len(logs)

    async def _listen(self, w3: AsyncWeb3[Any]) -> None:
        failures = 0
        while True:
            await asyncio.sleep(self._config.poll_interval_seconds)
            try:
                await self.poll_once(w3)
                failures = 0
            except _RPC_ERRORS as e:
                failures += 1
                logger.warning(
                    "Chain %s poll failed (%d/%d): %s",
                    self._chain,
                    failures,
                    self._max_failures,
                    e,
                )
                if failures >= self._max_failures:
                    raise ChainConnectionError(
                        f"Chain {self._chain}: {failures} consecutive poll failures"
                    ) from e


def _inject_poa_middleware(w3: AsyncWeb3[Any], *, rpc_url: str) -> None:
    try:
        w3.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    except Exception as e:
        logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)


async def _disconnect_provider(w3: AsyncWeb3[Any]) -> None:
    disconnect = getattr(w3.provider, "disconnect", None)
    if not callable(disconnect):
        return
    try:
        result = disconnect()
        if asyncio.iscoroutine(result):
            await result
    except Exception as e:
        logger.warning("Failed to close RPC provider: %s", e)


def create_connection(
    chain: str,
    config: ChainSettings,
    *,
    on_swap: SwapCallback,
    on_disconnect: DisconnectCallback | None = None,
    request_timeout: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
    max_block_range: int = DEFAULT_MAX_POLL_BLOCK_RANGE,
    max_poll_failures: int = DEFAULT_MAX_POLL_FAILURES,
) -> ChainConnection:
    """Build the connection type matching the endpoint's transport."""
    if config.is_streaming:
        return StreamingChainConnection(
            chain,
            config,
            on_swap=on_swap,
            on_disconnect=on_disconnect,
            request_timeout=request_timeout,
        )
    return PollingChainConnection(
        chain,
        config,
        on_swap=on_swap,
        on_disconnect=on_disconnect,
        request_timeout=request_timeout,
        max_block_range=max_block_range,
        max_failures=max_poll_failures,
    )
