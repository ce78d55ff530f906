"""Lazily created, process-lifetime chain connections keyed by chain id."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping

from dex_buy_tracker.chain.connection import (
    ChainConnection,
    ChainError,
    DisconnectCallback,
    SwapCallback,
    create_connection,
)
from dex_buy_tracker.config import ChainSettings, TrackerSettings

logger = logging.getLogger(__name__)


class UnknownChainError(ChainError):
    """Raised when a chain id has no endpoint configuration."""


class ChainConnectionPool:
    """Owns exactly one ChainConnection per chain in use.

    Connection objects are created on first use and kept for the process
    lifetime; a dropped connection keeps its object and is re-opened by
    ``ensure_connected`` on a later resync tick.

    Example:
        ```python
        pool = ChainConnectionPool(settings.chains, settings.tracker, on_swap=handle_swap)
        conn = await pool.ensure_connected("bsc")
        token0, token1 = await conn.get_pair_tokens(pair_address)
        ```
    """

    def __init__(
        self,
        chains: Mapping[str, ChainSettings],
        tracker: TrackerSettings,
        *,
        on_swap: SwapCallback,
        on_disconnect: DisconnectCallback | None = None,
    ) -> None:
        self._chains = {k.lower(): v for k, v in chains.items()}
        self._tracker = tracker
        self._on_swap = on_swap
        self._on_disconnect = on_disconnect
        self._connections: dict[str, ChainConnection] = {}

    def get(self, chain: str) -> ChainConnection | None:
        return self._connections.get(chain.lower())

    def get_or_create(self, chain: str) -> ChainConnection:
        """Return the chain's connection object, creating it on first use.

        No network I/O happens here; see ``ensure_connected``.

        Raises:
            UnknownChainError: If the chain has no endpoint configuration.
        """
        key = chain.lower()
        existing = self._connections.get(key)
        if existing is not None:
            return existing

        config = self._chains.get(key)
        if config is None:
            raise UnknownChainError(f"No RPC configuration for chain {chain!r}")

        connection = create_connection(
            key,
            config,
            on_swap=self._on_swap,
            on_disconnect=self._on_disconnect,
            request_timeout=self._tracker.request_timeout_seconds,
            max_block_range=self._tracker.max_poll_block_range,
            max_poll_failures=self._tracker.max_poll_failures,
        )
        self._connections[key] = connection
        logger.info(
            "Created %s connection for chain %s",
            "streaming" if config.is_streaming else "polling",
            key,
        )
        return connection

    async def ensure_connected(self, chain: str) -> ChainConnection:
        """Return a connected ChainConnection for the chain.

        Raises:
            UnknownChainError: If the chain has no endpoint configuration.
            ChainConnectionError: If the connection cannot be opened.
        """
        connection = self.get_or_create(chain)
        await connection.ensure_connected()
        return connection

    async def aclose(self) -> None:
        """Close every open connection."""
        connections = list(self._connections.values())
        results = await asyncio.gather(
            *(c.aclose() for c in connections),
            return_exceptions=True,
        )
        for connection, result in zip(connections, results, strict=True):
            if isinstance(result, BaseException):
                logger.warning("Failed to close chain %s: %s", connection.chain, result)
