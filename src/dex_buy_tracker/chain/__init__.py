"""Chain RPC access: connections, swap logs and pair reads."""

from dex_buy_tracker.chain.connection import (
    ChainConnection,
    ChainConnectionError,
    ChainError,
    ChainRPCError,
    ConnectionState,
    PollingChainConnection,
    StreamingChainConnection,
)
from dex_buy_tracker.chain.models import SWAP_TOPIC, PoolSubscription, SwapEvent
from dex_buy_tracker.chain.pool import ChainConnectionPool, UnknownChainError

__all__ = [
    "SWAP_TOPIC",
    "ChainConnection",
    "ChainConnectionError",
    "ChainConnectionPool",
    "ChainError",
    "ChainRPCError",
    "ConnectionState",
    "PollingChainConnection",
    "PoolSubscription",
    "StreamingChainConnection",
    "SwapEvent",
    "UnknownChainError",
]
