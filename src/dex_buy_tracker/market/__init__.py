"""Market-data and native price providers."""

from dex_buy_tracker.market.cache import RedisCache
from dex_buy_tracker.market.dexscreener import DexScreenerClient, normalize_chain
from dex_buy_tracker.market.http import (
    MarketDataError,
    MarketDataNotFoundError,
    MarketDataTransientError,
)
from dex_buy_tracker.market.models import PairInfo, PoolListing
from dex_buy_tracker.market.prices import NativePriceClient

__all__ = [
    "DexScreenerClient",
    "MarketDataError",
    "MarketDataNotFoundError",
    "MarketDataTransientError",
    "NativePriceClient",
    "PairInfo",
    "PoolListing",
    "RedisCache",
    "normalize_chain",
]
