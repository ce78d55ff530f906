"""DexScreener market-data client.

Provides the two reads the tracker needs from the market-data provider:

- ``list_token_pools``: every pool of a token on one chain, with liquidity.
- ``get_pair_info``: price, 24h volume, fdv, liquidity, symbol and decimals
  for one pair, from the tracked token's side.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from dex_buy_tracker.market.cache import RedisCache
from dex_buy_tracker.market.http import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    MarketDataError,
    MarketDataNotFoundError,
    RateLimiter,
    get_json,
)
from dex_buy_tracker.market.models import PairInfo, PoolListing

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dexscreener.com/latest/dex"
# DexScreener allows 300 requests/minute on the pair endpoints.
MAX_REQUESTS_PER_SECOND = 5.0

# Short chain names users put in configuration -> DexScreener chain ids.
CHAIN_ALIASES: dict[str, str] = {
    "eth": "ethereum",
    "bnb": "bsc",
    "arb": "arbitrum",
    "matic": "polygon",
    "avax": "avalanche",
}


def normalize_chain(chain: str) -> str:
    """Map a configured chain name to the DexScreener chain id."""
    name = chain.strip().lower()
    return CHAIN_ALIASES.get(name, name)


def _pairs_of(payload: Any) -> list[dict[str, Any]]:
    if not isinstance(payload, dict):
        return []
    pairs = payload.get("pairs")
    if isinstance(pairs, list):
        return [p for p in pairs if isinstance(p, dict)]
    pair = payload.get("pair")
    if isinstance(pair, dict):
        return [pair]
    return []


def _pair_has_token(pair: dict[str, Any], token: str) -> bool:
    for side in ("baseToken", "quoteToken"):
        info = pair.get(side)
        if isinstance(info, dict) and str(info.get("address", "")).lower() == token:
            return True
    return False


class DexScreenerClient:
    """Async DexScreener API client with retries and optional Redis caching.

    Example:
        ```python
        async with httpx.AsyncClient(timeout=8.0) as http:
            client = DexScreenerClient(http)
            pools = await client.list_token_pools("bsc", "0x...")
            info = await client.get_pair_info("bsc", pools[0].address, "0x...")
        ```
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        cache: RedisCache | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        requests_per_second: float = MAX_REQUESTS_PER_SECOND,
    ) -> None:
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._cache = cache or RedisCache(None, prefix="dexscreener:")
        self._max_retries = max_retries
        self._rate_limiter = RateLimiter(requests_per_second)

    async def _get(self, path: str, params: dict[str, str] | None = None) -> Any:
        return await get_json(
            self._http,
            f"{self._base_url}{path}",
            params=params,
            max_retries=self._max_retries,
            rate_limiter=self._rate_limiter,
        )

    async def list_token_pools(self, chain: str, token_address: str) -> list[PoolListing]:
        """List all pools of a token on a chain.

        Falls back to the search endpoint when the token endpoint returns no
        pairs. Only pools on the requested chain that contain the token are
        returned, in provider order.

        Raises:
            MarketDataError: If the provider cannot be reached.
        """
        chain_id = normalize_chain(chain)
        token = token_address.lower()

        pairs = _pairs_of(await self._get(f"/tokens/{token}"))
        if not pairs:
            logger.debug("No pairs from token endpoint for %s, trying search", token)
            pairs = _pairs_of(await self._get("/search", params={"q": token}))

        listings: list[PoolListing] = []
        seen: set[str] = set()
        for pair in pairs:
            if normalize_chain(str(pair.get("chainId", ""))) != chain_id:
                continue
            if not _pair_has_token(pair, token):
                continue
            listing = PoolListing.from_dexscreener(pair)
            if not listing.address or listing.address in seen:
                continue
            seen.add(listing.address)
            listings.append(listing)
        return listings

    async def get_pair_info(self, chain: str, pair_address: str, token_address: str) -> PairInfo:
        """Get current market data for a pair.

        Raises:
            MarketDataNotFoundError: If the provider does not know the pair.
            MarketDataError: If the provider cannot be reached.
        """
        chain_id = normalize_chain(chain)
        pair = pair_address.lower()
        cache_key = self._cache.key("pair", chain_id, pair, token_address)

        cached = await self._cache.get_json(cache_key)
        if isinstance(cached, dict):
            try:
                return PairInfo.from_dict(cached)
            except KeyError:
                logger.debug("Ignoring stale cache entry %s", cache_key)

        pairs = _pairs_of(await self._get(f"/pairs/{chain_id}/{pair}"))
        match = next(
            (p for p in pairs if str(p.get("pairAddress", "")).lower() == pair),
            pairs[0] if pairs else None,
        )
        if match is None:
            raise MarketDataNotFoundError(f"No market data for pair {pair} on {chain_id}")

        info = PairInfo.from_dexscreener(match, token_address)
        await self._cache.set_json(cache_key, info.to_dict())
        return info

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


__all__ = [
    "CHAIN_ALIASES",
    "DexScreenerClient",
    "MarketDataError",
    "MarketDataNotFoundError",
    "normalize_chain",
]
