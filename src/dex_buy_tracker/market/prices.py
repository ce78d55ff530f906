"""Native asset USD prices from a Binance-compatible ticker API."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation

import httpx

from dex_buy_tracker.config import ChainSettings
from dex_buy_tracker.market.cache import RedisCache
from dex_buy_tracker.market.http import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_TIMEOUT_SECONDS,
    MarketDataError,
    get_json,
)

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.binance.com/api/v3"
DEFAULT_FALLBACK_PRICE_USD = Decimal("3400")


class NativePriceClient:
    """Looks up the USD price of each chain's native asset.

    Never raises for a configured chain: on failure the last price seen for
    the ticker is returned, or the chain's configured fallback price.
    """

    def __init__(
        self,
        chains: Mapping[str, ChainSettings],
        http_client: httpx.AsyncClient | None = None,
        *,
        base_url: str = DEFAULT_BASE_URL,
        cache: RedisCache | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> None:
        self._chains = {k.lower(): v for k, v in chains.items()}
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout_seconds)
        self._base_url = base_url.rstrip("/")
        self._cache = cache or RedisCache(None, prefix="price:")
        self._max_retries = max_retries
        self._last_known: dict[str, Decimal] = {}

    def _ticker_for(self, chain: str) -> tuple[str, Decimal]:
        config = self._chains.get(chain.lower())
        if config is None:
            return "ETHUSDT", DEFAULT_FALLBACK_PRICE_USD
        return config.price_ticker.upper(), config.fallback_price_usd

    async def fetch_ticker_price(self, ticker: str) -> Decimal:
        """Fetch a ticker price.

        Raises:
            MarketDataError: If the price is unavailable or not positive.
        """
        cache_key = self._cache.key("ticker", ticker)
        cached = await self._cache.get_json(cache_key)
        if cached is not None:
            try:
                return Decimal(str(cached))
            except InvalidOperation:
                logger.debug("Ignoring invalid cached price for %s", ticker)

        payload = await get_json(
            self._http,
            f"{self._base_url}/ticker/price",
            params={"symbol": ticker},
            max_retries=self._max_retries,
        )
        try:
            price = Decimal(str(payload["price"]))
        except (KeyError, TypeError, InvalidOperation) as e:
            raise MarketDataError(f"Unexpected ticker response for {ticker}: {payload!r}") from e
        if not price.is_finite() or price <= 0:
            raise MarketDataError(f"Non-positive price for {ticker}: {price}")

        await self._cache.set_json(cache_key, str(price))
        return price

    async def get_native_price_usd(self, chain: str) -> Decimal:
        """Get the USD price of a chain's native asset, never failing."""
        ticker, fallback = self._ticker_for(chain)
        try:
            price = await self.fetch_ticker_price(ticker)
        except MarketDataError as e:
            last = self._last_known.get(ticker)
            logger.warning(
                "Native price lookup failed for %s (%s): %s; using %s",
                chain,
                ticker,
                e,
                "last known price" if last is not None else "fallback price",
            )
            return last if last is not None else fallback

        self._last_known[ticker] = price
        return price

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()
