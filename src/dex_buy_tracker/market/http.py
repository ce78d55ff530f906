"""Shared HTTP helpers for market-data clients: rate limiting and retries."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

# Constants
DEFAULT_MAX_RETRIES = 2
DEFAULT_RETRY_BASE_DELAY = 0.5
DEFAULT_TIMEOUT_SECONDS = 8.0
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class MarketDataError(Exception):
    """Base exception for market-data provider errors."""


class MarketDataNotFoundError(MarketDataError):
    """Raised when the provider has no data for the requested resource."""


class MarketDataTransientError(MarketDataError):
    """Raised for retryable errors (429/5xx, network issues)."""


class RateLimiter:
    """Minimum-interval rate limiter for API requests."""

    def __init__(self, max_requests_per_second: float) -> None:
        self._min_interval = 1.0 / max_requests_per_second
        self._last_request_time: float = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self._last_request_time
            if elapsed < self._min_interval:
                await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


async def _get_once(
    client: httpx.AsyncClient,
    url: str,
    params: dict[str, str] | None,
) -> Any:
    try:
        response = await client.get(url, params=params)
    except httpx.TransportError as e:
        raise MarketDataTransientError(f"GET {url} failed: {e}") from e

    if response.status_code == 404:
        raise MarketDataNotFoundError(f"GET {url} returned 404")
    if response.status_code in RETRY_STATUS_CODES:
        raise MarketDataTransientError(f"GET {url} returned {response.status_code}")
    if response.status_code != 200:
        raise MarketDataError(f"GET {url} returned {response.status_code}")

    try:
        return response.json()
    except ValueError as e:
        raise MarketDataError(f"GET {url} returned invalid JSON: {e}") from e


async def get_json(
    client: httpx.AsyncClient,
    url: str,
    *,
    params: dict[str, str] | None = None,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    rate_limiter: RateLimiter | None = None,
) -> Any:
    """GET a JSON document, retrying transient failures with exponential backoff.

    Args:
        client: Shared HTTP client.
        url: Absolute URL.
        params: Optional query parameters.
        max_retries: Retry attempts after the first failure.
        base_delay: Base delay in seconds (doubles with each retry).
        rate_limiter: Optional limiter acquired before every attempt.

    Returns:
        Decoded JSON body.

    Raises:
        MarketDataNotFoundError: On 404 (not retried).
        MarketDataError: When all attempts fail or the response is unusable.
    """
    last_exception: MarketDataTransientError | None = None

    for attempt in range(max_retries + 1):
        if rate_limiter is not None:
            await rate_limiter.acquire()
        try:
            return await _get_once(client, url, params)
        except MarketDataTransientError as e:
            last_exception = e
            if attempt == max_retries:
                break
            delay = base_delay * (2**attempt)
            logger.warning(
                "Attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                attempt + 1,
                max_retries + 1,
                str(e),
                delay,
            )
            await asyncio.sleep(delay)

    raise MarketDataError(f"All {max_retries + 1} attempts failed for {url}: {last_exception}")
