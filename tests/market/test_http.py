"""Tests for the market-data HTTP helpers."""

from __future__ import annotations

import httpx
import pytest

from dex_buy_tracker.market.http import (
    MarketDataError,
    MarketDataNotFoundError,
    get_json,
)

URL = "https://api.example/latest"


def _client(handler: httpx.MockTransport) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=handler)


class TestGetJson:
    """Tests for get_json retry behaviour."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, json={"ok": True}))
        async with _client(transport) as client:
            assert await get_json(client, URL) == {"ok": True}

    @pytest.mark.asyncio
    async def test_retries_transient_status(self) -> None:
        responses = iter([httpx.Response(503), httpx.Response(429), httpx.Response(200, json=[1])])
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return next(responses)

        async with _client(httpx.MockTransport(handler)) as client:
            result = await get_json(client, URL, max_retries=2, base_delay=0.001)

        assert result == [1]
        assert calls == 3

    @pytest.mark.asyncio
    async def test_exhausted_retries(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(502))
        async with _client(transport) as client:
            with pytest.raises(MarketDataError, match="All 2 attempts failed"):
                await get_json(client, URL, max_retries=1, base_delay=0.001)

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(404)

        async with _client(httpx.MockTransport(handler)) as client:
            with pytest.raises(MarketDataNotFoundError):
                await get_json(client, URL, max_retries=3, base_delay=0.001)
        assert calls == 1

    @pytest.mark.asyncio
    async def test_network_error_retried(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        async with _client(httpx.MockTransport(handler)) as client:
            with pytest.raises(MarketDataError, match="refused"):
                await get_json(client, URL, max_retries=1, base_delay=0.001)

    @pytest.mark.asyncio
    async def test_invalid_json(self) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(200, content=b"<html>"))
        async with _client(transport) as client:
            with pytest.raises(MarketDataError, match="invalid JSON"):
                await get_json(client, URL)
