"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import Any

import pytest

from dex_buy_tracker.chain.models import SwapEvent
from dex_buy_tracker.config import AlertSettings, ChainSettings
from dex_buy_tracker.groups import GroupConfig

TOKEN = "0x1111111111111111111111111111111111111111"
WBNB = "0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c"
PAIR = "0x2222222222222222222222222222222222222222"
BUYER = "0x3333333333333333333333333333333333333333"
ROUTER = "0x10ed43c718714eb63d5aa57b78b54704e256024e"


@pytest.fixture
def token_address() -> str:
    """Tracked token address."""
    return TOKEN


@pytest.fixture
def base_address() -> str:
    """Wrapped native token address."""
    return WBNB


@pytest.fixture
def pair_address() -> str:
    """Main pair address (token0 = tracked token, token1 = WBNB)."""
    return PAIR


@pytest.fixture
def buyer_address() -> str:
    return BUYER


@pytest.fixture
def bsc_settings() -> ChainSettings:
    return ChainSettings(
        rpc_url="https://bsc-dataseed.binance.org",
        explorer_url="https://bscscan.com",
        native_symbol="BNB",
        native_emoji="🟡",
        price_ticker="BNBUSDT",
        fallback_price_usd=Decimal("600"),
        dextools_slug="bsc",
    )


@pytest.fixture
def chains(bsc_settings: ChainSettings) -> dict[str, ChainSettings]:
    return {"bsc": bsc_settings}


@pytest.fixture
def alert_settings() -> AlertSettings:
    return AlertSettings(
        strong_buy_usd=Decimal("1000"),
        big_buy_usd=Decimal("3000"),
        whale_usd=Decimal("5000"),
        max_emoji=50,
        whale_loading_pct=500,
        contact_url=None,
    )


@pytest.fixture
def group_config() -> GroupConfig:
    """Group alerting on TOKEN's main pair with default filters."""
    return GroupConfig(
        chain="bsc",
        token_address=TOKEN,
        pair_address=PAIR,
        min_buy_usd=Decimal("50"),
        dollars_per_emoji=Decimal("50"),
        emoji="🟢",
    )


@pytest.fixture
def make_swap() -> Callable[..., SwapEvent]:
    """Factory for SwapEvents on PAIR; a buy of TOKEN (token0) by default."""

    def _make(**overrides: Any) -> SwapEvent:
        fields: dict[str, Any] = {
            "pool_address": PAIR,
            "amount0_in": 0,
            "amount1_in": 2 * 10**18,
            "amount0_out": 5_000 * 10**18,
            "amount1_out": 0,
            "sender": ROUTER,
            "to": BUYER,
            "tx_hash": "0x" + "ab" * 32,
            "log_index": 3,
            "block_number": 40_000_000,
        }
        fields.update(overrides)
        return SwapEvent(**fields)

    return _make
