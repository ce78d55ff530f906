"""Metrics enrichment: turns a BuySignal into a PremiumAlert.

Independent lookups (pair market data, native price, buyer's prior balance)
run concurrently. Each lookup falls back to a documented default on
failure so a single unavailable upstream never drops an alert.
"""

from __future__ import annotations

import asyncio
import logging
from decimal import Decimal
from typing import Protocol

from dex_buy_tracker.chain.connection import ChainConnectionError, ChainError
from dex_buy_tracker.chain.pool import ChainConnectionPool
from dex_buy_tracker.groups import GroupConfig
from dex_buy_tracker.market.http import MarketDataError
from dex_buy_tracker.market.models import PairInfo
from dex_buy_tracker.tracker.models import NATIVE_DECIMALS, BuySignal, PositionChange, PremiumAlert

logger = logging.getLogger(__name__)

# Assumed supply for the market cap estimate when the provider reports no fdv.
ESTIMATED_SUPPLY = Decimal(10) ** 15


class PairMarketData(Protocol):
    async def get_pair_info(self, chain: str, pair_address: str, token_address: str) -> PairInfo: ...


class NativePriceSource(Protocol):
    async def get_native_price_usd(self, chain: str) -> Decimal: ...


def to_decimal_amount(raw: int, decimals: int) -> Decimal:
    """Convert a raw integer token amount to a decimal quantity."""
    return Decimal(raw) / (Decimal(10) ** decimals)


def estimate_market_cap(pair: PairInfo) -> tuple[Decimal, bool]:
    """Market cap from fdv, or an estimate from price when fdv is missing.

    Returns:
        (market cap in USD, whether the value is an estimate)
    """
    if pair.fdv_usd > 0:
        return pair.fdv_usd, False
    if pair.price_usd > 0:
        return pair.price_usd * ESTIMATED_SUPPLY, True
    return Decimal(0), False


class MetricsEnricher:
    """Computes USD value, amounts, market data and position change for a buy."""

    def __init__(
        self,
        market: PairMarketData,
        prices: NativePriceSource,
        connections: ChainConnectionPool,
    ) -> None:
        self._market = market
        self._prices = prices
        self._connections = connections

    async def _pair_info(self, signal: BuySignal, config: GroupConfig) -> PairInfo:
        try:
            return await self._market.get_pair_info(
                config.chain, signal.pool_address, signal.tracked_token
            )
        except MarketDataError as e:
            logger.warning("Pair info unavailable for %s: %s", signal.pool_address, e)
            return PairInfo.empty(signal.pool_address)

    async def _pre_balance(self, signal: BuySignal, config: GroupConfig) -> int:
        block = max(signal.event.block_number - 1, 0)
        connection = self._connections.get(config.chain)
        try:
            if connection is None:
                raise ChainConnectionError(f"Chain {config.chain} is not connected")
            return await connection.get_token_balance(signal.tracked_token, signal.buyer, block)
        except (ChainError, ValueError) as e:
            # Unreadable balance is reported as no prior position.
            logger.warning("Balance read failed for %s at block %d: %s", signal.buyer, block, e)
            return 0

    async def enrich(
        self,
        signal: BuySignal,
        config: GroupConfig,
        *,
        main_pair_liquidity_usd: Decimal | None = None,
    ) -> PremiumAlert:
        """Enrich a buy for one group.

        Args:
            signal: Classified buy.
            config: Group the alert is for (chain, tracked token).
            main_pair_liquidity_usd: Liquidity of the group's main pair from
                discovery; the swapped pair's liquidity is used when unknown.

        Returns:
            PremiumAlert with every field populated.
        """
        pair, native_price, pre_balance = await asyncio.gather(
            self._pair_info(signal, config),
            self._prices.get_native_price_usd(config.chain),
            self._pre_balance(signal, config),
        )

        base_amount = to_decimal_amount(signal.base_in, NATIVE_DECIMALS)
        token_amount = to_decimal_amount(signal.token_out, pair.decimals)
        market_cap, is_estimate = estimate_market_cap(pair)

        return PremiumAlert(
            chain=config.chain,
            signal=signal,
            usd_value=base_amount * native_price,
            base_amount=base_amount,
            token_amount=token_amount,
            native_price_usd=native_price,
            symbol=pair.symbol,
            price_usd=pair.price_usd,
            market_cap_usd=market_cap,
            market_cap_is_estimate=is_estimate,
            volume_24h_usd=pair.volume_24h_usd,
            pair_liquidity_usd=pair.liquidity_usd,
            main_pair_liquidity_usd=(
                main_pair_liquidity_usd
                if main_pair_liquidity_usd is not None
                else pair.liquidity_usd
            ),
            position=PositionChange.from_balances(pre_balance, signal.token_out),
        )
