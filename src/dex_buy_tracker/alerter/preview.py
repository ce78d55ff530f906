"""Sample alerts for previewing a group's configuration."""

from __future__ import annotations

from decimal import Decimal

from dex_buy_tracker.chain.models import SwapEvent
from dex_buy_tracker.groups import GroupConfig
from dex_buy_tracker.market.models import PairInfo
from dex_buy_tracker.tracker.enrichment import estimate_market_cap, to_decimal_amount
from dex_buy_tracker.tracker.models import NATIVE_DECIMALS, BuySignal, PositionChange, PremiumAlert

SAMPLE_BUYER = "0x000000000000000000000000000000000000dead"
SAMPLE_TX_HASH = "0x" + "ab" * 32
SAMPLE_BASE_TOKEN = "0x" + "00" * 19 + "01"


def build_sample_alert(
    config: GroupConfig,
    *,
    usd_value: Decimal,
    native_price_usd: Decimal,
    pair: PairInfo | None = None,
) -> PremiumAlert:
    """Build a realistic PremiumAlert for the group's main pair.

    The buy size is derived from ``usd_value`` and the native price; the
    token amount from the pair price when known.
    """
    pair = pair or PairInfo.empty(config.pair_address)
    price = native_price_usd if native_price_usd > 0 else Decimal(1)
    base_amount = usd_value / price
    base_in = int(base_amount * (Decimal(10) ** NATIVE_DECIMALS))

    token_units = usd_value / pair.price_usd if pair.price_usd > 0 else Decimal(1_000_000)
    token_out = int(token_units * (Decimal(10) ** pair.decimals))

    event = SwapEvent(
        pool_address=config.pair_address,
        amount0_in=0,
        amount1_in=base_in,
        amount0_out=token_out,
        amount1_out=0,
        sender=SAMPLE_BUYER,
        to=SAMPLE_BUYER,
        tx_hash=SAMPLE_TX_HASH,
        log_index=0,
        block_number=1,
    )
    signal = BuySignal(
        event=event,
        tracked_token=config.token_address,
        base_token=SAMPLE_BASE_TOKEN,
        base_in=base_in,
        token_out=token_out,
    )
    market_cap, is_estimate = estimate_market_cap(pair)

    return PremiumAlert(
        chain=config.chain,
        signal=signal,
        usd_value=usd_value,
        base_amount=to_decimal_amount(base_in, NATIVE_DECIMALS),
        token_amount=to_decimal_amount(token_out, pair.decimals),
        native_price_usd=native_price_usd,
        symbol=pair.symbol,
        price_usd=pair.price_usd,
        market_cap_usd=market_cap,
        market_cap_is_estimate=is_estimate,
        volume_24h_usd=pair.volume_24h_usd,
        pair_liquidity_usd=pair.liquidity_usd,
        main_pair_liquidity_usd=pair.liquidity_usd,
        position=PositionChange.from_balances(0, token_out),
    )
