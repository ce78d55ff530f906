"""Data models for classified and enriched buys."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from dex_buy_tracker.chain.models import SwapEvent

NATIVE_DECIMALS = 18


@dataclass(frozen=True)
class BuySignal:
    """A swap recognised as a buy of the tracked token.

    Attributes:
        event: The underlying swap.
        tracked_token: Lowercase address of the bought token.
        base_token: Lowercase address of the asset paid with.
        base_in: Raw amount of the base asset sent into the pool.
        token_out: Raw amount of the tracked token sent to the buyer.
    """

    event: SwapEvent
    tracked_token: str
    base_token: str
    base_in: int
    token_out: int

    @property
    def buyer(self) -> str:
        return self.event.to

    @property
    def pool_address(self) -> str:
        return self.event.pool_address


@dataclass(frozen=True)
class PositionChange:
    """Buyer's balance of the tracked token around the buy.

    ``increase_pct`` is None when the buyer had no prior position.
    """

    pre_balance: int
    post_balance: int
    increase_pct: Decimal | None

    @classmethod
    def from_balances(cls, pre_balance: int, token_out: int) -> PositionChange:
        """Compute the one-decimal percentage increase from the pre-trade balance."""
        post_balance = pre_balance + token_out
        if pre_balance <= 0:
            return cls(pre_balance=pre_balance, post_balance=post_balance, increase_pct=None)
        per_mille = (Decimal(1000) * (post_balance - pre_balance) / Decimal(pre_balance)).quantize(
            Decimal(1), rounding=ROUND_HALF_UP
        )
        return cls(
            pre_balance=pre_balance,
            post_balance=post_balance,
            increase_pct=per_mille / Decimal(10),
        )

    @property
    def is_new_position(self) -> bool:
        return self.increase_pct is None

    @property
    def display_pct(self) -> int | None:
        """Increase rounded to a whole percent."""
        if self.increase_pct is None:
            return None
        return int(self.increase_pct.quantize(Decimal(1), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class PremiumAlert:
    """A BuySignal with its enrichment results, ready for formatting."""

    chain: str
    signal: BuySignal
    usd_value: Decimal
    base_amount: Decimal
    token_amount: Decimal
    native_price_usd: Decimal
    symbol: str
    price_usd: Decimal
    market_cap_usd: Decimal
    market_cap_is_estimate: bool
    volume_24h_usd: Decimal
    pair_liquidity_usd: Decimal
    main_pair_liquidity_usd: Decimal
    position: PositionChange

    @property
    def buyer(self) -> str:
        return self.signal.buyer

    @property
    def tx_hash(self) -> str:
        return self.signal.event.tx_hash

    @property
    def pool_address(self) -> str:
        return self.signal.pool_address
