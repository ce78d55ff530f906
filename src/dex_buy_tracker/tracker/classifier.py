"""Swap classification: is this swap a buy of the tracked token?"""

from __future__ import annotations

from dex_buy_tracker.chain.models import SwapEvent
from dex_buy_tracker.tracker.models import BuySignal


def classify(
    event: SwapEvent,
    token0: str,
    token1: str,
    tracked_token: str,
) -> BuySignal | None:
    """Classify a swap against the pool's token ordering.

    The tracked side is found by case-insensitive address equality and the
    other side is the base asset. The swap is a buy when base-in and
    tracked-out are both strictly positive; sells, zero-amount swaps and
    pools that do not contain the tracked token return None.

    Args:
        event: Decoded swap.
        token0: Pool's token0 address.
        token1: Pool's token1 address.
        tracked_token: Address of the token being watched.

    Returns:
        BuySignal for a buy, otherwise None.
    """
    tracked = tracked_token.lower()
    t0 = token0.lower()
    t1 = token1.lower()

    if tracked == t0:
        base_token = t1
        base_in = event.amount1_in
        token_out = event.amount0_out
    elif tracked == t1:
        base_token = t0
        base_in = event.amount0_in
        token_out = event.amount1_out
    else:
        return None

    if base_in <= 0 or token_out <= 0:
        return None

    return BuySignal(
        event=event,
        tracked_token=tracked,
        base_token=base_token,
        base_in=base_in,
        token_out=token_out,
    )
