"""Data models for market-data provider responses."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any

DEFAULT_TOKEN_SYMBOL = "TOKEN"
DEFAULT_TOKEN_DECIMALS = 18

_ZERO = Decimal("0")


def _to_decimal(value: Any) -> Decimal:
    """Parse a provider numeric field, treating absent or invalid data as zero."""
    if value is None or value == "":
        return _ZERO
    try:
        result = Decimal(str(value))
    except (InvalidOperation, ValueError):
        return _ZERO
    return result if result.is_finite() else _ZERO


def _to_int(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _nested(data: dict[str, Any], key: str, field: str) -> Any:
    section = data.get(key)
    if isinstance(section, dict):
        return section.get(field)
    return None


@dataclass(frozen=True)
class PoolListing:
    """A liquidity pool for a token as reported by the market-data provider."""

    address: str
    liquidity_usd: Decimal
    dex_id: str = ""

    @classmethod
    def from_dexscreener(cls, data: dict[str, Any]) -> PoolListing:
        return cls(
            address=str(data.get("pairAddress", "")).lower(),
            liquidity_usd=_to_decimal(_nested(data, "liquidity", "usd")),
            dex_id=str(data.get("dexId", "")),
        )


@dataclass(frozen=True)
class PairInfo:
    """Current market data for one pair, from the tracked token's side.

    Attributes:
        pair_address: Lowercase pair address.
        price_usd: USD price of the tracked token.
        volume_24h_usd: Pair volume over the last 24 hours.
        fdv_usd: Fully diluted valuation of the tracked token (0 if unknown).
        liquidity_usd: Pair liquidity in USD.
        symbol: Tracked token symbol.
        decimals: Tracked token decimals.
    """

    pair_address: str
    price_usd: Decimal = _ZERO
    volume_24h_usd: Decimal = _ZERO
    fdv_usd: Decimal = _ZERO
    liquidity_usd: Decimal = _ZERO
    symbol: str = DEFAULT_TOKEN_SYMBOL
    decimals: int = DEFAULT_TOKEN_DECIMALS

    @classmethod
    def empty(cls, pair_address: str) -> PairInfo:
        """Defaults used when the provider has no data for a pair."""
        return cls(pair_address=pair_address.lower())

    @classmethod
    def from_dexscreener(cls, data: dict[str, Any], token_address: str) -> PairInfo:
        """Build PairInfo from a DexScreener pair object.

        DexScreener prices the pair's base token. When the tracked token is
        the quote token the price is converted to the quote side and the fdv
        (which describes the base token) is not used.
        """
        token = token_address.lower()
        base = data.get("baseToken") if isinstance(data.get("baseToken"), dict) else {}
        quote = data.get("quoteToken") if isinstance(data.get("quoteToken"), dict) else {}

        price_usd = _to_decimal(data.get("priceUsd"))
        fdv_usd = _to_decimal(data.get("fdv"))
        tracked = base

        if str(quote.get("address", "")).lower() == token and str(
            base.get("address", "")
        ).lower() != token:
            tracked = quote
            price_native = _to_decimal(data.get("priceNative"))
            if price_native > 0:
                price_usd = price_usd / price_native
            elif price_usd > 0:
                price_usd = Decimal(1) / price_usd
            fdv_usd = _ZERO

        return cls(
            pair_address=str(data.get("pairAddress", "")).lower(),
            price_usd=price_usd,
            volume_24h_usd=_to_decimal(_nested(data, "volume", "h24")),
            fdv_usd=fdv_usd,
            liquidity_usd=_to_decimal(_nested(data, "liquidity", "usd")),
            symbol=str(tracked.get("symbol") or DEFAULT_TOKEN_SYMBOL),
            decimals=_to_int(tracked.get("decimals"), DEFAULT_TOKEN_DECIMALS),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize for caching."""
        return {
            "pair_address": self.pair_address,
            "price_usd": str(self.price_usd),
            "volume_24h_usd": str(self.volume_24h_usd),
            "fdv_usd": str(self.fdv_usd),
            "liquidity_usd": str(self.liquidity_usd),
            "symbol": self.symbol,
            "decimals": self.decimals,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PairInfo:
        return cls(
            pair_address=str(data["pair_address"]),
            price_usd=_to_decimal(data.get("price_usd")),
            volume_24h_usd=_to_decimal(data.get("volume_24h_usd")),
            fdv_usd=_to_decimal(data.get("fdv_usd")),
            liquidity_usd=_to_decimal(data.get("liquidity_usd")),
            symbol=str(data.get("symbol") or DEFAULT_TOKEN_SYMBOL),
            decimals=_to_int(data.get("decimals"), DEFAULT_TOKEN_DECIMALS),
        )
