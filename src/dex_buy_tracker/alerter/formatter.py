"""Buy alert formatter.

Transforms PremiumAlert objects into Telegram HTML messages with a tiered
headline, a magnitude bar, explorer links and an inline keyboard.
"""

from __future__ import annotations

import html
import re
from collections.abc import Mapping
from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal

from dex_buy_tracker.alerter.models import AlertButton, BuyTier, FormattedAlert
from dex_buy_tracker.config import AlertSettings, ChainSettings
from dex_buy_tracker.groups import DEFAULT_DOLLARS_PER_EMOJI, GroupConfig
from dex_buy_tracker.market.dexscreener import normalize_chain
from dex_buy_tracker.tracker.models import PremiumAlert

# Link templates
DEXSCREENER_PAIR_URL = "https://dexscreener.com/{chain}/{pair}"
DEXTOOLS_PAIR_URL = "https://www.dextools.io/app/{slug}/pair-explorer/{pair}"

DEFAULT_MAX_EMOJI = 50
UNKNOWN_NATIVE_EMOJI = "💠"
UNKNOWN_NATIVE_SYMBOL = "NATIVE"

HEADLINES: dict[BuyTier, str] = {
    BuyTier.WHALE: "🐳🐳🐳 <b>WHALE INCOMING!!!</b> 🐳🐳🐳",
    BuyTier.BIG: "🚨🚨🚨 <b>BIG BUY DETECTED!</b> 🚨🚨🚨",
    BuyTier.STRONG: "🟢🟢🟢 <b>Strong Buy</b> 🟢🟢🟢",
    BuyTier.NEW: "🟢 <b>New Buy</b> 🟢",
}
WHALE_LOADING_LINE = "🚀 <b>WHALE LOADING HEAVILY!</b>"

_TAG_RE = re.compile(r"<[^>]+>")


def truncate_address(address: str, chars: int = 6) -> str:
    """Truncate an address to 0x1234...5678 format."""
    if len(address) < chars * 2 + 4:
        return address
    return f"{address[: chars + 2]}...{address[-chars:]}"


def emoji_count(
    usd_value: Decimal,
    dollars_per_emoji: Decimal,
    max_emoji: int = DEFAULT_MAX_EMOJI,
) -> int:
    """Number of glyphs in the magnitude bar: min(cap, floor(usd / dollars_per_emoji))."""
    per = dollars_per_emoji if dollars_per_emoji > 0 else DEFAULT_DOLLARS_PER_EMOJI
    if usd_value <= 0:
        return 0
    count = int((usd_value / per).to_integral_value(rounding=ROUND_FLOOR))
    return max(0, min(max_emoji, count))


def format_usd(amount: Decimal) -> str:
    """Format a USD amount rounded to whole dollars with commas."""
    return f"${amount.quantize(Decimal(1), rounding=ROUND_HALF_UP):,}"


def format_compact_usd(amount: Decimal) -> str:
    """Format a large USD amount as $1.23B / $4.56M / $7.8K."""
    if amount >= 1_000_000_000:
        return f"${amount / 1_000_000_000:,.2f}B"
    if amount >= 1_000_000:
        return f"${amount / 1_000_000:,.2f}M"
    if amount >= 1_000:
        return f"${amount / 1_000:,.1f}K"
    return f"${amount:,.2f}"


def format_token_amount(amount: Decimal) -> str:
    if amount >= 1:
        return f"{amount:,.2f}"
    return f"{amount:.6g}"


def html_to_plain(text: str) -> str:
    return html.unescape(_TAG_RE.sub("", text))


class AlertFormatter:
    """Formats PremiumAlerts for a group.

    Example:
        ```python
        formatter = AlertFormatter(settings.chains, settings.alert)
        formatted = formatter.format(alert, group_config)
        print(formatted.plain_text)
        ```
    """

    def __init__(
        self,
        chains: Mapping[str, ChainSettings],
        settings: AlertSettings,
    ) -> None:
        """Initialize the formatter.

        Args:
            chains: Chain configuration (explorer, native symbol, DexTools slug).
            settings: Tier thresholds and rendering limits.
        """
        self._chains = {k.lower(): v for k, v in chains.items()}
        self._settings = settings

    def tier_for(self, usd_value: Decimal) -> BuyTier:
        """Get the severity tier for a USD value."""
        if usd_value >= self._settings.whale_usd:
            return BuyTier.WHALE
        if usd_value >= self._settings.big_buy_usd:
            return BuyTier.BIG
        if usd_value >= self._settings.strong_buy_usd:
            return BuyTier.STRONG
        return BuyTier.NEW

    def format(self, alert: PremiumAlert, config: GroupConfig) -> FormattedAlert:
        """Format an enriched buy for one group.

        Args:
            alert: The enriched buy.
            config: Group whose emoji and links are used.

        Returns:
            FormattedAlert with HTML body and keyboard.
        """
        chain = self._chains.get(alert.chain)
        tier = self.tier_for(alert.usd_value)
        glyphs = emoji_count(alert.usd_value, config.dollars_per_emoji, self._settings.max_emoji)
        links = self._build_links(alert, chain)

        body = self._build_body(alert, chain, tier, glyphs, config.emoji, links)
        keyboard = self._build_keyboard(alert, config, chain)

        return FormattedAlert(
            tier=tier,
            html=body,
            plain_text=html_to_plain(body),
            emoji_count=glyphs,
            keyboard=keyboard,
            links=links,
        )

    def _build_links(self, alert: PremiumAlert, chain: ChainSettings | None) -> dict[str, str]:
        """Build dictionary of explorer links."""
        if chain is None:
            return {}
        explorer = chain.explorer_url
        return {
            "buyer": f"{explorer}/address/{alert.buyer}",
            "tx": f"{explorer}/tx/{alert.tx_hash}",
            "pair": f"{explorer}/address/{alert.pool_address}",
        }

    def _build_body(
        self,
        alert: PremiumAlert,
        chain: ChainSettings | None,
        tier: BuyTier,
        glyphs: int,
        emoji: str,
        links: dict[str, str],
    ) -> str:
        native_emoji = chain.native_emoji if chain else UNKNOWN_NATIVE_EMOJI
        native_symbol = chain.native_symbol if chain else UNKNOWN_NATIVE_SYMBOL
        symbol = html.escape(alert.symbol)
        buyer_short = truncate_address(alert.buyer)

        lines = [HEADLINES[tier], ""]
        if glyphs:
            lines.extend([emoji * glyphs, ""])

        increase = alert.position.display_pct
        if increase is not None and increase > self._settings.whale_loading_pct:
            lines.extend([WHALE_LOADING_LINE, ""])

        lines.append(
            f"{native_emoji} <b>{alert.base_amount:,.4f} {native_symbol}</b> "
            f"({format_usd(alert.usd_value)})"
        )
        lines.append(f"🪙 <b>{format_token_amount(alert.token_amount)} {symbol}</b>")

        pair_label = f"<a href=\"{links['pair']}\">Pair</a>" if "pair" in links else "Pair"
        lines.append(f"🔗 {pair_label} | LP {format_compact_usd(alert.main_pair_liquidity_usd)}")

        if "buyer" in links:
            lines.append(
                f"👤 <a href=\"{links['buyer']}\">{buyer_short}</a> | "
                f"<a href=\"{links['tx']}\">Txn</a>"
            )
        else:
            lines.append(f"👤 {buyer_short}")

        if alert.position.display_pct is None:
            lines.append("📈 Position: <b>New Holder</b>")
        else:
            lines.append(f"📈 Position: <b>+{alert.position.display_pct}%</b>")

        market_cap = format_compact_usd(alert.market_cap_usd)
        if alert.market_cap_is_estimate:
            market_cap += " (est.)"
        lines.append(f"💰 Market Cap: <b>{market_cap}</b>")
        lines.append(f"📊 24h Volume: <b>{format_compact_usd(alert.volume_24h_usd)}</b>")

        return "\n".join(lines)

    def _build_keyboard(
        self,
        alert: PremiumAlert,
        config: GroupConfig,
        chain: ChainSettings | None,
    ) -> tuple[tuple[AlertButton, ...], ...]:
        slug = chain.dextools_slug if chain else alert.chain
        charts = (
            AlertButton(
                "📊 DexScreener",
                DEXSCREENER_PAIR_URL.format(
                    chain=normalize_chain(alert.chain), pair=alert.pool_address
                ),
            ),
            AlertButton(
                "🛠 DexTools",
                DEXTOOLS_PAIR_URL.format(slug=slug, pair=alert.pool_address),
            ),
        )
        rows: list[tuple[AlertButton, ...]] = [charts]

        extra: list[AlertButton] = []
        if config.tg_group_link:
            extra.append(AlertButton("👥 Join Group", config.tg_group_link))
        if self._settings.contact_url:
            extra.append(AlertButton("✉️ DM for Access", self._settings.contact_url))
        if extra:
            rows.append(tuple(extra))
        return tuple(rows)
