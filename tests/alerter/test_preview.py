"""Tests for sample alerts used by the preview command."""

from __future__ import annotations

from decimal import Decimal

from dex_buy_tracker.alerter.formatter import AlertFormatter
from dex_buy_tracker.alerter.preview import build_sample_alert
from dex_buy_tracker.config import AlertSettings, ChainSettings
from dex_buy_tracker.groups import GroupConfig
from dex_buy_tracker.market.models import PairInfo


class TestBuildSampleAlert:
    """Tests for build_sample_alert."""

    def test_amounts_follow_prices(self, group_config: GroupConfig) -> None:
        pair = PairInfo(
            pair_address=group_config.pair_address,
            price_usd=Decimal("0.25"),
            liquidity_usd=Decimal("80000"),
            symbol="MOON",
            decimals=9,
        )

        alert = build_sample_alert(
            group_config, usd_value=Decimal("1000"), native_price_usd=Decimal("500"), pair=pair
        )

        assert alert.usd_value == Decimal("1000")
        assert alert.base_amount == Decimal("2")
        assert alert.token_amount == Decimal("4000")
        assert alert.symbol == "MOON"
        assert alert.chain == "bsc"
        assert alert.pool_address == group_config.pair_address
        assert alert.market_cap_is_estimate is True
        assert alert.position.is_new_position

    def test_without_pair_data(
        self,
        group_config: GroupConfig,
        chains: dict[str, ChainSettings],
        alert_settings: AlertSettings,
    ) -> None:
        alert = build_sample_alert(group_config, usd_value=Decimal("250"), native_price_usd=Decimal("600"))

        formatted = AlertFormatter(chains, alert_settings).format(alert, group_config)

        assert alert.symbol == "TOKEN"
        assert formatted.emoji_count == 5
        assert "New Buy" in formatted.plain_text
