"""Tests for position change computation."""

from __future__ import annotations

from decimal import Decimal

from dex_buy_tracker.tracker.models import PositionChange


class TestPositionChange:
    """Tests for PositionChange.from_balances."""

    def test_no_prior_position(self) -> None:
        change = PositionChange.from_balances(0, 1500)

        assert change.is_new_position
        assert change.increase_pct is None
        assert change.display_pct is None
        assert change.post_balance == 1500

    def test_fifty_percent(self) -> None:
        change = PositionChange.from_balances(1000, 500)

        assert change.post_balance == 1500
        assert change.increase_pct == Decimal("50")
        assert change.display_pct == 50

    def test_one_decimal_precision(self) -> None:
        change = PositionChange.from_balances(3000, 1000)

        assert change.increase_pct == Decimal("33.3")
        assert change.display_pct == 33

    def test_display_rounds_half_up(self) -> None:
        change = PositionChange.from_balances(1000, 125)

        assert change.increase_pct == Decimal("12.5")
        assert change.display_pct == 13
