"""
Tests for the sizing engine.

Tests cover:
- Balance-based BUY sizing (auto mode)
- Proportional BUY sizing (paper / recommend)
- Cash clamp and the $1 minimum
- SELL sizing never exceeding held shares
"""

from decimal import Decimal

import pytest

from src.copytrade.models import ErrorKind, RiskConfig, Side
from src.copytrade.sizing import SizingEngine


@pytest.fixture
def engine():
    return SizingEngine(min_order_size=1)


def config(**overrides):
    values = {
        "copy_percentage": 100,
        "max_trade_size": None,
        "daily_limit": None,
        "max_per_market": None,
    }
    values.update(overrides)
    return RiskConfig(subscriber_id="alice", **values)


class TestBuySizing:
    """Tests for BUY sizing."""

    def test_small_trade_copied_one_to_one_under_cap(self, engine, make_trade):
        # $5 source trade, $10 cap
        trade = make_trade(shares="10", price="0.5")
        result = engine.size(trade, config(max_trade_size=10), Decimal("1000"))

        assert result.success
        assert result.data["amount"] == Decimal("5.0")
        assert result.data["shares"] == Decimal("10")

    def test_large_trade_capped(self, engine, make_trade):
        trade = make_trade(shares="1000", price="0.5")
        result = engine.size(trade, config(max_trade_size=10), Decimal("1000"))

        assert result.data["amount"] == Decimal("10")
        assert result.data["shares"] == Decimal("20")

    def test_uncapped_uses_balance_percentage(self, engine, make_trade):
        trade = make_trade(shares="1000", price="0.5")
        result = engine.size(trade, config(copy_percentage=10), Decimal("200"))

        # min($500 source, 10% of $200)
        assert result.data["amount"] == Decimal("20")

    def test_proportional_scales_source_trade(self, engine, make_trade):
        trade = make_trade(shares="100", price="0.5")
        result = engine.size(trade, config(copy_percentage=50), Decimal("1000"), proportional=True)

        assert result.data["amount"] == Decimal("25")
        assert result.data["shares"] == Decimal("50")

    def test_proportional_respects_trade_cap(self, engine, make_trade):
        trade = make_trade(shares="100", price="0.5")
        result = engine.size(trade, config(max_trade_size=10), Decimal("1000"), proportional=True)

        assert result.data["amount"] == Decimal("10")

    def test_clamped_to_balance(self, engine, make_trade):
        trade = make_trade(shares="100", price="0.5")
        result = engine.size(trade, config(), Decimal("30"), proportional=True)

        assert result.data["amount"] == Decimal("30")

    def test_no_balance_means_untracked(self, engine, make_trade):
        trade = make_trade(shares="100", price="0.5")
        result = engine.size(trade, config(copy_percentage=10), None)

        assert result.success
        assert result.data["amount"] == Decimal("5")

    def test_below_minimum_rejected(self, engine, make_trade):
        trade = make_trade(shares="1", price="0.5")
        result = engine.size(trade, config(), Decimal("1000"))

        assert not result.success
        assert result.error == ErrorKind.TOO_SMALL
        assert result.message == "Copy size too small (min $1)"

    def test_empty_balance_rejected(self, engine, make_trade):
        trade = make_trade(shares="100", price="0.5")
        result = engine.size(trade, config(), Decimal("0.5"))

        assert result.error == ErrorKind.TOO_SMALL


class TestSellSizing:
    """Tests for SELL sizing."""

    def test_full_copy(self, engine, make_trade):
        trade = make_trade(side=Side.SELL, shares="100", price="0.6")
        result = engine.size(trade, config(), None, held_shares=Decimal("100"))

        assert result.success
        assert result.data["shares"] == Decimal("100")
        assert result.data["amount"] == Decimal("60.0")

    def test_never_exceeds_held(self, engine, make_trade):
        trade = make_trade(side=Side.SELL, shares="100", price="0.6")
        result = engine.size(trade, config(), None, held_shares=Decimal("50"))

        assert result.data["shares"] == Decimal("50")

    def test_percentage_of_source(self, engine, make_trade):
        trade = make_trade(side=Side.SELL, shares="100", price="0.6")
        result = engine.size(trade, config(copy_percentage=25), None, held_shares=Decimal("100"))

        assert result.data["shares"] == Decimal("25")

    def test_no_position(self, engine, make_trade):
        trade = make_trade(side=Side.SELL)
        result = engine.size(trade, config(), Decimal("1000"), held_shares=Decimal("0"))

        assert not result.success
        assert result.error == ErrorKind.NO_POSITION

    def test_untracked_holdings(self, engine, make_trade):
        trade = make_trade(side=Side.SELL, shares="100")
        result = engine.size(trade, config(copy_percentage=10), None, held_shares=None)

        assert result.data["shares"] == Decimal("10")

    def test_tiny_sell_allowed(self, engine, make_trade):
        trade = make_trade(side=Side.SELL, shares="1", price="0.1")
        result = engine.size(trade, config(), None, held_shares=Decimal("1"))

        assert result.success
