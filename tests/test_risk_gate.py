"""
Tests for the risk limit gate.

Tests cover:
- Copy-enabled flag (auto mode only)
- Ignore list
- Daily cap (rejects)
- Per-market cap (shrinks, rejects below the minimum)
- Pending replicas reserving cap room
- Slippage band
"""

from decimal import Decimal

import pytest

from src.copytrade.models import (
    ErrorKind,
    ReplicaRecord,
    ReplicaStatus,
    RiskConfig,
    Side,
    SubscriptionMode,
)
from src.copytrade.risk_gate import RiskGate

AUTO = SubscriptionMode.AUTO
PAPER = SubscriptionMode.PAPER


@pytest.fixture
def gate(store, registry, clock):
    return RiskGate(store, registry, clock=clock)


def config(**overrides):
    values = {
        "copy_percentage": 100,
        "max_trade_size": None,
        "daily_limit": 100,
        "max_per_market": None,
        "enabled": True,
    }
    values.update(overrides)
    return RiskConfig(subscriber_id="alice", **values)


def executed_buy(store, value, mode=AUTO, condition_id="cond-1", key=None):
    """Store an executed BUY replica worth `value` dollars at $0.50."""
    record, _ = store.claim(ReplicaRecord(
        subscriber_id="alice",
        dedup_key=key or f"tx-{value}-{condition_id}-{mode}",
        mode=mode.value,
        side="BUY",
        condition_id=condition_id,
    ))
    shares = Decimal(str(value)) / Decimal("0.5")
    return store.finalize(record.id, ReplicaStatus.EXECUTED, shares=shares, price=Decimal("0.5"))


class TestPrecheck:
    """Tests for enabled flag and ignore list."""

    def test_disabled_blocks_auto(self, gate, make_trade):
        result = gate.precheck("alice", AUTO, make_trade(), config(enabled=False))

        assert result.error == ErrorKind.COPY_DISABLED
        assert result.message == "Copy trading is disabled"

    def test_disabled_does_not_block_paper(self, gate, make_trade):
        assert gate.precheck("alice", PAPER, make_trade(), config(enabled=False)).success

    def test_ignored_market(self, gate, registry, make_trade):
        registry.add_ignore_pattern("alice", "rain")

        result = gate.precheck("alice", PAPER, make_trade(title="Will it RAIN?"), config())

        assert result.error == ErrorKind.MARKET_IGNORED


class TestDailyCap:
    """Tests for the daily BUY cap."""

    def test_within_limit(self, gate, store, make_trade):
        executed_buy(store, 80)
        result = gate.check_caps("alice", AUTO, make_trade(), Decimal("20"), config())

        assert result.success
        assert result.data["amount"] == Decimal("20")

    def test_exceeding_limit_rejected(self, gate, store, make_trade):
        executed_buy(store, 80)
        result = gate.check_caps("alice", AUTO, make_trade(), Decimal("30"), config())

        assert not result.success
        assert result.error == ErrorKind.DAILY_LIMIT_EXCEEDED

    def test_yesterday_does_not_count(self, gate, store, clock, make_trade):
        executed_buy(store, 80)
        clock.advance(86400)

        assert gate.check_caps("alice", AUTO, make_trade(), Decimal("30"), config()).success

    def test_other_mode_does_not_count(self, gate, store, make_trade):
        executed_buy(store, 80, mode=PAPER)

        assert gate.check_caps("alice", AUTO, make_trade(), Decimal("30"), config()).success

    def test_sells_bypass_caps(self, gate, store, make_trade):
        executed_buy(store, 100)
        result = gate.check_caps("alice", AUTO, make_trade(side=Side.SELL), Decimal("500"), config())

        assert result.success
        assert result.data["amount"] == Decimal("500")

    def test_no_limit(self, gate, store, make_trade):
        executed_buy(store, 1000)
        assert gate.check_caps("alice", AUTO, make_trade(), Decimal("30"), config(daily_limit=None)).success


class TestMarketCap:
    """Tests for the per-market cap."""

    def test_shrinks_to_remaining(self, gate, store, make_trade):
        executed_buy(store, 20)
        result = gate.check_caps(
            "alice", AUTO, make_trade(), Decimal("10"), config(daily_limit=None, max_per_market=25)
        )

        assert result.success
        assert result.data["amount"] == Decimal("5")
        assert result.data["shrunk"] is True

    def test_reached(self, gate, store, make_trade):
        executed_buy(store, 25)
        result = gate.check_caps(
            "alice", AUTO, make_trade(), Decimal("10"), config(daily_limit=None, max_per_market=25)
        )

        assert result.error == ErrorKind.MARKET_LIMIT_REACHED
        assert result.message.startswith("Market limit reached ($25/$25")

    def test_remaining_below_minimum_rejected(self, gate, store, make_trade):
        executed_buy(store, "24.5")
        result = gate.check_caps(
            "alice", AUTO, make_trade(), Decimal("10"), config(daily_limit=None, max_per_market=25)
        )

        assert result.error == ErrorKind.MARKET_LIMIT_REACHED

    def test_other_market_does_not_count(self, gate, store, make_trade):
        executed_buy(store, 25, condition_id="cond-other")
        result = gate.check_caps(
            "alice", AUTO, make_trade(), Decimal("10"), config(daily_limit=None, max_per_market=25)
        )

        assert result.data["amount"] == Decimal("10")

    def test_recent_pending_reserves_room(self, gate, store, make_trade):
        pending, _ = store.claim(ReplicaRecord("alice", "tx-pending", "auto", "BUY", condition_id="cond-1"))
        store.reserve(pending.id, Decimal("20"), Decimal("0.5"))

        result = gate.check_caps(
            "alice", AUTO, make_trade(), Decimal("10"), config(daily_limit=None, max_per_market=25)
        )

        assert result.data["amount"] == Decimal("5")

    def test_own_pending_record_excluded(self, gate, store, make_trade):
        own, _ = store.claim(ReplicaRecord("alice", "tx-own", "auto", "BUY", condition_id="cond-1"))
        store.reserve(own.id, Decimal("10"), Decimal("0.5"))

        result = gate.check_caps(
            "alice", AUTO, make_trade(), Decimal("10"), config(daily_limit=None, max_per_market=25),
            record_id=own.id,
        )

        assert result.data["amount"] == Decimal("10")

    def test_stale_pending_released(self, gate, store, clock, make_trade):
        pending, _ = store.claim(ReplicaRecord("alice", "tx-pending", "auto", "BUY", condition_id="cond-1"))
        store.reserve(pending.id, Decimal("25"), Decimal("0.5"))
        clock.advance(301)

        result = gate.check_caps(
            "alice", AUTO, make_trade(), Decimal("10"), config(daily_limit=None, max_per_market=25)
        )

        assert result.data["amount"] == Decimal("10")


class TestAdmit:
    """Tests for the combined pre-execution check."""

    def test_precheck_short_circuits(self, gate, make_trade):
        result = gate.admit("alice", AUTO, make_trade(), Decimal("10"), config(enabled=False))
        assert result.error == ErrorKind.COPY_DISABLED

    def test_admitted(self, gate, make_trade):
        result = gate.admit("alice", AUTO, make_trade(), Decimal("10"), config())
        assert result.success
        assert result.data["shrunk"] is False


class TestPriceCheck:
    """Tests for the slippage band."""

    def test_buy_within_band(self, gate, make_trade):
        result = gate.check_price(make_trade(price="0.5"), Decimal("0.51"))
        assert result.success
        assert result.data["live_price"] == Decimal("0.51")

    def test_buy_price_moved(self, gate, make_trade):
        result = gate.check_price(make_trade(price="0.5"), Decimal("0.52"))

        assert result.error == ErrorKind.PRICE_MOVED
        assert result.data["live_price"] == Decimal("0.52")

    def test_sell_price_moved(self, gate, make_trade):
        trade = make_trade(side=Side.SELL, price="0.5")

        assert gate.check_price(trade, Decimal("0.49")).success
        assert gate.check_price(trade, Decimal("0.48")).error == ErrorKind.PRICE_MOVED

    def test_favourable_moves_allowed(self, gate, make_trade):
        assert gate.check_price(make_trade(price="0.5"), Decimal("0.3")).success
        assert gate.check_price(make_trade(side=Side.SELL, price="0.5"), Decimal("0.9")).success

    def test_price_unavailable(self, gate, make_trade):
        result = gate.check_price(make_trade(), None)

        assert result.error == ErrorKind.PRICE_UNAVAILABLE
        assert result.message == "Could not get market price"


class TestDailySummary:
    """Tests for the daily summary report."""

    def test_summary(self, gate, store):
        executed_buy(store, 30)

        summary = gate.daily_summary("alice", AUTO, config())

        assert Decimal(summary["executed_today"]) == Decimal("30")
        assert summary["daily_limit"] == "100"
        assert Decimal(summary["remaining"]) == Decimal("70")
