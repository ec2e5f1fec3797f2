"""
Tests for the execution router.

Tests cover:
- Recommend mode (notification only)
- Paper mode (virtual ledger)
- Auto mode (adapter fill mirrored into the real-shadow ledger, drift reported)
- Adapter error mapping
"""

import asyncio
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

import pytest

from src.copytrade.ledger import PAPER, REAL
from src.copytrade.models import ErrorKind, Side, SubscriptionMode
from src.copytrade.notifier import RECOMMENDATION, TRADE
from src.copytrade.router import ApprovedTrade, ExecutionRouter
from src.exchanges.base import (
    ExchangeError,
    ExchangeTimeoutError,
    FillResult,
    NoLiquidityError,
)


@pytest.fixture
def notifier():
    mock = MagicMock()
    mock.notify = AsyncMock()
    return mock


@pytest.fixture
def adapter():
    mock = MagicMock()
    mock.place_fok_order = AsyncMock(return_value=FillResult(
        success=True,
        filled_shares=Decimal("19.5"),
        fill_price=Decimal("0.51"),
        order_ref="order-1",
    ))
    return mock


def approved(event, amount="10", shares="20", price="0.5"):
    return ApprovedTrade(event=event, amount=Decimal(amount), shares=Decimal(shares), price=Decimal(price))


class TestRecommend:
    """Tests for recommend mode."""

    @pytest.mark.asyncio
    async def test_notifies_without_ledger_effect(self, ledger, notifier, make_trade):
        router = ExecutionRouter(ledger, notifier=notifier)

        result = await router.execute("alice", SubscriptionMode.RECOMMEND, approved(make_trade()))

        assert result.success
        assert result.data["order_ref"] is None
        notifier.notify.assert_awaited_once()
        assert notifier.notify.call_args.args[1] == RECOMMENDATION
        assert ledger.get_account("alice") is None


class TestPaper:
    """Tests for paper mode."""

    @pytest.mark.asyncio
    async def test_buy_applies_to_ledger(self, ledger, notifier, make_trade):
        ledger.open_account("alice", 1000)
        router = ExecutionRouter(ledger, notifier=notifier)

        result = await router.execute("alice", SubscriptionMode.PAPER, approved(make_trade()))

        assert result.success
        assert result.data["shares"] == Decimal("20")
        assert ledger.get_account("alice").cash == Decimal("990.0")
        assert notifier.notify.call_args.args[1] == TRADE

    @pytest.mark.asyncio
    async def test_sell_reports_actual_shares(self, ledger, notifier, make_trade):
        ledger.open_account("alice", 1000)
        ledger.apply_buy("alice", "token-yes", 5, "0.5")
        router = ExecutionRouter(ledger, notifier=notifier)

        result = await router.execute("alice", "paper", approved(make_trade(side=Side.SELL)))

        assert result.success
        assert result.data["shares"] == Decimal("5")

    @pytest.mark.asyncio
    async def test_insufficient_funds(self, ledger, notifier, make_trade):
        ledger.open_account("alice", 5)
        router = ExecutionRouter(ledger, notifier=notifier)

        result = await router.execute("alice", SubscriptionMode.PAPER, approved(make_trade()))

        assert result.error == ErrorKind.INSUFFICIENT_FUNDS
        notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_notifier_failure_does_not_fail_trade(self, ledger, make_trade):
        ledger.open_account("alice", 1000)
        notifier = MagicMock()
        notifier.notify = AsyncMock(side_effect=RuntimeError("chat down"))
        router = ExecutionRouter(ledger, notifier=notifier)

        result = await router.execute("alice", SubscriptionMode.PAPER, approved(make_trade()))

        assert result.success


class TestAuto:
    """Tests for auto mode."""

    @pytest.mark.asyncio
    async def test_fill_mirrored_to_real_ledger(self, ledger, adapter, notifier, make_trade):
        ledger.sync_cash("alice", 100, REAL)
        router = ExecutionRouter(ledger, adapter=adapter, notifier=notifier)

        result = await router.execute("alice", SubscriptionMode.AUTO, approved(make_trade()))

        assert result.success
        assert result.data["shares"] == Decimal("19.5")
        assert result.data["price"] == Decimal("0.51")
        assert result.data["order_ref"] == "order-1"
        adapter.place_fok_order.assert_awaited_once_with(
            "alice", "token-yes", Side.BUY, Decimal("10"), Decimal("0.5")
        )
        assert ledger.held_shares("alice", "token-yes", REAL) == Decimal("19.5")
        assert ledger.get_account("alice", PAPER) is None
        assert result.data["ledger_synced"] is True
        assert router.ledger_sync_failures == 0

    @pytest.mark.asyncio
    async def test_mirror_failure_reported(self, ledger, adapter, notifier, make_trade):
        router = ExecutionRouter(ledger, adapter=adapter, notifier=notifier)

        result = await router.execute("alice", SubscriptionMode.AUTO, approved(make_trade()))

        assert result.success
        assert result.data["ledger_synced"] is False
        assert router.ledger_sync_failures == 1
        assert ledger.get_position("alice", "token-yes", REAL) is None

    @pytest.mark.asyncio
    async def test_no_adapter(self, ledger, make_trade):
        router = ExecutionRouter(ledger)
        result = await router.execute("alice", SubscriptionMode.AUTO, approved(make_trade()))

        assert result.error == ErrorKind.ADAPTER_FAILURE

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,kind", [
        (NoLiquidityError("no match"), ErrorKind.NO_LIQUIDITY),
        (ExchangeTimeoutError("slow"), ErrorKind.TIMEOUT),
        (ExchangeError("boom"), ErrorKind.ADAPTER_FAILURE),
    ])
    async def test_error_mapping(self, ledger, adapter, notifier, make_trade, error, kind):
        adapter.place_fok_order.side_effect = error
        router = ExecutionRouter(ledger, adapter=adapter, notifier=notifier)

        result = await router.execute("alice", SubscriptionMode.AUTO, approved(make_trade()))

        assert result.error == kind
        assert ledger.get_account("alice", REAL) is None
        notifier.notify.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_router_timeout(self, ledger, adapter, make_trade):
        async def hang(*args):
            await asyncio.sleep(10)

        adapter.place_fok_order.side_effect = hang
        router = ExecutionRouter(ledger, adapter=adapter, timeout=0.01)

        result = await router.execute("alice", SubscriptionMode.AUTO, approved(make_trade()))

        assert result.error == ErrorKind.TIMEOUT
        assert result.error.retryable

    @pytest.mark.asyncio
    async def test_unfilled_result(self, ledger, adapter, make_trade):
        adapter.place_fok_order.return_value = FillResult(success=False, error="rejected")
        router = ExecutionRouter(ledger, adapter=adapter)

        result = await router.execute("alice", SubscriptionMode.AUTO, approved(make_trade()))

        assert result.error == ErrorKind.ADAPTER_FAILURE
        assert "rejected" in result.message
