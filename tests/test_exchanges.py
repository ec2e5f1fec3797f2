"""
Tests for the execution adapter layer.

Tests cover:
- FillResult and exception hierarchy
- parse_fill amount conventions for BUY and SELL
- PolymarketAdapter error mapping, timeouts, balance and position lookups
"""

import time
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest

from src.exchanges.base import (
    AuthenticationError,
    ExchangeError,
    ExchangeTimeoutError,
    FillResult,
    NoLiquidityError,
    OrderError,
    OrderSide,
)
from src.exchanges.polymarket import PolymarketAdapter, is_liquidity_error, parse_fill


class TestOrderSide:
    """Tests for OrderSide enum."""

    def test_values(self):
        assert OrderSide.BUY.value == "BUY"
        assert OrderSide.SELL.value == "SELL"
        assert str(OrderSide.BUY) == "BUY"


class TestFillResult:
    """Tests for FillResult dataclass."""

    def test_notional(self):
        fill = FillResult(success=True, filled_shares=Decimal("20"), fill_price=Decimal("0.5"))
        assert fill.notional == Decimal("10.0")

    def test_to_dict(self):
        fill = FillResult(success=True, filled_shares=Decimal("20"), fill_price=Decimal("0.5"), order_ref="x")
        data = fill.to_dict()

        assert data["filled_shares"] == "20"
        assert data["order_ref"] == "x"


class TestExceptions:
    """Tests for exchange exception hierarchy."""

    def test_hierarchy(self):
        assert issubclass(AuthenticationError, ExchangeError)
        assert issubclass(OrderError, ExchangeError)
        assert issubclass(NoLiquidityError, OrderError)
        assert issubclass(ExchangeTimeoutError, ExchangeError)


class TestParseFill:
    """Tests for CLOB response parsing."""

    def test_buy_amounts(self):
        response = {"success": True, "orderID": "abc", "makingAmount": "10", "takingAmount": "19.6078"}
        fill = parse_fill(response, OrderSide.BUY, Decimal("10"), Decimal("0.5"))

        assert fill.success
        assert fill.order_ref == "abc"
        assert fill.filled_shares == Decimal("19.6078")
        assert fill.fill_price == Decimal("10") / Decimal("19.6078")

    def test_sell_amounts(self):
        response = {"success": True, "orderID": "abc", "makingAmount": "20", "takingAmount": "9.8"}
        fill = parse_fill(response, OrderSide.SELL, Decimal("20"), Decimal("0.5"))

        assert fill.filled_shares == Decimal("20")
        assert fill.fill_price == Decimal("0.49")

    def test_missing_amounts_fall_back_to_request(self):
        fill = parse_fill({"success": True}, OrderSide.BUY, Decimal("10"), Decimal("0.5"))

        assert fill.filled_shares == Decimal("20")
        assert fill.fill_price == Decimal("0.5")

    def test_liquidity_markers(self):
        assert is_liquidity_error("No orders found to MATCH... no match")
        assert is_liquidity_error("order couldn't be fully filled")
        assert not is_liquidity_error("invalid signature")


@pytest.fixture
def clob_client():
    client = MagicMock()
    client.create_market_order.return_value = "signed-order"
    client.post_order.return_value = {
        "success": True,
        "orderID": "order-1",
        "makingAmount": "10",
        "takingAmount": "20",
    }
    client.get_balance_allowance.return_value = {"balance": "25500000"}
    return client


@pytest.fixture
def adapter(clob_client):
    return PolymarketAdapter(clients={"alice": clob_client}, timeout=1.0)


class TestPolymarketAdapter:
    """Tests for PolymarketAdapter with a mocked ClobClient."""

    def test_name_and_clients(self, adapter):
        assert adapter.name == "polymarket"
        assert adapter.has_client("alice")
        assert not adapter.has_client("bob")

    @pytest.mark.asyncio
    async def test_fok_buy(self, adapter, clob_client):
        fill = await adapter.place_fok_order("alice", "token", OrderSide.BUY, Decimal("10"), Decimal("0.5"))

        assert fill.success
        assert fill.filled_shares == Decimal("20")
        assert fill.fill_price == Decimal("0.5")
        assert fill.order_ref == "order-1"

        order_args = clob_client.create_market_order.call_args.args[0]
        assert order_args.token_id == "token"
        assert order_args.amount == 10.0
        assert clob_client.post_order.call_args.args[0] == "signed-order"

    @pytest.mark.asyncio
    async def test_unknown_owner(self, adapter):
        with pytest.raises(AuthenticationError):
            await adapter.place_fok_order("bob", "token", OrderSide.BUY, Decimal("10"), Decimal("0.5"))

    @pytest.mark.asyncio
    async def test_no_liquidity_exception(self, adapter, clob_client):
        clob_client.post_order.side_effect = Exception("order couldn't be fully filled")

        with pytest.raises(NoLiquidityError):
            await adapter.place_fok_order("alice", "token", OrderSide.BUY, Decimal("10"), Decimal("0.5"))

    @pytest.mark.asyncio
    async def test_rejected_response(self, adapter, clob_client):
        clob_client.post_order.return_value = {"success": False, "errorMsg": "not enough balance"}

        with pytest.raises(OrderError) as exc_info:
            await adapter.place_fok_order("alice", "token", OrderSide.BUY, Decimal("10"), Decimal("0.5"))
        assert not isinstance(exc_info.value, NoLiquidityError)

    @pytest.mark.asyncio
    async def test_timeout(self, clob_client):
        clob_client.post_order.side_effect = lambda *args: time.sleep(0.5)
        adapter = PolymarketAdapter(clients={"alice": clob_client}, timeout=0.05)

        with pytest.raises(ExchangeTimeoutError):
            await adapter.place_fok_order("alice", "token", OrderSide.BUY, Decimal("10"), Decimal("0.5"))

    @pytest.mark.asyncio
    async def test_balance(self, adapter):
        balance = await adapter.get_balance("alice")
        assert balance == Decimal("25.5")

    @pytest.mark.asyncio
    async def test_balance_failure(self, adapter, clob_client):
        clob_client.get_balance_allowance.side_effect = Exception("401")

        with pytest.raises(ExchangeError):
            await adapter.get_balance("alice")

    @pytest.mark.asyncio
    async def test_position(self, adapter, clob_client):
        clob_client.get_balance_allowance.return_value = {"balance": "75000000"}

        shares = await adapter.get_position("alice", "token-yes")

        assert shares == Decimal("75")
        params = clob_client.get_balance_allowance.call_args.args[0]
        assert params.token_id == "token-yes"
        assert str(params.asset_type).upper().endswith("CONDITIONAL")

    @pytest.mark.asyncio
    async def test_position_missing_balance(self, adapter, clob_client):
        clob_client.get_balance_allowance.return_value = {}

        with pytest.raises(ExchangeError, match="Position missing"):
            await adapter.get_position("alice", "token-yes")

    def test_create_client_without_credentials(self):
        from src.exchanges.polymarket import create_clob_client

        assert create_clob_client(private_key="", funder="") is None

    def test_create_client_derives_api_creds(self):
        from src.exchanges.polymarket import create_clob_client

        with patch("py_clob_client.client.ClobClient") as client_cls:
            client = create_clob_client(private_key="abc", funder="0xfunder")

        assert client is client_cls.return_value
        assert client_cls.call_args.kwargs["key"] == "0xabc"
        assert client_cls.call_args.kwargs["signature_type"] == 2
        client.set_api_creds.assert_called_once()
