"""
Polymarket CLOB execution adapter.

Places fill-or-kill market orders through py-clob-client on behalf of
subscribers. One authenticated ClobClient is registered per owner.

Safety Features:
- FOK only: an order fills completely or not at all
- Timeout on every exchange call (no automatic retries for orders)
- Slippage warning logging (>1%)
"""
import asyncio
import logging
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from ..config import (
    CHAIN_ID,
    CLOB_BASE_URL,
    EXECUTION_TIMEOUT,
    POLYMARKET_FUNDER,
    POLYMARKET_PRIVATE_KEY,
)
from .base import (
    AuthenticationError,
    ExchangeError,
    ExchangeTimeoutError,
    ExecutionAdapter,
    FillResult,
    NoLiquidityError,
    OrderError,
    OrderSide,
)

logger = logging.getLogger(__name__)

# Collateral (USDC) uses 6 decimals on-chain
USDC_DECIMALS = Decimal("1000000")

# Slippage threshold for warnings
SLIPPAGE_WARNING_THRESHOLD = Decimal("0.01")

# Exchange messages that mean "nothing to match", not a hard failure
LIQUIDITY_ERROR_MARKERS = ("no liquidity", "no match", "fully filled")


def _to_decimal(value: Any) -> Optional[Decimal]:
    """Parse an exchange amount, returning None when absent or malformed."""
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def is_liquidity_error(message: str) -> bool:
    """Check whether an exchange error message describes a missing match."""
    lowered = message.lower()
    return any(marker in lowered for marker in LIQUIDITY_ERROR_MARKERS)


def _check_slippage(expected_price: Decimal, filled_price: Decimal, side: OrderSide) -> None:
    """Log a warning when the fill deviates from the reference price by more than 1%."""
    if expected_price <= 0 or filled_price <= 0:
        return

    slippage = abs(filled_price - expected_price) / expected_price
    if slippage > SLIPPAGE_WARNING_THRESHOLD:
        if side == OrderSide.BUY:
            adverse = filled_price > expected_price
        else:
            adverse = filled_price < expected_price

        direction = "adverse" if adverse else "favorable"
        logger.warning(
            f"High slippage detected ({direction}): {slippage:.2%} "
            f"(expected={expected_price:.4f}, filled={filled_price:.4f}, side={side})"
        )


def parse_fill(response: dict, side: OrderSide, amount: Decimal, price: Decimal) -> FillResult:
    """
    Convert a CLOB post_order response into a FillResult.

    For BUY orders makingAmount is the USDC spent and takingAmount the shares
    received; SELL orders are the other way round. When the response omits
    the amounts, the requested amount at the reference price is assumed.
    """
    order_ref = response.get("orderID") or response.get("id")
    making = _to_decimal(response.get("makingAmount"))
    taking = _to_decimal(response.get("takingAmount"))

    if side == OrderSide.BUY:
        usd, shares = making, taking
        if shares is None or shares <= 0:
            shares = amount / price if price > 0 else Decimal("0")
            usd = amount
    else:
        shares, usd = making, taking
        if shares is None or shares <= 0:
            shares = amount
            usd = amount * price

    if usd is None or shares <= 0:
        fill_price = price
    else:
        fill_price = usd / shares

    return FillResult(
        success=True,
        filled_shares=shares,
        fill_price=fill_price,
        order_ref=order_ref,
        raw=response,
    )


class PolymarketAdapter(ExecutionAdapter):
    """
    Real-order execution against the Polymarket CLOB.

    Example:
        adapter = PolymarketAdapter()
        adapter.register_client("alice", clob_client)
        fill = await adapter.place_fok_order(
            "alice", token_id, OrderSide.BUY, Decimal("10"), Decimal("0.55")
        )
    """

    def __init__(self, clients: Optional[dict[str, Any]] = None, timeout: float = EXECUTION_TIMEOUT):
        """
        Initialize the adapter.

        Args:
            clients: Authenticated py-clob-client instances keyed by owner id.
            timeout: Seconds to wait for any exchange call.
        """
        super().__init__()
        self._name = "polymarket"
        self._clients: dict[str, Any] = dict(clients or {})
        self.timeout = timeout

    def register_client(self, owner_id: str, client: Any) -> None:
        """Attach an authenticated ClobClient for an owner."""
        self._clients[owner_id] = client
        logger.info(f"Registered CLOB client for {owner_id}")

    def has_client(self, owner_id: str) -> bool:
        return owner_id in self._clients

    def _client_for(self, owner_id: str) -> Any:
        client = self._clients.get(owner_id)
        if client is None:
            raise AuthenticationError(f"No trading client registered for {owner_id}")
        return client

    async def _call(self, func, *args, operation_name: str = "CLOB call"):
        """Run a blocking client call in a thread with a timeout."""
        try:
            return await asyncio.wait_for(asyncio.to_thread(func, *args), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ExchangeTimeoutError(f"{operation_name} timed out after {self.timeout}s")

    async def place_fok_order(
        self,
        owner_id: str,
        token_id: str,
        side: OrderSide,
        amount: Decimal,
        price: Decimal,
    ) -> FillResult:
        client = self._client_for(owner_id)

        from py_clob_client.clob_types import MarketOrderArgs, OrderType
        from py_clob_client.order_builder.constants import BUY, SELL

        order_args = MarketOrderArgs(
            token_id=token_id,
            amount=float(amount),
            side=BUY if side == OrderSide.BUY else SELL,
        )

        try:
            signed = await self._call(client.create_market_order, order_args, operation_name="create_market_order")
            response = await self._call(client.post_order, signed, OrderType.FOK, operation_name="post_order")
        except ExchangeError:
            raise
        except Exception as e:
            message = str(e)
            if is_liquidity_error(message):
                raise NoLiquidityError(message) from e
            raise OrderError(message) from e

        if not response or not response.get("success", True):
            message = (response or {}).get("errorMsg") or "Order returned empty response"
            if is_liquidity_error(message):
                raise NoLiquidityError(message)
            raise OrderError(message)

        fill = parse_fill(response, side, amount, price)
        _check_slippage(price, fill.fill_price, side)

        logger.info(
            f"FOK {side} filled for {owner_id}: {fill.filled_shares} shares "
            f"@ {fill.fill_price:.4f} (order {fill.order_ref})"
        )
        return fill

    async def _balance_allowance(self, owner_id: str, params: Any, label: str) -> Decimal:
        """Read a balance through get_balance_allowance, scaled from 6 decimals."""
        client = self._client_for(owner_id)
        try:
            response = await self._call(
                client.get_balance_allowance,
                params,
                operation_name="get_balance_allowance",
            )
        except ExchangeError:
            raise
        except Exception as e:
            raise ExchangeError(f"{label} lookup failed: {e}") from e

        raw_balance = _to_decimal((response or {}).get("balance"))
        if raw_balance is None:
            raise ExchangeError(f"{label} missing from response: {response}")
        return raw_balance / USDC_DECIMALS

    async def get_balance(self, owner_id: str) -> Decimal:
        from py_clob_client.clob_types import AssetType, BalanceAllowanceParams

        return await self._balance_allowance(
            owner_id,
            BalanceAllowanceParams(asset_type=AssetType.COLLATERAL),
            "Balance",
        )

    async def get_position(self, owner_id: str, token_id: str) -> Decimal:
        from py_clob_client.clob_types import AssetType, BalanceAllowanceParams

        # Outcome tokens use the same 6 decimals as collateral
        return await self._balance_allowance(
            owner_id,
            BalanceAllowanceParams(asset_type=AssetType.CONDITIONAL, token_id=token_id),
            "Position",
        )


def create_clob_client(private_key: str = POLYMARKET_PRIVATE_KEY, funder: str = POLYMARKET_FUNDER) -> Optional[Any]:
    """
    Build an L2-authenticated ClobClient from credentials.

    Returns:
        ClobClient instance or None if credentials are not configured.
    """
    if not private_key or not funder:
        return None

    from py_clob_client.client import ClobClient

    key = private_key if private_key.startswith("0x") else "0x" + private_key

    # signature_type=2 is GNOSIS_SAFE (proxy wallet holds the funds)
    client = ClobClient(
        CLOB_BASE_URL,
        key=key,
        chain_id=CHAIN_ID,
        funder=funder,
        signature_type=2,
    )
    client.set_api_creds(client.create_or_derive_api_creds())
    return client
