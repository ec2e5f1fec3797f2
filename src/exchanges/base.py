"""
Abstract execution adapter interface for real-money replication.

This module defines the order side, the fill result returned by an adapter,
the exchange exception hierarchy and the abstract adapter every concrete
exchange integration must implement. Adapters only place orders; sizing,
risk checks and ledger accounting live in the copy-trading core.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional


class OrderSide(Enum):
    """Order side enumeration."""

    BUY = "BUY"
    SELL = "SELL"

    def __str__(self) -> str:
        return self.value


@dataclass
class FillResult:
    """
    Outcome of a fill-or-kill order.

    Attributes:
        success: True if the order filled completely.
        filled_shares: Shares actually bought or sold.
        fill_price: Average price per share of the fill.
        order_ref: Exchange order identifier.
        error: Error message returned by the exchange (if any).
        raw: Raw exchange response data.
    """

    success: bool
    filled_shares: Decimal = Decimal("0")
    fill_price: Decimal = Decimal("0")
    order_ref: Optional[str] = None
    error: Optional[str] = None
    raw: dict[str, Any] = field(default_factory=dict)

    @property
    def notional(self) -> Decimal:
        """Dollar value of the fill."""
        return self.filled_shares * self.fill_price

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "filled_shares": str(self.filled_shares),
            "fill_price": str(self.fill_price),
            "order_ref": self.order_ref,
            "error": self.error,
        }


class ExchangeError(Exception):
    """Base exception for exchange-related errors."""

    pass


class AuthenticationError(ExchangeError):
    """Raised when no authenticated client exists for an owner."""

    pass


class OrderError(ExchangeError):
    """Raised when the exchange rejects or fails an order."""

    pass


class NoLiquidityError(OrderError):
    """Raised when a fill-or-kill order finds nothing to match against."""

    pass


class ExchangeTimeoutError(ExchangeError):
    """Raised when the exchange does not answer in time."""

    pass


class ExecutionAdapter(ABC):
    """
    Abstract base class for real-order execution.

    Implementations place fill-or-kill market orders on behalf of an owner
    and report the actual fill. They must never leave resting orders behind.
    """

    def __init__(self) -> None:
        self._name = "base"

    @property
    def name(self) -> str:
        """Adapter name identifier."""
        return self._name

    @abstractmethod
    async def place_fok_order(
        self,
        owner_id: str,
        token_id: str,
        side: OrderSide,
        amount: Decimal,
        price: Decimal,
    ) -> FillResult:
        """
        Place a fill-or-kill market order.

        Args:
            owner_id: Subscriber whose account trades.
            token_id: Outcome token to trade.
            side: Buy or sell.
            amount: Dollars to spend for BUY, shares to sell for SELL.
            price: Reference price used when the exchange omits fill details.

        Returns:
            FillResult with the actual filled shares and price.

        Raises:
            NoLiquidityError: If the order could not be matched.
            ExchangeTimeoutError: If the exchange did not answer in time.
            OrderError: If the order failed for any other reason.
        """
        pass

    @abstractmethod
    async def get_balance(self, owner_id: str) -> Decimal:
        """
        Fetch the owner's available collateral (USD).

        Raises:
            ExchangeError: If the balance cannot be read.
        """
        pass

    @abstractmethod
    async def get_position(self, owner_id: str, token_id: str) -> Decimal:
        """
        Fetch how many shares of an outcome token the owner holds.

        Raises:
            ExchangeError: If the position cannot be read.
        """
        pass

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name}>"
