"""
Execution adapters for real-money replication.

This module provides:
- ExecutionAdapter: Abstract base class for order execution
- PolymarketAdapter: Fill-or-kill market orders on the Polymarket CLOB

Usage:
    from src.exchanges import PolymarketAdapter, OrderSide

    adapter = PolymarketAdapter()
    adapter.register_client("alice", clob_client)
    fill = await adapter.place_fok_order(
        "alice", token_id, OrderSide.BUY, Decimal("10"), Decimal("0.55")
    )
"""

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
from .polymarket import PolymarketAdapter, create_clob_client

__all__ = [
    # Base classes and types
    "ExecutionAdapter",
    "FillResult",
    "OrderSide",
    # Exceptions
    "ExchangeError",
    "AuthenticationError",
    "OrderError",
    "NoLiquidityError",
    "ExchangeTimeoutError",
    # Implementations
    "PolymarketAdapter",
    "create_clob_client",
]
