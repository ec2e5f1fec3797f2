"""
Sizing Engine: how much of a source trade one subscriber replicates.

BUY sizing (USD):
    balance-based (auto): min(source value, max_trade_size) when a cap is set,
        else min(source value, balance * copy% / 100)
    proportional (paper, recommend): source value * copy% / 100, capped by
        max_trade_size when set
    then clamped to available cash and rejected below the $1 order minimum.

SELL sizing (shares):
    source shares * copy% / 100, never more than the subscriber holds.
    There is no minimum on sells so positions can always be exited.
"""
import logging
from decimal import ROUND_DOWN, Decimal
from typing import Optional

from ..config import MIN_ORDER_SIZE
from .models import ZERO, ErrorKind, Result, RiskConfig, Side, TradeEvent, to_decimal

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")

# Share quantities are kept to 6 decimals, like on-chain outcome tokens
SHARE_QUANTUM = Decimal("0.000001")


def shares_for(amount: Decimal, price: Decimal) -> Decimal:
    """Shares that `amount` buys at `price`, rounded down so the cost never exceeds `amount`."""
    return (amount / price).quantize(SHARE_QUANTUM, rounding=ROUND_DOWN)


def _usd(value: Decimal) -> str:
    """Dollar amount without trailing zeros (1.0 -> "1", 2.50 -> "2.5")."""
    text = f"{value:f}"
    return text.rstrip("0").rstrip(".") if "." in text else text


class SizingEngine:
    """Computes candidate replica sizes from a source trade and risk settings."""

    def __init__(self, min_order_size: float = MIN_ORDER_SIZE):
        self.min_order_size = to_decimal(min_order_size)

    def size(
        self,
        event: TradeEvent,
        config: RiskConfig,
        balance: Optional[Decimal],
        held_shares: Optional[Decimal] = ZERO,
        proportional: bool = False,
    ) -> Result:
        """
        Size a replica.

        Args:
            event: Source trade.
            config: Subscriber risk settings.
            balance: Subscriber cash, or None when no ledger backs the replica.
            held_shares: Shares of event.asset_id the subscriber holds (SELL),
                or None when holdings are not tracked (recommendations).
            proportional: Scale the source trade instead of the balance.

        Returns:
            Result whose data holds `amount` (USD) and `shares`.
        """
        if event.side == Side.SELL:
            return self._size_sell(event, config, held_shares)
        return self._size_buy(event, config, balance, proportional)

    def _size_buy(
        self,
        event: TradeEvent,
        config: RiskConfig,
        balance: Optional[Decimal],
        proportional: bool,
    ) -> Result:
        source_value = event.value
        pct = config.copy_percentage / HUNDRED

        if proportional or balance is None:
            candidate = source_value * pct
            if config.max_trade_size is not None:
                candidate = min(candidate, config.max_trade_size)
        elif config.max_trade_size is not None:
            # Copy small trades 1:1, cap large ones
            candidate = min(source_value, config.max_trade_size)
        else:
            candidate = min(source_value, balance * pct)

        if balance is not None:
            candidate = min(candidate, balance)

        if candidate < self.min_order_size:
            return Result.fail(
                ErrorKind.TOO_SMALL,
                f"Copy size too small (min ${_usd(self.min_order_size)})",
                amount=candidate,
            )

        return Result.ok(
            f"BUY ${candidate:.2f}",
            amount=candidate,
            shares=shares_for(candidate, event.price),
        )

    def _size_sell(self, event: TradeEvent, config: RiskConfig, held_shares: Optional[Decimal]) -> Result:
        if held_shares is not None and held_shares <= 0:
            return Result.fail(ErrorKind.NO_POSITION, "No position to sell")

        candidate = event.shares * config.copy_percentage / HUNDRED
        shares = candidate if held_shares is None else min(candidate, held_shares)
        if shares < candidate:
            logger.debug(f"SELL capped at held shares: {candidate} -> {shares}")

        return Result.ok(
            f"SELL {shares} shares",
            shares=shares,
            amount=shares * event.price,
        )
