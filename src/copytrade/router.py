"""
Execution Router: sends an approved replica to the right place.

- recommend: notification only, no ledger effect
- paper: Virtual Ledger
- auto: ExecutionAdapter fill-or-kill order; the actual fill is mirrored into
  the subscriber's real-shadow ledger

Adapter errors are mapped onto the Result contract here and nowhere else.
Orders are never retried: a retry would be a new decision at a new price.
"""
import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from ..config import EXECUTION_TIMEOUT
from ..exchanges.base import ExchangeError, ExchangeTimeoutError, ExecutionAdapter, NoLiquidityError
from .ledger import PAPER, REAL, VirtualLedger
from .models import ErrorKind, Result, Side, SubscriptionMode, TradeEvent
from .notifier import RECOMMENDATION, TRADE, LoggingNotifier, Notifier

logger = logging.getLogger(__name__)


@dataclass
class ApprovedTrade:
    """
    A replica that passed sizing and the risk gate.

    Attributes:
        event: Source trade being replicated.
        amount: USD to spend (BUY) or shares to sell (SELL).
        shares: Shares to buy or sell at `price`.
        price: Execution reference price.
        end_date: Market end time, when already known.
    """

    event: TradeEvent
    amount: Decimal
    shares: Decimal
    price: Decimal
    end_date: Optional[float] = None

    @property
    def side(self) -> Side:
        return self.event.side

    def to_payload(self) -> dict[str, Any]:
        return {
            "side": str(self.side),
            "title": self.event.title,
            "outcome": self.event.outcome,
            "shares": str(self.shares),
            "price": str(self.price),
            "amount_usd": str(self.shares * self.price),
            "source_account": self.event.source_account,
        }


class ExecutionRouter:
    """Uniform execute() over recommend, paper and auto modes."""

    def __init__(
        self,
        ledger: VirtualLedger,
        adapter: Optional[ExecutionAdapter] = None,
        notifier: Optional[Notifier] = None,
        timeout: float = EXECUTION_TIMEOUT,
    ):
        self.ledger = ledger
        self.adapter = adapter
        self.notifier = notifier or LoggingNotifier()
        self.timeout = timeout
        self.ledger_sync_failures = 0

    async def execute(self, subscriber_id: str, mode: SubscriptionMode, trade: ApprovedTrade) -> Result:
        """
        Execute an approved replica.

        Returns:
            Result with data shares, price and order_ref describing what
            actually happened. Auto fills also carry ledger_synced, False
            when the shadow ledger could not mirror the fill.
        """
        mode = SubscriptionMode(mode)
        if mode == SubscriptionMode.RECOMMEND:
            result = await self._recommend(subscriber_id, trade)
        elif mode == SubscriptionMode.PAPER:
            result = self._execute_paper(subscriber_id, trade)
        else:
            result = await self._execute_live(subscriber_id, trade)

        if result.success and mode != SubscriptionMode.RECOMMEND:
            await self._notify(subscriber_id, TRADE, {**trade.to_payload(), "mode": mode.value, **result.to_dict()["data"]})
        return result

    async def _recommend(self, subscriber_id: str, trade: ApprovedTrade) -> Result:
        await self._notify(subscriber_id, RECOMMENDATION, trade.to_payload())
        return Result.ok("Recommendation sent", shares=trade.shares, price=trade.price, order_ref=None)

    def _execute_paper(self, subscriber_id: str, trade: ApprovedTrade) -> Result:
        event = trade.event
        if trade.side == Side.BUY:
            result = self.ledger.apply_buy(
                subscriber_id,
                event.asset_id,
                trade.shares,
                trade.price,
                kind=PAPER,
                condition_id=event.condition_id,
                title=event.title,
                outcome=event.outcome,
                source_account=event.source_account,
                end_date=trade.end_date,
            )
            if not result.success:
                return result
            return Result.ok("Paper buy executed", shares=result.data["shares"], price=trade.price, order_ref=None)

        result = self.ledger.apply_sell(subscriber_id, event.asset_id, trade.shares, trade.price, kind=PAPER)
        if not result.success:
            return result
        return Result.ok("Paper sell executed", shares=result.data["sold_shares"], price=trade.price, order_ref=None)

    async def _execute_live(self, subscriber_id: str, trade: ApprovedTrade) -> Result:
        if self.adapter is None:
            return Result.fail(ErrorKind.ADAPTER_FAILURE, "No execution adapter configured")

        event = trade.event
        try:
            fill = await asyncio.wait_for(
                self.adapter.place_fok_order(subscriber_id, event.asset_id, trade.side, trade.amount, trade.price),
                timeout=self.timeout,
            )
        except NoLiquidityError as e:
            logger.info(f"No liquidity for {subscriber_id} on {event.title}: {e}")
            return Result.fail(ErrorKind.NO_LIQUIDITY, "No liquidity")
        except (ExchangeTimeoutError, asyncio.TimeoutError) as e:
            logger.error(f"Order timed out for {subscriber_id} on {event.title} after {self.timeout}s: {e!r}")
            return Result.fail(ErrorKind.TIMEOUT, f"Order timed out after {self.timeout}s")
        except ExchangeError as e:
            logger.error(f"Order failed for {subscriber_id} on {event.title}: {e}")
            return Result.fail(ErrorKind.ADAPTER_FAILURE, f"Order failed: {e}")

        if not fill.success or fill.filled_shares <= 0:
            message = fill.error or "Order was not filled"
            return Result.fail(ErrorKind.ADAPTER_FAILURE, f"Order failed: {message}")

        synced = self._mirror_fill(subscriber_id, trade, fill.filled_shares, fill.fill_price)
        return Result.ok(
            "Order filled",
            shares=fill.filled_shares,
            price=fill.fill_price,
            order_ref=fill.order_ref,
            ledger_synced=synced,
        )

    def _mirror_fill(self, subscriber_id: str, trade: ApprovedTrade, shares: Decimal, price: Decimal) -> bool:
        """Record a real fill in the shadow ledger. The order itself already happened."""
        event = trade.event
        if trade.side == Side.BUY:
            result = self.ledger.apply_buy(
                subscriber_id,
                event.asset_id,
                shares,
                price,
                kind=REAL,
                condition_id=event.condition_id,
                title=event.title,
                outcome=event.outcome,
                source_account=event.source_account,
                end_date=trade.end_date,
            )
        else:
            result = self.ledger.apply_sell(subscriber_id, event.asset_id, shares, price, kind=REAL)

        if not result.success:
            self.ledger_sync_failures += 1
            logger.warning(f"Shadow ledger out of sync for {subscriber_id}: {result.message}")
        return result.success

    async def _notify(self, subscriber_id: str, kind: str, payload: dict[str, Any]) -> None:
        try:
            await self.notifier.notify(subscriber_id, kind, payload)
        except Exception as e:
            logger.warning(f"Notification to {subscriber_id} failed: {e}")
