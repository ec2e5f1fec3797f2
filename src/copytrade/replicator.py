"""
Replicator: fans one source trade out to every subscriber.

Per subscriber, under that subscriber's lock:
1. Claim a pending ReplicaRecord (unique per subscriber + trade)
2. Pre-check (enabled flag, ignore list)
3. Size the replica from balance / holdings
4. Apply daily and per-market caps
5. Check the live price against the slippage band
6. Route to recommend / paper / auto execution
7. Finalize the record as executed, skipped or failed

Subscribers are processed concurrently; one subscriber's failure never
blocks or rolls back another's.
"""

import asyncio
import dataclasses
import logging
from decimal import Decimal
from typing import Any, Optional

from ..config import API_TIMEOUT, PENDING_WINDOW_SECONDS
from ..exchanges.base import ExchangeError, ExchangeTimeoutError, ExecutionAdapter
from .ledger import PAPER, REAL, VirtualLedger
from .locks import OwnerLocks
from .models import (
    CopyTradeError,
    ErrorKind,
    ReplicaRecord,
    ReplicaStatus,
    Result,
    Side,
    Subscription,
    SubscriptionMode,
    TradeEvent,
)
from .price_cache import PriceCache
from .registry import SubscriptionRegistry
from .replicas import ReplicaStore
from .risk_gate import RiskGate
from .router import ApprovedTrade, ExecutionRouter
from .sizing import SizingEngine, shares_for

logger = logging.getLogger(__name__)

INTERRUPTED = "Interrupted before completion"


class Replicator:
    """
    Orchestrates sizing, risk checks and execution for each subscriber.

    Attributes:
        price_source: Object with get_price(token_id, side) -> Decimal | None
            returning the executable price (ClobPublicClient in production).
        market_lookup: Object with get_market(condition_id) -> MarketInfo | None
            (GammaClient in production).
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        store: ReplicaStore,
        sizing: SizingEngine,
        gate: RiskGate,
        router: ExecutionRouter,
        ledger: VirtualLedger,
        prices: PriceCache,
        price_source: Any = None,
        market_lookup: Any = None,
        adapter: Optional[ExecutionAdapter] = None,
        locks: Optional[OwnerLocks] = None,
        lookup_timeout: float = API_TIMEOUT * 3,
        pending_window: float = PENDING_WINDOW_SECONDS,
    ):
        self.registry = registry
        self.store = store
        self.sizing = sizing
        self.gate = gate
        self.router = router
        self.ledger = ledger
        self.prices = prices
        self.price_source = price_source
        self.market_lookup = market_lookup
        self.adapter = adapter
        self.locks = locks or OwnerLocks()
        self.lookup_timeout = lookup_timeout
        self.pending_window = pending_window

    async def process(self, event: TradeEvent) -> dict[str, Result]:
        """
        Replicate one source trade for all of its followers.

        Returns:
            Result per subscriber id.

        Raises:
            CopyTradeError: If a ledger invariant broke for any subscriber
                (after every subscriber has been processed).
        """
        subscriptions = self.registry.subscribers_of(event.source_account)
        if not subscriptions:
            return {}

        end_date = None
        if not event.asset_id:
            event, end_date = await self._recover_asset(event)

        outcomes = await asyncio.gather(
            *(self.replicate(s, event, end_date) for s in subscriptions),
            return_exceptions=True,
        )

        results: dict[str, Result] = {}
        invariant_error: Optional[BaseException] = None
        for subscription, outcome in zip(subscriptions, outcomes):
            if isinstance(outcome, BaseException):
                logger.error(
                    f"Replication crashed for {subscription.subscriber_id}: {outcome}",
                    exc_info=outcome,
                )
                if isinstance(outcome, CopyTradeError):
                    invariant_error = outcome
                results[subscription.subscriber_id] = Result.fail(ErrorKind.ADAPTER_FAILURE, str(outcome))
            else:
                results[subscription.subscriber_id] = outcome

        executed = sum(1 for r in results.values() if r.success)
        logger.info(
            f"Trade {event.dedup_key[:16]}... {event.side} {event.title[:40]!r}: "
            f"{executed}/{len(results)} replicas executed"
        )

        if invariant_error is not None:
            raise invariant_error
        return results

    async def replicate(
        self,
        subscription: Subscription,
        event: TradeEvent,
        end_date: Optional[float] = None,
    ) -> Result:
        """Replicate one trade for one subscriber. Safe to call repeatedly."""
        subscriber_id = subscription.subscriber_id
        async with self.locks(subscriber_id):
            record, created = self.store.claim(ReplicaRecord(
                subscriber_id=subscriber_id,
                dedup_key=event.dedup_key,
                mode=subscription.mode.value,
                side=event.side.value,
                price=event.price,
                source_account=event.source_account,
                asset_id=event.asset_id or None,
                condition_id=event.condition_id,
                title=event.title,
                outcome=event.outcome,
            ))
            if not created:
                if record.status == ReplicaStatus.PENDING:
                    record = self.store.expire_pending(
                        record.id, self.store.now() - self.pending_window, INTERRUPTED
                    )
                logger.debug(f"Replica for {subscriber_id}/{event.dedup_key} already exists ({record.status})")
                return record.to_result()

            try:
                result = await self._decide_and_execute(subscription, event, record, end_date)
            except asyncio.CancelledError:
                self._finalize(record, Result.fail(ErrorKind.ADAPTER_FAILURE, INTERRUPTED))
                raise
            except CopyTradeError as e:
                self._finalize(record, Result.fail(ErrorKind.ADAPTER_FAILURE, f"Invariant violation: {e}"))
                raise
            except Exception as e:
                logger.error(f"Unexpected replication error for {subscriber_id}: {e}", exc_info=True)
                result = Result.fail(ErrorKind.ADAPTER_FAILURE, f"Unexpected error: {e}")

            self._finalize(record, result)
            return result

    async def _decide_and_execute(
        self,
        subscription: Subscription,
        event: TradeEvent,
        record: ReplicaRecord,
        end_date: Optional[float],
    ) -> Result:
        subscriber_id = subscription.subscriber_id
        mode = subscription.mode

        if not event.asset_id:
            return Result.fail(ErrorKind.MISSING_ASSET_REFERENCE, "Missing tokenId (asset) in trade data")

        config = self.registry.get_risk_config(subscriber_id)

        precheck = self.gate.precheck(subscriber_id, mode, event, config)
        if not precheck.success:
            return precheck

        # Balance and holdings for sizing
        if mode == SubscriptionMode.PAPER:
            account = self.ledger.get_account(subscriber_id, PAPER)
            if account is None or not account.active:
                return Result.fail(ErrorKind.NO_PORTFOLIO, "No active paper portfolio")
            balance: Optional[Decimal] = account.cash
            held: Optional[Decimal] = self.ledger.held_shares(subscriber_id, event.asset_id, PAPER)
        elif mode == SubscriptionMode.AUTO:
            balance_result = await self._real_balance(subscriber_id)
            if not balance_result.success:
                return balance_result
            balance = balance_result.data["balance"]
            held = None
            if event.side == Side.SELL:
                position_result = await self._real_position(subscriber_id, event)
                if not position_result.success:
                    return position_result
                held = position_result.data["shares"]
        else:
            balance, held = None, None

        sized = self.sizing.size(
            event,
            config,
            balance,
            held_shares=held,
            proportional=mode != SubscriptionMode.AUTO,
        )
        if not sized.success:
            return sized

        candidate = sized.data["amount"] if event.side == Side.BUY else sized.data["shares"]
        admitted = self.gate.check_caps(subscriber_id, mode, event, candidate, config, record_id=record.id)
        if not admitted.success:
            return admitted

        if event.side == Side.BUY:
            amount = admitted.data["amount"]
            shares = shares_for(amount, event.price)
        else:
            shares = admitted.data["amount"]
            amount = shares

        self.store.reserve(record.id, amount, event.price)

        live_price = await self._live_price(event.asset_id, event.side)
        price_check = self.gate.check_price(event, live_price)
        if not price_check.success:
            return price_check

        trade = ApprovedTrade(event=event, amount=amount, shares=shares, price=event.price, end_date=end_date)
        return await self.router.execute(subscriber_id, mode, trade)

    def _finalize(self, record: ReplicaRecord, result: Result) -> ReplicaRecord:
        if result.success:
            return self.store.finalize(
                record.id,
                ReplicaStatus.EXECUTED,
                shares=result.data.get("shares"),
                price=result.data.get("price"),
                order_ref=result.data.get("order_ref"),
            )

        status = result.error.terminal_status if result.error else ReplicaStatus.FAILED
        log = logger.warning if status == ReplicaStatus.FAILED else logger.info
        log(f"Replica {status} for {record.subscriber_id} on {record.title!r}: {result.message}")
        return self.store.finalize(
            record.id,
            status,
            error_kind=result.error,
            error_reason=result.message,
        )

    async def _real_balance(self, subscriber_id: str) -> Result:
        """Fetch the real balance and sync the shadow ledger's cash to it."""
        if self.adapter is None:
            return Result.fail(ErrorKind.ADAPTER_FAILURE, "No execution adapter configured")
        try:
            balance = await asyncio.wait_for(self.adapter.get_balance(subscriber_id), timeout=self.lookup_timeout)
        except (ExchangeTimeoutError, asyncio.TimeoutError):
            return Result.fail(ErrorKind.TIMEOUT, "Balance lookup timed out")
        except ExchangeError as e:
            return Result.fail(ErrorKind.ADAPTER_FAILURE, f"Balance lookup failed: {e}")

        self.ledger.sync_cash(subscriber_id, balance, REAL)
        return Result.ok(balance=balance)

    async def _real_position(self, subscriber_id: str, event: TradeEvent) -> Result:
        """Fetch the real holding of the traded token and sync the shadow position to it."""
        try:
            shares = await asyncio.wait_for(
                self.adapter.get_position(subscriber_id, event.asset_id),
                timeout=self.lookup_timeout,
            )
        except (ExchangeTimeoutError, asyncio.TimeoutError):
            return Result.fail(ErrorKind.TIMEOUT, "Position lookup timed out")
        except ExchangeError as e:
            return Result.fail(ErrorKind.ADAPTER_FAILURE, f"Position lookup failed: {e}")

        self.ledger.sync_shares(
            subscriber_id,
            event.asset_id,
            shares,
            event.price,
            REAL,
            condition_id=event.condition_id,
            title=event.title,
            outcome=event.outcome,
            source_account=event.source_account,
        )
        return Result.ok(shares=shares)

    async def _live_price(self, asset_id: str, side: Side) -> Optional[Decimal]:
        """Executable price for `side`, falling back to a fresh cached mark."""
        if self.price_source is not None:
            try:
                price = await asyncio.wait_for(
                    asyncio.to_thread(self.price_source.get_price, asset_id, side),
                    timeout=self.lookup_timeout,
                )
            except Exception as e:
                logger.warning(f"Live price lookup failed for {asset_id[:16]}...: {e}")
                price = None
            if price is not None:
                self.prices.update(asset_id, price)
                return Decimal(str(price))
        return self.prices.get(asset_id)

    async def _recover_asset(self, event: TradeEvent) -> tuple[TradeEvent, Optional[float]]:
        """One market lookup to find the token id for the traded outcome."""
        if self.market_lookup is None or not event.condition_id:
            return event, None

        try:
            market = await asyncio.wait_for(
                asyncio.to_thread(self.market_lookup.get_market, event.condition_id),
                timeout=self.lookup_timeout,
            )
        except Exception as e:
            logger.warning(f"Market lookup failed for {event.condition_id}: {e}")
            return event, None

        if market is None:
            return event, None

        token_id = market.token_for_outcome(event.outcome_index)
        if token_id is None:
            logger.warning(f"No token for outcome {event.outcome_index} in market {event.condition_id}")
            return event, market.end_date

        logger.info(f"Recovered token id for {event.title[:40]!r} from market data")
        return dataclasses.replace(event, asset_id=token_id), market.end_date

    def history(self, subscriber_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Most recent replica records of a subscriber, newest first."""
        return [r.to_dict() for r in self.store.history(subscriber_id, limit)]

    def daily_summary(self, subscriber_id: str, mode: SubscriptionMode = SubscriptionMode.AUTO) -> dict[str, Any]:
        config = self.registry.get_risk_config(subscriber_id)
        return self.gate.daily_summary(subscriber_id, mode, config)
