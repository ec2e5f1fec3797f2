"""
Risk Limit Gate for copy trading.

Checks, in order (the first failure short-circuits):
1. Copy trading enabled (auto mode only)
2. Market title not on the subscriber's ignore list
3. Daily cap: today's executed BUY value + candidate <= daily_limit
4. Per-market cap: executed + recent pending BUY value + candidate <=
   max_per_market; a candidate that only partially fits is shrunk
5. Price slippage against the live price, checked right before execution

Caps apply to BUY replicas and count only replicas of the same mode, so
paper activity never consumes a real-money budget.

Example:
    >>> gate = RiskGate(store, registry)
    >>> result = gate.admit("alice", SubscriptionMode.AUTO, event, Decimal("10"), config)
    >>> if result.success:
    ...     amount = result.data["amount"]
"""

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Optional

from ..config import (
    MIN_ORDER_SIZE,
    PENDING_WINDOW_SECONDS,
    SLIPPAGE_BUY_TOLERANCE,
    SLIPPAGE_SELL_TOLERANCE,
)
from .models import ErrorKind, Result, RiskConfig, Side, SubscriptionMode, TradeEvent, to_decimal
from .registry import SubscriptionRegistry
from .replicas import ReplicaStore

logger = logging.getLogger(__name__)


def _utc_day_start(now: float) -> float:
    """Unix time of 00:00 UTC on the day containing `now`."""
    day = datetime.fromtimestamp(now, tz=timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    return day.timestamp()


class RiskGate:
    """
    Approves, shrinks or rejects sized replicas.

    Attributes:
        store: Replica records used for cap totals.
        registry: Ignore-list lookups.
        config: Gate tunables (tolerances, pending window, minimum order).
    """

    def __init__(
        self,
        store: ReplicaStore,
        registry: SubscriptionRegistry,
        config: Optional[dict[str, Any]] = None,
        clock: Callable[[], float] = time.time,
    ):
        default_config = {
            "buy_tolerance": SLIPPAGE_BUY_TOLERANCE,
            "sell_tolerance": SLIPPAGE_SELL_TOLERANCE,
            "pending_window_seconds": PENDING_WINDOW_SECONDS,
            "min_order_size": MIN_ORDER_SIZE,
        }
        self.config = {**default_config, **(config or {})}

        self.store = store
        self.registry = registry
        self._clock = clock

        self._buy_tolerance = to_decimal(self.config["buy_tolerance"])
        self._sell_tolerance = to_decimal(self.config["sell_tolerance"])
        self._pending_window = float(self.config["pending_window_seconds"])
        self._min_order_size = to_decimal(self.config["min_order_size"])

        logger.info(
            f"RiskGate initialized: buy_tolerance={self._buy_tolerance}, "
            f"sell_tolerance={self._sell_tolerance}, pending_window={self._pending_window}s"
        )

    def admit(
        self,
        subscriber_id: str,
        mode: SubscriptionMode,
        event: TradeEvent,
        candidate: Decimal,
        config: RiskConfig,
        record_id: Optional[int] = None,
    ) -> Result:
        """
        Run the pre-execution checks.

        Args:
            subscriber_id: Subscriber the replica belongs to.
            mode: Subscription mode of the replica.
            event: Source trade.
            candidate: Sized amount (USD for BUY, shares for SELL).
            config: Subscriber risk settings.
            record_id: The replica's own pending record, excluded from totals.

        Returns:
            Result with data["amount"] (possibly shrunk) and data["shrunk"],
            or a rejection.
        """
        precheck = self.precheck(subscriber_id, mode, event, config)
        if not precheck.success:
            return precheck
        return self.check_caps(subscriber_id, mode, event, candidate, config, record_id)

    def precheck(
        self,
        subscriber_id: str,
        mode: SubscriptionMode,
        event: TradeEvent,
        config: RiskConfig,
    ) -> Result:
        """Enabled flag and ignore list; cheap checks that need no sizing."""
        mode = SubscriptionMode(mode)

        if mode == SubscriptionMode.AUTO and not config.enabled:
            return Result.fail(ErrorKind.COPY_DISABLED, "Copy trading is disabled")

        if self.registry.is_ignored(subscriber_id, event.title):
            return Result.fail(ErrorKind.MARKET_IGNORED, f"Market ignored: {event.title}")

        return Result.ok()

    def check_caps(
        self,
        subscriber_id: str,
        mode: SubscriptionMode,
        event: TradeEvent,
        candidate: Decimal,
        config: RiskConfig,
        record_id: Optional[int] = None,
    ) -> Result:
        """Daily and per-market caps for BUY replicas; SELLs pass through."""
        mode = SubscriptionMode(mode)

        if event.side != Side.BUY:
            return Result.ok("OK", amount=candidate, shrunk=False)

        now = self._clock()

        # Daily cap
        if config.daily_limit is not None:
            todays_total = self.store.executed_buy_total(subscriber_id, mode.value, _utc_day_start(now))
            if todays_total + candidate > config.daily_limit:
                return Result.fail(
                    ErrorKind.DAILY_LIMIT_EXCEEDED,
                    f"Daily limit exceeded (${todays_total:.2f} + ${candidate:.2f} > ${config.daily_limit})",
                    daily_total=todays_total,
                )

        # Per-market cap
        amount = candidate
        shrunk = False
        if config.max_per_market is not None:
            market_total = self.store.market_total(
                subscriber_id,
                mode.value,
                event.condition_id,
                pending_since=now - self._pending_window,
                exclude_id=record_id,
            )
            remaining = config.max_per_market - market_total

            if remaining <= 0:
                return Result.fail(
                    ErrorKind.MARKET_LIMIT_REACHED,
                    f"Market limit reached (${market_total:.0f}/${config.max_per_market})",
                    market_total=market_total,
                )

            if amount > remaining:
                if remaining < self._min_order_size:
                    return Result.fail(
                        ErrorKind.MARKET_LIMIT_REACHED,
                        f"Market limit reached (${remaining:.2f} left is below the ${self._min_order_size} minimum)",
                        market_total=market_total,
                    )
                logger.info(
                    f"Reducing copy size for {subscriber_id} from ${amount:.2f} to ${remaining:.2f} (market limit)"
                )
                amount = remaining
                shrunk = True

        return Result.ok("OK", amount=amount, shrunk=shrunk)

    def check_price(self, event: TradeEvent, live_price: Optional[Decimal]) -> Result:
        """
        Slippage band check against the live price.

        BUY requires live <= source * buy_tolerance; SELL requires
        live >= source * sell_tolerance.
        """
        if live_price is None:
            return Result.fail(ErrorKind.PRICE_UNAVAILABLE, "Could not get market price")

        live = to_decimal(live_price)
        if event.side == Side.BUY:
            limit = event.price * self._buy_tolerance
            moved = live > limit
        else:
            limit = event.price * self._sell_tolerance
            moved = live < limit

        if moved:
            return Result.fail(
                ErrorKind.PRICE_MOVED,
                f"Price moved: source {event.price}, now {live} (limit {limit:.4f})",
                live_price=live,
            )
        return Result.ok("OK", live_price=live)

    def daily_summary(self, subscriber_id: str, mode: SubscriptionMode, config: RiskConfig) -> dict[str, Any]:
        """Today's executed BUY total against the daily limit, plus replica counts by status."""
        mode = SubscriptionMode(mode)
        day_start = _utc_day_start(self._clock())
        total = self.store.executed_buy_total(subscriber_id, mode.value, day_start)
        remaining = (config.daily_limit - total) if config.daily_limit is not None else None
        return {
            "mode": mode.value,
            "executed_today": str(total),
            "daily_limit": str(config.daily_limit) if config.daily_limit is not None else None,
            "remaining": str(max(remaining, Decimal("0"))) if remaining is not None else None,
            "replicas_today": self.store.status_counts(subscriber_id, day_start),
        }
