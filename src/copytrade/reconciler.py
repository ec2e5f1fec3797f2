"""
Resolution & Redemption Reconciler.

Settles positions whose market has resolved:
- winning outcome redeems at $1 per share
- losing outcome redeems at $0 per share

Redemption is a forced full sell through VirtualLedger.apply_sell under the
owner's lock, so it follows the same path as any other trade. Markets that
are not resolved yet (or whose winner is not published) are left alone and
retried on the next run. Resolution lookups are batched by condition id.

Each run also backfills missing market end dates and refreshes stale marks
for held assets.
"""

import asyncio
import logging
import time
from collections import defaultdict
from decimal import Decimal
from typing import Any, Callable, Optional

from ..api.clob import ResolutionLookupError
from .ledger import PAPER, Position, VirtualLedger
from .locks import OwnerLocks
from .models import ReplicaRecord, ReplicaStatus, SubscriptionMode
from .notifier import REDEMPTION, LoggingNotifier, Notifier
from .price_cache import PriceCache
from .replicas import ReplicaStore

logger = logging.getLogger(__name__)

REDEEM_SIDE = "REDEEM"
REDEEM_SOURCE = "redemption"

WIN_PRICE = Decimal("1")
LOSS_PRICE = Decimal("0")


class Reconciler:
    """
    Periodic settlement of resolved markets.

    Attributes:
        resolver: Object with get_resolution(condition_id) -> ResolutionStatus
            (ClobPublicClient in production).
        market_lookup: Object with get_market(condition_id) -> MarketInfo | None,
            used to backfill end dates.
        price_source: Object with get_midpoint(token_id), used to refresh marks.

    Example:
        >>> reconciler = Reconciler(ledger, store, resolver=ClobPublicClient())
        >>> summary = await reconciler.run_once()
        >>> print(summary["redeemed"])
    """

    def __init__(
        self,
        ledger: VirtualLedger,
        store: ReplicaStore,
        resolver: Any,
        market_lookup: Any = None,
        price_source: Any = None,
        prices: Optional[PriceCache] = None,
        locks: Optional[OwnerLocks] = None,
        notifier: Optional[Notifier] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.ledger = ledger
        self.store = store
        self.resolver = resolver
        self.market_lookup = market_lookup
        self.price_source = price_source
        self.prices = prices or ledger.prices
        self.locks = locks or OwnerLocks()
        self.notifier = notifier or LoggingNotifier()
        self._clock = clock
        self._run_lock = asyncio.Lock()

        self.total_redeemed = 0
        self.last_run: Optional[float] = None

    async def run_once(self) -> dict[str, Any]:
        """
        One reconciliation pass.

        Overlapping calls are skipped rather than queued.

        Returns:
            Summary with backfilled, refreshed, checked, redeemed, pending
            and errors counts.
        """
        if self._run_lock.locked():
            logger.debug("Reconciliation already in progress, skipping")
            return {"skipped": True}

        async with self._run_lock:
            summary = {
                "skipped": False,
                "backfilled": await self.backfill_end_dates(),
                "refreshed": await self.refresh_stale_prices(),
            }
            summary.update(await self.redeem_resolved())
            self.last_run = self._clock()

        if summary["redeemed"] or summary["errors"]:
            logger.info(
                f"Reconciliation: checked={summary['checked']} redeemed={summary['redeemed']} "
                f"pending={summary['pending']} errors={summary['errors']}"
            )
        return summary

    # =========================================================================
    # Redemption
    # =========================================================================

    async def redeem_resolved(self) -> dict[str, int]:
        """Settle every due position whose market has a declared winner."""
        due: dict[str, list[Position]] = defaultdict(list)
        for position in self.ledger.positions_due(self._clock()):
            due[position.condition_id].append(position)

        checked = redeemed = pending = errors = 0
        for condition_id, positions in due.items():
            checked += 1
            try:
                status = await asyncio.to_thread(self.resolver.get_resolution, condition_id)
            except ResolutionLookupError as e:
                logger.warning(f"Resolution lookup failed for {condition_id}: {e}")
                errors += 1
                continue

            if not status.resolved:
                pending += 1
                continue
            if not status.winning_outcome:
                logger.warning(f"Market {condition_id} resolved without a known winner; retrying later")
                pending += 1
                continue

            for position in positions:
                if await self._redeem(position, status.winning_outcome):
                    redeemed += 1

        self.total_redeemed += redeemed
        return {"checked": checked, "redeemed": redeemed, "pending": pending, "errors": errors}

    async def _redeem(self, position: Position, winning_outcome: str) -> bool:
        won = (position.outcome or "").strip().lower() == winning_outcome.strip().lower()
        price = WIN_PRICE if won else LOSS_PRICE

        async with self.locks(position.owner_id):
            # Re-read under the lock: a trade may have changed the position
            current = self.ledger.get_position(position.owner_id, position.asset_id, position.kind)
            if current is None:
                return False

            result = self.ledger.apply_sell(
                position.owner_id, position.asset_id, current.shares, price, kind=position.kind
            )
            if not result.success:
                logger.warning(f"Redemption failed for {position.owner_id} on {position.title!r}: {result.message}")
                return False

            self._record_redemption(current, price)

        payout = result.data["proceeds"]
        logger.info(
            f"[{position.kind.upper()}] Redeemed {current.shares} {current.outcome} shares of "
            f"{current.title!r} for {position.owner_id}: {'WON' if won else 'LOST'} ${payout:.2f}"
        )
        try:
            await self.notifier.notify(position.owner_id, REDEMPTION, {
                "title": current.title,
                "outcome": current.outcome,
                "won": won,
                "shares": str(current.shares),
                "payout": str(payout),
                "realized_pnl": str(result.data["realized_pnl"]),
                "kind": position.kind,
            })
        except Exception as e:
            logger.warning(f"Redemption notification to {position.owner_id} failed: {e}")
        return True

    def _record_redemption(self, position: Position, price: Decimal) -> None:
        mode = SubscriptionMode.PAPER if position.kind == PAPER else SubscriptionMode.AUTO
        record, _ = self.store.claim(ReplicaRecord(
            subscriber_id=position.owner_id,
            dedup_key=f"redeem-{position.kind}-{position.asset_id}-{int(self._clock())}",
            mode=mode.value,
            side=REDEEM_SIDE,
            requested_size=position.shares,
            price=price,
            source_account=REDEEM_SOURCE,
            asset_id=position.asset_id,
            condition_id=position.condition_id,
            title=position.title,
            outcome=position.outcome,
        ))
        self.store.finalize(record.id, ReplicaStatus.EXECUTED, shares=position.shares, price=price)

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def backfill_end_dates(self) -> int:
        """Fill missing end dates from market metadata, one lookup per market."""
        if self.market_lookup is None:
            return 0

        condition_ids = sorted({p.condition_id for p in self.ledger.positions_missing_end_date() if p.condition_id})
        updated = 0
        for condition_id in condition_ids:
            try:
                market = await asyncio.to_thread(self.market_lookup.get_market, condition_id)
            except Exception as e:
                logger.warning(f"End date lookup failed for {condition_id}: {e}")
                continue
            if market is None or market.end_date is None:
                continue
            updated += self.ledger.set_end_date(condition_id, market.end_date)

        if updated:
            logger.info(f"Backfilled end dates on {updated} positions")
        return updated

    async def refresh_stale_prices(self) -> int:
        """Fetch fresh midpoints for held assets whose cached mark is stale."""
        if self.price_source is None:
            return 0

        refreshed = 0
        for asset_id in self.ledger.held_asset_ids():
            if not self.prices.is_stale(asset_id):
                continue
            try:
                price = await asyncio.to_thread(self.price_source.get_midpoint, asset_id)
            except Exception as e:
                logger.warning(f"Price refresh failed for {asset_id[:16]}...: {e}")
                continue
            if price is not None:
                self.prices.update(asset_id, price)
                refreshed += 1

        self.prices.cleanup_stale()
        return refreshed

    def get_status(self) -> dict[str, Any]:
        return {
            "total_redeemed": self.total_redeemed,
            "last_run": self.last_run,
            "running": self._run_lock.locked(),
        }
