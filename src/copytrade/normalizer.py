"""
Trade event normalization and in-memory duplicate suppression.

The dedup cache is a fast path only. The durable guard against double
replication is the unique (subscriber_id, dedup_key) replica record.
"""
import logging
import time
from collections import OrderedDict
from decimal import Decimal, InvalidOperation
from typing import Any, Callable, Optional

from ..config import DEDUP_CACHE_CAPACITY
from .models import Side, TradeEvent, to_decimal

logger = logging.getLogger(__name__)


def make_dedup_key(transaction_hash: str, event_id: str) -> str:
    """Stable key for one fill inside one transaction."""
    return f"{transaction_hash}-{event_id}"


class DedupCache:
    """
    Bounded recency set of seen trade keys.

    Once the cache holds more than twice its capacity, the oldest entries
    are evicted until `capacity` remain. Entries older than `ttl` seconds
    (if set) no longer count as seen.

    Example:
        >>> cache = DedupCache(capacity=2)
        >>> cache.add("a")
        True
        >>> cache.add("a")
        False
    """

    def __init__(
        self,
        capacity: int = DEDUP_CACHE_CAPACITY,
        ttl: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self.capacity = capacity
        self.ttl = ttl
        self._clock = clock
        self._entries: "OrderedDict[str, float]" = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        seen_at = self._entries.get(key)
        if seen_at is None:
            return False
        if self.ttl is not None and self._clock() - seen_at > self.ttl:
            return False
        return True

    def add(self, key: str) -> bool:
        """
        Record a key.

        Returns:
            True if the key was new (or expired), False if it is a repeat.
        """
        if key in self:
            return False

        self._entries[key] = self._clock()
        self._entries.move_to_end(key)
        self._trim()
        return True

    def _trim(self) -> None:
        if len(self._entries) <= self.capacity * 2:
            return
        excess = len(self._entries) - self.capacity
        for _ in range(excess):
            self._entries.popitem(last=False)
        logger.debug(f"Dedup cache trimmed {excess} entries")

    def clear(self) -> None:
        self._entries.clear()


class EventNormalizer:
    """
    Turns raw feed trades into TradeEvents and drops repeats.

    Accepts the Polymarket data-api trade shape (camelCase keys such as
    proxyWallet, asset, conditionId, transactionHash).
    """

    def __init__(self, cache: Optional[DedupCache] = None):
        self.cache = cache or DedupCache()

    def observe(self, raw: dict[str, Any], source_account: Optional[str] = None) -> Optional[TradeEvent]:
        """
        Normalize a raw trade and admit it if unseen.

        Args:
            raw: Raw trade observation from the feed.
            source_account: Followed wallet, when the feed does not carry it.

        Returns:
            TradeEvent, or None if the trade is a repeat or malformed.
        """
        event = self.normalize(raw, source_account)
        if event is None:
            return None

        if not self.cache.add(event.dedup_key):
            logger.debug(f"Duplicate trade dropped: {event.dedup_key}")
            return None
        return event

    def normalize(self, raw: dict[str, Any], source_account: Optional[str] = None) -> Optional[TradeEvent]:
        """Validate a raw trade and build the canonical event (no dedup)."""
        tx_hash = raw.get("transactionHash") or raw.get("transaction_hash")
        if not tx_hash:
            logger.warning(f"Trade without transaction hash dropped: {raw}")
            return None

        account = source_account or raw.get("proxyWallet") or raw.get("taker") or raw.get("maker")
        if not account:
            logger.warning(f"Trade without source account dropped: {tx_hash}")
            return None

        try:
            side = Side(str(raw.get("side", "")).upper())
        except ValueError:
            logger.warning(f"Trade {tx_hash} has invalid side {raw.get('side')!r}")
            return None

        try:
            shares = to_decimal(raw.get("size"))
            price = to_decimal(raw.get("price"))
        except (InvalidOperation, ValueError):
            logger.warning(f"Trade {tx_hash} has unparseable size/price")
            return None

        if not (shares.is_finite() and price.is_finite()) or shares <= 0 or not Decimal("0") < price <= Decimal("1"):
            logger.warning(f"Trade {tx_hash} out of range: size={shares}, price={price}")
            return None

        asset_id = str(raw.get("asset") or raw.get("asset_id") or "")
        condition_id = str(raw.get("conditionId") or raw.get("condition_id") or "")
        if not asset_id and not condition_id:
            logger.warning(f"Trade {tx_hash} references no market")
            return None

        event_id = raw.get("id") or asset_id or condition_id
        try:
            outcome_index = int(raw["outcomeIndex"]) if raw.get("outcomeIndex") is not None else None
        except (TypeError, ValueError):
            outcome_index = None

        return TradeEvent(
            source_account=str(account).lower(),
            asset_id=asset_id,
            condition_id=condition_id,
            side=side,
            shares=shares,
            price=price,
            title=str(raw.get("title") or ""),
            outcome=str(raw.get("outcome") or ""),
            timestamp=self._parse_timestamp(raw.get("timestamp")),
            dedup_key=make_dedup_key(str(tx_hash), str(event_id)),
            outcome_index=outcome_index,
        )

    @staticmethod
    def _parse_timestamp(value: Any) -> float:
        try:
            ts = float(value)
        except (TypeError, ValueError):
            return time.time()
        # Millisecond timestamps
        if ts > 1e12:
            ts /= 1000
        return ts
