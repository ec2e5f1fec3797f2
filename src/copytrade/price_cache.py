"""Mark price cache for position valuation."""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional

from ..config import PRICE_MAX_AGE_SECONDS
from .models import to_decimal

logger = logging.getLogger(__name__)


@dataclass
class CachedPrice:
    price: Decimal
    updated_at: float


class PriceCache:
    """
    Latest known price per asset id, with a freshness limit.

    Prices older than `max_age` seconds are reported as missing so that
    valuation falls back to the entry price and flags it.
    """

    def __init__(self, max_age: float = PRICE_MAX_AGE_SECONDS, clock: Callable[[], float] = time.time):
        self.max_age = max_age
        self._clock = clock
        self._prices: dict[str, CachedPrice] = {}

    def update(self, asset_id: str, price: Any) -> None:
        value = to_decimal(price)
        if value < 0 or value > 1:
            logger.warning(f"Ignoring out-of-range price {value} for {asset_id[:16]}...")
            return
        self._prices[asset_id] = CachedPrice(price=value, updated_at=self._clock())

    def get(self, asset_id: str) -> Optional[Decimal]:
        """Fresh price for an asset, or None if missing or stale."""
        cached = self._prices.get(asset_id)
        if cached is None or self._clock() - cached.updated_at > self.max_age:
            return None
        return cached.price

    def is_stale(self, asset_id: str) -> bool:
        return self.get(asset_id) is None

    def cleanup_stale(self) -> int:
        """Drop stale entries. Returns the number removed."""
        now = self._clock()
        stale = [k for k, v in self._prices.items() if now - v.updated_at > self.max_age]
        for key in stale:
            del self._prices[key]
        if stale:
            logger.debug(f"Removed {len(stale)} stale prices")
        return len(stale)

    def stats(self) -> dict[str, Any]:
        now = self._clock()
        fresh = sum(1 for v in self._prices.values() if now - v.updated_at <= self.max_age)
        return {
            "total": len(self._prices),
            "fresh": fresh,
            "stale": len(self._prices) - fresh,
        }

    def __len__(self) -> int:
        return len(self._prices)
