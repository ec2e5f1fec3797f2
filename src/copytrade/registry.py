"""
Subscription registry: who follows whom, in which mode, under which limits.

Lookups (subscribers_of, is_ignored, get_risk_config) have no side effects.
The CRUD methods back the external command interface.
"""
import logging
import time
from decimal import Decimal
from typing import Any, Optional

from ..config import SAFE_DEFAULTS, TEST_MODE, TEST_MODE_LIMITS
from ..storage.db import Database
from .models import RiskConfig, Subscription, SubscriptionMode, optional_decimal, to_decimal

logger = logging.getLogger(__name__)

RISK_FIELDS = ("copy_percentage", "max_trade_size", "daily_limit", "max_per_market", "enabled")


def _str_or_none(value: Optional[Decimal]) -> Optional[str]:
    return str(value) if value is not None else None


class SubscriptionRegistry:
    """
    Maps source accounts to subscribers and stores their risk settings.

    Example:
        >>> registry = SubscriptionRegistry(db)
        >>> registry.subscribe("alice", "0xwhale", SubscriptionMode.PAPER)
        >>> [s.subscriber_id for s in registry.subscribers_of("0xwhale")]
        ['alice']
    """

    def __init__(self, db: Database, test_mode: bool = TEST_MODE):
        self.db = db
        self.defaults = TEST_MODE_LIMITS if test_mode else SAFE_DEFAULTS

    # =========================================================================
    # Subscriptions
    # =========================================================================

    def subscribe(
        self,
        subscriber_id: str,
        source_account: str,
        mode: SubscriptionMode = SubscriptionMode.PAPER,
    ) -> Subscription:
        """Follow a source account, or change the mode of an existing follow."""
        mode = SubscriptionMode(mode)
        source = source_account.lower()
        now = time.time()

        with self.db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO subscriptions (subscriber_id, source_account, mode, created_at)
                VALUES (?, ?, ?, ?)
                ON CONFLICT(subscriber_id, source_account) DO UPDATE SET mode = excluded.mode
                """,
                (subscriber_id, source, mode.value, now),
            )

        logger.info(f"{subscriber_id} follows {source[:10]}... in {mode} mode")
        return Subscription(subscriber_id, source, mode, now)

    def unsubscribe(self, subscriber_id: str, source_account: str) -> bool:
        """Stop following a source account. Returns False if not subscribed."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM subscriptions WHERE subscriber_id = ? AND source_account = ?",
                (subscriber_id, source_account.lower()),
            )
            removed = cursor.rowcount > 0

        if removed:
            logger.info(f"{subscriber_id} unfollowed {source_account[:10]}...")
        return removed

    def subscribers_of(self, source_account: str) -> list[Subscription]:
        rows = self.db.execute(
            "SELECT * FROM subscriptions WHERE source_account = ? ORDER BY created_at, subscriber_id",
            (source_account.lower(),),
        )
        return [self._row_to_subscription(r) for r in rows]

    def subscriptions_of(self, subscriber_id: str) -> list[Subscription]:
        rows = self.db.execute(
            "SELECT * FROM subscriptions WHERE subscriber_id = ? ORDER BY created_at, source_account",
            (subscriber_id,),
        )
        return [self._row_to_subscription(r) for r in rows]

    def followed_accounts(self) -> list[str]:
        """All source accounts with at least one subscriber."""
        rows = self.db.execute("SELECT DISTINCT source_account FROM subscriptions ORDER BY source_account")
        return [r["source_account"] for r in rows]

    @staticmethod
    def _row_to_subscription(row) -> Subscription:
        return Subscription(
            subscriber_id=row["subscriber_id"],
            source_account=row["source_account"],
            mode=SubscriptionMode(row["mode"]),
            created_at=row["created_at"],
        )

    # =========================================================================
    # Risk settings
    # =========================================================================

    def default_risk_config(self, subscriber_id: str) -> RiskConfig:
        return RiskConfig(subscriber_id=subscriber_id, enabled=False, **self.defaults)

    def get_risk_config(self, subscriber_id: str) -> RiskConfig:
        """Stored settings for a subscriber, or the defaults if none are saved."""
        rows = self.db.execute("SELECT * FROM risk_configs WHERE subscriber_id = ?", (subscriber_id,))
        if rows:
            row = rows[0]
            config = RiskConfig(
                subscriber_id=subscriber_id,
                copy_percentage=to_decimal(row["copy_percentage"]),
                max_trade_size=optional_decimal(row["max_trade_size"]),
                daily_limit=optional_decimal(row["daily_limit"]),
                max_per_market=optional_decimal(row["max_per_market"]),
                enabled=bool(row["enabled"]),
            )
        else:
            config = self.default_risk_config(subscriber_id)

        config.ignore_patterns = self.list_ignore_patterns(subscriber_id)
        return config

    def update_risk_config(self, subscriber_id: str, **changes: Any) -> RiskConfig:
        """
        Partially update a subscriber's settings.

        Only the given fields change. Passing None for a cap removes the cap.

        Raises:
            ValueError: On unknown fields or out-of-range values.
        """
        unknown = set(changes) - set(RISK_FIELDS)
        if unknown:
            raise ValueError(f"Unknown risk settings: {sorted(unknown)}")

        current = self.get_risk_config(subscriber_id)
        merged = {name: getattr(current, name) for name in RISK_FIELDS}
        merged.update(changes)

        # Validates ranges before anything is written
        config = RiskConfig(subscriber_id=subscriber_id, **merged)
        config.ignore_patterns = current.ignore_patterns

        with self.db.get_connection() as conn:
            conn.execute(
                """
                INSERT INTO risk_configs
                    (subscriber_id, copy_percentage, max_trade_size, daily_limit,
                     max_per_market, enabled, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(subscriber_id) DO UPDATE SET
                    copy_percentage = excluded.copy_percentage,
                    max_trade_size = excluded.max_trade_size,
                    daily_limit = excluded.daily_limit,
                    max_per_market = excluded.max_per_market,
                    enabled = excluded.enabled,
                    updated_at = excluded.updated_at
                """,
                (
                    subscriber_id,
                    str(config.copy_percentage),
                    _str_or_none(config.max_trade_size),
                    _str_or_none(config.daily_limit),
                    _str_or_none(config.max_per_market),
                    int(config.enabled),
                    time.time(),
                ),
            )

        logger.info(f"Risk settings updated for {subscriber_id}: {sorted(changes)}")
        return config

    def set_copy_enabled(self, subscriber_id: str, enabled: bool) -> RiskConfig:
        return self.update_risk_config(subscriber_id, enabled=enabled)

    # =========================================================================
    # Ignore list
    # =========================================================================

    def add_ignore_pattern(self, subscriber_id: str, pattern: str) -> bool:
        """Skip markets whose title contains `pattern` (case-insensitive)."""
        normalized = pattern.strip().lower()
        if not normalized:
            raise ValueError("Ignore pattern must not be empty")

        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "INSERT OR IGNORE INTO ignore_patterns (subscriber_id, pattern, created_at) VALUES (?, ?, ?)",
                (subscriber_id, normalized, time.time()),
            )
            return cursor.rowcount > 0

    def remove_ignore_pattern(self, subscriber_id: str, pattern: str) -> bool:
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "DELETE FROM ignore_patterns WHERE subscriber_id = ? AND pattern = ?",
                (subscriber_id, pattern.strip().lower()),
            )
            return cursor.rowcount > 0

    def list_ignore_patterns(self, subscriber_id: str) -> list[str]:
        rows = self.db.execute(
            "SELECT pattern FROM ignore_patterns WHERE subscriber_id = ? ORDER BY created_at, pattern",
            (subscriber_id,),
        )
        return [r["pattern"] for r in rows]

    def is_ignored(self, subscriber_id: str, market_title: str) -> bool:
        title = (market_title or "").lower()
        return any(p in title for p in self.list_ignore_patterns(subscriber_id))
