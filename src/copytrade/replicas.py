"""
Replica record store: the durable idempotency guard.

A record is claimed as `pending` with INSERT OR IGNORE against the unique
(subscriber_id, dedup_key) constraint, so the existence check and the insert
are one atomic statement. A record moves to a terminal status exactly once.
"""
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Optional

from ..storage.db import Database
from .models import ZERO, ErrorKind, ReplicaRecord, ReplicaStatus

logger = logging.getLogger(__name__)


def _row_to_record(row) -> ReplicaRecord:
    return ReplicaRecord(
        id=row["id"],
        subscriber_id=row["subscriber_id"],
        dedup_key=row["dedup_key"],
        mode=row["mode"],
        side=row["side"],
        status=ReplicaStatus(row["status"]),
        requested_size=Decimal(row["requested_size"]),
        shares=Decimal(row["shares"]),
        price=Decimal(row["price"]),
        source_account=row["source_account"],
        asset_id=row["asset_id"],
        condition_id=row["condition_id"],
        title=row["title"],
        outcome=row["outcome"],
        order_ref=row["order_ref"],
        error_kind=ErrorKind(row["error_kind"]) if row["error_kind"] else None,
        error_reason=row["error_reason"],
        created_at=row["created_at"],
        executed_at=row["executed_at"],
    )


class ReplicaStore:
    """Persistence for ReplicaRecords."""

    def __init__(self, db: Database, clock: Callable[[], float] = time.time):
        self.db = db
        self._clock = clock

    def claim(self, record: ReplicaRecord) -> tuple[ReplicaRecord, bool]:
        """
        Insert a pending record unless one already exists for the pair.

        Returns:
            (record, created). When created is False the stored record is
            returned untouched and the caller must not act on the trade.
        """
        now = self._clock()
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                INSERT OR IGNORE INTO replicas
                    (subscriber_id, dedup_key, mode, source_account, asset_id, condition_id,
                     title, outcome, side, requested_size, shares, price, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                """,
                (
                    record.subscriber_id, record.dedup_key, record.mode, record.source_account,
                    record.asset_id, record.condition_id, record.title, record.outcome,
                    record.side, str(record.requested_size), str(record.shares),
                    str(record.price), now,
                ),
            )
            created = cursor.rowcount > 0
            row = conn.execute(
                "SELECT * FROM replicas WHERE subscriber_id = ? AND dedup_key = ?",
                (record.subscriber_id, record.dedup_key),
            ).fetchone()

        return _row_to_record(row), created

    def reserve(self, record_id: int, requested_size: Decimal, price: Decimal) -> None:
        """Store the approved size on a pending record so in-flight trades count toward caps."""
        with self.db.get_connection() as conn:
            conn.execute(
                "UPDATE replicas SET requested_size = ?, price = ? WHERE id = ? AND status = 'pending'",
                (str(requested_size), str(price), record_id),
            )

    def finalize(
        self,
        record_id: int,
        status: ReplicaStatus,
        requested_size: Optional[Decimal] = None,
        shares: Optional[Decimal] = None,
        price: Optional[Decimal] = None,
        order_ref: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
        error_reason: Optional[str] = None,
    ) -> ReplicaRecord:
        """
        Move a pending record to a terminal status.

        Raises:
            ValueError: If status is not terminal.
        """
        if not status.is_terminal:
            raise ValueError(f"Cannot finalize a record as {status}")

        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE replicas SET
                    status = ?,
                    requested_size = COALESCE(?, requested_size),
                    shares = COALESCE(?, shares),
                    price = COALESCE(?, price),
                    order_ref = ?,
                    error_kind = ?,
                    error_reason = ?,
                    executed_at = ?
                WHERE id = ? AND status = 'pending'
                """,
                (
                    status.value,
                    str(requested_size) if requested_size is not None else None,
                    str(shares) if shares is not None else None,
                    str(price) if price is not None else None,
                    order_ref,
                    error_kind.value if error_kind else None,
                    error_reason,
                    self._clock() if status == ReplicaStatus.EXECUTED else None,
                    record_id,
                ),
            )
            if cursor.rowcount == 0:
                logger.warning(f"Replica {record_id} was already terminal; update ignored")
            row = conn.execute("SELECT * FROM replicas WHERE id = ?", (record_id,)).fetchone()

        return _row_to_record(row)

    def expire_pending(self, record_id: int, older_than: float, reason: str) -> ReplicaRecord:
        """
        Fail a pending record that was claimed before `older_than`.

        A pending record that old was left behind by a crashed or cancelled
        run. It is marked failed rather than retried because the trade may
        already have gone out.
        """
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                """
                UPDATE replicas SET status = 'failed', error_kind = ?, error_reason = ?
                WHERE id = ? AND status = 'pending' AND created_at < ?
                """,
                (ErrorKind.ADAPTER_FAILURE.value, reason, record_id, older_than),
            )
            if cursor.rowcount:
                logger.warning(f"Replica {record_id} expired while pending: {reason}")
            row = conn.execute("SELECT * FROM replicas WHERE id = ?", (record_id,)).fetchone()

        return _row_to_record(row)

    def now(self) -> float:
        return self._clock()

    def get(self, subscriber_id: str, dedup_key: str) -> Optional[ReplicaRecord]:
        rows = self.db.execute(
            "SELECT * FROM replicas WHERE subscriber_id = ? AND dedup_key = ?",
            (subscriber_id, dedup_key),
        )
        return _row_to_record(rows[0]) if rows else None

    def history(self, subscriber_id: str, limit: int = 20) -> list[ReplicaRecord]:
        rows = self.db.execute(
            "SELECT * FROM replicas WHERE subscriber_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
            (subscriber_id, limit),
        )
        return [_row_to_record(r) for r in rows]

    def executed_buy_total(self, subscriber_id: str, mode: str, since: float) -> Decimal:
        """Value of executed BUY replicas created at or after `since`."""
        rows = self.db.execute(
            """
            SELECT shares, price FROM replicas
            WHERE subscriber_id = ? AND mode = ? AND side = 'BUY'
              AND status = 'executed' AND created_at >= ?
            """,
            (subscriber_id, mode, since),
        )
        return sum((Decimal(r["shares"]) * Decimal(r["price"]) for r in rows), ZERO)

    def market_total(
        self,
        subscriber_id: str,
        mode: str,
        condition_id: str,
        pending_since: float,
        exclude_id: Optional[int] = None,
    ) -> Decimal:
        """
        Committed BUY value in one market.

        Counts executed BUYs plus pending BUYs created after `pending_since`,
        so trades still in flight reserve their share of the cap.
        """
        rows = self.db.execute(
            """
            SELECT id, status, requested_size, shares, price FROM replicas
            WHERE subscriber_id = ? AND mode = ? AND condition_id = ? AND side = 'BUY'
              AND (status = 'executed' OR (status = 'pending' AND created_at >= ?))
            """,
            (subscriber_id, mode, condition_id, pending_since),
        )
        total = ZERO
        for r in rows:
            if exclude_id is not None and r["id"] == exclude_id:
                continue
            if r["status"] == ReplicaStatus.EXECUTED.value:
                total += Decimal(r["shares"]) * Decimal(r["price"])
            else:
                total += Decimal(r["requested_size"])
        return total

    def status_counts(self, subscriber_id: str, since: float) -> dict[str, Any]:
        rows = self.db.execute(
            """
            SELECT status, COUNT(*) AS n FROM replicas
            WHERE subscriber_id = ? AND created_at >= ?
            GROUP BY status
            """,
            (subscriber_id, since),
        )
        return {r["status"]: r["n"] for r in rows}
