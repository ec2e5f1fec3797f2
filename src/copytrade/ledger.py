"""
Virtual Ledger: cash and positions for paper portfolios and real-shadow accounts.

Accounting rules:
- cash never goes negative (a BUY that costs more than cash is rejected)
- avg_price is the shares-weighted average entry cost
- a SELL never sells more than is held; the position is deleted once the
  remaining shares fall to the dust threshold
- every mutation appends a snapshot in the same transaction

Each public mutation runs in one sqlite transaction (BEGIN IMMEDIATE), so the
read-balance-then-write step cannot interleave with another writer. Callers
serialize whole replication flows per owner with OwnerLocks.

Example:
    >>> ledger = VirtualLedger(db, PriceCache())
    >>> ledger.open_account("alice", Decimal("1000"))
    >>> ledger.apply_buy("alice", "token-yes", Decimal("100"), Decimal("0.50"))
    >>> ledger.valuate("alice").cash
    Decimal('950.00')
"""

import json
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Optional

from ..config import POSITION_EPSILON
from ..storage.db import Database
from .models import ZERO, ErrorKind, LedgerInvariantError, Result, to_decimal
from .price_cache import PriceCache

logger = logging.getLogger(__name__)

PAPER = "paper"
REAL = "real"


@dataclass
class LedgerAccount:
    """
    Cash account of one owner.

    Attributes:
        owner_id: Subscriber owning the account.
        kind: "paper" for virtual money, "real" for the shadow of a real wallet.
        cash: Available cash.
        starting_balance: Capital put in (initial balance plus top-ups).
        active: False once the owner opts out; data is retained.
    """

    owner_id: str
    kind: str
    cash: Decimal
    starting_balance: Decimal
    active: bool = True
    created_at: Optional[float] = None


@dataclass
class Position:
    """Open holding of one outcome token."""

    owner_id: str
    kind: str
    asset_id: str
    condition_id: str
    shares: Decimal
    avg_price: Decimal
    source_account: Optional[str] = None
    title: Optional[str] = None
    outcome: Optional[str] = None
    end_date: Optional[float] = None

    @property
    def cost_basis(self) -> Decimal:
        return self.shares * self.avg_price


@dataclass
class Snapshot:
    """Point-in-time portfolio valuation. Never mutated after creation."""

    owner_id: str
    kind: str
    total_value: Decimal
    cash: Decimal
    positions_value: Decimal
    pnl: Decimal
    created_at: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_value": str(self.total_value),
            "cash": str(self.cash),
            "positions_value": str(self.positions_value),
            "pnl": str(self.pnl),
            "timestamp": self.created_at,
        }


@dataclass
class Valuation:
    """
    Portfolio value at current marks.

    unpriced_positions counts positions valued at avg_price because no fresh
    mark existed; their P&L is zero by construction, not by market data.
    """

    cash: Decimal
    positions_value: Decimal
    total_value: Decimal
    pnl: Decimal
    priced_positions: int = 0
    unpriced_positions: int = 0

    @property
    def has_complete_prices(self) -> bool:
        return self.unpriced_positions == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "cash": str(self.cash),
            "positions_value": str(self.positions_value),
            "total_value": str(self.total_value),
            "pnl": str(self.pnl),
            "priced_positions": self.priced_positions,
            "unpriced_positions": self.unpriced_positions,
        }


def _row_to_account(row) -> LedgerAccount:
    account = LedgerAccount(
        owner_id=row["owner_id"],
        kind=row["kind"],
        cash=Decimal(row["cash"]),
        starting_balance=Decimal(row["starting_balance"]),
        active=bool(row["active"]),
        created_at=row["created_at"],
    )
    if account.cash < 0:
        raise LedgerInvariantError(f"Negative cash {account.cash} for {account.owner_id}/{account.kind}")
    return account


def _row_to_position(row) -> Position:
    position = Position(
        owner_id=row["owner_id"],
        kind=row["kind"],
        asset_id=row["asset_id"],
        condition_id=row["condition_id"],
        shares=Decimal(row["shares"]),
        avg_price=Decimal(row["avg_price"]),
        source_account=row["source_account"],
        title=row["title"],
        outcome=row["outcome"],
        end_date=row["end_date"],
    )
    if position.shares <= 0:
        raise LedgerInvariantError(
            f"Position {position.asset_id} of {position.owner_id} has {position.shares} shares"
        )
    return position


class VirtualLedger:
    """
    Cash/position ledger backed by sqlite.

    Attributes:
        db: Database holding ledger_accounts, positions and snapshots.
        prices: Mark price cache used for valuation.
        epsilon: Share count at or below which a position is closed.
        journal_path: Optional JSONL file receiving every ledger mutation.
    """

    def __init__(
        self,
        db: Database,
        prices: Optional[PriceCache] = None,
        epsilon: float = POSITION_EPSILON,
        journal_path: Optional[Path] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.prices = prices or PriceCache()
        self.epsilon = to_decimal(epsilon)
        self.journal_path = Path(journal_path) if journal_path else None
        self._clock = clock

    # =========================================================================
    # Account lifecycle
    # =========================================================================

    def open_account(self, owner_id: str, starting_balance: Any, kind: str = PAPER) -> Result:
        """
        Create an account, or reactivate an inactive one as it was left.

        Fails if an active account already exists.
        """
        balance = to_decimal(starting_balance)
        if balance <= 0:
            return Result.fail(ErrorKind.INVALID_REQUEST, "Starting balance must be positive")

        now = self._clock()
        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            existing = self._fetch_account(conn, owner_id, kind)
            if existing and existing.active:
                return Result.fail(
                    ErrorKind.INVALID_REQUEST,
                    f"Portfolio already active with ${existing.cash:.2f} cash",
                )
            if existing:
                conn.execute(
                    "UPDATE ledger_accounts SET active = 1, updated_at = ? WHERE owner_id = ? AND kind = ?",
                    (now, owner_id, kind),
                )
                action = "reactivated"
            else:
                conn.execute(
                    """
                    INSERT INTO ledger_accounts
                        (owner_id, kind, cash, starting_balance, active, created_at, updated_at)
                    VALUES (?, ?, ?, ?, 1, ?, ?)
                    """,
                    (owner_id, kind, str(balance), str(balance), now, now),
                )
                action = "opened"
            self._append_snapshot(conn, owner_id, kind)

        logger.info(f"{kind.capitalize()} account {action} for {owner_id}")
        self._write_to_log({"event": f"account_{action}", "owner_id": owner_id, "kind": kind})
        return Result.ok(f"Account {action}")

    def close_account(self, owner_id: str, kind: str = PAPER) -> bool:
        """Deactivate an account. Positions and history are kept."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE ledger_accounts SET active = 0, updated_at = ? WHERE owner_id = ? AND kind = ? AND active = 1",
                (self._clock(), owner_id, kind),
            )
            closed = cursor.rowcount > 0

        if closed:
            logger.info(f"{kind.capitalize()} account closed for {owner_id}")
        return closed

    def reset_account(self, owner_id: str, starting_balance: Optional[Any] = None, kind: str = PAPER) -> Result:
        """Wipe positions and snapshots and restart with fresh cash."""
        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            account = self._fetch_account(conn, owner_id, kind)
            if account is None:
                return Result.fail(ErrorKind.NO_PORTFOLIO, "No portfolio to reset")

            balance = to_decimal(starting_balance) if starting_balance is not None else account.starting_balance
            if balance <= 0:
                return Result.fail(ErrorKind.INVALID_REQUEST, "Starting balance must be positive")

            conn.execute("DELETE FROM positions WHERE owner_id = ? AND kind = ?", (owner_id, kind))
            conn.execute("DELETE FROM snapshots WHERE owner_id = ? AND kind = ?", (owner_id, kind))
            conn.execute(
                """
                UPDATE ledger_accounts
                SET cash = ?, starting_balance = ?, active = 1, updated_at = ?
                WHERE owner_id = ? AND kind = ?
                """,
                (str(balance), str(balance), self._clock(), owner_id, kind),
            )
            self._append_snapshot(conn, owner_id, kind)

        logger.info(f"{kind.capitalize()} account reset for {owner_id} with ${balance}")
        self._write_to_log({"event": "account_reset", "owner_id": owner_id, "balance": str(balance)})
        return Result.ok("Account reset", balance=balance)

    def top_up(self, owner_id: str, amount: Any, kind: str = PAPER) -> Result:
        """
        Add cash. Raises the starting balance too, so P&L is unaffected.

        Raises:
            ValueError: If amount is not positive.
        """
        value = to_decimal(amount)
        if value <= 0:
            raise ValueError(f"Top-up amount must be positive, got {value}")

        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            account = self._fetch_account(conn, owner_id, kind)
            if account is None or not account.active:
                return Result.fail(ErrorKind.NO_PORTFOLIO, "No active portfolio")

            new_cash = account.cash + value
            new_start = account.starting_balance + value
            conn.execute(
                "UPDATE ledger_accounts SET cash = ?, starting_balance = ?, updated_at = ? WHERE owner_id = ? AND kind = ?",
                (str(new_cash), str(new_start), self._clock(), owner_id, kind),
            )
            self._append_snapshot(conn, owner_id, kind)

        logger.info(f"Topped up {owner_id} by ${value}: cash=${new_cash}")
        return Result.ok("Top-up applied", cash=new_cash, starting_balance=new_start)

    def delete_account(self, owner_id: str, kind: str = PAPER) -> bool:
        """Remove an account with all of its positions and snapshots."""
        with self.db.get_connection() as conn:
            conn.execute("DELETE FROM positions WHERE owner_id = ? AND kind = ?", (owner_id, kind))
            conn.execute("DELETE FROM snapshots WHERE owner_id = ? AND kind = ?", (owner_id, kind))
            cursor = conn.execute("DELETE FROM ledger_accounts WHERE owner_id = ? AND kind = ?", (owner_id, kind))
            deleted = cursor.rowcount > 0

        if deleted:
            logger.info(f"{kind.capitalize()} account deleted for {owner_id}")
        return deleted

    def sync_cash(self, owner_id: str, cash: Any, kind: str = REAL) -> LedgerAccount:
        """
        Align a shadow account's cash with an externally reported balance.

        Creates the account on first sync, using the balance as starting capital.
        """
        value = to_decimal(cash)
        if value < 0:
            raise ValueError(f"Reported balance must not be negative, got {value}")

        now = self._clock()
        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            conn.execute(
                """
                INSERT INTO ledger_accounts
                    (owner_id, kind, cash, starting_balance, active, created_at, updated_at)
                VALUES (?, ?, ?, ?, 1, ?, ?)
                ON CONFLICT(owner_id, kind) DO UPDATE SET cash = excluded.cash, updated_at = excluded.updated_at
                """,
                (owner_id, kind, str(value), str(value), now, now),
            )
            return self._fetch_account(conn, owner_id, kind)

    def sync_shares(
        self,
        owner_id: str,
        asset_id: str,
        shares: Any,
        price: Any,
        kind: str = REAL,
        condition_id: str = "",
        title: Optional[str] = None,
        outcome: Optional[str] = None,
        source_account: Optional[str] = None,
    ) -> Optional[Position]:
        """
        Align a shadow position with the shares the exchange reports.

        Cash is not touched. A position first seen this way takes `price` as
        its entry price. Returns the stored position, or None when nothing
        is held afterwards.
        """
        qty = to_decimal(shares)
        if qty < 0:
            raise ValueError(f"Reported shares must not be negative, got {qty}")

        now = self._clock()
        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            if self._fetch_account(conn, owner_id, kind) is None:
                raise ValueError(f"No {kind} account for {owner_id}")

            position = self._fetch_position(conn, owner_id, asset_id, kind)
            before = position.shares if position else ZERO
            if qty == before:
                return position

            if qty <= self.epsilon:
                conn.execute(
                    "DELETE FROM positions WHERE owner_id = ? AND kind = ? AND asset_id = ?",
                    (owner_id, kind, asset_id),
                )
            elif position:
                conn.execute(
                    "UPDATE positions SET shares = ?, updated_at = ? WHERE owner_id = ? AND kind = ? AND asset_id = ?",
                    (str(qty), now, owner_id, kind, asset_id),
                )
            else:
                conn.execute(
                    """
                    INSERT INTO positions
                        (owner_id, kind, asset_id, condition_id, shares, avg_price,
                         source_account, title, outcome, end_date, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, NULL, ?, ?)
                    """,
                    (
                        owner_id, kind, asset_id, condition_id, str(qty), str(to_decimal(price)),
                        source_account, title, outcome, now, now,
                    ),
                )
            self._append_snapshot(conn, owner_id, kind)
            synced = self._fetch_position(conn, owner_id, asset_id, kind)

        logger.warning(f"[{kind.upper()}] {owner_id} position {asset_id[:16]}... synced: {before} -> {qty} shares")
        self._write_to_log({
            "event": "position_synced", "owner_id": owner_id, "kind": kind, "asset_id": asset_id,
            "shares_before": str(before), "shares": str(qty),
        })
        return synced

    def get_account(self, owner_id: str, kind: str = PAPER) -> Optional[LedgerAccount]:
        with self.db.get_connection() as conn:
            return self._fetch_account(conn, owner_id, kind)

    def list_accounts(self, kind: Optional[str] = None, active_only: bool = True) -> list[LedgerAccount]:
        query = "SELECT * FROM ledger_accounts WHERE 1 = 1"
        params: list[Any] = []
        if kind:
            query += " AND kind = ?"
            params.append(kind)
        if active_only:
            query += " AND active = 1"
        rows = self.db.execute(query + " ORDER BY created_at", tuple(params))
        return [_row_to_account(r) for r in rows]

    # =========================================================================
    # Positions
    # =========================================================================

    def get_position(self, owner_id: str, asset_id: str, kind: str = PAPER) -> Optional[Position]:
        with self.db.get_connection() as conn:
            return self._fetch_position(conn, owner_id, asset_id, kind)

    def get_positions(self, owner_id: str, kind: str = PAPER) -> list[Position]:
        rows = self.db.execute(
            "SELECT * FROM positions WHERE owner_id = ? AND kind = ? ORDER BY created_at",
            (owner_id, kind),
        )
        return [_row_to_position(r) for r in rows]

    def held_shares(self, owner_id: str, asset_id: str, kind: str = PAPER) -> Decimal:
        position = self.get_position(owner_id, asset_id, kind)
        return position.shares if position else ZERO

    def positions_due(self, now: Optional[float] = None) -> list[Position]:
        """Positions of active accounts whose market end date has passed."""
        rows = self.db.execute(
            """
            SELECT p.* FROM positions p
            JOIN ledger_accounts a ON a.owner_id = p.owner_id AND a.kind = p.kind
            WHERE a.active = 1 AND p.end_date IS NOT NULL AND p.end_date < ?
            ORDER BY p.condition_id
            """,
            (now if now is not None else self._clock(),),
        )
        return [_row_to_position(r) for r in rows]

    def positions_missing_end_date(self) -> list[Position]:
        rows = self.db.execute(
            """
            SELECT p.* FROM positions p
            JOIN ledger_accounts a ON a.owner_id = p.owner_id AND a.kind = p.kind
            WHERE a.active = 1 AND p.end_date IS NULL
            ORDER BY p.condition_id
            """
        )
        return [_row_to_position(r) for r in rows]

    def set_end_date(self, condition_id: str, end_date: float) -> int:
        """Backfill the end date on every position in a market."""
        with self.db.get_connection() as conn:
            cursor = conn.execute(
                "UPDATE positions SET end_date = ? WHERE condition_id = ? AND end_date IS NULL",
                (end_date, condition_id),
            )
            return cursor.rowcount

    def held_asset_ids(self) -> list[str]:
        rows = self.db.execute(
            """
            SELECT DISTINCT p.asset_id FROM positions p
            JOIN ledger_accounts a ON a.owner_id = p.owner_id AND a.kind = p.kind
            WHERE a.active = 1
            """
        )
        return [r["asset_id"] for r in rows]

    # =========================================================================
    # Trades
    # =========================================================================

    def apply_buy(
        self,
        owner_id: str,
        asset_id: str,
        shares: Any,
        price: Any,
        kind: str = PAPER,
        condition_id: str = "",
        title: Optional[str] = None,
        outcome: Optional[str] = None,
        source_account: Optional[str] = None,
        end_date: Optional[float] = None,
    ) -> Result:
        """
        Debit cash and add shares, blending the average entry price.

        Returns:
            Result with cost, shares, avg_price and cash on success;
            INSUFFICIENT_FUNDS if cash < shares * price.
        """
        qty = to_decimal(shares)
        px = to_decimal(price)
        if qty <= 0 or not ZERO < px <= Decimal("1"):
            return Result.fail(ErrorKind.INVALID_REQUEST, f"Invalid buy: {qty} shares @ {px}")

        cost = qty * px
        now = self._clock()

        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            account = self._fetch_account(conn, owner_id, kind)
            if account is None or not account.active:
                return Result.fail(ErrorKind.NO_PORTFOLIO, "No active portfolio")

            if account.cash < cost:
                return Result.fail(
                    ErrorKind.INSUFFICIENT_FUNDS,
                    f"Insufficient funds: need ${cost:.2f}, have ${account.cash:.2f}",
                )

            position = self._fetch_position(conn, owner_id, asset_id, kind)
            if position:
                new_shares = position.shares + qty
                new_avg = (position.shares * position.avg_price + cost) / new_shares
                conn.execute(
                    """
                    UPDATE positions
                    SET shares = ?, avg_price = ?, end_date = COALESCE(end_date, ?), updated_at = ?
                    WHERE owner_id = ? AND kind = ? AND asset_id = ?
                    """,
                    (str(new_shares), str(new_avg), end_date, now, owner_id, kind, asset_id),
                )
            else:
                new_shares, new_avg = qty, px
                conn.execute(
                    """
                    INSERT INTO positions
                        (owner_id, kind, asset_id, condition_id, shares, avg_price,
                         source_account, title, outcome, end_date, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        owner_id, kind, asset_id, condition_id, str(qty), str(px),
                        source_account, title, outcome, end_date, now, now,
                    ),
                )

            new_cash = account.cash - cost
            self._set_cash(conn, owner_id, kind, new_cash)
            self._append_snapshot(conn, owner_id, kind)

        logger.info(
            f"[{kind.upper()}] {owner_id} BUY {qty} @ {px} (${cost:.2f}), "
            f"position={new_shares} avg={new_avg:.4f}, cash=${new_cash:.2f}"
        )
        self._write_to_log({
            "event": "buy", "owner_id": owner_id, "kind": kind, "asset_id": asset_id,
            "shares": str(qty), "price": str(px), "cash_after": str(new_cash),
        })
        return Result.ok(
            "Buy applied",
            shares=qty,
            price=px,
            cost=cost,
            position_shares=new_shares,
            avg_price=new_avg,
            cash=new_cash,
        )

    def apply_sell(self, owner_id: str, asset_id: str, shares: Any, price: Any, kind: str = PAPER) -> Result:
        """
        Credit cash for min(requested, held) shares.

        Over-asks are not errors: whatever is held gets sold. Redemption
        calls this with all held shares at $1 or $0.

        Returns:
            Result with sold_shares, proceeds, realized_pnl, remaining_shares
            and cash; NO_POSITION if nothing is held.
        """
        qty = to_decimal(shares)
        px = to_decimal(price)
        if qty <= 0 or not ZERO <= px <= Decimal("1"):
            return Result.fail(ErrorKind.INVALID_REQUEST, f"Invalid sell: {qty} shares @ {px}")

        with self.db.get_connection() as conn:
            conn.execute("BEGIN IMMEDIATE")
            account = self._fetch_account(conn, owner_id, kind)
            if account is None or not account.active:
                return Result.fail(ErrorKind.NO_PORTFOLIO, "No active portfolio")

            position = self._fetch_position(conn, owner_id, asset_id, kind)
            if position is None:
                return Result.fail(ErrorKind.NO_POSITION, "No position to sell")

            sold = min(qty, position.shares)
            proceeds = sold * px
            realized = (px - position.avg_price) * sold
            remaining = position.shares - sold

            if remaining <= self.epsilon:
                conn.execute(
                    "DELETE FROM positions WHERE owner_id = ? AND kind = ? AND asset_id = ?",
                    (owner_id, kind, asset_id),
                )
                remaining = ZERO
            else:
                conn.execute(
                    "UPDATE positions SET shares = ?, updated_at = ? WHERE owner_id = ? AND kind = ? AND asset_id = ?",
                    (str(remaining), self._clock(), owner_id, kind, asset_id),
                )

            new_cash = account.cash + proceeds
            self._set_cash(conn, owner_id, kind, new_cash)
            self._append_snapshot(conn, owner_id, kind)

        logger.info(
            f"[{kind.upper()}] {owner_id} SELL {sold} @ {px} (${proceeds:.2f}), "
            f"realized=${realized:.2f}, remaining={remaining}, cash=${new_cash:.2f}"
        )
        self._write_to_log({
            "event": "sell", "owner_id": owner_id, "kind": kind, "asset_id": asset_id,
            "shares": str(sold), "price": str(px), "cash_after": str(new_cash),
        })
        return Result.ok(
            "Sell applied",
            sold_shares=sold,
            price=px,
            proceeds=proceeds,
            realized_pnl=realized,
            remaining_shares=remaining,
            cash=new_cash,
        )

    # =========================================================================
    # Valuation
    # =========================================================================

    def mark_price(self, position: Position) -> tuple[Decimal, bool]:
        """Current mark for a position and whether it came from market data."""
        price = self.prices.get(position.asset_id)
        if price is None and position.condition_id:
            price = self.prices.get(position.condition_id)
        if price is None:
            return position.avg_price, False
        return price, True

    def valuate(self, owner_id: str, kind: str = PAPER) -> Valuation:
        with self.db.get_connection() as conn:
            return self._valuate(conn, owner_id, kind)

    def get_positions_valued(self, owner_id: str, kind: str = PAPER) -> list[dict[str, Any]]:
        """Positions with current value, unrealized P&L and a has_price_data flag."""
        valued = []
        for position in self.get_positions(owner_id, kind):
            mark, has_price = self.mark_price(position)
            value = position.shares * mark
            cost = position.cost_basis
            valued.append({
                "asset_id": position.asset_id,
                "condition_id": position.condition_id,
                "title": position.title,
                "outcome": position.outcome,
                "shares": position.shares,
                "avg_price": position.avg_price,
                "current_price": mark,
                "current_value": value,
                "unrealized_pnl": value - cost,
                "unrealized_pnl_pct": ((value - cost) / cost * 100) if cost > 0 else ZERO,
                "has_price_data": has_price,
                "end_date": position.end_date,
            })
        return valued

    def get_pnl_summary(self, owner_id: str, kind: str = PAPER) -> dict[str, Any]:
        """
        Get comprehensive P&L summary.

        Returns:
            Dictionary with P&L breakdown (string amounts).
        """
        account = self.get_account(owner_id, kind)
        if account is None:
            return {}

        valuation = self.valuate(owner_id, kind)
        change = self.get_24h_pnl(owner_id, kind)
        return {
            "starting_balance": str(account.starting_balance),
            "cash": str(valuation.cash),
            "positions_value": str(valuation.positions_value),
            "total_value": str(valuation.total_value),
            "total_pnl": str(valuation.pnl),
            "return_pct": str(
                (valuation.pnl / account.starting_balance * 100) if account.starting_balance > 0 else ZERO
            ),
            "pnl_24h": str(change["pnl"]),
            "open_positions": valuation.priced_positions + valuation.unpriced_positions,
            "unpriced_positions": valuation.unpriced_positions,
            "active": account.active,
        }

    # =========================================================================
    # Snapshots
    # =========================================================================

    def take_snapshot(self, owner_id: str, kind: str = PAPER) -> Optional[Snapshot]:
        with self.db.get_connection() as conn:
            if self._fetch_account(conn, owner_id, kind) is None:
                return None
            return self._append_snapshot(conn, owner_id, kind)

    def take_interval_snapshots(self) -> int:
        """Snapshot every active account. Returns the number taken."""
        count = 0
        for account in self.list_accounts():
            if self.take_snapshot(account.owner_id, account.kind):
                count += 1
        logger.debug(f"Interval snapshots taken: {count}")
        return count

    def get_24h_pnl(self, owner_id: str, kind: str = PAPER) -> dict[str, Decimal]:
        """
        Value change over the last 24 hours.

        Compares against the latest snapshot at least 24h old; a younger
        account is compared against its starting balance.
        """
        cutoff = self._clock() - 86400
        current = self.valuate(owner_id, kind).total_value

        rows = self.db.execute(
            """
            SELECT total_value FROM snapshots
            WHERE owner_id = ? AND kind = ? AND created_at <= ?
            ORDER BY created_at DESC, id DESC LIMIT 1
            """,
            (owner_id, kind, cutoff),
        )
        if rows:
            reference = Decimal(rows[0]["total_value"])
        else:
            account = self.get_account(owner_id, kind)
            reference = account.starting_balance if account else ZERO

        pnl = current - reference
        pct = (pnl / reference * 100) if reference > 0 else ZERO
        return {"pnl": pnl, "pnl_pct": pct, "reference_value": reference, "current_value": current}

    def get_history(self, owner_id: str, days: int = 7, kind: str = PAPER) -> list[Snapshot]:
        """Last snapshot of each UTC day over the past `days` days, oldest first."""
        cutoff = self._clock() - days * 86400
        rows = self.db.execute(
            """
            SELECT * FROM snapshots
            WHERE owner_id = ? AND kind = ? AND created_at >= ?
            ORDER BY created_at, id
            """,
            (owner_id, kind, cutoff),
        )

        by_day: dict[str, Snapshot] = {}
        for row in rows:
            day = datetime.fromtimestamp(row["created_at"], tz=timezone.utc).date().isoformat()
            by_day[day] = Snapshot(
                owner_id=row["owner_id"],
                kind=row["kind"],
                total_value=Decimal(row["total_value"]),
                cash=Decimal(row["cash"]),
                positions_value=Decimal(row["positions_value"]),
                pnl=Decimal(row["pnl"]),
                created_at=row["created_at"],
            )
        return [by_day[day] for day in sorted(by_day)]

    # =========================================================================
    # Private Methods
    # =========================================================================

    @staticmethod
    def _fetch_account(conn, owner_id: str, kind: str) -> Optional[LedgerAccount]:
        row = conn.execute(
            "SELECT * FROM ledger_accounts WHERE owner_id = ? AND kind = ?", (owner_id, kind)
        ).fetchone()
        return _row_to_account(row) if row else None

    @staticmethod
    def _fetch_position(conn, owner_id: str, asset_id: str, kind: str) -> Optional[Position]:
        row = conn.execute(
            "SELECT * FROM positions WHERE owner_id = ? AND kind = ? AND asset_id = ?",
            (owner_id, kind, asset_id),
        ).fetchone()
        return _row_to_position(row) if row else None

    def _set_cash(self, conn, owner_id: str, kind: str, cash: Decimal) -> None:
        if cash < 0:
            raise LedgerInvariantError(f"Cash would go negative for {owner_id}/{kind}: {cash}")
        conn.execute(
            "UPDATE ledger_accounts SET cash = ?, updated_at = ? WHERE owner_id = ? AND kind = ?",
            (str(cash), self._clock(), owner_id, kind),
        )

    def _valuate(self, conn, owner_id: str, kind: str) -> Valuation:
        account = self._fetch_account(conn, owner_id, kind)
        if account is None:
            return Valuation(cash=ZERO, positions_value=ZERO, total_value=ZERO, pnl=ZERO)

        rows = conn.execute(
            "SELECT * FROM positions WHERE owner_id = ? AND kind = ?", (owner_id, kind)
        ).fetchall()

        positions_value = ZERO
        priced = unpriced = 0
        for row in rows:
            position = _row_to_position(row)
            mark, has_price = self.mark_price(position)
            positions_value += position.shares * mark
            if has_price:
                priced += 1
            else:
                unpriced += 1

        total = account.cash + positions_value
        return Valuation(
            cash=account.cash,
            positions_value=positions_value,
            total_value=total,
            pnl=total - account.starting_balance,
            priced_positions=priced,
            unpriced_positions=unpriced,
        )

    def _append_snapshot(self, conn, owner_id: str, kind: str) -> Snapshot:
        valuation = self._valuate(conn, owner_id, kind)
        snapshot = Snapshot(
            owner_id=owner_id,
            kind=kind,
            total_value=valuation.total_value,
            cash=valuation.cash,
            positions_value=valuation.positions_value,
            pnl=valuation.pnl,
            created_at=self._clock(),
        )
        conn.execute(
            """
            INSERT INTO snapshots (owner_id, kind, total_value, cash, positions_value, pnl, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                owner_id, kind, str(snapshot.total_value), str(snapshot.cash),
                str(snapshot.positions_value), str(snapshot.pnl), snapshot.created_at,
            ),
        )
        return snapshot

    def _write_to_log(self, data: dict[str, Any]) -> None:
        """Append a ledger event to the JSONL journal, if configured."""
        if self.journal_path is None:
            return
        entry = {"timestamp": datetime.now(timezone.utc).isoformat(), **data}
        try:
            self.journal_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.journal_path, "a") as f:
                f.write(json.dumps(entry) + "\n")
        except Exception as e:
            logger.warning(f"Failed to write to ledger journal: {e}")
