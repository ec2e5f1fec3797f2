"""Database connection and initialization."""
import logging
import sqlite3
from pathlib import Path
from typing import Optional
from contextlib import contextmanager

from ..config import DB_FULL_PATH

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS subscriptions (
    subscriber_id TEXT NOT NULL,
    source_account TEXT NOT NULL,
    mode TEXT NOT NULL DEFAULT 'paper',
    created_at REAL NOT NULL,
    PRIMARY KEY (subscriber_id, source_account)
);
CREATE INDEX IF NOT EXISTS idx_subscriptions_source ON subscriptions(source_account);

CREATE TABLE IF NOT EXISTS risk_configs (
    subscriber_id TEXT PRIMARY KEY,
    copy_percentage TEXT NOT NULL,
    max_trade_size TEXT,
    daily_limit TEXT,
    max_per_market TEXT,
    enabled INTEGER NOT NULL DEFAULT 0,
    updated_at REAL NOT NULL
);

CREATE TABLE IF NOT EXISTS ignore_patterns (
    subscriber_id TEXT NOT NULL,
    pattern TEXT NOT NULL,
    created_at REAL NOT NULL,
    PRIMARY KEY (subscriber_id, pattern)
);

CREATE TABLE IF NOT EXISTS ledger_accounts (
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'paper',
    cash TEXT NOT NULL,
    starting_balance TEXT NOT NULL,
    active INTEGER NOT NULL DEFAULT 1,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    PRIMARY KEY (owner_id, kind)
);

CREATE TABLE IF NOT EXISTS positions (
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'paper',
    asset_id TEXT NOT NULL,
    condition_id TEXT NOT NULL,
    shares TEXT NOT NULL,
    avg_price TEXT NOT NULL,
    source_account TEXT,
    title TEXT,
    outcome TEXT,
    end_date REAL,
    created_at REAL NOT NULL,
    updated_at REAL NOT NULL,
    UNIQUE (owner_id, kind, asset_id)
);
CREATE INDEX IF NOT EXISTS idx_positions_condition ON positions(condition_id);

CREATE TABLE IF NOT EXISTS snapshots (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id TEXT NOT NULL,
    kind TEXT NOT NULL DEFAULT 'paper',
    total_value TEXT NOT NULL,
    cash TEXT NOT NULL,
    positions_value TEXT NOT NULL,
    pnl TEXT NOT NULL,
    created_at REAL NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_snapshots_owner ON snapshots(owner_id, kind, created_at);

CREATE TABLE IF NOT EXISTS replicas (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    subscriber_id TEXT NOT NULL,
    dedup_key TEXT NOT NULL,
    mode TEXT NOT NULL,
    source_account TEXT,
    asset_id TEXT,
    condition_id TEXT,
    title TEXT,
    outcome TEXT,
    side TEXT NOT NULL,
    requested_size TEXT NOT NULL DEFAULT '0',
    shares TEXT NOT NULL DEFAULT '0',
    price TEXT NOT NULL DEFAULT '0',
    status TEXT NOT NULL DEFAULT 'pending',
    order_ref TEXT,
    error_kind TEXT,
    error_reason TEXT,
    created_at REAL NOT NULL,
    executed_at REAL,
    UNIQUE (subscriber_id, dedup_key)
);
CREATE INDEX IF NOT EXISTS idx_replicas_subscriber ON replicas(subscriber_id, created_at);
"""


class Database:
    """SQLite database manager."""

    def __init__(self, db_path: Optional[Path] = None, timeout: float = 10.0):
        self.db_path = db_path or DB_FULL_PATH
        self.timeout = timeout
        self._initialized = False

    @contextmanager
    def get_connection(self):
        """Context manager for database connections.

        Everything executed on the yielded connection is one transaction:
        committed on normal exit, rolled back if the block raises.
        """
        conn = sqlite3.connect(str(self.db_path), timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def initialize(self):
        """Create tables and indexes if they do not exist."""
        if self._initialized:
            return

        with self.get_connection() as conn:
            conn.executescript(SCHEMA)

        self._initialized = True
        logger.info(f"Database initialized: {self.db_path}")

    def execute(self, query: str, params: tuple = ()):
        """Execute a single query."""
        with self.get_connection() as conn:
            cursor = conn.cursor()
            cursor.execute(query, params)
            return cursor.fetchall()
