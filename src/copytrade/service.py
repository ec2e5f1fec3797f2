"""
Copy-trading service: wires the pipeline together and owns its background tasks.

    raw feed event
        -> EventNormalizer (validation + dedup fast path)
        -> Replicator (per subscriber: size, gate, execute, record)
        -> VirtualLedger / ExecutionAdapter
    Reconciler (periodic) settles resolved markets.

Example:
    >>> service = CopyTradeService.create(db_path=Path("data/copytrade.db"))
    >>> service.registry.subscribe("alice", "0xsource...", SubscriptionMode.PAPER)
    >>> service.ledger.open_account("alice", 1000)
    >>> await service.start()
    >>> results = await service.handle_trade(raw_event)
    >>> await service.stop()
"""

import logging
import time
from pathlib import Path
from typing import Any, Optional

from ..api.clob import ClobPublicClient
from ..api.gamma import GammaClient
from ..config import (
    DEDUP_CACHE_CAPACITY,
    LOGS_DIR,
    RECONCILE_INTERVAL_SECONDS,
    SNAPSHOT_INTERVAL_SECONDS,
    TEST_MODE,
)
from ..exchanges.base import ExecutionAdapter
from ..storage.db import Database
from .ledger import VirtualLedger
from .locks import OwnerLocks
from .models import Result
from .normalizer import DedupCache, EventNormalizer
from .notifier import LoggingNotifier, Notifier
from .price_cache import PriceCache
from .reconciler import Reconciler
from .registry import SubscriptionRegistry
from .replicas import ReplicaStore
from .replicator import Replicator
from .risk_gate import RiskGate
from .router import ExecutionRouter
from .scheduler import PeriodicTask
from .sizing import SizingEngine

logger = logging.getLogger(__name__)


class CopyTradeService:
    """
    Long-running copy-trading core.

    All collaborators are injectable; create() builds the production wiring.
    """

    def __init__(
        self,
        db: Database,
        registry: SubscriptionRegistry,
        ledger: VirtualLedger,
        store: ReplicaStore,
        normalizer: EventNormalizer,
        replicator: Replicator,
        reconciler: Reconciler,
        reconcile_interval: float = RECONCILE_INTERVAL_SECONDS,
        snapshot_interval: float = SNAPSHOT_INTERVAL_SECONDS,
    ):
        self.db = db
        self.registry = registry
        self.ledger = ledger
        self.store = store
        self.normalizer = normalizer
        self.replicator = replicator
        self.reconciler = reconciler

        self._tasks = [
            PeriodicTask("reconcile", reconcile_interval, self.reconciler.run_once),
            PeriodicTask("snapshots", snapshot_interval, self._take_snapshots),
        ]
        self.events_seen = 0
        self.events_replicated = 0
        self.start_time: Optional[float] = None

    @classmethod
    def create(
        cls,
        db_path: Optional[Path] = None,
        adapter: Optional[ExecutionAdapter] = None,
        notifier: Optional[Notifier] = None,
        clob: Optional[ClobPublicClient] = None,
        gamma: Optional[GammaClient] = None,
        test_mode: bool = TEST_MODE,
        journal_path: Optional[Path] = None,
        gate_config: Optional[dict[str, Any]] = None,
    ) -> "CopyTradeService":
        """Build a service with the default component graph."""
        db = Database(db_path)
        db.initialize()

        clob = clob or ClobPublicClient()
        gamma = gamma or GammaClient()
        notifier = notifier or LoggingNotifier()
        locks = OwnerLocks()
        prices = PriceCache()

        registry = SubscriptionRegistry(db, test_mode=test_mode)
        store = ReplicaStore(db)
        ledger = VirtualLedger(db, prices=prices, journal_path=journal_path or LOGS_DIR / "ledger_journal.jsonl")
        gate = RiskGate(store, registry, config=gate_config)
        router = ExecutionRouter(ledger, adapter=adapter, notifier=notifier)

        replicator = Replicator(
            registry=registry,
            store=store,
            sizing=SizingEngine(),
            gate=gate,
            router=router,
            ledger=ledger,
            prices=prices,
            price_source=clob,
            market_lookup=gamma,
            adapter=adapter,
            locks=locks,
        )
        reconciler = Reconciler(
            ledger,
            store,
            resolver=clob,
            market_lookup=gamma,
            price_source=clob,
            prices=prices,
            locks=locks,
            notifier=notifier,
        )
        normalizer = EventNormalizer(DedupCache(DEDUP_CACHE_CAPACITY))

        return cls(db, registry, ledger, store, normalizer, replicator, reconciler)

    async def handle_trade(self, raw: dict[str, Any], source_account: Optional[str] = None) -> dict[str, Result]:
        """
        Process one raw feed event.

        Returns:
            Result per subscriber; empty if the event was invalid, a repeat,
            or nobody follows its account.
        """
        self.events_seen += 1
        event = self.normalizer.observe(raw, source_account)
        if event is None:
            return {}

        results = await self.replicator.process(event)
        if results:
            self.events_replicated += 1
        return results

    async def start(self) -> None:
        """Run one reconciliation pass, then schedule the periodic tasks."""
        self.start_time = time.time()
        logger.info("Starting copy-trade service: running startup reconciliation")
        try:
            await self.reconciler.run_once()
        except Exception as e:
            logger.error(f"Startup reconciliation failed: {e}", exc_info=True)

        for task in self._tasks:
            task.start()

    async def stop(self) -> None:
        for task in self._tasks:
            await task.stop()
        logger.info("Copy-trade service stopped")

    async def _take_snapshots(self) -> int:
        return self.ledger.take_interval_snapshots()

    def get_status(self) -> dict[str, Any]:
        """
        Get service status.

        Returns:
            Dictionary with counters, task state and reconciler status
        """
        return {
            "uptime_seconds": int(time.time() - self.start_time) if self.start_time else 0,
            "events_seen": self.events_seen,
            "events_replicated": self.events_replicated,
            "dedup_cache_size": len(self.normalizer.cache),
            "followed_accounts": len(self.registry.followed_accounts()),
            "active_accounts": len(self.ledger.list_accounts()),
            "tasks": {
                t.name: {"running": t.is_running, "runs": t.run_count, "last_error": t.last_error}
                for t in self._tasks
            },
            "price_cache": self.replicator.prices.stats(),
            "ledger_sync_failures": self.replicator.router.ledger_sync_failures,
            "reconciler": self.reconciler.get_status(),
        }
