"""
Copy-trading replication and portfolio accounting.

This module provides:
- EventNormalizer / DedupCache: Raw feed trades to canonical TradeEvents
- SubscriptionRegistry: Who follows whom, risk settings, ignore lists
- SizingEngine / RiskGate: How much to copy and whether it is allowed
- ExecutionRouter: Recommend, paper or auto execution
- VirtualLedger: Cash, positions, valuation and snapshots
- Replicator: Per-subscriber fan-out with durable idempotency
- Reconciler: Settlement of resolved markets
- CopyTradeService: Wiring and background tasks

Usage:
    from src.copytrade import CopyTradeService, SubscriptionMode

    service = CopyTradeService.create()
    service.registry.subscribe("alice", "0xsource...", SubscriptionMode.PAPER)
    service.ledger.open_account("alice", 1000)
    results = await service.handle_trade(raw_trade)
"""

from .ledger import PAPER, REAL, LedgerAccount, Position, Snapshot, Valuation, VirtualLedger
from .locks import OwnerLocks
from .models import (
    CopyTradeError,
    ErrorKind,
    LedgerInvariantError,
    ReplicaRecord,
    ReplicaStatus,
    Result,
    RiskConfig,
    Side,
    Subscription,
    SubscriptionMode,
    TradeEvent,
)
from .normalizer import DedupCache, EventNormalizer, make_dedup_key
from .notifier import LoggingNotifier, Notifier
from .price_cache import PriceCache
from .reconciler import Reconciler
from .registry import SubscriptionRegistry
from .replicas import ReplicaStore
from .replicator import Replicator
from .risk_gate import RiskGate
from .router import ApprovedTrade, ExecutionRouter
from .scheduler import PeriodicTask
from .service import CopyTradeService
from .sizing import SizingEngine

__all__ = [
    # Records and results
    "TradeEvent",
    "Subscription",
    "SubscriptionMode",
    "RiskConfig",
    "ReplicaRecord",
    "ReplicaStatus",
    "Result",
    "ErrorKind",
    "Side",
    # Exceptions
    "CopyTradeError",
    "LedgerInvariantError",
    # Pipeline
    "DedupCache",
    "EventNormalizer",
    "make_dedup_key",
    "SubscriptionRegistry",
    "SizingEngine",
    "RiskGate",
    "ApprovedTrade",
    "ExecutionRouter",
    "Replicator",
    "ReplicaStore",
    "OwnerLocks",
    # Accounting
    "VirtualLedger",
    "LedgerAccount",
    "Position",
    "Snapshot",
    "Valuation",
    "PriceCache",
    "PAPER",
    "REAL",
    # Background work
    "Reconciler",
    "PeriodicTask",
    "Notifier",
    "LoggingNotifier",
    "CopyTradeService",
]
