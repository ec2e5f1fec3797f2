"""
Core records and the Result contract for the copy-trading pipeline.

Every expected business outcome (limits hit, price moved, no liquidity ...)
is returned as a Result carrying an ErrorKind, never raised. Exceptions are
reserved for broken invariants and programming errors.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from ..exchanges.base import OrderSide

Side = OrderSide

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Convert floats, ints and strings to Decimal without binary noise."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def optional_decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    return to_decimal(value)


class SubscriptionMode(Enum):
    """How a subscriber follows a source account."""

    PAPER = "paper"
    RECOMMEND = "recommend"
    AUTO = "auto"

    def __str__(self) -> str:
        return self.value


class ReplicaStatus(Enum):
    """Replica record lifecycle. Only PENDING is non-terminal."""

    PENDING = "pending"
    EXECUTED = "executed"
    FAILED = "failed"
    SKIPPED = "skipped"

    def __str__(self) -> str:
        return self.value

    @property
    def is_terminal(self) -> bool:
        return self != ReplicaStatus.PENDING


class ErrorKind(Enum):
    """Expected failure outcomes of a replication attempt."""

    INSUFFICIENT_FUNDS = "insufficient_funds"
    NO_POSITION = "no_position"
    DAILY_LIMIT_EXCEEDED = "daily_limit_exceeded"
    MARKET_LIMIT_REACHED = "market_limit_reached"
    PRICE_MOVED = "price_moved"
    NO_LIQUIDITY = "no_liquidity"
    MARKET_IGNORED = "market_ignored"
    MISSING_ASSET_REFERENCE = "missing_asset_reference"
    ADAPTER_FAILURE = "adapter_failure"
    TIMEOUT = "timeout"
    TOO_SMALL = "too_small"
    COPY_DISABLED = "copy_disabled"
    NO_PORTFOLIO = "no_portfolio"
    PRICE_UNAVAILABLE = "price_unavailable"
    DUPLICATE = "duplicate"
    INVALID_REQUEST = "invalid_request"

    def __str__(self) -> str:
        return self.value

    @property
    def terminal_status(self) -> ReplicaStatus:
        """Status a replica record takes when it ends with this error."""
        if self in _FAILED_KINDS:
            return ReplicaStatus.FAILED
        return ReplicaStatus.SKIPPED

    @property
    def retryable(self) -> bool:
        """True when trying again later may succeed without any change."""
        return self in (ErrorKind.TIMEOUT, ErrorKind.ADAPTER_FAILURE, ErrorKind.PRICE_UNAVAILABLE)


_FAILED_KINDS = frozenset({
    ErrorKind.INSUFFICIENT_FUNDS,
    ErrorKind.MISSING_ASSET_REFERENCE,
    ErrorKind.ADAPTER_FAILURE,
    ErrorKind.TIMEOUT,
    ErrorKind.INVALID_REQUEST,
})


@dataclass
class Result:
    """
    Uniform success/failure return value.

    Attributes:
        success: Whether the operation succeeded.
        error: Error kind when success is False.
        message: Human-readable explanation (error reason or summary).
        data: Operation payload (e.g. sized amount, fill details).
    """

    success: bool
    error: Optional[ErrorKind] = None
    message: str = ""
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, message: str = "OK", **data: Any) -> "Result":
        return cls(success=True, message=message, data=data)

    @classmethod
    def fail(cls, error: ErrorKind, message: str, **data: Any) -> "Result":
        return cls(success=False, error=error, message=message, data=data)

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "error": str(self.error) if self.error else None,
            "message": self.message,
            "data": {k: str(v) if isinstance(v, Decimal) else v for k, v in self.data.items()},
        }


@dataclass(frozen=True)
class TradeEvent:
    """
    Canonical, immutable view of one observed source trade.

    Attributes:
        source_account: Wallet that made the trade.
        asset_id: Outcome token id (may be empty if the feed omitted it).
        condition_id: Market condition id.
        side: Buy or sell.
        shares: Number of outcome shares traded.
        price: Price per share in [0, 1].
        title: Market title.
        outcome: Outcome label (e.g. "Yes").
        timestamp: Trade time as unix seconds.
        dedup_key: Stable key "<transaction hash>-<event id>".
        outcome_index: Outcome position, used to recover a missing asset id.
    """

    source_account: str
    asset_id: str
    condition_id: str
    side: Side
    shares: Decimal
    price: Decimal
    title: str
    outcome: str
    timestamp: float
    dedup_key: str
    outcome_index: Optional[int] = None

    @property
    def value(self) -> Decimal:
        """Dollar value of the source trade."""
        return self.shares * self.price


@dataclass
class Subscription:
    """A subscriber following a source account."""

    subscriber_id: str
    source_account: str
    mode: SubscriptionMode = SubscriptionMode.PAPER
    created_at: Optional[float] = None


@dataclass
class RiskConfig:
    """
    Per-subscriber replication limits.

    Attributes:
        subscriber_id: Owner of the settings.
        copy_percentage: Share of balance (or of the source trade) to copy, 1-200.
        max_trade_size: Cap per replica in USD (None = no cap).
        daily_limit: Cap on executed BUY value per UTC day (None = no cap).
        max_per_market: Cap on executed BUY value per market (None = no cap).
        enabled: Whether auto copy trading is switched on.
        ignore_patterns: Lowercased market-title substrings to skip.
    """

    subscriber_id: str
    copy_percentage: Decimal = Decimal("10")
    max_trade_size: Optional[Decimal] = Decimal("10")
    daily_limit: Optional[Decimal] = Decimal("100")
    max_per_market: Optional[Decimal] = Decimal("25")
    enabled: bool = False
    ignore_patterns: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.copy_percentage = to_decimal(self.copy_percentage)
        self.max_trade_size = optional_decimal(self.max_trade_size)
        self.daily_limit = optional_decimal(self.daily_limit)
        self.max_per_market = optional_decimal(self.max_per_market)
        if not Decimal("1") <= self.copy_percentage <= Decimal("200"):
            raise ValueError(f"copy_percentage must be between 1 and 200, got {self.copy_percentage}")
        for name in ("max_trade_size", "daily_limit", "max_per_market"):
            limit = getattr(self, name)
            if limit is not None and limit <= 0:
                raise ValueError(f"{name} must be positive, got {limit}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscriber_id": self.subscriber_id,
            "copy_percentage": str(self.copy_percentage),
            "max_trade_size": str(self.max_trade_size) if self.max_trade_size is not None else None,
            "daily_limit": str(self.daily_limit) if self.daily_limit is not None else None,
            "max_per_market": str(self.max_per_market) if self.max_per_market is not None else None,
            "enabled": self.enabled,
            "ignore_patterns": list(self.ignore_patterns),
        }


@dataclass
class ReplicaRecord:
    """
    One subscriber's attempt to replicate one source trade.

    requested_size is in USD for BUY and in shares for SELL/REDEEM; shares and
    price hold the actual executed quantity once the record is executed.
    """

    subscriber_id: str
    dedup_key: str
    mode: str
    side: str
    status: ReplicaStatus = ReplicaStatus.PENDING
    requested_size: Decimal = ZERO
    shares: Decimal = ZERO
    price: Decimal = ZERO
    source_account: Optional[str] = None
    asset_id: Optional[str] = None
    condition_id: Optional[str] = None
    title: Optional[str] = None
    outcome: Optional[str] = None
    order_ref: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    error_reason: Optional[str] = None
    created_at: Optional[float] = None
    executed_at: Optional[float] = None
    id: Optional[int] = None

    @property
    def value(self) -> Decimal:
        return self.shares * self.price

    def to_result(self) -> Result:
        """Express the record's terminal state through the Result contract."""
        if self.status == ReplicaStatus.EXECUTED:
            return Result.ok(
                f"{self.side} {self.shares} shares @ {self.price}",
                record_id=self.id,
                shares=self.shares,
                price=self.price,
                order_ref=self.order_ref,
            )
        if self.status == ReplicaStatus.PENDING:
            return Result.fail(ErrorKind.DUPLICATE, "Replica already in progress", record_id=self.id)
        return Result.fail(
            self.error_kind or ErrorKind.ADAPTER_FAILURE,
            self.error_reason or str(self.status),
            record_id=self.id,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "subscriber_id": self.subscriber_id,
            "dedup_key": self.dedup_key,
            "mode": self.mode,
            "side": self.side,
            "status": str(self.status),
            "requested_size": str(self.requested_size),
            "shares": str(self.shares),
            "price": str(self.price),
            "title": self.title,
            "outcome": self.outcome,
            "order_ref": self.order_ref,
            "error_reason": self.error_reason,
            "created_at": self.created_at,
            "executed_at": self.executed_at,
        }


class CopyTradeError(Exception):
    """Base exception for copy-trading invariant and programming errors."""

    pass


class LedgerInvariantError(CopyTradeError):
    """Raised when stored ledger state violates an accounting invariant."""

    pass
