"""
Domain models for the exchange gateway.

These are the core business objects passed between the gateway components.
All timestamps use UTC timezone-aware datetimes; all money and size values
are Decimal.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, Optional

from delta_gateway.exceptions import InvalidCredentialFormat


class Side(str, Enum):
    """Position side."""
    LONG = "long"
    SHORT = "short"

    @property
    def closing_order_side(self) -> "OrderSide":
        """Order side that flattens a position on this side."""
        return OrderSide.SELL if self is Side.LONG else OrderSide.BUY


class OrderSide(str, Enum):
    """Order side as sent to the venue."""
    BUY = "buy"
    SELL = "sell"

    @property
    def position_side(self) -> Side:
        return Side.LONG if self is OrderSide.BUY else Side.SHORT


class OrderType(str, Enum):
    """Order type."""
    MARKET = "market_order"
    LIMIT = "limit_order"


class PositionStatus(str, Enum):
    """Position lifecycle status."""
    OPEN = "open"
    CLOSED = "closed"


class SessionState(str, Enum):
    """Gateway session lifecycle. ERROR carries its reason on the controller."""
    UNINITIALIZED = "uninitialized"
    VERIFYING = "verifying"
    ACTIVE = "active"
    STOPPED = "stopped"
    ERROR = "error"


class KillSwitchMode(str, Enum):
    """Kill switch severities."""
    PREVENT_NEW = "prevent_new"
    CLOSE_ALL = "close_all"
    BOTH = "both"


def _looks_unset(value: str) -> bool:
    return value.startswith("${") or value.strip() != value or any(c.isspace() for c in value)


@dataclass(frozen=True)
class Credential:
    """
    API credential for one venue account.

    Immutable for the lifetime of a gateway. Validated on construction so a
    malformed key never reaches the network.
    """
    key: str
    secret: str = field(repr=False)
    base_url: str

    def __post_init__(self):
        """Validate credential format."""
        if not self.key or _looks_unset(self.key):
            raise InvalidCredentialFormat("API key is empty, unexpanded or contains whitespace")
        if not self.secret or _looks_unset(self.secret):
            raise InvalidCredentialFormat("API secret is empty, unexpanded or contains whitespace")
        if not self.base_url.startswith(("https://", "http://")):
            raise InvalidCredentialFormat(f"Base URL must be http(s): {self.base_url!r}")


@dataclass(frozen=True)
class SignedRequest:
    """
    One signed dispatch attempt. Never reused across retries.
    """
    method: str
    path: str  # canonical signing path, /v2 prefixed, query included
    body: str
    timestamp: int
    signature: str = field(repr=False)


@dataclass(frozen=True)
class ClockOffset:
    """Snapshot of the estimated venue clock offset."""
    offset_seconds: int
    last_synced_at: Optional[datetime]


@dataclass(frozen=True)
class ClockDiagnostics:
    """Clock state attached to retry exhaustion for post-mortem."""
    offset_seconds: int
    last_synced_at: Optional[datetime]
    last_request_time: Optional[int]
    last_server_time: Optional[int]
    detected_skew_seconds: Optional[int]
    buffer_seconds: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "offset_seconds": self.offset_seconds,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
            "last_request_time": self.last_request_time,
            "last_server_time": self.last_server_time,
            "detected_skew_seconds": self.detected_skew_seconds,
            "buffer_seconds": self.buffer_seconds,
        }


@dataclass(frozen=True)
class OrderRequest:
    """
    Intent to place an order. Transient, never stored.
    """
    product_id: int
    side: OrderSide
    quantity: Decimal
    order_type: OrderType = OrderType.MARKET
    symbol: str = ""
    limit_price: Optional[Decimal] = None
    stop_price: Optional[Decimal] = None
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    strategy: Optional[str] = None
    reduce_only: bool = False

    def __post_init__(self):
        """Validate order request."""
        object.__setattr__(self, "quantity", Decimal(str(self.quantity)))
        if self.quantity <= 0:
            raise ValueError(f"Order quantity must be positive, got {self.quantity}")
        if self.order_type is OrderType.LIMIT and self.limit_price is None:
            raise ValueError("Limit orders require limit_price")

    def to_payload(self) -> Dict[str, Any]:
        """Venue order body."""
        size = self.quantity
        payload: Dict[str, Any] = {
            "product_id": self.product_id,
            "size": int(size) if size == size.to_integral_value() else str(size),
            "side": self.side.value,
            "order_type": self.order_type.value,
        }
        if self.limit_price is not None:
            payload["limit_price"] = str(self.limit_price)
        if self.stop_price is not None:
            payload["stop_price"] = str(self.stop_price)
        if self.reduce_only:
            payload["reduce_only"] = True
        return payload


@dataclass
class Position:
    """
    Locally tracked position. The venue remains the source of truth;
    this is an advisory cache refreshed for pnl.
    """
    id: str
    symbol: str
    product_id: int
    side: Side
    entry_price: Decimal
    quantity: Decimal
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
    pnl: Decimal = Decimal("0")
    status: PositionStatus = PositionStatus.OPEN
    strategy: Optional[str] = None
    opened_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    closed_at: Optional[datetime] = None

    @property
    def is_open(self) -> bool:
        return self.status is PositionStatus.OPEN

    @property
    def exposure(self) -> Decimal:
        """Absolute notional at entry."""
        return abs(self.quantity * self.entry_price)


@dataclass(frozen=True)
class RiskMetrics:
    """
    Derived risk figures. A pure function of the open positions; never stored.
    """
    current_drawdown_pct: Decimal
    max_drawdown_pct: Decimal
    total_equity: Decimal
    exposure_pct: Decimal
    total_exposure: Decimal = Decimal("0")

    @property
    def limit_breached(self) -> bool:
        return self.current_drawdown_pct >= self.max_drawdown_pct


@dataclass(frozen=True)
class EmptyResult:
    """
    Degraded result of an idempotent read that failed.

    Falsy, so read paths can do ``if not result:``. The cause is kept for
    observability.
    """
    method: str
    path: str
    error: Optional[BaseException] = None

    def __bool__(self) -> bool:
        return False

    def __iter__(self):
        return iter(())

    def __len__(self) -> int:
        return 0


@dataclass(frozen=True)
class CredentialCheck:
    """Outcome of a credential diagnostic probe."""
    valid: bool
    error_kind: Optional[str] = None
    message: str = ""
    offset_seconds: int = 0


class SignalAction(str, Enum):
    """Black-box strategy output."""
    BUY = "BUY"
    SELL = "SELL"
    NEUTRAL = "NEUTRAL"


@dataclass(frozen=True)
class StrategySignal:
    """What a strategy wants done on this evaluation."""
    action: SignalAction
    reason: str = ""
    stop_loss: Optional[Decimal] = None
    take_profit: Optional[Decimal] = None
