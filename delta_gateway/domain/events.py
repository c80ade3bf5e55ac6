"""
Gateway event schemas and the in-process event bus.

The gateway holds no durable state. Persistence, notification and UI layers
learn about trades and lifecycle changes by subscribing to these events.
"""
import asyncio
import inspect
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class GatewayEvent:
    """Base event. event_type is the wire name subscribers switch on."""
    event_type = "gateway_event"

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        for k, v in data.items():
            if isinstance(v, datetime):
                data[k] = v.isoformat()
            elif isinstance(v, Decimal):
                data[k] = str(v)
        data["event_type"] = self.event_type
        return data


@dataclass(frozen=True)
class TradeExecuted(GatewayEvent):
    """An order was accepted by the venue."""
    event_type = "TradeExecuted"

    order_id: str
    product_id: int
    symbol: str
    side: str
    quantity: Decimal
    price: Optional[Decimal]
    purpose: str  # "open" or "close"
    position_id: Optional[str] = None
    strategy: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class TradeFailed(GatewayEvent):
    """An order (or the attempt to reach one) failed."""
    event_type = "TradeFailed"

    product_id: Optional[int]
    symbol: str
    side: Optional[str]
    error_kind: str
    message: str
    purpose: str
    position_id: Optional[str] = None
    strategy: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class StrategyStarted(GatewayEvent):
    event_type = "StrategyStarted"

    strategy: str
    symbol: str
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class StrategyStopped(GatewayEvent):
    event_type = "StrategyStopped"

    strategy: str
    symbol: str
    reason: str = ""
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class SessionStateChanged(GatewayEvent):
    event_type = "SessionStateChanged"

    previous: str
    current: str
    reason: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)


@dataclass(frozen=True)
class KillSwitchActivated(GatewayEvent):
    event_type = "KillSwitchActivated"

    mode: str
    closed_positions: int = 0
    failed_positions: int = 0
    timestamp: datetime = field(default_factory=_utcnow)


Subscriber = Callable[[GatewayEvent], Any]


class EventBus:
    """
    Fan-out of gateway events to subscribers.

    Subscribers may be plain callables or coroutine functions. A subscriber
    failure is logged and never propagates into the trading path.
    """

    def __init__(self):
        self._subscribers: List[Subscriber] = []

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        """Register a subscriber. Returns an unsubscribe callable."""
        self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

        return _unsubscribe

    async def publish(self, event: GatewayEvent) -> None:
        logger.debug("Event published", event_type=event.event_type)
        for subscriber in list(self._subscribers):
            try:
                result = subscriber(event)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning(
                    "Event subscriber failed (non-fatal)",
                    event_type=event.event_type,
                    subscriber=getattr(subscriber, "__name__", repr(subscriber)),
                    error=str(e),
                    error_type=type(e).__name__,
                )
