"""
Position ledger: local, advisory record of positions opened through the gateway.

The venue is the source of truth. The ledger only:
- records a position when its opening order is accepted
- marks it closed when the opposing market order is accepted
- refreshes pnl on positions it already knows (by id)

It never creates positions from the venue snapshot.
"""
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional, Set

from delta_gateway.domain.events import EventBus, TradeExecuted, TradeFailed
from delta_gateway.domain.models import (
    EmptyResult,
    OrderRequest,
    OrderType,
    Position,
    PositionStatus,
    RiskMetrics,
)
from delta_gateway.exceptions import GatewayError, NetworkOrVenueError, PositionNotOpen
from delta_gateway.exchange.delta_client import DeltaClient
from delta_gateway.monitoring.logger import get_logger
from delta_gateway.risk.risk_engine import RiskEngine
from delta_gateway.runtime.session import SessionController

logger = get_logger(__name__)


def _decimal(value: Any) -> Optional[Decimal]:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _entry_price(order: Dict[str, Any], request: OrderRequest) -> Decimal:
    for key in ("average_fill_price", "limit_price", "price"):
        price = _decimal(order.get(key))
        if price is not None and price > 0:
            return price
    if request.limit_price is not None:
        return request.limit_price
    logger.warning("Order response carried no price, entry recorded as 0", order_id=order.get("id"))
    return Decimal("0")


class PositionLedger:
    """
    Open/close/refresh of gateway-owned positions, gated by session and risk.
    """

    def __init__(
        self,
        client: DeltaClient,
        session: SessionController,
        risk_engine: RiskEngine,
        events: Optional[EventBus] = None,
    ):
        self.client = client
        self.session = session
        self.risk_engine = risk_engine
        self.events = events or EventBus()
        self._positions: Dict[str, Position] = {}
        self._closing: Set[str] = set()

    # -- queries -------------------------------------------------------------

    def get(self, position_id: str) -> Optional[Position]:
        return self._positions.get(position_id)

    def all_positions(self) -> List[Position]:
        return list(self._positions.values())

    def open_positions(self) -> List[Position]:
        return [p for p in self._positions.values() if p.is_open]

    def risk_metrics(self) -> RiskMetrics:
        return self.risk_engine.compute(self._positions.values())

    # -- commands ------------------------------------------------------------

    async def open_position(self, request: OrderRequest) -> Position:
        """
        Open a position.

        Order of checks: session gate, drawdown gate, then the order. The
        first two never touch the network.

        Raises:
            SessionInactive: Session not Active
            RiskLimitExceeded: Drawdown at or above the limit
            GatewayError: Order failed at the venue (after TradeFailed is published)
            NetworkOrVenueError: Order acknowledged without an id (nothing recorded)
        """
        self.session.require_active("open_position")
        self.risk_engine.check_can_open(self._positions.values())

        try:
            order = await self.client.place_order(request)
        except GatewayError as e:
            logger.error(
                "Open position failed",
                product_id=request.product_id,
                side=request.side.value,
                error_kind=e.kind,
                error=str(e),
            )
            await self.events.publish(TradeFailed(
                product_id=request.product_id,
                symbol=request.symbol,
                side=request.side.value,
                error_kind=e.kind,
                message=str(e),
                purpose="open",
                strategy=request.strategy,
            ))
            raise

        order_id = order.get("id")
        if order_id is None or str(order_id).strip() == "":
            error = NetworkOrVenueError(
                "Order accepted without an order id, position not recorded",
                payload=order,
            )
            logger.error(
                "Open position unrecorded: order acknowledgement has no id",
                product_id=request.product_id,
                side=request.side.value,
                payload=order,
            )
            await self.events.publish(TradeFailed(
                product_id=request.product_id,
                symbol=request.symbol,
                side=request.side.value,
                error_kind=error.kind,
                message=f"{error.message}: {order}",
                purpose="open",
                strategy=request.strategy,
            ))
            raise error

        position = Position(
            id=str(order_id),
            symbol=request.symbol or str(order.get("product_symbol") or ""),
            product_id=request.product_id,
            side=request.side.position_side,
            entry_price=_entry_price(order, request),
            quantity=request.quantity,
            stop_loss=request.stop_loss,
            take_profit=request.take_profit,
            strategy=request.strategy,
        )
        self._positions[position.id] = position
        logger.info(
            "Position opened",
            position_id=position.id,
            symbol=position.symbol,
            side=position.side.value,
            entry_price=str(position.entry_price),
            quantity=str(position.quantity),
        )
        await self.events.publish(TradeExecuted(
            order_id=position.id,
            product_id=position.product_id,
            symbol=position.symbol,
            side=request.side.value,
            quantity=position.quantity,
            price=position.entry_price,
            purpose="open",
            position_id=position.id,
            strategy=position.strategy,
        ))
        return position

    async def close_position(self, position_id: str) -> Position:
        """
        Flatten a position with an opposing reduce-only market order.

        Closing is risk-reducing, so it is not gated on an Active session;
        the kill switch relies on this after stopping the session.

        Raises:
            PositionNotOpen: Unknown, already closed, or a close is in flight
            GatewayError: Closing order failed (position stays Open)
        """
        position = self._positions.get(position_id)
        if position is None or not position.is_open:
            raise PositionNotOpen(f"Position {position_id} not found or already closed")
        if position_id in self._closing:
            raise PositionNotOpen(f"Position {position_id} already has a close in flight")

        close_request = OrderRequest(
            product_id=position.product_id,
            side=position.side.closing_order_side,
            quantity=position.quantity,
            order_type=OrderType.MARKET,
            symbol=position.symbol,
            strategy=position.strategy,
            reduce_only=True,
        )

        self._closing.add(position_id)
        try:
            order = await self.client.place_order(close_request, gated=False)
        except GatewayError as e:
            logger.error("Close position failed", position_id=position_id, error_kind=e.kind, error=str(e))
            await self.events.publish(TradeFailed(
                product_id=position.product_id,
                symbol=position.symbol,
                side=close_request.side.value,
                error_kind=e.kind,
                message=str(e),
                purpose="close",
                position_id=position_id,
                strategy=position.strategy,
            ))
            raise
        finally:
            self._closing.discard(position_id)

        position.status = PositionStatus.CLOSED
        position.closed_at = datetime.now(timezone.utc)
        logger.info("Position closed", position_id=position_id, symbol=position.symbol, pnl=str(position.pnl))
        await self.events.publish(TradeExecuted(
            order_id=str(order.get("id")),
            product_id=position.product_id,
            symbol=position.symbol,
            side=close_request.side.value,
            quantity=position.quantity,
            price=_decimal(order.get("average_fill_price")),
            purpose="close",
            position_id=position_id,
            strategy=position.strategy,
        ))
        return position

    async def refresh(self) -> int:
        """
        Pull the venue snapshot and update pnl on matching open positions.

        Returns:
            Number of positions whose pnl was updated
        """
        snapshot = await self.client.get_positions()
        if isinstance(snapshot, EmptyResult):
            logger.warning("Position refresh skipped, snapshot unavailable", error=str(snapshot.error))
            return 0

        rows = snapshot if isinstance(snapshot, list) else []
        updated = 0
        for row in rows:
            if not isinstance(row, dict):
                continue
            position = self._positions.get(str(row.get("id")))
            if position is None or not position.is_open:
                continue
            pnl = _decimal(row.get("unrealized_pnl"))
            if pnl is None:
                continue
            position.pnl = pnl
            updated += 1

        logger.debug("Ledger refreshed", snapshot_rows=len(rows), updated=updated)
        return updated
