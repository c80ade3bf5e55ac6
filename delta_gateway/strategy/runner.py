"""
Strategy runner: turns a black-box strategy's signal into ledger operations.

    BUY     -> open Long
    SELL    -> open Short
    NEUTRAL -> nothing

Failures are reported as TradeFailed with the specific error kind (the
ledger publishes them for order-level failures; the runner publishes them
for failures raised before any order was sent).
"""
import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from delta_gateway.domain.events import EventBus, StrategyStarted, StrategyStopped, TradeFailed
from delta_gateway.domain.models import (
    OrderRequest,
    OrderSide,
    OrderType,
    Position,
    SignalAction,
    StrategySignal,
)
from delta_gateway.domain.protocols import Strategy
from delta_gateway.exceptions import (
    BusinessRuleError,
    CredentialError,
    GatewayError,
    SessionInactive,
)
from delta_gateway.execution.position_ledger import PositionLedger
from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)

_SIGNAL_TO_SIDE = {
    SignalAction.BUY: OrderSide.BUY,
    SignalAction.SELL: OrderSide.SELL,
}


@dataclass
class RunResult:
    """One evaluation's outcome."""
    signal: StrategySignal
    position: Optional[Position] = None
    error_kind: Optional[str] = None


class StrategyRunner:
    """
    Runs one strategy against one product with a fixed order size.
    """

    def __init__(
        self,
        ledger: PositionLedger,
        strategy: Strategy,
        product_id: int,
        symbol: str,
        quantity: Decimal,
        events: Optional[EventBus] = None,
    ):
        self.ledger = ledger
        self.strategy = strategy
        self.product_id = product_id
        self.symbol = symbol
        self.quantity = Decimal(str(quantity))
        self.events = events or ledger.events
        self.running = False

    async def start(self) -> None:
        """
        Mark the strategy running. Requires an Active session.

        Raises:
            SessionInactive: Session not Active (TradeFailed published,
                StrategyStarted not)
        """
        if self.running:
            return
        try:
            self.ledger.session.require_active("strategy start")
        except SessionInactive as e:
            logger.warning(
                "Strategy start failed",
                strategy=self.strategy.name,
                symbol=self.symbol,
                error_kind=e.kind,
                error=str(e),
            )
            await self.events.publish(TradeFailed(
                product_id=self.product_id,
                symbol=self.symbol,
                side=None,
                error_kind=e.kind,
                message=str(e),
                purpose="start",
                strategy=self.strategy.name,
            ))
            raise
        self.running = True
        logger.info("Strategy started", strategy=self.strategy.name, symbol=self.symbol)
        await self.events.publish(StrategyStarted(strategy=self.strategy.name, symbol=self.symbol))

    async def stop(self, reason: str = "stopped") -> None:
        if not self.running:
            return
        self.running = False
        logger.info("Strategy stopped", strategy=self.strategy.name, symbol=self.symbol, reason=reason)
        await self.events.publish(StrategyStopped(strategy=self.strategy.name, symbol=self.symbol, reason=reason))

    def _order_for(self, signal: StrategySignal) -> OrderRequest:
        return OrderRequest(
            product_id=self.product_id,
            side=_SIGNAL_TO_SIDE[signal.action],
            quantity=self.quantity,
            order_type=OrderType.MARKET,
            symbol=self.symbol,
            stop_loss=signal.stop_loss,
            take_profit=signal.take_profit,
            strategy=self.strategy.name,
        )

    async def run_once(self) -> RunResult:
        """
        Evaluate the strategy once and act on its signal.

        Typed gateway failures are captured in the result, not raised.
        """
        signal = await self.strategy.evaluate()
        if signal.action is SignalAction.NEUTRAL:
            logger.debug("Neutral signal, no action", strategy=self.strategy.name, reason=signal.reason)
            return RunResult(signal=signal)

        request = self._order_for(signal)
        try:
            position = await self.ledger.open_position(request)
        except (SessionInactive, BusinessRuleError) as e:
            # Rejected locally before any order; the ledger did not report it.
            logger.warning(
                "Strategy signal rejected",
                strategy=self.strategy.name,
                action=signal.action.value,
                error_kind=e.kind,
                error=str(e),
            )
            await self.events.publish(TradeFailed(
                product_id=self.product_id,
                symbol=self.symbol,
                side=request.side.value,
                error_kind=e.kind,
                message=str(e),
                purpose="open",
                strategy=self.strategy.name,
            ))
            return RunResult(signal=signal, error_kind=e.kind)
        except GatewayError as e:
            logger.error(
                "Strategy order failed",
                strategy=self.strategy.name,
                action=signal.action.value,
                error_kind=e.kind,
            )
            if isinstance(e, CredentialError):
                await self.stop(reason=e.kind)
            return RunResult(signal=signal, error_kind=e.kind)

        logger.info(
            "Strategy opened position",
            strategy=self.strategy.name,
            action=signal.action.value,
            position_id=position.id,
            reason=signal.reason,
        )
        return RunResult(signal=signal, position=position)

    async def _loop(self, interval_seconds: float) -> None:
        while self.running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.warning("Strategy evaluation failed", strategy=self.strategy.name, error=str(e))
            await asyncio.sleep(interval_seconds)

    async def run_forever(self, interval_seconds: float) -> None:
        """Start, then evaluate every interval until stop()."""
        await self.start()
        await self._loop(interval_seconds)
