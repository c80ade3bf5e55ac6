"""
DeltaGateway: one explicit object per credential set.

Wires signer, clock, dispatcher, session, ledger, risk, kill switch, poller
and event bus together. UIs and strategy runners talk to this object only.
"""
import asyncio
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from delta_gateway.config.config import GatewayConfig
from delta_gateway.domain.events import EventBus
from delta_gateway.domain.models import (
    Credential,
    CredentialCheck,
    EmptyResult,
    KillSwitchMode,
    OrderRequest,
    Position,
    RiskMetrics,
    SessionState,
)
from delta_gateway.domain.protocols import HttpTransport, Strategy
from delta_gateway.exceptions import GatewayError
from delta_gateway.exchange.clock import ClockSkewEstimator
from delta_gateway.exchange.delta_client import DeltaClient, ReadResult
from delta_gateway.exchange.dispatcher import ResilientDispatcher
from delta_gateway.exchange.signer import RequestSigner
from delta_gateway.exchange.transport import AiohttpTransport
from delta_gateway.execution.position_ledger import PositionLedger
from delta_gateway.monitoring.logger import get_logger
from delta_gateway.risk.risk_engine import RiskEngine
from delta_gateway.runtime.poller import PositionPoller
from delta_gateway.runtime.session import SessionController, SessionStatus
from delta_gateway.strategy.runner import StrategyRunner
from delta_gateway.utils.kill_switch import KillSwitch, KillSwitchReport

logger = get_logger(__name__)


def _probe_failure(probe: EmptyResult) -> tuple:
    """(kind, message) for a degraded probe."""
    error = probe.error
    if error is None:
        return None, "balance probe returned nothing"
    return getattr(error, "kind", type(error).__name__), str(error)


class DeltaGateway:
    """
    Exchange gateway for one Delta Exchange account.

    Lifecycle:
        gateway = DeltaGateway(credential, config)
        await gateway.start()          # Verifying -> Active / Error
        await gateway.open_position(request)
        await gateway.kill_switch(KillSwitchMode.BOTH)
        await gateway.close()
    """

    def __init__(
        self,
        credential: Credential,
        config: Optional[GatewayConfig] = None,
        transport: Optional[HttpTransport] = None,
        events: Optional[EventBus] = None,
        clock: Callable[[], float] = time.time,
        sleep=asyncio.sleep,
    ):
        self.credential = credential
        self.config = config or GatewayConfig()
        self.events = events or EventBus()
        self.transport = transport or AiohttpTransport(self.config.exchange.request_timeout_seconds)

        clock_cfg = self.config.clock
        retry_cfg = self.config.retry

        self.signer = RequestSigner(credential.secret)
        self.clock = ClockSkewEstimator(
            safety_buffer_seconds=clock_cfg.safety_buffer_seconds,
            resync_interval_seconds=clock_cfg.resync_interval_seconds,
            retry_buffer_step_seconds=clock_cfg.retry_buffer_step_seconds,
            large_skew_threshold_seconds=clock_cfg.large_skew_threshold_seconds,
            skew_safety_margin_seconds=clock_cfg.skew_safety_margin_seconds,
            clock=clock,
        )
        self.session = SessionController(on_change=self.events.publish)
        self.dispatcher = ResilientDispatcher(
            credential=credential,
            signer=self.signer,
            clock=self.clock,
            transport=self.transport,
            session=self.session,
            max_retries=retry_cfg.max_retries,
            base_delay=retry_cfg.base_delay_seconds,
            max_delay=retry_cfg.max_delay_seconds,
            sleep=sleep,
        )
        self.clock.set_time_source(self.dispatcher.fetch_server_time)

        self.client = DeltaClient(self.dispatcher)
        self.risk_engine = RiskEngine(self.config.risk.max_drawdown_pct)
        self.ledger = PositionLedger(self.client, self.session, self.risk_engine, self.events)
        self._kill_switch = KillSwitch(self.session, self.ledger, self.events)
        self.poller = PositionPoller(
            self.ledger,
            self.session,
            interval_seconds=self.config.polling.refresh_interval_seconds,
            sleep=sleep,
        )
        self._runners: Dict[str, StrategyRunner] = {}

        logger.info(
            "Gateway initialized",
            base_url=credential.base_url,
            max_retries=retry_cfg.max_retries,
            max_drawdown_pct=self.config.risk.max_drawdown_pct,
        )

    @classmethod
    def from_config(cls, config: GatewayConfig, **kwargs) -> "DeltaGateway":
        """Build from configuration. Raises InvalidCredentialFormat on a bad credential."""
        return cls(config.exchange.to_credential(), config, **kwargs)

    # -- lifecycle -----------------------------------------------------------

    async def start(self, start_polling: bool = False) -> SessionStatus:
        """
        Verify credential and clock with a balance probe.

        Verifying -> Active on success, Verifying -> Error(reason) otherwise.
        Starting again from Stopped or Error is allowed. A start while a
        verification is in flight returns the Verifying status unchanged.
        """
        if self.session.is_active():
            logger.info("Session already active, start ignored")
            return self.session.status()
        if self.session.state is SessionState.VERIFYING:
            logger.info("Session verification in progress, start ignored", generation=self.session.generation)
            return self.session.status()

        generation = self.session.begin_verification()
        await self.session.flush_events()

        try:
            probe = await self.client.probe_balances()
        except GatewayError as e:
            logger.error("Session verification failed", error_kind=e.kind, error=str(e))
            self.session.fail_verification(generation, f"{e.kind}: {e}")
        else:
            if isinstance(probe, EmptyResult):
                kind, message = _probe_failure(probe)
                reason = f"{kind}: {message}" if kind else message
                logger.error("Session verification failed", reason=reason)
                self.session.fail_verification(generation, reason)
            elif self.session.complete_verification(generation):
                logger.info("Session active", offset_seconds=self.clock.offset_seconds)

        await self.session.flush_events()
        if start_polling and self.session.is_active() and self.config.polling.enabled:
            self.poller.start()
        return self.session.status()

    async def stop(self, reason: str = "stop requested") -> SessionStatus:
        """Stop the session, then every registered strategy runner."""
        self.session.stop(reason=reason)
        await self.session.flush_events()
        await self._stop_runners(reason)
        return self.session.status()

    async def kill_switch(self, mode: KillSwitchMode, reason: str = "kill switch") -> KillSwitchReport:
        report = await self._kill_switch.activate(mode, reason=reason)
        if mode in (KillSwitchMode.PREVENT_NEW, KillSwitchMode.BOTH):
            await self._stop_runners(f"{reason} ({mode.value})")
        return report

    def kill_switch_status(self) -> dict:
        return self._kill_switch.get_status()

    async def close(self) -> None:
        """Stop polling and release the HTTP transport."""
        await self.poller.stop()
        await self.transport.close()

    # -- strategy runners ----------------------------------------------------

    def add_strategy(
        self,
        strategy: Strategy,
        product_id: int,
        symbol: str,
        quantity: Decimal,
    ) -> StrategyRunner:
        """
        Register a runner for a strategy, keyed by strategy name.

        The runner is not started; call runner.start() (or run_forever)
        once the session is Active.

        Raises:
            ValueError: A runner with the same strategy name is registered
        """
        if strategy.name in self._runners:
            raise ValueError(f"Strategy {strategy.name!r} already registered")
        runner = StrategyRunner(self.ledger, strategy, product_id, symbol, quantity, events=self.events)
        self._runners[strategy.name] = runner
        logger.info("Strategy registered", strategy=strategy.name, symbol=symbol)
        return runner

    async def remove_strategy(self, name: str, reason: str = "removed") -> Optional[StrategyRunner]:
        runner = self._runners.pop(name, None)
        if runner is not None:
            await runner.stop(reason=reason)
        return runner

    def strategies(self) -> List[StrategyRunner]:
        return list(self._runners.values())

    async def _stop_runners(self, reason: str) -> None:
        for runner in list(self._runners.values()):
            await runner.stop(reason=reason)

    async def __aenter__(self) -> "DeltaGateway":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # -- diagnostics ---------------------------------------------------------

    async def verify_credentials(self) -> CredentialCheck:
        """
        One ungated balance probe. Reports the specific failure kind and
        leaves the session untouched.
        """
        await self.clock.sync()
        try:
            probe = await self.client.probe_balances()
        except GatewayError as e:
            return CredentialCheck(
                valid=False, error_kind=e.kind, message=str(e), offset_seconds=self.clock.offset_seconds
            )
        if isinstance(probe, EmptyResult):
            kind, message = _probe_failure(probe)
            return CredentialCheck(
                valid=False,
                error_kind=kind,
                message=message,
                offset_seconds=self.clock.offset_seconds,
            )
        return CredentialCheck(valid=True, message="credentials accepted", offset_seconds=self.clock.offset_seconds)

    # -- pull model for UIs --------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self.session.state

    def session_status(self) -> SessionStatus:
        return self.session.status()

    def risk_metrics(self) -> RiskMetrics:
        return self.ledger.risk_metrics()

    def positions(self, open_only: bool = False) -> List[Position]:
        return self.ledger.open_positions() if open_only else self.ledger.all_positions()

    # -- trading -------------------------------------------------------------

    async def open_position(self, request: OrderRequest) -> Position:
        return await self.ledger.open_position(request)

    async def close_position(self, position_id: str) -> Position:
        return await self.ledger.close_position(position_id)

    async def refresh(self) -> int:
        return await self.ledger.refresh()

    async def place_order(self, request: OrderRequest) -> Dict[str, Any]:
        """Raw order without ledger bookkeeping (gated)."""
        return await self.client.place_order(request)

    async def cancel_order(self, order_id: Union[int, str], product_id: int) -> Dict[str, Any]:
        return await self.client.cancel_order(order_id, product_id)

    async def get_balances(self) -> ReadResult:
        return await self.client.get_balances()

    async def get_positions(self) -> ReadResult:
        return await self.client.get_positions()

    async def get_products(self, query: Optional[Dict[str, Any]] = None) -> ReadResult:
        return await self.client.get_products(query)

    def available_balance(self, balances: ReadResult, asset: str = "USD") -> Optional[Decimal]:
        """Pick one asset's available balance out of a get_balances() result."""
        for row in balances or []:
            if isinstance(row, dict) and str(row.get("asset_symbol", "")).upper() == asset.upper():
                value = row.get("available_balance", row.get("balance"))
                return Decimal(str(value)) if value is not None else None
        return None
