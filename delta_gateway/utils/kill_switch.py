"""
Kill switch for the gateway session and its open positions.

Modes:
- PREVENT_NEW: stop the session; open positions are left alone
- CLOSE_ALL: flatten every open position; session state untouched
- BOTH: stop the session first, then flatten

Every mode is idempotent. A second activation finds the session already
stopped and no open positions left to close.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from delta_gateway.domain.events import EventBus, KillSwitchActivated
from delta_gateway.domain.models import KillSwitchMode
from delta_gateway.exceptions import GatewayError, InvariantError, PositionNotOpen
from delta_gateway.execution.position_ledger import PositionLedger
from delta_gateway.monitoring.logger import get_logger
from delta_gateway.runtime.session import SessionController

logger = get_logger(__name__)


@dataclass
class KillSwitchReport:
    """Outcome of one activation."""
    mode: KillSwitchMode
    session_stopped: bool = False
    closed: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    activated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class KillSwitch:
    """
    Emergency stop over one gateway's session and ledger.

    Unlike a latched process-wide switch, resuming is just a fresh
    session start; the gateway holds no durable state.
    """

    def __init__(self, session: SessionController, ledger: PositionLedger, events: Optional[EventBus] = None):
        self.session = session
        self.ledger = ledger
        self.events = events or ledger.events
        self.last_mode: Optional[KillSwitchMode] = None
        self.activated_at: Optional[datetime] = None
        self.activations = 0

    async def activate(self, mode: KillSwitchMode, reason: str = "kill switch") -> KillSwitchReport:
        """
        Activate in the given mode.

        For BOTH the session is stopped before the first close is issued, so
        any open_position racing with the closes sees SessionInactive.
        """
        report = KillSwitchReport(mode=mode)
        self.last_mode = mode
        self.activated_at = report.activated_at
        self.activations += 1

        logger.critical("KILL SWITCH ACTIVATED", mode=mode.value, reason=reason)

        if mode in (KillSwitchMode.PREVENT_NEW, KillSwitchMode.BOTH):
            report.session_stopped = self.session.stop(reason=f"{reason} ({mode.value})")
            await self.session.flush_events()

        if mode in (KillSwitchMode.CLOSE_ALL, KillSwitchMode.BOTH):
            await self._close_all(report)

        logger.critical(
            "Kill switch complete",
            mode=mode.value,
            session_state=self.session.state.value,
            closed=len(report.closed),
            failed=len(report.failed),
        )
        await self.events.publish(KillSwitchActivated(
            mode=mode.value,
            closed_positions=len(report.closed),
            failed_positions=len(report.failed),
        ))
        return report

    async def _close_all(self, report: KillSwitchReport) -> None:
        # Snapshot first; closes are awaited one at a time so each gets the
        # dispatcher's full retry budget.
        targets = [p.id for p in self.ledger.open_positions()]
        if not targets:
            logger.info("Kill switch: no open positions to close")
            return

        for position_id in targets:
            try:
                await self.ledger.close_position(position_id)
                report.closed.append(position_id)
                logger.warning("Kill switch: closed position", position_id=position_id)
            except PositionNotOpen as e:
                logger.info("Kill switch: position already closed or closing", position_id=position_id, error=str(e))
            except InvariantError:
                raise
            except GatewayError as e:
                report.failed[position_id] = e.kind
                logger.error(
                    "Kill switch: failed to close position",
                    kill_step="close_all",
                    position_id=position_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def get_status(self) -> dict:
        return {
            "session_state": self.session.state.value,
            "last_mode": self.last_mode.value if self.last_mode else None,
            "activated_at": self.activated_at.isoformat() if self.activated_at else None,
            "activations": self.activations,
            "open_positions": len(self.ledger.open_positions()),
        }
