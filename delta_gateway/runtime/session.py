"""
Session lifecycle gate.

    UNINITIALIZED ──start──▶ VERIFYING ──probe ok──▶ ACTIVE ──stop/kill──▶ STOPPED
                                 │                                         │
                                 └──auth/expiry/probe fail──▶ ERROR        │
    STOPPED / ERROR ──start──▶ VERIFYING  ◀───────────────────────────────┘

VERIFYING ──stop/kill──▶ STOPPED is also allowed; a probe that lands after
that is discarded.

Trading operations call require_active() before any network I/O.
"""
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional

from delta_gateway.domain.events import SessionStateChanged
from delta_gateway.domain.models import SessionState
from delta_gateway.exceptions import InvalidSessionTransition, SessionInactive
from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)

_ALLOWED: Dict[SessionState, FrozenSet[SessionState]] = {
    SessionState.UNINITIALIZED: frozenset({SessionState.VERIFYING}),
    SessionState.VERIFYING: frozenset({SessionState.ACTIVE, SessionState.ERROR, SessionState.STOPPED}),
    SessionState.ACTIVE: frozenset({SessionState.STOPPED}),
    SessionState.STOPPED: frozenset({SessionState.VERIFYING}),
    SessionState.ERROR: frozenset({SessionState.VERIFYING}),
}


@dataclass(frozen=True)
class SessionStatus:
    """Pull-model snapshot for UIs."""
    state: SessionState
    reason: Optional[str]
    changed_at: datetime
    generation: int


class SessionController:
    """
    Owns the single SessionState of a gateway. Only its methods mutate it.
    """

    def __init__(self, on_change: Optional[Callable[[SessionStateChanged], Awaitable[None]]] = None):
        self._state = SessionState.UNINITIALIZED
        self._reason: Optional[str] = None
        self._changed_at = datetime.now(timezone.utc)
        self._generation = 0
        self._on_change = on_change
        self._pending_events: List[SessionStateChanged] = []

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def error_reason(self) -> Optional[str]:
        return self._reason if self._state is SessionState.ERROR else None

    @property
    def generation(self) -> int:
        """Bumped on every start; lets a stale probe detect it was superseded."""
        return self._generation

    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    def status(self) -> SessionStatus:
        return SessionStatus(
            state=self._state,
            reason=self._reason,
            changed_at=self._changed_at,
            generation=self._generation,
        )

    def require_active(self, operation: str = "trading call") -> None:
        """Raise SessionInactive unless ACTIVE."""
        if self._state is not SessionState.ACTIVE:
            logger.warning("Trading call blocked, session not active", operation=operation, state=self._state.value)
            raise SessionInactive(
                f"{operation} requires an active session (state={self._state.value})",
                state=self._state,
            )

    def _transition(self, target: SessionState, reason: Optional[str] = None) -> None:
        if target not in _ALLOWED[self._state]:
            raise InvalidSessionTransition(
                f"Session transition {self._state.value} -> {target.value} not allowed"
            )
        previous = self._state
        self._state = target
        self._reason = reason
        self._changed_at = datetime.now(timezone.utc)
        logger.info("Session state changed", previous=previous.value, state=target.value, reason=reason)
        self._pending_events.append(
            SessionStateChanged(previous=previous.value, current=target.value, reason=reason)
        )

    async def flush_events(self) -> None:
        """Deliver queued state-change events to the subscriber."""
        events, self._pending_events = self._pending_events, []
        if self._on_change is None:
            return
        for event in events:
            await self._on_change(event)

    def begin_verification(self) -> int:
        """
        UNINITIALIZED/STOPPED/ERROR -> VERIFYING.

        Returns:
            Generation number the probe must present to complete_verification
        """
        self._transition(SessionState.VERIFYING)
        self._generation += 1
        return self._generation

    def complete_verification(self, generation: int) -> bool:
        """
        VERIFYING -> ACTIVE, unless the session moved on meanwhile.

        Returns:
            True if the session became ACTIVE
        """
        if self._state is not SessionState.VERIFYING or generation != self._generation:
            logger.warning(
                "Discarding stale verification result",
                state=self._state.value,
                generation=generation,
                current_generation=self._generation,
            )
            return False
        self._transition(SessionState.ACTIVE)
        return True

    def fail_verification(self, generation: int, reason: str) -> bool:
        """VERIFYING -> ERROR(reason), unless superseded."""
        if self._state is not SessionState.VERIFYING or generation != self._generation:
            logger.warning("Discarding stale verification failure", state=self._state.value, reason=reason)
            return False
        self._transition(SessionState.ERROR, reason=reason)
        return True

    def stop(self, reason: str = "stop requested") -> bool:
        """
        ACTIVE/VERIFYING -> STOPPED. Idempotent.

        Returns:
            True if a transition happened
        """
        if self._state in (SessionState.ACTIVE, SessionState.VERIFYING):
            self._transition(SessionState.STOPPED, reason=reason)
            return True
        logger.info("Session stop is a no-op", state=self._state.value, reason=reason)
        return False
