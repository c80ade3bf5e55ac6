"""
Domain protocols (interfaces) for the gateway's external collaborators.

The gateway depends on these abstractions only: an HTTP transport it can
swap in tests, and a strategy that is a black box emitting BUY/SELL/NEUTRAL.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol, runtime_checkable

from delta_gateway.domain.models import StrategySignal


@dataclass
class HttpResponse:
    """Transport-neutral HTTP response."""
    status: int
    headers: Mapping[str, str] = field(default_factory=dict)
    payload: Any = None

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


@runtime_checkable
class HttpTransport(Protocol):
    """
    Issues exactly one HTTP request per call. No retries of its own.

    Raises NetworkOrVenueError(status=None) when no response was received.
    """

    async def request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[str] = None,
    ) -> HttpResponse: ...

    async def close(self) -> None: ...


@runtime_checkable
class Strategy(Protocol):
    """
    Signal generator. Market data access and analysis are its own business.
    """

    name: str

    async def evaluate(self) -> StrategySignal: ...
