"""
Test doubles and response builders shared across the suite.

FakeTransport records every request and replays scripted responses per
(method, path), so HTTP never leaves the process.
"""
from collections import deque
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Deque, Dict, List, Optional, Tuple
from urllib.parse import urlsplit

from delta_gateway.domain.protocols import HttpResponse

if TYPE_CHECKING:
    from delta_gateway.gateway import DeltaGateway

# Fixed local clock for every gateway built here
NOW = 1_700_000_000.0

BALANCES = "/v2/wallet/balances"
POSITIONS = "/v2/positions/margined"
ORDERS = "/v2/orders"
PRODUCTS = "/v2/products"
SETTINGS = "/v2/settings"


def ok(result: Any, headers: Optional[Dict[str, str]] = None) -> HttpResponse:
    return HttpResponse(status=200, headers=headers or {}, payload={"success": True, "result": result})


def venue_error(status: int, code: str, context: Optional[Dict[str, Any]] = None) -> HttpResponse:
    error: Dict[str, Any] = {"code": code}
    if context is not None:
        error["context"] = context
    return HttpResponse(status=status, payload={"success": False, "error": error})


def expired(request_time: int, server_time: int) -> HttpResponse:
    return venue_error(401, "expired_signature", {"request_time": request_time, "server_time": server_time})


@dataclass
class RecordedRequest:
    method: str
    url: str
    path: str
    headers: Dict[str, str]
    body: Optional[str]

    @property
    def signed(self) -> bool:
        return "signature" in self.headers

    @property
    def timestamp(self) -> int:
        return int(self.headers["timestamp"])


class FakeTransport:
    """
    Scripted HttpTransport.

    script() queues responses (or exceptions) for a route; the last one
    repeats once the queue is drained. /v2/settings answers NOW unless
    scripted.
    """

    def __init__(self):
        self.requests: List[RecordedRequest] = []
        self._routes: Dict[Tuple[str, str], Deque[Any]] = {}
        self._gates: Dict[Tuple[str, str], Any] = {}
        self.closed = False

    def script(self, method: str, path: str, *responses: Any) -> "FakeTransport":
        self._routes[(method.upper(), path)] = deque(responses)
        return self

    def hold(self, method: str, path: str, gate) -> None:
        """Block requests on a route until gate (an asyncio.Event) is set."""
        self._gates[(method.upper(), path)] = gate

    def calls(self, method: str, path: str) -> List[RecordedRequest]:
        return [r for r in self.requests if r.method == method.upper() and r.path == path]

    @property
    def signed_requests(self) -> List[RecordedRequest]:
        return [r for r in self.requests if r.signed]

    async def request(self, method, url, headers, body=None) -> HttpResponse:
        path = urlsplit(url).path
        self.requests.append(RecordedRequest(method, url, path, dict(headers), body))
        key = (method.upper(), path)

        gate = self._gates.get(key)
        if gate is not None:
            await gate.wait()

        queue = self._routes.get(key)
        if not queue:
            if path == SETTINGS:
                return ok({"server_time": int(NOW * 1_000_000)})
            raise AssertionError(f"Unscripted request: {method} {path}")

        response = queue.popleft() if len(queue) > 1 else queue[0]
        if isinstance(response, BaseException):
            raise response
        return response

    async def close(self) -> None:
        self.closed = True


async def activate(gateway: "DeltaGateway", transport: FakeTransport) -> None:
    """Drive a gateway to Active through a successful balance probe."""
    transport.script("GET", BALANCES, ok([{"asset_symbol": "USD", "balance": "1000", "available_balance": "900"}]))
    await gateway.start()
    assert gateway.session.is_active()


def order_ack(order_id: int, price: str = "100", **extra) -> HttpResponse:
    result = {"id": order_id, "average_fill_price": price, "state": "closed"}
    result.update(extra)
    return ok(result)
