"""
Resilient dispatcher: one signed venue call with a bounded expiry-retry loop.

Every attempt gets a fresh timestamp and a fresh signature. Only expired
signatures are retried; the venue rejected those before acting on them, so a
retry cannot duplicate a side effect.

Outcome of dispatch():
    success   -> unwrapped result
    expired   -> retry up to max_retries, then SignatureRetriesExhausted
    auth      -> AuthenticationRejected immediately
    other     -> GET: EmptyResult sentinel; POST/DELETE: NetworkOrVenueError
"""
import asyncio
from typing import TYPE_CHECKING, Any, Dict, Optional

from delta_gateway.constants import (
    AUTH_ERROR_CODES,
    ERROR_EXPIRED_SIGNATURE,
    HEADER_API_KEY,
    HEADER_SIGNATURE,
    HEADER_TIMESTAMP,
    HEADER_USER_AGENT,
    MAX_SIGNATURE_RETRIES,
    RETRY_BASE_DELAY_SECONDS,
    RETRY_MAX_DELAY_SECONDS,
    SERVER_TIME_ENDPOINT,
    USER_AGENT,
)
from delta_gateway.domain.models import Credential, EmptyResult, SignedRequest
from delta_gateway.domain.protocols import HttpResponse, HttpTransport
from delta_gateway.exceptions import (
    AuthenticationRejected,
    GatewayError,
    NetworkOrVenueError,
    SignatureExpired,
    SignatureRetriesExhausted,
)
from delta_gateway.exchange.clock import ClockSkewEstimator, normalize_epoch, server_time_from_response
from delta_gateway.exchange.signer import RequestSigner, canonical_path, encode_body
from delta_gateway.monitoring.logger import get_logger

if TYPE_CHECKING:
    from delta_gateway.runtime.session import SessionController

logger = get_logger(__name__)

READ_METHODS = frozenset({"GET"})


def _error_block(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return error
        if isinstance(error, str):
            return {"code": error}
    return {}


def classify_error(response: HttpResponse, clock_offset: Optional[int] = None) -> GatewayError:
    """
    Map a failed venue response onto the error taxonomy.
    """
    error = _error_block(response.payload)
    code = str(error.get("code") or "") or None
    context = error.get("context") if isinstance(error.get("context"), dict) else {}
    normalized_code = (code or "").strip().lower().replace(" ", "_")
    message = str(error.get("message") or code or f"HTTP {response.status}")

    if normalized_code == ERROR_EXPIRED_SIGNATURE:
        server_time = normalize_epoch(context.get("server_time"))
        request_time = normalize_epoch(context.get("request_time"))
        return SignatureExpired(
            "Signature expired",
            status=response.status,
            code=code,
            payload=response.payload,
            clock_offset=clock_offset,
            context={
                "server_time": int(server_time) if server_time is not None else None,
                "request_time": int(request_time) if request_time is not None else None,
            },
        )

    if normalized_code in AUTH_ERROR_CODES or response.status == 401:
        return AuthenticationRejected(
            f"Authentication rejected: {message}",
            status=response.status,
            code=code,
            payload=response.payload,
            context=dict(context),
        )

    return NetworkOrVenueError(
        f"Venue error: {message}",
        status=response.status,
        code=code,
        payload=response.payload,
        clock_offset=clock_offset,
        context=dict(context),
    )


def unwrap_result(payload: Any) -> Any:
    """Strip the {"success": true, "result": ...} envelope."""
    if isinstance(payload, dict) and "result" in payload:
        return payload["result"]
    return payload


class ResilientDispatcher:
    """
    Executes signed requests for one credential, strictly one at a time per
    invocation. Retries are sequential, never concurrent.
    """

    def __init__(
        self,
        credential: Credential,
        signer: RequestSigner,
        clock: ClockSkewEstimator,
        transport: HttpTransport,
        session: Optional["SessionController"] = None,
        max_retries: int = MAX_SIGNATURE_RETRIES,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        max_delay: float = RETRY_MAX_DELAY_SECONDS,
        sleep=asyncio.sleep,
    ):
        self.credential = credential
        self.signer = signer
        self.clock = clock
        self.transport = transport
        self.session = session
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep
        self._base_url = credential.base_url.rstrip("/")

    def set_session(self, session: "SessionController") -> None:
        self.session = session

    def backoff_delay(self, retry_number: int) -> float:
        """base * 2^(retry-1), capped. retry_number starts at 1."""
        return min(self.base_delay * (2 ** (retry_number - 1)), self.max_delay)

    def _headers(self, signed: SignedRequest) -> Dict[str, str]:
        return {
            HEADER_API_KEY: self.credential.key,
            HEADER_TIMESTAMP: str(signed.timestamp),
            HEADER_SIGNATURE: signed.signature,
            "Content-Type": "application/json",
            HEADER_USER_AGENT: USER_AGENT,
        }

    def _degrade_or_raise(self, method: str, path: str, error: NetworkOrVenueError) -> EmptyResult:
        if method in READ_METHODS:
            logger.warning(
                "Read degraded to empty result",
                method=method,
                path=path,
                status=error.status,
                code=error.code,
                error=str(error),
            )
            return EmptyResult(method=method, path=path, error=error)
        logger.error(
            "Mutating request failed",
            method=method,
            path=path,
            status=error.status,
            code=error.code,
            error=str(error),
        )
        raise error

    async def dispatch(
        self,
        method: str,
        path: str,
        body: Any = None,
        query: Optional[Dict[str, Any]] = None,
        requires_active_session: bool = True,
    ) -> Any:
        """
        Sign and send one logical request.

        Args:
            method: GET, POST or DELETE
            path: Logical path, with or without the /v2 prefix
            body: JSON-serialisable body (None for bodiless requests)
            query: Query parameters (signed as part of the path)
            requires_active_session: Gate on SessionController before any I/O

        Returns:
            Unwrapped venue result, or EmptyResult for a degraded GET

        Raises:
            SessionInactive: Gated call while the session is not Active
            AuthenticationRejected: Credential refused by the venue
            SignatureRetriesExhausted: Every attempt expired
            NetworkOrVenueError: Mutating call failed
        """
        method = method.upper()
        if requires_active_session:
            if self.session is None:
                raise RuntimeError("Gated dispatch requires a SessionController")
            self.session.require_active(f"{method} {path}")

        await self.clock.maybe_resync()

        sign_path = canonical_path(path, query)
        url = f"{self._base_url}{sign_path}"
        body_str = encode_body(body)
        last_expired: Optional[SignatureExpired] = None

        for attempt in range(self.max_retries + 1):
            timestamp = self.clock.timestamp(attempt)
            signed = self.signer.build(method, timestamp, sign_path, body_str)
            local_at_request = self.clock.local_time()

            try:
                response = await self.transport.request(method, url, self._headers(signed), body_str or None)
            except NetworkOrVenueError as e:
                e.clock_offset = self.clock.offset_seconds
                return self._degrade_or_raise(method, path, e)

            if response.ok and not (isinstance(response.payload, dict) and response.payload.get("success") is False):
                server_time = server_time_from_response(response.headers, response.payload)
                if server_time is not None:
                    self.clock.observe_server_time(server_time, local_at_request)
                self.clock.record_success()
                if attempt > 0:
                    logger.info("Signed request succeeded after retry", method=method, path=path, attempt=attempt + 1)
                return unwrap_result(response.payload)

            error = classify_error(response, self.clock.offset_seconds)

            if isinstance(error, SignatureExpired):
                self.clock.observe_expired_signature(
                    request_time=error.request_time if error.request_time is not None else timestamp,
                    server_time=error.server_time,
                    local_time_at_request=local_at_request,
                )
                last_expired = error
                if attempt < self.max_retries:
                    delay = self.backoff_delay(attempt + 1)
                    logger.warning(
                        "Signature expired, re-signing",
                        method=method,
                        path=path,
                        attempt=attempt + 1,
                        max_attempts=self.max_retries + 1,
                        next_buffer_seconds=self.clock.buffer_for(attempt + 1),
                        offset_seconds=self.clock.offset_seconds,
                        wait=f"{delay:.2f}s",
                    )
                    if delay > 0:
                        await self._sleep(delay)
                    continue
                break

            server_time = server_time_from_response(response.headers, response.payload)
            if server_time is not None:
                self.clock.observe_server_time(server_time, local_at_request)

            if isinstance(error, AuthenticationRejected):
                logger.error(
                    "Authentication rejected by venue",
                    method=method,
                    path=path,
                    status=error.status,
                    code=error.code,
                )
                raise error

            return self._degrade_or_raise(method, path, error)

        diagnostics = self.clock.diagnostics(self.max_retries)
        logger.error(
            "Signature retries exhausted",
            method=method,
            path=path,
            attempts=self.max_retries + 1,
            **diagnostics.to_dict(),
        )
        raise SignatureRetriesExhausted(
            f"{method} {path}: signature expired on all {self.max_retries + 1} attempts",
            attempts=self.max_retries + 1,
            diagnostics=diagnostics,
            last_error=last_expired,
        )

    async def fetch_server_time(self) -> Optional[float]:
        """
        Unsigned, single-shot venue time probe. Used as the clock time source.
        """
        url = f"{self._base_url}{canonical_path(SERVER_TIME_ENDPOINT)}"
        response = await self.transport.request(
            "GET", url, {"Content-Type": "application/json", HEADER_USER_AGENT: USER_AGENT}, None
        )
        return server_time_from_response(response.headers, response.payload)
