"""
Exception hierarchy for the exchange gateway.

Every failure that leaves the gateway is one of these, so callers (strategy
runner, CLI, UI) can report the specific kind instead of "request failed".
A clock-skew failure needs a resync; a credential failure needs new keys.

Hierarchy:

    GatewayError (base)
    ├── OperationalError          # venue/network, transient by nature
    │   ├── NetworkOrVenueError   # non-2xx response or transport failure
    │   │   └── SignatureExpired  # timestamp outside the acceptance window
    │   └── SignatureRetriesExhausted
    ├── CredentialError           # fatal, never retried
    │   ├── InvalidCredentialFormat
    │   └── AuthenticationRejected
    ├── BusinessRuleError         # local rule said no, no network attempted
    │   ├── RiskLimitExceeded
    │   └── PositionNotOpen
    ├── SessionInactive           # trading call outside an Active session
    └── InvariantError
        └── InvalidSessionTransition

Rules:
    - SignatureExpired: retried inside the dispatcher, only surfaced wrapped
      in SignatureRetriesExhausted once the bound is hit.
    - NetworkOrVenueError: propagated for POST/DELETE, degraded to an
      EmptyResult for GET.
    - CredentialError: propagated immediately; moves a verifying session to Error.
    - BusinessRuleError / SessionInactive: propagated immediately.
    - InvariantError: programming error, let it crash.
"""
from typing import Any, Dict, Optional


class GatewayError(Exception):
    """Base exception for all gateway errors."""

    kind = "gateway_error"

    def __init__(self, message: str = "", context: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.context: Dict[str, Any] = dict(context or {})


# ============ OPERATIONAL ============

class OperationalError(GatewayError):
    """Venue or network failure."""

    kind = "operational_error"


class NetworkOrVenueError(OperationalError):
    """Venue returned an error response, or the request never got one.

    status is None for transport failures (DNS, reset, timeout).
    """

    kind = "network_or_venue_error"

    def __init__(
        self,
        message: str = "",
        status: Optional[int] = None,
        code: Optional[str] = None,
        payload: Any = None,
        clock_offset: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, context)
        self.status = status
        self.code = code
        self.payload = payload
        self.clock_offset = clock_offset

    def __str__(self) -> str:
        parts = [self.message or self.kind]
        if self.status is not None:
            parts.append(f"status={self.status}")
        if self.code:
            parts.append(f"code={self.code}")
        return " ".join(parts)


class SignatureExpired(NetworkOrVenueError):
    """Timestamp was outside the venue's acceptance window on arrival."""

    kind = "signature_expired"

    @property
    def server_time(self) -> Optional[int]:
        return self.context.get("server_time")

    @property
    def request_time(self) -> Optional[int]:
        return self.context.get("request_time")


class SignatureRetriesExhausted(OperationalError):
    """Every signing attempt expired. Carries the last clock diagnostics."""

    kind = "signature_retries_exhausted"

    def __init__(self, message: str, attempts: int, diagnostics: Any = None,
                 last_error: Optional[SignatureExpired] = None):
        super().__init__(message)
        self.attempts = attempts
        self.diagnostics = diagnostics
        self.last_error = last_error


# ============ CREDENTIAL (fatal) ============

class CredentialError(GatewayError):
    """Credential problem. Retrying cannot succeed."""

    kind = "credential_error"


class InvalidCredentialFormat(CredentialError):
    """Key, secret or base URL is malformed. Raised before any I/O."""

    kind = "invalid_credential_format"


class AuthenticationRejected(CredentialError):
    """Venue rejected the key/secret (not a timing issue)."""

    kind = "authentication_rejected"

    def __init__(self, message: str = "", status: Optional[int] = None,
                 code: Optional[str] = None, payload: Any = None,
                 context: Optional[Dict[str, Any]] = None):
        super().__init__(message, context)
        self.status = status
        self.code = code
        self.payload = payload


# ============ BUSINESS RULES ============

class BusinessRuleError(GatewayError):
    """A local rule rejected the operation before any network call."""

    kind = "business_rule_error"


class RiskLimitExceeded(BusinessRuleError):
    """Current drawdown is at or above the configured maximum."""

    kind = "risk_limit_exceeded"

    def __init__(self, message: str, metrics: Any = None):
        super().__init__(message)
        self.metrics = metrics


class PositionNotOpen(BusinessRuleError):
    """Position is unknown to the ledger or already closed."""

    kind = "position_not_open"


# ============ SESSION ============

class SessionInactive(GatewayError):
    """Trading call attempted while the session is not Active."""

    kind = "session_inactive"

    def __init__(self, message: str, state: Any = None):
        super().__init__(message)
        self.state = state


# ============ INVARIANT ============

class InvariantError(GatewayError):
    """Internal invariant violated. Should never be caught and continued."""

    kind = "invariant_error"


class InvalidSessionTransition(InvariantError):
    """Requested session transition is not in the state machine."""

    kind = "invalid_session_transition"
