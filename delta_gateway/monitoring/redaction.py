"""
Log redaction for structlog.

Any key that looks like it holds a credential or a signature is masked,
at any nesting depth. The api key, the secret and the request signature
all match.
"""

from __future__ import annotations

from typing import Any

REDACTED = "***REDACTED***"

SENSITIVE_KEY_FRAGMENTS = (
    "key",
    "secret",
    "token",
    "password",
    "authorization",
    "signature",
)


def is_sensitive_key(key: Any) -> bool:
    k = str(key).lower()
    return any(frag in k for frag in SENSITIVE_KEY_FRAGMENTS)


def redact(obj: Any) -> Any:
    """Recursively mask values of sensitive dict keys."""
    if isinstance(obj, dict):
        return {k: (REDACTED if is_sensitive_key(k) else redact(v)) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(v) for v in obj]
    return obj


def structlog_redaction_processor(_logger: Any, _method_name: str, event_dict: dict) -> dict:
    return redact(event_dict)
