"""
Request signing for the Delta Exchange REST API.

signature = hex(HMAC-SHA256(secret, METHOD + TIMESTAMP + PATH + BODY))

Pure: no clock, no I/O. The caller supplies the timestamp.
"""
import hashlib
import hmac
import json
from typing import Any, Optional
from urllib.parse import urlencode

from delta_gateway.constants import API_VERSION_PREFIX
from delta_gateway.domain.models import SignedRequest


def canonical_path(path: str, query: Optional[dict] = None) -> str:
    """
    Signing path: always /v2 prefixed, query string appended when present.

    >>> canonical_path("/orders")
    '/v2/orders'
    >>> canonical_path("v2/products", {"page_size": 1})
    '/v2/products?page_size=1'
    """
    if not path.startswith("/"):
        path = "/" + path
    if path != API_VERSION_PREFIX and not path.startswith(API_VERSION_PREFIX + "/"):
        path = API_VERSION_PREFIX + path
    if query:
        path = f"{path}?{urlencode(query)}"
    return path


def encode_body(body: Any) -> str:
    """Compact JSON for the wire and the signature. Empty string when bodiless."""
    if body is None or body == "":
        return ""
    if isinstance(body, str):
        return body
    return json.dumps(body, separators=(",", ":"), default=str)


class RequestSigner:
    """
    HMAC-SHA256 signer bound to one API secret.

    Deterministic: same (method, timestamp, path, body) always yields the
    same signature.
    """

    def __init__(self, secret: str):
        self._secret = secret.encode("utf-8")

    def sign(self, method: str, timestamp: int | str, path: str, body: str = "") -> str:
        """
        Sign one request.

        Args:
            method: HTTP method, upper-cased before signing
            timestamp: Integer seconds (venue clock)
            path: Canonical path including /v2 and any query string
            body: Encoded JSON body, or "" for bodiless requests

        Returns:
            Lowercase hex digest
        """
        message = f"{method.upper()}{timestamp}{path}{body or ''}"
        return hmac.new(self._secret, message.encode("utf-8"), hashlib.sha256).hexdigest()

    def build(self, method: str, timestamp: int, path: str, body: str = "") -> SignedRequest:
        """Sign and package a request for one dispatch attempt."""
        return SignedRequest(
            method=method.upper(),
            path=path,
            body=body,
            timestamp=timestamp,
            signature=self.sign(method, timestamp, path, body),
        )
