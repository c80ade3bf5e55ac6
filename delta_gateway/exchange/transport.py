"""
aiohttp transport for venue REST calls.

One call, one HTTP request. Retry policy lives in the dispatcher, never here.
"""
import asyncio
import json
import ssl
from typing import Dict, Optional

import aiohttp
import certifi

from delta_gateway.constants import DEFAULT_API_TIMEOUT
from delta_gateway.domain.protocols import HttpResponse
from delta_gateway.exceptions import NetworkOrVenueError
from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)


class AiohttpTransport:
    """
    HttpTransport backed by a lazily created aiohttp.ClientSession.

    MUST be used (and closed) inside the running event loop that owns it.
    """

    def __init__(self, timeout_seconds: float = DEFAULT_API_TIMEOUT):
        self.timeout_seconds = timeout_seconds
        self._session: Optional[aiohttp.ClientSession] = None
        self._ssl_context: Optional[ssl.SSLContext] = None

    def _get_ssl_context(self) -> ssl.SSLContext:
        """Reusable SSL context with certifi certificates."""
        if self._ssl_context is None:
            self._ssl_context = ssl.create_default_context(cafile=certifi.where())
        return self._ssl_context

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(ssl=self._get_ssl_context())
            timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)
            self._session = aiohttp.ClientSession(connector=connector, timeout=timeout)
        return self._session

    async def request(
        self,
        method: str,
        url: str,
        headers: Dict[str, str],
        body: Optional[str] = None,
    ) -> HttpResponse:
        session = self._get_session()
        try:
            async with session.request(method, url, headers=headers, data=body or None) as response:
                text = await response.text()
                try:
                    payload = json.loads(text) if text else None
                except json.JSONDecodeError:
                    payload = {"raw": text[:500]}
                return HttpResponse(
                    status=response.status,
                    headers=dict(response.headers),
                    payload=payload,
                )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning("HTTP transport failure", method=method, url=url, error=str(e), error_type=type(e).__name__)
            raise NetworkOrVenueError(f"Transport failure: {type(e).__name__}: {e}") from e

    async def close(self) -> None:
        """Cleanup resources."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None
