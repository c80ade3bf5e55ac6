"""
Clock skew estimation against the venue's clock.

The venue rejects signatures whose timestamp is outside a ~5 second window,
so every outgoing timestamp is

    floor(local_now) + offset_seconds + buffer(attempt)

where offset_seconds tracks (server_time - local_time_at_request) and the
buffer grows on signature-expiry retries.

Offset sources, in order of authority:
  1. error.context.server_time on an expired-signature response (immediate)
  2. server time on any other response (result field or Date header, immediate)
  3. periodic resync through the injected time source (at most once per interval)

A time source failure never reaches the caller: the last known offset (or 0)
keeps being used.
"""
import math
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Mapping, Optional

from delta_gateway.constants import (
    DEFAULT_LARGE_SKEW_THRESHOLD_SECONDS,
    DEFAULT_RESYNC_INTERVAL_SECONDS,
    DEFAULT_RETRY_BUFFER_STEP_SECONDS,
    DEFAULT_SAFETY_BUFFER_SECONDS,
    DEFAULT_SKEW_SAFETY_MARGIN_SECONDS,
)
from delta_gateway.domain.models import ClockDiagnostics, ClockOffset
from delta_gateway.exceptions import OperationalError
from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)

TimeSource = Callable[[], Awaitable[Optional[float]]]


def normalize_epoch(value: Any) -> Optional[float]:
    """
    Coerce an epoch in s, ms or µs (number or numeric string) to seconds.

    Returns None for anything that is not a plausible epoch.
    """
    try:
        v = float(value)
    except (TypeError, ValueError):
        return None
    if v <= 0 or math.isnan(v):
        return None
    if v > 1e14:  # microseconds
        return v / 1_000_000
    if v > 1e11:  # milliseconds
        return v / 1_000
    return v


def server_time_from_response(headers: Optional[Mapping[str, str]], payload: Any) -> Optional[float]:
    """
    Best-effort venue time from a response.

    Prefers an explicit server_time in the body (top level, result, or
    error.context), falls back to the HTTP Date header.
    """
    if isinstance(payload, dict):
        candidates = [payload.get("server_time")]
        result = payload.get("result")
        if isinstance(result, dict):
            candidates.append(result.get("server_time"))
        error = payload.get("error")
        if isinstance(error, dict) and isinstance(error.get("context"), dict):
            candidates.append(error["context"].get("server_time"))
        for candidate in candidates:
            ts = normalize_epoch(candidate)
            if ts is not None:
                return ts

    if headers:
        date_header = None
        for k, v in headers.items():
            if k.lower() == "date":
                date_header = v
                break
        if date_header:
            try:
                return parsedate_to_datetime(date_header).timestamp()
            except (TypeError, ValueError, IndexError):
                return None
    return None


class ClockSkewEstimator:
    """
    Owns the shared ClockOffset. Mutated only through observe_*/sync.
    """

    def __init__(
        self,
        safety_buffer_seconds: int = DEFAULT_SAFETY_BUFFER_SECONDS,
        resync_interval_seconds: float = DEFAULT_RESYNC_INTERVAL_SECONDS,
        retry_buffer_step_seconds: int = DEFAULT_RETRY_BUFFER_STEP_SECONDS,
        large_skew_threshold_seconds: int = DEFAULT_LARGE_SKEW_THRESHOLD_SECONDS,
        skew_safety_margin_seconds: int = DEFAULT_SKEW_SAFETY_MARGIN_SECONDS,
        time_source: Optional[TimeSource] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.safety_buffer_seconds = safety_buffer_seconds
        self.resync_interval_seconds = resync_interval_seconds
        self.retry_buffer_step_seconds = retry_buffer_step_seconds
        self.large_skew_threshold_seconds = large_skew_threshold_seconds
        self.skew_safety_margin_seconds = skew_safety_margin_seconds
        self._time_source = time_source
        self._clock = clock

        self._offset_seconds: int = 0
        self._last_synced_at: Optional[datetime] = None
        self._last_synced_local: Optional[float] = None
        self._last_sync_attempt: Optional[float] = None
        self._detected_skew: Optional[int] = None
        self._residual_skew: Optional[int] = None
        self._last_request_time: Optional[int] = None
        self._last_server_time: Optional[int] = None

    def set_time_source(self, time_source: Optional[TimeSource]) -> None:
        self._time_source = time_source

    @property
    def offset(self) -> ClockOffset:
        return ClockOffset(offset_seconds=self._offset_seconds, last_synced_at=self._last_synced_at)

    @property
    def offset_seconds(self) -> int:
        return self._offset_seconds

    def local_time(self) -> float:
        return self._clock()

    def buffer_for(self, attempt: int = 0) -> int:
        """
        Safety buffer for a given retry index (0 = first attempt).

        Grows by retry_buffer_step per retry. If the last expiry left a large
        residual skew (the part the offset correction did not absorb), at
        least residual + safety margin on top of the base buffer.
        """
        buffer = self.safety_buffer_seconds + self.retry_buffer_step_seconds * max(0, attempt)
        if attempt > 0 and self._residual_skew is not None:
            if self._residual_skew >= self.large_skew_threshold_seconds:
                buffer = max(
                    buffer,
                    self.safety_buffer_seconds + self._residual_skew + self.skew_safety_margin_seconds,
                )
        return buffer

    def timestamp(self, attempt: int = 0) -> int:
        """Venue-adjusted integer timestamp for signing."""
        return math.floor(self._clock()) + self._offset_seconds + self.buffer_for(attempt)

    def observe_server_time(self, server_time: float, local_time_at_request: float) -> None:
        """Adopt a venue-reported time immediately."""
        new_offset = math.floor(server_time) - math.floor(local_time_at_request)
        if new_offset != self._offset_seconds:
            logger.info(
                "Clock offset updated",
                previous_offset_seconds=self._offset_seconds,
                offset_seconds=new_offset,
            )
        self._offset_seconds = new_offset
        self._last_server_time = math.floor(server_time)
        self._last_synced_at = datetime.now(timezone.utc)
        self._last_synced_local = self._clock()

    def observe_expired_signature(
        self,
        request_time: Optional[int],
        server_time: Optional[float],
        local_time_at_request: float,
    ) -> None:
        """
        Record an expired-signature rejection.

        detected skew = how far behind the venue our signed timestamp was.
        residual skew = detected skew minus the offset change this response
        caused; the next timestamp already carries the corrected offset, so
        only the residual widens the retry buffer.
        """
        self._last_request_time = request_time
        if server_time is None:
            return
        previous_offset = self._offset_seconds
        self.observe_server_time(server_time, local_time_at_request)
        if request_time is not None:
            self._detected_skew = math.floor(server_time) - int(request_time)
            self._residual_skew = self._detected_skew - (self._offset_seconds - previous_offset)
            logger.warning(
                "Signature expired, skew detected",
                request_time=request_time,
                server_time=math.floor(server_time),
                detected_skew_seconds=self._detected_skew,
                residual_skew_seconds=self._residual_skew,
            )

    def record_success(self) -> None:
        """A signed request was accepted; forget the last detected skew."""
        self._detected_skew = None
        self._residual_skew = None

    def needs_resync(self) -> bool:
        if self._time_source is None:
            return False
        reference = self._last_sync_attempt
        if self._last_synced_local is not None:
            reference = max(reference or 0.0, self._last_synced_local)
        if reference is None:
            return True
        return (self._clock() - reference) >= self.resync_interval_seconds

    async def maybe_resync(self) -> None:
        """Resync if the interval has elapsed since the last sync or attempt."""
        if self.needs_resync():
            await self.sync()

    async def sync(self) -> ClockOffset:
        """
        Explicit resync against the time source.

        Never raises for time source failures; falls back to the last offset.
        """
        if self._time_source is None:
            return self.offset

        local_at_request = self._clock()
        self._last_sync_attempt = local_at_request
        try:
            server_time = await self._time_source()
        except (OperationalError, OSError, ValueError, TypeError) as e:
            logger.warning(
                "Clock sync failed, keeping last offset",
                offset_seconds=self._offset_seconds,
                error=str(e),
                error_type=type(e).__name__,
            )
            return self.offset

        if server_time is None:
            logger.warning("Clock sync returned no server time", offset_seconds=self._offset_seconds)
            return self.offset

        self.observe_server_time(server_time, local_at_request)
        return self.offset

    def diagnostics(self, attempt: int = 0) -> ClockDiagnostics:
        return ClockDiagnostics(
            offset_seconds=self._offset_seconds,
            last_synced_at=self._last_synced_at,
            last_request_time=self._last_request_time,
            last_server_time=self._last_server_time,
            detected_skew_seconds=self._detected_skew,
            buffer_seconds=self.buffer_for(attempt),
        )
