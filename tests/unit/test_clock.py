"""
Clock skew estimator: offset, safety buffer, retry buffer growth, resync policy.
"""
from unittest.mock import AsyncMock

import pytest

from delta_gateway.exceptions import NetworkOrVenueError
from delta_gateway.exchange.clock import ClockSkewEstimator, normalize_epoch, server_time_from_response


class FakeClock:
    def __init__(self, now: float):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestTimestamp:

    def test_default_buffer_added_to_floor_of_local_time(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.7))
        assert est.timestamp() == 1000 + 5

    def test_offset_applied(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        est.observe_server_time(1012.9, 1000.0)
        assert est.offset_seconds == 12
        assert est.timestamp() == 1000 + 12 + 5

    def test_negative_offset_when_local_clock_is_ahead(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        est.observe_server_time(970.0, 1000.0)
        assert est.offset_seconds == -30
        assert est.timestamp() == 1000 - 30 + 5


class TestBuffer:

    def test_buffer_grows_per_retry(self):
        est = ClockSkewEstimator(clock=FakeClock(0.0))
        assert [est.buffer_for(a) for a in range(4)] == [5, 15, 25, 35]

    def test_skew_absorbed_by_offset_keeps_progressive_buffer(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        # Our request was stamped 1005, venue says it was already 1060
        est.observe_expired_signature(request_time=1005, server_time=1060, local_time_at_request=1000.0)
        assert est.diagnostics().detected_skew_seconds == 55
        assert est.offset_seconds == 60
        assert est.buffer_for(1) == 15
        assert est.timestamp(1) == 1000 + 60 + 15

    def test_skew_left_after_offset_correction_widens_buffer(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        est.observe_server_time(1060, 1000.0)
        # Offset already 60 and the venue still saw us 55s behind
        est.observe_expired_signature(request_time=1005, server_time=1060, local_time_at_request=1000.0)
        assert est.offset_seconds == 60
        assert est.buffer_for(1) == 5 + 55 + 5
        assert est.buffer_for(0) == 5

    def test_partially_absorbed_skew_widens_by_remainder(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        # Offset moves 0 -> 60 but the stamp was 80s behind
        est.observe_expired_signature(request_time=980, server_time=1060, local_time_at_request=1000.0)
        assert est.diagnostics().detected_skew_seconds == 80
        assert est.buffer_for(1) == 5 + 20 + 5
        assert est.timestamp(1) == 1000 + 60 + 30

    def test_small_skew_keeps_progressive_buffer(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        est.observe_expired_signature(request_time=1005, server_time=1008, local_time_at_request=1000.0)
        assert est.buffer_for(1) == 15

    def test_success_clears_detected_skew(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        est.observe_server_time(1060, 1000.0)
        est.observe_expired_signature(request_time=1005, server_time=1060, local_time_at_request=1000.0)
        est.record_success()
        assert est.buffer_for(1) == 15

    def test_expired_signature_updates_offset_immediately(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0))
        est.observe_expired_signature(request_time=1005, server_time=1060, local_time_at_request=1000.0)
        assert est.offset_seconds == 60


class TestSync:

    @pytest.mark.asyncio
    async def test_sync_adopts_server_time(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0), time_source=AsyncMock(return_value=1003.0))
        offset = await est.sync()
        assert offset.offset_seconds == 3
        assert offset.last_synced_at is not None

    @pytest.mark.asyncio
    async def test_sync_failure_keeps_last_offset(self):
        source = AsyncMock(return_value=1010.0)
        est = ClockSkewEstimator(clock=FakeClock(1000.0), time_source=source)
        await est.sync()
        source.side_effect = NetworkOrVenueError("unreachable")
        offset = await est.sync()
        assert offset.offset_seconds == 10
        assert est.timestamp() == 1000 + 10 + 5

    @pytest.mark.asyncio
    async def test_sync_failure_with_no_history_falls_back_to_zero(self):
        est = ClockSkewEstimator(clock=FakeClock(1000.0), time_source=AsyncMock(side_effect=OSError("dns")))
        await est.sync()
        assert est.offset_seconds == 0
        assert est.timestamp() == 1005

    @pytest.mark.asyncio
    async def test_resync_at_most_once_per_interval(self):
        clock = FakeClock(1000.0)
        source = AsyncMock(return_value=1000.0)
        est = ClockSkewEstimator(clock=clock, time_source=source, resync_interval_seconds=300)

        await est.maybe_resync()
        await est.maybe_resync()
        assert source.await_count == 1

        clock.now = 1299.0
        await est.maybe_resync()
        assert source.await_count == 1

        clock.now = 1300.0
        await est.maybe_resync()
        assert source.await_count == 2

    @pytest.mark.asyncio
    async def test_failed_attempt_also_waits_for_interval(self):
        clock = FakeClock(1000.0)
        source = AsyncMock(side_effect=OSError("down"))
        est = ClockSkewEstimator(clock=clock, time_source=source)
        await est.maybe_resync()
        await est.maybe_resync()
        assert source.await_count == 1

    def test_no_time_source_never_needs_resync(self):
        assert ClockSkewEstimator(clock=FakeClock(0.0)).needs_resync() is False


class TestServerTimeExtraction:

    @pytest.mark.parametrize("raw,expected", [
        (1700000000, 1700000000.0),
        (1700000000123, 1700000000.123),
        (1700000000123456, 1700000000.123456),
        ("1700000000", 1700000000.0),
        (None, None),
        ("nope", None),
        (-5, None),
    ])
    def test_normalize_epoch(self, raw, expected):
        result = normalize_epoch(raw)
        if expected is None:
            assert result is None
        else:
            assert result == pytest.approx(expected)

    def test_error_context_server_time(self):
        payload = {"success": False, "error": {"code": "expired_signature", "context": {"server_time": 1700000100}}}
        assert server_time_from_response({}, payload) == 1700000100

    def test_result_server_time_in_microseconds(self):
        payload = {"success": True, "result": {"server_time": 1700000000000000}}
        assert server_time_from_response({}, payload) == pytest.approx(1700000000.0)

    def test_date_header_fallback(self):
        headers = {"Date": "Tue, 14 Nov 2023 22:13:20 GMT"}
        assert server_time_from_response(headers, {"success": True, "result": []}) == 1700000000.0

    def test_nothing_available(self):
        assert server_time_from_response({}, {"success": True, "result": []}) is None
