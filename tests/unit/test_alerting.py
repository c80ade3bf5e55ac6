"""
Webhook alerting: event mapping, rate limiting, non-fatal delivery.
"""
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from delta_gateway.domain.events import (
    EventBus,
    KillSwitchActivated,
    SessionStateChanged,
    StrategyStarted,
    TradeFailed,
)
from delta_gateway.monitoring import alerting
from delta_gateway.monitoring.alerting import AlertNotifier, format_event_alert


def _trade_failed():
    return TradeFailed(
        product_id=27,
        symbol="BTCUSD",
        side="buy",
        error_kind="authentication_rejected",
        message="invalid_api_key",
        purpose="open",
    )


class TestFormat:

    def test_kill_switch_is_urgent(self):
        event_type, message, urgent = format_event_alert(KillSwitchActivated(mode="both", closed_positions=2))
        assert event_type == "KILL_SWITCH"
        assert "both" in message
        assert urgent is True

    def test_trade_failed(self):
        event_type, message, urgent = format_event_alert(_trade_failed())
        assert event_type == "TRADE_FAILED"
        assert "authentication_rejected" in message
        assert urgent is False

    def test_session_error_only(self):
        assert format_event_alert(SessionStateChanged(previous="verifying", current="active")) is None
        event_type, message, _ = format_event_alert(
            SessionStateChanged(previous="verifying", current="error", reason="authentication_rejected: x")
        )
        assert event_type == "SESSION_ERROR"
        assert "authentication_rejected" in message

    def test_other_events_ignored(self):
        assert format_event_alert(StrategyStarted(strategy="s", symbol="BTCUSD")) is None


class TestSend:

    @pytest.mark.asyncio
    async def test_no_webhook_configured(self, monkeypatch):
        monkeypatch.delenv("ALERT_WEBHOOK_URL", raising=False)
        assert await AlertNotifier().send_alert("KILL_SWITCH", "msg", urgent=True) is False

    @pytest.mark.asyncio
    async def test_delivery_failure_is_swallowed_and_rate_limited(self, monkeypatch):
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.test/alert")
        notifier = AlertNotifier()
        with patch.object(alerting.aiohttp, "ClientSession", MagicMock(side_effect=OSError("dns"))):
            assert await notifier.send_alert("TRADE_FAILED", "first") is True
            assert await notifier.send_alert("TRADE_FAILED", "second") is False
            assert await notifier.send_alert("TRADE_FAILED", "urgent", urgent=True) is True
            assert await notifier.send_alert("KILL_SWITCH", "other type") is True

    @pytest.mark.asyncio
    async def test_rate_limits_are_per_notifier(self, monkeypatch):
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.test/alert")
        first, second = AlertNotifier(), AlertNotifier()
        with patch.object(alerting.aiohttp, "ClientSession", MagicMock(side_effect=OSError("dns"))):
            assert await first.send_alert("TRADE_FAILED", "gateway one") is True
            assert await second.send_alert("TRADE_FAILED", "gateway two") is True
            assert await first.send_alert("TRADE_FAILED", "gateway one again") is False

    @pytest.mark.asyncio
    async def test_zero_rate_limit_sends_every_alert(self, monkeypatch):
        monkeypatch.setenv("ALERT_WEBHOOK_URL", "https://hooks.example.test/alert")
        notifier = AlertNotifier(rate_limit_seconds=0)
        with patch.object(alerting.aiohttp, "ClientSession", MagicMock(side_effect=OSError("dns"))):
            assert await notifier.send_alert("TRADE_FAILED", "a") is True
            assert await notifier.send_alert("TRADE_FAILED", "b") is True


@pytest.mark.asyncio
async def test_notifier_forwards_alert_worthy_events():
    notifier = AlertNotifier()
    with patch.object(notifier, "send_alert", AsyncMock(return_value=True)) as send:
        await notifier(StrategyStarted(strategy="s", symbol="BTCUSD"))
        await notifier(KillSwitchActivated(mode="close_all"))

    assert send.await_count == 1
    assert send.await_args.args[0] == "KILL_SWITCH"
    assert send.await_args.kwargs == {"urgent": True}


@pytest.mark.asyncio
async def test_notifier_subscribes_to_event_bus():
    bus = EventBus()
    notifier = AlertNotifier()
    bus.subscribe(notifier)
    with patch.object(notifier, "send_alert", AsyncMock(return_value=True)) as send:
        await bus.publish(_trade_failed())

    assert send.await_args.args[0] == "TRADE_FAILED"
