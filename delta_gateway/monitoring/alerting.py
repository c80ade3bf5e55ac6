"""
Webhook alerting for critical gateway events.

Sends notifications via webhook (Telegram, Discord or generic JSON POST).
Configure via environment variables:
  ALERT_WEBHOOK_URL  - Telegram bot URL or Discord webhook URL
  ALERT_CHAT_ID      - Telegram chat ID (required for Telegram, ignored for Discord)

If no webhook is configured, alerts are logged but not sent. Alert failures
never propagate.
"""
import os
from datetime import datetime, timezone
from typing import Dict, Optional

import aiohttp

from delta_gateway.domain.events import (
    GatewayEvent,
    KillSwitchActivated,
    SessionStateChanged,
    TradeFailed,
)
from delta_gateway.domain.models import SessionState
from delta_gateway.monitoring.logger import get_logger

logger = get_logger(__name__)

# Max 1 alert per event type per 5 minutes unless urgent
_RATE_LIMIT_SECONDS = 300


def _is_telegram(url: str) -> bool:
    return "api.telegram.org" in url


def _is_discord(url: str) -> bool:
    return "discord.com/api/webhooks" in url or "discordapp.com/api/webhooks" in url


def format_event_alert(event: GatewayEvent) -> Optional[tuple]:
    """
    Map a gateway event to (alert_type, message, urgent), or None if the
    event is not alert-worthy.
    """
    if isinstance(event, KillSwitchActivated):
        return (
            "KILL_SWITCH",
            f"Kill switch activated\nMode: {event.mode}\n"
            f"Closed: {event.closed_positions}  Failed: {event.failed_positions}",
            True,
        )
    if isinstance(event, TradeFailed):
        return (
            "TRADE_FAILED",
            f"{event.purpose} {event.side or ''} {event.symbol or event.product_id} failed\n"
            f"Kind: {event.error_kind}\n{event.message}",
            False,
        )
    if isinstance(event, SessionStateChanged) and event.current == SessionState.ERROR.value:
        return ("SESSION_ERROR", f"Session entered Error\nReason: {event.reason}", True)
    return None


class AlertNotifier:
    """
    EventBus subscriber forwarding alert-worthy events to the webhook.

    Rate limiting is per notifier, so each gateway subscribes its own:

        gateway.events.subscribe(AlertNotifier())
    """

    def __init__(self, rate_limit_seconds: float = _RATE_LIMIT_SECONDS):
        self.rate_limit_seconds = rate_limit_seconds
        self._last_alert_times: Dict[str, datetime] = {}

    async def send_alert(self, event_type: str, message: str, urgent: bool = False) -> bool:
        """
        Send an alert notification.

        Args:
            event_type: Alert category (e.g. "KILL_SWITCH", "TRADE_FAILED")
            message: Human-readable message
            urgent: Bypass rate limiting

        Returns:
            True if a webhook POST was attempted
        """
        webhook_url = os.environ.get("ALERT_WEBHOOK_URL", "").strip()
        chat_id = os.environ.get("ALERT_CHAT_ID", "").strip()

        if not webhook_url:
            logger.info("Alert (no webhook configured)", event_type=event_type, message=message)
            return False

        now = datetime.now(timezone.utc)
        if not urgent:
            last = self._last_alert_times.get(event_type)
            if last and (now - last).total_seconds() < self.rate_limit_seconds:
                return False
        self._last_alert_times[event_type] = now

        timestamp = now.strftime("%H:%M:%S UTC")
        prefix = "🚨" if urgent else "📊"
        formatted = f"{prefix} [{event_type}] {timestamp}\n{message}"

        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=10)) as session:
                if _is_telegram(webhook_url):
                    payload = {"chat_id": chat_id, "text": formatted, "parse_mode": "HTML"}
                    async with session.post(webhook_url, json=payload) as resp:
                        if resp.status != 200:
                            body = await resp.text()
                            logger.warning("Telegram alert failed", status=resp.status, body=body[:200])
                elif _is_discord(webhook_url):
                    payload = {"content": formatted}
                    async with session.post(webhook_url, json=payload) as resp:
                        if resp.status not in (200, 204):
                            body = await resp.text()
                            logger.warning("Discord alert failed", status=resp.status, body=body[:200])
                else:
                    payload = {
                        "event_type": event_type,
                        "message": message,
                        "timestamp": now.isoformat(),
                        "urgent": urgent,
                    }
                    async with session.post(webhook_url, json=payload) as resp:
                        if resp.status >= 400:
                            logger.warning("Webhook alert failed", status=resp.status)
        except Exception as e:
            logger.warning("Alert send failed (non-fatal)", event_type=event_type, error=str(e))
        return True

    async def __call__(self, event: GatewayEvent) -> None:
        alert = format_event_alert(event)
        if alert is None:
            return
        event_type, message, urgent = alert
        await self.send_alert(event_type, message, urgent=urgent)
