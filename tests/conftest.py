"""
Pytest configuration and shared fixtures.

Gateways built here use FakeTransport and a fixed local clock (NOW).
"""
from typing import Any, List, Optional

import pytest

from delta_gateway.config.config import GatewayConfig, PollingConfig, RetryConfig, RiskConfig
from delta_gateway.domain.models import Credential
from delta_gateway.gateway import DeltaGateway
from tests.helpers import NOW, FakeTransport


def pytest_configure(config):
    """Register custom marks. Async tests require pytest-asyncio."""
    config.addinivalue_line("markers", "asyncio: mark test as async (pytest-asyncio).")


@pytest.fixture
def credential():
    return Credential(key="test-key", secret="test-secret", base_url="https://api.test.delta")


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def gateway_config():
    return GatewayConfig(
        retry=RetryConfig(max_retries=3, base_delay_seconds=0.0, max_delay_seconds=0.0),
        risk=RiskConfig(max_drawdown_pct=20.0),
        polling=PollingConfig(refresh_interval_seconds=5),
    )


@pytest.fixture
def make_gateway(credential, fake_transport, gateway_config):
    """Factory so a test can tweak config before building."""

    def _make(config: Optional[GatewayConfig] = None) -> DeltaGateway:
        return DeltaGateway(
            credential,
            config or gateway_config,
            transport=fake_transport,
            clock=lambda: NOW,
        )

    return _make


@pytest.fixture
def gateway(make_gateway):
    return make_gateway()


@pytest.fixture
def recorded_events(gateway):
    events: List[Any] = []
    gateway.events.subscribe(events.append)
    return events
