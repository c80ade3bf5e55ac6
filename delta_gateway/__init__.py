"""
Authenticated gateway for Delta Exchange (India).

Signs every request, keeps the local clock aligned with the venue, retries
expired signatures within a fixed bound, and gates trading on an explicit
session lifecycle with drawdown limits and a kill switch.
"""
from delta_gateway.domain.models import (
    Credential,
    KillSwitchMode,
    OrderRequest,
    OrderSide,
    OrderType,
    SessionState,
)
from delta_gateway.gateway import DeltaGateway

__version__ = "0.1.0"

__all__ = [
    "Credential",
    "DeltaGateway",
    "KillSwitchMode",
    "OrderRequest",
    "OrderSide",
    "OrderType",
    "SessionState",
]
