"""
Runtime control: the session gate and the periodic ledger refresh.
"""
from delta_gateway.runtime.session import SessionController, SessionStatus

__all__ = [
    "SessionController",
    "SessionStatus",
]
