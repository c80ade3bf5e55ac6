"""
Execution module.

ARCHITECTURE:
    DeltaGateway
        │
        ├── PositionLedger (open / close / refresh)
        │       │
        │       ├── SessionController (gate, before any I/O)
        │       ├── RiskEngine (drawdown veto, before any I/O)
        │       └── DeltaClient -> ResilientDispatcher
        │
        └── KillSwitch (PREVENT_NEW / CLOSE_ALL / BOTH)
"""
from delta_gateway.execution.position_ledger import PositionLedger

__all__ = [
    "PositionLedger",
]
