from .base import Balance, ClosedPosition, OrderFill, PaperOrder, SandboxAdapter, SandboxPosition
from .registry import SandboxRegistry
from .sandbox import InsufficientFunds, SandboxExecutor, SandboxLedger

__all__ = [
    "Balance",
    "ClosedPosition",
    "OrderFill",
    "PaperOrder",
    "SandboxAdapter",
    "SandboxPosition",
    "SandboxRegistry",
    "SandboxExecutor",
    "SandboxLedger",
    "InsufficientFunds",
]
