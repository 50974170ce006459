from __future__ import annotations

import abc
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Literal, Optional

Direction = Literal["long", "short"]


@dataclass(frozen=True)
class PaperOrder:
    pair: str
    direction: Direction
    entry_price: float   # requested price; the fill adds slippage
    amount: float        # notional in quote currency
    leverage: float = 1.0


@dataclass(frozen=True)
class OrderFill:
    success: bool
    order_id: str
    fill_price: float
    slippage: float      # absolute price distance, always >= 0
    fee: float
    reason: Optional[str] = None

    @classmethod
    def rejected(cls, reason: str) -> "OrderFill":
        return cls(success=False, order_id="", fill_price=0.0, slippage=0.0, fee=0.0, reason=reason)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ClosedPosition:
    pnl: float
    fee: float


@dataclass
class SandboxPosition:
    pair: str
    direction: Direction
    entry_price: float
    amount: float
    venue: str
    leverage: float = 1.0
    margin: float = 0.0   # cash locked at entry (amount / leverage)

    def unrealized_pnl(self, price: float) -> float:
        if self.entry_price <= 0:
            return 0.0
        if self.direction == "long":
            change = (price - self.entry_price) / self.entry_price
        else:
            change = (self.entry_price - price) / self.entry_price
        return self.amount * change

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Balance:
    venue: str
    available: float
    in_position: float
    total: float
    notional: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class SandboxAdapter(abc.ABC):
    """Интерфейс симулятора площадки (paper trading вместо реальной биржи)."""

    name: str = "base"

    # ---- ордера ----
    @abc.abstractmethod
    def place_order(self, order: PaperOrder) -> OrderFill:
        ...

    @abc.abstractmethod
    def close_position(self, pair: str, exit_price: float) -> Optional[ClosedPosition]:
        ...

    # ---- состояние ----
    @abc.abstractmethod
    def get_positions(self) -> List[SandboxPosition]:
        ...

    @abc.abstractmethod
    def get_balance(self) -> Balance:
        ...

    @abc.abstractmethod
    def reset_balance(self, amount: float) -> None:
        ...
