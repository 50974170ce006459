from __future__ import annotations

import math
import time
from typing import Callable, List, Optional

import numpy as np

from executors.base import Balance, ClosedPosition, OrderFill, PaperOrder, SandboxAdapter, SandboxPosition
from risk.fees import VenueFees
from utils.structured_logging import get_logger

LOG = get_logger("greenback.sandbox")

SLIPPAGE_MIN_PCT = 0.0001  # 0.01%
SLIPPAGE_MAX_PCT = 0.0005  # 0.05%
DEFAULT_INITIAL_BALANCE = 1000.0


class InsufficientFunds(ValueError):
    """Raised by the ledger when a debit would take the balance below zero."""


class SandboxLedger:
    """
    Кошелёк одной симулируемой площадки: свободный остаток + открытые позиции.
    Инвариант: available_balance >= 0 всегда; операция, нарушающая его, не выполняется.
    Сверка: available + committed_margin == initial + realized_pnl - fees_paid + written_off.

    Not synchronised: a ledger belongs to exactly one ``SandboxExecutor``.
    """

    def __init__(self, initial_balance: float = DEFAULT_INITIAL_BALANCE) -> None:
        self.available_balance = 0.0
        self.open_positions: List[SandboxPosition] = []
        self.realized_pnl = 0.0
        self.fees_paid = 0.0
        self.written_off = 0.0
        self.reset(initial_balance)

    def reset(self, amount: float) -> None:
        amount = float(amount)
        if not math.isfinite(amount) or amount < 0:
            raise ValueError(f"initial balance must be a non-negative number, got {amount!r}")
        self.available_balance = amount
        self.open_positions = []
        self.initial_balance = amount
        self.realized_pnl = 0.0
        self.fees_paid = 0.0
        self.written_off = 0.0

    def debit(self, amount: float) -> None:
        if amount > self.available_balance:
            raise InsufficientFunds(f"debit {amount:.8f} exceeds available {self.available_balance:.8f}")
        self.available_balance -= amount

    def credit(self, amount: float) -> float:
        """Add ``amount``; a shortfall below zero is written off and returned."""
        balance = self.available_balance + amount
        if balance >= 0.0:
            self.available_balance = balance
            return 0.0
        self.available_balance = 0.0
        self.written_off -= balance
        return -balance

    def committed_margin(self) -> float:
        return sum(p.margin for p in self.open_positions)

    def notional(self) -> float:
        return sum(p.amount for p in self.open_positions)

    def find(self, pair: str) -> Optional[int]:
        for idx, pos in enumerate(self.open_positions):
            if pos.pair == pair:
                return idx
        return None


class SandboxExecutor(SandboxAdapter):
    """
    Paper-trading площадка:
      • проскальзывание равномерно 0.01%–0.05% цены, всегда против трейдера
      • taker-комиссия и на вход, и на выход (maker-исполнение не моделируем)
      • маржа = amount / leverage; ордер отклоняется целиком, если margin + fee > available
    """

    def __init__(
        self,
        venue: str,
        fees: VenueFees,
        initial_balance: float = DEFAULT_INITIAL_BALANCE,
        *,
        rng: Optional[np.random.Generator] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.name = venue
        self.fees = fees.validate()
        self.max_leverage = fees.max_leverage
        self.ledger = SandboxLedger(initial_balance)
        self._rng = rng if rng is not None else np.random.default_rng()
        self._clock = clock
        self._order_counter = 0

    # ──────────────────────────────────────────────────────────────────────
    # Ордеры
    # ──────────────────────────────────────────────────────────────────────
    def place_order(self, order: PaperOrder) -> OrderFill:
        problem = self._check_order(order)
        if problem is not None:
            LOG.warning("sandbox %s rejected %s: %s", self.name, order.pair, problem)
            return OrderFill.rejected(problem)

        slip_pct = float(self._rng.uniform(SLIPPAGE_MIN_PCT, SLIPPAGE_MAX_PCT))
        slippage = order.entry_price * slip_pct
        # long покупает дороже, short продаёт дешевле
        fill_price = order.entry_price + slippage if order.direction == "long" else order.entry_price - slippage

        fee = order.amount * self.fees.taker
        margin = order.amount / order.leverage
        if margin + fee > self.ledger.available_balance:
            LOG.info(
                "sandbox %s insufficient funds for %s: need %.4f, available %.4f",
                self.name, order.pair, margin + fee, self.ledger.available_balance,
            )
            return OrderFill.rejected("Insufficient balance")

        self.ledger.debit(margin + fee)
        self.ledger.fees_paid += fee
        self.ledger.open_positions.append(
            SandboxPosition(
                pair=order.pair,
                direction=order.direction,
                entry_price=fill_price,
                amount=order.amount,
                venue=self.name,
                leverage=order.leverage,
                margin=margin,
            )
        )
        self._order_counter += 1
        order_id = f"{self.name}-{self._order_counter}-{int(self._clock() * 1000)}"
        LOG.debug("sandbox %s filled %s %s @ %.8f (slip %.8f, fee %.6f)",
                  self.name, order.direction, order.pair, fill_price, slippage, fee)
        return OrderFill(success=True, order_id=order_id, fill_price=fill_price, slippage=slippage, fee=fee)

    def _check_order(self, order: PaperOrder) -> Optional[str]:
        if order.direction not in ("long", "short"):
            return f"Invalid direction {order.direction!r}"
        for field_name in ("entry_price", "amount", "leverage"):
            value = getattr(order, field_name)
            if not isinstance(value, (int, float)) or not math.isfinite(value) or value <= 0:
                return f"Invalid {field_name}"
        if order.leverage < 1.0 or order.leverage > self.max_leverage:
            return f"Leverage {order.leverage:g}x outside 1..{self.max_leverage:g}x"
        return None

    def close_position(self, pair: str, exit_price: float) -> Optional[ClosedPosition]:
        idx = self.ledger.find(pair)
        if idx is None:
            return None
        if not math.isfinite(exit_price) or exit_price <= 0:
            LOG.warning("sandbox %s refused to close %s at invalid price %r", self.name, pair, exit_price)
            return None

        position = self.ledger.open_positions.pop(idx)
        pnl = position.unrealized_pnl(exit_price)
        fee = position.amount * self.fees.taker

        shortfall = self.ledger.credit(position.margin + pnl - fee)
        self.ledger.realized_pnl += pnl
        self.ledger.fees_paid += fee
        if shortfall > 0.0:
            LOG.warning("sandbox %s loss on %s exceeded the balance, %.6f written off", self.name, pair, shortfall)
        LOG.debug("sandbox %s closed %s @ %.8f pnl=%.6f fee=%.6f", self.name, pair, exit_price, pnl, fee)
        return ClosedPosition(pnl=pnl, fee=fee)

    # ──────────────────────────────────────────────────────────────────────
    # Баланс / позиции
    # ──────────────────────────────────────────────────────────────────────
    def get_positions(self) -> List[SandboxPosition]:
        return [SandboxPosition(**p.to_dict()) for p in self.ledger.open_positions]

    def get_balance(self) -> Balance:
        """
        ``in_position`` is the margin locked in open positions, so ``total`` is
        what the wallet is worth at entry prices. ``notional`` is the summed
        position size; the two only match at leverage 1.
        """
        in_position = self.ledger.committed_margin()
        available = self.ledger.available_balance
        return Balance(
            venue=self.name,
            available=available,
            in_position=in_position,
            total=available + in_position,
            notional=self.ledger.notional(),
        )

    def reset_balance(self, amount: float) -> None:
        self.ledger.reset(amount)
        LOG.info("sandbox %s balance reset to %.2f", self.name, amount)
