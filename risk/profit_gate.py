# risk/profit_gate.py
"""Fee-aware close gate.

Every decision to submit a close order goes through
:meth:`ProfitDecisionEngine.evaluate`. The engine is a pure function of the
trade context and the fee schedule it was built with: no hidden state, no
exceptions on bad input (callers run it on every price tick).
"""
from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Literal, Optional

from monitoring.observability import GuardMetrics
from risk.fees import FeeSchedule
from utils.structured_logging import get_logger

LOG = get_logger("greenback.profit")

Direction = Literal["long", "short"]

DEFAULT_MIN_PROFIT_THRESHOLD = 1.00  # $ NET
CLOSE_FEE_MULTIPLE = 1.5

__all__ = [
    "Direction",
    "TradeContext",
    "ProfitVerdict",
    "CloseDecision",
    "ProfitDecisionEngine",
    "DEFAULT_MIN_PROFIT_THRESHOLD",
    "CLOSE_FEE_MULTIPLE",
]


@dataclass(frozen=True)
class TradeContext:
    entry_price: float
    current_price: float
    position_size: float  # notional in quote currency
    venue: str
    direction: Direction = "long"
    min_profit_threshold: Optional[float] = None  # None -> engine default


@dataclass(frozen=True)
class ProfitVerdict:
    gross_profit: float
    entry_fee: float
    exit_fee: float
    total_fees: float
    net_profit: float
    net_profit_percent: float
    meets_threshold: bool
    should_close: bool
    reason: str

    @classmethod
    def failed(cls, reason: str) -> "ProfitVerdict":
        return cls(
            gross_profit=0.0,
            entry_fee=0.0,
            exit_fee=0.0,
            total_fees=0.0,
            net_profit=0.0,
            net_profit_percent=0.0,
            meets_threshold=False,
            should_close=False,
            reason=reason,
        )

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class CloseDecision:
    can_close: bool
    net_profit: float
    reason: str


def _finite(value: Any) -> bool:
    try:
        return math.isfinite(float(value))
    except (TypeError, ValueError):
        return False


def _positive(value: Any) -> bool:
    return _finite(value) and float(value) > 0.0


class ProfitDecisionEngine:
    """Computes gross/net profit and the close verdict for a position."""

    def __init__(
        self,
        fees: Optional[FeeSchedule] = None,
        *,
        default_min_profit_threshold: float = DEFAULT_MIN_PROFIT_THRESHOLD,
        close_fee_multiple: float = CLOSE_FEE_MULTIPLE,
        metrics: Optional[GuardMetrics] = None,
    ) -> None:
        if not math.isfinite(default_min_profit_threshold):
            raise ValueError("default_min_profit_threshold must be finite")
        if not math.isfinite(close_fee_multiple) or close_fee_multiple < 0:
            raise ValueError("close_fee_multiple must be a non-negative number")
        self.fees = fees or FeeSchedule()
        self.default_min_profit_threshold = float(default_min_profit_threshold)
        self.close_fee_multiple = float(close_fee_multiple)
        self._metrics = metrics

    # ────────────────────────────────────────────────────────────────────────
    # Главная проверка
    # ────────────────────────────────────────────────────────────────────────
    def evaluate(self, ctx: TradeContext) -> ProfitVerdict:
        problem = self._validate(ctx)
        if problem is not None:
            LOG.error("profit gate rejected input: %s (venue=%s)", problem, ctx.venue)
            self._record("invalid")
            return ProfitVerdict.failed(problem)
        verdict = self._compute(ctx)
        self._record("close" if verdict.should_close else "hold")
        return verdict

    def _record(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.record_verdict(outcome)

    def _validate(self, ctx: TradeContext) -> Optional[str]:
        if not _positive(ctx.entry_price):
            return "Invalid entry price - trade cannot be profitable"
        if not _positive(ctx.current_price):
            return "Invalid current price - cannot calculate profit"
        if not _positive(ctx.position_size):
            return "Invalid position size"
        if ctx.direction not in ("long", "short"):
            return f"Invalid direction {ctx.direction!r}"
        if ctx.min_profit_threshold is not None and not _finite(ctx.min_profit_threshold):
            return "Invalid minimum profit threshold"
        try:
            self.fees.taker_rate(ctx.venue)
        except KeyError:
            return f"Invalid venue {ctx.venue!r} - no fee schedule"
        return None

    def _compute(self, ctx: TradeContext) -> ProfitVerdict:
        rate = self.fees.taker_rate(ctx.venue)
        threshold = self.default_min_profit_threshold if ctx.min_profit_threshold is None \
            else float(ctx.min_profit_threshold)

        entry = float(ctx.entry_price)
        current = float(ctx.current_price)
        size = float(ctx.position_size)

        if ctx.direction == "long":
            gross = (current - entry) / entry * size
        else:
            gross = (entry - current) / entry * size

        # комиссии списываются всегда, даже при отрицательном gross
        entry_fee = size * rate
        exit_fee = (size + max(0.0, gross)) * rate
        total_fees = entry_fee + exit_fee
        net = gross - total_fees

        effective = max(threshold, total_fees * self.close_fee_multiple)
        meets = net >= threshold
        should_close = net >= effective

        if should_close:
            reason = f"Net profit ${net:.4f} exceeds threshold ${effective:.4f}"
        else:
            reason = f"Net profit ${net:.4f} below threshold ${effective:.4f}"

        LOG.debug(
            "profit gate venue=%s dir=%s entry=%.6f current=%.6f size=%.2f gross=%.4f "
            "fees=%.4f+%.4f net=%.4f threshold=%.4f close=%s",
            ctx.venue, ctx.direction, entry, current, size, gross,
            entry_fee, exit_fee, net, effective, should_close,
        )

        return ProfitVerdict(
            gross_profit=gross,
            entry_fee=entry_fee,
            exit_fee=exit_fee,
            total_fees=total_fees,
            net_profit=net,
            net_profit_percent=net / size * 100.0,
            meets_threshold=meets,
            should_close=should_close,
            reason=reason,
        )

    # ────────────────────────────────────────────────────────────────────────
    # Производные хелперы (все идут через evaluate)
    # ────────────────────────────────────────────────────────────────────────
    def validate_before_close(self, ctx: TradeContext) -> CloseDecision:
        verdict = self.evaluate(ctx)
        return CloseDecision(can_close=verdict.should_close, net_profit=verdict.net_profit, reason=verdict.reason)

    def is_profitable_after_fees(self, ctx: TradeContext) -> bool:
        return self.evaluate(ctx).net_profit > 0.0

    def minimum_exit_price(
        self,
        entry_price: float,
        position_size: float,
        venue: str,
        target_net_profit: Optional[float] = None,
        direction: Direction = "long",
    ) -> float:
        """
        Price at which ``evaluate`` reports exactly ``target_net_profit`` net.

        With fee rate ``f``: net = G - s*f - (s + max(0, G))*f, so for a
        non-negative required gross G = (target + 2*s*f) / (1 - f), otherwise
        G = target + 2*s*f. Both branches are increasing in the target.

        Raises ``ValueError`` on non-positive entry/size or unknown direction,
        ``KeyError`` for a venue without fees when the schedule has no default.
        """
        if not _positive(entry_price) or not _positive(position_size):
            raise ValueError("entry_price and position_size must be positive")
        if direction not in ("long", "short"):
            raise ValueError(f"unknown direction {direction!r}")

        target = self.default_min_profit_threshold if target_net_profit is None else float(target_net_profit)
        rate = self.fees.taker_rate(venue)
        size = float(position_size)

        required_gross = target + 2.0 * size * rate
        if required_gross > 0.0:
            required_gross /= (1.0 - rate)
        ratio = required_gross / size

        if direction == "long":
            return float(entry_price) * (1.0 + ratio)
        return float(entry_price) * (1.0 - ratio)
