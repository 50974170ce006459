# src/hit_rate.py
from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Literal, Optional, Tuple

Trend = Literal["improving", "declining", "stable"]


@dataclass(frozen=True)
class HitRateStats:
    wins: int
    losses: int
    total: int
    hit_rate: float
    target_hit_rate: float
    recent_hit_rate: float
    trend: Trend

    def to_dict(self) -> Dict[str, object]:
        return {
            "wins": self.wins,
            "losses": self.losses,
            "total": self.total,
            "hit_rate": self.hit_rate,
            "target_hit_rate": self.target_hit_rate,
            "recent_hit_rate": self.recent_hit_rate,
            "trend": self.trend,
        }


class HitRateTracker:
    """Running hit rate (in percent) with a bounded window of recent outcomes."""

    def __init__(
        self,
        target_hit_rate: float = 80.0,
        *,
        history: int = 100,
        on_update: Optional[Callable[[float, float], None]] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.target_hit_rate = float(target_hit_rate)
        self._wins = 0
        self._total = 0
        self._recent: Deque[Tuple[bool, float]] = deque(maxlen=max(20, int(history)))
        self._on_update = on_update
        self._clock = clock

    def record_trade(self, is_win: bool) -> float:
        self._total += 1
        if is_win:
            self._wins += 1
        self._recent.append((bool(is_win), self._clock()))
        rate = self.current_hit_rate()
        if self._on_update is not None:
            self._on_update(rate, self.target_hit_rate)
        return rate

    def current_hit_rate(self) -> float:
        return self._wins / self._total * 100.0 if self._total else 0.0

    def recent_hit_rate(self, last_n: int = 20) -> float:
        recent = list(self._recent)[-last_n:]
        if not recent:
            return 0.0
        return sum(1 for win, _ in recent if win) / len(recent) * 100.0

    def trend(self) -> Trend:
        # сравниваем первые и последние 10 исходов окна
        if len(self._recent) < 20:
            return "stable"
        outcomes = [win for win, _ in self._recent]
        first = sum(outcomes[:10]) / 10
        last = sum(outcomes[-10:]) / 10
        diff = last - first
        if diff > 0.1:
            return "improving"
        if diff < -0.1:
            return "declining"
        return "stable"

    def set_target_hit_rate(self, target: float) -> None:
        self.target_hit_rate = float(target)

    def stats(self) -> HitRateStats:
        return HitRateStats(
            wins=self._wins,
            losses=self._total - self._wins,
            total=self._total,
            hit_rate=self.current_hit_rate(),
            target_hit_rate=self.target_hit_rate,
            recent_hit_rate=self.recent_hit_rate(),
            trend=self.trend(),
        )

    def reset(self) -> None:
        self._wins = 0
        self._total = 0
        self._recent.clear()
