# risk/fees.py
from __future__ import annotations

import math
from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional

__all__ = [
    "VenueFees",
    "FeeSchedule",
    "DEFAULT_VENUE_FEES",
    "FALLBACK_FEES",
]


@dataclass(frozen=True)
class VenueFees:
    """
    Комиссии площадки в долях (0.001 = 0.1%) и максимальное плечо.
    Taker-ставка используется для рыночных входов/выходов.
    """
    maker: float
    taker: float
    max_leverage: float = 1.0

    def validate(self) -> "VenueFees":
        for name in ("maker", "taker"):
            v = getattr(self, name)
            if not math.isfinite(v) or v < 0.0 or v >= 1.0:
                raise ValueError(f"{name} fee must be in [0, 1), got {v!r}")
        if not math.isfinite(self.max_leverage) or self.max_leverage < 1.0:
            raise ValueError(f"max_leverage must be >= 1, got {self.max_leverage!r}")
        return self

    def to_dict(self) -> Dict[str, float]:
        return {"maker": self.maker, "taker": self.taker, "max_leverage": self.max_leverage}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional["VenueFees"] = None) -> "VenueFees":
        base = base or FALLBACK_FEES
        return cls(
            maker=float(data.get("maker", base.maker)),
            taker=float(data.get("taker", base.taker)),
            max_leverage=float(data.get("max_leverage", base.max_leverage)),
        ).validate()


FALLBACK_FEES = VenueFees(maker=0.001, taker=0.001, max_leverage=1.0)

DEFAULT_VENUE_FEES: Mapping[str, VenueFees] = MappingProxyType({
    "Binance": VenueFees(maker=0.001, taker=0.001, max_leverage=20),
    "Bybit": VenueFees(maker=0.001, taker=0.001, max_leverage=25),
    "OKX": VenueFees(maker=0.0008, taker=0.001, max_leverage=20),
    "Kraken": VenueFees(maker=0.0016, taker=0.0026, max_leverage=5),
    "Nexo": VenueFees(maker=0.002, taker=0.002, max_leverage=3),
    "KuCoin": VenueFees(maker=0.001, taker=0.001, max_leverage=10),
    "Hyperliquid": VenueFees(maker=0.0002, taker=0.0005, max_leverage=50),
})


@dataclass(frozen=True)
class FeeSchedule:
    """Immutable per-venue fee table. Venue lookup is case-insensitive.

    ``default`` is used by the profit gate for venues missing from the table;
    set it to ``None`` to make unknown venues an explicit miss.
    """

    venues: Mapping[str, VenueFees] = field(default_factory=lambda: dict(DEFAULT_VENUE_FEES))
    default: Optional[VenueFees] = FALLBACK_FEES
    _by_key: Mapping[str, str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        venues = {str(name): fees.validate() for name, fees in dict(self.venues).items()}
        by_key: Dict[str, str] = {}
        for name in venues:
            key = name.strip().lower()
            if key in by_key:
                raise ValueError(f"duplicate venue in fee schedule: {name!r}")
            by_key[key] = name
        if self.default is not None:
            self.default.validate()
        object.__setattr__(self, "venues", MappingProxyType(venues))
        object.__setattr__(self, "_by_key", MappingProxyType(by_key))

    # ── lookups ──────────────────────────────────────────────────────────
    def canonical_name(self, venue: str) -> Optional[str]:
        return self._by_key.get(str(venue or "").strip().lower())

    def lookup(self, venue: str) -> Optional[VenueFees]:
        """Configured entry only, no fallback."""
        name = self.canonical_name(venue)
        return None if name is None else self.venues[name]

    def fees_for(self, venue: str) -> VenueFees:
        fees = self.lookup(venue)
        if fees is not None:
            return fees
        if self.default is None:
            raise KeyError(f"no fee entry for venue {venue!r}")
        return self.default

    def taker_rate(self, venue: str) -> float:
        return self.fees_for(venue).taker

    def maker_rate(self, venue: str) -> float:
        return self.fees_for(venue).maker

    def names(self) -> List[str]:
        return list(self.venues)

    # ── derived copies ───────────────────────────────────────────────────
    def with_overrides(self, overrides: Mapping[str, Mapping[str, Any]]) -> "FeeSchedule":
        """Return a copy with partial per-venue overrides applied (new venues allowed)."""
        venues = dict(self.venues)
        for name, data in overrides.items():
            existing = self.canonical_name(name)
            base = venues.pop(existing) if existing else None
            venues[existing or str(name)] = VenueFees.from_dict(data, base=base)
        return replace(self, venues=venues)

    def to_dict(self) -> Dict[str, Dict[str, float]]:
        return {name: fees.to_dict() for name, fees in self.venues.items()}
