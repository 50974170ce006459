from __future__ import annotations

from typing import Callable, Dict, Iterable, List, Optional

import numpy as np

from executors.sandbox import DEFAULT_INITIAL_BALANCE, SandboxExecutor
from risk.fees import FeeSchedule
from utils.structured_logging import get_logger

LOG = get_logger("greenback.sandbox")


class SandboxRegistry:
    """Owns one ``SandboxExecutor`` per configured venue.

    Venues without a fee-schedule entry are skipped; there is no synthesized
    fallback venue. The starting balance is split evenly across the venues
    that were actually instantiated.
    """

    def __init__(
        self,
        fees: Optional[FeeSchedule] = None,
        *,
        rng_factory: Optional[Callable[[str], np.random.Generator]] = None,
    ) -> None:
        self.fees = fees or FeeSchedule()
        self._rng_factory = rng_factory
        self._adapters: Dict[str, SandboxExecutor] = {}
        self._initialized = False

    def initialize(self, venues: Iterable[str] = (), initial_balance: float = DEFAULT_INITIAL_BALANCE) -> List[str]:
        self._adapters.clear()
        requested = [v for v in venues if v] or self.fees.names()

        configured: List[str] = []
        for venue in requested:
            name = self.fees.canonical_name(venue)
            if name is None:
                LOG.warning("sandbox: no configuration for venue %r, not instantiated", venue)
                continue
            if name not in configured:
                configured.append(name)

        per_venue = initial_balance / len(configured) if configured else 0.0
        for name in configured:
            rng = self._rng_factory(name) if self._rng_factory else None
            self._adapters[name] = SandboxExecutor(name, self.fees.venues[name], per_venue, rng=rng)

        self._initialized = True
        LOG.info("sandbox registry initialised: %s (%.2f each)", ", ".join(configured) or "-", per_venue)
        return configured

    def get(self, venue: str) -> Optional[SandboxExecutor]:
        name = self.fees.canonical_name(venue)
        return None if name is None else self._adapters.get(name)

    def all(self) -> List[SandboxExecutor]:
        return list(self._adapters.values())

    def names(self) -> List[str]:
        return list(self._adapters)

    def reset_all_balances(self, amount: float) -> None:
        if not self._adapters:
            return
        per_venue = amount / len(self._adapters)
        for adapter in self._adapters.values():
            adapter.reset_balance(per_venue)

    def clear(self) -> None:
        self._adapters.clear()
        self._initialized = False

    def is_initialized(self) -> bool:
        return self._initialized
