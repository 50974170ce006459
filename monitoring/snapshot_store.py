# monitoring/snapshot_store.py
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Optional

from state.kv_store import KeyValueStore

log = logging.getLogger("greenback.snapshot")

WATCHDOG_STATE_KEY = "trading-watchdog-state"
DEFAULT_MAX_AGE_MS = 5 * 60 * 1000


def epoch_ms() -> float:
    return time.time() * 1000.0


class SnapshotStore:
    """
    Watchdog snapshot slot with a staleness rule.

    ``load()`` returns the stored document only while
    ``now - lastCheckTime < max_age_ms``; an older (or malformed) snapshot is
    dropped from storage and ``None`` is returned.
    """

    def __init__(
        self,
        store: KeyValueStore,
        *,
        key: str = WATCHDOG_STATE_KEY,
        max_age_ms: float = DEFAULT_MAX_AGE_MS,
        clock_ms: Callable[[], float] = epoch_ms,
    ) -> None:
        if max_age_ms <= 0:
            raise ValueError("max_age_ms must be > 0")
        self._store = store
        self.key = key
        self.max_age_ms = float(max_age_ms)
        self._clock_ms = clock_ms

    def load(self) -> Optional[Dict[str, Any]]:
        data = self._store.get(self.key)
        if data is None:
            return None
        saved_at = data.get("lastCheckTime")
        if not isinstance(saved_at, (int, float)):
            log.info("watchdog snapshot has no lastCheckTime, discarding")
            self._store.delete(self.key)
            return None
        age = self._clock_ms() - float(saved_at)
        if age >= self.max_age_ms:
            log.info("watchdog snapshot is stale (%.0f ms old), discarding", age)
            self._store.delete(self.key)
            return None
        return data

    def save(self, snapshot: Dict[str, Any]) -> None:
        # хранилище само логирует ошибки записи
        self._store.set(self.key, snapshot)

    def clear(self) -> None:
        self._store.delete(self.key)
