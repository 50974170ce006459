# monitoring/watchdog.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Literal, Optional

from monitoring.observability import GuardMetrics
from monitoring.scheduler import CancelHandle, Scheduler
from monitoring.snapshot_store import DEFAULT_MAX_AGE_MS, SnapshotStore, epoch_ms

LOG = logging.getLogger("greenback.watchdog")

OverallHealth = Literal["healthy", "degraded", "critical"]
RestartCallback = Callable[[str], None]
ConnectionLostCallback = Callable[[str], None]

__all__ = [
    "WatchdogConfig",
    "ModuleHealth",
    "ConnectionHealth",
    "WatchdogStatus",
    "TradingWatchdog",
]


@dataclass(frozen=True)
class WatchdogConfig:
    heartbeat_interval_ms: int = 5_000
    max_stall_time_ms: int = 15_000
    auto_restart_on_crash: bool = True
    max_consecutive_errors: int = 5
    # None = без ограничения; вызывающий сам следит за restart_count
    max_restart_attempts: Optional[int] = None
    max_reconnect_attempts: int = 5
    snapshot_max_age_ms: int = DEFAULT_MAX_AGE_MS

    def validate(self) -> "WatchdogConfig":
        if self.heartbeat_interval_ms <= 0:
            raise ValueError("heartbeat_interval_ms must be > 0")
        if self.max_stall_time_ms <= 0:
            raise ValueError("max_stall_time_ms must be > 0")
        if self.max_consecutive_errors < 1:
            raise ValueError("max_consecutive_errors must be >= 1")
        if self.max_restart_attempts is not None and self.max_restart_attempts < 0:
            raise ValueError("max_restart_attempts must be >= 0 or None")
        if self.max_reconnect_attempts < 0:
            raise ValueError("max_reconnect_attempts must be >= 0")
        if self.snapshot_max_age_ms <= 0:
            raise ValueError("snapshot_max_age_ms must be > 0")
        return self


# ──────────────────────────────────────────────────────────────────────────────
# Записи о здоровье (ключи снапшота в camelCase)
# ──────────────────────────────────────────────────────────────────────────────
@dataclass
class ModuleHealth:
    name: str
    last_heartbeat_at: float
    healthy: bool = True
    consecutive_errors: int = 0
    restart_count: int = 0

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "lastHeartbeat": self.last_heartbeat_at,
            "isHealthy": self.healthy,
            "consecutiveErrors": self.consecutive_errors,
            "restartCount": self.restart_count,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "ModuleHealth":
        return cls(
            name=str(data["name"]),
            last_heartbeat_at=float(data["lastHeartbeat"]),
            healthy=bool(data.get("isHealthy", True)),
            consecutive_errors=int(data.get("consecutiveErrors", 0)),
            restart_count=int(data.get("restartCount", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "last_heartbeat_at": self.last_heartbeat_at,
            "healthy": self.healthy,
            "consecutive_errors": self.consecutive_errors,
            "restart_count": self.restart_count,
        }


@dataclass
class ConnectionHealth:
    venue: str
    connected: bool = True
    last_check_at: float = 0.0
    reconnect_attempts: int = 0
    max_reconnect_attempts: int = 5

    def to_snapshot(self) -> Dict[str, Any]:
        return {
            "exchange": self.venue,
            "isConnected": self.connected,
            "lastCheck": self.last_check_at,
            "reconnectAttempts": self.reconnect_attempts,
            "maxReconnectAttempts": self.max_reconnect_attempts,
        }

    @classmethod
    def from_snapshot(cls, data: Dict[str, Any]) -> "ConnectionHealth":
        return cls(
            venue=str(data["exchange"]),
            connected=bool(data.get("isConnected", True)),
            last_check_at=float(data.get("lastCheck", 0.0)),
            reconnect_attempts=int(data.get("reconnectAttempts", 0)),
            max_reconnect_attempts=int(data.get("maxReconnectAttempts", 5)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "venue": self.venue,
            "connected": self.connected,
            "last_check_at": self.last_check_at,
            "reconnect_attempts": self.reconnect_attempts,
            "max_reconnect_attempts": self.max_reconnect_attempts,
        }


@dataclass(frozen=True)
class WatchdogStatus:
    is_active: bool
    modules: List[ModuleHealth] = field(default_factory=list)
    connections: List[ConnectionHealth] = field(default_factory=list)
    overall_health: OverallHealth = "healthy"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_active": self.is_active,
            "modules": [m.to_dict() for m in self.modules],
            "connections": [c.to_dict() for c in self.connections],
            "overall_health": self.overall_health,
        }


def _aggregate(modules: List[ModuleHealth], connections: List[ConnectionHealth]) -> OverallHealth:
    unhealthy = sum(1 for m in modules if not m.healthy)
    disconnected = sum(1 for c in connections if not c.connected)
    # пустая популяция не может быть «критической»
    if (modules and unhealthy * 2 >= len(modules)) or (connections and disconnected * 2 >= len(connections)):
        return "critical"
    if unhealthy or disconnected:
        return "degraded"
    return "healthy"


class TradingWatchdog:
    """
    Heartbeat/error watchdog for trading modules and venue connections.

    One instance per trading session. Timers go through the injected
    ``Scheduler``; the clock returns epoch milliseconds. A snapshot younger
    than ``snapshot_max_age_ms`` is restored once, at construction.
    """

    def __init__(
        self,
        config: Optional[WatchdogConfig] = None,
        *,
        scheduler: Scheduler,
        snapshot_store: Optional[SnapshotStore] = None,
        metrics: Optional[GuardMetrics] = None,
        clock_ms: Callable[[], float] = epoch_ms,
    ) -> None:
        self.config = (config or WatchdogConfig()).validate()
        self._scheduler = scheduler
        self._snapshots = snapshot_store
        self._metrics = metrics
        self._clock_ms = clock_ms

        self._modules: Dict[str, ModuleHealth] = {}
        self._connections: Dict[str, ConnectionHealth] = {}
        self._active = False
        self._timer: Optional[CancelHandle] = None
        self._on_restart: Optional[RestartCallback] = None
        self._on_connection_lost: Optional[ConnectionLostCallback] = None
        self.last_check_time = self._clock_ms()

        self._restore()

    # ------------------------------------------------------------------ lifecycle
    @property
    def is_active(self) -> bool:
        return self._active

    def start(
        self,
        on_restart: Optional[RestartCallback] = None,
        on_connection_lost: Optional[ConnectionLostCallback] = None,
    ) -> None:
        if self._active:
            return
        self._active = True
        self._on_restart = on_restart
        self._on_connection_lost = on_connection_lost
        self._timer = self._scheduler.every(self.config.heartbeat_interval_ms / 1000.0, self.check_health)
        LOG.info("watchdog started (interval=%dms, stall=%dms)",
                 self.config.heartbeat_interval_ms, self.config.max_stall_time_ms)

    def stop(self) -> None:
        self._active = False
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._persist()
        LOG.info("watchdog stopped")

    # ------------------------------------------------------------------ modules
    def register_module(self, name: str) -> ModuleHealth:
        module = ModuleHealth(name=name, last_heartbeat_at=self._clock_ms())
        self._modules[name] = module
        LOG.info("registered module %s", name)
        return module

    def unregister_module(self, name: str) -> bool:
        return self._modules.pop(name, None) is not None

    def heartbeat(self, name: str) -> None:
        module = self._modules.get(name)
        if module is None:
            return
        module.last_heartbeat_at = self._clock_ms()
        module.consecutive_errors = 0
        if not module.healthy:
            LOG.info("module %s recovered (heartbeat)", name)
        module.healthy = True

    def report_error(self, name: str, error: Any = None) -> None:
        module = self._modules.get(name)
        if module is None:
            LOG.debug("error reported by unregistered module %s: %s", name, error)
            return
        module.consecutive_errors += 1
        LOG.warning("error in %s (%d consecutive): %s", name, module.consecutive_errors, error)
        if module.healthy and module.consecutive_errors >= self.config.max_consecutive_errors:
            module.healthy = False
            LOG.error("module %s marked unhealthy after %d errors", name, module.consecutive_errors)

    def report_success(self, name: str) -> None:
        module = self._modules.get(name)
        if module is None:
            return
        module.consecutive_errors = 0
        module.last_heartbeat_at = self._clock_ms()
        module.healthy = True

    # ------------------------------------------------------------------ connections
    def register_connection(self, venue: str, max_reconnect_attempts: Optional[int] = None) -> ConnectionHealth:
        conn = ConnectionHealth(
            venue=venue,
            connected=True,
            last_check_at=self._clock_ms(),
            max_reconnect_attempts=self.config.max_reconnect_attempts
            if max_reconnect_attempts is None else int(max_reconnect_attempts),
        )
        self._connections[venue] = conn
        return conn

    def unregister_connection(self, venue: str) -> bool:
        return self._connections.pop(venue, None) is not None

    def update_connection_status(self, venue: str, connected: bool) -> None:
        conn = self._connections.get(venue)
        if conn is None:
            return
        was_connected = conn.connected
        conn.connected = bool(connected)
        conn.last_check_at = self._clock_ms()

        if was_connected and not conn.connected:
            conn.reconnect_attempts += 1
            LOG.warning("connection lost to %s (attempt %d/%d)",
                        venue, conn.reconnect_attempts, conn.max_reconnect_attempts)
            if self._metrics is not None:
                self._metrics.record_connection_loss(venue)
            if self._on_connection_lost is not None:
                try:
                    self._on_connection_lost(venue)
                except Exception:
                    LOG.exception("connection-lost callback failed for %s", venue)
        elif conn.connected and not was_connected:
            conn.reconnect_attempts = 0
            LOG.info("connection restored to %s", venue)

    # ------------------------------------------------------------------ checks
    def check_health(self) -> None:
        """One scan: mark stalled modules, restart them, persist the snapshot."""
        now = self._clock_ms()
        self.last_check_time = now

        for name, module in list(self._modules.items()):
            stalled_for = now - module.last_heartbeat_at
            if stalled_for <= self.config.max_stall_time_ms:
                continue
            if module.healthy:
                LOG.warning("module %s stalled for %.0fms", name, stalled_for)
            module.healthy = False
            if self.config.auto_restart_on_crash:
                self.attempt_restart(name)

        if self._metrics is not None:
            self._metrics.set_overall_health(self._overall())
        self._persist()

    def attempt_restart(self, name: str) -> bool:
        module = self._modules.get(name)
        if module is None:
            return False
        cap = self.config.max_restart_attempts
        if cap is not None and module.restart_count >= cap:
            LOG.error("module %s reached restart cap (%d), not restarting", name, cap)
            return False

        module.restart_count += 1
        # сбрасываем часы до колбэка, чтобы рестарт не считался новым зависанием
        module.last_heartbeat_at = self._clock_ms()
        LOG.warning("restarting %s (attempt %d)", name, module.restart_count)
        if self._metrics is not None:
            self._metrics.record_restart(name)
        if self._on_restart is not None:
            try:
                self._on_restart(name)
            except Exception:
                LOG.exception("restart callback failed for %s", name)
        return True

    # ------------------------------------------------------------------ status
    def _overall(self) -> OverallHealth:
        return _aggregate(list(self._modules.values()), list(self._connections.values()))

    def get_status(self) -> WatchdogStatus:
        modules = [ModuleHealth(**vars(m)) for m in self._modules.values()]
        connections = [ConnectionHealth(**vars(c)) for c in self._connections.values()]
        return WatchdogStatus(
            is_active=self._active,
            modules=modules,
            connections=connections,
            overall_health=_aggregate(modules, connections),
        )

    def module(self, name: str) -> Optional[ModuleHealth]:
        return self._modules.get(name)

    def connection(self, venue: str) -> Optional[ConnectionHealth]:
        return self._connections.get(venue)

    # ------------------------------------------------------------------ persistence
    def snapshot(self) -> Dict[str, Any]:
        return {
            "lastCheckTime": self.last_check_time,
            "modules": [[name, m.to_snapshot()] for name, m in self._modules.items()],
            "connections": [[venue, c.to_snapshot()] for venue, c in self._connections.items()],
        }

    def _persist(self) -> None:
        if self._snapshots is not None:
            self._snapshots.save(self.snapshot())

    def _restore(self) -> None:
        if self._snapshots is None:
            return
        data = self._snapshots.load()
        if data is None:
            return
        try:
            modules = {str(k): ModuleHealth.from_snapshot(v) for k, v in data.get("modules", [])}
            connections = {str(k): ConnectionHealth.from_snapshot(v) for k, v in data.get("connections", [])}
        except (KeyError, TypeError, ValueError) as e:
            LOG.warning("watchdog snapshot is malformed, starting empty: %r", e)
            return
        self._modules = modules
        self._connections = connections
        LOG.info("restored watchdog state (%d modules, %d connections)", len(modules), len(connections))

    def clear_state(self) -> None:
        self._modules.clear()
        self._connections.clear()
        if self._snapshots is not None:
            self._snapshots.clear()
