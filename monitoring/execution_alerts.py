# monitoring/execution_alerts.py
from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import dataclass, field, fields, replace
from typing import Any, Callable, Deque, Dict, List, Literal, Mapping, Optional, Set, Tuple, Union

from monitoring.alerts import Alert, AlertSeverity, WebhookAlertSink
from monitoring.observability import GuardMetrics
from monitoring.scheduler import CancelHandle, Scheduler
from state.kv_store import KeyValueStore
from utils.structured_logging import trace_context

LOG = logging.getLogger("greenback.exec_alerts")

AlertKind = Literal["slow_total", "slow_phase"]

THRESHOLDS_KEY = "execution-time-thresholds"
MAX_ALERTS = 50
COUNTER_RESET_S = 60.0

# фаза телеметрии → поле порога
PHASE_MAP: Mapping[str, str] = {
    "PAIR_SELECTION": "pair_selection_ms",
    "AI_ANALYSIS": "ai_analysis_ms",
    "ORDER_PLACEMENT": "order_placement_ms",
    "CONFIRMATION": "confirmation_ms",
}

_CAMEL = {
    "total_ms": "totalMs",
    "pair_selection_ms": "pairSelectionMs",
    "ai_analysis_ms": "aiAnalysisMs",
    "order_placement_ms": "orderPlacementMs",
    "confirmation_ms": "confirmationMs",
    "enable_alerts": "enableAlerts",
}


# ──────────────────────────────────────────────────────────────────────────────
# Пороги
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class ExecutionThresholds:
    total_ms: float = 1500.0
    pair_selection_ms: float = 300.0
    ai_analysis_ms: float = 400.0
    order_placement_ms: float = 700.0
    confirmation_ms: float = 200.0
    enable_alerts: bool = True

    def validate(self) -> "ExecutionThresholds":
        for f in fields(self):
            if f.name == "enable_alerts":
                continue
            if getattr(self, f.name) <= 0:
                raise ValueError(f"{f.name} must be > 0")
        return self

    def for_phase(self, phase: str) -> Optional[float]:
        attr = PHASE_MAP.get(phase)
        return None if attr is None else float(getattr(self, attr))

    def to_dict(self) -> Dict[str, Any]:
        return {camel: getattr(self, attr) for attr, camel in _CAMEL.items()}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], base: Optional["ExecutionThresholds"] = None) -> "ExecutionThresholds":
        """Accepts camelCase (stored form) or snake_case keys; missing keys keep ``base``."""
        base = base or cls()
        changes: Dict[str, Any] = {}
        for attr, camel in _CAMEL.items():
            if camel in data:
                changes[attr] = data[camel]
            elif attr in data:
                changes[attr] = data[attr]
        for attr, value in list(changes.items()):
            changes[attr] = bool(value) if attr == "enable_alerts" else float(value)
        return replace(base, **changes).validate()


class ThresholdStore:
    """Thresholds slot in the key-value store, merged over defaults on load."""

    def __init__(self, store: KeyValueStore, *, key: str = THRESHOLDS_KEY) -> None:
        self._store = store
        self.key = key

    def load(self) -> ExecutionThresholds:
        data = self._store.get(self.key)
        if not data:
            return ExecutionThresholds()
        try:
            return ExecutionThresholds.from_dict(data)
        except (TypeError, ValueError) as e:
            LOG.warning("stored execution thresholds rejected, using defaults: %r", e)
            return ExecutionThresholds()

    def save(self, thresholds: ExecutionThresholds) -> None:
        self._store.set(self.key, thresholds.to_dict())


# ──────────────────────────────────────────────────────────────────────────────
# Телеметрия и алерты
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class TradeTelemetry:
    trade_id: str
    pair: str = "Unknown"
    venue: str = "Unknown"
    phase_metrics: Mapping[str, float] = field(default_factory=dict)

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "TradeTelemetry":
        """
        Build from a trade record: ``{id, pair, exchange_name|venue,
        execution_telemetry: {phaseMetrics: {PHASE: {durationMs}}}}``.
        """
        telemetry = record.get("execution_telemetry") or {}
        raw_phases = telemetry.get("phaseMetrics") or telemetry.get("phase_metrics") or {}
        phases: Dict[str, float] = {}
        for name, value in raw_phases.items():
            if isinstance(value, Mapping):
                value = value.get("durationMs", value.get("duration_ms", 0))
            try:
                phases[str(name)] = float(value or 0)
            except (TypeError, ValueError):
                phases[str(name)] = 0.0
        return cls(
            trade_id=str(record.get("id") or record.get("trade_id") or ""),
            pair=record.get("pair") or "Unknown",
            venue=record.get("exchange_name") or record.get("venue") or "Unknown",
            phase_metrics=phases,
        )


@dataclass(frozen=True)
class ExecutionAlert:
    id: str
    kind: AlertKind
    duration_ms: float
    threshold_ms: float
    trade_id: str
    venue: str
    pair: str
    timestamp: float
    phase: Optional[str] = None

    @property
    def severity(self) -> AlertSeverity:
        return AlertSeverity.CRITICAL if self.duration_ms > 2 * self.threshold_ms else AlertSeverity.WARNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "phase": self.phase,
            "duration_ms": self.duration_ms,
            "threshold_ms": self.threshold_ms,
            "trade_id": self.trade_id,
            "venue": self.venue,
            "pair": self.pair,
            "timestamp": self.timestamp,
            "severity": self.severity.value,
        }

    def to_webhook(self) -> Alert:
        if self.kind == "slow_total":
            title = f"Slow execution: {self.pair}"
            message = f"Total {self.duration_ms:.0f}ms exceeds {self.threshold_ms:.0f}ms"
        else:
            title = f"Slow phase {self.phase}: {self.pair}"
            message = f"{self.phase} took {self.duration_ms:.0f}ms (threshold {self.threshold_ms:.0f}ms)"
        trade_data: Dict[str, Any] = {
            "tradeId": self.trade_id,
            "pair": self.pair,
            "venue": self.venue,
            "durationMs": self.duration_ms,
            "thresholdMs": self.threshold_ms,
        }
        if self.phase is not None:
            trade_data["phase"] = self.phase
        return Alert(
            alert_type=self.kind,
            title=title,
            message=message,
            severity=self.severity,
            trade_data=trade_data,
        )


class ExecutionTimeAlerter:
    """
    Compares per-phase execution durations of completed trades to thresholds.

    Each trade id is evaluated once. Alerts land newest-first in a ring of 50;
    forwarding to the webhook sink is throttled per ``(kind, phase|"total")``.
    Webhook posts run as tasks on the running loop, so ``check`` never waits
    on the network.
    """

    def __init__(
        self,
        thresholds: Optional[ThresholdStore] = None,
        *,
        sink: Optional[WebhookAlertSink] = None,
        scheduler: Optional[Scheduler] = None,
        metrics: Optional[GuardMetrics] = None,
        cooldown_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._threshold_store = thresholds
        self.thresholds = thresholds.load() if thresholds is not None else ExecutionThresholds()
        self._sink = sink
        self._metrics = metrics
        if cooldown_seconds is None:
            cooldown_seconds = sink.config.cooldown_seconds if sink is not None else 60.0
        self.cooldown_seconds = float(cooldown_seconds)
        self._clock = clock

        self._alerts: Deque[ExecutionAlert] = deque(maxlen=MAX_ALERTS)
        self._seen: Set[str] = set()
        self._last_sent: Dict[Tuple[str, str], float] = {}
        self._dispatches: Set["asyncio.Task[bool]"] = set()
        self.recent_alert_count = 0

        self._scheduler = scheduler
        self._reset_handle: Optional[CancelHandle] = None

    # ------------------------------------------------------------------ check
    def check(self, trade: Union[TradeTelemetry, Mapping[str, Any]]) -> List[ExecutionAlert]:
        if not self.thresholds.enable_alerts:
            return []
        if not isinstance(trade, TradeTelemetry):
            trade = TradeTelemetry.from_record(trade)
        if not trade.phase_metrics:
            return []
        if not trade.trade_id:
            # без id сделку нельзя отметить как проверенную
            LOG.warning("trade without id checked, it will not be deduplicated")
        elif trade.trade_id in self._seen:
            return []
        else:
            self._seen.add(trade.trade_id)

        now = self._clock()
        raised: List[ExecutionAlert] = []

        total = sum(float(v or 0) for v in trade.phase_metrics.values())
        if total > self.thresholds.total_ms:
            raised.append(ExecutionAlert(
                id=f"{trade.trade_id}-total",
                kind="slow_total",
                duration_ms=total,
                threshold_ms=self.thresholds.total_ms,
                trade_id=trade.trade_id,
                venue=trade.venue,
                pair=trade.pair,
                timestamp=now,
            ))

        for phase, duration in trade.phase_metrics.items():
            limit = self.thresholds.for_phase(phase)
            if limit is None or duration <= limit:
                continue
            raised.append(ExecutionAlert(
                id=f"{trade.trade_id}-{phase}",
                kind="slow_phase",
                phase=phase,
                duration_ms=float(duration),
                threshold_ms=limit,
                trade_id=trade.trade_id,
                venue=trade.venue,
                pair=trade.pair,
                timestamp=now,
            ))

        # trade id идёт в trace_id каждой записи лога
        with trace_context(trade.trade_id):
            for alert in raised:
                self._alerts.appendleft(alert)
                LOG.warning("%s on %s/%s: %.0fms > %.0fms",
                            alert.kind, alert.venue, alert.pair, alert.duration_ms, alert.threshold_ms)
                if self._metrics is not None:
                    self._metrics.record_alert(alert.kind)
                self._forward(alert, now)
        self.recent_alert_count += len(raised)
        return raised

    def _forward(self, alert: ExecutionAlert, now: float) -> None:
        if self._sink is None or not self._sink.accepts(alert.kind):
            return
        key = (alert.kind, alert.phase or "total")
        last = self._last_sent.get(key)
        if last is not None and now - last < self.cooldown_seconds:
            LOG.debug("webhook for %s throttled (%.1fs since last)", key, now - last)
            if self._metrics is not None:
                self._metrics.record_webhook("throttled")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            LOG.warning("no running event loop, webhook for %s dropped", alert.id)
            return
        self._last_sent[key] = now
        task = loop.create_task(self._sink.send(alert.to_webhook()))
        self._dispatches.add(task)
        task.add_done_callback(self._dispatch_done)

    def _dispatch_done(self, task: "asyncio.Task[bool]") -> None:
        self._dispatches.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOG.error("webhook dispatch failed: %r", exc, exc_info=exc)

    @property
    def pending_dispatches(self) -> int:
        return len(self._dispatches)

    async def drain(self) -> None:
        """Wait for webhook posts that are still in flight."""
        while self._dispatches:
            await asyncio.gather(*list(self._dispatches), return_exceptions=True)

    # ------------------------------------------------------------------ state
    @property
    def alerts(self) -> List[ExecutionAlert]:
        return list(self._alerts)

    def dismiss_alert(self, alert_id: str) -> bool:
        before = len(self._alerts)
        self._alerts = deque((a for a in self._alerts if a.id != alert_id), maxlen=MAX_ALERTS)
        return len(self._alerts) != before

    def clear_alerts(self) -> None:
        self._alerts.clear()
        self.recent_alert_count = 0

    def reset_recent_count(self) -> None:
        self.recent_alert_count = 0

    def update_thresholds(self, **changes: Any) -> ExecutionThresholds:
        self.thresholds = ExecutionThresholds.from_dict(changes, base=self.thresholds)
        if self._threshold_store is not None:
            self._threshold_store.save(self.thresholds)
        LOG.info("execution thresholds updated: %s", self.thresholds.to_dict())
        return self.thresholds

    def start(self) -> None:
        """Arm the periodic reset of ``recent_alert_count``."""
        if self._scheduler is not None and self._reset_handle is None:
            self._reset_handle = self._scheduler.every(COUNTER_RESET_S, self.reset_recent_count)

    def stop(self) -> None:
        if self._reset_handle is not None:
            self._reset_handle.cancel()
            self._reset_handle = None
