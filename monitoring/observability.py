"""Prometheus metrics for the close gate, watchdog and execution alerts."""
from __future__ import annotations

from typing import Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest

_HEALTH_LEVELS = {"healthy": 0, "degraded": 1, "critical": 2}


class GuardMetrics:
    """Per-instance Prometheus registry.

    Every trading session owns its own registry, so several sessions (or
    tests) can coexist in one process without duplicate-collector errors.
    """

    def __init__(self, registry: Optional[CollectorRegistry] = None) -> None:
        self._registry = registry or CollectorRegistry()
        self._verdicts = Counter(
            "greenback_profit_verdicts_total",
            "Close-gate verdicts by outcome",
            labelnames=("outcome",),
            registry=self._registry,
        )
        self._restarts = Counter(
            "greenback_watchdog_restarts_total",
            "Auto-restart attempts issued by the watchdog",
            labelnames=("module",),
            registry=self._registry,
        )
        self._connection_losses = Counter(
            "greenback_connection_losses_total",
            "Venue connection loss edges (connected -> disconnected)",
            labelnames=("venue",),
            registry=self._registry,
        )
        self._health = Gauge(
            "greenback_overall_health",
            "Overall watchdog health (0=healthy, 1=degraded, 2=critical)",
            registry=self._registry,
        )
        self._alerts = Counter(
            "greenback_execution_alerts_total",
            "Execution-time alerts raised by kind",
            labelnames=("kind",),
            registry=self._registry,
        )
        self._webhooks = Counter(
            "greenback_webhook_dispatch_total",
            "Outbound webhook dispatches by result",
            labelnames=("result",),
            registry=self._registry,
        )

    @property
    def registry(self) -> CollectorRegistry:
        return self._registry

    @property
    def prometheus_content_type(self) -> str:
        return CONTENT_TYPE_LATEST

    def record_verdict(self, outcome: str) -> None:
        self._verdicts.labels(outcome).inc()

    def record_restart(self, module: str) -> None:
        self._restarts.labels(module or "unknown").inc()

    def record_connection_loss(self, venue: str) -> None:
        self._connection_losses.labels(venue or "unknown").inc()

    def set_overall_health(self, level: str) -> None:
        self._health.set(_HEALTH_LEVELS.get(level, 2))

    def record_alert(self, kind: str) -> None:
        self._alerts.labels(kind).inc()

    def record_webhook(self, result: str) -> None:
        # result: sent | failed | throttled | skipped
        self._webhooks.labels(result).inc()

    def sample(self, name: str, labels: Optional[dict] = None) -> float:
        """Current value of a sample (0.0 when it has not been emitted yet)."""
        value = self._registry.get_sample_value(name, labels or {})
        return 0.0 if value is None else float(value)

    def export_prometheus(self) -> bytes:
        return generate_latest(self._registry)
