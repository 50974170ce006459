"""Outbound alert webhooks.

Alerts are posted as JSON to a single configured URL. Delivery is
fire-and-forget: callers schedule ``send`` as a task; it reports success as a
bool, logs failures with the URL masked, and never raises.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Optional

import httpx

from monitoring.observability import GuardMetrics
from utils.logging_utils import mask_url
from utils.structured_logging import get_logger

LOG = get_logger("greenback.webhook")

DEFAULT_ALERT_TYPES: FrozenSet[str] = frozenset({"slow_total", "slow_phase", "critical"})


class AlertSeverity(str, Enum):
    """Alert severity levels."""
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


@dataclass
class Alert:
    """Webhook payload."""
    alert_type: str
    title: str
    message: str
    severity: AlertSeverity
    trade_data: Dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "alert_type": self.alert_type,
            "title": self.title,
            "message": self.message,
            "severity": self.severity.value,
            "trade_data": dict(self.trade_data),
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class WebhookConfig:
    url: Optional[str] = None
    enabled: bool = False
    alert_types: FrozenSet[str] = DEFAULT_ALERT_TYPES
    cooldown_seconds: float = 60.0
    timeout: float = 5.0

    def __post_init__(self) -> None:
        object.__setattr__(self, "alert_types", frozenset(self.alert_types))
        if self.cooldown_seconds < 0:
            raise ValueError("cooldown_seconds must be >= 0")
        if self.timeout <= 0:
            raise ValueError("timeout must be > 0")

    @property
    def active(self) -> bool:
        return self.enabled and bool(self.url)

    def accepts(self, alert_type: str) -> bool:
        return self.active and alert_type in self.alert_types

    @classmethod
    def from_parts(
        cls,
        url: Optional[str],
        *,
        enabled: Optional[bool] = None,
        alert_types: Iterable[str] = DEFAULT_ALERT_TYPES,
        cooldown_seconds: float = 60.0,
        timeout: float = 5.0,
    ) -> "WebhookConfig":
        return cls(
            url=url or None,
            enabled=bool(url) if enabled is None else bool(enabled),
            alert_types=frozenset(alert_types),
            cooldown_seconds=float(cooldown_seconds),
            timeout=float(timeout),
        )


class WebhookAlertSink:
    """POSTs :class:`Alert` payloads with an ``httpx.AsyncClient``."""

    def __init__(
        self,
        config: WebhookConfig,
        *,
        client: Optional[httpx.AsyncClient] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        metrics: Optional[GuardMetrics] = None,
    ) -> None:
        self.config = config
        self._metrics = metrics
        self._client = client or httpx.AsyncClient(
            timeout=config.timeout,
            transport=transport,
            headers={"Content-Type": "application/json"},
        )

    def accepts(self, alert_type: str) -> bool:
        return self.config.accepts(alert_type)

    async def send(self, alert: Alert) -> bool:
        if not self.accepts(alert.alert_type):
            self._record("skipped")
            return False
        url = self.config.url or ""
        try:
            response = await self._client.post(url, json=alert.to_dict())
        except httpx.HTTPError as exc:
            LOG.error("webhook %s failed: %r", mask_url(url), exc)
            self._record("failed")
            return False
        if response.status_code >= 400:
            LOG.error("webhook %s returned HTTP %d", mask_url(url), response.status_code)
            self._record("failed")
            return False
        LOG.info("webhook sent: %s (%s)", alert.title, alert.severity.value)
        self._record("sent")
        return True

    def _record(self, result: str) -> None:
        if self._metrics is not None:
            self._metrics.record_webhook(result)

    async def aclose(self) -> None:
        await self._client.aclose()
