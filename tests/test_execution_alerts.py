from __future__ import annotations

import asyncio
import json
from typing import List

import httpx
import pytest

from monitoring.alerts import Alert, AlertSeverity, WebhookAlertSink, WebhookConfig
from monitoring.execution_alerts import (
    MAX_ALERTS,
    THRESHOLDS_KEY,
    ExecutionThresholds,
    ExecutionTimeAlerter,
    ThresholdStore,
    TradeTelemetry,
)
from monitoring.observability import GuardMetrics
from state.kv_store import MemoryStore

HOOK_URL = "https://hooks.example.com/services/T000/B000/secret-token"


class _Recorder:
    def __init__(self, status: int = 200) -> None:
        self.status = status
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status, json={"ok": self.status < 400})

    @property
    def payloads(self):
        return [json.loads(r.content) for r in self.requests]


def _sink(recorder: _Recorder, metrics: GuardMetrics | None = None, **cfg) -> WebhookAlertSink:
    config = WebhookConfig.from_parts(HOOK_URL, **cfg)
    return WebhookAlertSink(config, transport=httpx.MockTransport(recorder), metrics=metrics)


def _slow_trade(trade_id: str = "t1", **phases: float) -> TradeTelemetry:
    metrics = {"PAIR_SELECTION": 100.0, "AI_ANALYSIS": 200.0, "ORDER_PLACEMENT": 300.0, "CONFIRMATION": 100.0}
    metrics.update(phases)
    return TradeTelemetry(trade_id=trade_id, pair="BTC/USDT", venue="Binance", phase_metrics=metrics)


# ──────────────────────────────────────────────────────────────────────────────
# Проверка сделок
# ──────────────────────────────────────────────────────────────────────────────
def test_fast_trade_raises_nothing(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    assert alerter.check(_slow_trade()) == []
    assert alerter.alerts == []


def test_total_and_phase_alerts(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    raised = alerter.check(_slow_trade(AI_ANALYSIS=1200.0))

    ids = {a.id for a in raised}
    assert ids == {"t1-total", "t1-AI_ANALYSIS"}
    total = next(a for a in raised if a.kind == "slow_total")
    assert total.duration_ms == pytest.approx(1700.0)
    assert total.severity is AlertSeverity.WARNING
    phase = next(a for a in raised if a.kind == "slow_phase")
    assert phase.threshold_ms == 400.0
    assert phase.severity is AlertSeverity.CRITICAL  # 1200 > 2 * 400
    assert alerter.recent_alert_count == 2


def test_each_trade_is_checked_once(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    assert len(alerter.check(_slow_trade(CONFIRMATION=500.0))) == 1
    assert alerter.check(_slow_trade(CONFIRMATION=500.0)) == []
    assert len(alerter.alerts) == 1


def test_unknown_phase_and_empty_metrics(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    assert alerter.check(TradeTelemetry(trade_id="empty")) == []
    raised = alerter.check(TradeTelemetry(trade_id="x", phase_metrics={"SETTLEMENT": 900.0}))
    assert raised == []
    # пустая телеметрия не помечает сделку как проверенную
    assert len(alerter.check(TradeTelemetry(trade_id="empty", phase_metrics={"CONFIRMATION": 250.0}))) == 1


def test_trade_record_shape_is_accepted(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    record = {
        "id": "abc",
        "pair": "ETH/USDT",
        "exchange_name": "Bybit",
        "execution_telemetry": {"phaseMetrics": {"ORDER_PLACEMENT": {"durationMs": 900}}},
    }
    (alert,) = alerter.check(record)
    assert alert.id == "abc-ORDER_PLACEMENT"
    assert alert.venue == "Bybit"
    assert alert.pair == "ETH/USDT"


def test_disabled_alerts_do_nothing(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    alerter.update_thresholds(enable_alerts=False)
    assert alerter.check(_slow_trade(AI_ANALYSIS=5000.0)) == []


def test_ring_keeps_newest_fifty(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    for i in range(60):
        alerter.check(_slow_trade(f"t{i}", CONFIRMATION=250.0))

    alerts = alerter.alerts
    assert len(alerts) == MAX_ALERTS
    assert alerts[0].trade_id == "t59"
    assert alerts[-1].trade_id == "t10"
    assert alerter.recent_alert_count == 60


def test_dismiss_and_clear(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    alerter.check(_slow_trade(AI_ANALYSIS=1200.0))

    assert alerter.dismiss_alert("t1-total") is True
    assert alerter.dismiss_alert("t1-total") is False
    assert [a.id for a in alerter.alerts] == ["t1-AI_ANALYSIS"]

    alerter.clear_alerts()
    assert alerter.alerts == []
    assert alerter.recent_alert_count == 0


def test_recent_count_resets_every_minute(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    alerter.start()
    alerter.check(_slow_trade(CONFIRMATION=250.0))
    assert alerter.recent_alert_count == 1

    scheduler.advance(59)
    assert alerter.recent_alert_count == 1
    scheduler.advance(1)
    assert alerter.recent_alert_count == 0
    assert len(alerter.alerts) == 1

    alerter.stop()
    assert scheduler.pending == 0


# ──────────────────────────────────────────────────────────────────────────────
# Пороги
# ──────────────────────────────────────────────────────────────────────────────
def test_update_thresholds_persists(scheduler, store):
    alerter = ExecutionTimeAlerter(ThresholdStore(store), scheduler=scheduler, clock=scheduler.now)
    alerter.update_thresholds(total_ms=2000.0, confirmationMs=250)

    assert store.get(THRESHOLDS_KEY)["totalMs"] == 2000.0
    reloaded = ThresholdStore(store).load()
    assert reloaded.total_ms == 2000.0
    assert reloaded.confirmation_ms == 250.0
    assert reloaded.ai_analysis_ms == 400.0


def test_invalid_thresholds(scheduler, store):
    alerter = ExecutionTimeAlerter(ThresholdStore(store), scheduler=scheduler, clock=scheduler.now)
    with pytest.raises(ValueError):
        alerter.update_thresholds(total_ms=0)
    assert alerter.thresholds.total_ms == 1500.0

    store.set(THRESHOLDS_KEY, {"totalMs": -5})
    assert ThresholdStore(store).load() == ExecutionThresholds()


def test_partial_stored_thresholds_merge_over_defaults(store):
    store.set(THRESHOLDS_KEY, {"aiAnalysisMs": 800})
    loaded = ThresholdStore(store).load()
    assert loaded.ai_analysis_ms == 800.0
    assert loaded.total_ms == 1500.0
    assert loaded.enable_alerts is True


def test_trades_without_id_are_always_checked(scheduler):
    alerter = ExecutionTimeAlerter(scheduler=scheduler, clock=scheduler.now)
    record = {"pair": "ETH/USDT", "execution_telemetry": {"phaseMetrics": {"CONFIRMATION": 250}}}

    assert len(alerter.check(record)) == 1
    assert len(alerter.check(record)) == 1
    # сделка с id после них проверяется как обычно
    assert len(alerter.check(_slow_trade("t1", CONFIRMATION=250.0))) == 1
    assert alerter.check(_slow_trade("t1", CONFIRMATION=250.0)) == []


# ──────────────────────────────────────────────────────────────────────────────
# Вебхук
# ──────────────────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_webhook_cooldown_sends_once_per_key(scheduler):
    recorder = _Recorder()
    metrics = GuardMetrics()
    alerter = ExecutionTimeAlerter(
        sink=_sink(recorder, metrics, cooldown_seconds=60),
        scheduler=scheduler,
        metrics=metrics,
        clock=scheduler.now,
    )

    alerter.check(_slow_trade("a", CONFIRMATION=250.0))
    alerter.check(_slow_trade("b", CONFIRMATION=260.0))
    await alerter.drain()
    assert len(recorder.requests) == 1
    assert metrics.sample("greenback_webhook_dispatch_total", {"result": "throttled"}) == 1.0

    scheduler.advance(61)
    alerter.check(_slow_trade("c", CONFIRMATION=270.0))
    await alerter.drain()
    assert len(recorder.requests) == 2

    payload = recorder.payloads[0]
    assert payload["alert_type"] == "slow_phase"
    assert payload["trade_data"]["tradeId"] == "a"
    assert payload["trade_data"]["phase"] == "CONFIRMATION"
    assert metrics.sample("greenback_webhook_dispatch_total", {"result": "sent"}) == 2.0


@pytest.mark.asyncio
async def test_cooldown_is_tracked_per_phase(scheduler):
    recorder = _Recorder()
    alerter = ExecutionTimeAlerter(sink=_sink(recorder), scheduler=scheduler, clock=scheduler.now)
    alerter.check(_slow_trade("a", CONFIRMATION=250.0))
    await alerter.drain()
    alerter.check(_slow_trade("b", PAIR_SELECTION=350.0))
    await alerter.drain()
    phases = [p["trade_data"].get("phase") for p in recorder.payloads]
    assert phases == ["CONFIRMATION", "PAIR_SELECTION"]


@pytest.mark.asyncio
async def test_webhook_respects_alert_types(scheduler):
    recorder = _Recorder()
    alerter = ExecutionTimeAlerter(
        sink=_sink(recorder, alert_types={"slow_total"}),
        scheduler=scheduler,
        clock=scheduler.now,
    )
    alerter.check(_slow_trade(AI_ANALYSIS=1200.0))
    await alerter.drain()
    assert [p["alert_type"] for p in recorder.payloads] == ["slow_total"]


@pytest.mark.asyncio
async def test_check_returns_before_slow_webhook_completes(scheduler):
    release = asyncio.Event()
    delivered: List[httpx.Request] = []

    async def slow_hook(request: httpx.Request) -> httpx.Response:
        await release.wait()
        delivered.append(request)
        return httpx.Response(200)

    sink = WebhookAlertSink(WebhookConfig.from_parts(HOOK_URL), transport=httpx.MockTransport(slow_hook))
    alerter = ExecutionTimeAlerter(sink=sink, scheduler=scheduler, clock=scheduler.now)

    raised = alerter.check(_slow_trade(AI_ANALYSIS=1200.0))
    assert len(raised) == 2
    assert alerter.pending_dispatches == 2
    await asyncio.sleep(0)
    assert delivered == []

    release.set()
    await alerter.drain()
    assert len(delivered) == 2
    assert alerter.pending_dispatches == 0
    await sink.aclose()


def test_webhook_without_running_loop_is_dropped(scheduler):
    recorder = _Recorder()
    alerter = ExecutionTimeAlerter(sink=_sink(recorder), scheduler=scheduler, clock=scheduler.now)
    assert len(alerter.check(_slow_trade(CONFIRMATION=250.0))) == 1
    assert alerter.pending_dispatches == 0
    assert recorder.requests == []


@pytest.mark.asyncio
async def test_sink_reports_http_failures():
    recorder = _Recorder(status=500)
    metrics = GuardMetrics()
    sink = _sink(recorder, metrics)
    alert = Alert("critical", "Venue down", "Binance unreachable", AlertSeverity.CRITICAL)
    assert await sink.send(alert) is False
    assert metrics.sample("greenback_webhook_dispatch_total", {"result": "failed"}) == 1.0


@pytest.mark.asyncio
async def test_sink_handles_transport_errors():
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    sink = WebhookAlertSink(WebhookConfig.from_parts(HOOK_URL), transport=httpx.MockTransport(refuse))
    alert = Alert("slow_total", "Slow", "slow", AlertSeverity.WARNING)
    assert await sink.send(alert) is False


@pytest.mark.asyncio
async def test_inactive_sink_skips():
    recorder = _Recorder()
    sink = WebhookAlertSink(WebhookConfig(url=None, enabled=True), transport=httpx.MockTransport(recorder))
    assert not sink.accepts("slow_total")
    assert await sink.send(Alert("slow_total", "t", "m", AlertSeverity.INFO)) is False
    assert recorder.requests == []
