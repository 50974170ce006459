"""Trading session context.

One :class:`TradingSession` owns a single watchdog, execution alerter, close
gate, sandbox registry and hit-rate tracker. They all share one config,
scheduler, key-value store and metrics registry. Sessions are independent,
so tests can run several side by side.
"""

from __future__ import annotations

import time
from pathlib import Path
from typing import Callable, Optional

import httpx
import numpy as np
from fastapi import HTTPException, Request

from executors.registry import SandboxRegistry
from monitoring.alerts import WebhookAlertSink
from monitoring.execution_alerts import ExecutionTimeAlerter, ThresholdStore
from monitoring.observability import GuardMetrics
from monitoring.scheduler import AsyncioScheduler, Scheduler
from monitoring.snapshot_store import SnapshotStore
from monitoring.watchdog import ConnectionLostCallback, RestartCallback, TradingWatchdog
from risk.profit_gate import ProfitDecisionEngine
from src.hit_rate import HitRateTracker
from src.paper_test import PaperTestResult, PaperTestRunner, ThresholdConfig
from state.kv_store import JsonFileStore, KeyValueStore
from utils.structured_logging import get_logger
from utils.trading_config import GuardConfig

LOG = get_logger("greenback.session")


class TradingSession:
    def __init__(
        self,
        config: Optional[GuardConfig] = None,
        *,
        store: Optional[KeyValueStore] = None,
        scheduler: Optional[Scheduler] = None,
        metrics: Optional[GuardMetrics] = None,
        webhook_transport: Optional[httpx.AsyncBaseTransport] = None,
        clock: Callable[[], float] = time.time,
        seed: Optional[int] = None,
    ) -> None:
        self.config = config or GuardConfig()
        self.store: KeyValueStore = store if store is not None else JsonFileStore(Path(self.config.state_dir))
        self.scheduler: Scheduler = scheduler or AsyncioScheduler()
        self.metrics = metrics or GuardMetrics()
        self._clock = clock
        self._seed_seq = np.random.SeedSequence(seed)

        self.fees = self.config.fee_schedule()
        self.profit_engine = ProfitDecisionEngine(
            self.fees,
            default_min_profit_threshold=self.config.min_profit_threshold,
            close_fee_multiple=self.config.close_fee_multiple,
            metrics=self.metrics,
        )
        self.sandboxes = SandboxRegistry(self.fees, rng_factory=self._venue_rng)
        self.hit_rate = HitRateTracker(clock=clock)

        watchdog_cfg = self.config.watchdog_config()
        self.watchdog = TradingWatchdog(
            watchdog_cfg,
            scheduler=self.scheduler,
            snapshot_store=SnapshotStore(
                self.store,
                max_age_ms=watchdog_cfg.snapshot_max_age_ms,
                clock_ms=self._clock_ms,
            ),
            metrics=self.metrics,
            clock_ms=self._clock_ms,
        )

        webhook_cfg = self.config.webhook_config()
        self.webhook = WebhookAlertSink(webhook_cfg, transport=webhook_transport, metrics=self.metrics)
        self.alerter = ExecutionTimeAlerter(
            ThresholdStore(self.store),
            sink=self.webhook,
            scheduler=self.scheduler,
            metrics=self.metrics,
            cooldown_seconds=webhook_cfg.cooldown_seconds,
            clock=clock,
        )
        self._started = False

    def _clock_ms(self) -> float:
        return self._clock() * 1000.0

    def _venue_rng(self, venue: str) -> np.random.Generator:
        return np.random.default_rng(self._seed_seq.spawn(1)[0])

    # ------------------------------------------------------------------ lifecycle
    @property
    def started(self) -> bool:
        return self._started

    def start(
        self,
        *,
        on_restart: Optional[RestartCallback] = None,
        on_connection_lost: Optional[ConnectionLostCallback] = None,
    ) -> None:
        if self._started:
            return
        self.sandboxes.initialize(self.config.sandbox_venues, self.config.sandbox_initial_balance)
        self.watchdog.start(
            on_restart=on_restart or self._log_restart,
            on_connection_lost=on_connection_lost or self._log_connection_lost,
        )
        self.alerter.start()
        self._started = True
        LOG.info("trading session started (%d sandbox venues)", len(self.sandboxes.names()))

    def stop(self) -> None:
        if not self._started:
            return
        self.alerter.stop()
        self.watchdog.stop()
        self._started = False
        LOG.info("trading session stopped")

    async def aclose(self) -> None:
        """Stop timers, let in-flight webhook posts finish and close the HTTP client."""
        self.stop()
        await self.alerter.drain()
        await self.webhook.aclose()

    @staticmethod
    def _log_restart(module: str) -> None:
        LOG.warning("restart requested for module %s (no handler attached)", module)

    @staticmethod
    def _log_connection_lost(venue: str) -> None:
        LOG.warning("connection to %s lost (no handler attached)", venue)

    # ------------------------------------------------------------------ paper test
    def run_paper_test(
        self,
        num_trades: int = 100,
        thresholds: Optional[ThresholdConfig] = None,
        *,
        seed: Optional[int] = None,
        base_price: float = 50_000.0,
        position_size: float = 100.0,
    ) -> PaperTestResult:
        rng = np.random.default_rng(seed if seed is not None else self._seed_seq.spawn(1)[0])
        runner = PaperTestRunner(
            self.profit_engine,
            venue=self.config.paper_venue,
            base_price=base_price,
            position_size=position_size,
            min_net_profit=self.config.min_net_profit,
            rng=rng,
            hit_rate_tracker=self.hit_rate,
        )
        return runner.run(num_trades, thresholds or ThresholdConfig())


def get_trading_session(request: Request) -> TradingSession:
    """FastAPI dependency: the session created by the app lifespan."""
    session = getattr(request.app.state, "session", None)
    if session is None:
        raise HTTPException(status_code=503, detail="trading session is not running")
    return session
