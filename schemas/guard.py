from __future__ import annotations

from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field


# ──────────────────────────────────────────────────────────────────────────────
# Вотчдог
# ──────────────────────────────────────────────────────────────────────────────
class ModuleHealthOut(BaseModel):
    name: str
    last_heartbeat_at: float
    healthy: bool
    consecutive_errors: int
    restart_count: int


class ConnectionHealthOut(BaseModel):
    venue: str
    connected: bool
    last_check_at: float
    reconnect_attempts: int
    max_reconnect_attempts: int


class WatchdogStatusOut(BaseModel):
    is_active: bool
    modules: List[ModuleHealthOut]
    connections: List[ConnectionHealthOut]
    overall_health: Literal["healthy", "degraded", "critical"]


class ModuleErrorIn(BaseModel):
    error: str = Field("", description="Текст ошибки модуля")


class ConnectionStatusIn(BaseModel):
    connected: bool = Field(..., description="Текущее состояние соединения с биржей")


# ──────────────────────────────────────────────────────────────────────────────
# Алерты времени исполнения
# ──────────────────────────────────────────────────────────────────────────────
class TradeTelemetryIn(BaseModel):
    trade_id: str = Field(..., min_length=1)
    pair: str = "Unknown"
    venue: str = "Unknown"
    phase_metrics: Dict[str, float] = Field(
        default_factory=dict,
        description="Длительность фаз в мс: PAIR_SELECTION, AI_ANALYSIS, ORDER_PLACEMENT, CONFIRMATION",
    )


class ExecutionAlertOut(BaseModel):
    id: str
    kind: Literal["slow_total", "slow_phase"]
    phase: Optional[str] = None
    duration_ms: float
    threshold_ms: float
    trade_id: str
    venue: str
    pair: str
    timestamp: float
    severity: str


class ExecutionAlertsOut(BaseModel):
    alerts: List[ExecutionAlertOut]
    recent_alert_count: int


class ExecutionThresholdsModel(BaseModel):
    totalMs: float = Field(..., gt=0)
    pairSelectionMs: float = Field(..., gt=0)
    aiAnalysisMs: float = Field(..., gt=0)
    orderPlacementMs: float = Field(..., gt=0)
    confirmationMs: float = Field(..., gt=0)
    enableAlerts: bool


class ExecutionThresholdsPatch(BaseModel):
    totalMs: Optional[float] = Field(None, gt=0)
    pairSelectionMs: Optional[float] = Field(None, gt=0)
    aiAnalysisMs: Optional[float] = Field(None, gt=0)
    orderPlacementMs: Optional[float] = Field(None, gt=0)
    confirmationMs: Optional[float] = Field(None, gt=0)
    enableAlerts: Optional[bool] = None


# ──────────────────────────────────────────────────────────────────────────────
# Профит-гейт
# ──────────────────────────────────────────────────────────────────────────────
class TradeContextIn(BaseModel):
    entry_price: float
    current_price: float
    position_size: float
    venue: str
    direction: Literal["long", "short"] = "long"
    min_profit_threshold: Optional[float] = None


class ProfitVerdictOut(BaseModel):
    gross_profit: float
    entry_fee: float
    exit_fee: float
    total_fees: float
    net_profit: float
    net_profit_percent: float
    meets_threshold: bool
    should_close: bool
    reason: str


class MinExitPriceIn(BaseModel):
    entry_price: float = Field(..., gt=0)
    position_size: float = Field(..., gt=0)
    venue: str
    target_net_profit: Optional[float] = None
    direction: Literal["long", "short"] = "long"


class MinExitPriceOut(BaseModel):
    venue: str
    direction: Literal["long", "short"]
    target_net_profit: float
    minimum_exit_price: float


# ──────────────────────────────────────────────────────────────────────────────
# Бумажный тест
# ──────────────────────────────────────────────────────────────────────────────
class PaperTestIn(BaseModel):
    num_trades: int = Field(100, ge=1, le=10_000)
    min_signal_score: float = Field(0.85, ge=0.0, le=1.0)
    min_confluence: int = Field(2, ge=0, le=4)
    min_volume_ratio: float = Field(1.2, ge=0.0)
    target_hit_rate: float = Field(80.0, ge=0.0, le=100.0)
    seed: Optional[int] = None


class FailedTradeReasonOut(BaseModel):
    reason: str
    count: int
    avg_score: float
    avg_confluence: float


class PaperTestOut(BaseModel):
    passed: bool
    hit_rate: float
    total_trades: int
    wins: int
    losses: int
    trades_skipped: int
    total_pnl: float
    avg_signal_score: float
    avg_confluence: float
    failure_breakdown: List[FailedTradeReasonOut]
    windows_evaluated: int
