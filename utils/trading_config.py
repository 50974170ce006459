from __future__ import annotations

import json
import logging
import os
from dataclasses import asdict, dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

import yaml
from dotenv import load_dotenv

from monitoring.alerts import DEFAULT_ALERT_TYPES, WebhookConfig
from monitoring.watchdog import WatchdogConfig
from risk.fees import FeeSchedule

log = logging.getLogger("greenback.config")

CONFIG_DIR = Path(__file__).resolve().parents[1] / "configs"
CONFIG_NAMES = ("greenback.yaml", "greenback.yml", "greenback.json")
_TRUE = {"1", "true", "yes", "on"}


# ──────────────────────────────────────────────────────────────────────────────
# helpers: чтение ENV/файлов и клампинг значений
# ──────────────────────────────────────────────────────────────────────────────
def _clamp(x: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, x))


def _env_float(name: str, default: float, lo: float, hi: float) -> float:
    v = os.getenv(name)
    try:
        return _clamp(float(v if v is not None else default), lo, hi)
    except (TypeError, ValueError):
        log.warning("invalid %s=%r, using %s", name, v, default)
        return _clamp(float(default), lo, hi)


def _env_int(name: str, default: int, lo: int, hi: int) -> int:
    v = os.getenv(name)
    try:
        return int(_clamp(int(v if v is not None else default), lo, hi))
    except (TypeError, ValueError):
        log.warning("invalid %s=%r, using %s", name, v, default)
        return int(_clamp(int(default), lo, hi))


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return bool(default)
    return v.strip().lower() in _TRUE


def _env_str(name: str, default: Optional[str]) -> Optional[str]:
    v = os.getenv(name)
    return v if v not in (None, "") else default


def _get_nested(cfg: Mapping[str, Any], *keys: str, default: Any = None) -> Any:
    cur: Any = cfg
    for k in keys:
        if not isinstance(cur, Mapping) or k not in cur:
            return default
        cur = cur[k]
    return cur


def _load_from_file(path: Path) -> Dict[str, Any]:
    if not path.exists():
        return {}
    try:
        text = path.read_text(encoding="utf-8").strip()
        if not text:
            return {}
        data = yaml.safe_load(text) if path.suffix in (".yaml", ".yml") else json.loads(text)
    except (OSError, ValueError, yaml.YAMLError) as e:
        log.warning("config file %s ignored: %r", path, e)
        return {}
    if not isinstance(data, dict):
        log.warning("config file %s ignored: top level is not a mapping", path)
        return {}
    return data


def find_config_file(config_dir: Path = CONFIG_DIR) -> Optional[Path]:
    explicit = os.getenv("GREENBACK_CONFIG")
    if explicit:
        return Path(explicit)
    for name in CONFIG_NAMES:
        f = config_dir / name
        if f.exists():
            return f
    return None


# ──────────────────────────────────────────────────────────────────────────────
# Конфигурация торговой сессии
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True)
class GuardConfig:
    """
    Настройки «гейта» прибыли, вотчдога, песочницы и вебхуков.
    ENV имеет приоритет над файлом; значения клампятся при загрузке.
    """
    # профит-гейт
    min_profit_threshold: float = 1.00      # $ по умолчанию для закрытия
    close_fee_multiple: float = 1.5
    min_net_profit: float = 0.05            # нижняя граница прибыли в бумажном тесте
    paper_venue: str = "Binance"

    # вотчдог
    heartbeat_interval_ms: int = 5_000
    max_stall_time_ms: int = 15_000
    max_consecutive_errors: int = 5
    auto_restart_on_crash: bool = True
    max_restart_attempts: Optional[int] = None
    max_reconnect_attempts: int = 5
    snapshot_max_age_ms: int = 300_000

    # песочница
    sandbox_initial_balance: float = 1000.0
    sandbox_venues: Tuple[str, ...] = ()

    # хранилище
    state_dir: str = "data/state"

    # вебхук
    webhook_url: Optional[str] = None
    webhook_enabled: bool = False
    webhook_alert_types: Tuple[str, ...] = tuple(sorted(DEFAULT_ALERT_TYPES))
    webhook_cooldown_seconds: float = 60.0
    webhook_timeout: float = 5.0

    fee_overrides: Dict[str, Dict[str, float]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        out = asdict(self)
        if out.get("webhook_url"):
            out["webhook_url"] = "***"
        return out

    def watchdog_config(self) -> WatchdogConfig:
        return WatchdogConfig(
            heartbeat_interval_ms=self.heartbeat_interval_ms,
            max_stall_time_ms=self.max_stall_time_ms,
            auto_restart_on_crash=self.auto_restart_on_crash,
            max_consecutive_errors=self.max_consecutive_errors,
            max_restart_attempts=self.max_restart_attempts,
            max_reconnect_attempts=self.max_reconnect_attempts,
            snapshot_max_age_ms=self.snapshot_max_age_ms,
        ).validate()

    def webhook_config(self) -> WebhookConfig:
        return WebhookConfig(
            url=self.webhook_url,
            enabled=self.webhook_enabled and bool(self.webhook_url),
            alert_types=frozenset(self.webhook_alert_types),
            cooldown_seconds=self.webhook_cooldown_seconds,
            timeout=self.webhook_timeout,
        )

    def fee_schedule(self) -> FeeSchedule:
        schedule = FeeSchedule()
        return schedule.with_overrides(self.fee_overrides) if self.fee_overrides else schedule

    def validate(self) -> "GuardConfig":
        return replace(
            self,
            min_profit_threshold=_clamp(float(self.min_profit_threshold), 0.0, 1_000_000.0),
            close_fee_multiple=_clamp(float(self.close_fee_multiple), 0.0, 100.0),
            min_net_profit=_clamp(float(self.min_net_profit), 0.0, 1_000_000.0),
            heartbeat_interval_ms=int(_clamp(int(self.heartbeat_interval_ms), 100, 3_600_000)),
            max_stall_time_ms=int(_clamp(int(self.max_stall_time_ms), 100, 86_400_000)),
            max_consecutive_errors=int(_clamp(int(self.max_consecutive_errors), 1, 10_000)),
            max_reconnect_attempts=int(_clamp(int(self.max_reconnect_attempts), 0, 10_000)),
            snapshot_max_age_ms=int(_clamp(int(self.snapshot_max_age_ms), 1_000, 86_400_000)),
            sandbox_initial_balance=_clamp(float(self.sandbox_initial_balance), 0.0, 1e12),
            webhook_cooldown_seconds=_clamp(float(self.webhook_cooldown_seconds), 0.0, 86_400.0),
            webhook_timeout=_clamp(float(self.webhook_timeout), 0.1, 120.0),
        )


def _split(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return tuple(v.strip() for v in value.split(",") if v.strip())
    return tuple(str(v).strip() for v in value if str(v).strip())


# ──────────────────────────────────────────────────────────────────────────────
# Загрузка: .env → файл → ENV (ENV имеет приоритет)
# ──────────────────────────────────────────────────────────────────────────────
def load_guard_config(path: Optional[Path] = None, *, env_file: Optional[str] = None) -> GuardConfig:
    """
    Загружает GuardConfig из configs/greenback.yaml|yml|json и ENV.

    Ключи файла плоские (``min_profit_threshold: 1.0``) или сгруппированные
    (``profit: {min_threshold}``, ``watchdog: {...}``, ``sandbox: {...}``,
    ``webhook: {...}``, ``fees: {Venue: {maker, taker, max_leverage}}``).

    Переменные окружения: GREENBACK_MIN_PROFIT, GREENBACK_MIN_NET_PROFIT,
    GREENBACK_HEARTBEAT_MS, GREENBACK_MAX_STALL_MS, GREENBACK_MAX_ERRORS,
    GREENBACK_AUTO_RESTART, GREENBACK_MAX_RESTARTS, GREENBACK_SANDBOX_BALANCE,
    GREENBACK_SANDBOX_VENUES, GREENBACK_STATE_DIR, ALERT_WEBHOOK_URL,
    ALERT_WEBHOOK_ENABLED, ALERT_WEBHOOK_TYPES, ALERT_WEBHOOK_COOLDOWN_SEC.
    """
    load_dotenv(dotenv_path=env_file or os.getenv("ENV_FILE", ".env"), override=False)

    file_path = path or find_config_file()
    file_cfg = _load_from_file(file_path) if file_path else {}
    d = GuardConfig()

    def pick(flat_key: str, *nested: str, default: Any) -> Any:
        v = _get_nested(file_cfg, flat_key)
        if v is None and nested:
            v = _get_nested(file_cfg, *nested)
        return default if v is None else v

    restarts_raw = _env_str("GREENBACK_MAX_RESTARTS", None)
    if restarts_raw is None:
        restarts = pick("max_restart_attempts", "watchdog", "max_restart_attempts", default=None)
    else:
        restarts = None if restarts_raw.strip().lower() in {"", "none", "unlimited"} else restarts_raw
    try:
        max_restarts = None if restarts is None else max(0, int(restarts))
    except (TypeError, ValueError):
        log.warning("invalid max_restart_attempts=%r, using unlimited", restarts)
        max_restarts = None

    fees_cfg = _get_nested(file_cfg, "fees", default={}) or {}

    cfg = GuardConfig(
        min_profit_threshold=_env_float(
            "GREENBACK_MIN_PROFIT",
            float(pick("min_profit_threshold", "profit", "min_threshold", default=d.min_profit_threshold)),
            0.0, 1_000_000.0),
        close_fee_multiple=float(pick("close_fee_multiple", "profit", "close_fee_multiple",
                                      default=d.close_fee_multiple)),
        min_net_profit=_env_float(
            "GREENBACK_MIN_NET_PROFIT",
            float(pick("min_net_profit", "paper", "min_net_profit", default=d.min_net_profit)),
            0.0, 1_000_000.0),
        paper_venue=str(pick("paper_venue", "paper", "venue", default=d.paper_venue)),
        heartbeat_interval_ms=_env_int(
            "GREENBACK_HEARTBEAT_MS",
            int(pick("heartbeat_interval_ms", "watchdog", "heartbeat_interval_ms", default=d.heartbeat_interval_ms)),
            100, 3_600_000),
        max_stall_time_ms=_env_int(
            "GREENBACK_MAX_STALL_MS",
            int(pick("max_stall_time_ms", "watchdog", "max_stall_time_ms", default=d.max_stall_time_ms)),
            100, 86_400_000),
        max_consecutive_errors=_env_int(
            "GREENBACK_MAX_ERRORS",
            int(pick("max_consecutive_errors", "watchdog", "max_consecutive_errors", default=d.max_consecutive_errors)),
            1, 10_000),
        auto_restart_on_crash=_env_bool(
            "GREENBACK_AUTO_RESTART",
            bool(pick("auto_restart_on_crash", "watchdog", "auto_restart_on_crash", default=d.auto_restart_on_crash))),
        max_restart_attempts=max_restarts,
        max_reconnect_attempts=int(pick("max_reconnect_attempts", "watchdog", "max_reconnect_attempts",
                                        default=d.max_reconnect_attempts)),
        snapshot_max_age_ms=int(pick("snapshot_max_age_ms", "watchdog", "snapshot_max_age_ms",
                                     default=d.snapshot_max_age_ms)),
        sandbox_initial_balance=_env_float(
            "GREENBACK_SANDBOX_BALANCE",
            float(pick("sandbox_initial_balance", "sandbox", "initial_balance", default=d.sandbox_initial_balance)),
            0.0, 1e12),
        sandbox_venues=_split(_env_str("GREENBACK_SANDBOX_VENUES", None)
                              or pick("sandbox_venues", "sandbox", "venues", default=None)),
        state_dir=str(_env_str("GREENBACK_STATE_DIR", None) or pick("state_dir", default=d.state_dir)),
        webhook_url=_env_str("ALERT_WEBHOOK_URL", pick("webhook_url", "webhook", "url", default=None)),
        webhook_enabled=_env_bool("ALERT_WEBHOOK_ENABLED",
                                  bool(pick("webhook_enabled", "webhook", "enabled", default=True))),
        webhook_alert_types=_split(_env_str("ALERT_WEBHOOK_TYPES", None)
                                   or pick("webhook_alert_types", "webhook", "alert_types",
                                           default=d.webhook_alert_types)),
        webhook_cooldown_seconds=_env_float(
            "ALERT_WEBHOOK_COOLDOWN_SEC",
            float(pick("webhook_cooldown_seconds", "webhook", "cooldown_seconds",
                       default=d.webhook_cooldown_seconds)),
            0.0, 86_400.0),
        webhook_timeout=float(pick("webhook_timeout", "webhook", "timeout", default=d.webhook_timeout)),
        fee_overrides={str(k): dict(v) for k, v in fees_cfg.items() if isinstance(v, Mapping)},
    )
    return cfg.validate()
