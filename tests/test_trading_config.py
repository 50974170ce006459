from __future__ import annotations

import json

import pytest

from utils.trading_config import GuardConfig, load_guard_config

_ENV = [
    "GREENBACK_CONFIG", "GREENBACK_MIN_PROFIT", "GREENBACK_MIN_NET_PROFIT", "GREENBACK_HEARTBEAT_MS",
    "GREENBACK_MAX_STALL_MS", "GREENBACK_MAX_ERRORS", "GREENBACK_AUTO_RESTART", "GREENBACK_MAX_RESTARTS",
    "GREENBACK_SANDBOX_BALANCE", "GREENBACK_SANDBOX_VENUES", "GREENBACK_STATE_DIR", "ALERT_WEBHOOK_URL",
    "ALERT_WEBHOOK_ENABLED", "ALERT_WEBHOOK_TYPES", "ALERT_WEBHOOK_COOLDOWN_SEC",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    # setenv + delenv: monkeypatch восстановит «отсутствие» переменной, даже если её выставит .env
    for name in _ENV:
        monkeypatch.setenv(name, "")
        monkeypatch.delenv(name)


@pytest.fixture
def no_env_file(tmp_path):
    return str(tmp_path / "absent.env")


def test_defaults_without_file(tmp_path, no_env_file):
    cfg = load_guard_config(tmp_path / "missing.yaml", env_file=no_env_file)
    assert cfg.min_profit_threshold == 1.0
    assert cfg.heartbeat_interval_ms == 5000
    assert cfg.max_restart_attempts is None
    assert cfg.sandbox_venues == ()
    assert cfg.webhook_config().active is False
    assert cfg.fee_schedule().taker_rate("Kraken") == pytest.approx(0.0026)


def test_grouped_yaml_file(tmp_path, no_env_file):
    path = tmp_path / "greenback.yaml"
    path.write_text(
        """
profit:
  min_threshold: 2.0
watchdog:
  heartbeat_interval_ms: 1000
  max_restart_attempts: 3
sandbox:
  initial_balance: 500
  venues: [Binance, Kraken]
webhook:
  url: https://hooks.example.com/x
  cooldown_seconds: 30
  alert_types: [slow_total]
fees:
  Kraken: {taker: 0.003}
  Bitstamp: {maker: 0.0005, taker: 0.0007, max_leverage: 2}
""",
        encoding="utf-8",
    )
    cfg = load_guard_config(path, env_file=no_env_file)

    assert cfg.min_profit_threshold == 2.0
    assert cfg.watchdog_config().heartbeat_interval_ms == 1000
    assert cfg.max_restart_attempts == 3
    assert cfg.sandbox_initial_balance == 500.0
    assert cfg.sandbox_venues == ("Binance", "Kraken")

    hook = cfg.webhook_config()
    assert hook.active
    assert hook.cooldown_seconds == 30.0
    assert hook.accepts("slow_total") and not hook.accepts("slow_phase")

    fees = cfg.fee_schedule()
    assert fees.fees_for("Kraken").taker == pytest.approx(0.003)
    assert fees.fees_for("Kraken").maker == pytest.approx(0.0016)
    assert fees.fees_for("bitstamp").max_leverage == 2.0


def test_env_overrides_file_and_is_clamped(tmp_path, no_env_file, monkeypatch):
    path = tmp_path / "greenback.json"
    path.write_text(json.dumps({"min_profit_threshold": 2.0, "sandbox_venues": ["Binance"]}), encoding="utf-8")
    monkeypatch.setenv("GREENBACK_MIN_PROFIT", "3.5")
    monkeypatch.setenv("GREENBACK_SANDBOX_VENUES", "OKX, Bybit")
    monkeypatch.setenv("GREENBACK_HEARTBEAT_MS", "10")
    monkeypatch.setenv("GREENBACK_MAX_ERRORS", "abc")
    monkeypatch.setenv("GREENBACK_MAX_RESTARTS", "unlimited")
    monkeypatch.setenv("GREENBACK_AUTO_RESTART", "off")

    cfg = load_guard_config(path, env_file=no_env_file)
    assert cfg.min_profit_threshold == 3.5
    assert cfg.sandbox_venues == ("OKX", "Bybit")
    assert cfg.heartbeat_interval_ms == 100
    assert cfg.max_consecutive_errors == 5
    assert cfg.max_restart_attempts is None
    assert cfg.auto_restart_on_crash is False


def test_config_file_from_env_var(tmp_path, no_env_file, monkeypatch):
    path = tmp_path / "custom.yaml"
    path.write_text("min_net_profit: 0.25\n", encoding="utf-8")
    monkeypatch.setenv("GREENBACK_CONFIG", str(path))
    assert load_guard_config(env_file=no_env_file).min_net_profit == 0.25


def test_broken_file_falls_back_to_defaults(tmp_path, no_env_file):
    path = tmp_path / "greenback.yaml"
    path.write_text("profit: [unclosed\n", encoding="utf-8")
    assert load_guard_config(path, env_file=no_env_file).min_profit_threshold == 1.0

    path.write_text("- just\n- a list\n", encoding="utf-8")
    assert load_guard_config(path, env_file=no_env_file).min_profit_threshold == 1.0


def test_dotenv_file_is_read(tmp_path):
    env_file = tmp_path / ".env"
    env_file.write_text("GREENBACK_MIN_NET_PROFIT=0.4\nALERT_WEBHOOK_URL=https://hooks.example.com/t\n", encoding="utf-8")
    cfg = load_guard_config(tmp_path / "missing.yaml", env_file=str(env_file))
    assert cfg.min_net_profit == 0.4
    assert cfg.webhook_config().active


def test_to_dict_masks_webhook_url():
    cfg = GuardConfig(webhook_url="https://hooks.example.com/secret")
    assert cfg.to_dict()["webhook_url"] == "***"
    assert GuardConfig().to_dict()["webhook_url"] is None


def test_validate_clamps_values():
    cfg = GuardConfig(min_profit_threshold=-5, webhook_timeout=0, heartbeat_interval_ms=1).validate()
    assert cfg.min_profit_threshold == 0.0
    assert cfg.webhook_timeout == 0.1
    assert cfg.heartbeat_interval_ms == 100
