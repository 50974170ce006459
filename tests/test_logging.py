import json
import logging

from utils.logging_utils import MASK, SensitiveDataFilter, mask_payload, mask_url
from utils.structured_logging import JsonLogFormatter, TraceIdFilter, current_trace_id, trace_context


def test_mask_url_hides_path_token():
    assert mask_url("https://hooks.example.com/services/T0/B0/secret") == f"https://hooks.example.com/{MASK}"
    assert mask_url("") == ""
    assert mask_url("not a url") == MASK


def test_mask_payload_nested():
    masked = mask_payload({"api_key": "abcdef", "nested": {"webhook_url": "https://x"}, "pair": "BTC"})
    assert masked["api_key"] == MASK
    assert masked["nested"]["webhook_url"] == MASK
    assert masked["pair"] == MASK  # короткие строки маскируются целиком


def test_trace_context_is_scoped():
    assert current_trace_id() == "-"
    with trace_context("trade-42") as tid:
        assert tid == "trade-42"
        assert current_trace_id() == "trade-42"
    assert current_trace_id() == "-"


def test_json_formatter_carries_trace_and_extras():
    record = logging.LogRecord("greenback.test", logging.WARNING, __file__, 10, "slow %s", ("phase",), None)
    record.venue = "Binance"
    with trace_context("t-1"):
        TraceIdFilter().filter(record)
    payload = json.loads(JsonLogFormatter().format(record))

    assert payload["message"] == "slow phase"
    assert payload["trace_id"] == "t-1"
    assert payload["logger"] == "greenback.test"
    assert payload["context"] == {"venue": "Binance"}


def test_sensitive_filter_masks_key_value_pairs():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "connect api_key=ABCDEF123 ok", (), None)
    SensitiveDataFilter().filter(record)
    assert record.msg == f"connect api_key={MASK} ok"


def test_sensitive_filter_masks_webhook_urls_in_args():
    record = logging.LogRecord(
        "x", logging.ERROR, __file__, 1, "webhook %s failed", ("https://hooks.example.com/T0/B0/tok",), None,
    )
    SensitiveDataFilter().filter(record)
    assert record.getMessage() == f"webhook https://hooks.example.com/{MASK} failed"


def test_formatter_component_strips_prefix():
    record = logging.LogRecord("greenback.watchdog", logging.INFO, __file__, 1, "ok", (), None)
    payload = json.loads(JsonLogFormatter().format(record))
    assert payload["component"] == "watchdog"
    assert payload["trace_id"] == "-"
    assert "context" not in payload
