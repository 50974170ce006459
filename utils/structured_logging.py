"""JSON logs for the guard service, with the active trade id on every record."""
from __future__ import annotations

import json
import logging
import logging.config
import os
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Iterator, Optional

from utils.logging_utils import install_sensitive_filter

NO_TRACE = "-"
LOGGER_PREFIX = "greenback."

TRACE_ID_VAR: ContextVar[str] = ContextVar("greenback_trace_id", default=NO_TRACE)

# стандартные атрибуты LogRecord не попадают в "context"
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime", "trace_id"}


class TraceIdFilter(logging.Filter):
    """Copies the bound trace id (a trade id, usually) onto the record."""

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging API
        record.trace_id = current_trace_id()
        return True


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; ``extra=`` fields go under ``context``."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - logging API
        name = record.name
        doc: Dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": name,
            "component": name[len(LOGGER_PREFIX):] if name.startswith(LOGGER_PREFIX) else name,
            "message": record.getMessage(),
            "trace_id": getattr(record, "trace_id", None) or current_trace_id(),
            "where": f"{record.module}:{record.lineno}",
        }
        if record.exc_info:
            doc["exception"] = self.formatException(record.exc_info)
        if record.stack_info:
            doc["stack"] = self.formatStack(record.stack_info)

        context = {k: _jsonable(v) for k, v in vars(record).items()
                   if k not in _RECORD_ATTRS and not k.startswith("_")}
        if context:
            doc["context"] = context
        return json.dumps(doc, ensure_ascii=False)


def _jsonable(value: Any) -> Any:
    try:
        json.dumps(value)
    except (TypeError, ValueError):
        return repr(value)
    return value


def _dict_config(level: int, json_output: bool) -> Dict[str, Any]:
    formatter: Dict[str, Any]
    if json_output:
        formatter = {"()": "utils.structured_logging.JsonLogFormatter"}
    else:
        formatter = {"format": "%(asctime)s %(levelname)-7s %(name)s [%(trace_id)s] %(message)s"}
    return {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {"trace": {"()": "utils.structured_logging.TraceIdFilter"}},
        "formatters": {"main": formatter},
        "handlers": {
            "stderr": {
                "class": "logging.StreamHandler",
                "level": level,
                "filters": ["trace"],
                "formatter": "main",
            }
        },
        "root": {"level": level, "handlers": ["stderr"]},
    }


def configure_structured_logging(*, level: Optional[str] = None, json_output: bool = True) -> None:
    """Install the root handler. ``LOG_LEVEL`` is used when ``level`` is not given."""
    name = str(level or os.getenv("LOG_LEVEL", "INFO")).upper()
    numeric = getattr(logging, name, logging.INFO)
    logging.config.dictConfig(_dict_config(numeric, json_output))
    install_sensitive_filter(logging.getLogger())


def get_logger(name: str, *, mask_fields: Iterable[str] = ()) -> logging.Logger:
    logger = logging.getLogger(name)
    install_sensitive_filter(logger, fields=mask_fields)
    return logger


@contextmanager
def trace_context(trace_id: str) -> Iterator[str]:
    """Bind ``trace_id`` to every record logged inside the block."""
    value = str(trace_id) or NO_TRACE
    token = TRACE_ID_VAR.set(value)
    try:
        yield value
    finally:
        TRACE_ID_VAR.reset(token)


def current_trace_id() -> str:
    return TRACE_ID_VAR.get() or NO_TRACE
