"""Secret masking for log records: API keys, tokens and webhook URLs."""
from __future__ import annotations

import logging
import re
from typing import Any, FrozenSet, Iterable, Mapping
from urllib.parse import urlsplit

MASK = "***"

SENSITIVE_KEYS: FrozenSet[str] = frozenset({
    "api_key",
    "api_secret",
    "secret",
    "token",
    "password",
    "authorization",
    "webhook_url",
})

# длинные токены: оставляем 6 символов в начале и 4 в конце
_LONG_TOKEN_RE = re.compile(r"\b([A-Za-z0-9]{6})[A-Za-z0-9]{6,}([A-Za-z0-9]{4})\b")
_URL_RE = re.compile(r"https?://[^\s/]+/[^\s\"']+")


def mask_url(url: str) -> str:
    """Keep scheme and host of a webhook URL, hide the path (it carries the token)."""
    if not url:
        return ""
    parts = urlsplit(url)
    if not parts.netloc:
        return MASK
    return f"{parts.scheme}://{parts.netloc}/{MASK}"


def mask_text(text: str) -> str:
    if len(text) <= 8:
        return MASK
    return _LONG_TOKEN_RE.sub(rf"\1{MASK}\2", text)


def mask_payload(payload: Any, keys: Iterable[str] = SENSITIVE_KEYS) -> Any:
    """Recursively mask a JSON-like payload; values under sensitive keys are replaced."""
    keys = frozenset(k.lower() for k in keys)
    if isinstance(payload, Mapping):
        return {
            k: MASK if str(k).lower() in keys else mask_payload(v, keys)
            for k, v in payload.items()
        }
    if isinstance(payload, (list, tuple, set)):
        return type(payload)(mask_payload(v, keys) for v in payload)
    if isinstance(payload, str):
        return mask_text(payload)
    return payload


class SensitiveDataFilter(logging.Filter):
    """Masks ``key=value`` secrets and webhook URL paths in formatted messages."""

    def __init__(self, *, fields: Iterable[str] = ()) -> None:
        super().__init__("sensitive")
        self._keys = SENSITIVE_KEYS | {f.lower() for f in fields}
        self._kv_re = re.compile(
            r"\b(" + "|".join(re.escape(k) for k in sorted(self._keys)) + r")=([^\s,;]+)",
            re.IGNORECASE,
        )

    def _scrub(self, text: str) -> str:
        text = self._kv_re.sub(lambda m: f"{m.group(1)}={MASK}", text)
        return _URL_RE.sub(lambda m: mask_url(m.group(0)), text)

    def filter(self, record: logging.LogRecord) -> bool:  # pragma: no cover - logging API
        if isinstance(record.msg, Mapping):
            record.msg = mask_payload(record.msg, self._keys)
            return True
        if isinstance(record.args, Mapping):
            record.args = {k: MASK if str(k).lower() in self._keys else v for k, v in record.args.items()}
        elif record.args:
            record.args = tuple(self._scrub(a) if isinstance(a, str) else a for a in record.args)
        if isinstance(record.msg, str):
            record.msg = self._scrub(record.msg)
        return True


def install_sensitive_filter(logger: logging.Logger, *, fields: Iterable[str] = ()) -> None:
    """Attach one :class:`SensitiveDataFilter` per logger (idempotent)."""
    if not any(isinstance(f, SensitiveDataFilter) for f in logger.filters):
        logger.addFilter(SensitiveDataFilter(fields=fields))
