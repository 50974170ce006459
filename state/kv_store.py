# state/kv_store.py
from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

log = logging.getLogger("greenback.kv_store")

__all__ = [
    "KeyValueStore",
    "JsonFileStore",
    "MemoryStore",
    "DEFAULT_STATE_DIR",
]

DEFAULT_STATE_DIR = Path("data") / "state"

_SAFE_KEY_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class KeyValueStore(Protocol):
    """Small durable slot storage: one JSON document per key."""

    def get(self, key: str) -> Optional[Dict[str, Any]]: ...

    def set(self, key: str, value: Dict[str, Any]) -> None: ...

    def delete(self, key: str) -> None: ...


# ──────────────────────────────────────────────────────────────────────────────
# In-memory (tests, single-process sessions)
# ──────────────────────────────────────────────────────────────────────────────
class MemoryStore:
    def __init__(self, initial: Optional[Dict[str, Dict[str, Any]]] = None) -> None:
        # stored as JSON text so callers never share mutable state with the store
        self._data: Dict[str, str] = {k: json.dumps(v) for k, v in (initial or {}).items()}

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        raw = self._data.get(key)
        return None if raw is None else json.loads(raw)

    def set(self, key: str, value: Dict[str, Any]) -> None:
        self._data[key] = json.dumps(value)

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def __contains__(self, key: str) -> bool:
        return key in self._data


# ──────────────────────────────────────────────────────────────────────────────
# JSON file per key, atomic replace on write
# ──────────────────────────────────────────────────────────────────────────────
class JsonFileStore:
    """
    Каждый ключ хранится в отдельном файле ``<state_dir>/<key>.json``.
    Запись атомарная (tmp + os.replace); ошибки чтения трактуются как «нет данных».
    """

    def __init__(self, state_dir: Path | str = DEFAULT_STATE_DIR) -> None:
        self.state_dir = Path(state_dir)
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, key: str) -> Path:
        safe = _SAFE_KEY_RE.sub("_", key).strip("._") or "default"
        return self.state_dir / f"{safe}.json"

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        try:
            if not path.exists():
                return None
            text = path.read_text(encoding="utf-8")
            if not text.strip():
                return None
            data = json.loads(text)
        except (OSError, ValueError) as e:
            log.warning("kv read failed (%s): %r", path.name, e)
            return None
        if not isinstance(data, dict):
            log.warning("kv read ignored non-object payload in %s", path.name)
            return None
        return data

    def set(self, key: str, value: Dict[str, Any]) -> None:
        path = self.path_for(key)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            tmp.write_text(json.dumps(value, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            log.error("kv atomic write failed (%s): %r", path.name, e)
            try:
                tmp.unlink(missing_ok=True)
            except OSError:
                pass

    def delete(self, key: str) -> None:
        try:
            self.path_for(key).unlink(missing_ok=True)
        except OSError as e:
            log.warning("kv delete failed (%s): %r", key, e)
