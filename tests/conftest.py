# tests/conftest.py
from __future__ import annotations

import sys
from pathlib import Path

import pytest
import pytest_asyncio
from asgi_lifespan import LifespanManager
from httpx import ASGITransport, AsyncClient

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from monitoring.scheduler import ManualScheduler  # noqa: E402
from services.session import TradingSession  # noqa: E402
from state.kv_store import MemoryStore  # noqa: E402
from utils.trading_config import GuardConfig  # noqa: E402


# ──────────────────────────────────────────────────────────────────────────────
# Общие фикстуры: ручное время + in-memory хранилище
# ──────────────────────────────────────────────────────────────────────────────
@pytest.fixture
def scheduler() -> ManualScheduler:
    # старт не с нуля, чтобы epoch-ms метки были «реальными»
    return ManualScheduler(start=1_700_000_000.0)


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def session_factory(scheduler: ManualScheduler, store: MemoryStore):
    def factory() -> TradingSession:
        return TradingSession(
            GuardConfig(state_dir="unused"),
            store=store,
            scheduler=scheduler,
            clock=scheduler.now,
            seed=7,
        )
    return factory


# ──────────────────────────────────────────────────────────────────────────────
# Фикстура клиента: LifespanManager прогоняет startup/shutdown FastAPI-приложения
# ──────────────────────────────────────────────────────────────────────────────
@pytest_asyncio.fixture
async def client(session_factory):
    from src.main import create_app  # импорт здесь, чтобы не тащить app в глобал

    app = create_app(session_factory)
    async with LifespanManager(app):
        async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
            ac.app = app  # type: ignore[attr-defined]
            yield ac
