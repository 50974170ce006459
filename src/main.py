# src/main.py
from __future__ import annotations

import os
from contextlib import asynccontextmanager
from typing import Any, Callable, Dict, List, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from routers.execution_alerts import router as execution_alerts_router
from routers.metrics import router as metrics_router
from routers.profit import router as profit_router
from routers.watchdog import router as watchdog_router
from services.session import TradingSession
from utils.structured_logging import configure_structured_logging, get_logger
from utils.trading_config import load_guard_config

APP_VERSION = os.getenv("APP_VERSION", "0.1.0")

LOG = get_logger("greenback.app")

SessionFactory = Callable[[], TradingSession]


# ──────────────────────────────────────────────────────────────────────────────
# ENV utils
# ──────────────────────────────────────────────────────────────────────────────
def env_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def env_list(name: str, default: str = "", sep: str = ",") -> List[str]:
    raw = os.getenv(name, default)
    if not raw:
        return []
    return [x.strip() for x in raw.split(sep) if x.strip()]


def default_session_factory() -> TradingSession:
    return TradingSession(load_guard_config())


# ──────────────────────────────────────────────────────────────────────────────
# App factory
# ──────────────────────────────────────────────────────────────────────────────
def create_app(session_factory: Optional[SessionFactory] = None) -> FastAPI:
    factory = session_factory or default_session_factory
    # логирование настраивает только фабрика по умолчанию
    configure_logs = session_factory is None

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if configure_logs:
            configure_structured_logging(
                level=os.getenv("LOG_LEVEL"),
                json_output=env_bool("GREENBACK_JSON_LOGS", True),
            )
        # сессия создаётся внутри цикла: AsyncioScheduler берёт running loop
        session = factory()
        session.start()
        app.state.session = session
        LOG.info("greenback guard %s is up", APP_VERSION)
        try:
            yield
        finally:
            app.state.session = None
            await session.aclose()

    app = FastAPI(title="Greenback Guard", version=APP_VERSION, lifespan=lifespan)

    extra_origins = env_list("CORS_ORIGINS", "")
    default_origins = ["http://127.0.0.1", "http://localhost", "http://localhost:3000"]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(dict.fromkeys(default_origins + extra_origins)),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        max_age=3600,
    )
    app.add_middleware(GZipMiddleware, minimum_size=int(os.getenv("GZIP_MIN_SIZE", "1024")))

    # ── обработчики ошибок ────────────────────────────────────────────────
    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            headers={"Cache-Control": "no-store"},
            content={"ok": False, "error": str(exc.detail), "path": str(request.url.path)},
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        LOG.exception("Unhandled exception at %s: %r", request.url.path, exc)
        return JSONResponse(
            status_code=500,
            headers={"Cache-Control": "no-store"},
            content={"ok": False, "error": "Internal Server Error", "path": str(request.url.path)},
        )

    # ── meta ──────────────────────────────────────────────────────────────
    @app.get("/ping", tags=["meta"])
    async def ping() -> Dict[str, Any]:
        return {"status": "ok", "message": "Greenback guard is running"}

    @app.get("/_livez", tags=["meta"])
    async def livez() -> PlainTextResponse:
        return PlainTextResponse("OK", headers={"Cache-Control": "no-store"})

    @app.get("/_readyz", tags=["meta"])
    async def readyz(request: Request) -> PlainTextResponse:
        session = getattr(request.app.state, "session", None)
        if session is None or not session.started:
            return PlainTextResponse("NOT_READY", status_code=503, headers={"Cache-Control": "no-store"})
        return PlainTextResponse("READY", headers={"Cache-Control": "no-store"})

    @app.get("/version", tags=["meta"])
    async def version() -> Dict[str, Any]:
        return {"version": APP_VERSION}

    app.include_router(watchdog_router)
    app.include_router(execution_alerts_router)
    app.include_router(profit_router)
    app.include_router(metrics_router)
    return app


app = create_app()
