from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from schemas.guard import ConnectionStatusIn, ModuleErrorIn, ModuleHealthOut, WatchdogStatusOut
from services.session import TradingSession, get_trading_session

router = APIRouter(prefix="/watchdog", tags=["watchdog"])


def _module_or_404(session: TradingSession, name: str):
    module = session.watchdog.module(name)
    if module is None:
        raise HTTPException(status_code=404, detail=f"module {name!r} is not registered")
    return module


@router.get("/status", response_model=WatchdogStatusOut)
async def watchdog_status(session: TradingSession = Depends(get_trading_session)) -> dict:
    return session.watchdog.get_status().to_dict()


@router.post("/modules/{name}", response_model=ModuleHealthOut, status_code=201)
async def register_module(name: str, session: TradingSession = Depends(get_trading_session)) -> dict:
    return session.watchdog.register_module(name).to_dict()


@router.delete("/modules/{name}", status_code=204)
async def unregister_module(name: str, session: TradingSession = Depends(get_trading_session)) -> None:
    if not session.watchdog.unregister_module(name):
        raise HTTPException(status_code=404, detail=f"module {name!r} is not registered")


@router.post("/heartbeat/{name}", response_model=ModuleHealthOut)
async def heartbeat(name: str, session: TradingSession = Depends(get_trading_session)) -> dict:
    _module_or_404(session, name)
    session.watchdog.heartbeat(name)
    return _module_or_404(session, name).to_dict()


@router.post("/modules/{name}/error", response_model=ModuleHealthOut)
async def report_error(
    name: str,
    body: ModuleErrorIn,
    session: TradingSession = Depends(get_trading_session),
) -> dict:
    _module_or_404(session, name)
    session.watchdog.report_error(name, body.error)
    return _module_or_404(session, name).to_dict()


@router.post("/modules/{name}/success", response_model=ModuleHealthOut)
async def report_success(name: str, session: TradingSession = Depends(get_trading_session)) -> dict:
    _module_or_404(session, name)
    session.watchdog.report_success(name)
    return _module_or_404(session, name).to_dict()


@router.post("/connections/{venue}")
async def update_connection(
    venue: str,
    body: ConnectionStatusIn,
    session: TradingSession = Depends(get_trading_session),
) -> dict:
    # первое обращение регистрирует соединение
    if session.watchdog.connection(venue) is None:
        session.watchdog.register_connection(venue)
    session.watchdog.update_connection_status(venue, body.connected)
    return session.watchdog.connection(venue).to_dict()
