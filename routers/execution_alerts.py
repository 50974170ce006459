from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, HTTPException

from monitoring.execution_alerts import TradeTelemetry
from schemas.guard import (
    ExecutionAlertOut,
    ExecutionAlertsOut,
    ExecutionThresholdsModel,
    ExecutionThresholdsPatch,
    TradeTelemetryIn,
)
from services.session import TradingSession, get_trading_session

router = APIRouter(prefix="/alerts/execution", tags=["alerts"])


@router.get("", response_model=ExecutionAlertsOut)
async def list_alerts(session: TradingSession = Depends(get_trading_session)) -> dict:
    alerter = session.alerter
    return {
        "alerts": [a.to_dict() for a in alerter.alerts],
        "recent_alert_count": alerter.recent_alert_count,
    }


@router.post("/check", response_model=List[ExecutionAlertOut])
async def check_trade(body: TradeTelemetryIn, session: TradingSession = Depends(get_trading_session)) -> list:
    trade = TradeTelemetry(
        trade_id=body.trade_id,
        pair=body.pair,
        venue=body.venue,
        phase_metrics=dict(body.phase_metrics),
    )
    return [a.to_dict() for a in session.alerter.check(trade)]


@router.delete("", status_code=204)
async def clear_alerts(session: TradingSession = Depends(get_trading_session)) -> None:
    session.alerter.clear_alerts()


@router.get("/thresholds", response_model=ExecutionThresholdsModel)
async def get_thresholds(session: TradingSession = Depends(get_trading_session)) -> dict:
    return session.alerter.thresholds.to_dict()


@router.put("/thresholds", response_model=ExecutionThresholdsModel)
async def update_thresholds(
    body: ExecutionThresholdsPatch,
    session: TradingSession = Depends(get_trading_session),
) -> dict:
    changes = body.model_dump(exclude_none=True)
    try:
        thresholds = session.alerter.update_thresholds(**changes)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return thresholds.to_dict()


@router.delete("/{alert_id}", status_code=204)
async def dismiss_alert(alert_id: str, session: TradingSession = Depends(get_trading_session)) -> None:
    if not session.alerter.dismiss_alert(alert_id):
        raise HTTPException(status_code=404, detail=f"alert {alert_id!r} not found")
