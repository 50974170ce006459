"""Prometheus scrape endpoint for the running trading session."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response

from services.session import TradingSession, get_trading_session

router = APIRouter(tags=["monitoring"])


@router.get("/metrics", include_in_schema=False)
async def prometheus_metrics(session: TradingSession = Depends(get_trading_session)) -> Response:
    data = session.metrics.export_prometheus()
    return Response(content=data, media_type=session.metrics.prometheus_content_type)
