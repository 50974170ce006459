from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from risk.profit_gate import TradeContext
from schemas.guard import (
    MinExitPriceIn,
    MinExitPriceOut,
    PaperTestIn,
    PaperTestOut,
    ProfitVerdictOut,
    TradeContextIn,
)
from services.session import TradingSession, get_trading_session
from src.paper_test import ThresholdConfig

router = APIRouter(tags=["profit"])


@router.post("/profit/evaluate", response_model=ProfitVerdictOut)
async def evaluate(body: TradeContextIn, session: TradingSession = Depends(get_trading_session)) -> dict:
    ctx = TradeContext(**body.model_dump())
    return session.profit_engine.evaluate(ctx).to_dict()


@router.post("/profit/min-exit-price", response_model=MinExitPriceOut)
async def min_exit_price(body: MinExitPriceIn, session: TradingSession = Depends(get_trading_session)) -> dict:
    engine = session.profit_engine
    target = engine.default_min_profit_threshold if body.target_net_profit is None else body.target_net_profit
    try:
        price = engine.minimum_exit_price(
            body.entry_price, body.position_size, body.venue, target, body.direction,
        )
    except KeyError as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except ValueError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    return {
        "venue": body.venue,
        "direction": body.direction,
        "target_net_profit": target,
        "minimum_exit_price": price,
    }


@router.post("/paper-test/run", response_model=PaperTestOut)
async def run_paper_test(body: PaperTestIn, session: TradingSession = Depends(get_trading_session)) -> dict:
    thresholds = ThresholdConfig(
        min_signal_score=body.min_signal_score,
        min_confluence=body.min_confluence,
        min_volume_ratio=body.min_volume_ratio,
        target_hit_rate=body.target_hit_rate,
    )
    result = session.run_paper_test(body.num_trades, thresholds, seed=body.seed)
    return result.to_dict()
