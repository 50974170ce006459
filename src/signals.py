# src/signals.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Sequence

import numpy as np
import pandas as pd

from src.indicators import ema, last_value, macd, rsi, volume_ratio

Direction = Literal["long", "short"]
Confidence = Literal["low", "medium", "high", "elite"]

MIN_WINDOW = 26

# Скоринг по числу согласных индикаторов: (нижняя граница, ширина диапазона)
_SCORE_BANDS = {
    4: (0.95, 0.05),
    3: (0.85, 0.09),
    2: (0.70, 0.14),
}
_SCORE_FLOOR_BAND = (0.50, 0.19)

STRONG_VOLUME_RATIO = 1.5
GOOD_VOLUME_RATIO = 1.2


@dataclass(frozen=True)
class SignalIndicators:
    rsi: Optional[float]
    ema_fast: Optional[float]
    ema_slow: Optional[float]
    macd_hist: Optional[float]
    volume_ratio: float


@dataclass(frozen=True)
class SignalScore:
    score: float            # 0..1
    direction: Direction
    confluence: int         # aligned indicators, 0..4
    confidence: Confidence
    indicators: SignalIndicators


def _confidence(score: float) -> Confidence:
    if score >= 0.95:
        return "elite"
    if score >= 0.90:
        return "high"
    if score >= 0.80:
        return "medium"
    return "low"


def score_signal(
    closes: Sequence[float],
    volumes: Sequence[float],
    rng: Optional[np.random.Generator] = None,
) -> Optional[SignalScore]:
    """
    Score the latest bar of a price window.

    Votes: RSI(14) < 25 long / > 75 short; EMA(9) vs EMA(21) with price on the
    same side of EMA(9); MACD histogram sign; volume ratio >= 1.5 adds a vote
    to whichever side already leads. Confluence is the vote count of the
    winning side (ties go long); the score is drawn inside the band for that
    confluence. Returns ``None`` for windows shorter than 26 bars.
    """
    if len(closes) < MIN_WINDOW or len(volumes) < MIN_WINDOW:
        return None
    rng = rng if rng is not None else np.random.default_rng()

    close = pd.Series(closes, dtype="float64")
    rsi_v = last_value(rsi(close, 14))
    ema_fast = last_value(ema(close, 9))
    ema_slow = last_value(ema(close, 21))
    hist = last_value(macd(close)["hist"])
    vol_ratio = volume_ratio(pd.Series(volumes, dtype="float64"))
    price = float(close.iloc[-1])

    long_votes = 0
    short_votes = 0

    if rsi_v is not None:
        if rsi_v < 25:
            long_votes += 1
        elif rsi_v > 75:
            short_votes += 1

    if ema_fast is not None and ema_slow is not None:
        if ema_fast > ema_slow and price > ema_fast:
            long_votes += 1
        elif ema_fast < ema_slow and price < ema_fast:
            short_votes += 1

    if hist is not None:
        if hist > 0:
            long_votes += 1
        elif hist < 0:
            short_votes += 1

    if vol_ratio >= STRONG_VOLUME_RATIO:
        if long_votes > short_votes:
            long_votes += 1
        elif short_votes > long_votes:
            short_votes += 1

    direction: Direction = "long" if long_votes >= short_votes else "short"
    confluence = long_votes if direction == "long" else short_votes

    low, width = _SCORE_BANDS.get(min(confluence, 4), _SCORE_FLOOR_BAND)
    score = low + float(rng.uniform(0.0, width))

    return SignalScore(
        score=score,
        direction=direction,
        confluence=confluence,
        confidence=_confidence(score),
        indicators=SignalIndicators(
            rsi=rsi_v,
            ema_fast=ema_fast,
            ema_slow=ema_slow,
            macd_hist=hist,
            volume_ratio=vol_ratio,
        ),
    )


def win_probability(signal: SignalScore) -> float:
    """Implied win probability, clamped to [0.70, 0.95]."""
    p = 0.55
    p += (signal.score - 0.50) * 0.70
    p += signal.confluence * 0.05
    if signal.indicators.volume_ratio >= STRONG_VOLUME_RATIO:
        p += 0.05
    elif signal.indicators.volume_ratio >= GOOD_VOLUME_RATIO:
        p += 0.03
    return max(0.70, min(0.95, p))
