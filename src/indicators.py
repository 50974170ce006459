# src/indicators.py
from __future__ import annotations

"""
Индикаторы для скоринга окна котировок (26+ баров).

Вход: pandas.Series или любой массив чисел; индекс сохраняется, нечисловые
значения превращаются в NaN. Выход: float64-ряд той же длины (MACD отдаёт
DataFrame). Сглаживание EWM без `adjust`, поэтому значения есть с первого бара.
"""

from typing import Optional

import numpy as np
import pandas as pd

__all__ = ["ema", "rsi", "macd", "volume_ratio", "last_value"]


def _series(values) -> pd.Series:
    s = values if isinstance(values, pd.Series) else pd.Series(values)
    return pd.to_numeric(s, errors="coerce").astype("float64")


def _require_positive(name: str, **periods: int) -> None:
    for key, value in periods.items():
        if value <= 0:
            raise ValueError(f"{name}: {key} must be > 0")


def ema(series: pd.Series, period: int) -> pd.Series:
    """EMA со span=`period`. ValueError при `period <= 0`."""
    _require_positive("ema", period=period)
    return _series(series).ewm(span=period, adjust=False).mean()


def rsi(series: pd.Series, period: int = 14) -> pd.Series:
    """
    RSI по Уайлдеру (alpha = 1/period).

    Участок без единого падения даёт 100, первый бар (NaN после diff) - 50.
    """
    _require_positive("rsi", period=period)
    change = _series(series).diff()
    alpha = 1.0 / period
    gain = change.clip(lower=0.0).ewm(alpha=alpha, adjust=False).mean()
    loss = (-change).clip(lower=0.0).ewm(alpha=alpha, adjust=False).mean()

    value = 100.0 - 100.0 / (1.0 + gain / loss.replace(0.0, np.nan))
    value = value.mask((loss == 0.0) & gain.notna(), 100.0)
    return value.fillna(50.0)


def macd(series: pd.Series, fast: int = 12, slow: int = 26, signal: int = 9) -> pd.DataFrame:
    """Колонки `macd`, `signal` и `hist` (= macd - signal)."""
    _require_positive("macd", fast=fast, slow=slow, signal=signal)
    s = _series(series)
    line = ema(s, fast) - ema(s, slow)
    trigger = line.ewm(span=signal, adjust=False).mean()
    return pd.DataFrame({"macd": line, "signal": trigger, "hist": line - trigger}, index=s.index)


def volume_ratio(volume: pd.Series, lookback: int = 20) -> float:
    """
    Последний объём к среднему по предыдущим `lookback - 1` барам.

    Короткая история или нулевое среднее дают нейтральные 1.0.
    """
    if lookback < 2:
        raise ValueError("volume_ratio: lookback must be >= 2")
    v = _series(volume).dropna()
    if len(v) < lookback:
        return 1.0
    window = v.iloc[-lookback:]
    avg = float(window.iloc[:-1].mean())
    return float(window.iloc[-1]) / avg if avg > 0.0 else 1.0


def last_value(series: pd.Series) -> Optional[float]:
    s = _series(series).dropna()
    if s.empty:
        return None
    value = float(s.iloc[-1])
    return value if np.isfinite(value) else None
