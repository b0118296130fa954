from __future__ import annotations

import math

import pandas as pd


def true_range(df: pd.DataFrame) -> pd.Series:
    prev_close = df["close"].shift(1)
    return pd.concat(
        [
            (df["high"] - df["low"]).abs(),
            (df["high"] - prev_close).abs(),
            (df["low"] - prev_close).abs(),
        ],
        axis=1,
    ).max(axis=1)


def atr(df: pd.DataFrame, period: int = 14) -> pd.Series:
    return true_range(df).rolling(period, min_periods=period).mean()


def latest_atr(df: pd.DataFrame, period: int = 14) -> float:
    """ATR of the last bar, 0.0 when the frame is too short."""
    if len(df) < period + 1:
        return 0.0
    value = float(atr(df, period).iloc[-1])
    return value if math.isfinite(value) else 0.0


def average_volume(df: pd.DataFrame, window: int = 20) -> float:
    recent = df["volume"].tail(window)
    return float(recent.mean()) if len(recent) else 0.0
