from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

import pandas as pd

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.indicators.atr import average_volume, latest_atr
from edge_pipeline.indicators.swings import find_swings
from edge_pipeline.types import Direction

StopType = Literal["STRUCTURE", "VOLATILITY"]


@dataclass(frozen=True)
class TrailingStopAdvice:
    price: float
    type: StopType
    should_update: bool


@dataclass(frozen=True)
class PartialTakeProfit:
    reason: str
    recommendation: str = "Take 30-50% off table"


def trailing_stop_advice(
    candles: pd.DataFrame,
    direction: Direction,
    current_stop: float,
    cfg: PipelineConfig = DEFAULT_CONFIG,
) -> Optional[TrailingStopAdvice]:
    """Tighter of a chandelier stop and the last protective swing, never looser than ``current_stop``."""
    if candles is None or len(candles) < cfg.min_management_candles:
        return None

    last_close = float(candles["close"].iloc[-1])
    a = latest_atr(candles, cfg.atr_period)
    long = direction is Direction.BULLISH

    atr_stop = last_close - a * cfg.trailing_atr_multiple if long else last_close + a * cfg.trailing_atr_multiple

    structure_stop = current_stop
    swings = find_swings(candles, cfg.swing_window)
    if long:
        lows = [s for s in swings if s.kind == "LOW" and s.price > current_stop]
        if lows:
            structure_stop = lows[-1].price - a * 0.2
    else:
        highs = [s for s in swings if s.kind == "HIGH" and s.price < current_stop]
        if highs:
            structure_stop = highs[-1].price + a * 0.2

    if long:
        new_stop = max(atr_stop, structure_stop, current_stop)
    else:
        new_stop = min(atr_stop, structure_stop, current_stop)

    return TrailingStopAdvice(
        price=new_stop,
        type="STRUCTURE" if new_stop == structure_stop else "VOLATILITY",
        should_update=abs(new_stop - current_stop) > a * 0.1,
    )


def check_partial_tp(
    candles: pd.DataFrame,
    direction: Direction,
    entry: float,
    cfg: PipelineConfig = DEFAULT_CONFIG,
) -> Optional[PartialTakeProfit]:
    if candles is None or len(candles) < 2:
        return None
    last = candles.iloc[-1]
    a = latest_atr(candles, cfg.atr_period)
    profit = (float(last["close"]) - entry) * direction.sign
    if a <= 0 or profit < a * cfg.partial_tp_atr_multiple:
        return None

    climax = float(last["volume"]) > average_volume(candles) * cfg.climax_volume_ratio

    body = abs(float(last["close"]) - float(last["open"]))
    if direction is Direction.BULLISH:
        wick = float(last["high"]) - max(float(last["open"]), float(last["close"]))
    else:
        wick = min(float(last["open"]), float(last["close"])) - float(last["low"])
    rejection = wick > body * cfg.rejection_wick_ratio

    if climax:
        return PartialTakeProfit(reason="Volume Climax")
    if rejection:
        return PartialTakeProfit(reason="Wick Rejection")
    return None
