from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Optional

import pandas as pd

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.lifecycle.management import check_partial_tp, trailing_stop_advice
from edge_pipeline.types import SIGNAL_EXPIRED, SIGNAL_STOPPED_OUT, Direction, Signal
from edge_pipeline.utils import price_precision

logger = logging.getLogger(__name__)

PARTIAL_TP_MARKER = "Partial TP"


def _targets_hit(signal: Signal, current_price: float) -> int:
    if signal.direction is Direction.BULLISH:
        return sum(1 for t in signal.targets if current_price >= t)
    return sum(1 for t in signal.targets if current_price <= t)


def _tp_level(status: str) -> int:
    if status.startswith("HIT_TP"):
        try:
            return int(status[len("HIT_TP"):])
        except ValueError:
            return 0
    return 0


class SignalLifecycleManager:
    """Moves published signals through targets, stops, expiry and trade management."""

    def __init__(
        self,
        cfg: PipelineConfig = DEFAULT_CONFIG,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.cfg = cfg
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def update_signal_status(
        self,
        signal: Signal,
        current_price: float,
        candles: Optional[pd.DataFrame] = None,
    ) -> Signal:
        if signal.is_terminal:
            return signal

        stopped = current_price <= signal.stop if signal.direction is Direction.BULLISH else current_price >= signal.stop
        if stopped:
            signal.status = SIGNAL_STOPPED_OUT
            logger.info("signal_stopped_out id=%s price=%s", signal.id, current_price)
            return signal
        if self._clock() > signal.expires_at:
            signal.status = SIGNAL_EXPIRED
            logger.info("signal_expired id=%s", signal.id)
            return signal

        hit = _targets_hit(signal, current_price)
        if hit > _tp_level(signal.status):
            signal.status = f"HIT_TP{hit}"
            logger.info("signal_target_hit id=%s status=%s", signal.id, signal.status)

        if candles is not None and len(candles) >= self.cfg.min_management_candles:
            self._manage(signal, candles)
        return signal

    def _manage(self, signal: Signal, candles: pd.DataFrame) -> None:
        current = signal.trailing_stop if signal.trailing_stop is not None else signal.stop
        advice = trailing_stop_advice(candles, signal.direction, current, self.cfg)
        if advice is not None and advice.should_update:
            improves = advice.price > current if signal.direction is Direction.BULLISH else advice.price < current
            if improves:
                signal.trailing_stop = advice.price
                price = f"{advice.price:.{price_precision(signal.symbol)}f}"
                signal.management_updates.append(f"[TRAIL] Moved Stop to {price} ({advice.type})")
                logger.info("signal_trailing_stop id=%s stop=%s type=%s", signal.id, price, advice.type)

        partial = check_partial_tp(candles, signal.direction, signal.entry, self.cfg)
        if partial is not None and not any(PARTIAL_TP_MARKER in u for u in signal.management_updates):
            signal.management_updates.append(f"[ALERT] {PARTIAL_TP_MARKER} - {partial.reason}: {partial.recommendation}")
            logger.info("signal_partial_tp id=%s reason=%s", signal.id, partial.reason)
