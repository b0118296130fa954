from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.types import Setup
from edge_pipeline.utils import clamp, round_half_up

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RiskProfile:
    ruin_probability: float
    success_probability: float = 0.0
    neutral_probability: float = 0.0
    safety_score: int = 100
    iterations: int = 0
    median_pnl: float = 0.0


SAFE_DEFAULT = RiskProfile(ruin_probability=0.0, safety_score=100, median_pnl=0.0)


@dataclass(frozen=True)
class EquitySimulation:
    risk_of_ruin: float
    percentiles: dict[str, float]
    average_final_balance: float
    paths: list[list[float]] = field(default_factory=list)


def _pct(count: int, total: int) -> float:
    return round_half_up(count / total * 100, 2)


class RiskSimulator:
    """Monte Carlo estimate of stop-before-target risk for a setup."""

    def __init__(
        self,
        rng: Optional[np.random.Generator] = None,
        seed: Optional[int] = None,
        cfg: PipelineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.rng = rng if rng is not None else np.random.default_rng(seed)
        self.cfg = cfg

    def _simulate_chunk(
        self, n: int, entry: float, stop: float, target: float, sign: int, step_vol: float
    ) -> tuple[int, int, np.ndarray]:
        steps = self.cfg.mc_max_steps
        # Irwin-Hall approximation of a standard normal step
        shocks = (self.rng.random((n, steps, 6)).sum(axis=2) - 3.0) / 1.5
        paths = entry + np.cumsum(shocks * step_vol, axis=1)

        if sign > 0:
            tp_mask = paths >= target
            sl_mask = paths <= stop
        else:
            tp_mask = paths <= target
            sl_mask = paths >= stop

        never = steps
        first_tp = np.where(tp_mask.any(axis=1), tp_mask.argmax(axis=1), never)
        first_sl = np.where(sl_mask.any(axis=1), sl_mask.argmax(axis=1), never)

        hit_tp = (first_tp < never) & (first_tp <= first_sl)
        hit_sl = (first_sl < never) & (first_sl < first_tp)
        exit_step = np.minimum(np.minimum(first_tp, first_sl), steps - 1)
        final_prices = paths[np.arange(n), exit_step]
        return int(hit_tp.sum()), int(hit_sl.sum()), (final_prices - entry) * sign

    def run_monte_carlo(self, setup: Optional[Setup], atr: float, iterations: Optional[int] = None) -> RiskProfile:
        n = self.cfg.mc_iterations if iterations is None else int(iterations)
        if setup is None or setup.entry is None or setup.stop is None or not setup.targets:
            return SAFE_DEFAULT
        entry = float(setup.entry)
        stop = float(setup.stop)
        target = float(setup.targets[0])
        if abs(entry - stop) == 0 or n <= 0:
            return SAFE_DEFAULT
        if not math.isfinite(atr) or atr <= 0:
            logger.warning("monte_carlo_degenerate_atr symbol=%s atr=%s", setup.symbol, atr)
            return SAFE_DEFAULT

        sign = setup.direction.sign
        step_vol = atr / self.cfg.mc_steps_per_candle
        chunk = max(1, int(self.cfg.mc_chunk_size))

        # at most mc_chunk_size paths in memory at once
        tp_count = sl_count = 0
        pnl: list[np.ndarray] = []
        for start in range(0, n, chunk):
            tp, sl, chunk_pnl = self._simulate_chunk(min(chunk, n - start), entry, stop, target, sign, step_vol)
            tp_count += tp
            sl_count += sl
            pnl.append(chunk_pnl)

        success = _pct(tp_count, n)
        ruin = _pct(sl_count, n)
        neutral = _pct(n - tp_count - sl_count, n)
        safety = int(round_half_up(clamp(success * 1.5 - ruin * 0.5, 0.0, 100.0)))
        median_pnl = float(np.median(np.concatenate(pnl)))

        return RiskProfile(
            ruin_probability=ruin,
            success_probability=success,
            neutral_probability=neutral,
            safety_score=safety,
            iterations=n,
            median_pnl=median_pnl,
        )

    def simulate_equity(
        self,
        win_rate: float,
        profit_factor: float = 2.0,
        iterations: int = 1000,
        horizon: int = 50,
        starting_balance: float = 10_000.0,
    ) -> EquitySimulation:
        """Compounded 1%-risk equity curves; win_rate is a percentage."""
        wins = self.rng.random((iterations, horizon)) < (win_rate / 100)
        factors = np.where(wins, 1 + 0.01 * (profit_factor or 2.0), 0.99)
        curves = starting_balance * np.cumprod(factors, axis=1)
        ruined = (curves < starting_balance * 0.5).any(axis=1)

        finals = np.sort(curves[:, -1])
        percentiles = {
            "p10": float(finals[int(iterations * 0.1)]),
            "p50": float(finals[int(iterations * 0.5)]),
            "p90": float(finals[min(int(iterations * 0.9), iterations - 1)]),
            "max": float(finals[-1]),
            "min": float(finals[0]),
        }
        head = np.hstack([np.full((min(50, iterations), 1), starting_balance), curves[:50]])
        return EquitySimulation(
            risk_of_ruin=_pct(int(ruined.sum()), iterations),
            percentiles=percentiles,
            average_final_balance=float(finals.mean()),
            paths=head.tolist(),
        )


def setup_value_at_risk(setup: Optional[Setup], units: float) -> float:
    if setup is None or setup.entry is None or setup.stop is None:
        return 0.0
    return abs(setup.entry - setup.stop) * (units or 0.0)
