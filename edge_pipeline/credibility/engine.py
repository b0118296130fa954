from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Mapping, Optional

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.predictions.tracker import PredictionTracker
from edge_pipeline.types import Credibility
from edge_pipeline.utils import round_half_up

logger = logging.getLogger(__name__)

_REVERSAL_MARKERS = ("REVERSAL", "COUNTER", "DIVERGENCE")

# (trend-following, reversal) likelihood per regime
_REGIME_LIKELIHOOD = {
    "TRENDING": (0.80, 0.40),
    "RANGING": (0.40, 0.80),
    "VOLATILE": (0.40, 0.40),
}
_UNKNOWN_REGIME_LIKELIHOOD = 0.55


@dataclass(frozen=True)
class _SampleStats:
    total: int
    accuracy: float
    edge_attribution: Mapping[str, float]
    strategy_performance: Mapping[str, Any]


def is_reversal_strategy(strategy_id: str) -> bool:
    name = (strategy_id or "").upper()
    return any(m in name for m in _REVERSAL_MARKERS)


class CredibilityEngine:
    """Posterior reliability of a strategy in a regime, from tracked outcomes."""

    def __init__(
        self,
        prediction_tracker: Optional[PredictionTracker] = None,
        cfg: PipelineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.prediction_tracker = prediction_tracker
        self.cfg = cfg
        self._lock = threading.Lock()
        # strategy -> [hits, total]
        self._overrides: dict[str, list[int]] = {}

    def _sample_stats(self, symbol: str, strategy_id: str) -> Optional[_SampleStats]:
        override = self._overrides.get(strategy_id)
        if override and override[1] > 0:
            acc = override[0] / override[1] * 100
            return _SampleStats(
                total=override[1],
                accuracy=acc,
                edge_attribution={strategy_id.lower(): acc},
                strategy_performance={},
            )
        if self.prediction_tracker is None:
            return None
        try:
            stats = self.prediction_tracker.get_stats(symbol)
        except Exception:  # noqa: BLE001
            logger.warning("credibility_stats_failed symbol=%s, using priors", symbol, exc_info=True)
            return None
        if stats is None:
            return None
        return _SampleStats(
            total=stats.total,
            accuracy=float(stats.accuracy),
            edge_attribution=stats.edge_attribution,
            strategy_performance=stats.strategy_performance,
        )

    def _strategy_prior(self, stats: _SampleStats, strategy_id: str) -> float:
        key = strategy_id.lower()
        perf = stats.strategy_performance.get(key)
        if perf is not None and perf.total >= 3:
            return perf.accuracy / 100
        attributed = stats.edge_attribution.get(key)
        if attributed:
            return attributed / 100
        return stats.accuracy / 100 or self.cfg.default_prior

    def _regime_likelihood(self, strategy_id: str, regime: str) -> float:
        pair = _REGIME_LIKELIHOOD.get((regime or "").upper())
        if pair is None:
            return _UNKNOWN_REGIME_LIKELIHOOD
        return pair[1] if is_reversal_strategy(strategy_id) else pair[0]

    def get_posterior_credibility(self, symbol: str, strategy_id: str, regime: str) -> Credibility:
        stats = self._sample_stats(symbol, strategy_id)
        if stats is None or stats.total < self.cfg.min_sample_size:
            return Credibility(
                probability=self.cfg.default_prior,
                confidence="LOW",
                is_suppressed=False,
                sample_size=0 if stats is None else stats.total,
                reason="Insufficient historical data for Bayesian update",
            )

        prior = self._strategy_prior(stats, strategy_id)
        likelihood = self._regime_likelihood(strategy_id, regime)
        posterior = likelihood * 0.6 + prior * 0.4

        if posterior >= 0.8:
            confidence = "PREMIUM"
        elif posterior >= 0.7:
            confidence = "STRONG"
        else:
            confidence = "NEUTRAL"
        return Credibility(
            probability=round_half_up(posterior, 2),
            confidence=confidence,
            is_suppressed=posterior < self.cfg.suppression_threshold,
            sample_size=stats.total,
            realized_edge=round_half_up(posterior - 0.5, 2),
        )

    def update_performance(self, symbol: str, strategy_id: str, regime: str, is_win: bool) -> None:
        with self._lock:
            counts = self._overrides.setdefault(strategy_id, [0, 0])
            counts[1] += 1
            if is_win:
                counts[0] += 1
        logger.info(
            "credibility_update symbol=%s strategy=%s regime=%s result=%s",
            symbol,
            strategy_id,
            regime,
            "WIN" if is_win else "LOSS",
        )

    def calibrate_weights(self, base_weights: Mapping[str, float], credibility: Credibility) -> dict[str, float]:
        weights = dict(base_weights)
        if credibility.is_suppressed:
            return weights
        weights["realized_edge_multiplier"] = 1.2 if credibility.probability >= 0.75 else 1.0
        return weights
