from __future__ import annotations

import logging
from typing import Optional

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.performance.tracker import PerformanceTracker
from edge_pipeline.scoring.factors import (
    FACTORS,
    ScoringContext,
    calculate_momentum_cluster,
    classify_profile,
    regime_weights,
)
from edge_pipeline.types import Credibility, MarketState, ScoreBreakdown, Setup
from edge_pipeline.utils import clamp, normalize_direction, round_half_up

logger = logging.getLogger(__name__)

__all__ = ["EdgeScorer", "calculate_momentum_cluster", "score_label"]

VETO_SCORE_CAP = 1.0


def score_label(score: float) -> str:
    if score >= 8:
        return "PREMIUM EDGE"
    if score >= 7:
        return "STRONG EDGE"
    if score >= 6:
        return "TRADABLE"
    if score >= 4:
        return "LOW CONVICTION"
    return "NO EDGE"


class EdgeScorer:
    """Turns a setup plus market context into a 0-10 edge score with reasons."""

    def __init__(
        self,
        performance: Optional[PerformanceTracker] = None,
        cfg: PipelineConfig = DEFAULT_CONFIG,
    ) -> None:
        self.performance = performance
        self.cfg = cfg

    def _performance_multiplier(self, strategy: str) -> float:
        if self.performance is None or not strategy:
            return 1.0
        return self.performance.get_dynamic_weight(strategy)

    def calculate_score(
        self,
        setup: Optional[Setup],
        market_state: Optional[MarketState],
        credibility: Optional[Credibility] = None,
        symbol: str = "",
    ) -> ScoreBreakdown:
        if setup is None:
            return ScoreBreakdown(score=0.0, positives=[], risks=["No active setup"])
        if market_state is None:
            return ScoreBreakdown(score=0.0, positives=[], risks=["Missing Market Context"])

        regime = str(market_state.get("regime") or "TRENDING").upper()
        trend_w, osc_w = regime_weights(regime)
        ctx = ScoringContext(
            setup=setup,
            state=market_state,
            credibility=credibility,
            performance_multiplier=self._performance_multiplier(setup.strategy),
            symbol=symbol or setup.symbol,
            direction=normalize_direction(setup.direction.value),
            profile=classify_profile(setup.timeframe or str(market_state.get("timeframe") or "1h")),
            regime=regime,
            trend_weight=trend_w,
            oscillator_weight=osc_w,
        )

        total = 0.0
        positives: list[str] = []
        risks: list[str] = []
        vetoed = False
        for factor in FACTORS:
            c = factor(ctx)
            if c is None:
                continue
            total += c.points
            (risks if c.is_risk else positives).append(c.label)
            vetoed = vetoed or c.veto

        score = clamp(round_half_up(total / 10, 1), 0.0, 10.0)
        if vetoed:
            score = min(score, VETO_SCORE_CAP)
        logger.debug(
            "edge_score symbol=%s strategy=%s tf=%s total=%.1f score=%.1f vetoed=%s",
            ctx.symbol,
            setup.strategy,
            ctx.profile.profile,
            total,
            score,
            vetoed,
        )
        return ScoreBreakdown(score=score, positives=positives, risks=risks, vetoed=vetoed)

    def score_setup(
        self,
        setup: Setup,
        market_state: Optional[MarketState],
        credibility: Optional[Credibility] = None,
        symbol: str = "",
    ) -> ScoreBreakdown:
        breakdown = self.calculate_score(setup, market_state, credibility, symbol)
        setup.edge_score = breakdown.score
        setup.breakdown = breakdown
        return breakdown
