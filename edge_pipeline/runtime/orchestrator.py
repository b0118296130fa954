from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional, Sequence

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.confluence.validator import ConfluenceValidator
from edge_pipeline.credibility.engine import CredibilityEngine
from edge_pipeline.lifecycle.manager import SignalLifecycleManager
from edge_pipeline.news.shock import ShockSource
from edge_pipeline.performance.tracker import PerformanceTracker
from edge_pipeline.predictions.tracker import PredictionTracker, prediction_from_setup
from edge_pipeline.risk.simulator import RiskProfile, RiskSimulator
from edge_pipeline.scoring.edge import EdgeScorer, score_label
from edge_pipeline.storage.store import KeyValueStore, MemoryStore
from edge_pipeline.types import Candle, Credibility, Prediction, ScoreBreakdown, Setup, Signal, TimeframeResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Cooldown:
    expires_at: datetime
    reason: str


@dataclass
class PipelineContext:
    """Every collaborator a scan needs, built once per process."""

    store: KeyValueStore
    performance: PerformanceTracker
    credibility: CredibilityEngine
    predictions: PredictionTracker
    risk: RiskSimulator
    scorer: EdgeScorer
    validator: ConfluenceValidator
    lifecycle: SignalLifecycleManager
    cfg: PipelineConfig = DEFAULT_CONFIG
    clock: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))
    cooldowns: dict[str, Cooldown] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        store: Optional[KeyValueStore] = None,
        *,
        cfg: PipelineConfig = DEFAULT_CONFIG,
        clock: Callable[[], datetime] | None = None,
        shock_source: Optional[ShockSource] = None,
        seed: Optional[int] = None,
    ) -> "PipelineContext":
        store = store if store is not None else MemoryStore()
        clock = clock or (lambda: datetime.now(timezone.utc))
        performance = PerformanceTracker(store, cfg=cfg, clock=clock)
        predictions = PredictionTracker(store, cfg=cfg, clock=clock)
        return cls(
            store=store,
            performance=performance,
            credibility=CredibilityEngine(predictions, cfg=cfg),
            predictions=predictions,
            risk=RiskSimulator(seed=seed, cfg=cfg),
            scorer=EdgeScorer(performance, cfg=cfg),
            validator=ConfluenceValidator(shock_source, cfg=cfg, clock=clock),
            lifecycle=SignalLifecycleManager(cfg=cfg, clock=clock),
            cfg=cfg,
            clock=clock,
        )

    def active_cooldown(self, symbol: str) -> Optional[Cooldown]:
        cd = self.cooldowns.get(symbol)
        if cd is not None and self.clock() < cd.expires_at:
            return cd
        return None


@dataclass(frozen=True)
class ScoredSetup:
    timeframe: str
    setup: Setup
    credibility: Credibility
    breakdown: ScoreBreakdown
    risk: Optional[RiskProfile] = None

    @property
    def label(self) -> str:
        return score_label(self.breakdown.score)


@dataclass(frozen=True)
class ScanReport:
    symbol: str
    time_utc: str
    scored: list[ScoredSetup]
    signal: Optional[Signal] = None
    tracked_predictions: list[str] = field(default_factory=list)
    resolved_predictions: list[Prediction] = field(default_factory=list)
    cooldown_reason: Optional[str] = None


def _trackable(item: ScoredSetup) -> bool:
    return not item.credibility.is_suppressed and item.label != "NO EDGE"


def run_scan(
    context: PipelineContext,
    timeframe_results: Sequence[TimeframeResult],
    atr_by_timeframe: Optional[Mapping[str, float]] = None,
    last_candle: Optional[Candle] = None,
) -> ScanReport:
    now = context.clock()
    symbol = timeframe_results[0].analysis.symbol if timeframe_results else ""
    cooldown = context.active_cooldown(symbol) if symbol else None

    resolved: list[Prediction] = []
    if symbol and last_candle is not None:
        resolved = context.predictions.evaluate_pending(symbol, last_candle)

    scored: list[ScoredSetup] = []
    tracked: list[str] = []
    for result in timeframe_results:
        state = result.analysis.market_state
        regime = str(state.get("regime") or "TRENDING").upper()
        atr = (atr_by_timeframe or {}).get(result.timeframe)
        per_tf: list[ScoredSetup] = []
        for setup in result.analysis.setups:
            cred = context.credibility.get_posterior_credibility(setup.symbol, setup.strategy, regime)
            breakdown = context.scorer.score_setup(setup, state, cred, setup.symbol)
            risk = context.risk.run_monte_carlo(setup, atr) if atr else None
            per_tf.append(ScoredSetup(result.timeframe, setup, cred, breakdown, risk))
        scored.extend(per_tf)

        candidates = [s for s in per_tf if _trackable(s)]
        if not candidates:
            continue
        if cooldown is not None:
            logger.info("prediction_suppressed symbol=%s tf=%s reason=%s", symbol, result.timeframe, cooldown.reason)
            continue
        best = max(candidates, key=lambda s: s.breakdown.score)
        prediction = prediction_from_setup(
            best.setup,
            best.breakdown,
            now=now,
            snapshot_price=state.get("current_price"),
        )
        if context.predictions.track(prediction, symbol or best.setup.symbol):
            tracked.append(prediction.id)

    if symbol and cooldown is None and context.predictions.recent_double_fail(symbol):
        cooldown = Cooldown(expires_at=now + context.cfg.cooldown, reason="Recent double invalidation")
        context.cooldowns[symbol] = cooldown
        logger.warning("cooldown_started symbol=%s until=%s", symbol, cooldown.expires_at.isoformat())

    signal = context.validator.validate(timeframe_results)
    return ScanReport(
        symbol=symbol,
        time_utc=now.isoformat(),
        scored=scored,
        signal=signal,
        tracked_predictions=tracked,
        resolved_predictions=resolved,
        cooldown_reason=None if cooldown is None else cooldown.reason,
    )


def record_signal_outcome(
    context: PipelineContext,
    signal: Signal,
    is_win: bool,
    r_multiple: float = 0.0,
    regime: str = "TRENDING",
) -> None:
    context.performance.record_outcome(signal.strategy, is_win, r_multiple)
    context.credibility.update_performance(signal.symbol, signal.strategy, regime, is_win)
