from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional, Sequence

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.news.shock import NoShockSource, ShockSource
from edge_pipeline.types import Direction, Setup, Signal, TimeframeResult
from edge_pipeline.utils import NEUTRAL, clamp, dig, normalize_direction

logger = logging.getLogger(__name__)

TIMEFRAME_WEIGHTS = {
    "1w": 5, "w": 5,
    "1d": 4, "d": 4,
    "4h": 3,
    "1h": 2, "h": 2,
}
HTF_MIN_WEIGHT = 3


def timeframe_weight(tf: str) -> int:
    return TIMEFRAME_WEIGHTS.get((tf or "").lower(), 1)


def _setup_for(result: TimeframeResult, direction: Direction) -> Optional[Setup]:
    return next((s for s in result.analysis.setups if s.direction == direction), None)


def _has_direction(result: TimeframeResult, direction: Direction) -> bool:
    return _setup_for(result, direction) is not None


@dataclass(frozen=True)
class Confluence:
    score: float
    breakdown: list[str]
    confirmed_timeframes: list[str]
    avg_edge: float


def _group_bias(results: Sequence[TimeframeResult]) -> str:
    longs = sum(1 for r in results if _has_direction(r, Direction.BULLISH))
    shorts = sum(1 for r in results if _has_direction(r, Direction.BEARISH))
    if longs > shorts:
        return Direction.BULLISH.value
    if shorts > longs:
        return Direction.BEARISH.value
    return NEUTRAL


def calculate_poi_confluence(results: Sequence[TimeframeResult], direction: Direction, radius: float = 0.005) -> int:
    """Points for entry prices that cluster within ``radius`` of each other."""
    entries = []
    for r in results:
        setup = _setup_for(r, direction)
        if setup is not None and setup.entry:
            entries.append(float(setup.entry))
    if len(entries) < 2:
        return 0

    cluster_max = 0
    for anchor in entries:
        matches = sum(1 for e in entries if abs(anchor - e) / anchor < radius)
        cluster_max = max(cluster_max, matches)

    ratio = cluster_max / len(results)
    if ratio >= 0.8:
        return 30
    if ratio >= 0.5:
        return 20
    if ratio >= 0.3:
        return 10
    return 0


class ConfluenceValidator:
    """Merges per-timeframe setups into one gated multi-timeframe signal."""

    def __init__(
        self,
        shock_source: Optional[ShockSource] = None,
        cfg: PipelineConfig = DEFAULT_CONFIG,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.shock_source = shock_source or NoShockSource()
        self.cfg = cfg
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _global_bias(self, results: Sequence[TimeframeResult]) -> str:
        htf = [r for r in results if timeframe_weight(r.timeframe) >= HTF_MIN_WEIGHT]
        htf.sort(key=lambda r: timeframe_weight(r.timeframe), reverse=True)
        for r in htf:
            bias = normalize_direction(r.analysis.bias)
            if bias != NEUTRAL:
                return bias
        return NEUTRAL

    def validate(self, timeframe_results: Sequence[TimeframeResult]) -> Optional[Signal]:
        if not timeframe_results:
            return None
        symbol = timeframe_results[0].analysis.symbol
        if not symbol:
            return None

        valid = [r for r in timeframe_results if r.analysis.setups]
        if len(valid) < self.cfg.min_timeframes:
            return None

        bias = self._global_bias(valid)
        longs = [r for r in valid if _has_direction(r, Direction.BULLISH)]
        shorts = [r for r in valid if _has_direction(r, Direction.BEARISH)]

        if len(longs) >= self.cfg.min_timeframes and bias in (Direction.BULLISH.value, NEUTRAL):
            direction, relevant = Direction.BULLISH, longs
        elif len(shorts) >= self.cfg.min_timeframes and bias in (Direction.BEARISH.value, NEUTRAL):
            direction, relevant = Direction.BEARISH, shorts
        else:
            logger.debug("confluence_rejected symbol=%s reason=direction_consensus bias=%s", symbol, bias)
            return None

        confluence = self.calculate_advanced_confluence(relevant, direction)
        score = confluence.score
        breakdown = list(confluence.breakdown)

        shock = None
        try:
            shock = self.shock_source.get_active_shock(symbol)
        except Exception:  # noqa: BLE001
            logger.warning("news_shock_lookup_failed symbol=%s", symbol, exc_info=True)
        if shock is not None:
            penalty = 40 if shock.severity == "HIGH" else 20
            score -= penalty
            breakdown.append(f"[NEWS HAZARD] -{penalty} pts: {shock.message}")

        if score < self.cfg.min_confluence_score:
            logger.info("confluence_rejected symbol=%s score=%.1f", symbol, score)
            return None

        confluence = Confluence(
            score=score,
            breakdown=breakdown,
            confirmed_timeframes=confluence.confirmed_timeframes,
            avg_edge=confluence.avg_edge,
        )
        signal = self.build_signal(relevant, direction, confluence)
        logger.info(
            "signal_published id=%s symbol=%s direction=%s score=%.1f tfs=%s",
            signal.id,
            signal.symbol,
            signal.direction.value,
            signal.confluence_score,
            ",".join(signal.confirmed_timeframes),
        )
        return signal

    def calculate_advanced_confluence(self, results: Sequence[TimeframeResult], direction: Direction) -> Confluence:
        score = 0.0
        breakdown: list[str] = []
        count = len(results)

        if count >= 8:
            score += 25
            breakdown.append(f"Absolute Consensus ({count} TFs)")
        elif count >= 6:
            score += 18
            breakdown.append(f"Strong Consensus ({count} TFs)")
        else:
            score += 10
            breakdown.append(f"Standard Consensus ({count} TFs)")

        weighted_sum = 0
        max_weight = 0
        for r in results:
            w = timeframe_weight(r.timeframe)
            if _has_direction(r, direction):
                weighted_sum += w
            max_weight += w
        weighted = weighted_sum / max_weight * 25 if max_weight else 0.0
        score += weighted
        breakdown.append(f"Weighted TF Score: +{weighted:.1f} pts (HTFs prioritized)")

        htf = [r for r in results if timeframe_weight(r.timeframe) >= HTF_MIN_WEIGHT]
        ltf = [r for r in results if timeframe_weight(r.timeframe) < HTF_MIN_WEIGHT]
        if htf and ltf:
            htf_bias = _group_bias(htf)
            ltf_bias = _group_bias(ltf)
            if NEUTRAL not in (htf_bias, ltf_bias) and htf_bias != ltf_bias:
                score -= 30
                breakdown.append(f"HTF/LTF DIVERGENCE: HTF {htf_bias} vs LTF {ltf_bias} (-30 pts)")
            elif htf_bias == direction.value and ltf_bias == direction.value:
                score += 10
                breakdown.append("Perfect HTF/LTF Alignment (+10 pts)")

        cluster = self.calculate_poi_confluence(results, direction)
        if cluster > 0:
            score += cluster
            breakdown.append(f"Institutional POI Cluster Alignment (+{cluster} pts)")
        else:
            score -= 10
            breakdown.append("Lack of price-level POI convergence (-10 pts)")

        edges = []
        for r in results:
            setup = _setup_for(r, direction)
            edges.append((setup.edge_score or 0.0) if setup is not None else 0.0)
        avg_edge = sum(edges) / count if count else 0.0
        if avg_edge >= 8.0:
            score += 15
            breakdown.append("Premium Edge Alpha")
        elif avg_edge >= 6.5:
            score += 8
            breakdown.append("Standard Edge Alpha")

        institutional = [
            r
            for r in results
            if dig(r.analysis.market_state, "volume_analysis", "is_institutional")
            or (r.analysis.market_state.get("smt_confluence") or 0) > 70
        ]
        if len(institutional) >= count * 0.7:
            score += 10
            breakdown.append("Deep Institutional Footprint")
        elif len(institutional) >= count * 0.4:
            score += 5
            breakdown.append("Moderate Institutional Footprint")

        return Confluence(
            score=clamp(score, 0.0, 100.0),
            breakdown=breakdown,
            confirmed_timeframes=[r.timeframe for r in results],
            avg_edge=avg_edge,
        )

    def calculate_poi_confluence(self, results: Sequence[TimeframeResult], direction: Direction) -> int:
        return calculate_poi_confluence(results, direction, self.cfg.cluster_radius)

    def build_signal(self, results: Sequence[TimeframeResult], direction: Direction, confluence: Confluence) -> Signal:
        pairs = [(r, _setup_for(r, direction)) for r in results]
        pairs = [(r, s) for r, s in pairs if s is not None]
        if not pairs:
            raise ValueError(f"No {direction.value} setup to build a signal from")
        best, setup = max(pairs, key=lambda p: p[1].edge_score or 0.0)
        now = self._clock()
        return Signal(
            id=uuid.uuid4().hex,
            symbol=best.analysis.symbol,
            direction=direction,
            entry=float(setup.entry or 0.0),
            targets=list(setup.targets),
            stop=float(setup.stop or 0.0),
            rr=float(setup.rr or 0.0),
            confluence_score=confluence.score,
            confluence_breakdown=list(confluence.breakdown),
            confirmed_timeframes=list(confluence.confirmed_timeframes),
            avg_edge=confluence.avg_edge,
            strategy=setup.strategy or "Institutional Alignment",
            published_at=now,
            expires_at=now + self.cfg.signal_lifetime,
        )
