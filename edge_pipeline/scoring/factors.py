from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Literal, Mapping, Optional

from edge_pipeline.types import Credibility, MarketState, Setup
from edge_pipeline.utils import NEUTRAL, dig, normalize_direction, round_half_up


TimeframeProfile = Literal["SCALPER", "DAY_TRADER", "SWING"]

POWER_HOURS_UTC = (8, 9, 13, 14)


@dataclass(frozen=True)
class ProfileWeights:
    profile: TimeframeProfile
    killzone_weight: float
    htf_weight: float
    min_rr: float


@dataclass(frozen=True)
class ScoringContext:
    setup: Setup
    state: MarketState
    credibility: Optional[Credibility]
    performance_multiplier: float
    symbol: str
    direction: str
    profile: ProfileWeights
    regime: str
    trend_weight: float
    oscillator_weight: float

    @property
    def entry_price(self) -> Optional[float]:
        entry = self.setup.entry
        return entry if entry else self.state.get("current_price")


@dataclass(frozen=True)
class Contribution:
    points: float
    label: str
    is_risk: bool = False
    veto: bool = False


Factor = Callable[[ScoringContext], Optional[Contribution]]


def classify_profile(timeframe: str) -> ProfileWeights:
    tf = (timeframe or "1h").lower()
    if tf in ("1m", "5m", "15m"):
        return ProfileWeights("SCALPER", killzone_weight=1.3, htf_weight=0.7, min_rr=1.5)
    if tf in ("4h", "1d", "w", "1w"):
        return ProfileWeights("SWING", killzone_weight=0.6, htf_weight=1.4, min_rr=3.0)
    return ProfileWeights("DAY_TRADER", killzone_weight=1.0, htf_weight=1.0, min_rr=2.0)


def regime_weights(regime: str) -> tuple[float, float]:
    """(trend_weight, oscillator_weight)"""
    if regime == "TRENDING":
        return 1.5, 0.5
    if regime == "RANGING":
        return 0.5, 1.5
    return 1.0, 1.0


def _gain(points: float, label: str, *, veto: bool = False) -> Contribution:
    return Contribution(points=points, label=label, is_risk=False, veto=veto)


def _risk(points: float, label: str, *, veto: bool = False) -> Contribution:
    return Contribution(points=points, label=label, is_risk=True, veto=veto)


def _near(a: float, b: float, tolerance: float) -> bool:
    return b != 0 and abs(a - b) / abs(b) < tolerance


def _local_trend(state: MarketState) -> Any:
    return dig(state, "trend", "direction") or state.get("current_trend")


def _series(value: Any) -> list:
    """Indicator values as a list; scalars and mappings carry no history."""
    if value is None or isinstance(value, (str, bytes, Mapping)):
        return []
    if getattr(value, "ndim", 1) == 0 or not hasattr(value, "__len__"):
        return []
    return list(value)


# ---------------------------------------------------------------------------
# Factors, in scoring order
# ---------------------------------------------------------------------------


def golden_confluence(ctx: ScoringContext) -> Optional[Contribution]:
    s = ctx.state
    if (
        normalize_direction(dig(s, "mtf", "global_bias")) == ctx.direction
        and normalize_direction(_local_trend(s)) == ctx.direction
        and normalize_direction(dig(s, "sentiment", "label")) == ctx.direction
        and dig(s, "volume_analysis", "is_institutional")
    ):
        return _gain(50, "GOLDEN CONFLUENCE (HTF + Trend + Sentiment + Volume)")
    return None


def strategy_credibility(ctx: ScoringContext) -> Optional[Contribution]:
    prob = ctx.credibility.probability if ctx.credibility is not None else None
    reliability = (prob or 0.5) * 100
    if reliability >= 80:
        return _gain(40, f"Premium Strategy Reliability ({reliability:.0f}%)")
    if reliability >= 65:
        return _gain(25, f"Strong Strategy Reliability ({reliability:.0f}%)")
    if reliability < 50:
        return _risk(0, f"Low Strategy Reliability ({reliability:.0f}%)")
    return None


def adaptive_performance(ctx: ScoringContext) -> Optional[Contribution]:
    m = ctx.performance_multiplier
    if m > 1.1:
        return _gain(15, f"HOT HAND: Strategy is winning ({m:.1f}x boost)")
    if m < 0.9:
        return _risk(-25, f"COLD STREAK: Strategy is struggling ({m:.1f}x penalty)")
    return None


def risk_reward(ctx: ScoringContext) -> Optional[Contribution]:
    rr = ctx.setup.rr or 0.0
    p = ctx.profile
    if rr >= p.min_rr + 1:
        return _gain(20, f"High yield R:R ({rr:.1f}) for {p.profile}")
    if rr >= p.min_rr:
        return _gain(15, f"Standard R:R ({rr:.1f}) for {p.profile}")
    if rr >= p.min_rr * 0.7:
        return _risk(8, f"Below-optimal R:R ({rr:.1f}) for {p.profile} - expected >={p.min_rr}")
    if rr > 0:
        return _risk(3, f"Low R:R yield ({rr:.1f}) - high risk for {p.profile}")
    return None


def htf_alignment(ctx: ScoringContext) -> Optional[Contribution]:
    raw = dig(ctx.state, "mtf", "global_bias")
    if raw is None:
        return None
    bias = normalize_direction(raw)
    swing = ctx.profile.profile == "SWING"
    if bias == NEUTRAL:
        return _gain(5, "Neutral HTF bias (no conflict)")
    if bias == ctx.direction:
        bonus = round_half_up(25 * ctx.profile.htf_weight * ctx.trend_weight)
        return _gain(bonus, f"HTF Context alignment ({'CRITICAL' if swing else 'CONFIRMED'})")
    penalty = round_half_up(15 * ctx.profile.htf_weight * ctx.trend_weight)
    return _risk(-penalty, f"HTF Bias conflict{' - HIGH RISK FOR SWING' if swing else ''}")


def institutional_volume(ctx: ScoringContext) -> Optional[Contribution]:
    va = ctx.state.get("volume_analysis")
    if va is None:
        return None
    if dig(va, "is_institutional"):
        return _gain(10, "Institutional volume participation")
    if ctx.regime == "TRENDING":
        return _risk(-15, "Low Volume in Tracking Phase (Validation Risk)")
    return None


def smt_divergence(ctx: ScoringContext) -> Optional[Contribution]:
    if not ctx.state.get("divergences"):
        return None
    smt = ctx.state.get("smt_divergence")
    if smt:
        kind = dig(smt, "type")
        if normalize_direction(kind) == ctx.direction:
            sibling = dig(smt, "metadata", "sibling") or "Correlated Asset"
            return _gain(35, f"SMT Divergence Confirmation ({kind} with {sibling})")
        return _risk(-20, f"SMT Divergence Conflict ({kind})")
    strength = ctx.state.get("smt_confluence") or 50
    if strength >= 80:
        return _gain(25, "Inter-market divergence (SMT) PREMIUM")
    return _gain(15, "Inter-market divergence (SMT) DETECTED")


def _session_hour(state: MarketState) -> Optional[int]:
    hour = dig(state, "session", "hour")
    if hour is not None:
        return int(hour)
    ts = state.get("timestamp")
    if isinstance(ts, datetime):
        return ts.hour
    return None


def killzone_session(ctx: ScoringContext) -> Optional[Contribution]:
    killzone = dig(ctx.state, "session", "killzone")
    if not killzone:
        return None
    power = _session_hour(ctx.state) in POWER_HOURS_UTC
    bonus = round_half_up((20 if power else 10) * ctx.profile.killzone_weight)
    label = f"Killzone alignment ({killzone}{' - POWER HOUR' if power else ''})"
    if ctx.profile.profile == "SCALPER":
        label += " [CRITICAL]"
    return _gain(bonus, label)


def obligation_target(ctx: ScoringContext) -> Optional[Contribution]:
    urgency = dig(ctx.state, "obligations", "primary_obligation", "urgency")
    if urgency is not None and urgency > 70:
        return _gain(15, "Primary obligation target (Magnet theory)")
    return None


def magnet_conflict(ctx: ScoringContext) -> Optional[Contribution]:
    magnet = dig(ctx.state, "obligations", "primary_obligation")
    price = ctx.state.get("current_price")
    if not magnet or price is None or (dig(magnet, "urgency") or 0) <= 80:
        return None
    magnet_dir = "BULLISH" if dig(magnet, "price", default=0) > price else "BEARISH"
    kind = dig(magnet, "type")
    if magnet_dir != ctx.direction:
        return _risk(-40, f"CRITICAL: Trading against Major Magnet ({kind})")
    return _gain(15, f"Magnet Acceleration ({kind})")


def iceberg_walls(ctx: ScoringContext) -> Optional[Contribution]:
    icebergs = dig(ctx.state, "order_flow", "icebergs") or []
    entry = ctx.entry_price
    if not icebergs or not entry:
        return None
    ice = next((i for i in icebergs if _near(float(dig(i, "price", default=0)), entry, 0.005)), None)
    if ice is None:
        return None
    support = dig(ice, "type") == "BUY_ICEBERG"
    resist = dig(ice, "type") == "SELL_ICEBERG"
    price = dig(ice, "price")
    if ctx.direction == "BULLISH" and support:
        return _gain(25, f"WHALE DETECTED: Iceberg Buy Wall at {price}")
    if ctx.direction == "BEARISH" and resist:
        return _gain(25, f"WHALE DETECTED: Iceberg Sell Wall at {price}")
    if support or resist:
        return _risk(-30, f"CRITICAL: Trading into Opposing Iceberg at {price}")
    return None


def absorption(ctx: ScoringContext) -> Optional[Contribution]:
    kind = dig(ctx.state, "order_flow", "absorption", "type")
    if ctx.direction == "BULLISH" and kind == "BUYING_ABSORPTION":
        return _gain(20, "Institutional Absorption (Delta Divergence) Supporting Long")
    if ctx.direction == "BEARISH" and kind == "SELLING_ABSORPTION":
        return _gain(20, "Institutional Absorption (Delta Divergence) Supporting Short")
    return None


def cvd_alignment(ctx: ScoringContext) -> Optional[Contribution]:
    cvd = dig(ctx.state, "order_flow", "cvd_bias")
    if not cvd:
        return None
    if normalize_direction(cvd) == ctx.direction:
        return _gain(10, "Cumulative Volume Delta (CVD) Aligned")
    if not dig(ctx.state, "order_flow", "absorption"):
        return _risk(-5, "Retail Order Flow (CVD) Conflict")
    return None


def poc_proximity(ctx: ScoringContext) -> Optional[Contribution]:
    poc = dig(ctx.state, "volume_profile", "poc")
    price = ctx.state.get("current_price")
    if not poc or price is None:
        return None
    if _near(price, poc, 0.002):
        return _gain(5, "Price testing High-Volume POC")
    return None


def npoc_magnet(ctx: ScoringContext) -> Optional[Contribution]:
    if ctx.state.get("volume_profile") and ctx.state.get("n_pocs"):
        return _gain(5, "Institutional nPOC magnet detected")
    return None


def dom_wall(ctx: ScoringContext) -> Optional[Contribution]:
    walls = dig(ctx.state, "order_book", "walls") or []
    entry = ctx.entry_price
    if entry and any(_near(float(dig(w, "price", default=0)), entry, 0.001) for w in walls):
        return _gain(5, "Entry supported by DOM Liquidity Wall")
    return None


def macro_bias(ctx: ScoringContext) -> Optional[Contribution]:
    macro = ctx.state.get("macro_bias")
    if not macro or dig(macro, "bias") in (None, NEUTRAL):
        return None
    bias = dig(macro, "bias")
    aligned = normalize_direction(bias) == ctx.direction
    action = dig(macro, "action")
    reason = dig(macro, "reason") or bias
    if action == "VETO" and not aligned:
        return _risk(-50, f"CRITICAL MACRO VETO: {reason}")
    if action == "BOOST" and aligned:
        return _gain(25, f"Macro Turbo Boost: {reason}")
    if aligned:
        return _gain(15, f"Macro Alignment ({bias})")
    return _risk(-15, f"Macro Bias Headwind ({bias})")


def correlation_cluster(ctx: ScoringContext) -> Optional[Contribution]:
    clusters = dig(ctx.state, "clusters", "clusters") or []
    symbol = ctx.state.get("symbol") or ctx.symbol or ""
    cluster = next((c for c in clusters if symbol in (dig(c, "assets") or [])), None)
    if cluster is None:
        return None
    level = dig(cluster, "risk_level")
    factor = dig(cluster, "dominant_factor")
    if level == "EXTREME":
        return _risk(-25, f"EXTREME Correlation Risk (Cluster: {factor})")
    if level == "HIGH":
        return _risk(-10, f"High Correlation Risk (Cluster: {factor})")
    return None


def depth_alignment_bonus(direction: str, depth: Any) -> int:
    if not depth or normalize_direction(dig(depth, "pressure")) != direction:
        return 0
    strength = abs(float(dig(depth, "imbalance", default=0.0)))
    return min(10, math.floor(strength * 20))


def order_book_depth(ctx: ScoringContext) -> Optional[Contribution]:
    depth = ctx.state.get("order_book_depth") or ctx.state.get("order_book")
    bonus = depth_alignment_bonus(ctx.direction, depth)
    if bonus > 0:
        return _gain(bonus * 1.5, "Institutional depth pressure alignment")
    return None


def news_shock(ctx: ScoringContext) -> Optional[Contribution]:
    shock = ctx.state.get("active_shock")
    if dig(shock, "severity") == "HIGH":
        return _risk(-35, f"High-impact news hazard ({dig(shock, 'event')})")
    return None


_TRAPS_BY_DIRECTION = {
    "BULLISH": ("BULL_TRAP", "LONG_TRAP"),
    "BEARISH": ("BEAR_TRAP", "SHORT_TRAP"),
}


def trap_zone_veto(ctx: ScoringContext) -> Optional[Contribution]:
    zones = ctx.state.get("trap_zones")
    entry = ctx.entry_price
    if not zones or not entry:
        return None
    traps = list(dig(zones, "bull_traps") or []) + list(dig(zones, "bear_traps") or [])
    nearby = next((t for t in traps if _near(float(dig(t, "location", default=0)), entry, 0.003)), None)
    if nearby is None:
        return None
    if dig(nearby, "implication") in _TRAPS_BY_DIRECTION.get(ctx.direction, ()):
        side = "Bull" if ctx.direction == "BULLISH" else "Bear"
        return _risk(-100, f"CRITICAL: Trading into confirmed {side} Trap at {dig(nearby, 'location')}", veto=True)
    return None


def trap_warning(ctx: ScoringContext) -> Optional[Contribution]:
    warning = dig(ctx.state, "trap_zones", "warning")
    if warning:
        return _risk(-10, str(warning))
    return None


def market_cycle(ctx: ScoringContext) -> Optional[Contribution]:
    cycle = ctx.state.get("market_cycle") or ctx.state.get("amd_cycle")
    phase = dig(cycle, "phase")
    if not cycle or phase in (None, "UNKNOWN"):
        return None
    cycle_dir = normalize_direction(dig(cycle, "direction") or dig(cycle, "bias"))
    if phase == "MANIPULATION":
        if cycle_dir == ctx.direction:
            return _risk(-40, "CRITICAL: High probability Judas Swing (Manipulation phase)")
        return _gain(25, "Fading manipulation move (Pro-Trend)")
    if phase in ("DISTRIBUTION", "EXPANSION"):
        if cycle_dir == ctx.direction:
            return _gain(20, f"Institutional {phase} alignment")
        return _risk(-30, f"Counter-institutional {phase} conflict")
    if phase == "ACCUMULATION":
        return _risk(-10, "Early entry hazard (Accumulation phase)")
    return None


def liquidity_sweep(ctx: ScoringContext) -> Optional[Contribution]:
    sweep = ctx.state.get("liquidity_sweep")
    if not dig(sweep, "is_sweep_detected"):
        return None
    sweep_dir = "BULLISH" if dig(sweep, "side") == "BUY_SIDE" else "BEARISH"
    if sweep_dir == ctx.direction:
        return _gain(30, f"Institutional Liquidity Sweep ({dig(sweep, 'type') or 'HUNT'})")
    return None


_ALPHA_STATUS_POINTS = {"INSTITUTIONAL": 15, "HIGH_ALPHA": 8, "DEGRADING": -12}


def contributing_engines(ctx: ScoringContext) -> list[str]:
    s = ctx.state
    engines = [(ctx.setup.strategy or "UNKNOWN").upper()]
    if s.get("order_book_depth") or s.get("order_book"):
        engines += ["ORDER_BOOK", "LIVE_DOM"]
    if s.get("divergences"):
        engines.append("SMT")
    if s.get("relevant_gap") or s.get("fvgs"):
        engines.append("FVG")
    if s.get("macro_sentiment"):
        engines.append("SENTIMENT")
    if dig(s, "obligations", "primary_obligation"):
        engines.append("MARKET_OBLIGATION")
    return engines


def alpha_engine_status(ctx: ScoringContext) -> Optional[Contribution]:
    alpha = ctx.state.get("alpha_metrics") or ctx.state.get("alpha_stats")
    if not alpha:
        return None
    engines = contributing_engines(ctx)
    bonus = 0
    for engine in engines:
        bonus += _ALPHA_STATUS_POINTS.get(dig(alpha, engine, "status"), 0)
    for leak in ctx.state.get("alpha_leaks") or []:
        if dig(leak, "engine") in engines:
            bonus -= 20 if dig(leak, "severity") == "HIGH" else 10
    if bonus > 0:
        return _gain(bonus, "Institutional Alpha Alignment")
    if bonus < 0:
        return _risk(bonus, "Institutional Alpha Headwind")
    return None


def calculate_momentum_cluster(direction: str, state: MarketState, weight: float = 1.0) -> int:
    """Stochastic, RSI and MACD agreement, scaled by the oscillator weight."""
    d = normalize_direction(direction)
    points = 0

    signals = dig(state, "stochastic", "signals") or []
    if signals:
        last = dig(signals[-1], "type")
        if d == "BULLISH" and last in ("BULLISH_CROSS", "OVERSOLD"):
            points += 10
        elif d == "BEARISH" and last in ("BEARISH_CROSS", "OVERBOUGHT"):
            points += 10

    rsi = state.get("rsi")
    if rsi is None:
        rsi = dig(state, "indicators", "rsi")
    rsi = _series(rsi)
    if rsi:
        last_rsi = float(rsi[-1])
        if d == "BULLISH" and last_rsi < 40:
            points += 5
        if d == "BEARISH" and last_rsi > 60:
            points += 5
        if d == "BULLISH" and last_rsi > 75:
            points -= 15
        if d == "BEARISH" and last_rsi < 25:
            points -= 15

    hist = _series(dig(state, "indicators", "macd", "histogram"))
    if len(hist) >= 2:
        cur, prev = float(hist[-1]), float(hist[-2])
        if d == "BULLISH" and cur > prev and cur < 0:
            points += 10
        if d == "BEARISH" and cur < prev and cur > 0:
            points += 10

    return int(round_half_up(points * weight))


def momentum_cluster(ctx: ScoringContext) -> Optional[Contribution]:
    pts = calculate_momentum_cluster(ctx.direction, ctx.state, ctx.oscillator_weight)
    if pts > 0:
        return _gain(pts, f"Momentum Cluster Alignment ({'PREMIUM' if pts > 15 else 'STRONG'})")
    if pts < 0:
        return _risk(pts, f"Momentum Divergence/Overextension ({abs(pts)}pt penalty)")
    return None


def crowd_sentiment(ctx: ScoringContext) -> Optional[Contribution]:
    sentiment = ctx.state.get("sentiment") or ctx.state.get("macro_sentiment")
    label = dig(sentiment, "label")
    if not sentiment or label == NEUTRAL:
        return None
    s_dir = normalize_direction(dig(sentiment, "bias") or label)
    if s_dir == NEUTRAL:
        return None
    if s_dir == ctx.direction:
        return _gain(5, f"Crowd Sentiment Alignment ({label})")
    if (dig(sentiment, "confidence") or 0) > 0.7:
        return _risk(-10, f"Crowd Sentiment Conflict ({label})")
    return None


def fractal_pattern(ctx: ScoringContext) -> Optional[Contribution]:
    prediction = dig(ctx.state, "patterns", "prediction")
    if not prediction:
        return None
    confidence = float(dig(ctx.state, "patterns", "confidence", default=0.0))
    if normalize_direction(prediction) == ctx.direction:
        return _gain(confidence * 20, f"Fractal Confirmation ({confidence * 100:.0f}%)")
    if confidence > 0.6:
        return _risk(-15, "Fractal Pattern Conflict")
    return None


def directional_confidence(ctx: ScoringContext) -> Optional[Contribution]:
    c = ctx.setup.directional_confidence
    if c is None:
        return None
    if c >= 0.7:
        return _gain(15, f"High Directional Confidence ({c * 100:.0f}%)")
    if c < 0.5:
        return _risk(-20, f"Low Directional Conviction ({c * 100:.0f}%)")
    return None


FACTORS: tuple[Factor, ...] = (
    golden_confluence,
    strategy_credibility,
    adaptive_performance,
    risk_reward,
    htf_alignment,
    institutional_volume,
    smt_divergence,
    killzone_session,
    obligation_target,
    magnet_conflict,
    iceberg_walls,
    absorption,
    cvd_alignment,
    poc_proximity,
    npoc_magnet,
    dom_wall,
    macro_bias,
    correlation_cluster,
    order_book_depth,
    news_shock,
    trap_zone_veto,
    trap_warning,
    market_cycle,
    liquidity_sweep,
    alpha_engine_status,
    momentum_cluster,
    crowd_sentiment,
    fractal_pattern,
    directional_confidence,
)
