from __future__ import annotations

import pytest

from edge_pipeline.scoring import factors as f
from edge_pipeline.types import Credibility, Direction, EntryZone, Setup


def _ctx(state, direction=Direction.BULLISH, timeframe="1h", regime="TRENDING", **kw) -> f.ScoringContext:
    setup = Setup(
        symbol="EURUSD",
        timeframe=timeframe,
        direction=direction,
        strategy=kw.pop("strategy", "BOS"),
        entry_zone=EntryZone(1.1000),
        stop=1.0950 if direction is Direction.BULLISH else 1.1050,
        targets=[1.1175 if direction is Direction.BULLISH else 1.0825],
        rr=kw.pop("rr", 0.0),
        directional_confidence=kw.pop("directional_confidence", None),
    )
    trend_w, osc_w = f.regime_weights(regime)
    return f.ScoringContext(
        setup=setup,
        state=state,
        credibility=kw.pop("credibility", None),
        performance_multiplier=kw.pop("performance_multiplier", 1.0),
        symbol="EURUSD",
        direction=direction.value,
        profile=f.classify_profile(timeframe),
        regime=regime,
        trend_weight=trend_w,
        oscillator_weight=osc_w,
    )


def _gain(c, points):
    assert c is not None
    assert not c.is_risk
    assert c.points == pytest.approx(points)
    return c


def _risk(c, points):
    assert c is not None
    assert c.is_risk
    assert c.points == pytest.approx(points)
    return c


BEAR = Direction.BEARISH


def test_credibility_and_performance_bands():
    _gain(f.strategy_credibility(_ctx({}, credibility=Credibility(0.7, "HIGH", False))), 25)
    low = _risk(f.strategy_credibility(_ctx({}, credibility=Credibility(0.4, "LOW", False))), 0)
    assert low.label == "Low Strategy Reliability (40%)"
    assert f.strategy_credibility(_ctx({})) is None
    _gain(f.adaptive_performance(_ctx({}, performance_multiplier=1.2)), 15)
    _risk(f.adaptive_performance(_ctx({}, performance_multiplier=0.8)), -25)


def test_htf_neutral_bias_is_small_gain():
    c = _gain(f.htf_alignment(_ctx({"mtf": {"global_bias": "NEUTRAL"}})), 5)
    assert c.label == "Neutral HTF bias (no conflict)"
    assert f.htf_alignment(_ctx({})) is None


def test_thin_volume_only_hurts_trending_regime():
    state = {"volume_analysis": {"is_institutional": False}}
    _risk(f.institutional_volume(_ctx(state)), -15)
    assert f.institutional_volume(_ctx(state, regime="RANGING")) is None
    _gain(f.institutional_volume(_ctx({"volume_analysis": {"is_institutional": True}})), 10)


def test_smt_branches():
    assert f.smt_divergence(_ctx({"smt_divergence": {"type": "BULLISH_SMT"}})) is None

    named = {"divergences": [{"kind": "smt"}], "smt_divergence": {"type": "BULLISH", "metadata": {"sibling": "GBPUSD"}}}
    c = _gain(f.smt_divergence(_ctx(named)), 35)
    assert c.label == "SMT Divergence Confirmation (BULLISH with GBPUSD)"
    c = _risk(f.smt_divergence(_ctx(named, BEAR)), -20)
    assert c.label == "SMT Divergence Conflict (BULLISH)"

    premium = {"divergences": [{"kind": "smt"}], "smt_confluence": 85}
    assert _gain(f.smt_divergence(_ctx(premium)), 25).label.endswith("PREMIUM")
    detected = {"divergences": [{"kind": "smt"}]}
    assert _gain(f.smt_divergence(_ctx(detected)), 15).label.endswith("DETECTED")


def test_killzone_off_power_hours():
    state = {"session": {"killzone": "LONDON", "hour": 11}}
    c = _gain(f.killzone_session(_ctx(state)), 10)
    assert c.label == "Killzone alignment (LONDON)"
    c = _gain(f.killzone_session(_ctx(state, timeframe="5m")), 13)
    assert c.label.endswith("[CRITICAL]")


def test_magnet_and_obligation_target():
    state = {"current_price": 1.1000, "obligations": {"primary_obligation": {"urgency": 90, "price": 1.1200, "type": "PDH"}}}
    assert _gain(f.magnet_conflict(_ctx(state)), 15).label == "Magnet Acceleration (PDH)"
    assert _risk(f.magnet_conflict(_ctx(state, BEAR)), -40).label == "CRITICAL: Trading against Major Magnet (PDH)"
    _gain(f.obligation_target(_ctx(state, BEAR)), 15)

    mild = {"current_price": 1.1000, "obligations": {"primary_obligation": {"urgency": 75, "price": 1.1200}}}
    assert f.magnet_conflict(_ctx(mild)) is None
    _gain(f.obligation_target(_ctx(mild)), 15)


def test_iceberg_walls():
    buy = {"order_flow": {"icebergs": [{"price": 1.1010, "type": "BUY_ICEBERG"}]}}
    assert _gain(f.iceberg_walls(_ctx(buy)), 25).label == "WHALE DETECTED: Iceberg Buy Wall at 1.101"
    assert _risk(f.iceberg_walls(_ctx(buy, BEAR)), -30).label == "CRITICAL: Trading into Opposing Iceberg at 1.101"
    sell = {"order_flow": {"icebergs": [{"price": 1.0990, "type": "SELL_ICEBERG"}]}}
    _gain(f.iceberg_walls(_ctx(sell, BEAR)), 25)
    far = {"order_flow": {"icebergs": [{"price": 1.1200, "type": "SELL_ICEBERG"}]}}
    assert f.iceberg_walls(_ctx(far)) is None


def test_absorption_and_cvd():
    buying = {"order_flow": {"absorption": {"type": "BUYING_ABSORPTION"}}}
    _gain(f.absorption(_ctx(buying)), 20)
    assert f.absorption(_ctx(buying, BEAR)) is None

    _gain(f.cvd_alignment(_ctx({"order_flow": {"cvd_bias": "BULLISH"}})), 10)
    c = _risk(f.cvd_alignment(_ctx({"order_flow": {"cvd_bias": "BEARISH"}})), -5)
    assert c.label == "Retail Order Flow (CVD) Conflict"
    absorbed = {"order_flow": {"cvd_bias": "BEARISH", "absorption": {"type": "BUYING_ABSORPTION"}}}
    assert f.cvd_alignment(_ctx(absorbed)) is None


def test_volume_profile_and_dom_levels():
    _gain(f.poc_proximity(_ctx({"current_price": 1.1000, "volume_profile": {"poc": 1.1010}})), 5)
    assert f.poc_proximity(_ctx({"current_price": 1.1000, "volume_profile": {"poc": 1.1100}})) is None
    _gain(f.npoc_magnet(_ctx({"volume_profile": {"poc": 1.2}, "n_pocs": [1.05]})), 5)
    assert f.npoc_magnet(_ctx({"n_pocs": [1.05]})) is None
    _gain(f.dom_wall(_ctx({"order_book": {"walls": [{"price": 1.1005}]}})), 5)
    assert f.dom_wall(_ctx({"order_book": {"walls": [{"price": 1.1050}]}})) is None


def test_macro_bias_branches():
    boost = {"macro_bias": {"bias": "BULLISH", "action": "BOOST", "reason": "Risk-on flows"}}
    assert _gain(f.macro_bias(_ctx(boost)), 25).label == "Macro Turbo Boost: Risk-on flows"
    plain = {"macro_bias": {"bias": "BULLISH"}}
    assert _gain(f.macro_bias(_ctx(plain)), 15).label == "Macro Alignment (BULLISH)"
    assert _risk(f.macro_bias(_ctx(plain, BEAR)), -15).label == "Macro Bias Headwind (BULLISH)"
    veto = {"macro_bias": {"bias": "BEARISH", "action": "VETO", "reason": "Hawkish surprise"}}
    _risk(f.macro_bias(_ctx(veto)), -50)
    assert f.macro_bias(_ctx({"macro_bias": {"bias": "NEUTRAL"}})) is None


def test_correlation_cluster_levels():
    def state(level):
        return {"clusters": {"clusters": [{"assets": ["EURUSD", "GBPUSD"], "risk_level": level, "dominant_factor": "USD"}]}}

    assert _risk(f.correlation_cluster(_ctx(state("EXTREME"))), -25).label == "EXTREME Correlation Risk (Cluster: USD)"
    _risk(f.correlation_cluster(_ctx(state("HIGH"))), -10)
    assert f.correlation_cluster(_ctx(state("LOW"))) is None


def test_depth_bonus_is_scaled():
    _gain(f.order_book_depth(_ctx({"order_book_depth": {"pressure": "BULLISH", "imbalance": 0.25}})), 7.5)
    _gain(f.order_book_depth(_ctx({"order_book": {"pressure": "BULLISH", "imbalance": -0.8}})), 15)
    assert f.order_book_depth(_ctx({"order_book_depth": {"pressure": "BEARISH", "imbalance": 0.5}})) is None


def test_high_news_shock_alone():
    c = _risk(f.news_shock(_ctx({"active_shock": {"severity": "HIGH", "event": "NFP"}})), -35)
    assert c.label == "High-impact news hazard (NFP)"
    assert f.news_shock(_ctx({"active_shock": {"severity": "MEDIUM", "event": "PMI"}})) is None


def test_trap_warning_without_nearby_trap():
    ctx = _ctx({"trap_zones": {"warning": "Equal highs resting above"}})
    assert _risk(f.trap_warning(ctx), -10).label == "Equal highs resting above"
    assert f.trap_zone_veto(ctx) is None


def test_market_cycle_phases():
    aligned = {"market_cycle": {"phase": "DISTRIBUTION", "direction": "BULLISH"}}
    assert _gain(f.market_cycle(_ctx(aligned)), 20).label == "Institutional DISTRIBUTION alignment"
    expansion = {"amd_cycle": {"phase": "EXPANSION", "bias": "BEARISH"}}
    _risk(f.market_cycle(_ctx(expansion)), -30)
    c = _risk(f.market_cycle(_ctx({"market_cycle": {"phase": "ACCUMULATION"}})), -10)
    assert c.label == "Early entry hazard (Accumulation phase)"
    judas = {"market_cycle": {"phase": "MANIPULATION", "direction": "BULLISH"}}
    _risk(f.market_cycle(_ctx(judas)), -40)
    _gain(f.market_cycle(_ctx(judas, BEAR)), 25)
    assert f.market_cycle(_ctx({"market_cycle": {"phase": "UNKNOWN"}})) is None


def test_liquidity_sweep_side():
    sweep = {"liquidity_sweep": {"is_sweep_detected": True, "side": "BUY_SIDE", "type": "SSL_RAID"}}
    assert _gain(f.liquidity_sweep(_ctx(sweep)), 30).label == "Institutional Liquidity Sweep (SSL_RAID)"
    assert f.liquidity_sweep(_ctx(sweep, BEAR)) is None
    assert f.liquidity_sweep(_ctx({"liquidity_sweep": {"is_sweep_detected": False}})) is None


def test_alpha_engine_status_and_leaks():
    state = {"alpha_metrics": {"BOS": {"status": "INSTITUTIONAL"}, "SMT": {"status": "HIGH_ALPHA"}}, "divergences": [{}]}
    assert f.contributing_engines(_ctx(state)) == ["BOS", "SMT"]
    assert _gain(f.alpha_engine_status(_ctx(state)), 23).label == "Institutional Alpha Alignment"

    leaking = dict(state, alpha_leaks=[{"engine": "BOS", "severity": "HIGH"}, {"engine": "SMT", "severity": "LOW"}])
    assert _risk(f.alpha_engine_status(_ctx(leaking)), -7).label == "Institutional Alpha Headwind"

    _risk(f.alpha_engine_status(_ctx({"alpha_stats": {"BOS": {"status": "DEGRADING"}}})), -12)
    ignored = {"alpha_metrics": {"FVG": {"status": "INSTITUTIONAL"}}}
    assert f.alpha_engine_status(_ctx(ignored)) is None


def test_crowd_sentiment():
    _gain(f.crowd_sentiment(_ctx({"sentiment": {"label": "BULLISH", "confidence": 0.4}})), 5)
    contrarian = {"macro_sentiment": {"label": "BEARISH", "confidence": 0.8}}
    assert _risk(f.crowd_sentiment(_ctx(contrarian)), -10).label == "Crowd Sentiment Conflict (BEARISH)"
    assert f.crowd_sentiment(_ctx({"sentiment": {"label": "BEARISH", "confidence": 0.5}})) is None


def test_fractal_pattern():
    c = _gain(f.fractal_pattern(_ctx({"patterns": {"prediction": "BULLISH", "confidence": 0.75}})), 15)
    assert c.label == "Fractal Confirmation (75%)"
    _risk(f.fractal_pattern(_ctx({"patterns": {"prediction": "BEARISH", "confidence": 0.75}})), -15)
    assert f.fractal_pattern(_ctx({"patterns": {"prediction": "BEARISH", "confidence": 0.5}})) is None


@pytest.mark.parametrize("confidence,points,is_risk", [(0.8, 15, False), (0.4, -20, True)])
def test_directional_confidence(confidence, points, is_risk):
    c = f.directional_confidence(_ctx({}, directional_confidence=confidence))
    assert c is not None
    assert c.points == points
    assert c.is_risk is is_risk


def test_directional_confidence_middle_band_is_silent():
    assert f.directional_confidence(_ctx({}, directional_confidence=0.6)) is None
    assert f.directional_confidence(_ctx({})) is None


def test_momentum_factor_labels():
    state = {
        "stochastic": {"signals": [{"type": "BULLISH_CROSS"}]},
        "rsi": [35.0],
        "indicators": {"macd": {"histogram": [-0.5, -0.2]}},
    }
    c = _gain(f.momentum_cluster(_ctx(state, regime="RANGING")), 38)
    assert c.label == "Momentum Cluster Alignment (PREMIUM)"
    c = _risk(f.momentum_cluster(_ctx({"rsi": [80.0]}, regime="VOLATILE")), -15)
    assert c.label == "Momentum Divergence/Overextension (15pt penalty)"
