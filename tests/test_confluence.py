from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from edge_pipeline.confluence.validator import Confluence, ConfluenceValidator, calculate_poi_confluence
from edge_pipeline.news.shock import Shock, StaticShockSource
from edge_pipeline.types import Direction, EntryZone, Setup, TimeframeAnalysis, TimeframeResult

NOW = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)
TIMEFRAMES = ("4h", "1h", "15m", "5m")


class BrokenShockSource:
    def get_active_shock(self, symbol):
        raise ConnectionError("calendar offline")


def _result(tf, direction=Direction.BULLISH, entry=1.1000, edge=8.5, bias=None, institutional=True) -> TimeframeResult:
    setup = Setup(
        symbol="EURUSD",
        timeframe=tf,
        direction=direction,
        strategy=f"BOS_{tf}",
        entry_zone=EntryZone(entry),
        stop=entry - 0.005 * direction.sign,
        targets=[entry + 0.01 * direction.sign],
        rr=2.0,
        edge_score=edge,
    )
    analysis = TimeframeAnalysis(
        symbol="EURUSD",
        setups=[setup],
        bias=bias,
        market_state={"volume_analysis": {"is_institutional": institutional}},
    )
    return TimeframeResult(tf, analysis)


def _validator(shocks=None) -> ConfluenceValidator:
    return ConfluenceValidator(shocks, clock=lambda: NOW)


def test_four_aligned_timeframes_publish_signal():
    results = [_result(tf, bias="BULLISH" if tf == "4h" else None) for tf in TIMEFRAMES]
    signal = _validator().validate(results)
    assert signal is not None
    assert signal.direction is Direction.BULLISH
    assert signal.confluence_score == pytest.approx(100.0)
    assert signal.confirmed_timeframes == list(TIMEFRAMES)
    assert signal.expires_at == NOW + timedelta(hours=12)
    assert signal.status == "ACTIVE"
    assert "Perfect HTF/LTF Alignment (+10 pts)" in signal.confluence_breakdown


def test_three_timeframes_are_not_enough():
    assert _validator().validate([_result(tf) for tf in TIMEFRAMES[:3]]) is None


def test_timeframes_without_setups_do_not_count():
    results = [_result(tf) for tf in TIMEFRAMES[:3]]
    results.append(TimeframeResult("1d", TimeframeAnalysis(symbol="EURUSD", setups=[])))
    assert _validator().validate(results) is None


def test_htf_bias_conflict_blocks_direction():
    results = [_result(tf, bias="BEARISH" if tf == "4h" else None) for tf in TIMEFRAMES]
    assert _validator().validate(results) is None


def test_short_consensus():
    results = [_result(tf, direction=Direction.BEARISH, bias="SHORT" if tf == "4h" else None) for tf in TIMEFRAMES]
    signal = _validator().validate(results)
    assert signal is not None
    assert signal.direction is Direction.BEARISH


def test_scattered_entries_fall_below_threshold():
    results = [_result(tf, entry=1.10 + i * 0.02) for i, tf in enumerate(TIMEFRAMES)]
    assert _validator().validate(results) is None


def test_high_news_shock_rejects_and_medium_penalises():
    results = [_result(tf) for tf in TIMEFRAMES]
    high = StaticShockSource({"EURUSD": Shock("HIGH", "FOMC minutes", "FOMC")})
    assert _validator(high).validate(results) is None

    medium = StaticShockSource({"eurusd": Shock("MEDIUM", "PMI release", "PMI")})
    signal = _validator(medium).validate(results)
    assert signal is not None
    assert signal.confluence_score == pytest.approx(80.0)
    assert "[NEWS HAZARD] -20 pts: PMI release" in signal.confluence_breakdown


def test_shock_lookup_failure_is_ignored():
    signal = _validator(BrokenShockSource()).validate([_result(tf) for tf in TIMEFRAMES])
    assert signal is not None


def test_signal_copies_best_edge_setup():
    results = [_result(tf, edge=e, entry=1.1000 + i * 0.0001) for i, (tf, e) in enumerate(zip(TIMEFRAMES, (7.0, 9.5, 8.0, 8.0)))]
    signal = _validator().validate(results)
    assert signal is not None
    assert signal.strategy == "BOS_1h"
    assert signal.entry == pytest.approx(1.1001)
    assert signal.avg_edge == pytest.approx(8.125)


def test_poi_cluster_bands():
    tight = [_result(tf) for tf in TIMEFRAMES]
    assert calculate_poi_confluence(tight, Direction.BULLISH) == 30
    half = [_result(tf, entry=1.10 if i < 2 else 1.20 + i * 0.05) for i, tf in enumerate(TIMEFRAMES)]
    assert calculate_poi_confluence(half, Direction.BULLISH) == 20
    assert calculate_poi_confluence(tight[:1], Direction.BULLISH) == 0


def test_build_signal_skips_timeframes_without_that_direction():
    results = [_result("4h", Direction.BEARISH, edge=9.9), _result("1h", edge=7.5), _result("15m", edge=8.2)]
    confluence = Confluence(score=80.0, breakdown=[], confirmed_timeframes=["1h", "15m"], avg_edge=7.85)
    signal = _validator().build_signal(results, Direction.BULLISH, confluence)
    assert signal.strategy == "BOS_15m"
    assert signal.direction is Direction.BULLISH


def test_build_signal_without_matching_setup_raises():
    confluence = Confluence(score=80.0, breakdown=[], confirmed_timeframes=[], avg_edge=0.0)
    with pytest.raises(ValueError):
        _validator().build_signal([_result("4h", Direction.BEARISH)], Direction.BULLISH, confluence)
