from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pandas as pd
import pytest

from edge_pipeline.indicators.atr import latest_atr
from edge_pipeline.indicators.swings import find_swings
from edge_pipeline.lifecycle.management import check_partial_tp, trailing_stop_advice
from edge_pipeline.lifecycle.manager import SignalLifecycleManager
from edge_pipeline.types import Direction, Signal

NOW = datetime(2026, 1, 5, 10, 0, tzinfo=timezone.utc)


class Clock:
    def __init__(self) -> None:
        self.now = NOW

    def __call__(self) -> datetime:
        return self.now


def _signal(direction=Direction.BULLISH) -> Signal:
    s = direction.sign
    return Signal(
        id="sig-1",
        symbol="EURUSD",
        direction=direction,
        entry=100.0,
        targets=[100.0 + 2 * s, 100.0 + 4 * s],
        stop=100.0 - 2 * s,
        rr=2.0,
        confluence_score=90.0,
        confluence_breakdown=[],
        confirmed_timeframes=["4h", "1h", "15m", "5m"],
        avg_edge=8.0,
        strategy="BOS",
        published_at=NOW,
        expires_at=NOW + timedelta(hours=12),
    )


def _trend_frame(n: int = 40, step: float = 0.25, wick: float = 0.2, volume: float = 1000.0) -> pd.DataFrame:
    rows = []
    for i in range(n):
        close = 100.0 + i * step
        open_ = close - 0.1 if step > 0 else close + 0.1
        rows.append(
            {
                "time": NOW + timedelta(minutes=15 * i),
                "open": open_,
                "high": max(open_, close) + wick,
                "low": min(open_, close) - wick,
                "close": close,
                "volume": volume,
            }
        )
    return pd.DataFrame(rows)


def test_stop_out_is_terminal():
    mgr = SignalLifecycleManager(clock=Clock())
    sig = mgr.update_signal_status(_signal(), 97.9)
    assert sig.status == "STOPPED_OUT"
    assert mgr.update_signal_status(sig, 105.0).status == "STOPPED_OUT"


def test_expiry():
    clock = Clock()
    mgr = SignalLifecycleManager(clock=clock)
    clock.now = NOW + timedelta(hours=13)
    assert mgr.update_signal_status(_signal(), 100.5).status == "EXPIRED"


def test_target_progression_never_downgrades():
    mgr = SignalLifecycleManager(clock=Clock())
    sig = _signal()
    assert mgr.update_signal_status(sig, 102.5).status == "HIT_TP1"
    assert mgr.update_signal_status(sig, 104.5).status == "HIT_TP2"
    assert mgr.update_signal_status(sig, 103.0).status == "HIT_TP2"


def test_bearish_targets():
    mgr = SignalLifecycleManager(clock=Clock())
    sig = _signal(Direction.BEARISH)
    assert mgr.update_signal_status(sig, 97.5).status == "HIT_TP1"
    assert mgr.update_signal_status(sig, 102.1).status == "STOPPED_OUT"


def test_trailing_stop_only_tightens():
    mgr = SignalLifecycleManager(clock=Clock())
    frame = _trend_frame()
    last = float(frame["close"].iloc[-1])
    sig = mgr.update_signal_status(_signal(), last, frame)

    atr = latest_atr(frame)
    assert atr == pytest.approx(0.5)
    assert sig.trailing_stop == pytest.approx(last - 2.5 * atr)
    trails = [u for u in sig.management_updates if u.startswith("[TRAIL]")]
    assert trails == [f"[TRAIL] Moved Stop to {last - 2.5 * atr:.4f} (VOLATILITY)"]

    # a pullback frame would suggest a lower stop; it must be ignored
    pulled = _trend_frame(n=40, step=0.2)
    mgr.update_signal_status(sig, float(pulled["close"].iloc[-1]), pulled)
    assert sig.trailing_stop == pytest.approx(last - 2.5 * atr)
    assert len([u for u in sig.management_updates if u.startswith("[TRAIL]")]) == 1


def test_short_history_skips_management():
    mgr = SignalLifecycleManager(clock=Clock())
    sig = mgr.update_signal_status(_signal(), 101.0, _trend_frame(n=10))
    assert sig.trailing_stop is None
    assert sig.management_updates == []


def test_partial_tp_alert_is_logged_once():
    mgr = SignalLifecycleManager(clock=Clock())
    frame = _trend_frame()
    sig = _signal()
    mgr.update_signal_status(sig, float(frame["close"].iloc[-1]), frame)
    mgr.update_signal_status(sig, float(frame["close"].iloc[-1]), frame)
    alerts = [u for u in sig.management_updates if u.startswith("[ALERT]")]
    assert alerts == ["[ALERT] Partial TP - Wick Rejection: Take 30-50% off table"]


def test_partial_tp_volume_climax():
    frame = _trend_frame(wick=0.0)
    frame.loc[frame.index[-1], "volume"] = 10_000.0
    tp = check_partial_tp(frame, Direction.BULLISH, entry=100.0)
    assert tp is not None and tp.reason == "Volume Climax"
    assert check_partial_tp(frame, Direction.BULLISH, entry=109.5) is None


def test_bearish_trailing_advice_moves_down():
    frame = _trend_frame(step=-0.25)
    last = float(frame["close"].iloc[-1])
    advice = trailing_stop_advice(frame, Direction.BEARISH, current_stop=102.0)
    assert advice.should_update
    assert advice.price == pytest.approx(last + 2.5 * 0.5)
    assert advice.price < 102.0


def test_structure_stop_uses_last_swing_low():
    lows = [10.0 - i * 0.5 for i in range(11)] + [5.5 + i * 0.5 for i in range(1, 30)]
    frame = pd.DataFrame(
        {
            "time": [NOW + timedelta(hours=i) for i in range(len(lows))],
            "open": [l + 0.3 for l in lows],
            "high": [l + 0.6 for l in lows],
            "low": lows,
            "close": [l + 0.4 for l in lows],
            "volume": [1.0] * len(lows),
        }
    )
    swings = find_swings(frame, 10)
    assert [(s.idx, s.kind) for s in swings if s.kind == "LOW"] == [(10, "LOW")]

    advice = trailing_stop_advice(frame, Direction.BULLISH, current_stop=4.0)
    atr = latest_atr(frame)
    structure = 5.0 - 0.2 * atr
    chandelier = float(frame["close"].iloc[-1]) - 2.5 * atr
    assert advice.price == pytest.approx(max(structure, chandelier))
