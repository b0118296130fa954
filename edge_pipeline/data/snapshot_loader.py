from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from edge_pipeline.types import Direction, EntryZone, Setup, TimeframeAnalysis, TimeframeResult
from edge_pipeline.utils import NEUTRAL, normalize_direction


def _parse_setup(raw: Mapping[str, Any], symbol: str, timeframe: str) -> Setup:
    direction = normalize_direction(raw.get("direction"))
    if direction == NEUTRAL:
        raise ValueError(f"Setup on {timeframe} has no usable direction: {raw.get('direction')!r}")
    entry = raw.get("entry")
    zone = raw.get("entry_zone")
    if isinstance(zone, Mapping):
        entry_zone = EntryZone(optimal=float(zone["optimal"]), tolerance=float(zone.get("tolerance") or 0.0))
    elif entry is not None:
        entry_zone = EntryZone(optimal=float(entry))
    else:
        entry_zone = None
    return Setup(
        symbol=str(raw.get("symbol") or symbol),
        timeframe=str(raw.get("timeframe") or timeframe),
        direction=Direction(direction),
        strategy=str(raw.get("strategy") or "GENERIC"),
        entry_zone=entry_zone,
        stop=None if raw.get("stop") is None else float(raw["stop"]),
        targets=[float(t["price"] if isinstance(t, Mapping) else t) for t in raw.get("targets") or []],
        rr=float(raw.get("rr") or 0.0),
        directional_confidence=None if raw.get("directional_confidence") is None else float(raw["directional_confidence"]),
    )


def _market_state(raw: Mapping[str, Any]) -> dict:
    state = dict(raw)
    ts = state.get("timestamp")
    if isinstance(ts, str) and ts:
        dt = datetime.fromisoformat(ts.replace("Z", "+00:00"))
        state["timestamp"] = dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)
    return state


def parse_snapshot(payload: Mapping[str, Any]) -> list[TimeframeResult]:
    """Build per-timeframe results from a scan document.

    Expected shape::

        {"symbol": "EURUSD",
         "timeframes": [{"timeframe": "4h", "bias": "BULLISH",
                         "market_state": {...}, "setups": [{...}]}]}
    """
    symbol = payload.get("symbol")
    if not symbol:
        raise ValueError("Snapshot is missing 'symbol'")
    frames = payload.get("timeframes")
    if not isinstance(frames, list):
        raise ValueError("Snapshot 'timeframes' must be a list")

    out: list[TimeframeResult] = []
    for tf_raw in frames:
        tf = str(tf_raw.get("timeframe") or "")
        if not tf:
            raise ValueError("Timeframe entry is missing 'timeframe'")
        analysis = TimeframeAnalysis(
            symbol=str(symbol),
            setups=[_parse_setup(s, str(symbol), tf) for s in tf_raw.get("setups") or []],
            bias=tf_raw.get("bias"),
            market_state=_market_state(tf_raw.get("market_state") or {}),
        )
        out.append(TimeframeResult(timeframe=tf, analysis=analysis))
    return out


def load_snapshot_json(path: str | Path) -> list[TimeframeResult]:
    p = Path(path)
    try:
        payload = json.loads(p.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in {p}: {e}") from e
    if not isinstance(payload, dict):
        raise ValueError(f"{p} does not hold a JSON object")
    return parse_snapshot(payload)
