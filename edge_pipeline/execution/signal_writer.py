from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Mapping

from edge_pipeline.types import Direction, Signal

if TYPE_CHECKING:
    from edge_pipeline.runtime.orchestrator import ScanReport


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _atomic_write(path: Path, payload: Any) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(json.dumps(payload, separators=(",", ":"), ensure_ascii=False), encoding="utf-8")
    tmp.replace(path)
    return path


def signal_to_dict(signal: Signal) -> dict:
    payload = asdict(signal)
    payload["direction"] = signal.direction.value
    payload["published_at"] = _iso(signal.published_at)
    payload["expires_at"] = _iso(signal.expires_at)
    return payload


def signal_from_dict(raw: Mapping[str, Any]) -> Signal:
    try:
        return Signal(
            id=str(raw["id"]),
            symbol=str(raw["symbol"]),
            direction=Direction(raw["direction"]),
            entry=float(raw["entry"]),
            targets=[float(t) for t in raw.get("targets") or []],
            stop=float(raw["stop"]),
            rr=float(raw.get("rr") or 0.0),
            confluence_score=float(raw.get("confluence_score") or 0.0),
            confluence_breakdown=list(raw.get("confluence_breakdown") or []),
            confirmed_timeframes=list(raw.get("confirmed_timeframes") or []),
            avg_edge=float(raw.get("avg_edge") or 0.0),
            strategy=str(raw.get("strategy") or "Institutional Alignment"),
            published_at=datetime.fromisoformat(str(raw["published_at"])),
            expires_at=datetime.fromisoformat(str(raw["expires_at"])),
            status=str(raw.get("status") or "ACTIVE"),
            trailing_stop=None if raw.get("trailing_stop") is None else float(raw["trailing_stop"]),
            management_updates=list(raw.get("management_updates") or []),
            is_institutional_grade=bool(raw.get("is_institutional_grade", True)),
        )
    except (KeyError, TypeError) as e:
        raise ValueError(f"Invalid signal payload: {e}") from e


def write_signal_json(signal: Signal, *, out_dir: str | Path) -> Path:
    return _atomic_write(Path(out_dir) / f"signal_{signal.id}.json", signal_to_dict(signal))


def read_signal_json(path: str | Path) -> Signal:
    return signal_from_dict(json.loads(Path(path).read_text(encoding="utf-8")))


def scan_report_to_dict(report: "ScanReport") -> dict:
    return {
        "symbol": report.symbol,
        "time_utc": report.time_utc,
        "setups": [
            {
                "timeframe": s.timeframe,
                "strategy": s.setup.strategy,
                "direction": s.setup.direction.value,
                "edge_score": s.breakdown.score,
                "label": s.label,
                "positives": s.breakdown.positives,
                "risks": s.breakdown.risks,
                "vetoed": s.breakdown.vetoed,
                "credibility": asdict(s.credibility),
                "risk": None if s.risk is None else asdict(s.risk),
            }
            for s in report.scored
        ],
        "signal": None if report.signal is None else signal_to_dict(report.signal),
        "tracked_predictions": report.tracked_predictions,
        "resolved_predictions": [p.to_dict() for p in report.resolved_predictions],
        "cooldown_reason": report.cooldown_reason,
    }


def write_scan_report(report: "ScanReport", path: str | Path) -> Path:
    return _atomic_write(Path(path), scan_report_to_dict(report))
