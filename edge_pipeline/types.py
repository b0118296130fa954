from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Mapping, Optional, Sequence

import pandas as pd


class Direction(str, Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"

    @property
    def sign(self) -> int:
        return 1 if self is Direction.BULLISH else -1


# Opaque bag of analytics produced by external feature engines.
MarketState = Mapping[str, Any]

Outcome = Literal["PENDING", "HIT", "FAIL", "EXPIRED"]

SIGNAL_ACTIVE = "ACTIVE"
SIGNAL_STOPPED_OUT = "STOPPED_OUT"
SIGNAL_EXPIRED = "EXPIRED"
TERMINAL_SIGNAL_STATUSES = frozenset({SIGNAL_STOPPED_OUT, SIGNAL_EXPIRED})


@dataclass(frozen=True)
class Candle:
    time: datetime
    open: float
    high: float
    low: float
    close: float
    volume: float | int | None = None


def candles_frame(candles: Sequence[Candle]) -> pd.DataFrame:
    rows = [
        {
            "time": c.time,
            "open": float(c.open),
            "high": float(c.high),
            "low": float(c.low),
            "close": float(c.close),
            "volume": float(c.volume or 0),
        }
        for c in candles
    ]
    return pd.DataFrame(rows, columns=["time", "open", "high", "low", "close", "volume"])


@dataclass(frozen=True)
class EntryZone:
    optimal: float
    tolerance: float = 0.0


@dataclass(frozen=True)
class ScoreBreakdown:
    score: float
    positives: list[str]
    risks: list[str]
    vetoed: bool = False


@dataclass
class Setup:
    symbol: str
    timeframe: str
    direction: Direction
    strategy: str
    entry_zone: Optional[EntryZone]
    stop: Optional[float]
    targets: list[float] = field(default_factory=list)
    rr: float = 0.0
    directional_confidence: Optional[float] = None
    # written by the scorer only
    edge_score: Optional[float] = None
    breakdown: Optional[ScoreBreakdown] = None

    @property
    def entry(self) -> Optional[float]:
        return None if self.entry_zone is None else self.entry_zone.optimal


@dataclass(frozen=True)
class TimeframeAnalysis:
    symbol: str
    setups: list[Setup]
    bias: Optional[str] = None
    market_state: MarketState = field(default_factory=dict)


@dataclass(frozen=True)
class TimeframeResult:
    timeframe: str
    analysis: TimeframeAnalysis


@dataclass
class Signal:
    id: str
    symbol: str
    direction: Direction
    entry: float
    targets: list[float]
    stop: float
    rr: float
    confluence_score: float
    confluence_breakdown: list[str]
    confirmed_timeframes: list[str]
    avg_edge: float
    strategy: str
    published_at: datetime
    expires_at: datetime
    status: str = SIGNAL_ACTIVE
    trailing_stop: Optional[float] = None
    management_updates: list[str] = field(default_factory=list)
    is_institutional_grade: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SIGNAL_STATUSES


def _iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


def _parse_iso(s: Any) -> Optional[datetime]:
    if s is None or s == "":
        return None
    if isinstance(s, datetime):
        return s
    dt = datetime.fromisoformat(str(s).replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass(frozen=True)
class Prediction:
    id: str
    symbol: str
    bias: str
    target: Optional[float]
    invalidation: Optional[float]
    timestamp: datetime
    expires_at: datetime
    strategy: str = "GENERIC"
    edge_label: str = "NO EDGE"
    edge_score: float = 0.0
    snapshot_price: float = 0.0
    outcome: Outcome = "PENDING"
    evaluated_at: Optional[datetime] = None
    outcome_reason: Optional[str] = None
    final_price: Optional[float] = None

    @property
    def is_terminal(self) -> bool:
        return self.outcome != "PENDING"

    def to_dict(self) -> dict:
        payload = asdict(self)
        payload["timestamp"] = _iso(self.timestamp)
        payload["expires_at"] = _iso(self.expires_at)
        payload["evaluated_at"] = _iso(self.evaluated_at)
        return payload

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Prediction":
        return cls(
            id=str(raw["id"]),
            symbol=str(raw.get("symbol") or ""),
            bias=str(raw.get("bias") or "NO_EDGE"),
            target=None if raw.get("target") is None else float(raw["target"]),
            invalidation=None if raw.get("invalidation") is None else float(raw["invalidation"]),
            timestamp=_parse_iso(raw.get("timestamp")) or datetime.now(timezone.utc),
            expires_at=_parse_iso(raw.get("expires_at")) or datetime.now(timezone.utc),
            strategy=str(raw.get("strategy") or "GENERIC"),
            edge_label=str(raw.get("edge_label") or "NO EDGE"),
            edge_score=float(raw.get("edge_score") or 0.0),
            snapshot_price=float(raw.get("snapshot_price") or 0.0),
            outcome=raw.get("outcome") or "PENDING",
            evaluated_at=_parse_iso(raw.get("evaluated_at")),
            outcome_reason=raw.get("outcome_reason"),
            final_price=None if raw.get("final_price") is None else float(raw["final_price"]),
        )


@dataclass(frozen=True)
class Credibility:
    probability: float
    confidence: str
    is_suppressed: bool
    sample_size: int = 0
    realized_edge: float = 0.0
    reason: Optional[str] = None
