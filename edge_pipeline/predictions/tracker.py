from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.scoring.edge import score_label
from edge_pipeline.storage.store import KeyValueStore
from edge_pipeline.types import Candle, Outcome, Prediction, ScoreBreakdown, Setup
from edge_pipeline.utils import normalize_direction, round_half_up

logger = logging.getLogger(__name__)

KEY_PREFIX = "prediction:"

_EXPIRY_BY_TIMEFRAME = {
    "1m": timedelta(minutes=15),
    "5m": timedelta(hours=1),
    "15m": timedelta(hours=3),
    "1h": timedelta(hours=8),
    "4h": timedelta(hours=24),
    "1d": timedelta(days=7),
}

_EDGE_LABELS = {"PREMIUM EDGE": "premium", "STRONG EDGE": "strong", "TRADABLE": "tradable"}


def prediction_expiry(timeframe: str, now: datetime) -> datetime:
    return now + _EXPIRY_BY_TIMEFRAME.get(timeframe.lower(), _EXPIRY_BY_TIMEFRAME["1h"])


def prediction_id(symbol: str, timeframe: str, now: datetime) -> str:
    clean = re.sub(r"[^a-zA-Z]", "", symbol)
    hour_slot = int(now.timestamp() // 3600)
    return f"{clean}-{timeframe}-{now.strftime('%Y%m%d')}-{str(hour_slot)[-3:]}"


def prediction_from_setup(
    setup: Setup,
    breakdown: ScoreBreakdown,
    *,
    now: datetime,
    snapshot_price: float | None = None,
) -> Prediction:
    """Compress a scored setup into one auditable forecast."""
    label = score_label(breakdown.score)
    return Prediction(
        id=prediction_id(setup.symbol, setup.timeframe, now),
        symbol=setup.symbol,
        bias="NO_EDGE" if label == "NO EDGE" else setup.direction.value,
        target=setup.targets[0] if setup.targets else None,
        invalidation=setup.stop,
        timestamp=now,
        expires_at=prediction_expiry(setup.timeframe, now),
        strategy=setup.strategy or "GENERIC",
        edge_label=label,
        edge_score=float(breakdown.score),
        snapshot_price=float(snapshot_price if snapshot_price is not None else (setup.entry or 0.0)),
    )


@dataclass(frozen=True)
class StrategyAccuracy:
    accuracy: int
    total: int
    score: int


@dataclass(frozen=True)
class PredictionStats:
    accuracy: int
    total: int
    hits: int = 0
    fails: int = 0
    last10: list[str] = field(default_factory=list)
    edge_attribution: dict[str, int] = field(default_factory=dict)
    strategy_performance: dict[str, StrategyAccuracy] = field(default_factory=dict)
    recent_history: list[Prediction] = field(default_factory=list)


def judge(prediction: Prediction, candle: Candle, now: datetime) -> tuple[Outcome, str]:
    if now > prediction.expires_at:
        return "EXPIRED", "Time horizon reached without target/invalidation"
    inv = prediction.invalidation
    tgt = prediction.target
    bias = normalize_direction(prediction.bias)
    if bias == "BULLISH":
        if inv is not None and candle.low <= inv:
            return "FAIL", "Invalidation level breached"
        if tgt is not None and candle.high >= tgt:
            return "HIT", "Target level reached"
    elif bias == "BEARISH":
        if inv is not None and candle.high >= inv:
            return "FAIL", "Invalidation level breached"
        if tgt is not None and candle.low <= tgt:
            return "HIT", "Target level reached"
    return "PENDING", ""


class PredictionTracker:
    def __init__(
        self,
        store: KeyValueStore,
        *,
        cfg: PipelineConfig = DEFAULT_CONFIG,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.cfg = cfg
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._lock = threading.Lock()
        self._stats_cache: dict[str, tuple[datetime, PredictionStats]] = {}

    def _load(self, prediction_id: str) -> Optional[Prediction]:
        raw = self.store.get(KEY_PREFIX + prediction_id)
        return None if raw is None else Prediction.from_dict(raw)

    def get(self, prediction_id: str) -> Optional[Prediction]:
        return self._load(prediction_id)

    def track(self, prediction: Prediction, symbol: str) -> bool:
        if not prediction.id or prediction.bias == "NO_EDGE":
            return False
        try:
            with self._lock:
                existing = self._load(prediction.id)
                if existing is not None and existing.is_terminal:
                    return False
                rec = replace(
                    prediction,
                    symbol=symbol,
                    outcome="PENDING",
                    evaluated_at=None,
                    outcome_reason=None,
                    final_price=None,
                )
                self.store.set(KEY_PREFIX + rec.id, rec.to_dict())
                self._stats_cache.pop(symbol, None)
        except Exception:  # noqa: BLE001
            logger.exception("prediction_save_failed id=%s", prediction.id)
            return False
        logger.info("prediction_tracked id=%s symbol=%s bias=%s", prediction.id, symbol, prediction.bias)
        return True

    def _transition(self, prediction_id: str, candle: Candle, now: datetime) -> Optional[Prediction]:
        with self._lock:
            current = self._load(prediction_id)
            if current is None or current.is_terminal:
                return current
            outcome, reason = judge(current, candle, now)
            if outcome == "PENDING":
                return current
            done = replace(
                current,
                outcome=outcome,
                evaluated_at=now,
                outcome_reason=reason,
                final_price=float(candle.close),
            )
            self.store.set(KEY_PREFIX + done.id, done.to_dict())
            self._stats_cache.pop(done.symbol, None)
        logger.info("prediction_evaluated id=%s outcome=%s", done.id, done.outcome)
        return done

    def evaluate(self, prediction_id: str, candle: Candle) -> Optional[Prediction]:
        try:
            return self._transition(prediction_id, candle, self._clock())
        except Exception:  # noqa: BLE001
            logger.exception("prediction_evaluate_failed id=%s", prediction_id)
            return None

    def evaluate_pending(self, symbol: str, candle: Candle) -> list[Prediction]:
        try:
            pending = self.store.query(KEY_PREFIX, where={"symbol": symbol, "outcome": "PENDING"})
        except Exception:  # noqa: BLE001
            logger.exception("prediction_query_failed symbol=%s", symbol)
            return []
        now = self._clock()
        out: list[Prediction] = []
        pending.sort(key=lambda r: str(r.get("timestamp") or ""))
        for raw in pending[: self.cfg.pending_batch]:
            try:
                res = self._transition(str(raw["id"]), candle, now)
            except Exception:  # noqa: BLE001
                logger.exception("prediction_evaluate_failed id=%s", raw.get("id"))
                continue
            if res is not None and res.is_terminal:
                out.append(res)
        return out

    def recent(self, symbol: str, limit: int | None = None) -> list[Prediction]:
        rows = [Prediction.from_dict(r) for r in self.store.query(KEY_PREFIX, where={"symbol": symbol})]
        rows.sort(key=lambda p: p.timestamp, reverse=True)
        return rows[: (limit or self.cfg.stats_window)]

    def get_stats(self, symbol: str) -> Optional[PredictionStats]:
        now = self._clock()
        cached = self._stats_cache.get(symbol)
        if cached is not None and now - cached[0] < self.cfg.stats_cache_ttl:
            return cached[1]
        try:
            records = self.recent(symbol)
        except Exception:  # noqa: BLE001
            logger.exception("prediction_stats_failed symbol=%s", symbol)
            return None

        completed = [p for p in records if p.outcome in ("HIT", "FAIL")]
        if not completed:
            return PredictionStats(accuracy=0, total=0)

        hits = sum(1 for p in completed if p.outcome == "HIT")
        attribution = {"premium": 0, "strong": 0, "tradable": 0}
        for label, key in _EDGE_LABELS.items():
            group = [p for p in completed if p.edge_label == label]
            if group:
                g_hits = sum(1 for p in group if p.outcome == "HIT")
                attribution[key] = int(round_half_up(g_hits / len(group) * 100))

        by_strategy: dict[str, list[Prediction]] = {}
        for p in completed:
            if p.strategy:
                by_strategy.setdefault(p.strategy.lower(), []).append(p)
        strategy_performance = {}
        for name, group in by_strategy.items():
            g_hits = sum(1 for p in group if p.outcome == "HIT")
            strategy_performance[name] = StrategyAccuracy(
                accuracy=int(round_half_up(g_hits / len(group) * 100)),
                total=len(group),
                score=g_hits,
            )

        stats = PredictionStats(
            accuracy=int(round_half_up(hits / len(completed) * 100)),
            total=len(completed),
            hits=hits,
            fails=len(completed) - hits,
            last10=[p.outcome for p in records[:10]],
            edge_attribution=attribution,
            strategy_performance=strategy_performance,
            recent_history=records[:20],
        )
        self._stats_cache[symbol] = (now, stats)
        return stats

    def recent_double_fail(self, symbol: str) -> bool:
        stats = self.get_stats(symbol)
        return bool(stats and stats.last10[:2] == ["FAIL", "FAIL"])
