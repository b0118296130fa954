from __future__ import annotations

import logging
import threading
from dataclasses import asdict, dataclass, field, replace
from datetime import datetime, timezone
from typing import Callable

from edge_pipeline.config import DEFAULT_CONFIG, PipelineConfig
from edge_pipeline.storage.store import KeyValueStore
from edge_pipeline.utils import clamp

logger = logging.getLogger(__name__)

KEY_PREFIX = "performance:"


@dataclass(frozen=True)
class PerformanceRecord:
    strategy_id: str
    wins: int = 0
    losses: int = 0
    streak: int = 0
    win_rate: float = 0.5
    recent_results: list[bool] = field(default_factory=list)
    total_r: float = 0.0
    last_updated: str | None = None

    @property
    def trades(self) -> int:
        return len(self.recent_results)


class PerformanceTracker:
    """Per-strategy streaks and rolling win-rate, turned into a bounded weight."""

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
        self._records: dict[str, PerformanceRecord] = {}
        self._load()

    def _load(self) -> None:
        try:
            rows = self.store.query(KEY_PREFIX)
        except Exception:  # noqa: BLE001
            logger.warning("performance_load_failed", exc_info=True)
            return
        for raw in rows:
            sid = raw.get("strategy_id")
            if not sid:
                continue
            self._records[str(sid)] = PerformanceRecord(
                strategy_id=str(sid),
                wins=int(raw.get("wins", 0)),
                losses=int(raw.get("losses", 0)),
                streak=int(raw.get("streak", 0)),
                win_rate=float(raw.get("win_rate", 0.5)),
                recent_results=[bool(x) for x in raw.get("recent_results", [])][-self.cfg.performance_window :],
                total_r=float(raw.get("total_r", 0.0)),
                last_updated=raw.get("last_updated"),
            )

    def get_record(self, strategy_id: str) -> PerformanceRecord:
        return self._records.get(strategy_id) or PerformanceRecord(strategy_id=strategy_id)

    def known_strategies(self) -> list[str]:
        return sorted(self._records)

    def record_outcome(self, strategy_id: str, is_win: bool, r_multiple: float = 0.0) -> PerformanceRecord:
        with self._lock:
            rec = self.get_record(strategy_id)
            if is_win:
                streak = rec.streak + 1 if rec.streak >= 0 else 1
            else:
                streak = rec.streak - 1 if rec.streak <= 0 else -1
            window = (rec.recent_results + [bool(is_win)])[-self.cfg.performance_window :]
            rec = replace(
                rec,
                wins=rec.wins + (1 if is_win else 0),
                losses=rec.losses + (0 if is_win else 1),
                streak=streak,
                recent_results=window,
                win_rate=sum(window) / len(window),
                total_r=rec.total_r + float(r_multiple),
                last_updated=self._clock().isoformat(),
            )
            self._records[strategy_id] = rec
            self._save(rec)
        logger.info("performance_update strategy=%s streak=%d win_rate=%.0f%%", strategy_id, rec.streak, rec.win_rate * 100)
        return rec

    def _save(self, rec: PerformanceRecord) -> None:
        try:
            self.store.set(KEY_PREFIX + rec.strategy_id, asdict(rec))
        except Exception:  # noqa: BLE001
            logger.warning("performance_save_failed strategy=%s", rec.strategy_id, exc_info=True)

    def get_dynamic_weight(self, strategy_id: str) -> float:
        rec = self.get_record(strategy_id)
        multiplier = 1.0
        if rec.streak >= self.cfg.hot_streak:
            multiplier += 0.2
        if rec.streak <= self.cfg.cold_streak:
            multiplier -= 0.2
        if len(rec.recent_results) >= self.cfg.min_samples_for_win_rate:
            if rec.win_rate > 0.6:
                multiplier += 0.2
            if rec.win_rate < 0.4:
                multiplier -= 0.2
        return clamp(multiplier, self.cfg.weight_floor, self.cfg.weight_ceiling)

    def get_all_weights(self) -> dict[str, dict[str, float]]:
        return {
            sid: {
                "multiplier": self.get_dynamic_weight(sid),
                "win_rate": rec.win_rate,
                "streak": float(rec.streak),
            }
            for sid, rec in sorted(self._records.items())
        }

    def get_strategy_performance(self, strategy_id: str) -> dict[str, float]:
        rec = self.get_record(strategy_id)
        return {
            "win_rate": rec.win_rate,
            "trades": float(rec.trades),
            "streak": float(rec.streak),
            "avg_r": rec.total_r / (rec.wins + rec.losses) if (rec.wins + rec.losses) else 0.0,
        }
