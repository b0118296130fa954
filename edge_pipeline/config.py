from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(frozen=True)
class PipelineConfig:
    # Performance feedback
    performance_window: int = 20
    min_samples_for_win_rate: int = 10
    hot_streak: int = 3
    cold_streak: int = -3
    weight_floor: float = 0.5
    weight_ceiling: float = 1.5

    # Credibility
    min_sample_size: int = 10
    default_prior: float = 0.55
    suppression_threshold: float = 0.6

    # Monte Carlo
    mc_iterations: int = 1000
    mc_max_steps: int = 48
    mc_steps_per_candle: int = 4
    mc_chunk_size: int = 10_000

    # Confluence gating
    min_timeframes: int = 4
    min_confluence_score: float = 75.0
    cluster_radius: float = 0.005
    signal_lifetime: timedelta = timedelta(hours=12)

    # Lifecycle management
    min_management_candles: int = 20
    atr_period: int = 14
    trailing_atr_multiple: float = 2.5
    swing_window: int = 10
    partial_tp_atr_multiple: float = 2.0
    climax_volume_ratio: float = 2.5
    rejection_wick_ratio: float = 1.5

    # Prediction tracking
    pending_batch: int = 20
    stats_window: int = 100
    stats_cache_ttl: timedelta = timedelta(minutes=5)
    cooldown: timedelta = timedelta(hours=4)


DEFAULT_CONFIG = PipelineConfig()
