from __future__ import annotations

import logging
import time
from pathlib import Path

import pandas as pd

from edge_pipeline.types import Candle

logger = logging.getLogger(__name__)

CANDLE_COLUMNS = ["time", "open", "high", "low", "close", "volume"]


def load_ohlcv_csv(path: str | Path, *, time_col: str = "time", retries: int = 3) -> pd.DataFrame:
    """Read a candle CSV into a time-sorted UTC frame with the standard columns."""
    p = Path(path)
    attempt = 0
    while True:
        try:
            df = pd.read_csv(p)
            break
        except PermissionError:
            # exporters sometimes hold the file open while writing
            attempt += 1
            if attempt >= retries:
                raise
            logger.warning("candle_csv_locked path=%s attempt=%d", p, attempt)
            time.sleep(0.5)

    if time_col not in df.columns:
        raise ValueError(f"Missing '{time_col}' column in {p}")
    if "tick_volume" in df.columns and "volume" not in df.columns:
        df = df.rename(columns={"tick_volume": "volume"})
    for c in ("open", "high", "low", "close"):
        if c not in df.columns:
            raise ValueError(f"Missing '{c}' column in {p}")
    if "volume" not in df.columns:
        df["volume"] = 0

    df = df.rename(columns={time_col: "time"})
    df["time"] = pd.to_datetime(df["time"], utc=True, errors="raise")
    df = df[CANDLE_COLUMNS].sort_values("time").reset_index(drop=True)
    return df


def frame_to_candles(df: pd.DataFrame) -> list[Candle]:
    return [
        Candle(
            time=row.time.to_pydatetime() if hasattr(row.time, "to_pydatetime") else row.time,
            open=float(row.open),
            high=float(row.high),
            low=float(row.low),
            close=float(row.close),
            volume=float(row.volume),
        )
        for row in df.itertuples(index=False)
    ]
