from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

import pandas as pd

SwingKind = Literal["HIGH", "LOW"]


@dataclass(frozen=True)
class SwingPoint:
    idx: int
    time: object
    price: float
    kind: SwingKind


def find_swings(df: pd.DataFrame, window: int = 10) -> list[SwingPoint]:
    """Bars that are the extreme of the ``window`` bars on each side (ties count)."""
    span = 2 * window + 1
    is_high = df["high"].rolling(span, center=True).max() == df["high"]
    is_low = df["low"].rolling(span, center=True).min() == df["low"]

    out: list[SwingPoint] = []
    times = df["time"].to_numpy() if "time" in df.columns else [None] * len(df)
    for i in range(len(df)):
        if is_high.iloc[i]:
            out.append(SwingPoint(i, times[i], float(df["high"].iloc[i]), "HIGH"))
        if is_low.iloc[i]:
            out.append(SwingPoint(i, times[i], float(df["low"].iloc[i]), "LOW"))
    return out
