from __future__ import annotations

import math
from typing import Any, Mapping

NEUTRAL = "NEUTRAL"


def normalize_direction(d: Any) -> str:
    if not d or not isinstance(d, str):
        return NEUTRAL
    upper = d.upper()
    if "BULL" in upper or "LONG" in upper or upper in ("UP", "BUY"):
        return "BULLISH"
    if "BEAR" in upper or "SHORT" in upper or upper in ("DOWN", "SELL"):
        return "BEARISH"
    return NEUTRAL


def round_half_up(x: float, ndigits: int = 0) -> float:
    f = 10 ** ndigits
    return math.floor(x * f + 0.5) / f


def clamp(x: float, lo: float, hi: float) -> float:
    return min(max(x, lo), hi)


def price_precision(symbol: str) -> int:
    return 2 if symbol and "JPY" in symbol.upper() else 4


def dig(state: Mapping[str, Any] | None, *path: str, default: Any = None) -> Any:
    cur: Any = state
    for key in path:
        if not isinstance(cur, Mapping):
            return default
        cur = cur.get(key)
        if cur is None:
            return default
    return cur
