from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionSize:
    units: float
    risk_amount: float
    risk_percent: float
    warning: Optional[str] = None


def risk_adjusted_size(
    equity: float,
    entry: float,
    stop: float,
    risk_per_trade: float = 0.01,
    confidence: Optional[float] = None,
    volatility: Optional[float] = None,
    event_risk_score: Optional[float] = None,
    event_title: Optional[str] = None,
) -> Optional[PositionSize]:
    """Units to trade so that a stop-out costs the adjusted risk fraction of equity."""
    dist = abs(entry - stop)
    if dist == 0:
        return None

    risk_percent = risk_per_trade or 0.01
    if confidence:
        risk_percent *= confidence
    if volatility and volatility > 2.0:
        risk_percent *= 0.7

    warning = None
    if event_risk_score and event_risk_score > 50:
        risk_percent *= 1 - (event_risk_score / 100) * 0.5
        warning = f"Reduced size due to High Event Risk ({event_title or 'scheduled event'})"
        logger.warning("position_size_event_risk score=%.0f", event_risk_score)

    risk_amount = equity * risk_percent
    return PositionSize(
        units=risk_amount / dist,
        risk_amount=risk_amount,
        risk_percent=risk_percent,
        warning=warning,
    )
