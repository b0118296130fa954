from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Mapping, Optional, Protocol

Severity = Literal["HIGH", "MEDIUM", "LOW"]


@dataclass(frozen=True)
class Shock:
    severity: Severity
    message: str = ""
    event: str = ""


class ShockSource(Protocol):
    def get_active_shock(self, symbol: str) -> Optional[Shock]: ...


class NoShockSource:
    def get_active_shock(self, symbol: str) -> Optional[Shock]:
        return None


class StaticShockSource:
    """Fixed symbol -> shock table, e.g. loaded from a calendar export."""

    def __init__(self, shocks: Mapping[str, Shock]) -> None:
        self._shocks = {k.upper(): v for k, v in shocks.items()}

    def get_active_shock(self, symbol: str) -> Optional[Shock]:
        return self._shocks.get((symbol or "").upper())
