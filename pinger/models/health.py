"""
Health Model — Per-target status as published by the health tracker.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class TargetStatus(str, Enum):
    """Binary up/down status, plus unknown before the first result."""
    UNKNOWN = "unknown"
    UP = "up"
    DOWN = "down"

    @property
    def gauge_value(self) -> int:
        """Value of the status gauge (0=unknown, 1=up, 2=down)."""
        return {"unknown": 0, "up": 1, "down": 2}[self.value]


@dataclass(frozen=True)
class HealthSnapshot:
    """Read-only copy of a target's health state."""

    target: str
    status: TargetStatus = TargetStatus.UNKNOWN
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    transitions: int = 0
    last_transition_at: Optional[float] = None
    flapping: bool = False
    success_ratio: float = 0.0
    changed: bool = False

    @property
    def up(self) -> bool:
        return self.status == TargetStatus.UP
