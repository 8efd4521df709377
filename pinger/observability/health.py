"""
Health Check — Daemon health status for monitoring.

Reports on the daemon itself, not on probed targets: is the scheduler
running, are targets configured and reporting, did the last config load
succeed.

## Usage

    from pinger.observability.health import ConfigState, HealthChecker

    checker = HealthChecker(scheduler, metrics, ConfigState(path))
    status = checker.check()

    if status.healthy:
        print("All systems operational")
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from ..models.health import TargetStatus
from .metrics import MetricsRegistry

if TYPE_CHECKING:
    from ..engine.scheduler import Scheduler


class HealthStatus(str, Enum):
    """Health status levels."""
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class ComponentHealth:
    """Health status of a single component."""

    name: str
    status: HealthStatus
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass
class SystemHealth:
    """Overall daemon health status."""

    status: HealthStatus
    timestamp: str
    uptime_seconds: float
    components: List[ComponentHealth]

    @property
    def healthy(self) -> bool:
        return self.status != HealthStatus.UNHEALTHY

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "timestamp": self.timestamp,
            "uptime_seconds": self.uptime_seconds,
            "healthy": self.healthy,
            "components": [
                {
                    "name": c.name,
                    "status": c.status.value,
                    "message": c.message,
                    "details": c.details,
                }
                for c in self.components
            ],
        }


@dataclass
class ConfigState:
    """Outcome of the most recent configuration load, updated by the daemon."""

    path: Optional[Path] = None
    generation: int = 0
    loaded_at: Optional[float] = None
    last_error: Optional[str] = None
    last_attempt_at: Optional[float] = None

    def loaded(self, generation: int) -> None:
        now = time.time()
        self.generation = generation
        self.loaded_at = now
        self.last_attempt_at = now
        self.last_error = None

    def failed(self, error: str) -> None:
        self.last_attempt_at = time.time()
        self.last_error = error


class HealthChecker:
    """
    Daemon health checker.

    Safe to call from the metrics server thread: it only reads published
    snapshots and plain attributes.
    """

    def __init__(
        self,
        scheduler: Optional["Scheduler"],
        metrics: MetricsRegistry,
        config_state: Optional[ConfigState] = None,
    ):
        self.scheduler = scheduler
        self.metrics = metrics
        self.config_state = config_state or ConfigState()
        self._start_time = time.time()

    def check(self) -> SystemHealth:
        """Run all health checks and return status."""
        components = [
            self._check_scheduler(),
            self._check_targets(),
            self._check_config(),
        ]

        statuses = [c.status for c in components]
        if HealthStatus.UNHEALTHY in statuses:
            overall = HealthStatus.UNHEALTHY
        elif HealthStatus.DEGRADED in statuses:
            overall = HealthStatus.DEGRADED
        else:
            overall = HealthStatus.HEALTHY

        return SystemHealth(
            status=overall,
            timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            uptime_seconds=time.time() - self._start_time,
            components=components,
        )

    def _check_scheduler(self) -> ComponentHealth:
        if self.scheduler is None or not self.scheduler.running:
            return ComponentHealth(
                name="scheduler",
                status=HealthStatus.UNHEALTHY,
                message="Scheduler is not running",
            )
        return ComponentHealth(
            name="scheduler",
            status=HealthStatus.HEALTHY,
            message=f"Running generation {self.scheduler.generation}",
            details={
                "generation": self.scheduler.generation,
                "overrun_policy": self.scheduler.overrun_policy.value,
            },
        )

    def _check_targets(self) -> ComponentHealth:
        snapshots = self.metrics.snapshots()
        if not snapshots:
            return ComponentHealth(
                name="targets",
                status=HealthStatus.DEGRADED,
                message="No targets configured",
            )

        counts = {status.value: 0 for status in TargetStatus}
        for snap in snapshots:
            counts[snap.status.value] += 1
        flapping = [snap.target.name for snap in snapshots if snap.flapping]

        message = f"{counts['up']} up, {counts['down']} down, {counts['unknown']} unknown"
        return ComponentHealth(
            name="targets",
            status=HealthStatus.HEALTHY,
            message=message,
            details={"total": len(snapshots), "flapping": flapping, **counts},
        )

    def _check_config(self) -> ComponentHealth:
        state = self.config_state
        details: Dict[str, Any] = {
            "path": str(state.path) if state.path else None,
            "generation": state.generation,
        }

        if state.loaded_at is None:
            return ComponentHealth(
                name="config",
                status=HealthStatus.UNHEALTHY,
                message=state.last_error or "No configuration loaded",
                details=details,
            )
        if state.last_error:
            return ComponentHealth(
                name="config",
                status=HealthStatus.DEGRADED,
                message=f"Last reload failed, generation {state.generation} still active: {state.last_error}",
                details=details,
            )
        return ComponentHealth(
            name="config",
            status=HealthStatus.HEALTHY,
            message=f"Generation {state.generation} loaded",
            details=details,
        )
