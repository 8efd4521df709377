"""
Engine Module — Probe scheduling and health tracking.
"""

from .health import HealthState, HealthTracker
from .scheduler import Scheduler, TargetLoop, probe_all

__all__ = [
    "HealthTracker",
    "HealthState",
    "Scheduler",
    "TargetLoop",
    "probe_all",
]
