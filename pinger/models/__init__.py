"""
Models — Targets, generations, and probe results.
"""

from .health import HealthSnapshot, TargetStatus
from .result import FailureReason, Outcome, ProbeResult, classify_error
from .target import ProbeKind, Target, TargetRegistry

__all__ = [
    "ProbeKind",
    "Target",
    "TargetRegistry",
    "Outcome",
    "FailureReason",
    "ProbeResult",
    "classify_error",
    "TargetStatus",
    "HealthSnapshot",
]
