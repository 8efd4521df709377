"""
Observability Module — Metrics, health checks, and exposition.
"""

from .health import ComponentHealth, ConfigState, HealthChecker, HealthStatus, SystemHealth
from .metrics import MetricsRegistry, TargetMetrics, TargetSnapshot
from .server import MetricsServer, create_app

__all__ = [
    "MetricsRegistry",
    "TargetMetrics",
    "TargetSnapshot",
    "HealthChecker",
    "HealthStatus",
    "SystemHealth",
    "ComponentHealth",
    "ConfigState",
    "MetricsServer",
    "create_app",
]
