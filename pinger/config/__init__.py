"""
Config Module — Configuration schema and loading.
"""

from .loader import build_registry, load_config, parse_config
from .models import (
    DnsConfig,
    FlappingConfig,
    MetricsConfig,
    OverrunPolicy,
    PingerConfig,
    SchedulerConfig,
    TargetConfig,
    TargetDefaults,
)

__all__ = [
    "load_config",
    "parse_config",
    "build_registry",
    "PingerConfig",
    "TargetConfig",
    "TargetDefaults",
    "FlappingConfig",
    "SchedulerConfig",
    "DnsConfig",
    "MetricsConfig",
    "OverrunPolicy",
]
