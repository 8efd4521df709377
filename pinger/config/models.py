"""
Config Models — Pydantic schemas for the daemon configuration file.

The file has one `targets` list plus optional sections:
- defaults: per-target fallbacks (interval, timeout, thresholds, retries)
- flapping: transition-rate detection window
- scheduler: overrun policy and shutdown grace
- dns: resolver timeout and whether resolve stats are recorded
- metrics: exposition prefix and latency buckets
"""

from __future__ import annotations

from enum import Enum
from typing import List, Optional
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator, model_validator

from ..models.target import ProbeKind

HTTP_METHODS = {"GET", "HEAD", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"}


class OverrunPolicy(str, Enum):
    """What to do when a tick arrives while the previous probe still runs."""
    SKIP = "skip"
    DELAY = "delay"


class TargetDefaults(BaseModel):
    """Fallback values applied to targets that do not set them."""

    interval_seconds: float = Field(default=10.0, gt=0)
    timeout_seconds: float = Field(default=2.0, gt=0)
    down_threshold: int = Field(default=3, ge=1)
    up_threshold: int = Field(default=1, ge=1)
    retries: int = Field(default=0, ge=0, le=10)


class TargetConfig(BaseModel):
    """One entry of the `targets` list."""

    name: str = Field(min_length=1)
    kind: ProbeKind
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    url: Optional[str] = None
    method: str = "HEAD"
    expected_status: Optional[List[int]] = None
    verify_tls: bool = True

    interval_seconds: Optional[float] = Field(default=None, gt=0)
    timeout_seconds: Optional[float] = Field(default=None, gt=0)
    down_threshold: Optional[int] = Field(default=None, ge=1)
    up_threshold: Optional[int] = Field(default=None, ge=1)
    retries: Optional[int] = Field(default=None, ge=0, le=10)

    @field_validator("method")
    @classmethod
    def _check_method(cls, value: str) -> str:
        method = value.strip().upper()
        if method not in HTTP_METHODS:
            raise ValueError(f"unsupported HTTP method: {value}")
        return method

    @field_validator("expected_status")
    @classmethod
    def _check_status(cls, value: Optional[List[int]]) -> Optional[List[int]]:
        if value is None:
            return value
        if not value:
            raise ValueError("expected_status must not be empty")
        for code in value:
            if not 100 <= code <= 599:
                raise ValueError(f"invalid HTTP status code: {code}")
        return value

    @model_validator(mode="after")
    def _check_kind_fields(self) -> "TargetConfig":
        if self.kind == ProbeKind.TCP:
            if not self.host or self.port is None:
                raise ValueError("tcp targets need both host and port")
        elif self.kind == ProbeKind.ICMP:
            if not self.host:
                raise ValueError("icmp targets need a host")
            if self.port is not None:
                raise ValueError("icmp targets do not take a port")
        elif self.kind == ProbeKind.HTTP:
            if not self.url:
                raise ValueError("http targets need a url")
            parts = urlsplit(self.url.strip())
            if parts.scheme not in ("http", "https"):
                raise ValueError(f"unsupported URL scheme: {parts.scheme or '(none)'}")
            if not parts.hostname:
                raise ValueError(f"host is missing in {self.url}")
            self.url = self.url.strip()
        return self


class FlappingConfig(BaseModel):
    """More than `transitions` transitions within `window_seconds` is flapping."""

    transitions: int = Field(default=4, ge=1)
    window_seconds: float = Field(default=300.0, gt=0)
    history_size: int = Field(default=20, ge=1)


class SchedulerConfig(BaseModel):
    overrun_policy: OverrunPolicy = OverrunPolicy.SKIP
    shutdown_grace_seconds: float = Field(default=5.0, ge=0)


class DnsConfig(BaseModel):
    timeout_seconds: float = Field(default=2.0, gt=0)
    measure: bool = True


class MetricsConfig(BaseModel):
    prefix: str = Field(default="pinger", pattern=r"^[a-zA-Z_][a-zA-Z0-9_]*$")
    latency_buckets: Optional[List[float]] = None

    @field_validator("latency_buckets")
    @classmethod
    def _check_buckets(cls, value: Optional[List[float]]) -> Optional[List[float]]:
        if value is None:
            return value
        if not value:
            raise ValueError("latency_buckets must not be empty")
        if any(b <= 0 for b in value):
            raise ValueError("latency_buckets must be positive")
        if list(value) != sorted(set(value)):
            raise ValueError("latency_buckets must be strictly increasing")
        return value


class PingerConfig(BaseModel):
    """The whole configuration file."""

    defaults: TargetDefaults = Field(default_factory=TargetDefaults)
    flapping: FlappingConfig = Field(default_factory=FlappingConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    dns: DnsConfig = Field(default_factory=DnsConfig)
    metrics: MetricsConfig = Field(default_factory=MetricsConfig)
    targets: List[TargetConfig] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_targets(self) -> "PingerConfig":
        seen = set()
        for entry in self.targets:
            if entry.name in seen:
                raise ValueError(f"duplicate target name: {entry.name}")
            seen.add(entry.name)

            interval = entry.interval_seconds or self.defaults.interval_seconds
            timeout = entry.timeout_seconds or self.defaults.timeout_seconds
            if timeout > interval:
                raise ValueError(
                    f"target {entry.name}: timeout ({timeout}s) exceeds interval ({interval}s)"
                )
        return self
