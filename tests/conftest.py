"""
Shared fixtures for pinger tests.

Provides target/registry factories, a fresh MetricsRegistry, and a
scriptable FakeProber so scheduler and tracker tests never touch the
network.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

import pytest

from pinger.models.result import FailureReason, ProbeResult
from pinger.models.target import ProbeKind, Target, TargetRegistry
from pinger.observability.metrics import MetricsRegistry
from pinger.probing.registry import ProberRegistry


def make_target(name: str = "db1", kind: ProbeKind = ProbeKind.TCP, **overrides) -> Target:
    """Build a Target with test-friendly defaults."""
    values = {
        "host": "127.0.0.1",
        "port": 5432 if kind == ProbeKind.TCP else None,
        "interval": 5.0,
        "timeout": 1.0,
        "down_threshold": 3,
    }
    if kind == ProbeKind.HTTP:
        values["url"] = f"http://127.0.0.1/{name}"
    values.update(overrides)
    return Target(name=name, kind=kind, **values)


def make_registry(*targets: Target, generation: int = 1) -> TargetRegistry:
    return TargetRegistry(generation=generation, targets=tuple(targets))


class FakeProber:
    """
    Prober stand-in driven by a script of outcomes.

    Each call pops the next outcome ("ok", "fail" or "hang"); when the
    script runs out `default` is used. `delay` is slept before answering.
    """

    def __init__(
        self,
        kind: ProbeKind = ProbeKind.TCP,
        script: Optional[List[str]] = None,
        default: str = "ok",
        delay: float = 0.0,
    ):
        self.kind = kind
        self.script: Deque[str] = deque(script or [])
        self.default = default
        self.delay = delay
        self.calls: List[tuple] = []
        self.started = 0
        self.finished = 0
        self.cancelled = 0
        self.active = 0
        self.max_active = 0

    async def probe(self, target: Target, generation: int) -> ProbeResult:
        self.calls.append((target.name, generation, time.monotonic()))
        self.started += 1
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        outcome = self.script.popleft() if self.script else self.default
        try:
            if outcome == "hang":
                await asyncio.sleep(3600)
            if self.delay:
                await asyncio.sleep(self.delay)
        except asyncio.CancelledError:
            self.cancelled += 1
            raise
        finally:
            self.active -= 1
        self.finished += 1
        if outcome == "ok":
            return ProbeResult.success(target, generation, latency=0.005)
        return ProbeResult.failure(target, generation, FailureReason.CONNECTION_REFUSED, detail="refused")


@pytest.fixture
def metrics() -> MetricsRegistry:
    return MetricsRegistry()


@pytest.fixture
def fake_prober() -> FakeProber:
    return FakeProber()


@pytest.fixture
def probers(fake_prober: FakeProber) -> ProberRegistry:
    registry = ProberRegistry(register_defaults=False)
    registry.register(fake_prober)
    return registry


@pytest.fixture
def write_config(tmp_path: Path):
    """Write a YAML config to tmp_path and return its path."""

    def _write(text: str, name: str = "pinger.yaml") -> Path:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return path

    return _write


VALID_CONFIG = """
defaults:
  interval_seconds: 10
  timeout_seconds: 2
targets:
  - name: db1
    kind: tcp
    host: 127.0.0.1
    port: 5432
    interval_seconds: 5
    timeout_seconds: 1
  - name: web
    kind: http
    url: https://example.com/
    method: get
    expected_status: [200, 204]
  - name: gateway
    kind: icmp
    host: 10.0.0.1
"""
