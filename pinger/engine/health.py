"""
Health Tracker — Per-target up/down state machine.

Consumes probe results and derives each target's status with hysteresis:

    unknown ──success──▶ up
    unknown ──failure──▶ down
    up ──down_threshold consecutive failures──▶ down
    down ──up_threshold consecutive successes──▶ up

A single transient failure never flips an up target. Targets that change
status more than K times within W seconds are flagged as flapping while
down; the up/down gauge itself is unaffected.

HealthState is owned here and never handed out; callers get frozen
HealthSnapshot copies, and every processed result updates exactly one
metrics entry.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from threading import Lock
from typing import Deque, Dict, Optional

from ..config.models import FlappingConfig
from ..models.health import HealthSnapshot, TargetStatus
from ..models.result import ProbeResult
from ..models.target import Target, TargetRegistry
from ..observability.metrics import MetricsRegistry

logger = logging.getLogger(__name__)


@dataclass
class HealthState:
    """Mutable per-target record. Only touched under its own lock."""

    target: Target
    history: Deque[bool]
    status: TargetStatus = TargetStatus.UNKNOWN
    consecutive_successes: int = 0
    consecutive_failures: int = 0
    transitions: int = 0
    last_transition_at: Optional[float] = None
    flapping: bool = False
    transition_times: Deque[float] = field(default_factory=deque)
    lock: Lock = field(default_factory=Lock, repr=False, compare=False)

    @classmethod
    def new(cls, target: Target, history_size: int) -> "HealthState":
        return cls(target=target, history=deque(maxlen=history_size))

    def snapshot(self, changed: bool = False) -> HealthSnapshot:
        ratio = sum(self.history) / len(self.history) if self.history else 0.0
        return HealthSnapshot(
            target=self.target.name,
            status=self.status,
            consecutive_successes=self.consecutive_successes,
            consecutive_failures=self.consecutive_failures,
            transitions=self.transitions,
            last_transition_at=self.last_transition_at,
            flapping=self.flapping,
            success_ratio=ratio,
            changed=changed,
        )


class HealthTracker:
    """
    Fold probe results into per-target health and publish to metrics.

    Results whose generation is not the active one are dropped, as are
    results for targets that are not part of it.
    """

    def __init__(
        self,
        metrics: MetricsRegistry,
        flapping: Optional[FlappingConfig] = None,
        event_logger: Optional[logging.Logger] = None,
    ):
        self.metrics = metrics
        self.flapping = flapping or FlappingConfig()
        self.events = event_logger or logger
        self._generation = 0
        self._states: Dict[str, HealthState] = {}
        self._lock = Lock()

    @property
    def generation(self) -> int:
        return self._generation

    def apply_generation(self, registry: TargetRegistry) -> None:
        """Adopt a new target generation, keeping state of unchanged targets."""
        with self._lock:
            states: Dict[str, HealthState] = {}
            for target in registry:
                existing = self._states.get(target.name)
                if existing is not None and existing.target == target:
                    states[target.name] = existing
                else:
                    states[target.name] = HealthState.new(target, self.flapping.history_size)
            self._states = states
            self._generation = registry.generation

    def process(self, result: ProbeResult) -> Optional[HealthSnapshot]:
        """
        Apply one probe result.

        Returns:
            The new HealthSnapshot, or None if the result was stale
        """
        if result.generation != self._generation:
            logger.debug(
                f"Dropping result for {result.target} from generation {result.generation} "
                f"(active: {self._generation})"
            )
            return None

        state = self._states.get(result.target)
        if state is None:
            logger.debug(f"Dropping result for unknown target {result.target}")
            return None

        with state.lock:
            snapshot = self._advance(state, result)
            self.metrics.record(result, snapshot)
        return snapshot

    def snapshot(self, name: str) -> Optional[HealthSnapshot]:
        state = self._states.get(name)
        if state is None:
            return None
        with state.lock:
            return state.snapshot()

    def statuses(self) -> Dict[str, TargetStatus]:
        return {name: state.status for name, state in self._states.items()}

    def _advance(self, state: HealthState, result: ProbeResult) -> HealthSnapshot:
        target = state.target
        ok = result.ok
        now = result.timestamp

        state.history.append(ok)
        if ok:
            state.consecutive_successes += 1
            state.consecutive_failures = 0
        else:
            state.consecutive_failures += 1
            state.consecutive_successes = 0

        previous = state.status
        status = previous
        if previous == TargetStatus.UNKNOWN:
            status = TargetStatus.UP if ok else TargetStatus.DOWN
        elif previous == TargetStatus.UP and state.consecutive_failures >= target.down_threshold:
            status = TargetStatus.DOWN
        elif previous == TargetStatus.DOWN and state.consecutive_successes >= target.up_threshold:
            status = TargetStatus.UP

        changed = status != previous
        if changed:
            state.status = status
            state.transitions += 1
            state.last_transition_at = now
            state.transition_times.append(now)
            self._log_transition(state, previous, result)

        window_start = now - self.flapping.window_seconds
        while state.transition_times and state.transition_times[0] < window_start:
            state.transition_times.popleft()

        flapping = (
            state.status == TargetStatus.DOWN
            and len(state.transition_times) > self.flapping.transitions
        )
        if flapping and not state.flapping:
            self.events.warning(
                f"Target {target.name} is flapping "
                f"({len(state.transition_times)} transitions in {self.flapping.window_seconds:.0f}s)",
                extra={"event": "flapping", "target": target.name, "generation": result.generation},
            )
        state.flapping = flapping

        return state.snapshot(changed=changed)

    def _log_transition(self, state: HealthState, previous: TargetStatus, result: ProbeResult) -> None:
        level = logging.WARNING if state.status == TargetStatus.DOWN else logging.INFO
        detail = f" ({result.reason.value}: {result.detail})" if result.reason else ""
        self.events.log(
            level,
            f"Target {state.target.name}: {previous.value} → {state.status.value}{detail}",
            extra={
                "event": "transition",
                "target": state.target.name,
                "generation": result.generation,
                "previous_status": previous.value,
                "status": state.status.value,
            },
        )
