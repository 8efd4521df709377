"""
Metrics — Per-target probe metrics with Prometheus exposition.

Each target owns one entry. Writers (the target's own probe pipeline)
serialize on the entry's lock and publish a brand-new immutable
TargetSnapshot by swapping a reference. Readers never lock: render()
grabs the current snapshot of every entry once, so a scrape sees each
target either before or after an update, never a mix.

## Usage

    from pinger.observability.metrics import MetricsRegistry

    metrics = MetricsRegistry(prefix="pinger")
    metrics.apply_generation(registry)

    metrics.record(result, health_snapshot)
    metrics.record_skipped("db1")

    # Export for Prometheus
    output = metrics.render()
"""

from __future__ import annotations

import bisect
import dataclasses
import logging
import math
from dataclasses import dataclass
from threading import Lock
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..models.health import HealthSnapshot, TargetStatus
from ..models.result import FailureReason, Outcome, ProbeResult
from ..models.target import ProbeKind, Target, TargetRegistry

logger = logging.getLogger(__name__)

DEFAULT_BUCKETS: Tuple[float, ...] = (
    0.0005, 0.001, 0.0025, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0,
)

FAILURE_REASONS: Tuple[FailureReason, ...] = tuple(FailureReason)
RESOLVE_ERRORS: Tuple[str, ...] = ("no_records", "timeout", "other")


@dataclass(frozen=True)
class HistogramSnapshot:
    """
    Immutable histogram state.

    counts holds one non-cumulative count per bucket plus a final +Inf
    overflow slot; rendering accumulates them.
    """

    buckets: Tuple[float, ...]
    counts: Tuple[int, ...]
    sum: float = 0.0
    count: int = 0

    @classmethod
    def empty(cls, buckets: Sequence[float]) -> "HistogramSnapshot":
        return cls(buckets=tuple(buckets), counts=(0,) * (len(buckets) + 1))

    def observe(self, value: float) -> "HistogramSnapshot":
        """Return a new snapshot with one more observation."""
        index = bisect.bisect_left(self.buckets, value)
        counts = list(self.counts)
        counts[index] += 1
        return HistogramSnapshot(
            buckets=self.buckets,
            counts=tuple(counts),
            sum=self.sum + value,
            count=self.count + 1,
        )

    def cumulative(self) -> List[Tuple[str, int]]:
        """(le, cumulative count) pairs, ending with +Inf."""
        points = []
        running = 0
        for bound, count in zip(self.buckets, self.counts):
            running += count
            points.append((_format_value(bound), running))
        points.append(("+Inf", self.count))
        return points


@dataclass(frozen=True)
class TargetSnapshot:
    """Everything exposed for one target at one point in time."""

    target: Target
    latency: HistogramSnapshot
    resolve: HistogramSnapshot
    probes_total: int = 0
    successes: int = 0
    failures: Tuple[int, ...] = (0,) * len(FAILURE_REASONS)
    resolve_failures: Tuple[int, ...] = (0,) * len(RESOLVE_ERRORS)
    skipped: int = 0
    delayed: int = 0
    status: TargetStatus = TargetStatus.UNKNOWN
    flapping: bool = False
    success_ratio: float = 0.0
    transitions: int = 0
    last_transition_at: Optional[float] = None
    last_latency: Optional[float] = None
    last_status_code: Optional[int] = None

    @classmethod
    def initial(cls, target: Target, buckets: Sequence[float]) -> "TargetSnapshot":
        return cls(
            target=target,
            latency=HistogramSnapshot.empty(buckets),
            resolve=HistogramSnapshot.empty(buckets),
        )

    @property
    def failures_total(self) -> int:
        return sum(self.failures)

    def failure_count(self, reason: FailureReason) -> int:
        return self.failures[FAILURE_REASONS.index(reason)]


@dataclass(frozen=True)
class ProcessSnapshot:
    """Process-level series not tied to a target."""

    generation: int = 0
    targets: int = 0
    reloads_succeeded: int = 0
    reloads_failed: int = 0


class TargetMetrics:
    """One target's metrics entry: a lock for writers, a snapshot for readers."""

    def __init__(self, target: Target, buckets: Sequence[float] = DEFAULT_BUCKETS):
        self.target = target
        self._lock = Lock()
        self._snapshot = TargetSnapshot.initial(target, buckets)

    @property
    def snapshot(self) -> TargetSnapshot:
        return self._snapshot

    def record(self, result: ProbeResult, health: Optional[HealthSnapshot] = None) -> TargetSnapshot:
        """Fold one probe result (and the health state it produced) into the entry."""
        with self._lock:
            current = self._snapshot
            changes = {"probes_total": current.probes_total + 1}

            if result.outcome == Outcome.SUCCESS:
                changes["successes"] = current.successes + 1
                if result.latency is not None:
                    changes["latency"] = current.latency.observe(result.latency)
                    changes["last_latency"] = result.latency
            else:
                reason = result.reason or (
                    FailureReason.TIMEOUT if result.outcome == Outcome.TIMEOUT else FailureReason.OTHER
                )
                failures = list(current.failures)
                failures[FAILURE_REASONS.index(reason)] += 1
                changes["failures"] = tuple(failures)
                changes["last_latency"] = self.target.timeout

            if result.status_code is not None:
                changes["last_status_code"] = result.status_code

            if result.resolve_time is not None:
                if result.resolve_error:
                    kind = result.resolve_error if result.resolve_error in RESOLVE_ERRORS else "other"
                    resolve_failures = list(current.resolve_failures)
                    resolve_failures[RESOLVE_ERRORS.index(kind)] += 1
                    changes["resolve_failures"] = tuple(resolve_failures)
                else:
                    changes["resolve"] = current.resolve.observe(result.resolve_time)

            if health is not None:
                changes.update(
                    status=health.status,
                    flapping=health.flapping,
                    success_ratio=health.success_ratio,
                    transitions=health.transitions,
                    last_transition_at=health.last_transition_at,
                )

            self._snapshot = dataclasses.replace(current, **changes)
            return self._snapshot

    def record_skipped(self, count: int = 1) -> None:
        with self._lock:
            self._snapshot = dataclasses.replace(self._snapshot, skipped=self._snapshot.skipped + count)

    def record_delayed(self, count: int = 1) -> None:
        with self._lock:
            self._snapshot = dataclasses.replace(self._snapshot, delayed=self._snapshot.delayed + count)


class MetricsRegistry:
    """
    Registry of per-target metrics entries.

    Owned by the process root and passed to whoever writes or renders;
    tests construct independent instances.
    """

    def __init__(self, prefix: str = "pinger", buckets: Optional[Sequence[float]] = None):
        self.prefix = prefix
        self.buckets: Tuple[float, ...] = tuple(buckets) if buckets else DEFAULT_BUCKETS
        self._entries: Dict[str, TargetMetrics] = {}
        self._process = ProcessSnapshot()
        self._lock = Lock()

    # ── Generation handling ──────────────────────────────────────

    def apply_generation(self, registry: TargetRegistry) -> None:
        """
        Swap in the entry table for a new target generation.

        Unchanged targets keep their entry (and counters); removed targets
        disappear; added targets start unknown and 0-valued.
        """
        with self._lock:
            entries: Dict[str, TargetMetrics] = {}
            for target in registry:
                existing = self._entries.get(target.name)
                if existing is not None and existing.target == target:
                    entries[target.name] = existing
                else:
                    entries[target.name] = TargetMetrics(target, self.buckets)
            self._entries = entries
            self._process = dataclasses.replace(
                self._process,
                generation=registry.generation,
                targets=len(registry),
            )

    def record_reload(self, success: bool) -> None:
        """Count a configuration reload attempt."""
        with self._lock:
            if success:
                self._process = dataclasses.replace(
                    self._process, reloads_succeeded=self._process.reloads_succeeded + 1
                )
            else:
                self._process = dataclasses.replace(
                    self._process, reloads_failed=self._process.reloads_failed + 1
                )

    # ── Writers ──────────────────────────────────────────────────

    def record(self, result: ProbeResult, health: Optional[HealthSnapshot] = None) -> bool:
        """Record a probe result. Returns False if the target is not current."""
        entry = self._entries.get(result.target)
        if entry is None:
            return False
        entry.record(result, health)
        return True

    def record_skipped(self, name: str, count: int = 1) -> bool:
        entry = self._entries.get(name)
        if entry is None:
            return False
        entry.record_skipped(count)
        return True

    def record_delayed(self, name: str, count: int = 1) -> bool:
        entry = self._entries.get(name)
        if entry is None:
            return False
        entry.record_delayed(count)
        return True

    # ── Readers ──────────────────────────────────────────────────

    @property
    def generation(self) -> int:
        return self._process.generation

    @property
    def process(self) -> ProcessSnapshot:
        return self._process

    def snapshot(self, name: str) -> Optional[TargetSnapshot]:
        entry = self._entries.get(name)
        return entry.snapshot if entry is not None else None

    def snapshots(self) -> List[TargetSnapshot]:
        """Current snapshot of every target, in configuration order."""
        entries = self._entries
        return [entry.snapshot for entry in entries.values()]

    def render(self) -> str:
        """Render all metrics in the Prometheus text exposition format."""
        snapshots = self.snapshots()
        process = self._process
        lines: List[str] = []

        # Counters
        self._family(lines, "probes_total", "counter", "Probes completed",
                     ((s, None, s.probes_total) for s in snapshots))
        self._family(lines, "probe_success_total", "counter", "Successful probes",
                     ((s, None, s.successes) for s in snapshots))
        self._family(lines, "probe_failures_total", "counter", "Failed probes by reason",
                     ((s, {"reason": reason.value}, count)
                      for s in snapshots
                      for reason, count in zip(FAILURE_REASONS, s.failures)))
        self._family(lines, "probes_skipped_total", "counter",
                     "Ticks skipped because the previous probe was still running",
                     ((s, None, s.skipped) for s in snapshots))
        self._family(lines, "probes_delayed_total", "counter",
                     "Ticks fired late because the previous probe was still running",
                     ((s, None, s.delayed) for s in snapshots))
        self._family(lines, "target_transitions_total", "counter", "Health status transitions",
                     ((s, None, s.transitions) for s in snapshots))
        self._family(lines, "resolve_failures_total", "counter", "DNS resolution failures by error",
                     ((s, {"error": error}, count)
                      for s in snapshots
                      for error, count in zip(RESOLVE_ERRORS, s.resolve_failures)))

        # Gauges
        self._family(lines, "target_up", "gauge", "Whether the target is up (1) or not (0)",
                     ((s, None, 1 if s.status == TargetStatus.UP else 0) for s in snapshots))
        self._family(lines, "target_status", "gauge", "Target status (0=unknown, 1=up, 2=down)",
                     ((s, None, s.status.gauge_value) for s in snapshots))
        self._family(lines, "target_flapping", "gauge", "Whether a down target is flapping",
                     ((s, None, 1 if s.flapping else 0) for s in snapshots))
        self._family(lines, "target_success_ratio", "gauge", "Success ratio over recent probes",
                     ((s, None, s.success_ratio) for s in snapshots))
        self._family(lines, "target_last_transition_timestamp_seconds", "gauge",
                     "Unix time of the last status transition",
                     ((s, None, s.last_transition_at or 0) for s in snapshots))
        self._family(lines, "probe_last_latency_seconds", "gauge",
                     "Latency of the last probe (the timeout on failure)",
                     ((s, None, s.last_latency or 0) for s in snapshots))
        self._family(lines, "http_last_status_code", "gauge", "HTTP status code of the last response",
                     ((s, None, s.last_status_code or 0)
                      for s in snapshots if s.target.kind == ProbeKind.HTTP))

        # Histograms
        self._histogram(lines, "probe_latency_seconds", "Probe latency",
                        ((s, s.latency) for s in snapshots))
        self._histogram(lines, "resolve_duration_seconds", "DNS resolution time",
                        ((s, s.resolve) for s in snapshots))

        # Process
        self._header(lines, "generation", "gauge", "Active configuration generation")
        lines.append(f"{self.prefix}_generation {process.generation}")
        self._header(lines, "targets", "gauge", "Configured targets")
        lines.append(f"{self.prefix}_targets {process.targets}")
        self._header(lines, "config_reloads_total", "counter", "Configuration reloads by result")
        lines.append(f'{self.prefix}_config_reloads_total{{result="success"}} {process.reloads_succeeded}')
        lines.append(f'{self.prefix}_config_reloads_total{{result="failure"}} {process.reloads_failed}')

        return "\n".join(lines) + "\n"

    def _header(self, lines: List[str], name: str, metric_type: str, help_text: str) -> None:
        full_name = f"{self.prefix}_{name}"
        lines.append(f"# HELP {full_name} {help_text}")
        lines.append(f"# TYPE {full_name} {metric_type}")

    def _family(
        self,
        lines: List[str],
        name: str,
        metric_type: str,
        help_text: str,
        points: Iterable[Tuple[TargetSnapshot, Optional[Dict[str, str]], float]],
    ) -> None:
        self._header(lines, name, metric_type, help_text)
        full_name = f"{self.prefix}_{name}"
        for snapshot, extra, value in points:
            labels = snapshot.target.labels()
            if extra:
                labels.update(extra)
            lines.append(f"{full_name}{_format_labels(labels)} {_format_value(value)}")

    def _histogram(
        self,
        lines: List[str],
        name: str,
        help_text: str,
        points: Iterable[Tuple[TargetSnapshot, HistogramSnapshot]],
    ) -> None:
        self._header(lines, name, "histogram", help_text)
        full_name = f"{self.prefix}_{name}"
        for snapshot, histogram in points:
            labels = snapshot.target.labels()
            for le, count in histogram.cumulative():
                bucket_labels = {**labels, "le": le}
                lines.append(f"{full_name}_bucket{_format_labels(bucket_labels)} {count}")
            label_str = _format_labels(labels)
            lines.append(f"{full_name}_sum{label_str} {_format_value(histogram.sum)}")
            lines.append(f"{full_name}_count{label_str} {histogram.count}")


def _escape(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _format_labels(labels: Dict[str, str]) -> str:
    """Format labels for Prometheus, keeping insertion order."""
    if not labels:
        return ""
    pairs = [f'{k}="{_escape(str(v))}"' for k, v in labels.items()]
    return "{" + ",".join(pairs) + "}"


def _format_value(value: float) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, int):
        return str(value)
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value.is_integer():
        return str(int(value))
    return repr(value)
