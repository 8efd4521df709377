"""
Scheduler — One independent probe loop per target.

Each TargetLoop is an asyncio task that fires its target's probe every
`interval` seconds. Deadlines advance by exactly one interval from the
previous deadline (not from when the probe finished), so probe latency
never accumulates into drift.

## Overruns

At most one probe per target is in flight. When a tick arrives while the
previous probe is still running:

- skip (default): the tick is dropped and counted in probes_skipped_total
- delay: the tick waits for the running probe, then fires late and is
  counted in probes_delayed_total; ticks that pass meanwhile are skipped

## Reload and shutdown

apply() diffs the running generation against the new one. Removed or
changed targets have their loop cancelled (in-flight probe included) and
joined before new loops start; unchanged targets keep their loop and
state. shutdown() stops all loops, lets in-flight probes finish within the
grace period, then cancels them.

## Usage

    scheduler = Scheduler(tracker, metrics, ProberRegistry())
    await scheduler.start(registry)
    ...
    await scheduler.apply(new_registry)
    ...
    await scheduler.shutdown()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Dict, List, Optional

from ..config.models import OverrunPolicy
from ..errors import SchedulerError
from ..models.result import ProbeResult
from ..models.target import Target, TargetRegistry
from ..observability.metrics import MetricsRegistry
from ..probing.base import Prober
from ..probing.registry import ProberRegistry
from .health import HealthTracker

logger = logging.getLogger(__name__)


class TargetLoop:
    """The timing loop and the single in-flight probe of one target."""

    def __init__(
        self,
        target: Target,
        generation: int,
        prober: Prober,
        on_result: Callable[[ProbeResult], object],
        metrics: MetricsRegistry,
        policy: OverrunPolicy = OverrunPolicy.SKIP,
        event_logger: Optional[logging.Logger] = None,
    ):
        self.target = target
        self.generation = generation
        self.prober = prober
        self.policy = policy
        self._on_result = on_result
        self._metrics = metrics
        self._events = event_logger or logger

        self._task: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._stopping = False

        self.ticks = 0
        self.skipped = 0
        self.delayed = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def probing(self) -> bool:
        return self._inflight is not None and not self._inflight.done()

    def start(self) -> None:
        """Start the timing loop on the running event loop."""
        self._task = asyncio.create_task(self._run(), name=f"probe-loop:{self.target.name}")

    async def stop(self, grace: float = 0.0) -> None:
        """
        Stop ticking and join the loop.

        Args:
            grace: Seconds the in-flight probe may take to finish before it
                   is cancelled (0 cancels immediately)
        """
        self._stopping = True
        if self._task is not None:
            self._task.cancel()
            await asyncio.gather(self._task, return_exceptions=True)

        inflight = self._inflight
        if inflight is None or inflight.done():
            return
        if grace > 0:
            await asyncio.wait({inflight}, timeout=grace)
        if not inflight.done():
            inflight.cancel()
            await asyncio.gather(inflight, return_exceptions=True)
            logger.debug(f"Cancelled in-flight probe for {self.target.name}")

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        interval = self.target.interval
        deadline = loop.time()

        while not self._stopping:
            delay = deadline - loop.time()
            if delay > 0:
                await asyncio.sleep(delay)
            if self._stopping:
                break

            await self._tick()

            deadline += interval
            behind = loop.time() - deadline
            if behind >= interval:
                missed = int(behind // interval)
                deadline += missed * interval
                self._skip(missed, "scheduler fell behind")

    async def _tick(self) -> None:
        if self.probing:
            if self.policy == OverrunPolicy.SKIP:
                self._skip(1, "previous probe still running")
                return
            self.delayed += 1
            self._metrics.record_delayed(self.target.name)
            self._events.info(
                f"Delaying tick for {self.target.name}: previous probe still running",
                extra={"event": "probe_delayed", "target": self.target.name, "generation": self.generation},
            )
            await asyncio.wait({self._inflight})

        self.ticks += 1
        self._inflight = asyncio.create_task(
            self._probe(self.generation),
            name=f"probe:{self.target.name}:{self.ticks}",
        )

    async def _probe(self, generation: int) -> None:
        result = await self.prober.probe(self.target, generation)
        self._events.debug(
            f"Probe {self.target.name}: {result.outcome.value}"
            + (f" in {result.latency * 1000:.1f}ms" if result.latency is not None else "")
            + (f" ({result.reason.value})" if result.reason else ""),
            extra={
                "event": "probe_completed",
                "target": self.target.name,
                "generation": generation,
                "reason": result.reason.value if result.reason else None,
            },
        )
        try:
            self._on_result(result)
        except Exception:
            logger.exception(f"Failed to process probe result for {self.target.name}")

    def _skip(self, count: int, why: str) -> None:
        self.skipped += count
        self._metrics.record_skipped(self.target.name, count)
        self._events.warning(
            f"Skipped {count} tick(s) for {self.target.name}: {why}",
            extra={"event": "probe_skipped", "target": self.target.name, "generation": self.generation},
        )


class Scheduler:
    """
    Owns the set of target loops for the active generation.

    apply() and shutdown() are serialized; the loop table is only changed
    by them.
    """

    def __init__(
        self,
        tracker: HealthTracker,
        metrics: MetricsRegistry,
        probers: ProberRegistry,
        overrun_policy: OverrunPolicy = OverrunPolicy.SKIP,
        shutdown_grace: float = 5.0,
        event_logger: Optional[logging.Logger] = None,
    ):
        self.tracker = tracker
        self.metrics = metrics
        self.probers = probers
        self.overrun_policy = overrun_policy
        self.shutdown_grace = shutdown_grace
        self.events = event_logger or logger

        self._registry = TargetRegistry.empty()
        self._loops: Dict[str, TargetLoop] = {}
        self._lock: Optional[asyncio.Lock] = None
        self._started = False
        self._closed = False

    @property
    def registry(self) -> TargetRegistry:
        return self._registry

    @property
    def generation(self) -> int:
        return self._registry.generation

    @property
    def running(self) -> bool:
        return self._started and not self._closed

    @property
    def loops(self) -> Dict[str, TargetLoop]:
        return dict(self._loops)

    def _get_lock(self) -> asyncio.Lock:
        if self._lock is None:
            self._lock = asyncio.Lock()
        return self._lock

    async def start(self, registry: TargetRegistry) -> None:
        """
        Start one loop per target of the first generation.

        Raises:
            SchedulerError: if the loop set cannot be created
        """
        if self._started:
            raise SchedulerError("Scheduler already started")
        self._started = True
        await self.apply(registry)

    async def apply(self, registry: TargetRegistry) -> None:
        """Switch to a new target generation."""
        async with self._get_lock():
            if self._closed:
                raise SchedulerError("Scheduler is shut down")
            if registry.generation <= self._registry.generation:
                raise SchedulerError(
                    f"Generation {registry.generation} is not newer than {self._registry.generation}"
                )

            removed, added, unchanged = self._registry.diff(registry)

            probers: Dict[str, Prober] = {}
            for target in added:
                try:
                    probers[target.name] = self.probers.get(target.kind)
                except KeyError as e:
                    raise SchedulerError(f"Cannot start loop for {target.name}: {e}") from e

            stopping = [self._loops.pop(t.name) for t in removed if t.name in self._loops]
            if stopping:
                await asyncio.gather(*(loop.stop(grace=0) for loop in stopping))

            self.tracker.apply_generation(registry)
            self.metrics.apply_generation(registry)

            for target in unchanged:
                loop = self._loops[target.name]
                loop.target = target
                loop.generation = registry.generation

            try:
                for target in added:
                    loop = TargetLoop(
                        target,
                        registry.generation,
                        probers[target.name],
                        self.tracker.process,
                        self.metrics,
                        policy=self.overrun_policy,
                        event_logger=self.events,
                    )
                    loop.start()
                    self._loops[target.name] = loop
            except RuntimeError as e:
                raise SchedulerError(f"Cannot create probe loops: {e}") from e

            self._registry = registry
            self.events.info(
                f"Generation {registry.generation} active: {len(registry)} target(s) "
                f"(+{len(added)} -{len(removed)} ={len(unchanged)})",
                extra={"event": "reload", "generation": registry.generation},
            )

    async def shutdown(self, grace: Optional[float] = None) -> None:
        """Stop all loops; in-flight probes get `grace` seconds to finish."""
        async with self._get_lock():
            if self._closed:
                return
            self._closed = True
            grace = self.shutdown_grace if grace is None else grace

            loops = list(self._loops.values())
            self._loops.clear()
            if loops:
                await asyncio.gather(*(loop.stop(grace=grace) for loop in loops))
            logger.info(f"Scheduler stopped ({len(loops)} loop(s) joined)")


async def probe_all(registry: TargetRegistry, probers: ProberRegistry) -> List[ProbeResult]:
    """Probe every target once, concurrently, in configuration order."""
    return list(
        await asyncio.gather(
            *(probers.get(t.kind).probe(t, registry.generation) for t in registry)
        )
    )
