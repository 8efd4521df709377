"""
Tests for the scheduler: per-target loops, overruns, reload and shutdown.

Intervals are tens of milliseconds so the suite stays fast; assertions
leave generous slack for slow CI machines.
"""

from __future__ import annotations

import asyncio
import time

import pytest

from conftest import FakeProber, make_registry, make_target
from pinger.config.models import OverrunPolicy
from pinger.engine.health import HealthTracker
from pinger.engine.scheduler import Scheduler, probe_all
from pinger.errors import SchedulerError
from pinger.models.health import TargetStatus
from pinger.models.target import ProbeKind
from pinger.probing.registry import ProberRegistry


def make_scheduler(metrics, probers, **kwargs) -> Scheduler:
    return Scheduler(HealthTracker(metrics), metrics, probers, **kwargs)


class TestLoops:
    """Tests for the per-target timing loops."""

    @pytest.mark.asyncio
    async def test_one_loop_per_target(self, metrics, probers, fake_prober):
        targets = [make_target(f"t{i}", interval=0.05) for i in range(3)]
        scheduler = make_scheduler(metrics, probers)

        await scheduler.start(make_registry(*targets))
        await asyncio.sleep(0.28)
        await scheduler.shutdown()

        for target in targets:
            calls = [c for c in fake_prober.calls if c[0] == target.name]
            assert len(calls) >= 3

    @pytest.mark.asyncio
    async def test_results_reach_metrics(self, metrics, probers):
        scheduler = make_scheduler(metrics, probers)

        await scheduler.start(make_registry(make_target(interval=0.05)))
        await asyncio.sleep(0.12)
        await scheduler.shutdown()

        snap = metrics.snapshot("db1")
        assert snap.probes_total >= 2
        assert snap.status == TargetStatus.UP

    @pytest.mark.asyncio
    async def test_ticks_do_not_drift(self, metrics):
        """Probe latency does not push later ticks back."""
        prober = FakeProber(delay=0.03)
        probers = ProberRegistry(register_defaults=False)
        probers.register(prober)
        scheduler = make_scheduler(metrics, probers)

        await scheduler.start(make_registry(make_target(interval=0.1)))
        await asyncio.sleep(0.55)
        await scheduler.shutdown()

        starts = [c[2] for c in prober.calls]
        assert len(starts) >= 5
        n = len(starts) - 1
        assert abs((starts[n] - starts[0]) - n * 0.1) < 0.06

    @pytest.mark.asyncio
    async def test_slow_target_does_not_block_others(self, metrics):
        slow = FakeProber(kind=ProbeKind.HTTP, default="hang")
        fast = FakeProber(kind=ProbeKind.TCP)
        probers = ProberRegistry(register_defaults=False)
        probers.register(slow)
        probers.register(fast)
        scheduler = make_scheduler(metrics, probers)

        await scheduler.start(make_registry(
            make_target("web", ProbeKind.HTTP, interval=0.05),
            make_target("db1", interval=0.05),
        ))
        await asyncio.sleep(0.28)
        await scheduler.shutdown(grace=0)

        assert fast.finished >= 4
        assert slow.finished == 0


class TestOverrun:
    """Tests for the skip and delay overrun policies."""

    @pytest.mark.asyncio
    async def test_skip_counts_missed_ticks(self, metrics):
        prober = FakeProber(delay=0.25)
        probers = ProberRegistry(register_defaults=False)
        probers.register(prober)
        scheduler = make_scheduler(metrics, probers, overrun_policy=OverrunPolicy.SKIP)

        await scheduler.start(make_registry(make_target(interval=0.1)))
        await asyncio.sleep(0.45)
        loop = scheduler.loops["db1"]
        await scheduler.shutdown(grace=0)

        assert prober.max_active == 1
        assert loop.skipped >= 2
        assert metrics.snapshot("db1").skipped == loop.skipped
        assert "pinger_probes_skipped_total{" in metrics.render()

    @pytest.mark.asyncio
    async def test_delay_waits_for_running_probe(self, metrics):
        prober = FakeProber(delay=0.15)
        probers = ProberRegistry(register_defaults=False)
        probers.register(prober)
        scheduler = make_scheduler(metrics, probers, overrun_policy=OverrunPolicy.DELAY)

        await scheduler.start(make_registry(make_target(interval=0.1)))
        await asyncio.sleep(0.5)
        loop = scheduler.loops["db1"]
        await scheduler.shutdown(grace=0)

        assert prober.max_active == 1
        assert loop.delayed >= 1
        assert metrics.snapshot("db1").delayed == loop.delayed
        assert prober.started >= 3

    @pytest.mark.asyncio
    async def test_skipped_ticks_logged(self, metrics, caplog):
        prober = FakeProber(delay=0.2)
        probers = ProberRegistry(register_defaults=False)
        probers.register(prober)
        scheduler = make_scheduler(metrics, probers)

        await scheduler.start(make_registry(make_target(interval=0.08)))
        await asyncio.sleep(0.2)
        await scheduler.shutdown(grace=0)

        skipped = [r for r in caplog.records if getattr(r, "event", None) == "probe_skipped"]
        assert skipped
        assert skipped[0].target == "db1"


class TestReload:
    """Tests for switching generations."""

    @pytest.mark.asyncio
    async def test_unchanged_loops_survive(self, metrics, probers, fake_prober):
        keep, drop = make_target("keep", interval=0.05), make_target("drop", interval=0.05)
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(keep, drop))
        await asyncio.sleep(0.07)
        keep_loop = scheduler.loops["keep"]

        await scheduler.apply(make_registry(keep, make_target("new", interval=0.05), generation=2))
        await asyncio.sleep(0.12)
        await scheduler.shutdown()

        assert scheduler.generation == 2
        assert keep_loop.generation == 2
        assert metrics.snapshot("drop") is None
        assert metrics.snapshot("keep").probes_total >= 3
        assert ("keep", 2) in {(c[0], c[1]) for c in fake_prober.calls}
        assert ("new", 2) in {(c[0], c[1]) for c in fake_prober.calls}

    @pytest.mark.asyncio
    async def test_loop_table_after_reload(self, metrics, probers):
        keep = make_target("keep", interval=0.05)
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(keep, make_target("drop", interval=0.05)))
        keep_loop = scheduler.loops["keep"]

        await scheduler.apply(make_registry(keep, make_target("new", interval=0.05), generation=2))

        assert set(scheduler.loops) == {"keep", "new"}
        assert scheduler.loops["keep"] is keep_loop
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_changed_target_restarts(self, metrics, probers):
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target(interval=0.05)))
        old_loop = scheduler.loops["db1"]

        await scheduler.apply(make_registry(make_target(interval=0.06), generation=2))

        assert scheduler.loops["db1"] is not old_loop
        assert not old_loop.running
        assert scheduler.loops["db1"].target.interval == 0.06
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_removed_target_probe_cancelled(self, metrics):
        prober = FakeProber(default="hang")
        probers = ProberRegistry(register_defaults=False)
        probers.register(prober)
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target("gone", interval=1.0)))
        await asyncio.sleep(0.05)

        begin = time.monotonic()
        await scheduler.apply(make_registry(generation=2))

        assert time.monotonic() - begin < 0.5
        assert prober.cancelled == 1
        assert scheduler.loops == {}
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_stale_generation_rejected(self, metrics, probers):
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target(), generation=3))

        with pytest.raises(SchedulerError):
            await scheduler.apply(make_registry(make_target("other"), generation=3))

        assert set(scheduler.loops) == {"db1"}
        await scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_missing_prober_leaves_generation_active(self, metrics, probers):
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target()))

        with pytest.raises(SchedulerError):
            await scheduler.apply(make_registry(
                make_target(), make_target("gw", ProbeKind.ICMP), generation=2,
            ))

        assert scheduler.generation == 1
        assert set(scheduler.loops) == {"db1"}
        await scheduler.shutdown()


class TestShutdown:
    """Tests for graceful shutdown."""

    @pytest.mark.asyncio
    async def test_grace_cancels_hung_probes(self, metrics):
        prober = FakeProber(default="hang")
        probers = ProberRegistry(register_defaults=False)
        probers.register(prober)
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target("a"), make_target("b")))
        await asyncio.sleep(0.05)

        begin = time.monotonic()
        await scheduler.shutdown(grace=0.2)
        elapsed = time.monotonic() - begin

        assert 0.15 <= elapsed < 1.0
        assert prober.cancelled == 2
        assert not scheduler.running
        assert scheduler.loops == {}

    @pytest.mark.asyncio
    async def test_inflight_probe_finishes_within_grace(self, metrics):
        prober = FakeProber(delay=0.1)
        probers = ProberRegistry(register_defaults=False)
        probers.register(prober)
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target(interval=10.0)))
        await asyncio.sleep(0.02)

        await scheduler.shutdown(grace=2.0)

        assert prober.cancelled == 0
        assert prober.finished == 1
        assert metrics.snapshot("db1").probes_total == 1

    @pytest.mark.asyncio
    async def test_shutdown_is_idempotent(self, metrics, probers):
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target()))

        await scheduler.shutdown()
        await scheduler.shutdown()

        with pytest.raises(SchedulerError):
            await scheduler.apply(make_registry(make_target(), generation=2))

    @pytest.mark.asyncio
    async def test_start_twice(self, metrics, probers):
        scheduler = make_scheduler(metrics, probers)
        await scheduler.start(make_registry(make_target()))

        with pytest.raises(SchedulerError):
            await scheduler.start(make_registry(make_target(), generation=2))
        await scheduler.shutdown()


class TestProbeAll:
    """Tests for one-shot probing."""

    @pytest.mark.asyncio
    async def test_results_in_config_order(self, probers):
        registry = make_registry(make_target("b"), make_target("a"), generation=5)

        results = await probe_all(registry, probers)

        assert [r.target for r in results] == ["b", "a"]
        assert all(r.generation == 5 for r in results)
