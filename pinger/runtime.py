"""
Daemon — Process root wiring config, scheduler, and exposition.

Owns the single MetricsRegistry, HealthTracker, Scheduler and
MetricsServer of a running daemon.

## Signals

- SIGHUP: reload the config file. An invalid file is logged and counted
  in config_reloads_total{result="failure"}; the running generation stays.
- SIGINT / SIGTERM: graceful shutdown. Probe loops stop, in-flight probes
  get the shutdown grace to finish, then the HTTP server drains and stops.

Only the targets (and their defaults) are reloadable. Metric prefix and
buckets, flapping, scheduler and DNS settings are read at startup.

## Usage

    daemon = PingerDaemon(Path("pinger.yaml"), bind="0.0.0.0", port=3000)
    asyncio.run(daemon.run())
"""

from __future__ import annotations

import asyncio
import logging
import signal
from pathlib import Path
from typing import Optional, Set

from .config.loader import build_registry, load_config
from .config.models import PingerConfig
from .engine.health import HealthTracker
from .engine.scheduler import Scheduler
from .errors import ConfigurationInvalid, SchedulerError
from .observability.health import ConfigState, HealthChecker
from .observability.metrics import MetricsRegistry
from .observability.server import MetricsServer, create_app
from .probing.registry import ProberRegistry

logger = logging.getLogger(__name__)

STATIC_SECTIONS = ("flapping", "scheduler", "dns", "metrics")


class PingerDaemon:
    """The long-running pinger process."""

    def __init__(
        self,
        config_path: Path,
        bind: str = "0.0.0.0",
        port: int = 3000,
        probers: Optional[ProberRegistry] = None,
    ):
        self.config_path = Path(config_path)
        self.bind = bind
        self.port = port
        self.config_state = ConfigState(path=self.config_path)

        # Startup config; reloads only replace the target generation
        self.config: Optional[PingerConfig] = None
        self.metrics: Optional[MetricsRegistry] = None
        self.tracker: Optional[HealthTracker] = None
        self.scheduler: Optional[Scheduler] = None
        self.server: Optional[MetricsServer] = None

        self._probers = probers
        self._stop_event: Optional[asyncio.Event] = None
        self._reload_lock: Optional[asyncio.Lock] = None
        self._reloads: Set[asyncio.Task] = set()
        self._signals: list = []

    async def start(self) -> None:
        """
        Load the config and bring up scheduler and server.

        Raises:
            ConfigurationInvalid: if the startup config is invalid
            SchedulerError: if the probe loops cannot be created
        """
        self._stop_event = asyncio.Event()
        self._reload_lock = asyncio.Lock()

        try:
            config = load_config(self.config_path)
        except ConfigurationInvalid as e:
            self.config_state.failed(str(e))
            logger.error(f"Invalid configuration: {e}", extra={"event": "config_invalid"})
            raise

        registry = build_registry(config, generation=1)
        self.config = config
        self.metrics = MetricsRegistry(
            prefix=config.metrics.prefix,
            buckets=config.metrics.latency_buckets,
        )
        self.tracker = HealthTracker(self.metrics, config.flapping)
        self.scheduler = Scheduler(
            self.tracker,
            self.metrics,
            self._probers or ProberRegistry(dns=config.dns),
            overrun_policy=config.scheduler.overrun_policy,
            shutdown_grace=config.scheduler.shutdown_grace_seconds,
        )

        await self.scheduler.start(registry)
        self.config_state.loaded(registry.generation)

        checker = HealthChecker(self.scheduler, self.metrics, self.config_state)
        try:
            self.server = MetricsServer(create_app(self.metrics, checker), self.bind, self.port)
        except OSError:
            await self.scheduler.shutdown(grace=0)
            raise
        self.server.start()

        self._install_signal_handlers()
        logger.info(f"Pinger started with {len(registry)} target(s) from {self.config_path}")

    async def run(self) -> None:
        """Start, then block until stop() is called or a stop signal arrives."""
        await self.start()
        try:
            await self._stop_event.wait()
        finally:
            await self.shutdown()

    def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()

    async def reload(self) -> bool:
        """
        Re-read the config file and switch to a new generation.

        Reloads run one at a time; a SIGHUP that arrives mid-reload waits
        and then builds the generation after the one just applied.

        Returns:
            True if the new generation is active
        """
        async with self._reload_lock:
            return await self._reload()

    async def _reload(self) -> bool:
        current = self.scheduler.generation
        logger.info(f"Reloading {self.config_path}", extra={"event": "reload", "generation": current})

        try:
            config = load_config(self.config_path)
            registry = build_registry(config, generation=current + 1)
            await self.scheduler.apply(registry)
        except (ConfigurationInvalid, SchedulerError) as e:
            logger.error(
                f"Reload rejected, keeping generation {current}: {e}",
                extra={"event": "config_invalid", "generation": current},
            )
            self.metrics.record_reload(False)
            self.config_state.failed(str(e))
            return False

        self._warn_static_changes(config)
        self.metrics.record_reload(True)
        self.config_state.loaded(registry.generation)
        return True

    async def shutdown(self) -> None:
        """Stop probing, then drain and stop the HTTP server."""
        grace = self.config.scheduler.shutdown_grace_seconds if self.config else 5.0
        logger.info(f"Shutting down (grace {grace:.1f}s)")

        self._remove_signal_handlers()
        for task in list(self._reloads):
            task.cancel()
        if self._reloads:
            await asyncio.gather(*self._reloads, return_exceptions=True)

        if self.scheduler is not None:
            await self.scheduler.shutdown(grace)
        if self.server is not None:
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, self.server.stop, grace)
            self.server = None

    # ── Signals ──────────────────────────────────────────────────

    def _install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        handlers = [
            (signal.SIGINT, self.stop),
            (signal.SIGTERM, self.stop),
        ]
        if hasattr(signal, "SIGHUP"):
            handlers.append((signal.SIGHUP, self._request_reload))

        for sig, handler in handlers:
            try:
                loop.add_signal_handler(sig, handler)
                self._signals.append(sig)
            except (NotImplementedError, RuntimeError):
                logger.debug(f"Signal handler for {sig.name} not supported here")

    def _remove_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in self._signals:
            loop.remove_signal_handler(sig)
        self._signals.clear()

    def _request_reload(self) -> None:
        task = asyncio.create_task(self.reload(), name="config-reload")
        self._reloads.add(task)
        task.add_done_callback(self._reloads.discard)

    def _warn_static_changes(self, config: PingerConfig) -> None:
        if self.config is None:
            return
        for section in STATIC_SECTIONS:
            if getattr(config, section) != getattr(self.config, section):
                logger.warning(f"Changes to '{section}' take effect on restart")
