"""
Prober Base Class — Interface for all probers.

A prober runs one reachability test against one target and always returns
a ProbeResult. The whole tick, retries included, is bounded by the target
timeout: when it expires the in-flight operation is cancelled (sockets are
closed, subprocesses killed) and a timeout result is returned. Only task
cancellation propagates to the caller.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from ..errors import ResolveError
from ..models.result import FailureReason, ProbeResult, classify_error
from ..models.target import ProbeKind, Target
from .resolver import Resolution, Resolver

logger = logging.getLogger(__name__)


class Prober(ABC):
    """
    Abstract base class for all probers.

    Subclasses implement _execute() for an already-resolved address and may
    raise any ordinary network exception from it.
    """

    # Pause between attempts when a target has retries configured
    RETRY_DELAY = 0.05

    def __init__(self, resolver: Optional[Resolver] = None, measure_dns: bool = True):
        self.resolver = resolver or Resolver()
        self.measure_dns = measure_dns

    @property
    @abstractmethod
    def kind(self) -> ProbeKind:
        """The probe kind this prober handles."""
        pass

    @abstractmethod
    async def _execute(
        self,
        target: Target,
        generation: int,
        timestamp: float,
        resolution: Resolution,
    ) -> ProbeResult:
        """Run one attempt against a resolved address."""
        pass

    def _resolve_host(self, target: Target) -> str:
        return target.host

    async def probe(self, target: Target, generation: int) -> ProbeResult:
        """
        Probe a target once, within its timeout.

        Args:
            target: Target to probe
            generation: Generation the tick was issued under

        Returns:
            ProbeResult (never raises for network conditions)
        """
        timestamp = time.time()
        attempts = 0

        async def run_attempts() -> ProbeResult:
            nonlocal attempts
            result = None
            for attempt in range(target.retries + 1):
                attempts += 1
                result = await self._attempt(target, generation, timestamp)
                if result.ok or attempt == target.retries:
                    break
                await asyncio.sleep(self.RETRY_DELAY)
            return result

        try:
            result = await asyncio.wait_for(run_attempts(), timeout=target.timeout)
        except asyncio.TimeoutError:
            result = ProbeResult.timed_out(target, generation, timestamp=timestamp)
        except Exception as e:
            logger.exception(f"Unexpected error probing {target.name}")
            result = ProbeResult.failure(
                target, generation, FailureReason.OTHER, detail=str(e), timestamp=timestamp
            )

        return dataclasses.replace(result, attempts=max(attempts, 1))

    async def _attempt(self, target: Target, generation: int, timestamp: float) -> ProbeResult:
        try:
            resolution = await self.resolver.resolve(self._resolve_host(target))
        except ResolveError as e:
            return ProbeResult.failure(
                target,
                generation,
                FailureReason.DNS,
                detail=str(e),
                timestamp=timestamp,
                resolve_time=e.elapsed if self.measure_dns else None,
                resolve_error=e.kind if self.measure_dns else None,
            )

        resolve_time = resolution.duration if self.measure_dns else None
        try:
            result = await self._execute(target, generation, timestamp, resolution)
        except (asyncio.CancelledError, asyncio.TimeoutError):
            raise
        except Exception as e:
            reason = classify_error(e)
            if reason == FailureReason.TIMEOUT:
                raise asyncio.TimeoutError() from e
            if reason == FailureReason.OTHER:
                logger.warning(f"Unclassified probe error for {target.name}: {e!r}")
            result = ProbeResult.failure(
                target,
                generation,
                reason,
                detail=str(e) or type(e).__name__,
                timestamp=timestamp,
                peer=resolution.address,
            )

        return dataclasses.replace(result, resolve_time=resolve_time)
