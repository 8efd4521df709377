"""
TCP Prober — Measure TCP connect time.

The connection is closed as soon as the handshake completes; nothing is
sent. Latency excludes DNS resolution, which is reported separately.
"""

from __future__ import annotations

import asyncio
import logging
import time

from ..models.result import ProbeResult
from ..models.target import ProbeKind, Target
from .base import Prober
from .resolver import Resolution

logger = logging.getLogger(__name__)


class TcpProber(Prober):
    """Connect-only TCP probe."""

    @property
    def kind(self) -> ProbeKind:
        return ProbeKind.TCP

    async def _execute(
        self,
        target: Target,
        generation: int,
        timestamp: float,
        resolution: Resolution,
    ) -> ProbeResult:
        begin = time.perf_counter()
        _, writer = await asyncio.open_connection(resolution.address, target.port)
        latency = time.perf_counter() - begin
        writer.close()
        try:
            await writer.wait_closed()
        except OSError:
            pass

        logger.debug(f"TCP {target.address} ({resolution.address}) connected in {latency * 1000:.1f}ms")
        return ProbeResult.success(
            target,
            generation,
            latency,
            timestamp=timestamp,
            peer=resolution.address,
        )
