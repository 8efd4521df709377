"""
ICMP Prober — Echo request via the system `ping` binary.

Raw ICMP sockets need elevated privileges, while the system ping is
usually setuid or capability-enabled, so one echo is delegated to it. The
child process is killed if the probe is cancelled or times out.

## Environment Variables

- PINGER_PING_COMMAND: ping binary to run (default: ping)
"""

from __future__ import annotations

import asyncio
import logging
import math
import os
import re
import time
from typing import List, Optional

from ..models.result import FailureReason, ProbeResult
from ..models.target import ProbeKind, Target
from .base import Prober
from .resolver import Resolution, Resolver

logger = logging.getLogger(__name__)

_RTT_PATTERN = re.compile(rb"time[=<]\s*([0-9.]+)\s*ms")


class IcmpProber(Prober):
    """Single ICMP echo probe."""

    def __init__(
        self,
        resolver: Optional[Resolver] = None,
        measure_dns: bool = True,
        command: Optional[str] = None,
    ):
        super().__init__(resolver, measure_dns)
        self.command = command or os.environ.get("PINGER_PING_COMMAND", "ping")

    @property
    def kind(self) -> ProbeKind:
        return ProbeKind.ICMP

    def build_command(self, address: str, timeout: float) -> List[str]:
        """Command line for one echo; -W takes whole seconds."""
        wait = max(1, math.ceil(timeout))
        return [self.command, "-c", "1", "-n", "-W", str(wait), address]

    async def _execute(
        self,
        target: Target,
        generation: int,
        timestamp: float,
        resolution: Resolution,
    ) -> ProbeResult:
        args = self.build_command(resolution.address, target.timeout)
        begin = time.perf_counter()
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await proc.communicate()
        finally:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass  # exited between the check and the kill
                await proc.wait()
        elapsed = time.perf_counter() - begin

        if proc.returncode != 0:
            output = (stderr or stdout).decode(errors="replace").strip()
            detail = output.splitlines()[-1] if output else f"ping exited with {proc.returncode}"
            return ProbeResult.failure(
                target,
                generation,
                FailureReason.UNREACHABLE,
                detail=detail,
                timestamp=timestamp,
                peer=resolution.address,
            )

        latency = parse_rtt(stdout)
        if latency is None:
            latency = elapsed

        logger.debug(f"ICMP {target.host} ({resolution.address}) replied in {latency * 1000:.2f}ms")
        return ProbeResult.success(
            target,
            generation,
            latency,
            timestamp=timestamp,
            peer=resolution.address,
        )


def parse_rtt(output: bytes) -> Optional[float]:
    """Extract the round-trip time in seconds from ping output."""
    match = _RTT_PATTERN.search(output)
    if not match:
        return None
    return float(match.group(1)) / 1000.0
