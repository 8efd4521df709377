"""
Resolver — Timed, bounded DNS lookups for the probers.

Every probe resolves its host again so that DNS failures and latency are
observed per tick. Literal IP addresses skip the lookup.

Lookups run through `loop.getaddrinfo`, i.e. on the default executor. A
timed-out lookup stops the probe but not the worker thread, which stays
blocked until the system resolver gives up. During a long DNS outage
these threads pile up to the executor limit and further lookups queue
behind them; they still time out, so probes keep reporting `dns`
failures on schedule.
"""

from __future__ import annotations

import asyncio
import ipaddress
import logging
import socket
import time
from dataclasses import dataclass
from typing import Optional

from ..errors import ResolveError

logger = logging.getLogger(__name__)

_NO_RECORD_CODES = {
    getattr(socket, "EAI_NONAME", None),
    getattr(socket, "EAI_NODATA", None),
    getattr(socket, "EAI_ADDRFAMILY", None),
} - {None}


@dataclass(frozen=True)
class Resolution:
    """A resolved address and how long it took (None for literal IPs)."""

    address: str
    duration: Optional[float] = None


class Resolver:
    """Resolve hostnames through the event loop with a hard timeout."""

    def __init__(self, timeout: float = 2.0):
        self.timeout = timeout

    async def resolve(self, host: str) -> Resolution:
        """
        Resolve a host to its first address.

        Raises:
            ResolveError: with kind no_records, timeout or other
        """
        try:
            ipaddress.ip_address(host)
            return Resolution(address=host)
        except ValueError:
            pass

        loop = asyncio.get_running_loop()
        begin = time.perf_counter()
        try:
            infos = await asyncio.wait_for(
                loop.getaddrinfo(host, None, type=socket.SOCK_STREAM),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise ResolveError("timeout", host, elapsed=time.perf_counter() - begin)
        except socket.gaierror as e:
            kind = "no_records" if e.errno in _NO_RECORD_CODES else "other"
            raise ResolveError(kind, host, str(e), elapsed=time.perf_counter() - begin) from e

        elapsed = time.perf_counter() - begin
        if not infos:
            raise ResolveError("no_records", host, elapsed=elapsed)

        address = infos[0][4][0]
        logger.debug(f"Resolved {host} to {address} in {elapsed * 1000:.1f}ms")
        return Resolution(address=address, duration=elapsed)
