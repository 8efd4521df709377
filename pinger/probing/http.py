"""
HTTP Prober — Time an HTTP(S) request to response headers.

The host is resolved by our own resolver so DNS time and failures are
measured separately; the request then goes to the resolved IP with the
original Host header and TLS server name. Redirects are not followed and
the response body is never read.

## Status handling

Any response counts as success unless the target sets `expected_status`,
in which case other codes are a `bad_status` failure.
"""

from __future__ import annotations

import logging
import ssl
import time
from typing import Optional
from urllib.parse import urlsplit

import httpx

from .. import __version__
from ..models.result import FailureReason, ProbeResult
from ..models.target import ProbeKind, Target
from .base import Prober
from .resolver import Resolution, Resolver

logger = logging.getLogger(__name__)

USER_AGENT = f"pinger/{__version__}"


class HttpProber(Prober):
    """HTTP/HTTPS request probe using httpx."""

    def __init__(self, resolver: Optional[Resolver] = None, measure_dns: bool = True):
        super().__init__(resolver, measure_dns)
        self._verified_tls = ssl.create_default_context()
        self._unverified_tls = ssl.create_default_context()
        self._unverified_tls.check_hostname = False
        self._unverified_tls.verify_mode = ssl.CERT_NONE

    @property
    def kind(self) -> ProbeKind:
        return ProbeKind.HTTP

    def _resolve_host(self, target: Target) -> str:
        return urlsplit(target.url or "").hostname or target.host

    async def _execute(
        self,
        target: Target,
        generation: int,
        timestamp: float,
        resolution: Resolution,
    ) -> ProbeResult:
        parts = urlsplit(target.url)
        hostname = parts.hostname
        host_header = f"[{hostname}]" if ":" in hostname else hostname
        if parts.port is not None:
            host_header = f"{host_header}:{parts.port}"

        url = httpx.URL(target.url).copy_with(host=resolution.address)
        extensions = {}
        if parts.scheme == "https":
            extensions["sni_hostname"] = hostname

        async with httpx.AsyncClient(
            verify=self._verified_tls if target.verify_tls else self._unverified_tls,
            follow_redirects=False,
            timeout=httpx.Timeout(target.timeout),
            trust_env=False,
        ) as client:
            request = client.build_request(
                target.method,
                url,
                headers={"Host": host_header, "User-Agent": USER_AGENT},
                extensions=extensions,
            )
            begin = time.perf_counter()
            response = await client.send(request, stream=True)
            latency = time.perf_counter() - begin
            await response.aclose()

        status = response.status_code
        logger.debug(f"HTTP {target.method} {target.url} -> {status} in {latency * 1000:.1f}ms")

        if target.expected_status and status not in target.expected_status:
            return ProbeResult.failure(
                target,
                generation,
                FailureReason.BAD_STATUS,
                detail=f"unexpected status {status}",
                timestamp=timestamp,
                status_code=status,
                peer=resolution.address,
            )

        return ProbeResult.success(
            target,
            generation,
            latency,
            timestamp=timestamp,
            status_code=status,
            peer=resolution.address,
        )
