"""
Probe Result Model — The outcome of one probe tick.

Every scheduled tick that actually runs produces exactly one ProbeResult,
regardless of success or failure. Network errors are never raised to the
scheduler; they are classified into a stable FailureReason tag.
"""

from __future__ import annotations

import errno
import socket
import ssl
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from ..errors import ResolveError
from .target import ProbeKind, Target


class Outcome(str, Enum):
    """Probe outcomes."""
    SUCCESS = "success"
    FAILURE = "failure"
    TIMEOUT = "timeout"


class FailureReason(str, Enum):
    """Stable failure tags, used as the `reason` label value."""
    TIMEOUT = "timeout"
    CONNECTION_REFUSED = "connection_refused"
    CONNECTION_RESET = "connection_reset"
    DNS = "dns"
    TLS = "tls"
    UNREACHABLE = "unreachable"
    BAD_STATUS = "bad_status"
    PROTOCOL = "protocol"
    OTHER = "other"


_UNREACHABLE_ERRNOS = {
    errno.ENETUNREACH,
    errno.EHOSTUNREACH,
    errno.ENETDOWN,
    errno.EHOSTDOWN,
    errno.EADDRNOTAVAIL,
}


@dataclass(frozen=True)
class ProbeResult:
    """Result of a single probe tick."""

    target: str
    kind: ProbeKind
    generation: int
    timestamp: float
    outcome: Outcome
    latency: Optional[float] = None
    reason: Optional[FailureReason] = None
    detail: str = ""
    status_code: Optional[int] = None
    resolve_time: Optional[float] = None
    resolve_error: Optional[str] = None
    peer: Optional[str] = None
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @classmethod
    def success(
        cls,
        target: Target,
        generation: int,
        latency: float,
        timestamp: Optional[float] = None,
        **extra,
    ) -> "ProbeResult":
        """Create a successful result."""
        return cls(
            target=target.name,
            kind=target.kind,
            generation=generation,
            timestamp=timestamp if timestamp is not None else time.time(),
            outcome=Outcome.SUCCESS,
            latency=latency,
            **extra,
        )

    @classmethod
    def failure(
        cls,
        target: Target,
        generation: int,
        reason: FailureReason,
        detail: str = "",
        timestamp: Optional[float] = None,
        **extra,
    ) -> "ProbeResult":
        """Create a failed result."""
        return cls(
            target=target.name,
            kind=target.kind,
            generation=generation,
            timestamp=timestamp if timestamp is not None else time.time(),
            outcome=Outcome.FAILURE,
            reason=reason,
            detail=detail,
            **extra,
        )

    @classmethod
    def timed_out(
        cls,
        target: Target,
        generation: int,
        timestamp: Optional[float] = None,
        **extra,
    ) -> "ProbeResult":
        """Create a timeout result."""
        return cls(
            target=target.name,
            kind=target.kind,
            generation=generation,
            timestamp=timestamp if timestamp is not None else time.time(),
            outcome=Outcome.TIMEOUT,
            reason=FailureReason.TIMEOUT,
            detail=f"no response within {target.timeout}s",
            **extra,
        )


def classify_error(exc: BaseException) -> FailureReason:
    """
    Map an ordinary network exception to a stable failure tag.

    Client libraries wrap the socket error that caused a failure, so the
    __cause__ / __context__ chain is walked until something recognisable
    turns up.
    """
    seen = set()
    current: Optional[BaseException] = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        reason = _classify_one(current)
        if reason is not None:
            return reason
        current = current.__cause__ or current.__context__

    name = type(exc).__name__
    if "Protocol" in name:
        return FailureReason.PROTOCOL
    if "Timeout" in name:
        return FailureReason.TIMEOUT
    return FailureReason.OTHER


def _classify_one(exc: BaseException) -> Optional[FailureReason]:
    if isinstance(exc, ResolveError):
        return FailureReason.DNS
    if isinstance(exc, socket.gaierror):
        return FailureReason.DNS
    if isinstance(exc, (ssl.SSLError, ssl.CertificateError)):
        return FailureReason.TLS
    if isinstance(exc, ConnectionRefusedError):
        return FailureReason.CONNECTION_REFUSED
    if isinstance(exc, (ConnectionResetError, ConnectionAbortedError, BrokenPipeError)):
        return FailureReason.CONNECTION_RESET
    if isinstance(exc, (TimeoutError, socket.timeout)):
        return FailureReason.TIMEOUT
    if isinstance(exc, OSError) and exc.errno in _UNREACHABLE_ERRNOS:
        return FailureReason.UNREACHABLE
    return None
