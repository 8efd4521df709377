"""
Errors — Exception taxonomy for the daemon.

Per-probe network failures and timeouts are never raised past a prober;
they are folded into a ProbeResult. The exceptions here cover the cases
that are surfaced to the caller instead.

## Usage

    from pinger.errors import ConfigurationInvalid

    try:
        config = load_config(path)
    except ConfigurationInvalid as e:
        print(f"Config rejected: {e}")
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional, Union


class PingerError(Exception):
    """Base class for all daemon errors."""
    pass


class ConfigurationInvalid(PingerError):
    """Raised when a configuration file cannot be loaded or validated."""

    def __init__(
        self,
        message: str,
        path: Optional[Union[str, Path]] = None,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.path = str(path) if path is not None else None
        self.field = field
        self.details = details or {}
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        parts = []
        if self.path:
            parts.append(self.path)
        if self.field:
            parts.append(self.field)
        if parts:
            return f"{': '.join(parts)}: {self.message}"
        return self.message


class SchedulerError(PingerError):
    """Raised when the probe loop set cannot be created."""
    pass


class ResolveError(PingerError):
    """Raised by the resolver; kind is one of no_records, timeout, other."""

    def __init__(self, kind: str, host: str, message: str = "", elapsed: Optional[float] = None):
        self.kind = kind
        self.host = host
        self.elapsed = elapsed
        super().__init__(f"Failed to resolve {host} ({kind}){': ' + message if message else ''}")
