"""
Prober Registry — Lookup probers by probe kind.
"""

from __future__ import annotations

import logging
from typing import Dict, Optional

from ..config.models import DnsConfig
from ..models.target import ProbeKind
from .base import Prober
from .http import HttpProber
from .icmp import IcmpProber
from .resolver import Resolver
from .tcp import TcpProber

logger = logging.getLogger(__name__)


class ProberRegistry:
    """
    Registry for prober lookup by kind.

    All default probers share one resolver. Tests register their own
    probers over the defaults.
    """

    def __init__(self, dns: Optional[DnsConfig] = None, register_defaults: bool = True):
        self.dns = dns or DnsConfig()
        self.resolver = Resolver(timeout=self.dns.timeout_seconds)
        self.probers: Dict[ProbeKind, Prober] = {}

        if register_defaults:
            self._register_default_probers()

    def _register_default_probers(self) -> None:
        self.register(TcpProber(self.resolver, measure_dns=self.dns.measure))
        self.register(HttpProber(self.resolver, measure_dns=self.dns.measure))
        self.register(IcmpProber(self.resolver, measure_dns=self.dns.measure))

    def register(self, prober: Prober) -> None:
        """Register a prober for its kind, replacing any existing one."""
        self.probers[prober.kind] = prober
        logger.debug(f"Registered {type(prober).__name__} for {prober.kind.value}")

    def get(self, kind: ProbeKind) -> Prober:
        """
        Get the prober for a kind.

        Raises:
            KeyError: if no prober handles this kind
        """
        if kind not in self.probers:
            raise KeyError(f"No prober registered for kind: {kind.value}")
        return self.probers[kind]
