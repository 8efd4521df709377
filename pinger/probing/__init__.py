"""
Probing Module — Reachability and latency probes.
"""

from .base import Prober
from .http import HttpProber
from .icmp import IcmpProber
from .registry import ProberRegistry
from .resolver import Resolution, Resolver
from .tcp import TcpProber

__all__ = [
    "Prober",
    "ProberRegistry",
    "TcpProber",
    "HttpProber",
    "IcmpProber",
    "Resolver",
    "Resolution",
]
