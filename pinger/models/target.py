"""
Target Model — Monitored endpoints and the generation that holds them.

A TargetRegistry is an immutable snapshot of the full target set. A
configuration reload never mutates a live registry; it produces a new one
with the next generation number, and the two are compared with diff().
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple


class ProbeKind(str, Enum):
    """Supported probe types."""
    ICMP = "icmp"
    TCP = "tcp"
    HTTP = "http"


@dataclass(frozen=True)
class Target:
    """A single monitored endpoint. Immutable after load."""

    name: str
    kind: ProbeKind
    host: str
    port: Optional[int] = None
    url: Optional[str] = None
    method: str = "HEAD"
    expected_status: Optional[FrozenSet[int]] = None
    interval: float = 10.0
    timeout: float = 2.0
    down_threshold: int = 3
    up_threshold: int = 1
    retries: int = 0
    verify_tls: bool = True

    @property
    def address(self) -> str:
        """Human-readable address used as a metric label."""
        if self.kind == ProbeKind.HTTP and self.url:
            return self.url
        if self.port is not None:
            if ":" in self.host:
                return f"[{self.host}]:{self.port}"
            return f"{self.host}:{self.port}"
        return self.host

    def labels(self) -> Dict[str, str]:
        return {
            "target": self.name,
            "kind": self.kind.value,
            "address": self.address,
        }


@dataclass(frozen=True)
class TargetRegistry:
    """
    One generation of the configured target set.

    Targets keep configuration order, which is also the order they are
    rendered in on /metrics.
    """

    generation: int
    targets: Tuple[Target, ...] = ()
    _by_name: Dict[str, Target] = field(default_factory=dict, init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_name: Dict[str, Target] = {}
        for target in self.targets:
            if target.name in by_name:
                raise ValueError(f"Duplicate target name in generation {self.generation}: {target.name}")
            by_name[target.name] = target
        object.__setattr__(self, "_by_name", by_name)

    @classmethod
    def empty(cls) -> "TargetRegistry":
        return cls(generation=0, targets=())

    def __iter__(self) -> Iterator[Target]:
        return iter(self.targets)

    def __len__(self) -> int:
        return len(self.targets)

    def __contains__(self, name: object) -> bool:
        return name in self._by_name

    def get(self, name: str) -> Optional[Target]:
        return self._by_name.get(name)

    def names(self) -> List[str]:
        return [t.name for t in self.targets]

    def diff(self, new: "TargetRegistry") -> Tuple[List[Target], List[Target], List[Target]]:
        """
        Compare this generation with a newer one.

        A target whose configuration changed under the same name is
        reported as removed (old version) and added (new version).

        Returns:
            (removed, added, unchanged) where unchanged holds the new
            generation's target objects
        """
        removed = [t for t in self.targets if new.get(t.name) != t]
        added = [t for t in new.targets if self.get(t.name) != t]
        unchanged = [t for t in new.targets if self.get(t.name) == t]
        return removed, added, unchanged
