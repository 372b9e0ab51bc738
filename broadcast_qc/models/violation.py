"""Data structures describing threshold breaches and remediation advice."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class Evidence:
    """Single metric sample supporting a violation decision."""

    source: str
    metric: str
    value: float
    pts_time: float


@dataclass(frozen=True)
class ViolationInstance:
    """A recorded breach of a domain threshold, scoped to a time window."""

    type: str
    severity: str
    start_time: float
    end_time: float
    risk_score: float
    standards: Tuple[str, ...] = ()
    description: str = ''
    evidence: Tuple[Evidence, ...] = ()

    @property
    def duration(self) -> float:
        return max(0.0, self.end_time - self.start_time)


@dataclass(frozen=True)
class Recommendation:
    """A remediation step derived from violations or degraded categories."""

    priority: str
    kind: str
    action: str
    source: str
    effectiveness: Optional[float] = None
