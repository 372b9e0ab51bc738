"""The analysis record and its per-category sections."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Tuple

from ..errors import ErrorKind
from .core import AnalysisRequest, Confidence, StreamDescriptor
from .violation import Recommendation, ViolationInstance


class RecordStatus(str, Enum):
    PENDING = 'Pending'
    RUNNING = 'Running'
    COMPLETED = 'Completed'
    PARTIAL_FAILURE = 'PartialFailure'
    FAILED = 'Failed'

    @property
    def is_terminal(self) -> bool:
        return self in (RecordStatus.COMPLETED, RecordStatus.PARTIAL_FAILURE, RecordStatus.FAILED)


_TRANSITIONS = {
    RecordStatus.PENDING: (RecordStatus.RUNNING, RecordStatus.FAILED),
    RecordStatus.RUNNING: (
        RecordStatus.COMPLETED,
        RecordStatus.PARTIAL_FAILURE,
        RecordStatus.FAILED,
    ),
}


def check_transition(current: RecordStatus, target: RecordStatus) -> None:
    """Raise ValueError unless `current -> target` is a legal lifecycle step."""

    if current.is_terminal:
        raise ValueError(f"Record is already {current.value}; no further transitions")
    if target not in _TRANSITIONS.get(current, ()):
        raise ValueError(f"Illegal record transition {current.value} -> {target.value}")


def _read_only(values: Mapping[str, Any]) -> Mapping[str, Any]:
    """Copy `values` into a view that rejects item assignment."""

    return MappingProxyType(dict(values))


class SectionStatus(str, Enum):
    OK = 'ok'
    DEGRADED = 'degraded'
    UNAVAILABLE = 'unavailable'


@dataclass(frozen=True)
class CategorySection:
    """Outcome of one category task, successful or not."""

    name: str
    status: SectionStatus
    confidence: Confidence
    mandatory: bool = False
    data: Any = None
    violations: Tuple[ViolationInstance, ...] = ()
    advisories: Tuple[str, ...] = ()
    diagnostics: Tuple[str, ...] = ()
    error_kind: Optional[ErrorKind] = None
    message: str = ''
    elapsed: float = 0.0

    @property
    def usable(self) -> bool:
        """Whether the section carries data that risk scoring can rely on."""

        return self.status is not SectionStatus.UNAVAILABLE and self.confidence is not Confidence.UNAVAILABLE


@dataclass(frozen=True)
class DegradedCategory:
    name: str
    status: SectionStatus
    error_kind: Optional[ErrorKind]
    message: str
    mandatory: bool


@dataclass(frozen=True)
class RiskAssessment:
    overall_score: float = 0.0
    level: str = 'safe'
    category_scores: Mapping[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'category_scores', _read_only(self.category_scores))


@dataclass(frozen=True)
class StandardCompliance:
    name: str
    compliant: bool
    level: str
    reasons: Tuple[str, ...] = ()
    unverified_categories: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ViolationSummary:
    total: int = 0
    by_type: Mapping[str, int] = field(default_factory=dict)
    by_severity: Mapping[str, int] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, 'by_type', _read_only(self.by_type))
        object.__setattr__(self, 'by_severity', _read_only(self.by_severity))


@dataclass(frozen=True)
class ComplianceReport:
    score: float = 100.0
    level: str = 'full'
    certification_status: str = 'certified'
    standards: Tuple[StandardCompliance, ...] = ()
    summary: ViolationSummary = field(default_factory=ViolationSummary)
    quality_metrics: Optional[Mapping[str, float]] = None

    def __post_init__(self) -> None:
        if self.quality_metrics is not None:
            object.__setattr__(self, 'quality_metrics', _read_only(self.quality_metrics))

    def standard(self, name: str) -> Optional[StandardCompliance]:
        for entry in self.standards:
            if entry.name == name:
                return entry
        return None


@dataclass(frozen=True)
class RecordError:
    kind: ErrorKind
    message: str


@dataclass(frozen=True)
class AnalysisRecord:
    """Top-level, immutable outcome of one analysis request."""

    request: AnalysisRequest
    status: RecordStatus
    sections: Mapping[str, CategorySection] = field(default_factory=lambda: MappingProxyType({}))
    violations: Tuple[ViolationInstance, ...] = ()
    risk: RiskAssessment = field(default_factory=RiskAssessment)
    compliance: Optional[ComplianceReport] = None
    recommendations: Tuple[Recommendation, ...] = ()
    degraded: Tuple[DegradedCategory, ...] = ()
    descriptor: Optional[StreamDescriptor] = None
    error: Optional[RecordError] = None
    started_at: Optional[float] = None
    finished_at: Optional[float] = None
    tasks_launched: int = 0

    @property
    def request_id(self) -> str:
        return self.request.request_id

    @property
    def elapsed(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return max(0.0, self.finished_at - self.started_at)
