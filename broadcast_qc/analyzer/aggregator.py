"""Fold per-category sections into the final, immutable analysis record."""
from __future__ import annotations

import time
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional, Tuple

from ..config.schema import EngineConfig
from ..errors import ErrorKind
from ..models.core import AnalysisRequest, Confidence, StreamDescriptor
from ..models.record import (
    AnalysisRecord,
    CategorySection,
    DegradedCategory,
    RecordError,
    RecordStatus,
    SectionStatus,
)
from ..models.violation import ViolationInstance
from ..score.compliance import CATEGORY_VIOLATIONS, map_compliance
from ..score.recommendations import build_recommendations
from ..score.risk import assess_risk


def final_status(sections: Mapping[str, CategorySection]) -> RecordStatus:
    """Completed only when every mandatory section is ok and definitive."""

    for section in sections.values():
        if not section.mandatory:
            continue
        if section.status is not SectionStatus.OK or section.confidence is not Confidence.DEFINITIVE:
            return RecordStatus.PARTIAL_FAILURE
    return RecordStatus.COMPLETED


def _degraded(sections: Mapping[str, CategorySection]) -> List[DegradedCategory]:
    return [
        DegradedCategory(
            name=name,
            status=section.status,
            error_kind=section.error_kind,
            message=section.message,
            mandatory=section.mandatory,
        )
        for name, section in sections.items()
        if section.status is not SectionStatus.OK
    ]


def aggregate(
    request: AnalysisRequest,
    sections: Mapping[str, CategorySection],
    *,
    descriptor: Optional[StreamDescriptor],
    config: Optional[EngineConfig] = None,
    started_at: Optional[float] = None,
    finished_at: Optional[float] = None,
    tasks_launched: int = 0,
) -> AnalysisRecord:
    """Merge sections, then derive risk, compliance and recommendations from them.

    The result depends only on `sections`, so re-aggregating the same input
    yields an equal record.
    """

    cfg = config or EngineConfig()
    violations: List[ViolationInstance] = []
    for section in sections.values():
        violations.extend(section.violations)
    violations.sort(key=lambda violation: (violation.start_time, violation.type))

    usable: Dict[str, Tuple[str, ...]] = {
        name: CATEGORY_VIOLATIONS.get(name, ())
        for name, section in sections.items()
        if section.usable
    }
    risk = assess_risk(violations, categories=usable, config=cfg.scoring)
    compliance = map_compliance(violations, sections=sections, config=cfg.scoring)
    recommendations = build_recommendations(
        violations,
        sections=sections,
        overall_risk=risk.overall_score,
        config=cfg.scoring,
    )
    return AnalysisRecord(
        request=request,
        status=final_status(sections),
        sections=MappingProxyType(dict(sections)),
        violations=tuple(violations),
        risk=risk,
        compliance=compliance,
        recommendations=recommendations,
        degraded=tuple(_degraded(sections)),
        descriptor=descriptor,
        started_at=started_at,
        finished_at=time.time() if finished_at is None else finished_at,
        tasks_launched=tasks_launched,
    )


def failed_record(
    request: AnalysisRequest,
    *,
    kind: ErrorKind,
    message: str,
    descriptor: Optional[StreamDescriptor] = None,
    started_at: Optional[float] = None,
    tasks_launched: int = 0,
) -> AnalysisRecord:
    """A Failed record: no sections, no verdict, only the error."""

    return AnalysisRecord(
        request=request,
        status=RecordStatus.FAILED,
        descriptor=descriptor,
        error=RecordError(kind=kind, message=message),
        started_at=started_at,
        finished_at=time.time(),
        tasks_launched=tasks_launched,
    )
