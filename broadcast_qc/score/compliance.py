"""Penalty-based compliance mapping onto named broadcast standards."""
from __future__ import annotations

from collections import Counter
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from ..config.schema import ScoringConfig
from ..models.core import Confidence
from ..models.record import CategorySection, ComplianceReport, StandardCompliance, ViolationSummary
from ..models.violation import ViolationInstance
from .risk import SEVERITY_ORDER

STANDARDS: Tuple[str, ...] = (
    'ITU-R BT.1702',
    'Ofcom',
    'FCC PSE',
    'ATSC',
    'WCAG 2.x',
    'EBU R 103',
    'DVB',
)

# Standards that each violation type breaches. The photosensitivity
# standards cap general flashing at 3 Hz.
VIOLATION_STANDARDS: Dict[str, Tuple[str, ...]] = {
    'flash': ('ITU-R BT.1702', 'Ofcom', 'FCC PSE', 'ATSC', 'WCAG 2.x'),
    'red_flash': ('ITU-R BT.1702', 'Ofcom', 'FCC PSE', 'WCAG 2.x'),
    'luminance_range': ('EBU R 103',),
    'afd': ('ATSC', 'DVB'),
}

# Violation types each category can emit; a category that is not definitive
# leaves the standards behind these types unverified.
CATEGORY_VIOLATIONS: Dict[str, Tuple[str, ...]] = {
    'flash': ('flash',),
    'red_flash': ('red_flash',),
    'luminance': ('luminance_range',),
    'afd': ('afd',),
    'frame_rate': (),
}

_REASONS = {
    'flash': 'Exceeds general flash threshold of 3 Hz',
    'red_flash': 'Exceeds red flash threshold of 3 Hz',
    'luminance_range': 'Luma outside the broadcast legal range',
    'afd': 'Active Format Description signalling missing or invalid',
}


def compliance_level(score: float, *, config: Optional[ScoringConfig] = None) -> str:
    cfg = config or ScoringConfig()
    if score >= cfg.full_compliance_min:
        return 'full'
    if score >= cfg.partial_compliance_min:
        return 'partial'
    return 'non-compliant'


def compliance_score(types: Sequence[str], *, config: Optional[ScoringConfig] = None) -> float:
    """Start at 100 and subtract each violated type's penalty once."""

    cfg = config or ScoringConfig()
    score = 100.0
    for violation_type in sorted(set(types)):
        score -= cfg.penalties.get(violation_type, 0.0)
    return max(0.0, score)


def summarize_violations(violations: Sequence[ViolationInstance]) -> ViolationSummary:
    by_severity = {label: 0 for label in SEVERITY_ORDER if label != 'safe'}
    for violation in violations:
        by_severity[violation.severity] = by_severity.get(violation.severity, 0) + 1
    return ViolationSummary(
        total=len(violations),
        by_type=dict(Counter(violation.type for violation in violations)),
        by_severity=by_severity,
    )


def _coverage(sections: Mapping[str, CategorySection], standard: str) -> Tuple[int, Tuple[str, ...]]:
    """Return (sections checking `standard`, names of those that are not definitive)."""

    checked = 0
    names: List[str] = []
    for name, section in sections.items():
        types = CATEGORY_VIOLATIONS.get(name, ())
        if not any(standard in VIOLATION_STANDARDS.get(t, ()) for t in types):
            continue
        checked += 1
        if section.confidence is not Confidence.DEFINITIVE or not section.usable:
            names.append(name)
    return checked, tuple(sorted(names))


def map_compliance(
    violations: Sequence[ViolationInstance],
    *,
    sections: Mapping[str, CategorySection],
    config: Optional[ScoringConfig] = None,
) -> ComplianceReport:
    """Derive the compliance report from the violation set and section confidences."""

    cfg = config or ScoringConfig()
    types = [violation.type for violation in violations]
    score = compliance_score(types, config=cfg)

    standards: List[StandardCompliance] = []
    for standard in STANDARDS:
        reasons = tuple(
            _REASONS.get(violation_type, violation_type)
            for violation_type in sorted(set(types))
            if standard in VIOLATION_STANDARDS.get(violation_type, ())
        )
        checked, unverified = _coverage(sections, standard)
        if reasons:
            level = 'non-compliant'
        elif not checked:
            level = 'not-checked'
        elif unverified:
            level = 'unverified'
        else:
            level = 'full'
        standards.append(
            StandardCompliance(
                name=standard,
                compliant=not reasons,
                level=level,
                reasons=reasons,
                unverified_categories=unverified,
            )
        )

    if violations and score < cfg.rejection_below:
        certification = 'rejected'
    elif violations or any(entry.level == 'unverified' for entry in standards):
        certification = 'conditional'
    else:
        certification = 'certified'

    return ComplianceReport(
        score=score,
        level=compliance_level(score, config=cfg),
        certification_status=certification,
        standards=tuple(standards),
        summary=summarize_violations(violations),
        quality_metrics=cfg.quality_metrics(),
    )
