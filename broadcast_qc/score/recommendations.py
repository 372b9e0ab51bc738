"""Remediation advice derived from violations and degraded categories."""
from __future__ import annotations

from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..config.schema import ScoringConfig
from ..models.record import CategorySection, SectionStatus
from ..models.violation import Recommendation, ViolationInstance

PRIORITY_ORDER = ('critical', 'high', 'medium', 'low')

# violation type -> (priority, kind, action, effectiveness)
_VIOLATION_ADVICE: Dict[str, Tuple[str, str, str, float]] = {
    'flash': (
        'high',
        'modification',
        'Reduce flash frequency to below 3 Hz or add viewer warnings',
        0.9,
    ),
    'red_flash': (
        'critical',
        'modification',
        'Eliminate or significantly reduce saturated red flash content',
        0.95,
    ),
    'luminance_range': (
        'medium',
        'modification',
        'Legalize luma to the broadcast range before delivery',
        0.85,
    ),
    'afd': (
        'low',
        'signalling',
        'Add or correct Active Format Description signalling',
        0.8,
    ),
}

_PHOTOSENSITIVITY_CATEGORIES = ('flash', 'red_flash')


def _from_violations(violations: Sequence[ViolationInstance]) -> Iterable[Recommendation]:
    for violation in violations:
        advice = _VIOLATION_ADVICE.get(violation.type)
        if advice is None:
            continue
        priority, kind, action, effectiveness = advice
        yield Recommendation(
            priority=priority,
            kind=kind,
            action=action,
            source=violation.type,
            effectiveness=effectiveness,
        )


def _from_sections(sections: Mapping[str, CategorySection]) -> Iterable[Recommendation]:
    for name, section in sections.items():
        if section.status is not SectionStatus.OK:
            kind = section.error_kind.value if section.error_kind else 'unknown error'
            yield Recommendation(
                priority='high' if section.mandatory else 'medium',
                kind='review',
                action=f"Re-run or manually review '{name}': result {section.status.value} ({kind})",
                source=name,
            )
        for advisory in section.advisories:
            yield Recommendation(priority='low', kind='advisory', action=advisory, source=name)


def build_recommendations(
    violations: Sequence[ViolationInstance],
    *,
    sections: Mapping[str, CategorySection],
    overall_risk: float,
    config: Optional[ScoringConfig] = None,
) -> Tuple[Recommendation, ...]:
    """Deduplicated recommendations, most urgent first."""

    cfg = config or ScoringConfig()
    candidates: List[Recommendation] = list(_from_violations(violations))
    if overall_risk > cfg.warning_risk_above:
        candidates.append(
            Recommendation(
                priority='high',
                kind='warning',
                action='Add photosensitive epilepsy warning before content',
                source='risk',
                effectiveness=0.7,
            )
        )
    candidates.extend(_from_sections(sections))
    if any(name in sections for name in _PHOTOSENSITIVITY_CATEGORIES):
        candidates.append(
            Recommendation(
                priority='low',
                kind='guidance',
                action='Provide safe viewing distance recommendations',
                source='risk',
                effectiveness=0.5,
            )
        )

    unique: Dict[Tuple[str, str], Recommendation] = {}
    for item in candidates:
        key = (item.kind, item.action)
        current = unique.get(key)
        if current is None or PRIORITY_ORDER.index(item.priority) < PRIORITY_ORDER.index(current.priority):
            unique[key] = item
    return tuple(
        sorted(unique.values(), key=lambda item: (PRIORITY_ORDER.index(item.priority), item.action))
    )
