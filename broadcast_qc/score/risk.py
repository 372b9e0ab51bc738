"""Severity buckets and the weighted overall risk score."""
from __future__ import annotations

from typing import Dict, Mapping, Optional, Sequence

from ..config.schema import ScoringConfig
from ..models.record import RiskAssessment
from ..models.violation import ViolationInstance

SEVERITY_ORDER = ('safe', 'low', 'medium', 'high', 'extreme')


def severity_for_rate(rate: float, *, config: Optional[ScoringConfig] = None) -> str:
    """Map a flash rate (events per window) onto a severity bucket."""

    cfg = config or ScoringConfig()
    if rate <= 0:
        return 'safe'
    for threshold, label in cfg.severity_rate_breakpoints:
        if rate >= threshold:
            return label
    return 'low'


def risk_level_for_score(score: float, *, config: Optional[ScoringConfig] = None) -> str:
    cfg = config or ScoringConfig()
    if score <= 0:
        return 'safe'
    for threshold, label in cfg.risk_level_breakpoints:
        if score < threshold:
            return label
    return 'extreme'


def violation_risk(rate: float, *, weight: float) -> float:
    return max(0.0, min(100.0, rate * weight))


def category_risks(
    violations: Sequence[ViolationInstance],
    *,
    categories: Mapping[str, Sequence[str]],
) -> Dict[str, float]:
    """Risk per category: the highest risk among the violations it produced.

    `categories` maps each category with usable data to the violation types it
    can emit; categories without violations score zero.
    """

    scores: Dict[str, float] = {}
    for name, types in categories.items():
        relevant = [violation.risk_score for violation in violations if violation.type in types]
        scores[name] = max(relevant) if relevant else 0.0
    return scores


def overall_risk(scores: Mapping[str, float], *, config: Optional[ScoringConfig] = None) -> float:
    """Combine category risks as `max_weight * max + avg_weight * mean`."""

    cfg = config or ScoringConfig()
    if not scores:
        return 0.0
    values = list(scores.values())
    combined = cfg.max_weight * max(values) + cfg.avg_weight * (sum(values) / len(values))
    return round(max(0.0, min(100.0, combined)), 2)


def assess_risk(
    violations: Sequence[ViolationInstance],
    *,
    categories: Mapping[str, Sequence[str]],
    config: Optional[ScoringConfig] = None,
) -> RiskAssessment:
    scores = category_risks(violations, categories=categories)
    overall = overall_risk(scores, config=config)
    return RiskAssessment(
        overall_score=overall,
        level=risk_level_for_score(overall, config=config),
        category_scores=scores,
    )
