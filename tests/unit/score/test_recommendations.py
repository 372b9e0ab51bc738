"""Tests for recommendation building."""
from __future__ import annotations

from broadcast_qc.errors import ErrorKind
from broadcast_qc.models.core import Confidence
from broadcast_qc.models.record import CategorySection, SectionStatus
from broadcast_qc.models.violation import ViolationInstance
from broadcast_qc.score.recommendations import build_recommendations


def _violation(kind: str, start: float = 0.0) -> ViolationInstance:
    return ViolationInstance(type=kind, severity='high', start_time=start, end_time=start + 1, risk_score=60.0)


def _ok(name: str) -> CategorySection:
    return CategorySection(name=name, status=SectionStatus.OK, confidence=Confidence.DEFINITIVE)


def test_build_recommendations_orders_by_priority() -> None:
    recs = build_recommendations(
        [_violation('flash'), _violation('red_flash'), _violation('afd')],
        sections={'flash': _ok('flash'), 'red_flash': _ok('red_flash'), 'afd': _ok('afd')},
        overall_risk=0.0,
    )

    priorities = [rec.priority for rec in recs]
    assert priorities == sorted(priorities, key=['critical', 'high', 'medium', 'low'].index)
    assert recs[0].source == 'red_flash'
    assert recs[0].priority == 'critical'


def test_build_recommendations_deduplicates() -> None:
    recs = build_recommendations(
        [_violation('flash', 0.0), _violation('flash', 5.0)],
        sections={'flash': _ok('flash')},
        overall_risk=0.0,
    )

    modifications = [rec for rec in recs if rec.kind == 'modification']
    assert len(modifications) == 1


def test_build_recommendations_adds_warning_above_risk_threshold() -> None:
    recs = build_recommendations([], sections={'flash': _ok('flash')}, overall_risk=31.0)

    assert any(rec.kind == 'warning' for rec in recs)
    assert any(rec.kind == 'guidance' for rec in recs)


def test_build_recommendations_no_warning_at_threshold() -> None:
    recs = build_recommendations([], sections={'luminance': _ok('luminance')}, overall_risk=30.0)

    assert recs == ()


def test_build_recommendations_reviews_degraded_sections() -> None:
    sections = {
        'flash': CategorySection(
            name='flash',
            status=SectionStatus.DEGRADED,
            confidence=Confidence.UNAVAILABLE,
            mandatory=True,
            error_kind=ErrorKind.TOOL_TIMEOUT,
        ),
        'afd': CategorySection(
            name='afd',
            status=SectionStatus.UNAVAILABLE,
            confidence=Confidence.UNAVAILABLE,
            error_kind=ErrorKind.MALFORMED_OUTPUT,
        ),
    }

    recs = build_recommendations([], sections=sections, overall_risk=0.0)

    reviews = {rec.source: rec for rec in recs if rec.kind == 'review'}
    assert reviews['flash'].priority == 'high'
    assert 'ToolTimeout' in reviews['flash'].action
    assert reviews['afd'].priority == 'medium'


def test_build_recommendations_carries_advisories() -> None:
    section = CategorySection(
        name='frame_rate',
        status=SectionStatus.OK,
        confidence=Confidence.DEFINITIVE,
        advisories=('Interlaced content detected - consider deinterlacing for modern viewing devices',),
    )

    recs = build_recommendations([], sections={'frame_rate': section}, overall_risk=0.0)

    assert [(rec.priority, rec.kind) for rec in recs] == [('low', 'advisory')]
