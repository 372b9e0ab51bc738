"""Broadcast legal-range checks and average-luma statistics."""
from __future__ import annotations

from statistics import fmean, pstdev
from typing import List, Optional, Sequence, Tuple

from ..config.schema import DetectorConfig
from ..models.core import FrameSample
from ..models.events import LuminanceAnalysis
from ..models.violation import ViolationInstance
from ..score.compliance import VIOLATION_STANDARDS
from . import _span


def legal_range(luma_max: float, config: Optional[DetectorConfig] = None) -> Tuple[float, float]:
    """Scale the 8-bit legal range (16-235 by default) to the stream's bit depth."""

    cfg = config or DetectorConfig()
    scale = (luma_max + 1) / 256
    return cfg.legal_min_8bit * scale, cfg.legal_max_8bit * scale


def _severity(excursion: float) -> str:
    if excursion >= 20:
        return 'high'
    if excursion >= 10:
        return 'medium'
    return 'low'


def detect_range_violations(
    samples: Sequence[FrameSample],
    *,
    duration: float,
    luma_max: float = 255.0,
    config: Optional[DetectorConfig] = None,
) -> List[ViolationInstance]:
    """Spans where YMAX rises above legal white or YMIN drops below legal black."""

    cfg = config or DetectorConfig()
    if not samples or duration <= 0:
        return []
    lo, hi = legal_range(luma_max, cfg)
    scale = (luma_max + 1) / 256
    frame_step = _span.estimate_frame_step(samples, fallback=1 / 30.0)

    checks = (
        (
            'luminance.super_white',
            'YMAX',
            lambda sample: sample.luminance_max,
            lambda value: value > hi,
            _span.max_by_value,
            lambda value: value - hi,
        ),
        (
            'luminance.sub_black',
            'YMIN',
            lambda sample: sample.luminance_min,
            lambda value: value < lo,
            _span.min_by_value,
            lambda value: lo - value,
        ),
    )
    violations: List[ViolationInstance] = []
    for kind, metric_name, getter, predicate, selector, excursion_of in checks:
        spans = _span.find_spans(
            samples,
            value_getter=getter,
            predicate=predicate,
            min_duration=cfg.min_luminance_span,
            frame_step=frame_step,
            metric_name=metric_name,
            extreme_selector=selector,
        )
        for start, end, evidence in spans:
            excursion = excursion_of(evidence.value) / scale
            violations.append(
                ViolationInstance(
                    type='luminance_range',
                    severity=_severity(excursion),
                    start_time=min(start, duration),
                    end_time=min(end, duration),
                    risk_score=min(40.0, excursion * 2),
                    standards=VIOLATION_STANDARDS['luminance_range'],
                    description=f"{kind}: {metric_name} {evidence.value:g} outside {lo:g}-{hi:g}",
                    evidence=(evidence,),
                )
            )
    violations.sort(key=lambda violation: violation.start_time)
    return violations


def luminance_statistics(
    samples: Sequence[FrameSample],
    *,
    luma_max: float = 255.0,
    config: Optional[DetectorConfig] = None,
    violations: Sequence[ViolationInstance] = (),
) -> LuminanceAnalysis:
    lo, hi = legal_range(luma_max, config)
    values = [sample.luminance_avg for sample in samples if sample.luminance_avg is not None]
    if not values:
        return LuminanceAnalysis(legal_min=lo, legal_max=hi)
    changes = [abs(b - a) for a, b in zip(values, values[1:])]
    return LuminanceAnalysis(
        mean=fmean(values),
        stddev=pstdev(values),
        peak_to_peak=max(values) - min(values),
        mean_abs_change=fmean(changes) if changes else 0.0,
        legal_min=lo,
        legal_max=hi,
        super_white_time=sum(
            v.duration for v in violations if v.evidence and v.evidence[0].metric == 'YMAX'
        ),
        sub_black_time=sum(
            v.duration for v in violations if v.evidence and v.evidence[0].metric == 'YMIN'
        ),
    )
