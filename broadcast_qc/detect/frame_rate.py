"""Frame-rate classification and delivery advisories from stream metadata."""
from __future__ import annotations

import logging
from typing import List, Tuple

from ..models.core import StreamDescriptor, StreamInfo
from ..models.events import FrameRateAnalysis, FrameRateFinding

logger = logging.getLogger(__name__)

_STANDARD_RATES: Tuple[Tuple[float, str], ...] = (
    (23.976, '23.976p'),
    (24.0, '24p'),
    (25.0, '25p'),
    (29.97, '29.97p'),
    (30.0, '30p'),
    (48.0, '48p'),
    (50.0, '50p'),
    (59.94, '59.94p'),
    (60.0, '60p'),
    (96.0, '96p'),
    (100.0, '100p'),
    (120.0, '120p'),
    (240.0, '240p'),
    (480.0, '480p'),
    (1000.0, '1000p'),
)
_CATEGORIES = (
    (20.0, 'Very Low Frame Rate'),
    (30.0, 'Cinema Frame Rate'),
    (50.0, 'Standard Frame Rate'),
    (100.0, 'High Frame Rate'),
    (250.0, 'Very High Frame Rate'),
)
RATE_TOLERANCE = 0.1
VFR_TOLERANCE = 0.1
HFR_THRESHOLD = 60.0
MIN_PLAUSIBLE_RATE = 5.0
MAX_PLAUSIBLE_RATE = 500.0


def standard_name(rate: float, *, tolerance: float = RATE_TOLERANCE) -> str:
    for reference, name in _STANDARD_RATES:
        if abs(rate - reference) <= tolerance:
            return name
    return f'{rate:.3f}p'


def categorize_rate(rate: float) -> str:
    if rate <= 0:
        return 'Unknown'
    for ceiling, label in _CATEGORIES:
        if rate < ceiling:
            return label
    return 'Ultra High Frame Rate'


def _effective_rate(stream: StreamInfo) -> float:
    return stream.avg_frame_rate or stream.frame_rate


def _is_consistent(stream: StreamInfo) -> bool:
    real, avg = stream.frame_rate, stream.avg_frame_rate
    if real > 0 and avg > 0:
        ratio = real / avg
        if ratio > 2 or ratio < 0.5:
            return False
    effective = _effective_rate(stream)
    return 0.1 <= effective <= 1000


def classify_stream(stream: StreamInfo) -> FrameRateFinding:
    rate = _effective_rate(stream)
    return FrameRateFinding(
        stream_index=stream.index,
        frame_rate=stream.frame_rate,
        average_frame_rate=stream.avg_frame_rate,
        standard_name=standard_name(rate) if rate > 0 else 'unknown',
        category=categorize_rate(rate),
        is_variable=(
            stream.frame_rate > 0
            and stream.avg_frame_rate > 0
            and abs(stream.frame_rate - stream.avg_frame_rate) > VFR_TOLERANCE
        ),
        is_interlaced=bool(stream.field_order) and stream.field_order != 'progressive',
        is_consistent=_is_consistent(stream),
    )


def _distinct(rates: List[float]) -> List[float]:
    seen: List[float] = []
    for rate in rates:
        if all(abs(rate - other) > RATE_TOLERANCE for other in seen):
            seen.append(rate)
    return seen


def analyze_frame_rates(descriptor: StreamDescriptor) -> FrameRateAnalysis:
    """Classify every video stream's rate and collect issues and advisories."""

    findings = [classify_stream(stream) for stream in descriptor.video_streams]
    issues: List[str] = []
    advisories: List[str] = []
    if not findings:
        issues.append('No video streams with frame rate information')
        return FrameRateAnalysis(issues=tuple(issues))

    rates = [finding.average_frame_rate or finding.frame_rate for finding in findings]
    max_rate = max(rates)
    for finding, rate in zip(findings, rates):
        if rate <= 0:
            issues.append(f'Video stream {finding.stream_index} has no usable frame rate')
            continue
        if rate < MIN_PLAUSIBLE_RATE:
            issues.append(f'Video stream {finding.stream_index} frame rate {rate:.3f} is unusually low')
        elif rate > MAX_PLAUSIBLE_RATE:
            issues.append(f'Video stream {finding.stream_index} frame rate {rate:.3f} is unusually high')
        if not finding.is_consistent:
            issues.append(f'Video stream {finding.stream_index} reports inconsistent frame rates')
        if finding.is_variable:
            advisories.append(
                f'Video stream {finding.stream_index} uses variable frame rate - '
                'consider converting to constant frame rate for better compatibility'
            )
        if finding.standard_name == '23.976p':
            advisories.append('23.976p content - ensure proper pulldown handling for broadcast')
        elif finding.standard_name == '29.97p':
            advisories.append('29.97p content - verify NTSC compatibility')

    is_hfr = max_rate >= HFR_THRESHOLD
    multiple = len(_distinct([rate for rate in rates if rate > 0])) > 1
    if is_hfr:
        advisories.append(
            'High frame rate content detected - ensure delivery infrastructure supports HFR playback'
        )
    if multiple:
        advisories.append(
            'Multiple frame rates detected - verify this is intentional for adaptive streaming'
        )
    if any(finding.is_interlaced for finding in findings):
        advisories.append(
            'Interlaced content detected - consider deinterlacing for modern viewing devices'
        )
    logger.debug('frame rates for %s: %s', descriptor.source, [f.standard_name for f in findings])
    return FrameRateAnalysis(
        streams=tuple(findings),
        max_frame_rate=max_rate,
        is_high_frame_rate=is_hfr,
        has_multiple_frame_rates=multiple,
        issues=tuple(issues),
        advisories=tuple(dict.fromkeys(advisories)),
    )
