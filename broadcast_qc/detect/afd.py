"""Active Format Description (AFD) and aspect-ratio signalling checks."""
from __future__ import annotations

from collections import Counter
from typing import Dict, List, Optional, Sequence

from ..config.schema import DetectorConfig
from ..models.core import StreamDescriptor
from ..models.events import AFDAnalysis, AFDObservation
from ..models.violation import Evidence, ViolationInstance
from ..score.compliance import VIOLATION_STANDARDS
from ..stats.probe_schema import ProbeFrame, SideData

# AFD codes per ATSC A/53 and SMPTE ST 2016-1
AFD_DEFINITIONS: Dict[int, str] = {
    0: 'Undefined/Reserved',
    1: 'Reserved',
    2: 'Box 16:9 (top)',
    3: 'Box 14:9 (top)',
    4: 'Box > 16:9 (center)',
    5: 'Reserved',
    6: 'Reserved',
    7: 'Reserved',
    8: 'Full frame 4:3 (center)',
    9: 'Full frame 4:3 (center, shoot & protect 14:9)',
    10: 'Full frame 16:9 (center)',
    11: 'Full frame 14:9 (center)',
    12: 'Reserved',
    13: 'Full frame 4:3 (center, shoot & protect 4:3)',
    14: 'Full frame 16:9 (center, shoot & protect 14:9)',
    15: 'Full frame 16:9 (center, shoot & protect 4:3)',
}

PRESENTATION_MODES: Dict[int, str] = {
    0: 'undefined',
    1: 'reserved',
    2: 'letterbox',
    3: 'letterbox_with_protection',
    4: 'full_frame',
    8: 'center_cut',
    9: 'center_cut_with_protection',
    10: 'full_frame',
    11: 'center_cut',
    13: 'center_cut_with_protection',
    14: 'letterbox_with_protection',
    15: 'center_cut_with_protection',
}

RESERVED_AFD = frozenset({0, 1, 5, 6, 7, 12})
BROADCAST_AFD = frozenset({8, 9, 10, 11, 13, 14, 15})

_ASPECT_NAMES = (
    (1.333, '4:3'),
    (1.777, '16:9'),
    (1.556, '14:9'),
    (2.35, '2.35:1'),
    (2.39, '2.39:1'),
    (1.85, '1.85:1'),
)
_ASPECT_CATEGORIES = {
    '4:3': 'Standard Definition',
    '16:9': 'High Definition Widescreen',
    '14:9': 'Compromise Aspect Ratio',
    '2.35:1': 'Cinematic Widescreen',
    '2.39:1': 'Cinematic Widescreen',
    '1.85:1': 'Theatrical Widescreen',
}
_INFERRED_AFD = {'4:3': 8, '16:9': 10, '14:9': 11}
_SIDE_DATA_MARKERS = (
    'active format',
    'afd',
    'h264_sei',
    'h265_sei',
    'user_data',
    'cea_708',
    'atsc_a53',
    'bar_data',
)
EXPLICIT_CONFIDENCE = 0.9
INFERRED_CONFIDENCE = 0.6


def format_aspect_ratio(ratio: Optional[float], *, tolerance: float = 0.01) -> str:
    if not ratio:
        return ''
    for reference, name in _ASPECT_NAMES:
        if abs(ratio - reference) <= tolerance:
            return name
    return f'{ratio:.3f}:1'


def categorize_aspect_ratio(name: str) -> str:
    return _ASPECT_CATEGORIES.get(name, 'Custom Aspect Ratio')


def recommended_afd(aspect_name: str) -> int:
    return _INFERRED_AFD.get(aspect_name, 10)


def afd_from_side_data(side: SideData) -> Optional[int]:
    """Pull an AFD code out of one side-data entry, if it carries one."""

    kind = (side.side_data_type or '').lower()
    if not any(marker in kind for marker in _SIDE_DATA_MARKERS):
        return None
    if side.active_format is not None:
        return side.active_format
    extra = side.model_extra or {}
    for key in ('afd', 'active_format_description'):
        value = extra.get(key)
        if isinstance(value, (int, float)):
            return int(value)
    info = extra.get('aspect_ratio_info')
    if isinstance(info, (int, float)):
        return int(info) & 0x0F
    return None


def collect_observations(frames: Sequence[ProbeFrame]) -> List[AFDObservation]:
    observations: List[AFDObservation] = []
    for position, frame in enumerate(frames):
        for side in frame.side_data_list:
            value = afd_from_side_data(side)
            if value is None:
                continue
            timestamp = frame.timestamp if frame.timestamp is not None else float(position)
            observations.append(
                AFDObservation(
                    timestamp=timestamp,
                    value=value,
                    source=side.side_data_type or 'unknown',
                )
            )
    return observations


def find_changes(observations: Sequence[AFDObservation]) -> List[AFDObservation]:
    """Observations whose value differs from the one before."""

    changes: List[AFDObservation] = []
    previous: Optional[int] = None
    for observation in observations:
        if previous is not None and observation.value != previous:
            changes.append(observation)
        previous = observation.value
    return changes


def analyze_afd(
    descriptor: StreamDescriptor,
    observations: Sequence[AFDObservation],
    *,
    config: Optional[DetectorConfig] = None,
) -> AFDAnalysis:
    cfg = config or DetectorConfig()
    video = descriptor.video
    aspect = format_aspect_ratio(video.aspect_ratio if video else None)
    issues: List[str] = []

    if observations:
        value = Counter(obs.value for obs in observations).most_common(1)[0][0]
        inferred = False
        confidence = EXPLICIT_CONFIDENCE
    else:
        value = _INFERRED_AFD.get(aspect, -1)
        inferred = True
        confidence = INFERRED_CONFIDENCE if value >= 0 else 0.0
        issues.append('No AFD signaling detected')
        issues.append('AFD signaling required for broadcast compliance')

    if value > 15:
        issues.append(f'Invalid AFD value {value}')
    elif not inferred and value in RESERVED_AFD:
        issues.append(f'Reserved AFD value {value} in use')
    compliant = not inferred and value in BROADCAST_AFD
    if not inferred and not compliant:
        issues.append(f'AFD value {value} not ATSC A/53 or DVB compliant')

    changes = find_changes(observations)
    for prev, cur in zip(changes, changes[1:]):
        if cur.timestamp - prev.timestamp < cfg.afd_change_interval:
            issues.append('Rapid AFD changes detected')
            break

    return AFDAnalysis(
        has_afd=bool(observations),
        afd_value=value,
        description=AFD_DEFINITIONS.get(value, 'Unknown'),
        presentation_mode=PRESENTATION_MODES.get(value, 'unknown'),
        inferred=inferred,
        confidence=confidence,
        aspect_ratio=aspect,
        aspect_category=categorize_aspect_ratio(aspect) if aspect else '',
        is_reserved=value in RESERVED_AFD,
        atsc_compliant=compliant,
        dvb_compliant=compliant,
        changes=tuple(changes),
        issues=tuple(issues),
    )


def afd_violations(
    analysis: AFDAnalysis,
    *,
    duration: float,
    config: Optional[DetectorConfig] = None,
) -> List[ViolationInstance]:
    cfg = config or DetectorConfig()
    standards = VIOLATION_STANDARDS['afd']
    end = max(0.0, duration)
    violations: List[ViolationInstance] = []
    if not analysis.has_afd:
        violations.append(
            ViolationInstance(
                type='afd',
                severity='low',
                start_time=0.0,
                end_time=end,
                risk_score=20.0,
                standards=standards,
                description=f'No AFD signalling; recommended AFD {recommended_afd(analysis.aspect_ratio)}',
            )
        )
    elif not analysis.atsc_compliant:
        violations.append(
            ViolationInstance(
                type='afd',
                severity='medium',
                start_time=0.0,
                end_time=end,
                risk_score=30.0,
                standards=standards,
                description=f'AFD {analysis.afd_value} ({analysis.description}) is not broadcast compliant',
                evidence=(Evidence('afd', 'afd_value', float(analysis.afd_value), 0.0),),
            )
        )
    for prev, cur in zip(analysis.changes, analysis.changes[1:]):
        if cur.timestamp - prev.timestamp >= cfg.afd_change_interval:
            continue
        violations.append(
            ViolationInstance(
                type='afd',
                severity='medium',
                start_time=min(prev.timestamp, end),
                end_time=min(cur.timestamp, end),
                risk_score=30.0,
                standards=standards,
                description=f'AFD changed {prev.value} -> {cur.value} within {cfg.afd_change_interval:g}s',
                evidence=(Evidence('afd', 'afd_value', float(cur.value), cur.timestamp),),
            )
        )
    return violations
