"""Flash detection and sliding-window flash statistics."""
from __future__ import annotations

from statistics import fmean, pstdev
from typing import Callable, List, Optional, Sequence, Tuple

from ..config.schema import DetectorConfig, ScoringConfig
from ..models.core import Confidence, FrameSample
from ..models.events import FlashAnalysis, FlashCharacteristics, FlashEvent, TimeWindow
from ..models.violation import Evidence, ViolationInstance
from ..score.compliance import VIOLATION_STANDARDS
from ..score.risk import severity_for_rate, violation_risk

PairFilter = Callable[[FrameSample, FrameSample], bool]


def detect_flash_events(
    samples: Sequence[FrameSample],
    *,
    duration: float,
    luma_max: float = 255.0,
    config: Optional[DetectorConfig] = None,
    pair_filter: Optional[PairFilter] = None,
) -> List[FlashEvent]:
    """Emit one event per adjacent sample pair that satisfies the flash rule.

    A pair flashes when the average luma changes by more than the flash
    threshold and the darker of the two frames sits strictly below the dark
    cap. Events are stamped with the later frame and never fall outside
    `[0, duration]`.
    """

    cfg = config or DetectorConfig()
    if duration <= 0:
        return []
    threshold = cfg.flash_threshold(luma_max)
    cap = cfg.dark_cap(luma_max)
    usable = [sample for sample in samples if sample.luminance_avg is not None]
    events: List[FlashEvent] = []
    for prev, cur in zip(usable, usable[1:]):
        delta = abs(cur.luminance_avg - prev.luminance_avg)
        if delta <= threshold:
            continue
        if min(prev.luminance_avg, cur.luminance_avg) >= cap:
            continue
        if not 0.0 <= cur.timestamp <= duration:
            continue
        if pair_filter is not None and not pair_filter(prev, cur):
            continue
        events.append(
            FlashEvent(
                timestamp=cur.timestamp,
                frame_index=cur.frame_index,
                intensity=delta / luma_max,
                luminance_before=prev.luminance_avg,
                luminance_after=cur.luminance_avg,
            )
        )
    return events


def proxy_events_from_cuts(samples: Sequence[FrameSample], *, duration: float) -> List[FlashEvent]:
    """Treat scene cuts as stand-in flash events (lower confidence)."""

    if duration <= 0:
        return []
    return [
        FlashEvent(
            timestamp=sample.timestamp,
            frame_index=sample.frame_index,
            intensity=sample.metrics.get('scene_score', 0.0),
        )
        for sample in samples
        if 0.0 <= sample.timestamp <= duration
    ]


def windowed_counts(timestamps: Sequence[float], *, window: float = 1.0) -> List[int]:
    """For each event, count events in `[t, t + window)` (timestamps must be sorted)."""

    counts: List[int] = []
    end = 0
    total = len(timestamps)
    for start, stamp in enumerate(timestamps):
        end = max(end, start)
        while end < total and timestamps[end] < stamp + window:
            end += 1
        counts.append(end - start)
    return counts


def find_critical_periods(
    timestamps: Sequence[float],
    counts: Sequence[int],
    *,
    window: float,
    threshold: float,
    duration: float,
) -> List[Tuple[TimeWindow, int]]:
    """Merge every over-threshold window into contiguous (period, peak count) ranges."""

    periods: List[Tuple[TimeWindow, int]] = []
    cur_start: Optional[float] = None
    cur_end = 0.0
    peak = 0
    for stamp, count in zip(timestamps, counts):
        if count < threshold:
            continue
        end = min(stamp + window, duration)
        if cur_start is not None and stamp <= cur_end:
            cur_end = max(cur_end, end)
            peak = max(peak, count)
            continue
        if cur_start is not None:
            periods.append((TimeWindow(cur_start, cur_end), peak))
        cur_start, cur_end, peak = stamp, end, count
    if cur_start is not None:
        periods.append((TimeWindow(cur_start, cur_end), peak))
    return periods


def characterize(timestamps: Sequence[float]) -> FlashCharacteristics:
    """Dominant frequency, spread and regularity from inter-event intervals."""

    if len(timestamps) < 2:
        return FlashCharacteristics()
    intervals = [b - a for a, b in zip(timestamps, timestamps[1:]) if b - a > 0]
    if not intervals:
        return FlashCharacteristics()
    mean = fmean(intervals)
    spread = pstdev(intervals)
    regularity = 1.0 - min(1.0, spread / mean)
    return FlashCharacteristics(
        dominant_frequency=1.0 / mean,
        frequency_spread=spread,
        regularity_index=regularity,
        predictability=regularity * 0.8,
    )


def analyze_flash_sequence(
    events: Sequence[FlashEvent],
    *,
    duration: float,
    config: Optional[DetectorConfig] = None,
    rate_threshold: Optional[float] = None,
    confidence: Confidence = Confidence.DEFINITIVE,
) -> FlashAnalysis:
    """Sliding-window rate, critical periods and characterization for `events`."""

    cfg = config or DetectorConfig()
    limit = cfg.rate_threshold if rate_threshold is None else rate_threshold
    if duration <= 0:
        return FlashAnalysis(confidence=confidence)
    ordered = sorted(events, key=lambda event: event.timestamp)
    if len(ordered) < 2:
        return FlashAnalysis(
            events=tuple(ordered),
            flash_count=len(ordered),
            confidence=confidence,
        )
    timestamps = [event.timestamp for event in ordered]
    counts = windowed_counts(timestamps, window=cfg.window)
    max_rate = max(counts)
    periods = find_critical_periods(
        timestamps,
        counts,
        window=cfg.window,
        threshold=limit,
        duration=duration,
    )
    return FlashAnalysis(
        events=tuple(ordered),
        flash_count=len(ordered),
        flash_rate=len(ordered) / duration,
        max_rate=max_rate,
        exceeds_threshold=bool(periods),
        critical_periods=tuple(window for window, _ in periods),
        period_peaks=tuple(peak for _, peak in periods),
        characteristics=characterize(timestamps),
        confidence=confidence,
    )


def flash_violations(
    analysis: FlashAnalysis,
    *,
    violation_type: str = 'flash',
    risk_weight: Optional[float] = None,
    window: float = 1.0,
    limit: float = 3.0,
    scoring: Optional[ScoringConfig] = None,
) -> List[ViolationInstance]:
    """One violation per critical period, graded by the period's peak count."""

    cfg = scoring or ScoringConfig()
    weight = cfg.flash_risk_weight if risk_weight is None else risk_weight
    label = violation_type.replace('_', ' ')
    violations: List[ViolationInstance] = []
    for period, peak in zip(analysis.critical_periods, analysis.period_peaks):
        violations.append(
            ViolationInstance(
                type=violation_type,
                severity=severity_for_rate(peak, config=cfg),
                start_time=period.start,
                end_time=period.end,
                risk_score=violation_risk(peak, weight=weight),
                standards=VIOLATION_STANDARDS.get(violation_type, ()),
                description=f"{peak} {label} events within {window:g}s (limit {limit:g})",
                evidence=(
                    Evidence(
                        source=violation_type,
                        metric='windowed_count',
                        value=float(peak),
                        pts_time=period.start,
                    ),
                ),
            )
        )
    return violations
