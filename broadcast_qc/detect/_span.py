"""Shared helpers for span-based detectors."""
from __future__ import annotations

from statistics import median
from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from ..models.core import FrameSample
from ..models.violation import Evidence

MetricSpan = List[Tuple[FrameSample, float]]

_METRIC_PREFIXES = ('lavfi.signalstats.', 'lavfi.')


def metric(sample: FrameSample, key: str) -> Optional[float]:
    """Return the requested metric, accepting either bare or lavfi-prefixed keys."""

    if key in sample.metrics:
        return sample.metrics[key]
    for prefix in _METRIC_PREFIXES:
        prefixed = f'{prefix}{key}'
        if prefixed in sample.metrics:
            return sample.metrics[prefixed]
    return None


def iter_metric_spans(
    samples: Sequence[FrameSample],
    *,
    value_getter: Callable[[FrameSample], Optional[float]],
    predicate: Callable[[float], bool],
) -> Iterable[MetricSpan]:
    """Yield contiguous spans where `predicate(value_getter(sample))` holds true."""

    current: MetricSpan = []
    for sample in samples:
        value = value_getter(sample)
        if value is None or not predicate(value):
            if current:
                yield current
                current = []
            continue
        current.append((sample, value))
    if current:
        yield current


def find_spans(
    samples: Sequence[FrameSample],
    *,
    value_getter: Callable[[FrameSample], Optional[float]],
    predicate: Callable[[float], bool],
    min_duration: float,
    frame_step: float,
    metric_name: str,
    extreme_selector: Callable[[Sequence[Tuple[FrameSample, float]]], Tuple[FrameSample, float]],
) -> List[Tuple[float, float, Evidence]]:
    """Return (start, end, evidence) for each qualifying span of at least `min_duration`."""

    found: List[Tuple[float, float, Evidence]] = []
    for span in iter_metric_spans(samples, value_getter=value_getter, predicate=predicate):
        start_time = span[0][0].timestamp
        end_time = span[-1][0].timestamp + frame_step
        if end_time <= start_time:
            end_time = start_time + frame_step
        if (end_time - start_time) < min_duration:
            continue
        pivot_sample, pivot_value = extreme_selector(span)
        evidence = Evidence(
            source='signalstats',
            metric=metric_name,
            value=pivot_value,
            pts_time=pivot_sample.timestamp,
        )
        found.append((start_time, end_time, evidence))
    return found


def estimate_frame_step(samples: Sequence[FrameSample], *, fallback: float) -> float:
    """Estimate the frame spacing from timestamp deltas."""

    if len(samples) < 2:
        return fallback
    deltas = [
        max(0.0, samples[i + 1].timestamp - samples[i].timestamp)
        for i in range(len(samples) - 1)
    ]
    filtered = [delta for delta in deltas if delta > 0]
    if not filtered:
        return fallback
    return median(filtered)


def min_by_value(span: Sequence[Tuple[FrameSample, float]]) -> Tuple[FrameSample, float]:
    """Return the (sample, value) tuple with the lowest metric value."""

    return min(span, key=lambda item: item[1])


def max_by_value(span: Sequence[Tuple[FrameSample, float]]) -> Tuple[FrameSample, float]:
    """Return the (sample, value) tuple with the highest metric value."""

    return max(span, key=lambda item: item[1])
