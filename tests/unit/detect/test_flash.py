"""Tests for flash detection and sliding-window statistics."""
from __future__ import annotations

from typing import List

import pytest

from broadcast_qc.config.schema import DetectorConfig
from broadcast_qc.detect import flash
from broadcast_qc.models.core import Confidence, FrameSample
from broadcast_qc.models.events import FlashEvent


def _sample(time: float, yavg: float, index: int = 0) -> FrameSample:
    return FrameSample(frame_index=index, timestamp=time, luminance_avg=yavg)


def _alternating(count: int = 21, step: float = 0.1) -> List[FrameSample]:
    return [
        _sample(round(i * step, 3), 40.0 if i % 2 == 0 else 220.0, index=i)
        for i in range(count)
    ]


def _events(*times: float) -> List[FlashEvent]:
    return [FlashEvent(timestamp=t, frame_index=i, intensity=0.5) for i, t in enumerate(times)]


def test_detect_flash_events_alternating_luma() -> None:
    events = flash.detect_flash_events(_alternating(), duration=2.0)

    assert len(events) == 20
    assert events[0].timestamp == 0.1
    assert events[0].frame_index == 1
    assert events[0].intensity == pytest.approx(180 / 255)
    assert events[0].luminance_before == 40.0
    assert events[0].luminance_after == 220.0


def test_detect_flash_events_dark_cap_is_strict() -> None:
    at_cap = [_sample(0.0, 204.0), _sample(0.1, 255.0)]
    below_cap = [_sample(0.0, 203.0), _sample(0.1, 255.0)]

    assert flash.detect_flash_events(at_cap, duration=1.0) == []
    assert len(flash.detect_flash_events(below_cap, duration=1.0)) == 1


def test_detect_flash_events_requires_delta_above_threshold() -> None:
    samples = [_sample(0.0, 100.0), _sample(0.1, 125.5), _sample(0.2, 151.1)]

    events = flash.detect_flash_events(samples, duration=1.0)

    assert [event.timestamp for event in events] == [0.2]


def test_detect_flash_events_scales_with_bit_depth() -> None:
    samples = [_sample(0.0, 100.0), _sample(0.1, 200.0)]

    assert len(flash.detect_flash_events(samples, duration=1.0, luma_max=255.0)) == 1
    assert flash.detect_flash_events(samples, duration=1.0, luma_max=1023.0) == []


def test_detect_flash_events_stays_inside_duration() -> None:
    events = flash.detect_flash_events(_alternating(), duration=1.0)

    assert events
    assert all(0.0 <= event.timestamp <= 1.0 for event in events)


def test_detect_flash_events_zero_duration_is_empty() -> None:
    assert flash.detect_flash_events(_alternating(), duration=0.0) == []


def test_detect_flash_events_single_sample_is_empty() -> None:
    assert flash.detect_flash_events([_sample(0.0, 40.0)], duration=1.0) == []


def test_detect_flash_events_is_idempotent() -> None:
    samples = _alternating()

    first = flash.detect_flash_events(samples, duration=2.0)
    second = flash.detect_flash_events(samples, duration=2.0)

    assert first == second


def test_windowed_counts_uses_half_open_window() -> None:
    counts = flash.windowed_counts([0.0, 0.5, 0.9, 1.0, 1.5], window=1.0)

    assert counts == [3, 3, 3, 2, 1]


def test_windowed_counts_is_monotone_in_density() -> None:
    sparse = [0.0, 0.4, 0.8, 1.6]
    dense = sorted(sparse + [0.2, 0.6, 1.0])

    assert max(flash.windowed_counts(dense)) >= max(flash.windowed_counts(sparse))


def test_find_critical_periods_merges_overlapping_windows() -> None:
    stamps = [0.0, 0.5, 0.9, 1.0, 1.5, 4.0, 4.1, 4.2]
    counts = flash.windowed_counts(stamps, window=1.0)

    periods = flash.find_critical_periods(stamps, counts, window=1.0, threshold=3, duration=4.5)

    assert len(periods) == 2
    first, peak = periods[0]
    assert (first.start, first.end) == (0.0, pytest.approx(1.9))
    assert peak == 3
    second, _ = periods[1]
    assert second.start == 4.0
    assert second.end == 4.5


def test_characterize_regular_sequence() -> None:
    result = flash.characterize([0.0, 0.5, 1.0])

    assert result.dominant_frequency == pytest.approx(2.0)
    assert result.frequency_spread == pytest.approx(0.0)
    assert result.regularity_index == pytest.approx(1.0)
    assert result.predictability == pytest.approx(0.8)


def test_characterize_needs_two_events() -> None:
    result = flash.characterize([0.3])

    assert result.dominant_frequency == 0.0
    assert result.regularity_index == 1.0


def test_analyze_flash_sequence_alternating_exceeds_threshold() -> None:
    events = flash.detect_flash_events(_alternating(), duration=2.0)

    analysis = flash.analyze_flash_sequence(events, duration=2.0)

    assert analysis.flash_count >= 20
    assert analysis.max_rate >= 10
    assert analysis.exceeds_threshold is True
    assert analysis.flash_rate == pytest.approx(10.0)
    assert analysis.critical_periods
    assert analysis.critical_periods[-1].end <= 2.0
    assert analysis.confidence is Confidence.DEFINITIVE


def test_analyze_flash_sequence_fewer_than_two_events() -> None:
    analysis = flash.analyze_flash_sequence(_events(0.5), duration=2.0)

    assert analysis.flash_count == 1
    assert analysis.max_rate == 0
    assert analysis.exceeds_threshold is False
    assert analysis.critical_periods == ()


def test_analyze_flash_sequence_threshold_reached_at_limit() -> None:
    analysis = flash.analyze_flash_sequence(_events(0.0, 0.3, 0.6), duration=2.0)

    assert analysis.max_rate == 3
    assert analysis.exceeds_threshold is True
    assert len(analysis.critical_periods) == 1
    assert len(flash.flash_violations(analysis)) == 1


def test_analyze_flash_sequence_below_limit_has_no_periods() -> None:
    analysis = flash.analyze_flash_sequence(_events(0.0, 0.6, 1.5), duration=2.0)

    assert analysis.max_rate == 2
    assert analysis.exceeds_threshold is False
    assert analysis.critical_periods == ()
    assert flash.flash_violations(analysis) == []


def test_analyze_flash_sequence_zero_duration() -> None:
    analysis = flash.analyze_flash_sequence(_events(0.0, 0.1, 0.2), duration=0.0)

    assert analysis.flash_count == 0
    assert analysis.events == ()


def test_analyze_flash_sequence_custom_window() -> None:
    cfg = DetectorConfig(window=0.5)

    analysis = flash.analyze_flash_sequence(_events(0.0, 0.3, 0.6, 0.9), duration=2.0, config=cfg)

    assert analysis.max_rate == 2


def test_flash_violations_one_per_critical_period() -> None:
    events = flash.detect_flash_events(_alternating(), duration=2.0)
    analysis = flash.analyze_flash_sequence(events, duration=2.0)

    violations = flash.flash_violations(analysis)

    assert len(violations) == len(analysis.critical_periods)
    violation = violations[0]
    assert violation.type == 'flash'
    assert violation.severity == 'high'
    assert violation.risk_score == 100.0
    assert 0.0 <= violation.start_time <= violation.end_time <= 2.0
    assert 'ITU-R BT.1702' in violation.standards
    assert violation.evidence[0].metric == 'windowed_count'


def test_flash_violations_severity_from_peak() -> None:
    analysis = flash.analyze_flash_sequence(_events(0.0, 0.3, 0.6), duration=2.0)

    violations = flash.flash_violations(analysis)

    assert violations[0].severity == 'low'
    assert violations[0].risk_score == pytest.approx(60.0)


def test_proxy_events_from_cuts_uses_scene_score() -> None:
    cuts = [
        FrameSample(frame_index=0, timestamp=1.0, metrics={'scene_score': 0.6}, confidence=Confidence.ESTIMATED),
        FrameSample(frame_index=1, timestamp=9.0, metrics={'scene_score': 0.4}, confidence=Confidence.ESTIMATED),
    ]

    events = flash.proxy_events_from_cuts(cuts, duration=5.0)

    assert len(events) == 1
    assert events[0].intensity == 0.6
