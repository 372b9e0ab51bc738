"""Tests for the per-category analyzers and their registry."""
from __future__ import annotations

import pytest

from broadcast_qc.analyzer.categories import (
    CATEGORY_NAMES,
    FrameRateAnalyzer,
    build_analyzers,
    effective_duration,
)
from broadcast_qc.config.schema import EngineConfig
from broadcast_qc.errors import MalformedOutput
from broadcast_qc.ffmpeg.commands import ProbeAdapter
from broadcast_qc.ffmpeg.context import RunContext
from broadcast_qc.models.core import FrameSample, StreamDescriptor, StreamInfo


def _sample(time: float) -> FrameSample:
    return FrameSample(frame_index=0, timestamp=time, luminance_avg=16.0)


def test_effective_duration_prefers_container() -> None:
    descriptor = StreamDescriptor(source='clip.mp4', duration=12.0)

    assert effective_duration(descriptor, [_sample(0.0), _sample(0.5)]) == 12.0


def test_effective_duration_from_samples() -> None:
    descriptor = StreamDescriptor(source='clip.mp4')

    assert effective_duration(descriptor, [_sample(0.0), _sample(0.5), _sample(1.0)]) == pytest.approx(1.5)
    assert effective_duration(descriptor, []) == 0.0


def test_build_analyzers_default_order_and_mandatory_flags() -> None:
    specs = build_analyzers(ProbeAdapter(), EngineConfig())

    assert [spec.name for spec in specs] == list(CATEGORY_NAMES)
    assert {spec.name for spec in specs if spec.mandatory} == {'flash', 'red_flash'}


def test_build_analyzers_follows_requested_order() -> None:
    specs = build_analyzers(ProbeAdapter(), EngineConfig(), categories=('afd', 'flash'))

    assert [spec.name for spec in specs] == ['afd', 'flash']


def test_frame_rate_analyzer_reports_advisories() -> None:
    video = StreamInfo(index=0, codec_type='video', frame_rate=24000 / 1001, avg_frame_rate=24000 / 1001)
    descriptor = StreamDescriptor(source='film.mov', duration=60.0, streams=(video,))

    outcome = FrameRateAnalyzer(EngineConfig())(RunContext(), descriptor)

    assert outcome.violations == ()
    assert any('pulldown' in advisory for advisory in outcome.advisories)


def test_frame_rate_analyzer_without_video_is_malformed() -> None:
    descriptor = StreamDescriptor(source='audio.wav', streams=(StreamInfo(index=0, codec_type='audio'),))

    with pytest.raises(MalformedOutput):
        FrameRateAnalyzer(EngineConfig())(RunContext(), descriptor)
