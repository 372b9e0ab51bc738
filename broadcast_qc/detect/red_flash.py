"""Saturated-red flash detection built on the general flash rule."""
from __future__ import annotations

from typing import List, Optional, Sequence

from ..config.schema import DetectorConfig
from ..models.core import Confidence, FrameSample
from ..models.events import FlashAnalysis, FlashEvent
from ._span import metric
from .flash import analyze_flash_sequence, detect_flash_events


def red_saturation(sample: FrameSample, *, luma_max: float = 255.0) -> Optional[float]:
    """How far the frame's Cr average sits toward red, in [-1, 1]."""

    v = metric(sample, 'VAVG')
    if v is None:
        return None
    mid = (luma_max + 1) / 2
    return (v - mid) / mid


def detect_red_flash_events(
    samples: Sequence[FrameSample],
    *,
    duration: float,
    luma_max: float = 255.0,
    config: Optional[DetectorConfig] = None,
) -> List[FlashEvent]:
    """General flash transitions where either frame is saturated red."""

    cfg = config or DetectorConfig()
    threshold = cfg.red_saturation_threshold
    chroma = [sample for sample in samples if red_saturation(sample, luma_max=luma_max) is not None]

    def is_red(prev: FrameSample, cur: FrameSample) -> bool:
        return max(
            red_saturation(prev, luma_max=luma_max),
            red_saturation(cur, luma_max=luma_max),
        ) > threshold

    return detect_flash_events(
        chroma,
        duration=duration,
        luma_max=luma_max,
        config=cfg,
        pair_filter=is_red,
    )


def analyze_red_flashes(
    samples: Sequence[FrameSample],
    *,
    duration: float,
    luma_max: float = 255.0,
    config: Optional[DetectorConfig] = None,
) -> FlashAnalysis:
    """Red flash statistics; Unavailable when no sample carries chroma."""

    cfg = config or DetectorConfig()
    if not any(metric(sample, 'VAVG') is not None for sample in samples):
        return FlashAnalysis(confidence=Confidence.UNAVAILABLE)
    events = detect_red_flash_events(samples, duration=duration, luma_max=luma_max, config=cfg)
    return analyze_flash_sequence(
        events,
        duration=duration,
        config=cfg,
        rate_threshold=cfg.red_rate_threshold,
    )
