"""Event-level results produced by the detectors."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Tuple

from .core import Confidence


@dataclass(frozen=True)
class FlashEvent:
    """A luminance transition that satisfies the flash rule."""

    timestamp: float
    frame_index: int
    intensity: float
    luminance_before: float = 0.0
    luminance_after: float = 0.0


@dataclass(frozen=True)
class TimeWindow:
    start: float
    end: float

    @property
    def duration(self) -> float:
        return max(0.0, self.end - self.start)


@dataclass(frozen=True)
class FlashCharacteristics:
    """Temporal shape of a flash sequence, derived from inter-event intervals."""

    dominant_frequency: float = 0.0
    frequency_spread: float = 0.0
    regularity_index: float = 1.0
    predictability: float = 1.0


@dataclass(frozen=True)
class FlashAnalysis:
    """Sliding-window statistics over one flash event sequence."""

    events: Tuple[FlashEvent, ...] = ()
    flash_count: int = 0
    flash_rate: float = 0.0
    max_rate: int = 0
    # True exactly when some window reached the rate threshold, i.e. when
    # critical_periods is non-empty.
    exceeds_threshold: bool = False
    critical_periods: Tuple[TimeWindow, ...] = ()
    period_peaks: Tuple[int, ...] = ()
    characteristics: FlashCharacteristics = field(default_factory=FlashCharacteristics)
    confidence: Confidence = Confidence.DEFINITIVE


@dataclass(frozen=True)
class LuminanceAnalysis:
    """Average-luma statistics plus time spent outside the legal range."""

    mean: float = 0.0
    stddev: float = 0.0
    peak_to_peak: float = 0.0
    mean_abs_change: float = 0.0
    legal_min: float = 16.0
    legal_max: float = 235.0
    super_white_time: float = 0.0
    sub_black_time: float = 0.0


@dataclass(frozen=True)
class AFDObservation:
    """One AFD value seen in the frame side data."""

    timestamp: float
    value: int
    source: str


@dataclass(frozen=True)
class AFDAnalysis:
    has_afd: bool = False
    afd_value: int = 0
    description: str = ''
    presentation_mode: str = ''
    inferred: bool = False
    confidence: float = 0.0
    aspect_ratio: str = ''
    aspect_category: str = ''
    is_reserved: bool = False
    atsc_compliant: bool = False
    dvb_compliant: bool = False
    changes: Tuple[AFDObservation, ...] = ()
    issues: Tuple[str, ...] = ()


@dataclass(frozen=True)
class FrameRateFinding:
    stream_index: int
    frame_rate: float
    average_frame_rate: float
    standard_name: str
    category: str
    is_variable: bool = False
    is_interlaced: bool = False
    is_consistent: bool = True


@dataclass(frozen=True)
class FrameRateAnalysis:
    streams: Tuple[FrameRateFinding, ...] = ()
    max_frame_rate: float = 0.0
    is_high_frame_rate: bool = False
    has_multiple_frame_rates: bool = False
    issues: Tuple[str, ...] = ()
    advisories: Tuple[str, ...] = ()
