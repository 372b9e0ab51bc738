"""Shared data structures used across the engine."""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Optional, Tuple


class Confidence(str, Enum):
    """How trustworthy a sample sequence or category result is."""

    DEFINITIVE = 'Definitive'
    ESTIMATED = 'Estimated'
    UNAVAILABLE = 'Unavailable'


@dataclass(frozen=True)
class FrameSample:
    """Numeric metadata emitted by FFmpeg for a single frame."""

    frame_index: int
    timestamp: float
    luminance_avg: Optional[float] = None
    luminance_min: Optional[float] = None
    luminance_max: Optional[float] = None
    metrics: Mapping[str, float] = field(default_factory=dict)
    confidence: Confidence = Confidence.DEFINITIVE

    def __post_init__(self) -> None:
        object.__setattr__(self, 'metrics', MappingProxyType(dict(self.metrics)))


@dataclass(frozen=True)
class StreamInfo:
    """Technical attributes of one container stream."""

    index: int
    codec_type: Optional[str] = None
    codec_name: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    pixel_format: Optional[str] = None
    bit_depth: Optional[int] = None
    frame_rate: float = 0.0
    avg_frame_rate: float = 0.0
    field_order: Optional[str] = None
    sample_aspect_ratio: Optional[str] = None
    display_aspect_ratio: Optional[str] = None
    duration: Optional[float] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None

    @property
    def is_video(self) -> bool:
        return self.codec_type == 'video'

    @property
    def aspect_ratio(self) -> Optional[float]:
        """Display aspect ratio, falling back to the storage ratio."""

        ratio = _parse_ratio(self.display_aspect_ratio)
        if ratio:
            return ratio
        if self.width and self.height:
            return self.width / self.height * (_parse_ratio(self.sample_aspect_ratio) or 1.0)
        return None


@dataclass(frozen=True)
class StreamDescriptor:
    """Container + stream attributes, derived once and shared read-only."""

    source: str
    container: Optional[str] = None
    duration: float = 0.0
    streams: Tuple[StreamInfo, ...] = ()
    diagnostics: Tuple[str, ...] = ()

    @property
    def video(self) -> Optional[StreamInfo]:
        for stream in self.streams:
            if stream.is_video:
                return stream
        return None

    @property
    def video_streams(self) -> Tuple[StreamInfo, ...]:
        return tuple(stream for stream in self.streams if stream.is_video)

    @property
    def luma_max(self) -> float:
        video = self.video
        bits = video.bit_depth if video and video.bit_depth else 8
        return float(2 ** bits - 1)


@dataclass(frozen=True)
class AnalysisRequest:
    """What the caller wants analysed. Immutable once dispatched."""

    request_id: str
    source: str
    enabled_categories: Tuple[str, ...]
    time_budget: Optional[float] = None


def _parse_ratio(text: Optional[str]) -> Optional[float]:
    if not text or ':' not in text:
        return None
    num, _, den = text.partition(':')
    try:
        numerator = float(num)
        denominator = float(den)
    except ValueError:
        return None
    if numerator <= 0 or denominator <= 0:
        return None
    return numerator / denominator
