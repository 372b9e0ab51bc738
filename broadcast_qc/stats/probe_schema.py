"""Typed schema and tolerant decoder for ffprobe JSON documents."""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from ..errors import MalformedOutput
from ..models.core import StreamDescriptor, StreamInfo

logger = logging.getLogger(__name__)

_BIT_DEPTH_RE = re.compile(r"(?:p|gray)(\d{1,2})(?:le|be)?$")
# Semi-planar high depth layouts: p010, p016, p210, p416 and friends.
_SEMI_PLANAR_RE = re.compile(r"^p[024](\d{2})(?:le|be)?$")

# Fields ffprobe routinely emits that the engine does not use.
_IGNORED_STREAM_FIELDS = frozenset({
    'bit_rate', 'bits_per_sample', 'channel_layout', 'chroma_location', 'closed_captions',
    'codec_long_name', 'codec_tag', 'codec_tag_string', 'coded_height', 'coded_width',
    'color_primaries', 'color_range', 'color_space', 'color_transfer', 'disposition',
    'duration_ts', 'extradata_size', 'film_grain', 'has_b_frames', 'id', 'initial_padding',
    'is_avc', 'level', 'max_bit_rate', 'nal_length_size', 'nb_frames', 'nb_read_frames',
    'nb_read_packets', 'profile', 'refs', 'sample_fmt', 'side_data_list', 'start_pts',
    'start_time', 'tags', 'time_base',
})
_IGNORED_FORMAT_FIELDS = frozenset({
    'filename', 'format_long_name', 'nb_programs', 'nb_stream_groups', 'probe_score',
    'start_time', 'tags',
})

ModelT = TypeVar('ModelT', bound=BaseModel)


class _ProbeModel(BaseModel):
    model_config = ConfigDict(extra='allow')

    @field_validator('*', mode='before')
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and value.strip() in ('', 'N/A', 'unknown'):
            return None
        return value


class ProbeStream(_ProbeModel):
    index: int = 0
    codec_type: Optional[str] = None
    codec_name: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    pix_fmt: Optional[str] = None
    bits_per_raw_sample: Optional[int] = None
    r_frame_rate: Optional[str] = None
    avg_frame_rate: Optional[str] = None
    field_order: Optional[str] = None
    sample_aspect_ratio: Optional[str] = None
    display_aspect_ratio: Optional[str] = None
    duration: Optional[float] = None
    sample_rate: Optional[int] = None
    channels: Optional[int] = None


class ProbeFormat(_ProbeModel):
    format_name: Optional[str] = None
    duration: Optional[float] = None
    size: Optional[int] = None
    bit_rate: Optional[int] = None
    nb_streams: Optional[int] = None


class ProbeDocument(BaseModel):
    streams: List[ProbeStream] = Field(default_factory=list)
    format: Optional[ProbeFormat] = None


class SideData(_ProbeModel):
    side_data_type: Optional[str] = None
    active_format: Optional[int] = None


class ProbeFrame(_ProbeModel):
    pts_time: Optional[float] = None
    best_effort_timestamp_time: Optional[float] = None
    side_data_list: List[SideData] = Field(default_factory=list)

    @property
    def timestamp(self) -> Optional[float]:
        return self.pts_time if self.pts_time is not None else self.best_effort_timestamp_time


class FramesDocument(BaseModel):
    frames: List[ProbeFrame] = Field(default_factory=list)


def parse_frame_rate(text: Optional[str]) -> float:
    """Convert ffprobe's "num/den" (or decimal) rate strings to fps."""

    if not text or text in ('N/A', '0/0'):
        return 0.0
    if '/' in text:
        num, _, den = text.partition('/')
        try:
            numerator = float(num)
            denominator = float(den)
        except ValueError:
            return 0.0
        return numerator / denominator if denominator else 0.0
    try:
        return float(text)
    except ValueError:
        return 0.0


def bit_depth_from_pix_fmt(pix_fmt: Optional[str]) -> Optional[int]:
    if not pix_fmt:
        return None
    match = _SEMI_PLANAR_RE.match(pix_fmt)
    if match:
        return int(match.group(1))
    match = _BIT_DEPTH_RE.search(pix_fmt)
    if match:
        return int(match.group(1))
    return 8


def _load_json(text: str, what: str) -> Dict[str, Any]:
    try:
        data = json.loads(text)
    except json.JSONDecodeError as exc:
        raise MalformedOutput(f"{what} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise MalformedOutput(f"{what} is not a JSON object")
    return data


def _validate_tolerant(
    model: Type[ModelT],
    raw: Any,
    where: str,
    diagnostics: List[str],
) -> ModelT:
    """Validate `raw`, dropping (and reporting) any field that fails."""

    if not isinstance(raw, dict):
        raise MalformedOutput(f"{where} is not a JSON object")
    data = dict(raw)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        dropped = set()
        for err in exc.errors():
            if not err['loc']:
                raise MalformedOutput(f"{where}: {err['msg']}") from exc
            field = err['loc'][0]
            if field in dropped:
                continue
            if field not in data:
                raise MalformedOutput(f"{where}: {err['msg']}") from exc
            diagnostics.append(f"{where}.{field}: dropped invalid value {data[field]!r} ({err['msg']})")
            data.pop(field)
            dropped.add(field)
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise MalformedOutput(f"{where}: {exc}") from exc


def _unknown_fields(item: BaseModel, ignored: frozenset, where: str) -> List[str]:
    extra = set(item.model_extra or {}) - ignored
    if not extra:
        return []
    return [f"{where}: unknown field(s) {', '.join(sorted(extra))}"]


def decode_probe_document(text: str) -> Tuple[ProbeDocument, Tuple[str, ...]]:
    data = _load_json(text, 'ffprobe output')
    diagnostics: List[str] = []
    raw_streams = data.get('streams') or []
    if not isinstance(raw_streams, list):
        raise MalformedOutput("ffprobe 'streams' is not a list")
    streams: List[ProbeStream] = []
    for position, raw in enumerate(raw_streams):
        where = f'streams[{position}]'
        stream = _validate_tolerant(ProbeStream, raw, where, diagnostics)
        diagnostics.extend(_unknown_fields(stream, _IGNORED_STREAM_FIELDS, where))
        streams.append(stream)
    fmt: Optional[ProbeFormat] = None
    if data.get('format') is not None:
        fmt = _validate_tolerant(ProbeFormat, data['format'], 'format', diagnostics)
        diagnostics.extend(_unknown_fields(fmt, _IGNORED_FORMAT_FIELDS, 'format'))
    for line in diagnostics:
        logger.debug('ffprobe decode: %s', line)
    return ProbeDocument(streams=streams, format=fmt), tuple(diagnostics)


def _to_stream_info(stream: ProbeStream) -> StreamInfo:
    return StreamInfo(
        index=stream.index,
        codec_type=stream.codec_type,
        codec_name=stream.codec_name,
        width=stream.width,
        height=stream.height,
        pixel_format=stream.pix_fmt,
        bit_depth=stream.bits_per_raw_sample or bit_depth_from_pix_fmt(stream.pix_fmt),
        frame_rate=parse_frame_rate(stream.r_frame_rate),
        avg_frame_rate=parse_frame_rate(stream.avg_frame_rate),
        field_order=stream.field_order,
        sample_aspect_ratio=stream.sample_aspect_ratio,
        display_aspect_ratio=stream.display_aspect_ratio,
        duration=stream.duration,
        sample_rate=stream.sample_rate,
        channels=stream.channels,
    )


def decode_stream_descriptor(text: str, *, source: str) -> StreamDescriptor:
    """Build the shared StreamDescriptor from `ffprobe -show_format -show_streams` JSON."""

    document, diagnostics = decode_probe_document(text)
    streams = tuple(_to_stream_info(stream) for stream in document.streams)
    duration = document.format.duration if document.format else None
    if not duration:
        durations = [stream.duration for stream in streams if stream.duration]
        duration = max(durations) if durations else 0.0
    return StreamDescriptor(
        source=source,
        container=document.format.format_name if document.format else None,
        duration=max(0.0, duration),
        streams=streams,
        diagnostics=diagnostics,
    )


def _decode_frame(raw: Any, where: str, diagnostics: List[str]) -> ProbeFrame:
    """Validate one frame, keeping the side data entries that decode cleanly."""

    if not isinstance(raw, dict):
        raise MalformedOutput(f"{where} is not a JSON object")
    data = dict(raw)
    entries = data.pop('side_data_list', None) or []
    if not isinstance(entries, list):
        diagnostics.append(f"{where}.side_data_list: dropped invalid value {entries!r} (not a list)")
        entries = []
    side_data: List[SideData] = []
    for index, entry in enumerate(entries):
        try:
            side_data.append(_validate_tolerant(SideData, entry, f'{where}.side_data_list[{index}]', diagnostics))
        except MalformedOutput as exc:
            diagnostics.append(str(exc))
    frame = _validate_tolerant(ProbeFrame, data, where, diagnostics)
    return frame.model_copy(update={'side_data_list': side_data})


def decode_frames_document(text: str) -> Tuple[FramesDocument, Tuple[str, ...]]:
    """Decode `ffprobe -show_frames` JSON, skipping frames that fail validation."""

    data = _load_json(text, 'ffprobe frames output')
    diagnostics: List[str] = []
    raw_frames = data.get('frames') or []
    if not isinstance(raw_frames, list):
        raise MalformedOutput("ffprobe 'frames' is not a list")
    frames: List[ProbeFrame] = []
    for position, raw in enumerate(raw_frames):
        try:
            frames.append(_decode_frame(raw, f'frames[{position}]', diagnostics))
        except MalformedOutput as exc:
            diagnostics.append(str(exc))
    return FramesDocument(frames=frames), tuple(diagnostics)
