"""Parsing helpers for FFmpeg metadata output."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Callable, Dict, List, Optional, Tuple

from ..models.core import Confidence, FrameSample

logger = logging.getLogger(__name__)

_VIDEO_META_RE = re.compile(r"(?P<key>[A-Za-z0-9_.:-]+)=(?P<val>.+)$")
_PTS_TIME_RE = re.compile(r"pts_time:\s*(-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)")
_FRAME_RE = re.compile(r"frame:\s*(\d+)")
_SIGNALSTATS_PREFIX = 'lavfi.signalstats.'
_SCENE_KEYS = ('lavfi.scene_score', 'scene_score', 'scene')
_MAX_DIAGNOSTICS = 10


@dataclass(frozen=True)
class ParseResult:
    """Ordered samples plus what had to be skipped to get them."""

    samples: Tuple[FrameSample, ...] = ()
    skipped: int = 0
    confidence: Confidence = Confidence.DEFINITIVE
    strategy: str = 'signalstats'
    diagnostics: Tuple[str, ...] = ()

    @property
    def usable(self) -> Tuple[FrameSample, ...]:
        if self.confidence is Confidence.DEFINITIVE:
            return tuple(sample for sample in self.samples if sample.luminance_avg is not None)
        return self.samples


def _lookup(kv: Dict[str, float], key: str) -> Optional[float]:
    if key in kv:
        return kv[key]
    return kv.get(f'{_SIGNALSTATS_PREFIX}{key}')


def _read_frames(
    text: str,
) -> Tuple[List[Tuple[int, float, Dict[str, float]]], int, List[str]]:
    """Split metadata-print text into (frame_index, pts_time, kv) triples."""

    frames: List[Tuple[int, float, Dict[str, float]]] = []
    skipped = 0
    diagnostics: List[str] = []
    cur_pts: Optional[float] = None
    cur_frame = 0
    cur_kv: Dict[str, float] = {}
    last_pts: Optional[float] = None

    def note(reason: str, lineno: Optional[int] = None, line: str = '') -> None:
        nonlocal skipped
        skipped += 1
        if len(diagnostics) < _MAX_DIAGNOSTICS:
            where = f"line {lineno}: " if lineno is not None else ''
            diagnostics.append(f"{where}{reason}" + (f": {line[:80]}" if line else ''))

    def flush() -> None:
        nonlocal cur_pts, cur_kv, last_pts
        if cur_pts is not None and cur_kv:
            if last_pts is not None and cur_pts < last_pts:
                note(f'frame {cur_frame} out of order (pts_time {cur_pts} < {last_pts})')
            else:
                frames.append((cur_frame, cur_pts, dict(cur_kv)))
                last_pts = cur_pts
        cur_pts = None
        cur_kv = {}

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line:
            continue
        if 'pts_time:' in line:
            flush()
            match = _PTS_TIME_RE.search(line)
            if not match:
                note('unreadable frame header', lineno, line)
                continue
            cur_pts = float(match.group(1))
            frame_match = _FRAME_RE.search(line)
            cur_frame = int(frame_match.group(1)) if frame_match else len(frames)
            continue
        m = _VIDEO_META_RE.match(line)
        if not m:
            note('not a key=value pair', lineno, line)
            continue
        if cur_pts is None:
            note('value outside a frame block', lineno, line)
            continue
        try:
            cur_kv[m.group('key')] = float(m.group('val').strip())
        except ValueError:
            note('non-numeric value', lineno, line)
    flush()
    return frames, skipped, diagnostics


def parse_metadata_print_text(text: str) -> ParseResult:
    """Parse `signalstats,metadata=print` output into definitive samples."""

    frames, skipped, diagnostics = _read_frames(text)
    samples = tuple(
        FrameSample(
            frame_index=frame_index,
            timestamp=pts_time,
            luminance_avg=_lookup(kv, 'YAVG'),
            luminance_min=_lookup(kv, 'YMIN'),
            luminance_max=_lookup(kv, 'YMAX'),
            metrics=kv,
        )
        for frame_index, pts_time, kv in frames
    )
    return ParseResult(samples=samples, skipped=skipped, diagnostics=tuple(diagnostics))


def parse_scene_cuts(text: str) -> ParseResult:
    """Parse `select='gt(scene,X)',metadata=print` output into estimated samples.

    Each printed frame is a detected cut. The cut count stands in for a flash
    count, so every sample is tagged Estimated.
    """

    frames, skipped, diagnostics = _read_frames(text)
    samples: List[FrameSample] = []
    for frame_index, pts_time, kv in frames:
        score = next((kv[key] for key in _SCENE_KEYS if key in kv), None)
        if score is None:
            skipped += 1
            continue
        samples.append(
            FrameSample(
                frame_index=frame_index,
                timestamp=pts_time,
                metrics={'scene_score': score},
                confidence=Confidence.ESTIMATED,
            )
        )
    return ParseResult(
        samples=tuple(samples),
        skipped=skipped,
        confidence=Confidence.ESTIMATED,
        strategy='scene_cut',
        diagnostics=tuple(diagnostics),
    )


def parse_signal_output(text: str, *, fallback: Optional[Callable[[], str]] = None) -> ParseResult:
    """Parse signalstats output, dropping to the scene-cut proxy when it is empty.

    `fallback` is called only when the primary text yields no sample with a
    luminance value; it must return scene-detection metadata text. Without a
    fallback the result is tagged Unavailable.
    """

    primary = parse_metadata_print_text(text)
    if primary.usable:
        return primary
    logger.info(
        'No usable signalstats samples (%d line(s) skipped); %s',
        primary.skipped,
        'trying scene-cut fallback' if fallback else 'no fallback available',
    )
    if fallback is None:
        return replace(primary, samples=(), confidence=Confidence.UNAVAILABLE, strategy='none')
    estimated = parse_scene_cuts(fallback())
    if not estimated.samples:
        estimated = replace(estimated, confidence=Confidence.UNAVAILABLE, strategy='none')
    return replace(
        estimated,
        skipped=primary.skipped + estimated.skipped,
        diagnostics=primary.diagnostics + estimated.diagnostics,
    )
