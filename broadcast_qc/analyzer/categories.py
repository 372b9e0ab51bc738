"""Per-category analyzers: tool invocation, parsing and detection for one check."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Sequence, Tuple

from ..config.schema import EngineConfig
from ..detect import _span
from ..detect import afd as afd_detect
from ..detect import flash as flash_detect
from ..detect import frame_rate as frame_rate_detect
from ..detect import luminance as luminance_detect
from ..detect import red_flash as red_flash_detect
from ..errors import MalformedOutput
from ..ffmpeg.commands import ProbeAdapter
from ..ffmpeg.context import RunContext
from ..models.core import Confidence, FrameSample, StreamDescriptor
from ..models.violation import ViolationInstance
from ..stats.parsers import ParseResult, parse_metadata_print_text, parse_signal_output
from ..stats.probe_schema import decode_frames_document

logger = logging.getLogger(__name__)

CATEGORY_NAMES: Tuple[str, ...] = ('flash', 'red_flash', 'luminance', 'afd', 'frame_rate')
MANDATORY_CATEGORIES = frozenset({'flash', 'red_flash'})

_SIGNALSTATS_GRAPH = 'signalstats'
_AFD_ENTRIES = 'frame=pts_time,best_effort_timestamp_time:side_data'


@dataclass(frozen=True)
class CategoryOutcome:
    """What an analyzer hands back to the orchestrator on success."""

    data: Any = None
    violations: Tuple[ViolationInstance, ...] = ()
    confidence: Confidence = Confidence.DEFINITIVE
    advisories: Tuple[str, ...] = ()
    diagnostics: Tuple[str, ...] = ()


AnalyzerFn = Callable[[RunContext, StreamDescriptor], CategoryOutcome]


@dataclass(frozen=True)
class AnalyzerSpec:
    name: str
    run: AnalyzerFn
    mandatory: bool = False


def effective_duration(descriptor: StreamDescriptor, samples: Sequence[FrameSample]) -> float:
    """Container duration, or the span of the samples when the container has none."""

    if descriptor.duration > 0:
        return descriptor.duration
    if not samples:
        return 0.0
    step = _span.estimate_frame_step(samples, fallback=1 / 30.0)
    return max(0.0, samples[-1].timestamp + step)


def _parse_diagnostics(parsed: ParseResult) -> Tuple[str, ...]:
    notes = [f'{parsed.strategy}: {len(parsed.samples)} sample(s), {parsed.skipped} skipped']
    notes.extend(parsed.diagnostics)
    return tuple(notes)


class FlashAnalyzer:
    """General flash check; drops to the scene-cut proxy when signalstats is empty."""

    def __init__(self, adapter: ProbeAdapter, config: EngineConfig):
        self.adapter = adapter
        self.config = config

    def __call__(self, ctx: RunContext, descriptor: StreamDescriptor) -> CategoryOutcome:
        detector = self.config.detector
        raw = self.adapter.run_filter(ctx, descriptor.source, _SIGNALSTATS_GRAPH)

        def load_scene_cuts() -> str:
            ctx.check()
            graph = f"select='gt(scene,{detector.scene_threshold:g})'"
            return self.adapter.run_filter(ctx, descriptor.source, graph).stdout

        parsed = parse_signal_output(raw.stdout, fallback=load_scene_cuts)
        diagnostics = _parse_diagnostics(parsed)
        if parsed.confidence is Confidence.UNAVAILABLE:
            raise MalformedOutput(
                f'No usable frame statistics for {descriptor.source} ({parsed.skipped} line(s) skipped)'
            )

        samples = parsed.usable
        duration = effective_duration(descriptor, samples)
        if parsed.confidence is Confidence.ESTIMATED:
            events = flash_detect.proxy_events_from_cuts(samples, duration=duration)
        else:
            events = flash_detect.detect_flash_events(
                samples,
                duration=duration,
                luma_max=descriptor.luma_max,
                config=detector,
            )
        analysis = flash_detect.analyze_flash_sequence(
            events,
            duration=duration,
            config=detector,
            confidence=parsed.confidence,
        )
        violations = flash_detect.flash_violations(
            analysis,
            window=detector.window,
            limit=detector.rate_threshold,
            scoring=self.config.scoring,
        )
        logger.info(
            'flash: %d event(s), max %d per %.1fs (%s)',
            analysis.flash_count,
            analysis.max_rate,
            detector.window,
            analysis.confidence.value,
        )
        return CategoryOutcome(
            data=analysis,
            violations=tuple(violations),
            confidence=analysis.confidence,
            diagnostics=diagnostics,
        )


class RedFlashAnalyzer:
    def __init__(self, adapter: ProbeAdapter, config: EngineConfig):
        self.adapter = adapter
        self.config = config

    def __call__(self, ctx: RunContext, descriptor: StreamDescriptor) -> CategoryOutcome:
        detector = self.config.detector
        raw = self.adapter.run_filter(ctx, descriptor.source, _SIGNALSTATS_GRAPH)
        parsed = parse_signal_output(raw.stdout)
        diagnostics = _parse_diagnostics(parsed)
        samples = parsed.usable
        analysis = red_flash_detect.analyze_red_flashes(
            samples,
            duration=effective_duration(descriptor, samples),
            luma_max=descriptor.luma_max,
            config=detector,
        )
        if analysis.confidence is Confidence.UNAVAILABLE:
            raise MalformedOutput(f'No chroma statistics for {descriptor.source}')
        violations = flash_detect.flash_violations(
            analysis,
            violation_type='red_flash',
            risk_weight=self.config.scoring.red_flash_risk_weight,
            window=detector.window,
            limit=detector.red_rate_threshold,
            scoring=self.config.scoring,
        )
        return CategoryOutcome(
            data=analysis,
            violations=tuple(violations),
            confidence=analysis.confidence,
            diagnostics=diagnostics,
        )


class LuminanceAnalyzer:
    def __init__(self, adapter: ProbeAdapter, config: EngineConfig):
        self.adapter = adapter
        self.config = config

    def __call__(self, ctx: RunContext, descriptor: StreamDescriptor) -> CategoryOutcome:
        detector = self.config.detector
        raw = self.adapter.run_filter(ctx, descriptor.source, _SIGNALSTATS_GRAPH)
        parsed = parse_metadata_print_text(raw.stdout)
        samples = parsed.usable
        if not samples:
            raise MalformedOutput(f'No luminance statistics for {descriptor.source}')
        duration = effective_duration(descriptor, samples)
        violations = luminance_detect.detect_range_violations(
            samples,
            duration=duration,
            luma_max=descriptor.luma_max,
            config=detector,
        )
        stats = luminance_detect.luminance_statistics(
            samples,
            luma_max=descriptor.luma_max,
            config=detector,
            violations=violations,
        )
        return CategoryOutcome(
            data=stats,
            violations=tuple(violations),
            diagnostics=_parse_diagnostics(parsed),
        )


class AFDAnalyzer:
    """Reads AFD from the first frames' side data and checks it against the aspect ratio."""

    def __init__(self, adapter: ProbeAdapter, config: EngineConfig):
        self.adapter = adapter
        self.config = config

    def __call__(self, ctx: RunContext, descriptor: StreamDescriptor) -> CategoryOutcome:
        detector = self.config.detector
        raw = self.adapter.probe_frames(
            ctx,
            descriptor.source,
            entries=_AFD_ENTRIES,
            read_intervals=f'%+#{detector.afd_probe_frames}',
        )
        document, diagnostics = decode_frames_document(raw.stdout)
        observations = afd_detect.collect_observations(document.frames)
        analysis = afd_detect.analyze_afd(descriptor, observations, config=detector)
        last_seen = max((frame.timestamp or 0.0 for frame in document.frames), default=0.0)
        duration = descriptor.duration if descriptor.duration > 0 else last_seen
        violations = afd_detect.afd_violations(analysis, duration=duration, config=detector)
        return CategoryOutcome(
            data=analysis,
            violations=tuple(violations),
            advisories=analysis.issues,
            diagnostics=(f'{len(document.frames)} frame(s) probed',) + diagnostics,
        )


class FrameRateAnalyzer:
    """Descriptor-only check; never invokes a tool."""

    def __init__(self, config: EngineConfig):
        self.config = config

    def __call__(self, ctx: RunContext, descriptor: StreamDescriptor) -> CategoryOutcome:
        ctx.check()
        analysis = frame_rate_detect.analyze_frame_rates(descriptor)
        if not analysis.streams:
            raise MalformedOutput(f'No video stream in {descriptor.source}')
        return CategoryOutcome(
            data=analysis,
            advisories=analysis.issues + analysis.advisories,
        )


def build_analyzers(
    adapter: ProbeAdapter,
    config: EngineConfig,
    *,
    categories: Optional[Sequence[str]] = None,
) -> List[AnalyzerSpec]:
    """Explicit analyzer list for one request, in `categories` order."""

    factories = {
        'flash': lambda: FlashAnalyzer(adapter, config),
        'red_flash': lambda: RedFlashAnalyzer(adapter, config),
        'luminance': lambda: LuminanceAnalyzer(adapter, config),
        'afd': lambda: AFDAnalyzer(adapter, config),
        'frame_rate': lambda: FrameRateAnalyzer(config),
    }
    names = CATEGORY_NAMES if categories is None else tuple(categories)
    return [
        AnalyzerSpec(name=name, run=factories[name](), mandatory=name in MANDATORY_CATEGORIES)
        for name in names
    ]
