"""End-to-end orchestration tests against a scripted probe adapter."""
from __future__ import annotations

import json
import time
from dataclasses import replace
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

import pytest

from broadcast_qc.analyzer.categories import CATEGORY_NAMES, CategoryOutcome, build_analyzers
from broadcast_qc.analyzer.orchestrator import Orchestrator, validate_request
from broadcast_qc.config.schema import EngineConfig
from broadcast_qc.errors import ErrorKind, InvalidRequest, ToolTimeout, ToolUnavailable
from broadcast_qc.ffmpeg.commands import RawOutput
from broadcast_qc.ffmpeg.context import RunContext
from broadcast_qc.models.core import AnalysisRequest, Confidence
from broadcast_qc.models.record import RecordStatus, SectionStatus

_FIXTURES = Path(__file__).resolve().parents[2] / 'fixtures'


def _fixture(name: str) -> str:
    return (_FIXTURES / name).read_text(encoding='utf-8')


def _signalstats(values: Sequence[float], *, step: float = 0.1, vavg: float = 128.0) -> str:
    lines: List[str] = []
    for index, value in enumerate(values):
        lines.append(f'frame:{index}    pts:{index}    pts_time:{index * step:.1f}')
        lines.append(f'lavfi.signalstats.YMIN={value}')
        lines.append(f'lavfi.signalstats.YAVG={value}')
        lines.append(f'lavfi.signalstats.YMAX={value}')
        lines.append(f'lavfi.signalstats.VAVG={vavg}')
    return '\n'.join(lines) + '\n'


_AFD_FRAMES = json.dumps({
    'frames': [
        {
            'pts_time': '0.0',
            'side_data_list': [{'side_data_type': 'Active format description', 'active_format': 10}],
        },
    ],
})


def _raw(text: str) -> RawOutput:
    return RawOutput(command=('fake',), stdout=text, stderr='', returncode=0, elapsed=0.0)


class FakeAdapter:
    """Answers every tool call from canned text and records what was asked."""

    def __init__(
        self,
        *,
        signalstats: str = '',
        scene: str = '',
        frames: str = _AFD_FRAMES,
        missing: Tuple[str, ...] = (),
    ):
        self.signalstats = signalstats
        self.scene = scene
        self.frames = frames
        self.missing = missing
        self.calls: List[str] = []

    def check_tools(self, tools: Sequence[str] = ('ffmpeg', 'ffprobe')) -> None:
        self.calls.append('check_tools:' + ','.join(tools))
        for tool in tools:
            self._require(tool)

    def _require(self, tool: str) -> None:
        if tool in self.missing:
            raise ToolUnavailable(f'Required executable not found: {tool}')

    def introspect(self, ctx: RunContext, source: str) -> RawOutput:
        ctx.check()
        self._require('ffprobe')
        self.calls.append('introspect')
        return _raw(_fixture('sample_ffprobe.json'))

    def run_filter(self, ctx: RunContext, source: str, filtergraph: str) -> RawOutput:
        ctx.check()
        self._require('ffmpeg')
        self.calls.append(f'run_filter:{filtergraph}')
        return _raw(self.scene if 'scene' in filtergraph else self.signalstats)

    def probe_frames(
        self,
        ctx: RunContext,
        source: str,
        *,
        entries: str,
        read_intervals: Optional[str] = None,
    ) -> RawOutput:
        ctx.check()
        self._require('ffprobe')
        self.calls.append('probe_frames')
        return _raw(self.frames)


def _alternating_adapter() -> FakeAdapter:
    values = [40.0 if i % 2 == 0 else 220.0 for i in range(21)]
    return FakeAdapter(signalstats=_signalstats(values))


def _request(categories: Sequence[str] = CATEGORY_NAMES, **kwargs) -> AnalysisRequest:
    return AnalysisRequest(request_id='r1', source='clip.mp4', enabled_categories=tuple(categories), **kwargs)


def _factory_with(**overrides):
    """build_analyzers, with selected categories' run functions swapped out."""

    def factory(adapter, config, *, categories=None):
        specs = build_analyzers(adapter, config, categories=categories)
        return [replace(spec, run=overrides[spec.name]) if spec.name in overrides else spec for spec in specs]

    return factory


def _raises(exc: Exception):
    def run(ctx, descriptor):
        raise exc

    return run


def test_run_flags_alternating_flashes() -> None:
    statuses: List[RecordStatus] = []
    orchestrator = Orchestrator(
        _alternating_adapter(),
        on_status=lambda request_id, status: statuses.append(status),
    )

    record = orchestrator.run(_request())

    assert record.status is RecordStatus.COMPLETED
    assert statuses == [RecordStatus.PENDING, RecordStatus.RUNNING, RecordStatus.COMPLETED]
    assert list(record.sections) == list(CATEGORY_NAMES)
    assert record.tasks_launched == 5
    flash = record.sections['flash']
    assert flash.status is SectionStatus.OK
    assert flash.data.flash_count >= 20
    assert flash.data.max_rate >= 3
    assert flash.data.exceeds_threshold is True
    assert record.sections['red_flash'].data.flash_count == 0
    assert {violation.type for violation in record.violations} == {'flash'}
    for name in ('ITU-R BT.1702', 'Ofcom', 'FCC PSE', 'ATSC', 'WCAG 2.x'):
        assert record.compliance.standard(name).level == 'non-compliant'
    assert record.risk.overall_score > 0
    assert record.degraded == ()


def test_run_mandatory_timeout_is_partial_failure() -> None:
    orchestrator = Orchestrator(
        _alternating_adapter(),
        analyzer_factory=_factory_with(red_flash=_raises(ToolTimeout('ffmpeg exceeded its deadline'))),
    )

    record = orchestrator.run(_request())

    assert record.status is RecordStatus.PARTIAL_FAILURE
    section = record.sections['red_flash']
    assert section.status is SectionStatus.DEGRADED
    assert section.error_kind is ErrorKind.TOOL_TIMEOUT
    assert [item.name for item in record.degraded] == ['red_flash']
    assert record.sections['flash'].status is SectionStatus.OK
    assert record.sections['flash'].data.flash_count >= 20
    assert record.sections['luminance'].status is SectionStatus.OK


def test_run_optional_timeout_is_listed_but_completed() -> None:
    orchestrator = Orchestrator(
        _alternating_adapter(),
        analyzer_factory=_factory_with(afd=_raises(ToolTimeout('ffprobe exceeded its deadline'))),
    )

    record = orchestrator.run(_request())

    assert record.status is RecordStatus.COMPLETED
    assert [(item.name, item.error_kind) for item in record.degraded] == [('afd', ErrorKind.TOOL_TIMEOUT)]


def test_run_collects_category_that_overruns_budget() -> None:
    def stuck(ctx, descriptor):
        for _ in range(500):
            if ctx.cancelled:
                break
            time.sleep(0.01)
        ctx.check()
        return CategoryOutcome()

    config = EngineConfig(collect_grace=0.05)
    orchestrator = Orchestrator(_alternating_adapter(), config, analyzer_factory=_factory_with(red_flash=stuck))

    started = time.monotonic()
    record = orchestrator.run(_request(time_budget=0.3))

    assert time.monotonic() - started < 3.0
    assert record.status is RecordStatus.PARTIAL_FAILURE
    section = record.sections['red_flash']
    assert section.status is SectionStatus.DEGRADED
    assert section.error_kind is ErrorKind.TOOL_TIMEOUT
    assert section.message == 'did not finish within the time budget'
    assert record.sections['flash'].status is SectionStatus.OK


def test_run_rejects_unknown_category_before_dispatch() -> None:
    adapter = _alternating_adapter()
    statuses: List[RecordStatus] = []
    orchestrator = Orchestrator(adapter, on_status=lambda request_id, status: statuses.append(status))

    record = orchestrator.run(_request(('flash', 'strobe')))

    assert record.status is RecordStatus.FAILED
    assert record.error.kind is ErrorKind.INVALID_REQUEST
    assert "'strobe'" in record.error.message
    assert record.tasks_launched == 0
    assert adapter.calls == []
    assert dict(record.sections) == {}
    assert statuses == [RecordStatus.PENDING, RecordStatus.FAILED]


def test_run_falls_back_to_scene_cuts() -> None:
    adapter = FakeAdapter(signalstats='garbage\n', scene=_fixture('sample_scene_cuts.txt'))

    record = Orchestrator(adapter).run(_request(('flash', 'frame_rate')))

    flash = record.sections['flash']
    assert flash.confidence is Confidence.ESTIMATED
    assert flash.status is SectionStatus.DEGRADED
    assert flash.data.flash_count == 2
    assert record.status is RecordStatus.PARTIAL_FAILURE
    assert any('scene' in call for call in adapter.calls)


def test_run_missing_ffprobe_fails_request() -> None:
    adapter = FakeAdapter(missing=('ffprobe',))

    record = Orchestrator(adapter).run(_request())

    assert record.status is RecordStatus.FAILED
    assert record.error.kind is ErrorKind.TOOL_UNAVAILABLE
    assert record.tasks_launched == 0
    assert adapter.calls == ['check_tools:ffprobe']


def test_run_missing_ffmpeg_spares_ffprobe_only_categories() -> None:
    adapter = FakeAdapter(missing=('ffmpeg',))

    record = Orchestrator(adapter).run(_request(('frame_rate', 'afd')))

    assert record.status is RecordStatus.COMPLETED
    assert record.error is None
    assert record.sections['frame_rate'].status is SectionStatus.OK
    assert record.sections['afd'].status is SectionStatus.OK
    assert not any(call.startswith('run_filter') for call in adapter.calls)


def test_run_missing_ffmpeg_fails_request_with_flash_enabled() -> None:
    adapter = FakeAdapter(missing=('ffmpeg',))

    record = Orchestrator(adapter).run(_request(('flash', 'afd')))

    assert record.status is RecordStatus.FAILED
    assert record.error.kind is ErrorKind.TOOL_UNAVAILABLE
    assert 'flash' in record.error.message
    assert 'ffmpeg' in record.error.message


def test_run_missing_ffmpeg_loses_optional_luminance() -> None:
    adapter = FakeAdapter(missing=('ffmpeg',))

    record = Orchestrator(adapter).run(_request(('luminance', 'afd')))

    assert record.status is RecordStatus.COMPLETED
    section = record.sections['luminance']
    assert section.status is SectionStatus.UNAVAILABLE
    assert section.error_kind is ErrorKind.TOOL_UNAVAILABLE
    assert record.sections['afd'].status is SectionStatus.OK


def test_run_mandatory_tool_unavailable_fails_request() -> None:
    orchestrator = Orchestrator(
        _alternating_adapter(),
        analyzer_factory=_factory_with(flash=_raises(ToolUnavailable('Cannot execute ffmpeg'))),
    )

    record = orchestrator.run(_request())

    assert record.status is RecordStatus.FAILED
    assert record.error.kind is ErrorKind.TOOL_UNAVAILABLE
    assert 'flash' in record.error.message
    assert record.tasks_launched == 5


def test_run_optional_tool_unavailable_only_loses_category() -> None:
    orchestrator = Orchestrator(
        _alternating_adapter(),
        analyzer_factory=_factory_with(afd=_raises(ToolUnavailable('Cannot execute ffprobe'))),
    )

    record = orchestrator.run(_request())

    assert record.status is RecordStatus.COMPLETED
    assert record.sections['afd'].status is SectionStatus.UNAVAILABLE
    assert 'afd' not in record.risk.category_scores


def test_run_records_unexpected_analyzer_errors() -> None:
    orchestrator = Orchestrator(
        _alternating_adapter(),
        analyzer_factory=_factory_with(luminance=_raises(ValueError('boom'))),
    )

    record = orchestrator.run(_request())

    section = record.sections['luminance']
    assert section.status is SectionStatus.UNAVAILABLE
    assert section.error_kind is ErrorKind.ANALYZER_ERROR
    assert section.message == 'ValueError: boom'
    assert record.status is RecordStatus.COMPLETED


def test_run_parent_cancel_discards_results() -> None:
    parent = RunContext()

    def cancel_everything(ctx, descriptor):
        parent.cancel()
        return CategoryOutcome()

    orchestrator = Orchestrator(_alternating_adapter(), analyzer_factory=_factory_with(afd=cancel_everything))

    record = orchestrator.run(_request(), ctx=parent)

    assert record.status is RecordStatus.FAILED
    assert record.error.kind is ErrorKind.CANCELLED
    assert dict(record.sections) == {}
    assert record.violations == ()


def test_run_delivers_record_to_sink() -> None:
    delivered: Dict[str, RecordStatus] = {}

    class Sink:
        def write(self, record) -> None:
            delivered[record.request_id] = record.status

    Orchestrator(_alternating_adapter(), sink=Sink()).run(_request(('frame_rate',)))

    assert delivered == {'r1': RecordStatus.COMPLETED}


def test_run_survives_failing_sink() -> None:
    class BrokenSink:
        def write(self, record) -> None:
            raise OSError('disk full')

    record = Orchestrator(_alternating_adapter(), sink=BrokenSink()).run(_request(('frame_rate',)))

    assert record.status is RecordStatus.COMPLETED


@pytest.mark.parametrize(
    'request_kwargs, message',
    [
        ({'request_id': ''}, 'request_id'),
        ({'source': ' '}, 'source'),
        ({'enabled_categories': ()}, 'at least one category'),
        ({'enabled_categories': ('flash', 'flash')}, 'more than once'),
        ({'time_budget': 0}, 'time_budget'),
    ],
)
def test_validate_request_rejects(request_kwargs, message) -> None:
    request = replace(_request(), **request_kwargs)

    with pytest.raises(InvalidRequest, match=message):
        validate_request(request)


def test_validate_request_accepts_subset() -> None:
    validate_request(_request(('afd', 'flash')))
