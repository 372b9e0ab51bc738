"""Request validation, concurrent category dispatch and record lifecycle."""
from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from ..config.schema import EngineConfig
from ..errors import (
    AnalysisCancelled,
    ErrorKind,
    InvalidRequest,
    QCError,
    ToolTimeout,
    ToolUnavailable,
)
from ..ffmpeg.commands import ProbeAdapter
from ..ffmpeg.context import RunContext
from ..models.core import AnalysisRequest, Confidence, StreamDescriptor
from ..models.record import (
    AnalysisRecord,
    CategorySection,
    RecordStatus,
    SectionStatus,
    check_transition,
)
from ..stats.probe_schema import decode_stream_descriptor
from .aggregator import aggregate, failed_record
from .categories import CATEGORY_NAMES, AnalyzerSpec, build_analyzers

logger = logging.getLogger(__name__)

StatusCallback = Callable[[str, RecordStatus], None]
AnalyzerFactory = Callable[..., List[AnalyzerSpec]]


class RecordSink(Protocol):
    def write(self, record: AnalysisRecord) -> None:
        ...


def validate_request(request: AnalysisRequest, *, known: Sequence[str] = CATEGORY_NAMES) -> None:
    """Raise InvalidRequest for anything that must not reach dispatch."""

    if not request.request_id or not request.request_id.strip():
        raise InvalidRequest('request_id must be non-empty')
    if not request.source or not request.source.strip():
        raise InvalidRequest('source must be non-empty')
    if not request.enabled_categories:
        raise InvalidRequest('at least one category must be enabled')
    seen = set()
    for name in request.enabled_categories:
        if name not in known:
            raise InvalidRequest(f"Unknown category '{name}'. Choose from: {', '.join(known)}.")
        if name in seen:
            raise InvalidRequest(f"Category '{name}' requested more than once")
        seen.add(name)
    if request.time_budget is not None and request.time_budget <= 0:
        raise InvalidRequest(f'time_budget must be positive, got {request.time_budget}')


class _Lifecycle:
    """Tracks the record status between Pending and a terminal state."""

    def __init__(self, request_id: str, on_status: Optional[StatusCallback]):
        self.request_id = request_id
        self.status = RecordStatus.PENDING
        self._on_status = on_status
        self._emit()

    def advance(self, target: RecordStatus) -> None:
        check_transition(self.status, target)
        logger.debug('%s: %s -> %s', self.request_id, self.status.value, target.value)
        self.status = target
        self._emit()

    def _emit(self) -> None:
        if self._on_status is not None:
            self._on_status(self.request_id, self.status)


def _failed_section(spec: AnalyzerSpec, exc: QCError, elapsed: float) -> CategorySection:
    status = SectionStatus.DEGRADED if isinstance(exc, ToolTimeout) else SectionStatus.UNAVAILABLE
    return CategorySection(
        name=spec.name,
        status=status,
        confidence=Confidence.UNAVAILABLE,
        mandatory=spec.mandatory,
        error_kind=exc.kind,
        message=str(exc),
        elapsed=elapsed,
    )


class Orchestrator:
    """Runs one analysis request end to end and returns its frozen record."""

    def __init__(
        self,
        adapter: ProbeAdapter,
        config: Optional[EngineConfig] = None,
        *,
        sink: Optional[RecordSink] = None,
        on_status: Optional[StatusCallback] = None,
        analyzer_factory: AnalyzerFactory = build_analyzers,
    ):
        self.adapter = adapter
        self.config = config or EngineConfig()
        self.sink = sink
        self.on_status = on_status
        self.analyzer_factory = analyzer_factory

    def run(self, request: AnalysisRequest, ctx: Optional[RunContext] = None) -> AnalysisRecord:
        started_at = time.time()
        lifecycle = _Lifecycle(request.request_id, self.on_status)
        logger.info(
            'Analysis %s of %s | categories: %s',
            request.request_id,
            request.source,
            ', '.join(request.enabled_categories),
        )

        try:
            validate_request(request)
        except InvalidRequest as exc:
            logger.warning('Rejected request %s: %s', request.request_id, exc)
            return self._fail(lifecycle, request, exc, started_at=started_at)

        budget = request.time_budget or self.config.default_time_budget
        root = RunContext.with_budget(budget, parent=ctx)
        try:
            # Only the descriptor needs ffprobe up front; a missing ffmpeg surfaces
            # per category, fatal only when a mandatory category needs it.
            self.adapter.check_tools(('ffprobe',))
            raw = self.adapter.introspect(root, request.source)
            descriptor = decode_stream_descriptor(raw.stdout, source=request.source)
        except QCError as exc:
            logger.debug('Introspection of %s failed', request.source, exc_info=True)
            return self._fail(lifecycle, request, exc, started_at=started_at)

        specs = self.analyzer_factory(self.adapter, self.config, categories=request.enabled_categories)
        lifecycle.advance(RecordStatus.RUNNING)
        sections = self._dispatch(specs, descriptor, root)

        if root.cancelled:
            return self._fail(
                lifecycle,
                request,
                AnalysisCancelled('analysis cancelled; partial results discarded'),
                started_at=started_at,
                descriptor=descriptor,
                tasks_launched=len(specs),
            )
        for section in sections.values():
            if section.mandatory and section.error_kind is ErrorKind.TOOL_UNAVAILABLE:
                return self._fail(
                    lifecycle,
                    request,
                    ToolUnavailable(f"mandatory category '{section.name}': {section.message}"),
                    started_at=started_at,
                    descriptor=descriptor,
                    tasks_launched=len(specs),
                )

        record = aggregate(
            request,
            sections,
            descriptor=descriptor,
            config=self.config,
            started_at=started_at,
            tasks_launched=len(specs),
        )
        lifecycle.advance(record.status)
        logger.info(
            'Analysis %s finished: %s | %d violation(s) | risk %.1f (%s)',
            request.request_id,
            record.status.value,
            len(record.violations),
            record.risk.overall_score,
            record.risk.level,
        )
        return self._deliver(record)

    def _dispatch(
        self,
        specs: Sequence[AnalyzerSpec],
        descriptor: StreamDescriptor,
        root: RunContext,
    ) -> Dict[str, CategorySection]:
        workers = max(1, min(self.config.max_parallel, len(specs)))
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix='broadcast-qc')
        futures: Dict[Future, AnalyzerSpec] = {}
        contexts: Dict[str, RunContext] = {}
        try:
            for spec in specs:
                child = root.child(self.config.category_timeout)
                contexts[spec.name] = child
                futures[executor.submit(self._run_category, spec, child, descriptor)] = spec
            left = root.remaining()
            timeout = None if left is None else max(0.0, left) + self.config.collect_grace
            _, pending = wait(futures, timeout=timeout)
            for future in pending:
                contexts[futures[future].name].cancel()
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        results: Dict[str, CategorySection] = {}
        for future, spec in futures.items():
            if future in pending:
                logger.warning("Category '%s' did not finish within the time budget", spec.name)
                results[spec.name] = CategorySection(
                    name=spec.name,
                    status=SectionStatus.DEGRADED,
                    confidence=Confidence.UNAVAILABLE,
                    mandatory=spec.mandatory,
                    error_kind=ErrorKind.TOOL_TIMEOUT,
                    message='did not finish within the time budget',
                )
            else:
                results[spec.name] = future.result()
        return {spec.name: results[spec.name] for spec in specs}

    def _run_category(
        self,
        spec: AnalyzerSpec,
        ctx: RunContext,
        descriptor: StreamDescriptor,
    ) -> CategorySection:
        started = time.monotonic()
        try:
            ctx.check()
            outcome = spec.run(ctx, descriptor)
        except QCError as exc:
            elapsed = time.monotonic() - started
            logger.warning("Category '%s' %s: %s", spec.name, exc.kind.value, exc)
            logger.debug("Category '%s' failure detail", spec.name, exc_info=True)
            return _failed_section(spec, exc, elapsed)
        except Exception as exc:
            logger.exception("Analyzer '%s' raised unexpectedly", spec.name)
            return CategorySection(
                name=spec.name,
                status=SectionStatus.UNAVAILABLE,
                confidence=Confidence.UNAVAILABLE,
                mandatory=spec.mandatory,
                error_kind=ErrorKind.ANALYZER_ERROR,
                message=f'{type(exc).__name__}: {exc}',
                elapsed=time.monotonic() - started,
            )

        estimated = outcome.confidence is not Confidence.DEFINITIVE
        if estimated:
            logger.warning("Category '%s' finished with %s confidence", spec.name, outcome.confidence.value)
        return CategorySection(
            name=spec.name,
            status=SectionStatus.DEGRADED if estimated else SectionStatus.OK,
            confidence=outcome.confidence,
            mandatory=spec.mandatory,
            data=outcome.data,
            violations=outcome.violations,
            advisories=outcome.advisories,
            diagnostics=outcome.diagnostics,
            message=f'{outcome.confidence.value} result' if estimated else '',
            elapsed=time.monotonic() - started,
        )

    def _fail(
        self,
        lifecycle: _Lifecycle,
        request: AnalysisRequest,
        exc: QCError,
        *,
        started_at: float,
        descriptor: Optional[StreamDescriptor] = None,
        tasks_launched: int = 0,
    ) -> AnalysisRecord:
        record = failed_record(
            request,
            kind=exc.kind,
            message=str(exc),
            descriptor=descriptor,
            started_at=started_at,
            tasks_launched=tasks_launched,
        )
        lifecycle.advance(RecordStatus.FAILED)
        logger.error('Analysis %s failed (%s): %s', request.request_id, record.error.kind.value, exc)
        return self._deliver(record)

    def _deliver(self, record: AnalysisRecord) -> AnalysisRecord:
        if self.sink is not None:
            try:
                self.sink.write(record)
            except Exception:
                logger.exception('Record sink failed for %s', record.request_id)
        return record
