"""Command-line entry points for broadcast QC analysis."""
from __future__ import annotations

import argparse
import logging
import uuid
from dataclasses import replace
from pathlib import Path
from typing import List, Sequence, Tuple

from ..analyzer.categories import CATEGORY_NAMES
from ..analyzer.orchestrator import Orchestrator
from ..config.schema import EngineConfig
from ..ffmpeg.commands import ProbeAdapter
from ..models.core import AnalysisRequest
from ..models.record import AnalysisRecord, RecordStatus
from ..report.record_json import JsonRecordStore

_EXIT_CODES = {
    RecordStatus.COMPLETED: 0,
    RecordStatus.PARTIAL_FAILURE: 2,
    RecordStatus.FAILED: 1,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Broadcast QC: photosensitivity, legal range, AFD and frame-rate checks',
    )
    parser.add_argument('source', help='Media file (or any input ffmpeg can open)')
    parser.add_argument(
        '--category',
        dest='categories',
        action='append',
        metavar='NAMES',
        help=(
            f"Restrict checks ({', '.join(CATEGORY_NAMES)}). "
            'Provide multiple --category flags or comma-separated values; defaults to all.'
        ),
    )
    parser.add_argument(
        '--time-budget',
        type=_parse_duration,
        default=None,
        help='Overall analysis budget (seconds or HH:MM:SS).',
    )
    parser.add_argument(
        '--category-timeout',
        type=_parse_duration,
        default=None,
        help='Per-category time limit (seconds or HH:MM:SS); defaults to the whole budget.',
    )
    parser.add_argument(
        '--max-parallel',
        type=int,
        default=None,
        help='Maximum number of categories analysed at once.',
    )
    parser.add_argument('--ffmpeg', default=None, help='Path to the ffmpeg binary')
    parser.add_argument('--ffprobe', default=None, help='Path to the ffprobe binary')
    parser.add_argument(
        '--output-dir',
        type=Path,
        default=None,
        help='Write <request-id>.json into this directory (defaults to current directory)',
    )
    parser.add_argument('--request-id', default=None, help='Identifier for the record (default: random)')
    parser.add_argument(
        '--log-level',
        default='INFO',
        help='Logging level (DEBUG, INFO, WARNING, ...)',
    )
    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    logger = logging.getLogger(__name__)

    cfg = _build_config(args)
    logger.debug('Engine config: %s', cfg)
    request = AnalysisRequest(
        request_id=args.request_id or uuid.uuid4().hex,
        source=args.source,
        enabled_categories=_build_categories(args.categories),
        time_budget=args.time_budget,
    )
    store = JsonRecordStore(args.output_dir or Path.cwd())
    orchestrator = Orchestrator(ProbeAdapter(cfg.probe), cfg, sink=store)
    record = orchestrator.run(request)
    _log_summary(logger, record)
    return _EXIT_CODES[record.status]


def _build_config(args: argparse.Namespace) -> EngineConfig:
    cfg = EngineConfig.from_env()
    probe = cfg.probe
    if args.ffmpeg:
        probe = replace(probe, ffmpeg_path=args.ffmpeg)
    if args.ffprobe:
        probe = replace(probe, ffprobe_path=args.ffprobe)
    overrides = {}
    if args.max_parallel is not None:
        overrides['max_parallel'] = args.max_parallel
    if args.category_timeout is not None:
        overrides['category_timeout'] = args.category_timeout
    return replace(cfg, probe=probe, **overrides)


def _build_categories(raw_targets: Sequence[str] | None) -> Tuple[str, ...]:
    """Split repeated/comma-separated --category values, keeping order.

    Names are not checked here; unknown ones are rejected by the engine so
    they produce a Failed record like any other invalid request.
    """

    if not raw_targets:
        return CATEGORY_NAMES
    selected: List[str] = []
    for chunk in raw_targets:
        for value in chunk.split(','):
            normalized = value.strip().lower()
            if normalized:
                selected.append(normalized)
    return tuple(selected)


def _log_summary(logger: logging.Logger, record: AnalysisRecord) -> None:
    if record.error is not None:
        logger.error('Analysis failed: %s (%s)', record.error.message, record.error.kind.value)
        return
    logger.info(
        'Status %s | risk %.1f (%s) | compliance %s (%s)',
        record.status.value,
        record.risk.overall_score,
        record.risk.level,
        record.compliance.level if record.compliance else 'n/a',
        record.compliance.certification_status if record.compliance else 'n/a',
    )
    for item in record.degraded:
        logger.warning(
            'Category %s %s: %s',
            item.name,
            item.status.value,
            item.message or (item.error_kind.value if item.error_kind else ''),
        )
    for violation in record.violations:
        logger.info(
            '%s %.3f-%.3fs [%s] %s',
            violation.type,
            violation.start_time,
            violation.end_time,
            violation.severity,
            violation.description,
        )


def _parse_duration(value: str) -> float:
    stripped = value.strip()
    if not stripped:
        raise argparse.ArgumentTypeError('Duration must be non-empty.')
    try:
        return float(stripped)
    except ValueError:
        pass

    parts = stripped.split(':')
    if len(parts) not in (2, 3):
        raise argparse.ArgumentTypeError(
            f"Invalid duration '{value}'. Use seconds or HH:MM:SS."
        )
    try:
        seconds = float(parts[-1])
        minutes = int(parts[-2])
        hours = int(parts[-3]) if len(parts) == 3 else 0
    except ValueError as exc:
        raise argparse.ArgumentTypeError(
            f"Invalid numeric component in '{value}'."
        ) from exc
    return hours * 3600 + minutes * 60 + seconds
