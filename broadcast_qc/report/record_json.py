"""JSON rendering and file persistence for analysis records."""
from __future__ import annotations

import dataclasses
import json
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from ..models.core import StreamDescriptor
from ..models.record import AnalysisRecord, CategorySection, ComplianceReport
from ..models.violation import Evidence, Recommendation, ViolationInstance

logger = logging.getLogger(__name__)


def record_to_dict(record: AnalysisRecord) -> Dict[str, object]:
    """Flatten a record into JSON-ready primitives."""

    return {
        'request_id': record.request_id,
        'source': record.request.source,
        'status': record.status.value,
        'enabled_categories': list(record.request.enabled_categories),
        'time_budget': record.request.time_budget,
        'started_at': record.started_at,
        'finished_at': record.finished_at,
        'elapsed': record.elapsed,
        'tasks_launched': record.tasks_launched,
        'error': (
            {'kind': record.error.kind.value, 'message': record.error.message}
            if record.error
            else None
        ),
        'descriptor': _descriptor_to_dict(record.descriptor),
        'sections': {name: _section_to_dict(section) for name, section in record.sections.items()},
        'violations': [_violation_to_dict(violation) for violation in record.violations],
        'risk': {
            'overall_score': record.risk.overall_score,
            'level': record.risk.level,
            'category_scores': dict(record.risk.category_scores),
        },
        'compliance': _compliance_to_dict(record.compliance),
        'recommendations': [_recommendation_to_dict(item) for item in record.recommendations],
        'degraded': [
            {
                'name': item.name,
                'status': item.status.value,
                'error_kind': item.error_kind.value if item.error_kind else None,
                'message': item.message,
                'mandatory': item.mandatory,
            }
            for item in record.degraded
        ],
    }


def write_record_json(path: Path, record: AnalysisRecord) -> None:
    _write_json(path, record_to_dict(record))


class JsonRecordStore:
    """Reference record sink: one `<request_id>.json` file per record."""

    def __init__(self, directory: Path):
        self.directory = Path(directory)

    def path_for(self, request_id: str) -> Path:
        safe = ''.join(ch if ch.isalnum() or ch in '-_.' else '_' for ch in request_id)
        return self.directory / f'{safe}.json'

    def write(self, record: AnalysisRecord) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self.path_for(record.request_id)
        write_record_json(path, record)
        logger.info('Wrote analysis record to %s', path)


def _descriptor_to_dict(descriptor: Optional[StreamDescriptor]) -> Optional[Dict[str, object]]:
    if descriptor is None:
        return None
    return {
        'source': descriptor.source,
        'container': descriptor.container,
        'duration': descriptor.duration,
        'streams': [dataclasses.asdict(stream) for stream in descriptor.streams],
        'diagnostics': list(descriptor.diagnostics),
    }


def _section_to_dict(section: CategorySection) -> Dict[str, object]:
    return {
        'status': section.status.value,
        'confidence': section.confidence.value,
        'mandatory': section.mandatory,
        'error_kind': section.error_kind.value if section.error_kind else None,
        'message': section.message,
        'elapsed': section.elapsed,
        'data': _plain(section.data),
        'violation_count': len(section.violations),
        'advisories': list(section.advisories),
        'diagnostics': list(section.diagnostics),
    }


def _violation_to_dict(violation: ViolationInstance) -> Dict[str, object]:
    return {
        'type': violation.type,
        'severity': violation.severity,
        'start_time': violation.start_time,
        'end_time': violation.end_time,
        'duration': violation.duration,
        'risk_score': violation.risk_score,
        'standards': list(violation.standards),
        'description': violation.description,
        'evidence': [_evidence_to_dict(ev) for ev in violation.evidence],
    }


def _evidence_to_dict(ev: Evidence) -> Dict[str, object]:
    return {
        'source': ev.source,
        'metric': ev.metric,
        'value': ev.value,
        'pts_time': ev.pts_time,
    }


def _compliance_to_dict(report: Optional[ComplianceReport]) -> Optional[Dict[str, object]]:
    if report is None:
        return None
    return {
        'score': report.score,
        'level': report.level,
        'certification_status': report.certification_status,
        'standards': [
            {
                'name': entry.name,
                'compliant': entry.compliant,
                'level': entry.level,
                'reasons': list(entry.reasons),
                'unverified_categories': list(entry.unverified_categories),
            }
            for entry in report.standards
        ],
        'summary': {
            'total': report.summary.total,
            'by_type': dict(report.summary.by_type),
            'by_severity': dict(report.summary.by_severity),
        },
        'quality_metrics': dict(report.quality_metrics) if report.quality_metrics else None,
    }


def _recommendation_to_dict(item: Recommendation) -> Dict[str, object]:
    return {
        'priority': item.priority,
        'kind': item.kind,
        'action': item.action,
        'source': item.source,
        'effectiveness': item.effectiveness,
    }


def _plain(value: Any) -> Any:
    """Section payloads are nested dataclasses; reduce them to JSON types."""

    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {field.name: _plain(getattr(value, field.name)) for field in dataclasses.fields(value)}
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, Mapping):
        return {str(key): _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def _write_json(path: Path, payload: Dict[str, object]) -> None:
    path.write_text(json.dumps(payload, indent=2), encoding='utf-8')
