"""Tests for JSON rendering and the file record store."""
from __future__ import annotations

import json
from types import MappingProxyType

from broadcast_qc.analyzer.aggregator import aggregate, failed_record
from broadcast_qc.errors import ErrorKind
from broadcast_qc.models.core import AnalysisRequest, Confidence, StreamDescriptor, StreamInfo
from broadcast_qc.models.events import FlashAnalysis, TimeWindow
from broadcast_qc.models.record import CategorySection, SectionStatus
from broadcast_qc.models.violation import Evidence, ViolationInstance
from broadcast_qc.report.record_json import JsonRecordStore, record_to_dict


def _request(request_id: str = 'r1') -> AnalysisRequest:
    return AnalysisRequest(request_id=request_id, source='clip.mp4', enabled_categories=('flash',))


def _flash_record():
    violation = ViolationInstance(
        type='flash',
        severity='high',
        start_time=0.5,
        end_time=1.5,
        risk_score=100.0,
        standards=('Ofcom',),
        description='10 flash events within 1s (limit 3)',
        evidence=(Evidence(source='flash', metric='windowed_count', value=10.0, pts_time=0.5),),
    )
    section = CategorySection(
        name='flash',
        status=SectionStatus.OK,
        confidence=Confidence.DEFINITIVE,
        mandatory=True,
        data=FlashAnalysis(flash_count=20, max_rate=10, critical_periods=(TimeWindow(0.1, 2.0),)),
        violations=(violation,),
    )
    descriptor = StreamDescriptor(
        source='clip.mp4',
        container='mp4',
        duration=10.0,
        streams=(StreamInfo(index=0, codec_type='video', width=1920, height=1080),),
    )
    return aggregate(_request(), MappingProxyType({'flash': section}), descriptor=descriptor, started_at=1.0)


def test_record_to_dict_is_json_ready() -> None:
    payload = record_to_dict(_flash_record())

    text = json.dumps(payload)
    assert json.loads(text)['status'] == 'Completed'
    assert payload['request_id'] == 'r1'
    assert payload['error'] is None
    assert payload['descriptor']['streams'][0]['width'] == 1920
    section = payload['sections']['flash']
    assert section['confidence'] == 'Definitive'
    assert section['data']['critical_periods'] == [{'start': 0.1, 'end': 2.0}]
    assert section['data']['confidence'] == 'Definitive'
    assert payload['violations'][0]['evidence'][0]['metric'] == 'windowed_count'
    assert payload['violations'][0]['duration'] == 1.0
    assert payload['compliance']['certification_status'] == 'conditional'


def test_record_to_dict_failed_record() -> None:
    record = failed_record(_request(), kind=ErrorKind.INVALID_REQUEST, message="Unknown category 'x'")

    payload = record_to_dict(record)

    assert payload['status'] == 'Failed'
    assert payload['error'] == {'kind': 'InvalidRequest', 'message': "Unknown category 'x'"}
    assert payload['sections'] == {}
    assert payload['compliance'] is None


def test_json_record_store_writes_one_file_per_request(tmp_path) -> None:
    store = JsonRecordStore(tmp_path / 'records')

    store.write(_flash_record())

    written = json.loads((tmp_path / 'records' / 'r1.json').read_text(encoding='utf-8'))
    assert written['violations'][0]['type'] == 'flash'


def test_json_record_store_sanitises_request_ids(tmp_path) -> None:
    store = JsonRecordStore(tmp_path)

    assert store.path_for('../etc/passwd').name == '.._etc_passwd.json'
    assert store.path_for('job 42').parent == tmp_path
