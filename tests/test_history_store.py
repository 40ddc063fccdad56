"""
Tests for endpoint_guard/storage/history.py - History Store
"""

import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endpoint_guard.scanner.models import (
    DetectionMethod,
    ScanSession,
    ScanStatus,
    ScanType,
    Severity,
    Threat,
)
from endpoint_guard.storage import HistoryStore


def _threat(path="/tmp/evil.exe", name="Test.Threat"):
    return Threat(
        path=path,
        name=name,
        threat_type="trojan",
        severity=Severity.HIGH,
        description="test",
        detection_method=DetectionMethod.HASH_SIGNATURE,
        file_size=10,
    )


def _session(session_id, start="2024-01-01T00:00:00Z"):
    return ScanSession(id=session_id, scan_type=ScanType.QUICK, start_time=start)


class TestSignatures:
    @pytest.mark.unit
    def test_hash_signature_insert_once(self, history):
        row = {'hash': 'a' * 32, 'hash_type': 'md5', 'name': 'X', 'type': 't',
               'severity': 'low', 'description': ''}
        assert history.add_hash_signature(row) is True
        assert history.add_hash_signature(dict(row, name='Y')) is False
        assert history.get_hash_signatures()[0]['name'] == 'X'

    @pytest.mark.unit
    def test_pattern_signatures_keep_insertion_order(self, history):
        for name in ('zeta', 'alpha', 'mid'):
            history.add_pattern_signature({'name': name, 'type': 't', 'severity': 'low',
                                           'pattern': name, 'description': '',
                                           'offset': 0, 'max_bytes': 100,
                                           'case_sensitive': False})
        assert [p['name'] for p in history.get_pattern_signatures()] == ['zeta', 'alpha', 'mid']
        assert history.count_signatures() == {'hashes': 0, 'patterns': 3}


class TestSessions:
    @pytest.mark.unit
    def test_start_then_complete(self, history):
        session = _session("scan_1")
        history.record_scan_start(session)
        assert history.get_session("scan_1").status == ScanStatus.RUNNING

        session.status = ScanStatus.COMPLETED
        session.end_time = "2024-01-01T00:01:00Z"
        session.files_scanned = 10
        session.files_skipped = 2
        session.errors = 1
        session.threats_found = 3
        session.duration = 60.0
        history.record_scan_complete(session)

        stored = history.get_session("scan_1")
        assert stored.status == ScanStatus.COMPLETED
        assert (stored.files_scanned, stored.files_skipped, stored.errors, stored.threats_found) == (10, 2, 1, 3)
        assert stored.duration == 60.0

    @pytest.mark.unit
    def test_unknown_session(self, history):
        assert history.get_session("scan_missing") is None

    @pytest.mark.unit
    def test_history_newest_first_with_limit(self, history):
        history.record_scan_start(_session("scan_a", "2024-01-01T00:00:00Z"))
        history.record_scan_start(_session("scan_b", "2024-01-02T00:00:00Z"))
        history.record_scan_start(_session("scan_c", "2024-01-03T00:00:00Z"))

        assert [s.id for s in history.get_scan_history(2)] == ["scan_c", "scan_b"]
        assert history.get_scan_history(0) == []


class TestDetections:
    @pytest.mark.unit
    def test_record_and_filter_by_scan(self, history):
        history.record_scan_start(_session("scan_1"))
        history.record_threat_detection("scan_1", _threat("/a"))
        history.record_threat_detection(None, _threat("/b"), action_taken="quarantined")

        in_scan = history.get_threat_detections("scan_1")
        everything = history.get_threat_detections()

        assert [d['file_path'] for d in in_scan] == ["/a"]
        assert len(everything) == 2
        realtime = [d for d in everything if d['scan_id'] is None][0]
        assert realtime['action_taken'] == "quarantined"
        assert realtime['detection_method'] == "hash-signature"

    @pytest.mark.unit
    def test_statistics(self, history):
        session = _session("scan_1")
        history.record_scan_start(session)
        session.status = ScanStatus.COMPLETED
        session.files_scanned = 7
        history.record_scan_complete(session)
        history.record_threat_detection("scan_1", _threat())

        stats = history.get_statistics()
        assert stats['totalScans'] == 1
        assert stats['totalThreats'] == 1
        assert stats['totalFilesScanned'] == 7
        assert stats['recentThreats'][0]['threat_name'] == "Test.Threat"

    @pytest.mark.unit
    def test_concurrent_writes(self, history):
        def writer(n):
            for i in range(25):
                history.record_threat_detection(None, _threat(f"/t{n}/{i}"))

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert history.get_statistics()['totalThreats'] == 100


class TestOnDisk:
    @pytest.mark.unit
    def test_persists_across_instances(self, temp_dir):
        db = str(temp_dir / "data" / "history.sqlite3")
        first = HistoryStore(db)
        first.record_scan_start(_session("scan_1"))
        first.close()

        second = HistoryStore(db)
        try:
            assert second.get_session("scan_1") is not None
        finally:
            second.close()
