"""
Scanner Module for Endpoint Guard

Detection pipeline for a single file, and the orchestrator that runs it
over a file set:

- digest: single-pass MD5/SHA-1/SHA-256
- signatures: hash and byte-pattern catalogs
- heuristics: additive suspicion scoring
- orchestrator: scan sessions with pause/resume/stop
"""

from .models import (
    DetectionMethod,
    FileDescriptor,
    ScanProgress,
    ScanResult,
    ScanSession,
    ScanState,
    ScanStatus,
    ScanType,
    Severity,
    Threat,
    ThreatInfo,
)
from .digest import DigestSet, compute_digests, hash_bytes
from .heuristics import HeuristicResult, HeuristicScorer
from .signatures import HashSignature, PatternSignature, SignatureStore
from .orchestrator import ScanOrchestrator

__all__ = [
    'DetectionMethod',
    'FileDescriptor',
    'ScanProgress',
    'ScanResult',
    'ScanSession',
    'ScanState',
    'ScanStatus',
    'ScanType',
    'Severity',
    'Threat',
    'ThreatInfo',
    'DigestSet',
    'compute_digests',
    'hash_bytes',
    'HeuristicResult',
    'HeuristicScorer',
    'HashSignature',
    'PatternSignature',
    'SignatureStore',
    'ScanOrchestrator',
]
