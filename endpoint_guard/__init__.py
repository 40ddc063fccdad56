"""
Endpoint Guard - endpoint protection detection and quarantine engine.

Walks file sets, matches content digests and byte patterns against a
local signature catalog, scores files heuristically, isolates detections
in an encrypted quarantine vault and watches directories in real time.

Usage:
    from endpoint_guard import GuardService, load_config

    with GuardService(load_config()) as guard:
        result = guard.start_scan("quick")
        for threat in result.threats:
            guard.quarantine_file(threat.path, threat_name=threat.name)
"""

__version__ = "0.1.0"

from .config import GuardConfig, Sensitivity, load_config
from .events import EventBus, EventType, GuardEvent
from .exceptions import (
    ConfigError,
    CryptoError,
    FileAccessError,
    GuardError,
    InvalidArgumentError,
    NotFoundError,
    ScanInProgressError,
)
from .scanner import ScanOrchestrator, ScanResult, ScanType, SignatureStore, Threat
from .storage import HistoryStore
from .quarantine import QuarantineRecord, QuarantineVault
from .realtime import RealtimeWatcher
from .service import GuardService

__all__ = [
    '__version__',
    'GuardConfig',
    'Sensitivity',
    'load_config',
    'EventBus',
    'EventType',
    'GuardEvent',
    'ConfigError',
    'CryptoError',
    'FileAccessError',
    'GuardError',
    'InvalidArgumentError',
    'NotFoundError',
    'ScanInProgressError',
    'ScanOrchestrator',
    'ScanResult',
    'ScanType',
    'SignatureStore',
    'Threat',
    'HistoryStore',
    'QuarantineRecord',
    'QuarantineVault',
    'RealtimeWatcher',
    'GuardService',
]
