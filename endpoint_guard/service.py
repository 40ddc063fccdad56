"""
Guard Service - the boundary the CLI and UI layers talk to.

Wires the detection pipeline, the quarantine vault, the realtime watcher
and the history store together from one GuardConfig, and exposes the
operations callers need. Every method either returns a plain result or
raises a GuardError subclass carrying an ErrorCode.

Usage:
    with GuardService(load_config("/etc/endpoint-guard.yaml")) as guard:
        guard.subscribe(print_event)
        result = guard.start_scan("custom", ["/home/user/Downloads"])
        for threat in result.threats:
            guard.quarantine_file(threat.path, threat_name=threat.name)
"""

import logging
import os
from typing import Any, Dict, Iterable, List, Optional

from .audit_log import AuditAction, AuditTrail
from .config import GuardConfig
from .events import Callback, EventBus, EventType
from .quarantine import QuarantineCipher, QuarantineRecord, QuarantineVault
from .realtime import RealtimeWatcher
from .remediation import RemovalResult, remove_threat
from .scanner import HeuristicScorer, ScanOrchestrator, ScanResult, ScanSession, SignatureStore, Threat
from .storage import HistoryStore
from .utils.error_handling import ErrorCategory, safe_execute

logger = logging.getLogger(__name__)

AUDIT_LOG_NAME = 'quarantine_audit.log'


class GuardService:
    """Facade over the scanner, vault, watcher and history store."""

    def __init__(self, config: Optional[GuardConfig] = None):
        self.config = config or GuardConfig()
        paths = self.config.paths

        self.events = EventBus()
        self.history = HistoryStore(paths.database)
        self.signatures = SignatureStore(
            self.history,
            pattern_extensions=self.config.detection.pattern_scan_extensions,
            pattern_scan_limit=self.config.detection.pattern_scan_limit,
        )
        self.heuristics = HeuristicScorer(self.config.detection.heuristic_sensitivity)
        self.orchestrator = ScanOrchestrator(
            self.config, self.signatures, self.heuristics, self.history, self.events,
        )
        self.audit = AuditTrail(os.path.join(paths.log_dir, AUDIT_LOG_NAME))
        self.vault = QuarantineVault(
            paths.quarantine_dir,
            QuarantineCipher(self.config.quarantine.encryption_key),
            audit=self.audit,
            secure_delete_originals=self.config.quarantine.secure_delete,
            restore_fallback_dir=self.config.quarantine.restore_fallback_dir,
        )
        self.watcher = RealtimeWatcher(
            self.config, self.orchestrator, self.vault, self.history, self.events,
        )

        self.signatures.load()
        logger.info("Endpoint Guard service initialized")

    def __enter__(self) -> "GuardService":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # ---------- events ----------

    def subscribe(self, callback: Callback, event_types: Optional[Iterable[EventType]] = None) -> int:
        return self.events.subscribe(callback, event_types)

    def unsubscribe(self, subscription_id: int) -> bool:
        return self.events.unsubscribe(subscription_id)

    # ---------- scanning ----------

    def start_scan(self, scan_type, paths: Optional[Iterable[str]] = None,
                   recursive: bool = True) -> ScanResult:
        """Run a scan in the calling thread; control it from others."""
        return self.orchestrator.scan(scan_type, paths, recursive=recursive)

    def pause_scan(self) -> bool:
        return self.orchestrator.pause()

    def resume_scan(self) -> bool:
        return self.orchestrator.resume()

    def stop_scan(self) -> bool:
        return self.orchestrator.stop()

    def scan_file(self, path: str) -> Optional[Threat]:
        """Ad-hoc single-file check; detections are recorded in history."""
        threat = self.orchestrator.scan_file(path)
        if threat is not None:
            with safe_execute("recording detection", ErrorCategory.PERSISTENCE):
                self.history.record_threat_detection(None, threat, action_taken='reported')
        return threat

    # ---------- quarantine ----------

    def quarantine_file(self, path: str, threat_name: Optional[str] = None) -> QuarantineRecord:
        return self.vault.quarantine(path, threat_name=threat_name)

    def restore_file(self, quarantine_id: str) -> str:
        return self.vault.restore(quarantine_id)

    def delete_quarantine(self, quarantine_id: str) -> bool:
        return self.vault.permanent_delete(quarantine_id)

    def list_quarantine(self) -> List[QuarantineRecord]:
        return self.vault.list()

    def verify_quarantine(self, quarantine_id: str) -> bool:
        return self.vault.verify(quarantine_id)

    def purge_quarantine(self, days: Optional[int] = None) -> List[str]:
        """Drop records older than `days` (configured retention by default)."""
        if days is None:
            days = self.config.quarantine.retention_days
        return self.vault.purge_older_than(days)

    def remove_threat(self, path: str, kill_processes: bool = True) -> RemovalResult:
        """Terminate processes running a file and securely delete it."""
        result = remove_threat(path, kill_processes=kill_processes)
        try:
            self.audit.record(AuditAction.THREAT_REMOVED, f"Removed {os.path.basename(path)}",
                              result.to_dict())
        except OSError as e:
            logger.error(f"Audit trail write failed for threat removal: {e}")
        return result

    # ---------- realtime ----------

    def toggle_realtime_protection(self, enabled: bool) -> bool:
        """Start or stop the watcher. Idempotent; returns the resulting state."""
        if enabled:
            self.watcher.start()
        else:
            self.watcher.stop()
        return self.watcher.is_running

    def is_realtime_enabled(self) -> bool:
        return self.watcher.is_running

    # ---------- history & signatures ----------

    def get_scan_history(self, limit: int = 50) -> List[ScanSession]:
        return self.history.get_scan_history(limit)

    def get_statistics(self) -> Dict[str, Any]:
        stats = self.history.get_statistics()
        stats['signatures'] = {
            'hashes': self.signatures.hash_count,
            'patterns': self.signatures.pattern_count,
        }
        stats['realtimeEnabled'] = self.is_realtime_enabled()
        return stats

    def update_signatures(self) -> Dict[str, Any]:
        updates = self.config.updates
        return self.signatures.update_from_url(updates.update_url, timeout=updates.timeout,
                                               retries=updates.retries)

    def import_signatures(self, path: str) -> Dict[str, int]:
        return self.signatures.import_signatures(path)

    # ---------- shutdown ----------

    def close(self):
        self.orchestrator.stop()
        self.watcher.stop()
        self.history.close()
        logger.info("Endpoint Guard service closed")
