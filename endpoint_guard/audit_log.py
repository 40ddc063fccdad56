"""
Audit Trail - tamper-evident record of quarantine actions.

Every quarantine, restore, delete and purge is appended as one JSON line.
Each entry carries the hash of the previous entry, so editing or removing
a line breaks the chain and verify_chain() reports where.

- The log file is created with 0o600 permissions
- The log directory is created with 0o700 permissions
- fsync() is called after each append
"""

import hashlib
import json
import logging
import os
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .constants import Permissions

logger = logging.getLogger(__name__)


class AuditAction(Enum):
    """Actions recorded in the audit trail"""
    QUARANTINED = "quarantined"
    QUARANTINE_FAILED = "quarantine_failed"
    RESTORED = "restored"
    RESTORE_FAILED = "restore_failed"
    DELETED = "deleted"
    PURGED = "purged"
    THREAT_REMOVED = "threat_removed"


@dataclass
class AuditEntry:
    """A single entry in the audit trail"""
    entry_id: str
    timestamp: str
    action: AuditAction
    details: str
    metadata: Dict[str, Any]
    hash_chain: str  # Hash of previous entry

    def to_dict(self) -> Dict[str, Any]:
        return {
            'entry_id': self.entry_id,
            'timestamp': self.timestamp,
            'action': self.action.value,
            'details': self.details,
            'metadata': self.metadata,
            'hash_chain': self.hash_chain,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    def compute_hash(self) -> str:
        """SHA-256 over the canonical JSON form, including the chain link"""
        return hashlib.sha256(self.to_json().encode()).hexdigest()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(
            entry_id=data['entry_id'],
            timestamp=data['timestamp'],
            action=AuditAction(data['action']),
            details=data['details'],
            metadata=data.get('metadata', {}),
            hash_chain=data['hash_chain'],
        )


class AuditTrail:
    """
    Append-only, hash-chained audit log.

    Usage:
        trail = AuditTrail("/var/lib/endpoint-guard/quarantine/audit.log")
        trail.record(AuditAction.QUARANTINED, "Quarantined invoice.pdf.exe",
                     {'quarantine_id': record.id})
        ok, error = trail.verify_chain()
    """

    def __init__(self, log_file_path: str):
        self.log_file_path = log_file_path
        self._lock = threading.Lock()
        # Instance-specific genesis so separate trails never share a chain root
        self._last_hash = hashlib.sha256(f"genesis:{secrets.token_hex(16)}".encode()).hexdigest()
        self._entry_count = 0

        log_dir = os.path.dirname(log_file_path)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
            try:
                os.chmod(log_dir, Permissions.LOG_DIR)
            except OSError as e:
                logger.warning(f"Could not set secure directory permissions: {e}")

        self._load_existing()

    def _load_existing(self):
        """Resume the chain from the last entry on disk."""
        if not os.path.exists(self.log_file_path):
            return
        try:
            with open(self.log_file_path, 'r') as f:
                lines = [line.strip() for line in f if line.strip()]
            if lines:
                self._last_hash = AuditEntry.from_dict(json.loads(lines[-1])).compute_hash()
                self._entry_count = len(lines)
        except (OSError, ValueError, KeyError) as e:
            # A corrupted trail may mean tampering; never fork the chain silently
            raise RuntimeError(
                f"Failed to load audit trail {self.log_file_path}: {e}. "
                f"Hash chain integrity cannot be guaranteed."
            )

    def record(self, action: AuditAction, details: str,
               metadata: Optional[Dict[str, Any]] = None) -> AuditEntry:
        """Append an entry and advance the chain."""
        with self._lock:
            entry = AuditEntry(
                entry_id=str(uuid.uuid4()),
                timestamp=datetime.utcnow().isoformat() + "Z",
                action=action,
                details=details,
                metadata=metadata or {},
                hash_chain=self._last_hash,
            )
            self._append(entry)
            self._last_hash = entry.compute_hash()
            self._entry_count += 1
            return entry

    def _append(self, entry: AuditEntry):
        try:
            fd = os.open(self.log_file_path, os.O_CREAT | os.O_WRONLY | os.O_APPEND,
                         Permissions.LOG_FILE)
            with os.fdopen(fd, 'a') as f:
                f.write(entry.to_json() + '\n')
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.critical(f"Failed to write to audit trail: {e}")
            raise

    @property
    def entry_count(self) -> int:
        with self._lock:
            return self._entry_count

    @property
    def last_hash(self) -> str:
        with self._lock:
            return self._last_hash

    def _read_entries(self) -> List[AuditEntry]:
        if not os.path.exists(self.log_file_path):
            return []
        with open(self.log_file_path, 'r') as f:
            return [AuditEntry.from_dict(json.loads(line)) for line in f if line.strip()]

    def verify_chain(self) -> Tuple[bool, Optional[str]]:
        """
        Verify the integrity of the whole trail.

        Returns:
            (is_valid, error_message)
        """
        try:
            entries = self._read_entries()
        except (OSError, ValueError, KeyError) as e:
            return False, f"Error reading audit trail: {e}"

        expected = None
        for i, entry in enumerate(entries):
            # The first entry's link is the genesis hash
            if expected is not None and entry.hash_chain != expected:
                return False, f"Hash chain broken at entry {i}"
            expected = entry.compute_hash()
        return True, None

    def get_recent(self, count: int = 100) -> List[AuditEntry]:
        """Most recent entries, newest first."""
        if count <= 0:
            return []
        try:
            entries = self._read_entries()
        except (OSError, ValueError, KeyError) as e:
            logger.error(f"Error reading audit trail: {e}")
            return []
        return list(reversed(entries[-count:]))

    def get_by_action(self, action: AuditAction, limit: int = 100) -> List[AuditEntry]:
        return [e for e in self.get_recent(self.entry_count) if e.action == action][:limit]
