"""
History Store - embedded persistence for signatures, scans and detections.

Four logical collections live in one SQLite database:

- hash_signatures     exact digest -> threat metadata
- pattern_signatures  ordered byte-pattern catalog
- scan_sessions       one row per scan invocation
- threat_detections   one row per confirmed threat

The store is shared by the orchestrator, its background history writer
and the realtime watcher, so every statement runs under one lock on a
connection opened with check_same_thread=False.
"""

import logging
import os
import sqlite3
import threading
from typing import Any, Dict, List, Optional

from ..constants import Permissions, ScanDefaults
from ..scanner.models import ScanSession, ScanStatus, ScanType, Threat

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS hash_signatures (
  hash TEXT PRIMARY KEY,
  hash_type TEXT NOT NULL,
  name TEXT NOT NULL,
  type TEXT NOT NULL,
  severity TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT ''
);

CREATE TABLE IF NOT EXISTS pattern_signatures (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL UNIQUE,
  type TEXT NOT NULL,
  severity TEXT NOT NULL,
  pattern TEXT NOT NULL,
  description TEXT NOT NULL DEFAULT '',
  "offset" INTEGER NOT NULL DEFAULT 0,
  max_bytes INTEGER,
  case_sensitive INTEGER NOT NULL DEFAULT 0
);

CREATE TABLE IF NOT EXISTS scan_sessions (
  id TEXT PRIMARY KEY,
  scan_type TEXT NOT NULL,
  start_time TEXT NOT NULL,
  end_time TEXT,
  status TEXT NOT NULL,
  files_scanned INTEGER NOT NULL DEFAULT 0,
  files_skipped INTEGER NOT NULL DEFAULT 0,
  errors INTEGER NOT NULL DEFAULT 0,
  threats_found INTEGER NOT NULL DEFAULT 0,
  duration REAL
);

CREATE TABLE IF NOT EXISTS threat_detections (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  scan_id TEXT,
  file_path TEXT NOT NULL,
  threat_name TEXT NOT NULL,
  threat_type TEXT NOT NULL,
  severity TEXT NOT NULL,
  detection_method TEXT NOT NULL,
  detected_at TEXT NOT NULL,
  action_taken TEXT
);

CREATE INDEX IF NOT EXISTS idx_sessions_start ON scan_sessions(start_time);
CREATE INDEX IF NOT EXISTS idx_detections_time ON threat_detections(detected_at);
"""


class HistoryStore:
    """
    Thread-safe SQLite store.

    Usage:
        store = HistoryStore("/var/lib/endpoint-guard/history.sqlite3")
        store.record_scan_start(session)
        store.record_threat_detection(session.id, threat)
        store.record_scan_complete(session)
    """

    def __init__(self, db_path: str):
        self.db_path = db_path
        self._lock = threading.Lock()

        if db_path != ':memory:':
            db_dir = os.path.dirname(os.path.abspath(db_path))
            os.makedirs(db_dir, exist_ok=True)
            try:
                os.chmod(db_dir, Permissions.DATA_DIR)
            except OSError as e:
                logger.warning(f"Could not set secure directory permissions: {e}")

        self._con = sqlite3.connect(db_path, check_same_thread=False)
        self._con.row_factory = sqlite3.Row
        with self._lock:
            self._con.executescript(SCHEMA)
            self._con.commit()

    def close(self):
        with self._lock:
            self._con.close()

    def _execute(self, sql: str, params=()) -> sqlite3.Cursor:
        with self._lock:
            cur = self._con.execute(sql, params)
            self._con.commit()
            return cur

    def _query(self, sql: str, params=()) -> List[sqlite3.Row]:
        with self._lock:
            return self._con.execute(sql, params).fetchall()

    # ---------- signatures ----------

    def get_hash_signatures(self) -> List[Dict[str, Any]]:
        return [dict(r) for r in self._query("SELECT * FROM hash_signatures")]

    def get_pattern_signatures(self) -> List[Dict[str, Any]]:
        # Catalog order is insertion order
        return [dict(r) for r in self._query("SELECT * FROM pattern_signatures ORDER BY id")]

    def add_hash_signature(self, sig: Dict[str, Any]) -> bool:
        """Insert a hash signature. Returns False if the digest is already cataloged."""
        cur = self._execute(
            """
            INSERT OR IGNORE INTO hash_signatures(hash, hash_type, name, type, severity, description)
            VALUES(?,?,?,?,?,?)
            """,
            (sig['hash'].lower(), sig['hash_type'], sig['name'], sig['type'],
             sig['severity'], sig.get('description', '')),
        )
        return cur.rowcount > 0

    def add_pattern_signature(self, sig: Dict[str, Any]) -> bool:
        """Append a pattern signature. Returns False if the name already exists."""
        cur = self._execute(
            """
            INSERT OR IGNORE INTO pattern_signatures
              (name, type, severity, pattern, description, "offset", max_bytes, case_sensitive)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (sig['name'], sig['type'], sig['severity'], sig['pattern'],
             sig.get('description', ''), int(sig.get('offset', 0)),
             sig.get('max_bytes'), 1 if sig.get('case_sensitive') else 0),
        )
        return cur.rowcount > 0

    def count_signatures(self) -> Dict[str, int]:
        rows = self._query(
            "SELECT (SELECT COUNT(*) FROM hash_signatures) AS hashes, "
            "(SELECT COUNT(*) FROM pattern_signatures) AS patterns"
        )
        return {'hashes': rows[0]['hashes'], 'patterns': rows[0]['patterns']}

    # ---------- scan sessions ----------

    def record_scan_start(self, session: ScanSession) -> None:
        self._execute(
            """
            INSERT INTO scan_sessions(id, scan_type, start_time, status)
            VALUES(?,?,?,?)
            """,
            (session.id, session.scan_type.value, session.start_time, session.status.value),
        )

    def record_scan_complete(self, session: ScanSession) -> None:
        self._execute(
            """
            UPDATE scan_sessions
               SET end_time=?, status=?, files_scanned=?, files_skipped=?,
                   errors=?, threats_found=?, duration=?
             WHERE id=?
            """,
            (session.end_time, session.status.value, session.files_scanned,
             session.files_skipped, session.errors, session.threats_found,
             session.duration, session.id),
        )

    def get_session(self, session_id: str) -> Optional[ScanSession]:
        rows = self._query("SELECT * FROM scan_sessions WHERE id=?", (session_id,))
        return self._row_to_session(rows[0]) if rows else None

    def get_scan_history(self, limit: int = ScanDefaults.HISTORY_LIMIT) -> List[ScanSession]:
        """Most recent sessions first."""
        if limit <= 0:
            return []
        rows = self._query(
            "SELECT * FROM scan_sessions ORDER BY start_time DESC, rowid DESC LIMIT ?",
            (limit,),
        )
        return [self._row_to_session(r) for r in rows]

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> ScanSession:
        return ScanSession(
            id=row['id'],
            scan_type=ScanType(row['scan_type']),
            start_time=row['start_time'],
            end_time=row['end_time'],
            status=ScanStatus(row['status']),
            files_scanned=row['files_scanned'],
            files_skipped=row['files_skipped'],
            errors=row['errors'],
            threats_found=row['threats_found'],
            duration=row['duration'],
        )

    # ---------- threat detections ----------

    def record_threat_detection(self, scan_id: Optional[str], threat: Threat,
                                action_taken: Optional[str] = None) -> int:
        cur = self._execute(
            """
            INSERT INTO threat_detections
              (scan_id, file_path, threat_name, threat_type, severity,
               detection_method, detected_at, action_taken)
            VALUES(?,?,?,?,?,?,?,?)
            """,
            (scan_id, threat.path, threat.name, threat.threat_type, threat.severity.value,
             threat.detection_method.value, threat.detected_at, action_taken),
        )
        return cur.lastrowid

    def get_threat_detections(self, scan_id: Optional[str] = None,
                              limit: int = ScanDefaults.HISTORY_LIMIT) -> List[Dict[str, Any]]:
        """Detections newest first, optionally for one session."""
        if scan_id is None:
            rows = self._query(
                "SELECT * FROM threat_detections ORDER BY detected_at DESC, id DESC LIMIT ?",
                (limit,),
            )
        else:
            rows = self._query(
                "SELECT * FROM threat_detections WHERE scan_id=? "
                "ORDER BY detected_at DESC, id DESC LIMIT ?",
                (scan_id, limit),
            )
        return [dict(r) for r in rows]

    def get_statistics(self) -> Dict[str, Any]:
        rows = self._query(
            "SELECT COUNT(*) AS total_scans, COALESCE(SUM(files_scanned), 0) AS total_files "
            "FROM scan_sessions"
        )
        total_threats = self._query("SELECT COUNT(*) AS n FROM threat_detections")[0]['n']
        return {
            'totalScans': rows[0]['total_scans'],
            'totalThreats': total_threats,
            'totalFilesScanned': rows[0]['total_files'],
            'recentThreats': self.get_threat_detections(limit=ScanDefaults.RECENT_THREATS),
        }
