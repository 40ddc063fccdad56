"""
Scan data model: file descriptors, threats, sessions and results.
"""

import os
import stat
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


def utc_now_iso() -> str:
    return datetime.utcnow().isoformat() + "Z"


class FileKind(Enum):
    FILE = "file"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    OTHER = "other"


class ScanType(Enum):
    QUICK = "quick"
    FULL = "full"
    CUSTOM = "custom"


class ScanStatus(Enum):
    """Persisted session status; everything except RUNNING is final."""
    RUNNING = "running"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class ScanState(Enum):
    """Orchestrator state machine"""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPING = "stopping"
    COMPLETED = "completed"
    STOPPED = "stopped"
    FAILED = "failed"


class DetectionMethod(Enum):
    HASH_SIGNATURE = "hash-signature"
    PATTERN_SIGNATURE = "pattern-signature"
    HEURISTIC = "heuristic"


class Severity(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @classmethod
    def parse(cls, value) -> "Severity":
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().lower())


@dataclass(frozen=True)
class FileDescriptor:
    """A filesystem entry as seen during enumeration"""
    path: str
    size: int
    kind: FileKind
    mtime: float

    @classmethod
    def from_path(cls, path: str) -> "FileDescriptor":
        """lstat the path; raises OSError if it cannot be read."""
        st = os.lstat(path)
        if stat.S_ISLNK(st.st_mode):
            kind = FileKind.SYMLINK
        elif stat.S_ISDIR(st.st_mode):
            kind = FileKind.DIRECTORY
        elif stat.S_ISREG(st.st_mode):
            kind = FileKind.FILE
        else:
            kind = FileKind.OTHER
        return cls(path=os.path.abspath(path), size=st.st_size, kind=kind, mtime=st.st_mtime)

    @property
    def name(self) -> str:
        return os.path.basename(self.path)

    @property
    def extension(self) -> str:
        return os.path.splitext(self.path)[1].lower()


@dataclass(frozen=True)
class ThreatInfo:
    """What a detector matched, before it is bound to a file"""
    name: str
    threat_type: str
    severity: Severity
    description: str
    method: DetectionMethod
    suspicion_score: Optional[int] = None
    traits: Tuple[str, ...] = ()


@dataclass(frozen=True)
class Threat:
    """A confirmed detection. Never mutated after creation."""
    path: str
    name: str
    threat_type: str
    severity: Severity
    description: str
    detection_method: DetectionMethod
    file_size: int
    detected_at: str = field(default_factory=utc_now_iso)
    suspicion_score: Optional[int] = None
    traits: Tuple[str, ...] = ()

    @classmethod
    def from_info(cls, path: str, info: ThreatInfo, file_size: int) -> "Threat":
        return cls(
            path=path,
            name=info.name,
            threat_type=info.threat_type,
            severity=info.severity,
            description=info.description,
            detection_method=info.method,
            file_size=file_size,
            suspicion_score=info.suspicion_score,
            traits=tuple(info.traits),
        )

    @property
    def is_heuristic(self) -> bool:
        return self.detection_method == DetectionMethod.HEURISTIC

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization"""
        result = {
            'path': self.path,
            'name': self.name,
            'type': self.threat_type,
            'severity': self.severity.value,
            'description': self.description,
            'detection_method': self.detection_method.value,
            'file_size': self.file_size,
            'detected_at': self.detected_at,
        }
        if self.suspicion_score is not None:
            result['suspicion_score'] = self.suspicion_score
            result['traits'] = list(self.traits)
        return result


@dataclass
class ScanSession:
    """Persisted record of one scan invocation"""
    id: str
    scan_type: ScanType
    start_time: str
    status: ScanStatus = ScanStatus.RUNNING
    end_time: Optional[str] = None
    files_scanned: int = 0
    files_skipped: int = 0
    errors: int = 0
    threats_found: int = 0
    duration: Optional[float] = None  # seconds

    @property
    def is_finalized(self) -> bool:
        return self.status != ScanStatus.RUNNING

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'scan_type': self.scan_type.value,
            'start_time': self.start_time,
            'end_time': self.end_time,
            'status': self.status.value,
            'files_scanned': self.files_scanned,
            'files_skipped': self.files_skipped,
            'errors': self.errors,
            'threats_found': self.threats_found,
            'duration': self.duration,
        }


@dataclass
class ScanProgress:
    files_scanned: int
    total_files: int
    percentage: int
    current_file: str
    threats_found: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'files_scanned': self.files_scanned,
            'total_files': self.total_files,
            'percentage': self.percentage,
            'current_file': self.current_file,
            'threats_found': self.threats_found,
        }


@dataclass
class ScanResult:
    """Outcome of ScanOrchestrator.scan()"""
    session: ScanSession
    total_files: int = 0
    threats: List[Threat] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def files_scanned(self) -> int:
        return self.session.files_scanned

    @property
    def files_skipped(self) -> int:
        return self.session.files_skipped

    @property
    def errors(self) -> int:
        return self.session.errors

    @property
    def threats_found(self) -> int:
        return len(self.threats)

    @property
    def status(self) -> ScanStatus:
        return self.session.status

    def to_dict(self) -> Dict[str, Any]:
        result = self.session.to_dict()
        result['total_files'] = self.total_files
        result['threats'] = [t.to_dict() for t in self.threats]
        if self.error:
            result['error'] = self.error
        return result
