"""
Heuristic Scorer - suspicion scoring for files without a signature match.

Each trait adds a fixed weight to the file's score:

    high-risk extension          15   medium-risk extension      10
    suspicious name              20   suspicious location        10
    tiny executable              15   oversized script           10
    hidden/system executable     15   double extension           20
    executable header in a non-executable extension              15

A file is reported when its score reaches the sensitivity threshold
(lenient 60, standard 40, strict 25). Severity comes from the score:
70 and above is high, 50 and above is medium, anything lower is low.

score() is pure; analyze() gathers the header prefix and hidden attribute
from the filesystem first.
"""

import logging
import os
import re
import stat
import sys
from dataclasses import dataclass
from typing import List, Optional, Tuple

from ..config import Sensitivity
from ..constants import BufferSizes
from .models import DetectionMethod, Severity, ThreatInfo

logger = logging.getLogger(__name__)

THRESHOLDS = {
    Sensitivity.LENIENT: 60,
    Sensitivity.STANDARD: 40,
    Sensitivity.STRICT: 25,
}

HIGH_RISK_EXTENSIONS = frozenset([
    '.exe', '.scr', '.pif', '.bat', '.cmd', '.com', '.vbs', '.vbe',
    '.js', '.jse', '.wsf', '.wsh', '.msi', '.jar', '.ps1', '.psm1',
])

MEDIUM_RISK_EXTENSIONS = frozenset([
    '.dll', '.sys', '.drv', '.ocx', '.cpl', '.scf', '.lnk', '.inf',
    '.reg', '.hta', '.gadget', '.application', '.msp', '.mst',
])

SUSPICIOUS_NAME_PATTERNS = [re.compile(p, re.IGNORECASE) for p in (
    r'crack',
    r'keygen',
    r'patch',
    r'loader',
    r'activator',
    r'setup.*\d+\.exe',
    r'update.*\d+\.exe',
    r'invoice.*\.exe',
    r'document.*\.exe',
    r'photo.*\.exe',
    r'video.*\.exe',
    r'\d{10,}\.exe',
    r'^[a-f0-9]{32}',
    r'svchost',
    r'csrss',
    r'lsass',
    r'winlogon',
)]

# Matched against the lowercased path with '/' separators
SUSPICIOUS_LOCATIONS = (
    '/temp/',
    '/tmp/',
    '/appdata/local/temp',
    '/downloads/',
    '/recycler/',
    '/system32/',
    '/syswow64/',
)

DOUBLE_EXTENSION_RE = re.compile(r'\.\w+\.(exe|scr|bat|cmd|vbs|js)$', re.IGNORECASE)

TINY_EXECUTABLE_EXTENSIONS = frozenset(['.exe', '.dll', '.scr'])
TINY_EXECUTABLE_SIZE = 10 * 1024
SCRIPT_EXTENSIONS = frozenset(['.bat', '.cmd', '.vbs', '.ps1'])
LARGE_SCRIPT_SIZE = 1024 * 1024
HIDDEN_SENSITIVE_EXTENSIONS = frozenset(['.exe', '.dll', '.scr', '.bat', '.cmd'])
NATIVE_EXECUTABLE_EXTENSIONS = frozenset(['.exe', '.dll', '.scr', '.com'])

EXECUTABLE_MAGIC = (
    b'MZ',            # DOS/PE
    b'\x7fELF',       # ELF
    b'\xfe\xed\xfa\xce',  # Mach-O 32, big-endian
    b'\xce\xfa\xed\xfe',  # Mach-O 32, little-endian
    b'\xfe\xed\xfa\xcf',  # Mach-O 64, big-endian
    b'\xcf\xfa\xed\xfe',  # Mach-O 64, little-endian
)


@dataclass(frozen=True)
class HeuristicResult:
    score: int
    traits: Tuple[str, ...]


def severity_for_score(score: int) -> Severity:
    if score >= 70:
        return Severity.HIGH
    if score >= 50:
        return Severity.MEDIUM
    return Severity.LOW


def is_hidden(path: str) -> bool:
    """Hidden or system attribute where the platform has one, dotfile otherwise."""
    try:
        st = os.lstat(path)
    except OSError:
        return False

    attrs = getattr(st, 'st_file_attributes', None)
    if attrs is not None:
        return bool(attrs & (stat.FILE_ATTRIBUTE_HIDDEN | stat.FILE_ATTRIBUTE_SYSTEM))

    flags = getattr(st, 'st_flags', 0)
    if sys.platform == 'darwin' and flags & getattr(stat, 'UF_HIDDEN', 0):
        return True

    return os.path.basename(path).startswith('.')


def read_prefix(path: str, length: int = BufferSizes.HEURISTIC_PREFIX) -> bytes:
    try:
        with open(path, 'rb') as f:
            return f.read(length)
    except OSError as e:
        logger.debug(f"Could not read header of {path}: {e}")
        return b''


class HeuristicScorer:
    """
    Usage:
        scorer = HeuristicScorer(Sensitivity.STANDARD)
        info = scorer.evaluate(scorer.analyze(path, size))
    """

    def __init__(self, sensitivity=Sensitivity.STANDARD):
        self.sensitivity = Sensitivity.parse(sensitivity)

    @property
    def threshold(self) -> int:
        return THRESHOLDS[self.sensitivity]

    def score(self, path: str, size: int, prefix: bytes = b'', hidden: bool = False) -> HeuristicResult:
        name = os.path.basename(path)
        ext = os.path.splitext(name)[1].lower()
        total = 0
        traits: List[str] = []

        if ext in HIGH_RISK_EXTENSIONS:
            total += 15
            traits.append(f"Suspicious extension: {ext}")
        elif ext in MEDIUM_RISK_EXTENSIONS:
            total += 10
            traits.append(f"Suspicious extension: {ext}")

        if any(p.search(name) for p in SUSPICIOUS_NAME_PATTERNS):
            total += 20
            traits.append("Suspicious file name pattern")

        location = path.replace('\\', '/').lower()
        if any(marker in location for marker in SUSPICIOUS_LOCATIONS):
            total += 10
            traits.append("Suspicious file location")

        if ext in TINY_EXECUTABLE_EXTENSIONS and size < TINY_EXECUTABLE_SIZE:
            total += 15
            traits.append("Unusual file size")
        elif ext in SCRIPT_EXTENSIONS and size > LARGE_SCRIPT_SIZE:
            total += 10
            traits.append("Unusual file size")

        if hidden and ext in HIDDEN_SENSITIVE_EXTENSIONS:
            total += 15
            traits.append("Suspicious file attributes")

        if DOUBLE_EXTENSION_RE.search(name):
            total += 20
            traits.append("Double extension detected")

        if ext not in NATIVE_EXECUTABLE_EXTENSIONS and prefix.startswith(EXECUTABLE_MAGIC):
            total += 15
            traits.append("Executable content in non-executable file")

        return HeuristicResult(score=total, traits=tuple(traits))

    def analyze(self, path: str, size: int) -> HeuristicResult:
        """Score a file on disk."""
        prefix = b''
        if os.path.splitext(path)[1].lower() not in NATIVE_EXECUTABLE_EXTENSIONS:
            prefix = read_prefix(path)
        return self.score(path, size, prefix=prefix, hidden=is_hidden(path))

    def evaluate(self, result: HeuristicResult) -> Optional[ThreatInfo]:
        if result.score < self.threshold:
            return None
        return ThreatInfo(
            name='Heuristic Detection',
            threat_type='suspicious',
            severity=severity_for_score(result.score),
            description=(
                f"Suspicious file detected (score: {result.score}). "
                f"Traits: {', '.join(result.traits)}"
            ),
            method=DetectionMethod.HEURISTIC,
            suspicion_score=result.score,
            traits=result.traits,
        )
