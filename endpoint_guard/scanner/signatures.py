"""
Signature Store - hash and byte-pattern threat catalogs.

Signatures live in the history store's hash_signatures and
pattern_signatures collections. load() pulls both into memory once:

- hash signatures become a digest -> ThreatInfo map (lowercase keys)
- pattern signatures become compiled bytes regexes kept in catalog order

After load() the in-memory catalogs are only replaced wholesale, so
matching from several threads needs no lock.

Signature packs are JSON or YAML documents:

    hashes:
      - hash: 44d88612fea8a8f36de82e1278abb02f
        hash_type: md5
        name: EICAR-Test-File
        type: test
        severity: low
    patterns:
      - name: PowerShell.Downloader
        pattern: "(Invoke-WebRequest|IWR|wget|curl).*\\.(exe|dll|bat|ps1)"
        type: trojan
        severity: high
"""

import json
import logging
import os
import re
import threading
import urllib.error
import urllib.request
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Dict, Iterable, List, Optional

import yaml

from ..constants import BufferSizes, EICAR_TEST_STRING, Timeouts
from ..exceptions import FileAccessError, InvalidArgumentError, NotFoundError
from ..utils.error_handling import ErrorCategory, with_error_handling
from .digest import DigestSet, hash_bytes
from .models import DetectionMethod, Severity, ThreatInfo

if TYPE_CHECKING:
    from ..storage.history import HistoryStore

logger = logging.getLogger(__name__)

HASH_KINDS = ('md5', 'sha1', 'sha256')
_HASH_LENGTHS = {32: 'md5', 40: 'sha1', 64: 'sha256'}
_HEX_RE = re.compile(r'^[0-9a-fA-F]+$')


@dataclass(frozen=True)
class HashSignature:
    digest: str
    hash_type: str
    name: str
    threat_type: str
    severity: Severity
    description: str = ""

    def to_row(self) -> Dict[str, Any]:
        return {
            'hash': self.digest,
            'hash_type': self.hash_type,
            'name': self.name,
            'type': self.threat_type,
            'severity': self.severity.value,
            'description': self.description,
        }

    def to_info(self) -> ThreatInfo:
        return ThreatInfo(
            name=self.name,
            threat_type=self.threat_type,
            severity=self.severity,
            description=self.description,
            method=DetectionMethod.HASH_SIGNATURE,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HashSignature":
        digest = str(data.get('hash', '')).strip().lower()
        if not digest or not _HEX_RE.match(digest) or len(digest) not in _HASH_LENGTHS:
            raise InvalidArgumentError(f"Invalid signature digest: {data.get('hash')!r}")
        hash_type = data.get('hash_type') or _HASH_LENGTHS[len(digest)]
        if hash_type not in HASH_KINDS:
            raise InvalidArgumentError(f"Unknown digest kind: {hash_type!r}")
        return cls(
            digest=digest,
            hash_type=hash_type,
            name=_required(data, 'name'),
            threat_type=data.get('type', 'malware'),
            severity=_parse_severity(data.get('severity', 'high')),
            description=data.get('description', ''),
        )


@dataclass(frozen=True)
class PatternSignature:
    name: str
    threat_type: str
    severity: Severity
    pattern: str
    description: str = ""
    offset: int = 0
    max_bytes: int = BufferSizes.PATTERN_DEFAULT_MAX_BYTES
    case_sensitive: bool = False

    def compile(self) -> "re.Pattern":
        flags = 0 if self.case_sensitive else re.IGNORECASE
        # Patterns are written as text but matched against raw file bytes
        return re.compile(self.pattern.encode('latin-1'), flags)

    def window(self, data: bytes) -> bytes:
        return data[self.offset:self.offset + self.max_bytes]

    def to_row(self) -> Dict[str, Any]:
        return {
            'name': self.name,
            'type': self.threat_type,
            'severity': self.severity.value,
            'pattern': self.pattern,
            'description': self.description,
            'offset': self.offset,
            'max_bytes': self.max_bytes,
            'case_sensitive': self.case_sensitive,
        }

    def to_info(self) -> ThreatInfo:
        return ThreatInfo(
            name=self.name,
            threat_type=self.threat_type,
            severity=self.severity,
            description=self.description,
            method=DetectionMethod.PATTERN_SIGNATURE,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternSignature":
        offset = int(data.get('offset') or 0)
        max_bytes = int(data.get('max_bytes') or data.get('maxBytes') or
                        BufferSizes.PATTERN_DEFAULT_MAX_BYTES)
        if offset < 0 or max_bytes <= 0:
            raise InvalidArgumentError(f"Invalid window for pattern {data.get('name')!r}")
        sig = cls(
            name=_required(data, 'name'),
            threat_type=data.get('type', 'malware'),
            severity=_parse_severity(data.get('severity', 'high')),
            pattern=_required(data, 'pattern'),
            description=data.get('description', ''),
            offset=offset,
            max_bytes=max_bytes,
            case_sensitive=bool(data.get('case_sensitive', False)),
        )
        try:
            sig.compile()
        except (re.error, UnicodeEncodeError) as e:
            raise InvalidArgumentError(f"Pattern {sig.name!r} does not compile: {e}")
        return sig


def _required(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    if not value:
        raise InvalidArgumentError(f"Signature is missing '{key}'")
    return str(value)


def _parse_severity(value) -> Severity:
    try:
        return Severity.parse(value)
    except ValueError:
        raise InvalidArgumentError(f"Unknown severity: {value!r}")


def builtin_signatures() -> Dict[str, List[Any]]:
    """Seed catalog written on first load."""
    eicar = hash_bytes(EICAR_TEST_STRING)
    hashes = [
        HashSignature(
            digest=digest,
            hash_type=kind,
            name='EICAR-Test-File',
            threat_type='test',
            severity=Severity.LOW,
            description='EICAR anti-malware test file',
        )
        for kind, digest in eicar.items()
    ]
    patterns = [
        PatternSignature(
            name='PowerShell.Downloader',
            threat_type='trojan',
            severity=Severity.HIGH,
            pattern=r'(Invoke-WebRequest|IWR|wget|curl).*\.(exe|dll|bat|ps1)',
            description='Script that downloads and stages an executable payload',
        ),
    ]
    return {'hashes': hashes, 'patterns': patterns}


class SignatureStore:
    """
    In-memory view of the signature catalogs.

    Usage:
        store = SignatureStore(history, pattern_extensions=['.ps1', '.exe'])
        store.load()
        info = store.match_hash(compute_digests(path)) or store.match_pattern(path)
    """

    def __init__(
        self,
        backend: "HistoryStore",
        pattern_extensions: Optional[Iterable[str]] = None,
        pattern_scan_limit: int = BufferSizes.PATTERN_SCAN_LIMIT,
    ):
        self._backend = backend
        self.pattern_extensions = frozenset(
            ext.lower() for ext in (pattern_extensions or [
                '.exe', '.dll', '.bat', '.cmd', '.ps1', '.vbs', '.js', '.jar', '.scr', '.com',
            ])
        )
        self.pattern_scan_limit = pattern_scan_limit

        self._load_lock = threading.Lock()
        self._loaded = False
        self._hashes: Dict[str, ThreatInfo] = {}
        self._patterns: List[tuple] = []

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    @property
    def hash_count(self) -> int:
        return len(self._hashes)

    @property
    def pattern_count(self) -> int:
        return len(self._patterns)

    def load(self) -> None:
        """Populate the catalogs. Calling again is a no-op."""
        with self._load_lock:
            if self._loaded:
                return
            self._seed_if_empty()
            self._reload()
            self._loaded = True
        logger.info(
            f"Loaded {self.hash_count} hash signatures and {self.pattern_count} pattern signatures"
        )

    def _seed_if_empty(self):
        counts = self._backend.count_signatures()
        seeds = builtin_signatures()
        if counts['hashes'] == 0:
            for sig in seeds['hashes']:
                self._backend.add_hash_signature(sig.to_row())
        if counts['patterns'] == 0:
            for sig in seeds['patterns']:
                self._backend.add_pattern_signature(sig.to_row())

    def _reload(self):
        hashes: Dict[str, ThreatInfo] = {}
        for row in self._backend.get_hash_signatures():
            try:
                sig = HashSignature.from_dict(row)
            except InvalidArgumentError as e:
                logger.warning(f"Skipping stored hash signature: {e}")
                continue
            hashes[sig.digest] = sig.to_info()

        patterns = []
        for row in self._backend.get_pattern_signatures():
            try:
                sig = PatternSignature.from_dict(row)
            except InvalidArgumentError as e:
                logger.warning(f"Skipping stored pattern signature: {e}")
                continue
            patterns.append((sig, sig.compile()))

        # Swap whole catalogs so concurrent readers see old or new, never partial
        self._hashes = hashes
        self._patterns = patterns

    def match_hash(self, digests: DigestSet) -> Optional[ThreatInfo]:
        """Check md5, then sha1, then sha256 against the hash catalog."""
        for _, digest in digests.items():
            info = self._hashes.get(digest.lower())
            if info is not None:
                return info
        return None

    def match_pattern(self, path: str) -> Optional[ThreatInfo]:
        """
        Search the file prefix against pattern signatures in catalog order.

        Only allow-listed extensions are read. Returns the first match.

        Raises:
            FileAccessError: the file could not be read
        """
        ext = os.path.splitext(path)[1].lower()
        if ext not in self.pattern_extensions or not self._patterns:
            return None

        try:
            with open(path, 'rb') as f:
                data = f.read(self.pattern_scan_limit)
        except OSError as e:
            raise FileAccessError(f"Cannot read {path}: {e}", {'path': path}) from e

        for sig, regex in self._patterns:
            if regex.search(sig.window(data)):
                return sig.to_info()
        return None

    def add_hash_signature(self, data: Dict[str, Any]) -> bool:
        """Append a hash signature. Returns False if the digest was already known."""
        sig = HashSignature.from_dict(data)
        added = self._backend.add_hash_signature(sig.to_row())
        if added and self._loaded:
            hashes = dict(self._hashes)
            hashes[sig.digest] = sig.to_info()
            self._hashes = hashes
        return added

    def add_pattern_signature(self, data: Dict[str, Any]) -> bool:
        """Append a pattern signature. Returns False if the name was already known."""
        sig = PatternSignature.from_dict(data)
        added = self._backend.add_pattern_signature(sig.to_row())
        if added and self._loaded:
            self._patterns = self._patterns + [(sig, sig.compile())]
        return added

    def import_pack(self, pack: Dict[str, Any]) -> Dict[str, int]:
        """
        Add every signature from a parsed pack.

        Returns:
            Counts of added and already-present signatures
        """
        if not isinstance(pack, dict):
            raise InvalidArgumentError("Signature pack must be a mapping")

        added = {'hashes': 0, 'patterns': 0, 'duplicates': 0}
        for entry in pack.get('hashes') or pack.get('hash_signatures') or []:
            if self.add_hash_signature(entry):
                added['hashes'] += 1
            else:
                added['duplicates'] += 1
        for entry in pack.get('patterns') or pack.get('pattern_signatures') or []:
            if self.add_pattern_signature(entry):
                added['patterns'] += 1
            else:
                added['duplicates'] += 1

        logger.info(
            f"Signature pack imported: {added['hashes']} hashes, "
            f"{added['patterns']} patterns, {added['duplicates']} duplicates"
        )
        return added

    def import_signatures(self, path: str) -> Dict[str, int]:
        """Import a local JSON or YAML signature pack."""
        try:
            with open(path, 'r', encoding='utf-8') as f:
                if path.endswith(('.yaml', '.yml')):
                    pack = yaml.safe_load(f)
                else:
                    pack = json.load(f)
        except FileNotFoundError:
            raise NotFoundError(f"Signature pack not found: {path}", {'path': path})
        except OSError as e:
            raise FileAccessError(f"Cannot read {path}: {e}", {'path': path}) from e
        except (ValueError, yaml.YAMLError) as e:
            raise InvalidArgumentError(f"Malformed signature pack {path}: {e}")
        return self.import_pack(pack or {})

    def update_from_url(self, url: str, timeout: float = Timeouts.SIGNATURE_UPDATE,
                        retries: int = 2) -> Dict[str, Any]:
        """
        Fetch a JSON signature pack and import it. Best effort.

        Returns:
            {'success': bool, 'message': str, plus import counts on success}
        """
        if not url:
            return {'success': True, 'message': 'No update source configured; signatures are current'}

        @with_error_handling(
            category=ErrorCategory.NETWORK,
            operation='signature update',
            retry_count=retries,
            retry_delay=Timeouts.SIGNATURE_UPDATE_RETRY_DELAY,
            retry_exceptions=(urllib.error.URLError, OSError),
        )
        def fetch() -> Optional[bytes]:
            with urllib.request.urlopen(url, timeout=timeout) as response:
                return response.read()

        body = fetch()
        if body is None:
            return {'success': False, 'message': f'Could not download signatures from {url}'}

        try:
            pack = json.loads(body.decode('utf-8'))
            counts = self.import_pack(pack)
        except (ValueError, InvalidArgumentError) as e:
            logger.error(f"Rejected signature pack from {url}: {e}")
            return {'success': False, 'message': f'Invalid signature pack: {e}'}

        result: Dict[str, Any] = {'success': True, 'message': 'Signatures updated'}
        result.update(counts)
        return result
