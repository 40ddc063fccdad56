"""
Quarantine Vault - encrypted, reversible isolation of detected files.

Each record is a pair of files in the vault directory, keyed by id:

    <id>.quar   encrypted payload (see cipher.py)
    <id>.json   metadata, including the sha256 of the original bytes

Ordering rules keep the pair consistent:

- quarantine: payload written and read back before metadata is written,
  metadata written before the original is removed
- restore / delete: payload removed before metadata

Ids are the only handle; original paths may collide or be reused.
"""

import hashlib
import json
import logging
import os
import re
import secrets
import tempfile
import threading
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..audit_log import AuditAction, AuditTrail
from ..constants import Permissions
from ..exceptions import CryptoError, FileAccessError, NotFoundError
from ..remediation import secure_delete
from ..scanner.models import utc_now_iso
from .cipher import QuarantineCipher

logger = logging.getLogger(__name__)

PAYLOAD_SUFFIX = '.quar'
METADATA_SUFFIX = '.json'
QUARANTINE_ID_RE = re.compile(r'^quar_\d+_[0-9a-f]{16}$')


def new_quarantine_id() -> str:
    return f"quar_{int(time.time() * 1000)}_{secrets.token_hex(8)}"


@dataclass
class QuarantineRecord:
    id: str
    original_path: str
    file_name: str
    file_size: int
    quarantined_at: str
    sha256: str
    original_removed: bool = True
    threat_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QuarantineRecord":
        return cls(
            id=data['id'],
            original_path=data['original_path'],
            file_name=data['file_name'],
            file_size=int(data['file_size']),
            quarantined_at=data['quarantined_at'],
            sha256=data['sha256'],
            original_removed=bool(data.get('original_removed', True)),
            threat_name=data.get('threat_name'),
        )

    @property
    def quarantined_datetime(self) -> datetime:
        return datetime.fromisoformat(self.quarantined_at.rstrip('Z'))


class QuarantineVault:
    """
    Usage:
        vault = QuarantineVault(config.paths.quarantine_dir,
                                QuarantineCipher(config.quarantine.encryption_key))
        record = vault.quarantine("/home/user/Downloads/invoice.pdf.exe")
        restored_to = vault.restore(record.id)
    """

    def __init__(
        self,
        directory: str,
        cipher: QuarantineCipher,
        audit: Optional[AuditTrail] = None,
        secure_delete_originals: bool = False,
        restore_fallback_dir: Optional[str] = None,
    ):
        self.directory = os.path.abspath(directory)
        self.cipher = cipher
        self.audit = audit
        self.secure_delete_originals = secure_delete_originals
        self.restore_fallback_dir = restore_fallback_dir or os.path.expanduser('~')
        # Serializes id allocation and pair mutations; payload crypto runs outside it
        self._lock = threading.Lock()

        os.makedirs(self.directory, exist_ok=True)
        try:
            os.chmod(self.directory, Permissions.QUARANTINE_DIR)
        except OSError as e:
            logger.warning(f"Could not set secure quarantine directory permissions: {e}")

    # ---------- paths ----------

    def _payload_path(self, quarantine_id: str) -> str:
        return os.path.join(self.directory, quarantine_id + PAYLOAD_SUFFIX)

    def _metadata_path(self, quarantine_id: str) -> str:
        return os.path.join(self.directory, quarantine_id + METADATA_SUFFIX)

    @staticmethod
    def _check_id(quarantine_id: str):
        # Ids become file names; anything else could escape the vault
        if not isinstance(quarantine_id, str) or not QUARANTINE_ID_RE.match(quarantine_id):
            raise NotFoundError(f"Unknown quarantine id: {quarantine_id!r}",
                                {'quarantine_id': quarantine_id})

    def _atomic_write(self, path: str, data: bytes):
        fd, tmp_path = tempfile.mkstemp(dir=self.directory, prefix='.tmp-')
        try:
            with os.fdopen(fd, 'wb') as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_path, Permissions.QUARANTINE_FILE)
            os.replace(tmp_path, path)
        except OSError:
            try:
                os.remove(tmp_path)
            except OSError:
                pass
            raise

    def _audit(self, action: AuditAction, details: str, metadata: Dict[str, Any]):
        if self.audit is None:
            return
        try:
            self.audit.record(action, details, metadata)
        except OSError as e:
            logger.error(f"Audit trail write failed for {action.value}: {e}")

    # ---------- quarantine ----------

    def quarantine(self, path: str, threat_name: Optional[str] = None) -> QuarantineRecord:
        """
        Encrypt a file into the vault and remove the original.

        Raises:
            NotFoundError: the file does not exist
            FileAccessError: the file could not be read or the vault written
            CryptoError: the written payload failed read-back verification
        """
        path = os.path.abspath(path)
        if not os.path.isfile(path):
            raise NotFoundError(f"File not found: {path}", {'path': path})

        try:
            with open(path, 'rb') as f:
                content = f.read()
        except OSError as e:
            raise FileAccessError(f"Cannot read {path}: {e}", {'path': path}) from e

        digest = hashlib.sha256(content).hexdigest()
        blob = self.cipher.encrypt(content)

        with self._lock:
            quarantine_id = new_quarantine_id()
            while os.path.exists(self._payload_path(quarantine_id)):
                quarantine_id = new_quarantine_id()

            record = QuarantineRecord(
                id=quarantine_id,
                original_path=path,
                file_name=os.path.basename(path),
                file_size=len(content),
                quarantined_at=utc_now_iso(),
                sha256=digest,
                threat_name=threat_name,
            )
            payload_path = self._payload_path(quarantine_id)

            try:
                self._atomic_write(payload_path, blob)
            except OSError as e:
                self._audit(AuditAction.QUARANTINE_FAILED, f"Could not write payload for {path}",
                            {'path': path, 'error': str(e)})
                raise FileAccessError(f"Cannot write quarantine payload: {e}", {'path': path}) from e

            try:
                self._verify_payload(payload_path, digest)
                self._write_metadata(record)
            except (CryptoError, OSError) as e:
                self._discard(payload_path)
                self._audit(AuditAction.QUARANTINE_FAILED, f"Could not store {path}",
                            {'path': path, 'error': str(e)})
                if isinstance(e, CryptoError):
                    raise
                raise FileAccessError(f"Cannot write quarantine metadata: {e}", {'path': path}) from e

            if not self._remove_original(path):
                record.original_removed = False
                try:
                    self._write_metadata(record)
                except OSError as e:
                    logger.error(f"Could not update metadata for {quarantine_id}: {e}")

        logger.info(f"Quarantined {path} as {quarantine_id}")
        self._audit(AuditAction.QUARANTINED, f"Quarantined {record.file_name}", {
            'quarantine_id': quarantine_id,
            'original_path': path,
            'sha256': digest,
            'threat_name': threat_name,
            'original_removed': record.original_removed,
        })
        return record

    def _verify_payload(self, payload_path: str, expected_sha256: str):
        with open(payload_path, 'rb') as f:
            plaintext = self.cipher.decrypt(f.read())
        if hashlib.sha256(plaintext).hexdigest() != expected_sha256:
            raise CryptoError("Quarantine payload does not match the original content")

    def _write_metadata(self, record: QuarantineRecord):
        data = json.dumps(record.to_dict(), indent=2, sort_keys=True).encode('utf-8')
        self._atomic_write(self._metadata_path(record.id), data)

    def _remove_original(self, path: str) -> bool:
        try:
            if self.secure_delete_originals:
                secure_delete(path)
            else:
                os.remove(path)
            return True
        except (OSError, FileAccessError, NotFoundError) as e:
            logger.warning(f"Quarantined copy stored but original could not be removed: {path}: {e}")
            return False

    @staticmethod
    def _discard(path: str) -> bool:
        try:
            os.remove(path)
            return True
        except FileNotFoundError:
            return False

    # ---------- lookup ----------

    def _load_record(self, quarantine_id: str) -> QuarantineRecord:
        self._check_id(quarantine_id)
        metadata_path = self._metadata_path(quarantine_id)
        if not os.path.exists(self._payload_path(quarantine_id)) or not os.path.exists(metadata_path):
            raise NotFoundError(f"Quarantined file not found: {quarantine_id}",
                                {'quarantine_id': quarantine_id})
        try:
            with open(metadata_path, 'r', encoding='utf-8') as f:
                return QuarantineRecord.from_dict(json.load(f))
        except FileNotFoundError as e:
            raise NotFoundError(f"Quarantined file not found: {quarantine_id}",
                                {'quarantine_id': quarantine_id}) from e
        except OSError as e:
            raise FileAccessError(f"Cannot read metadata for {quarantine_id}: {e}") from e
        except (ValueError, KeyError) as e:
            raise FileAccessError(f"Corrupted metadata for {quarantine_id}: {e}",
                                  {'quarantine_id': quarantine_id}) from e

    def get(self, quarantine_id: str) -> QuarantineRecord:
        return self._load_record(quarantine_id)

    def list(self) -> List[QuarantineRecord]:
        """All complete records, newest first. Half-written or vanishing pairs are skipped."""
        try:
            names = os.listdir(self.directory)
        except OSError as e:
            raise FileAccessError(f"Cannot list quarantine directory: {e}") from e

        records = []
        for name in names:
            if not name.endswith(METADATA_SUFFIX):
                continue
            quarantine_id = name[:-len(METADATA_SUFFIX)]
            if not QUARANTINE_ID_RE.match(quarantine_id):
                continue
            try:
                records.append(self._load_record(quarantine_id))
            except NotFoundError:
                logger.debug(f"Skipping incomplete quarantine record {quarantine_id}")
            except FileAccessError as e:
                logger.warning(f"Skipping unreadable quarantine record: {e}")

        records.sort(key=lambda r: (r.quarantined_at, r.id), reverse=True)
        return records

    # ---------- restore / delete ----------

    def _decrypt_record(self, record: QuarantineRecord) -> bytes:
        try:
            with open(self._payload_path(record.id), 'rb') as f:
                blob = f.read()
        except FileNotFoundError as e:
            raise NotFoundError(f"Quarantined file not found: {record.id}",
                                {'quarantine_id': record.id}) from e
        except OSError as e:
            raise FileAccessError(f"Cannot read payload for {record.id}: {e}") from e

        plaintext = self.cipher.decrypt(blob)
        if hashlib.sha256(plaintext).hexdigest() != record.sha256:
            raise CryptoError(f"Integrity check failed for {record.id}",
                              {'quarantine_id': record.id})
        return plaintext

    def _restore_target(self, record: QuarantineRecord) -> str:
        original_dir = os.path.dirname(record.original_path)
        restored_name = f"Restored_{record.file_name}"

        if not os.path.isdir(original_dir):
            directory = self.restore_fallback_dir
            os.makedirs(directory, exist_ok=True)
        elif os.path.lexists(record.original_path):
            # Never overwrite whatever now lives at the original path
            directory = original_dir
        else:
            return record.original_path

        target = os.path.join(directory, restored_name)
        counter = 1
        while os.path.lexists(target):
            target = os.path.join(directory, f"Restored_{counter}_{record.file_name}")
            counter += 1
        return target

    def restore(self, quarantine_id: str) -> str:
        """
        Decrypt a record back to disk and remove it from the vault.

        Returns:
            The path the file was restored to

        Raises:
            NotFoundError: no such record
            CryptoError: wrong key, corrupted payload or digest mismatch
            FileAccessError: the restored file could not be written
        """
        with self._lock:
            record = self._load_record(quarantine_id)
            try:
                plaintext = self._decrypt_record(record)
            except CryptoError as e:
                self._audit(AuditAction.RESTORE_FAILED, f"Could not decrypt {record.file_name}",
                            {'quarantine_id': quarantine_id, 'error': str(e)})
                raise

            target = record.original_path
            created = False
            try:
                target = self._restore_target(record)
                with open(target, 'xb') as f:
                    created = True
                    f.write(plaintext)
            except OSError as e:
                # No partial file may take the restore name on a retry
                if created:
                    self._discard(target)
                self._audit(AuditAction.RESTORE_FAILED, f"Could not write {target}",
                            {'quarantine_id': quarantine_id, 'error': str(e)})
                raise FileAccessError(f"Cannot restore to {target}: {e}", {'path': target}) from e

            self._discard(self._payload_path(quarantine_id))
            self._discard(self._metadata_path(quarantine_id))

        logger.info(f"Restored {quarantine_id} to {target}")
        self._audit(AuditAction.RESTORED, f"Restored {record.file_name}",
                    {'quarantine_id': quarantine_id, 'restored_path': target})
        return target

    def permanent_delete(self, quarantine_id: str) -> bool:
        """
        Remove a record for good. Idempotent.

        Returns:
            True if anything was removed
        """
        self._check_id(quarantine_id)
        with self._lock:
            removed_payload = self._discard(self._payload_path(quarantine_id))
            removed_metadata = self._discard(self._metadata_path(quarantine_id))

        removed = removed_payload or removed_metadata
        if removed:
            logger.info(f"Permanently deleted {quarantine_id}")
            self._audit(AuditAction.DELETED, f"Deleted {quarantine_id}",
                        {'quarantine_id': quarantine_id})
        return removed

    def verify(self, quarantine_id: str) -> bool:
        """
        Check that a record decrypts and matches its stored digest.

        Raises:
            NotFoundError: no such record
        """
        record = self._load_record(quarantine_id)
        try:
            self._decrypt_record(record)
            return True
        except CryptoError as e:
            logger.error(f"Quarantine record {quarantine_id} failed verification: {e}")
            return False

    def purge_older_than(self, days: int) -> List[str]:
        """Delete records quarantined more than `days` ago. Returns their ids."""
        cutoff = datetime.utcnow() - timedelta(days=days)
        purged = []
        for record in self.list():
            try:
                expired = record.quarantined_datetime < cutoff
            except ValueError:
                logger.warning(f"Unparseable timestamp on {record.id}, keeping it")
                continue
            if expired and self.permanent_delete(record.id):
                purged.append(record.id)

        if purged:
            logger.info(f"Purged {len(purged)} quarantine record(s) older than {days} days")
            self._audit(AuditAction.PURGED, f"Purged {len(purged)} record(s)",
                        {'quarantine_ids': purged, 'retention_days': days})
        return purged
