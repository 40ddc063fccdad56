"""
Exception taxonomy for Endpoint Guard.

Every error surfaced to a caller derives from GuardError and carries an
ErrorCode so the CLI and UI bridges can render it without string matching.
Per-file scan failures are recovered locally and never reach callers.
"""

from typing import Any, Dict, Optional

from .api import error_codes
from .api.error_codes import ErrorCode


class GuardError(Exception):
    """Base class for all Endpoint Guard errors."""
    error_code: ErrorCode = error_codes.INTERNAL_ERROR

    def __init__(self, message: str = "", details: Optional[Dict[str, Any]] = None):
        super().__init__(message or self.error_code.message)
        self.details: Dict[str, Any] = details or {}


class NotFoundError(GuardError):
    """A file or quarantine record does not exist."""
    error_code = error_codes.NOT_FOUND


class FileAccessError(GuardError):
    """Read, write or permission failure on a file (locked, denied, vanished)."""
    error_code = error_codes.IO_FAILURE


class InvalidArgumentError(GuardError):
    """Bad scan type, empty custom path set or malformed identifier."""
    error_code = error_codes.INVALID_ARGUMENT


class CryptoError(GuardError):
    """Quarantine payload failed to decrypt or failed its integrity check."""
    error_code = error_codes.CRYPTO_FAILURE


class ScanInProgressError(GuardError):
    """A scan was requested while another is running on the same orchestrator."""
    error_code = error_codes.SCAN_IN_PROGRESS


class ConfigError(GuardError):
    """Configuration file or value is invalid."""
    error_code = error_codes.CONFIG_ERROR
