"""
Error codes for Endpoint Guard.

Provides a central registry of machine-readable error codes used by the
service facade, the CLI and the JSON response envelope.
"""

from dataclasses import dataclass
from typing import Dict


@dataclass(frozen=True)
class ErrorCode:
    """A single error code with metadata."""
    code: str
    message: str
    hint: str = ""


# Lookup failures
NOT_FOUND = ErrorCode("E001", "Resource not found", "Verify the file path or quarantine ID and try again.")

# Filesystem access
IO_FAILURE = ErrorCode("E002", "File access failed", "The file may be locked, unreadable or gone. Retry later.")

# Request validation
INVALID_ARGUMENT = ErrorCode("E003", "Invalid argument", "Check the scan type and paths. Custom scans need at least one path.")

# Quarantine crypto
CRYPTO_FAILURE = ErrorCode(
    "E004",
    "Quarantine decryption failed",
    "Wrong quarantine key or corrupted payload. Run: endpoint-guard quarantine verify <id>",
)

# Scanner state
SCAN_IN_PROGRESS = ErrorCode("E005", "Scan already in progress", "Wait for the running scan or stop it first.")

# Configuration & internal
CONFIG_ERROR = ErrorCode("E006", "Configuration error", "Check the configuration file against the documented options.")
INTERNAL_ERROR = ErrorCode("E007", "Internal error", "Check the agent logs for details.")

# Registry for code-based lookup
_ALL: Dict[str, ErrorCode] = {
    ec.code: ec
    for ec in [
        NOT_FOUND, IO_FAILURE, INVALID_ARGUMENT, CRYPTO_FAILURE,
        SCAN_IN_PROGRESS, CONFIG_ERROR, INTERNAL_ERROR,
    ]
}


def lookup(code: str) -> ErrorCode:
    """Look up an error code by its string code (e.g. 'E001')."""
    return _ALL.get(code, INTERNAL_ERROR)
