"""
Centralized constants for Endpoint Guard.

Timeouts, buffer sizes and file permissions shared by the scanner,
the quarantine vault and the realtime watcher live here so they can be
tuned in one place.
"""


class Timeouts:
    """Timeout and interval values, in seconds."""
    # Thread joins
    THREAD_JOIN_SHORT = 1.0
    THREAD_JOIN_DEFAULT = 5.0
    THREAD_JOIN_LONG = 15.0

    # Realtime watcher
    WATCH_QUEUE_POLL = 0.5       # Worker wakes at least this often
    WRITE_SETTLE_DELAY = 2.0     # File must be unchanged this long before scanning
    WRITE_SETTLE_MAX_WAIT = 30.0  # Give up waiting for a busy writer after this

    # Signature updates (the only network call)
    SIGNATURE_UPDATE = 30.0
    SIGNATURE_UPDATE_RETRY_DELAY = 2.0

    # History writes are flushed before a session is finalized
    HISTORY_FLUSH = 30.0


class BufferSizes:
    """Read sizes and limits, in bytes."""
    DIGEST_CHUNK = 1024 * 1024                 # 1 MiB chunks for hashing
    PATTERN_SCAN_LIMIT = 5 * 1024 * 1024        # Prefix read for pattern signatures
    PATTERN_DEFAULT_MAX_BYTES = 1024 * 1024     # Per-signature search window
    HEURISTIC_PREFIX = 512                      # Header bytes for magic checks
    SECURE_DELETE_CHUNK = 1024 * 1024
    MAX_FILE_SIZE = 500 * 1024 * 1024           # Default scannable size limit
    LOG_FILE_MAX = 10 * 1024 * 1024
    LOG_FILE_BACKUPS = 5


class Permissions:
    """POSIX modes for files the agent creates."""
    QUARANTINE_DIR = 0o700
    QUARANTINE_FILE = 0o600
    LOG_DIR = 0o700
    LOG_FILE = 0o600
    DATA_DIR = 0o700


class ScanDefaults:
    """Defaults for scan bookkeeping."""
    PROGRESS_EVERY_FILES = 10
    HISTORY_LIMIT = 50
    RECENT_THREATS = 10
    RETENTION_DAYS = 30


# Placeholder shipped in the default configuration. Running with it is a
# deployment defect and is logged as such.
DEFAULT_QUARANTINE_KEY = "CHANGE_THIS_IN_PRODUCTION"

# Standard 68-byte EICAR anti-malware test string
EICAR_TEST_STRING = (
    b"X5O!P%@AP[4\\PZX54(P^)7CC)7}$EICAR-STANDARD-ANTIVIRUS-TEST-FILE!$H+H*"
)
