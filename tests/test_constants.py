"""
Tests for the Constants module.

Tests centralized configuration values and constants.
"""

import os
import sys


# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endpoint_guard.constants import (
    Timeouts,
    BufferSizes,
    Permissions,
    ScanDefaults,
    DEFAULT_QUARANTINE_KEY,
    EICAR_TEST_STRING,
)


# ===========================================================================
# Timeout Constants Tests
# ===========================================================================

class TestTimeouts:
    def test_thread_join_timeouts_ordered(self):
        assert 0 < Timeouts.THREAD_JOIN_SHORT <= Timeouts.THREAD_JOIN_DEFAULT <= Timeouts.THREAD_JOIN_LONG

    def test_settle_window(self):
        assert Timeouts.WRITE_SETTLE_DELAY > 0
        assert Timeouts.WRITE_SETTLE_MAX_WAIT > Timeouts.WRITE_SETTLE_DELAY

    def test_queue_poll_shorter_than_settle(self):
        assert 0 < Timeouts.WATCH_QUEUE_POLL < Timeouts.WRITE_SETTLE_DELAY

    def test_network_timeouts_positive(self):
        assert Timeouts.SIGNATURE_UPDATE > 0
        assert Timeouts.SIGNATURE_UPDATE_RETRY_DELAY > 0

    def test_history_flush_positive(self):
        assert Timeouts.HISTORY_FLUSH > 0


# ===========================================================================
# Buffer Size Tests
# ===========================================================================

class TestBufferSizes:
    def test_chunk_sizes_positive(self):
        assert BufferSizes.DIGEST_CHUNK > 0
        assert BufferSizes.SECURE_DELETE_CHUNK > 0
        assert BufferSizes.HEURISTIC_PREFIX > 0

    def test_pattern_window_fits_scan_limit(self):
        assert BufferSizes.PATTERN_DEFAULT_MAX_BYTES <= BufferSizes.PATTERN_SCAN_LIMIT

    def test_max_file_size_above_chunk(self):
        assert BufferSizes.MAX_FILE_SIZE > BufferSizes.DIGEST_CHUNK

    def test_log_rotation(self):
        assert BufferSizes.LOG_FILE_MAX > 0
        assert BufferSizes.LOG_FILE_BACKUPS >= 1


# ===========================================================================
# Permission Tests
# ===========================================================================

class TestPermissions:
    def test_owner_only(self):
        for mode in (Permissions.QUARANTINE_DIR, Permissions.QUARANTINE_FILE,
                     Permissions.LOG_DIR, Permissions.LOG_FILE, Permissions.DATA_DIR):
            assert mode & 0o077 == 0

    def test_files_not_executable(self):
        assert Permissions.QUARANTINE_FILE & 0o111 == 0
        assert Permissions.LOG_FILE & 0o111 == 0

    def test_directories_traversable(self):
        assert Permissions.QUARANTINE_DIR & 0o100
        assert Permissions.LOG_DIR & 0o100


# ===========================================================================
# Scan defaults and literals
# ===========================================================================

class TestScanDefaults:
    def test_positive(self):
        assert ScanDefaults.PROGRESS_EVERY_FILES >= 1
        assert ScanDefaults.HISTORY_LIMIT > 0
        assert ScanDefaults.RECENT_THREATS > 0
        assert ScanDefaults.RETENTION_DAYS > 0

    def test_eicar_string(self):
        assert len(EICAR_TEST_STRING) == 68
        assert EICAR_TEST_STRING.startswith(b"X5O!P%@AP[4\\PZX54")

    def test_default_key_is_placeholder(self):
        assert DEFAULT_QUARANTINE_KEY
        assert "CHANGE" in DEFAULT_QUARANTINE_KEY
