"""
Tests for endpoint_guard/utils/error_handling.py
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from endpoint_guard.exceptions import CryptoError, FileAccessError, NotFoundError
from endpoint_guard.utils.error_handling import (
    ErrorAggregator,
    ErrorCategory,
    ErrorContext,
    ErrorSeverity,
    determine_severity,
    get_error_aggregator,
    handle_error,
    safe_execute,
    with_error_handling,
)


@pytest.fixture(autouse=True)
def clean_aggregator():
    get_error_aggregator().clear()
    yield
    get_error_aggregator().clear()


class TestSeverity:
    @pytest.mark.unit
    @pytest.mark.parametrize("error,category,expected", [
        (CryptoError("bad tag"), ErrorCategory.QUARANTINE, ErrorSeverity.CRITICAL),
        (ValueError("x"), ErrorCategory.CRYPTO, ErrorSeverity.CRITICAL),
        (NotFoundError("gone"), ErrorCategory.FILESYSTEM, ErrorSeverity.INFO),
        (FileNotFoundError("gone"), ErrorCategory.FILESYSTEM, ErrorSeverity.INFO),
        (FileAccessError("locked"), ErrorCategory.FILESYSTEM, ErrorSeverity.WARNING),
        (PermissionError("denied"), ErrorCategory.ENUMERATION, ErrorSeverity.WARNING),
        (OSError("timed out"), ErrorCategory.NETWORK, ErrorSeverity.WARNING),
        (RuntimeError("boom"), ErrorCategory.UNKNOWN, ErrorSeverity.ERROR),
    ])
    def test_determine_severity(self, error, category, expected):
        assert determine_severity(error, category) == expected


class TestHandleError:
    @pytest.mark.unit
    def test_returns_context(self):
        context = handle_error(FileAccessError("locked"), "scanning file", ErrorCategory.FILESYSTEM,
                               additional_context={'path': '/x'})
        assert isinstance(context, ErrorContext)
        assert context.to_dict()['additional_context'] == {'path': '/x'}
        assert context.to_dict()['error_type'] == 'FileAccessError'

    @pytest.mark.unit
    def test_reraise(self):
        with pytest.raises(RuntimeError):
            handle_error(RuntimeError("boom"), "op", reraise=True)

    @pytest.mark.unit
    def test_format_includes_context(self):
        context = handle_error(OSError("nope"), "enumerating files", ErrorCategory.ENUMERATION,
                               additional_context={'path': '/root/secret'})
        message = context.format_log_message()
        assert "enumerating files" in message
        assert "path: /root/secret" in message


class TestErrorAggregator:
    @pytest.mark.unit
    def test_deduplicates_within_window(self):
        aggregator = ErrorAggregator(dedup_window_seconds=60)
        make = lambda: ErrorContext(OSError("x"), ErrorCategory.FILESYSTEM, ErrorSeverity.WARNING, "read")

        assert aggregator.add_error(make()) is True
        assert aggregator.add_error(make()) is False

        summary = aggregator.get_error_summary()
        assert summary['total_errors'] == 1
        assert summary['deduplicated_counts']['filesystem:OSError:read'] == 2

    @pytest.mark.unit
    def test_caps_stored_errors(self):
        aggregator = ErrorAggregator(max_errors=3, dedup_window_seconds=0)
        for i in range(5):
            aggregator.add_error(ErrorContext(OSError(str(i)), ErrorCategory.FILESYSTEM,
                                              ErrorSeverity.WARNING, f"op{i}"))
        recent = aggregator.get_recent_errors(10)
        assert [e['operation'] for e in recent] == ['op2', 'op3', 'op4']


class TestSafeExecute:
    @pytest.mark.unit
    def test_swallows_and_records(self):
        with safe_execute("recording", ErrorCategory.PERSISTENCE, default_return=-1) as result:
            raise RuntimeError("db locked")
        assert result.success is False
        assert result.value == -1
        assert result.error.category == ErrorCategory.PERSISTENCE

    @pytest.mark.unit
    def test_success(self):
        with safe_execute("recording") as result:
            result.value = 42
        assert result.success is True
        assert result.value == 42


class TestWithErrorHandling:
    @pytest.mark.unit
    def test_retries_then_succeeds(self):
        calls = []

        @with_error_handling(category=ErrorCategory.NETWORK, retry_count=2, retry_delay=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise OSError("connection reset")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    @pytest.mark.unit
    def test_gives_up_with_default(self):
        @with_error_handling(retry_count=1, retry_delay=0, default_return="fallback")
        def always_fails():
            raise OSError("down")

        assert always_fails() == "fallback"

    @pytest.mark.unit
    def test_does_not_retry_other_exceptions(self):
        calls = []

        @with_error_handling(retry_count=3, retry_delay=0, retry_exceptions=(OSError,))
        def wrong_kind():
            calls.append(1)
            raise ValueError("bad data")

        assert wrong_kind() is None
        assert len(calls) == 1

    @pytest.mark.unit
    def test_reraise_after_retries(self):
        @with_error_handling(retry_count=1, retry_delay=0, reraise=True)
        def always_fails():
            raise OSError("down")

        with pytest.raises(OSError):
            always_fails()
