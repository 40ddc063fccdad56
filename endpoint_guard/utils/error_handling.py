"""
Error Handling Utilities for Endpoint Guard

Per-file failures during enumeration and scanning are recovered locally:
they are logged with context, counted, deduplicated and the file is
skipped. This module provides the shared machinery for that:

1. Detailed error logging with context
2. Error categorization and severity levels
3. Error aggregation and deduplication
4. Retry with exponential backoff for the few operations that may retry

USAGE:
    from endpoint_guard.utils.error_handling import (
        handle_error,
        ErrorCategory,
        safe_execute,
        with_error_handling,
    )

    # Context manager usage
    with safe_execute("reading signature pack", ErrorCategory.SIGNATURES):
        ...

    # Direct error handling
    try:
        compute_digests(path)
    except FileAccessError as e:
        handle_error(e, "digest", ErrorCategory.FILESYSTEM)
"""

import functools
import logging
import threading
import time
import traceback
from collections import Counter, deque
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import (
    Any,
    Callable,
    Deque,
    Dict,
    List,
    Optional,
    Tuple,
    Type,
    TypeVar,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


class ErrorCategory(Enum):
    """Categories of errors for proper handling and reporting."""
    FILESYSTEM = "filesystem"
    ENUMERATION = "enumeration"
    SIGNATURES = "signatures"
    HEURISTICS = "heuristics"
    QUARANTINE = "quarantine"
    CRYPTO = "crypto"
    PERSISTENCE = "persistence"
    REALTIME = "realtime"
    NETWORK = "network"
    CONFIG = "configuration"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors."""
    # Informational - operation can continue
    INFO = "info"

    # Warning - something unexpected but not critical
    WARNING = "warning"

    # Error - operation failed but agent stable
    ERROR = "error"

    # Critical - protection integrity at risk
    CRITICAL = "critical"


_LOG_LEVELS = {
    ErrorSeverity.INFO: logging.INFO,
    ErrorSeverity.WARNING: logging.WARNING,
    ErrorSeverity.ERROR: logging.ERROR,
    ErrorSeverity.CRITICAL: logging.CRITICAL,
}


@dataclass
class ErrorContext:
    """Detailed context information for an error."""
    error: Exception
    category: ErrorCategory
    severity: ErrorSeverity
    operation: str
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")
    thread_name: str = field(default_factory=lambda: threading.current_thread().name)
    stack_trace: str = ""
    additional_context: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.stack_trace:
            self.stack_trace = traceback.format_exc()

    @property
    def dedup_key(self) -> str:
        """Same category, exception type and operation collapse together; the path does not count."""
        return f"{self.category.value}:{type(self.error).__name__}:{self.operation}"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            'error_type': type(self.error).__name__,
            'error_message': str(self.error),
            'category': self.category.value,
            'severity': self.severity.value,
            'operation': self.operation,
            'timestamp': self.timestamp,
            'thread_name': self.thread_name,
            'additional_context': self.additional_context,
        }

    def format_log_message(self, include_trace: bool = False) -> str:
        """Format a log message; stack traces only for unexpected errors."""
        lines = [
            f"[{self.severity.value.upper()}] {self.operation}: "
            f"{type(self.error).__name__}: {self.error}",
            f"  Category: {self.category.value}",
        ]
        lines.extend(f"  {key}: {value}" for key, value in self.additional_context.items())

        if include_trace:
            lines.append("  Stack Trace:")
            lines.extend(f"    {line}" for line in self.stack_trace.splitlines() if line.strip())

        return '\n'.join(lines)


class ErrorAggregator:
    """
    Keeps the recent distinct failures of a running agent.

    A full scan over a tree of locked or vanishing files raises the same
    failure thousands of times. Inside the dedup window a repeat only bumps
    its counter, so the log carries one line per kind of failure and the
    summary still reports how often it happened.
    """

    def __init__(self, max_errors: int = 1000, dedup_window_seconds: int = 60):
        self._dedup_window = dedup_window_seconds
        self._recent: Deque[ErrorContext] = deque(maxlen=max_errors)
        self._occurrences: Counter = Counter()
        self._window_start: Dict[str, float] = {}
        self._lock = threading.Lock()

    def add_error(self, context: ErrorContext) -> bool:
        """Record a failure. False when it repeats one already inside the window."""
        key = context.dedup_key
        now = time.time()

        with self._lock:
            opened = self._window_start.get(key)
            if opened is not None and now - opened < self._dedup_window:
                self._occurrences[key] += 1
                return False

            self._window_start[key] = now
            self._occurrences[key] = 1
            self._recent.append(context)
            return True

    def get_error_summary(self) -> Dict[str, Any]:
        with self._lock:
            stored = list(self._recent)
            counts = dict(self._occurrences)

        return {
            'total_errors': len(stored),
            'by_category': dict(Counter(ctx.category.value for ctx in stored)),
            'by_severity': dict(Counter(ctx.severity.value for ctx in stored)),
            'deduplicated_counts': counts,
        }

    def get_recent_errors(self, count: int = 10) -> List[Dict[str, Any]]:
        with self._lock:
            stored = list(self._recent)
        return [ctx.to_dict() for ctx in stored[-count:]]

    def clear(self):
        with self._lock:
            self._recent.clear()
            self._occurrences.clear()
            self._window_start.clear()


# Process-wide aggregator shared by the scanner, vault and watcher
_global_aggregator = ErrorAggregator()


def get_error_aggregator() -> ErrorAggregator:
    return _global_aggregator


def determine_severity(error: Exception, category: ErrorCategory) -> ErrorSeverity:
    """
    Determine the severity level for an error based on type and category.
    """
    from ..exceptions import CryptoError, FileAccessError, NotFoundError

    if isinstance(error, CryptoError) or category == ErrorCategory.CRYPTO:
        return ErrorSeverity.CRITICAL

    # A file vanishing or being locked mid-scan is routine
    if isinstance(error, (FileNotFoundError, NotFoundError)):
        return ErrorSeverity.INFO
    if isinstance(error, (PermissionError, FileAccessError)):
        return ErrorSeverity.WARNING

    if 'timeout' in type(error).__name__.lower() or 'timed out' in str(error).lower():
        return ErrorSeverity.WARNING

    return ErrorSeverity.ERROR


def handle_error(
    error: Exception,
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    severity: Optional[ErrorSeverity] = None,
    additional_context: Optional[Dict[str, Any]] = None,
    reraise: bool = False,
) -> ErrorContext:
    """
    Log and aggregate a failure.

    Args:
        error: The exception that occurred
        operation: What was being done, e.g. "scanning file"
        category: Category of the error
        severity: Severity level (derived from the error when omitted)
        additional_context: Extra fields for the log line, e.g. the path
        reraise: Re-raise the exception after it has been recorded

    Returns:
        ErrorContext with full error details
    """
    from ..exceptions import GuardError

    context = ErrorContext(
        error=error,
        category=category,
        severity=severity or determine_severity(error, category),
        operation=operation,
        additional_context=additional_context or {},
    )

    if _global_aggregator.add_error(context):
        # Taxonomy and OS errors are anticipated; only surprises get a trace
        anticipated = isinstance(error, (GuardError, OSError))
        logger.log(_LOG_LEVELS[context.severity],
                   context.format_log_message(include_trace=not anticipated))
    else:
        logger.debug(f"[DEDUPLICATED] {operation}: {type(error).__name__}: {error}")

    if reraise:
        raise error
    return context


@dataclass
class ExecutionResult:
    """Outcome of a block run under safe_execute()."""
    value: Any = None
    success: bool = True
    error: Optional[ErrorContext] = None


@contextmanager
def safe_execute(
    operation: str,
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    default_return: Any = None,
    reraise: bool = False,
    additional_context: Optional[Dict[str, Any]] = None,
):
    """
    Run a block whose failure must not abort the caller.

    Usage:
        with safe_execute("recording threat", ErrorCategory.PERSISTENCE) as result:
            result.value = store.record_threat_detection(...)
    """
    result = ExecutionResult(value=default_return)
    try:
        yield result
    except Exception as e:
        result.success = False
        result.value = default_return
        result.error = handle_error(e, operation, category=category,
                                    additional_context=additional_context, reraise=reraise)


def with_error_handling(
    category: ErrorCategory = ErrorCategory.UNKNOWN,
    operation: Optional[str] = None,
    default_return: Any = None,
    reraise: bool = False,
    retry_count: int = 0,
    retry_delay: float = 1.0,
    retry_backoff: float = 2.0,
    retry_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
):
    """
    Decorator that records failures and optionally retries with backoff.

    Only exceptions in retry_exceptions are retried (all when None). Once
    the attempts are spent the last error is re-raised if reraise is set,
    otherwise default_return is returned.

    Usage:
        @with_error_handling(category=ErrorCategory.NETWORK, retry_count=2)
        def fetch_signature_pack(url):
            ...
    """
    attempts_allowed = retry_count + 1

    def retryable(error: Exception) -> bool:
        return retry_exceptions is None or isinstance(error, retry_exceptions)

    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        op_name = operation or func.__name__

        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = retry_delay
            for attempt in range(1, attempts_allowed + 1):
                try:
                    return func(*args, **kwargs)
                except Exception as e:
                    again = attempt < attempts_allowed and retryable(e)
                    handle_error(e, op_name, category=category, additional_context={
                        'attempt': f"{attempt}/{attempts_allowed}",
                        'will_retry': again,
                    })
                    if not again:
                        if reraise:
                            raise
                        return default_return

                logger.info(f"Retrying {op_name} in {delay:.1f}s")
                time.sleep(delay)
                delay *= retry_backoff
            return default_return

        return wrapper
    return decorator
