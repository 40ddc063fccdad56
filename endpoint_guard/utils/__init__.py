"""Shared utilities for Endpoint Guard."""

from .error_handling import (
    ErrorCategory,
    ErrorSeverity,
    ErrorContext,
    ErrorAggregator,
    get_error_aggregator,
    handle_error,
    safe_execute,
    with_error_handling,
)

__all__ = [
    'ErrorCategory',
    'ErrorSeverity',
    'ErrorContext',
    'ErrorAggregator',
    'get_error_aggregator',
    'handle_error',
    'safe_execute',
    'with_error_handling',
]
