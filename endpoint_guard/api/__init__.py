"""
Boundary API helpers for Endpoint Guard.

Provides:
- Machine-readable error codes
- The JSON response envelope used by the CLI and UI bridges
"""

from .error_codes import ErrorCode, lookup
from .response import APIResponse, ok_response, error_response, from_exception

__all__ = [
    'ErrorCode',
    'lookup',
    'APIResponse',
    'ok_response',
    'error_response',
    'from_exception',
]
