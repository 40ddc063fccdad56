"""
Shared response envelope for Endpoint Guard boundary operations.

The CLI's --json output and any UI bridge render service results through
this envelope so success and failure share one shape.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime
from typing import TYPE_CHECKING, Dict, Optional, Any

if TYPE_CHECKING:
    from ..exceptions import GuardError


@dataclass
class APIResponse:
    """Standard response envelope for boundary operations."""
    status: str  # "ok" | "error"
    data: Optional[Any] = None
    error: Optional[Dict[str, Any]] = None  # {"code": "E001", "message": "..."}
    timestamp: str = field(default_factory=lambda: datetime.utcnow().isoformat() + "Z")

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"status": self.status, "timestamp": self.timestamp}
        if self.data is not None:
            result["data"] = self.data
        if self.error is not None:
            result["error"] = self.error
        return result


def ok_response(data: Optional[Any] = None) -> APIResponse:
    """Create a successful response."""
    return APIResponse(status="ok", data=data)


def error_response(code: str, message: str, details: Optional[Dict[str, Any]] = None) -> APIResponse:
    """Create an error response with structured error info."""
    error_body: Dict[str, Any] = {"code": code, "message": message}
    if details:
        error_body["details"] = details
    return APIResponse(status="error", error=error_body)


def from_exception(error: "GuardError") -> APIResponse:
    """Render a GuardError as an error response, including its hint."""
    details = dict(error.details)
    if error.error_code.hint:
        details.setdefault("hint", error.error_code.hint)
    return error_response(error.error_code.code, str(error), details or None)
