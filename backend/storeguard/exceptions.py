"""
StoreGuard Backend: Custom Exception Hierarchy
================================================

What:  Application-specific exceptions for every outcome the service reports
       as an error response.
Why:   Each exception knows its HTTP status and how to render itself, so the
       guards and the global handlers produce identical bodies.
How:   Each exception class carries a message and optional context dict.
       `to_response()` renders the `{success: false, message, ...}` envelope
       through `storeguard.responses.error_response`.
Who:   Raised by services; rendered by middleware and global handlers.

Exception Hierarchy:
    StoreGuardError (base)                → 500 Internal Server Error
    ├── AdmissionRejectedError            → 429 Too Many Requests
    ├── DeadlineExceededError             → 504 Gateway Timeout
    ├── StoreUnreachableError             → 503 Service Unavailable
    ├── NotFoundError                     → 404 Not Found
    └── ValidationError                   → 400 Bad Request

Propagation:
    The guards never let these escape to the global handlers: they render
    the response themselves and stop the chain. The global handlers exist
    for the same exceptions raised from route code.
"""

import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from storeguard.responses import SafeJSONResponse, error_response


class StoreGuardError(Exception):
    """
    Base exception for all StoreGuard application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but NOT returned to client)
    """

    status_code = 500

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)

    def response_fields(self, include_detail: bool) -> Dict[str, Any]:
        """Extra body fields beyond `success` and `message`."""
        return {}

    def response_headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_response(self, include_detail: bool = False) -> SafeJSONResponse:
        return error_response(
            self.status_code,
            self.message,
            headers=self.response_headers(),
            **self.response_fields(include_detail),
        )


class AdmissionRejectedError(StoreGuardError):
    """
    Raised when a client exceeds its per-window request budget.

    HTTP:  429 Too Many Requests

    retry_after is the remaining time of the client's current window in
    seconds. The body carries it with millisecond precision; the Retry-After
    header carries it rounded up to whole seconds, as HTTP requires.
    """

    status_code = 429

    def __init__(
        self,
        retry_after: float,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.retry_after = max(0.0, retry_after)
        ctx = context or {}
        ctx["retry_after"] = self.retry_after
        super().__init__(message="Too many requests. Please slow down.", context=ctx)

    def response_fields(self, include_detail: bool) -> Dict[str, Any]:
        return {"retry_after": round(self.retry_after, 3)}

    def response_headers(self) -> Optional[Dict[str, str]]:
        return {"Retry-After": str(math.ceil(self.retry_after))}


class DeadlineExceededError(StoreGuardError):
    """
    Raised when a request outlives its deadline before any response started.

    HTTP:  504 Gateway Timeout
    """

    status_code = 504

    def __init__(
        self,
        timeout_ms: int,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["timeout_ms"] = timeout_ms
        super().__init__(
            message="Request timeout - Server is taking too long to respond",
            context=ctx,
        )
        self.timeout_ms = timeout_ms


class StoreUnreachableError(StoreGuardError):
    """
    Raised when the database liveness probe fails or times out.

    HTTP:  503 Service Unavailable

    `detail` is the underlying failure text. It is only rendered into the
    body when the caller asks for it (outside production).
    """

    status_code = 503

    def __init__(
        self,
        detail: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message="Database temporarily unavailable", context=context)
        self.detail = detail

    def response_fields(self, include_detail: bool) -> Dict[str, Any]:
        return {"error": self.detail if include_detail else None}


class NotFoundError(StoreGuardError):
    """Raised (or synthesized by the 404 handler) for unknown routes."""

    status_code = 404

    def __init__(
        self,
        path: str,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["path"] = path
        super().__init__(message=f"Route {path} not found", context=ctx)
        self.path = path

    def response_fields(self, include_detail: bool) -> Dict[str, Any]:
        return {"timestamp": datetime.now(timezone.utc).isoformat()}


class ValidationError(StoreGuardError):
    """
    Raised when the request body or parameters are malformed.

    HTTP:  400 Bad Request

    `errors` is a list of {"field", "message"} entries.
    """

    status_code = 400

    def __init__(
        self,
        message: str = "Validation failed",
        errors: Optional[List[Dict[str, str]]] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)
        self.errors = errors or []

    def response_fields(self, include_detail: bool) -> Dict[str, Any]:
        return {"errors": self.errors or None}
