"""
StoreGuard Backend: Request Logging Middleware
================================================

What:  One access-log line per request, including guard rejections.
Why:   The guards answer 429/503/504 themselves; logging outside them is
       the only way to see those answers next to normal traffic.
How:   Outermost application middleware; measures wall time around the
       whole chain and picks the log level from the status code.

What we log: method, path, status, duration, client address, tab id.
What we don't: bodies and auth headers.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

logger = logging.getLogger("storeguard.access")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log level by status:
        5xx → ERROR, 4xx → WARNING, everything else → INFO

    /health is skipped: probes hit it every few seconds.
    """

    SKIPPED_PATHS = {"/health"}

    def __init__(self, app: ASGIApp, tag_header: str = "X-Tab-ID"):
        super().__init__(app)
        self.tag_header = tag_header

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in self.SKIPPED_PATHS:
            return await call_next(request)

        start_time = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start_time) * 1000

        status = response.status_code
        if status >= 500:
            log_level = logging.ERROR
        elif status >= 400:
            log_level = logging.WARNING
        else:
            log_level = logging.INFO

        client_ip = request.client.host if request.client else "unknown"
        tab_id = request.headers.get(self.tag_header, "unknown")
        logger.log(
            log_level,
            "%s %s %d %.1fms from %s tab=%s",
            request.method,
            path,
            status,
            duration_ms,
            client_ip,
            tab_id,
            extra={
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
                "tab_id": tab_id,
            },
        )
        return response
