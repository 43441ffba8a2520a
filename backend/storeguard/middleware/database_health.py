"""
StoreGuard Backend: Database Health Middleware
================================================

What:  Short-circuits API requests with a 503 while the database is down.
Why:   Failing fast with a clear status beats letting every handler wait on
       a connection that will never come.
How:   Delegates to LivenessCache.ensure_alive(); only paths under
       `path_prefix` (default /api) are guarded, so /health and static
       routes keep answering during an outage.

This is an admission check only. A database that dies after the check
passed is the handler's problem, surfaced through its own error handling.
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from storeguard.exceptions import StoreUnreachableError
from storeguard.services.liveness import LivenessCache

logger = logging.getLogger(__name__)


class DatabaseHealthMiddleware(BaseHTTPMiddleware):
    def __init__(
        self,
        app: ASGIApp,
        liveness: LivenessCache,
        path_prefix: str = "/api",
        expose_errors: bool = False,
    ):
        super().__init__(app)
        self.liveness = liveness
        self.path_prefix = path_prefix
        self.expose_errors = expose_errors

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not request.url.path.startswith(self.path_prefix):
            return await call_next(request)

        try:
            await self.liveness.ensure_alive()
        except StoreUnreachableError as exc:
            logger.error("Database health check failed: %s", exc.detail)
            return exc.to_response(include_detail=self.expose_errors)

        return await call_next(request)
