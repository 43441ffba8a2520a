"""
StoreGuard Backend: Rate Limiting Middleware
==============================================

What:  Per-client fixed-window admission control.
Why:   A single misbehaving client (or a storefront tab stuck in a retry
       loop) must not starve everyone else or crash the backend.
How:   Resolves a client id for the request and asks ClientWindowRegistry
       for a decision; rejected requests never reach the rest of the chain.
When:  First guard in the chain: rejection is the cheapest possible answer.

Client identity:
    Defaults to the socket peer address. Behind a reverse proxy every
    request would share the proxy's address, so `trust_forwarded_for=True`
    switches to the first X-Forwarded-For hop. Only enable that when the
    proxy overwrites the header; otherwise clients choose their own key.
    Callers needing anything else pass their own `client_key` function.

Response on rate limit:
    HTTP 429 {"success": false, "message": ..., "retry_after": 0.8}
    Retry-After header: retry_after rounded up to whole seconds
"""

import logging
from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response
from starlette.types import ASGIApp

from storeguard.exceptions import AdmissionRejectedError
from storeguard.services.rate_limiter import ClientWindowRegistry

logger = logging.getLogger(__name__)

ClientKeyFunc = Callable[[Request], str]


def peer_address(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def forwarded_address(request: Request) -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    first_hop = forwarded.split(",")[0].strip()
    return first_hop or peer_address(request)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Starlette adapter around ClientWindowRegistry.

    Excluded paths:
        - /health: Health checks should never be rate-limited
        - /docs, /openapi.json, /redoc: API documentation stays reachable
    """

    EXCLUDED_PATHS = {"/health", "/docs", "/openapi.json", "/redoc"}

    def __init__(
        self,
        app: ASGIApp,
        registry: ClientWindowRegistry,
        client_key: ClientKeyFunc = peer_address,
    ):
        super().__init__(app)
        self.registry = registry
        self.client_key = client_key

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if request.url.path in self.EXCLUDED_PATHS:
            return await call_next(request)

        client_id = self.client_key(request)
        decision = self.registry.admit(client_id)

        if not decision.admitted:
            logger.warning(
                "Rate limit exceeded for client %s (%d requests in %.0fms window)",
                client_id,
                decision.count,
                self.registry.window * 1000,
            )
            return AdmissionRejectedError(
                decision.retry_after,
                context={"client_id": client_id, "count": decision.count},
            ).to_response()

        return await call_next(request)
