"""
StoreGuard Backend: Middleware Package
========================================

Middleware Chain (execution order):
    Request → [CORS] → [Access Log] → [Rate Limit] → [Request Tracker]
            → [Timeout Guard] → [Database Health] → [GZip] → Route Handler

    Why this order:
    1. Rate Limit first among the guards: rejection is the cheapest answer
    2. Request Tracker next, so rejected requests are never counted
    3. Timeout Guard before any blocking I/O, including the liveness probe
    4. Database Health last: the only guard that performs I/O

Starlette runs middleware in REVERSE order of add_middleware(), so
create_app() registers them bottom-up.
"""

from storeguard.middleware.database_health import DatabaseHealthMiddleware
from storeguard.middleware.logging import RequestLoggingMiddleware
from storeguard.middleware.rate_limit import (
    RateLimitMiddleware,
    forwarded_address,
    peer_address,
)
from storeguard.middleware.request_tracker import RequestTrackerMiddleware
from storeguard.middleware.timeout import PendingRequestTimer, RequestTimeoutMiddleware

__all__ = [
    "DatabaseHealthMiddleware",
    "PendingRequestTimer",
    "RateLimitMiddleware",
    "RequestLoggingMiddleware",
    "RequestTimeoutMiddleware",
    "RequestTrackerMiddleware",
    "forwarded_address",
    "peer_address",
]
