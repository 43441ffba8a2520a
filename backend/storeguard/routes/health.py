"""
StoreGuard Backend: Health Check & Welcome Routes
===================================================

What:  GET / (API welcome) and GET /health (liveness for load balancers).
Why:   Load balancers and container health checks need an endpoint that
       answers even while the database is down, and reports that it is.
How:   /health sits outside the /api prefix, so the database guard never
       short-circuits it; it asks the liveness cache directly instead.

Status levels:
    - healthy:   database reachable (or a healthy verdict is still cached)
    - unhealthy: the latest probe failed

The endpoint always answers 200; the status field carries the verdict.
"""

import logging
import time
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request

from storeguard import __version__
from storeguard.config import Settings
from storeguard.exceptions import StoreUnreachableError
from storeguard.schemas.health import HealthResponse, WelcomeResponse
from storeguard.state import GuardState

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


def uptime_seconds() -> float:
    return round(time.time() - _start_time, 2)


def get_guards(request: Request) -> GuardState:
    return request.app.state.guards


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


@router.get("/", response_model=WelcomeResponse, summary="API welcome")
async def welcome() -> WelcomeResponse:
    return WelcomeResponse(
        message="Welcome to Badminton Store API",
        version=__version__,
        health="/health",
    )


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description=(
        "Returns the health status of the backend and its database. Used by "
        "container health checks and load balancers."
    ),
)
async def health_check(
    guards: GuardState = Depends(get_guards),
    cfg: Settings = Depends(get_settings),
) -> HealthResponse:
    database = "connected"
    status = "healthy"
    try:
        await guards.liveness.ensure_alive()
    except StoreUnreachableError as exc:
        database = "disconnected"
        status = "unhealthy"
        logger.warning("Health check: database unreachable: %s", exc.detail)

    return HealthResponse(
        status=status,
        message="Badminton Store API is running",
        timestamp=datetime.now(timezone.utc),
        environment=cfg.environment,
        version=__version__,
        database=database,
        uptime_seconds=uptime_seconds(),
    )
