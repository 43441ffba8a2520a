"""
StoreGuard Backend: FastAPI Application Factory
=================================================

What:  Creates and configures the FastAPI application instance.
Why:   Centralizes configuration, guard wiring, route mounting and
       lifecycle management in one place.
How:   Factory pattern: create_app() returns a configured FastAPI instance.
Who:   Called by uvicorn to start the server (uvicorn storeguard.main:app).

Application Architecture:
    ┌───────────────────────────────────────────────────────────┐
    │                       FastAPI App                         │
    │                                                           │
    │  Guard Chain:                                             │
    │  ┌───────────┐ ┌─────────┐ ┌─────────┐ ┌───────────────┐  │
    │  │Rate Limit │→│ Tracker │→│ Timeout │→│ Database Health│ │
    │  └───────────┘ └─────────┘ └─────────┘ └───────────────┘  │
    │                                                           │
    │  Routes:                                                  │
    │  ┌──────┐ ┌─────────────┐ ┌────────────────┐              │
    │  │ GET /│ │ GET /health │ │ GET /api/stats │              │
    │  └──────┘ └─────────────┘ └────────────────┘              │
    │                                                           │
    │  Exception Handlers:                                      │
    │  ┌─────────────────────────────────────────────────────┐  │
    │  │ StoreGuardError→own status │ 404 │ 400 │ 500        │  │
    │  └─────────────────────────────────────────────────────┘  │
    └───────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:
    1. Initialize logging
    2. Validate configuration (log problems, keep running)
    3. Start the rate-limit sweeper
    4. Verify the database connection (retries, primes the liveness cache)
    5. Start the pool monitor (development only by default)

    Shutdown:
    1. Stop background tasks
    2. Dispose database engine (close all connections)
"""

import logging
import sys
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from storeguard import __version__
from storeguard.config import Settings, settings as default_settings
from storeguard.database import (
    PoolMonitor,
    SQLAlchemyLivenessProbe,
    dispose_engine,
    verify_database_connection,
)
from storeguard.exceptions import NotFoundError, StoreGuardError, ValidationError
from storeguard.middleware import (
    DatabaseHealthMiddleware,
    RateLimitMiddleware,
    RequestLoggingMiddleware,
    RequestTimeoutMiddleware,
    RequestTrackerMiddleware,
    forwarded_address,
    peer_address,
)
from storeguard.responses import SafeJSONResponse, error_response
from storeguard.routes import health, stats
from storeguard.services.probe_base import LivenessProbe
from storeguard.state import GuardState

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════

def setup_logging(cfg: Settings) -> None:
    """
    Configure logging for the entire application.

    Called once during app startup, before any other initialization.
    """
    logging.basicConfig(
        level=getattr(logging, cfg.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    # Third-party libraries log every operation at DEBUG/INFO
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan (Startup & Shutdown)
# ══════════════════════════════════════════════════════════════════════════

@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    cfg: Settings = app.state.settings
    guards: GuardState = app.state.guards

    # ── Startup ───────────────────────────────────────────────────────────
    setup_logging(cfg)
    logger.info("StoreGuard backend starting up (environment=%s)", cfg.environment)

    try:
        cfg.validate_required_for_production()
    except ValueError as e:
        # Keep serving: /health still reports status and the guards still apply
        logger.error("Configuration error: %s", str(e))

    guards.registry.start()

    await verify_database_connection(
        guards.liveness,
        attempts=cfg.startup_connect_attempts,
        min_wait=cfg.startup_retry_min_wait,
        max_wait=cfg.startup_retry_max_wait,
    )

    pool_monitor: Optional[PoolMonitor] = None
    if cfg.pool_monitor_active and isinstance(guards.liveness.probe_impl, SQLAlchemyLivenessProbe):
        pool_monitor = PoolMonitor(interval_ms=cfg.pool_monitor_interval_ms)
        pool_monitor.start()

    logger.info("Server ready at http://%s:%d", cfg.backend_host, cfg.backend_port)

    yield

    # ── Shutdown ──────────────────────────────────────────────────────────
    logger.info("StoreGuard backend shutting down...")
    if pool_monitor is not None:
        await pool_monitor.stop()
    await guards.registry.stop()
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

def register_exception_handlers(app: FastAPI, cfg: Settings) -> None:
    """
    Map exceptions raised by route code to the storefront error envelope.

    Handler hierarchy:
        StoreGuardError         → its own status (429/503/504/404/400)
        HTTPException 404       → 404 "Route <path> not found"
        HTTPException (other)   → its status, detail as message
        RequestValidationError  → 400 (malformed JSON, bad parameters)
        Exception (fallback)    → 500; `error` detail only outside production

    The guards themselves never reach these handlers: they write their own
    responses and stop the chain.
    """
    include_detail = not cfg.is_production

    @app.exception_handler(StoreGuardError)
    async def handle_store_guard_error(request: Request, exc: StoreGuardError):
        logger.warning("%s on %s %s: %s", type(exc).__name__, request.method, request.url.path, exc.message)
        return exc.to_response(include_detail=include_detail)

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_exception(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return NotFoundError(request.url.path).to_response()
        return error_response(
            exc.status_code,
            str(exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(part) for part in err.get("loc", ())),
                "message": err.get("msg", "Invalid value"),
            }
            for err in exc.errors()
        ]
        if any(err.get("type") == "json_invalid" for err in exc.errors()):
            message = "Invalid JSON format in request body"
        else:
            message = "Validation failed"
        logger.warning("Validation error on %s %s: %s", request.method, request.url.path, errors)
        return ValidationError(message, errors=errors).to_response()

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        logger.error(
            "Unexpected error on %s %s: %s",
            request.method,
            request.url.path,
            str(exc),
            exc_info=True,
        )
        return error_response(
            500,
            "Internal Server Error",
            error=str(exc) if include_detail else None,
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════

def create_app(
    settings: Optional[Settings] = None,
    probe: Optional[LivenessProbe] = None,
    clock: Optional[Callable[[], float]] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI application.

    Args:
        settings: Settings instance (defaults to the environment-loaded singleton)
        probe: Liveness probe (defaults to the SQLAlchemy engine probe)
        clock: Monotonic clock override for the guard state (tests)
    """
    cfg = settings or default_settings
    guards = GuardState.from_settings(
        cfg, probe or SQLAlchemyLivenessProbe(), clock=clock or time.monotonic
    )

    app = FastAPI(
        title="Badminton Store API",
        description="Storefront backend guarded by rate limiting, request tracking, "
        "request deadlines and database liveness checks.",
        version=__version__,
        default_response_class=SafeJSONResponse,
        lifespan=lifespan,
    )
    app.state.settings = cfg
    app.state.guards = guards

    # ── Register Middleware ───────────────────────────────────────────────
    # Starlette executes middleware in REVERSE order of addition; the
    # execution order is documented in storeguard.middleware.
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(
        DatabaseHealthMiddleware,
        liveness=guards.liveness,
        path_prefix=cfg.liveness_path_prefix,
        expose_errors=not cfg.is_production,
    )
    app.add_middleware(RequestTimeoutMiddleware, timeout_ms=guards.request_timeout_ms)
    app.add_middleware(RequestTrackerMiddleware, gauge=guards.gauge, tag_header=cfg.tab_id_header)
    app.add_middleware(
        RateLimitMiddleware,
        registry=guards.registry,
        client_key=forwarded_address if cfg.trust_forwarded_for else peer_address,
    )
    app.add_middleware(RequestLoggingMiddleware, tag_header=cfg.tab_id_header)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cfg.cors_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST", "PUT", "DELETE", "PATCH", "OPTIONS"],
        allow_headers=["*"],
        expose_headers=["Retry-After", "x-session-id"],
        max_age=86400,
    )

    register_exception_handlers(app, cfg)

    app.include_router(health.router)
    app.include_router(stats.router)

    return app


app = create_app()
