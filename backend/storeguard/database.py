"""
StoreGuard Backend: Database Engine, Probe & Pool Monitoring
==============================================================

What:  Async SQLAlchemy engine, the liveness probe built on it, the startup
       connection check and the development-time pool monitor.
Why:   Centralizes all database connection logic in one place.
How:   The engine is created lazily on first use, so importing the app never
       opens connections or needs a reachable database.

Connection Pooling Strategy:
    pool_size=20:     Persistent connections for normal load
    max_overflow=10:  Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:    Validates connections before use (catches stale connections)
    pool_recycle=3600: Recycles connections every hour

Startup check:
    verify_database_connection() retries the liveness probe with tenacity
    (exponential backoff). If the database never answers, the service still
    starts: the liveness guard answers 503 on /api routes until it recovers.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncEngine, create_async_engine
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from storeguard.config import Settings, settings
from storeguard.exceptions import StoreUnreachableError
from storeguard.services.liveness import LivenessCache
from storeguard.services.probe_base import LivenessProbe

logger = logging.getLogger(__name__)

_engine: Optional[AsyncEngine] = None


# ── Engine ────────────────────────────────────────────────────────────────

def create_engine_from_settings(cfg: Settings) -> AsyncEngine:
    return create_async_engine(
        cfg.database_url,
        pool_size=cfg.db_pool_size,
        max_overflow=cfg.db_max_overflow,
        pool_pre_ping=cfg.db_pool_pre_ping,
        pool_recycle=3600,
        echo=cfg.log_level == "DEBUG",
    )


def get_engine() -> AsyncEngine:
    """Return the process engine, creating it from `settings` on first use."""
    global _engine
    if _engine is None:
        _engine = create_engine_from_settings(settings)
    return _engine


async def dispose_engine() -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    global _engine
    engine, _engine = _engine, None
    if engine is not None:
        await engine.dispose()
        logger.info("Database pool closed")


# ── Liveness Probe ────────────────────────────────────────────────────────

class SQLAlchemyLivenessProbe(LivenessProbe):
    """
    Checks out one pooled connection, runs SELECT 1, and closes it.

    Closing an AsyncConnection returns the underlying DBAPI connection to the
    pool rather than tearing it down.
    """

    def __init__(self, engine_factory: Callable[[], AsyncEngine] = get_engine):
        self._engine_factory = engine_factory

    async def acquire(self) -> AsyncConnection:
        return await self._engine_factory().connect()

    async def ping(self, resource: AsyncConnection) -> None:
        await resource.execute(text("SELECT 1"))

    async def release(self, resource: AsyncConnection) -> None:
        await resource.close()


async def verify_database_connection(
    liveness: LivenessCache,
    attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 10.0,
) -> bool:
    """
    Probe the database at startup, retrying with exponential backoff.

    A successful probe also primes the liveness cache, so the first API
    requests after startup skip the probe.

    Returns:
        True if the database answered within `attempts` tries, else False.
    """
    try:
        async for attempt in AsyncRetrying(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=min_wait, max=max_wait),
            retry=retry_if_exception_type(StoreUnreachableError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
        ):
            with attempt:
                await liveness.probe()
    except RetryError as exc:
        last = exc.last_attempt.exception()
        detail = getattr(last, "detail", None) or str(last)
        logger.error(
            "Failed to connect to database after %d attempts: %s", attempts, detail
        )
        return False

    logger.info("Connected to database successfully")
    return True


# ── Pool Monitor ──────────────────────────────────────────────────────────

class PoolMonitor:
    """
    Periodically logs connection pool usage (development aid).

    Stats come from SQLAlchemy's QueuePool: size(), checkedin() (idle),
    checkedout() (in use) and overflow(). Once every persistent connection
    is checked out, further requests spill into overflow connections or
    queue; that is logged as a warning.
    """

    def __init__(
        self,
        pool_factory: Optional[Callable[[], Any]] = None,
        interval_ms: int = 30_000,
    ):
        self._pool_factory = pool_factory or (lambda: get_engine().sync_engine.pool)
        self.interval = interval_ms / 1000
        self._task: Optional[asyncio.Task] = None

    def collect(self) -> Dict[str, int]:
        pool = self._pool_factory()
        stats = {
            "size": pool.size(),
            "idle": pool.checkedin(),
            "in_use": pool.checkedout(),
            "overflow": max(0, pool.overflow()),
        }
        if stats["in_use"] >= stats["size"]:
            logger.warning(
                "Connection pool saturated: %d in use of %d (+%d overflow)",
                stats["in_use"],
                stats["size"],
                stats["overflow"],
            )
        else:
            logger.debug("Connection pool: %s", stats)
        return stats

    def start(self) -> None:
        if self._task is not None and not self._task.done():
            return
        logger.info("Starting connection pool monitoring every %.0fs", self.interval)
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="pool-monitor"
        )

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                self.collect()
            except Exception:
                # Pool introspection must never kill the monitor loop
                logger.exception("Connection pool monitoring failed")
