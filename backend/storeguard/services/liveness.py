"""
StoreGuard Backend: Database Liveness Cache
=============================================

What:  Decides whether the backing store is reachable, probing it at most
       once per TTL while it stays healthy.
Why:   Pinging the database on every API request doubles the load on the
       pool; never pinging it means requests pile up on a dead database
       until their own queries time out.
How:   A successful probe stamps `last_check_time`; requests arriving within
       `ttl` of that stamp skip the probe. A failed probe stamps nothing, so
       the very next request probes again instead of waiting out the TTL.

Probe discipline:
    acquire → ping → release, raced against `probe_timeout` with
    asyncio.wait_for. The release runs in a `finally`, so it also runs when
    ping raises or when wait_for cancels the probe on timeout.

    No lock is held while the probe awaits: the lock only guards reads and
    writes of the timestamp and counters. Two requests that both see an
    expired TTL may probe concurrently; both outcomes are valid verdicts.
"""

import asyncio
import logging
import threading
import time
from typing import Any, Callable, Dict, Optional

from storeguard.exceptions import StoreUnreachableError
from storeguard.services.probe_base import LivenessProbe

logger = logging.getLogger(__name__)


class LivenessCache:
    """
    Args:
        probe: The LivenessProbe used to reach the store
        ttl_ms: How long a healthy verdict is reused
        probe_timeout_ms: Upper bound for a single probe (acquire + ping)
        clock: Monotonic time source in seconds (injectable for tests)
    """

    def __init__(
        self,
        probe: LivenessProbe,
        ttl_ms: int = 10_000,
        probe_timeout_ms: int = 5_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.probe_impl = probe
        self.ttl = ttl_ms / 1000
        self.probe_timeout = probe_timeout_ms / 1000
        self._clock = clock
        self._lock = threading.Lock()
        self.last_check_time: Optional[float] = None
        self.probe_count = 0
        self.failure_count = 0
        self.last_error: Optional[str] = None

    def is_fresh(self, now: Optional[float] = None) -> bool:
        """True while a healthy verdict younger than the TTL is cached."""
        if now is None:
            now = self._clock()
        with self._lock:
            return self.last_check_time is not None and now - self.last_check_time < self.ttl

    async def ensure_alive(self) -> bool:
        """
        Admit-or-raise check used by the liveness middleware.

        Returns:
            False when the cached verdict was reused, True when a probe ran.
        Raises:
            StoreUnreachableError when a probe ran and failed.
        """
        if self.is_fresh():
            return False
        await self.probe()
        return True

    async def probe(self) -> None:
        """Probe the store unconditionally, updating the cache on success."""
        started = self._clock()
        with self._lock:
            self.probe_count += 1

        try:
            await asyncio.wait_for(self._probe_once(), timeout=self.probe_timeout)
        except asyncio.TimeoutError as exc:
            self._record_failure("Database connection timeout")
            raise StoreUnreachableError(
                "Database connection timeout",
                context={"probe_timeout_ms": int(self.probe_timeout * 1000)},
            ) from exc
        except Exception as exc:
            self._record_failure(str(exc) or type(exc).__name__)
            raise StoreUnreachableError(str(exc) or type(exc).__name__) from exc

        with self._lock:
            if self.last_check_time is None or started > self.last_check_time:
                self.last_check_time = started
            self.last_error = None

    async def _probe_once(self) -> None:
        resource = await self.probe_impl.acquire()
        try:
            await self.probe_impl.ping(resource)
        finally:
            await self.probe_impl.release(resource)

    def _record_failure(self, reason: str) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_error = reason

    def snapshot(self) -> Dict[str, Any]:
        now = self._clock()
        with self._lock:
            age_ms = None
            if self.last_check_time is not None:
                age_ms = round((now - self.last_check_time) * 1000, 1)
            return {
                "last_check_age_ms": age_ms,
                "ttl_ms": int(self.ttl * 1000),
                "probe_count": self.probe_count,
                "failure_count": self.failure_count,
                "last_error": self.last_error,
            }
