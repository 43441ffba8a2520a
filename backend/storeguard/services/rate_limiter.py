"""
StoreGuard Backend: Fixed-Window Rate Limiter State
=====================================================

What:  Per-client request counters and the admit/reject decision.
Why:   Keeps the decision logic independent of Starlette so it can be driven
       with a fake clock in tests and shared by any transport.
How:   One ClientWindowCounter per client id in a lock-guarded dict.

Algorithm: Fixed Window Counter
    1. First request from a client creates its counter (count=1, window=now)
    2. If more than `window` has elapsed since window_start, the counter
       resets (count=1, window_start=now)
    3. Otherwise the counter is incremented
    4. If the post-increment count exceeds the cap, the request is rejected
       with retry_after = time left in the current window

    Known weakness: a client can squeeze up to 2x the cap through by
    bursting at the end of one window and the start of the next. The fixed
    window is kept on purpose; a sliding window or token bucket would be a
    separate, explicit feature.

Memory:
    Counters are swept by a background task every cleanup_interval; any
    counter idle for longer than cleanup_interval is dropped. Sweeping never
    affects the admission decision itself.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

logger = logging.getLogger(__name__)


@dataclass
class ClientWindowCounter:
    client_id: str
    count: int
    window_start: float
    last_seen: float


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of ClientWindowRegistry.admit()."""

    admitted: bool
    count: int
    retry_after: float = 0.0


class ClientWindowRegistry:
    """
    Process-wide (per application) mapping of client id → window counter.

    Thread Safety:
        Every read-modify-write of a counter happens under `_lock`, so
        concurrent requests from the same client cannot lose increments.
        The lock is a threading.Lock: critical sections never await, and the
        registry stays correct even if called from a threadpool.

    Args:
        max_requests_per_window: Requests admitted per client per window
        window_duration_ms: Fixed window length
        cleanup_interval_ms: Sweep period and idle threshold for counters
        clock: Monotonic time source in seconds (injectable for tests)
    """

    def __init__(
        self,
        max_requests_per_window: int = 200,
        window_duration_ms: int = 1_000,
        cleanup_interval_ms: int = 5_000,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_requests_per_window = max_requests_per_window
        self.window = window_duration_ms / 1000
        self.cleanup_interval = cleanup_interval_ms / 1000
        self._clock = clock
        self._counters: Dict[str, ClientWindowCounter] = {}
        self._lock = threading.Lock()
        self._rejected_total = 0
        self._sweeper: Optional[asyncio.Task] = None

    # ── Admission ─────────────────────────────────────────────────────────

    def admit(self, client_id: str) -> AdmissionDecision:
        """Count one request for `client_id` and decide whether to admit it."""
        now = self._clock()
        with self._lock:
            counter = self._counters.get(client_id)
            if counter is None:
                counter = ClientWindowCounter(client_id, 1, now, now)
                self._counters[client_id] = counter
            elif now - counter.window_start > self.window:
                counter.count = 1
                counter.window_start = now
            else:
                counter.count += 1
            counter.last_seen = now

            count = counter.count
            elapsed = now - counter.window_start
            if count > self.max_requests_per_window:
                self._rejected_total += 1
                return AdmissionDecision(
                    admitted=False,
                    count=count,
                    retry_after=max(0.0, self.window - elapsed),
                )

        return AdmissionDecision(admitted=True, count=count)

    def get(self, client_id: str) -> Optional[ClientWindowCounter]:
        with self._lock:
            return self._counters.get(client_id)

    @property
    def tracked_clients(self) -> int:
        with self._lock:
            return len(self._counters)

    @property
    def rejected_total(self) -> int:
        return self._rejected_total

    # ── Cleanup ───────────────────────────────────────────────────────────

    def sweep(self) -> int:
        """Drop counters idle for longer than cleanup_interval. Returns count removed."""
        now = self._clock()
        with self._lock:
            stale = [
                client_id
                for client_id, counter in self._counters.items()
                if now - counter.last_seen > self.cleanup_interval
            ]
            for client_id in stale:
                del self._counters[client_id]
        if stale:
            logger.debug("Swept %d idle rate-limit counters", len(stale))
        return len(stale)

    def start(self) -> None:
        """Start the periodic sweep task on the running event loop."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="rate-limit-sweeper"
        )

    async def stop(self) -> None:
        """Cancel the sweep task and wait for it to exit."""
        sweeper, self._sweeper = self._sweeper, None
        if sweeper is None:
            return
        sweeper.cancel()
        try:
            await sweeper
        except asyncio.CancelledError:
            pass

    @property
    def sweeping(self) -> bool:
        return self._sweeper is not None and not self._sweeper.done()

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.cleanup_interval)
            self.sweep()
