"""
StoreGuard Backend: Guard State Container
===========================================

What:  Bundles the mutable state shared by the guard middleware.
Why:   The registry, gauge and liveness cache are owned by one application
       instance instead of living as module globals, so every test can build
       a fresh set and nothing leaks between app instances.
How:   create_app() builds a GuardState, passes its members to the
       middleware and stores it on `app.state.guards` for routes and the
       lifespan handler.
"""

import time
from dataclasses import dataclass
from typing import Callable

from storeguard.config import Settings
from storeguard.services.liveness import LivenessCache
from storeguard.services.probe_base import LivenessProbe
from storeguard.services.rate_limiter import ClientWindowRegistry
from storeguard.services.request_tracker import ConcurrencyGauge


@dataclass
class GuardState:
    registry: ClientWindowRegistry
    gauge: ConcurrencyGauge
    liveness: LivenessCache
    request_timeout_ms: int

    @classmethod
    def from_settings(
        cls,
        cfg: Settings,
        probe: LivenessProbe,
        clock: Callable[[], float] = time.monotonic,
    ) -> "GuardState":
        return cls(
            registry=ClientWindowRegistry(
                max_requests_per_window=cfg.max_requests_per_window,
                window_duration_ms=cfg.window_duration_ms,
                cleanup_interval_ms=cfg.cleanup_interval_ms,
                clock=clock,
            ),
            gauge=ConcurrencyGauge(high_water_mark=cfg.high_water_mark),
            liveness=LivenessCache(
                probe,
                ttl_ms=cfg.liveness_ttl_ms,
                probe_timeout_ms=cfg.probe_timeout_ms,
                clock=clock,
            ),
            request_timeout_ms=cfg.request_timeout_ms,
        )
