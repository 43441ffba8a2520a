"""
StoreGuard Backend: Concurrency Gauge
=======================================

What:  Live count of in-flight requests, overall and per client tab.
Why:   Observability only: the storefront frontend opens many tabs that
       poll the API, and spotting which tab floods the backend used to
       require guesswork. The gauge never rejects anything.
How:   enter() increments and hands back a RequestTicket; the ticket's
       release() decrements exactly once no matter how many exit paths
       (response finished, client disconnected, handler raised) fire.
"""

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class RequestTicket:
    """Handle for one in-flight request; release() is idempotent."""

    __slots__ = ("_gauge", "tag", "released")

    def __init__(self, gauge: "ConcurrencyGauge", tag: Optional[str]):
        self._gauge = gauge
        self.tag = tag
        self.released = False

    def release(self) -> bool:
        """Decrement the gauge. Returns False if this ticket was already released."""
        return self._gauge._release(self)


class ConcurrencyGauge:
    """
    Counts requests that entered the pipeline but have not exited it yet.

    Invariants:
        - active_count >= 0 and per-tag counts >= 1 (zero entries are removed)
        - each ticket decrements at most once

    High-water mark:
        When active_count rises above `high_water_mark` a warning is logged.
        The warning is edge-triggered: it fires once per excursion and re-arms
        after the count falls back to the mark.
    """

    def __init__(self, high_water_mark: int = 20):
        self.high_water_mark = high_water_mark
        self._lock = threading.Lock()
        self._active = 0
        self._per_tag: Dict[str, int] = {}
        self._above_high_water = False

    def enter(self, tag: Optional[str] = None) -> RequestTicket:
        with self._lock:
            self._active += 1
            if tag:
                self._per_tag[tag] = self._per_tag.get(tag, 0) + 1
            active = self._active
            crossed = active > self.high_water_mark and not self._above_high_water
            if crossed:
                self._above_high_water = True

        if crossed:
            logger.warning("High concurrent requests: %d active", active)
        return RequestTicket(self, tag or None)

    def _release(self, ticket: RequestTicket) -> bool:
        with self._lock:
            if ticket.released:
                return False
            ticket.released = True

            if self._active > 0:
                self._active -= 1
            else:
                logger.error("Concurrency gauge decremented below zero; clamping at 0")

            tag = ticket.tag
            if tag is not None and tag in self._per_tag:
                remaining = self._per_tag[tag] - 1
                if remaining <= 0:
                    del self._per_tag[tag]
                else:
                    self._per_tag[tag] = remaining

            if self._active <= self.high_water_mark:
                self._above_high_water = False
        return True

    @property
    def active_count(self) -> int:
        return self._active

    def snapshot(self) -> Dict[str, object]:
        with self._lock:
            return {
                "active_count": self._active,
                "per_tag_counts": dict(self._per_tag),
            }
