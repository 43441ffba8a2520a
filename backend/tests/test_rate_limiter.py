"""
StoreGuard Backend: Rate Limiter Unit Tests
=============================================

What:  Tests for ClientWindowRegistry and RateLimitMiddleware client keys.
How:   A FakeClock drives the window; no HTTP stack except for the key
       functions, which only need a Starlette Request.

What we test:
    ✅ At most max_requests_per_window admitted per window, rest rejected
    ✅ retry_after is the remaining window time and stays positive
    ✅ Window resets once the duration has elapsed
    ✅ Clients are counted independently
    ✅ Concurrent admits from many threads never lose increments
    ✅ Idle counters are swept, active ones kept; sweeper task lifecycle
    ✅ Peer address vs. X-Forwarded-For client keys
"""

import asyncio
from concurrent.futures import ThreadPoolExecutor

import pytest
from starlette.requests import Request

from storeguard.middleware.rate_limit import forwarded_address, peer_address
from storeguard.services.rate_limiter import ClientWindowRegistry


def make_registry(clock, max_requests=3, window_ms=1000, cleanup_ms=5000):
    return ClientWindowRegistry(
        max_requests_per_window=max_requests,
        window_duration_ms=window_ms,
        cleanup_interval_ms=cleanup_ms,
        clock=clock,
    )


class TestAdmission:
    """Fixed-window admit/reject decisions."""

    def test_first_request_creates_counter(self, fake_clock):
        registry = make_registry(fake_clock)
        decision = registry.admit("10.0.0.1")

        assert decision.admitted is True
        assert decision.count == 1
        counter = registry.get("10.0.0.1")
        assert counter.count == 1
        assert counter.window_start == fake_clock.now

    def test_burst_admits_exactly_the_cap(self, fake_clock):
        """N = max + 5 requests in one window: exactly max admitted."""
        registry = make_registry(fake_clock, max_requests=5)

        decisions = [registry.admit("client") for _ in range(10)]

        admitted = [d for d in decisions if d.admitted]
        rejected = [d for d in decisions if not d.admitted]
        assert len(admitted) == 5
        assert len(rejected) == 5
        assert all(d.retry_after > 0 for d in rejected)
        assert registry.rejected_total == 5

    def test_retry_after_is_remaining_window(self, fake_clock):
        registry = make_registry(fake_clock, max_requests=3)
        for step in range(5):
            decision = registry.admit("client")
            if step < 4:
                fake_clock.advance_ms(50)

        # 5th request lands 200ms into the window
        assert decision.admitted is False
        assert decision.retry_after == pytest.approx(0.8)

    def test_rejected_requests_still_count(self, fake_clock):
        registry = make_registry(fake_clock, max_requests=2)
        for _ in range(4):
            registry.admit("client")

        assert registry.get("client").count == 4

    def test_window_resets_after_duration(self, fake_clock):
        registry = make_registry(fake_clock, max_requests=2)
        registry.admit("client")
        registry.admit("client")
        assert registry.admit("client").admitted is False

        fake_clock.advance_ms(1001)
        decision = registry.admit("client")

        assert decision.admitted is True
        assert decision.count == 1
        assert registry.get("client").window_start == fake_clock.now

    def test_resets_once_between_second_and_third(self, fake_clock):
        """Requests at t, t+w/2, t+w+1ms: one reset, just before the third."""
        registry = make_registry(fake_clock, max_requests=10, window_ms=1000)
        first_start = fake_clock.now

        registry.admit("client")
        fake_clock.advance_ms(500)
        second = registry.admit("client")
        fake_clock.advance_ms(501)
        third = registry.admit("client")

        assert second.count == 2
        assert third.count == 1
        assert registry.get("client").window_start == fake_clock.now
        assert registry.get("client").window_start > first_start

    def test_window_boundary_is_inclusive(self, fake_clock):
        """Exactly one window later is still the same window."""
        registry = make_registry(fake_clock, max_requests=1)
        registry.admit("client")

        fake_clock.advance_ms(1000)

        decision = registry.admit("client")
        assert decision.admitted is False
        assert decision.retry_after == 0.0

    def test_clients_are_independent(self, fake_clock):
        registry = make_registry(fake_clock, max_requests=1)

        assert registry.admit("a").admitted is True
        assert registry.admit("a").admitted is False
        assert registry.admit("b").admitted is True
        assert registry.tracked_clients == 2

    def test_concurrent_admits_are_atomic(self, fake_clock):
        """Many threads hammering one client: admitted count equals the cap exactly."""
        registry = make_registry(fake_clock, max_requests=100, window_ms=60_000)

        with ThreadPoolExecutor(max_workers=16) as pool:
            decisions = list(pool.map(lambda _: registry.admit("client"), range(500)))

        assert sum(1 for d in decisions if d.admitted) == 100
        assert registry.get("client").count == 500


class TestCleanup:
    """Sweeping idle counters."""

    def test_sweep_removes_only_idle_counters(self, fake_clock):
        registry = make_registry(fake_clock, cleanup_ms=5000)
        registry.admit("idle")
        fake_clock.advance_ms(3000)
        registry.admit("active")
        fake_clock.advance_ms(2500)

        removed = registry.sweep()

        assert removed == 1
        assert registry.get("idle") is None
        assert registry.get("active") is not None

    def test_rejected_request_refreshes_last_seen(self, fake_clock):
        registry = make_registry(fake_clock, max_requests=1, cleanup_ms=5000)
        registry.admit("client")
        fake_clock.advance_ms(4000)
        registry.admit("client")
        fake_clock.advance_ms(4000)

        assert registry.sweep() == 0

    def test_sweep_after_window_does_not_change_decision(self, fake_clock):
        registry = make_registry(fake_clock, max_requests=1, cleanup_ms=5000)
        registry.admit("client")
        fake_clock.advance_ms(6000)
        registry.sweep()

        assert registry.admit("client").admitted is True

    @pytest.mark.asyncio
    async def test_sweeper_task_lifecycle(self):
        registry = ClientWindowRegistry(
            max_requests_per_window=10, window_duration_ms=10, cleanup_interval_ms=10
        )
        registry.admit("client")

        registry.start()
        assert registry.sweeping is True
        await asyncio.sleep(0.1)
        assert registry.tracked_clients == 0

        await registry.stop()
        assert registry.sweeping is False

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self, fake_clock):
        registry = make_registry(fake_clock)
        await registry.stop()
        assert registry.sweeping is False


def make_request(headers=None, client=("203.0.113.7", 50000)):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/api/products",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "query_string": b"",
        "client": client,
    }
    return Request(scope)


class TestClientKeys:
    """How requests are mapped to a rate-limit identity."""

    def test_peer_address(self):
        assert peer_address(make_request()) == "203.0.113.7"

    def test_peer_address_without_client(self):
        assert peer_address(make_request(client=None)) == "unknown"

    def test_forwarded_address_uses_first_hop(self):
        request = make_request({"X-Forwarded-For": "198.51.100.1, 10.0.0.2"})
        assert forwarded_address(request) == "198.51.100.1"

    def test_forwarded_address_falls_back_to_peer(self):
        assert forwarded_address(make_request()) == "203.0.113.7"
