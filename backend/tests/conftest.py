"""
StoreGuard Backend: Test Configuration (conftest.py)
======================================================

What:  Shared pytest fixtures for the entire test suite.
Why:   Guard logic depends on time and on a database; both are faked here so
       tests are deterministic and need no running PostgreSQL.

Fixture Hierarchy (all function-scoped):
    ├── fake_clock:    Manually advanced monotonic clock
    ├── fake_probe:    Scriptable LivenessProbe that records every call
    ├── make_settings: Settings factory with test-friendly defaults
    ├── make_client:   Builds an app + HTTPX AsyncClient around it
    └── asgi:          Helpers for driving raw ASGI middleware
"""

import asyncio
import os
from typing import Any, Dict, List, Optional

# Override settings for testing BEFORE any storeguard imports
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from storeguard.config import Settings
from storeguard.main import create_app
from storeguard.services.probe_base import LivenessProbe


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


class FakeProbe(LivenessProbe):
    """
    Liveness probe whose ping outcomes are scripted.

    outcomes: consumed one per probe; True = healthy, an Exception instance
              = raise it from ping, "hang" = never return from ping.
              Once exhausted, every probe is healthy.
    """

    def __init__(self, outcomes: Optional[List[Any]] = None, fail_acquire: bool = False):
        self.outcomes = list(outcomes or [])
        self.fail_acquire = fail_acquire
        self.acquired = 0
        self.pinged = 0
        self.released: List[str] = []

    async def acquire(self) -> str:
        if self.fail_acquire:
            raise ConnectionRefusedError("connection refused")
        self.acquired += 1
        return f"conn-{self.acquired}"

    async def ping(self, resource: str) -> None:
        self.pinged += 1
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if outcome == "hang":
            await asyncio.Event().wait()
        if isinstance(outcome, Exception):
            raise outcome

    async def release(self, resource: str) -> None:
        self.released.append(resource)


@pytest.fixture
def fake_clock():
    return FakeClock()


@pytest.fixture
def fake_probe():
    return FakeProbe()


@pytest.fixture
def make_settings():
    """Settings factory: keyword overrides on top of test-friendly defaults."""

    def _make(**overrides) -> Settings:
        values: Dict[str, Any] = {
            "environment": "test",
            "log_level": "WARNING",
            "startup_connect_attempts": 1,
            "startup_retry_min_wait": 0,
            "startup_retry_max_wait": 0,
        }
        values.update(overrides)
        return Settings(**values)

    return _make


@pytest_asyncio.fixture
async def make_client():
    """
    Build an app with the given settings/probe/clock and an AsyncClient for it.

    Usage:
        app, client = await make_client(settings, probe=fake_probe)
        response = await client.get("/health")
    """
    clients: List[AsyncClient] = []

    async def _make(settings: Settings, probe=None, clock=None, raise_app_exceptions=True, app=None):
        app = app or create_app(settings=settings, probe=probe or FakeProbe(), clock=clock)
        transport = ASGITransport(app=app, raise_app_exceptions=raise_app_exceptions)
        client = AsyncClient(transport=transport, base_url="http://test")
        clients.append(client)
        return app, client

    yield _make

    for client in clients:
        await client.aclose()


# ══════════════════════════════════════════════════════════════════════════
# Raw ASGI helpers
# ══════════════════════════════════════════════════════════════════════════

class ASGIRecorder:
    """
    Provides `receive`/`send` callables for calling ASGI middleware directly.

    receive() first yields the (empty) request body, then blocks until
    disconnect() is called and yields http.disconnect.
    """

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self._body_sent = False
        self._disconnected = asyncio.Event()

    async def receive(self) -> Dict[str, Any]:
        if not self._body_sent:
            self._body_sent = True
            return {"type": "http.request", "body": b"", "more_body": False}
        await self._disconnected.wait()
        return {"type": "http.disconnect"}

    async def send(self, message: Dict[str, Any]) -> None:
        self.sent.append(message)

    def disconnect(self) -> None:
        self._disconnected.set()

    @property
    def status(self) -> Optional[int]:
        starts = [m for m in self.sent if m["type"] == "http.response.start"]
        return starts[0]["status"] if starts else None

    @property
    def start_messages(self) -> List[Dict[str, Any]]:
        return [m for m in self.sent if m["type"] == "http.response.start"]


def http_scope(path: str = "/", headers: Optional[List[tuple]] = None) -> Dict[str, Any]:
    return {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "scheme": "http",
        "path": path,
        "raw_path": path.encode(),
        "root_path": "",
        "query_string": b"",
        "headers": headers or [],
        "client": ("127.0.0.1", 50000),
        "server": ("test", 80),
    }


@pytest.fixture
def asgi():
    class _Helpers:
        Recorder = ASGIRecorder
        scope = staticmethod(http_scope)

    return _Helpers
