"""
StoreGuard Backend: Request Timeout Guard
===========================================

What:  Guarantees every request gets an answer within `timeout_ms`.
Why:   A handler stuck on a slow query or an upstream payment gateway would
       otherwise hold the client connection open indefinitely.
How:   Pure ASGI middleware. The downstream app runs as its own task while
       the guard waits for whichever comes first: the handler finishing or
       the PendingRequestTimer expiring.

Outcomes at the deadline:
    - no response started yet → timer.fired = True, a 504 is written, and
      any later write from the handler is dropped silently
    - response already started → nothing is written; the guard waits for
      the handler to finish the response it began
    - client already disconnected → the timer was cancelled on
      http.disconnect, so the guard just waits for the handler

Known limitation:
    The handler is NOT cancelled when the 504 goes out. It keeps running in
    the background until it finishes on its own; its late response is
    discarded and any exception it raises is logged. Real cancellation would
    require threading a cancellation token through every downstream call.
"""

import asyncio
import logging
from typing import Set

from starlette.types import ASGIApp, Message, Receive, Scope, Send

from storeguard.exceptions import DeadlineExceededError

logger = logging.getLogger(__name__)


class PendingRequestTimer:
    """One-shot deadline for a single in-flight request."""

    def __init__(self, timeout: float) -> None:
        loop = asyncio.get_running_loop()
        self.deadline = loop.time() + timeout
        self.fired = False
        self.response_started = False
        self._expired = asyncio.Event()
        self._handle = loop.call_later(timeout, self._expired.set)

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()

    def cancel(self) -> None:
        self._handle.cancel()

    async def wait(self) -> None:
        await self._expired.wait()


class RequestTimeoutMiddleware:
    def __init__(self, app: ASGIApp, timeout_ms: int = 30_000) -> None:
        self.app = app
        self.timeout_ms = timeout_ms
        # Handlers that outlived their deadline; referenced until they finish
        self._detached: Set[asyncio.Task] = set()

    @property
    def detached_handlers(self) -> int:
        return len(self._detached)

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        timer = PendingRequestTimer(self.timeout_ms / 1000)
        write_lock = asyncio.Lock()

        async def guarded_send(message: Message) -> None:
            async with write_lock:
                if timer.fired:
                    return
                if message["type"] == "http.response.start":
                    timer.response_started = True
                await send(message)

        async def watched_receive() -> Message:
            message = await receive()
            if message["type"] == "http.disconnect":
                timer.cancel()
            return message

        loop = asyncio.get_running_loop()
        handler = loop.create_task(self.app(scope, watched_receive, guarded_send))
        expiry = loop.create_task(timer.wait())
        try:
            await asyncio.wait({handler, expiry}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            handler.cancel()
            raise
        finally:
            expiry.cancel()
            timer.cancel()

        if handler.done():
            handler.result()
            return

        async with write_lock:
            if not timer.response_started:
                timer.fired = True

        if not timer.fired:
            await handler
            return

        self._detach(handler)
        logger.error(
            "Request timeout: %s %s exceeded %dms",
            scope.get("method", "?"),
            scope.get("path", "?"),
            self.timeout_ms,
        )
        response = DeadlineExceededError(self.timeout_ms).to_response()
        await response(scope, receive, send)

    def _detach(self, task: asyncio.Task) -> None:
        self._detached.add(task)
        task.add_done_callback(self._reap)

    def _reap(self, task: asyncio.Task) -> None:
        self._detached.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Handler raised after its request had timed out: %s",
                exc,
                exc_info=exc,
            )
