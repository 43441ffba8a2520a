"""
StoreGuard Backend: Request Tracking Middleware
=================================================

What:  Feeds the ConcurrencyGauge from the ASGI message stream.
Why:   A request can leave the pipeline three different ways, and each
       must be observed:
         finish  - the final response body chunk was sent
         close   - the client disconnected (http.disconnect received)
         error   - the downstream app raised
       The ticket's release() is exactly-once, so all three can fire for
       the same request without double-decrementing.
How:   Pure ASGI middleware (not BaseHTTPMiddleware) so it can watch the
       raw send/receive channels.
"""

from typing import Optional

from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from storeguard.services.request_tracker import ConcurrencyGauge


class RequestTrackerMiddleware:
    def __init__(
        self,
        app: ASGIApp,
        gauge: ConcurrencyGauge,
        tag_header: str = "X-Tab-ID",
    ) -> None:
        self.app = app
        self.gauge = gauge
        self.tag_header = tag_header

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        tag: Optional[str] = Headers(scope=scope).get(self.tag_header) or None
        ticket = self.gauge.enter(tag)

        async def tracked_send(message: Message) -> None:
            await send(message)
            if message["type"] == "http.response.body" and not message.get("more_body", False):
                ticket.release()

        async def tracked_receive() -> Message:
            message = await receive()
            if message["type"] == "http.disconnect":
                ticket.release()
            return message

        try:
            await self.app(scope, tracked_receive, tracked_send)
        finally:
            ticket.release()
