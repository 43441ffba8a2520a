"""
StoreGuard Backend: Response Helpers
======================================

What:  The single place that turns guard and error outcomes into JSON bodies.
Why:   Every rejection produced by this service shares one envelope:

           {"success": false, "message": "...", ...extra fields}

       Keeping the envelope here means the rate limiter, the timeout guard,
       the liveness guard and the global exception handlers cannot drift apart.
How:   `error_response()` builds the envelope; `SafeJSONResponse` is used for
       every JSON body so a payload that cannot be serialized degrades to a
       generic 500 instead of blowing up mid-response.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from starlette.responses import JSONResponse

logger = logging.getLogger(__name__)

INTERNAL_ERROR_BODY = {"success": False, "message": "Internal server error"}


class SafeJSONResponse(JSONResponse):
    """
    JSONResponse that never raises while rendering.

    Starlette renders with `json.dumps(..., allow_nan=False)`, which raises
    TypeError for unknown objects and ValueError for NaN/Infinity. Both are
    caught here, logged, and replaced by the generic 500 envelope.

    Response.__init__ assigns status_code before calling render(), so the
    status can still be downgraded from inside render().
    """

    def render(self, content: Any) -> bytes:
        try:
            return super().render(content)
        except (TypeError, ValueError) as exc:
            logger.error("Error serializing response body: %s", exc)
            self.status_code = 500
            return super().render(INTERNAL_ERROR_BODY)


def error_response(
    status_code: int,
    message: str,
    headers: Optional[Mapping[str, str]] = None,
    **fields: Any,
) -> SafeJSONResponse:
    """
    Build a `{success: false, message, ...}` response.

    Extra keyword fields are copied into the body; fields whose value is
    None are left out, so optional details (such as the `error` field that
    is only exposed outside production) can be passed unconditionally.
    """
    content: Dict[str, Any] = {"success": False, "message": message}
    content.update({key: value for key, value in fields.items() if value is not None})
    return SafeJSONResponse(status_code=status_code, content=content, headers=headers)


def success_response(
    data: Any = None,
    message: Optional[str] = None,
    status_code: int = 200,
) -> SafeJSONResponse:
    content: Dict[str, Any] = {"success": True}
    if message is not None:
        content["message"] = message
    if data is not None:
        content["data"] = data
    return SafeJSONResponse(status_code=status_code, content=content)
