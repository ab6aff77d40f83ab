"""Request ID middleware.

Every API request gets an ID, taken from the caller's X-Request-ID header when
present (truncated to a sane length) or freshly generated. It lives in a
ContextVar so log records emitted while the orchestrator walks its tiers can
be tied back to the request that triggered them.
"""

import contextvars
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"
_MAX_ID_LENGTH = 64

request_id_var: contextvars.ContextVar[str] = contextvars.ContextVar(
    "request_id", default=""
)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        incoming = request.headers.get(REQUEST_ID_HEADER, "").strip()
        rid = incoming[:_MAX_ID_LENGTH] or uuid.uuid4().hex
        token = request_id_var.set(rid)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = rid
            return response
        finally:
            request_id_var.reset(token)


def get_request_id() -> str:
    """Current request ID, or "" outside a request (CLI, tests)."""
    return request_id_var.get()
