"""
SnipSafe Backend — Request ID Middleware
==========================================

What:  Gives every request a short correlation id and echoes it back in X-Request-ID.
How:   Reuses the caller's X-Request-ID when present, otherwise generates one; the id
       is stored in a ContextVar (for loggers and error handlers) and request.state
       (for route handlers).
When:  Outermost application middleware, so everything after it can see the id.
"""

import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

# Coroutine-local: concurrent requests on one event loop each see their own id
request_id_var: ContextVar[str] = ContextVar("request_id", default="")


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Behavior:
        1. Take X-Request-ID from the request if the frontend sent one
        2. Otherwise generate an 8-character id
        3. Expose it through request_id_var and request.state.request_id
        4. Return it in the X-Request-ID response header
    """

    HEADER = "X-Request-ID"

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        rid = request.headers.get(self.HEADER) or uuid.uuid4().hex[:8]
        request_id_var.set(rid)
        request.state.request_id = rid

        response = await call_next(request)
        response.headers[self.HEADER] = rid
        return response
