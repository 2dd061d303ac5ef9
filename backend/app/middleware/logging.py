"""
SnipSafe Backend — Access Log Middleware
==========================================

What:  One log line per HTTP request on the `snipsafe.access` logger.
How:   Times the downstream call and logs method, path, status, duration, request id
       and client address. The same values go into `extra` for JSON formatters.
When:  Inside RequestIDMiddleware, so the request id is already set.

Log level follows the status class:
    5xx → ERROR    4xx → WARNING    everything else → INFO

Never logged: request or response bodies (snippet content, passwords), query
strings, Authorization headers.
"""

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from app.middleware.request_id import request_id_var

logger = logging.getLogger("snipsafe.access")

# Polled by load balancers; not worth a log line each
QUIET_PATHS = frozenset({"/health"})


def _level_for(status: int) -> int:
    if status >= 500:
        return logging.ERROR
    if status >= 400:
        return logging.WARNING
    return logging.INFO


class RequestLoggingMiddleware(BaseHTTPMiddleware):

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        path = request.url.path
        if path in QUIET_PATHS:
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - started) * 1000

        client_ip = request.client.host if request.client else "unknown"
        rid = request_id_var.get("")
        status = response.status_code

        logger.log(
            _level_for(status),
            "%s %s %d %.1fms [%s] from %s",
            request.method,
            path,
            status,
            duration_ms,
            rid,
            client_ip,
            extra={
                "request_id": rid,
                "method": request.method,
                "path": path,
                "status": status,
                "duration_ms": round(duration_ms, 2),
                "client_ip": client_ip,
            },
        )
        return response
