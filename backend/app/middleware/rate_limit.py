"""
SnipSafe Backend — Rate Limiting Middleware
=============================================

What:  Per-client-IP sliding-window limiter (default 100 requests per 15 minutes).
How:   Keeps the timestamps of each IP's recent requests in memory; a request is
       rejected with 429 when the IP already has RATE_LIMIT_REQUESTS timestamps
       inside the last RATE_LIMIT_WINDOW seconds.
When:  Outermost middleware, so rejected requests cost nothing downstream.

Limits:
    State is per process. With several workers each enforces its own window, so
    the effective limit is workers × RATE_LIMIT_REQUESTS.
    Disabled entirely with RATE_LIMIT_ENABLED=false (the test suite does this).
"""

import logging
import time
from collections import defaultdict, deque
from typing import Deque, Dict

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from app.config import settings
from app.exceptions import RateLimitExceededError
from app.middleware.request_id import request_id_var
from app.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class RateLimitMiddleware(BaseHTTPMiddleware):
    """
    Exempt paths: /health and the API documentation.

    Rejections carry a Retry-After header with the seconds until the oldest
    request in the window expires.
    """

    EXEMPT_PATHS = frozenset({"/health", "/docs", "/openapi.json", "/redoc"})
    SWEEP_EVERY = 1000

    def __init__(self, app, **kwargs):
        super().__init__(app, **kwargs)
        self._hits: Dict[str, Deque[float]] = defaultdict(deque)
        self._seen = 0

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        if not settings.rate_limit_enabled or request.url.path in self.EXEMPT_PATHS:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        now = time.time()
        window_start = now - settings.rate_limit_window

        hits = self._hits[client_ip]
        while hits and hits[0] <= window_start:
            hits.popleft()

        if len(hits) >= settings.rate_limit_requests:
            retry_after = int(hits[0] + settings.rate_limit_window - now) + 1
            logger.warning(
                "Rate limit exceeded for %s: %d requests in %ds",
                client_ip,
                len(hits),
                settings.rate_limit_window,
            )
            error = RateLimitExceededError(retry_after=retry_after)
            body = ErrorResponse(
                error=error.kind,
                message=error.message,
                details=error.context,
                request_id=request_id_var.get("") or None,
            )
            return JSONResponse(
                status_code=429,
                content=body.model_dump(),
                headers={"Retry-After": str(retry_after)},
            )

        hits.append(now)

        self._seen += 1
        if self._seen % self.SWEEP_EVERY == 0:
            self._sweep(window_start)

        return await call_next(request)

    def _sweep(self, window_start: float) -> None:
        """Forget IPs with no requests inside the window."""
        idle = [ip for ip, hits in self._hits.items() if not hits or hits[-1] <= window_start]
        for ip in idle:
            del self._hits[ip]
        if idle:
            logger.debug("Dropped rate-limit state for %d idle clients", len(idle))
