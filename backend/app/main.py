"""
SnipSafe Backend — FastAPI Application Factory
================================================

What:  Creates and configures the FastAPI application instance.
How:   create_app() wires middleware, exception handlers and routers; the module-level
       `app` is what uvicorn serves (uvicorn app.main:app).

Application Architecture:
    ┌──────────────────────────────────────────────────────────┐
    │                      FastAPI App                         │
    │                                                          │
    │  Middleware Chain:                                       │
    │  ┌────────────┐ ┌──────────┐ ┌────────────┐ ┌─────────┐  │
    │  │ Rate Limit │→│ Req ID   │→│ Access Log │→│GZip/CORS│  │
    │  └────────────┘ └──────────┘ └────────────┘ └─────────┘  │
    │                                                          │
    │  Routers:                                                │
    │  /api/snippets   /api/auth   /api/admin   /health        │
    │                                                          │
    │  Exception Handlers:                                     │
    │  SnipSafeError → status by kind   validation → 400       │
    │  anything else → 500                                     │
    └──────────────────────────────────────────────────────────┘

Lifecycle:
    Startup:  logging, configuration check (logged, not fatal)
    Shutdown: dispose the database engine
"""

import logging
import sys
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Dict, Type

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse

from app import __version__
from app.config import settings
from app.database import dispose_engine
from app.exceptions import (
    AuthenticationError,
    CircuitBreakerOpenError,
    ConflictError,
    DatabaseError,
    ForbiddenError,
    IdentityProviderError,
    NotFoundError,
    RateLimitExceededError,
    SnipSafeError,
    StoreUnavailableError,
    ValidationError,
)
from app.middleware.logging import RequestLoggingMiddleware
from app.middleware.rate_limit import RateLimitMiddleware
from app.middleware.request_id import RequestIDMiddleware, request_id_var
from app.routes import admin, auth, health, snippets

logger = logging.getLogger(__name__)


# ══════════════════════════════════════════════════════════════════════════
# Logging Configuration
# ══════════════════════════════════════════════════════════════════════════


def setup_logging() -> None:
    """
    Configure the root logger once, before anything else logs.

    Format: %(asctime)s [%(levelname)s] %(name)s: %(message)s, to stdout
    (Docker collects stdout). Chatty third-party loggers are lowered to WARNING.
    """
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )

    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("passlib").setLevel(logging.ERROR)


# ══════════════════════════════════════════════════════════════════════════
# Application Lifespan
# ══════════════════════════════════════════════════════════════════════════


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    logger.info("=" * 60)
    logger.info("SnipSafe Backend %s starting up...", __version__)

    try:
        settings.validate_required_for_production()
    except ValueError as e:
        # Keep serving: health checks and local sign-in still work
        logger.error("Configuration error: %s", str(e))

    logger.info(
        "Auth mode seed: %s, registration %s, default organization %r",
        settings.auth_mode,
        "open" if settings.allow_registration else "closed",
        settings.default_organization,
    )
    logger.info("Server ready at http://%s:%d", settings.backend_host, settings.backend_port)
    logger.info("API docs: http://%s:%d/docs", settings.backend_host, settings.backend_port)
    logger.info("=" * 60)

    yield

    logger.info("SnipSafe Backend shutting down...")
    await dispose_engine()
    logger.info("Shutdown complete.")


# ══════════════════════════════════════════════════════════════════════════
# Exception Handlers
# ══════════════════════════════════════════════════════════════════════════

STATUS_BY_ERROR: Dict[Type[SnipSafeError], int] = {
    ValidationError: 400,
    AuthenticationError: 401,
    ForbiddenError: 403,
    NotFoundError: 404,
    ConflictError: 409,
    RateLimitExceededError: 429,
    DatabaseError: 500,
    StoreUnavailableError: 503,
    IdentityProviderError: 503,
    CircuitBreakerOpenError: 503,
}


def status_for(exc: SnipSafeError) -> int:
    for cls in type(exc).__mro__:
        if cls in STATUS_BY_ERROR:
            return STATUS_BY_ERROR[cls]
    return 500


def _error_body(kind: str, message: str, details=None) -> dict:
    return {
        "error": kind,
        "message": message,
        "details": details or None,
        "request_id": request_id_var.get("") or None,
    }


def register_exception_handlers(app: FastAPI) -> None:
    """
    Map exceptions to the standard error body:
        {"error": kind, "message": str, "details": {...}, "request_id": str}

    Server-side failures (500) never expose their context; it is logged instead.
    """

    @app.exception_handler(SnipSafeError)
    async def handle_snipsafe_error(request: Request, exc: SnipSafeError):
        status_code = status_for(exc)
        rid = request_id_var.get("")
        headers = {}

        if status_code >= 500:
            logger.error(
                "[%s] %s on %s %s: %s | Context: %s",
                rid,
                type(exc).__name__,
                request.method,
                request.url.path,
                exc.message,
                exc.context,
            )
        else:
            logger.debug("[%s] %s: %s", rid, type(exc).__name__, exc.message)

        if isinstance(exc, (RateLimitExceededError, IdentityProviderError)) and exc.retry_after:
            headers["Retry-After"] = str(exc.retry_after)
        elif isinstance(exc, CircuitBreakerOpenError):
            headers["Retry-After"] = str(exc.recovery_time)

        if status_code == 500:
            body = _error_body(exc.kind, "An internal error occurred. Please try again later.")
        else:
            body = _error_body(exc.kind, exc.message, exc.context)

        return JSONResponse(status_code=status_code, content=body, headers=headers)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(request: Request, exc: RequestValidationError):
        """Malformed body, query or path parameter (including bad UUIDs)."""
        errors = [
            {"field": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        first = errors[0] if errors else {"field": "", "message": "Invalid request"}
        message = f"{first['field']}: {first['message']}" if first["field"] else first["message"]
        return JSONResponse(
            status_code=400,
            content=_error_body(
                ValidationError.kind, message, jsonable_encoder({"errors": errors})
            ),
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception):
        """Catch-all. The stack trace goes to the log, never to the client."""
        rid = request_id_var.get("")
        logger.error("[%s] Unexpected error: %s", rid, str(exc), exc_info=True)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                "internal_server_error",
                "An unexpected error occurred. Please try again or contact support.",
            ),
        )


# ══════════════════════════════════════════════════════════════════════════
# Application Factory
# ══════════════════════════════════════════════════════════════════════════


def create_app() -> FastAPI:
    app = FastAPI(
        title="SnipSafe API",
        description=(
            "Private code-snippet sharing for organizations: owner, organization and "
            "public visibility, per-user share grants and live viewer presence."
        ),
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # Middleware runs in reverse order of addition:
    # RateLimit → RequestID → Logging → GZip → CORS → route
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["X-Request-ID", "X-Total-Count", "Retry-After"],
    )
    app.add_middleware(GZipMiddleware, minimum_size=500)
    app.add_middleware(RequestLoggingMiddleware)
    app.add_middleware(RequestIDMiddleware)
    app.add_middleware(RateLimitMiddleware)

    register_exception_handlers(app)

    app.include_router(snippets.router)
    app.include_router(auth.router)
    app.include_router(admin.router)
    app.include_router(health.router)

    return app


app = create_app()
