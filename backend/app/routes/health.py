"""
SnipSafe Backend — Health Check Route
=======================================

What:  GET /health for Docker health checks, load balancers and monitoring.
How:   Runs SELECT 1 against the database and reads the Azure AD circuit breaker
       state. The endpoint always answers 200; the status field carries the verdict.

Status levels:
    healthy:   database reachable, identity provider circuit closed
    degraded:  database reachable, identity provider circuit open
               (local sign-in and snippets still work)
    unhealthy: database unreachable
"""

import logging
import time

from fastapi import APIRouter
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from app import __version__
from app.database import engine
from app.schemas.common import HealthResponse
from app.services.azure_ad_service import azure_ad_service

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Health"])

_start_time = time.time()


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Service health check",
    description="Database connectivity, identity provider circuit state, version and uptime.",
)
async def health_check() -> HealthResponse:
    db_status = "connected"
    overall = "healthy"

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        db_status = "disconnected"
        overall = "unhealthy"
        logger.warning("Health check: database unreachable: %s", str(e))

    provider_status = azure_ad_service.status()
    if provider_status != "available" and overall == "healthy":
        overall = "degraded"

    return HealthResponse(
        status=overall,
        version=__version__,
        database=db_status,
        identity_provider=provider_status,
        uptime_seconds=round(time.time() - _start_time, 2),
    )
