"""
SnipSafe Backend — Shared Response Schemas
============================================

What:  Response models used by more than one route module: the standard error
       body, the health report and a plain confirmation message.
"""

from typing import Optional

from pydantic import BaseModel, Field


class MessageResponse(BaseModel):
    """Confirmation for operations that have nothing else to return."""
    message: str = Field(description="Human-readable confirmation")


class ErrorResponse(BaseModel):
    """
    What:  Standardized error response format for all API errors.

    Fields:
        error: Machine-readable error kind (e.g., "invalid_input", "not_found")
        message: Human-readable description for display to users
        details: Optional extra context (e.g., which field failed validation)
        request_id: Correlation ID for tracing this error in server logs

    Example:
        {
            "error": "not_found",
            "message": "Snippet not found",
            "details": {"resource": "snippet"},
            "request_id": "550e8400-e29b-41d4-a716-446655440000"
        }
    """
    error: str = Field(description="Machine-readable error kind")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """
    What:  Health check response showing service and dependency status.
    Who:   Returned by GET /health for monitoring and load balancer health checks.
    """
    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    identity_provider: str = Field(
        description="Azure AD client circuit state: available, circuit_open, not_configured"
    )
    uptime_seconds: float = Field(description="Seconds since service started")
