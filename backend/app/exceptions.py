"""
SnipSafe Backend — Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions, one per failure kind the API reports.
How:   Each exception carries a user-safe message and an optional context dict.
       Global exception handlers (registered in main.py) map them to HTTP status
       codes and the standard error body.
Who:   Raised by services and dependencies; caught by the global handlers.

Exception Hierarchy:
    SnipSafeError (base)
    ├── ValidationError          → 400 Bad Request       (invalid_input)
    ├── AuthenticationError      → 401 Unauthorized      (unauthorized)
    ├── ForbiddenError           → 403 Forbidden         (forbidden)
    ├── NotFoundError            → 404 Not Found         (not_found)
    ├── ConflictError            → 409 Conflict          (conflict)
    ├── RateLimitExceededError   → 429 Too Many Requests (rate_limit_exceeded)
    ├── DatabaseError            → 500 Internal Server Error
    ├── StoreUnavailableError    → 503 Service Unavailable
    ├── IdentityProviderError    → 503 Service Unavailable
    └── CircuitBreakerOpenError  → 503 Service Unavailable

Expected branches of the access and sharing model (a denied decision, a target
that is already shared, a username that does not exist) are NOT exceptions: they
are typed results returned by the services. Only the lifecycle manager turns a
denied decision into NotFoundError / ForbiddenError at the boundary.
"""

from typing import Any, Dict, Optional


class SnipSafeError(Exception):
    """
    Base exception for all SnipSafe application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged, returned only where handlers choose)
    """

    kind = "server_error"

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(SnipSafeError):
    """
    Raised when client input fails a business-rule check.

    HTTP:    400 Bad Request

    Example response:
        {
            "error": "invalid_input",
            "message": "Snippet content exceeds the 100000 byte limit",
            "details": {"field": "content"}
        }
    """

    kind = "invalid_input"

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(SnipSafeError):
    """Missing, invalid or expired credentials. HTTP 401."""

    kind = "unauthorized"

    def __init__(
        self,
        message: str = "Invalid token",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class ForbiddenError(SnipSafeError):
    """
    The resource exists and the caller is known, but this operation is denied.

    HTTP:    403 Forbidden

    Only raised where disclosing that the snippet exists is acceptable; see
    SnippetService for where a denial is reported as NotFoundError instead.
    """

    kind = "forbidden"

    def __init__(
        self,
        message: str = "Access denied",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(SnipSafeError):
    """
    Raised when a resource does not exist, is soft-deleted, or the caller must
    not learn that it exists.

    HTTP:    404 Not Found
    """

    kind = "not_found"

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        message: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        if message is None:
            message = f"{resource.capitalize()} not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class ConflictError(SnipSafeError):
    """
    The request collides with existing state (duplicate account, a concurrent
    write that tripped a uniqueness constraint).

    HTTP:    409 Conflict
    """

    kind = "conflict"

    def __init__(
        self,
        message: str = "The request conflicts with the current state",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class DatabaseError(SnipSafeError):
    """
    Raised when a database operation fails unexpectedly.

    HTTP:    500 Internal Server Error

    Security Note:
        The message returned to the client is always generic. Query text,
        constraint names and driver messages are logged server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class StoreUnavailableError(SnipSafeError):
    """
    The database could not be reached (connection refused, dropped, timed out).

    HTTP:    503 Service Unavailable
    """

    kind = "unavailable"

    def __init__(
        self,
        message: str = "The snippet store is temporarily unavailable. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class IdentityProviderError(SnipSafeError):
    """
    Raised when the external identity provider (Azure AD) fails after all retries.

    HTTP:    503 Service Unavailable
    """

    kind = "identity_provider_unavailable"

    def __init__(
        self,
        message: str = "The identity provider is temporarily unavailable",
        retry_after: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if retry_after:
            ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after


class CircuitBreakerOpenError(SnipSafeError):
    """
    Raised when the identity-provider circuit breaker is OPEN.

    HTTP:    503 Service Unavailable

    How the circuit breaker works:
        CLOSED (normal) → failures increment counter
        → After N failures → OPEN (reject all calls for the recovery timeout)
        → After the timeout → HALF-OPEN (allow one test call)
        → If the test succeeds → CLOSED; if it fails → OPEN again
    """

    kind = "service_unavailable"

    def __init__(
        self,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            "Sign-in through the identity provider is temporarily unavailable due to "
            f"repeated failures. Please retry in approximately {recovery_time} seconds."
        )
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(message=message, context=ctx)
        self.recovery_time = recovery_time


class RateLimitExceededError(SnipSafeError):
    """
    Raised when a client exceeds the per-IP request rate limit.

    HTTP:    429 Too Many Requests
    """

    kind = "rate_limit_exceeded"

    def __init__(
        self,
        retry_after: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = (
            f"Rate limit exceeded. Please wait {retry_after} seconds before making more requests."
        )
        ctx = context or {}
        ctx["retry_after"] = retry_after
        super().__init__(message=message, context=ctx)
        self.retry_after = retry_after
