"""
SnipSafe Backend — Azure AD Identity Provider
===============================================

What:  Verifies work-account credentials against the Microsoft identity platform and
       reads the account's profile from Microsoft Graph.
How:   Resource Owner Password Credentials (ROPC) token request, then GET /me with
       the returned access token. Both calls go through httpx with retries and a
       circuit breaker.
Who:   Instantiated once at import; called by AuthService.azure_login().
When:  POST /api/auth/azure/login, only while auth_mode = azure_ad.

Resilience Strategy:
    1. Tenacity retry with exponential backoff + jitter on transport errors and 5xx
    2. Circuit breaker so a provider outage fails sign-ins fast instead of tying up
       requests for the full retry window
    3. Per-request timeout (IDENTITY_PROVIDER_TIMEOUT)

    A 4xx from the token endpoint means the credentials were rejected. That is the
    user's problem, not the provider's: it is neither retried nor counted as a
    circuit-breaker failure.
"""

import logging
import time
import uuid
from typing import Optional

import httpx
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from app.config import settings
from app.exceptions import (
    AuthenticationError,
    CircuitBreakerOpenError,
    IdentityProviderError,
)
from app.services.identity_base import DirectoryProfile, IdentityProvider

logger = logging.getLogger(__name__)


class _TransientProviderError(Exception):
    """A provider response worth retrying (5xx, 429)."""


# ══════════════════════════════════════════════════════════════════════════
# Circuit Breaker Implementation
# ══════════════════════════════════════════════════════════════════════════

class CircuitBreaker:
    """
    Implements the circuit breaker pattern to prevent cascade failures.

    State Machine:
        CLOSED (normal operation)
            → On failure: increment failure_count
            → When failure_count >= threshold: transition to OPEN

        OPEN (rejecting all requests)
            → All calls raise CircuitBreakerOpenError immediately
            → After recovery_timeout seconds: transition to HALF_OPEN

        HALF_OPEN (testing recovery)
            → Allow ONE request through
            → On success: transition to CLOSED (reset failure_count)
            → On failure: transition back to OPEN (reset timer)

    Thread Safety:
        Plain counters, not thread-safe. uvicorn async workers share one event
        loop per process, so each worker process keeps its own breaker.
    """

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"

    def __init__(self, failure_threshold: int = 5, recovery_timeout: int = 60):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time: Optional[float] = None

    def can_execute(self) -> bool:
        """
        Returns True if the request may proceed.

        Raises:
            CircuitBreakerOpenError if the circuit is OPEN and the recovery
            timeout has not elapsed.
        """
        if self.state == self.CLOSED:
            return True

        if self.state == self.OPEN:
            elapsed = time.time() - (self.last_failure_time or 0)
            if elapsed >= self.recovery_timeout:
                logger.info(
                    "Circuit breaker transitioning to HALF_OPEN after %.1fs",
                    elapsed,
                )
                self.state = self.HALF_OPEN
                return True
            remaining = int(self.recovery_timeout - elapsed)
            raise CircuitBreakerOpenError(recovery_time=remaining)

        # HALF_OPEN: allow the test request through
        return True

    def record_success(self) -> None:
        if self.state == self.HALF_OPEN:
            logger.info("Circuit breaker transitioning to CLOSED (provider recovered)")
        self.failure_count = 0
        self.state = self.CLOSED
        self.last_failure_time = None

    def record_failure(self) -> None:
        self.failure_count += 1
        self.last_failure_time = time.time()

        if self.state == self.HALF_OPEN:
            logger.warning("Circuit breaker returning to OPEN (test request failed)")
            self.state = self.OPEN
        elif self.failure_count >= self.failure_threshold:
            logger.warning(
                "Circuit breaker OPENING after %d consecutive failures",
                self.failure_count,
            )
            self.state = self.OPEN


# ══════════════════════════════════════════════════════════════════════════
# Azure AD Service
# ══════════════════════════════════════════════════════════════════════════

class AzureADService(IdentityProvider):
    """
    Microsoft identity platform client.

    Error Handling Chain:
        HTTP call fails (transport error / 5xx) → tenacity retries
        → All retries fail → record circuit breaker failure → IdentityProviderError
        → Threshold reached → later calls rejected instantly (CircuitBreakerOpenError)
        → Recovery timeout → one test call (HALF_OPEN) → success closes the circuit

    Args:
        transport: Optional httpx transport; tests pass httpx.MockTransport
    """

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.transport = transport
        self.circuit_breaker = CircuitBreaker(
            failure_threshold=settings.cb_failure_threshold,
            recovery_timeout=settings.cb_recovery_timeout,
        )
        logger.info(
            "AzureADService initialized with authority=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            settings.azure_ad_authority,
            settings.cb_failure_threshold,
            settings.cb_recovery_timeout,
        )

    async def authenticate(
        self,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        username: str,
        password: str,
    ) -> DirectoryProfile:
        request_id = str(uuid.uuid4())[:8]

        self.circuit_breaker.can_execute()  # Raises CircuitBreakerOpenError if open

        # Log the account name only, never the password
        logger.info("[%s] Azure AD sign-in for %s", request_id, username)

        try:
            async with httpx.AsyncClient(
                transport=self.transport,
                timeout=settings.identity_provider_timeout,
            ) as client:
                access_token = await self._request_token(
                    client, request_id, client_id, client_secret, tenant_id, username, password
                )
                profile = await self._fetch_profile(client, request_id, access_token)

            self.circuit_breaker.record_success()
            return profile

        except AuthenticationError:
            # The provider answered; it just said no
            self.circuit_breaker.record_success()
            raise
        except (httpx.HTTPError, _TransientProviderError) as e:
            self.circuit_breaker.record_failure()
            logger.error(
                "[%s] Azure AD unavailable after %d attempts: %s",
                request_id,
                settings.retry_max_attempts,
                str(e),
            )
            raise IdentityProviderError(
                message="Azure AD sign-in is temporarily unavailable. Please try again later.",
                retry_after=self.circuit_breaker.recovery_timeout,
                context={"request_id": request_id, "attempts": settings.retry_max_attempts},
            )
        except (KeyError, ValueError) as e:
            # Malformed provider payload
            self.circuit_breaker.record_failure()
            logger.error("[%s] Unexpected Azure AD response: %s", request_id, str(e))
            raise IdentityProviderError(
                message="Azure AD returned an unexpected response.",
                context={"request_id": request_id, "error_type": type(e).__name__},
            )

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, _TransientProviderError)),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _request_token(
        self,
        client: httpx.AsyncClient,
        request_id: str,
        client_id: str,
        client_secret: str,
        tenant_id: str,
        username: str,
        password: str,
    ) -> str:
        """ROPC token request. Returns the access token."""
        start_time = time.time()
        response = await client.post(
            f"{settings.azure_ad_authority}/{tenant_id}/oauth2/v2.0/token",
            data={
                "client_id": client_id,
                "client_secret": client_secret,
                "grant_type": "password",
                "username": username,
                "password": password,
                "scope": settings.azure_ad_scope,
            },
        )
        duration_ms = (time.time() - start_time) * 1000

        if response.status_code >= 500 or response.status_code == 429:
            logger.warning(
                "[%s] Token endpoint returned %d after %.0fms",
                request_id,
                response.status_code,
                duration_ms,
            )
            raise _TransientProviderError(f"token endpoint returned {response.status_code}")

        if response.status_code >= 400:
            logger.info(
                "[%s] Azure AD rejected credentials (%d)", request_id, response.status_code
            )
            raise AuthenticationError(message="Invalid Azure AD credentials")

        logger.debug("[%s] Token acquired in %.0fms", request_id, duration_ms)
        return response.json()["access_token"]

    @retry(
        retry=retry_if_exception_type((httpx.TransportError, _TransientProviderError)),
        stop=stop_after_attempt(settings.retry_max_attempts),
        wait=wait_exponential_jitter(
            initial=settings.retry_min_wait,
            max=settings.retry_max_wait,
            jitter=1,
        ),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    async def _fetch_profile(
        self, client: httpx.AsyncClient, request_id: str, access_token: str
    ) -> DirectoryProfile:
        """GET /me from Microsoft Graph."""
        response = await client.get(
            f"{settings.graph_api_url}/me",
            headers={"Authorization": f"Bearer {access_token}"},
        )
        if response.status_code >= 500 or response.status_code == 429:
            raise _TransientProviderError(f"graph returned {response.status_code}")
        if response.status_code >= 400:
            raise AuthenticationError(message="Azure AD token was not accepted by Microsoft Graph")

        data = response.json()
        email = data.get("mail") or data.get("userPrincipalName")
        if not email:
            raise ValueError("Graph profile has neither mail nor userPrincipalName")

        logger.debug("[%s] Graph profile fetched for %s", request_id, email)
        return DirectoryProfile(
            external_id=data["id"],
            email=email.strip().lower(),
            display_name=data.get("displayName") or data.get("givenName"),
        )

    def status(self) -> str:
        if self.circuit_breaker.state == CircuitBreaker.OPEN:
            return "circuit_open"
        return "available"


# ── Singleton Instance ────────────────────────────────────────────────────
# The breaker state must be shared across requests, so there is one instance.
azure_ad_service = AzureADService()
