"""
SnipSafe Backend — Azure AD Service Unit Tests (Mocked)
=========================================================

What:  Tests for AzureADService with the Microsoft endpoints replaced by an
       httpx.MockTransport.
Why:   Sign-in must survive a flaky provider without hammering it.
How:   The transport routes by path: the token endpoint and Graph /me. Retry
       waits are zero in the test environment, so retries cost nothing.
When:  Run on every commit, and after changing retry or breaker settings.

What we test:
    ✅ Successful sign-in returns the Graph profile
    ✅ Rejected credentials are a 401, never retried, never a breaker failure
    ✅ 5xx and transport errors are retried, then reported as IdentityProviderError
    ✅ Circuit breaker opens after consecutive failures and recovers through HALF_OPEN
    ❌ Real Microsoft endpoints
"""

import httpx
import pytest

from app.config import settings
from app.exceptions import AuthenticationError, CircuitBreakerOpenError, IdentityProviderError
from app.services.azure_ad_service import AzureADService, CircuitBreaker

CREDENTIALS = dict(
    client_id="client-1",
    client_secret="s3cret",
    tenant_id="tenant-1",
    username="dana@globex.io",
    password="azure-pass",
)

GRAPH_PROFILE = {
    "id": "aad-object-1",
    "displayName": "Dana Scully",
    "mail": "Dana.Scully@Globex.io",
    "userPrincipalName": "dana@globex.io",
}


class FakeMicrosoft:
    """Scripted token endpoint and Graph API. Each attribute is a list of responses."""

    def __init__(self, token_responses=None, graph_responses=None):
        self.token_responses = list(token_responses or [httpx.Response(200, json={"access_token": "at-1"})])
        self.graph_responses = list(graph_responses or [httpx.Response(200, json=GRAPH_PROFILE)])
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path.endswith("/oauth2/v2.0/token"):
            return self._next(self.token_responses)
        if request.url.path.endswith("/me"):
            return self._next(self.graph_responses)
        return httpx.Response(404)

    @staticmethod
    def _next(responses):
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    @property
    def token_calls(self) -> int:
        return sum(1 for r in self.requests if r.url.path.endswith("/token"))


def make_service(fake: FakeMicrosoft, threshold: int = 5, recovery: int = 60) -> AzureADService:
    service = AzureADService(transport=httpx.MockTransport(fake))
    service.circuit_breaker = CircuitBreaker(failure_threshold=threshold, recovery_timeout=recovery)
    return service


class TestCircuitBreaker:
    """Tests for the CircuitBreaker state machine on its own."""

    def test_opens_at_threshold(self):
        """The breaker should open after the configured number of failures."""
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        cb.record_failure()
        cb.record_failure()
        assert cb.state == CircuitBreaker.CLOSED

        cb.record_failure()
        assert cb.state == CircuitBreaker.OPEN
        with pytest.raises(CircuitBreakerOpenError):
            cb.can_execute()

    def test_half_open_success_closes(self):
        """A success while HALF_OPEN should close the breaker."""
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()

        assert cb.can_execute() is True
        assert cb.state == CircuitBreaker.HALF_OPEN

        cb.record_success()
        assert cb.state == CircuitBreaker.CLOSED
        assert cb.failure_count == 0

    def test_half_open_failure_reopens(self):
        """A failure while HALF_OPEN should reopen the breaker."""
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=0)
        for _ in range(3):
            cb.record_failure()
        cb.can_execute()

        cb.record_failure()
        assert cb.state == CircuitBreaker.OPEN


class TestAuthenticate:
    """Tests for AzureADService.authenticate."""

    @pytest.mark.asyncio
    async def test_success_returns_profile(self):
        """A successful sign-in should return the Graph profile."""
        fake = FakeMicrosoft()
        service = make_service(fake)

        profile = await service.authenticate(**CREDENTIALS)

        assert profile.external_id == "aad-object-1"
        assert profile.email == "dana.scully@globex.io"
        assert profile.display_name == "Dana Scully"

        token_request = fake.requests[0]
        assert token_request.url.path == "/tenant-1/oauth2/v2.0/token"
        assert b"grant_type=password" in token_request.content
        assert fake.requests[1].headers["Authorization"] == "Bearer at-1"

    @pytest.mark.asyncio
    async def test_user_principal_name_when_mail_missing(self):
        """A profile without mail should fall back to userPrincipalName."""
        profile_without_mail = {"id": "aad-object-2", "userPrincipalName": "Fox@Globex.io"}
        fake = FakeMicrosoft(graph_responses=[httpx.Response(200, json=profile_without_mail)])

        profile = await make_service(fake).authenticate(**CREDENTIALS)

        assert profile.email == "fox@globex.io"
        assert profile.display_name is None

    @pytest.mark.asyncio
    async def test_rejected_credentials(self):
        """Rejected credentials → AuthenticationError, sent once and never retried."""
        fake = FakeMicrosoft(token_responses=[httpx.Response(400, json={"error": "invalid_grant"})])
        service = make_service(fake, threshold=1)

        with pytest.raises(AuthenticationError):
            await service.authenticate(**CREDENTIALS)

        assert fake.token_calls == 1
        assert service.circuit_breaker.state == CircuitBreaker.CLOSED
        assert service.status() == "available"

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        """Persistent 5xx responses should be retried, then raise IdentityProviderError."""
        fake = FakeMicrosoft(token_responses=[httpx.Response(503)])
        service = make_service(fake)

        with pytest.raises(IdentityProviderError):
            await service.authenticate(**CREDENTIALS)

        assert fake.token_calls == settings.retry_max_attempts
        assert service.circuit_breaker.failure_count == 1

    @pytest.mark.asyncio
    async def test_transient_error_then_success(self):
        """A transport error followed by success should still sign in."""
        fake = FakeMicrosoft(
            token_responses=[
                httpx.ConnectError("connection refused"),
                httpx.Response(200, json={"access_token": "at-2"}),
            ]
        )
        service = make_service(fake)

        profile = await service.authenticate(**CREDENTIALS)

        assert profile.email == "dana.scully@globex.io"
        assert fake.token_calls == 2
        assert service.circuit_breaker.failure_count == 0

    @pytest.mark.asyncio
    async def test_malformed_graph_profile(self):
        """A Graph profile without an e-mail → IdentityProviderError."""
        fake = FakeMicrosoft(graph_responses=[httpx.Response(200, json={"id": "aad-object-3"})])
        service = make_service(fake)

        with pytest.raises(IdentityProviderError):
            await service.authenticate(**CREDENTIALS)

        assert service.circuit_breaker.failure_count == 1


class TestCircuitBreakerIntegration:
    """Tests for the breaker wrapped around authenticate."""

    @pytest.mark.asyncio
    async def test_circuit_opens_and_fails_fast(self):
        """Once open, the circuit should fail fast without calling Microsoft."""
        fake = FakeMicrosoft(token_responses=[httpx.Response(500)])
        service = make_service(fake, threshold=2)

        for _ in range(2):
            with pytest.raises(IdentityProviderError):
                await service.authenticate(**CREDENTIALS)
        calls_before = len(fake.requests)

        with pytest.raises(CircuitBreakerOpenError):
            await service.authenticate(**CREDENTIALS)

        assert len(fake.requests) == calls_before
        assert service.status() == "circuit_open"

    @pytest.mark.asyncio
    async def test_recovers_through_half_open(self):
        """After the timeout, one success should close the circuit again."""
        fake = FakeMicrosoft(
            token_responses=[httpx.Response(500)] * settings.retry_max_attempts
            + [httpx.Response(200, json={"access_token": "at-3"})]
        )
        service = make_service(fake, threshold=1, recovery=0)

        with pytest.raises(IdentityProviderError):
            await service.authenticate(**CREDENTIALS)
        assert service.circuit_breaker.state == CircuitBreaker.OPEN

        profile = await service.authenticate(**CREDENTIALS)

        assert profile.external_id == "aad-object-1"
        assert service.circuit_breaker.state == CircuitBreaker.CLOSED
