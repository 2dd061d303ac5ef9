"""
SnipSafe Backend — Test Configuration (conftest.py)
=====================================================

What:  Shared pytest fixtures for the entire test suite.
How:   Every test gets a fresh in-memory SQLite database (aiosqlite + StaticPool so
       all sessions share one connection). Endpoint tests run the real FastAPI app
       through httpx's ASGITransport with get_db_session overridden to use it.

Fixture Hierarchy:
    engine ─┬─ session_factory ─┬─ db_session        (service-level tests)
            │                   └─ app ── client     (endpoint tests)
            └─ make_user / auth_headers / make_snippet helpers
    fake_identity_provider: replaces Azure AD in AuthService
"""

import os

# Settings are read at import time, so the environment comes first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["JWT_SECRET"] = "test-secret-not-for-production"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["RETRY_MIN_WAIT"] = "0"
os.environ["RETRY_MAX_WAIT"] = "0"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["AUTH_MODE"] = "local"
os.environ["ALLOW_REGISTRATION"] = "true"
os.environ["DEFAULT_ORGANIZATION"] = "Acme"

from typing import Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.database import Base, get_db_session  # noqa: E402
from app.exceptions import AuthenticationError  # noqa: E402
from app.models.app_config import AppConfig  # noqa: E402, F401
from app.models.snippet import Snippet, SnippetTag  # noqa: E402
from app.models.user import ROLE_USER, User  # noqa: E402
from app.services.access_control import Identity  # noqa: E402
from app.services.identity_base import DirectoryProfile, IdentityProvider  # noqa: E402
from app.utils.security import create_access_token, get_password_hash  # noqa: E402

PASSWORD = "secret123"
# bcrypt is slow on purpose; hash once for every fixture user
PASSWORD_HASH = get_password_hash(PASSWORD)


# ══════════════════════════════════════════════════════════════════════════
# Database
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    """A session for calling services directly."""
    async with session_factory() as session:
        yield session


# ══════════════════════════════════════════════════════════════════════════
# Application
# ══════════════════════════════════════════════════════════════════════════


@pytest_asyncio.fixture
async def app(session_factory):
    from app.main import app as fastapi_app

    async def override_get_db_session():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    fastapi_app.dependency_overrides[get_db_session] = override_get_db_session
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app):
    """
    HTTPX AsyncClient wired straight into the ASGI app.

    Usage:
        async def test_health(client):
            response = await client.get("/health")
            assert response.status_code == 200
    """
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


# ══════════════════════════════════════════════════════════════════════════
# Users, Tokens and Snippets
# ══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def make_user(session_factory):
    """
    Factory: await make_user("alice", organization="Acme") → committed User.
    The e-mail defaults to <username>@<organization>.io, the password to PASSWORD.
    """

    async def _make_user(
        username: str,
        organization: str = "Acme",
        email: Optional[str] = None,
        role: str = ROLE_USER,
        is_active: bool = True,
    ) -> User:
        async with session_factory() as session:
            user = User(
                username=username,
                email=email or f"{username}@{organization.lower()}.io",
                password_hash=PASSWORD_HASH,
                organization=organization,
                role=role,
                is_active=is_active,
            )
            session.add(user)
            await session.commit()
            return user

    return _make_user


@pytest.fixture
def make_snippet(session_factory):
    """Factory: await make_snippet(owner, visibility="private", ...) → committed Snippet."""

    async def _make_snippet(
        owner: User,
        title: str = "Snippet",
        content: str = "print('hello')",
        language: str = "python",
        visibility: str = "private",
        tags=(),
        is_active: bool = True,
    ) -> Snippet:
        async with session_factory() as session:
            snippet = Snippet(
                title=title,
                content=content,
                language=language,
                owner_id=owner.id,
                organization=owner.organization,
                visibility=visibility,
                is_active=is_active,
                tags=[SnippetTag(tag=t) for t in tags],
                grants=[],
            )
            session.add(snippet)
            await session.commit()
            return snippet

    return _make_snippet


def identity_of(user: User) -> Identity:
    return Identity.from_user(user)


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


# ══════════════════════════════════════════════════════════════════════════
# Identity Provider
# ══════════════════════════════════════════════════════════════════════════


class FakeIdentityProvider(IdentityProvider):
    """Accepts one password; returns a fixed directory profile."""

    def __init__(self, profile: DirectoryProfile, password: str = "azure-pass"):
        self.profile = profile
        self.password = password
        self.error: Optional[Exception] = None
        self.calls = []

    async def authenticate(self, client_id, client_secret, tenant_id, username, password):
        self.calls.append((client_id, tenant_id, username))
        if self.error is not None:
            raise self.error
        if password != self.password:
            raise AuthenticationError(message="Invalid Azure AD credentials")
        return self.profile

    def status(self) -> str:
        return "available"


@pytest.fixture
def fake_identity_provider(monkeypatch):
    from app.services.auth_service import auth_service

    provider = FakeIdentityProvider(
        DirectoryProfile(
            external_id="aad-object-1",
            email="dana.scully@globex.io",
            display_name="Dana Scully",
        )
    )
    monkeypatch.setattr(auth_service, "identity_provider", provider)
    return provider
