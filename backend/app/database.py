"""
SnipSafe Backend — Database Session Management
================================================

What:  Async SQLAlchemy engine, session factory, declarative base and FastAPI dependency.
How:   Creates an async engine with connection pooling and provides a session
       dependency that commits on success and rolls back on error.
Who:   Route handlers receive sessions via FastAPI's dependency injection system;
       services receive them as an explicit `db` argument.
When:  Engine is created at module import; sessions are created per request.

Connection Pooling Strategy:
    pool_size=20:      Persistent connections for normal load
    max_overflow=10:   Temporary connections for traffic spikes (total max = 30)
    pool_pre_ping:     Validates connections before use
    pool_recycle=3600: Recycles connections every hour

    SQLite URLs (tests, local experiments) use SQLAlchemy's default pool
    and skip the sizing arguments, which SQLite pools do not accept.
"""

from typing import Any, AsyncGenerator, Dict

from sqlalchemy.exc import (
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.exc import TimeoutError as SATimeoutError
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from app.config import settings
from app.exceptions import DatabaseError, SnipSafeError, StoreUnavailableError


def _engine_options(url: str) -> Dict[str, Any]:
    """Pool arguments for the configured backend."""
    options: Dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if url.startswith("sqlite"):
        return options
    options.update(
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_pre_ping=settings.db_pool_pre_ping,
        pool_recycle=3600,
    )
    return options


# ── Engine Configuration ──────────────────────────────────────────────────
engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# ── Session Factory ───────────────────────────────────────────────────────
# expire_on_commit=False: attributes stay readable after commit, so services can
# build response models from ORM objects without another round trip.
async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── Base Model ────────────────────────────────────────────────────────────
class Base(DeclarativeBase):
    """
    Base class for all SQLAlchemy ORM models.

    Every model registers with this metadata, which Alembic reads for
    autogeneration and the test suite uses for `create_all`.
    """
    pass


# ── Session Dependency ────────────────────────────────────────────────────
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency that provides a database session per request.

    How it works:
        1. Creates a new session from the factory
        2. Yields it to the route handler
        3. On success: commits the transaction
        4. On error: rolls back the transaction and re-raises
        5. Always: closes the session (returns connection to pool)

    Example usage in a route:
        @router.get("/snippets/my")
        async def list_mine(db: AsyncSession = Depends(get_db_session)):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


# ── Error Translation ─────────────────────────────────────────────────────
def store_error(exc: SQLAlchemyError, message: str, **context: Any) -> SnipSafeError:
    """
    Maps a SQLAlchemy failure onto the API's error taxonomy.

    Connection-level failures (refused, dropped, pool exhausted) become
    StoreUnavailableError (503); anything else becomes DatabaseError (500).
    The driver message is logged by the caller, never returned to the client.
    """
    context["error_type"] = type(exc).__name__
    if isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, SATimeoutError)):
        return StoreUnavailableError(context=context)
    return DatabaseError(message=message, context=context)


# ── Lifecycle Helpers ─────────────────────────────────────────────────────
async def dispose_engine() -> None:
    """
    What:  Gracefully closes all connections in the pool.
    When:  Called during application shutdown (lifespan handler).
    """
    await engine.dispose()
