"""
SnipSafe Backend — Application Package Initializer
==================================================

What: Marks the `app` directory as a Python package.
Who:  Imported by uvicorn (`app.main:app`), Alembic and pytest.

Architecture Note:
    The backend is layered the same way top to bottom:

    ┌─────────────────────────────────────┐
    │           Routes (API Layer)        │  ← HTTP concerns only
    ├─────────────────────────────────────┤
    │   Services (Lifecycle + Access)     │  ← snippet lifecycle, access control,
    │                                     │    sharing ledger, presence tracker, auth
    ├─────────────────────────────────────┤
    │       Models & Schemas (Data)       │  ← SQLAlchemy ORM + Pydantic
    ├─────────────────────────────────────┤
    │        Database (Persistence)       │  ← Async SQLAlchemy sessions
    └─────────────────────────────────────┘

    Routes never make access decisions themselves; every snippet operation goes
    through `SnippetService`, which asks `access_control.decide()` first.
"""

__version__ = "1.0.0"
