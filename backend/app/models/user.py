"""
SnipSafe Backend — User SQLAlchemy Model
==========================================

What:  ORM model for the `users` table, the identity store the access model reads.
How:   Inherits from the shared DeclarativeBase; Alembic migration 001 creates the table.
Who:   Written by AuthService (register, Azure AD sign-in, role changes); read by the
       auth dependency, the sharing ledger (target resolution) and the presence tracker
       (viewer display names).

Table Design Notes:
    - email is stored lower-case; share grants match on it case-insensitively
    - password_hash is NULL for accounts that sign in through Azure AD
    - organization is a plain string; snippets copy it at creation time
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import Boolean, DateTime, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base

ROLE_USER = "user"
ROLE_ADMIN = "admin"
ROLES = (ROLE_USER, ROLE_ADMIN)

PROVIDER_LOCAL = "local"
PROVIDER_AZURE_AD = "azure_ad"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    A person who can sign in, own snippets and receive share grants.

    Lifecycle:
        1. Created by local registration or on first Azure AD sign-in
        2. Role changed by an admin (user ↔ admin)
        3. Deactivated by setting is_active = False (never hard-deleted,
           snippets keep pointing at their owner)
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Identity ──────────────────────────────────────────────────────────
    username: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    password_hash: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Authorization ─────────────────────────────────────────────────────
    organization: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=ROLE_USER)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    # ── Identity Provider ─────────────────────────────────────────────────
    # 'local' or 'azure_ad'; azure_id is the Graph object id of the account
    auth_provider: Mapped[str] = mapped_column(String(20), nullable=False, default=PROVIDER_LOCAL)
    azure_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # ── Timestamps ────────────────────────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def __repr__(self) -> str:
        return f"<User(id={self.id}, username='{self.username}', org='{self.organization}')>"
