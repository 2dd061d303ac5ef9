"""
SnipSafe Backend — Snippet SQLAlchemy Models
==============================================

What:  ORM models for snippets and their child tables: tags, share grants and
       live-presence entries.
How:   The snippet is the parent row; tags, grants and presence entries are
       child rows keyed by snippet_id. Adding or removing a grant or presence
       entry is a row-level INSERT/DELETE inside the request transaction, and the
       (snippet_id, email) unique constraint keeps concurrent grants from
       producing duplicates.
Who:   SnippetService (lifecycle), SharingLedger (grants), PresenceTracker (presence).

Table Layout:
    snippets ──┬── snippet_tags       (snippet_id, tag)                 PK both
               ├── share_grants       UNIQUE(snippet_id, email)
               └── presence_entries   INDEX(snippet_id, viewer_id)

Query Patterns:
    - List mine:      WHERE owner_id = :me AND is_active ORDER BY created_at DESC
    - Org / search:   WHERE organization = :org AND is_active ...
                      → idx_snippets_org_active
    - Share link:     WHERE share_id = :sid → unique index
"""

import uuid
from datetime import datetime, timezone
from typing import List

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.user import User

VISIBILITY_PRIVATE = "private"
VISIBILITY_ORGANIZATION = "organization"
VISIBILITY_PUBLIC = "public"
VISIBILITIES = (VISIBILITY_PRIVATE, VISIBILITY_ORGANIZATION, VISIBILITY_PUBLIC)

PERMISSION_VIEW = "view"
PERMISSION_EDIT = "edit"
PERMISSIONS = (PERMISSION_VIEW, PERMISSION_EDIT)

DEFAULT_LANGUAGE = "plaintext"
MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000
MAX_CONTENT_BYTES = 100_000
MAX_TAG_LENGTH = 50


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_share_id() -> str:
    """Random, unguessable share identifier (UUID4 string)."""
    return str(uuid.uuid4())


class Snippet(Base):
    """
    A code snippet owned by one user inside one organization.

    Lifecycle:
        1. Created by its owner; organization and share_id are fixed at creation
        2. Updated by the owner or an edit-grantee (whitelisted fields only)
        3. Soft-deleted by the owner: is_active = False, the row is retained and
           its share_id is never handed out again
    """

    __tablename__ = "snippets"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # ── Content ───────────────────────────────────────────────────────────
    title: Mapped[str] = mapped_column(String(MAX_TITLE_LENGTH), nullable=False)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    language: Mapped[str] = mapped_column(String(50), nullable=False, default=DEFAULT_LANGUAGE)
    description: Mapped[str | None] = mapped_column(String(MAX_DESCRIPTION_LENGTH), nullable=True)

    # ── Ownership & Access ────────────────────────────────────────────────
    owner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False, index=True
    )
    organization: Mapped[str] = mapped_column(String(100), nullable=False)
    visibility: Mapped[str] = mapped_column(
        String(20), nullable=False, default=VISIBILITY_PRIVATE
    )
    share_id: Mapped[str] = mapped_column(
        String(36), nullable=False, unique=True, default=new_share_id
    )

    # ── Counters & State ──────────────────────────────────────────────────
    # views never feeds an access decision
    views: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    # ── Relationships ─────────────────────────────────────────────────────
    # selectin: async sessions cannot lazy-load, so collections come with the row
    owner: Mapped[User] = relationship(User, lazy="selectin")
    tags: Mapped[List["SnippetTag"]] = relationship(
        back_populates="snippet",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="SnippetTag.tag",
    )
    grants: Mapped[List["ShareGrant"]] = relationship(
        back_populates="snippet",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ShareGrant.granted_at",
    )

    __table_args__ = (
        Index("idx_snippets_org_active", "organization", "is_active"),
        Index("idx_snippets_created_at", created_at.desc()),
    )

    @property
    def tag_names(self) -> List[str]:
        return [t.tag for t in self.tags]

    def __repr__(self) -> str:
        return (
            f"<Snippet(id={self.id}, title='{self.title}', "
            f"visibility='{self.visibility}', active={self.is_active})>"
        )


class SnippetTag(Base):
    """One tag on one snippet. Tags form a set: (snippet_id, tag) is the key."""

    __tablename__ = "snippet_tags"

    snippet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("snippets.id", ondelete="CASCADE"), primary_key=True
    )
    tag: Mapped[str] = mapped_column(String(MAX_TAG_LENGTH), primary_key=True, index=True)

    snippet: Mapped[Snippet] = relationship(back_populates="tags")


class ShareGrant(Base):
    """
    Explicit per-user permission layered on top of a snippet's visibility.

    The target is always recorded by e-mail. user_id is filled when the e-mail
    (or username) resolved to an account at grant time; a grant without one is
    a pending e-mail grant. Grants are matched against the CURRENT identity on
    every read, so a pending grant starts working as soon as someone registers
    with that e-mail.
    """

    __tablename__ = "share_grants"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    snippet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("snippets.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=True, index=True
    )
    email: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    permission: Mapped[str] = mapped_column(String(10), nullable=False, default=PERMISSION_VIEW)
    granted_by: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    granted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utcnow
    )

    snippet: Mapped[Snippet] = relationship(back_populates="grants")

    __table_args__ = (
        UniqueConstraint("snippet_id", "email", name="uq_share_grants_snippet_email"),
    )

    def __repr__(self) -> str:
        return (
            f"<ShareGrant(id={self.id}, snippet_id={self.snippet_id}, "
            f"email='{self.email}', permission='{self.permission}')>"
        )


class PresenceEntry(Base):
    """
    A viewer who is looking at a snippet right now.

    "Right now" means last_seen is inside the staleness window; see
    app/services/presence_tracker.py. Rows are pruned lazily on join/list.
    """

    __tablename__ = "presence_entries"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    snippet_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("snippets.id", ondelete="CASCADE"), nullable=False
    )
    viewer_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    # Opaque token supplied by the client (one per browser tab)
    session_token: Mapped[str | None] = mapped_column(String(255), nullable=True)

    __table_args__ = (
        Index("idx_presence_snippet_viewer", "snippet_id", "viewer_id"),
    )

    def __repr__(self) -> str:
        return (
            f"<PresenceEntry(snippet_id={self.snippet_id}, viewer_id={self.viewer_id}, "
            f"last_seen='{self.last_seen}')>"
        )
