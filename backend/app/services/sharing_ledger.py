"""
SnipSafe Backend — Sharing Ledger
===================================

What:  Adds, removes and lists the share grants of a snippet.
How:   Grants are child rows of the snippet (see ShareGrant). Adding one appends to
       `snippet.grants` and flushes, which is a single INSERT; revoking removes it
       from the collection, which is a single DELETE (delete-orphan cascade).
Who:   SnippetService, after the access evaluator has confirmed the caller owns the
       snippet. The ledger itself does not check ownership.

Outcomes, not exceptions:
    A target that is already shared, or a username that does not exist, is a normal
    result and lands in `already_shared` / `not_found`. Every requested target lands
    in exactly one of granted / already_shared / not_found, so the caller can tell
    the user precisely what happened to each one.

    The only exception raised is ConflictError, when a concurrent request inserted
    the same (snippet, e-mail) grant first and the unique constraint fires.
"""

import enum
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.exceptions import ConflictError
from app.models.snippet import PERMISSION_VIEW, ShareGrant, Snippet
from app.models.user import User
from app.services.access_control import Identity

logger = logging.getLogger(__name__)


class RevokeOutcome(str, enum.Enum):
    REMOVED = "removed"
    NOT_FOUND = "not_found"


@dataclass
class GrantedTarget:
    email: str
    username: Optional[str]
    resolved: bool


@dataclass
class TargetRef:
    type: str  # 'email' or 'username'
    value: str


@dataclass
class ShareOutcome:
    granted: List[GrantedTarget] = field(default_factory=list)
    already_shared: List[TargetRef] = field(default_factory=list)
    not_found: List[TargetRef] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return len(self.granted) + len(self.already_shared) + len(self.not_found)


@dataclass
class GrantView:
    """A grant with its target resolved against the current identity store."""
    id: uuid.UUID
    email: str
    user_id: Optional[uuid.UUID]
    username: Optional[str]
    permission: str
    granted_at: datetime
    granted_by: Optional[str]

    @property
    def resolved(self) -> bool:
        return self.user_id is not None


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _already_granted(grants: Iterable[ShareGrant], user_id: Optional[uuid.UUID], email: str) -> bool:
    for grant in grants:
        if user_id is not None and grant.user_id == user_id:
            return True
        if grant.email == email:
            return True
    return False


class SharingLedger:
    """
    Stateless; every method receives the session and the already-loaded snippet
    (with its grants collection).
    """

    async def grant(
        self,
        db: AsyncSession,
        snippet: Snippet,
        granter: Identity,
        emails: Iterable[str] = (),
        usernames: Iterable[str] = (),
        permission: str = PERMISSION_VIEW,
    ) -> ShareOutcome:
        """
        Grant `permission` on `snippet` to each e-mail and username.

        E-mails:    normalized (trimmed, lower-case) and resolved against active
                    accounts. An e-mail with no account still gets a pending grant,
                    reported in `granted` with resolved = False.
        Usernames:  resolved among active accounts in the snippet's organization.
                    Unknown → `not_found`. Known → granted using the account's
                    e-mail.
        Either:     a grant that already exists for the same account or e-mail
                    (including one added earlier in this call) → `already_shared`.

        Raises:
            ConflictError: a concurrent request created the same grant first
        """
        outcome = ShareOutcome()
        # Rollback expires the snippet; read its id up front
        snippet_id = snippet.id
        # Lookups below may autoflush grants appended earlier in this call, so
        # the whole pass sits inside the constraint guard.
        try:
            await self._apply(db, snippet, granter, emails, usernames, permission, outcome)
            if outcome.granted:
                await db.flush()
        except IntegrityError as e:
            await db.rollback()
            logger.warning(
                "Concurrent share on snippet %s tripped the grant constraint: %s",
                snippet_id,
                type(e).__name__,
            )
            raise ConflictError(
                message="This snippet was shared with the same person at the same time. Please retry.",
                context={"snippet_id": str(snippet_id)},
            )

        logger.info(
            "Snippet %s shared by %s: %d granted, %d already shared, %d not found",
            snippet.id,
            granter.id,
            len(outcome.granted),
            len(outcome.already_shared),
            len(outcome.not_found),
        )
        return outcome

    async def _apply(
        self,
        db: AsyncSession,
        snippet: Snippet,
        granter: Identity,
        emails: Iterable[str],
        usernames: Iterable[str],
        permission: str,
        outcome: ShareOutcome,
    ) -> None:
        now = _utcnow()
        grants = snippet.grants

        # ── E-mails: resolve if possible, otherwise keep as a pending grant ──
        for raw in emails:
            email = raw.strip().lower()
            user = await self._active_user_by_email(db, email)
            user_id = user.id if user else None

            if _already_granted(grants, user_id, email):
                outcome.already_shared.append(TargetRef(type="email", value=email))
                continue

            # Appending to the loaded collection makes the next target see this grant
            grants.append(
                ShareGrant(
                    user_id=user_id,
                    email=email,
                    permission=permission,
                    granted_by=granter.id,
                    granted_at=now,
                )
            )
            outcome.granted.append(
                GrantedTarget(
                    email=email,
                    username=user.username if user else None,
                    resolved=user is not None,
                )
            )

        # ── Usernames: only active accounts in the snippet's organization ──
        for raw in usernames:
            username = raw.strip()
            user = await self._active_user_in_org(db, username, snippet.organization)
            if user is None:
                outcome.not_found.append(TargetRef(type="username", value=username))
                continue

            email = user.email.lower()
            if _already_granted(grants, user.id, email):
                outcome.already_shared.append(TargetRef(type="username", value=username))
                continue

            grants.append(
                ShareGrant(
                    user_id=user.id,
                    email=email,
                    permission=permission,
                    granted_by=granter.id,
                    granted_at=now,
                )
            )
            outcome.granted.append(GrantedTarget(email=email, username=user.username, resolved=True))

    async def revoke(
        self,
        db: AsyncSession,
        snippet: Snippet,
        grant_id: uuid.UUID,
    ) -> RevokeOutcome:
        """Remove one grant by id. A missing id is reported, not raised."""
        for grant in snippet.grants:
            if grant.id == grant_id:
                snippet.grants.remove(grant)
                await db.flush()
                logger.info("Grant %s revoked on snippet %s", grant_id, snippet.id)
                return RevokeOutcome.REMOVED

        logger.debug("Grant %s not present on snippet %s", grant_id, snippet.id)
        return RevokeOutcome.NOT_FOUND

    async def list_grants(self, db: AsyncSession, snippet: Snippet) -> List[GrantView]:
        """
        The snippet's grants in grant order, with display fields resolved from the
        identity store as it is now. Read-only: a pending grant whose e-mail now
        belongs to an account is shown as resolved, but the row is not rewritten.
        """
        grants = list(snippet.grants)
        if not grants:
            return []

        # One query for targets, granters and pending e-mails alike
        user_ids = {g.user_id for g in grants if g.user_id is not None}
        user_ids |= {g.granted_by for g in grants}
        emails = {g.email for g in grants}

        result = await db.execute(
            select(User).where(
                or_(User.id.in_(user_ids), func.lower(User.email).in_(emails))
            )
        )
        users = list(result.scalars().all())
        by_id: Dict[uuid.UUID, User] = {u.id: u for u in users}
        by_email: Dict[str, User] = {u.email.lower(): u for u in users if u.is_active}

        views = []
        for grant in grants:
            target = by_id.get(grant.user_id) if grant.user_id else None
            if target is None:
                # Pending grant: an account may have registered since
                target = by_email.get(grant.email)
            granter = by_id.get(grant.granted_by)
            views.append(
                GrantView(
                    id=grant.id,
                    email=grant.email,
                    user_id=target.id if target else None,
                    username=target.username if target else None,
                    permission=grant.permission,
                    granted_at=grant.granted_at,
                    granted_by=granter.username if granter else None,
                )
            )
        return views

    # ── Identity lookups ──────────────────────────────────────────────────

    async def _active_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        result = await db.execute(
            select(User).where(func.lower(User.email) == email, User.is_active.is_(True))
        )
        return result.scalar_one_or_none()

    async def _active_user_in_org(
        self, db: AsyncSession, username: str, organization: str
    ) -> Optional[User]:
        result = await db.execute(
            select(User).where(
                User.username == username,
                User.organization == organization,
                User.is_active.is_(True),
            )
        )
        return result.scalar_one_or_none()


# ── Singleton Instance ────────────────────────────────────────────────────
sharing_ledger = SharingLedger()
