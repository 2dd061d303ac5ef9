"""
SnipSafe Backend — Snippet Service (Lifecycle Orchestrator)
=============================================================

What:  Every operation on snippets: create, read (by id or share link), update,
       soft-delete, sharing, presence, listings, search and stats.
How:   Loads the snippet, asks access_control.decide() for a verdict, and on ALLOW
       applies the change through the ORM, the sharing ledger or the presence
       tracker. Commit happens in get_db_session.
Who:   Called by the /api/snippets route handlers.

Orchestration Flow (single-snippet operations):
    ┌──────────┐    ┌──────────────┐    ┌───────────────┐    ┌──────────────┐
    │  Route   │───▶│ Load snippet │───▶│    decide()   │───▶│ Apply: ORM / │
    │          │    │ (id/share_id)│    │ (access rules)│    │ ledger /     │
    └──────────┘    └──────────────┘    └───────────────┘    │ presence     │
                                                             └──────────────┘
Denials:
    A denied decision is raised as NotFoundError or ForbiddenError exactly as the
    evaluator tagged it, so private snippets are only disclosed where the rules
    allow. The exceptions are the owner-only operations (update, delete, share,
    unshare, sharing details), the viewer list and leave-view: there any denial is
    reported as not-found, which avoids confirming that someone else owns the
    snippet. Edit grantees may update content but not visibility (403).

Listings:
    search/stats cannot call decide() per row, so they express the direct-id rules
    as one SQL filter: the caller's organization, active, and
    (public OR organization OR owned by caller OR a grant names the caller).
    Within a single organization this admits exactly the snippets decide() would.
"""

import logging
import math
import uuid
from datetime import datetime, timezone
from typing import Any, List, Optional, Sequence, Tuple

from sqlalchemy import Select, and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import store_error
from app.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    SnipSafeError,
)
from app.models.snippet import (
    VISIBILITY_ORGANIZATION,
    VISIBILITY_PUBLIC,
    ShareGrant,
    Snippet,
    SnippetTag,
    new_share_id,
)
from app.models.user import User
from app.schemas.common import MessageResponse
from app.schemas.snippet import (
    AuthorSummary,
    CountItem,
    GrantResponse,
    GrantedTarget,
    PresenceResponse,
    ShareRequest,
    ShareResponse,
    SharedSnippetListResponse,
    SharedSnippetResponse,
    SharingDetailsResponse,
    SharingInfo,
    SnippetCreate,
    SnippetDetailResponse,
    SnippetListResponse,
    SnippetResponse,
    SnippetUpdate,
    StatsResponse,
    TargetRef,
    UnshareResponse,
    ViewerResponse,
    ViewerUser,
)
from app.services.access_control import (
    AccessDecision,
    DenyReason,
    Identity,
    Operation,
    decide,
    find_grant,
)
from app.services.presence_tracker import PresenceView, presence_tracker
from app.services.sharing_ledger import RevokeOutcome, sharing_ledger

logger = logging.getLogger(__name__)

SHARE_ID_ATTEMPTS = 5
TOP_LANGUAGES = 15
TOP_TAGS = 25


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _escape_like(text: str) -> str:
    """Escape LIKE wildcards so user input is matched literally."""
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _grant_names_requester(requester: Identity):
    """SQL form of access_control.grant_names()."""
    conditions = [ShareGrant.user_id == requester.id]
    if requester.email:
        conditions.append(func.lower(ShareGrant.email) == requester.email.lower())
    return Snippet.grants.any(or_(*conditions))


def _readable_in_org(requester: Identity):
    """
    Direct-id read rules as a query filter, for listings within the caller's
    organization.
    """
    return and_(
        Snippet.organization == requester.organization,
        Snippet.is_active.is_(True),
        or_(
            Snippet.visibility.in_((VISIBILITY_PUBLIC, VISIBILITY_ORGANIZATION)),
            Snippet.owner_id == requester.id,
            _grant_names_requester(requester),
        ),
    )


class SnippetService:
    """
    Business logic layer for snippet operations.

    Error Handling Strategy:
        Access denials become NotFoundError / ForbiddenError. SQLAlchemy failures
        are logged and wrapped by store_error() (503 when the database is
        unreachable, 500 otherwise). Our own exceptions propagate as-is.
    """

    # ══════════════════════════════════════════════════════════════════════
    # Helpers
    # ══════════════════════════════════════════════════════════════════════

    async def _load(self, db: AsyncSession, snippet_id: uuid.UUID) -> Snippet:
        result = await db.execute(select(Snippet).where(Snippet.id == snippet_id))
        snippet = result.scalar_one_or_none()
        if snippet is None:
            raise NotFoundError(resource="snippet", resource_id=str(snippet_id))
        return snippet

    def _authorize(
        self,
        snippet: Snippet,
        requester: Optional[Identity],
        operation: Operation,
        via_share_link: bool = False,
        conceal: bool = False,
    ) -> AccessDecision:
        """
        Raise the exception matching a denied decision.

        conceal=True reports every denial as not-found.
        """
        decision = decide(snippet, requester, operation, via_share_link=via_share_link)
        if decision.allowed:
            return decision

        logger.debug(
            "Denied %s on snippet %s for %s: %s",
            operation.value,
            snippet.id,
            requester.id if requester else "anonymous",
            decision.reason.value,
        )
        if conceal or decision.reason == DenyReason.NOT_FOUND:
            raise NotFoundError(resource="snippet", resource_id=str(snippet.id))
        raise ForbiddenError(message="Access denied")

    def _to_response(self, snippet: Snippet, author: Optional[AuthorSummary] = None) -> dict:
        if author is None:
            author = AuthorSummary(id=snippet.owner.id, username=snippet.owner.username)
        return dict(
            id=snippet.id,
            title=snippet.title,
            content=snippet.content,
            language=snippet.language,
            description=snippet.description,
            visibility=snippet.visibility,
            tags=snippet.tag_names,
            share_id=snippet.share_id,
            views=snippet.views,
            organization=snippet.organization,
            author=author,
            created_at=snippet.created_at,
            updated_at=snippet.updated_at,
        )

    async def _sharing_info(
        self, db: AsyncSession, snippet: Snippet, requester: Identity
    ) -> Optional[SharingInfo]:
        grant = find_grant(snippet.grants, requester)
        if grant is None:
            return None
        granter = await db.get(User, grant.granted_by)
        return SharingInfo(
            permission=grant.permission,
            shared_at=grant.granted_at,
            shared_by=granter.username if granter else None,
        )

    @staticmethod
    def _viewers(views: Sequence[PresenceView]) -> List[ViewerResponse]:
        return [
            ViewerResponse(
                user=ViewerUser(id=v.viewer_id, username=v.username, email=v.email),
                last_seen=v.last_seen,
            )
            for v in views
        ]

    async def _page(
        self, db: AsyncSession, query: Select, page: int, limit: int
    ) -> Tuple[List[Snippet], int]:
        count_result = await db.execute(select(func.count()).select_from(query.subquery()))
        total = count_result.scalar() or 0

        result = await db.execute(
            query.order_by(Snippet.created_at.desc(), Snippet.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    def _list_response(
        self, snippets: List[Snippet], total: int, page: int, limit: int
    ) -> SnippetListResponse:
        return SnippetListResponse(
            snippets=[SnippetResponse(**self._to_response(s)) for s in snippets],
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
            current_page=page,
        )

    # ══════════════════════════════════════════════════════════════════════
    # Lifecycle
    # ══════════════════════════════════════════════════════════════════════

    async def create(
        self, db: AsyncSession, requester: Identity, data: SnippetCreate
    ) -> SnippetResponse:
        """
        Create a snippet owned by the requester in the requester's organization.

        share_id is a random UUID4; the insert is retried with a fresh one if it
        ever collides with an existing snippet (including soft-deleted ones).
        """
        try:
            # ── Step 1: Pick a share_id nobody holds ────────────────────────
            for attempt in range(1, SHARE_ID_ATTEMPTS + 1):
                share_id = new_share_id()
                taken = await db.execute(select(Snippet.id).where(Snippet.share_id == share_id))
                if taken.first() is None:
                    break
                logger.warning("share_id collision on attempt %d, regenerating", attempt)
            else:
                raise ConflictError(message="Could not allocate a share link. Please retry.")

            # ── Step 2: Insert the snippet with its tags ────────────────────
            owner = await db.get(User, requester.id)
            now = _utcnow()
            snippet = Snippet(
                title=data.title,
                content=data.content,
                language=data.language,
                description=data.description,
                visibility=data.visibility,
                owner=owner,
                organization=requester.organization,
                share_id=share_id,
                views=0,
                is_active=True,
                created_at=now,
                updated_at=now,
                tags=[SnippetTag(tag=t) for t in data.tags],
                grants=[],
            )
            db.add(snippet)
            await db.flush()

        except SnipSafeError:
            raise
        except IntegrityError as e:
            logger.warning("Snippet insert hit a constraint: %s", str(e))
            raise ConflictError(message="Could not create the snippet. Please retry.")
        except SQLAlchemyError as e:
            logger.error("Database error creating snippet: %s", str(e), exc_info=True)
            raise store_error(e, "Could not create the snippet. Please try again.")

        logger.info(
            "Snippet %s created by %s (visibility=%s, %d tags)",
            snippet.id,
            requester.id,
            snippet.visibility,
            len(data.tags),
        )
        author = AuthorSummary(id=requester.id, username=requester.username)
        return SnippetResponse(**self._to_response(snippet, author=author))

    async def get_snippet(
        self, db: AsyncSession, snippet_id: uuid.UUID, requester: Identity
    ) -> SnippetDetailResponse:
        """
        GET /api/snippets/{id}: the snippet, the caller's own grant (if any) and
        the current viewers (pruned).

        Raises:
            NotFoundError:  missing or soft-deleted
            ForbiddenError: exists but the caller may not read it
        """
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.READ)

            sharing_info = await self._sharing_info(db, snippet, requester)
            viewers = await presence_tracker.list_viewers(db, snippet)

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error fetching snippet %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not retrieve the snippet.", snippet_id=str(snippet_id))

        return SnippetDetailResponse(
            **self._to_response(snippet),
            sharing_info=sharing_info,
            current_viewers=self._viewers(viewers),
        )

    async def get_by_share_id(
        self, db: AsyncSession, share_id: str, requester: Optional[Identity]
    ) -> SnippetResponse:
        """
        GET /api/snippets/share/{share_id}: read through a share link.

        Anonymous callers may read public snippets; same-organization callers may
        also read organization and private ones. The view counter is bumped with
        an atomic UPDATE.
        """
        try:
            result = await db.execute(select(Snippet).where(Snippet.share_id == share_id))
            snippet = result.scalar_one_or_none()
            if snippet is None:
                raise NotFoundError(resource="snippet")

            self._authorize(snippet, requester, Operation.READ, via_share_link=True)

            # Bumped in SQL; concurrent readers never lose an increment
            await db.execute(
                update(Snippet)
                .where(Snippet.id == snippet.id)
                .values(views=Snippet.views + 1)
                .execution_options(synchronize_session=False)
            )
            await db.refresh(snippet, attribute_names=["views"])

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error reading share link: %s", str(e))
            raise store_error(e, "Could not retrieve the snippet.")

        return SnippetResponse(**self._to_response(snippet))

    async def update_snippet(
        self,
        db: AsyncSession,
        snippet_id: uuid.UUID,
        requester: Identity,
        data: SnippetUpdate,
    ) -> SnippetResponse:
        """
        Apply whitelisted field changes. Allowed for the owner and edit-grantees;
        every denial is reported as not-found.
        """
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.UPDATE, conceal=True)

            # Edit grants cover the content only; widening or narrowing the
            # audience stays with the owner, like sharing does.
            if (
                snippet.owner_id != requester.id
                and data.visibility is not None
                and data.visibility != snippet.visibility
            ):
                logger.info(
                    "Visibility change on snippet %s refused for editor %s",
                    snippet.id,
                    requester.id,
                )
                raise ForbiddenError(message="Only the owner can change a snippet's visibility")

            # ── Apply only the fields the caller sent ───────────────────────
            changes = data.model_dump(exclude_unset=True, exclude_none=True)
            tags = changes.pop("tags", None)
            for name, value in changes.items():
                setattr(snippet, name, value)
            # An explicit null clears the description
            if "description" in data.model_fields_set and data.description is None:
                snippet.description = None

            if tags is not None:
                # Keep rows for tags that survive; order follows the request
                existing = {t.tag: t for t in snippet.tags}
                snippet.tags = [existing.get(t) or SnippetTag(tag=t) for t in tags]

            snippet.updated_at = _utcnow()
            await db.flush()

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error updating snippet %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not update the snippet.", snippet_id=str(snippet_id))

        logger.info(
            "Snippet %s updated by %s (fields: %s)",
            snippet.id,
            requester.id,
            ", ".join(sorted(list(changes) + (["tags"] if tags is not None else []))),
        )
        return SnippetResponse(**self._to_response(snippet))

    async def delete_snippet(
        self, db: AsyncSession, snippet_id: uuid.UUID, requester: Identity
    ) -> MessageResponse:
        """Soft-delete. Owner only; every denial is reported as not-found."""
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.DELETE, conceal=True)

            snippet.is_active = False
            snippet.updated_at = _utcnow()
            await db.flush()

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error deleting snippet %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not delete the snippet.", snippet_id=str(snippet_id))

        logger.info("Snippet %s soft-deleted by %s", snippet.id, requester.id)
        return MessageResponse(message="Snippet deleted")

    # ══════════════════════════════════════════════════════════════════════
    # Sharing
    # ══════════════════════════════════════════════════════════════════════

    async def share(
        self,
        db: AsyncSession,
        snippet_id: uuid.UUID,
        requester: Identity,
        data: ShareRequest,
    ) -> ShareResponse:
        """Grant access to e-mails and usernames. Owner only."""
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.MANAGE_SHARING, conceal=True)

            outcome = await sharing_ledger.grant(
                db,
                snippet,
                requester,
                emails=data.emails,
                usernames=data.usernames,
                permission=data.permission,
            )
            total = len(snippet.grants)

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error sharing snippet %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not share the snippet.", snippet_id=str(snippet_id))

        if outcome.granted:
            message = "Snippet shared successfully"
        else:
            message = "No new users were added"

        return ShareResponse(
            message=message,
            granted=[
                GrantedTarget(email=g.email, username=g.username, resolved=g.resolved)
                for g in outcome.granted
            ],
            already_shared=[TargetRef(type=t.type, value=t.value) for t in outcome.already_shared],
            not_found=[TargetRef(type=t.type, value=t.value) for t in outcome.not_found],
            total_shared_users=total,
        )

    async def get_sharing_details(
        self, db: AsyncSession, snippet_id: uuid.UUID, requester: Identity
    ) -> SharingDetailsResponse:
        """The grant list with display names. Owner only."""
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.MANAGE_SHARING, conceal=True)
            grants = await sharing_ledger.list_grants(db, snippet)

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error listing grants of %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not load sharing details.", snippet_id=str(snippet_id))

        return SharingDetailsResponse(
            snippet_id=snippet.id,
            share_id=snippet.share_id,
            visibility=snippet.visibility,
            grants=[
                GrantResponse(
                    id=g.id,
                    email=g.email,
                    user_id=g.user_id,
                    username=g.username,
                    resolved=g.resolved,
                    permission=g.permission,
                    granted_at=g.granted_at,
                    granted_by=g.granted_by,
                )
                for g in grants
            ],
            total_shared_users=len(grants),
        )

    async def unshare(
        self,
        db: AsyncSession,
        snippet_id: uuid.UUID,
        requester: Identity,
        grant_id: uuid.UUID,
    ) -> UnshareResponse:
        """Revoke one grant. Owner only; a grant id that is not there is reported."""
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.MANAGE_SHARING, conceal=True)
            outcome = await sharing_ledger.revoke(db, snippet, grant_id)

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error revoking grant %s: %s", grant_id, str(e))
            raise store_error(e, "Could not update sharing.", snippet_id=str(snippet_id))

        if outcome == RevokeOutcome.REMOVED:
            message = "User removed from sharing list"
        else:
            message = "No such share entry on this snippet"
        return UnshareResponse(message=message, result=outcome.value)

    # ══════════════════════════════════════════════════════════════════════
    # Presence
    # ══════════════════════════════════════════════════════════════════════

    async def join_view(
        self,
        db: AsyncSession,
        snippet_id: uuid.UUID,
        requester: Identity,
        session_token: Optional[str] = None,
    ) -> PresenceResponse:
        """
        Put the caller on the viewer list and return who is viewing. Denials keep
        their real status (403 vs 404), the same as GET /api/snippets/{id}.
        """
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.JOIN_PRESENCE)
            viewers = await presence_tracker.join(db, snippet, requester, session_token)

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error joining view of %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not update viewers.", snippet_id=str(snippet_id))

        return PresenceResponse(
            message="Joined snippet viewing",
            current_viewers=self._viewers(viewers),
        )

    async def leave_view(
        self, db: AsyncSession, snippet_id: uuid.UUID, requester: Identity
    ) -> MessageResponse:
        """
        Remove the caller from the viewer list. Idempotent for anyone who may
        view the snippet; everyone else gets the same not-found as for an
        unknown id.
        """
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.JOIN_PRESENCE, conceal=True)
            await presence_tracker.leave(db, snippet, requester)

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error leaving view of %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not update viewers.", snippet_id=str(snippet_id))

        return MessageResponse(message="Left snippet viewing")

    async def get_viewers(
        self, db: AsyncSession, snippet_id: uuid.UUID, requester: Identity
    ) -> PresenceResponse:
        """Who is viewing now. Readers only; every denial is reported as not-found."""
        try:
            snippet = await self._load(db, snippet_id)
            self._authorize(snippet, requester, Operation.READ, conceal=True)
            viewers = await presence_tracker.list_viewers(db, snippet)

        except SnipSafeError:
            raise
        except SQLAlchemyError as e:
            logger.error("Database error listing viewers of %s: %s", snippet_id, str(e))
            raise store_error(e, "Could not load viewers.", snippet_id=str(snippet_id))

        return PresenceResponse(current_viewers=self._viewers(viewers))

    # ══════════════════════════════════════════════════════════════════════
    # Listings
    # ══════════════════════════════════════════════════════════════════════

    async def list_mine(
        self, db: AsyncSession, requester: Identity, page: int = 1, limit: int = 10
    ) -> SnippetListResponse:
        """The caller's own active snippets, newest first."""
        query = select(Snippet).where(
            Snippet.owner_id == requester.id,
            Snippet.is_active.is_(True),
        )
        try:
            snippets, total = await self._page(db, query, page, limit)
        except SQLAlchemyError as e:
            logger.error("Database error listing snippets of %s: %s", requester.id, str(e))
            raise store_error(e, "Could not retrieve snippets.")
        return self._list_response(snippets, total, page, limit)

    async def list_organization(
        self, db: AsyncSession, requester: Identity, page: int = 1, limit: int = 10
    ) -> SnippetListResponse:
        """Organization-visible and public snippets of the caller's organization."""
        query = select(Snippet).where(
            Snippet.organization == requester.organization,
            Snippet.visibility.in_((VISIBILITY_ORGANIZATION, VISIBILITY_PUBLIC)),
            Snippet.is_active.is_(True),
        )
        try:
            snippets, total = await self._page(db, query, page, limit)
        except SQLAlchemyError as e:
            logger.error("Database error listing organization snippets: %s", str(e))
            raise store_error(e, "Could not retrieve snippets.")
        return self._list_response(snippets, total, page, limit)

    async def list_shared_with_me(
        self, db: AsyncSession, requester: Identity, page: int = 1, limit: int = 10
    ) -> SharedSnippetListResponse:
        """Active snippets with a grant naming the caller, each with that grant."""
        query = select(Snippet).where(
            Snippet.is_active.is_(True),
            _grant_names_requester(requester),
        )
        try:
            snippets, total = await self._page(db, query, page, limit)
            items = [
                SharedSnippetResponse(
                    **self._to_response(s),
                    sharing_info=await self._sharing_info(db, s, requester),
                )
                for s in snippets
            ]
        except SQLAlchemyError as e:
            logger.error("Database error listing shared snippets: %s", str(e))
            raise store_error(e, "Could not retrieve snippets.")

        return SharedSnippetListResponse(
            snippets=items,
            total=total,
            total_pages=math.ceil(total / limit) if limit else 0,
            current_page=page,
        )

    async def search(
        self,
        db: AsyncSession,
        requester: Identity,
        q: Optional[str] = None,
        language: Optional[str] = None,
        tags: Optional[str] = None,
        author: Optional[str] = None,
        page: int = 1,
        limit: int = 20,
    ) -> SnippetListResponse:
        """
        Search readable snippets of the caller's organization.

        Filters (all optional, combined with AND):
            q:        case-insensitive substring of title, description or content
            language: exact language; "all" means no filter
            tags:     comma-separated; matches snippets with ANY of them
            author:   case-insensitive substring of the owner's username, among
                      users of the caller's organization
        """
        conditions: List[Any] = [_readable_in_org(requester)]

        # ── Build filters ───────────────────────────────────────────────

        if q and q.strip():
            pattern = f"%{_escape_like(q.strip())}%"
            conditions.append(
                or_(
                    Snippet.title.ilike(pattern, escape="\\"),
                    Snippet.description.ilike(pattern, escape="\\"),
                    Snippet.content.ilike(pattern, escape="\\"),
                )
            )

        if language and language.strip() and language.strip().lower() != "all":
            conditions.append(Snippet.language == language.strip().lower())

        if tags and tags.strip():
            tag_list = [t.strip() for t in tags.split(",") if t.strip()]
            if tag_list:
                conditions.append(Snippet.tags.any(SnippetTag.tag.in_(tag_list)))

        try:
            # Author is resolved first; no matching user means no results
            if author and author.strip():
                pattern = f"%{_escape_like(author.strip())}%"
                authors = await db.execute(
                    select(User.id).where(
                        User.username.ilike(pattern, escape="\\"),
                        User.organization == requester.organization,
                    )
                )
                author_ids = [row[0] for row in authors.all()]
                if not author_ids:
                    return SnippetListResponse(
                        snippets=[], total=0, total_pages=0, current_page=page
                    )
                conditions.append(Snippet.owner_id.in_(author_ids))

            snippets, total = await self._page(db, select(Snippet).where(*conditions), page, limit)

        except SQLAlchemyError as e:
            logger.error("Database error searching snippets: %s", str(e))
            raise store_error(e, "Search failed. Please try again.")

        return self._list_response(snippets, total, page, limit)

    async def stats(self, db: AsyncSession, requester: Identity) -> StatsResponse:
        """Most used languages and tags among snippets the caller can read."""
        readable = _readable_in_org(requester)
        language_count = func.count(Snippet.id).label("count")
        tag_count = func.count(SnippetTag.tag).label("count")

        try:
            languages = await db.execute(
                select(Snippet.language, language_count)
                .where(readable)
                .group_by(Snippet.language)
                .order_by(language_count.desc(), Snippet.language)
                .limit(TOP_LANGUAGES)
            )
            tags = await db.execute(
                select(SnippetTag.tag, tag_count)
                .join(Snippet, Snippet.id == SnippetTag.snippet_id)
                .where(readable)
                .group_by(SnippetTag.tag)
                .order_by(tag_count.desc(), SnippetTag.tag)
                .limit(TOP_TAGS)
            )
        except SQLAlchemyError as e:
            logger.error("Database error computing stats: %s", str(e))
            raise store_error(e, "Could not compute statistics.")

        return StatsResponse(
            languages=[CountItem(name=name, count=count) for name, count in languages.all()],
            tags=[CountItem(name=name, count=count) for name, count in tags.all()],
        )


# ── Singleton Instance ────────────────────────────────────────────────────
snippet_service = SnippetService()
