"""
SnipSafe Backend — Snippet Route Handlers
===========================================

What:  The /api/snippets surface: lifecycle, sharing, presence, listings and search.
How:   Thin handlers. Authentication comes from dependencies, everything else is
       delegated to SnippetService, which raises SnipSafeError subclasses that the
       global handlers turn into JSON errors.
Who:   Called by the frontend editor, dashboard and share-link pages.

Route ordering:
    Fixed paths (/my, /org, /shared-with-me, /search, /stats, /share/{share_id})
    are declared before /{snippet_id} so they are never parsed as snippet ids.
"""

import logging
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_db_session
from app.schemas.common import ErrorResponse, MessageResponse
from app.schemas.snippet import (
    JoinViewRequest,
    PresenceResponse,
    ShareRequest,
    ShareResponse,
    SharedSnippetListResponse,
    SharingDetailsResponse,
    SnippetCreate,
    SnippetDetailResponse,
    SnippetListResponse,
    SnippetResponse,
    SnippetUpdate,
    StatsResponse,
    UnshareResponse,
)
from app.services.access_control import Identity
from app.services.auth_service import get_current_identity, get_optional_identity
from app.services.snippet_service import snippet_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/snippets", tags=["Snippets"])

_ERRORS = {
    400: {"description": "Invalid input", "model": ErrorResponse},
    401: {"description": "Missing or invalid token", "model": ErrorResponse},
}
_NOT_FOUND = {404: {"description": "Snippet not found", "model": ErrorResponse}}
_FORBIDDEN = {403: {"description": "Access denied", "model": ErrorResponse}}


# ══════════════════════════════════════════════════════════════════════════
# Listings
# ══════════════════════════════════════════════════════════════════════════


@router.get(
    "/my",
    response_model=SnippetListResponse,
    responses=_ERRORS,
    summary="List my snippets",
)
async def list_my_snippets(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SnippetListResponse:
    result = await snippet_service.list_mine(db, identity, page=page, limit=limit)
    response.headers["X-Total-Count"] = str(result.total)
    return result


@router.get(
    "/org",
    response_model=SnippetListResponse,
    responses=_ERRORS,
    summary="List organization snippets",
    description="Organization-visible and public snippets of the caller's organization.",
)
async def list_organization_snippets(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SnippetListResponse:
    result = await snippet_service.list_organization(db, identity, page=page, limit=limit)
    response.headers["X-Total-Count"] = str(result.total)
    return result


@router.get(
    "/shared-with-me",
    response_model=SharedSnippetListResponse,
    responses=_ERRORS,
    summary="List snippets shared with me",
)
async def list_shared_with_me(
    response: Response,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SharedSnippetListResponse:
    """Each item carries the caller's own grant as `sharing_info`."""
    result = await snippet_service.list_shared_with_me(db, identity, page=page, limit=limit)
    response.headers["X-Total-Count"] = str(result.total)
    return result


@router.get(
    "/search",
    response_model=SnippetListResponse,
    responses=_ERRORS,
    summary="Search readable snippets",
    description=(
        "Filters combine with AND. `q` matches title, description and content; "
        "`tags` is a comma-separated list matching any tag; `author` matches a "
        "username substring within the caller's organization."
    ),
)
async def search_snippets(
    response: Response,
    q: Optional[str] = Query(default=None, max_length=200),
    language: Optional[str] = Query(default=None, max_length=50),
    tags: Optional[str] = Query(default=None, max_length=500),
    author: Optional[str] = Query(default=None, max_length=50),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SnippetListResponse:
    result = await snippet_service.search(
        db,
        identity,
        q=q,
        language=language,
        tags=tags,
        author=author,
        page=page,
        limit=limit,
    )
    response.headers["X-Total-Count"] = str(result.total)
    return result


@router.get(
    "/stats",
    response_model=StatsResponse,
    responses=_ERRORS,
    summary="Most used languages and tags",
)
async def snippet_stats(
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> StatsResponse:
    return await snippet_service.stats(db, identity)


@router.get(
    "/share/{share_id}",
    response_model=SnippetResponse,
    responses={**_ERRORS, **_FORBIDDEN, **_NOT_FOUND},
    summary="Open a share link",
    description=(
        "Anonymous callers can open public snippets. Signed-in callers of the same "
        "organization can also open organization and private snippets."
    ),
)
async def get_shared_snippet(
    share_id: str,
    response: Response,
    identity: Optional[Identity] = Depends(get_optional_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SnippetResponse:
    result = await snippet_service.get_by_share_id(db, share_id, identity)
    # Counts a view on every read; shared caches must not serve it
    response.headers["Cache-Control"] = "no-store"
    return result


# ══════════════════════════════════════════════════════════════════════════
# Lifecycle
# ══════════════════════════════════════════════════════════════════════════


@router.post(
    "",
    response_model=SnippetResponse,
    status_code=status.HTTP_201_CREATED,
    responses=_ERRORS,
    summary="Create a snippet",
)
async def create_snippet(
    data: SnippetCreate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SnippetResponse:
    return await snippet_service.create(db, identity, data)


@router.get(
    "/{snippet_id}",
    response_model=SnippetDetailResponse,
    responses={**_ERRORS, **_FORBIDDEN, **_NOT_FOUND},
    summary="Get a snippet",
    description="The snippet, the caller's own grant (if any) and who is viewing it now.",
)
async def get_snippet(
    snippet_id: UUID,
    response: Response,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SnippetDetailResponse:
    result = await snippet_service.get_snippet(db, snippet_id, identity)
    response.headers["Cache-Control"] = "private, no-cache"
    return result


@router.put(
    "/{snippet_id}",
    response_model=SnippetResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Update a snippet",
    description="Owner or edit-grantee only. Only the provided fields change.",
)
async def update_snippet(
    snippet_id: UUID,
    data: SnippetUpdate,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SnippetResponse:
    return await snippet_service.update_snippet(db, snippet_id, identity, data)


@router.delete(
    "/{snippet_id}",
    response_model=MessageResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Delete a snippet",
)
async def delete_snippet(
    snippet_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await snippet_service.delete_snippet(db, snippet_id, identity)


# ══════════════════════════════════════════════════════════════════════════
# Sharing
# ══════════════════════════════════════════════════════════════════════════


@router.post(
    "/{snippet_id}/share",
    response_model=ShareResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Share a snippet with users",
    description=(
        "Targets are e-mail addresses and usernames. Usernames must belong to an "
        "active user of the owner's organization; e-mails without an account are "
        "recorded and take effect once that account exists."
    ),
)
async def share_snippet(
    snippet_id: UUID,
    data: ShareRequest,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> ShareResponse:
    return await snippet_service.share(db, snippet_id, identity, data)


@router.get(
    "/{snippet_id}/share",
    response_model=SharingDetailsResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="List who a snippet is shared with",
)
@router.get(
    "/{snippet_id}/sharing",
    response_model=SharingDetailsResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="List who a snippet is shared with (alias used by the web client)",
)
async def get_sharing_details(
    snippet_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> SharingDetailsResponse:
    return await snippet_service.get_sharing_details(db, snippet_id, identity)


@router.delete(
    "/{snippet_id}/share/{grant_id}",
    response_model=UnshareResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Revoke one share grant",
)
async def unshare_snippet(
    snippet_id: UUID,
    grant_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> UnshareResponse:
    return await snippet_service.unshare(db, snippet_id, identity, grant_id)


# ══════════════════════════════════════════════════════════════════════════
# Presence
# ══════════════════════════════════════════════════════════════════════════


@router.post(
    "/{snippet_id}/join-view",
    response_model=PresenceResponse,
    responses={**_ERRORS, **_FORBIDDEN, **_NOT_FOUND},
    summary="Announce that I am viewing a snippet",
    description="Clients repeat this as a heartbeat; entries expire after 5 minutes.",
)
async def join_view(
    snippet_id: UUID,
    data: Optional[JoinViewRequest] = None,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PresenceResponse:
    session_token = data.session_token if data else None
    return await snippet_service.join_view(db, snippet_id, identity, session_token)


@router.post(
    "/{snippet_id}/leave-view",
    response_model=MessageResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Stop viewing a snippet",
)
async def leave_view(
    snippet_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> MessageResponse:
    return await snippet_service.leave_view(db, snippet_id, identity)


@router.get(
    "/{snippet_id}/viewers",
    response_model=PresenceResponse,
    responses={**_ERRORS, **_NOT_FOUND},
    summary="Who is viewing a snippet now",
)
async def get_viewers(
    snippet_id: UUID,
    identity: Identity = Depends(get_current_identity),
    db: AsyncSession = Depends(get_db_session),
) -> PresenceResponse:
    return await snippet_service.get_viewers(db, snippet_id, identity)
