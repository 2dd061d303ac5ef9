"""
SnipSafe Backend — Snippet Request/Response Schemas
=====================================================

What:  Pydantic models defining the /api/snippets contract.
How:   Request models normalize input (trimmed titles, de-duplicated tags) and
       enforce the size limits; response models are built by SnippetService from
       ORM rows and the access/sharing/presence results.
Who:   Route handlers (as bodies and return types) and SnippetService.

Design Decision:
    Schemas are separate from SQLAlchemy models so the API controls exactly what is
    exposed. A snippet response never carries grants or presence rows directly:
    callers see only their own sharing_info, and the grant list is an owner-only
    endpoint.
"""

import uuid
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.snippet import (
    DEFAULT_LANGUAGE,
    MAX_CONTENT_BYTES,
    MAX_DESCRIPTION_LENGTH,
    MAX_TAG_LENGTH,
    MAX_TITLE_LENGTH,
)

Visibility = Literal["private", "organization", "public"]
Permission = Literal["view", "edit"]


def normalize_tags(tags: List[str]) -> List[str]:
    """Trim, drop blanks and de-duplicate while keeping first-seen order."""
    seen = []
    for tag in tags:
        tag = tag.strip()
        if not tag or tag in seen:
            continue
        if len(tag) > MAX_TAG_LENGTH:
            raise ValueError(f"Tags must be at most {MAX_TAG_LENGTH} characters")
        seen.append(tag)
    return seen


def _check_title(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("Title is required")
    if len(v) > MAX_TITLE_LENGTH:
        raise ValueError(f"Title must be at most {MAX_TITLE_LENGTH} characters")
    return v


def _check_content(v: str) -> str:
    if not v.strip():
        raise ValueError("Content is required")
    if len(v.encode("utf-8")) > MAX_CONTENT_BYTES:
        raise ValueError(f"Content exceeds the {MAX_CONTENT_BYTES} byte limit")
    return v


def _check_language(v: str) -> str:
    return v.strip().lower() or DEFAULT_LANGUAGE


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class SnippetCreate(BaseModel):
    title: str
    content: str
    language: str = Field(default=DEFAULT_LANGUAGE, max_length=50)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    visibility: Visibility = "private"
    tags: List[str] = Field(default_factory=list)

    @field_validator("title")
    @classmethod
    def check_title(cls, v: str) -> str:
        return _check_title(v)

    @field_validator("content")
    @classmethod
    def check_content(cls, v: str) -> str:
        return _check_content(v)

    @field_validator("language")
    @classmethod
    def check_language(cls, v: str) -> str:
        return _check_language(v)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: List[str]) -> List[str]:
        return normalize_tags(v)


class SnippetUpdate(BaseModel):
    """
    Whitelisted fields an owner or edit-grantee may change.

    Anything else in the body (owner, organization, share_id, views, ...) is
    ignored, which is pydantic's default for unknown fields.
    """
    title: Optional[str] = None
    content: Optional[str] = None
    language: Optional[str] = Field(default=None, max_length=50)
    description: Optional[str] = Field(default=None, max_length=MAX_DESCRIPTION_LENGTH)
    visibility: Optional[Visibility] = None
    tags: Optional[List[str]] = None

    @field_validator("title")
    @classmethod
    def check_title(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_title(v)

    @field_validator("content")
    @classmethod
    def check_content(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_content(v)

    @field_validator("language")
    @classmethod
    def check_language(cls, v: Optional[str]) -> Optional[str]:
        return None if v is None else _check_language(v)

    @field_validator("tags")
    @classmethod
    def clean_tags(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        return None if v is None else normalize_tags(v)


class ShareRequest(BaseModel):
    """
    Targets to grant access to. E-mails may belong to people who have no
    account yet; usernames are looked up inside the owner's organization.
    """
    emails: List[str] = Field(default_factory=list)
    usernames: List[str] = Field(default_factory=list)
    permission: Permission = "view"

    @field_validator("emails")
    @classmethod
    def check_emails(cls, v: List[str]) -> List[str]:
        cleaned = []
        for email in v:
            email = email.strip().lower()
            if "@" not in email or email.startswith("@") or email.endswith("@"):
                raise ValueError(f"Invalid e-mail address: '{email}'")
            cleaned.append(email)
        return cleaned

    @field_validator("usernames")
    @classmethod
    def check_usernames(cls, v: List[str]) -> List[str]:
        cleaned = [name.strip() for name in v]
        if any(not name for name in cleaned):
            raise ValueError("Usernames must not be blank")
        return cleaned


class JoinViewRequest(BaseModel):
    session_token: Optional[str] = Field(default=None, max_length=255)


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class AuthorSummary(BaseModel):
    id: uuid.UUID
    username: str


class SharingInfo(BaseModel):
    """The grant that names the caller, if any."""
    permission: str
    shared_at: datetime
    shared_by: Optional[str] = Field(default=None, description="Username of the granter")


class ViewerUser(BaseModel):
    id: uuid.UUID
    username: str
    email: str


class ViewerResponse(BaseModel):
    user: ViewerUser
    last_seen: datetime
    is_online: bool = True


class SnippetResponse(BaseModel):
    id: uuid.UUID
    title: str
    content: str
    language: str
    description: Optional[str] = None
    visibility: str
    tags: List[str]
    share_id: str
    views: int
    organization: str
    author: AuthorSummary
    created_at: datetime
    updated_at: datetime


class SnippetDetailResponse(SnippetResponse):
    """GET /api/snippets/{id}: the snippet plus the caller's grant and live viewers."""
    sharing_info: Optional[SharingInfo] = None
    current_viewers: List[ViewerResponse] = Field(default_factory=list)


class SharedSnippetResponse(SnippetResponse):
    sharing_info: Optional[SharingInfo] = None


class SnippetListResponse(BaseModel):
    snippets: List[SnippetResponse]
    total: int
    total_pages: int
    current_page: int


class SharedSnippetListResponse(BaseModel):
    snippets: List[SharedSnippetResponse]
    total: int
    total_pages: int
    current_page: int


class GrantedTarget(BaseModel):
    email: str
    username: Optional[str] = None
    resolved: bool = Field(description="False for a pending grant to an e-mail with no account yet")


class TargetRef(BaseModel):
    type: Literal["email", "username"]
    value: str


class ShareResponse(BaseModel):
    """
    Three-way result of a share request. Every requested target appears in
    exactly one of the lists.
    """
    message: str
    granted: List[GrantedTarget]
    already_shared: List[TargetRef]
    not_found: List[TargetRef]
    total_shared_users: int


class GrantResponse(BaseModel):
    id: uuid.UUID
    email: str
    user_id: Optional[uuid.UUID] = None
    username: Optional[str] = None
    resolved: bool
    permission: str
    granted_at: datetime
    granted_by: Optional[str] = Field(default=None, description="Username of the granter")


class SharingDetailsResponse(BaseModel):
    snippet_id: uuid.UUID
    share_id: str
    visibility: str
    grants: List[GrantResponse]
    total_shared_users: int


class UnshareResponse(BaseModel):
    message: str
    result: Literal["removed", "not_found"]


class PresenceResponse(BaseModel):
    message: Optional[str] = None
    current_viewers: List[ViewerResponse]


class CountItem(BaseModel):
    name: str
    count: int


class StatsResponse(BaseModel):
    languages: List[CountItem]
    tags: List[CountItem]
