"""
SnipSafe Backend — Access Control Evaluator
=============================================

What:  The single decision function for "may this requester perform this operation
       on this snippet?".
How:   `decide()` walks an ordered rule list (first match wins) and returns an
       AccessDecision. It is pure: no database access, no logging, no mutation.
Who:   SnippetService asks it before every snippet operation; nothing else makes
       access decisions.

Rules (first match wins):
    1. Snippet inactive                           → DENY not_found (every operation)
    2. Requester is the owner                     → ALLOW
    3. delete / manage_sharing by a non-owner     → DENY forbidden
    4. A grant names the requester                → ALLOW read, join_presence;
                                                    ALLOW update when permission = edit
    5. visibility = public                        → ALLOW read, join_presence (anyone)
    6. visibility = organization, same org        → ALLOW read, join_presence
    7. visibility = private, share-link path,     → ALLOW read, join_presence
       authenticated requester in the same org
    8. Otherwise                                  → DENY forbidden

    A grant "names" a requester when its user_id is the requester's id or its
    e-mail equals the requester's e-mail (case-insensitive). Grants are matched
    against the identity as it is NOW, so a pending e-mail grant applies to whoever
    registers with that address later.

Reason semantics:
    not_found  — the snippet must be treated as nonexistent for this caller
    forbidden  — the caller may learn the snippet exists, but not use it this way
    Callers must not turn one into the other except where SnippetService documents it.
"""

import enum
import uuid
from dataclasses import dataclass
from typing import Any, Iterable, Optional

from app.models.snippet import (
    PERMISSION_EDIT,
    VISIBILITY_ORGANIZATION,
    VISIBILITY_PRIVATE,
    VISIBILITY_PUBLIC,
)


class Operation(str, enum.Enum):
    READ = "read"
    UPDATE = "update"
    DELETE = "delete"
    MANAGE_SHARING = "manage_sharing"
    JOIN_PRESENCE = "join_presence"


class DenyReason(str, enum.Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"


# Operations any reader (grantee, org member, public) may perform
_READ_OPERATIONS = frozenset({Operation.READ, Operation.JOIN_PRESENCE})
_OWNER_ONLY_OPERATIONS = frozenset({Operation.DELETE, Operation.MANAGE_SHARING})


@dataclass(frozen=True)
class Identity:
    """
    The resolved requester as the access model sees it.

    Built from a User row by the auth dependency; anonymous requests are
    represented by None rather than by an Identity.
    """
    id: uuid.UUID
    organization: str
    role: str = "user"
    email: str = ""
    username: str = ""

    @classmethod
    def from_user(cls, user: Any) -> "Identity":
        return cls(
            id=user.id,
            organization=user.organization,
            role=user.role,
            email=(user.email or "").lower(),
            username=user.username,
        )


@dataclass(frozen=True)
class AccessDecision:
    allowed: bool
    reason: Optional[DenyReason] = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOW = AccessDecision(allowed=True)
DENY_NOT_FOUND = AccessDecision(allowed=False, reason=DenyReason.NOT_FOUND)
DENY_FORBIDDEN = AccessDecision(allowed=False, reason=DenyReason.FORBIDDEN)


def grant_names(grant: Any, requester: Optional[Identity]) -> bool:
    """True when the grant targets this requester, by id or by e-mail."""
    if requester is None:
        return False
    if grant.user_id is not None and grant.user_id == requester.id:
        return True
    return bool(requester.email) and (grant.email or "").lower() == requester.email.lower()


def find_grant(grants: Iterable[Any], requester: Optional[Identity]) -> Optional[Any]:
    """
    The grant that names the requester, if any.

    When several grants name the same person (one by user id, one by e-mail),
    an edit grant wins over a view grant.
    """
    match = None
    for grant in grants:
        if not grant_names(grant, requester):
            continue
        if grant.permission == PERMISSION_EDIT:
            return grant
        if match is None:
            match = grant
    return match


def decide(
    snippet: Any,
    requester: Optional[Identity],
    operation: Operation,
    via_share_link: bool = False,
) -> AccessDecision:
    """
    Decide whether `requester` may perform `operation` on `snippet`.

    Args:
        snippet:        Snippet row (or any object with is_active, owner_id,
                        organization, visibility and grants)
        requester:      Resolved identity, or None for an anonymous caller
        operation:      What the caller wants to do
        via_share_link: True when the snippet was reached by its share_id

    Returns:
        AccessDecision; when denied, `reason` says whether the snippet's
        existence may be disclosed.
    """
    # Rule 1: soft-deleted snippets do not exist for anyone
    if not snippet.is_active:
        return DENY_NOT_FOUND

    # Rule 2
    if requester is not None and snippet.owner_id == requester.id:
        return ALLOW

    # Rule 3
    if operation in _OWNER_ONLY_OPERATIONS:
        return DENY_FORBIDDEN

    # Rule 4
    grant = find_grant(snippet.grants, requester)
    if grant is not None:
        if operation in _READ_OPERATIONS:
            return ALLOW
        if operation == Operation.UPDATE and grant.permission == PERMISSION_EDIT:
            return ALLOW

    if operation not in _READ_OPERATIONS:
        return DENY_FORBIDDEN

    # Rule 5
    if snippet.visibility == VISIBILITY_PUBLIC:
        return ALLOW

    same_org = requester is not None and requester.organization == snippet.organization

    # Rule 6
    if snippet.visibility == VISIBILITY_ORGANIZATION and same_org:
        return ALLOW

    # Rule 7
    if snippet.visibility == VISIBILITY_PRIVATE and via_share_link and same_org:
        return ALLOW

    # Rule 8
    return DENY_FORBIDDEN
