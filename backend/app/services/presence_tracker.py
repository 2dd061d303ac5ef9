"""
SnipSafe Backend — Live Presence Tracker
==========================================

What:  Tracks who is looking at a snippet right now.
How:   One presence_entries row per (snippet, viewer). A viewer counts as present
       while `now - last_seen < STALENESS_WINDOW`. There is no background sweeper:
       expired rows are deleted the next time join() or list_viewers() touches
       that snippet.
Who:   SnippetService (join-view, leave-view, viewers, and the viewer list on
       GET /api/snippets/{id}).

Heartbeat:
    There is no separate heartbeat call. Clients re-join to stay visible, ideally
    every STALENESS_WINDOW / 10 (30 seconds) so a slow request or two does not
    drop them off the list.

Concurrency:
    join() is DELETE-then-INSERT in the request transaction. Two joins for the same
    viewer racing each other can leave two rows until the next join; list_viewers()
    collapses them to the newest one per viewer, so callers never see a duplicate.
"""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, List, Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.snippet import PresenceEntry, Snippet
from app.models.user import User
from app.services.access_control import Identity

logger = logging.getLogger(__name__)

STALENESS_WINDOW = timedelta(minutes=5)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class PresenceView:
    viewer_id: uuid.UUID
    username: str
    email: str
    last_seen: datetime


class PresenceTracker:
    """
    Args:
        clock:  Returns the current UTC time; tests pass a fixed clock
        window: How long after its last join a viewer still counts as present
    """

    def __init__(
        self,
        clock: Callable[[], datetime] = _utcnow,
        window: timedelta = STALENESS_WINDOW,
    ):
        self.clock = clock
        self.window = window

    async def join(
        self,
        db: AsyncSession,
        snippet: Snippet,
        viewer: Identity,
        session_token: Optional[str] = None,
    ) -> List[PresenceView]:
        """Replace the viewer's entry with a fresh one, prune, return who is present."""
        now = self.clock()
        # ── Step 1: Drop the viewer's previous entry ──────────────────────
        await db.execute(
            delete(PresenceEntry).where(
                PresenceEntry.snippet_id == snippet.id,
                PresenceEntry.viewer_id == viewer.id,
            ).execution_options(synchronize_session=False)
        )
        # ── Step 2: Insert a fresh entry stamped with now ──────────────────
        db.add(
            PresenceEntry(
                snippet_id=snippet.id,
                viewer_id=viewer.id,
                last_seen=now,
                session_token=session_token,
            )
        )
        await db.flush()
        logger.debug("Viewer %s joined snippet %s", viewer.id, snippet.id)
        # ── Step 3: Prune and report everyone still present ───────────────
        return await self._current(db, snippet, now)

    async def touch(
        self,
        db: AsyncSession,
        snippet: Snippet,
        viewer: Identity,
        session_token: Optional[str] = None,
    ) -> List[PresenceView]:
        """Keep-alive. Identical to join()."""
        return await self.join(db, snippet, viewer, session_token)

    async def leave(self, db: AsyncSession, snippet: Snippet, viewer: Identity) -> None:
        """Remove the viewer's entry. Leaving twice is fine."""
        await db.execute(
            delete(PresenceEntry).where(
                PresenceEntry.snippet_id == snippet.id,
                PresenceEntry.viewer_id == viewer.id,
            ).execution_options(synchronize_session=False)
        )
        logger.debug("Viewer %s left snippet %s", viewer.id, snippet.id)

    async def list_viewers(self, db: AsyncSession, snippet: Snippet) -> List[PresenceView]:
        """Prune expired entries, then return the rest newest first, one per viewer."""
        return await self._current(db, snippet, self.clock())

    async def _current(
        self, db: AsyncSession, snippet: Snippet, now: datetime
    ) -> List[PresenceView]:
        cutoff = now - self.window

        # Expired: now - last_seen >= window
        pruned = await db.execute(
            delete(PresenceEntry).where(
                PresenceEntry.snippet_id == snippet.id,
                PresenceEntry.last_seen <= cutoff,
            ).execution_options(synchronize_session=False)
        )
        if pruned.rowcount:
            logger.debug("Pruned %d stale viewers from snippet %s", pruned.rowcount, snippet.id)

        result = await db.execute(
            select(PresenceEntry.viewer_id, PresenceEntry.last_seen, User.username, User.email)
            .join(User, User.id == PresenceEntry.viewer_id)
            .where(
                PresenceEntry.snippet_id == snippet.id,
                PresenceEntry.last_seen > cutoff,
            )
            .order_by(PresenceEntry.last_seen.desc())
        )

        # Rows arrive newest first, so the first row per viewer is the one to keep
        viewers = []
        seen = set()
        for viewer_id, last_seen, username, email in result.all():
            if viewer_id in seen:
                continue
            seen.add(viewer_id)
            viewers.append(
                PresenceView(viewer_id=viewer_id, username=username, email=email, last_seen=last_seen)
            )
        return viewers


# ── Singleton Instance ────────────────────────────────────────────────────
presence_tracker = PresenceTracker()
