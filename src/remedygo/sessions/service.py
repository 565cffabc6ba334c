"""Server-side session closing (beacon target)."""

from __future__ import annotations

from datetime import datetime, timezone

import structlog

from remedygo.errors import NotFound, PermissionDenied
from remedygo.store.base import Row, RowStore

logger = structlog.get_logger()


async def close_session(
    store: RowStore,
    session_id: str,
    user_id: str,
    *,
    ended_at: datetime | None,
    duration_seconds: int,
) -> tuple[Row, bool]:
    """Close ``session_id`` on behalf of its owner.

    Returns the stored row and whether this call closed it. A session that is
    already closed is returned unchanged, so repeated beacons are harmless.
    """
    session = await store.get("user_sessions", session_id)
    if session is None:
        msg = "Session not found"
        raise NotFound(msg)
    if session["user_id"] != user_id:
        msg = "Not your session"
        raise PermissionDenied(msg)
    if session["ended_at"] is not None:
        return session, False

    if ended_at is None:
        ended_at = datetime.now(timezone.utc)
    elif ended_at.tzinfo is None:
        ended_at = ended_at.replace(tzinfo=timezone.utc)

    updated = await store.update(
        "user_sessions",
        {"ended_at": ended_at, "duration_seconds": duration_seconds},
        id=session_id,
        ended_at=None,
    )
    if not updated:
        # Closed concurrently between the read and the update.
        return await store.get("user_sessions", session_id) or session, False

    logger.info("session_closed_by_beacon", session_id=session_id, duration_seconds=duration_seconds)
    return updated[0], True
