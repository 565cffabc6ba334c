"""Session API endpoints. Target of the end-session beacon."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from remedygo.auth.dependencies import get_current_user_id
from remedygo.dependencies import get_store
from remedygo.errors import NotFound, PermissionDenied
from remedygo.sessions.schemas import SessionEndRequest, SessionResponse
from remedygo.sessions.service import close_session
from remedygo.store.base import RowStore

router = APIRouter(prefix="/api/v1", tags=["Sessions"])


@router.patch("/sessions/{session_id}", response_model=SessionResponse)
async def end_session(
    session_id: str,
    body: SessionEndRequest,
    user_id: str = Depends(get_current_user_id),
    store: RowStore = Depends(get_store),
):
    """Close a session. Only the owner may close it; closing twice is a no-op."""
    try:
        session, closed = await close_session(
            store,
            session_id,
            user_id,
            ended_at=body.ended_at,
            duration_seconds=body.duration_seconds,
        )
    except NotFound as e:
        raise HTTPException(status_code=404, detail=str(e)) from e
    except PermissionDenied as e:
        raise HTTPException(status_code=403, detail=str(e)) from e

    return SessionResponse(
        id=session["id"],
        user_id=session["user_id"],
        started_at=session["started_at"],
        ended_at=session["ended_at"],
        duration_seconds=session["duration_seconds"],
        already_ended=not closed,
    )
