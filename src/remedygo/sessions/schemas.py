"""Pydantic schemas for the session endpoints."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class SessionEndRequest(BaseModel):
    ended_at: datetime | None = None
    duration_seconds: int = Field(default=0, ge=0)


class SessionResponse(BaseModel):
    id: str
    user_id: str
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    already_ended: bool = False
