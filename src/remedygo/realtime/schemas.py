"""Change-feed envelope.

Every committed mutation on a watched table is described as:
{
    "table": "messages",
    "type": "INSERT" | "UPDATE" | "DELETE",
    "new": { ...row after the change... } | null,
    "old": { ...row before the change... } | null,
    "committed_at": "2026-10-19T12:00:00+00:00"
}
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ChangeType(str, Enum):
    INSERT = "INSERT"
    UPDATE = "UPDATE"
    DELETE = "DELETE"


class ChangeEvent(BaseModel):
    """One row-level change delivered by the feed."""

    table: str
    type: ChangeType
    new: dict[str, Any] | None = None
    old: dict[str, Any] | None = None
    committed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def row(self) -> dict[str, Any]:
        """The most relevant row image: ``new`` for inserts/updates, ``old`` for deletes."""
        if self.type == ChangeType.DELETE:
            return self.old or {}
        return self.new or {}
