"""Pydantic views of chat state held by the sync engine."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, Field, TypeAdapter

MessageStatus = Literal["pending", "sent", "failed"]
MessageType = Literal["text", "image", "file"]

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_DATETIME = TypeAdapter(datetime)


def parse_timestamp(value: Any) -> datetime | None:
    """Datetime from a row value (feed payloads that crossed Redis carry ISO strings)."""
    if value is None:
        return None
    parsed = _DATETIME.validate_python(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class Attachment(BaseModel):
    """Uploaded file reference; the upload itself happens elsewhere."""

    url: str
    name: str | None = None
    type: str | None = None


class ReactionView(BaseModel):
    id: str
    message_id: str
    user_id: str
    emoji: str


class ReactionSummary(BaseModel):
    """All reactions with one emoji on one message."""

    emoji: str
    count: int
    user_ids: list[str]
    reacted_by_me: bool = False


class MemberView(BaseModel):
    chat_id: str
    user_id: str
    role: str = "member"
    last_read_at: datetime | None = None
    first_name: str | None = None
    last_name: str | None = None
    email: str | None = None
    profile_image_url: str | None = None

    @property
    def display_name(self) -> str:
        full = f"{self.first_name or ''} {self.last_name or ''}".strip()
        return full or self.email or "Unknown"


class ChatView(BaseModel):
    """A chat as seen by the signed-in member."""

    id: str
    name: str | None = None
    is_group: bool = False
    avatar_url: str | None = None
    created_by: str | None = None
    organization_id: str | None = None
    last_message_at: datetime | None = None
    last_message_preview: str | None = None
    created_at: datetime | None = None

    display_name: str | None = None
    display_avatar: str | None = None
    my_role: str = "member"
    is_pinned: bool = False
    is_archived: bool = False
    is_muted: bool = False
    last_read_at: datetime | None = None
    unread_count: int = 0
    members: list[MemberView] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.my_role == "admin"

    def other_members(self, user_id: str) -> list[MemberView]:
        return [m for m in self.members if m.user_id != user_id]

    def member(self, user_id: str) -> MemberView | None:
        for m in self.members:
            if m.user_id == user_id:
                return m
        return None


class MessageView(BaseModel):
    """A message plus its local delivery status."""

    id: str
    chat_id: str
    sender_id: str
    content: str | None = None
    message_type: MessageType = "text"
    file_url: str | None = None
    file_name: str | None = None
    file_type: str | None = None
    reply_to_id: str | None = None
    is_edited: bool = False
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime | None = None
    reactions: list[ReactionView] = Field(default_factory=list)

    status: MessageStatus = "sent"
    error: str | None = None

    def to_row(self) -> dict[str, Any]:
        return self.model_dump(exclude={"reactions", "status", "error"})
