"""Analytics event definitions.

Every event shares a common envelope:
{
    "kind": "<event_kind>",
    "event_id": "0b9f...",            # client-generated, used to deduplicate retries
    "user_id": "...",
    "occurred_at": "2026-10-19T12:00:00+00:00",
    ... kind-specific fields ...
}

``kind`` is the discriminator of the ``AnalyticsEvent`` union, so a payload
read back from the offline queue is revalidated into the right model.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter, field_validator


class EventKind(str, Enum):
    """All supported analytics event kinds."""

    SESSION_START = "session_start"
    SESSION_END = "session_end"
    SCREEN_VIEW = "screen_view"
    ASSET_EVENT = "asset_event"
    AI_QUERY = "ai_query"
    PROFILE_VIEW = "profile_view"
    DIRECTORY_SEARCH = "directory_search"
    NOTIFICATION_CLICK = "notification_click"


def new_event_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DeviceInfo(BaseModel):
    """Snapshot of the device a session runs on."""

    platform: str = "web"
    user_agent: str | None = None
    screen_width: int | None = None
    screen_height: int | None = None


class BaseEvent(BaseModel):
    """Common envelope for all analytics events."""

    table: ClassVar[str]

    event_id: str = Field(default_factory=new_event_id)
    user_id: str
    occurred_at: datetime = Field(default_factory=utcnow)

    def to_row(self) -> dict[str, Any]:
        """Row for the event's backend table."""
        row = self.model_dump(exclude={"kind", "occurred_at"})
        row["created_at"] = self.occurred_at
        return row


class SessionStartEvent(BaseEvent):
    table: ClassVar[str] = "user_sessions"

    kind: Literal["session_start"] = "session_start"
    device_info: DeviceInfo | None = None

    def to_row(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "user_id": self.user_id,
            "started_at": self.occurred_at,
            "device_info": self.device_info.model_dump() if self.device_info else None,
        }


class SessionEndEvent(BaseEvent):
    """Closing values for an existing session row (applied as an update)."""

    table: ClassVar[str] = "user_sessions"

    kind: Literal["session_end"] = "session_end"
    session_id: str
    duration_seconds: int = 0

    def to_row(self) -> dict[str, Any]:
        return {"ended_at": self.occurred_at, "duration_seconds": self.duration_seconds}


class ScreenViewEvent(BaseEvent):
    table: ClassVar[str] = "screen_views"

    kind: Literal["screen_view"] = "screen_view"
    screen_name: str
    session_id: str | None = None


class AssetInteractionEvent(BaseEvent):
    """View of, or click on, a library/training asset."""

    table: ClassVar[str] = "asset_events"

    kind: Literal["asset_event"] = "asset_event"
    asset_id: str
    asset_name: str | None = None
    category: str | None = None
    category_type: str | None = None
    event_type: Literal["view", "file_click", "link_click", "quiz_click"]


class AIQueryEvent(BaseEvent):
    table: ClassVar[str] = "ai_queries"

    kind: Literal["ai_query"] = "ai_query"
    query_text: str
    product_name: str | None = None


class ProfileViewEvent(BaseEvent):
    table: ClassVar[str] = "profile_views"

    kind: Literal["profile_view"] = "profile_view"
    viewed_user_id: str

    def to_row(self) -> dict[str, Any]:
        return {
            "event_id": self.event_id,
            "viewer_id": self.user_id,
            "viewed_user_id": self.viewed_user_id,
            "created_at": self.occurred_at,
        }


class DirectorySearchEvent(BaseEvent):
    table: ClassVar[str] = "directory_searches"

    kind: Literal["directory_search"] = "directory_search"
    search_query: str
    results_count: int | None = None

    @field_validator("search_query")
    @classmethod
    def _strip_query(cls, value: str) -> str:
        return value.strip()


class NotificationClickEvent(BaseEvent):
    table: ClassVar[str] = "notification_clicks"

    kind: Literal["notification_click"] = "notification_click"
    notification_id: str
    notification_type: str | None = None


AnalyticsEvent = Annotated[
    Union[
        SessionStartEvent,
        SessionEndEvent,
        ScreenViewEvent,
        AssetInteractionEvent,
        AIQueryEvent,
        ProfileViewEvent,
        DirectorySearchEvent,
        NotificationClickEvent,
    ],
    Field(discriminator="kind"),
]

_EVENT_ADAPTER: TypeAdapter[AnalyticsEvent] = TypeAdapter(AnalyticsEvent)


def parse_event(raw: dict[str, Any]) -> AnalyticsEvent:
    """Validate a raw dict (e.g. an offline queue payload) into its event model."""
    return _EVENT_ADAPTER.validate_python(raw)
