"""Typing presence as short leases.

A remote "is typing" row may never be followed by its delete (the other
client crashed, lost network). Each sighting grants a lease; reads drop
entries whose lease has run out.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

from remedygo.analytics.events import utcnow


@dataclass
class TypingLease:
    display_name: str
    expires_at: datetime


class TypingRegistry:
    """Per-chat map of typing users to their lease."""

    def __init__(self, lease_seconds: float = 4.0, clock: Callable[[], datetime] = utcnow) -> None:
        self._lease = timedelta(seconds=lease_seconds)
        self._clock = clock
        self._chats: dict[str, dict[str, TypingLease]] = {}

    def touch(self, chat_id: str, user_id: str, display_name: str) -> TypingLease:
        lease = TypingLease(display_name=display_name, expires_at=self._clock() + self._lease)
        self._chats.setdefault(chat_id, {})[user_id] = lease
        return lease

    def remove(self, chat_id: str, user_id: str) -> bool:
        leases = self._chats.get(chat_id)
        if not leases or user_id not in leases:
            return False
        del leases[user_id]
        if not leases:
            del self._chats[chat_id]
        return True

    def active(self, chat_id: str) -> dict[str, str]:
        """user_id -> display name for unexpired leases in ``chat_id``."""
        leases = self._chats.get(chat_id)
        if not leases:
            return {}

        now = self._clock()
        for user_id in [u for u, lease in leases.items() if lease.expires_at <= now]:
            del leases[user_id]
        if not leases:
            del self._chats[chat_id]
            return {}
        return {user_id: lease.display_name for user_id, lease in leases.items()}

    def clear(self) -> None:
        self._chats.clear()
