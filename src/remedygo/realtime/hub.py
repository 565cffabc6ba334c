"""In-process change hub.

Tracks table subscriptions and fans change events out to their handlers.
Handlers run sequentially in subscription order on the event loop, so a
mutation's own subscribers have observed it by the time ``publish`` returns.
"""

from __future__ import annotations

import time
import uuid
from collections import defaultdict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

import structlog

from remedygo.realtime.schemas import ChangeEvent

logger = structlog.get_logger()

ChangeHandler = Callable[[ChangeEvent], Awaitable[None]]

WATCHED_TABLES = {
    "messages",
    "message_reactions",
    "chat_typing",
    "chat_members",
    "chats",
    "user_sessions",
}
ALL_TABLES = "*"


@dataclass
class Subscription:
    """A single handler registered for one table."""

    table: str
    handler: ChangeHandler
    subscribed_at: float = field(default_factory=time.time)
    events_delivered: int = 0
    failures: int = 0


class ChangeHub:
    """Routes change events to subscribers by table.

    Safe for asyncio via the single-threaded event loop.
    """

    def __init__(self) -> None:
        self._subscriptions: dict[str, Subscription] = {}  # sub_id -> subscription
        self._tables: dict[str, dict[str, None]] = defaultdict(dict)  # table -> ordered {sub_id}

    @property
    def subscription_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, table: str, handler: ChangeHandler) -> str:
        """Register ``handler`` for changes on ``table``. Returns a subscription id."""
        if table != ALL_TABLES and table not in WATCHED_TABLES:
            msg = f"Table is not watched by the change feed: {table}"
            raise ValueError(msg)

        sub_id = str(uuid.uuid4())
        self._subscriptions[sub_id] = Subscription(table=table, handler=handler)
        self._tables[table][sub_id] = None
        logger.debug("realtime_subscribed", sub_id=sub_id, table=table)
        return sub_id

    def unsubscribe(self, sub_id: str) -> bool:
        """Remove a subscription. Unknown ids are a no-op."""
        sub = self._subscriptions.pop(sub_id, None)
        if sub is None:
            return False

        self._tables[sub.table].pop(sub_id, None)
        if not self._tables[sub.table]:
            del self._tables[sub.table]
        return True

    async def publish(self, event: ChangeEvent) -> int:
        """Deliver ``event`` to every subscriber of its table (and wildcard subscribers).

        Returns the number of handlers that completed without raising.
        """
        sub_ids = list(self._tables.get(event.table, {})) + list(self._tables.get(ALL_TABLES, {}))
        if not sub_ids:
            return 0

        delivered = 0
        for sub_id in sub_ids:
            sub = self._subscriptions.get(sub_id)
            if sub is None:
                continue
            try:
                await sub.handler(event)
                sub.events_delivered += 1
                delivered += 1
            except Exception:
                sub.failures += 1
                logger.exception(
                    "realtime_handler_failed",
                    sub_id=sub_id,
                    table=event.table,
                    change=event.type.value,
                )

        return delivered

    def get_stats(self) -> dict:
        """Get subscription statistics."""
        return {
            "total_subscriptions": len(self._subscriptions),
            "tables": {table: len(subs) for table, subs in self._tables.items() if subs},
        }
