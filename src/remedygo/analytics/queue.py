"""Device-local offline queue for analytics events.

The queue is an append-only log in a local SQLite file. Each append is a
single-row insert with a monotonically increasing id. A drain reads a
snapshot, attempts each entry once, then deletes exactly the ids that were
delivered. Entries appended while a drain is in flight have ids the drain
never saw, so they cannot be lost by the drain's write-back.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import structlog
from sqlalchemy import JSON, DateTime, Integer, String, delete, func, select
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from remedygo.analytics.events import AnalyticsEvent
from remedygo.database import build_engine, build_session_factory

logger = structlog.get_logger()


class QueueBase(DeclarativeBase):
    pass


class OfflineQueueEntry(QueueBase):
    """One undelivered analytics event."""

    __tablename__ = "offline_queue"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    table_name: Mapped[str] = mapped_column(String(64), nullable=False)
    kind: Mapped[str] = mapped_column(String(32), nullable=False)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    enqueued_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


@dataclass(frozen=True)
class QueuedEvent:
    id: int
    table_name: str
    kind: str
    event_id: str
    payload: dict[str, Any]
    enqueued_at: datetime


@dataclass
class DrainResult:
    """Outcome of one drain cycle."""

    delivered: list[int] = field(default_factory=list)
    failed: list[int] = field(default_factory=list)

    @property
    def attempted(self) -> int:
        return len(self.delivered) + len(self.failed)


Deliver = Callable[[QueuedEvent], Awaitable[bool]]


class OfflineQueue:
    """Process-wide durable queue of undelivered analytics events."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine
        self._session_factory = build_session_factory(engine)
        self._drain_lock = asyncio.Lock()
        self._appended = 0
        self._drains = 0

    @classmethod
    def from_url(cls, url: str) -> OfflineQueue:
        return cls(build_engine(url))

    async def open(self) -> None:
        """Create the queue table if the local file is new."""
        async with self._engine.begin() as conn:
            await conn.run_sync(QueueBase.metadata.create_all)

    async def close(self) -> None:
        await self._engine.dispose()

    async def append(self, event: AnalyticsEvent) -> int:
        """Persist ``event`` at the tail of the queue. Returns its queue id."""
        entry = OfflineQueueEntry(
            table_name=event.table,
            kind=event.kind,
            event_id=event.event_id,
            payload=event.model_dump(mode="json"),
            enqueued_at=datetime.now(timezone.utc),
        )
        async with self._session_factory() as session:
            session.add(entry)
            await session.commit()

        self._appended += 1
        logger.debug("offline_queue_appended", queue_id=entry.id, kind=entry.kind, event_id=entry.event_id)
        return entry.id

    async def snapshot(self) -> list[QueuedEvent]:
        """All queued entries in queue order."""
        async with self._session_factory() as session:
            result = await session.execute(select(OfflineQueueEntry).order_by(OfflineQueueEntry.id.asc()))
            return [
                QueuedEvent(
                    id=row.id,
                    table_name=row.table_name,
                    kind=row.kind,
                    event_id=row.event_id,
                    payload=row.payload,
                    enqueued_at=row.enqueued_at,
                )
                for row in result.scalars()
            ]

    async def acknowledge(self, ids: list[int]) -> int:
        """Remove delivered entries by id. Returns the number removed."""
        if not ids:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(delete(OfflineQueueEntry).where(OfflineQueueEntry.id.in_(ids)))
            await session.commit()
            return result.rowcount

    async def size(self) -> int:
        async with self._session_factory() as session:
            result = await session.execute(select(func.count()).select_from(OfflineQueueEntry))
            return result.scalar_one()

    async def drain(self, deliver: Deliver) -> DrainResult:
        """Attempt every queued entry once, in queue order, keeping only failures.

        ``deliver`` returns True when the entry reached the backend. An
        exception from ``deliver`` counts as a failure for that entry only.
        Overlapping drains are serialized.
        """
        async with self._drain_lock:
            entries = await self.snapshot()
            result = DrainResult()
            if not entries:
                return result

            for entry in entries:
                try:
                    ok = await deliver(entry)
                except Exception:
                    logger.warning("offline_queue_delivery_error", queue_id=entry.id, kind=entry.kind, exc_info=True)
                    ok = False
                (result.delivered if ok else result.failed).append(entry.id)

            await self.acknowledge(result.delivered)
            self._drains += 1

            logger.info(
                "offline_queue_drained",
                delivered=len(result.delivered),
                failed=len(result.failed),
            )
            return result

    @property
    def stats(self) -> dict[str, int]:
        return {
            "appended": self._appended,
            "drains": self._drains,
        }
