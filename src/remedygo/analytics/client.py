"""Analytics client: typed event emission with offline fallback.

Writes go straight to the row store while the device is online. Offline, or
when the write fails, events are appended to the local offline
queue and replayed by ``process_offline_queue``. Every row carries the
client ``event_id`` and inserts ignore conflicts on it, so a replay of an
event the backend already has is a no-op.

Nothing in this module raises to the caller: analytics must never break the
feature that emitted it.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from pydantic import ValidationError

from remedygo.analytics.connectivity import Connectivity
from remedygo.analytics.events import (
    AIQueryEvent,
    AnalyticsEvent,
    AssetInteractionEvent,
    DeviceInfo,
    DirectorySearchEvent,
    NotificationClickEvent,
    ProfileViewEvent,
    ScreenViewEvent,
    SessionEndEvent,
    SessionStartEvent,
    parse_event,
    utcnow,
)
from remedygo.analytics.queue import DrainResult, OfflineQueue, QueuedEvent
from remedygo.store.base import RowStore

logger = structlog.get_logger()

Clock = Callable[[], datetime]

SESSIONS_TABLE = "user_sessions"


class AnalyticsClient:
    """Emits analytics events for the signed-in user."""

    def __init__(
        self,
        store: RowStore,
        queue: OfflineQueue,
        connectivity: Connectivity,
        *,
        clock: Clock = utcnow,
        orphan_session_max_seconds: int = 1800,
        orphan_session_scan_limit: int = 10,
    ) -> None:
        self._store = store
        self._queue = queue
        self._connectivity = connectivity
        self._clock = clock
        self._orphan_max = orphan_session_max_seconds
        self._orphan_scan_limit = orphan_session_scan_limit
        # session_id -> started_at, so ending a session needs no round trip
        self._session_starts: dict[str, datetime] = {}

    @property
    def queue(self) -> OfflineQueue:
        return self._queue

    # ── Delivery ──

    async def _deliver(self, event: AnalyticsEvent) -> None:
        if isinstance(event, SessionEndEvent):
            # ended_at=None keeps the first end authoritative
            await self._store.update(SESSIONS_TABLE, event.to_row(), id=event.session_id, ended_at=None)
            return
        await self._store.insert(event.table, event.to_row(), ignore_conflict_on=["event_id"])

    async def _enqueue(self, event: AnalyticsEvent) -> None:
        try:
            queue_id = await self._queue.append(event)
        except Exception:
            logger.exception("analytics_enqueue_failed", kind=event.kind, event_id=event.event_id)
            return
        logger.info("analytics_enqueued", kind=event.kind, event_id=event.event_id, queue_id=queue_id)

    async def emit(self, event: AnalyticsEvent) -> bool:
        """Send ``event`` now, or queue it for later.

        Returns True if the event reached the backend during this call.
        """
        if not self._connectivity.is_online:
            await self._enqueue(event)
            return False

        try:
            await self._deliver(event)
        except Exception as exc:
            logger.warning("analytics_write_failed", kind=event.kind, event_id=event.event_id, error=str(exc))
            await self._enqueue(event)
            return False

        logger.debug("analytics_emitted", kind=event.kind, event_id=event.event_id)
        return True

    async def _deliver_queued(self, entry: QueuedEvent) -> bool:
        try:
            event = parse_event(entry.payload)
        except ValidationError:
            # An entry that can never be delivered is acknowledged so it stops blocking the queue.
            logger.error("offline_queue_entry_invalid", queue_id=entry.id, kind=entry.kind)
            return True
        await self._deliver(event)
        return True

    async def process_offline_queue(self) -> DrainResult:
        """Replay queued events in order, keeping only the ones that fail again."""
        if not self._connectivity.is_online:
            logger.debug("offline_queue_drain_skipped", reason="offline")
            return DrainResult()
        try:
            return await self._queue.drain(self._deliver_queued)
        except Exception:
            logger.exception("offline_queue_drain_failed")
            return DrainResult()

    # ── Typed helpers ──

    async def track_screen_view(self, user_id: str, screen_name: str, session_id: str | None = None) -> bool:
        return await self.emit(
            ScreenViewEvent(user_id=user_id, screen_name=screen_name, session_id=session_id, occurred_at=self._clock())
        )

    async def track_asset_event(
        self,
        user_id: str,
        asset_id: str,
        event_type: str,
        *,
        asset_name: str | None = None,
        category: str | None = None,
        category_type: str | None = None,
    ) -> bool:
        """Log a view of, or click on, a library or training asset."""
        try:
            event = AssetInteractionEvent(
                user_id=user_id,
                asset_id=asset_id,
                asset_name=asset_name,
                category=category,
                category_type=category_type,
                event_type=event_type,
                occurred_at=self._clock(),
            )
        except ValidationError as exc:
            logger.warning("analytics_event_invalid", kind="asset_event", errors=exc.errors())
            return False
        return await self.emit(event)

    async def track_ai_query(self, user_id: str, query_text: str, product_name: str | None = None) -> bool:
        return await self.emit(
            AIQueryEvent(user_id=user_id, query_text=query_text, product_name=product_name, occurred_at=self._clock())
        )

    async def track_profile_view(self, viewer_id: str, viewed_user_id: str) -> bool:
        if viewer_id == viewed_user_id:
            return False
        return await self.emit(
            ProfileViewEvent(user_id=viewer_id, viewed_user_id=viewed_user_id, occurred_at=self._clock())
        )

    async def track_directory_search(
        self, user_id: str, search_query: str | None, results_count: int | None = None
    ) -> bool:
        if not search_query or not search_query.strip():
            return False
        return await self.emit(
            DirectorySearchEvent(
                user_id=user_id,
                search_query=search_query,
                results_count=results_count,
                occurred_at=self._clock(),
            )
        )

    async def track_notification_click(
        self, user_id: str, notification_id: str, notification_type: str | None = None
    ) -> bool:
        return await self.emit(
            NotificationClickEvent(
                user_id=user_id,
                notification_id=notification_id,
                notification_type=notification_type,
                occurred_at=self._clock(),
            )
        )

    # ── Sessions ──

    async def _close_orphaned_sessions(self, user_id: str) -> int:
        """Close sessions of ``user_id`` that were never ended, capping their duration."""
        try:
            orphans = await self._store.select(
                SESSIONS_TABLE,
                user_id=user_id,
                ended_at=None,
                order_by="-started_at",
                limit=self._orphan_scan_limit,
            )
            now = self._clock()
            for orphan in orphans:
                elapsed = int((now - orphan["started_at"]).total_seconds())
                duration = max(0, min(elapsed, self._orphan_max))
                await self._store.update(
                    SESSIONS_TABLE,
                    {
                        "ended_at": orphan["started_at"] + timedelta(seconds=duration),
                        "duration_seconds": duration,
                    },
                    id=orphan["id"],
                    ended_at=None,
                )
                self._session_starts.pop(orphan["id"], None)
        except Exception:
            logger.warning("orphan_session_cleanup_failed", user_id=user_id, exc_info=True)
            return 0

        if orphans:
            logger.info("orphan_sessions_closed", user_id=user_id, count=len(orphans))
        return len(orphans)

    async def record_session_start(self, user_id: str, device_info: DeviceInfo | None = None) -> str | None:
        """Insert a new session row. Returns its id, or None if it could not be written now.

        A start that cannot be written is queued instead. The replayed row has
        no live handle, so the orphan sweep of a later start closes it.
        """
        event = SessionStartEvent(user_id=user_id, device_info=device_info, occurred_at=self._clock())
        if not self._connectivity.is_online:
            await self._enqueue(event)
            return None

        await self._close_orphaned_sessions(user_id)

        try:
            row = await self._store.insert(SESSIONS_TABLE, event.to_row(), ignore_conflict_on=["event_id"])
        except Exception:
            logger.exception("session_start_failed", user_id=user_id)
            await self._enqueue(event)
            return None
        if row is None:
            return None

        self._session_starts[row["id"]] = row["started_at"]
        return row["id"]

    async def _session_started_at(self, session_id: str) -> datetime | None:
        started_at = self._session_starts.pop(session_id, None)
        if started_at is not None:
            return started_at
        session = await self._store.get(SESSIONS_TABLE, session_id)
        return session["started_at"] if session else None

    async def record_session_end(self, session_id: str, user_id: str) -> bool:
        """Close ``session_id`` with its measured duration.

        Returns True if the row was updated now. Offline, or when the update
        fails, the closing values are queued.
        """
        try:
            started_at = await self._session_started_at(session_id)
        except Exception:
            logger.exception("session_end_failed", session_id=session_id)
            return False
        if started_at is None:
            logger.warning("session_end_unknown_session", session_id=session_id)
            return False

        ended_at = self._clock()
        event = SessionEndEvent(
            user_id=user_id,
            session_id=session_id,
            duration_seconds=max(0, int((ended_at - started_at).total_seconds())),
            occurred_at=ended_at,
        )
        return await self.emit(event)

    def build_session_end(self, session_id: str, user_id: str) -> SessionEndEvent:
        """Closing values for a beacon send. Uses only the local start-time cache."""
        ended_at = self._clock()
        started_at = self._session_starts.pop(session_id, None)
        duration = int((ended_at - started_at).total_seconds()) if started_at else 0
        return SessionEndEvent(
            user_id=user_id,
            session_id=session_id,
            duration_seconds=max(0, duration),
            occurred_at=ended_at,
        )
