"""Fire-and-forget session-end transports.

When the app is backgrounded or the page is closing there is no time to wait
for a round trip. ``send`` schedules the write and returns at once; pending
sends are kept so shutdown can ``flush`` them.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol

import httpx
import structlog

from remedygo.analytics.events import SessionEndEvent
from remedygo.store.base import RowStore

logger = structlog.get_logger()


class SessionBeacon(Protocol):
    def send(self, event: SessionEndEvent) -> asyncio.Task[bool]: ...

    async def flush(self, timeout: float | None = None) -> int: ...


class _TaskTracker:
    """Keeps strong references to in-flight sends until they finish."""

    def __init__(self) -> None:
        self._pending: set[asyncio.Task[bool]] = set()

    def _track(self, task: asyncio.Task[bool]) -> asyncio.Task[bool]:
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._pending)

    async def flush(self, timeout: float | None = None) -> int:
        """Wait for in-flight sends. Returns how many were still pending at the timeout."""
        if not self._pending:
            return 0
        _, still_pending = await asyncio.wait(set(self._pending), timeout=timeout)
        if still_pending:
            logger.warning("session_beacon_flush_timeout", pending=len(still_pending))
        return len(still_pending)


class HttpBeacon(_TaskTracker):
    """PATCHes ``/api/v1/sessions/{id}`` on the engagement API."""

    def __init__(
        self,
        base_url: str,
        token_provider: Callable[[], str | None],
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__()
        self._token_provider = token_provider
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(base_url=base_url, timeout=timeout)

    def send(self, event: SessionEndEvent) -> asyncio.Task[bool]:
        # The token is read now: by the time the task runs the user may be signed out.
        token = self._token_provider()
        return self._track(asyncio.create_task(self._send(event, token)))

    async def _send(self, event: SessionEndEvent, token: str | None) -> bool:
        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            response = await self._client.patch(
                f"/api/v1/sessions/{event.session_id}",
                headers=headers,
                json={
                    "ended_at": event.occurred_at.isoformat(),
                    "duration_seconds": event.duration_seconds,
                },
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            # Best effort: the orphan sweep on next start closes sessions a lost beacon left open.
            logger.warning("session_beacon_failed", session_id=event.session_id, error=str(exc))
            return False

        logger.debug("session_beacon_sent", session_id=event.session_id, status=response.status_code)
        return True

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()


class StoreBeacon(_TaskTracker):
    """Applies the session end straight through the row store (in-process deployments)."""

    def __init__(self, store: RowStore) -> None:
        super().__init__()
        self._store = store

    def send(self, event: SessionEndEvent) -> asyncio.Task[bool]:
        return self._track(asyncio.create_task(self._send(event)))

    async def _send(self, event: SessionEndEvent) -> bool:
        try:
            updated = await self._store.update(
                "user_sessions",
                event.to_row(),
                id=event.session_id,
                ended_at=None,
            )
        except Exception:
            logger.warning("session_beacon_failed", session_id=event.session_id, exc_info=True)
            return False
        return bool(updated)
