"""Composition root for the engagement core.

``EngagementClient`` builds every service once and hands each one its
collaborators explicitly. The host app keeps a single instance and forwards
platform events to it (auth changes, lifecycle, navigation, network status).
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from remedygo.analytics.client import AnalyticsClient
from remedygo.analytics.connectivity import Connectivity
from remedygo.analytics.events import DeviceInfo, utcnow
from remedygo.analytics.queue import OfflineQueue
from remedygo.auth.state import AuthState
from remedygo.chat.engine import ChatSyncEngine
from remedygo.config import Settings, get_settings
from remedygo.database import build_engine
from remedygo.middleware.logging import setup_logging
from remedygo.navigation.screen_tracker import ScreenTracker
from remedygo.realtime.bridge import RedisChangeBridge, RedisChangePublisher
from remedygo.realtime.hub import ChangeHub
from remedygo.redis_client import close_redis, get_redis, init_redis
from remedygo.sessions.beacon import HttpBeacon, SessionBeacon
from remedygo.sessions.manager import SessionManager
from remedygo.store.base import RowStore
from remedygo.store.sql import SqlRowStore

logger = structlog.get_logger()


class EngagementClient:
    """Session tracking, offline analytics, screen tracking and chat sync for one device."""

    def __init__(
        self,
        store: RowStore,
        queue: OfflineQueue,
        hub: ChangeHub,
        beacon: SessionBeacon,
        *,
        settings: Settings | None = None,
        connectivity: Connectivity | None = None,
        device_info: Callable[[], DeviceInfo] = DeviceInfo,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.queue = queue
        self.hub = hub
        self.beacon = beacon
        self.connectivity = connectivity or Connectivity()
        self._auth = AuthState.signed_out()
        self._bridge: RedisChangeBridge | None = None
        self._bridge_task: asyncio.Task[None] | None = None

        self.analytics = AnalyticsClient(
            store,
            queue,
            self.connectivity,
            clock=clock,
            orphan_session_max_seconds=self.settings.orphan_session_max_seconds,
            orphan_session_scan_limit=self.settings.orphan_session_scan_limit,
        )
        self.sessions = SessionManager(
            self.analytics,
            beacon,
            device_info=device_info,
            clock=clock,
            background_threshold_seconds=self.settings.background_threshold_seconds,
        )
        self.screens = ScreenTracker(self.analytics, self.get_auth, lambda: self.sessions.current_session_id)
        self.chat = ChatSyncEngine(
            store,
            self.get_auth,
            clock=clock,
            typing_lease_seconds=self.settings.typing_lease_seconds,
            typing_auto_clear_seconds=self.settings.typing_auto_clear_seconds,
            message_page_size=self.settings.message_page_size,
            message_preview_length=self.settings.message_preview_length,
        )

        self.connectivity.on_reconnect(self.analytics.process_offline_queue)

    @classmethod
    async def from_settings(cls, settings: Settings | None = None, **kwargs) -> EngagementClient:
        """Build a client wired to the configured backend, Redis change feed and beacon endpoint."""
        settings = settings or get_settings()
        setup_logging(settings)
        await init_redis(settings.redis_url)
        hub = ChangeHub()
        store = SqlRowStore(build_engine(settings.database_url), RedisChangePublisher(get_redis()))
        queue = OfflineQueue.from_url(settings.offline_queue_url)

        client: EngagementClient
        beacon = HttpBeacon(
            settings.api_base_url,
            lambda: client.get_auth().access_token,
            timeout=settings.beacon_timeout_seconds,
        )
        client = cls(store, queue, hub, beacon, settings=settings, **kwargs)
        client._bridge = RedisChangeBridge(get_redis(), hub)
        return client

    def get_auth(self) -> AuthState:
        return self._auth

    # ── Lifecycle ──

    async def start(self) -> None:
        await self.queue.open()
        self.chat.start(self.hub)
        if self._bridge is not None:
            self._bridge_task = asyncio.create_task(self._bridge.start())
        logger.info("engagement_client_started", queued=await self.queue.size())

    async def close(self) -> None:
        self.chat.stop()
        await self.beacon.flush(self.settings.beacon_timeout_seconds)

        if self._bridge is not None and self._bridge_task is not None:
            await self._bridge.stop()
            self._bridge_task.cancel()
            try:
                await self._bridge_task
            except asyncio.CancelledError:
                pass
            self._bridge_task = None
            await close_redis()

        if isinstance(self.beacon, HttpBeacon):
            await self.beacon.aclose()
        if isinstance(self.store, SqlRowStore):
            await self.store.dispose()
        await self.queue.close()
        logger.info("engagement_client_closed")

    # ── Platform events ──

    async def set_auth(self, auth: AuthState) -> str | None:
        """Forward an auth change. Returns the open session id, if any."""
        previous = self._auth
        self._auth = auth
        if not auth.is_authenticated or auth.user_id != previous.user_id:
            self.chat.reset()
            self.screens.reset()
        return await self.sessions.on_auth_changed(auth)

    async def logout(self) -> None:
        await self.sessions.on_logout()
        self._auth = AuthState.signed_out()
        self.chat.reset()
        self.screens.reset()

    def on_background(self) -> None:
        self.sessions.on_background()

    async def on_foreground(self) -> str | None:
        return await self.sessions.on_foreground()

    def on_page_unload(self) -> None:
        self.sessions.on_page_unload()

    async def on_navigate(self, path: str) -> str | None:
        return await self.screens.on_navigate(path)

    async def set_online(self, online: bool) -> None:
        await self.connectivity.set_online(online)
