"""Session lifecycle state machine.

A session is either Closed (no id) or Open (one backend session id). The
host platform drives transitions:

    Closed --authenticated, onboarded, not backgrounded--> Open
    Open   --background / hidden / page unload--> Closed   (beacon, not awaited)
    Closed --foreground / visible--> Open                  (fresh session id)
    Open   --logout--> Closed                              (awaited end)

Coming back to the foreground always starts a new session. The elapsed time
in the background is measured against the threshold and logged, but both
branches behave the same: the previous session was already closed when the
app was backgrounded.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime

import structlog

from remedygo.analytics.client import AnalyticsClient
from remedygo.analytics.events import DeviceInfo, utcnow
from remedygo.auth.state import AuthState
from remedygo.sessions.beacon import SessionBeacon

logger = structlog.get_logger()

Clock = Callable[[], datetime]


class SessionManager:
    """Owns the current session id and the background transition record."""

    def __init__(
        self,
        analytics: AnalyticsClient,
        beacon: SessionBeacon,
        *,
        device_info: Callable[[], DeviceInfo] = DeviceInfo,
        clock: Clock = utcnow,
        background_threshold_seconds: int = 600,
    ) -> None:
        self._analytics = analytics
        self._beacon = beacon
        self._device_info = device_info
        self._clock = clock
        self._threshold = background_threshold_seconds

        self._auth = AuthState.signed_out()
        self._session_id: str | None = None
        self._session_user_id: str | None = None
        self.backgrounded_at: datetime | None = None
        self._start_lock = asyncio.Lock()

    @property
    def current_session_id(self) -> str | None:
        return self._session_id

    @property
    def is_open(self) -> bool:
        return self._session_id is not None

    @property
    def auth(self) -> AuthState:
        return self._auth

    # ── Transitions ──

    async def start_session(self) -> str | None:
        """Open a session for the signed-in user. Returns the session id or None on failure."""
        async with self._start_lock:
            if self._session_id is not None:
                return self._session_id

            user_id = self._auth.user_id
            if not self._auth.is_authenticated or not user_id:
                logger.debug("session_start_skipped", reason="not_authenticated")
                return None

            session_id = await self._analytics.record_session_start(user_id, self._device_info())
            if session_id is None:
                logger.warning("session_start_unavailable", user_id=user_id)
                return None

            self._session_id = session_id
            self._session_user_id = user_id
            logger.info("session_started", session_id=session_id, user_id=user_id)

            if self.backgrounded_at is not None:
                # Backgrounded while the start was in flight.
                self._fire_beacon("background")
                return None
            return session_id

    def _close_locally(self) -> tuple[str, str] | None:
        if self._session_id is None or self._session_user_id is None:
            return None
        closing = (self._session_id, self._session_user_id)
        self._session_id = None
        self._session_user_id = None
        return closing

    async def end_session(self) -> bool:
        """Close the open session and wait for the backend. No-op when Closed."""
        closing = self._close_locally()
        if closing is None:
            return False

        session_id, user_id = closing
        ended = await self._analytics.record_session_end(session_id, user_id)
        logger.info("session_ended", session_id=session_id, user_id=user_id, recorded=ended)
        return ended

    def _fire_beacon(self, reason: str) -> None:
        closing = self._close_locally()
        if closing is None:
            return

        session_id, user_id = closing
        self._beacon.send(self._analytics.build_session_end(session_id, user_id))
        logger.info("session_end_beacon", session_id=session_id, reason=reason)

    # ── Platform events ──

    async def on_auth_changed(self, auth: AuthState) -> str | None:
        """React to sign-in, onboarding completion and sign-out."""
        self._auth = auth

        if not auth.is_authenticated:
            await self.end_session()
            return None

        if auth.is_trackable and self._session_id is None and self.backgrounded_at is None:
            session_id = await self.start_session()
            await self._analytics.process_offline_queue()
            return session_id

        return self._session_id

    def on_background(self) -> None:
        """App backgrounded (native) or tab hidden (web)."""
        self.backgrounded_at = self._clock()
        if self._auth.is_trackable:
            self._fire_beacon("background")

    async def on_foreground(self) -> str | None:
        """App foregrounded (native) or tab visible (web)."""
        backgrounded_at = self.backgrounded_at
        self.backgrounded_at = None

        if not self._auth.is_trackable:
            return None

        if self._session_id is None:
            if backgrounded_at is None:
                logger.info("session_fresh_start", reason="no_background_record")
            else:
                elapsed = (self._clock() - backgrounded_at).total_seconds()
                if elapsed >= self._threshold:
                    logger.info("session_restart_after_long_background", background_seconds=int(elapsed))
                else:
                    logger.info("session_restart_after_short_background", background_seconds=int(elapsed))
            await self.start_session()

        await self._analytics.process_offline_queue()
        return self._session_id

    def on_page_unload(self) -> None:
        """Web tab closing or navigating away."""
        self._fire_beacon("page_unload")

    async def on_logout(self) -> None:
        await self.end_session()
        self._auth = AuthState.signed_out()
        self.backgrounded_at = None
