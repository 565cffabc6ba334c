"""Network reachability as reported by the host platform."""

from __future__ import annotations

from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()

ReconnectCallback = Callable[[], Awaitable[object]]


class Connectivity:
    """Tracks online/offline state and notifies listeners when the device reconnects.

    ``was_offline`` stays set after a reconnect until the UI acknowledges it
    (used for a "back online" banner).
    """

    def __init__(self, online: bool = True) -> None:
        self._online = online
        self.was_offline = False
        self._listeners: list[ReconnectCallback] = []

    @property
    def is_online(self) -> bool:
        return self._online

    def on_reconnect(self, callback: ReconnectCallback) -> None:
        self._listeners.append(callback)

    async def set_online(self, online: bool) -> None:
        """Record a platform network status change."""
        if online == self._online:
            return

        self._online = online
        if not online:
            self.was_offline = True
            logger.info("connectivity_lost")
            return

        logger.info("connectivity_restored", listeners=len(self._listeners))
        for callback in list(self._listeners):
            try:
                await callback()
            except Exception:
                logger.exception("reconnect_callback_failed")

    def acknowledge_reconnect(self) -> None:
        self.was_offline = False
