"""Maps route changes to canonical screen names and records screen views."""

from __future__ import annotations

from collections.abc import Callable

import structlog

from remedygo.analytics.client import AnalyticsClient
from remedygo.auth.state import AuthState

logger = structlog.get_logger()

SCREEN_NAMES: dict[str, str] = {
    "/home": "Home",
    "/profile": "Profile",
    "/edit-profile": "Edit Profile",
    "/notifications": "Notification Settings",
    "/directory": "Directory",
    "/directory-permissions": "Directory Permissions",
    "/library": "Library",
    "/training": "Training",
    "/manage-library": "Manage Library",
    "/manage-training": "Manage Training",
    "/updates": "Updates",
    "/manage-updates": "Manage Updates",
    "/manage-ai": "Manage AI",
    "/downloads": "Downloads",
    "/chat": "Chat",
    "/manage-chat": "Manage Chat",
    "/manage-users": "Manage Users",
    "/org-onboarding": "Organization Onboarding",
    "/manage-org-codes": "Manage Org Codes",
}

# Dynamic routes, checked in order after the static table.
PREFIX_RULES: tuple[tuple[str, str], ...] = (
    ("/chat/", "Chat Conversation"),
    ("/view-file/", "File Viewer"),
)

# Sign-in and onboarding flow; never tracked.
SKIP_ROUTES = frozenset({
    "/",
    "/signup",
    "/confirm-email",
    "/email-confirmed",
    "/forgot-password",
    "/reset-password",
    "/profile-complete",
    "/org-onboarding",
})


def screen_name_for(path: str) -> str | None:
    """Canonical screen name for ``path``, or None for routes that are not tracked."""
    if path in SKIP_ROUTES:
        return None
    name = SCREEN_NAMES.get(path)
    if name is not None:
        return name
    for prefix, prefix_name in PREFIX_RULES:
        if path.startswith(prefix):
            return prefix_name
    return path


class ScreenTracker:
    """Emits one screen view per change of canonical screen name."""

    def __init__(
        self,
        analytics: AnalyticsClient,
        auth: Callable[[], AuthState],
        session_id: Callable[[], str | None],
    ) -> None:
        self._analytics = analytics
        self._auth = auth
        self._session_id = session_id
        self.last_screen: str | None = None

    async def on_navigate(self, path: str) -> str | None:
        """Record a navigation to ``path``. Returns the screen name if a view was emitted."""
        auth = self._auth()
        if not auth.is_trackable:
            return None

        name = screen_name_for(path)
        if name is None or name == self.last_screen:
            return None

        self.last_screen = name
        await self._analytics.track_screen_view(auth.user_id, name, self._session_id())
        logger.debug("screen_view_tracked", screen=name, path=path)
        return name

    def reset(self) -> None:
        self.last_screen = None
