"""Snapshot of the signed-in user as reported by the identity backend."""

from __future__ import annotations

from pydantic import BaseModel

MODERATOR_ROLES = frozenset({"admin", "moderator"})


class AuthState(BaseModel):
    """Who is signed in, and whether onboarding is finished."""

    user_id: str | None = None
    is_authenticated: bool = False
    is_profile_complete: bool = False
    display_name: str | None = None
    role: str = "user"
    organization_id: str | None = None
    access_token: str | None = None

    @property
    def is_trackable(self) -> bool:
        """Sessions and screen views are only recorded for fully onboarded users."""
        return self.is_authenticated and self.is_profile_complete and bool(self.user_id)

    @property
    def is_moderator(self) -> bool:
        return self.role in MODERATOR_ROLES

    @classmethod
    def signed_out(cls) -> AuthState:
        return cls()
