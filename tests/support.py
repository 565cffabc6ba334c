"""Test helpers shared across test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from remedygo.auth.state import AuthState

ALICE = "00000000-0000-4000-8000-00000000a11c"
BOB = "00000000-0000-4000-8000-000000000b0b"
CAROL = "00000000-0000-4000-8000-0000000ca201"
DAVE = "00000000-0000-4000-8000-00000000da7e"
ORG = "00000000-0000-4000-8000-0000000000a9"


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, *, minutes: float = 0) -> datetime:
        self.now += timedelta(seconds=seconds, minutes=minutes)
        return self.now


def make_auth(user_id: str | None = ALICE, **overrides) -> AuthState:
    values = {
        "user_id": user_id,
        "is_authenticated": user_id is not None,
        "is_profile_complete": True,
        "display_name": "Alice",
        "organization_id": ORG,
    }
    values.update(overrides)
    return AuthState(**values)
