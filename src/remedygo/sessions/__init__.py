"""Session lifecycle tracking."""

from remedygo.sessions.beacon import HttpBeacon, StoreBeacon
from remedygo.sessions.manager import SessionManager

__all__ = ["HttpBeacon", "SessionManager", "StoreBeacon"]
