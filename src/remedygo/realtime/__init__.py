"""Row-level change feed: in-process hub plus Redis pub/sub transport."""

from remedygo.realtime.hub import ChangeHub
from remedygo.realtime.schemas import ChangeEvent, ChangeType

__all__ = ["ChangeEvent", "ChangeHub", "ChangeType"]
