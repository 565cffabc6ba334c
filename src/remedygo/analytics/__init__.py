"""Analytics events, offline queue and delivery client."""

from remedygo.analytics.client import AnalyticsClient
from remedygo.analytics.connectivity import Connectivity
from remedygo.analytics.events import AnalyticsEvent, DeviceInfo, EventKind, parse_event
from remedygo.analytics.queue import DrainResult, OfflineQueue

__all__ = [
    "AnalyticsClient",
    "AnalyticsEvent",
    "Connectivity",
    "DeviceInfo",
    "DrainResult",
    "EventKind",
    "OfflineQueue",
    "parse_event",
]
