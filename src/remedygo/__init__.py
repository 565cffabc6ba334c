"""RemedyGo engagement core: sessions, offline-durable analytics and real-time chat sync."""

__version__ = "0.1.0"
