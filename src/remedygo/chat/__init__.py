"""Real-time chat synchronization."""

from remedygo.chat.engine import ChatSyncEngine
from remedygo.chat.schemas import Attachment, ChatView, MemberView, MessageView, ReactionSummary, ReactionView

__all__ = [
    "Attachment",
    "ChatSyncEngine",
    "ChatView",
    "MemberView",
    "MessageView",
    "ReactionSummary",
    "ReactionView",
]
