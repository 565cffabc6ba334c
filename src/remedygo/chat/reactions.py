"""Reaction aggregation and read-receipt derivation."""

from __future__ import annotations

from collections.abc import Iterable

from remedygo.chat.schemas import MemberView, MessageView, ReactionSummary, ReactionView


def summarize_reactions(reactions: Iterable[ReactionView], me: str | None = None) -> list[ReactionSummary]:
    """Group reactions by emoji, in order of each emoji's first appearance."""
    by_emoji: dict[str, list[str]] = {}
    for reaction in reactions:
        users = by_emoji.setdefault(reaction.emoji, [])
        if reaction.user_id not in users:
            users.append(reaction.user_id)

    return [
        ReactionSummary(
            emoji=emoji,
            count=len(user_ids),
            user_ids=user_ids,
            reacted_by_me=me is not None and me in user_ids,
        )
        for emoji, user_ids in by_emoji.items()
    ]


def is_read_by(message: MessageView, member: MemberView) -> bool:
    """A member has read a message once their watermark reaches its timestamp."""
    if member.user_id == message.sender_id:
        return True
    return member.last_read_at is not None and member.last_read_at >= message.created_at


def read_by(message: MessageView, members: Iterable[MemberView]) -> list[str]:
    """Ids of members (other than the sender) who have read ``message``."""
    return [m.user_id for m in members if m.user_id != message.sender_id and is_read_by(message, m)]
