"""Reaction grouping and read-receipt derivation."""

from datetime import datetime, timedelta, timezone

from remedygo.chat.reactions import is_read_by, read_by, summarize_reactions
from remedygo.chat.schemas import MemberView, MessageView, ReactionView

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _reaction(user_id: str, emoji: str, n: int = 0) -> ReactionView:
    return ReactionView(id=f"r-{user_id}-{emoji}-{n}", message_id="m-1", user_id=user_id, emoji=emoji)


def test_groups_by_emoji_in_first_seen_order() -> None:
    reactions = [_reaction("bob", "👍"), _reaction("carol", "❤️"), _reaction("alice", "👍")]

    summary = summarize_reactions(reactions, me="alice")

    assert [s.emoji for s in summary] == ["👍", "❤️"]
    assert summary[0].count == 2
    assert summary[0].user_ids == ["bob", "alice"]
    assert summary[0].reacted_by_me is True
    assert summary[1].reacted_by_me is False


def test_duplicate_user_counted_once() -> None:
    summary = summarize_reactions([_reaction("bob", "👍", 1), _reaction("bob", "👍", 2)])
    assert summary[0].count == 1


def test_no_reactions() -> None:
    assert summarize_reactions([]) == []


def _message() -> MessageView:
    return MessageView(id="m-1", chat_id="c-1", sender_id="alice", content="hi", created_at=T0)


def test_read_receipts_follow_watermarks() -> None:
    members = [
        MemberView(chat_id="c-1", user_id="alice", last_read_at=None),
        MemberView(chat_id="c-1", user_id="bob", last_read_at=T0),
        MemberView(chat_id="c-1", user_id="carol", last_read_at=T0 - timedelta(seconds=1)),
        MemberView(chat_id="c-1", user_id="dave", last_read_at=None),
    ]

    assert read_by(_message(), members) == ["bob"]
    assert is_read_by(_message(), members[0]) is True
    assert is_read_by(_message(), members[2]) is False
