"""Chat synchronization engine.

Holds the signed-in member's chat list, the active chat's message history,
typing presence and reactions, and keeps them consistent with the backend.
Two writers touch this state: the engine's own operations (optimistic, then
confirmed) and the change feed. Both reconcile by row id, so a message or
reaction observed twice is stored once.

Mutating operations raise ``StoreError`` when the backend fails and
``PermissionDenied`` / ``InvalidOperation`` / ``NotFound`` before any remote
call when the rule can be checked locally.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog

from remedygo.analytics.events import utcnow
from remedygo.auth.state import AuthState
from remedygo.chat.reactions import is_read_by, read_by, summarize_reactions
from remedygo.chat.schemas import (
    EPOCH,
    Attachment,
    ChatView,
    MemberView,
    MessageView,
    ReactionSummary,
    ReactionView,
    parse_timestamp,
)
from remedygo.chat.typing import TypingRegistry
from remedygo.db.models import new_id
from remedygo.errors import InvalidOperation, NotFound, PermissionDenied
from remedygo.realtime.hub import ChangeHub
from remedygo.realtime.schemas import ChangeEvent, ChangeType
from remedygo.store.base import Row, RowStore

logger = structlog.get_logger()

Clock = Callable[[], datetime]

FILE_PREVIEW = "Sent a file"
MESSAGE_TYPES = ("text", "image", "file")


def _chat_sort_key(chat: ChatView) -> tuple[int, float]:
    # Pinned first, then most recent activity first.
    last = chat.last_message_at or chat.created_at or EPOCH
    return (0 if chat.is_pinned else 1, -last.timestamp())


def _later(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


class ChatSyncEngine:
    """Chat state for one signed-in member."""

    def __init__(
        self,
        store: RowStore,
        auth: Callable[[], AuthState],
        *,
        clock: Clock = utcnow,
        typing_lease_seconds: float = 4.0,
        typing_auto_clear_seconds: float = 3.0,
        message_page_size: int = 50,
        message_preview_length: int = 100,
    ) -> None:
        self._store = store
        self._auth = auth
        self._clock = clock
        self._auto_clear_seconds = typing_auto_clear_seconds
        self._page_size = message_page_size
        self._preview_length = message_preview_length

        self._chats: dict[str, ChatView] = {}
        self.active_chat_id: str | None = None
        self._messages: list[MessageView] = []
        self._outbox: dict[str, MessageView] = {}  # unconfirmed sends, by message id
        self.available_users: list[Row] = []

        self.typing = TypingRegistry(typing_lease_seconds, clock)
        self._typing_in: set[str] = set()
        self._typing_timers: dict[str, asyncio.Task[None]] = {}

        self._subscriptions: list[str] = []
        self._hub: ChangeHub | None = None

    # ── State access ──

    @property
    def chats(self) -> list[ChatView]:
        return sorted(self._chats.values(), key=_chat_sort_key)

    @property
    def messages(self) -> list[MessageView]:
        return list(self._messages)

    @property
    def total_unread(self) -> int:
        return sum(c.unread_count for c in self._chats.values() if not c.is_archived)

    def get_chat(self, chat_id: str) -> ChatView | None:
        return self._chats.get(chat_id)

    def get_message(self, message_id: str) -> MessageView | None:
        for message in self._messages:
            if message.id == message_id:
                return message
        return self._outbox.get(message_id)

    def _me(self) -> str:
        auth = self._auth()
        if not auth.is_authenticated or not auth.user_id:
            msg = "Not signed in"
            raise PermissionDenied(msg)
        return auth.user_id

    def _require_chat(self, chat_id: str) -> ChatView:
        chat = self._chats.get(chat_id)
        if chat is None:
            msg = "Not a member of this chat"
            raise PermissionDenied(msg)
        return chat

    def _require_group_admin(self, chat_id: str) -> ChatView:
        chat = self._require_chat(chat_id)
        if not chat.is_group:
            msg = "Only group chats can be managed"
            raise InvalidOperation(msg)
        if not chat.is_admin:
            msg = "Only chat admins can manage members"
            raise PermissionDenied(msg)
        return chat

    def _preview(self, content: str | None) -> str:
        return content[: self._preview_length] if content else FILE_PREVIEW

    # ── Local message list ──

    def _upsert_local_message(self, message: MessageView) -> MessageView:
        for i, existing in enumerate(self._messages):
            if existing.id == message.id:
                if not message.reactions:
                    message = message.model_copy(update={"reactions": existing.reactions})
                self._messages[i] = message
                return message
        self._messages.append(message)
        self._messages.sort(key=lambda m: m.created_at)
        return message

    def _remove_local_message(self, message_id: str) -> None:
        self._messages = [m for m in self._messages if m.id != message_id]
        self._outbox.pop(message_id, None)

    def _set_reactions(self, message_id: str, reactions: list[ReactionView]) -> None:
        for i, message in enumerate(self._messages):
            if message.id == message_id:
                self._messages[i] = message.model_copy(update={"reactions": reactions})
                return

    def _add_local_reaction(self, reaction: ReactionView) -> None:
        message = self.get_message(reaction.message_id)
        if message is None or any(r.id == reaction.id for r in message.reactions):
            return
        self._set_reactions(message.id, [*message.reactions, reaction])

    def _remove_local_reaction(self, message_id: str, reaction_id: str) -> None:
        message = self.get_message(message_id)
        if message is None:
            return
        self._set_reactions(message_id, [r for r in message.reactions if r.id != reaction_id])

    # ── Loading ──

    async def fetch_available_users(self) -> list[Row]:
        """Active users the member can start a chat with (same organization only)."""
        me = self._me()
        filters: dict[str, Any] = {"id__ne": me, "is_active": True}
        org_id = self._auth().organization_id
        if org_id:
            filters["organization_id"] = org_id

        self.available_users = await self._store.select("users", order_by="first_name", **filters)
        return self.available_users

    async def fetch_chats(self) -> list[ChatView]:
        """Reload the chat list with members, previews and unread counts."""
        me = self._me()
        memberships = await self._store.select("chat_members", user_id=me, left_at=None)
        if not memberships:
            self._chats = {}
            return []

        chat_ids = [m["chat_id"] for m in memberships]
        chat_rows = {c["id"]: c for c in await self._store.select("chats", id__in=chat_ids)}
        all_members = await self._store.select("chat_members", chat_id__in=chat_ids, left_at=None)
        users = {
            u["id"]: u
            for u in await self._store.select("users", id__in=list({m["user_id"] for m in all_members}))
        }
        incoming = await self._store.select(
            "messages",
            chat_id__in=chat_ids,
            sender_id__ne=me,
            is_deleted=False,
        )

        chats: dict[str, ChatView] = {}
        for membership in memberships:
            chat_row = chat_rows.get(membership["chat_id"])
            if chat_row is None:
                continue
            chat_id = chat_row["id"]
            previous = self._chats.get(chat_id)

            members = []
            for m in all_members:
                if m["chat_id"] != chat_id:
                    continue
                user = users.get(m["user_id"], {})
                member = MemberView(
                    chat_id=chat_id,
                    user_id=m["user_id"],
                    role=m["role"],
                    last_read_at=m["last_read_at"],
                    first_name=user.get("first_name"),
                    last_name=user.get("last_name"),
                    email=user.get("email"),
                    profile_image_url=user.get("profile_image_url"),
                )
                known = previous.member(member.user_id) if previous else None
                if known is not None:
                    member.last_read_at = _later(known.last_read_at, member.last_read_at)
                members.append(member)

            last_read_at = membership["last_read_at"]
            if previous is not None:
                last_read_at = _later(previous.last_read_at, last_read_at)
            watermark = last_read_at or EPOCH
            unread = sum(1 for msg in incoming if msg["chat_id"] == chat_id and msg["created_at"] > watermark)

            chat = ChatView(
                **{k: v for k, v in chat_row.items() if k in ChatView.model_fields},
                my_role=membership["role"],
                is_pinned=membership["is_pinned"],
                is_archived=membership["is_archived"],
                is_muted=membership["is_muted"],
                last_read_at=last_read_at,
                unread_count=unread,
                members=members,
            )
            chat.display_name = chat.name
            chat.display_avatar = chat.avatar_url
            others = chat.other_members(me)
            if not chat.is_group and len(others) == 1:
                chat.display_name = others[0].display_name
                chat.display_avatar = others[0].profile_image_url
            chats[chat_id] = chat

        self._chats = chats
        logger.debug("chats_fetched", count=len(chats), total_unread=self.total_unread)
        return self.chats

    async def fetch_messages(self, chat_id: str, limit: int | None = None) -> list[MessageView]:
        """Load the latest ``limit`` messages of ``chat_id`` and mark the chat read."""
        limit = limit or self._page_size
        rows = await self._store.select(
            "messages",
            chat_id=chat_id,
            is_deleted=False,
            order_by="-created_at",
            limit=limit,
        )
        rows.reverse()

        reactions: dict[str, list[ReactionView]] = {}
        if rows:
            for r in await self._store.select(
                "message_reactions",
                message_id__in=[row["id"] for row in rows],
                order_by="created_at",
            ):
                reactions.setdefault(r["message_id"], []).append(ReactionView.model_validate(r))

        loaded = [MessageView(**row, reactions=reactions.get(row["id"], [])) for row in rows]
        loaded_ids = {m.id for m in loaded}
        unconfirmed = [m for m in self._outbox.values() if m.chat_id == chat_id and m.id not in loaded_ids]

        self.active_chat_id = chat_id
        self._messages = sorted([*loaded, *unconfirmed], key=lambda m: m.created_at)

        if chat_id in self._chats:
            await self.mark_chat_as_read(chat_id)
        return self.messages

    async def set_active_chat(self, chat_id: str | None) -> list[MessageView]:
        if chat_id is None:
            self.active_chat_id = None
            self._messages = []
            return []
        return await self.fetch_messages(chat_id)

    async def mark_chat_as_read(self, chat_id: str) -> datetime:
        """Advance the member's read watermark to now. The watermark never moves back."""
        me = self._me()
        chat = self._require_chat(chat_id)
        watermark = _later(chat.last_read_at, self._clock())

        await self._store.update("chat_members", {"last_read_at": watermark}, chat_id=chat_id, user_id=me)

        chat.last_read_at = watermark
        chat.unread_count = 0
        member = chat.member(me)
        if member is not None:
            member.last_read_at = _later(member.last_read_at, watermark)
        return watermark

    # ── Chats ──

    async def create_chat(
        self,
        member_ids: list[str],
        is_group: bool = False,
        name: str | None = None,
    ) -> ChatView:
        """Create a chat in the member's organization. An existing 1:1 chat is reused."""
        me = self._me()
        others = list(dict.fromkeys(m for m in member_ids if m != me))
        if not others:
            msg = "A chat needs at least one other member"
            raise InvalidOperation(msg)

        if not is_group:
            if len(others) != 1:
                msg = "A direct chat has exactly one other member"
                raise InvalidOperation(msg)
            for chat in self._chats.values():
                if not chat.is_group and any(m.user_id == others[0] for m in chat.other_members(me)):
                    return chat

        chat_row = await self._store.insert(
            "chats",
            {
                "name": name if is_group else None,
                "is_group": is_group,
                "created_by": me,
                "organization_id": self._auth().organization_id,
                "created_at": self._clock(),
            },
        )
        for user_id in [me, *others]:
            await self._store.insert(
                "chat_members",
                {
                    "chat_id": chat_row["id"],
                    "user_id": user_id,
                    "role": "admin" if user_id == me else "member",
                    "added_by": me,
                    "joined_at": self._clock(),
                },
            )

        logger.info("chat_created", chat_id=chat_row["id"], is_group=is_group, members=len(others) + 1)
        await self.fetch_chats()
        return self._chats[chat_row["id"]]

    async def _toggle_preference(self, chat_id: str, field: str) -> bool:
        me = self._me()
        chat = self._require_chat(chat_id)
        value = not getattr(chat, field)
        await self._store.update("chat_members", {field: value}, chat_id=chat_id, user_id=me)
        setattr(chat, field, value)
        return value

    async def toggle_pin(self, chat_id: str) -> bool:
        return await self._toggle_preference(chat_id, "is_pinned")

    async def toggle_mute(self, chat_id: str) -> bool:
        return await self._toggle_preference(chat_id, "is_muted")

    async def toggle_archive(self, chat_id: str) -> bool:
        return await self._toggle_preference(chat_id, "is_archived")

    async def leave_chat(self, chat_id: str) -> None:
        me = self._me()
        self._require_chat(chat_id)
        await self._store.update(
            "chat_members", {"left_at": self._clock()}, chat_id=chat_id, user_id=me, left_at=None
        )
        self._forget_chat(chat_id)

    def _forget_chat(self, chat_id: str) -> None:
        self._chats.pop(chat_id, None)
        if self.active_chat_id == chat_id:
            self.active_chat_id = None
            self._messages = []

    async def update_group_name(self, chat_id: str, name: str) -> ChatView:
        chat = self._require_group_admin(chat_id)
        name = name.strip()
        if not name:
            msg = "Group name cannot be empty"
            raise InvalidOperation(msg)

        await self._store.update("chats", {"name": name}, id=chat_id)
        chat.name = name
        chat.display_name = name
        return chat

    async def add_members(self, chat_id: str, member_ids: list[str]) -> ChatView:
        me = self._me()
        chat = self._require_group_admin(chat_id)
        current = {m.user_id for m in chat.members}

        for user_id in dict.fromkeys(member_ids):
            if user_id in current:
                continue
            # Upsert so a member who left earlier is re-admitted.
            await self._store.upsert(
                "chat_members",
                {
                    "chat_id": chat_id,
                    "user_id": user_id,
                    "role": "member",
                    "added_by": me,
                    "joined_at": self._clock(),
                    "left_at": None,
                },
                conflict_on=["chat_id", "user_id"],
            )

        await self.fetch_chats()
        return self._chats[chat_id]

    async def remove_member(self, chat_id: str, member_id: str) -> ChatView:
        me = self._me()
        self._require_group_admin(chat_id)
        if member_id == me:
            msg = "Use leave_chat to leave a chat"
            raise InvalidOperation(msg)

        removed = await self._store.update(
            "chat_members", {"left_at": self._clock()}, chat_id=chat_id, user_id=member_id, left_at=None
        )
        if not removed:
            msg = "Member not found in this chat"
            raise NotFound(msg)

        await self.fetch_chats()
        return self._chats[chat_id]

    async def report_chat(
        self,
        chat_id: str,
        message_id: str | None = None,
        reason: str | None = None,
        description: str | None = None,
    ) -> Row:
        """File a moderation report against a chat or one of its messages."""
        me = self._me()
        self._require_chat(chat_id)

        reported_user_id = None
        if message_id is not None:
            message = self.get_message(message_id) or await self._fetch_message(message_id)
            reported_user_id = message.sender_id

        report = await self._store.insert(
            "chat_reports",
            {
                "chat_id": chat_id,
                "message_id": message_id,
                "reported_by": me,
                "reported_user_id": reported_user_id,
                "reason": reason,
                "description": description,
                "status": "open",
                "created_at": self._clock(),
            },
        )
        logger.info("chat_reported", chat_id=chat_id, message_id=message_id, report_id=report["id"])
        return report

    # ── Messages ──

    async def _fetch_message(self, message_id: str) -> MessageView:
        row = await self._store.get("messages", message_id)
        if row is None:
            msg = "Message not found"
            raise NotFound(msg)
        return MessageView(**row)

    async def send_message(
        self,
        chat_id: str,
        content: str | None,
        message_type: str = "text",
        attachment: Attachment | None = None,
        reply_to_id: str | None = None,
    ) -> MessageView:
        """Send a message. It is visible at once as ``pending``, then ``sent`` or ``failed``."""
        me = self._me()
        self._require_chat(chat_id)
        if message_type not in MESSAGE_TYPES:
            msg = f"Unsupported message type: {message_type}"
            raise InvalidOperation(msg)
        if not (content and content.strip()) and attachment is None:
            msg = "A message needs content or an attachment"
            raise InvalidOperation(msg)

        message = MessageView(
            id=new_id(),
            chat_id=chat_id,
            sender_id=me,
            content=content,
            message_type=message_type,
            file_url=attachment.url if attachment else None,
            file_name=attachment.name if attachment else None,
            file_type=attachment.type if attachment else None,
            reply_to_id=reply_to_id,
            created_at=self._clock(),
            status="pending",
        )
        sent = await self._deliver(message)
        try:
            await self.clear_typing(chat_id)
        except Exception as exc:
            logger.warning("typing_clear_failed", chat_id=chat_id, message_id=sent.id, error=str(exc))
        return sent

    async def retry_message(self, message_id: str) -> MessageView:
        """Send a failed message again under the same id."""
        message = self._outbox.get(message_id)
        if message is None:
            msg = "No unsent message with this id"
            raise NotFound(msg)
        if message.status != "failed":
            msg = "Only failed messages can be retried"
            raise InvalidOperation(msg)
        return await self._deliver(message.model_copy(update={"status": "pending", "error": None}))

    async def _deliver(self, message: MessageView) -> MessageView:
        self._outbox[message.id] = message
        if message.chat_id == self.active_chat_id:
            self._upsert_local_message(message)

        try:
            row = await self._store.insert("messages", message.to_row(), ignore_conflict_on=["id"])
            if row is None:
                # An earlier attempt reached the backend after all.
                row = await self._store.get("messages", message.id)
        except Exception as exc:
            failed = message.model_copy(update={"status": "failed", "error": str(exc)})
            self._outbox[message.id] = failed
            if message.chat_id == self.active_chat_id:
                self._upsert_local_message(failed)
            logger.warning("message_send_failed", message_id=message.id, chat_id=message.chat_id, error=str(exc))
            raise

        self._outbox.pop(message.id, None)
        sent = MessageView(**row, reactions=message.reactions, status="sent")
        if sent.chat_id == self.active_chat_id:
            sent = self._upsert_local_message(sent)
        self._apply_preview(sent)

        try:
            await self._store.update(
                "chats",
                {"last_message_at": sent.created_at, "last_message_preview": self._preview(sent.content)},
                id=sent.chat_id,
            )
        except Exception as exc:
            logger.warning("chat_preview_update_failed", chat_id=sent.chat_id, error=str(exc))

        logger.debug("message_sent", message_id=sent.id, chat_id=sent.chat_id)
        return sent

    def _apply_preview(self, message: MessageView) -> None:
        chat = self._chats.get(message.chat_id)
        if chat is None:
            return
        if chat.last_message_at is None or message.created_at >= chat.last_message_at:
            chat.last_message_at = message.created_at
            chat.last_message_preview = self._preview(message.content)

    async def edit_message(self, message_id: str, content: str) -> MessageView:
        me = self._me()
        message = self.get_message(message_id) or await self._fetch_message(message_id)
        if message.sender_id != me:
            msg = "Only the sender can edit a message"
            raise PermissionDenied(msg)
        if message.is_deleted:
            msg = "Deleted messages cannot be edited"
            raise InvalidOperation(msg)

        updated = await self._store.update(
            "messages",
            {"content": content, "is_edited": True, "updated_at": self._clock()},
            id=message_id,
            sender_id=me,
        )
        if not updated:
            msg = "Message not found"
            raise NotFound(msg)

        edited = MessageView(**updated[0], reactions=message.reactions)
        if edited.chat_id == self.active_chat_id:
            edited = self._upsert_local_message(edited)
        return edited

    async def delete_message(self, message_id: str) -> None:
        """Soft-delete a message. Allowed for its sender and for moderators."""
        me = self._me()
        message = self.get_message(message_id) or await self._fetch_message(message_id)
        if message.sender_id != me and not self._auth().is_moderator:
            msg = "Only the sender or a moderator can delete a message"
            raise PermissionDenied(msg)

        updated = await self._store.update(
            "messages",
            {"is_deleted": True, "deleted_at": self._clock(), "content": None},
            id=message_id,
        )
        if not updated:
            msg = "Message not found"
            raise NotFound(msg)
        self._remove_local_message(message_id)

    # ── Reactions ──

    def _my_reaction(self, message_id: str, emoji: str) -> ReactionView | None:
        me = self._me()
        message = self.get_message(message_id)
        if message is None:
            return None
        for reaction in message.reactions:
            if reaction.user_id == me and reaction.emoji == emoji:
                return reaction
        return None

    async def add_reaction(self, message_id: str, emoji: str) -> ReactionView:
        """React with ``emoji``. Reacting twice with the same emoji keeps one reaction."""
        me = self._me()
        existing = self._my_reaction(message_id, emoji)
        if existing is not None:
            return existing

        row = await self._store.insert(
            "message_reactions",
            {"message_id": message_id, "user_id": me, "emoji": emoji, "created_at": self._clock()},
            ignore_conflict_on=["message_id", "user_id", "emoji"],
        )
        if row is None:
            rows = await self._store.select(
                "message_reactions", message_id=message_id, user_id=me, emoji=emoji, limit=1
            )
            row = rows[0]

        reaction = ReactionView.model_validate(row)
        self._add_local_reaction(reaction)
        return reaction

    async def remove_reaction(self, message_id: str, emoji: str) -> bool:
        me = self._me()
        removed = await self._store.delete("message_reactions", message_id=message_id, user_id=me, emoji=emoji)
        for row in removed:
            self._remove_local_reaction(message_id, row["id"])
        return bool(removed)

    async def toggle_reaction(self, message_id: str, emoji: str) -> bool:
        """Add the reaction if absent, remove it if present. Returns whether it is now present."""
        if self._my_reaction(message_id, emoji) is not None:
            await self.remove_reaction(message_id, emoji)
            return False
        await self.add_reaction(message_id, emoji)
        return True

    def reaction_summary(self, message: MessageView | str) -> list[ReactionSummary]:
        if isinstance(message, str):
            found = self.get_message(message)
            if found is None:
                return []
            message = found
        auth = self._auth()
        return summarize_reactions(message.reactions, auth.user_id)

    # ── Read receipts ──

    def is_read_by(self, message: MessageView, member_id: str) -> bool:
        chat = self._chats.get(message.chat_id)
        member = chat.member(member_id) if chat else None
        return member is not None and is_read_by(message, member)

    def read_by(self, message: MessageView) -> list[str]:
        chat = self._chats.get(message.chat_id)
        return read_by(message, chat.members) if chat else []

    # ── Typing ──

    async def set_typing(self, chat_id: str) -> None:
        """Announce that the member is typing. Cleared automatically after a short pause."""
        me = self._me()
        if chat_id in self._typing_in:
            return
        self._typing_in.add(chat_id)

        await self._store.upsert(
            "chat_typing",
            {
                "chat_id": chat_id,
                "user_id": me,
                "display_name": self._auth().display_name,
                "started_at": self._clock(),
            },
            conflict_on=["chat_id", "user_id"],
        )

        timer = self._typing_timers.pop(chat_id, None)
        if timer is not None:
            timer.cancel()
        self._typing_timers[chat_id] = asyncio.create_task(self._auto_clear_typing(chat_id))

    async def _auto_clear_typing(self, chat_id: str) -> None:
        await asyncio.sleep(self._auto_clear_seconds)
        self._typing_timers.pop(chat_id, None)
        try:
            await self.clear_typing(chat_id)
        except Exception:
            logger.warning("typing_auto_clear_failed", chat_id=chat_id, exc_info=True)

    async def clear_typing(self, chat_id: str) -> None:
        me = self._me()
        self._typing_in.discard(chat_id)
        timer = self._typing_timers.pop(chat_id, None)
        if timer is not None and timer is not asyncio.current_task():
            timer.cancel()
        await self._store.delete("chat_typing", chat_id=chat_id, user_id=me)

    def typing_users(self, chat_id: str) -> dict[str, str]:
        return self.typing.active(chat_id)

    # ── Change feed ──

    def start(self, hub: ChangeHub) -> None:
        """Subscribe to the change feed tables the engine reconciles against."""
        if self._hub is not None:
            return
        self._hub = hub
        self._subscriptions = [
            hub.subscribe("messages", self._on_message_change),
            hub.subscribe("message_reactions", self._on_reaction_change),
            hub.subscribe("chat_typing", self._on_typing_change),
            hub.subscribe("chat_members", self._on_member_change),
            hub.subscribe("chats", self._on_chat_change),
        ]
        logger.info("chat_sync_started", subscriptions=len(self._subscriptions))

    def stop(self) -> None:
        if self._hub is not None:
            for sub_id in self._subscriptions:
                self._hub.unsubscribe(sub_id)
        self._hub = None
        self._subscriptions = []
        self._cancel_typing()

    def _cancel_typing(self) -> None:
        for timer in self._typing_timers.values():
            timer.cancel()
        self._typing_timers.clear()
        self._typing_in.clear()
        self.typing.clear()

    def reset(self) -> None:
        """Drop all local state (sign-out)."""
        self._chats = {}
        self.active_chat_id = None
        self._messages = []
        self._outbox = {}
        self.available_users = []
        self._cancel_typing()

    async def _on_message_change(self, event: ChangeEvent) -> None:
        auth = self._auth()
        row = event.row
        chat_id = row.get("chat_id")
        if chat_id not in self._chats:
            return

        if event.type == ChangeType.DELETE:
            self._remove_local_message(row["id"])
            return

        message = MessageView(**row, status="sent")
        if event.type == ChangeType.UPDATE:
            if message.is_deleted:
                self._remove_local_message(message.id)
            elif chat_id == self.active_chat_id:
                self._upsert_local_message(message)
            return

        self._outbox.pop(message.id, None)
        chat = self._chats[chat_id]
        self._apply_preview(message)

        if chat_id == self.active_chat_id:
            self._upsert_local_message(message)
            if message.sender_id != auth.user_id:
                await self.mark_chat_as_read(chat_id)
        elif message.sender_id != auth.user_id:
            chat.unread_count += 1

    async def _on_reaction_change(self, event: ChangeEvent) -> None:
        if event.type == ChangeType.INSERT and event.new:
            self._add_local_reaction(ReactionView.model_validate(event.new))
        elif event.type == ChangeType.DELETE and event.old:
            self._remove_local_reaction(event.old["message_id"], event.old["id"])

    async def _on_typing_change(self, event: ChangeEvent) -> None:
        row = event.row
        chat_id, user_id = row.get("chat_id"), row.get("user_id")
        if user_id == self._auth().user_id or chat_id not in self._chats:
            return

        if event.type == ChangeType.DELETE:
            self.typing.remove(chat_id, user_id)
            return

        name = row.get("display_name")
        if not name:
            member = self._chats[chat_id].member(user_id)
            name = member.first_name if member and member.first_name else "Someone"
        self.typing.touch(chat_id, user_id, name)

    async def _on_member_change(self, event: ChangeEvent) -> None:
        row = event.row
        me = self._auth().user_id
        chat_id = row.get("chat_id")

        if row.get("user_id") == me:
            if event.type == ChangeType.DELETE or row.get("left_at") is not None:
                self._forget_chat(chat_id)
            elif chat_id not in self._chats:
                # Added to a chat by someone else.
                await self.fetch_chats()
            return

        chat = self._chats.get(chat_id)
        if chat is None:
            return

        member = chat.member(row["user_id"])
        if member is None or event.type == ChangeType.DELETE or row.get("left_at") is not None:
            await self.fetch_chats()
            return
        member.last_read_at = _later(member.last_read_at, parse_timestamp(row.get("last_read_at")))

    async def _on_chat_change(self, event: ChangeEvent) -> None:
        if event.type != ChangeType.UPDATE or not event.new:
            return
        chat = self._chats.get(event.new["id"])
        if chat is None:
            return
        if chat.is_group and event.new.get("name") != chat.name:
            chat.name = event.new.get("name")
            chat.display_name = chat.name
        last_message_at = parse_timestamp(event.new.get("last_message_at"))
        if last_message_at is not None and (chat.last_message_at is None or last_message_at > chat.last_message_at):
            chat.last_message_at = last_message_at
            chat.last_message_preview = event.new.get("last_message_preview")
