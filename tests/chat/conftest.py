"""Chat fixtures: one sync engine per user, all on the same store and change hub."""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest_asyncio

from remedygo.chat.engine import ChatSyncEngine
from remedygo.realtime.hub import ChangeHub
from remedygo.store.sql import SqlRowStore
from support import ALICE, BOB, CAROL, FakeClock, make_auth


def _engine(
    store: SqlRowStore, hub: ChangeHub, clock: FakeClock, user_id: str, name: str, **auth
) -> ChatSyncEngine:
    state = make_auth(user_id, display_name=name, **auth)
    engine = ChatSyncEngine(store, lambda: state, clock=clock)
    engine.start(hub)
    return engine


@pytest_asyncio.fixture
async def alice(store, hub, clock, users) -> AsyncGenerator[ChatSyncEngine, None]:
    engine = _engine(store, hub, clock, ALICE, "Alice")
    yield engine
    engine.stop()


@pytest_asyncio.fixture
async def bob(store, hub, clock, users) -> AsyncGenerator[ChatSyncEngine, None]:
    engine = _engine(store, hub, clock, BOB, "Bob")
    yield engine
    engine.stop()


@pytest_asyncio.fixture
async def carol(store, hub, clock, users) -> AsyncGenerator[ChatSyncEngine, None]:
    """Carol moderates the organization's chats."""
    engine = _engine(store, hub, clock, CAROL, "Carol", role="moderator")
    yield engine
    engine.stop()


@pytest_asyncio.fixture
async def direct_chat(alice: ChatSyncEngine, bob: ChatSyncEngine) -> str:
    """A 1:1 chat between Alice and Bob, with both engines showing it."""
    chat = await alice.create_chat([BOB])
    await bob.fetch_chats()
    return chat.id
