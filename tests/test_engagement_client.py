"""EngagementClient wiring: platform events flow through every service."""

from __future__ import annotations

import pytest
import pytest_asyncio

from remedygo.analytics.queue import OfflineQueue
from remedygo.client import EngagementClient
from remedygo.config import Settings
from remedygo.realtime.hub import ChangeHub
from remedygo.redis_client import close_redis
from remedygo.sessions.beacon import HttpBeacon, StoreBeacon
from remedygo.store.sql import SqlRowStore
from support import ALICE, BOB, FakeClock, make_auth


@pytest_asyncio.fixture
async def engagement(store: SqlRowStore, queue: OfflineQueue, hub: ChangeHub, clock: FakeClock, users):
    client = EngagementClient(store, queue, hub, StoreBeacon(store), settings=Settings(), clock=clock)
    await client.start()
    yield client
    client.chat.stop()


@pytest.mark.asyncio
async def test_sign_in_opens_session_and_tracks_screens(engagement: EngagementClient, store: SqlRowStore) -> None:
    session_id = await engagement.set_auth(make_auth())
    assert session_id is not None

    await engagement.on_navigate("/home")
    await engagement.on_navigate("/home")

    rows = await store.select("screen_views")
    assert len(rows) == 1
    assert rows[0]["session_id"] == session_id


@pytest.mark.asyncio
async def test_offline_events_flushed_on_reconnect(
    engagement: EngagementClient, store: SqlRowStore, queue: OfflineQueue
) -> None:
    await engagement.set_auth(make_auth())
    await engagement.set_online(False)

    await engagement.analytics.track_asset_event(ALICE, "asset-1", "view")
    await engagement.analytics.track_directory_search(ALICE, "oncology", results_count=4)
    assert await queue.size() == 2

    await engagement.set_online(True)

    assert await queue.size() == 0
    assert len(await store.select("asset_events")) == 1
    assert len(await store.select("directory_searches")) == 1


@pytest.mark.asyncio
async def test_background_foreground_cycle(
    engagement: EngagementClient, store: SqlRowStore, clock: FakeClock
) -> None:
    first = await engagement.set_auth(make_auth())
    clock.advance(minutes=2)

    engagement.on_background()
    await engagement.beacon.flush(timeout=2)
    clock.advance(minutes=3)
    second = await engagement.on_foreground()

    assert second not in (None, first)
    assert (await store.get("user_sessions", first))["duration_seconds"] == 120


@pytest.mark.asyncio
async def test_switching_user_resets_chat(engagement: EngagementClient, store: SqlRowStore) -> None:
    await engagement.set_auth(make_auth())
    await engagement.chat.create_chat([BOB])
    assert len(engagement.chat.chats) == 1

    await engagement.set_auth(make_auth(BOB, display_name="Bob"))

    assert engagement.chat.chats == []


@pytest.mark.asyncio
async def test_logout_closes_session(engagement: EngagementClient, store: SqlRowStore) -> None:
    session_id = await engagement.set_auth(make_auth())
    await engagement.on_navigate("/library")

    await engagement.logout()

    assert engagement.get_auth().is_authenticated is False
    assert engagement.sessions.is_open is False
    assert engagement.screens.last_screen is None
    assert (await store.get("user_sessions", session_id))["ended_at"] is not None


@pytest.mark.asyncio
async def test_close_flushes_and_releases(store: SqlRowStore, hub: ChangeHub, tmp_path, users) -> None:
    queue = OfflineQueue.from_url(f"sqlite+aiosqlite:///{tmp_path / 'closing.db'}")
    client = EngagementClient(store, queue, hub, StoreBeacon(store), settings=Settings())
    await client.start()
    await client.set_auth(make_auth())
    client.on_page_unload()

    await client.close()

    assert hub.subscription_count == 0
    assert await store.select("user_sessions", ended_at=None) == []


@pytest.mark.asyncio
async def test_from_settings_wires_configured_backends(tmp_path) -> None:
    settings = Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'backend.db'}",
        offline_queue_url=f"sqlite+aiosqlite:///{tmp_path / 'queue.db'}",
        redis_url="redis://localhost:6379/15",
        api_base_url="http://api.test",
    )
    client = await EngagementClient.from_settings(settings)
    try:
        assert isinstance(client.store, SqlRowStore)
        assert isinstance(client.beacon, HttpBeacon)
        assert client._bridge is not None
        # Beacon reads the token from the client's current auth state.
        assert client.beacon._token_provider() is None
    finally:
        await client.beacon.aclose()
        await client.store.dispose()
        await close_redis()
