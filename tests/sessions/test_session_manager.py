"""SessionManager transitions driven by auth, lifecycle and page events."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from remedygo.analytics.client import AnalyticsClient
from remedygo.analytics.connectivity import Connectivity
from remedygo.analytics.queue import OfflineQueue
from remedygo.sessions.beacon import StoreBeacon
from remedygo.sessions.manager import SessionManager
from remedygo.store.sql import SqlRowStore
from support import ALICE, FakeClock, make_auth


@pytest.fixture
def beacon(store: SqlRowStore) -> StoreBeacon:
    return StoreBeacon(store)


@pytest.fixture
def manager(analytics: AnalyticsClient, beacon: StoreBeacon, clock: FakeClock) -> SessionManager:
    return SessionManager(analytics, beacon, clock=clock)


class TestStart:
    @pytest.mark.asyncio
    async def test_trackable_sign_in_opens_session(self, manager: SessionManager, store: SqlRowStore, users) -> None:
        session_id = await manager.on_auth_changed(make_auth())

        assert session_id is not None
        assert manager.current_session_id == session_id
        row = await store.get("user_sessions", session_id)
        assert row["user_id"] == ALICE
        assert row["ended_at"] is None

    @pytest.mark.asyncio
    async def test_incomplete_profile_does_not_open_session(
        self, manager: SessionManager, store: SqlRowStore, users
    ) -> None:
        assert await manager.on_auth_changed(make_auth(is_profile_complete=False)) is None
        assert manager.is_open is False
        assert await store.select("user_sessions") == []

    @pytest.mark.asyncio
    async def test_repeated_auth_reports_keep_one_session(
        self, manager: SessionManager, store: SqlRowStore, users
    ) -> None:
        first = await manager.on_auth_changed(make_auth())
        second = await manager.on_auth_changed(make_auth())

        assert first == second
        assert len(await store.select("user_sessions")) == 1

    @pytest.mark.asyncio
    async def test_concurrent_starts_open_one_session(
        self, manager: SessionManager, store: SqlRowStore, users
    ) -> None:
        await manager.on_auth_changed(make_auth(is_profile_complete=False))
        manager._auth = make_auth()

        ids = await asyncio.gather(manager.start_session(), manager.start_session())

        assert ids[0] == ids[1]
        assert len(await store.select("user_sessions")) == 1

    @pytest.mark.asyncio
    async def test_sign_in_drains_offline_queue(self, beacon: StoreBeacon, clock: FakeClock) -> None:
        analytics = MagicMock(spec=AnalyticsClient)
        analytics.record_session_start = AsyncMock(return_value="s-1")
        analytics.process_offline_queue = AsyncMock()
        manager = SessionManager(analytics, beacon, clock=clock)

        await manager.on_auth_changed(make_auth())

        analytics.process_offline_queue.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_offline_start_leaves_session_closed(
        self, manager: SessionManager, connectivity: Connectivity, queue: OfflineQueue, users
    ) -> None:
        await connectivity.set_online(False)
        assert await manager.on_auth_changed(make_auth()) is None
        assert manager.is_open is False
        assert [e.kind for e in await queue.snapshot()] == ["session_start"]


class TestBackgroundForeground:
    @pytest.mark.asyncio
    async def test_scenario_short_background_starts_new_session(
        self, manager: SessionManager, beacon: StoreBeacon, store: SqlRowStore, clock: FakeClock, users
    ) -> None:
        first = await manager.on_auth_changed(make_auth())
        clock.advance(minutes=5)

        manager.on_background()
        await beacon.flush(timeout=2)
        assert manager.is_open is False

        clock.advance(minutes=3)
        second = await manager.on_foreground()

        assert second is not None
        assert second != first
        closed = await store.get("user_sessions", first)
        assert closed["duration_seconds"] == 300
        assert (await store.get("user_sessions", second))["ended_at"] is None

    @pytest.mark.asyncio
    async def test_long_background_also_starts_new_session(
        self, manager: SessionManager, beacon: StoreBeacon, clock: FakeClock, users
    ) -> None:
        first = await manager.on_auth_changed(make_auth())
        manager.on_background()
        await beacon.flush(timeout=2)
        clock.advance(minutes=45)

        second = await manager.on_foreground()

        assert second not in (None, first)
        assert manager.backgrounded_at is None

    @pytest.mark.asyncio
    async def test_background_during_start_closes_new_session(
        self,
        manager: SessionManager,
        analytics: AnalyticsClient,
        beacon: StoreBeacon,
        store: SqlRowStore,
        monkeypatch: pytest.MonkeyPatch,
        users,
    ) -> None:
        await manager.on_auth_changed(make_auth())
        manager.on_background()
        await beacon.flush(timeout=2)

        gate = asyncio.Event()
        record_start = analytics.record_session_start

        async def slow_start(*args, **kwargs):
            await gate.wait()
            return await record_start(*args, **kwargs)

        monkeypatch.setattr(analytics, "record_session_start", slow_start)
        foreground = asyncio.create_task(manager.on_foreground())
        await asyncio.sleep(0)
        manager.on_background()
        gate.set()

        assert await foreground is None
        await beacon.flush(timeout=2)
        assert manager.is_open is False
        assert len(await store.select("user_sessions")) == 2
        assert await store.select("user_sessions", ended_at=None) == []

    @pytest.mark.asyncio
    async def test_foreground_while_open_keeps_session(self, manager: SessionManager, users) -> None:
        first = await manager.on_auth_changed(make_auth())
        assert await manager.on_foreground() == first

    @pytest.mark.asyncio
    async def test_auth_report_while_backgrounded_does_not_start(
        self, manager: SessionManager, beacon: StoreBeacon, users
    ) -> None:
        await manager.on_auth_changed(make_auth())
        manager.on_background()
        await beacon.flush(timeout=2)

        assert await manager.on_auth_changed(make_auth()) is None
        assert manager.is_open is False

    @pytest.mark.asyncio
    async def test_background_when_not_trackable_sends_nothing(self, analytics: AnalyticsClient, clock) -> None:
        beacon = MagicMock()
        manager = SessionManager(analytics, beacon, clock=clock)
        await manager.on_auth_changed(make_auth(is_profile_complete=False))

        manager.on_background()

        beacon.send.assert_not_called()
        assert manager.backgrounded_at == clock.now

    @pytest.mark.asyncio
    async def test_page_unload_fires_beacon_once(self, manager: SessionManager, store: SqlRowStore, users) -> None:
        beacon = MagicMock()
        manager._beacon = beacon
        await manager.on_auth_changed(make_auth())

        manager.on_page_unload()
        manager.on_page_unload()

        beacon.send.assert_called_once()
        assert manager.is_open is False


class TestEnd:
    @pytest.mark.asyncio
    async def test_end_is_idempotent(self, manager: SessionManager, store: SqlRowStore, clock: FakeClock, users) -> None:
        session_id = await manager.on_auth_changed(make_auth())
        clock.advance(30)

        assert await manager.end_session() is True
        assert await manager.end_session() is False
        assert (await store.get("user_sessions", session_id))["duration_seconds"] == 30

    @pytest.mark.asyncio
    async def test_sign_out_closes_session(self, manager: SessionManager, store: SqlRowStore, users) -> None:
        session_id = await manager.on_auth_changed(make_auth())

        await manager.on_auth_changed(make_auth(None))

        assert manager.is_open is False
        assert (await store.get("user_sessions", session_id))["ended_at"] is not None

    @pytest.mark.asyncio
    async def test_logout_resets_state(self, manager: SessionManager, store: SqlRowStore, users) -> None:
        session_id = await manager.on_auth_changed(make_auth())

        await manager.on_logout()

        assert manager.auth.is_authenticated is False
        assert manager.is_open is False
        assert (await store.get("user_sessions", session_id))["ended_at"] is not None
        assert await manager.on_foreground() is None
