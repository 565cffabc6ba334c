"""SqlRowStore against SQLite: filters, conflicts and change publication."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from remedygo.errors import StoreError
from remedygo.realtime.hub import ChangeHub
from remedygo.realtime.schemas import ChangeEvent, ChangeType
from remedygo.store.sql import SqlRowStore
from support import ALICE, BOB

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest.fixture
def changes(hub: ChangeHub) -> list[ChangeEvent]:
    received: list[ChangeEvent] = []

    async def record(event: ChangeEvent) -> None:
        received.append(event)

    hub.subscribe("*", record)
    return received


class TestInsertAndSelect:
    @pytest.mark.asyncio
    async def test_insert_assigns_id_and_returns_row(self, store: SqlRowStore, users) -> None:
        row = await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0})
        assert row is not None
        assert len(row["id"]) == 36
        assert row["started_at"] == T0
        assert row["ended_at"] is None

    @pytest.mark.asyncio
    async def test_timestamps_come_back_timezone_aware(self, store: SqlRowStore, users) -> None:
        row = await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0})
        fetched = await store.get("user_sessions", row["id"])
        assert fetched["started_at"].tzinfo is not None

    @pytest.mark.asyncio
    async def test_filter_operators(self, store: SqlRowStore, users) -> None:
        for minutes in (0, 10, 20):
            await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0 + timedelta(minutes=minutes)})
        await store.insert("user_sessions", {"user_id": BOB, "started_at": T0})

        assert len(await store.select("user_sessions", user_id=ALICE)) == 3
        assert len(await store.select("user_sessions", user_id__ne=ALICE)) == 1
        assert len(await store.select("user_sessions", user_id__in=[ALICE, BOB])) == 4
        assert len(await store.select("user_sessions", started_at__gt=T0)) == 2
        assert len(await store.select("user_sessions", started_at__gte=T0)) == 4
        assert len(await store.select("user_sessions", started_at__lt=T0 + timedelta(minutes=20))) == 3
        assert len(await store.select("user_sessions", started_at__lte=T0)) == 2
        assert len(await store.select("user_sessions", ended_at=None)) == 4

    @pytest.mark.asyncio
    async def test_order_and_limit(self, store: SqlRowStore, users) -> None:
        for minutes in (5, 0, 10):
            await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0 + timedelta(minutes=minutes)})

        rows = await store.select("user_sessions", order_by="-started_at", limit=2)
        assert [r["started_at"] for r in rows] == [T0 + timedelta(minutes=10), T0 + timedelta(minutes=5)]

    @pytest.mark.asyncio
    async def test_unknown_column_rejected(self, store: SqlRowStore) -> None:
        with pytest.raises(ValueError, match="Unknown column"):
            await store.select("user_sessions", colour="red")

    @pytest.mark.asyncio
    async def test_unknown_table_rejected(self, store: SqlRowStore) -> None:
        with pytest.raises(ValueError, match="Unknown table"):
            await store.select("sessions")


class TestConflicts:
    @pytest.mark.asyncio
    async def test_insert_ignoring_conflict_returns_none(self, store: SqlRowStore, users) -> None:
        row = {"event_id": "evt-1", "user_id": ALICE, "screen_name": "Home"}
        assert await store.insert("screen_views", row, ignore_conflict_on=["event_id"]) is not None
        assert await store.insert("screen_views", row, ignore_conflict_on=["event_id"]) is None
        assert len(await store.select("screen_views")) == 1

    @pytest.mark.asyncio
    async def test_plain_insert_conflict_raises_store_error(self, store: SqlRowStore, users) -> None:
        row = {"event_id": "evt-1", "user_id": ALICE, "screen_name": "Home"}
        await store.insert("screen_views", row)
        with pytest.raises(StoreError) as exc_info:
            await store.insert("screen_views", row)
        assert exc_info.value.operation == "insert"
        assert exc_info.value.table == "screen_views"

    @pytest.mark.asyncio
    async def test_upsert_updates_existing_row(self, store: SqlRowStore, users) -> None:
        first = await store.upsert(
            "chat_typing",
            {"chat_id": "c-1", "user_id": ALICE, "started_at": T0},
            conflict_on=["chat_id", "user_id"],
        )
        second = await store.upsert(
            "chat_typing",
            {"chat_id": "c-1", "user_id": ALICE, "started_at": T0 + timedelta(seconds=5)},
            conflict_on=["chat_id", "user_id"],
        )
        assert first["id"] == second["id"]
        assert second["started_at"] == T0 + timedelta(seconds=5)
        assert len(await store.select("chat_typing")) == 1


class TestChangePublication:
    @pytest.mark.asyncio
    async def test_mutations_publish_changes(self, store: SqlRowStore, users, changes) -> None:
        row = await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0})
        await store.update("user_sessions", {"duration_seconds": 60}, id=row["id"])
        await store.delete("user_sessions", id=row["id"])

        assert [c.type for c in changes] == [ChangeType.INSERT, ChangeType.UPDATE, ChangeType.DELETE]
        assert changes[1].old["duration_seconds"] is None
        assert changes[1].new["duration_seconds"] == 60
        assert changes[2].old["id"] == row["id"]

    @pytest.mark.asyncio
    async def test_unwatched_tables_do_not_publish(self, store: SqlRowStore, users, changes) -> None:
        await store.insert("screen_views", {"event_id": "e", "user_id": ALICE, "screen_name": "Home"})
        assert changes == []

    @pytest.mark.asyncio
    async def test_update_without_match_publishes_nothing(self, store: SqlRowStore, changes) -> None:
        assert await store.update("user_sessions", {"duration_seconds": 1}, id="missing") == []
        assert changes == []
