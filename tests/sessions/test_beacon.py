"""Fire-and-forget session-end beacons."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import httpx
import pytest
from fastapi import FastAPI

from remedygo.analytics.events import SessionEndEvent
from remedygo.auth.jwt import create_access_token
from remedygo.sessions.beacon import HttpBeacon, StoreBeacon
from remedygo.store.sql import SqlRowStore
from support import ALICE

T0 = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


def _end(session_id: str, seconds: int = 120) -> SessionEndEvent:
    return SessionEndEvent(
        user_id=ALICE,
        session_id=session_id,
        duration_seconds=seconds,
        occurred_at=T0 + timedelta(seconds=seconds),
    )


class TestHttpBeacon:
    @pytest.mark.asyncio
    async def test_send_closes_session_through_api(self, app: FastAPI, store: SqlRowStore, users) -> None:
        session = await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0})
        token = create_access_token(ALICE)
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        beacon = HttpBeacon("http://test", lambda: token, client=http)

        task = beacon.send(_end(session["id"]))
        assert await task is True

        row = await store.get("user_sessions", session["id"])
        assert row["duration_seconds"] == 120
        assert row["ended_at"] == T0 + timedelta(seconds=120)
        await http.aclose()

    @pytest.mark.asyncio
    async def test_rejected_send_returns_false(self, app: FastAPI, store: SqlRowStore, users) -> None:
        session = await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0})
        http = httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")
        beacon = HttpBeacon("http://test", lambda: "expired-or-bogus", client=http)

        assert await beacon.send(_end(session["id"])) is False
        assert (await store.get("user_sessions", session["id"]))["ended_at"] is None
        await http.aclose()

    @pytest.mark.asyncio
    async def test_network_error_returns_false(self) -> None:
        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        http = httpx.AsyncClient(transport=httpx.MockTransport(refuse), base_url="http://test")
        beacon = HttpBeacon("http://test", lambda: None, client=http)

        assert await beacon.send(_end("s-1")) is False
        await http.aclose()

    @pytest.mark.asyncio
    async def test_token_read_at_send_time(self) -> None:
        seen: list[str | None] = []

        def record(request: httpx.Request) -> httpx.Response:
            seen.append(request.headers.get("Authorization"))
            return httpx.Response(200, json={})

        token = {"value": "first"}
        http = httpx.AsyncClient(transport=httpx.MockTransport(record), base_url="http://test")
        beacon = HttpBeacon("http://test", lambda: token["value"], client=http)

        task = beacon.send(_end("s-1"))
        token["value"] = None
        await task

        assert seen == ["Bearer first"]
        await http.aclose()


class TestStoreBeacon:
    @pytest.mark.asyncio
    async def test_send_updates_open_session_only_once(self, store: SqlRowStore, users) -> None:
        session = await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0})
        beacon = StoreBeacon(store)

        assert await beacon.send(_end(session["id"], 60)) is True
        assert await beacon.send(_end(session["id"], 600)) is False
        assert (await store.get("user_sessions", session["id"]))["duration_seconds"] == 60

    @pytest.mark.asyncio
    async def test_flush_waits_for_pending_sends(self, store: SqlRowStore, users) -> None:
        sessions = [await store.insert("user_sessions", {"user_id": ALICE, "started_at": T0}) for _ in range(3)]
        beacon = StoreBeacon(store)

        for session in sessions:
            beacon.send(_end(session["id"]))
        assert beacon.pending == 3

        assert await beacon.flush(timeout=5) == 0
        assert beacon.pending == 0
        rows = await store.select("user_sessions", ended_at__ne=None)
        assert len(rows) == 3

    @pytest.mark.asyncio
    async def test_flush_reports_stragglers(self) -> None:
        slow_store = MagicMock()

        async def update(*args, **kwargs):
            await asyncio.sleep(10)
            return []

        slow_store.update = update
        beacon = StoreBeacon(slow_store)
        task = beacon.send(_end("s-1"))

        assert await beacon.flush(timeout=0.01) == 1
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
