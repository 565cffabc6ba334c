"""Shared test fixtures.

SQLite files under ``tmp_path`` (through aiosqlite) stand in for both the
Postgres backend and the device-local queue. The in-process ``ChangeHub``
is the change feed.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from remedygo.analytics.client import AnalyticsClient
from remedygo.analytics.connectivity import Connectivity
from remedygo.analytics.queue import OfflineQueue
from remedygo.database import build_engine
from remedygo.main import create_app
from remedygo.realtime.hub import ChangeHub
from remedygo.store.sql import SqlRowStore
from support import ALICE, BOB, CAROL, DAVE, ORG, FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def hub() -> ChangeHub:
    return ChangeHub()


@pytest_asyncio.fixture
async def store(tmp_path, hub: ChangeHub) -> AsyncGenerator[SqlRowStore, None]:
    """Backend row store on a fresh SQLite file, publishing to ``hub``."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'backend.db'}")
    row_store = SqlRowStore(engine, hub.publish)
    await row_store.create_all()
    yield row_store
    await engine.dispose()


@pytest_asyncio.fixture
async def users(store: SqlRowStore) -> dict[str, dict]:
    """Four active users; Dave belongs to another organization."""
    people = {
        ALICE: ("Alice", "Archer", ORG),
        BOB: ("Bob", "Baker", ORG),
        CAROL: ("Carol", "Cruz", ORG),
        DAVE: ("Dave", "Dunn", "other-org"),
    }
    created = {}
    for user_id, (first, last, org) in people.items():
        created[user_id] = await store.insert(
            "users",
            {
                "id": user_id,
                "first_name": first,
                "last_name": last,
                "email": f"{first.lower()}@example.com",
                "organization_id": org,
            },
        )
    return created


@pytest_asyncio.fixture
async def queue(tmp_path) -> AsyncGenerator[OfflineQueue, None]:
    offline_queue = OfflineQueue.from_url(f"sqlite+aiosqlite:///{tmp_path / 'offline_queue.db'}")
    await offline_queue.open()
    yield offline_queue
    await offline_queue.close()


@pytest.fixture
def connectivity() -> Connectivity:
    return Connectivity(online=True)


@pytest.fixture
def analytics(store: SqlRowStore, queue: OfflineQueue, connectivity: Connectivity, clock: FakeClock) -> AnalyticsClient:
    return AnalyticsClient(store, queue, connectivity, clock=clock)


@pytest.fixture
def app(store: SqlRowStore) -> FastAPI:
    """API app wired to the test store; the lifespan (Postgres, Redis) is not run."""
    application = create_app()
    application.state.store = store
    return application


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client against the in-process app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
