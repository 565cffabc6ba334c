"""Health endpoint tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import FastAPI
from httpx import AsyncClient

from remedygo.errors import StoreError


def _redis(**kwargs) -> MagicMock:
    redis = MagicMock()
    redis.pubsub_numpat = AsyncMock(**kwargs)
    return redis


@pytest.mark.asyncio
async def test_health(client: AsyncClient) -> None:
    """GET /health returns 200 with healthy status."""
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


@pytest.mark.asyncio
async def test_readiness(client: AsyncClient) -> None:
    """GET /ready reports ok when the session table and the change feed both answer."""
    with patch("remedygo.health.router.get_redis", return_value=_redis(return_value=2)):
        response = await client.get("/ready")

    assert response.status_code == 200
    assert response.json() == {
        "status": "ready",
        "checks": {"row_store": "ok", "change_feed": "ok"},
        "listeners": 2,
    }


@pytest.mark.asyncio
async def test_readiness_degraded_without_redis(client: AsyncClient) -> None:
    with patch("remedygo.health.router.get_redis", return_value=_redis(side_effect=ConnectionError("refused"))):
        response = await client.get("/ready")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["row_store"] == "ok"
    assert data["checks"]["change_feed"].startswith("error:")
    assert data["listeners"] is None


@pytest.mark.asyncio
async def test_readiness_degraded_when_store_fails(app: FastAPI, client: AsyncClient) -> None:
    broken = AsyncMock()
    broken.select = AsyncMock(side_effect=StoreError("select", "user_sessions", "connection reset"))
    app.state.store = broken

    with patch("remedygo.health.router.get_redis", return_value=_redis(return_value=0)):
        response = await client.get("/ready")

    data = response.json()
    assert data["status"] == "degraded"
    assert data["checks"]["row_store"] == "error: select on user_sessions failed: connection reset"
    assert data["checks"]["change_feed"] == "ok"


@pytest.mark.asyncio
async def test_version_endpoint_removed(client: AsyncClient) -> None:
    response = await client.get("/version")
    assert response.status_code == 404
