"""Liveness and readiness probes."""

import structlog
from fastapi import APIRouter, Depends

from remedygo.dependencies import get_store
from remedygo.redis_client import get_redis
from remedygo.store.base import RowStore

logger = structlog.get_logger()

router = APIRouter()


@router.get("/health")
async def health() -> dict[str, str]:
    return {"status": "healthy"}


@router.get("/ready")
async def readiness(store: RowStore = Depends(get_store)) -> dict[str, object]:  # noqa: B008
    """Ready when the beacon's table answers and the change feed can publish.

    ``listeners`` counts the pattern subscriptions on Redis, i.e. the change
    bridges currently relaying writes to clients. Zero is not an error.
    """
    checks: dict[str, object] = {}
    listeners: int | None = None

    try:
        await store.select("user_sessions", limit=1)
        checks["row_store"] = "ok"
    except Exception as exc:
        checks["row_store"] = f"error: {exc}"

    try:
        listeners = await get_redis().pubsub_numpat()
        checks["change_feed"] = "ok"
    except Exception as exc:
        checks["change_feed"] = f"error: {exc}"

    all_ok = all(v == "ok" for v in checks.values())
    if not all_ok:
        logger.warning("readiness_degraded", **checks)
    return {"status": "ready" if all_ok else "degraded", "checks": checks, "listeners": listeners}
