"""FastAPI application factory."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from remedygo.config import get_settings
from remedygo.database import close_db, get_engine, init_db
from remedygo.health.router import router as health_router
from remedygo.middleware import setup_middleware
from remedygo.realtime.bridge import RedisChangePublisher
from remedygo.redis_client import close_redis, get_redis, init_redis
from remedygo.sessions.router import router as sessions_router
from remedygo.store.sql import SqlRowStore


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Startup and shutdown lifecycle."""
    settings = get_settings()
    await init_db(settings.database_url)
    await init_redis(settings.redis_url)

    # Writes made through the API are announced on the change feed like any other.
    app.state.store = SqlRowStore(get_engine(), RedisChangePublisher(get_redis()))

    yield

    await close_db()
    await close_redis()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="RemedyGo Engagement API",
        description="Session beacon target and health endpoints for the RemedyGo engagement core",
        version=settings.app_version,
        docs_url="/docs" if settings.debug else None,
        redoc_url="/redoc" if settings.debug else None,
        lifespan=lifespan,
    )

    setup_middleware(app, settings)
    app.include_router(health_router, tags=["Health"])
    app.include_router(sessions_router)

    return app


app = create_app()
