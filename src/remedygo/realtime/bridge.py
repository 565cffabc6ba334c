"""Redis pub/sub transport for the change feed.

``RedisChangePublisher`` is handed to the row store on the writer side and
publishes each committed change to ``realtime:<table>``. ``RedisChangeBridge``
runs on the reader side, subscribes to ``realtime:*`` and forwards decoded
events into a local ``ChangeHub``.
"""

from __future__ import annotations

import asyncio
import json

import redis.asyncio as aioredis
import structlog
from pydantic import ValidationError

from remedygo.realtime.hub import ChangeHub
from remedygo.realtime.schemas import ChangeEvent

logger = structlog.get_logger()

CHANNEL_PREFIX = "realtime:"
CHANNEL_PATTERN = f"{CHANNEL_PREFIX}*"


def channel_for(table: str) -> str:
    return f"{CHANNEL_PREFIX}{table}"


class RedisChangePublisher:
    """Publishes committed changes to Redis. Failures are logged, never raised."""

    def __init__(self, redis_client: aioredis.Redis) -> None:
        self.redis = redis_client

    async def __call__(self, event: ChangeEvent) -> None:
        try:
            await self.redis.publish(channel_for(event.table), event.model_dump_json())
        except Exception:
            logger.warning("realtime_publish_failed", table=event.table, exc_info=True)


class RedisChangeBridge:
    """Subscribes to Redis pub/sub and pushes change events into a hub."""

    def __init__(self, redis_client: aioredis.Redis, hub: ChangeHub) -> None:
        self.redis = redis_client
        self.hub = hub
        self._running = False

    async def start(self) -> None:
        """Start listening to the change channels until ``stop`` is called."""
        self._running = True
        pubsub = self.redis.pubsub()
        await pubsub.psubscribe(CHANNEL_PATTERN)

        logger.info("realtime_bridge_started", pattern=CHANNEL_PATTERN)

        try:
            while self._running:
                message = await pubsub.get_message(
                    ignore_subscribe_messages=True,
                    timeout=1.0,
                )
                if message is None:
                    continue

                redis_channel = message.get("channel", "")
                if isinstance(redis_channel, bytes):
                    redis_channel = redis_channel.decode()
                if not redis_channel.startswith(CHANNEL_PREFIX):
                    continue

                try:
                    data = message.get("data", b"")
                    if isinstance(data, bytes):
                        data = data.decode()
                    event = ChangeEvent.model_validate(json.loads(data))
                except (json.JSONDecodeError, UnicodeDecodeError, ValidationError):
                    logger.warning("realtime_invalid_message", channel=redis_channel)
                    continue

                if event.table != redis_channel[len(CHANNEL_PREFIX):]:
                    logger.warning("realtime_table_mismatch", channel=redis_channel, table=event.table)
                    continue

                delivered = await self.hub.publish(event)
                if delivered > 0:
                    logger.debug("realtime_forwarded", table=event.table, recipients=delivered)

        except asyncio.CancelledError:
            pass
        finally:
            await pubsub.punsubscribe()
            await pubsub.aclose()
            logger.info("realtime_bridge_stopped")

    async def stop(self) -> None:
        """Signal the bridge to stop."""
        self._running = False
