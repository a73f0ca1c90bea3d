"""
Submitter notifications via Redis Pub/Sub.

Each notification is buffered per recipient (capped list) and published on a
single channel that the UI gateway fans out. A Redis failure surfaces as
DownstreamFailure so the calling decision rolls back.
"""

from __future__ import annotations

import json
import uuid
from datetime import datetime, timezone
from typing import Any, Protocol

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from app.core.errors import DownstreamFailure
from app.core.redis import redis_key

log = structlog.get_logger()

NOTIFICATION_CHANNEL = redis_key("notifications")
NOTIFICATION_BUFFER_KEY_PREFIX = redis_key("notifications", "buffer") + ":"
BUFFER_SIZE = 100
BUFFER_TTL_SECONDS = 7 * 86400


class Notifier(Protocol):
    async def notify(self, recipient_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> None: ...

    async def recent(self, recipient_id: uuid.UUID, limit: int = 50) -> list[dict[str, Any]]: ...


class RedisNotifier:
    def __init__(self, client: redis.Redis):
        self._redis = client

    async def notify(self, recipient_id: uuid.UUID, event_type: str, payload: dict[str, Any]) -> None:
        message = json.dumps(
            {
                "id": str(uuid.uuid4()),
                "recipient_id": str(recipient_id),
                "type": event_type,
                "payload": payload,
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
            default=str,
        )
        buffer_key = f"{NOTIFICATION_BUFFER_KEY_PREFIX}{recipient_id}"
        try:
            async with self._redis.pipeline() as pipe:
                pipe.lpush(buffer_key, message)
                pipe.ltrim(buffer_key, 0, BUFFER_SIZE - 1)
                pipe.expire(buffer_key, BUFFER_TTL_SECONDS)
                await pipe.execute()
            await self._redis.publish(NOTIFICATION_CHANNEL, message)
        except RedisError as exc:
            log.error("notification.failed", recipient_id=str(recipient_id), type=event_type, error=str(exc))
            raise DownstreamFailure(f"Notification delivery failed: {exc}") from exc
        log.info("notification.sent", recipient_id=str(recipient_id), type=event_type)

    async def recent(self, recipient_id: uuid.UUID, limit: int = 50) -> list[dict[str, Any]]:
        raw = await self._redis.lrange(
            f"{NOTIFICATION_BUFFER_KEY_PREFIX}{recipient_id}", 0, limit - 1
        )
        return [json.loads(entry) for entry in raw]
