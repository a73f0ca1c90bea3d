"""
Cross-request coordination backed by Redis.

- Hour-bucket counters that cap auto-approvals (global and per rule)
- Single in-flight batch lock per verification queue, with progress

In-memory implementations share the same interface for single-process use
and tests.
"""

from __future__ import annotations

import json
import secrets
from datetime import datetime, timezone
from typing import Optional, Protocol

import redis.asyncio as redis
import structlog

from app.core.redis import redis_key
from dms_shared.schemas.verification import BatchProgress

log = structlog.get_logger()

COUNTER_KEY_PREFIX = redis_key("auto") + ":"
COUNTER_TTL_SECONDS = 7200
BATCH_LOCK_KEY_PREFIX = redis_key("batch", "lock") + ":"
BATCH_PROGRESS_KEY_PREFIX = redis_key("batch", "progress") + ":"
BATCH_PROGRESS_TTL_SECONDS = 3600


def hour_bucket(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return now.astimezone(timezone.utc).strftime("%Y%m%d%H")


def global_counter_key(now: Optional[datetime] = None) -> str:
    return f"{COUNTER_KEY_PREFIX}{hour_bucket(now)}:global"


def rule_counter_key(rule_id: str, now: Optional[datetime] = None) -> str:
    return f"{COUNTER_KEY_PREFIX}{hour_bucket(now)}:rule:{rule_id}"


# ---------------------------------------------------------------------------
# Approval counters
# ---------------------------------------------------------------------------

class ApprovalCounter(Protocol):
    async def reserve(self, key: str, limit: int) -> bool:
        """Take one slot under ``limit``. False when the bucket is already full."""
        ...

    async def release(self, key: str) -> None: ...

    async def count(self, key: str) -> int: ...


class RedisApprovalCounter:
    """INCR-then-check reservation; an over-limit increment is rolled back."""

    def __init__(self, client: redis.Redis):
        self._redis = client

    async def reserve(self, key: str, limit: int) -> bool:
        async with self._redis.pipeline() as pipe:
            pipe.incr(key)
            pipe.expire(key, COUNTER_TTL_SECONDS)
            value, _ = await pipe.execute()
        if int(value) > limit:
            await self._redis.decr(key)
            return False
        return True

    async def release(self, key: str) -> None:
        await self._redis.decr(key)

    async def count(self, key: str) -> int:
        val = await self._redis.get(key)
        return int(val) if val else 0


class InMemoryApprovalCounter:
    def __init__(self) -> None:
        self._counts: dict[str, int] = {}

    async def reserve(self, key: str, limit: int) -> bool:
        current = self._counts.get(key, 0)
        if current >= limit:
            return False
        self._counts[key] = current + 1
        return True

    async def release(self, key: str) -> None:
        self._counts[key] = max(0, self._counts.get(key, 0) - 1)

    async def count(self, key: str) -> int:
        return self._counts.get(key, 0)


# ---------------------------------------------------------------------------
# Batch guard
# ---------------------------------------------------------------------------

class BatchGuard(Protocol):
    async def acquire(self, queue: str, total: int, operation: str) -> Optional[str]:
        """Start a batch on ``queue``. Returns an owner token, or None if one is running."""
        ...

    async def update(self, queue: str, token: str, processed: int, current_operation: str) -> None: ...

    async def release(self, queue: str, token: str) -> None: ...

    async def progress(self, queue: str) -> BatchProgress: ...


class RedisBatchGuard:
    """``SET NX EX`` lock per queue; progress is a JSON blob next to it."""

    def __init__(self, client: redis.Redis, ttl_seconds: int = 600):
        self._redis = client
        self._ttl = ttl_seconds

    async def acquire(self, queue: str, total: int, operation: str) -> Optional[str]:
        token = secrets.token_hex(16)
        acquired = await self._redis.set(
            f"{BATCH_LOCK_KEY_PREFIX}{queue}", token, nx=True, ex=self._ttl
        )
        if not acquired:
            return None
        await self._write_progress(
            queue, BatchProgress(processed=0, total=total, current_operation=operation, active=True)
        )
        return token

    async def update(self, queue: str, token: str, processed: int, current_operation: str) -> None:
        current = await self.progress(queue)
        await self._write_progress(
            queue,
            BatchProgress(
                processed=processed,
                total=current.total,
                current_operation=current_operation,
                active=True,
            ),
        )

    async def release(self, queue: str, token: str) -> None:
        lock_key = f"{BATCH_LOCK_KEY_PREFIX}{queue}"
        owner = await self._redis.get(lock_key)
        if owner == token:
            await self._redis.delete(lock_key)
        else:
            log.warning("batch.lock_lost", queue=queue)
        current = await self.progress(queue)
        await self._write_progress(queue, current.model_copy(update={"active": False}))

    async def progress(self, queue: str) -> BatchProgress:
        raw = await self._redis.get(f"{BATCH_PROGRESS_KEY_PREFIX}{queue}")
        if not raw:
            return BatchProgress()
        return BatchProgress.model_validate(json.loads(raw))

    async def _write_progress(self, queue: str, progress: BatchProgress) -> None:
        await self._redis.setex(
            f"{BATCH_PROGRESS_KEY_PREFIX}{queue}",
            BATCH_PROGRESS_TTL_SECONDS,
            progress.model_dump_json(),
        )


class InMemoryBatchGuard:
    def __init__(self) -> None:
        self._owners: dict[str, str] = {}
        self._progress: dict[str, BatchProgress] = {}

    async def acquire(self, queue: str, total: int, operation: str) -> Optional[str]:
        if queue in self._owners:
            return None
        token = secrets.token_hex(16)
        self._owners[queue] = token
        self._progress[queue] = BatchProgress(
            processed=0, total=total, current_operation=operation, active=True
        )
        return token

    async def update(self, queue: str, token: str, processed: int, current_operation: str) -> None:
        current = self._progress.get(queue, BatchProgress())
        self._progress[queue] = current.model_copy(
            update={"processed": processed, "current_operation": current_operation}
        )

    async def release(self, queue: str, token: str) -> None:
        if self._owners.get(queue) == token:
            del self._owners[queue]
        current = self._progress.get(queue, BatchProgress())
        self._progress[queue] = current.model_copy(update={"active": False})

    async def progress(self, queue: str) -> BatchProgress:
        return self._progress.get(queue, BatchProgress())
