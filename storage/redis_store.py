"""
Redis-backed side stores.

Key layout:
    videogen:queue:<user_id>   → JSON of the user's latest QueueSnapshot
    videogen:dead_letter       → list of permanently failed videos (RPUSH)

Queue snapshots are written after every queue mutation so other processes
(dashboards, a restarted API) can show a user's queue without owning it.
The dead-letter list is append-only; inspect it with LRANGE.
"""

import json
import logging
from datetime import datetime, timezone
from typing import Any, Optional

import redis.asyncio as aioredis

from generation.job import Job
from scheduler.base import QueueSnapshot

logger = logging.getLogger(__name__)

QUEUE_KEY_PREFIX = "videogen:queue:"
DEAD_LETTER_KEY = "videogen:dead_letter"


class QueueSnapshotStore:

    def __init__(self, redis: aioredis.Redis, ttl_seconds: Optional[int] = None):
        self._redis = redis
        self._ttl = ttl_seconds

    @staticmethod
    def key(user_id: str) -> str:
        return f"{QUEUE_KEY_PREFIX}{user_id}"

    async def save(self, snapshot: QueueSnapshot) -> None:
        await self._redis.set(
            self.key(snapshot.user_id),
            json.dumps(snapshot.to_dict()),
            ex=self._ttl,
        )

    async def load(self, user_id: str) -> Optional[dict[str, Any]]:
        raw = await self._redis.get(self.key(user_id))
        return json.loads(raw) if raw else None

    async def delete(self, user_id: str) -> None:
        await self._redis.delete(self.key(user_id))


class DeadLetterStore:

    def __init__(self, redis: aioredis.Redis):
        self._redis = redis

    async def push(self, job: Job) -> None:
        entry = {
            "video_id": job.id,
            "user_id": job.user_id,
            "title": job.title,
            "prompt": job.prompt,
            "error": job.error.to_dict() if job.error else None,
            "retry_count": job.retry_count,
            "max_retries": job.max_retries,
            "failed_at": datetime.now(timezone.utc).isoformat(),
        }
        await self._redis.rpush(DEAD_LETTER_KEY, json.dumps(entry))
        logger.warning(f"Video {job.id} moved to dead-letter queue")

    async def entries(self, limit: int = 100) -> list[dict[str, Any]]:
        raw = await self._redis.lrange(DEAD_LETTER_KEY, 0, limit - 1)
        return [json.loads(item) for item in raw]

    async def count(self) -> int:
        return await self._redis.llen(DEAD_LETTER_KEY)
