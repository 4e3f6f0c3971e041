"""
Video store interface.

The orchestrator persists through this interface only:
- create(job) → the store-assigned id; the job then becomes Persisted(id)
- update(job) → write the job's current state back
- get / list_for_user / delete for history endpoints

Two implementations:
- InMemoryVideoRepository: per-process dict (tests, demos)
- SqlVideoRepository (storage/sql_repository.py): PostgreSQL via SQLAlchemy
"""

import logging
import uuid
from abc import ABC, abstractmethod
from typing import Optional

from generation.errors import VideoNotFoundError
from generation.job import Job, Persisted
from models.enums import VideoStatus

logger = logging.getLogger(__name__)


class VideoRepository(ABC):

    @abstractmethod
    async def create(self, job: Job) -> str:
        """Insert a new job and return its persistent id."""
        ...

    @abstractmethod
    async def update(self, job: Job) -> None:
        """Write back a persisted job. Raises VideoNotFoundError if it is gone."""
        ...

    @abstractmethod
    async def get(self, video_id: str) -> Optional[Job]:
        ...

    @abstractmethod
    async def list_for_user(
        self,
        user_id: str,
        status: Optional[VideoStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        """Newest first."""
        ...

    @abstractmethod
    async def delete(self, video_id: str) -> bool:
        ...


class InMemoryVideoRepository(VideoRepository):

    def __init__(self):
        self._rows: dict[str, Job] = {}

    async def create(self, job: Job) -> str:
        video_id = str(uuid.uuid4())
        row = job.snapshot()
        row.identity = Persisted(id=video_id)
        self._rows[video_id] = row
        return video_id

    async def update(self, job: Job) -> None:
        if job.id not in self._rows:
            raise VideoNotFoundError(job.id)
        self._rows[job.id] = job.snapshot()

    async def get(self, video_id: str) -> Optional[Job]:
        row = self._rows.get(video_id)
        return row.snapshot() if row else None

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[VideoStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        rows = [
            row for row in self._rows.values()
            if row.user_id == user_id and (status is None or row.status == status)
        ]
        rows.sort(key=lambda row: row.created_at, reverse=True)
        return [row.snapshot() for row in rows[offset:offset + limit]]

    async def delete(self, video_id: str) -> bool:
        return self._rows.pop(video_id, None) is not None
