"""
PostgreSQL-backed video store.

Each call opens its own short-lived AsyncSession from the session factory,
so one store instance can be shared by every user's orchestrator.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from generation.errors import GenerationFailure, VideoNotFoundError
from generation.job import Job, Persisted, VideoMetadata, VideoSettings
from models.enums import GenerationStage, VideoStatus
from models.video import Video
from storage.repository import VideoRepository

logger = logging.getLogger(__name__)


def _parse_id(video_id: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(video_id))
    except ValueError:
        return None


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes even for timezone=True columns
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def apply_job(row: Video, job: Job) -> None:
    """Copy a job's mutable state onto its row."""
    row.title = job.title
    row.description = job.description
    row.prompt = job.prompt
    row.enhanced_prompt = job.enhanced_prompt
    row.settings = job.settings.to_dict()
    row.cost_credits = job.cost_credits
    row.status = job.status.value
    row.stage = job.stage.value if job.stage else None
    row.progress = job.progress
    row.estimated_time_remaining = job.estimated_time_remaining
    row.error = job.error.to_dict() if job.error else None
    row.external_job_id = job.external_job_id
    row.retry_count = job.retry_count
    row.max_retries = job.max_retries
    row.video_url = job.video_url
    row.thumbnail_url = job.thumbnail_url
    row.video_metadata = job.metadata.to_dict() if job.metadata else None
    row.updated_at = job.updated_at
    row.dispatched_at = job.dispatched_at
    row.completed_at = job.completed_at


def row_to_job(row: Video) -> Job:
    return Job(
        identity=Persisted(id=str(row.id)),
        user_id=row.user_id,
        title=row.title,
        prompt=row.prompt,
        settings=VideoSettings.from_dict(row.settings),
        cost_credits=row.cost_credits,
        max_retries=row.max_retries,
        description=row.description,
        retry_count=row.retry_count,
        status=VideoStatus(row.status),
        stage=GenerationStage(row.stage) if row.stage else None,
        progress=row.progress,
        estimated_time_remaining=row.estimated_time_remaining,
        error=GenerationFailure.from_dict(row.error) if row.error else None,
        external_job_id=row.external_job_id,
        enhanced_prompt=row.enhanced_prompt,
        video_url=row.video_url,
        thumbnail_url=row.thumbnail_url,
        metadata=VideoMetadata(**row.video_metadata) if row.video_metadata else None,
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at) or _aware(row.created_at),
        dispatched_at=_aware(row.dispatched_at),
        completed_at=_aware(row.completed_at),
    )


class SqlVideoRepository(VideoRepository):

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def create(self, job: Job) -> str:
        async with self._session_factory() as session:
            row = Video(id=uuid.uuid4(), user_id=job.user_id, created_at=job.created_at)
            apply_job(row, job)
            session.add(row)
            await session.commit()
            logger.debug(f"Stored video {row.id} for user {job.user_id}")
            return str(row.id)

    async def update(self, job: Job) -> None:
        row_id = _parse_id(job.id)
        async with self._session_factory() as session:
            row = await session.get(Video, row_id) if row_id else None
            if row is None:
                raise VideoNotFoundError(job.id)
            apply_job(row, job)
            await session.commit()

    async def get(self, video_id: str) -> Optional[Job]:
        row_id = _parse_id(video_id)
        if row_id is None:
            return None
        async with self._session_factory() as session:
            row = await session.get(Video, row_id)
            return row_to_job(row) if row else None

    async def list_for_user(
        self,
        user_id: str,
        status: Optional[VideoStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Job]:
        query = select(Video).where(Video.user_id == user_id)
        if status is not None:
            query = query.where(Video.status == status.value)
        query = query.order_by(Video.created_at.desc()).offset(offset).limit(limit)

        async with self._session_factory() as session:
            result = await session.execute(query)
            return [row_to_job(row) for row in result.scalars().all()]

    async def delete(self, video_id: str) -> bool:
        row_id = _parse_id(video_id)
        if row_id is None:
            return False
        async with self._session_factory() as session:
            result = await session.execute(delete(Video).where(Video.id == row_id))
            await session.commit()
            return result.rowcount > 0
