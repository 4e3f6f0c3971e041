"""
Video ORM model, maps to the "videos" table.

One row per generation job. A retry is a new row; the failed row keeps its
error and retry_count untouched.

Column notes:
- UUID primary key assigned on insert; this is the Persisted id a job gets
  once the store has answered
- settings / error / metadata are JSON (JSONB on PostgreSQL), shaped by
  VideoSettings.to_dict, GenerationFailure.to_dict and VideoMetadata.to_dict
- external_job_id is the generation service's id, null until dispatch
- Timestamps at every lifecycle stage so generation_time can be measured
  (completed_at - dispatched_at)
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import JSON, DateTime, Integer, String, Text, Uuid, func
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from models.base import Base
from models.enums import VideoStatus

# JSONB on PostgreSQL, plain JSON elsewhere (the SQLite test database)
JsonColumn = JSON().with_variant(JSONB(), "postgresql")


class Video(Base):
    __tablename__ = "videos"

    # ── Identity ────────────────────────────────────────────────
    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # ── Request ─────────────────────────────────────────────────
    prompt: Mapped[str] = mapped_column(Text, nullable=False)
    enhanced_prompt: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    settings: Mapped[dict] = mapped_column(JsonColumn, default=dict, nullable=False)
    cost_credits: Mapped[int] = mapped_column(Integer, nullable=False)

    # ── Lifecycle ───────────────────────────────────────────────
    status: Mapped[str] = mapped_column(
        String(20), default=VideoStatus.PENDING.value, nullable=False, index=True
    )
    stage: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    progress: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    estimated_time_remaining: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    error: Mapped[Optional[dict]] = mapped_column(JsonColumn, nullable=True)
    external_job_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    # ── Retry tracking ──────────────────────────────────────────
    retry_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_retries: Mapped[int] = mapped_column(Integer, default=3, nullable=False)

    # ── Output ──────────────────────────────────────────────────
    video_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    thumbnail_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    video_metadata: Mapped[Optional[dict]] = mapped_column("metadata", JsonColumn, nullable=True)

    # ── Lifecycle timestamps ────────────────────────────────────
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    dispatched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    def __repr__(self) -> str:
        return f"<Video {self.id} [{self.user_id}] {self.status}>"
