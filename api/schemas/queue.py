"""Pydantic schemas for the /queue endpoints."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel

from models.enums import QueuePriority
from scheduler.base import QueueEntry
from scheduler.queue_manager import QueueManager


class QueueEntryResponse(BaseModel):
    entry_id: str
    video_id: str
    persisted: bool
    title: str
    status: str
    stage: Optional[str] = None
    progress: int
    cost_credits: int
    priority: QueuePriority
    position: int
    active: bool
    added_at: datetime
    started_at: Optional[datetime] = None

    @classmethod
    def from_entry(cls, entry: QueueEntry) -> "QueueEntryResponse":
        job = entry.job
        return cls(
            entry_id=entry.entry_id,
            video_id=job.id,
            persisted=job.is_persisted,
            title=job.title,
            status=job.status.value,
            stage=job.stage.value if job.stage else None,
            progress=job.progress,
            cost_credits=job.cost_credits,
            priority=entry.priority,
            position=entry.position,
            active=entry.is_active,
            added_at=entry.added_at,
            started_at=entry.started_at,
        )


class QueueStatsResponse(BaseModel):
    active: int
    pending: int
    completed: int
    failed: int


class QueueResponse(BaseModel):
    """Response body for GET /queue/ and the pause / resume / clear endpoints."""

    status: str
    entries: list[QueueEntryResponse]
    stats: QueueStatsResponse
    max_active: int
    average_generation_time: float
    estimated_time_remaining: float

    @classmethod
    def from_queue(cls, queue: QueueManager) -> "QueueResponse":
        snapshot = queue.snapshot()
        return cls(
            status=snapshot.status.value,
            entries=[QueueEntryResponse.from_entry(entry) for entry in queue.entries],
            stats=QueueStatsResponse(
                active=snapshot.stats.active,
                pending=snapshot.stats.pending,
                completed=snapshot.stats.completed,
                failed=snapshot.stats.failed,
            ),
            max_active=snapshot.max_active,
            average_generation_time=snapshot.average_generation_time,
            estimated_time_remaining=snapshot.estimated_time_remaining,
        )


class QueuePositionResponse(BaseModel):
    entry_id: str
    position: int
    estimated_wait: float


class PriorityUpdate(BaseModel):
    priority: QueuePriority


class DeadLetterResponse(BaseModel):
    count: int
    entries: list[dict[str, Any]]
