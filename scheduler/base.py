"""
Queue entry: a job plus the bookkeeping the queue needs to order it.

Ordering (lowest sort_key first):
    1. active entries (already started), never preempted
    2. higher priority weight first (high=10, normal=5, low=1)
    3. older added_at first
    4. insertion sequence (tie-breaker for identical timestamps)

The sequence counter is the same trick as a heap entry
(priority, counter, item): two entries added in the same microsecond still
keep their submission order.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from generation.job import Job
from models.enums import QueuePriority, QueueStatus


@dataclass
class QueueEntry:
    entry_id: str
    job: Job
    priority: QueuePriority
    sequence: int
    added_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    started_at: Optional[datetime] = None
    position: int = 0           # 1-based, refreshed after every queue mutation

    @property
    def is_active(self) -> bool:
        return self.started_at is not None

    def sort_key(self) -> tuple:
        return (
            0 if self.is_active else 1,
            -self.priority.weight,
            self.added_at,
            self.sequence,
        )

    def to_dict(self) -> dict[str, Any]:
        job = self.job
        return {
            "entry_id": self.entry_id,
            "video_id": job.id,
            "persisted": job.is_persisted,
            "title": job.title,
            "status": job.status.value,
            "stage": job.stage.value if job.stage else None,
            "progress": job.progress,
            "cost_credits": job.cost_credits,
            "priority": self.priority.value,
            "position": self.position,
            "added_at": self.added_at.isoformat(),
            "started_at": self.started_at.isoformat() if self.started_at else None,
        }


@dataclass(frozen=True)
class QueueStats:
    active: int
    pending: int
    completed: int
    failed: int


@dataclass(frozen=True)
class QueueSnapshot:
    """Point-in-time copy of a user's queue, safe to hand to observers."""

    user_id: str
    status: QueueStatus
    entries: list[dict[str, Any]]
    stats: QueueStats
    max_active: int
    average_generation_time: float
    estimated_time_remaining: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "user_id": self.user_id,
            "status": self.status.value,
            "entries": self.entries,
            "stats": {
                "active": self.stats.active,
                "pending": self.stats.pending,
                "completed": self.stats.completed,
                "failed": self.stats.failed,
            },
            "max_active": self.max_active,
            "average_generation_time": self.average_generation_time,
            "estimated_time_remaining": self.estimated_time_remaining,
        }
