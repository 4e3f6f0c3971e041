"""
Queue Manager: one user's ordered queue of not-yet-terminal jobs.

The manager doesn't generate anything. It only ORDERS jobs and decides
which ones hold an active slot:

    enqueue ──> [pending entries, ordered by priority then age]
                        │ advance() while active < max_active and not paused
                        ▼
                [active entries] ──finish()──> completed / failed counters + recent durations

Rules:
- Up to max_active entries are active at once (default 1 per user)
- A new high-priority entry jumps ahead of pending entries but never
  preempts an active one
- pause() stops new activations; active entries keep running
- Positions, ETAs and stats are recomputed from the entries on every read

Everything here is synchronous and in-memory. Cancelling an active job on
the generation service is the orchestrator's business: dequeue() and
clear() hand the removed entries back so the caller can do it.
"""

import itertools
import logging
import uuid
from collections import deque
from datetime import datetime, timezone
from typing import Optional

from config.settings import settings
from generation.errors import InvalidStateError, QueueEntryNotFoundError, QueueFullError
from generation.job import Job
from models.enums import QueuePriority, QueueStatus, VideoStatus
from scheduler.base import QueueEntry, QueueSnapshot, QueueStats

logger = logging.getLogger(__name__)


class QueueManager:

    def __init__(
        self,
        user_id: str,
        max_active: Optional[int] = None,
        max_size: Optional[int] = None,
        default_generation_seconds: Optional[float] = None,
        history_size: Optional[int] = None,
    ):
        self.user_id = user_id
        self.max_active = max_active if max_active is not None else settings.MAX_ACTIVE_GENERATIONS
        if self.max_active < 1:
            raise ValueError("max_active must be at least 1")
        self.max_size = max_size if max_size is not None else settings.MAX_QUEUE_SIZE
        self.default_generation_seconds = (
            default_generation_seconds
            if default_generation_seconds is not None
            else settings.DEFAULT_GENERATION_SECONDS
        )

        self._entries: list[QueueEntry] = []
        self._completed_count = 0
        self._failed_count = 0
        self._durations: deque[float] = deque(
            maxlen=history_size if history_size is not None else settings.WAIT_HISTORY_SIZE
        )
        self._sequence = itertools.count()
        self._paused = False

    # ── Mutations ───────────────────────────────────────────────

    def enqueue(self, job: Job, priority: QueuePriority = QueuePriority.NORMAL) -> QueueEntry:
        if len(self._entries) >= self.max_size:
            raise QueueFullError(self.max_size)

        entry = QueueEntry(
            entry_id=uuid.uuid4().hex,
            job=job,
            priority=QueuePriority(priority),
            sequence=next(self._sequence),
        )
        self._entries.append(entry)
        self._reorder()
        logger.info(
            f"Queued video '{job.title}' for user {self.user_id} "
            f"(priority: {entry.priority.value}, position: {entry.position})"
        )
        self.advance()
        return entry

    def dequeue(self, entry_id: str) -> QueueEntry:
        """Remove an entry. If it was active, the next pending entry is started."""
        entry = self.get(entry_id)
        self._entries.remove(entry)
        self._reorder()
        logger.info(f"Removed entry {entry_id} from queue of user {self.user_id}")
        self.advance()
        return entry

    def clear(self) -> list[QueueEntry]:
        """Remove every entry. Returns them (active ones included) for cancellation."""
        removed = self._ordered()
        self._entries.clear()
        if removed:
            logger.info(f"Cleared {len(removed)} entries from queue of user {self.user_id}")
        return removed

    def finish(self, entry_id: str) -> list[QueueEntry]:
        """
        Drop an entry whose job reached a terminal state and count the outcome.

        Returns the entries activated to fill the freed slot.
        """
        entry = self.get(entry_id)
        if not entry.job.is_terminal:
            raise InvalidStateError(
                f"Cannot finish entry {entry_id}: video is still {entry.job.status.value}"
            )

        self._entries.remove(entry)
        if entry.job.status == VideoStatus.FAILED:
            self._failed_count += 1
        elif entry.job.status == VideoStatus.COMPLETED:
            self._completed_count += 1
            duration = entry.job.generation_time
            if duration is None and entry.started_at is not None:
                duration = (datetime.now(timezone.utc) - entry.started_at).total_seconds()
            if duration is not None:
                self._durations.append(duration)

        self._reorder()
        return self.advance()

    def reprioritize(self, entry_id: str, priority: QueuePriority) -> QueueEntry:
        entry = self.get(entry_id)
        entry.priority = QueuePriority(priority)
        self._reorder()
        return entry

    def pause(self) -> None:
        self._paused = True
        logger.info(f"Queue of user {self.user_id} paused")

    def resume(self) -> list[QueueEntry]:
        self._paused = False
        logger.info(f"Queue of user {self.user_id} resumed")
        return self.advance()

    def advance(self) -> list[QueueEntry]:
        """Activate the best pending entries while there are free slots."""
        if self._paused:
            return []

        started: list[QueueEntry] = []
        while self.active_count < self.max_active:
            entry = self.next_pending
            if entry is None:
                break
            entry.started_at = datetime.now(timezone.utc)
            started.append(entry)
            logger.info(f"Activated entry {entry.entry_id} ('{entry.job.title}') for user {self.user_id}")

        if started:
            self._reorder()
        return started

    # ── Reads ───────────────────────────────────────────────────

    def get(self, entry_id: str) -> QueueEntry:
        for entry in self._entries:
            if entry.entry_id == entry_id:
                return entry
        raise QueueEntryNotFoundError(entry_id)

    def entry_for_job(self, job: Job) -> Optional[QueueEntry]:
        for entry in self._entries:
            if entry.job is job:
                return entry
        return None

    @property
    def entries(self) -> list[QueueEntry]:
        return self._ordered()

    @property
    def next_pending(self) -> Optional[QueueEntry]:
        for entry in self._ordered():
            if not entry.is_active:
                return entry
        return None

    @property
    def active_count(self) -> int:
        return sum(1 for entry in self._entries if entry.is_active)

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def status(self) -> QueueStatus:
        if self._paused:
            return QueueStatus.PAUSED
        if self.active_count:
            return QueueStatus.PROCESSING
        return QueueStatus.IDLE

    def position(self, entry_id: str) -> int:
        """1-based rank among entries currently in the queue."""
        ordered = self._ordered()
        for index, entry in enumerate(ordered):
            if entry.entry_id == entry_id:
                return index + 1
        raise QueueEntryNotFoundError(entry_id)

    @property
    def average_generation_time(self) -> float:
        """Moving average over recently completed jobs, or the default when there is none."""
        if not self._durations:
            return float(self.default_generation_seconds)
        return sum(self._durations) / len(self._durations)

    def estimated_wait(self, entry_id: str) -> float:
        return self.position(entry_id) * self.average_generation_time

    def stats(self) -> QueueStats:
        return QueueStats(
            active=sum(1 for e in self._entries if e.is_active),
            pending=sum(1 for e in self._entries if not e.is_active),
            completed=self._completed_count,
            failed=self._failed_count,
        )

    def snapshot(self) -> QueueSnapshot:
        ordered = self._ordered()
        average = self.average_generation_time
        return QueueSnapshot(
            user_id=self.user_id,
            status=self.status,
            entries=[entry.to_dict() for entry in ordered],
            stats=self.stats(),
            max_active=self.max_active,
            average_generation_time=average,
            estimated_time_remaining=len(ordered) * average,
        )

    def __len__(self) -> int:
        return len(self._entries)

    # ── Internals ───────────────────────────────────────────────

    def _ordered(self) -> list[QueueEntry]:
        return sorted(self._entries, key=QueueEntry.sort_key)

    def _reorder(self) -> None:
        self._entries.sort(key=QueueEntry.sort_key)
        for index, entry in enumerate(self._entries):
            entry.position = index + 1
