"""
Retry handler: decides what a failed video may do next.

Three outcomes when a job fails:
1. retry_count < max_retries, the error is retryable and auto_retry is on
   → the same request is resubmitted after retry_delay seconds
2. retry_count < max_retries and the error is retryable → the user may
   call retry(), which resubmits the same request as a NEW job
3. otherwise → the failure is permanent and the job is pushed to the
   dead-letter list in Redis

Either way the failed job is left exactly as it failed; a retry is a fresh
admission (validation, permission and credit checks, new cost, new queue
entry, retry_count + 1).

Lifecycle on failure:
    processing → failed (retryable, retries left)  → [retry_delay] → new pending job
    processing → failed (permanent)                → dead-letter queue
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

from config.settings import settings
from generation.errors import InvalidStateError, RetryExhaustedError
from generation.job import Job
from models.enums import VideoStatus
from storage.redis_store import DeadLetterStore

logger = logging.getLogger(__name__)

Resubmit = Callable[[Job], Awaitable[Any]]


class RetryHandler:

    def __init__(
        self,
        dead_letter: Optional[DeadLetterStore] = None,
        auto_retry: Optional[bool] = None,
        retry_delay: Optional[float] = None,
    ):
        self._dead_letter = dead_letter
        self.auto_retry = settings.AUTO_RETRY if auto_retry is None else auto_retry
        self.retry_delay = settings.RETRY_DELAY_SECONDS if retry_delay is None else retry_delay

    def ensure_retryable(self, job: Job) -> None:
        """Raise unless retry() is allowed for this job."""
        if job.status != VideoStatus.FAILED:
            raise InvalidStateError(
                f"Only failed videos can be retried (video is {job.status.value})"
            )

        if job.retry_count >= job.max_retries:
            raise RetryExhaustedError(job.retry_count, job.max_retries)

        if job.error is None or not job.error.retryable:
            code = job.error.code if job.error else "UNKNOWN"
            raise InvalidStateError(
                f"Video failed with a non-retryable error ({code})",
                suggested_action=job.error.suggested_action if job.error else None,
            )

    async def handle_failure(self, job: Job, resubmit: Optional[Resubmit] = None) -> Optional[asyncio.Task]:
        """
        Called by the orchestrator once a job has reached FAILED.

        Returns the scheduled retry task when the job is retried automatically.
        """
        error_code = job.error.code if job.error else "UNKNOWN"

        if job.can_retry:
            if self.auto_retry and resubmit is not None:
                logger.info(
                    f"Video {job.id} failed ({error_code}), retrying in {self.retry_delay}s "
                    f"({job.retry_count + 1}/{job.max_retries})"
                )
                return asyncio.create_task(
                    self._retry_later(job, resubmit), name=f"video-retry-{job.id}"
                )
            logger.info(
                f"Video {job.id} failed ({error_code}), retry available "
                f"({job.retry_count}/{job.max_retries})"
            )
            return None

        logger.warning(
            f"Video {job.id} failed permanently ({error_code}, "
            f"{job.retry_count}/{job.max_retries} retries used)"
        )
        if self._dead_letter is not None:
            await self._dead_letter.push(job)
        return None

    async def _retry_later(self, job: Job, resubmit: Resubmit) -> None:
        await asyncio.sleep(self.retry_delay)
        await resubmit(job)
