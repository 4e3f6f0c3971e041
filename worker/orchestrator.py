"""
Generation orchestrator: one user's video-generation state machine.

Ties the pieces together for a single user:

    submit(request)
        │ validate → permission → cost ≤ remaining credits
        ▼
    Job(Provisional) ──enqueue──> QueueManager ──store.create──> Job(Persisted)
        │
        ▼  poll loop: sleep(poll_interval); poll_once(); repeat
    for every active queue entry: dispatch (submit_job) → poll_status → reconcile
        │
        ▼
    completed | failed | cancelled   (one terminal event per job)
        │
        ▼
    queue.finish() starts the next entry; current_job follows it

Tracking rules:
- The queue holds any number of jobs (up to its max_size). current_job is
  the one surfaced for live progress: the head of the queue, which is an
  active entry whenever one exists. A finished job stays current until
  another job takes its place, and stays the retry() target until retried.
- Only one submit() is admitted at a time. A submit() that arrives while
  another is still being stored raises ConcurrentGenerationError.

Concurrency rules (single event loop, no threads):
- poll_once() holds a lock, so polls never overlap, and each job has at
  most one outstanding poll.
- shutdown() bumps an epoch counter. A response that comes back under an
  old epoch, or for a job that turned terminal meanwhile (cancelled), is
  dropped.
- A job that is still not terminal after max_poll_attempts polls fails
  with TIMEOUT. Failed polls count as attempts.
"""

import asyncio
import logging
from typing import Optional

from config.settings import settings
from generation.cost import GenerationCost, PricingTable, compute_cost, estimate_generation_seconds
from generation.errors import (
    ApiError,
    CancellationRejected,
    ConcurrentGenerationError,
    GenerationError,
    GenerationFailure,
    GenerationTimeoutError,
    InsufficientCreditsError,
    InvalidStateError,
    PermissionDeniedError,
    failure_from_external,
)
from generation.job import GenerationRequest, Job, VideoSettings, new_provisional
from generation.validation import validate_request
from models.enums import GenerationStage, QueuePriority, VideoStatus
from providers.base import AbstractGenerationClient, PollResult
from scheduler.base import QueueEntry
from scheduler.queue_manager import QueueManager
from storage.redis_store import QueueSnapshotStore
from storage.repository import InMemoryVideoRepository, VideoRepository
from worker.events import EventEmitter, GenerationEvent
from worker.permissions import PermissionProvider
from worker.retry import RetryHandler

logger = logging.getLogger(__name__)

_TERMINAL_EVENTS = {
    VideoStatus.COMPLETED: GenerationEvent.VIDEO_COMPLETED,
    VideoStatus.FAILED: GenerationEvent.VIDEO_FAILED,
    VideoStatus.CANCELLED: GenerationEvent.VIDEO_CANCELLED,
}


class GenerationOrchestrator:

    def __init__(
        self,
        user_id: str,
        client: AbstractGenerationClient,
        queue: QueueManager,
        permissions: PermissionProvider,
        repository: Optional[VideoRepository] = None,
        events: Optional[EventEmitter] = None,
        retry_handler: Optional[RetryHandler] = None,
        queue_store: Optional[QueueSnapshotStore] = None,
        pricing: Optional[PricingTable] = None,
        poll_interval: Optional[float] = None,
        max_poll_attempts: Optional[int] = None,
        cancel_timeout: Optional[float] = None,
        max_retries: Optional[int] = None,
        auto_poll: bool = True,
    ):
        self.user_id = user_id
        self.queue = queue
        self.events = events or EventEmitter()
        self._client = client
        self._permissions = permissions
        self._repository = repository or InMemoryVideoRepository()
        self._retry_handler = retry_handler or RetryHandler()
        self._queue_store = queue_store
        self._pricing = pricing or PricingTable.from_settings()

        self.poll_interval = poll_interval if poll_interval is not None else settings.POLL_INTERVAL_SECONDS
        self.max_poll_attempts = (
            max_poll_attempts if max_poll_attempts is not None else settings.MAX_POLL_ATTEMPTS
        )
        self.cancel_timeout = cancel_timeout if cancel_timeout is not None else settings.CANCEL_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else settings.MAX_RETRIES
        self.auto_poll = auto_poll

        self._job: Optional[Job] = None
        self._last_finished: Optional[Job] = None
        self._admitting = False
        self._epoch = 0
        self._poll_counts: dict[str, int] = {}
        self._poll_task: Optional[asyncio.Task] = None
        self._retry_tasks: set[asyncio.Task] = set()
        self._tick_lock = asyncio.Lock()

    # ── Accessors ───────────────────────────────────────────────

    @property
    def current_job(self) -> Optional[Job]:
        return self._job

    @property
    def current_entry(self) -> Optional[QueueEntry]:
        if self._job is None:
            return None
        return self.queue.entry_for_job(self._job)

    @property
    def state(self) -> str:
        """idle, a generation stage while running, or the terminal status."""
        job = self._job
        if job is None:
            return "idle"
        if job.is_terminal or job.stage is None:
            return job.status.value
        return job.stage.value

    @property
    def can_cancel(self) -> bool:
        return self._job is not None and not self._job.is_terminal

    @property
    def can_retry(self) -> bool:
        target = self._retry_target()
        return target is not None and target.can_retry

    @property
    def poll_attempts(self) -> int:
        """Status checks spent on the current job so far."""
        if self._job is None:
            return 0
        return self._poll_counts.get(self._job.id, 0)

    @property
    def retry_tasks(self) -> set[asyncio.Task]:
        """Automatic retries waiting for their delay to pass."""
        return set(self._retry_tasks)

    def estimate_cost(self, video_settings: VideoSettings) -> GenerationCost:
        return compute_cost(video_settings, self._pricing)

    # ── Admission ───────────────────────────────────────────────

    async def submit(
        self,
        request: GenerationRequest,
        priority: QueuePriority = QueuePriority.NORMAL,
    ) -> Job:
        """
        Admit a new generation into the queue.

        Raises:
            ConcurrentGenerationError: another submission is still being admitted
            ValidationError, PermissionDeniedError, InsufficientCreditsError
            QueueFullError
        """
        return await self._admit(request, priority, retry_count=0)

    async def retry(self, priority: QueuePriority = QueuePriority.NORMAL) -> Job:
        """Resubmit the most recent failed job's request as a new job (retry_count + 1)."""
        job = self._retry_target()
        if job is None:
            raise InvalidStateError("No video to retry")
        self._retry_handler.ensure_retryable(job)

        logger.info(f"Retrying video {job.id} ({job.retry_count + 1}/{job.max_retries})")
        retried = await self._admit(job.request(), priority, retry_count=job.retry_count + 1)
        if self._last_finished is job:
            self._last_finished = None
        return retried

    def _retry_target(self) -> Optional[Job]:
        if self._job is not None and self._job.is_terminal:
            return self._job
        return self._last_finished

    async def _admit(self, request: GenerationRequest, priority: QueuePriority, retry_count: int) -> Job:
        if self._admitting:
            raise ConcurrentGenerationError()

        validate_request(request)
        if not (self._permissions.has_active_subscription() or self._permissions.can_generate()):
            raise PermissionDeniedError()

        cost = compute_cost(request.settings, self._pricing)
        remaining = self._permissions.remaining_credits()
        if remaining < cost.total_credits:
            raise InsufficientCreditsError(cost.total_credits, remaining)

        job = Job(
            identity=new_provisional(),
            user_id=self.user_id,
            title=request.title.strip(),
            prompt=request.prompt.strip(),
            settings=request.settings,
            description=request.description,
            cost_credits=cost.total_credits,
            max_retries=self.max_retries,
            retry_count=retry_count,
        )

        # Both happen before the first await
        entry = self.queue.enqueue(job, priority)
        self._admitting = True
        self._follow_queue()

        try:
            video_id = await self._repository.create(job)
        except Exception:
            logger.error(f"Could not store video '{job.title}' for user {self.user_id}", exc_info=True)
            if self.queue.entry_for_job(job) is entry:
                self.queue.dequeue(entry.entry_id)
            if self._job is job:
                self._job = None
            self._follow_queue()
            raise
        finally:
            self._admitting = False

        job.persisted_as(video_id)
        self._permissions.record_usage(cost.total_credits)
        await self._save_queue()

        logger.info(
            f"Admitted video {job.id} '{job.title}' for user {self.user_id} "
            f"({cost.total_credits} credits, retry {retry_count}/{job.max_retries}, "
            f"position {entry.position})"
        )
        self.events.emit(
            GenerationEvent.VIDEO_ADDED,
            self.user_id,
            job.id,
            cost_credits=job.cost_credits,
            position=entry.position,
        )

        self._sync_polling()
        return job

    def _follow_queue(self) -> None:
        """Point current_job at the job that stands for the queue right now."""
        job = self._job
        entries = self.queue.entries
        if job is not None and not job.is_terminal:
            entry = self.queue.entry_for_job(job)
            if entry is None or entry.is_active or job.is_dispatched:
                return
            if not any(e.is_active for e in entries):
                return
        if entries and entries[0].job is not job:
            self._job = entries[0].job

    # ── Polling ─────────────────────────────────────────────────

    async def poll_once(self) -> Optional[Job]:
        """
        One step of the state machine for every job that holds an active
        queue slot: dispatch it if it has not been sent yet, then poll it once.
        """
        async with self._tick_lock:
            self._follow_queue()
            for job in self._running_jobs():
                await self._step(job)
            self._follow_queue()
            return self._job

    def _running_jobs(self) -> list[Job]:
        jobs = [entry.job for entry in self.queue.entries if entry.is_active]
        current = self._job
        # A job taken off the queue whose cancellation was refused still runs
        if current is not None and not current.is_terminal and current.is_dispatched:
            if all(job is not current for job in jobs):
                jobs.append(current)
        return jobs

    async def _step(self, job: Job) -> None:
        if job.is_terminal or not job.is_persisted:
            return
        epoch = self._epoch

        if not job.is_dispatched:
            if job.status != VideoStatus.PENDING:
                return
            await self._dispatch(job, epoch)
            if epoch != self._epoch or job.is_terminal or not job.is_dispatched:
                return

        await self._poll(job, epoch)

    async def _dispatch(self, job: Job, epoch: int) -> None:
        job.mark_dispatching()
        self.events.emit(GenerationEvent.VIDEO_STARTED, self.user_id, job.id)

        prompt = job.prompt
        if job.settings.enhance_prompt:
            prompt = await self._client.enhance_prompt(job.prompt)
            if epoch != self._epoch or job.is_terminal:
                return
            if prompt != job.prompt:
                job.enhanced_prompt = prompt

        try:
            external_id = await self._client.submit_job(prompt, job.settings)
        except GenerationError as e:
            if epoch != self._epoch or job.is_terminal:
                return
            logger.warning(f"Dispatch of video {job.id} failed: {e.message}")
            await self._finish(job, e.to_failure())
            return
        except Exception as e:
            if epoch != self._epoch or job.is_terminal:
                return
            logger.error(f"Unexpected error dispatching video {job.id}", exc_info=True)
            await self._finish(job, ApiError(f"Could not submit video: {e}").to_failure())
            return

        if epoch != self._epoch or job.is_terminal:
            # Cancelled or shut down while the submit was in flight
            await self._cancel_orphan(external_id)
            return

        job.mark_dispatched(external_id, estimate_generation_seconds(job.settings))
        logger.info(f"Video {job.id} dispatched as {external_id}")
        await self._save(job)

    async def _poll(self, job: Job, epoch: int) -> None:
        attempt = self._poll_counts.get(job.id, 0) + 1
        self._poll_counts[job.id] = attempt

        result: Optional[PollResult] = None
        try:
            result = await self._client.poll_status(job.external_job_id)
        except GenerationError as e:
            if epoch == self._epoch:
                logger.warning(
                    f"Status check for video {job.id} failed "
                    f"(attempt {attempt}/{self.max_poll_attempts}): {e.message}"
                )
        except Exception:
            if epoch == self._epoch:
                logger.warning(
                    f"Unexpected error checking status of video {job.id} "
                    f"(attempt {attempt}/{self.max_poll_attempts})",
                    exc_info=True,
                )

        if epoch != self._epoch or job.is_terminal:
            logger.debug(f"Discarding stale status response for video {job.id}")
            return

        if result is not None:
            await self._reconcile_job(job, result)

        if not job.is_terminal and attempt >= self.max_poll_attempts:
            logger.warning(f"Video {job.id} still not finished after {attempt} status checks")
            timeout = GenerationTimeoutError(
                f"Video generation did not finish after {attempt} status checks"
            )
            await self._finish(job, timeout.to_failure())

    async def reconcile(self, result: PollResult) -> Optional[Job]:
        """Apply one status response to the current job. No-op once the job is terminal."""
        job = self._job
        if job is not None:
            await self._reconcile_job(job, result)
        return job

    async def _reconcile_job(self, job: Job, result: PollResult) -> None:
        if job.is_terminal or not job.is_dispatched:
            return

        status = result.status
        if status == VideoStatus.COMPLETED:
            if result.video_url:
                job.mark_completed(result.video_url, result.thumbnail_url, result.metadata)
                await self._finish(job)
            else:
                missing = ApiError("Generation finished without a video url")
                await self._finish(job, missing.to_failure())
        elif status == VideoStatus.FAILED:
            await self._finish(job, result.error or failure_from_external(None))
        elif status == VideoStatus.CANCELLED:
            job.mark_cancelled()
            await self._finish(job)
        else:
            if status == VideoStatus.PROCESSING:
                stage = result.stage or GenerationStage.PROCESSING
            else:
                stage = result.stage or job.stage or GenerationStage.INITIALIZING
            job.apply_progress(stage, result.progress, result.estimated_time_remaining)
            self.events.emit(
                GenerationEvent.VIDEO_PROGRESS,
                self.user_id,
                job.id,
                progress=job.progress,
                stage=job.stage.value,
                estimated_time_remaining=job.estimated_time_remaining,
            )
            await self._save(job)

    async def _finish(self, job: Job, failure: Optional[GenerationFailure] = None) -> None:
        if failure is not None:
            job.mark_failed(failure)

        entry = self.queue.entry_for_job(job)
        if entry is not None:
            self.queue.finish(entry.entry_id)

        logger.info(f"Video {job.id} {job.status.value}")
        await self._settle(job)

    async def _settle(self, job: Job) -> None:
        """Record a job that just turned terminal, announce it and move on to the next one."""
        self._poll_counts.pop(job.id, None)
        self._last_finished = job

        try:
            await self._save(job)
            await self._save_queue()
        except Exception:
            logger.error(f"Could not store final state of video {job.id}", exc_info=True)

        if job.status == VideoStatus.FAILED:
            try:
                task = await self._retry_handler.handle_failure(job, self._resubmit)
            except Exception:
                logger.error(f"Could not record failure of video {job.id}", exc_info=True)
            else:
                if task is not None:
                    self._retry_tasks.add(task)
                    task.add_done_callback(self._retry_tasks.discard)

        self._notify_terminal(job)
        self._follow_queue()
        self._sync_polling()

    def _notify_terminal(self, job: Job) -> None:
        data = {}
        if job.status == VideoStatus.COMPLETED:
            data["video_url"] = job.video_url
        elif job.status == VideoStatus.FAILED and job.error:
            data["error"] = job.error.to_dict()
        self.events.emit(_TERMINAL_EVENTS[job.status], self.user_id, job.id, **data)

    async def _resubmit(self, job: Job) -> None:
        if self._retry_target() is not job:
            # Already retried by hand, or a newer failure took its place
            return
        try:
            await self.retry()
        except GenerationError as e:
            logger.warning(f"Automatic retry of video {job.id} was not admitted: {e.message}")

    # ── Poll loop ───────────────────────────────────────────────

    def _sync_polling(self) -> None:
        if self._job is not None and not self._job.is_terminal:
            if self.auto_poll:
                self._start_polling()
        else:
            self._stop_polling()

    def _start_polling(self) -> None:
        if self._poll_task is not None and not self._poll_task.done():
            return
        self._poll_task = asyncio.create_task(
            self._poll_loop(), name=f"video-poll-{self.user_id}"
        )

    def _stop_polling(self) -> None:
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _poll_loop(self) -> None:
        while self._job is not None and not self._job.is_terminal:
            await asyncio.sleep(self.poll_interval)
            try:
                await self.poll_once()
            except Exception as e:
                logger.error(f"Poll loop error for user {self.user_id}: {e}", exc_info=True)

    # ── Cancellation ────────────────────────────────────────────

    async def cancel(self) -> Job:
        """
        Cancel the current job.

        A job not yet sent to the service is cancelled locally. A dispatched
        job is cancelled on the service first; if the service refuses
        (CancellationRejected) or does not answer within cancel_timeout
        (GenerationTimeoutError), the error propagates and the job keeps
        running.
        """
        job = self._job
        if job is None:
            raise InvalidStateError("No active generation to cancel")
        if job.is_terminal:
            raise InvalidStateError(f"Cannot cancel: video is already {job.status.value}")

        if job.is_dispatched:
            try:
                await asyncio.wait_for(
                    self._client.cancel_job(job.external_job_id),
                    timeout=self.cancel_timeout,
                )
            except asyncio.TimeoutError:
                raise GenerationTimeoutError(
                    "Cancellation request timed out",
                    suggested_action="Try cancelling again",
                )
            if job.is_terminal:
                # Finished on its own while the cancel request was in flight
                return job

        job.mark_cancelled()
        entry = self.queue.entry_for_job(job)
        if entry is not None:
            self.queue.dequeue(entry.entry_id)

        logger.info(f"Video {job.id} cancelled by user {self.user_id}")
        await self._settle(job)
        return job

    async def _cancel_orphan(self, external_job_id: str) -> None:
        try:
            await self._client.cancel_job(external_job_id)
        except GenerationError as e:
            logger.warning(f"Could not cancel orphaned generation {external_job_id}: {e.message}")

    # ── Queue operations ────────────────────────────────────────

    async def remove_entry(self, entry_id: str) -> QueueEntry:
        """
        Take an entry off the queue. An active, dispatched job is cancelled
        on a best-effort basis: if the service refuses, the entry is gone from
        the queue but the job may still finish on its own.
        """
        entry = self.queue.dequeue(entry_id)
        await self._release(entry)
        await self._save_queue()
        return entry

    async def clear_queue(self) -> list[QueueEntry]:
        removed = self.queue.clear()
        for entry in removed:
            await self._release(entry)
        await self._save_queue()
        return removed

    async def reprioritize(self, entry_id: str, priority: QueuePriority) -> QueueEntry:
        entry = self.queue.reprioritize(entry_id, priority)
        self._follow_queue()
        await self._save_queue()
        return entry

    async def pause_queue(self) -> None:
        self.queue.pause()
        await self._save_queue()
        self.events.emit(GenerationEvent.QUEUE_PAUSED, self.user_id)

    async def resume_queue(self) -> list[QueueEntry]:
        started = self.queue.resume()
        self._follow_queue()
        await self._save_queue()
        self.events.emit(GenerationEvent.QUEUE_RESUMED, self.user_id, started=len(started))
        self._sync_polling()
        return started

    async def _release(self, entry: QueueEntry) -> None:
        job = entry.job
        if job.is_terminal:
            return

        if job is self._job:
            try:
                await self.cancel()
            except (CancellationRejected, GenerationTimeoutError, ApiError) as e:
                logger.warning(
                    f"Removed video {job.id} from the queue but could not cancel it: {e.message}"
                )
            return

        if job.is_dispatched:
            await self._cancel_orphan(job.external_job_id)
            if job.is_terminal:
                return
        job.mark_cancelled()
        logger.info(f"Video {job.id} cancelled by removal from the queue")
        await self._settle(job)

    # ── Prompt enhancement ──────────────────────────────────────

    async def enhance_prompt(self, prompt: str) -> str:
        if not prompt or not prompt.strip():
            return prompt
        return await self._client.enhance_prompt(prompt.strip())

    # ── Persistence ─────────────────────────────────────────────

    async def _save(self, job: Job) -> None:
        if job.is_persisted:
            await self._repository.update(job)

    async def _save_queue(self) -> None:
        if self._queue_store is not None:
            await self._queue_store.save(self.queue.snapshot())

    # ── Lifecycle ───────────────────────────────────────────────

    async def shutdown(self) -> None:
        """Stop polling and pending automatic retries. Job state is left as is."""
        self._epoch += 1
        tasks = list(self._retry_tasks)
        task = self._poll_task
        self._poll_task = None
        if task is not None and not task.done():
            tasks.append(task)
        for pending in tasks:
            pending.cancel()
        for pending in tasks:
            try:
                await pending
            except asyncio.CancelledError:
                pass
        self._retry_tasks.clear()
        logger.info(f"Orchestrator for user {self.user_id} shut down")
