"""
Tests for the GenerationOrchestrator state machine.

The background poll loop is off (auto_poll=False) unless a test turns it
on; each poll_once() call is exactly one dispatch-and/or-poll step, so
tests can walk a job through its lifecycle one response at a time.
"""

import asyncio

import httpx
import pytest

from generation.errors import (
    ApiError,
    CancellationRejected,
    ConcurrentGenerationError,
    ContentPolicyViolation,
    GenerationTimeoutError,
    InsufficientCreditsError,
    InvalidStateError,
    PermissionDeniedError,
    RetryExhaustedError,
    ValidationError,
    failure_from_external,
)
from generation.job import GenerationRequest, Persisted, VideoSettings
from models.enums import GenerationStage, QueuePriority, VideoQuality, VideoResolution, VideoStatus
from providers.base import PollResult
from providers.simulated import RejectingCancelClient, SimulatedGenerationClient
from providers.veo import VeoGenerationClient
from scheduler.queue_manager import QueueManager
from storage.repository import InMemoryVideoRepository
from worker.events import GenerationEvent
from worker.orchestrator import GenerationOrchestrator
from worker.permissions import CreditAccount
from worker.retry import RetryHandler

LION = GenerationRequest(
    prompt="A majestic lion walking through the savanna at sunset",
    title="Lion at sunset",
)

COMPLETED = PollResult(
    status=VideoStatus.COMPLETED,
    progress=100,
    video_url="https://cdn.test/lion.mp4",
    thumbnail_url="https://cdn.test/lion.jpg",
)


def _setup(client=None, account=None, repository=None, **options):
    """Orchestrator wired to in-memory collaborators, with an event log."""
    client = client or SimulatedGenerationClient()
    account = account or CreditAccount(user_id="user-1", subscription_active=True)
    options.setdefault("auto_poll", False)
    options.setdefault("poll_interval", 0)
    orchestrator = GenerationOrchestrator(
        user_id="user-1",
        client=client,
        queue=QueueManager("user-1", max_active=1),
        permissions=account,
        repository=repository or InMemoryVideoRepository(),
        **options,
    )

    events = []
    for event in GenerationEvent:
        orchestrator.events.add_listener(event, events.append)
    return orchestrator, client, account, events


def _names(events) -> list[str]:
    return [e.event.value for e in events]


# ── Admission ───────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_submit_admits_pending_persisted_job():
    orchestrator, client, account, events = _setup()

    job = await orchestrator.submit(LION)

    assert job.status == VideoStatus.PENDING
    assert job.stage == GenerationStage.QUEUED
    assert job.cost_credits == 10
    assert isinstance(job.identity, Persisted)
    assert account.credits_used == 10
    assert orchestrator.current_job is job
    assert orchestrator.state == "queued"
    assert _names(events) == ["video_added"]
    # nothing is sent to the service until the first poll step
    assert client.submitted == []


@pytest.mark.asyncio
async def test_insufficient_credits_creates_nothing():
    account = CreditAccount(user_id="user-1", subscription_active=True, credits_total=50)
    orchestrator, client, _, events = _setup(account=account)
    request = GenerationRequest(
        prompt="A lion",
        title="Lion",
        settings=VideoSettings(
            resolution=VideoResolution.FULL_HD, duration=30, quality=VideoQuality.HIGH
        ),
    )

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await orchestrator.submit(request)

    assert exc_info.value.details == {"required": 57, "remaining": 50}
    assert orchestrator.current_job is None
    assert len(orchestrator.queue) == 0
    assert account.credits_used == 0
    assert events == []


@pytest.mark.asyncio
async def test_user_without_permission_is_rejected():
    account = CreditAccount(user_id="user-1", generation_enabled=False)
    orchestrator, _, _, _ = _setup(account=account)

    with pytest.raises(PermissionDeniedError):
        await orchestrator.submit(LION)
    assert orchestrator.current_job is None


@pytest.mark.asyncio
async def test_invalid_request_is_rejected():
    orchestrator, _, account, _ = _setup()

    with pytest.raises(ValidationError):
        await orchestrator.submit(GenerationRequest(prompt="", title="Lion"))
    assert account.credits_used == 0


@pytest.mark.asyncio
async def test_second_submit_waits_in_queue():
    orchestrator, client, account, _ = _setup()
    first = await orchestrator.submit(LION)

    second = await orchestrator.submit(LION)

    assert orchestrator.current_job is first
    assert len(orchestrator.queue) == 2
    assert orchestrator.queue.entry_for_job(second).position == 2
    assert second.status == VideoStatus.PENDING
    assert account.credits_used == 20


@pytest.mark.asyncio
async def test_submit_during_another_admission_is_rejected():
    class SlowRepository(InMemoryVideoRepository):
        async def create(self, job):
            await asyncio.sleep(0)
            return await super().create(job)

    orchestrator, _, _, _ = _setup(repository=SlowRepository())

    results = await asyncio.gather(
        orchestrator.submit(LION), orchestrator.submit(LION), return_exceptions=True
    )

    admitted = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, ConcurrentGenerationError)]
    assert len(admitted) == 1
    assert len(rejected) == 1
    assert len(orchestrator.queue) == 1


@pytest.mark.asyncio
async def test_store_failure_rolls_back_admission():
    class BrokenRepository(InMemoryVideoRepository):
        async def create(self, job):
            raise RuntimeError("database down")

    orchestrator, _, account, events = _setup(repository=BrokenRepository())

    with pytest.raises(RuntimeError):
        await orchestrator.submit(LION)

    assert orchestrator.current_job is None
    assert len(orchestrator.queue) == 0
    assert account.credits_used == 0
    assert events == []


# ── Dispatch and polling ────────────────────────────────────────

@pytest.mark.asyncio
async def test_lion_generation_end_to_end():
    client = SimulatedGenerationClient(script=[
        PollResult(status=VideoStatus.PROCESSING, progress=40),
        COMPLETED,
    ])
    orchestrator, _, _, events = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.PROCESSING
    assert job.stage == GenerationStage.PROCESSING
    assert job.progress == 40
    assert job.enhanced_prompt is not None
    assert client.submitted[0][0] == job.enhanced_prompt

    await orchestrator.poll_once()

    assert job.status == VideoStatus.COMPLETED
    assert job.progress == 100
    assert job.video_url == "https://cdn.test/lion.mp4"
    assert len(orchestrator.queue) == 0

    await orchestrator.poll_once()
    assert len(client.polled) == 2
    assert _names(events).count("video_completed") == 1
    assert _names(events)[:3] == ["video_added", "video_started", "video_progress"]


@pytest.mark.asyncio
async def test_prompt_sent_as_is_when_enhancement_off():
    orchestrator, client, _, _ = _setup()
    request = GenerationRequest(
        prompt="A lion", title="Lion", settings=VideoSettings(enhance_prompt=False)
    )
    job = await orchestrator.submit(request)

    await orchestrator.poll_once()

    assert client.submitted[0][0] == "A lion"
    assert job.enhanced_prompt is None


@pytest.mark.asyncio
async def test_stored_row_follows_job():
    repository = InMemoryVideoRepository()
    client = SimulatedGenerationClient(script=[COMPLETED])
    orchestrator, _, _, _ = _setup(client=client, repository=repository)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    stored = await repository.get(job.id)
    assert stored.status == VideoStatus.COMPLETED
    assert stored.video_url == "https://cdn.test/lion.mp4"


@pytest.mark.asyncio
async def test_job_times_out_after_max_poll_attempts():
    client = SimulatedGenerationClient(progress_step=1)
    orchestrator, _, _, events = _setup(client=client, max_poll_attempts=60)
    job = await orchestrator.submit(LION)

    for _ in range(59):
        await orchestrator.poll_once()
    assert job.status == VideoStatus.PROCESSING

    await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert job.error.code == "TIMEOUT"
    assert job.error.retryable is True
    assert orchestrator.can_retry

    await orchestrator.poll_once()
    assert len(client.polled) == 60
    assert _names(events).count("video_failed") == 1


@pytest.mark.asyncio
async def test_transient_poll_errors_count_as_attempts():
    client = SimulatedGenerationClient(script=[ApiError("blip"), ApiError("blip"), COMPLETED])
    orchestrator, _, _, _ = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()
    await orchestrator.poll_once()

    assert job.status == VideoStatus.PROCESSING
    assert job.error is None
    assert orchestrator.poll_attempts == 2

    await orchestrator.poll_once()
    assert job.status == VideoStatus.COMPLETED


@pytest.mark.asyncio
async def test_dispatch_error_fails_job():
    client = SimulatedGenerationClient(submit_error=ContentPolicyViolation())
    orchestrator, _, _, events = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert job.error.code == "CONTENT_POLICY_VIOLATION"
    assert not orchestrator.can_retry
    assert client.polled == []
    assert "video_failed" in _names(events)


@pytest.mark.asyncio
async def test_completed_without_url_is_a_retryable_failure():
    client = SimulatedGenerationClient(script=[PollResult(status=VideoStatus.COMPLETED, progress=100)])
    orchestrator, _, _, _ = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert job.error.code == "API_ERROR"
    assert job.error.retryable is True


@pytest.mark.asyncio
async def test_external_failure_is_recorded():
    failure = failure_from_external({"code": "GPU_OOM", "message": "Out of memory"})
    client = SimulatedGenerationClient(script=[PollResult(status=VideoStatus.FAILED, error=failure)])
    orchestrator, _, _, _ = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert job.error.code == "GPU_OOM"


@pytest.mark.asyncio
async def test_external_cancellation_is_recorded():
    client = SimulatedGenerationClient(script=[PollResult(status=VideoStatus.CANCELLED)])
    orchestrator, _, _, events = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.CANCELLED
    assert _names(events).count("video_cancelled") == 1


@pytest.mark.asyncio
async def test_pending_report_keeps_job_processing():
    client = SimulatedGenerationClient(script=[PollResult(status=VideoStatus.PENDING)])
    orchestrator, _, _, _ = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.PROCESSING
    assert job.stage == GenerationStage.GENERATING


@pytest.mark.asyncio
async def test_terminal_state_ignores_late_responses():
    client = SimulatedGenerationClient(script=[COMPLETED])
    orchestrator, _, _, events = _setup(client=client)
    job = await orchestrator.submit(LION)
    await orchestrator.poll_once()

    await orchestrator.reconcile(PollResult(
        status=VideoStatus.FAILED, error=failure_from_external(None)
    ))
    await orchestrator.reconcile(PollResult(status=VideoStatus.PROCESSING, progress=10))

    assert job.status == VideoStatus.COMPLETED
    assert job.progress == 100
    assert _names(events).count("video_completed") == 1
    assert "video_failed" not in _names(events)


@pytest.mark.asyncio
async def test_response_for_cancelled_job_is_discarded():
    orchestrator = None

    async def cancel_mid_poll(external_job_id):
        await orchestrator.cancel()

    client = SimulatedGenerationClient(script=[COMPLETED], on_poll=cancel_mid_poll)
    orchestrator, _, _, events = _setup(client=client)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.CANCELLED
    assert job.video_url is None
    assert "video_completed" not in _names(events)
    assert _names(events).count("video_cancelled") == 1


@pytest.mark.asyncio
async def test_background_poll_loop_drives_job_to_completion():
    orchestrator, _, _, _ = _setup(auto_poll=True, poll_interval=0)
    done = asyncio.Event()
    orchestrator.events.add_listener(GenerationEvent.VIDEO_COMPLETED, lambda e: done.set())

    job = await orchestrator.submit(LION)
    await asyncio.wait_for(done.wait(), timeout=5)

    assert job.status == VideoStatus.COMPLETED
    await orchestrator.shutdown()


@pytest.mark.asyncio
async def test_shutdown_stops_polling_and_keeps_job_state():
    orchestrator, client, _, _ = _setup(auto_poll=True, poll_interval=60)
    job = await orchestrator.submit(LION)

    await orchestrator.shutdown()
    await orchestrator.shutdown()

    assert job.status == VideoStatus.PENDING
    assert job.stage == GenerationStage.QUEUED
    assert client.submitted == []
    assert orchestrator.current_job is job


# ── Cancellation ────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_cancel_before_dispatch_never_contacts_service():
    orchestrator, client, _, events = _setup()
    job = await orchestrator.submit(LION)

    await orchestrator.cancel()

    assert job.status == VideoStatus.CANCELLED
    assert client.cancelled == []
    assert client.submitted == []
    assert len(orchestrator.queue) == 0
    assert _names(events) == ["video_added", "video_cancelled"]


@pytest.mark.asyncio
async def test_cancel_dispatched_job():
    orchestrator, client, _, _ = _setup()
    job = await orchestrator.submit(LION)
    await orchestrator.poll_once()

    await orchestrator.cancel()

    assert job.status == VideoStatus.CANCELLED
    assert client.cancelled == [job.external_job_id]
    assert not orchestrator.can_cancel


@pytest.mark.asyncio
async def test_rejected_cancel_leaves_job_running():
    client = RejectingCancelClient(script=[
        PollResult(status=VideoStatus.PROCESSING, progress=80, stage=GenerationStage.FINALIZING),
        COMPLETED,
    ])
    orchestrator, _, _, _ = _setup(client=client)
    job = await orchestrator.submit(LION)
    await orchestrator.poll_once()

    with pytest.raises(CancellationRejected):
        await orchestrator.cancel()

    assert job.status == VideoStatus.PROCESSING
    await orchestrator.poll_once()
    assert job.status == VideoStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_times_out():
    client = SimulatedGenerationClient(cancel_delay=1.0)
    orchestrator, _, _, _ = _setup(client=client, cancel_timeout=0.01)
    job = await orchestrator.submit(LION)
    await orchestrator.poll_once()

    with pytest.raises(GenerationTimeoutError):
        await orchestrator.cancel()
    assert job.status == VideoStatus.PROCESSING


@pytest.mark.asyncio
async def test_cancel_without_job_or_after_finish():
    orchestrator, _, _, _ = _setup(client=SimulatedGenerationClient(script=[COMPLETED]))

    with pytest.raises(InvalidStateError):
        await orchestrator.cancel()

    await orchestrator.submit(LION)
    await orchestrator.poll_once()

    with pytest.raises(InvalidStateError):
        await orchestrator.cancel()


# ── Retry ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_retry_resubmits_as_new_job():
    client = SimulatedGenerationClient(script=[
        PollResult(status=VideoStatus.FAILED, error=failure_from_external(None)),
    ])
    repository = InMemoryVideoRepository()
    orchestrator, _, account, _ = _setup(client=client, repository=repository)
    failed = await orchestrator.submit(LION)
    await orchestrator.poll_once()

    retried = await orchestrator.retry()

    assert retried is not failed
    assert retried.id != failed.id
    assert retried.retry_count == 1
    assert retried.prompt == failed.prompt
    assert retried.status == VideoStatus.PENDING
    assert failed.status == VideoStatus.FAILED
    assert account.credits_used == 20
    assert (await repository.get(failed.id)).status == VideoStatus.FAILED


@pytest.mark.asyncio
async def test_retry_exhausted_creates_no_job():
    client = SimulatedGenerationClient(fail_probability=1.0)
    orchestrator, _, account, _ = _setup(client=client, max_retries=1)
    await orchestrator.submit(LION)
    await orchestrator.poll_once()
    await orchestrator.retry()
    await orchestrator.poll_once()
    last = orchestrator.current_job

    with pytest.raises(RetryExhaustedError) as exc_info:
        await orchestrator.retry()

    assert exc_info.value.retryable is False
    assert orchestrator.current_job is last
    assert last.retry_count == 1
    assert account.credits_used == 20


@pytest.mark.asyncio
async def test_retry_requires_failed_job():
    orchestrator, _, _, _ = _setup()

    with pytest.raises(InvalidStateError):
        await orchestrator.retry()

    await orchestrator.submit(LION)
    with pytest.raises(InvalidStateError):
        await orchestrator.retry()


# ── Queue operations ────────────────────────────────────────────

@pytest.mark.asyncio
async def test_paused_queue_holds_dispatch():
    orchestrator, client, _, events = _setup()
    await orchestrator.pause_queue()
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()
    assert client.submitted == []
    assert job.status == VideoStatus.PENDING

    await orchestrator.resume_queue()
    await orchestrator.poll_once()

    assert job.is_dispatched
    assert "queue_paused" in _names(events)
    assert "queue_resumed" in _names(events)


@pytest.mark.asyncio
async def test_remove_entry_with_rejected_cancel_keeps_job_alive():
    client = RejectingCancelClient(script=[
        PollResult(status=VideoStatus.PROCESSING, progress=90, stage=GenerationStage.UPLOADING),
        COMPLETED,
    ])
    orchestrator, _, _, _ = _setup(client=client)
    job = await orchestrator.submit(LION)
    await orchestrator.poll_once()
    entry = orchestrator.queue.entry_for_job(job)

    await orchestrator.remove_entry(entry.entry_id)

    assert len(orchestrator.queue) == 0
    assert job.status == VideoStatus.PROCESSING

    await orchestrator.poll_once()
    assert job.status == VideoStatus.COMPLETED


@pytest.mark.asyncio
async def test_clear_queue_cancels_current_job():
    orchestrator, client, _, _ = _setup()
    job = await orchestrator.submit(LION)
    await orchestrator.poll_once()

    removed = await orchestrator.clear_queue()

    assert [e.job for e in removed] == [job]
    assert job.status == VideoStatus.CANCELLED
    assert client.cancelled == [job.external_job_id]


@pytest.mark.asyncio
async def test_reprioritize_current_entry():
    orchestrator, _, _, _ = _setup()
    job = await orchestrator.submit(LION)
    entry = orchestrator.queue.entry_for_job(job)

    updated = await orchestrator.reprioritize(entry.entry_id, QueuePriority.HIGH)

    assert updated.priority == QueuePriority.HIGH


@pytest.mark.asyncio
async def test_enhance_prompt_is_best_effort_passthrough():
    orchestrator, _, _, _ = _setup()

    assert (await orchestrator.enhance_prompt("A lion")).startswith("A lion")
    assert await orchestrator.enhance_prompt("   ") == "   "


# ── Queue of several videos ─────────────────────────────────────

def _request(title: str) -> GenerationRequest:
    return GenerationRequest(
        prompt=f"A short clip of {title}",
        title=title,
        settings=VideoSettings(enhance_prompt=False),
    )


@pytest.mark.asyncio
async def test_queued_videos_run_one_after_another_by_priority():
    client = SimulatedGenerationClient(progress_step=100)
    orchestrator, _, _, events = _setup(client=client)

    first = await orchestrator.submit(_request("first"), QueuePriority.NORMAL)
    low = await orchestrator.submit(_request("low"), QueuePriority.LOW)
    high = await orchestrator.submit(_request("high"), QueuePriority.HIGH)

    assert [e.job for e in orchestrator.queue.entries] == [first, high, low]
    assert [orchestrator.queue.entry_for_job(j).position for j in (first, high, low)] == [1, 2, 3]

    await orchestrator.poll_once()
    assert first.status == VideoStatus.COMPLETED
    assert orchestrator.current_job is high
    assert orchestrator.queue.entry_for_job(high).is_active
    assert low.status == VideoStatus.PENDING

    await orchestrator.poll_once()
    await orchestrator.poll_once()

    completed = [e.video_id for e in events if e.event == GenerationEvent.VIDEO_COMPLETED]
    assert completed == [first.id, high.id, low.id]
    assert [prompt for prompt, _ in client.submitted] == [
        first.prompt, high.prompt, low.prompt,
    ]
    assert len(orchestrator.queue) == 0
    assert orchestrator.queue.stats().completed == 3
    assert orchestrator.current_job is low


@pytest.mark.asyncio
async def test_paused_queue_holds_next_video():
    client = SimulatedGenerationClient(progress_step=100)
    orchestrator, _, _, _ = _setup(client=client)
    first = await orchestrator.submit(_request("first"))
    second = await orchestrator.submit(_request("second"))

    await orchestrator.pause_queue()
    await orchestrator.poll_once()

    assert first.status == VideoStatus.COMPLETED
    assert orchestrator.current_job is second
    assert orchestrator.state == "queued"

    await orchestrator.poll_once()
    assert not second.is_dispatched

    await orchestrator.resume_queue()
    await orchestrator.poll_once()
    assert second.status == VideoStatus.COMPLETED


@pytest.mark.asyncio
async def test_cancel_current_starts_next_video():
    orchestrator, client, _, events = _setup()
    first = await orchestrator.submit(_request("first"))
    second = await orchestrator.submit(_request("second"))
    await orchestrator.poll_once()

    await orchestrator.cancel()

    assert first.status == VideoStatus.CANCELLED
    assert orchestrator.current_job is second
    assert orchestrator.queue.entry_for_job(second).is_active

    await orchestrator.poll_once()
    assert second.is_dispatched
    assert _names(events).count("video_cancelled") == 1


@pytest.mark.asyncio
async def test_removing_waiting_entry_cancels_only_that_video():
    orchestrator, client, _, events = _setup()
    first = await orchestrator.submit(_request("first"))
    second = await orchestrator.submit(_request("second"))
    await orchestrator.poll_once()

    await orchestrator.remove_entry(orchestrator.queue.entry_for_job(second).entry_id)

    assert second.status == VideoStatus.CANCELLED
    assert first.status == VideoStatus.PROCESSING
    assert orchestrator.current_job is first
    assert client.cancelled == []
    cancelled = [e.video_id for e in events if e.event == GenerationEvent.VIDEO_CANCELLED]
    assert cancelled == [second.id]


@pytest.mark.asyncio
async def test_failed_video_can_be_retried_after_next_one_started():
    client = SimulatedGenerationClient(script=[
        PollResult(status=VideoStatus.FAILED, error=failure_from_external(None)),
    ])
    orchestrator, _, _, _ = _setup(client=client)
    failed = await orchestrator.submit(_request("first"))
    second = await orchestrator.submit(_request("second"))

    await orchestrator.poll_once()

    assert failed.status == VideoStatus.FAILED
    assert orchestrator.current_job is second
    assert orchestrator.can_retry

    retried = await orchestrator.retry()

    assert retried.retry_count == 1
    assert retried.title == failed.title
    assert [e.job for e in orchestrator.queue.entries] == [second, retried]
    assert not orchestrator.can_retry


# ── Malformed or unexpected service behaviour ───────────────────

@pytest.mark.asyncio
async def test_malformed_submit_response_fails_video():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>oops</html>")

    veo = VeoGenerationClient(
        api_key="test-key",
        base_url="https://veo.test/v1beta",
        retry_attempts=0,
        transport=httpx.MockTransport(handler),
    )
    orchestrator, _, _, events = _setup(client=veo, max_poll_attempts=3)
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert job.error.code == "API_ERROR"
    assert job.error.retryable is True
    assert _names(events).count("video_failed") == 1
    assert len(orchestrator.queue) == 0

    # The user is not blocked by the broken video
    next_job = await orchestrator.submit(LION)
    assert orchestrator.current_job is next_job
    await veo.aclose()


@pytest.mark.asyncio
async def test_unexpected_submit_error_fails_video():
    class BrokenSubmitClient(SimulatedGenerationClient):
        async def submit_job(self, prompt, video_settings):
            raise RuntimeError("connection pool exhausted")

    orchestrator, _, _, _ = _setup(client=BrokenSubmitClient())
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert job.error.code == "API_ERROR"
    assert orchestrator.can_retry


@pytest.mark.asyncio
async def test_unexpected_poll_errors_still_reach_poll_ceiling():
    class BrokenPollClient(SimulatedGenerationClient):
        async def poll_status(self, external_job_id):
            raise KeyError("status")

    orchestrator, _, _, _ = _setup(client=BrokenPollClient(), max_poll_attempts=3)
    job = await orchestrator.submit(LION)

    for _ in range(3):
        await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert job.error.code == "TIMEOUT"


# ── Terminal events when storage fails ──────────────────────────

class FinalUpdateFailsRepository(InMemoryVideoRepository):
    async def update(self, job):
        if job.is_terminal:
            raise RuntimeError("database down")
        await super().update(job)


@pytest.mark.asyncio
async def test_completion_is_announced_when_store_fails():
    client = SimulatedGenerationClient(script=[COMPLETED])
    orchestrator, _, _, events = _setup(client=client, repository=FinalUpdateFailsRepository())
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.COMPLETED
    assert _names(events).count("video_completed") == 1
    assert len(orchestrator.queue) == 0


@pytest.mark.asyncio
async def test_cancellation_is_announced_when_store_fails():
    orchestrator, _, _, events = _setup(repository=FinalUpdateFailsRepository())
    job = await orchestrator.submit(LION)

    cancelled = await orchestrator.cancel()

    assert cancelled is job
    assert job.status == VideoStatus.CANCELLED
    assert _names(events).count("video_cancelled") == 1


@pytest.mark.asyncio
async def test_failure_is_announced_when_dead_letter_push_fails():
    class UnreachableDeadLetter(RetryHandler):
        async def handle_failure(self, job, resubmit=None):
            raise ConnectionError("redis down")

    client = SimulatedGenerationClient(submit_error=ContentPolicyViolation())
    orchestrator, _, _, events = _setup(client=client, retry_handler=UnreachableDeadLetter())
    job = await orchestrator.submit(LION)

    await orchestrator.poll_once()

    assert job.status == VideoStatus.FAILED
    assert _names(events).count("video_failed") == 1


# ── Automatic retry ─────────────────────────────────────────────

@pytest.mark.asyncio
async def test_auto_retry_resubmits_retryable_failure():
    client = SimulatedGenerationClient(script=[
        PollResult(status=VideoStatus.FAILED, error=failure_from_external(None)),
    ])
    handler = RetryHandler(auto_retry=True, retry_delay=0)
    orchestrator, _, account, events = _setup(client=client, retry_handler=handler)
    failed = await orchestrator.submit(LION)

    await orchestrator.poll_once()
    await asyncio.gather(*orchestrator.retry_tasks)

    retried = orchestrator.current_job
    assert retried is not failed
    assert retried.retry_count == 1
    assert retried.status == VideoStatus.PENDING
    assert account.credits_used == 20
    assert _names(events).count("video_added") == 2

    await orchestrator.poll_once()
    for _ in range(3):
        await orchestrator.poll_once()
    assert retried.status == VideoStatus.COMPLETED


@pytest.mark.asyncio
async def test_auto_retry_stops_at_max_retries():
    client = SimulatedGenerationClient(fail_probability=1.0)
    handler = RetryHandler(auto_retry=True, retry_delay=0)
    orchestrator, _, _, _ = _setup(client=client, retry_handler=handler, max_retries=1)
    await orchestrator.submit(LION)

    await orchestrator.poll_once()
    await asyncio.gather(*orchestrator.retry_tasks)
    await orchestrator.poll_once()

    last = orchestrator.current_job
    assert last.retry_count == 1
    assert last.status == VideoStatus.FAILED
    assert orchestrator.retry_tasks == set()
    assert not orchestrator.can_retry


@pytest.mark.asyncio
async def test_manual_retry_supersedes_scheduled_auto_retry():
    client = SimulatedGenerationClient(script=[
        PollResult(status=VideoStatus.FAILED, error=failure_from_external(None)),
    ])
    handler = RetryHandler(auto_retry=True, retry_delay=0)
    orchestrator, _, account, _ = _setup(client=client, retry_handler=handler)
    await orchestrator.submit(LION)
    await orchestrator.poll_once()
    pending = orchestrator.retry_tasks

    await orchestrator.retry()
    await asyncio.gather(*pending)

    assert len(orchestrator.queue) == 1
    assert account.credits_used == 20


@pytest.mark.asyncio
async def test_shutdown_cancels_scheduled_auto_retry():
    client = SimulatedGenerationClient(script=[
        PollResult(status=VideoStatus.FAILED, error=failure_from_external(None)),
    ])
    handler = RetryHandler(auto_retry=True, retry_delay=60)
    orchestrator, _, _, _ = _setup(client=client, retry_handler=handler)
    failed = await orchestrator.submit(LION)
    await orchestrator.poll_once()
    assert len(orchestrator.retry_tasks) == 1

    await orchestrator.shutdown()

    assert orchestrator.retry_tasks == set()
    assert orchestrator.current_job is failed
    assert len(orchestrator.queue) == 0
