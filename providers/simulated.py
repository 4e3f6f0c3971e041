"""
Simulated generation backend.

This is the most useful client for demos and testing because:
- Progress is deterministic: every poll advances a job by progress_step
- You control failures: fail_probability, a scripted sequence of responses,
  a submit error, or a cancellation error

Example setups:
    SimulatedGenerationClient()                          → every job completes after 4 polls
    SimulatedGenerationClient(progress_step=10)          → 10 polls per job
    SimulatedGenerationClient(fail_probability=1.0)      → every job fails (demo retry path)
    SimulatedGenerationClient(script=[                   → exact responses, in order
        PollResult(status=VideoStatus.PROCESSING, progress=40),
        ApiError("flaky network"),
        PollResult(status=VideoStatus.COMPLETED, video_url="https://x/v.mp4"),
    ])

Once a script runs out, polls fall back to the deterministic progression.
"""

import asyncio
import logging
import random
import uuid
from collections import deque
from typing import Awaitable, Callable, Iterable, Optional, Union

from generation.errors import CancellationRejected, GenerationError, failure_from_external
from generation.job import VideoMetadata, VideoSettings
from models.enums import GenerationStage, VideoStatus
from providers.base import AbstractGenerationClient, PollResult

logger = logging.getLogger(__name__)

ScriptItem = Union[PollResult, GenerationError]


def _stage_for(progress: int) -> GenerationStage:
    if progress < 50:
        return GenerationStage.GENERATING
    if progress < 80:
        return GenerationStage.PROCESSING
    if progress < 95:
        return GenerationStage.FINALIZING
    return GenerationStage.UPLOADING


class SimulatedGenerationClient(AbstractGenerationClient):

    def __init__(
        self,
        progress_step: int = 25,
        seconds_per_step: int = 3,
        fail_probability: float = 0.0,
        script: Optional[Iterable[ScriptItem]] = None,
        submit_error: Optional[GenerationError] = None,
        cancel_error: Optional[GenerationError] = None,
        cancel_delay: float = 0.0,
        on_poll: Optional[Callable[[str], Awaitable[None]]] = None,
    ):
        self.progress_step = progress_step
        self.seconds_per_step = seconds_per_step
        self.fail_probability = fail_probability
        self.script: deque[ScriptItem] = deque(script or [])
        self.submit_error = submit_error
        self.cancel_error = cancel_error
        self.cancel_delay = cancel_delay
        self.on_poll = on_poll

        # Call log, inspected by tests
        self.submitted: list[tuple[str, VideoSettings]] = []
        self.polled: list[str] = []
        self.cancelled: list[str] = []

        self._progress: dict[str, int] = {}

    @property
    def backend_name(self) -> str:
        return "simulated"

    async def submit_job(self, prompt: str, video_settings: VideoSettings) -> str:
        if self.submit_error is not None:
            raise self.submit_error

        job_id = f"sim-{uuid.uuid4().hex[:12]}"
        self.submitted.append((prompt, video_settings))
        self._progress[job_id] = 0
        logger.debug(f"Simulated job {job_id} submitted")
        return job_id

    async def poll_status(self, external_job_id: str) -> PollResult:
        self.polled.append(external_job_id)
        if self.on_poll is not None:
            await self.on_poll(external_job_id)

        if self.script:
            item = self.script.popleft()
            if isinstance(item, GenerationError):
                raise item
            return item

        # Check for simulated failure BEFORE advancing
        if random.random() < self.fail_probability:
            return PollResult(
                status=VideoStatus.FAILED,
                error=failure_from_external({
                    "code": "PROCESSING_FAILED",
                    "message": f"Simulated failure (fail_probability={self.fail_probability})",
                    "retryable": True,
                }),
            )

        progress = min(100, self._progress.get(external_job_id, 0) + self.progress_step)
        self._progress[external_job_id] = progress

        if progress >= 100:
            return PollResult(
                status=VideoStatus.COMPLETED,
                progress=100,
                estimated_time_remaining=0,
                video_url=f"https://simulated.local/videos/{external_job_id}.mp4",
                thumbnail_url=f"https://simulated.local/thumbnails/{external_job_id}.jpg",
                metadata=VideoMetadata(width=1280, height=720, duration=10, file_size=4_000_000),
            )

        remaining_steps = -(-(100 - progress) // self.progress_step)
        return PollResult(
            status=VideoStatus.PROCESSING,
            progress=progress,
            stage=_stage_for(progress),
            estimated_time_remaining=remaining_steps * self.seconds_per_step,
        )

    async def cancel_job(self, external_job_id: str) -> None:
        if self.cancel_delay:
            await asyncio.sleep(self.cancel_delay)
        if self.cancel_error is not None:
            raise self.cancel_error
        self.cancelled.append(external_job_id)
        self._progress.pop(external_job_id, None)

    async def enhance_prompt(self, prompt: str) -> str:
        return f"{prompt}, cinematic lighting, highly detailed, smooth camera motion"


class RejectingCancelClient(SimulatedGenerationClient):
    """Simulated backend that is always past the point of no return."""

    def __init__(self, **kwargs):
        kwargs.setdefault("cancel_error", CancellationRejected())
        super().__init__(**kwargs)
