"""
Abstract base class for generation service clients.

The orchestrator talks to the generation service only through this
interface. It never knows whether it is driving Veo over HTTP or the
in-process simulated backend; it looks the client up from the registry by
GenerationBackend.

Same Strategy pattern throughout:
- AbstractGenerationClient = interface
- VeoGenerationClient, SimulatedGenerationClient = implementations
- registry.py = factory lookup

Contract:
- submit_job: start a generation, return the service's job id
- poll_status: one status check (one call = one poll attempt)
- cancel_job: ask the service to stop; raises CancellationRejected if too late
- enhance_prompt: best effort, returns the input unchanged on any failure
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from generation.errors import GenerationFailure
from generation.job import VideoMetadata, VideoSettings
from models.enums import GenerationStage, VideoStatus


@dataclass(frozen=True)
class PollResult:
    """One status response from the generation service, already mapped to our enums."""

    status: VideoStatus
    progress: Optional[int] = None
    estimated_time_remaining: Optional[int] = None
    stage: Optional[GenerationStage] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    metadata: Optional[VideoMetadata] = None
    error: Optional[GenerationFailure] = None


class AbstractGenerationClient(ABC):

    @abstractmethod
    async def submit_job(self, prompt: str, video_settings: VideoSettings) -> str:
        """
        Start a generation.

        Returns:
            the service's job id (stored as Job.external_job_id)

        Raises:
            ApiError, ContentPolicyViolation
        """
        ...

    @abstractmethod
    async def poll_status(self, external_job_id: str) -> PollResult:
        """Check a generation's status. Raises ApiError on transport failures."""
        ...

    @abstractmethod
    async def cancel_job(self, external_job_id: str) -> None:
        """Cancel a generation. Raises CancellationRejected, or ApiError."""
        ...

    @abstractmethod
    async def enhance_prompt(self, prompt: str) -> str:
        """Return a more descriptive prompt, or the original one on failure."""
        ...

    async def health_check(self) -> bool:
        return True

    async def aclose(self) -> None:
        """Release network resources. No-op for in-process clients."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Unique identifier matching GenerationBackend (e.g., 'veo', 'simulated')."""
        ...
