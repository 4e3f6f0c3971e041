"""
Pydantic schemas for the /videos endpoints.

These are NOT the domain types. They define the HTTP contract and convert
to / from generation.job:
- VideoSettingsIn → VideoSettings (ranges are checked by the domain
  validator, so an out-of-range duration comes back as INVALID_REQUEST)
- VideoCreate → GenerationRequest + queue priority
- VideoResponse ← Job
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from generation.cost import GenerationCost
from generation.job import GenerationRequest, Job, VideoSettings
from models.enums import AspectRatio, QueuePriority, VideoFormat, VideoQuality, VideoResolution


class VideoSettingsIn(BaseModel):
    resolution: VideoResolution = VideoResolution.HD
    duration: int = Field(default=10, description="Seconds: 5, 10 or 30")
    quality: VideoQuality = VideoQuality.BALANCED
    format: VideoFormat = VideoFormat.MP4
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    guidance_scale: float = Field(default=7.5, description="1.0 to 20.0")
    seed: Optional[int] = None
    negative_prompt: str = ""
    enhance_prompt: bool = True
    enable_upscaling: bool = False
    enable_stabilization: bool = True

    def to_domain(self) -> VideoSettings:
        return VideoSettings(**self.model_dump())


class VideoCreate(BaseModel):
    """Request body for POST /videos/."""

    prompt: str = Field(..., max_length=2000, examples=["A majestic lion walking through the savanna at sunset"])
    title: str = Field(..., max_length=255, examples=["Lion at sunset"])
    description: Optional[str] = None
    settings: VideoSettingsIn = Field(default_factory=VideoSettingsIn)
    priority: QueuePriority = QueuePriority.NORMAL

    def to_request(self) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            title=self.title,
            settings=self.settings.to_domain(),
            description=self.description,
        )


class VideoResponse(BaseModel):
    id: str
    persisted: bool
    user_id: str
    title: str
    description: Optional[str] = None
    prompt: str
    enhanced_prompt: Optional[str] = None
    settings: dict[str, Any]
    status: str
    stage: Optional[str] = None
    progress: int
    estimated_time_remaining: Optional[int] = None
    cost_credits: int
    retry_count: int
    max_retries: int
    error: Optional[dict[str, Any]] = None
    external_job_id: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    metadata: Optional[dict[str, Any]] = None
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    generation_time: Optional[float] = None

    @classmethod
    def from_job(cls, job: Job) -> "VideoResponse":
        return cls(
            id=job.id,
            persisted=job.is_persisted,
            user_id=job.user_id,
            title=job.title,
            description=job.description,
            prompt=job.prompt,
            enhanced_prompt=job.enhanced_prompt,
            settings=job.settings.to_dict(),
            status=job.status.value,
            stage=job.stage.value if job.stage else None,
            progress=job.progress,
            estimated_time_remaining=job.estimated_time_remaining,
            cost_credits=job.cost_credits,
            retry_count=job.retry_count,
            max_retries=job.max_retries,
            error=job.error.to_dict() if job.error else None,
            external_job_id=job.external_job_id,
            video_url=job.video_url,
            thumbnail_url=job.thumbnail_url,
            metadata=job.metadata.to_dict() if job.metadata else None,
            created_at=job.created_at,
            updated_at=job.updated_at,
            completed_at=job.completed_at,
            generation_time=job.generation_time,
        )


class VideoListResponse(BaseModel):
    videos: list[VideoResponse]
    page: int
    page_size: int


class CurrentGenerationResponse(BaseModel):
    """Response body for GET /videos/current."""

    state: str
    can_cancel: bool
    can_retry: bool
    video: Optional[VideoResponse] = None
    queue_position: Optional[int] = None
    estimated_wait: Optional[float] = None


class CostResponse(BaseModel):
    total_credits: int
    usd_cost: float
    base_credits: int
    resolution_multiplier: float
    duration_multiplier: float
    quality_multiplier: float
    upscaling_multiplier: float
    remaining_credits: int
    affordable: bool

    @classmethod
    def from_cost(cls, cost: GenerationCost, remaining: int) -> "CostResponse":
        return cls(
            total_credits=cost.total_credits,
            usd_cost=cost.usd_cost,
            base_credits=cost.base_credits,
            resolution_multiplier=cost.resolution_multiplier,
            duration_multiplier=cost.duration_multiplier,
            quality_multiplier=cost.quality_multiplier,
            upscaling_multiplier=cost.upscaling_multiplier,
            remaining_credits=remaining,
            affordable=remaining >= cost.total_credits,
        )


class EnhancePromptRequest(BaseModel):
    prompt: str = Field(..., max_length=2000)


class EnhancePromptResponse(BaseModel):
    original: str
    enhanced: str
