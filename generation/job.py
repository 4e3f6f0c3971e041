"""
The Job record: one video-generation request and its lifecycle.

Lifecycle:
    pending/queued ──dispatch──> processing/initializing ──> generating
        ──reconcile──> processing/{processing, finalizing, uploading}
        ──reconcile──> completed | failed | cancelled

Status and stage are only changed through the transition methods below
(mark_dispatching, mark_dispatched, apply_progress, mark_completed,
mark_failed, mark_cancelled). Each one refuses to run on a terminal job,
which keeps terminal states final no matter how many late poll
responses arrive.

Identity is a tagged union:
- Provisional(temp_id): assigned at admission, before the store has answered
- Persisted(id): assigned by the store
"""

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional, Union

from generation.errors import GenerationFailure, InvalidStateError
from models.enums import (
    AspectRatio,
    GenerationStage,
    VideoFormat,
    VideoQuality,
    VideoResolution,
    VideoStatus,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


# ── Identity ────────────────────────────────────────────────────

@dataclass(frozen=True)
class Provisional:
    temp_id: str

    @property
    def value(self) -> str:
        return self.temp_id


@dataclass(frozen=True)
class Persisted:
    id: str

    @property
    def value(self) -> str:
        return self.id


JobIdentity = Union[Provisional, Persisted]


def new_provisional() -> Provisional:
    return Provisional(temp_id=uuid.uuid4().hex)


# ── Settings & request ──────────────────────────────────────────

@dataclass(frozen=True)
class VideoSettings:
    resolution: VideoResolution = VideoResolution.HD
    duration: int = 10
    quality: VideoQuality = VideoQuality.BALANCED
    format: VideoFormat = VideoFormat.MP4
    aspect_ratio: AspectRatio = AspectRatio.LANDSCAPE
    guidance_scale: float = 7.5
    seed: Optional[int] = None
    negative_prompt: str = ""
    enhance_prompt: bool = True
    enable_upscaling: bool = False
    enable_stabilization: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "resolution": self.resolution.value if self.resolution else None,
            "duration": self.duration,
            "quality": self.quality.value if self.quality else None,
            "format": self.format.value,
            "aspect_ratio": self.aspect_ratio.value,
            "guidance_scale": self.guidance_scale,
            "seed": self.seed,
            "negative_prompt": self.negative_prompt,
            "enhance_prompt": self.enhance_prompt,
            "enable_upscaling": self.enable_upscaling,
            "enable_stabilization": self.enable_stabilization,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VideoSettings":
        return cls(
            resolution=VideoResolution(data["resolution"]),
            duration=int(data["duration"]),
            quality=VideoQuality(data["quality"]),
            format=VideoFormat(data.get("format", VideoFormat.MP4.value)),
            aspect_ratio=AspectRatio(data.get("aspect_ratio", AspectRatio.LANDSCAPE.value)),
            guidance_scale=float(data.get("guidance_scale", 7.5)),
            seed=data.get("seed"),
            negative_prompt=data.get("negative_prompt", ""),
            enhance_prompt=bool(data.get("enhance_prompt", True)),
            enable_upscaling=bool(data.get("enable_upscaling", False)),
            enable_stabilization=bool(data.get("enable_stabilization", True)),
        )


@dataclass(frozen=True)
class GenerationRequest:
    """What the caller submits. retry() resubmits the same request."""

    prompt: str
    title: str
    settings: VideoSettings = field(default_factory=VideoSettings)
    description: Optional[str] = None


@dataclass(frozen=True)
class VideoMetadata:
    width: int = 0
    height: int = 0
    duration: float = 0
    fps: int = 30
    format: str = "mp4"
    file_size: int = 0
    bitrate: int = 0
    codec: str = "h264"
    processing_time: float = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "width": self.width,
            "height": self.height,
            "duration": self.duration,
            "fps": self.fps,
            "format": self.format,
            "file_size": self.file_size,
            "bitrate": self.bitrate,
            "codec": self.codec,
            "processing_time": self.processing_time,
        }


# ── Job ─────────────────────────────────────────────────────────

@dataclass
class Job:
    identity: JobIdentity
    user_id: str
    title: str
    prompt: str
    settings: VideoSettings
    cost_credits: int
    max_retries: int
    description: Optional[str] = None
    retry_count: int = 0

    status: VideoStatus = VideoStatus.PENDING
    stage: Optional[GenerationStage] = GenerationStage.QUEUED
    progress: int = 0
    estimated_time_remaining: Optional[int] = None
    error: Optional[GenerationFailure] = None

    external_job_id: Optional[str] = None
    enhanced_prompt: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    metadata: Optional[VideoMetadata] = None

    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)
    dispatched_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def __post_init__(self):
        if self.retry_count > self.max_retries:
            raise ValueError(
                f"retry_count ({self.retry_count}) exceeds max_retries ({self.max_retries})"
            )

    @property
    def id(self) -> str:
        return self.identity.value

    @property
    def is_persisted(self) -> bool:
        return isinstance(self.identity, Persisted)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    @property
    def is_dispatched(self) -> bool:
        return self.external_job_id is not None

    @property
    def generation_time(self) -> Optional[float]:
        """Seconds from dispatch to completion."""
        if self.dispatched_at is None or self.completed_at is None:
            return None
        return (self.completed_at - self.dispatched_at).total_seconds()

    @property
    def can_retry(self) -> bool:
        return (
            self.status == VideoStatus.FAILED
            and self.retry_count < self.max_retries
            and self.error is not None
            and self.error.retryable
        )

    def request(self) -> GenerationRequest:
        return GenerationRequest(
            prompt=self.prompt,
            title=self.title,
            settings=self.settings,
            description=self.description,
        )

    def persisted_as(self, job_id: str) -> None:
        self.identity = Persisted(id=job_id)

    def snapshot(self) -> "Job":
        """Detached copy for read-only observers."""
        return replace(self)

    # ── Transitions ─────────────────────────────────────────────

    def _require_live(self, action: str) -> None:
        if self.is_terminal:
            raise InvalidStateError(f"Cannot {action}: video is already {self.status.value}")

    def _touch(self) -> None:
        self.updated_at = _now()

    def mark_dispatching(self) -> None:
        self._require_live("dispatch")
        self.status = VideoStatus.PROCESSING
        self.stage = GenerationStage.INITIALIZING
        self.dispatched_at = _now()
        self._touch()

    def mark_dispatched(self, external_job_id: str, estimated_time_remaining: Optional[int]) -> None:
        self._require_live("record dispatch")
        self.external_job_id = external_job_id
        self.stage = GenerationStage.GENERATING
        self.estimated_time_remaining = estimated_time_remaining
        self._touch()

    def apply_progress(
        self,
        stage: GenerationStage,
        progress: Optional[int],
        estimated_time_remaining: Optional[int],
    ) -> None:
        self._require_live("update progress")
        self.status = VideoStatus.PROCESSING
        self.stage = stage
        if progress is not None:
            self.progress = max(self.progress, min(100, max(0, int(progress))))
        if estimated_time_remaining is not None:
            self.estimated_time_remaining = estimated_time_remaining
        self._touch()

    def mark_completed(
        self,
        video_url: str,
        thumbnail_url: Optional[str] = None,
        metadata: Optional[VideoMetadata] = None,
    ) -> None:
        self._require_live("complete")
        if not video_url:
            raise ValueError("A completed video needs a video url")
        self.status = VideoStatus.COMPLETED
        self.stage = None
        self.progress = 100
        self.estimated_time_remaining = 0
        self.video_url = video_url
        self.thumbnail_url = thumbnail_url
        self.metadata = metadata
        self.error = None
        self.completed_at = _now()
        self._touch()

    def mark_failed(self, failure: GenerationFailure) -> None:
        self._require_live("fail")
        self.status = VideoStatus.FAILED
        self.stage = None
        self.estimated_time_remaining = None
        self.error = failure
        self.completed_at = _now()
        self._touch()

    def mark_cancelled(self) -> None:
        self._require_live("cancel")
        self.status = VideoStatus.CANCELLED
        self.stage = None
        self.estimated_time_remaining = None
        self.completed_at = _now()
        self._touch()
