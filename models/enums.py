"""
Shared enumerations used across the entire project.

Using Python enums (inheriting from str) means:
- They serialize to JSON automatically ("pending", not "VideoStatus.PENDING")
- They work as SQLAlchemy column values
- They work as FastAPI query parameters and request fields
- Typos become immediate errors instead of silent bugs
"""

import enum


class VideoStatus(str, enum.Enum):
    PENDING = "pending"          # admitted, waiting in the user's queue
    PROCESSING = "processing"    # dispatched to the generation service
    COMPLETED = "completed"      # finished with a video url
    FAILED = "failed"            # external failure, dispatch error or poll ceiling
    CANCELLED = "cancelled"      # cancelled by the user (or the service)

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {VideoStatus.COMPLETED, VideoStatus.FAILED, VideoStatus.CANCELLED}
)


class GenerationStage(str, enum.Enum):
    """Finer-grained sub-state, only meaningful while pending/processing."""
    QUEUED = "queued"
    INITIALIZING = "initializing"
    GENERATING = "generating"
    PROCESSING = "processing"
    FINALIZING = "finalizing"
    UPLOADING = "uploading"


class VideoResolution(str, enum.Enum):
    SD = "480p"
    HD = "720p"
    FULL_HD = "1080p"


class VideoQuality(str, enum.Enum):
    FAST = "fast"
    BALANCED = "balanced"
    HIGH = "high"


class VideoFormat(str, enum.Enum):
    MP4 = "mp4"
    WEBM = "webm"


class AspectRatio(str, enum.Enum):
    LANDSCAPE = "16:9"
    PORTRAIT = "9:16"
    SQUARE = "1:1"


ALLOWED_DURATIONS = (5, 10, 30)


class QueuePriority(str, enum.Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"

    @property
    def weight(self) -> int:
        return _PRIORITY_WEIGHTS[self]


_PRIORITY_WEIGHTS = {
    QueuePriority.LOW: 1,
    QueuePriority.NORMAL: 5,
    QueuePriority.HIGH: 10,
}


class QueueStatus(str, enum.Enum):
    IDLE = "idle"                # nothing active
    PROCESSING = "processing"    # at least one active entry
    PAUSED = "paused"            # no new entries will be activated


class GenerationBackend(str, enum.Enum):
    VEO = "veo"                  # Veo over the Gemini HTTP API
    SIMULATED = "simulated"      # in-process backend for demos and tests
