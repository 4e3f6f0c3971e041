"""
Error taxonomy for video generation.

Every failure the orchestration layer can report is a GenerationError
subclass. Each class carries:
- code: stable machine-readable identifier (also stored on failed jobs)
- retryable: whether retry() may resubmit a job that failed with it
- http_status: what the API layer answers with

A failed job does not hold the exception itself. It holds a
GenerationFailure (a plain value built by to_failure()), so it can be
persisted and serialized.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


@dataclass(frozen=True)
class GenerationFailure:
    """The error recorded on a failed job."""

    code: str
    message: str
    retryable: bool
    suggested_action: Optional[str] = None
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            "suggested_action": self.suggested_action,
            "details": self.details,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GenerationFailure":
        timestamp = data.get("timestamp")
        return cls(
            code=data["code"],
            message=data["message"],
            retryable=bool(data.get("retryable", False)),
            suggested_action=data.get("suggested_action"),
            details=data.get("details") or {},
            timestamp=(
                datetime.fromisoformat(timestamp) if timestamp
                else datetime.now(timezone.utc)
            ),
        )


class GenerationError(Exception):
    code = "GENERATION_ERROR"
    retryable = False
    http_status = 500

    def __init__(
        self,
        message: str,
        suggested_action: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggested_action = suggested_action
        self.details = details or {}

    def to_failure(self) -> GenerationFailure:
        return GenerationFailure(
            code=self.code,
            message=self.message,
            retryable=self.retryable,
            suggested_action=self.suggested_action,
            details=self.details,
        )


class ValidationError(GenerationError):
    code = "INVALID_REQUEST"
    http_status = 422

    def __init__(self, errors: list[str]):
        super().__init__(
            f"Invalid request: {', '.join(errors)}",
            suggested_action="Please check your prompt and generation settings",
            details={"errors": errors},
        )
        self.errors = errors


class PermissionDeniedError(GenerationError):
    code = "PERMISSION_DENIED"
    http_status = 403

    def __init__(self, message: str = "Active subscription required to generate videos"):
        super().__init__(message, suggested_action="Upgrade your plan to generate videos")


class InsufficientCreditsError(PermissionDeniedError):
    code = "INSUFFICIENT_CREDITS"
    http_status = 402

    def __init__(self, required: int, remaining: int):
        GenerationError.__init__(
            self,
            f"Insufficient credits: {required} required, {remaining} remaining",
            suggested_action="Reduce duration, resolution or quality, or add credits",
            details={"required": required, "remaining": remaining},
        )
        self.required = required
        self.remaining = remaining


class ConcurrentGenerationError(GenerationError):
    code = "CONCURRENT_GENERATION"
    http_status = 409

    def __init__(self, message: str = "Another video is still being submitted"):
        super().__init__(message, suggested_action="Wait for the previous submission to finish, then try again")


class ApiError(GenerationError):
    """Failure talking to the generation service. Retryable unless the service says otherwise."""

    code = "API_ERROR"
    retryable = True
    http_status = 502

    def __init__(
        self,
        message: str,
        retryable: bool = True,
        status_code: Optional[int] = None,
        suggested_action: Optional[str] = "Please try again later",
        details: Optional[dict[str, Any]] = None,
    ):
        super().__init__(message, suggested_action=suggested_action, details=details)
        self.retryable = retryable
        self.status_code = status_code


class GenerationTimeoutError(GenerationError):
    code = "TIMEOUT"
    retryable = True
    http_status = 504

    def __init__(
        self,
        message: str = "Video generation timed out",
        suggested_action: str = "Please try again with a shorter duration or lower quality",
    ):
        super().__init__(message, suggested_action=suggested_action)


class CancellationRejected(GenerationError):
    """The service refused to cancel: generation is past the point of no return."""

    code = "CANCELLATION_REJECTED"
    http_status = 409

    def __init__(self, message: str = "Generation can no longer be cancelled"):
        super().__init__(message)


class ContentPolicyViolation(GenerationError):
    code = "CONTENT_POLICY_VIOLATION"
    http_status = 422

    def __init__(self, message: str = "Prompt rejected by content policy"):
        super().__init__(
            message,
            suggested_action="Please modify your prompt to comply with content policies",
        )


class InvalidStateError(GenerationError):
    code = "INVALID_STATE"
    http_status = 409


class RetryExhaustedError(GenerationError):
    code = "RETRY_EXHAUSTED"
    http_status = 409

    def __init__(self, retry_count: int, max_retries: int):
        super().__init__(
            f"Retry limit reached ({retry_count}/{max_retries})",
            suggested_action="Submit a new request with adjusted settings",
            details={"retry_count": retry_count, "max_retries": max_retries},
        )


class QueueFullError(GenerationError):
    code = "QUEUE_FULL"
    http_status = 429

    def __init__(self, max_size: int):
        super().__init__(
            f"Queue is full. Maximum {max_size} videos allowed.",
            suggested_action="Wait for queued videos to finish",
        )


class QueueEntryNotFoundError(GenerationError):
    code = "QUEUE_ENTRY_NOT_FOUND"
    http_status = 404

    def __init__(self, entry_id: str):
        super().__init__(f"Queue entry not found: {entry_id}")
        self.entry_id = entry_id


class VideoNotFoundError(GenerationError):
    code = "VIDEO_NOT_FOUND"
    http_status = 404

    def __init__(self, video_id: str):
        super().__init__(f"Video not found: {video_id}")
        self.video_id = video_id


# Error codes reported by the service in a terminal "failed" status
_EXTERNAL_CODES: dict[str, type[GenerationError]] = {
    ContentPolicyViolation.code: ContentPolicyViolation,
    GenerationTimeoutError.code: GenerationTimeoutError,
}


def failure_from_external(error: Optional[dict[str, Any]]) -> GenerationFailure:
    """Build the failure for an external terminal "failed" status."""
    if not error:
        return GenerationFailure(
            code="PROCESSING_FAILED",
            message="Video generation failed",
            retryable=True,
            suggested_action="Please try again later",
        )

    code = str(error.get("code") or "PROCESSING_FAILED")
    message = str(error.get("message") or "Video generation failed")
    known = _EXTERNAL_CODES.get(code)
    if known is not None:
        failure = known(message).to_failure()
        return GenerationFailure(
            code=failure.code,
            message=failure.message,
            retryable=failure.retryable,
            suggested_action=error.get("suggested_action") or failure.suggested_action,
            details=error.get("details") or {},
        )

    return GenerationFailure(
        code=code,
        message=message,
        retryable=bool(error.get("retryable", True)),
        suggested_action=error.get("suggested_action"),
        details=error.get("details") or {},
    )
