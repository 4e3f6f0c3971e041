"""Request validation performed before admission."""

from generation.errors import ValidationError
from generation.job import GenerationRequest, VideoSettings
from models.enums import ALLOWED_DURATIONS

MIN_GUIDANCE_SCALE = 1.0
MAX_GUIDANCE_SCALE = 20.0


def settings_errors(video_settings: VideoSettings) -> list[str]:
    """Return every problem with the settings (empty list = valid)."""
    errors: list[str] = []

    if not video_settings.resolution:
        errors.append("Resolution is required")

    if not video_settings.duration:
        errors.append("Duration is required")
    elif video_settings.duration not in ALLOWED_DURATIONS:
        allowed = ", ".join(str(d) for d in ALLOWED_DURATIONS)
        errors.append(f"Duration must be one of {allowed} seconds")

    if not video_settings.quality:
        errors.append("Quality is required")

    if video_settings.guidance_scale is None or not (
        MIN_GUIDANCE_SCALE <= video_settings.guidance_scale <= MAX_GUIDANCE_SCALE
    ):
        errors.append("Guidance scale must be between 1 and 20")

    return errors


def validate_request(request: GenerationRequest) -> None:
    """Raise ValidationError listing every problem with the request."""
    errors: list[str] = []
    if not request.prompt or not request.prompt.strip():
        errors.append("Prompt is required")
    if not request.title or not request.title.strip():
        errors.append("Title is required")
    errors.extend(settings_errors(request.settings))

    if errors:
        raise ValidationError(errors)
