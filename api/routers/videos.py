"""
Video generation endpoints. Every route acts for the X-User-Id caller.

POST   /videos/                  → Submit a generation (201)
GET    /videos/current           → The caller's current generation + queue position
POST   /videos/current/refresh   → Run one poll step now
POST   /videos/current/cancel    → Cancel the current generation
POST   /videos/current/retry     → Resubmit a failed generation as a new video
POST   /videos/cost              → Price a set of settings
POST   /videos/enhance-prompt    → Suggest a more descriptive prompt
GET    /videos/                  → History, newest first
GET    /videos/{video_id}        → One video
DELETE /videos/{video_id}        → Delete a finished video from history

The routes stay thin: domain errors (GenerationError) propagate to the
handler registered in api/main.py, which turns them into JSON with the
error's code, retryable flag and suggested action.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_registry, get_session, get_user_id
from api.schemas.video import (
    CostResponse,
    CurrentGenerationResponse,
    EnhancePromptRequest,
    EnhancePromptResponse,
    VideoCreate,
    VideoListResponse,
    VideoResponse,
    VideoSettingsIn,
)
from generation.errors import InvalidStateError, ValidationError, VideoNotFoundError
from generation.validation import settings_errors
from models.enums import VideoStatus
from worker.session import GenerationSession, SessionRegistry

router = APIRouter(prefix="/videos", tags=["videos"])


@router.post("/", response_model=VideoResponse, status_code=201)
async def create_video(
    video_in: VideoCreate,
    session: GenerationSession = Depends(get_session),
) -> VideoResponse:
    """
    Submit a new generation.

    Admission (validation, permission, credits) happens synchronously; the
    video comes back pending and queued. Dispatch and polling happen in the
    background.
    """
    job = await session.orchestrator.submit(video_in.to_request(), video_in.priority)
    return VideoResponse.from_job(job)


@router.get("/current", response_model=CurrentGenerationResponse)
async def get_current(session: GenerationSession = Depends(get_session)) -> CurrentGenerationResponse:
    orchestrator = session.orchestrator
    job = orchestrator.current_job
    entry = orchestrator.current_entry

    position = None
    wait = None
    if job is not None and entry is not None and session.queue.entry_for_job(job) is entry:
        position = session.queue.position(entry.entry_id)
        wait = session.queue.estimated_wait(entry.entry_id)

    return CurrentGenerationResponse(
        state=orchestrator.state,
        can_cancel=orchestrator.can_cancel,
        can_retry=orchestrator.can_retry,
        video=VideoResponse.from_job(job) if job else None,
        queue_position=position,
        estimated_wait=wait,
    )


@router.post("/current/refresh", response_model=VideoResponse)
async def refresh_current(session: GenerationSession = Depends(get_session)) -> VideoResponse:
    job = await session.orchestrator.poll_once()
    if job is None:
        raise InvalidStateError("No generation to refresh")
    return VideoResponse.from_job(job)


@router.post("/current/cancel", response_model=VideoResponse)
async def cancel_current(session: GenerationSession = Depends(get_session)) -> VideoResponse:
    job = await session.orchestrator.cancel()
    return VideoResponse.from_job(job)


@router.post("/current/retry", response_model=VideoResponse, status_code=201)
async def retry_current(session: GenerationSession = Depends(get_session)) -> VideoResponse:
    job = await session.orchestrator.retry()
    return VideoResponse.from_job(job)


@router.post("/cost", response_model=CostResponse)
async def estimate_cost(
    settings_in: VideoSettingsIn,
    session: GenerationSession = Depends(get_session),
) -> CostResponse:
    video_settings = settings_in.to_domain()
    errors = settings_errors(video_settings)
    if errors:
        raise ValidationError(errors)
    cost = session.orchestrator.estimate_cost(video_settings)
    return CostResponse.from_cost(cost, session.permissions.remaining_credits())


@router.post("/enhance-prompt", response_model=EnhancePromptResponse)
async def enhance_prompt(
    body: EnhancePromptRequest,
    session: GenerationSession = Depends(get_session),
) -> EnhancePromptResponse:
    enhanced = await session.orchestrator.enhance_prompt(body.prompt)
    return EnhancePromptResponse(original=body.prompt, enhanced=enhanced)


@router.get("/", response_model=VideoListResponse)
async def list_videos(
    status: Optional[VideoStatus] = Query(None, description="Filter by video status"),
    page: int = Query(1, ge=1, description="Page number"),
    page_size: int = Query(20, ge=1, le=100, description="Videos per page"),
    user_id: str = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> VideoListResponse:
    """
    The caller's videos, newest first.

    page=1, page_size=20 → rows 0-19; page=2 → rows 20-39
    """
    jobs = await registry.repository.list_for_user(
        user_id, status=status, limit=page_size, offset=(page - 1) * page_size
    )
    return VideoListResponse(
        videos=[VideoResponse.from_job(job) for job in jobs],
        page=page,
        page_size=page_size,
    )


@router.get("/{video_id}", response_model=VideoResponse)
async def get_video(
    video_id: str,
    user_id: str = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> VideoResponse:
    # The live job is fresher than the stored row while it is running
    if user_id in registry:
        current = registry.get(user_id).orchestrator.current_job
        if current is not None and current.id == video_id:
            return VideoResponse.from_job(current)

    job = await registry.repository.get(video_id)
    if job is None or job.user_id != user_id:
        raise VideoNotFoundError(video_id)
    return VideoResponse.from_job(job)


@router.delete("/{video_id}", status_code=204)
async def delete_video(
    video_id: str,
    user_id: str = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    """Only finished videos can be deleted; cancel a running one first."""
    job = await registry.repository.get(video_id)
    if job is None or job.user_id != user_id:
        raise VideoNotFoundError(video_id)
    if not job.is_terminal:
        raise InvalidStateError(
            f"Cannot delete video in '{job.status.value}' state",
            suggested_action="Cancel the generation first",
        )
    await registry.repository.delete(video_id)
