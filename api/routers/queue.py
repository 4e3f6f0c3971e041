"""
Queue endpoints for the X-User-Id caller's queue.

GET    /queue/                        → Entries in order, stats and ETA
GET    /queue/dead-letter             → Permanently failed videos (all users)
GET    /queue/{entry_id}/position     → 1-based position + estimated wait
POST   /queue/pause                   → Stop starting new entries
POST   /queue/resume                  → Start entries again
PUT    /queue/{entry_id}/priority     → Change an entry's priority
DELETE /queue/{entry_id}              → Remove one entry (best-effort cancel)
DELETE /queue/                        → Remove every entry (best-effort cancel)
"""

from fastapi import APIRouter, Depends, Query

from api.dependencies import get_registry, get_session
from api.schemas.queue import (
    DeadLetterResponse,
    PriorityUpdate,
    QueueEntryResponse,
    QueuePositionResponse,
    QueueResponse,
)
from worker.session import GenerationSession, SessionRegistry

router = APIRouter(prefix="/queue", tags=["queue"])


@router.get("/", response_model=QueueResponse)
async def get_queue(session: GenerationSession = Depends(get_session)) -> QueueResponse:
    return QueueResponse.from_queue(session.queue)


@router.get("/dead-letter", response_model=DeadLetterResponse)
async def get_dead_letter(
    limit: int = Query(100, ge=1, le=1000),
    registry: SessionRegistry = Depends(get_registry),
) -> DeadLetterResponse:
    if registry.dead_letter is None:
        return DeadLetterResponse(count=0, entries=[])
    return DeadLetterResponse(
        count=await registry.dead_letter.count(),
        entries=await registry.dead_letter.entries(limit),
    )


@router.get("/{entry_id}/position", response_model=QueuePositionResponse)
async def get_position(
    entry_id: str,
    session: GenerationSession = Depends(get_session),
) -> QueuePositionResponse:
    return QueuePositionResponse(
        entry_id=entry_id,
        position=session.queue.position(entry_id),
        estimated_wait=session.queue.estimated_wait(entry_id),
    )


@router.post("/pause", response_model=QueueResponse)
async def pause_queue(session: GenerationSession = Depends(get_session)) -> QueueResponse:
    await session.orchestrator.pause_queue()
    return QueueResponse.from_queue(session.queue)


@router.post("/resume", response_model=QueueResponse)
async def resume_queue(session: GenerationSession = Depends(get_session)) -> QueueResponse:
    await session.orchestrator.resume_queue()
    return QueueResponse.from_queue(session.queue)


@router.put("/{entry_id}/priority", response_model=QueueEntryResponse)
async def update_priority(
    entry_id: str,
    body: PriorityUpdate,
    session: GenerationSession = Depends(get_session),
) -> QueueEntryResponse:
    entry = await session.orchestrator.reprioritize(entry_id, body.priority)
    return QueueEntryResponse.from_entry(entry)


@router.delete("/{entry_id}", response_model=QueueEntryResponse)
async def remove_entry(
    entry_id: str,
    session: GenerationSession = Depends(get_session),
) -> QueueEntryResponse:
    entry = await session.orchestrator.remove_entry(entry_id)
    return QueueEntryResponse.from_entry(entry)


@router.delete("/", response_model=QueueResponse)
async def clear_queue(session: GenerationSession = Depends(get_session)) -> QueueResponse:
    await session.orchestrator.clear_queue()
    return QueueResponse.from_queue(session.queue)
