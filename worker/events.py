"""
Generation events, fanned out to any number of read-only observers
(websocket pushers, notification senders, tests).

A listener that raises is logged and skipped; the orchestrator never sees
observer failures.
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class GenerationEvent(str, enum.Enum):
    VIDEO_ADDED = "video_added"
    VIDEO_STARTED = "video_started"
    VIDEO_PROGRESS = "video_progress"
    VIDEO_COMPLETED = "video_completed"
    VIDEO_FAILED = "video_failed"
    VIDEO_CANCELLED = "video_cancelled"
    QUEUE_PAUSED = "queue_paused"
    QUEUE_RESUMED = "queue_resumed"


@dataclass(frozen=True)
class EventData:
    event: GenerationEvent
    user_id: str
    video_id: Optional[str] = None
    data: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


Listener = Callable[[EventData], None]


class EventEmitter:

    def __init__(self):
        self._listeners: dict[GenerationEvent, list[Listener]] = defaultdict(list)

    def add_listener(self, event: GenerationEvent, listener: Listener) -> None:
        self._listeners[GenerationEvent(event)].append(listener)

    def remove_listener(self, event: GenerationEvent, listener: Listener) -> None:
        listeners = self._listeners.get(GenerationEvent(event), [])
        if listener in listeners:
            listeners.remove(listener)

    def emit(
        self,
        event: GenerationEvent,
        user_id: str,
        video_id: Optional[str] = None,
        **data: Any,
    ) -> EventData:
        payload = EventData(event=event, user_id=user_id, video_id=video_id, data=data)
        for listener in list(self._listeners.get(event, [])):
            try:
                listener(payload)
            except Exception as e:
                logger.error(f"Error in listener for {event.value}: {e}", exc_info=True)
        return payload
