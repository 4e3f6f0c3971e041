"""
Per-user sessions.

Each user gets one GenerationSession, created on first use:
    QueueManager + CreditAccount + GenerationOrchestrator (+ its EventEmitter)

The generation client, the video store and the Redis stores are shared by
every session. All sessions run on the API's event loop.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional

from providers.base import AbstractGenerationClient
from scheduler.queue_manager import QueueManager
from storage.redis_store import DeadLetterStore, QueueSnapshotStore
from storage.repository import VideoRepository
from worker.events import EventEmitter
from worker.orchestrator import GenerationOrchestrator
from worker.permissions import CreditAccount, PermissionProvider
from worker.retry import RetryHandler

logger = logging.getLogger(__name__)


@dataclass
class GenerationSession:
    user_id: str
    queue: QueueManager
    permissions: PermissionProvider
    orchestrator: GenerationOrchestrator

    @property
    def events(self) -> EventEmitter:
        return self.orchestrator.events


class SessionRegistry:

    def __init__(
        self,
        client: AbstractGenerationClient,
        repository: VideoRepository,
        queue_store: Optional[QueueSnapshotStore] = None,
        dead_letter: Optional[DeadLetterStore] = None,
        permissions_factory: Optional[Callable[[str], PermissionProvider]] = None,
        queue_options: Optional[dict[str, Any]] = None,
        **orchestrator_options: Any,
    ):
        self.client = client
        self.repository = repository
        self.queue_store = queue_store
        self.dead_letter = dead_letter
        self._permissions_factory = permissions_factory or (lambda user_id: CreditAccount(user_id=user_id))
        self._queue_options = queue_options or {}
        self._orchestrator_options = orchestrator_options
        self._retry_handler = RetryHandler(dead_letter)
        self._sessions: dict[str, GenerationSession] = {}

    def get(self, user_id: str) -> GenerationSession:
        session = self._sessions.get(user_id)
        if session is None:
            session = self._create(user_id)
            self._sessions[user_id] = session
        return session

    def _create(self, user_id: str) -> GenerationSession:
        queue = QueueManager(user_id, **self._queue_options)
        permissions = self._permissions_factory(user_id)
        orchestrator = GenerationOrchestrator(
            user_id=user_id,
            client=self.client,
            queue=queue,
            permissions=permissions,
            repository=self.repository,
            retry_handler=self._retry_handler,
            queue_store=self.queue_store,
            **self._orchestrator_options,
        )
        logger.info(f"Created generation session for user {user_id}")
        return GenerationSession(
            user_id=user_id,
            queue=queue,
            permissions=permissions,
            orchestrator=orchestrator,
        )

    def __contains__(self, user_id: str) -> bool:
        return user_id in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    async def shutdown(self) -> None:
        for session in self._sessions.values():
            await session.orchestrator.shutdown()
        self._sessions.clear()
