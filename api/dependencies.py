"""
FastAPI dependency injection.

How this works:
- An endpoint declares `session: GenerationSession = Depends(get_session)`
- FastAPI resolves the chain first: X-User-Id header → user id →
  the app's SessionRegistry → that user's session
- Tests swap any link with app.dependency_overrides

There is no authentication here; the X-User-Id header is trusted as-is.
"""

from typing import AsyncGenerator

from fastapi import Depends, Header, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession

from models.base import AsyncSessionLocal
from worker.session import GenerationSession, SessionRegistry


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yields an async database session, auto-closes when the request ends."""
    async with AsyncSessionLocal() as session:
        yield session


async def get_redis(request: Request) -> Redis:
    """Returns the Redis client stored on the app during startup."""
    return request.app.state.redis


async def get_registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


async def get_user_id(x_user_id: str = Header(..., min_length=1, max_length=255)) -> str:
    return x_user_id


async def get_session(
    user_id: str = Depends(get_user_id),
    registry: SessionRegistry = Depends(get_registry),
) -> GenerationSession:
    return registry.get(user_id)
