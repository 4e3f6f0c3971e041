"""
Health check endpoint.

Checks Postgres, Redis and the generation backend. Load balancers and
container orchestrators use it to decide whether to send traffic here.
"""

from fastapi import APIRouter, Depends
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from api.dependencies import get_db, get_redis, get_registry
from worker.session import SessionRegistry

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    redis: Redis = Depends(get_redis),
    registry: SessionRegistry = Depends(get_registry),
) -> dict:
    """Check that Postgres, Redis and the generation backend are reachable."""
    await db.execute(text("SELECT 1"))
    await redis.ping()
    backend_ok = await registry.client.health_check()

    return {
        "status": "healthy" if backend_ok else "degraded",
        "postgres": "ok",
        "redis": "ok",
        "generation_backend": registry.client.backend_name,
        "generation": "ok" if backend_ok else "unreachable",
    }
