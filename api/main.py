"""
FastAPI application factory.

This file:
1. Creates the FastAPI app
2. Runs startup logic (create DB tables, connect to Redis, build the
   generation client and the per-user session registry)
3. Registers all routers (videos, queue, health) and the handler that turns
   GenerationError into JSON
4. Runs shutdown logic (stop polling, close connections)

To run:  uvicorn api.main:app --host 0.0.0.0 --port 8000 --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from redis.asyncio import Redis as AsyncRedis

from api.routers import health, queue, videos
from config.settings import settings
from generation.errors import GenerationError
from models.base import AsyncSessionLocal, Base, async_engine
from providers.registry import create_generation_client
from storage.redis_store import DeadLetterStore, QueueSnapshotStore
from storage.sql_repository import SqlVideoRepository
from worker.session import SessionRegistry

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup:
    - Creates all DB tables if they don't exist (safe to run multiple times)
    - Connects to Redis
    - Builds the generation client for settings.GENERATION_BACKEND and the
      session registry every request resolves its user's session from

    Shutdown:
    - Stops every user's poll loop
    - Closes the generation client, Redis and the DB engine
    """
    # ── Startup ─────────────────────────────────────────────────
    logger.info("Creating database tables...")
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    app.state.redis = AsyncRedis.from_url(settings.redis_url)
    client = create_generation_client(settings.GENERATION_BACKEND)
    app.state.sessions = SessionRegistry(
        client=client,
        repository=SqlVideoRepository(AsyncSessionLocal),
        queue_store=QueueSnapshotStore(app.state.redis),
        dead_letter=DeadLetterStore(app.state.redis),
    )
    logger.info(f"API ready (generation backend: {client.backend_name})")

    yield

    # ── Shutdown ────────────────────────────────────────────────
    await app.state.sessions.shutdown()
    await client.aclose()
    await app.state.redis.close()
    await async_engine.dispose()
    logger.info("API shut down")


async def generation_error_handler(request: Request, exc: GenerationError) -> JSONResponse:
    if exc.http_status >= 500:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.code} {exc.message}")
    return JSONResponse(
        status_code=exc.http_status,
        content={
            "code": exc.code,
            "message": exc.message,
            "retryable": exc.retryable,
            "suggested_action": exc.suggested_action,
            "details": exc.details,
        },
    )


def create_app() -> FastAPI:
    """Factory function that builds and configures the FastAPI application."""
    app = FastAPI(
        title="Video Generation Orchestrator",
        description="Per-user video generation queue with cost estimation, polling, cancellation and retries",
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_exception_handler(GenerationError, generation_error_handler)

    app.include_router(health.router)
    app.include_router(videos.router)
    app.include_router(queue.router)

    return app


# This is what uvicorn imports: `uvicorn api.main:app`
app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
