"""
Shared test fixtures.

These replace real infrastructure with lightweight in-memory alternatives:
- PostgreSQL → SQLite in memory (via aiosqlite)
- Redis → fakeredis (pure Python Redis mock)
- Veo → SimulatedGenerationClient (deterministic, scriptable)
- HTTP server → httpx.AsyncClient with ASGI transport (no network)

This means tests:
- Run without Docker
- Run in milliseconds (no network, no disk)
- Are fully isolated (each test gets a fresh database)

The registry fixture turns the background poll loop off (auto_poll=False);
tests drive the state machine with poll_once() or POST /videos/current/refresh.
"""

import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from api.dependencies import get_db, get_redis, get_registry
from api.main import create_app
from models.base import Base
from providers.simulated import SimulatedGenerationClient
from storage.redis_store import DeadLetterStore, QueueSnapshotStore
from storage.sql_repository import SqlVideoRepository
from worker.session import SessionRegistry

# SQLite in-memory database, created fresh for each test.
# StaticPool keeps every session on the same connection (and so the same database).
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture
async def async_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(async_engine):
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory):
    """Create a database session bound to the test engine."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis():
    """Create a fake Redis instance (in-memory, no real Redis needed)."""
    r = FakeRedis()
    yield r
    await r.flushall()


@pytest_asyncio.fixture
async def sim_client():
    return SimulatedGenerationClient()


@pytest_asyncio.fixture
async def registry(session_factory, fake_redis, sim_client):
    """Session registry wired to SQLite, fakeredis and the simulated backend."""
    sessions = SessionRegistry(
        client=sim_client,
        repository=SqlVideoRepository(session_factory),
        queue_store=QueueSnapshotStore(fake_redis),
        dead_letter=DeadLetterStore(fake_redis),
        auto_poll=False,
        poll_interval=0,
    )
    yield sessions
    await sessions.shutdown()


@pytest_asyncio.fixture
async def client(async_session, fake_redis, registry):
    """
    Create a test HTTP client that talks directly to the FastAPI app.

    dependency_overrides swaps the real get_db, get_redis and get_registry
    for the test versions. ASGITransport means requests go directly to the
    app in-process and the lifespan never runs.
    """
    app = create_app()

    async def override_get_db():
        yield async_session

    async def override_get_redis():
        return fake_redis

    async def override_get_registry():
        return registry

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_registry] = override_get_registry

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c
