"""
SQLAlchemy engine and session factories.

Two engines exist because:
- The API and the orchestrators are async → asyncpg driver + async sessions
- One-off scripts (scripts/init_db.py) are plain sync code → psycopg2 driver

Do not use the sync engine from inside the event loop; every blocking call
would stall every user's polling.
"""

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from config.settings import settings


class Base(DeclarativeBase):
    """Base class for all ORM models. SQLAlchemy uses this to track table metadata."""
    pass


# ── Async engine (API + orchestrators) ─────────────────────────
async_engine = create_async_engine(settings.database_url, echo=False)
AsyncSessionLocal = async_sessionmaker(async_engine, expire_on_commit=False)

# ── Sync engine (scripts) ──────────────────────────────────────
sync_engine = create_engine(settings.sync_database_url, echo=False)
SyncSessionLocal = sessionmaker(sync_engine)
