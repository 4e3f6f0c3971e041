"""
Creates the database tables without starting the API.

Usage:
    python -m scripts.init_db

Uses the sync engine; the API lifespan does the same thing on startup with
the async one.
"""

import logging

from models.base import Base, sync_engine
from models.video import Video  # noqa: F401  (registers the table on Base.metadata)

logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)


def init_db() -> None:
    Base.metadata.create_all(sync_engine)
    logger.info(f"Created tables: {', '.join(sorted(Base.metadata.tables))}")


if __name__ == "__main__":
    init_db()
