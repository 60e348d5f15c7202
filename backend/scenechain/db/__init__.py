"""
Database module for scenechain.

Provides async SQLAlchemy engine with SQLite WAL mode,
session management, and schema initialization.
"""
from sqlalchemy.ext.asyncio import AsyncEngine

from scenechain.db.engine import async_session, build_engine, build_sessionmaker, engine, shutdown
from scenechain.db.models import ArtifactCheckpoint, Base


async def init_database(bind: AsyncEngine = None):
    """Create tables on first run."""
    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


__all__ = [
    "ArtifactCheckpoint",
    "Base",
    "async_session",
    "build_engine",
    "build_sessionmaker",
    "engine",
    "init_database",
    "shutdown",
]
