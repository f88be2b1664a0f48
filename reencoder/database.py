"""Database engine and session management."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from reencoder.models.base import Base

if TYPE_CHECKING:
    from reencoder.config import Settings

logger = logging.getLogger(__name__)


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    Creates the store's parent directory if needed and switches every new
    SQLite connection to WAL so readers never block the writer.

    Returns (engine, session_factory) tuple.
    """
    db_path = settings.resolved_database_path
    db_path.parent.mkdir(parents=True, exist_ok=True)

    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args={"timeout": settings.store_busy_timeout},
    )
    busy_ms = int(settings.store_busy_timeout * 1000)

    @event.listens_for(engine.sync_engine, "connect")
    def _configure_sqlite(dbapi_connection: Any, _record: Any) -> None:
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute(f"PRAGMA busy_timeout={busy_ms}")
        cursor.close()

    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    logger.debug("Opened store at %s", db_path)
    return engine, session_factory


async def ensure_tables(engine: AsyncEngine) -> None:
    """Create all tables if they don't exist."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
