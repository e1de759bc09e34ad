"""Async engine and schema management for the local video catalog."""

from __future__ import annotations

import logging

from sqlalchemy import MetaData, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    """Declarative base shared by every catalog table."""

    metadata = MetaData()


# (column, column DDL, backfill value or None) added to ``videos`` after its
# first release.
VIDEO_COLUMN_MIGRATIONS: tuple[tuple[str, str, str | None], ...] = (
    ("channel_title", "VARCHAR(255)", None),
    ("like_count", "BIGINT DEFAULT 0", "0"),
    ("last_synced_at", "DATETIME", None),
)


class Database:
    """Owns the SQLAlchemy async engine and the session factory built on it."""

    def __init__(self, database_url: str):
        self._engine: AsyncEngine = create_async_engine(database_url, future=True)
        self.session_factory: async_sessionmaker[AsyncSession] = async_sessionmaker(
            self._engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        """Create missing tables, then add columns older databases lack."""

        # Registers the mapped tables on Base.metadata.
        from . import db_models  # noqa: F401

        async with self._engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
            await connection.run_sync(self._apply_schema_migrations)

    @staticmethod
    def _apply_schema_migrations(sync_connection: Connection) -> None:
        inspector = inspect(sync_connection)
        if "videos" not in inspector.get_table_names():
            return

        present = {column["name"] for column in inspector.get_columns("videos")}
        for name, ddl, backfill in VIDEO_COLUMN_MIGRATIONS:
            if name in present:
                continue
            logger.info("Adding column videos.%s", name)
            sync_connection.execute(text(f"ALTER TABLE videos ADD COLUMN {name} {ddl}"))
            if backfill is not None:
                sync_connection.execute(
                    text(f"UPDATE videos SET {name} = {backfill} WHERE {name} IS NULL")
                )
            present.add(name)

    async def dispose(self) -> None:
        await self._engine.dispose()
