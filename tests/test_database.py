from __future__ import annotations

import asyncio

from sqlalchemy import create_engine, inspect, text

from app.database import Database


def _initialise_legacy_schema(database_path: str) -> None:
    """Create a legacy videos table lacking the newer sync columns."""

    engine = create_engine(f"sqlite:///{database_path}")
    try:
        with engine.begin() as connection:
            connection.execute(
                text(
                    """
                    CREATE TABLE videos (
                        id INTEGER PRIMARY KEY,
                        youtube_id VARCHAR(32) UNIQUE,
                        channel VARCHAR(16),
                        title VARCHAR(500),
                        description TEXT,
                        thumbnails JSON,
                        duration VARCHAR(16),
                        published_at DATETIME,
                        view_count BIGINT,
                        tags JSON,
                        created_at DATETIME,
                        updated_at DATETIME
                    )
                    """
                )
            )
            connection.execute(
                text(
                    "INSERT INTO videos (youtube_id, channel, title, published_at, view_count) "
                    "VALUES ('legacy1', 'ted', 'Legacy', '2020-01-01 00:00:00', 5)"
                )
            )
    finally:
        engine.dispose()


def test_create_all_adds_sync_columns(tmp_path) -> None:
    """Schema migrations should backfill the newer video columns."""

    database_path = tmp_path / "legacy.db"
    _initialise_legacy_schema(str(database_path))

    database = Database(f"sqlite+aiosqlite:///{database_path}")
    asyncio.run(database.create_all())
    asyncio.run(database.dispose())

    inspector_engine = create_engine(f"sqlite:///{database_path}")
    try:
        inspector = inspect(inspector_engine)
        columns = {column["name"] for column in inspector.get_columns("videos")}
        tables = set(inspector.get_table_names())
        with inspector_engine.connect() as connection:
            likes = connection.execute(
                text("SELECT like_count FROM videos WHERE youtube_id = 'legacy1'")
            ).scalar_one()
    finally:
        inspector_engine.dispose()

    assert {"channel_title", "like_count", "last_synced_at"} <= columns
    assert {"favourites", "watched"} <= tables
    assert likes == 0
