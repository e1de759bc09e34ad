"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, DateTime, Integer, JSON, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base


class VideoRecord(Base):
    """One mirrored upstream video, keyed by its external identifier."""

    __tablename__ = "videos"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    youtube_id: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    channel: Mapped[str] = mapped_column(String(16), index=True)
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    thumbnails: Mapped[dict[str, Any]] = mapped_column(JSON, default=dict)
    duration: Mapped[str] = mapped_column(String(16), default="0:00")
    published_at: Mapped[datetime] = mapped_column(DateTime, index=True)
    view_count: Mapped[int] = mapped_column(BigInteger, default=0, index=True)
    like_count: Mapped[int] = mapped_column(BigInteger, default=0)
    tags: Mapped[list[str]] = mapped_column(JSON, default=list)
    channel_title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class FavouriteEntry(Base):
    """A video a user marked as favourite."""

    __tablename__ = "favourites"
    __table_args__ = (
        UniqueConstraint("user_id", "youtube_id", name="uq_favourite_user_video"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    youtube_id: Mapped[str] = mapped_column(String(32))
    added_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class WatchedEntry(Base):
    """A video a user has watched."""

    __tablename__ = "watched"
    __table_args__ = (
        UniqueConstraint("user_id", "youtube_id", name="uq_watched_user_video"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = mapped_column(String(64), index=True)
    youtube_id: Mapped[str] = mapped_column(String(32))
    watched_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
