"""Reads and keyed upserts against the local video catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Iterable

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.sql import Select

from ..channels import ALL_CHANNELS, CHANNEL_KEYS
from ..db_models import VideoRecord, WatchedEntry
from ..models import CatalogQuery, ChannelQuery, PageQuery, SortMode, Video, VideoPage

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UpsertResult:
    """Counts of rows inserted versus overwritten by an upsert."""

    created: int = 0
    updated: int = 0

    def __iadd__(self, other: "UpsertResult") -> "UpsertResult":
        self.created += other.created
        self.updated += other.updated
        return self


def _sort_columns(sort: SortMode) -> tuple[Any, ...]:
    if sort == "popular":
        return (
            VideoRecord.view_count.desc(),
            VideoRecord.published_at.desc(),
            VideoRecord.youtube_id,
        )
    return (
        VideoRecord.published_at.desc(),
        VideoRecord.view_count.desc(),
        VideoRecord.youtube_id,
    )


def _apply_channel(stmt: Select, channel: str) -> Select:
    if channel == ALL_CHANNELS:
        return stmt
    return stmt.where(VideoRecord.channel == channel)


class CatalogService:
    """Serves paginated catalog reads and stores synchronised videos."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_items(
        self,
        channel: str = ALL_CHANNELS,
        sort: str = "recent",
        page: int = 1,
        page_size: int = 20,
    ) -> VideoPage:
        """Return one page of the catalog.

        Parameters are validated before touching the store; out of range values
        raise ``pydantic.ValidationError`` rather than being clamped.
        """

        query = CatalogQuery.model_validate(
            {"channel": channel, "sort": sort, "page": page, "page_size": page_size}
        )
        base = _apply_channel(select(VideoRecord), query.channel)
        return await self._paginate(base, query, sort=query.sort)

    async def get_bucket(
        self,
        user_id: str,
        page: int = 1,
        page_size: int = 20,
        channel: str = ALL_CHANNELS,
    ) -> VideoPage:
        """Return catalog videos the user has not watched, most popular first."""

        query = PageQuery.model_validate(
            {"channel": channel, "page": page, "page_size": page_size}
        )
        watched_ids = select(WatchedEntry.youtube_id).where(
            WatchedEntry.user_id == user_id
        )
        base = _apply_channel(
            select(VideoRecord).where(VideoRecord.youtube_id.not_in(watched_ids)),
            query.channel,
        )
        return await self._paginate(base, query, sort="popular")

    async def _paginate(self, base: Select, query: PageQuery, *, sort: SortMode) -> VideoPage:
        count_stmt = select(func.count()).select_from(base.subquery())
        page_stmt = (
            base.order_by(*_sort_columns(sort))
            .offset(query.offset)
            .limit(query.page_size)
        )
        async with self._session_factory() as session:
            total = (await session.execute(count_stmt)).scalar_one()
            records = (await session.execute(page_stmt)).scalars().all()

        items = [Video.model_validate(record) for record in records]
        logger.debug(
            "Catalog page %s (size %s) returned %s/%s videos",
            query.page,
            query.page_size,
            len(items),
            total,
        )
        return VideoPage.build(
            items, total=total, page=query.page, page_size=query.page_size
        )

    async def get_by_ids(
        self, video_ids: Iterable[str], *, channel: str = ALL_CHANNELS
    ) -> list[Video]:
        """Return stored videos for ``video_ids`` sorted by popularity.

        Identifiers without a stored video are skipped.
        """

        query = ChannelQuery.model_validate({"channel": channel})
        ids = list(video_ids)
        if not ids:
            return []
        stmt = _apply_channel(
            select(VideoRecord).where(VideoRecord.youtube_id.in_(ids)), query.channel
        ).order_by(*_sort_columns("popular"))
        async with self._session_factory() as session:
            records = (await session.execute(stmt)).scalars().all()
        return [Video.model_validate(record) for record in records]

    async def upsert_videos(
        self, videos: Iterable[Video], *, synced_at: datetime | None = None
    ) -> UpsertResult:
        """Insert or overwrite videos keyed by ``youtube_id``."""

        batch = {video.youtube_id: video for video in videos}
        result = UpsertResult()
        if not batch:
            return result
        stamp = synced_at or datetime.utcnow()

        async with self._session_factory() as session:
            stmt = select(VideoRecord).where(VideoRecord.youtube_id.in_(list(batch)))
            existing = {
                record.youtube_id: record
                for record in (await session.execute(stmt)).scalars().all()
            }
            for video_id, video in batch.items():
                record = existing.get(video_id)
                if record is None:
                    record = VideoRecord(youtube_id=video_id)
                    session.add(record)
                    result.created += 1
                else:
                    result.updated += 1
                self._apply_video(record, video, stamp)
            await session.commit()
        return result

    @staticmethod
    def _apply_video(record: VideoRecord, video: Video, synced_at: datetime) -> None:
        record.channel = video.channel
        record.title = video.title
        record.description = video.description
        record.thumbnails = video.thumbnail.model_dump()
        record.duration = video.duration
        record.published_at = video.published_at
        record.view_count = video.views
        record.like_count = video.likes
        record.tags = list(video.tags)
        record.channel_title = video.channel_title
        record.last_synced_at = synced_at

    async def count(self, channel: str = ALL_CHANNELS) -> int:
        stmt = _apply_channel(select(func.count(VideoRecord.id)), channel)
        async with self._session_factory() as session:
            return (await session.execute(stmt)).scalar_one()

    async def channel_stats(self, channels: Iterable[str] = CHANNEL_KEYS) -> list[dict[str, Any]]:
        """Summarise stored counts plus the most popular and latest video per channel."""

        stats: list[dict[str, Any]] = []
        async with self._session_factory() as session:
            for channel in channels:
                total = (
                    await session.execute(
                        select(func.count(VideoRecord.id)).where(
                            VideoRecord.channel == channel
                        )
                    )
                ).scalar_one()
                top = (
                    await session.execute(
                        select(VideoRecord)
                        .where(VideoRecord.channel == channel)
                        .order_by(*_sort_columns("popular"))
                        .limit(1)
                    )
                ).scalar_one_or_none()
                latest = (
                    await session.execute(
                        select(VideoRecord)
                        .where(VideoRecord.channel == channel)
                        .order_by(*_sort_columns("recent"))
                        .limit(1)
                    )
                ).scalar_one_or_none()
                stats.append(
                    {
                        "channel": channel,
                        "count": total,
                        "topVideo": top.title if top else None,
                        "topViews": top.view_count if top else 0,
                        "latestVideo": latest.title if latest else None,
                        "latestPublishedAt": (
                            latest.published_at.isoformat() if latest else None
                        ),
                    }
                )
        return stats
