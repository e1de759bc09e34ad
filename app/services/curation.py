"""Per-user favourite and watched sets joined against the catalog."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Type

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..channels import ALL_CHANNELS
from ..db_models import FavouriteEntry, WatchedEntry
from ..models import ChannelQuery, UserCuration, Video
from .catalog import CatalogService

logger = logging.getLogger(__name__)

CurationEntry = Type[FavouriteEntry] | Type[WatchedEntry]


class CurationService:
    """Manages a user's favourites and watched history."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        catalog: CatalogService,
    ):
        self._session_factory = session_factory
        self._catalog = catalog

    async def get_curation(self, user_id: str) -> UserCuration:
        """Load both identifier sets for ``user_id``."""

        async with self._session_factory() as session:
            favourites = (
                await session.execute(
                    select(FavouriteEntry.youtube_id, FavouriteEntry.added_at).where(
                        FavouriteEntry.user_id == user_id
                    )
                )
            ).all()
            watched = (
                await session.execute(
                    select(WatchedEntry.youtube_id, WatchedEntry.watched_at).where(
                        WatchedEntry.user_id == user_id
                    )
                )
            ).all()
        return UserCuration(
            user_id=user_id,
            favourites={video_id: added for video_id, added in favourites},
            watched={video_id: seen for video_id, seen in watched},
        )

    async def get_favourites(self, user_id: str, *, channel: str = ALL_CHANNELS) -> list[Video]:
        """Return every favourite still in the catalog, most popular first."""

        query = ChannelQuery.model_validate({"channel": channel})
        curation = await self.get_curation(user_id)
        videos = await self._catalog.get_by_ids(curation.favourites, channel=query.channel)
        logger.debug("Favourites for %s: %s videos", user_id, len(videos))
        return videos

    async def get_watched(self, user_id: str, *, channel: str = ALL_CHANNELS) -> list[Video]:
        """Return every watched video still in the catalog, most popular first."""

        query = ChannelQuery.model_validate({"channel": channel})
        curation = await self.get_curation(user_id)
        videos = await self._catalog.get_by_ids(curation.watched, channel=query.channel)
        logger.debug("Watched for %s: %s videos", user_id, len(videos))
        return videos

    async def add_favourite(self, user_id: str, video_id: str) -> bool:
        """Add a favourite; returns ``False`` when it already existed."""

        created = await self._add(FavouriteEntry, user_id, video_id)
        if created:
            logger.info("User %s added %s to favourites", user_id, video_id)
        return created

    async def remove_favourite(self, user_id: str, video_id: str) -> bool:
        removed = await self._remove(FavouriteEntry, user_id, video_id)
        if removed:
            logger.info("User %s removed %s from favourites", user_id, video_id)
        return removed

    async def add_watched(self, user_id: str, video_id: str) -> bool:
        """Mark a video as watched; repeated marks keep the first timestamp."""

        created = await self._add(WatchedEntry, user_id, video_id)
        if created:
            logger.info("User %s marked %s as watched", user_id, video_id)
        return created

    async def remove_watched(self, user_id: str, video_id: str) -> bool:
        removed = await self._remove(WatchedEntry, user_id, video_id)
        if removed:
            logger.info("User %s removed %s from watched", user_id, video_id)
        return removed

    async def _add(self, model: CurationEntry, user_id: str, video_id: str) -> bool:
        video_id = video_id.strip()
        if not video_id:
            raise ValueError("videoId is required")
        async with self._session_factory() as session:
            stmt = select(model.id).where(
                model.user_id == user_id, model.youtube_id == video_id
            )
            if (await session.execute(stmt)).scalar_one_or_none() is not None:
                return False
            entry = model(user_id=user_id, youtube_id=video_id)
            if isinstance(entry, FavouriteEntry):
                entry.added_at = datetime.utcnow()
            else:
                entry.watched_at = datetime.utcnow()
            session.add(entry)
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent request inserted the same pair first.
                await session.rollback()
                return False
        return True

    async def _remove(self, model: CurationEntry, user_id: str, video_id: str) -> bool:
        async with self._session_factory() as session:
            result = await session.execute(
                delete(model).where(
                    model.user_id == user_id, model.youtube_id == video_id
                )
            )
            await session.commit()
        return bool(result.rowcount)
