"""Scheduled and on-demand synchronisation of upstream channels."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable, Protocol

from ..channels import ChannelDefinition, channel_definition, normalise_channel_key
from ..config import Settings
from ..utils import unique_in_order
from .catalog import CatalogService, UpsertResult
from .youtube import (
    MissingCredentialError,
    YouTubeAPIError,
    YouTubeClient,
    YouTubeCredentialError,
)

logger = logging.getLogger(__name__)


class SyncStrategy(Protocol):
    """Produces the ordered video ids a channel sync should fetch."""

    name: str

    async def collect_ids(
        self,
        client: YouTubeClient,
        channel: ChannelDefinition,
        *,
        api_key: str | None = None,
    ) -> list[str]: ...


@dataclass(slots=True)
class PlaylistSyncStrategy:
    """Walk the channel's uploads playlist, optionally capped."""

    limit: int = 0
    name: str = "playlist"

    async def collect_ids(
        self,
        client: YouTubeClient,
        channel: ChannelDefinition,
        *,
        api_key: str | None = None,
    ) -> list[str]:
        playlist_id = channel.uploads_playlist_id
        if not playlist_id:
            logger.info("Resolving uploads playlist for %s", channel.key)
            playlist_id = await client.resolve_uploads_playlist(
                channel.channel_id, api_key=api_key
            )
        return await client.list_playlist_video_ids(
            playlist_id, max_items=self.limit, api_key=api_key
        )


@dataclass(slots=True)
class SearchSyncStrategy:
    """Combine the most recent and most popular search passes.

    Each pass is capped at half the limit; both run concurrently and the union
    is deduplicated by id with recent results first.
    """

    limit: int
    name: str = "search"

    async def collect_ids(
        self,
        client: YouTubeClient,
        channel: ChannelDefinition,
        *,
        api_key: str | None = None,
    ) -> list[str]:
        per_pass = max(1, self.limit // 2)
        passes = [
            asyncio.create_task(
                client.search_channel_video_ids(
                    channel.channel_id, order=order, max_items=per_pass, api_key=api_key
                )
            )
            for order in ("date", "viewCount")
        ]
        try:
            recent, popular = await asyncio.gather(*passes)
        except BaseException:
            # One pass failed or we were cancelled; stop the other one too.
            for task in passes:
                task.cancel()
            await asyncio.gather(*passes, return_exceptions=True)
            raise
        return unique_in_order([*recent, *popular])


def strategy_for(channel: ChannelDefinition, settings: Settings) -> SyncStrategy:
    """Select the sync strategy configured for ``channel``."""

    limit = settings.channel_limit(channel)
    if channel.strategy == "capped" and limit > 0:
        return SearchSyncStrategy(limit=limit)
    return PlaylistSyncStrategy(limit=limit)


@dataclass(slots=True)
class ChannelSyncResult:
    """Outcome of syncing one channel."""

    channel: str
    strategy: str
    fetched: int = 0
    created: int = 0
    updated: int = 0
    stored_total: int = 0
    error: str | None = None
    credential_error: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_payload(self) -> dict[str, Any]:
        return {
            "channel": self.channel,
            "strategy": self.strategy,
            "fetched": self.fetched,
            "created": self.created,
            "updated": self.updated,
            "storedTotal": self.stored_total,
            "error": self.error,
        }


@dataclass(slots=True)
class SyncReport:
    """Aggregate outcome of a sync cycle."""

    started_at: datetime
    finished_at: datetime | None = None
    channels: list[ChannelSyncResult] = field(default_factory=list)

    @property
    def created(self) -> int:
        return sum(result.created for result in self.channels)

    @property
    def updated(self) -> int:
        return sum(result.updated for result in self.channels)

    @property
    def upserted(self) -> int:
        return self.created + self.updated

    @property
    def failed(self) -> list[ChannelSyncResult]:
        return [result for result in self.channels if not result.ok]


class SyncService:
    """Drives channel strategies, detail fetching and catalog upserts."""

    def __init__(
        self,
        settings: Settings,
        youtube: YouTubeClient,
        catalog: CatalogService,
    ):
        self._settings = settings
        self._youtube = youtube
        self._catalog = catalog
        self._interval = settings.sync_interval_seconds
        self._lock = asyncio.Lock()
        self._loop_task: asyncio.Task[None] | None = None
        self.last_report: SyncReport | None = None

    async def start(self) -> None:
        """Launch the background loop (first cycle runs immediately)."""

        if self._loop_task is None:
            self._loop_task = asyncio.create_task(self._sync_loop())
            logger.info(
                "Sync scheduler initialised, running every %s seconds",
                self._interval,
            )

    async def stop(self) -> None:
        """Stop the background loop."""

        if self._loop_task is None:
            return
        self._loop_task.cancel()
        with suppress(asyncio.CancelledError):
            await self._loop_task
        self._loop_task = None

    async def _sync_loop(self) -> None:
        run_now = self._settings.sync_on_startup
        while True:
            if run_now:
                try:
                    await self.sync_channels()
                except MissingCredentialError:
                    logger.warning("YOUTUBE_API_KEY not configured, skipping scheduled sync")
                except Exception as exc:  # pragma: no cover - background safety net
                    logger.exception("Scheduled sync failed: %s", exc)
            run_now = True
            await asyncio.sleep(self._interval)

    async def sync_channels(
        self,
        channels: Iterable[str] | None = None,
        *,
        api_key: str | None = None,
    ) -> SyncReport:
        """Sync the given channels (default: configured set) one after another.

        A failure in one channel is logged and recorded on its result; the
        remaining channels are still processed.
        """

        if channels is None:
            definitions = list(self._settings.channel_definitions)
        else:
            definitions = [
                channel_definition(normalise_channel_key(key)) for key in channels
            ]
        # Fail fast on a missing key instead of once per channel.
        self._youtube.resolve_api_key(api_key)

        async with self._lock:
            report = SyncReport(started_at=datetime.utcnow())
            logger.info(
                "Starting sync of %s",
                ", ".join(definition.key for definition in definitions),
            )
            for definition in definitions:
                report.channels.append(
                    await self._sync_channel(definition, api_key=api_key)
                )
            report.finished_at = datetime.utcnow()

        logger.info(
            "Sync finished: %s created, %s updated, %s channel(s) failed",
            report.created,
            report.updated,
            len(report.failed),
        )
        self.last_report = report
        return report

    async def _sync_channel(
        self, channel: ChannelDefinition, *, api_key: str | None
    ) -> ChannelSyncResult:
        strategy = strategy_for(channel, self._settings)
        result = ChannelSyncResult(channel=channel.key, strategy=strategy.name)
        logger.info(
            "Processing %s with %s strategy (limit %s)",
            channel.key,
            strategy.name,
            self._settings.channel_limit(channel) or "none",
        )
        try:
            video_ids = await strategy.collect_ids(
                self._youtube, channel, api_key=api_key
            )
            logger.info("Found %s videos for %s", len(video_ids), channel.key)
            totals = UpsertResult()
            async for batch in self._youtube.iter_video_details(
                video_ids, channel.key, api_key=api_key
            ):
                result.fetched += len(batch)
                totals += await self._catalog.upsert_videos(batch)
                result.created, result.updated = totals.created, totals.updated
        except YouTubeAPIError as exc:
            result.error = str(exc)
            result.credential_error = isinstance(exc, YouTubeCredentialError)
            logger.warning("Failed to sync %s: %s", channel.key, exc)
        except Exception as exc:
            result.error = str(exc) or exc.__class__.__name__
            logger.exception("Unexpected error syncing %s", channel.key)

        try:
            result.stored_total = await self._catalog.count(channel.key)
        except Exception as exc:
            result.error = result.error or str(exc) or exc.__class__.__name__
            logger.exception("Failed to count stored videos for %s", channel.key)
        logger.info(
            "%s results: %s created, %s updated, %s stored",
            channel.key,
            result.created,
            result.updated,
            result.stored_total,
        )
        return result
