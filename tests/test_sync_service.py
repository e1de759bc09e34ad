"""Tests for the channel sync orchestration."""

from __future__ import annotations

import asyncio
from typing import Any

import pytest

from app.channels import channel_definition
from app.config import Settings
from app.database import Database
from app.services.catalog import CatalogService
from app.services.sync import (
    PlaylistSyncStrategy,
    SearchSyncStrategy,
    SyncService,
    strategy_for,
)
from app.services.youtube import MissingCredentialError, YouTubeAPIError, YouTubeClient

TED_PLAYLIST = "UUAuUUnT6oDeKwE6v1NGQxug"
TEDX_CHANNEL = "UCsT0YIqwnpJCM-mx7-gSA4Q"


def build_settings(**overrides: Any) -> Settings:
    base: dict[str, Any] = {
        "YOUTUBE_API_KEY": "default-key",
        "REQUEST_PACING": 0,
        "REQUEST_RETRIES": 0,
        "SYNC_ON_STARTUP": False,
    }
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


class SyncHarness:
    def __init__(self, tmp_path, fake_youtube, settings: Settings) -> None:
        self.database = Database(f"sqlite+aiosqlite:///{tmp_path / 'sync.db'}")
        self.http_client = fake_youtube.http_client()
        self.catalog = CatalogService(self.database.session_factory)
        self.youtube = YouTubeClient(settings, self.http_client)
        self.sync = SyncService(settings, self.youtube, self.catalog)

    async def __aenter__(self) -> "SyncHarness":
        await self.database.create_all()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.sync.stop()
        await self.http_client.aclose()
        await self.database.dispose()


def _seed_playlist(fake_youtube, playlist_id: str, count: int, prefix: str = "t") -> list[str]:
    ids = [f"{prefix}{index:03d}" for index in range(count)]
    fake_youtube.playlists[playlist_id] = ids
    for index, video_id in enumerate(ids):
        fake_youtube.add_video(video_id, views=index)
    return ids


def test_strategy_selection_follows_channel_configuration() -> None:
    settings = build_settings()
    assert isinstance(strategy_for(channel_definition("ted"), settings), PlaylistSyncStrategy)
    capped = strategy_for(channel_definition("tedx"), settings)
    assert isinstance(capped, SearchSyncStrategy)
    assert capped.limit == 5_000

    overridden = strategy_for(
        channel_definition("tedx"), build_settings(CAPPED_SYNC_LIMIT=10)
    )
    assert overridden.limit == 10


@pytest.mark.anyio("asyncio")
async def test_repeated_sync_is_idempotent(tmp_path, fake_youtube) -> None:
    """A second run over unchanged upstream data creates nothing new."""

    _seed_playlist(fake_youtube, TED_PLAYLIST, 120)

    async with SyncHarness(tmp_path, fake_youtube, build_settings()) as harness:
        first = await harness.sync.sync_channels(["ted"])
        second = await harness.sync.sync_channels(["ted"])
        total = await harness.catalog.count("ted")

    assert (first.created, first.updated) == (120, 0)
    assert (second.created, second.updated) == (0, 120)
    assert second.channels[0].stored_total == 120
    assert total == 120
    assert harness.sync.last_report is second


@pytest.mark.anyio("asyncio")
async def test_channel_failure_does_not_stop_other_channels(tmp_path, fake_youtube) -> None:
    """TED-Ed has no resolvable playlist here, TED must still be synced."""

    _seed_playlist(fake_youtube, TED_PLAYLIST, 10)

    async with SyncHarness(tmp_path, fake_youtube, build_settings()) as harness:
        report = await harness.sync.sync_channels(["teded", "TED"])
        ted_total = await harness.catalog.count("ted")

    teded, ted = report.channels
    assert not teded.ok
    assert "Channel not found" in teded.error
    assert teded.credential_error is False
    assert ted.ok
    assert ted.created == 10
    assert ted_total == 10
    assert [result.channel for result in report.failed] == ["teded"]


@pytest.mark.anyio("asyncio")
async def test_playlist_is_resolved_when_not_preconfigured(tmp_path, fake_youtube) -> None:
    fake_youtube.channel_uploads["UCsooa4yRKGN_zEE8iknghZA"] = "UU-teded"
    _seed_playlist(fake_youtube, "UU-teded", 3, prefix="e")

    async with SyncHarness(tmp_path, fake_youtube, build_settings()) as harness:
        report = await harness.sync.sync_channels(["teded"])

    assert report.channels[0].ok
    assert report.created == 3
    assert len(fake_youtube.endpoint_requests("channels")) == 1


@pytest.mark.anyio("asyncio")
async def test_capped_channel_merges_recent_and_popular_passes(tmp_path, fake_youtube) -> None:
    """Each pass is capped at half the limit and the union is deduplicated."""

    fake_youtube.search_results[(TEDX_CHANNEL, "date")] = ["a", "b", "c", "d"]
    fake_youtube.search_results[(TEDX_CHANNEL, "viewCount")] = ["c", "x", "y", "z"]
    for video_id in ("a", "b", "c", "d", "x", "y", "z"):
        fake_youtube.add_video(video_id)

    settings = build_settings(CAPPED_SYNC_LIMIT=6)
    async with SyncHarness(tmp_path, fake_youtube, settings) as harness:
        report = await harness.sync.sync_channels(["tedx"])
        page = await harness.catalog.get_items("tedx", "recent", 1, 20)

    result = report.channels[0]
    assert result.strategy == "search"
    assert result.created == 5
    assert {item.youtube_id for item in page.items} == {"a", "b", "c", "x", "y"}
    detail_request = fake_youtube.endpoint_requests("videos")[0]
    assert detail_request.url.params["id"] == "a,b,c,x,y"


class FailingRecentSearch:
    """Fails the recent pass at once and parks the popular pass."""

    def __init__(self) -> None:
        self.popular_cancelled = False

    async def search_channel_video_ids(
        self, channel_id: str, *, order: str, max_items: int, api_key: str | None = None
    ) -> list[str]:
        if order == "date":
            await asyncio.sleep(0)
            raise YouTubeAPIError("search unavailable", status_code=503)
        try:
            await asyncio.Event().wait()
        except asyncio.CancelledError:
            self.popular_cancelled = True
            raise
        return []


@pytest.mark.anyio("asyncio")
async def test_failed_search_pass_cancels_the_other_pass() -> None:
    client = FailingRecentSearch()
    strategy = SearchSyncStrategy(limit=4)

    with pytest.raises(YouTubeAPIError):
        await strategy.collect_ids(client, channel_definition("tedx"))  # type: ignore[arg-type]

    assert client.popular_cancelled is True


@pytest.mark.anyio("asyncio")
async def test_count_failure_is_recorded_per_channel(tmp_path, fake_youtube) -> None:
    _seed_playlist(fake_youtube, TED_PLAYLIST, 2)
    fake_youtube.channel_uploads["UCsooa4yRKGN_zEE8iknghZA"] = "UU-teded"
    _seed_playlist(fake_youtube, "UU-teded", 3, prefix="e")

    async with SyncHarness(tmp_path, fake_youtube, build_settings()) as harness:
        original_count = harness.catalog.count

        async def count(channel: str = "all") -> int:
            if channel == "ted":
                raise RuntimeError("db locked")
            return await original_count(channel)

        harness.catalog.count = count  # type: ignore[method-assign]
        report = await harness.sync.sync_channels(["ted", "teded"])

    ted, teded = report.channels
    assert ted.error == "db locked"
    assert ted.created == 2
    assert teded.ok
    assert teded.created == 3
    assert teded.stored_total == 3


@pytest.mark.anyio("asyncio")
async def test_detail_batch_failure_keeps_earlier_batches(tmp_path, fake_youtube) -> None:
    """Batches stored before a quota failure stay in the catalog."""

    _seed_playlist(fake_youtube, TED_PLAYLIST, 120)
    fake_youtube.fail_detail_batches = {3}

    async with SyncHarness(tmp_path, fake_youtube, build_settings()) as harness:
        report = await harness.sync.sync_channels(["ted"])
        total = await harness.catalog.count("ted")

    result = report.channels[0]
    assert not result.ok
    assert result.credential_error is True
    assert result.created == 100
    assert result.stored_total == 100
    assert total == 100


@pytest.mark.anyio("asyncio")
async def test_missing_credential_fails_before_any_request(tmp_path, fake_youtube) -> None:
    settings = build_settings(YOUTUBE_API_KEY=None)

    async with SyncHarness(tmp_path, fake_youtube, settings) as harness:
        with pytest.raises(MissingCredentialError):
            await harness.sync.sync_channels()

    assert fake_youtube.requests == []
    assert harness.sync.last_report is None


@pytest.mark.anyio("asyncio")
async def test_caller_credential_overrides_default(tmp_path, fake_youtube) -> None:
    _seed_playlist(fake_youtube, TED_PLAYLIST, 2)
    settings = build_settings(YOUTUBE_API_KEY=None)

    async with SyncHarness(tmp_path, fake_youtube, settings) as harness:
        report = await harness.sync.sync_channels(["ted"], api_key="user-key")

    assert report.created == 2
    assert {request.url.params["key"] for request in fake_youtube.requests} == {"user-key"}


@pytest.mark.anyio("asyncio")
async def test_unknown_channel_is_rejected(tmp_path, fake_youtube) -> None:
    async with SyncHarness(tmp_path, fake_youtube, build_settings()) as harness:
        with pytest.raises(KeyError):
            await harness.sync.sync_channels(["vimeo"])


@pytest.mark.anyio("asyncio")
async def test_background_loop_runs_on_startup_and_stops(tmp_path, fake_youtube) -> None:
    _seed_playlist(fake_youtube, TED_PLAYLIST, 4)
    settings = build_settings(SYNC_ON_STARTUP=True, SYNC_CHANNELS="ted")

    async with SyncHarness(tmp_path, fake_youtube, settings) as harness:
        await harness.sync.start()

        async def _wait_for_report() -> None:
            while harness.sync.last_report is None:
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_wait_for_report(), timeout=5)
        await harness.sync.stop()
        total = await harness.catalog.count()

    assert harness.sync.last_report.created == 4
    assert total == 4
