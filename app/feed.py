"""Incremental feed loading for API consumers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Literal

from .client import FeedPage, TalkShelfClient
from .config import Settings, get_settings
from .models import Video

logger = logging.getLogger(__name__)

FeedView = Literal["recent", "popular", "bucket", "favourite", "watched"]

PageFetcher = Callable[["FeedQuery", int, int], Awaitable[FeedPage]]


@dataclass(frozen=True, slots=True)
class FeedQuery:
    """The parameters that identify one feed."""

    channel: str = "all"
    view: FeedView = "recent"


class FeedStatus(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    EXHAUSTED = "exhausted"
    ERROR = "error"


class FeedController:
    """Owns the incremental-load state of a single feed.

    At most one fetch for the current query is in flight. Every dispatch
    captures the generation counter; a result arriving after the query changed
    is dropped instead of applied. The controller is meant to be driven from a
    single event loop, so the in-flight check and the dispatch that follows it
    happen without an intervening ``await``.
    """

    def __init__(
        self,
        fetch_page: PageFetcher,
        *,
        page_size: int = 20,
        timeout: float | None = None,
    ):
        self._fetch_page = fetch_page
        self._page_size = page_size
        self._timeout = timeout
        self._query: FeedQuery | None = None
        self._items: list[Video] = []
        self._seen: set[str] = set()
        self._page = 0
        self._exhausted = False
        self._error: BaseException | None = None
        self._status = FeedStatus.IDLE
        self._generation = 0
        self._inflight: asyncio.Task[None] | None = None

    @property
    def query(self) -> FeedQuery | None:
        return self._query

    @property
    def items(self) -> list[Video]:
        return list(self._items)

    @property
    def page(self) -> int:
        return self._page

    @property
    def status(self) -> FeedStatus:
        return self._status

    @property
    def exhausted(self) -> bool:
        return self._exhausted

    @property
    def has_more(self) -> bool:
        return not self._exhausted

    @property
    def error(self) -> BaseException | None:
        return self._error

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def is_loading(self) -> bool:
        return self._inflight is not None

    def set_query(self, query: FeedQuery) -> asyncio.Task[None] | None:
        """Switch to ``query``, discarding loaded pages, and fetch page 1.

        Setting the query that is already active does nothing.
        """

        if query == self._query and self._status is not FeedStatus.IDLE:
            return None
        logger.debug("Feed query changed to %s", query)
        self._query = query
        self._reset()
        return self._dispatch(1)

    def load_more(self) -> asyncio.Task[None] | None:
        """Fetch the next page if the feed is loaded and not exhausted.

        After a failed fetch this retries the page that failed.
        """

        if self._query is None or self._inflight is not None or self._exhausted:
            return None
        if self._status not in (FeedStatus.LOADED, FeedStatus.ERROR):
            return None
        return self._dispatch(self._page + 1)

    def refetch(self) -> asyncio.Task[None] | None:
        """Reload the feed from page 1; ignored while a fetch is in flight."""

        if self._query is None or self._inflight is not None:
            return None
        self._reset()
        return self._dispatch(1)

    async def wait(self) -> None:
        """Wait for the in-flight fetch, if any, to settle."""

        task = self._inflight
        if task is not None:
            await asyncio.shield(task)

    def _reset(self) -> None:
        self._generation += 1
        self._inflight = None
        self._items = []
        self._seen = set()
        self._page = 0
        self._exhausted = False
        self._error = None
        self._status = FeedStatus.IDLE

    def _dispatch(self, page: int) -> asyncio.Task[None]:
        assert self._query is not None
        generation = self._generation
        self._status = FeedStatus.LOADING
        self._error = None
        task = asyncio.create_task(self._run(generation, self._query, page))
        self._inflight = task
        task.add_done_callback(self._release_cancelled)
        return task

    def _release_cancelled(self, task: asyncio.Task[None]) -> None:
        # A cancelled fetch leaves nothing to apply; free the slot it held.
        if task.cancelled() and self._inflight is task:
            self._inflight = None
            self._status = FeedStatus.LOADED if self._page else FeedStatus.IDLE

    async def _run(self, generation: int, query: FeedQuery, page: int) -> None:
        try:
            fetch = self._fetch_page(query, page, self._page_size)
            if self._timeout is not None:
                result = await asyncio.wait_for(fetch, self._timeout)
            else:
                result = await fetch
        except Exception as exc:
            if generation != self._generation:
                logger.debug("Dropping failure of stale feed request for %s", query)
                return
            logger.warning("Failed to load %s page %s: %s", query, page, exc)
            self._error = exc
            self._status = FeedStatus.ERROR
            self._inflight = None
            return

        if generation != self._generation:
            logger.debug("Dropping stale feed page %s for %s", page, query)
            return
        self._apply(page, result)
        self._inflight = None

    def _apply(self, page: int, result: FeedPage) -> None:
        if page == 1:
            self._items = []
            self._seen = set()
        added = 0
        for item in result.items:
            if item.youtube_id in self._seen:
                continue
            self._seen.add(item.youtube_id)
            self._items.append(item)
            added += 1
        self._page = page
        self._exhausted = not result.has_more
        self._status = FeedStatus.EXHAUSTED if self._exhausted else FeedStatus.LOADED
        logger.debug(
            "Loaded page %s: %s new items (total %s)", page, added, len(self._items)
        )


def client_page_fetcher(client: TalkShelfClient) -> PageFetcher:
    """Return a fetcher that maps feed views onto the API endpoints."""

    async def _fetch(query: FeedQuery, page: int, page_size: int) -> FeedPage:
        if query.view in ("favourite", "watched", "bucket") and not client.user_id:
            return FeedPage()
        if query.view == "favourite":
            result = await client.get_favourites(query.channel)
            return FeedPage(items=result.items, total=result.total, has_more=False)
        if query.view == "watched":
            result = await client.get_watched(query.channel)
            return FeedPage(items=result.items, total=result.total, has_more=False)
        if query.view == "bucket":
            return await client.get_bucket(page, page_size, query.channel)
        return await client.get_videos(query.channel, query.view, page, page_size)

    return _fetch


def create_feed(
    client: TalkShelfClient, *, settings: Settings | None = None
) -> FeedController:
    """Build a controller for ``client`` using the configured page size and timeout."""

    config = settings or get_settings()
    return FeedController(
        client_page_fetcher(client),
        page_size=config.default_page_size,
        timeout=config.feed_fetch_timeout_seconds,
    )


class RefetchPolicy(str, Enum):
    """When a curation change should reload the active feed."""

    NEVER = "never"
    ALWAYS = "always"
    IF_VIEW_MATCHES = "if_view_matches"


# Feed views whose contents depend on each curation set.
FAVOURITE_VIEWS: frozenset[str] = frozenset({"favourite"})
WATCHED_VIEWS: frozenset[str] = frozenset({"watched", "bucket"})


class CurationActions:
    """Tracks the user's favourite and watched ids and applies toggles."""

    def __init__(self, client: TalkShelfClient, feed: FeedController | None = None):
        self._client = client
        self._feed = feed
        self.favourites: set[str] = set()
        self.watched: set[str] = set()

    async def load(self) -> None:
        """Populate both id sets from the API."""

        if not self._client.user_id:
            self.favourites, self.watched = set(), set()
            return
        favourites, watched = await asyncio.gather(
            self._client.get_favourites(), self._client.get_watched()
        )
        self.favourites = {item.youtube_id for item in favourites.items}
        self.watched = {item.youtube_id for item in watched.items}

    async def toggle_favourite(
        self, video_id: str, *, refetch: RefetchPolicy = RefetchPolicy.IF_VIEW_MATCHES
    ) -> bool:
        """Flip the favourite state; returns whether it is now a favourite."""

        if video_id in self.favourites:
            await self._client.remove_favourite(video_id)
            self.favourites.discard(video_id)
        else:
            await self._client.add_favourite(video_id)
            self.favourites.add(video_id)
        self._maybe_refetch(refetch, FAVOURITE_VIEWS)
        return video_id in self.favourites

    async def mark_watched(
        self, video_id: str, *, refetch: RefetchPolicy = RefetchPolicy.IF_VIEW_MATCHES
    ) -> None:
        if video_id not in self.watched:
            await self._client.add_watched(video_id)
            self.watched.add(video_id)
        self._maybe_refetch(refetch, WATCHED_VIEWS)

    async def remove_watched(
        self, video_id: str, *, refetch: RefetchPolicy = RefetchPolicy.IF_VIEW_MATCHES
    ) -> None:
        await self._client.remove_watched(video_id)
        self.watched.discard(video_id)
        self._maybe_refetch(refetch, WATCHED_VIEWS)

    def _maybe_refetch(self, policy: RefetchPolicy, views: frozenset[str]) -> None:
        feed = self._feed
        if feed is None or policy is RefetchPolicy.NEVER:
            return
        if policy is RefetchPolicy.IF_VIEW_MATCHES:
            if feed.query is None or feed.query.view not in views:
                return
        feed.refetch()
