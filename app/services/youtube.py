"""Utilities for communicating with the YouTube Data API."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Callable, Literal, Sequence

import httpx

from ..config import Settings
from ..models import Video
from ..utils import chunked

logger = logging.getLogger(__name__)

SearchOrder = Literal["date", "viewCount"]


class YouTubeAPIError(Exception):
    """Raised when the YouTube API rejects or fails a request."""

    def __init__(self, message: str, *, status_code: int | None = None, reason: str | None = None):
        super().__init__(message)
        self.status_code = status_code
        self.reason = reason


class YouTubeCredentialError(YouTubeAPIError):
    """The API key was rejected or its quota is exhausted."""


class MissingCredentialError(YouTubeAPIError):
    """No API key was supplied and no default key is configured."""


class YouTubeClient:
    """Thin wrapper around the YouTube Data API v3."""

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client
        self._max_retries = settings.request_retry_limit
        self._pacing = settings.request_pacing_seconds

    def resolve_api_key(self, api_key: str | None = None) -> str:
        """Return the caller's key, falling back to the configured default."""

        resolved = api_key or self._settings.youtube_api_key
        if not resolved:
            raise MissingCredentialError("YouTube API key is required")
        return resolved

    async def _get(self, path: str, params: dict[str, Any], *, api_key: str) -> dict[str, Any]:
        """Issue a GET request, retrying transient failures before giving up."""

        query = {key: value for key, value in params.items() if value is not None}
        query["key"] = api_key
        attempt = 0
        while True:
            try:
                response = await self._client.get(path, params=query)
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "Transient error talking to YouTube %s (%s). Retrying in %.1fs",
                        path,
                        exc.__class__.__name__,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
                raise YouTubeAPIError(f"Request to {path} failed: {exc}") from exc

            if 500 <= response.status_code < 600:
                attempt += 1
                if attempt <= self._max_retries:
                    backoff = min(2 ** (attempt - 1), 5) + (0.1 * attempt)
                    logger.info(
                        "YouTube %s returned %s. Retrying in %.1fs",
                        path,
                        response.status_code,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue
            break

        if response.status_code >= 400:
            message, reason = self._error_details(response)
            error_cls = (
                YouTubeCredentialError
                if response.status_code in {400, 401, 403}
                else YouTubeAPIError
            )
            raise error_cls(
                f"YouTube {path} failed with {response.status_code}: {message}",
                status_code=response.status_code,
                reason=reason,
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise YouTubeAPIError(f"Unexpected non-JSON response from {path}") from exc
        if not isinstance(data, dict):
            raise YouTubeAPIError(f"Unexpected response structure from {path}")
        return data

    @staticmethod
    def _error_details(response: httpx.Response) -> tuple[str, str | None]:
        try:
            payload = response.json()
        except ValueError:
            return response.text or response.reason_phrase, None
        error = payload.get("error") if isinstance(payload, dict) else None
        if not isinstance(error, dict):
            return response.text or response.reason_phrase, None
        reason = None
        errors = error.get("errors")
        if isinstance(errors, list) and errors and isinstance(errors[0], dict):
            reason = errors[0].get("reason")
        return str(error.get("message") or response.reason_phrase), reason

    async def resolve_uploads_playlist(self, channel_id: str, *, api_key: str | None = None) -> str:
        """Return the uploads playlist identifier for ``channel_id``."""

        key = self.resolve_api_key(api_key)
        data = await self._get(
            "/channels",
            {"id": channel_id, "part": "contentDetails"},
            api_key=key,
        )
        for item in data.get("items") or []:
            uploads = (
                (item.get("contentDetails") or {})
                .get("relatedPlaylists", {})
                .get("uploads")
            )
            if uploads:
                return str(uploads)
        raise YouTubeAPIError(f"Channel not found: {channel_id}", status_code=404)

    async def _walk(
        self,
        path: str,
        params: dict[str, Any],
        extract: Callable[[dict[str, Any]], str | None],
        *,
        max_items: int,
        api_key: str,
    ) -> list[str]:
        """Follow ``nextPageToken`` until exhausted or ``max_items`` ids are held."""

        collected: list[str] = []
        seen: set[str] = set()
        page_token: str | None = None
        page = 0

        while True:
            page += 1
            data = await self._get(
                path,
                {
                    **params,
                    "maxResults": self._settings.listing_page_size,
                    "pageToken": page_token,
                },
                api_key=api_key,
            )
            received = 0
            for entry in data.get("items") or []:
                if not isinstance(entry, dict):
                    continue
                video_id = extract(entry)
                if not video_id or video_id in seen:
                    continue
                seen.add(video_id)
                collected.append(video_id)
                received += 1
            page_token = data.get("nextPageToken") or None
            logger.info(
                "Listing %s page %s returned %s ids (total %s)",
                path,
                page,
                received,
                len(collected),
            )

            if max_items > 0 and len(collected) >= max_items:
                return collected[:max_items]
            if not page_token:
                return collected
            await asyncio.sleep(self._pacing)

    async def list_playlist_video_ids(
        self,
        playlist_id: str,
        *,
        max_items: int = 0,
        api_key: str | None = None,
    ) -> list[str]:
        """Return the ordered video ids of a playlist (``max_items`` 0 = all)."""

        key = self.resolve_api_key(api_key)

        def _extract(entry: dict[str, Any]) -> str | None:
            return (entry.get("contentDetails") or {}).get("videoId")

        return await self._walk(
            "/playlistItems",
            {"playlistId": playlist_id, "part": "contentDetails"},
            _extract,
            max_items=max_items,
            api_key=key,
        )

    async def search_channel_video_ids(
        self,
        channel_id: str,
        *,
        order: SearchOrder = "date",
        max_items: int = 0,
        api_key: str | None = None,
    ) -> list[str]:
        """Return channel video ids via search, ordered by date or view count.

        Search costs far more quota than playlist walks, so this is only used
        for channels too large to mirror in full.
        """

        key = self.resolve_api_key(api_key)

        def _extract(entry: dict[str, Any]) -> str | None:
            identifier = entry.get("id")
            if isinstance(identifier, dict):
                return identifier.get("videoId")
            return None

        return await self._walk(
            "/search",
            {
                "channelId": channel_id,
                "part": "id",
                "order": order,
                "type": "video",
            },
            _extract,
            max_items=max_items,
            api_key=key,
        )

    async def iter_video_details(
        self,
        video_ids: Sequence[str],
        channel: str,
        *,
        api_key: str | None = None,
    ) -> AsyncIterator[list[Video]]:
        """Yield normalised videos one detail batch at a time."""

        key = self.resolve_api_key(api_key)
        batch_size = self._settings.detail_batch_size
        total_batches = (len(video_ids) + batch_size - 1) // batch_size

        for index, batch in enumerate(chunked(video_ids, batch_size), start=1):
            if index > 1:
                await asyncio.sleep(self._pacing)
            logger.info(
                "Fetching details batch %s/%s (%s videos) for %s",
                index,
                total_batches,
                len(batch),
                channel,
            )
            data = await self._get(
                "/videos",
                {"id": ",".join(batch), "part": "snippet,statistics,contentDetails"},
                api_key=key,
            )
            videos: list[Video] = []
            for item in data.get("items") or []:
                if not isinstance(item, dict) or not item.get("id"):
                    continue
                videos.append(Video.from_api_item(item, channel=channel))
            yield videos

    async def fetch_video_details(
        self,
        video_ids: Sequence[str],
        channel: str,
        *,
        api_key: str | None = None,
    ) -> list[Video]:
        """Return normalised videos for every id; any failed batch fails the call."""

        collected: list[Video] = []
        async for batch in self.iter_video_details(video_ids, channel, api_key=api_key):
            collected.extend(batch)
        return collected

    async def test_api_key(self, api_key: str | None) -> dict[str, Any]:
        """Check whether ``api_key`` is accepted without raising."""

        if not api_key:
            return {"valid": False, "error": "API key is missing"}
        try:
            data = await self._get(
                "/search",
                {"part": "id", "maxResults": 1, "q": "test"},
                api_key=api_key,
            )
        except YouTubeAPIError as exc:
            logger.warning("YouTube API key validation failed: %s", exc)
            return {"valid": False, "error": "Invalid API key or quota exceeded"}
        return {"valid": True, "quota": data.get("pageInfo")}
