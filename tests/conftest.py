"""Pytest configuration and test helpers."""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable

import httpx
import pytest


# Ensure the application package is importable when running tests without an
# editable install. This mirrors the expected runtime layout where ``app`` sits
# at the project root.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))


class FakeYouTubeAPI:
    """In-memory stand-in for the YouTube Data API endpoints used by the sync."""

    base_url = "https://youtube.example.com/youtube/v3"

    def __init__(self) -> None:
        self.playlists: dict[str, list[str]] = {}
        self.channel_uploads: dict[str, str] = {}
        self.search_results: dict[tuple[str, str], list[str]] = {}
        self.videos: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_endpoints: dict[str, int] = {}
        self.fail_detail_batches: set[int] = set()
        self.fail_when: Callable[[httpx.Request], int | None] | None = None
        self.detail_calls = 0

    def add_video(
        self,
        video_id: str,
        *,
        views: int = 0,
        likes: int = 0,
        published: str = "2024-01-01T00:00:00Z",
        duration: str | None = "PT5M3S",
        title: str | None = None,
    ) -> None:
        self.videos[video_id] = {
            "id": video_id,
            "snippet": {
                "title": title or f"Talk {video_id}",
                "description": f"Description for {video_id}",
                "publishedAt": published,
                "channelTitle": "TED",
                "tags": ["ideas"],
                "thumbnails": {
                    "default": {"url": f"https://img.example.com/{video_id}/default.jpg"},
                    "medium": {"url": f"https://img.example.com/{video_id}/medium.jpg"},
                    "high": {"url": f"https://img.example.com/{video_id}/high.jpg"},
                },
            },
            "statistics": {"viewCount": str(views), "likeCount": str(likes)},
            "contentDetails": {"duration": duration} if duration else {},
        }

    def endpoint_requests(self, endpoint: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.url.path.rsplit("/", 1)[-1] == endpoint
        ]

    def _page(
        self,
        ids: list[str],
        params: httpx.QueryParams,
        build: Callable[[str], dict[str, Any]],
    ) -> httpx.Response:
        size = int(params.get("maxResults", "50"))
        start = int(params.get("pageToken") or 0)
        chunk = ids[start : start + size]
        body: dict[str, Any] = {"items": [build(video_id) for video_id in chunk]}
        if start + size < len(ids):
            body["nextPageToken"] = str(start + size)
        return httpx.Response(200, json=body)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        endpoint = request.url.path.rsplit("/", 1)[-1]
        params = request.url.params

        status = self.fail_endpoints.get(endpoint)
        if status is None and self.fail_when is not None:
            status = self.fail_when(request)
        if status is not None:
            return httpx.Response(
                status,
                json={
                    "error": {
                        "message": "Simulated failure",
                        "errors": [{"reason": "quotaExceeded"}],
                    }
                },
            )

        if endpoint == "channels":
            uploads = self.channel_uploads.get(params.get("id", ""))
            items = (
                [{"contentDetails": {"relatedPlaylists": {"uploads": uploads}}}]
                if uploads
                else []
            )
            return httpx.Response(200, json={"items": items})

        if endpoint == "playlistItems":
            ids = self.playlists.get(params.get("playlistId", ""), [])
            return self._page(
                ids, params, lambda video_id: {"contentDetails": {"videoId": video_id}}
            )

        if endpoint == "search":
            key = (params.get("channelId", ""), params.get("order", "date"))
            ids = self.search_results.get(key, [])
            return self._page(
                ids,
                params,
                lambda video_id: {"id": {"kind": "youtube#video", "videoId": video_id}},
            )

        if endpoint == "videos":
            self.detail_calls += 1
            if self.detail_calls in self.fail_detail_batches:
                return httpx.Response(
                    403,
                    json={"error": {"message": "Quota exceeded", "errors": [{"reason": "quotaExceeded"}]}},
                )
            ids = params.get("id", "").split(",")
            items = [self.videos[video_id] for video_id in ids if video_id in self.videos]
            return httpx.Response(200, json={"items": items})

        return httpx.Response(404, json={"error": {"message": "Not found"}})

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            transport=httpx.MockTransport(self.handler), base_url=self.base_url
        )


@pytest.fixture
def fake_youtube() -> FakeYouTubeAPI:
    return FakeYouTubeAPI()


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"
