"""Async HTTP client for the TalkShelf API."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from .models import Video

logger = logging.getLogger(__name__)


class ApiError(Exception):
    """Raised when the API answers with an error status."""

    def __init__(self, message: str, *, status_code: int, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


@dataclass(slots=True)
class FeedPage:
    """A page of videos as seen by a consumer."""

    items: list[Video] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


class TalkShelfClient:
    """Wrapper around the TalkShelf HTTP endpoints.

    Identical requests issued while one is already in flight share the same
    underlying call. The in-flight map belongs to this instance and entries are
    dropped as soon as the call settles.
    """

    def __init__(self, http_client: httpx.AsyncClient, *, user_id: str | None = None):
        self._client = http_client
        self._user_id = user_id
        self._inflight: dict[str, asyncio.Task[Any]] = {}

    @property
    def user_id(self) -> str | None:
        return self._user_id

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/json"}
        if self._user_id:
            headers["X-User-Id"] = self._user_id
        return headers

    @staticmethod
    def _request_key(
        method: str,
        path: str,
        params: Mapping[str, Any] | None,
        body: Any,
        headers: Mapping[str, str] | None = None,
    ) -> str:
        query = "&".join(f"{key}={params[key]}" for key in sorted(params or {}))
        payload = json.dumps([body, dict(headers or {})], sort_keys=True)
        return f"{method}_{path}?{query}#{payload}"

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        key = self._request_key(method, path, params, body, headers)
        existing = self._inflight.get(key)
        if existing is not None:
            logger.debug("Request already in progress: %s", key)
            return await asyncio.shield(existing)

        task = asyncio.create_task(
            self._send(method, path, params=params, body=body, headers=headers)
        )
        self._inflight[key] = task
        task.add_done_callback(lambda _: self._inflight.pop(key, None))
        return await asyncio.shield(task)

    async def _send(
        self,
        method: str,
        path: str,
        *,
        params: Mapping[str, Any] | None,
        body: Any,
        headers: Mapping[str, str] | None,
    ) -> Any:
        request_headers = self._headers()
        if headers:
            request_headers.update(headers)
        response = await self._client.request(
            method,
            path,
            params=dict(params) if params else None,
            json=body,
            headers=request_headers,
        )
        try:
            data = response.json() if response.content else {}
        except ValueError as exc:
            if response.status_code >= 400:
                raise ApiError(
                    f"HTTP {response.status_code}: {response.reason_phrase}",
                    status_code=response.status_code,
                ) from exc
            raise ApiError(
                "Invalid JSON response from server", status_code=response.status_code
            ) from exc

        if response.status_code >= 400:
            raise ApiError(
                self._error_message(data, response),
                status_code=response.status_code,
                payload=data,
            )
        return data

    @staticmethod
    def _error_message(data: Any, response: httpx.Response) -> str:
        if isinstance(data, dict):
            detail = data.get("detail")
            if isinstance(detail, dict) and detail.get("message"):
                return str(detail["message"])
            if isinstance(detail, str) and detail:
                return detail
            if isinstance(detail, list) and detail and isinstance(detail[0], dict):
                return str(detail[0].get("msg") or detail[0].get("message"))
            if data.get("message"):
                return str(data["message"])
        return f"HTTP {response.status_code}: {response.reason_phrase}"

    @staticmethod
    def _to_page(data: Mapping[str, Any]) -> FeedPage:
        items = [Video.model_validate(entry) for entry in data.get("items") or []]
        return FeedPage(
            items=items,
            total=int(data.get("total", len(items))),
            has_more=bool(data.get("hasMore", False)),
        )

    async def get_videos(
        self, channel: str, sort: str = "recent", page: int = 1, limit: int = 20
    ) -> FeedPage:
        data = await self._request(
            "GET",
            f"/api/videos/{channel}",
            params={"sortBy": sort, "page": page, "limit": limit},
        )
        return self._to_page(data)

    async def get_bucket(self, page: int = 1, limit: int = 20, channel: str = "all") -> FeedPage:
        data = await self._request(
            "GET",
            "/api/user/bucket",
            params={"page": page, "limit": limit, "channel": channel},
        )
        return self._to_page(data)

    async def get_favourites(self, channel: str = "all") -> FeedPage:
        data = await self._request(
            "GET", "/api/user/favourites", params={"channel": channel}
        )
        return self._to_page(data)

    async def get_watched(self, channel: str = "all") -> FeedPage:
        data = await self._request(
            "GET", "/api/user/watched", params={"channel": channel}
        )
        return self._to_page(data)

    async def add_favourite(self, video_id: str) -> dict[str, Any]:
        return await self._request(
            "POST", "/api/user/favourites", body={"videoId": video_id}
        )

    async def remove_favourite(self, video_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/api/user/favourites/{video_id}")

    async def add_watched(self, video_id: str) -> dict[str, Any]:
        return await self._request(
            "POST", "/api/user/watched", body={"videoId": video_id}
        )

    async def remove_watched(self, video_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/api/user/watched/{video_id}")

    async def refresh_videos(
        self, channel: str | None = None, *, api_key: str | None = None
    ) -> dict[str, Any]:
        headers = {"X-YouTube-Api-Key": api_key} if api_key else None
        return await self._request(
            "POST",
            "/api/videos/refresh",
            body={"channel": channel},
            headers=headers,
        )
