"""Entry point for the FastAPI-powered TalkShelf service."""

from __future__ import annotations

import json
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import Any

import httpx
from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from .channels import CHANNEL_KEYS
from .config import settings
from .database import Database
from .services.catalog import CatalogService
from .services.curation import CurationService
from .services.sync import SyncService
from .services.youtube import MissingCredentialError, YouTubeClient

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app: FastAPI


@dataclass(slots=True)
class Services:
    """Service objects shared by the request handlers."""

    catalog: CatalogService
    curation: CurationService
    sync: SyncService
    youtube: YouTubeClient


@asynccontextmanager
async def lifespan(fastapi_app: FastAPI):
    exit_stack = AsyncExitStack()
    youtube_http = await exit_stack.enter_async_context(
        httpx.AsyncClient(
            base_url=str(settings.youtube_api_url),
            timeout=httpx.Timeout(settings.request_timeout_seconds, connect=10.0),
        )
    )
    database = Database(settings.database_url)
    await database.create_all()

    youtube = YouTubeClient(settings, youtube_http)
    catalog = CatalogService(database.session_factory)
    curation = CurationService(database.session_factory, catalog)
    sync = SyncService(settings, youtube, catalog)

    fastapi_app.state.services = Services(
        catalog=catalog, curation=curation, sync=sync, youtube=youtube
    )
    fastapi_app.state.database = database
    await sync.start()

    try:
        yield
    finally:  # pragma: no cover - teardown path exercised at runtime
        await sync.stop()
        await database.dispose()
        await exit_stack.aclose()


def create_app() -> FastAPI:
    fastapi_app = FastAPI(
        title=settings.app_name,
        description="Local mirror of TED channel videos with per-user feeds",
        version="1.0.0",
        lifespan=lifespan,
    )

    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "DELETE"],
        allow_headers=["*"],
    )

    register_routes(fastapi_app)
    return fastapi_app


def get_services(app: FastAPI) -> Services:
    services = getattr(app.state, "services", None)
    if not isinstance(services, Services):
        raise RuntimeError("Services not initialised")
    return services


def _require_user(user_id: str | None) -> str:
    cleaned = (user_id or "").strip()
    if not cleaned:
        raise HTTPException(status_code=401, detail="X-User-Id header is required")
    return cleaned


async def _read_json(request: Request) -> dict[str, Any]:
    try:
        payload = await request.json()
    except json.JSONDecodeError:
        payload = {}
    if not isinstance(payload, dict):
        raise HTTPException(status_code=400, detail="Invalid payload")
    return payload


def _invalid_query(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=400,
        detail=exc.errors(include_url=False, include_context=False),
    )


def _video_id_from(payload: dict[str, Any]) -> str:
    video_id = payload.get("videoId") or payload.get("video_id")
    if not isinstance(video_id, str) or not video_id.strip():
        raise HTTPException(status_code=400, detail="videoId is required")
    return video_id.strip()


def register_routes(fastapi_app: FastAPI) -> None:
    @fastapi_app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok"}

    @fastapi_app.get("/api/videos/stats")
    async def video_stats() -> JSONResponse:
        services = get_services(fastapi_app)
        stats = await services.catalog.channel_stats()
        report = services.sync.last_report
        return JSONResponse(
            {
                "channels": stats,
                "total": sum(entry["count"] for entry in stats),
                "lastSync": (
                    {
                        "startedAt": report.started_at.isoformat(),
                        "finishedAt": (
                            report.finished_at.isoformat()
                            if report.finished_at
                            else None
                        ),
                        "channels": [
                            result.to_payload() for result in report.channels
                        ],
                    }
                    if report
                    else None
                ),
            }
        )

    @fastapi_app.post("/api/videos/refresh")
    async def refresh_videos(
        request: Request,
        x_youtube_api_key: str | None = Header(default=None),
    ) -> JSONResponse:
        services = get_services(fastapi_app)
        payload = await _read_json(request)
        channel = payload.get("channel")
        api_key = x_youtube_api_key or payload.get("apiKey") or None
        channels = [channel] if channel else list(CHANNEL_KEYS)
        try:
            report = await services.sync.sync_channels(channels, api_key=api_key)
        except MissingCredentialError as exc:
            raise HTTPException(
                status_code=400,
                detail={
                    "message": "YouTube API key is missing. Please supply an API key.",
                    "needsApiKey": True,
                },
            ) from exc
        except KeyError as exc:
            raise HTTPException(status_code=400, detail=str(exc.args[0])) from exc

        rejected = [result for result in report.channels if result.credential_error]
        if rejected:
            raise HTTPException(
                status_code=400,
                detail={
                    "message": (
                        f"YouTube API error: {rejected[0].error}. "
                        "Please check your API key."
                    ),
                    "apiKeyError": True,
                },
            )

        return JSONResponse(
            {
                "success": True,
                "updatedCount": report.upserted,
                "created": report.created,
                "updated": report.updated,
                "channels": [result.channel for result in report.channels],
                "failed": [result.channel for result in report.failed],
                "usedCredential": bool(api_key),
            }
        )

    @fastapi_app.get("/api/debug/youtube-test")
    async def youtube_key_check(
        apiKey: str | None = None,
        x_youtube_api_key: str | None = Header(default=None),
    ) -> JSONResponse:
        services = get_services(fastapi_app)
        supplied = x_youtube_api_key or apiKey or None
        try:
            api_key: str | None = services.youtube.resolve_api_key(supplied)
        except MissingCredentialError:
            api_key = None
        result = await services.youtube.test_api_key(api_key)
        return JSONResponse(
            {**result, "apiKeySet": api_key is not None, "usedCredential": bool(supplied)}
        )

    @fastapi_app.get("/api/videos/{channel}")
    async def list_videos(
        channel: str,
        sortBy: str = "recent",
        page: int = 1,
        limit: int = settings.default_page_size,
    ) -> JSONResponse:
        services = get_services(fastapi_app)
        try:
            result = await services.catalog.get_items(channel, sortBy, page, limit)
        except ValidationError as exc:
            raise _invalid_query(exc) from exc
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/api/user/bucket")
    async def get_bucket(
        page: int = 1,
        limit: int = settings.default_page_size,
        channel: str = "all",
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        user_id = _require_user(x_user_id)
        services = get_services(fastapi_app)
        try:
            result = await services.catalog.get_bucket(user_id, page, limit, channel)
        except ValidationError as exc:
            raise _invalid_query(exc) from exc
        return JSONResponse(result.to_payload())

    @fastapi_app.get("/api/user/favourites")
    async def get_favourites(
        channel: str = "all",
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        user_id = _require_user(x_user_id)
        services = get_services(fastapi_app)
        try:
            videos = await services.curation.get_favourites(user_id, channel=channel)
        except ValidationError as exc:
            raise _invalid_query(exc) from exc
        return JSONResponse(_list_payload(videos))

    @fastapi_app.post("/api/user/favourites")
    async def add_favourite(
        request: Request,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        user_id = _require_user(x_user_id)
        video_id = _video_id_from(await _read_json(request))
        services = get_services(fastapi_app)
        created = await services.curation.add_favourite(user_id, video_id)
        if not created:
            raise HTTPException(status_code=409, detail="Already in favourites")
        return JSONResponse({"success": True, "message": "Added to favourites"})

    @fastapi_app.delete("/api/user/favourites/{video_id}")
    async def remove_favourite(
        video_id: str,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        user_id = _require_user(x_user_id)
        services = get_services(fastapi_app)
        removed = await services.curation.remove_favourite(user_id, video_id)
        return JSONResponse(
            {"success": True, "removed": removed, "message": "Removed from favourites"}
        )

    @fastapi_app.get("/api/user/watched")
    async def get_watched(
        channel: str = "all",
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        user_id = _require_user(x_user_id)
        services = get_services(fastapi_app)
        try:
            videos = await services.curation.get_watched(user_id, channel=channel)
        except ValidationError as exc:
            raise _invalid_query(exc) from exc
        return JSONResponse(_list_payload(videos))

    @fastapi_app.post("/api/user/watched")
    async def add_watched(
        request: Request,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        user_id = _require_user(x_user_id)
        video_id = _video_id_from(await _read_json(request))
        services = get_services(fastapi_app)
        created = await services.curation.add_watched(user_id, video_id)
        return JSONResponse(
            {"success": True, "created": created, "message": "Marked as watched"}
        )

    @fastapi_app.delete("/api/user/watched/{video_id}")
    async def remove_watched(
        video_id: str,
        x_user_id: str | None = Header(default=None),
    ) -> JSONResponse:
        user_id = _require_user(x_user_id)
        services = get_services(fastapi_app)
        removed = await services.curation.remove_watched(user_id, video_id)
        return JSONResponse(
            {"success": True, "removed": removed, "message": "Removed from watched"}
        )


def _list_payload(videos: list) -> dict[str, Any]:
    items = [video.to_payload() for video in videos]
    return {"items": items, "count": len(items), "total": len(items), "hasMore": False}


app = create_app()


if __name__ == "__main__":  # pragma: no cover - manual execution
    import uvicorn

    uvicorn.run(
        "app.main:app",
        host=settings.server_host,
        port=settings.server_port,
        reload=settings.environment == "development",
    )
