"""Pydantic models describing catalog payloads and queries."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator

from .channels import ALL_CHANNELS, CHANNEL_KEYS, normalise_channel_key
from .utils import coerce_int, parse_duration

SortMode = Literal["recent", "popular"]

MAX_PAGE_SIZE = 100


class Thumbnails(BaseModel):
    """Thumbnail URLs in the sizes the upstream listing provides."""

    default: str | None = None
    medium: str | None = None
    high: str | None = None


class Video(BaseModel):
    """A single catalog item as stored locally and served to clients."""

    model_config = ConfigDict(populate_by_name=True, from_attributes=True)

    youtube_id: str = Field(
        validation_alias=AliasChoices("youtube_id", "youtubeId"),
        serialization_alias="youtubeId",
    )
    channel: str
    title: str
    description: str | None = None
    thumbnail: Thumbnails = Field(
        default_factory=Thumbnails,
        validation_alias=AliasChoices("thumbnail", "thumbnails"),
    )
    duration: str = "0:00"
    published_at: datetime = Field(
        validation_alias=AliasChoices("published_at", "publishedAt"),
        serialization_alias="publishedAt",
    )
    views: int = Field(
        default=0,
        validation_alias=AliasChoices("views", "view_count"),
    )
    likes: int = Field(
        default=0,
        validation_alias=AliasChoices("likes", "like_count"),
    )
    tags: list[str] = Field(default_factory=list)
    channel_title: str | None = Field(
        default=None,
        validation_alias=AliasChoices("channel_title", "channelTitle"),
        serialization_alias="channelTitle",
    )
    last_synced_at: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("last_synced_at", "lastUpdated"),
        serialization_alias="lastUpdated",
    )

    @field_validator("published_at", "last_synced_at", mode="after")
    @classmethod
    def _naive_utc(cls, value: datetime | None) -> datetime | None:
        """Store timestamps as naive UTC to match the database columns."""

        if value is None or value.tzinfo is None:
            return value
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    @classmethod
    def from_api_item(cls, data: dict[str, Any], *, channel: str) -> "Video":
        """Normalise a raw ``/videos`` resource into a catalog item."""

        snippet = data.get("snippet") or {}
        statistics = data.get("statistics") or {}
        content_details = data.get("contentDetails") or {}
        raw_thumbnails = snippet.get("thumbnails") or {}

        def _thumb(size: str) -> str | None:
            entry = raw_thumbnails.get(size)
            if isinstance(entry, dict):
                return entry.get("url")
            return None

        return cls(
            youtube_id=str(data["id"]),
            channel=channel,
            title=str(snippet.get("title") or ""),
            description=snippet.get("description"),
            thumbnail=Thumbnails(
                default=_thumb("default"),
                medium=_thumb("medium"),
                high=_thumb("high"),
            ),
            duration=parse_duration(content_details.get("duration")),
            published_at=snippet.get("publishedAt") or datetime.utcnow(),
            views=coerce_int(statistics.get("viewCount")),
            likes=coerce_int(statistics.get("likeCount")),
            tags=[str(tag) for tag in snippet.get("tags") or []],
            channel_title=snippet.get("channelTitle"),
        )

    def to_payload(self) -> dict[str, Any]:
        """Return the camelCase JSON payload sent to clients."""

        return self.model_dump(mode="json", by_alias=True)


class VideoPage(BaseModel):
    """One page of catalog results plus the pagination bookkeeping."""

    items: list[Video] = Field(default_factory=list)
    total: int = 0
    page: int = 1
    page_size: int = 20
    has_more: bool = False

    @classmethod
    def build(
        cls, items: list[Video], *, total: int, page: int, page_size: int
    ) -> "VideoPage":
        offset = (page - 1) * page_size
        return cls(
            items=items,
            total=total,
            page=page,
            page_size=page_size,
            has_more=total > offset + len(items),
        )

    def to_payload(self) -> dict[str, Any]:
        return {
            "items": [item.to_payload() for item in self.items],
            "count": len(self.items),
            "total": self.total,
            "page": self.page,
            "hasMore": self.has_more,
        }


def _validate_channel_filter(value: object) -> str:
    key = normalise_channel_key(value)
    if key != ALL_CHANNELS and key not in CHANNEL_KEYS:
        raise ValueError(f"Unknown channel: {value}")
    return key


class ChannelQuery(BaseModel):
    """A channel filter: one channel key or ``all``."""

    model_config = ConfigDict(populate_by_name=True)

    channel: str = ALL_CHANNELS

    @field_validator("channel", mode="before")
    @classmethod
    def _check_channel(cls, value: object) -> str:
        return _validate_channel_filter(value)


class PageQuery(ChannelQuery):
    """Pagination parameters shared by catalog and bucket reads."""

    page: int = Field(default=1, ge=1)
    page_size: int = Field(
        default=20,
        ge=1,
        le=MAX_PAGE_SIZE,
        validation_alias=AliasChoices("page_size", "pageSize", "limit"),
    )

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size


class CatalogQuery(PageQuery):
    """Validated parameters for a catalog listing."""

    sort: SortMode = Field(
        default="recent",
        validation_alias=AliasChoices("sort", "sortBy", "sort_mode"),
    )


@dataclass(slots=True)
class UserCuration:
    """Favourite and watched identifier sets for one user.

    Both maps are keyed by video identifier, so membership checks stay
    constant time.
    """

    user_id: str
    favourites: dict[str, datetime] = field(default_factory=dict)
    watched: dict[str, datetime] = field(default_factory=dict)
