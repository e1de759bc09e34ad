"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .channels import (
    CHANNEL_KEYS,
    ChannelDefinition,
    channel_definition,
    normalise_channel_key,
)


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="TalkShelf", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=5000, alias="PORT")

    youtube_api_key: str | None = Field(default=None, alias="YOUTUBE_API_KEY")
    youtube_api_url: HttpUrl = Field(
        default="https://www.googleapis.com/youtube/v3", alias="YOUTUBE_API_URL"
    )

    sync_channels: Annotated[tuple[str, ...], NoDecode] = Field(
        default=CHANNEL_KEYS,
        alias="SYNC_CHANNELS",
    )
    sync_interval_seconds: int = Field(
        default=43_200, alias="SYNC_INTERVAL", ge=60
    )
    sync_on_startup: bool = Field(default=True, alias="SYNC_ON_STARTUP")
    capped_sync_limit: int | None = Field(
        default=None, alias="CAPPED_SYNC_LIMIT", ge=2, le=100_000
    )

    detail_batch_size: int = Field(default=50, alias="DETAIL_BATCH_SIZE", ge=1, le=50)
    listing_page_size: int = Field(default=50, alias="LISTING_PAGE_SIZE", ge=1, le=50)
    request_pacing_seconds: float = Field(
        default=0.1, alias="REQUEST_PACING", ge=0, le=10
    )
    request_timeout_seconds: float = Field(
        default=20.0, alias="REQUEST_TIMEOUT", gt=0, le=300
    )
    request_retry_limit: int = Field(
        default=3, alias="REQUEST_RETRIES", ge=0, le=10
    )

    default_page_size: int = Field(default=20, alias="DEFAULT_PAGE_SIZE", ge=1, le=100)
    feed_fetch_timeout_seconds: float = Field(
        default=30.0, alias="FEED_FETCH_TIMEOUT", gt=0
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./talkshelf.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("sync_channels", mode="before")
    @classmethod
    def _parse_sync_channels(cls, value: object) -> tuple[str, ...]:
        """Normalise channel selections from environment values."""

        if value is None:
            return CHANNEL_KEYS
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError("SYNC_CHANNELS must be a string or iterable of strings")

        cleaned: list[str] = []
        for entry in raw_values:
            if not entry:
                continue
            key = normalise_channel_key(entry)
            if key not in CHANNEL_KEYS:
                raise ValueError("Unknown sync channels configured")
            if key not in cleaned:
                cleaned.append(key)
        if not cleaned:
            return CHANNEL_KEYS
        return tuple(cleaned)

    @property
    def channel_definitions(self) -> tuple[ChannelDefinition, ...]:
        """Return ordered channel definitions for the configured selection."""

        return tuple(channel_definition(key) for key in self.sync_channels)

    def channel_limit(self, definition: ChannelDefinition) -> int:
        """Return the effective item cap for ``definition`` (0 = unlimited)."""

        if definition.strategy == "capped" and self.capped_sync_limit is not None:
            return self.capped_sync_limit
        return definition.limit

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
