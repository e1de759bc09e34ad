"""Fixed set of upstream channels mirrored into the local catalog."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal


ChannelKey = Literal["ted", "teded", "tedx"]
SyncStrategyName = Literal["full", "capped"]

ALL_CHANNELS = "all"


@dataclass(frozen=True)
class ChannelDefinition:
    """Describes an upstream channel and how it should be synchronised."""

    key: str
    title: str
    channel_id: str
    uploads_playlist_id: str | None
    strategy: SyncStrategyName
    limit: int = 0


CHANNELS: tuple[ChannelDefinition, ...] = (
    ChannelDefinition(
        key="ted",
        title="TED",
        channel_id="UCAuUUnT6oDeKwE6v1NGQxug",
        uploads_playlist_id="UUAuUUnT6oDeKwE6v1NGQxug",
        strategy="full",
    ),
    ChannelDefinition(
        key="teded",
        title="TED-Ed",
        channel_id="UCsooa4yRKGN_zEE8iknghZA",
        uploads_playlist_id=None,
        strategy="full",
    ),
    # Hundreds of thousands of uploads, so only the recent and popular heads.
    ChannelDefinition(
        key="tedx",
        title="TEDx",
        channel_id="UCsT0YIqwnpJCM-mx7-gSA4Q",
        uploads_playlist_id=None,
        strategy="capped",
        limit=5_000,
    ),
)

CHANNEL_KEYS: tuple[str, ...] = tuple(definition.key for definition in CHANNELS)

_CHANNEL_MAP = {definition.key: definition for definition in CHANNELS}


def channel_definition(key: str) -> ChannelDefinition:
    """Return the definition for ``key`` or raise ``KeyError``."""

    try:
        return _CHANNEL_MAP[key]
    except KeyError:
        raise KeyError(f"Unknown channel: {key}") from None


def normalise_channel_key(value: object) -> str:
    """Return a lowercase channel slug (``TED-Ed`` becomes ``teded``)."""

    return "".join(ch for ch in str(value).strip().lower() if ch.isalnum())
