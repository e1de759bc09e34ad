"""Utility helpers for the TalkShelf service."""

from __future__ import annotations

import re
from typing import Iterator, Sequence, TypeVar


T = TypeVar("T")

ISO_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")


def parse_duration(duration: str | None) -> str:
    """Convert an ISO-8601 duration such as ``PT1H2M3S`` to ``1:02:03``.

    Durations without an hour component render as ``MM:SS``. Missing or
    unparsable values become ``0:00``.
    """

    if not duration:
        return "0:00"
    match = ISO_DURATION_RE.match(duration)
    if not match or not any(match.groups()):
        return "0:00"

    hours, minutes, seconds = match.groups()
    parts: list[str] = []
    if hours:
        parts.append(str(int(hours)))
    parts.append(f"{int(minutes or 0):02d}")
    parts.append(f"{int(seconds or 0):02d}")
    return ":".join(parts)


def chunked(values: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    """Yield consecutive slices of ``values`` holding at most ``size`` entries."""

    if size < 1:
        raise ValueError("Chunk size must be positive")
    for start in range(0, len(values), size):
        yield values[start : start + size]


def unique_in_order(values: Iterator[str] | Sequence[str]) -> list[str]:
    """Drop repeated identifiers while keeping the first occurrence order."""

    seen: set[str] = set()
    ordered: list[str] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        ordered.append(value)
    return ordered


def coerce_int(value: object, *, default: int = 0) -> int:
    """Return ``value`` as an int, falling back to ``default``."""

    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
