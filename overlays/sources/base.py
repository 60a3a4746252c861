"""Imagery provider abstractions."""

from __future__ import annotations

import asyncio
import hashlib
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Literal, Protocol, TypeVar

from ..geometry import BoundingBox, Polygon
from ..raster.base import RasterHandle

SourceKind = Literal["image", "tile"]
SOURCE_KINDS: tuple[SourceKind, ...] = ("image", "tile")

T = TypeVar("T")


class SourceFailure(RuntimeError):
    """A provider attempt failed; the resolver moves on to the next one."""

    outcome = "failure"

    def __init__(self, source_id: str, reason: str) -> None:
        self.source_id = source_id
        self.reason = reason
        super().__init__(f"{source_id}: {reason}")


class SourceTimeout(SourceFailure):
    outcome = "timeout"

    def __init__(self, source_id: str, timeout_ms: int) -> None:
        self.timeout_ms = timeout_ms
        super().__init__(source_id, f"timed out after {timeout_ms} ms")


class NoImageryAvailable(SourceFailure):
    outcome = "no_data"


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive acquisition date range."""

    start: date
    end: date

    @classmethod
    def last_days(cls, days: int, today: date | None = None) -> TimeWindow:
        end = today or date.today()
        return cls(start=end - timedelta(days=days), end=end)

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    def window_hash(self) -> str:
        raw = f"{self.start.isoformat()}:{self.end.isoformat()}"
        return hashlib.sha256(raw.encode("utf-8")).hexdigest()[:16]


@dataclass(frozen=True)
class FieldQuery:
    """What a provider needs to know about the field."""

    field_id: str
    polygon: Polygon
    bbox: BoundingBox
    palette_key: str


class ImageryProvider(Protocol):
    """Fetches an index raster for a field within a time window.

    Implementations raise `SourceFailure` (or let transport errors escape)
    when they have nothing usable.
    """

    async def resolve(
        self, field: FieldQuery, window: TimeWindow
    ) -> RasterHandle:
        """Return the provider's raster for the field."""


@dataclass(frozen=True)
class SourceDescriptor:
    id: str
    priority: int
    kind: SourceKind
    timeout_ms: int
    provider: ImageryProvider

    async def resolve(
        self, field: FieldQuery, window: TimeWindow
    ) -> RasterHandle:
        return await self.provider.resolve(field, window)


async def with_timeout(
    operation: Awaitable[T], timeout_ms: int, *, source_id: str
) -> T:
    """Await `operation`, cancelling it and raising `SourceTimeout` once
    `timeout_ms` elapses."""

    try:
        return await asyncio.wait_for(operation, timeout=timeout_ms / 1000)
    except asyncio.TimeoutError as exc:
        raise SourceTimeout(source_id, timeout_ms) from exc
