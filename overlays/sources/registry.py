from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from functools import lru_cache
from typing import Any, cast

from django.conf import settings
from django.utils.module_loading import import_string

from .base import SOURCE_KINDS, ImageryProvider, SourceDescriptor, SourceKind

logger = logging.getLogger(__name__)

DEFAULT_SOURCES: list[dict[str, Any]] = [
    {
        "id": "copernicus",
        "path": "overlays.sources.copernicus.CopernicusProvider",
        "priority": 1,
        "kind": "image",
        "timeout_ms": 8000,
    },
    {
        "id": "agromonitoring",
        "path": "overlays.sources.agromonitoring.AgromonitoringProvider",
        "priority": 2,
        "kind": "image",
        "timeout_ms": 8000,
    },
    {
        "id": "agromonitoring_tiles",
        "path": "overlays.sources.agromonitoring.AgromonitoringProvider",
        "priority": 3,
        "kind": "tile",
        "timeout_ms": 5000,
        "options": {"kind": "tile"},
    },
]


def build_sources(
    config: Sequence[Mapping[str, Any]] | None = None,
) -> list[SourceDescriptor]:
    """Instantiate configured providers ordered by ascending priority.

    Providers that refuse to start (missing credentials) are skipped.
    """

    entries = (
        config
        if config is not None
        else getattr(settings, "OVERLAY_SOURCES", DEFAULT_SOURCES)
    )
    descriptors: list[SourceDescriptor] = []
    seen: set[str] = set()
    for entry in entries:
        source_id = str(entry["id"])
        if source_id in seen:
            raise ValueError(f"Duplicate imagery source id: {source_id}")
        seen.add(source_id)
        kind = str(entry.get("kind", "image"))
        if kind not in SOURCE_KINDS:
            raise ValueError(f"Unsupported source kind: {kind}")

        provider_cls = import_string(str(entry["path"]))
        try:
            provider = cast(
                ImageryProvider, provider_cls(**dict(entry.get("options") or {}))
            )
        except ValueError as exc:
            logger.warning(
                "overlays.sources skipped source=%s reason=%s", source_id, exc
            )
            continue

        descriptors.append(
            SourceDescriptor(
                id=source_id,
                priority=int(entry["priority"]),
                kind=cast(SourceKind, kind),
                timeout_ms=int(entry.get("timeout_ms", 8000)),
                provider=provider,
            )
        )
    return sorted(descriptors, key=lambda source: source.priority)


@lru_cache(maxsize=1)
def get_sources() -> tuple[SourceDescriptor, ...]:
    """Return the process-wide source list."""

    return tuple(build_sources())
