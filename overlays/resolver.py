"""Ordered provider cascade with per-source timeouts and a synthetic
fallback.

For each request the resolver walks the sources by ascending priority
(`TryingSource(i)`), stops at the first usable raster (`Success`), skips a
source on timeout or any failure (`NextSource`) and, once every source has
failed (`Exhausted`), renders the synthetic gradient from the field's last
known index value. The result therefore always carries a raster.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Literal

from .cancellation import CancellationToken, StaleResultDiscarded
from .geometry import BoundingBox, ImageCorners, Polygon, image_corners
from .metrics import (
    overlay_fallback_total,
    overlay_source_attempts_total,
    overlay_source_latency_seconds,
)
from .raster.base import ImageRaster, RasterHandle
from .raster.clipper import clip
from .raster.synthesizer import synthesize
from .sources.base import (
    FieldQuery,
    SourceDescriptor,
    SourceFailure,
    TimeWindow,
    with_timeout,
)

logger = logging.getLogger(__name__)

SYNTHETIC_SOURCE_ID = "synthetic"

AttemptOutcome = Literal["success", "failure", "timeout", "no_data"]


@dataclass(frozen=True)
class OverlayRequest:
    field: FieldQuery
    window: TimeWindow
    index_value: float | None = None

    @property
    def field_id(self) -> str:
        return self.field.field_id

    @property
    def palette_key(self) -> str:
        return self.field.palette_key

    @property
    def polygon(self) -> Polygon:
        return self.field.polygon

    @property
    def bbox(self) -> BoundingBox:
        return self.field.bbox


@dataclass(frozen=True)
class SourceAttempt:
    source_id: str
    outcome: AttemptOutcome
    elapsed_ms: float
    error: str | None = None


@dataclass(frozen=True, eq=False)
class OverlayResult:
    source_id: str
    raster: RasterHandle
    corners: ImageCorners
    clipped: bool
    palette_key: str
    boundary: Polygon
    attempts: tuple[SourceAttempt, ...] = ()

    @property
    def is_synthetic(self) -> bool:
        return self.source_id == SYNTHETIC_SOURCE_ID

    @property
    def cloud_coverage(self) -> float | None:
        return self.raster.cloud_coverage

    @property
    def bounds(self) -> tuple[float, float, float, float]:
        """`(west, south, east, north)` of the imagery footprint."""

        west, north = self.corners.top_left
        east, south = self.corners.bottom_right
        return (west, south, east, north)


class SourceResolver:
    """Resolve one overlay by trying `sources` in priority order."""

    def __init__(self, sources: Sequence[SourceDescriptor]) -> None:
        self.sources = sorted(sources, key=lambda source: source.priority)

    async def resolve(
        self,
        request: OverlayRequest,
        token: CancellationToken | None = None,
    ) -> OverlayResult:
        """Return the first usable raster, or the synthetic fallback.

        Raises `StaleResultDiscarded` as soon as `token` is cancelled; no
        further source is attempted after that.
        """

        corners = image_corners(request.bbox)
        attempts: list[SourceAttempt] = []

        for source in self.sources:
            if token is not None:
                token.raise_if_cancelled()
            started = time.monotonic()
            try:
                raster = await with_timeout(
                    source.resolve(request.field, request.window),
                    source.timeout_ms,
                    source_id=source.id,
                )
                if token is not None:
                    token.raise_if_cancelled()
                raster, clipped = await self._prepare(source, raster, request)
            except StaleResultDiscarded:
                raise
            except SourceFailure as exc:
                attempts.append(self._record(source, exc.outcome, started, exc))
                continue
            except Exception as exc:  # noqa: BLE001 - errors advance the cascade
                attempts.append(self._record(source, "failure", started, exc))
                continue

            attempts.append(self._record(source, "success", started))
            return OverlayResult(
                source_id=source.id,
                raster=raster,
                corners=corners,
                clipped=clipped,
                palette_key=request.palette_key,
                boundary=request.polygon,
                attempts=tuple(attempts),
            )

        if token is not None:
            token.raise_if_cancelled()
        return await self._fallback(request, corners, attempts)

    async def _prepare(
        self,
        source: SourceDescriptor,
        raster: RasterHandle,
        request: OverlayRequest,
    ) -> tuple[RasterHandle, bool]:
        if raster.kind != source.kind:
            raise SourceFailure(
                source.id,
                f"returned {raster.kind} imagery for a source declared as "
                f"{source.kind}",
            )
        if isinstance(raster, ImageRaster):
            masked = await asyncio.to_thread(
                clip, raster, request.polygon, request.bbox
            )
            return dataclasses.replace(raster, pixels=masked.pixels), True
        return raster, False

    async def _fallback(
        self,
        request: OverlayRequest,
        corners: ImageCorners,
        attempts: list[SourceAttempt],
    ) -> OverlayResult:
        reason = "no_sources" if not attempts else "exhausted"
        overlay_fallback_total.labels(reason=reason).inc()
        logger.info(
            "overlays.resolver fallback field=%s reason=%s attempts=%s",
            request.field_id,
            reason,
            len(attempts),
        )
        masked = await asyncio.to_thread(
            synthesize,
            request.index_value,
            request.polygon,
            request.bbox,
            request.palette_key,
        )
        return OverlayResult(
            source_id=SYNTHETIC_SOURCE_ID,
            raster=ImageRaster(pixels=masked.pixels),
            corners=corners,
            clipped=True,
            palette_key=request.palette_key,
            boundary=request.polygon,
            attempts=tuple(attempts),
        )

    def _record(
        self,
        source: SourceDescriptor,
        outcome: AttemptOutcome,
        started: float,
        error: Exception | None = None,
    ) -> SourceAttempt:
        elapsed = time.monotonic() - started
        overlay_source_attempts_total.labels(
            source=source.id, outcome=outcome
        ).inc()
        overlay_source_latency_seconds.labels(source=source.id).observe(elapsed)
        if error is None:
            logger.debug(
                "overlays.resolver source=%s outcome=success elapsed_ms=%.0f",
                source.id,
                elapsed * 1000,
            )
        else:
            logger.warning(
                "overlays.resolver source=%s outcome=%s elapsed_ms=%.0f error=%s",
                source.id,
                outcome,
                elapsed * 1000,
                error,
            )
        return SourceAttempt(
            source_id=source.id,
            outcome=outcome,
            elapsed_ms=elapsed * 1000,
            error=str(error) if error is not None else None,
        )
