"""Mounting overlay results onto a map rendering surface.

The surface is injected at construction. For every slot the manager keeps
the ids it registered, removes them (layers before sources) before mounting
a new result, and always adds the raster layer before the outline layer so
the outline stays on top.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from django.conf import settings

from .cancellation import CancellationToken
from .geometry import to_geojson
from .metrics import overlay_stale_discarded_total
from .raster.base import ImageRaster, TileRaster
from .raster.codec import to_data_url
from .resolver import OverlayResult

logger = logging.getLogger(__name__)

FIT_PADDING = int(getattr(settings, "OVERLAY_FIT_PADDING", 30))
RASTER_OPACITY = float(getattr(settings, "OVERLAY_RASTER_OPACITY", 0.7))
SYNTHETIC_OPACITY = float(getattr(settings, "OVERLAY_SYNTHETIC_OPACITY", 0.6))

OUTLINE_COLOR = "#ffffff"
OUTLINE_WIDTH = 3

LngLat = tuple[float, float]


class MapSurface(Protocol):
    """Subset of a map rendering API the overlay manager drives."""

    def add_source(self, source_id: str, source: dict[str, Any]) -> None: ...

    def add_layer(self, layer: dict[str, Any]) -> None: ...

    def remove_layer(self, layer_id: str) -> None: ...

    def remove_source(self, source_id: str) -> None: ...

    def fit_bounds(self, bounds: tuple[LngLat, LngLat], padding: int) -> None: ...

    def set_paint_property(
        self, layer_id: str, name: str, value: Any
    ) -> None: ...


@dataclass
class MountedOverlay:
    slot_id: str
    source_id: str
    layer_ids: list[str] = field(default_factory=list)
    source_ids: list[str] = field(default_factory=list)

    @property
    def raster_layer_id(self) -> str:
        return self.layer_ids[0]


class OverlayLayerManager:
    def __init__(
        self,
        surface: MapSurface,
        *,
        padding: int = FIT_PADDING,
        raster_opacity: float = RASTER_OPACITY,
        synthetic_opacity: float = SYNTHETIC_OPACITY,
    ) -> None:
        self.surface = surface
        self.padding = padding
        self.raster_opacity = raster_opacity
        self.synthetic_opacity = synthetic_opacity
        self._mounted: dict[str, MountedOverlay] = {}

    @property
    def mounted(self) -> dict[str, MountedOverlay]:
        return dict(self._mounted)

    def apply(
        self,
        slot_id: str,
        result: OverlayResult,
        *,
        fit_viewport: bool = True,
        token: CancellationToken | None = None,
    ) -> MountedOverlay | None:
        """Replace whatever is mounted under `slot_id` with `result`.

        A result whose token has been cancelled is dropped and None is
        returned; the surface is left untouched in that case.
        """

        if token is not None and token.cancelled:
            overlay_stale_discarded_total.labels(stage="apply").inc()
            logger.info(
                "overlays.layers discarded stale result slot=%s sequence=%s",
                slot_id,
                token.sequence,
            )
            return None

        self.remove(slot_id)

        raster_source_id = f"{slot_id}-raster-source"
        outline_source_id = f"{slot_id}-outline-source"
        raster_layer_id = (
            f"{slot_id}-fallback" if result.is_synthetic else f"{slot_id}-raster"
        )
        outline_layer_id = f"{slot_id}-outline"
        mounted = MountedOverlay(slot_id=slot_id, source_id=result.source_id)
        self._mounted[slot_id] = mounted

        self.surface.add_source(raster_source_id, self._raster_source(result))
        mounted.source_ids.append(raster_source_id)
        self.surface.add_layer(
            {
                "id": raster_layer_id,
                "type": "raster",
                "source": raster_source_id,
                "paint": {
                    "raster-opacity": self._opacity(result),
                    "raster-fade-duration": 0,
                },
            }
        )
        mounted.layer_ids.append(raster_layer_id)

        self.surface.add_source(
            outline_source_id,
            {"type": "geojson", "data": to_geojson(result.boundary)},
        )
        mounted.source_ids.append(outline_source_id)
        self.surface.add_layer(
            {
                "id": outline_layer_id,
                "type": "line",
                "source": outline_source_id,
                "paint": {
                    "line-color": OUTLINE_COLOR,
                    "line-width": OUTLINE_WIDTH,
                },
            }
        )
        mounted.layer_ids.append(outline_layer_id)

        if fit_viewport:
            west, south, east, north = result.bounds
            self.surface.fit_bounds(((west, south), (east, north)), self.padding)

        logger.debug(
            "overlays.layers mounted slot=%s source=%s layer=%s",
            slot_id,
            result.source_id,
            raster_layer_id,
        )
        return mounted

    def remove(self, slot_id: str) -> bool:
        mounted = self._mounted.pop(slot_id, None)
        if mounted is None:
            return False
        for layer_id in reversed(mounted.layer_ids):
            self.surface.remove_layer(layer_id)
        for source_id in reversed(mounted.source_ids):
            self.surface.remove_source(source_id)
        return True

    def clear(self) -> None:
        for slot_id in list(self._mounted):
            self.remove(slot_id)

    def set_opacity(self, slot_id: str, opacity: float) -> None:
        mounted = self._mounted.get(slot_id)
        if mounted is None:
            raise KeyError(f"No overlay mounted for slot {slot_id}")
        self.surface.set_paint_property(
            mounted.raster_layer_id,
            "raster-opacity",
            min(max(float(opacity), 0.0), 1.0),
        )

    def _opacity(self, result: OverlayResult) -> float:
        return self.synthetic_opacity if result.is_synthetic else self.raster_opacity

    def _raster_source(self, result: OverlayResult) -> dict[str, Any]:
        raster = result.raster
        if isinstance(raster, ImageRaster):
            return {
                "type": "image",
                "url": to_data_url(raster.pixels),
                "coordinates": result.corners.as_list(),
            }
        if isinstance(raster, TileRaster):
            return {
                "type": "raster",
                "tiles": [raster.url_template],
                "tileSize": raster.tile_size,
                "bounds": list(result.bounds),
            }
        raise TypeError(f"Unsupported raster handle: {type(raster).__name__}")
