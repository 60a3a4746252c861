from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Literal, TypeAlias

import numpy as np


@dataclass(frozen=True, eq=False)
class ImageRaster:
    """Single georeferenced RGBA raster spanning the field bounding box.

    `pixels` is an `(height, width, 4)` uint8 array, row 0 at the north edge.
    """

    pixels: np.ndarray
    cloud_coverage: float | None = None
    acquired_on: date | None = None

    kind: Literal["image"] = "image"

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])


@dataclass(frozen=True)
class TileRaster:
    """XYZ tile template (`{z}/{x}/{y}`) already cut by the provider."""

    url_template: str
    tile_size: int = 256
    cloud_coverage: float | None = None
    acquired_on: date | None = None

    kind: Literal["tile"] = "tile"


RasterHandle: TypeAlias = ImageRaster | TileRaster


@dataclass(frozen=True, eq=False)
class MaskedRaster:
    """Raster whose pixels outside the polygon are fully transparent."""

    pixels: np.ndarray
    mask: np.ndarray
    downsample_factor: int = 1

    @property
    def inside_count(self) -> int:
        return int(self.mask.sum())
