"""Procedural stand-in raster for fields without usable imagery.

The synthetic field is the base index value with a slight darkening toward
the bounding-box edges, blocky value noise seeded from the box position
(so a field always renders identically) and a faint planting-row ripple.
The total deviation stays within `MAX_DEVIATION` of the base value, which
keeps the field center inside the palette segment of the base value.
"""

from __future__ import annotations

import math

import numpy as np
from django.conf import settings

from ..geometry import BoundingBox, Polygon
from ..palette import colorize
from .base import ImageRaster, MaskedRaster
from .clipper import clip

DEFAULT_INDEX_VALUE = 0.5
SYNTHETIC_SIZE = int(getattr(settings, "OVERLAY_SYNTHETIC_SIZE", 256))

EDGE_DARKENING = 0.012
NOISE_AMPLITUDE = 0.012
ROW_AMPLITUDE = 0.006
MAX_DEVIATION = EDGE_DARKENING + NOISE_AMPLITUDE + ROW_AMPLITUDE


def raster_shape(bbox: BoundingBox, size: int = SYNTHETIC_SIZE) -> tuple[int, int]:
    """`(height, width)` keeping the ground aspect ratio of the box."""

    mean_lat = math.radians((bbox.min_lat + bbox.max_lat) / 2)
    ground_w = bbox.width * max(math.cos(mean_lat), 1e-6)
    ground_h = bbox.height
    if ground_w <= 0 or ground_h <= 0:
        return (size, size)
    if ground_w >= ground_h:
        return (max(1, round(size * ground_h / ground_w)), size)
    return (size, max(1, round(size * ground_w / ground_h)))


def _seed(bbox: BoundingBox) -> float:
    return abs(bbox.min_lng * 1000 + bbox.min_lat * 1000) % 10000


def _hash_noise(x: np.ndarray, y: np.ndarray, seed: float) -> np.ndarray:
    value = np.sin(x * 12.9898 + y * 78.233 + seed) * 43758.5453
    return value - np.floor(value)


def index_field(
    index_value: float | None, bbox: BoundingBox, height: int, width: int
) -> np.ndarray:
    """Per-pixel index values around `index_value`."""

    base = DEFAULT_INDEX_VALUE if index_value is None else float(index_value)
    if not math.isfinite(base):
        base = DEFAULT_INDEX_VALUE
    base = min(max(base, -1.0), 1.0)

    rows, cols = np.mgrid[0:height, 0:width].astype(np.float64)
    dy = (rows + 0.5) / height - 0.5
    dx = (cols + 0.5) / width - 0.5
    radius = np.sqrt(dx * dx + dy * dy) / math.sqrt(0.5)
    falloff = np.clip((radius - 0.7) / 0.3, 0.0, 1.0)

    block = max(4, min(12, width // 40))
    block_rows = np.floor(rows / block)
    block_cols = np.floor(cols / block)
    noise = _hash_noise(block_cols / 5.0, block_rows / 5.0, _seed(bbox))
    ripple = np.sin(rows / 8.0 + cols / 40.0)

    field = (
        base
        - EDGE_DARKENING * falloff
        + NOISE_AMPLITUDE * (2.0 * noise - 1.0)
        + ROW_AMPLITUDE * ripple
    )
    return np.clip(field, -1.0, 1.0)


def synthesize(
    index_value: float | None,
    polygon: Polygon,
    bbox: BoundingBox,
    palette_key: str,
    *,
    size: int = SYNTHETIC_SIZE,
) -> MaskedRaster:
    """Generate a palette-colored raster for `index_value`, clipped to
    `polygon`.

    Unknown values (`None`) render around `DEFAULT_INDEX_VALUE`.
    """

    height, width = raster_shape(bbox, size)
    pixels = colorize(palette_key, index_field(index_value, bbox, height, width))
    return clip(ImageRaster(pixels=pixels), polygon, bbox)
