"""Polygon masking of rasters that span a field bounding box.

The mask is built one horizontal scanline at a time: polygon edge
crossings are computed once per row, sorted, and the pixel columns between
each entering/leaving pair are filled. Pixel centers lying exactly on the
boundary count as inside: after the spans are filled, every edge that
touches a row center marks the pixels whose centers it passes through,
which covers vertices and horizontal edges as well.
"""

from __future__ import annotations

import logging
import math

import numpy as np
from django.conf import settings

from ..geometry import BoundingBox, Polygon
from .base import ImageRaster, MaskedRaster

logger = logging.getLogger(__name__)

FULL_RES_MAX_PIXELS = int(
    getattr(settings, "OVERLAY_CLIP_FULL_RES_MAX_PIXELS", 1024 * 1024)
)
HALF_RES_MAX_PIXELS = int(
    getattr(settings, "OVERLAY_CLIP_HALF_RES_MAX_PIXELS", 2048 * 2048)
)
# Pixel-space tolerance for centers lying on the boundary.
EDGE_EPSILON = 1e-9


class RasterClipError(ValueError):
    """Raised for rasters or boxes that cannot be masked."""


def downsample_factor(width: int, height: int) -> int:
    """Mask resolution divisor: 1, 2 or 4 depending on the pixel count."""

    pixels = width * height
    if pixels <= FULL_RES_MAX_PIXELS:
        return 1
    if pixels <= HALF_RES_MAX_PIXELS:
        return 2
    return 4


def _edges(
    polygon: Polygon, bbox: BoundingBox, width: int, height: int
) -> tuple[np.ndarray, np.ndarray, np.ndarray, np.ndarray]:
    vertices = np.asarray(polygon.vertices, dtype=np.float64)
    xs = (vertices[:, 0] - bbox.min_lng) / bbox.width * width
    ys = (bbox.max_lat - vertices[:, 1]) / bbox.height * height
    return xs[:-1], ys[:-1], xs[1:], ys[1:]


def scanline_mask(
    polygon: Polygon, bbox: BoundingBox, width: int, height: int
) -> np.ndarray:
    """Boolean `(height, width)` inside mask sampled at pixel centers."""

    if width <= 0 or height <= 0:
        raise RasterClipError("Raster must have positive dimensions")
    if bbox.width <= 0 or bbox.height <= 0:
        raise RasterClipError(
            "Bounding box has zero width or height; nothing to clip against"
        )

    x0, y0, x1, y1 = _edges(polygon, bbox, width, height)
    low_y, high_y = np.minimum(y0, y1), np.maximum(y0, y1)
    mask = np.zeros((height, width), dtype=bool)

    for row in range(height):
        yc = row + 0.5
        crossing = ((y0 <= yc) & (y1 > yc)) | ((y1 <= yc) & (y0 > yc))
        if crossing.any():
            cx0, cy0 = x0[crossing], y0[crossing]
            cx1, cy1 = x1[crossing], y1[crossing]
            hits = np.sort(cx0 + (yc - cy0) * (cx1 - cx0) / (cy1 - cy0))
            for enter, leave in zip(hits[0::2], hits[1::2]):
                first = max(math.ceil(enter - 0.5), 0)
                last = min(math.floor(leave - 0.5), width - 1)
                if first <= last:
                    mask[row, first : last + 1] = True

        touching = (low_y - EDGE_EPSILON <= yc) & (high_y + EDGE_EPSILON >= yc)
        for ex0, ey0, ex1, ey1 in zip(
            x0[touching], y0[touching], x1[touching], y1[touching]
        ):
            if abs(ey1 - ey0) <= EDGE_EPSILON:
                left, right = min(ex0, ex1), max(ex0, ex1)
            else:
                left = right = ex0 + (yc - ey0) * (ex1 - ex0) / (ey1 - ey0)
            first = max(math.ceil(left - 0.5 - EDGE_EPSILON), 0)
            last = min(math.floor(right - 0.5 + EDGE_EPSILON), width - 1)
            if first <= last:
                mask[row, first : last + 1] = True
    return mask


def clip(raster: ImageRaster, polygon: Polygon, bbox: BoundingBox) -> MaskedRaster:
    """Make every pixel outside `polygon` fully transparent.

    Large rasters are masked at 1/2 or 1/4 resolution (see
    `downsample_factor`) and the mask is upscaled by pixel repetition.
    """

    pixels = raster.pixels
    if pixels.ndim != 3 or pixels.shape[2] != 4:
        raise RasterClipError(
            f"Expected an RGBA pixel array, got shape {pixels.shape}"
        )
    height, width = int(pixels.shape[0]), int(pixels.shape[1])
    factor = downsample_factor(width, height)
    mask_w = -(-width // factor)
    mask_h = -(-height // factor)
    mask = scanline_mask(polygon, bbox, mask_w, mask_h)
    if factor > 1:
        mask = np.repeat(np.repeat(mask, factor, axis=0), factor, axis=1)
        mask = mask[:height, :width]
        logger.debug(
            "overlays.clip downsampled factor=%s size=%sx%s",
            factor,
            width,
            height,
        )

    clipped = pixels.copy()
    clipped[~mask] = 0
    return MaskedRaster(pixels=clipped, mask=mask, downsample_factor=factor)
