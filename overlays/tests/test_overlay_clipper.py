from __future__ import annotations

# ruff: noqa: S101
import numpy as np
import pytest

from overlays.geometry import BoundingBox, Polygon, normalize, point_in_polygon
from overlays.raster import clipper
from overlays.raster.base import ImageRaster
from overlays.raster.clipper import RasterClipError, clip, scanline_mask
from overlays.tests.fakes import solid_raster

UNIT = BoundingBox(min_lng=0.0, max_lng=1.0, min_lat=0.0, max_lat=1.0)


def test_full_cover_polygon_keeps_every_pixel() -> None:
    polygon = normalize([(0.0, 0.0), (1.0, 0.0), (1.0, 1.0), (0.0, 1.0)])
    mask = scanline_mask(polygon, UNIT, 4, 4)
    assert mask.all()


def test_triangle_mask_counts_diagonal_centers_as_inside() -> None:
    polygon = normalize([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)])
    mask = scanline_mask(polygon, UNIT, 4, 4)
    assert np.array_equal(mask, np.tril(np.ones((4, 4), dtype=bool)))


CENTERED = BoundingBox(min_lng=-0.5, max_lng=7.5, min_lat=-0.5, max_lat=7.5)


def _centers_inside(polygon: Polygon, bbox: BoundingBox, size: int) -> np.ndarray:
    expected = np.zeros((size, size), dtype=bool)
    for row in range(size):
        lat = bbox.max_lat - (row + 0.5) * bbox.height / size
        for col in range(size):
            lng = bbox.min_lng + (col + 0.5) * bbox.width / size
            expected[row, col] = point_in_polygon(lng, lat, polygon)
    return expected


@pytest.mark.parametrize(
    "points",
    [
        [(0, 6), (6, 6), (3, 1)],
        [(0, 1), (6, 1), (3, 6)],
        [(1, 0), (6, 2), (7, 6), (3, 7), (0, 4)],
        [(0, 0), (7, 0), (7, 7), (5, 3), (3, 6), (1, 2), (0, 7)],
    ],
)
def test_mask_matches_point_in_polygon_with_vertices_on_centers(
    points: list[tuple[int, int]],
) -> None:
    polygon = normalize([(float(lng), float(lat)) for lng, lat in points])
    mask = scanline_mask(polygon, CENTERED, 8, 8)

    for lng, lat in points:
        assert mask[7 - lat, lng], (lng, lat)
    assert np.array_equal(mask, _centers_inside(polygon, CENTERED, 8))
    assert not mask.all()


def test_lowest_vertex_on_a_row_center_is_kept() -> None:
    polygon = normalize([(0.0, 4.0), (4.0, 4.0), (2.0, 1.0)])
    bbox = BoundingBox(min_lng=-0.5, max_lng=4.5, min_lat=0.5, max_lat=4.5)
    mask = scanline_mask(polygon, bbox, 5, 4)

    assert mask[3].tolist() == [False, False, True, False, False]
    assert point_in_polygon(2.0, 1.0, polygon)


def test_clip_zeroes_outside_and_keeps_inside_pixels() -> None:
    polygon = normalize([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)])
    raster = solid_raster(4, 4, color=(1, 2, 3, 200))
    masked = clip(raster, polygon, UNIT)

    inside = np.tril(np.ones((4, 4), dtype=bool))
    assert (masked.pixels[inside] == (1, 2, 3, 200)).all()
    assert (masked.pixels[~inside] == 0).all()
    assert masked.inside_count == int(inside.sum())
    assert raster.pixels[0, 3, 3] == 200


def test_downsample_factor_thresholds(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(clipper, "FULL_RES_MAX_PIXELS", 16)
    monkeypatch.setattr(clipper, "HALF_RES_MAX_PIXELS", 64)
    assert clipper.downsample_factor(4, 4) == 1
    assert clipper.downsample_factor(8, 8) == 2
    assert clipper.downsample_factor(9, 9) == 4


def test_clip_upscales_reduced_mask(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(clipper, "FULL_RES_MAX_PIXELS", 16)
    monkeypatch.setattr(clipper, "HALF_RES_MAX_PIXELS", 64)
    polygon = normalize([(0.0, 0.0), (1.0, 0.0), (1.0, 0.5), (0.0, 0.5)])
    masked = clip(solid_raster(8, 8), polygon, UNIT)

    assert masked.downsample_factor == 2
    assert masked.mask.shape == (8, 8)
    assert masked.mask[4:].all()
    assert not masked.mask[:4].any()


def test_clip_rejects_non_rgba_pixels() -> None:
    polygon = normalize([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)])
    raster = ImageRaster(pixels=np.zeros((4, 4, 3), dtype=np.uint8))
    with pytest.raises(RasterClipError, match="RGBA"):
        clip(raster, polygon, UNIT)


def test_scanline_mask_rejects_degenerate_box() -> None:
    polygon = normalize([(0.0, 0.0), (1.0, 0.0), (0.0, 1.0)])
    flat = BoundingBox(min_lng=0.0, max_lng=1.0, min_lat=0.0, max_lat=0.0)
    with pytest.raises(RasterClipError, match="zero width or height"):
        scanline_mask(polygon, flat, 4, 4)
