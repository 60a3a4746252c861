from __future__ import annotations

# ruff: noqa: S101
import numpy as np
import pytest

from overlays.geometry import BoundingBox, bounding_box, normalize
from overlays.raster.synthesizer import (
    DEFAULT_INDEX_VALUE,
    MAX_DEVIATION,
    index_field,
    raster_shape,
    synthesize,
)
from overlays.tests.fakes import SQUARE_KM


def test_square_field_at_065_stays_between_contrast_stops() -> None:
    polygon = normalize(SQUARE_KM)
    bbox = bounding_box(polygon)
    masked = synthesize(0.65, polygon, bbox, "contrast", size=64)

    inside = masked.pixels[masked.mask]
    assert inside.shape[0] > 0
    low, high = np.array([205, 220, 57]), np.array([139, 195, 74])
    assert (inside[:, :3] >= np.minimum(low, high)).all()
    assert (inside[:, :3] <= np.maximum(low, high)).all()
    assert (inside[:, 3] == 255).all()
    assert (masked.pixels[~masked.mask] == 0).all()


def test_index_field_deviation_is_bounded() -> None:
    bbox = BoundingBox(min_lng=36.8, max_lng=36.9, min_lat=-1.3, max_lat=-1.2)
    values = index_field(0.3, bbox, 50, 80)
    assert values.shape == (50, 80)
    assert np.abs(values - 0.3).max() <= MAX_DEVIATION + 1e-9


def test_unknown_index_renders_around_default() -> None:
    bbox = BoundingBox(min_lng=0.0, max_lng=0.01, min_lat=0.0, max_lat=0.01)
    values = index_field(None, bbox, 16, 16)
    assert np.abs(values - DEFAULT_INDEX_VALUE).max() <= MAX_DEVIATION + 1e-9


def test_synthesis_is_deterministic_per_field() -> None:
    polygon = normalize(SQUARE_KM)
    bbox = bounding_box(polygon)
    first = synthesize(0.4, polygon, bbox, "classic", size=32)
    second = synthesize(0.4, polygon, bbox, "classic", size=32)
    assert np.array_equal(first.pixels, second.pixels)


@pytest.mark.parametrize("index_value", [-1.0, -0.2, 0.0, 0.5, 1.0, None])
@pytest.mark.parametrize(
    "points",
    [
        [(0.0, 0.0), (0.02, 0.0), (0.0, 0.01)],
        [(0.0, 0.0), (0.04, 0.0), (0.04, 0.04), (0.02, 0.01), (0.0, 0.04)],
        SQUARE_KM,
    ],
)
def test_synthesize_never_fails_for_valid_polygons(
    index_value: float | None, points: list[object]
) -> None:
    polygon = normalize(points)
    masked = synthesize(
        index_value, polygon, bounding_box(polygon), "moisture", size=24
    )
    assert masked.pixels.dtype == np.uint8
    assert masked.inside_count > 0


def test_raster_shape_keeps_long_side() -> None:
    wide = BoundingBox(min_lng=0.0, max_lng=0.02, min_lat=0.0, max_lat=0.01)
    tall = BoundingBox(min_lng=0.0, max_lng=0.01, min_lat=0.0, max_lat=0.02)
    assert raster_shape(wide, 100) == (50, 100)
    assert raster_shape(tall, 100) == (100, 50)
