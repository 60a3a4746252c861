"""Field boundary geometry: normalization, bounding boxes, image corners.

Coordinates are WGS84 decimal degrees ordered `(longitude, latitude)`.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass
from typing import Any, TypeAlias

from django.conf import settings

Coordinate: TypeAlias = tuple[float, float]

COORD_EPSILON = 1e-9
AREA_EPSILON = 1e-12
KM_PER_DEGREE = 111.32
MAX_AREA_KM2 = float(getattr(settings, "OVERLAY_MAX_AREA_KM2", 5000.0))


class GeometryError(ValueError):
    """Raised when a field boundary cannot be used as a polygon."""


@dataclass(frozen=True)
class Polygon:
    """Closed ring of `(lng, lat)` vertices (first vertex repeated last)."""

    vertices: tuple[Coordinate, ...]

    @property
    def ring(self) -> tuple[Coordinate, ...]:
        """Vertices without the closing point."""

        return self.vertices[:-1]

    @property
    def signed_area(self) -> float:
        return signed_area(self.ring)

    def __len__(self) -> int:
        return len(self.ring)


@dataclass(frozen=True)
class BoundingBox:
    min_lng: float
    max_lng: float
    min_lat: float
    max_lat: float

    @property
    def width(self) -> float:
        return self.max_lng - self.min_lng

    @property
    def height(self) -> float:
        return self.max_lat - self.min_lat

    @property
    def center(self) -> Coordinate:
        return (
            (self.min_lng + self.max_lng) / 2,
            (self.min_lat + self.max_lat) / 2,
        )

    def contains(self, lng: float, lat: float) -> bool:
        return (
            self.min_lng <= lng <= self.max_lng
            and self.min_lat <= lat <= self.max_lat
        )

    def as_bounds(self) -> tuple[float, float, float, float]:
        """Return `(west, south, east, north)`."""

        return (self.min_lng, self.min_lat, self.max_lng, self.max_lat)


@dataclass(frozen=True)
class ImageCorners:
    """Georeferencing corners in top-left, top-right, bottom-right,
    bottom-left order."""

    top_left: Coordinate
    top_right: Coordinate
    bottom_right: Coordinate
    bottom_left: Coordinate

    def as_list(self) -> list[list[float]]:
        return [
            list(self.top_left),
            list(self.top_right),
            list(self.bottom_right),
            list(self.bottom_left),
        ]


def _coerce_point(raw: Any) -> Coordinate:
    if isinstance(raw, Mapping):
        lat = raw.get("lat")
        lng = raw.get("lng", raw.get("lon"))
    elif isinstance(raw, Sequence) and not isinstance(raw, str | bytes):
        if len(raw) != 2:
            raise GeometryError("Coordinate pairs must be (lng, lat).")
        lng, lat = raw
    else:
        raise GeometryError(f"Unsupported coordinate: {raw!r}")
    try:
        lng_f = float(lng)  # type: ignore[arg-type]
        lat_f = float(lat)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise GeometryError(f"Non-numeric coordinate: {raw!r}") from exc
    if not (math.isfinite(lng_f) and math.isfinite(lat_f)):
        raise GeometryError(f"Non-finite coordinate: {raw!r}")
    if not (-180.0 <= lng_f <= 180.0 and -90.0 <= lat_f <= 90.0):
        raise GeometryError(f"Coordinate out of range: {raw!r}")
    return (lng_f, lat_f)


def coerce_points(points: Iterable[Any]) -> list[Coordinate]:
    """Convert `{lat, lng}` / `{lat, lon}` mappings or `(lng, lat)` pairs."""

    if points is None or isinstance(points, str | bytes | Mapping):
        raise GeometryError("Boundary must be a sequence of coordinates.")
    return [_coerce_point(raw) for raw in points]


def _same_point(a: Coordinate, b: Coordinate) -> bool:
    return (
        abs(a[0] - b[0]) <= COORD_EPSILON
        and abs(a[1] - b[1]) <= COORD_EPSILON
    )


def signed_area(ring: Sequence[Coordinate]) -> float:
    """Shoelace area of an open ring, positive when counter-clockwise."""

    total = 0.0
    count = len(ring)
    for index in range(count):
        x0, y0 = ring[index]
        x1, y1 = ring[(index + 1) % count]
        total += x0 * y1 - x1 * y0
    return total / 2.0


def normalize(points: Iterable[Any]) -> Polygon:
    """Return a closed, de-duplicated copy of a field boundary.

    Consecutive points closer than `COORD_EPSILON` collapse into one, an
    explicit closing point is dropped and re-added, and rings with fewer
    than three distinct vertices or (near) zero shoelace area raise
    `GeometryError`. The caller's sequence is never modified.
    """

    coords = coerce_points(points)
    ring: list[Coordinate] = []
    for point in coords:
        if ring and _same_point(ring[-1], point):
            continue
        ring.append(point)
    while len(ring) > 1 and _same_point(ring[0], ring[-1]):
        ring.pop()

    distinct: list[Coordinate] = []
    for point in ring:
        if not any(_same_point(point, seen) for seen in distinct):
            distinct.append(point)
    if len(distinct) < 3:
        raise GeometryError(
            "Field boundary needs at least 3 distinct vertices."
        )
    if abs(signed_area(ring)) < AREA_EPSILON:
        raise GeometryError("Field boundary is degenerate (zero area).")
    return Polygon(vertices=tuple(ring) + (ring[0],))


def bounding_box(polygon: Polygon) -> BoundingBox:
    """Min/max reduction over the polygon vertices.

    Known limitation: rings crossing the antimeridian get a box spanning
    the whole longitude range between their extreme vertices instead of
    the short way across +/-180.
    """

    lngs = [lng for lng, _ in polygon.vertices]
    lats = [lat for _, lat in polygon.vertices]
    return BoundingBox(
        min_lng=min(lngs),
        max_lng=max(lngs),
        min_lat=min(lats),
        max_lat=max(lats),
    )


def image_corners(bbox: BoundingBox) -> ImageCorners:
    return ImageCorners(
        top_left=(bbox.min_lng, bbox.max_lat),
        top_right=(bbox.max_lng, bbox.max_lat),
        bottom_right=(bbox.max_lng, bbox.min_lat),
        bottom_left=(bbox.min_lng, bbox.min_lat),
    )


def on_segment(
    lng: float, lat: float, start: Coordinate, end: Coordinate
) -> bool:
    """True when `(lng, lat)` lies on the segment within `COORD_EPSILON`."""

    (x0, y0), (x1, y1) = start, end
    if not (
        min(x0, x1) - COORD_EPSILON <= lng <= max(x0, x1) + COORD_EPSILON
        and min(y0, y1) - COORD_EPSILON <= lat <= max(y0, y1) + COORD_EPSILON
    ):
        return False
    cross = (x1 - x0) * (lat - y0) - (y1 - y0) * (lng - x0)
    return abs(cross) <= COORD_EPSILON * max(math.hypot(x1 - x0, y1 - y0), 1.0)


def point_in_polygon(lng: float, lat: float, polygon: Polygon) -> bool:
    """Ray-casting test; points on an edge or vertex count as inside."""

    ring = polygon.ring
    count = len(ring)
    if any(
        on_segment(lng, lat, ring[index - 1], ring[index])
        for index in range(count)
    ):
        return True

    inside = False
    for index in range(count):
        xi, yi = ring[index]
        xj, yj = ring[index - 1]
        if (yi > lat) != (yj > lat):
            intersect_x = (xj - xi) * (lat - yi) / (yj - yi) + xi
            if lng < intersect_x:
                inside = not inside
    return inside


def to_geojson(polygon: Polygon) -> dict[str, Any]:
    return {
        "type": "Feature",
        "properties": {},
        "geometry": {
            "type": "Polygon",
            "coordinates": [[list(point) for point in polygon.vertices]],
        },
    }


def approx_area_km2(bbox: BoundingBox) -> float:
    mean_lat = (bbox.max_lat + bbox.min_lat) / 2
    lat_km = bbox.height * KM_PER_DEGREE
    lng_km = bbox.width * math.cos(math.radians(mean_lat)) * KM_PER_DEGREE
    return abs(lat_km * lng_km)


def enforce_area_limit(bbox: BoundingBox, limit_km2: float | None = None) -> None:
    limit = MAX_AREA_KM2 if limit_km2 is None else limit_km2
    if approx_area_km2(bbox) > limit:
        raise GeometryError(
            f"Field area exceeds the {limit:g} km2 overlay limit."
        )
