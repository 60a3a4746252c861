"""Vegetation index color ramps.

Each palette is an ordered list of `(breakpoint, rgb)` stops over the index
domain `[-1, 1]`. Colors are linearly interpolated between neighbouring
stops and clamp to the end colors outside the first/last breakpoint.
"""

from __future__ import annotations

import math
from functools import lru_cache
from typing import Final, TypeAlias

import numpy as np

RGB: TypeAlias = tuple[int, int, int]
Color: TypeAlias = tuple[int, int, int, int]
Stops: TypeAlias = tuple[tuple[float, RGB], ...]

NEUTRAL_COLOR: Final[Color] = (158, 158, 158, 255)

PALETTES: Final[dict[str, Stops]] = {
    # Mid-range separation: a stop every 0.1 between bare soil and canopy.
    "contrast": (
        (-1.0, (120, 60, 30)),
        (0.0, (165, 42, 42)),
        (0.1, (211, 47, 47)),
        (0.2, (229, 57, 53)),
        (0.3, (255, 87, 34)),
        (0.4, (255, 152, 0)),
        (0.5, (255, 193, 7)),
        (0.6, (205, 220, 57)),
        (0.7, (139, 195, 74)),
        (0.8, (76, 175, 80)),
        (0.9, (46, 125, 50)),
        (1.0, (27, 94, 32)),
    ),
    "classic": (
        (-1.0, (165, 0, 38)),
        (0.0, (215, 48, 39)),
        (0.2, (244, 109, 67)),
        (0.4, (254, 224, 139)),
        (0.6, (166, 217, 106)),
        (0.8, (26, 152, 80)),
        (1.0, (0, 104, 55)),
    ),
    "moisture": (
        (-1.0, (128, 64, 0)),
        (-0.2, (222, 184, 135)),
        (0.0, (255, 255, 204)),
        (0.2, (161, 218, 180)),
        (0.4, (65, 182, 196)),
        (0.6, (34, 94, 168)),
        (1.0, (8, 29, 88)),
    ),
    "viridis": (
        (0.0, (68, 1, 84)),
        (0.25, (59, 82, 139)),
        (0.5, (33, 145, 140)),
        (0.75, (94, 201, 98)),
        (1.0, (253, 231, 37)),
    ),
    "pasture": (
        (0.0, (139, 90, 43)),
        (0.3, (210, 180, 140)),
        (0.5, (154, 205, 50)),
        (0.7, (107, 142, 35)),
        (0.9, (34, 139, 34)),
    ),
}


class UnknownPaletteError(ValueError):
    def __init__(self, palette_key: str) -> None:
        self.palette_key = palette_key
        super().__init__(f"Unsupported palette: {palette_key}")


def available_palettes() -> list[str]:
    return list(PALETTES)


def get_stops(palette_key: str) -> Stops:
    try:
        return PALETTES[palette_key]
    except KeyError as exc:
        raise UnknownPaletteError(palette_key) from exc


@lru_cache(maxsize=2048)
def color_for(palette_key: str, value: float | None) -> Color:
    """Return the RGBA color of an index value; `None`/NaN is neutral gray."""

    stops = get_stops(palette_key)
    if value is None or not math.isfinite(value):
        return NEUTRAL_COLOR
    if value <= stops[0][0]:
        return (*stops[0][1], 255)
    if value >= stops[-1][0]:
        return (*stops[-1][1], 255)
    for (low, low_rgb), (high, high_rgb) in zip(stops, stops[1:]):
        if low <= value <= high:
            t = (value - low) / (high - low)
            red, green, blue = (
                round(a + t * (b - a)) for a, b in zip(low_rgb, high_rgb)
            )
            return (red, green, blue, 255)
    return (*stops[-1][1], 255)  # pragma: no cover - stops are sorted


def colorize(palette_key: str, values: np.ndarray) -> np.ndarray:
    """Vectorized `color_for` producing an `(H, W, 4)` uint8 array."""

    stops = get_stops(palette_key)
    breakpoints = np.array([stop for stop, _ in stops], dtype=np.float64)
    channels = np.array([rgb for _, rgb in stops], dtype=np.float64)
    field = np.asarray(values, dtype=np.float64)
    unknown = ~np.isfinite(field)
    safe = np.where(unknown, breakpoints[0], field)

    rgba = np.empty(field.shape + (4,), dtype=np.uint8)
    for channel in range(3):
        interpolated = np.interp(safe, breakpoints, channels[:, channel])
        rgba[..., channel] = np.rint(interpolated).astype(np.uint8)
    rgba[..., 3] = 255
    rgba[unknown] = NEUTRAL_COLOR
    return rgba


def to_hex(color: Color | RGB) -> str:
    return "#{:02X}{:02X}{:02X}".format(*color[:3])


def palette_legend(palette_key: str) -> list[dict[str, float | str]]:
    return [
        {"value": value, "color": to_hex(rgb)}
        for value, rgb in get_stops(palette_key)
    ]


def evalscript_color_stops(palette_key: str) -> str:
    """Render stops as the JS array literal used by provider evalscripts."""

    return ",\n    ".join(
        f"[{value}, [{rgb[0]}, {rgb[1]}, {rgb[2]}]]"
        for value, rgb in get_stops(palette_key)
    )
