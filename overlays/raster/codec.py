from __future__ import annotations

import base64
import io

import numpy as np
from PIL import Image, UnidentifiedImageError


class RasterDecodeError(ValueError):
    """Provider payload is not a readable image."""


def decode_png(content: bytes) -> np.ndarray:
    """Decode image bytes into an `(H, W, 4)` uint8 RGBA array."""

    if not content:
        raise RasterDecodeError("Empty image payload")
    try:
        with Image.open(io.BytesIO(content)) as image:
            rgba = image.convert("RGBA")
            return np.array(rgba, dtype=np.uint8)
    except (UnidentifiedImageError, OSError) as exc:
        raise RasterDecodeError(f"Unreadable image payload: {exc}") from exc


def encode_png(pixels: np.ndarray) -> bytes:
    image = Image.fromarray(np.ascontiguousarray(pixels, dtype=np.uint8), "RGBA")
    buf = io.BytesIO()
    image.save(buf, format="PNG", optimize=True)
    return buf.getvalue()


def to_data_url(pixels: np.ndarray) -> str:
    encoded = base64.b64encode(encode_png(pixels)).decode("ascii")
    return f"data:image/png;base64,{encoded}"
