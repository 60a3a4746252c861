"""Agromonitoring satellite imagery (NDVI PNG or NDVI tiles) for a field."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
from collections.abc import Sequence
from datetime import UTC, date, datetime, time
from functools import cmp_to_key
from typing import Any, Final

import httpx
from django.conf import settings
from django.core.cache import caches

from ..geometry import to_geojson
from ..metrics import overlay_cache_hit_total
from ..raster.base import ImageRaster, RasterHandle, TileRaster
from ..raster.codec import decode_png
from .base import (
    SOURCE_KINDS,
    FieldQuery,
    NoImageryAvailable,
    SourceFailure,
    SourceKind,
    TimeWindow,
)
from .copernicus import response_snippet

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL: Final[str] = "https://api.agromonitoring.com/agro/1.0"
DEFAULT_HTTP_TIMEOUT: Final[float] = float(
    getattr(settings, "AGROMONITORING_HTTP_TIMEOUT_SECONDS", 20)
)
MAX_CLOUD_PERCENT: Final[float] = 50.0
CLOUD_TIE_POINTS: Final[float] = 15.0

# Agromonitoring's own NDVI palettes closest to ours.
PALETTE_IDS: Final[dict[str, int]] = {"classic": 1, "contrast": 4}


def _compare_images(a: dict[str, Any], b: dict[str, Any]) -> int:
    cloud_diff = float(a.get("cl", 100)) - float(b.get("cl", 100))
    if abs(cloud_diff) > CLOUD_TIE_POINTS:
        return -1 if cloud_diff < 0 else 1
    return int(b.get("dt", 0)) - int(a.get("dt", 0))


def select_image(images: Sequence[dict[str, Any]]) -> dict[str, Any] | None:
    """Pick the image to render.

    Images under `MAX_CLOUD_PERCENT` cloud cover win; among them clearer
    images come first unless two are within `CLOUD_TIE_POINTS`, then the
    newer one does. Without any such image the least cloudy one is used.
    """

    if not images:
        return None
    clear = [img for img in images if float(img.get("cl", 100)) < MAX_CLOUD_PERCENT]
    if clear:
        return sorted(clear, key=cmp_to_key(_compare_images))[0]
    return min(images, key=lambda img: float(img.get("cl", 100)))


def _https(url: str) -> str:
    return url.replace("http://", "https://", 1)


class AgromonitoringProvider:
    """Search Agromonitoring imagery for a registered field polygon."""

    source_name: Final[str] = "agromonitoring"

    def __init__(
        self,
        *,
        api_key: str | None = None,
        base_url: str | None = None,
        kind: SourceKind = "image",
        cache_alias: str | None = None,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.api_key = (
            api_key
            or getattr(settings, "AGROMONITORING_API_KEY", None)
            or os.getenv("AGROMONITORING_API_KEY")
        )
        if not self.api_key:
            raise ValueError("Agromonitoring API key is required")
        if kind not in SOURCE_KINDS:
            raise ValueError(f"Unsupported source kind: {kind}")
        self.kind = kind
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.cache = caches[
            cache_alias or getattr(settings, "OVERLAY_CACHE_ALIAS", "default")
        ]
        self.http_timeout = http_timeout
        self._transport = transport

    async def resolve(self, field: FieldQuery, window: TimeWindow) -> RasterHandle:
        async with httpx.AsyncClient(
            timeout=self.http_timeout, transport=self._transport
        ) as client:
            polygon_id = await self._ensure_polygon(client, field)
            images = await self._search_images(client, polygon_id, window)
            image = select_image(images)
            if image is None:
                raise NoImageryAvailable(
                    self.source_name, "no acquisitions in window"
                )
            cloud_coverage = (
                float(image["cl"]) if image.get("cl") is not None else None
            )
            acquired_on = acquisition_date(image.get("dt"))

            if self.kind == "tile":
                template = (image.get("tile") or {}).get("ndvi")
                if not template:
                    raise NoImageryAvailable(
                        self.source_name, "image has no NDVI tiles"
                    )
                return TileRaster(
                    url_template=self._with_palette(_https(template), field),
                    cloud_coverage=cloud_coverage,
                    acquired_on=acquired_on,
                )

            url = (image.get("image") or {}).get("ndvi")
            if not url:
                raise NoImageryAvailable(
                    self.source_name, "image has no NDVI rendering"
                )
            response = await self._request(
                client, "GET", self._with_palette(_https(url), field)
            )

        pixels = await asyncio.to_thread(decode_png, response.content)
        return ImageRaster(
            pixels=pixels,
            cloud_coverage=cloud_coverage,
            acquired_on=acquired_on,
        )

    def _with_palette(self, url: str, field: FieldQuery) -> str:
        palette_id = PALETTE_IDS.get(field.palette_key)
        if palette_id is None:
            return url
        separator = "&" if "?" in url else "?"
        return f"{url}{separator}paletteid={palette_id}"

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "agromonitoring upstream error status=%s body=%s",
                exc.response.status_code,
                response_snippet(exc.response) or "<empty>",
            )
            raise SourceFailure(
                self.source_name, f"status={exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise SourceFailure(
                self.source_name, f"network error: {exc}"
            ) from exc
        return response

    async def _ensure_polygon(
        self, client: httpx.AsyncClient, field: FieldQuery
    ) -> str:
        geojson = to_geojson(field.polygon)
        digest = hashlib.sha256(
            json.dumps(geojson, sort_keys=True).encode("utf-8")
        ).hexdigest()[:16]
        key = f"overlays:agromonitoring:polygon:{field.field_id}:{digest}"
        cached = self.cache.get(key)
        if cached:
            overlay_cache_hit_total.labels(layer="agromonitoring_polygon").inc()
            return str(cached)

        response = await self._request(
            client,
            "POST",
            f"{self.base_url}/polygons",
            params={"appid": self.api_key},
            json={"name": f"field-{field.field_id}", "geo_json": geojson},
        )
        polygon_id = response.json().get("id")
        if not polygon_id:
            raise SourceFailure(
                self.source_name, "polygon registration returned no id"
            )
        self.cache.set(key, polygon_id, None)
        logger.info(
            "agromonitoring polygon registered field=%s polygon=%s",
            field.field_id,
            polygon_id,
        )
        return str(polygon_id)

    async def _search_images(
        self, client: httpx.AsyncClient, polygon_id: str, window: TimeWindow
    ) -> list[dict[str, Any]]:
        start = datetime.combine(window.start, time.min, tzinfo=UTC)
        end = datetime.combine(window.end, time.max, tzinfo=UTC)
        response = await self._request(
            client,
            "GET",
            f"{self.base_url}/image/search",
            params={
                "polyid": polygon_id,
                "start": int(start.timestamp()),
                "end": int(end.timestamp()),
                "appid": self.api_key,
            },
        )
        data = response.json()
        if not isinstance(data, list):
            raise SourceFailure(
                self.source_name, "unexpected image search response shape"
            )
        return [item for item in data if isinstance(item, dict)]


def acquisition_date(raw: Any) -> date | None:
    try:
        return datetime.fromtimestamp(int(raw), tz=UTC).date()
    except (TypeError, ValueError, OverflowError):
        return None
