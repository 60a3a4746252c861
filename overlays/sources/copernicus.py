"""Copernicus Data Space (Sentinel-2 L2A) NDVI imagery via the Process API."""

from __future__ import annotations

import asyncio
import logging
import os
from datetime import datetime
from typing import Any, Final

import httpx
from django.conf import settings
from django.core.cache import caches

from ..metrics import overlay_cache_hit_total
from ..palette import evalscript_color_stops
from ..raster.base import ImageRaster
from ..raster.codec import decode_png
from ..raster.synthesizer import raster_shape
from .base import FieldQuery, NoImageryAvailable, SourceFailure, TimeWindow

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_URL: Final[str] = (
    "https://identity.dataspace.copernicus.eu/auth/realms/CDSE/"
    "protocol/openid-connect/token"
)
DEFAULT_PROCESS_URL: Final[str] = (
    "https://sh.dataspace.copernicus.eu/api/v1/process"
)
DEFAULT_HTTP_TIMEOUT: Final[float] = float(
    getattr(settings, "COPERNICUS_HTTP_TIMEOUT_SECONDS", 20)
)
DEFAULT_MAX_CLOUD: Final[int] = int(
    getattr(settings, "COPERNICUS_MAX_CLOUD", 30)
)
DEFAULT_IMAGE_SIZE: Final[int] = int(
    getattr(settings, "COPERNICUS_IMAGE_SIZE", 512)
)
MAX_ERROR_SNIPPET_CHARS = 400

EVALSCRIPT_TEMPLATE: Final[str] = """//VERSION=3
function setup() {
  return {
    input: ["B04", "B08", "SCL", "dataMask"],
    output: { bands: 4 }
  };
}

const STOPS = [
    __STOPS__
];

function colorFor(value) {
  if (value <= STOPS[0][0]) return STOPS[0][1];
  for (let i = 0; i < STOPS.length - 1; i++) {
    if (value <= STOPS[i + 1][0]) {
      const t = (value - STOPS[i][0]) / (STOPS[i + 1][0] - STOPS[i][0]);
      return [0, 1, 2].map(
        (c) => STOPS[i][1][c] + t * (STOPS[i + 1][1][c] - STOPS[i][1][c])
      );
    }
  }
  return STOPS[STOPS.length - 1][1];
}

function evaluatePixel(sample) {
  const ndvi = (sample.B08 - sample.B04) / (sample.B08 + sample.B04);
  if (!isFinite(ndvi)) {
    return [0, 0, 0, 0];
  }
  const cloudy = sample.SCL === 8 || sample.SCL === 9 || sample.SCL === 10;
  const rgb = colorFor(ndvi);
  return [rgb[0] / 255, rgb[1] / 255, rgb[2] / 255, cloudy ? 0 : sample.dataMask];
}
"""


def build_evalscript(palette_key: str) -> str:
    return EVALSCRIPT_TEMPLATE.replace(
        "__STOPS__", evalscript_color_stops(palette_key)
    )


def response_snippet(response: httpx.Response | None) -> str | None:
    if response is None:
        return None
    try:
        text = response.text.strip()
    except (UnicodeDecodeError, httpx.ResponseNotRead):
        return None
    if not text:
        return None
    normalized = " ".join(text.splitlines())
    if len(normalized) > MAX_ERROR_SNIPPET_CHARS:
        normalized = f"{normalized[:MAX_ERROR_SNIPPET_CHARS]}..."
    return normalized


class CopernicusProvider:
    """Render palette-colored NDVI for the field bbox from Sentinel-2."""

    source_name: Final[str] = "copernicus"

    def __init__(
        self,
        *,
        client_id: str | None = None,
        client_secret: str | None = None,
        token_url: str | None = None,
        process_url: str | None = None,
        cache_alias: str | None = None,
        max_cloud: int = DEFAULT_MAX_CLOUD,
        image_size: int = DEFAULT_IMAGE_SIZE,
        http_timeout: float = DEFAULT_HTTP_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.client_id = (
            client_id
            or getattr(settings, "COPERNICUS_CLIENT_ID", None)
            or os.getenv("COPERNICUS_CLIENT_ID")
        )
        self.client_secret = (
            client_secret
            or getattr(settings, "COPERNICUS_CLIENT_SECRET", None)
            or os.getenv("COPERNICUS_CLIENT_SECRET")
        )
        if not self.client_id or not self.client_secret:
            raise ValueError("Copernicus client credentials are required")
        self.token_url = token_url or DEFAULT_TOKEN_URL
        self.process_url = process_url or DEFAULT_PROCESS_URL
        self.cache = caches[
            cache_alias or getattr(settings, "OVERLAY_CACHE_ALIAS", "default")
        ]
        self.max_cloud = max_cloud
        self.image_size = image_size
        self.http_timeout = http_timeout
        self._transport = transport

    async def resolve(self, field: FieldQuery, window: TimeWindow) -> ImageRaster:
        async with httpx.AsyncClient(
            timeout=self.http_timeout, transport=self._transport
        ) as client:
            token = await self._get_access_token(client)
            response = await self._request(
                client,
                "POST",
                self.process_url,
                json=self._build_payload(field, window),
                headers={
                    "Authorization": f"Bearer {token}",
                    "Content-Type": "application/json",
                    "Accept": "image/png",
                },
            )
        pixels = await asyncio.to_thread(decode_png, response.content)
        if not pixels[..., 3].any():
            raise NoImageryAvailable(
                self.source_name, "no clear acquisitions in window"
            )
        return ImageRaster(pixels=pixels)

    async def _request(
        self, client: httpx.AsyncClient, method: str, url: str, **kwargs: Any
    ) -> httpx.Response:
        try:
            response = await client.request(method, url, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            snippet = response_snippet(exc.response)
            logger.warning(
                "copernicus upstream error status=%s body=%s",
                exc.response.status_code,
                snippet or "<empty>",
            )
            raise SourceFailure(
                self.source_name, f"status={exc.response.status_code}"
            ) from exc
        except httpx.RequestError as exc:
            raise SourceFailure(
                self.source_name, f"network error: {exc}"
            ) from exc
        return response

    async def _get_access_token(self, client: httpx.AsyncClient) -> str:
        key = f"overlays:copernicus:token:{self.client_id}"
        cached = self.cache.get(key)
        if cached:
            overlay_cache_hit_total.labels(layer="copernicus_token").inc()
            return str(cached)

        response = await self._request(
            client,
            "POST",
            self.token_url,
            data={
                "grant_type": "client_credentials",
                "client_id": self.client_id,
                "client_secret": self.client_secret,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        token_data = response.json()
        token = token_data.get("access_token")
        if not token:
            raise SourceFailure(
                self.source_name, "token response missing access_token"
            )
        expires_in = int(token_data.get("expires_in", 3600))
        self.cache.set(key, token, max(expires_in - 60, 60))
        return str(token)

    def _build_payload(
        self, field: FieldQuery, window: TimeWindow
    ) -> dict[str, Any]:
        height, width = raster_shape(field.bbox, self.image_size)
        day_start = datetime.combine(window.start, datetime.min.time())
        day_end = datetime.combine(window.end, datetime.max.time())
        return {
            "input": {
                "bounds": {
                    "bbox": list(field.bbox.as_bounds()),
                    "properties": {
                        "crs": "http://www.opengis.net/def/crs/OGC/1.3/CRS84"
                    },
                },
                "data": [
                    {
                        "type": "sentinel-2-l2a",
                        "dataFilter": {
                            "timeRange": {
                                "from": day_start.isoformat() + "Z",
                                "to": day_end.isoformat(timespec="seconds")
                                + "Z",
                            },
                            "maxCloudCoverage": self.max_cloud,
                            "mosaickingOrder": "leastCC",
                        },
                        "processing": {"harmonizeValues": True},
                    }
                ],
            },
            "output": {
                "width": width,
                "height": height,
                "responses": [
                    {"identifier": "default", "format": {"type": "image/png"}}
                ],
            },
            "evalscript": build_evalscript(field.palette_key),
        }
