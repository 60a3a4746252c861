"""Root landing endpoint for quick service checks."""

from __future__ import annotations

from django.http import HttpRequest, JsonResponse

from overlays.palette import available_palettes
from overlays.sources.registry import get_sources


def home(request: HttpRequest) -> JsonResponse:
    """Return service metadata, active imagery sources and doc links."""
    return JsonResponse(
        {
            "ok": True,
            "service": "field-overlays",
            "sources": [source.id for source in get_sources()],
            "palettes": available_palettes(),
            "docs": "/api/docs/",
            "redoc": "/api/redoc/",
        }
    )
