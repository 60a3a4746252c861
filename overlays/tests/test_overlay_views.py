from __future__ import annotations

# ruff: noqa: S101
from typing import Any

import pytest
from django.core.cache import caches
from django.test import Client
from rest_framework.test import APIRequestFactory

from overlays.cache import OverlayCache
from overlays.resolver import OverlayRequest, OverlayResult, SourceResolver
from overlays.services import OverlayService
from overlays.sources.base import SourceFailure
from overlays.tests.fakes import (
    SQUARE_KM,
    FakeProvider,
    descriptor,
    solid_raster,
)
from overlays.views import OverlayRefreshView, OverlayView, PaletteListView


def _install_service(
    monkeypatch: pytest.MonkeyPatch, *providers: FakeProvider
) -> OverlayService:
    caches["default"].clear()
    service = OverlayService(
        resolver=SourceResolver(
            [
                descriptor(f"source-{index}", provider, priority=index)
                for index, provider in enumerate(providers, start=1)
            ]
        ),
        cache=OverlayCache(cache_alias="default", ttl_seconds=60),
    )
    monkeypatch.setattr("overlays.views.get_overlay_service", lambda: service)
    return service


def _post(payload: dict[str, Any]) -> Any:
    factory = APIRequestFactory()
    request = factory.post("/api/v1/overlays/", payload, format="json")
    return OverlayView.as_view()(request)


def test_overlay_view_returns_clipped_image(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_service(monkeypatch, FakeProvider(solid_raster(cloud_coverage=12.0)))

    resp = _post({"field_id": "f1", "boundary": SQUARE_KM, "days": 10})

    assert resp.status_code == 200
    assert resp.data["status"] == 0
    data = resp.data["data"]
    assert data["source_id"] == "source-1"
    assert data["kind"] == "image"
    assert data["clipped"] is True
    assert data["cloud_coverage"] == 12.0
    assert data["palette"] == "contrast"
    assert data["image"].startswith("data:image/png;base64,")
    assert data["tile_url"] is None
    assert len(data["corners"]) == 4
    assert data["attempts"][0]["outcome"] == "success"


def test_overlay_view_falls_back_to_synthetic(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_service(
        monkeypatch, FakeProvider(SourceFailure("source-1", "status=500"))
    )

    resp = _post(
        {
            "field_id": "f2",
            "boundary": SQUARE_KM,
            "palette": "classic",
            "index_value": 0.65,
        }
    )

    assert resp.status_code == 200
    data = resp.data["data"]
    assert data["source_id"] == "synthetic"
    assert data["clipped"] is True
    assert data["attempts"][0]["outcome"] == "failure"


def test_overlay_view_rejects_degenerate_boundary(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_service(monkeypatch, FakeProvider(solid_raster()))

    resp = _post(
        {
            "field_id": "f3",
            "boundary": [[0.0, 0.0], [1.0, 1.0], [2.0, 2.0]],
        }
    )

    assert resp.status_code == 400
    assert resp.data["status"] == 1
    assert "zero area" in resp.data["errors"]["boundary"][0]
    assert "zero area" in resp.data["message"]


def test_overlay_view_rejects_unknown_palette(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_service(monkeypatch, FakeProvider(solid_raster()))

    resp = _post({"field_id": "f4", "boundary": SQUARE_KM, "palette": "neon"})

    assert resp.status_code == 400
    assert "neon" in resp.data["errors"]["palette"][0]


def test_overlay_view_rejects_days_with_range(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    _install_service(monkeypatch, FakeProvider(solid_raster()))

    resp = _post(
        {
            "field_id": "f5",
            "boundary": SQUARE_KM,
            "days": 5,
            "start": "2025-01-01",
            "end": "2025-01-10",
        }
    )

    assert resp.status_code == 400
    assert resp.data["data"] is None


def test_overlay_view_reports_superseded_request(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = _install_service(monkeypatch, FakeProvider(solid_raster()))

    async def superseded(request: OverlayRequest) -> OverlayResult | None:
        return None

    monkeypatch.setattr(service, "resolve", superseded)

    resp = _post({"field_id": "f6", "boundary": SQUARE_KM})

    assert resp.status_code == 409
    assert resp.data["status"] == 1


def test_refresh_view_invalidates_cached_overlay(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    provider = FakeProvider(solid_raster())
    _install_service(monkeypatch, provider)
    _post({"field_id": "f7", "boundary": SQUARE_KM})

    factory = APIRequestFactory()
    request = factory.post("/api/v1/overlays/f7/refresh/")
    resp = OverlayRefreshView.as_view()(request, field_id="f7")

    assert resp.status_code == 200
    assert resp.data["data"] == {"field_id": "f7", "invalidated": True}

    _post({"field_id": "f7", "boundary": SQUARE_KM})
    assert len(provider.calls) == 2


def test_palette_view_lists_legends() -> None:
    factory = APIRequestFactory()
    resp = PaletteListView.as_view()(factory.get("/api/v1/overlays/palettes/"))

    assert resp.status_code == 200
    data = resp.data["data"]
    assert data["default"] == "contrast"
    keys = [palette["key"] for palette in data["palettes"]]
    assert {"contrast", "classic", "moisture"} <= set(keys)
    assert data["palettes"][0]["legend"][0]["color"].startswith("#")


def test_overlay_routes_are_mounted() -> None:
    client = Client()
    resp = client.get("/api/v1/overlays/palettes/")
    assert resp.status_code == 200
    assert resp.json()["status"] == 0
