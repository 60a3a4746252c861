from __future__ import annotations

# ruff: noqa: S101
import asyncio
from datetime import date

import pytest
from django.core.cache import caches
from rest_framework.exceptions import ValidationError

from overlays.cache import OverlayCache
from overlays.cancellation import CancellationToken
from overlays.geometry import GeometryError
from overlays.layers import OverlayLayerManager
from overlays.palette import UnknownPaletteError
from overlays.raster.base import ImageRaster
from overlays.resolver import OverlayRequest, OverlayResult, SourceResolver
from overlays.services import OverlayService, build_request, cache_key_for
from overlays.tests.fakes import (
    SQUARE_KM,
    TODAY,
    FakeMapSurface,
    FakeProvider,
    descriptor,
    make_request,
    solid_raster,
)


def _service(
    provider: FakeProvider,
    surface: FakeMapSurface | None = None,
) -> OverlayService:
    caches["default"].clear()
    return OverlayService(
        resolver=SourceResolver(
            [descriptor("copernicus", provider, timeout_ms=2000)]
        ),
        cache=OverlayCache(cache_alias="default", ttl_seconds=60),
        layer_manager=OverlayLayerManager(surface) if surface else None,
    )


def test_identical_second_request_is_served_from_cache() -> None:
    provider = FakeProvider(solid_raster(cloud_coverage=4.0))
    service = _service(provider)

    async def scenario() -> tuple[object, object]:
        first = await service.resolve(make_request())
        second = await service.resolve(make_request())
        return first, second

    first, second = asyncio.run(scenario())

    assert first is not None and second is not None
    assert second.source_id == "copernicus"
    assert second.cloud_coverage == 4.0
    assert len(provider.calls) == 1


def test_different_palette_is_a_different_cache_entry() -> None:
    provider = FakeProvider(solid_raster())
    service = _service(provider)

    async def scenario() -> None:
        await service.resolve(make_request(palette_key="contrast"))
        await service.resolve(make_request(palette_key="classic"))

    asyncio.run(scenario())
    assert len(provider.calls) == 2


def test_second_request_cancels_first_and_only_second_is_applied() -> None:
    surface = FakeMapSurface()
    gate_holder: dict[str, asyncio.Event] = {}

    async def slow_red() -> ImageRaster:
        await gate_holder["gate"].wait()
        return solid_raster(color=(255, 0, 0, 255))

    provider = FakeProvider(slow_red, solid_raster(color=(0, 0, 255, 255)))
    service = _service(provider, surface)

    async def scenario() -> tuple[object, object]:
        gate_holder["gate"] = asyncio.Event()
        first = asyncio.create_task(
            service.show("field-1", make_request(days=30))
        )
        await asyncio.sleep(0.05)
        second = await service.show("field-1", make_request(days=10))
        gate_holder["gate"].set()
        return await first, second

    first, second = asyncio.run(scenario())

    assert first is None
    assert second is not None
    assert second.source_id == "copernicus"
    assert len(provider.calls) == 2
    added_layers = [call for call in surface.calls if call[0] == "add_layer"]
    assert added_layers == [
        ("add_layer", "field-1-raster"),
        ("add_layer", "field-1-outline"),
    ]
    stale_key = cache_key_for(make_request(days=30))
    assert service.cache.get(stale_key) is None


def test_result_superseded_while_in_flight_is_not_cached() -> None:
    service_holder: dict[str, OverlayService] = {}

    async def superseded() -> ImageRaster:
        service_holder["service"].cache.issue_token("field-1")
        return solid_raster()

    provider = FakeProvider(superseded)
    service = _service(provider)
    service_holder["service"] = service
    request = make_request()

    result = asyncio.run(service.resolve(request))

    assert result is None
    assert service.cache.get(cache_key_for(request)) is None


def test_refresh_forces_providers_to_run_again() -> None:
    provider = FakeProvider(solid_raster())
    service = _service(provider)

    asyncio.run(service.resolve(make_request()))
    assert service.refresh("field-1") is True
    asyncio.run(service.resolve(make_request()))

    assert len(provider.calls) == 2


def test_failed_resolution_releases_the_field_token(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    service = _service(FakeProvider(solid_raster()))
    issued: list[CancellationToken] = []
    issue = service.cache.issue_token

    def recording_issue(field_id: str) -> CancellationToken:
        token = issue(field_id)
        issued.append(token)
        return token

    async def broken(
        request: OverlayRequest, token: CancellationToken | None = None
    ) -> OverlayResult:
        raise RuntimeError("synthesizer crashed")

    monkeypatch.setattr(service.cache, "issue_token", recording_issue)
    monkeypatch.setattr(service.resolver, "resolve", broken)

    with pytest.raises(RuntimeError, match="synthesizer crashed"):
        asyncio.run(service.resolve(make_request()))

    assert len(issued) == 1
    assert issued[0].cancelled is False
    assert not service.cache.is_current(issued[0])


def test_show_requires_layer_manager() -> None:
    service = _service(FakeProvider(solid_raster()))
    with pytest.raises(RuntimeError, match="layer manager"):
        asyncio.run(service.show("field-1", make_request()))


def test_build_request_defaults() -> None:
    request = build_request("7", SQUARE_KM, today=TODAY)
    assert request.field_id == "7"
    assert request.palette_key == "contrast"
    assert request.window.end == TODAY
    assert request.window.days == 30
    assert request.index_value is None


def test_build_request_explicit_range() -> None:
    request = build_request(
        "7",
        SQUARE_KM,
        start=date(2025, 1, 1),
        end=date(2025, 2, 1),
        palette_key="moisture",
        index_value=0.2,
    )
    assert request.window.days == 31
    assert request.palette_key == "moisture"


@pytest.mark.parametrize(
    "kwargs, message",
    [
        ({"start": date(2025, 1, 1)}, "together"),
        ({"start": date(2025, 2, 1), "end": date(2025, 1, 1)}, "on or before"),
        ({"days": 0}, "at least 1"),
        ({"days": 400}, "exceeds"),
        ({"index_value": 1.5}, r"\[-1, 1\]"),
    ],
)
def test_build_request_rejects_bad_parameters(
    kwargs: dict[str, object], message: str
) -> None:
    with pytest.raises(ValidationError, match=message):
        build_request("7", SQUARE_KM, today=TODAY, **kwargs)  # type: ignore[arg-type]


def test_build_request_rejects_unknown_palette_and_bad_boundary() -> None:
    with pytest.raises(UnknownPaletteError):
        build_request("7", SQUARE_KM, palette_key="rainbow")
    with pytest.raises(GeometryError):
        build_request("7", SQUARE_KM[:2])
    with pytest.raises(GeometryError, match="limit"):
        build_request(
            "7",
            [
                {"lat": 0.0, "lng": 0.0},
                {"lat": 0.0, "lng": 2.0},
                {"lat": 2.0, "lng": 2.0},
            ],
        )
