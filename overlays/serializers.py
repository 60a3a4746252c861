from __future__ import annotations

from typing import Any, ClassVar

from rest_framework import serializers

from config.api.responses import JSONValue

from .geometry import GeometryError
from .palette import UnknownPaletteError, available_palettes, palette_legend
from .raster.base import ImageRaster, TileRaster
from .raster.codec import to_data_url
from .resolver import OverlayResult
from .services import MAX_WINDOW_DAYS, build_request


class OverlayRequestSerializer(serializers.Serializer):
    """Validates an overlay request and builds the `OverlayRequest`.

    The built request is exposed as `validated_data["request"]`.
    """

    field_id: ClassVar[serializers.CharField] = serializers.CharField(
        max_length=128
    )
    boundary: ClassVar[serializers.ListField] = serializers.ListField(
        child=serializers.JSONField(), min_length=3
    )
    days: ClassVar[serializers.IntegerField] = serializers.IntegerField(
        required=False, min_value=1, max_value=MAX_WINDOW_DAYS
    )
    start: ClassVar[serializers.DateField] = serializers.DateField(
        required=False
    )
    end: ClassVar[serializers.DateField] = serializers.DateField(
        required=False
    )
    palette: ClassVar[serializers.CharField] = serializers.CharField(
        required=False, allow_blank=True
    )
    index_value: ClassVar[serializers.FloatField] = serializers.FloatField(
        required=False, allow_null=True, min_value=-1.0, max_value=1.0
    )

    def validate(self, attrs: dict[str, Any]) -> dict[str, Any]:
        attrs = super().validate(attrs)
        if attrs.get("days") is not None and (
            attrs.get("start") is not None or attrs.get("end") is not None
        ):
            raise serializers.ValidationError(
                "Provide either days or start/end, not both."
            )
        try:
            attrs["request"] = build_request(
                attrs["field_id"],
                attrs["boundary"],
                days=attrs.get("days"),
                start=attrs.get("start"),
                end=attrs.get("end"),
                palette_key=attrs.get("palette") or None,
                index_value=attrs.get("index_value"),
            )
        except GeometryError as exc:
            raise serializers.ValidationError({"boundary": [str(exc)]}) from exc
        except UnknownPaletteError as exc:
            raise serializers.ValidationError({"palette": [str(exc)]}) from exc
        return attrs


class SourceAttemptSerializer(serializers.Serializer):
    source_id: ClassVar[serializers.CharField] = serializers.CharField()
    outcome: ClassVar[serializers.CharField] = serializers.CharField()
    elapsed_ms: ClassVar[serializers.FloatField] = serializers.FloatField()
    error: ClassVar[serializers.CharField] = serializers.CharField(
        allow_null=True
    )


class OverlayResultSerializer(serializers.Serializer):
    field_id: ClassVar[serializers.CharField] = serializers.CharField()
    source_id: ClassVar[serializers.CharField] = serializers.CharField()
    kind: ClassVar[serializers.ChoiceField] = serializers.ChoiceField(
        choices=["image", "tile"]
    )
    clipped: ClassVar[serializers.BooleanField] = serializers.BooleanField()
    palette: ClassVar[serializers.CharField] = serializers.CharField()
    corners: ClassVar[serializers.ListField] = serializers.ListField(
        child=serializers.ListField(child=serializers.FloatField())
    )
    cloud_coverage: ClassVar[serializers.FloatField] = serializers.FloatField(
        allow_null=True
    )
    acquired_on: ClassVar[serializers.DateField] = serializers.DateField(
        allow_null=True
    )
    image: ClassVar[serializers.CharField] = serializers.CharField(
        allow_null=True, help_text="PNG data URL for image overlays."
    )
    tile_url: ClassVar[serializers.CharField] = serializers.CharField(
        allow_null=True, help_text="XYZ tile template for tile overlays."
    )
    attempts: ClassVar[SourceAttemptSerializer] = SourceAttemptSerializer(
        many=True
    )


class PaletteSerializer(serializers.Serializer):
    key: ClassVar[serializers.CharField] = serializers.CharField()
    legend: ClassVar[serializers.ListField] = serializers.ListField(
        child=serializers.DictField()
    )


def serialize_result(field_id: str, result: OverlayResult) -> dict[str, JSONValue]:
    raster = result.raster
    image = to_data_url(raster.pixels) if isinstance(raster, ImageRaster) else None
    tile_url = raster.url_template if isinstance(raster, TileRaster) else None
    return {
        "field_id": field_id,
        "source_id": result.source_id,
        "kind": raster.kind,
        "clipped": result.clipped,
        "palette": result.palette_key,
        "corners": result.corners.as_list(),
        "cloud_coverage": raster.cloud_coverage,
        "acquired_on": (
            raster.acquired_on.isoformat() if raster.acquired_on else None
        ),
        "image": image,
        "tile_url": tile_url,
        "attempts": [
            {
                "source_id": attempt.source_id,
                "outcome": attempt.outcome,
                "elapsed_ms": round(attempt.elapsed_ms, 1),
                "error": attempt.error,
            }
            for attempt in result.attempts
        ],
    }


def serialize_palettes() -> list[dict[str, JSONValue]]:
    return [
        {"key": key, "legend": palette_legend(key)}  # type: ignore[dict-item]
        for key in available_palettes()
    ]
