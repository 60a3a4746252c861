"""Overlay API endpoints.

Authentication: none; the service is expected to sit behind the caller's
own gateway.
Responses: wrapped by `config.api.responses.success_response`
(status/message/data/errors).
"""

from __future__ import annotations

from asgiref.sync import async_to_sync
from drf_spectacular.utils import extend_schema, inline_serializer
from rest_framework import serializers, status
from rest_framework.permissions import AllowAny
from rest_framework.request import Request
from rest_framework.response import Response
from rest_framework.views import APIView

from config.api.openapi import (
    error_envelope_serializer,
    success_envelope_serializer,
)
from config.api.responses import error_response, success_response

from .palette import available_palettes
from .serializers import (
    OverlayRequestSerializer,
    OverlayResultSerializer,
    PaletteSerializer,
    serialize_palettes,
    serialize_result,
)
from .services import DEFAULT_PALETTE, get_overlay_service

overlay_success_schema = success_envelope_serializer(
    "OverlaySuccess",
    data=OverlayResultSerializer(),
)
overlay_error_schema = error_envelope_serializer("OverlayErrorResponse")

refresh_success_schema = success_envelope_serializer(
    "OverlayRefreshSuccess",
    data=inline_serializer(
        name="OverlayRefreshData",
        fields={
            "field_id": serializers.CharField(),
            "invalidated": serializers.BooleanField(),
        },
    ),
)

palettes_success_schema = success_envelope_serializer(
    "OverlayPalettesSuccess",
    data=inline_serializer(
        name="OverlayPalettesData",
        fields={
            "default": serializers.CharField(),
            "palettes": PaletteSerializer(many=True),
        },
    ),
)


class OverlayView(APIView):
    """Resolve the vegetation index overlay of a field.

    Real imagery is tried source by source; when every source fails the
    response carries the synthetic gradient (`source_id="synthetic"`).
    A request superseded by a newer one for the same field gets 409.
    """

    permission_classes = [AllowAny]

    @extend_schema(
        request=OverlayRequestSerializer,
        responses={
            200: overlay_success_schema,
            400: overlay_error_schema,
            409: overlay_error_schema,
        },
    )
    def post(self, request: Request) -> Response:
        serializer = OverlayRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        overlay_request = serializer.validated_data["request"]

        result = async_to_sync(get_overlay_service().resolve)(overlay_request)
        if result is None:
            return error_response(
                "Overlay request was superseded by a newer request.",
                status_code=status.HTTP_409_CONFLICT,
            )
        return success_response(
            serialize_result(overlay_request.field_id, result)
        )


class OverlayRefreshView(APIView):
    """Drop the cached overlay of a field so the next request refetches."""

    permission_classes = [AllowAny]

    @extend_schema(
        request=None,
        responses={200: refresh_success_schema},
    )
    def post(self, request: Request, field_id: str) -> Response:
        invalidated = get_overlay_service().refresh(field_id)
        return success_response(
            {"field_id": field_id, "invalidated": invalidated}
        )


class PaletteListView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(responses={200: palettes_success_schema})
    def get(self, request: Request) -> Response:
        default = (
            DEFAULT_PALETTE
            if DEFAULT_PALETTE in available_palettes()
            else available_palettes()[0]
        )
        return success_response(
            {"default": default, "palettes": serialize_palettes()}
        )
