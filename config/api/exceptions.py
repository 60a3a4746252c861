from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING, Any

from .responses import STATUS_ERROR, JSONValue, envelope

if TYPE_CHECKING:
    from rest_framework.response import Response

logger = logging.getLogger(__name__)


def _to_json_value(value: object) -> JSONValue:
    if value is None or isinstance(value, str | int | float | bool):
        return value
    if isinstance(value, Mapping):
        return {str(k): _to_json_value(v) for k, v in value.items()}
    if isinstance(value, list | tuple):
        return [_to_json_value(v) for v in value]
    return str(value)


def _message_for(detail: JSONValue, default: str) -> str:
    if isinstance(detail, dict):
        maybe = detail.get("detail")
        if isinstance(maybe, str):
            return maybe
        boundary = detail.get("boundary")
        if isinstance(boundary, list) and boundary and isinstance(boundary[0], str):
            return boundary[0]
    if isinstance(detail, list) and detail and isinstance(detail[0], str):
        return detail[0]
    return default


def custom_exception_handler(
    exc: Exception,
    context: dict[str, Any],
) -> Response:
    # Lazy imports: safe even if settings aren't configured at import time.
    from rest_framework import status
    from rest_framework.response import Response
    from rest_framework.views import exception_handler as drf_exception_handler

    from overlays.geometry import GeometryError
    from overlays.palette import UnknownPaletteError

    if isinstance(exc, GeometryError | UnknownPaletteError):
        field = "boundary" if isinstance(exc, GeometryError) else "palette"
        return Response(
            envelope(STATUS_ERROR, str(exc), errors={field: [str(exc)]}),
            status=status.HTTP_400_BAD_REQUEST,
        )

    response = drf_exception_handler(exc, context)

    if response is None:
        view = context.get("view")
        logger.exception(
            "api unhandled error view=%s",
            type(view).__name__ if view is not None else None,
            exc_info=exc,
        )
        return Response(
            envelope(STATUS_ERROR, "Internal server error"),
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    detail = _to_json_value(response.data)
    response.data = envelope(
        STATUS_ERROR,
        _message_for(detail, "Request failed"),
        errors=detail,
    )
    return response
