"""drf-spectacular helpers for documenting the response envelope.

`config.api.responses` and the global exception handler wrap every API
response in `{status, message, data, errors}`; these builders produce the
matching serializers for the OpenAPI schema.
"""

from __future__ import annotations

from drf_spectacular.utils import inline_serializer
from rest_framework import serializers
from rest_framework.serializers import Serializer


def _envelope_fields(data: serializers.Field) -> dict[str, serializers.Field]:
    return {
        "status": serializers.IntegerField(help_text="0 on success, 1 on error"),
        "message": serializers.CharField(),
        "data": data,
        "errors": serializers.JSONField(allow_null=True),
    }


def success_envelope_serializer(
    name: str,
    *,
    data: serializers.Field,
) -> Serializer:
    """Schema of a `success_response` carrying `data`."""

    return inline_serializer(name=name, fields=_envelope_fields(data))


def error_envelope_serializer(name: str) -> Serializer:
    """Schema of an error envelope; `data` is always null."""

    return inline_serializer(
        name=name,
        fields=_envelope_fields(serializers.JSONField(allow_null=True)),
    )
