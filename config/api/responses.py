"""JSON envelope shared by every API response.

`status` is 0 on success and 1 on failure; `data` and `errors` are always
present so clients can destructure responses without branching on shape.
"""

from __future__ import annotations

from typing import TypeAlias

from rest_framework import status
from rest_framework.response import Response

JSONScalar: TypeAlias = str | int | float | bool | None
JSONValue: TypeAlias = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

STATUS_OK = 0
STATUS_ERROR = 1


def envelope(
    status_flag: int,
    message: str,
    *,
    data: JSONValue | None = None,
    errors: JSONValue | None = None,
) -> dict[str, JSONValue]:
    return {
        "status": status_flag,
        "message": message,
        "data": data,
        "errors": errors,
    }


def success_response(
    data: JSONValue | None,
    message: str = "OK",
    *,
    status_code: int = status.HTTP_200_OK,
) -> Response:
    return Response(envelope(STATUS_OK, message, data=data), status=status_code)


def error_response(
    message: str,
    *,
    errors: JSONValue | None = None,
    status_code: int = status.HTTP_400_BAD_REQUEST,
) -> Response:
    return Response(
        envelope(STATUS_ERROR, message, errors=errors),
        status=status_code,
    )
