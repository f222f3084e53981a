# hb_core/common/api/exceptions.py
"""
Every API failure is rendered as

    {"error": {"code", "message", "details", "request_id"}}

whether it comes out of a DRF view or is answered early by middleware.
"""
from __future__ import annotations

import logging
import uuid
from typing import Any

from django.http import Http404
from rest_framework import status
from rest_framework.exceptions import APIException, NotAuthenticated, NotFound, PermissionDenied, ValidationError
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

logger = logging.getLogger(__name__)

FALLBACK_MESSAGE = "Request failed."

_CODES_BY_TYPE: tuple[tuple[type, str], ...] = (
    (ValidationError, "validation_error"),
    (NotAuthenticated, "not_authenticated"),
    (PermissionDenied, "permission_denied"),
    (Http404, "not_found"),
    (NotFound, "not_found"),
)


def ensure_request_id(request) -> str:
    """Request id for log correlation, minted once per request."""
    if request is None:
        return uuid.uuid4().hex
    rid = getattr(request, "request_id", None)
    if not rid:
        rid = uuid.uuid4().hex
        request.request_id = rid
    return rid


def build_error_envelope(*, request=None, code: str, message: str, details: Any = None) -> dict[str, Any]:
    return {
        "error": {
            "code": code,
            "message": message,
            "details": details,
            "request_id": ensure_request_id(request),
        }
    }


class ConflictError(APIException):
    """Request is well formed but the current state forbids it."""
    status_code = status.HTTP_409_CONFLICT
    default_detail = "Conflict."
    default_code = "conflict"


class ServiceUnavailableError(APIException):
    """Storage failed mid-operation; nothing was committed and a retry is safe."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = "Service temporarily unavailable. Retry the request."
    default_code = "service_unavailable"


def error_code(exc: Exception, http_status: int) -> str:
    for exc_type, code in _CODES_BY_TYPE:
        if isinstance(exc, exc_type):
            return code
    if isinstance(exc, APIException):
        return exc.default_code or "api_error"
    return "server_error" if http_status >= 500 else "error"


def _split_detail(data) -> tuple[str, Any]:
    # {"detail": msg, **extra} -> (msg, extra or None); field errors stay whole
    if isinstance(data, dict) and "detail" in data:
        extra = {k: v for k, v in data.items() if k != "detail"}
        return str(data["detail"]), (extra or None)
    return FALLBACK_MESSAGE, data


def api_exception_handler(exc: Exception, context: dict[str, Any]):
    request = context.get("request")
    response = drf_exception_handler(exc, context)

    if response is None:
        logger.exception("Unhandled error in %s", context.get("view").__class__.__name__, exc_info=exc)
        body = build_error_envelope(request=request, code="server_error", message="Unexpected server error.")
        return Response(body, status=status.HTTP_500_INTERNAL_SERVER_ERROR)

    code = error_code(exc, response.status_code)
    message, details = _split_detail(response.data)
    if response.status_code >= 500:
        logger.error("API error %s (%s): %s", code, response.status_code, message)

    body = build_error_envelope(request=request, code=code, message=message, details=details)
    return Response(body, status=response.status_code, headers=response.headers)
