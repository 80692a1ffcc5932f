"""Rendering of service errors for the REST API."""

from __future__ import annotations

import logging

from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import exception_handler

from recognition.errors import AttendanceError

logger = logging.getLogger(__name__)


def attendance_exception_handler(exc, context):
    """Render :class:`AttendanceError` as ``{"error", "message", "details"}``.

    Everything else is delegated to DRF's default handler and reshaped into
    the same envelope.
    """

    if isinstance(exc, AttendanceError):
        body = {"error": exc.code, "message": exc.message}
        if exc.details:
            body["details"] = exc.details
        response = Response(body, status=exc.status_code)
        retry_after = getattr(exc, "retry_after_seconds", None)
        if retry_after is not None:
            response["Retry-After"] = str(retry_after)
        if exc.status_code >= status.HTTP_500_INTERNAL_SERVER_ERROR:
            logger.error("%s: %s", exc.code, exc.message)
        return response

    response = exception_handler(exc, context)
    if response is None:
        return None

    code = getattr(exc, "default_code", "error")
    data = response.data
    if isinstance(data, dict) and set(data) == {"detail"}:
        response.data = {"error": code, "message": str(data["detail"])}
    else:
        response.data = {"error": code, "message": "Invalid request.", "details": data}
    return response
