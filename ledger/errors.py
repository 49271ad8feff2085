from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details or {}


class ValidationError(ApiError):
    """Malformed event type, source or a missing/invalid required field."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(422, "VALIDATION_ERROR", message, details)


class SequenceError(ApiError):
    """Clock action that does not fit the day's event sequence."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(409, "INVALID_EVENT_SEQUENCE", message, details)


class ConflictError(ApiError):
    """Manual workday change against a day that holds genuine events, or a duplicate day."""

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(409, "MANUAL_WORKDAY_CONFLICT", message, details)


class NotFoundError(ApiError):
    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(404, "NOT_FOUND", message, details)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    payload: dict[str, Any] = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    if details:
        payload["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=payload)
