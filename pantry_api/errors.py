"""Utilities for consistent API error responses."""

from __future__ import annotations

from fastapi import HTTPException, status


def api_error(status_code: int, code: str, detail: str, *, headers: dict[str, str] | None = None) -> HTTPException:
    """Create an :class:`HTTPException` with a normalized payload."""

    payload = {"code": code, "detail": detail}
    return HTTPException(status_code=status_code, detail=payload, headers=headers)


class PantryError(Exception):
    """Base class for typed failures raised by the stock and request services.

    Each subclass carries the HTTP status and the stable ``code`` the API
    returns, so callers can branch on the type and the HTTP layer can map it
    without string matching.
    """

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    code = "pantry.error"
    headers: dict[str, str] | None = None

    def __init__(self, detail: str) -> None:
        super().__init__(detail)
        self.detail = detail


class NotFound(PantryError):
    status_code = status.HTTP_404_NOT_FOUND
    code = "not_found"


class InvalidStateTransition(PantryError):
    status_code = status.HTTP_409_CONFLICT
    code = "request.invalid_state_transition"


class InsufficientStock(PantryError):
    status_code = status.HTTP_409_CONFLICT
    code = "stock.insufficient"


class NoStockAvailable(PantryError):
    status_code = status.HTTP_409_CONFLICT
    code = "stock.none_available"


class InvalidCursor(PantryError):
    status_code = status.HTTP_400_BAD_REQUEST
    code = "pagination.invalid_cursor"


class Unauthorized(PantryError):
    status_code = status.HTTP_401_UNAUTHORIZED
    code = "auth.unauthorized"
    headers = {"WWW-Authenticate": "Bearer"}


class UpstreamFailure(PantryError):
    status_code = status.HTTP_502_BAD_GATEWAY
    code = "upstream.failure"
