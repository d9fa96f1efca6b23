"""
HTTP error mapping.
"""

from __future__ import annotations

from fastapi.responses import JSONResponse

from fiatrails.errors import ErrorKind, MintError

STATUS_BY_KIND: dict[ErrorKind, int] = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.INTEGRITY_VIOLATION: 409,
    ErrorKind.COMPLIANCE_REJECTION: 200,
    ErrorKind.TRANSIENT_INFRA: 202,
    ErrorKind.TERMINAL_EXHAUSTION: 500,
    ErrorKind.STORE_ERROR: 503,
}


class ApiError(Exception):
    """Raised by routes and dependencies; rendered by the app's handler."""

    def __init__(self, error: MintError) -> None:
        super().__init__(error.message)
        self.error = error


def error_response(error: MintError) -> JSONResponse:
    return JSONResponse(
        {"error": error.code, "message": error.message},
        status_code=STATUS_BY_KIND[error.kind],
    )


__all__ = ("STATUS_BY_KIND", "ApiError", "error_response")
