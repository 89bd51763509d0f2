"""Error types — one hierarchy shared by the HTTP layer, runtime and client.

Every error carries a stable ``code`` (surfaced in SSE error frames and
JSON error envelopes) and an HTTP status code.
"""

from __future__ import annotations

from typing import Any


class AppError(Exception):
    """Base class for all errors the service reports to a caller."""

    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(
        self,
        message: str,
        code: str | None = None,
        status_code: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details = details


class ValidationError(AppError):
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(AppError):
    code = "NOT_FOUND"
    status_code = 404

    def __init__(self, resource: str = "Resource"):
        super().__init__(f"{resource} not found")


class ExternalServiceError(AppError):
    """The upstream gateway answered non-2xx, malformed, or not at all."""

    code = "EXTERNAL_API_ERROR"
    status_code = 502

    def __init__(self, message: str, service: str = "gateway"):
        super().__init__(message, details={"service": service})
        self.service = service


class GatewayTimeoutError(AppError):
    code = "TIMEOUT_ERROR"
    status_code = 504

    def __init__(self, operation: str, timeout_seconds: float):
        super().__init__(
            f"{operation} timed out after {timeout_seconds:g}s",
            details={"timeoutSeconds": timeout_seconds},
        )


class StoreError(AppError):
    """A workspace store read/write/delete failed."""

    code = "STORE_ERROR"
    status_code = 500


class FrameDecodeError(AppError):
    """One SSE payload could not be decoded into a known frame."""

    code = "FRAME_DECODE_ERROR"
    status_code = 400


def error_response(error: Exception, production: bool = False) -> dict[str, Any]:
    """Render an exception as the ``{"success": false, "error": {...}}`` envelope.

    Unknown exceptions hide their message in production.
    """
    if isinstance(error, AppError):
        body: dict[str, Any] = {"code": error.code, "message": error.message}
        if error.details:
            body["details"] = error.details
        return {"success": False, "error": body}

    message = "An internal error occurred" if production else str(error)
    return {"success": False, "error": {"code": "INTERNAL_ERROR", "message": message}}
