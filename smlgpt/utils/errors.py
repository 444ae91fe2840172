from __future__ import annotations

from typing import Any, Dict


class AppError(Exception):
    """Base class for errors that map onto an HTTP error envelope."""

    status_code = 500
    code = "INTERNAL_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.details = details or {}


class ValidationError(AppError):
    status_code = 400
    code = "VALIDATION_ERROR"


class AuthenticationError(AppError):
    status_code = 401
    code = "AUTHENTICATION_ERROR"

    def __init__(self, message: str = "Authentication required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class AuthorizationError(AppError):
    status_code = 403
    code = "AUTHORIZATION_ERROR"

    def __init__(self, message: str = "Access denied", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class NotFoundError(AppError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, message: str = "Resource not found", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class ConflictError(AppError):
    status_code = 409
    code = "CONFLICT"


class PayloadTooLargeError(AppError):
    status_code = 413
    code = "FILE_TOO_LARGE"


class RateLimitError(AppError):
    status_code = 429
    code = "RATE_LIMITED"


class ExternalServiceError(AppError):
    """Raised when an upstream AI or storage provider fails."""

    status_code = 502
    code = "EXTERNAL_SERVICE_ERROR"

    def __init__(
        self,
        service: str,
        message: str,
        *,
        upstream_status: int | None = None,
    ) -> None:
        super().__init__(f"External service error ({service}): {message}")
        self.service = service
        self.upstream_status = upstream_status
        if upstream_status is not None:
            self.details = {"upstream_status": upstream_status}


def error_envelope(
    message: str,
    code: str,
    *,
    stack: str | None = None,
    details: Dict[str, Any] | None = None,
) -> Dict[str, Any]:
    """Return the uniform ``{success: false, error: {...}}`` payload."""

    error: Dict[str, Any] = {"message": message, "code": code}
    if stack is not None:
        error["stack"] = stack
    if details:
        error["details"] = details
    return {"success": False, "error": error}


__all__ = [
    "AppError",
    "AuthenticationError",
    "AuthorizationError",
    "ConflictError",
    "ExternalServiceError",
    "NotFoundError",
    "PayloadTooLargeError",
    "RateLimitError",
    "ValidationError",
    "error_envelope",
]
