# src/shared/errors.py
"""
Domain error taxonomy.
Services raise these; the FastAPI handlers registered by
``register_exception_handlers`` turn them into ``ErrorResponse`` bodies.
"""

from __future__ import annotations

from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.common.logger import log_error, log_warning
from src.shared.models.common import ErrorResponse


class DomainError(Exception):
    """Base class of every error a service reports to its caller."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_response(self) -> ErrorResponse:
        return ErrorResponse(
            error_code=self.error_code,
            message=self.message,
            details=self.details,
        )


class ValidationError(DomainError):
    """Malformed input, rejected before any write."""
    status_code = 400
    error_code = "VALIDATION_ERROR"


class UnauthenticatedError(DomainError):
    """Missing, malformed or rejected credentials."""
    status_code = 401
    error_code = "UNAUTHENTICATED"


class ForbiddenError(DomainError):
    """Authenticated but not allowed to touch this resource."""
    status_code = 403
    error_code = "FORBIDDEN"


class NotFoundError(DomainError):
    status_code = 404
    error_code = "NOT_FOUND"


class InvalidTransitionError(DomainError):
    """
    Status change not permitted from the current state. The stored state is
    left untouched.
    """
    status_code = 409
    error_code = "INVALID_TRANSITION"

    def __init__(self, current: str, attempted: str, message: str | None = None) -> None:
        self.current = str(current)
        self.attempted = str(attempted)
        super().__init__(
            message or f"Cannot change status from '{self.current}' to '{self.attempted}'",
            details={"current": self.current, "attempted": self.attempted},
        )


class ConflictError(DomainError):
    """A live delivery already exists for the order."""
    status_code = 409
    error_code = "CONFLICT"


class UpstreamUnavailableError(DomainError):
    """A collaborator needed on a critical path did not answer."""
    status_code = 503
    error_code = "UPSTREAM_UNAVAILABLE"


# =============================================================================
# FASTAPI HANDLERS
# =============================================================================

def _error_json(status_code: int, body: ErrorResponse) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=body.model_dump(by_alias=True, mode="json"),
    )


async def domain_error_handler(request: Request, exc: DomainError) -> JSONResponse:
    extra = {"path": request.url.path, "error_code": exc.error_code}
    if exc.status_code >= 500:
        await log_error(f"{exc.error_code}: {exc.message}", extra=extra)
    else:
        await log_warning(f"{exc.error_code}: {exc.message}", extra=extra)
    return _error_json(exc.status_code, exc.to_response())


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
        for err in exc.errors()
    ]
    body = ErrorResponse(
        error_code=ValidationError.error_code,
        message="Request validation failed",
        details={"errors": errors},
    )
    return _error_json(ValidationError.status_code, body)


def register_exception_handlers(app: FastAPI) -> None:
    """Installs the domain error handlers on an application."""
    app.add_exception_handler(DomainError, domain_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
