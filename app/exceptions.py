"""Service exceptions and the FastAPI handlers that render them."""

import logging
import traceback
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class ComputeServiceError(Exception):
    """Base exception for the compute service."""

    def __init__(
        self,
        message: str,
        code: str = "SERVICE_ERROR",
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class NotFoundError(ComputeServiceError):
    """Unknown job or schedule id."""

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            message=f"{resource} not found: {identifier}",
            code="NOT_FOUND",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "identifier": str(identifier)},
        )


class InvalidStateError(ComputeServiceError):
    """The requested transition is not legal from the current status."""

    def __init__(self, message: str, current_status: str | None = None):
        super().__init__(
            message=message,
            code="INVALID_STATE",
            status_code=status.HTTP_409_CONFLICT,
            details={"status": current_status} if current_status else {},
        )


class ValidationFailedError(ComputeServiceError):
    def __init__(self, message: str, field: str | None = None):
        super().__init__(
            message=message,
            code="VALIDATION_ERROR",
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            details={"field": field} if field else {},
        )


class CapacityExceededError(ComputeServiceError):
    """Too many jobs are already running."""

    def __init__(self, running: int, limit: int):
        super().__init__(
            message=f"Capacity exceeded: {running} jobs running (max: {limit})",
            code="CAPACITY_EXCEEDED",
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            details={"running": running, "limit": limit},
        )


class AuthenticationError(ComputeServiceError):
    def __init__(self, message: str = "Authentication required"):
        super().__init__(
            message=message,
            code="AUTHENTICATION_ERROR",
            status_code=status.HTTP_401_UNAUTHORIZED,
        )


class AuthorizationError(ComputeServiceError):
    def __init__(self, message: str = "Permission denied"):
        super().__init__(
            message=message,
            code="AUTHORIZATION_ERROR",
            status_code=status.HTTP_403_FORBIDDEN,
        )


def install_exception_handlers(app: FastAPI, include_trace: bool = False) -> None:
    """Install exception handlers on the FastAPI app."""

    @app.exception_handler(ComputeServiceError)
    async def service_exception_handler(request: Request, exc: ComputeServiceError):
        logger.warning(f"{request.method} {request.url.path} -> {exc.status_code} {exc.code}: {exc.message}")
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.code,
                "message": exc.message,
                "details": exc.details,
            },
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": "HTTP_ERROR",
                "message": str(exc.detail),
            },
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        logger.warning(f"Validation error on {request.url.path}: {exc}")
        return JSONResponse(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            content={
                "error": "VALIDATION_ERROR",
                "message": "Request validation failed",
                "details": jsonable_errors(exc),
            },
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.url.path}: {exc}")
        content = {
            "error": "INTERNAL_ERROR",
            "message": "An unexpected error occurred",
        }
        if include_trace:
            content["trace"] = traceback.format_exc()
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content=content,
        )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    # ctx may carry the raw exception object
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        error.pop("input", None)
        errors.append(error)
    return errors
