"""
Custom exceptions and error handlers for consistent error responses.

Provides standardized error codes and global exception handlers.
"""

import logging

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from fastapi.encoders import jsonable_encoder
from typing import Any, Dict

logger = logging.getLogger("delivery_tracking.errors")


class AppException(Exception):
    """Base application exception."""

    def __init__(self, message: str, error_code: str, status_code: int = 500, details: Dict[str, Any] = None):
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(message)


class ValidationError(AppException):
    """Raised for unknown stage codes, out-of-range coordinates and malformed payloads."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_VALIDATION_001",
            status_code=status.HTTP_400_BAD_REQUEST,
            details=details
        )


class StageRegressionError(ValidationError):
    """Raised when the forward_only policy refuses to move an order back."""

    def __init__(self, from_stage: str, to_stage: str):
        super().__init__(
            message=f"Cannot move order back from '{from_stage}' to '{to_stage}'",
            details={"from": from_stage, "to": to_stage}
        )


class InsufficientPermissionsError(AppException):
    """Raised when user doesn't have permission to perform an action."""

    def __init__(self, message: str = "Insufficient permissions", details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_PERM_001",
            status_code=status.HTTP_403_FORBIDDEN,
            details=details
        )


class ResourceNotFoundError(AppException):
    """Raised when requested resource is not found."""

    def __init__(self, resource: str, resource_id: Any = None):
        message = f"{resource} not found"
        if resource_id:
            message = f"{resource} with ID {resource_id} not found"
        super().__init__(
            message=message,
            error_code="ERR_NOT_FOUND_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"resource": resource, "id": resource_id}
        )


class NoHistoryError(AppException):
    """
    Raised when a projection is requested for an order with an empty ledger.

    An order without history is "unstarted"; callers are expected to render
    it as such rather than surface an error to users.
    """

    def __init__(self, order_id: Any):
        super().__init__(
            message=f"Order {order_id} has no status history yet",
            error_code="ERR_NO_HISTORY_001",
            status_code=status.HTTP_404_NOT_FOUND,
            details={"order_id": order_id}
        )


class ConcurrentTransitionError(AppException):
    """Raised when a transition keeps losing the per-order write race."""

    def __init__(self, order_id: Any, attempts: int):
        super().__init__(
            message=f"Order {order_id} is being updated concurrently, please retry",
            error_code="ERR_CONFLICT_001",
            status_code=status.HTTP_409_CONFLICT,
            details={"order_id": order_id, "attempts": attempts}
        )


class UpstreamError(AppException):
    """Raised when the courier platform rejects or times out after all retries."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(
            message=message,
            error_code="ERR_UPSTREAM_001",
            status_code=status.HTTP_502_BAD_GATEWAY,
            details=details
        )


class StageRegistryError(AppException):
    """Raised when the stage registry is missing, empty or inconsistent."""

    def __init__(self, message: str):
        super().__init__(
            message=message,
            error_code="ERR_REGISTRY_001",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR
        )


class AuthenticationError(AppException):
    """Raised for authentication failures."""

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(
            message=message,
            error_code="ERR_AUTH_001",
            status_code=status.HTTP_401_UNAUTHORIZED
        )


# Global Exception Handlers

def _error_body(error_code: str, message: Any, details: Dict[str, Any] = None) -> Dict[str, Any]:
    return {"error_code": error_code, "message": message, "details": details or {}}


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handler for custom application exceptions."""
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s (%s)", request.method, request.url.path, exc.message, exc.error_code)
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder(_error_body(exc.error_code, exc.message, exc.details))
    )


# Map status code to error code
HTTP_ERROR_CODES = {
    400: "ERR_BAD_REQUEST",
    401: "ERR_UNAUTHORIZED",
    403: "ERR_FORBIDDEN",
    404: "ERR_NOT_FOUND",
    409: "ERR_CONFLICT",
    500: "ERR_INTERNAL_SERVER"
}


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handler for FastAPI HTTPException with standardized format."""
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(HTTP_ERROR_CODES.get(exc.status_code, "ERR_UNKNOWN"), exc.detail),
        headers=getattr(exc, "headers", None)
    )


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Handler for request body, path and query validation errors."""
    return JSONResponse(
        status_code=422,
        content=jsonable_encoder(
            _error_body("ERR_VALIDATION", "Validation error", {"errors": exc.errors()})
        )
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Handler for unhandled exceptions."""
    logger.exception("Unhandled exception on %s %s: %s", request.method, request.url.path, type(exc).__name__)

    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("ERR_INTERNAL_SERVER", "An internal server error occurred")
    )
