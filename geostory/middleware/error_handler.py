# geostory/middleware/error_handler.py
# Structured error handling for the story API
# Domain errors carry their own HTTP mapping; unhandled exceptions become a generic 500

import logging
import traceback
from typing import Callable, Optional

from fastapi import Request, HTTPException
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from geostory.utils.logger import log_exception

logger = logging.getLogger(__name__)


class AppError(Exception):
    """Base application error with structured response."""

    def __init__(
        self,
        message: str,
        error_code: str = "INTERNAL_ERROR",
        status_code: int = 500,
        details: Optional[dict] = None,
        headers: Optional[dict] = None,
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}
        self.headers = headers or {}


# --- Caller errors (4xx, never retried) ---

class ValidationError(AppError):
    """Request validation failed."""
    def __init__(self, message: str = "Validation failed", error_code: str = "VALIDATION_ERROR",
                 details: Optional[dict] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=400,
            details=details
        )


class InvalidShapeError(ValidationError):
    def __init__(self, message: str = "Invalid state: expected { layers: [] }"):
        super().__init__(message, error_code="INVALID_SHAPE")


class EmptyLayersError(ValidationError):
    def __init__(self, message: str = "No layers to publish"):
        super().__init__(message, error_code="EMPTY_LAYERS")


class TooManyLayersError(ValidationError):
    def __init__(self, max_layers: int, count: int):
        super().__init__(
            f"Max {max_layers} layers",
            error_code="TOO_MANY_LAYERS",
            details={"max_layers": max_layers, "layers": count},
        )


class InvalidTTLError(ValidationError):
    def __init__(self, min_days: float, max_days: float):
        super().__init__(
            f"ttlDays must be between {min_days:g} and {max_days:g}",
            error_code="INVALID_TTL",
        )


class InvalidStoryIdError(ValidationError):
    def __init__(self):
        super().__init__("Invalid id", error_code="INVALID_ID")


class EditorAccessDeniedError(AppError):
    def __init__(self):
        super().__init__(
            message="Editor/API is accessible only from this computer.",
            error_code="EDITOR_FORBIDDEN",
            status_code=403,
        )


# --- Resource limits (4xx, client must change the request) ---

class PayloadTooLargeError(AppError):
    """Encoded story exceeds the configured byte limit."""
    def __init__(self, encoded_bytes: int, limit: int, raw_bytes: int,
                 compressed_bytes: Optional[int] = None):
        super().__init__(
            message=f"State too large after encoding: {encoded_bytes} bytes (limit {limit})",
            error_code="TOO_LARGE",
            status_code=413,
            details={
                "raw_bytes": raw_bytes,
                "compressed_bytes": compressed_bytes,
                "encoded_bytes": encoded_bytes,
                "limit": limit,
                "hint": "Reduce GeoJSON size (simplify/quantize) or fewer layers.",
            },
        )


class RateLimitError(AppError):
    """Rate limit exceeded."""
    def __init__(self, retry_after: int = 60):
        super().__init__(
            message=f"Rate limit exceeded. Retry after {retry_after} seconds.",
            error_code="RATE_LIMITED",
            status_code=429,
            details={"retry_after": retry_after},
            headers={"Retry-After": str(retry_after)},
        )


# --- Storage ---

class StorageError(AppError):
    """Base for failures raised by the durable store."""


class StorageBusyError(StorageError):
    """Lock contention outlived the retry budget; the whole operation may be retried."""
    def __init__(self, message: str = "Database is busy, please retry.", details: Optional[dict] = None):
        super().__init__(
            message=message,
            error_code="DATABASE_BUSY",
            status_code=503,
            details=details,
            headers={"Retry-After": "1"},
        )


class StorageFaultError(StorageError):
    """Database operation failed."""
    def __init__(self, message: str = "Database operation failed", details: Optional[dict] = None):
        super().__init__(
            message=message,
            error_code="DATABASE_ERROR",
            status_code=500,
            details=details
        )


class DuplicateStoryIdError(StorageError):
    """Primary key collision on insert; a fresh id may be tried."""
    def __init__(self, story_id: str):
        super().__init__(
            message="Story id already exists",
            error_code="DUPLICATE_ID",
            status_code=500,
        )
        self.story_id = story_id


class CorruptRecordError(AppError):
    """Stored payload could not be decoded."""
    def __init__(self, reason: str = ""):
        super().__init__(
            message="Corrupt story payload",
            error_code="CORRUPT_RECORD",
            status_code=500,
        )
        # kept for logs only, never rendered
        self.reason = reason


# --- Absence ---

class NotFoundError(AppError):
    """Resource not found."""
    def __init__(self, message: str = "Resource not found", error_code: str = "NOT_FOUND",
                 status_code: int = 404, details: Optional[dict] = None):
        super().__init__(
            message=message,
            error_code=error_code,
            status_code=status_code,
            details=details
        )


class StoryNotFoundError(NotFoundError):
    def __init__(self):
        super().__init__("Not found")


class StoryExpiredError(NotFoundError):
    def __init__(self):
        super().__init__("Expired", error_code="EXPIRED", status_code=410)


def create_error_response(
    error_code: str,
    message: str,
    status_code: int,
    details: Optional[dict] = None,
    request_id: Optional[str] = None,
    headers: Optional[dict] = None,
) -> JSONResponse:
    """Create a standardized JSON error response."""
    content = {
        "error": {
            "code": error_code,
            "message": message,
        }
    }

    if details:
        content["error"]["details"] = details

    if request_id:
        content["error"]["request_id"] = request_id

    return JSONResponse(status_code=status_code, content=content, headers=headers or None)


def _log_app_error(exc: AppError, path: str, request_id: Optional[str] = None) -> None:
    extra = {"request_id": request_id, "path": path, "error_code": exc.error_code}
    if exc.status_code >= 500:
        logger.error(f"AppError: {exc.error_code} - {exc.message}", extra=extra)
    elif isinstance(exc, NotFoundError):
        # absence is a normal outcome
        logger.debug(f"AppError: {exc.error_code} - {exc.message}", extra=extra)
    else:
        logger.warning(f"AppError: {exc.error_code} - {exc.message}", extra=extra)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Middleware that catches all unhandled exceptions and returns
    consistent JSON error responses.
    """

    def __init__(self, app, debug: bool = False):
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next: Callable):
        # Generate request ID for tracing
        request_id = request.headers.get("X-Request-ID", str(id(request)))

        try:
            response = await call_next(request)
            return response

        except AppError as e:
            _log_app_error(e, request.url.path, request_id)
            return create_error_response(
                error_code=e.error_code,
                message=e.message,
                status_code=e.status_code,
                details=e.details,
                request_id=request_id,
                headers=e.headers,
            )

        except HTTPException as e:
            logger.warning(
                f"HTTPException: {e.status_code} - {e.detail}",
                extra={"request_id": request_id, "path": request.url.path}
            )
            return create_error_response(
                error_code="HTTP_ERROR",
                message=str(e.detail),
                status_code=e.status_code,
                request_id=request_id
            )

        except Exception as e:
            error_details = None
            if self.debug:
                error_details = {
                    "type": type(e).__name__,
                    "traceback": traceback.format_exc()
                }

            log_exception(e, context=f"Unhandled error on {request.url.path}")

            return create_error_response(
                error_code="INTERNAL_ERROR",
                message="An internal error occurred. Please try again later.",
                status_code=500,
                details=error_details,
                request_id=request_id
            )


def setup_exception_handlers(app):
    """Register exception handlers on FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError):
        _log_app_error(exc, request.url.path)
        return create_error_response(
            error_code=exc.error_code,
            message=exc.message,
            status_code=exc.status_code,
            details=exc.details,
            headers=exc.headers,
        )

    @app.exception_handler(Exception)
    async def general_exception_handler(request: Request, exc: Exception):
        log_exception(exc, context=f"Unhandled error on {request.url.path}")
        return create_error_response(
            error_code="INTERNAL_ERROR",
            message="An internal error occurred",
            status_code=500
        )
