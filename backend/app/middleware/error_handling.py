"""
Error Handling Middleware

Provides consistent, bounded error responses across the ingestion API.

Features:
- Standardized error response format
- Correlation IDs for log tracking
- Sanitized responses (raw provider error text never reaches clients)
- Custom exception classes mirroring the ingestion error taxonomy

Usage:
    from app.middleware.error_handling import InputError, setup_error_handling

    # Configure app
    setup_error_handling(app, debug=settings.DEBUG)

    # Raise taxonomy errors anywhere below a route
    raise InputError("Domain must be a non-empty string")

Error taxonomy:
    InputError        422  input_error          Empty or malformed domain, bad paging
    NotFoundError     404  not_found            Unknown session id
    RetryLaterError   503  retry_later          Concurrent-session bound reached
    LLMError          502  llm_error            LLM call failed after retries
    PersistenceError  503  persistence_error    Store unavailable after retries
    StageError        500  stage_error          A pipeline stage failed

Exception flow:
    ServiceError subclasses are turned into JSON by a registered exception
    handler. Anything else escaping a route is caught by
    ErrorHandlingMiddleware, logged with a correlation id and returned as a
    sanitized 500.
"""

import logging
import traceback
from datetime import datetime, timezone
from typing import Optional
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from app.enums.ingestion import ErrorKind

logger = logging.getLogger(__name__)

# Client-visible messages are cut to this length
MAX_ERROR_SUMMARY_CHARS = 200


# =============================================================================
# Custom Exceptions
# =============================================================================


class ServiceError(Exception):
    """
    Base exception for service errors.

    Provides consistent error handling with:
    - HTTP status code
    - Error code for categorization
    - Bounded error kind tag stored on failed sessions
    - Optional details for debugging

    Example:
        raise ServiceError("Database connection failed", status_code=503)
    """

    status_code: int = 500
    error_code: str = "service_error"
    error_kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(
        self,
        message: str,
        status_code: int = None,
        error_code: str = None,
        details: dict = None,
        error_kind: Optional[ErrorKind] = None,
    ):
        super().__init__(message)
        self.message = message
        if status_code:
            self.status_code = status_code
        if error_code:
            self.error_code = error_code
        if error_kind:
            self.error_kind = error_kind
        self.details = details


class InputError(ServiceError):
    """
    Invalid client input.

    Raised before any session is created (e.g., blank domain).
    """

    status_code = 422
    error_code = "input_error"
    error_kind = ErrorKind.INPUT_ERROR


class NotFoundError(ServiceError):
    """
    Resource not found error.

    Raised when a session id is unknown in memory and in persistence.
    """

    status_code = 404
    error_code = "not_found"


class RetryLaterError(ServiceError):
    """
    Capacity exhausted.

    Raised when the concurrent-ingestion bound is reached; requests are
    rejected rather than queued.
    """

    status_code = 503
    error_code = "retry_later"
    error_kind = ErrorKind.RETRY_LATER


class LLMError(ServiceError):
    """
    LLM provider error.

    Raised when LLM API calls fail (rate limits after retries, provider errors).
    """

    status_code = 502
    error_code = "llm_error"
    error_kind = ErrorKind.LLM_FAILURE


class PersistenceError(ServiceError):
    """
    Durable store error.

    Raised when saving or loading fails after retries.
    """

    status_code = 503
    error_code = "persistence_error"
    error_kind = ErrorKind.PERSISTENCE_FAILURE


class StageError(ServiceError):
    """
    Pipeline stage failure.

    Carries the failing step key so the orchestrator can mark it failed.
    """

    status_code = 500
    error_code = "stage_error"
    error_kind = ErrorKind.STAGE_FAILURE

    def __init__(self, message: str, step: str = None, **kwargs):
        super().__init__(message, **kwargs)
        self.step = step


def summarize_error(error: BaseException) -> str:
    """
    Build a bounded, client-safe summary of an exception.

    ServiceError messages are written by this codebase and kept; anything
    else is reduced to its exception type name.

    Args:
        error: The exception to summarize

    Returns:
        Summary string of at most MAX_ERROR_SUMMARY_CHARS characters
    """
    if isinstance(error, ServiceError):
        summary = error.message
    else:
        summary = f"{type(error).__name__} during processing"
    return summary[:MAX_ERROR_SUMMARY_CHARS]


def error_kind_of(error: BaseException) -> ErrorKind:
    """Map an exception to its bounded error kind."""
    if isinstance(error, ServiceError):
        return error.error_kind
    if isinstance(error, TimeoutError):
        return ErrorKind.TIMEOUT
    return ErrorKind.INTERNAL


# =============================================================================
# Error Handling Middleware
# =============================================================================


def _error_body(error_code: str, message: str, error_id: str, details=None) -> dict:
    return {
        "error": error_code,
        "message": message,
        "error_id": error_id,
        "details": details,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def service_error_handler(request: Request, exc: ServiceError) -> JSONResponse:
    """Render a ServiceError as the standard JSON error body."""
    error_id = str(uuid4())[:8]
    logger.warning(
        f"[{error_id}] {exc.error_code}: {exc.message}",
        extra={
            "error_id": error_id,
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )
    debug = getattr(request.app.state, "debug", False)
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(
            exc.error_code,
            exc.message[:MAX_ERROR_SUMMARY_CHARS],
            error_id,
            exc.details if debug else None,
        ),
    )


class ErrorHandlingMiddleware(BaseHTTPMiddleware):
    """
    Global error handling middleware.

    - Catches unhandled exceptions
    - Logs with correlation ID
    - Returns consistent error format
    - Hides internal details unless debug is on
    """

    def __init__(self, app, debug: bool = False):
        """
        Initialize middleware.

        Args:
            app: FastAPI/Starlette application
            debug: Whether to include stack traces in responses
        """
        super().__init__(app)
        self.debug = debug

    async def dispatch(self, request: Request, call_next):
        """Process request and handle any errors."""
        error_id = str(uuid4())[:8]

        try:
            return await call_next(request)

        except HTTPException:
            # Let FastAPI handle HTTP exceptions
            raise

        except ServiceError as e:
            return await service_error_handler(request, e)

        except Exception as e:
            logger.error(
                f"[{error_id}] Unhandled error: {type(e).__name__}: {e}",
                extra={
                    "error_id": error_id,
                    "path": request.url.path,
                    "method": request.method,
                    "traceback": traceback.format_exc(),
                },
            )

            details = None
            if self.debug:
                details = {
                    "exception": type(e).__name__,
                    "traceback": traceback.format_exc(),
                }

            return JSONResponse(
                status_code=500,
                content=_error_body(
                    "internal_server_error",
                    "An unexpected error occurred",
                    error_id,
                    details,
                ),
            )


# =============================================================================
# Setup Function
# =============================================================================


def setup_error_handling(app: FastAPI, debug: bool = False) -> None:
    """
    Configure error handling on the FastAPI app.

    Args:
        app: FastAPI application instance
        debug: Whether to include stack traces in responses
    """
    app.state.debug = debug
    app.add_exception_handler(ServiceError, service_error_handler)
    app.add_middleware(ErrorHandlingMiddleware, debug=debug)
    logger.info(f"Error handling middleware enabled (debug={debug})")
