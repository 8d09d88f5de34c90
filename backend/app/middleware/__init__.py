"""
Middleware Package

Provides FastAPI middleware for:
- Rate limiting
- Error handling

Rate limiting usage:
    from app.middleware import limit_start

    @limit_start
    async def my_endpoint(request: Request):
        ...
"""

from app.middleware.rate_limit import setup_rate_limiting, limiter, limit_graph, limit_stage, limit_start
from app.middleware.error_handling import (
    ErrorHandlingMiddleware,
    InputError,
    LLMError,
    NotFoundError,
    PersistenceError,
    RetryLaterError,
    ServiceError,
    StageError,
    setup_error_handling,
)

__all__ = [
    "setup_rate_limiting",
    "limiter",
    "limit_start",
    "limit_stage",
    "limit_graph",
    "ErrorHandlingMiddleware",
    "InputError",
    "LLMError",
    "NotFoundError",
    "PersistenceError",
    "RetryLaterError",
    "ServiceError",
    "StageError",
    "setup_error_handling",
]
