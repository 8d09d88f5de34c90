"""
Rate Limiting Middleware

Per-client request limits for the ingestion routes, using SlowAPI. Each
route belongs to a RateLimitType category with its own limit string, and
session starts get the tightest one since each runs the whole pipeline.

Usage:
    from app.middleware.rate_limit import limit_stage, limit_start

    @router.post("/start")
    @limit_start
    async def start_ingestion(request: Request, ...):
        ...

Rate limit configurations (from settings):
- RATE_LIMIT_START: /start (10/minute)
- RATE_LIMIT_STAGE: /analyze, /crawl, /process (30/minute)
- RATE_LIMIT_GRAPH: /build, /optimize, /optimize/path (120/minute)
"""

import logging

from fastapi import FastAPI, Request
from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.util import get_remote_address
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from app.config import settings
from app.enums.api import RateLimitType

logger = logging.getLogger(__name__)


def get_client_identifier(request: Request) -> str:
    """
    Get client identifier for rate limiting.

    Uses X-Forwarded-For header if behind a proxy,
    otherwise falls back to direct IP address.

    Args:
        request: FastAPI request object

    Returns:
        Client IP address or identifier
    """
    # Check for forwarded header (behind proxy/load balancer)
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        # Take the first IP in the chain (original client)
        return forwarded_for.split(",")[0].strip()

    # Fall back to direct client address
    return get_remote_address(request)


# Initialize limiter with default key function
limiter = Limiter(key_func=get_client_identifier, enabled=settings.ENABLE_RATE_LIMITING)


def setup_rate_limiting(app: FastAPI, enabled: bool = True) -> None:
    """
    Configure rate limiting on the FastAPI app.

    Args:
        app: FastAPI application instance
        enabled: Whether to enable rate limiting
    """
    limiter.enabled = enabled
    if not enabled:
        logger.info("Rate limiting disabled")
        return

    # Store limiter in app state
    app.state.limiter = limiter

    # Add exception handler for rate limit exceeded
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Add middleware
    app.add_middleware(SlowAPIMiddleware)

    logger.info(
        "Rate limiting enabled "
        + ", ".join(f"{kind.value}: {get_rate_limit(kind)}" for kind in RateLimitType)
    )


def get_rate_limit(rate_limit_type: RateLimitType) -> str:
    """
    Get rate limit string for a route category.

    Args:
        rate_limit_type: RateLimitType enum value

    Returns:
        Rate limit string (e.g., "30/minute")
    """
    return settings.get_rate_limit(rate_limit_type)


def limit_start(func):
    """Decorator for the session start endpoint."""
    return limiter.limit(get_rate_limit(RateLimitType.START))(func)


def limit_stage(func):
    """Decorator for standalone stages that call LLMs or source providers."""
    return limiter.limit(get_rate_limit(RateLimitType.STAGE))(func)


def limit_graph(func):
    """Decorator for standalone graph building and pathway search."""
    return limiter.limit(get_rate_limit(RateLimitType.GRAPH))(func)
