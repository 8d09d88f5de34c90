"""
API-level enums.
"""

from enum import Enum


class RateLimitType(str, Enum):
    """
    Rate limit categories for the ingestion endpoints.

    Each category has a corresponding limit string in settings.
    Usage:
        from app.enums import RateLimitType
        from app.config import settings

        limit = settings.get_rate_limit(RateLimitType.STAGE)
    """

    # Session starts (each one runs the full pipeline in the background)
    START = "start"

    # Standalone stages that call LLMs or crawl providers
    STAGE = "stage"

    # Standalone graph building and pathway search (CPU only)
    GRAPH = "graph"
