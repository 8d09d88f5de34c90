"""Pipeline utilities for fetching, browsing, text handling, hashing and cost tracking."""

from app.pipelines.utils.cost_types import (
    LLMUsage,
    StageUsage,
    create_error_usage,
    extract_provider,
    extract_usage_from_response,
)
from app.pipelines.utils.hash_utils import (
    calculate_content_hash,
    content_fingerprint,
    normalize_url,
    seeded_rng,
)
from app.pipelines.utils.http_fetcher import (
    FetchedPage,
    FetchError,
    create_http_client,
    fetch_page,
    parse_html,
)
from app.pipelines.utils.text_utils import (
    clean_and_parse_json,
    normalize_llm_json_response,
    normalize_whitespace,
    truncate_text,
    unwrap_llm_single_object_response,
)

__all__ = [
    # Cost tracking
    "LLMUsage",
    "StageUsage",
    "extract_provider",
    "extract_usage_from_response",
    "create_error_usage",
    # Hashing
    "calculate_content_hash",
    "content_fingerprint",
    "normalize_url",
    "seeded_rng",
    # HTTP fetching
    "FetchedPage",
    "FetchError",
    "create_http_client",
    "fetch_page",
    "parse_html",
    # Text utilities
    "clean_and_parse_json",
    "normalize_llm_json_response",
    "unwrap_llm_single_object_response",
    "normalize_whitespace",
    "truncate_text",
]
