"""
LLM Service Module

Provides a unified interface to multiple LLM providers via LiteLLM.
Supports operation-based model selection, forced-JSON responses with
tolerant repair, and rate-limit retries.

Key Components:
- client.py: LLMClient class, token estimation and history truncation

All completions return (response, LLMUsage) tuples for usage tracking.

Usage:
    from app.enums.pipeline import PipelineOperation
    from app.services.llm import get_llm_client, LLMUsage

    client = get_llm_client()
    data, usage = await client.complete(
        operation=PipelineOperation.CONCEPT_EXTRACTION,
        messages=[{"role": "user", "content": "Extract concepts..."}],
        json_mode=True,
    )
"""

from app.pipelines.utils.cost_types import LLMUsage
from app.services.llm.client import (
    LLMClient,
    build_messages,
    estimate_tokens,
    get_llm_client,
    reset_llm_client,
    truncate_messages,
)

__all__ = [
    "LLMClient",
    "LLMUsage",
    "build_messages",
    "estimate_tokens",
    "get_llm_client",
    "reset_llm_client",
    "truncate_messages",
]
