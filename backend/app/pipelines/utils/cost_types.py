"""
LLM Usage Types

Defines the LLMUsage dataclass and helper functions for extracting
token/cost information from LiteLLM responses. Stages return their usage
records alongside results; the orchestrator folds them into a StageUsage
for the session token counter and the stage log line.

Usage:
    from app.pipelines.utils.cost_types import LLMUsage, extract_usage_from_response

    usage = extract_usage_from_response(
        response=litellm_response,
        model="openai/gpt-4o-mini",
        latency_ms=1234,
        operation="DOMAIN_ANALYSIS",
        session_id="1718000000000_abc123def",
    )
"""

import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Optional

import litellm

logger = logging.getLogger(__name__)


@dataclass
class LLMUsage:
    """
    Structured LLM usage data returned from completion calls.

    Attributes:
        request_id: Unique identifier for this request (auto-generated UUID)
        model: Full model identifier (e.g., "openai/gpt-4o-mini")
        provider: Extracted provider name (e.g., "openai")
        prompt_tokens: Number of input tokens
        completion_tokens: Number of output tokens
        total_tokens: Total tokens used
        cost_usd: Total cost in USD, when LiteLLM can price the model
        pipeline: Name of the calling pipeline
        session_id: Ingestion session for attribution
        operation: Operation name (e.g., "CONCEPT_EXTRACTION")
        latency_ms: Request latency in milliseconds
        attempts: Number of attempts including rate-limit retries
        success: Whether the request succeeded
        error_message: Error message if request failed
    """

    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    model: str = ""
    provider: str = ""

    # Token usage
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None

    cost_usd: Optional[float] = None

    # Context for attribution
    pipeline: Optional[str] = None
    session_id: Optional[str] = None
    operation: Optional[str] = None

    # Performance
    latency_ms: Optional[int] = None
    attempts: int = 1
    success: bool = True
    error_message: Optional[str] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return asdict(self)

    @property
    def tokens(self) -> int:
        """Total tokens, defaulting to 0 if not reported."""
        return self.total_tokens or 0

    def __str__(self) -> str:
        cost_str = f"${self.cost_usd:.4f}" if self.cost_usd else "N/A"
        tokens_str = str(self.total_tokens) if self.total_tokens else "N/A"
        return f"LLMUsage({self.model}, {self.operation}, cost={cost_str}, tokens={tokens_str})"


def extract_provider(model: str) -> str:
    """
    Extract provider name from model identifier.

    Args:
        model: Full model identifier (e.g., "openai/gpt-4o-mini")

    Returns:
        Provider name (e.g., "openai") or "unknown" if not parseable
    """
    if "/" in model:
        return model.split("/")[0]
    return "unknown"


def extract_usage_from_response(
    response,
    model: str,
    latency_ms: int,
    pipeline: Optional[str] = None,
    session_id: Optional[str] = None,
    operation: Optional[str] = None,
    attempts: int = 1,
) -> LLMUsage:
    """
    Extract usage and cost information from a LiteLLM response.

    Args:
        response: LiteLLM response object
        model: Model identifier used for the request
        latency_ms: Measured latency in milliseconds
        pipeline: Optional pipeline name for attribution
        session_id: Optional session id for attribution
        operation: Optional operation name for attribution
        attempts: Number of attempts taken

    Returns:
        LLMUsage dataclass populated with extracted information
    """
    usage = LLMUsage(
        model=model,
        provider=extract_provider(model),
        latency_ms=latency_ms,
        pipeline=pipeline,
        session_id=session_id,
        operation=operation,
        attempts=attempts,
    )

    if getattr(response, "usage", None):
        usage.prompt_tokens = getattr(response.usage, "prompt_tokens", None)
        usage.completion_tokens = getattr(response.usage, "completion_tokens", None)
        usage.total_tokens = getattr(response.usage, "total_tokens", None)

    hidden = getattr(response, "_hidden_params", None)
    if isinstance(hidden, dict):
        usage.cost_usd = hidden.get("response_cost")

    if usage.cost_usd is None and usage.total_tokens:
        try:
            usage.cost_usd = litellm.completion_cost(completion_response=response, model=model)
        except Exception as e:
            logger.debug(f"Cost calculation unavailable for {model}: {e}")

    return usage


def create_error_usage(
    model: str,
    latency_ms: int,
    error_message: str,
    pipeline: Optional[str] = None,
    session_id: Optional[str] = None,
    operation: Optional[str] = None,
    attempts: int = 1,
) -> LLMUsage:
    """
    Create an LLMUsage record for a failed request.

    Args:
        model: Model identifier
        latency_ms: Time spent before failure
        error_message: Error description
        pipeline: Optional pipeline name
        session_id: Optional session id
        operation: Optional operation name
        attempts: Number of attempts taken

    Returns:
        LLMUsage with success=False and error details
    """
    return LLMUsage(
        model=model,
        provider=extract_provider(model),
        latency_ms=latency_ms,
        success=False,
        error_message=error_message,
        pipeline=pipeline,
        session_id=session_id,
        operation=operation,
        attempts=attempts,
    )


@dataclass
class StageUsage:
    """LLM usage folded over the calls of one ingestion stage."""

    calls: int = 0
    tokens: int = 0
    cost_usd: float = 0.0

    @classmethod
    def from_usages(cls, usages: list[LLMUsage]) -> "StageUsage":
        return cls(
            calls=len(usages),
            tokens=sum(usage.tokens for usage in usages),
            cost_usd=sum(usage.cost_usd or 0.0 for usage in usages),
        )

    def __str__(self) -> str:
        if not self.calls:
            return "no LLM calls"
        return f"{self.calls} LLM calls, {self.tokens} tokens, ${self.cost_usd:.4f}"
