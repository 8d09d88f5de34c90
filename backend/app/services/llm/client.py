"""
Unified LLM Client supporting multiple providers via LiteLLM.

LiteLLM provides a unified interface to 100+ LLM providers using
the format "provider/model-name". Key features:
- Operation-based model selection (analyzer, extractor, optimizer)
- Forced-JSON mode with tolerant response repair
- Rate-limit retries with capped exponential backoff
- Token estimation and history truncation for prompt budgets
- Usage tracking via LLMUsage

See: https://docs.litellm.ai/

Usage:
    from app.enums.pipeline import PipelineOperation
    from app.services.llm import get_llm_client

    client = get_llm_client()

    data, usage = await client.complete(
        operation=PipelineOperation.DOMAIN_ANALYSIS,
        messages=[{"role": "user", "content": "Analyze ..."}],
        json_mode=True,
        session_id="1718000000000_abc123def",
    )
    print(f"Tokens: {usage.total_tokens}")
"""

import logging
import math
import os
import time
from datetime import datetime, timezone
from typing import Any, Optional, Union

import litellm
from litellm import acompletion
from tenacity import (
    AsyncRetrying,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.config.settings import settings
from app.enums.ingestion import ErrorKind
from app.enums.pipeline import PipelineName, PipelineOperation
from app.middleware.error_handling import LLMError
from app.pipelines.utils.cost_types import (
    LLMUsage,
    create_error_usage,
    extract_usage_from_response,
)
from app.pipelines.utils.text_utils import JSONRepairError, clean_and_parse_json

logger = logging.getLogger(__name__)

# Configure LiteLLM
litellm.drop_params = True  # Drop unsupported params instead of erroring
if settings.DEBUG:
    os.environ["LITELLM_LOG"] = "DEBUG"

JSON_INSTRUCTION = (
    "IMPORTANT: You must respond with valid JSON only. Return a single JSON object. "
    "No markdown, no explanations outside the JSON object."
)

# Substrings that mark a provider error as a rate-limit or quota signal
RATE_LIMIT_MARKERS = ("429", "rate limit", "ratelimit", "quota")

# Model families that accept response_format={"type": "json_object"}
JSON_FORMAT_MODEL_MARKERS = ("gpt-4", "gpt-3.5")


def estimate_tokens(text: str) -> int:
    """
    Estimate the token count of a text as ceil(len / 4).

    Args:
        text: Text to measure

    Returns:
        Estimated token count
    """
    return math.ceil(len(text or "") / 4)


def _message_tokens(message: dict) -> int:
    content = message.get("content", "")
    return estimate_tokens(content if isinstance(content, str) else str(content))


def truncate_messages(messages: list[dict], max_tokens: int) -> list[dict]:
    """
    Drop the oldest messages until the estimated total fits a token budget.

    The system message (if first) is always kept, and so is the newest
    message, since dropping the current prompt would make the call
    meaningless. Remaining history is kept newest-first while it fits.

    Args:
        messages: Chat messages in OpenAI format
        max_tokens: Token budget

    Returns:
        Truncated message list in original order
    """
    if not messages:
        return []

    head: list[dict] = []
    rest = list(messages)
    if rest[0].get("role") == "system":
        head = [rest.pop(0)]

    total = sum(_message_tokens(m) for m in head)
    kept: list[dict] = []
    for index, message in enumerate(reversed(rest)):
        tokens = _message_tokens(message)
        if index > 0 and total + tokens > max_tokens:
            break
        kept.insert(0, message)
        total += tokens

    if len(kept) < len(rest):
        logger.info(
            f"Messages truncated: {len(messages)} -> {len(head) + len(kept)} "
            f"(~{total} tokens, budget {max_tokens})"
        )
    return head + kept


def build_messages(
    prompt: str,
    system_prompt: Optional[str] = None,
) -> list[dict[str, str]]:
    """
    Build messages list from prompt and optional system prompt.

    Args:
        prompt: User prompt text
        system_prompt: Optional system prompt

    Returns:
        List of message dicts for LLM API
    """
    messages = []
    if system_prompt:
        messages.append({"role": "system", "content": system_prompt})
    messages.append({"role": "user", "content": prompt})
    return messages


def with_json_instruction(messages: list[dict]) -> list[dict]:
    """
    Return a copy of messages that demands a single JSON object.

    Appends the instruction to an existing system message, or prepends a
    new system message.
    """
    messages = [dict(m) for m in messages]
    if messages and messages[0].get("role") == "system":
        messages[0]["content"] = f"{messages[0]['content']}\n\n{JSON_INSTRUCTION}"
    else:
        messages.insert(0, {"role": "system", "content": JSON_INSTRUCTION})
    return messages


def is_rate_limit_error(error: BaseException) -> bool:
    """True for provider errors signalling rate limiting or exhausted quota."""
    if isinstance(error, litellm.RateLimitError):
        return True
    message = str(error).lower()
    return any(marker in message for marker in RATE_LIMIT_MARKERS)


class LLMClient:
    """
    LLM client with operation-based model selection and usage tracking.

    Each PipelineOperation maps to one of the configured analyzer,
    extractor or optimizer models. Calls are retried only on rate-limit or
    quota signals; every other provider error surfaces immediately as
    LLMError so stages can decide on fallbacks.

    Attributes:
        config: Ingestion settings providing models, retry and token budgets
    """

    def __init__(self, config: Optional[IngestionSettings] = None):
        """Initialize the LLM client and validate API keys."""
        self.config = config or ingestion_settings
        self.models = {
            PipelineOperation.DOMAIN_ANALYSIS: self.config.MODEL_ANALYZER,
            PipelineOperation.CONCEPT_EXTRACTION: self.config.MODEL_EXTRACTOR,
            PipelineOperation.RELATIONSHIP_EXTRACTION: self.config.MODEL_EXTRACTOR,
            PipelineOperation.PATHWAY_OPTIMIZATION: self.config.MODEL_OPTIMIZER,
            PipelineOperation.HEALTH_CHECK: self.config.MODEL_ANALYZER,
        }
        self.available_providers = self._validate_api_keys()

    def _validate_api_keys(self) -> list[str]:
        """Log which providers have keys configured."""
        available_keys = []

        if os.getenv("OPENAI_API_KEY") or settings.OPENAI_API_KEY:
            available_keys.append("OpenAI")
        if os.getenv("ANTHROPIC_API_KEY") or settings.ANTHROPIC_API_KEY:
            available_keys.append("Anthropic")
        if os.getenv("OPENROUTER_API_KEY") or settings.OPENROUTER_API_KEY:
            available_keys.append("OpenRouter")

        if not available_keys:
            logger.warning(
                "No LLM API keys configured. Set at least one of: "
                "OPENAI_API_KEY, ANTHROPIC_API_KEY, OPENROUTER_API_KEY. "
                "Stages will use their pattern fallbacks."
            )
        else:
            logger.info(f"LLM client initialized with providers: {available_keys}")
        return available_keys

    def get_model_for_operation(self, operation: Union[PipelineOperation, str]) -> str:
        """
        Get the configured model for a specific operation.

        Args:
            operation: PipelineOperation enum value

        Returns:
            Model identifier in LiteLLM format (provider/model-name)
        """
        if isinstance(operation, str):
            try:
                operation = PipelineOperation(operation)
            except ValueError:
                logger.warning(f"Unknown operation type: {operation}, using analyzer model")
                return self.config.MODEL_ANALYZER
        return self.models.get(operation, self.config.MODEL_ANALYZER)

    def _backoff_seconds(self, retry_state) -> float:
        """min(base * 2^attempt, max), in seconds."""
        delay_ms = min(
            self.config.LLM_RETRY_BASE_MS * (2 ** retry_state.attempt_number),
            self.config.LLM_RETRY_MAX_MS,
        )
        return delay_ms / 1000

    async def complete(
        self,
        operation: Union[PipelineOperation, str],
        messages: list[dict],
        temperature: float = 0.2,
        max_tokens: int = 1200,
        json_mode: bool = False,
        session_id: Optional[str] = None,
        pipeline: Optional[Union[PipelineName, str]] = PipelineName.DOMAIN_INGESTION,
        model: Optional[str] = None,
        token_budget: Optional[int] = None,
    ) -> tuple[Union[str, Any], LLMUsage]:
        """
        Generate a completion using the appropriate model for the operation.

        Args:
            operation: PipelineOperation used for model selection and attribution
            messages: Chat messages in OpenAI format
            temperature: Sampling temperature
            max_tokens: Maximum tokens in response
            json_mode: Demand a single JSON object and return it parsed
                (after tolerant repair of fences, prose and stringified arrays)
            session_id: Session id for usage attribution
            pipeline: Pipeline name for usage attribution
            model: Optional model override (bypasses operation-based selection)
            token_budget: Prompt token budget; defaults to LLM_TOKEN_BUDGET

        Returns:
            Tuple of (response text, or parsed JSON if json_mode; LLMUsage)

        Raises:
            LLMError: On provider failure, exhausted rate-limit retries
                (error_kind=rate_limited), or unrepairable JSON
                (error_kind=invalid_response)
        """
        model = model or self.get_model_for_operation(operation)
        operation_name = operation.value if isinstance(operation, PipelineOperation) else str(operation)
        pipeline_name = pipeline.value if isinstance(pipeline, PipelineName) else pipeline

        if json_mode:
            messages = with_json_instruction(messages)
        messages = truncate_messages(messages, token_budget or self.config.LLM_TOKEN_BUDGET)

        kwargs = {
            "model": model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens,
        }
        if json_mode and any(marker in model for marker in JSON_FORMAT_MODEL_MARKERS):
            kwargs["response_format"] = {"type": "json_object"}
        if self.config.LLM_ENDPOINT:
            kwargs["api_base"] = self.config.LLM_ENDPOINT

        start_time = time.perf_counter()
        attempts = 0

        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.LLM_MAX_RETRIES),
                wait=self._backoff_seconds,
                retry=retry_if_exception(is_rate_limit_error),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=False,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    response = await acompletion(**kwargs)
        except RetryError as e:
            latency_ms = int((time.perf_counter() - start_time) * 1000)
            create_error_usage(
                model=model,
                latency_ms=latency_ms,
                error_message="rate limited",
                pipeline=pipeline_name,
                session_id=session_id,
                operation=operation_name,
                attempts=attempts,
            )
            logger.error(f"LLM rate limited after {attempts} attempts (model={model})")
            raise LLMError(
                f"LLM provider rate limited after {attempts} attempts",
                error_kind=ErrorKind.RATE_LIMITED,
            ) from e.last_attempt.exception()
        except Exception as e:
            logger.error(f"LLM completion failed: {type(e).__name__}: {e} (model={model})")
            raise LLMError(
                f"LLM completion failed ({type(e).__name__})",
                error_kind=ErrorKind.LLM_FAILURE,
            ) from e

        latency_ms = int((time.perf_counter() - start_time) * 1000)
        usage = extract_usage_from_response(
            response=response,
            model=model,
            latency_ms=latency_ms,
            pipeline=pipeline_name,
            session_id=session_id,
            operation=operation_name,
            attempts=attempts,
        )
        logger.debug(
            f"LLM completion [{model}] {operation_name} - Tokens: {usage.total_tokens}, "
            f"Latency: {latency_ms}ms, Attempts: {attempts}"
        )

        content = response.choices[0].message.content or ""

        if json_mode:
            try:
                content = clean_and_parse_json(content)
            except JSONRepairError as e:
                raise LLMError(
                    "LLM returned malformed JSON",
                    error_kind=ErrorKind.INVALID_RESPONSE,
                ) from e

        return content, usage

    def health_check(self) -> dict[str, Any]:
        """
        Report LLM readiness without spending tokens.

        Returns:
            Dict with status ("healthy" when a provider key is configured),
            providers, and the analyzer model
        """
        return {
            "status": "healthy" if self.available_providers else "unconfigured",
            "providers": self.available_providers,
            "model": self.config.MODEL_ANALYZER,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }


# Singleton instance
_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    """
    Get or create singleton LLM client.

    Returns:
        Shared LLMClient instance
    """
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


def reset_llm_client():
    """Reset the singleton client (useful for testing)."""
    global _client
    _client = None
