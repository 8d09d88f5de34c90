"""
Shared Test Fixtures and Configuration

This module provides pytest fixtures and builders used across the unit
tests: fast ingestion settings, a scripted LLM client, in-memory source
adapters and a mocked persistence gateway.
"""

import asyncio
import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest
from dotenv import load_dotenv

# Add the backend directory to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

# Load .env file from project root BEFORE any fixtures run
_project_root = Path(__file__).parent.parent.parent
_env_file = _project_root / ".env"
if _env_file.exists():
    load_dotenv(_env_file)
else:
    # Try backend directory
    _backend_env = Path(__file__).parent.parent / ".env"
    if _backend_env.exists():
        load_dotenv(_backend_env)

from app.config.ingestion import IngestionSettings  # noqa: E402
from app.enums.ingestion import SourceCategory  # noqa: E402
from app.models.sources import (  # noqa: E402
    DocItem,
    ExpertItem,
    PaperItem,
    ReportItem,
    RepoItem,
    VideoItem,
)
from app.pipelines.base import AdapterRegistry, BaseSourceAdapter  # noqa: E402
from app.pipelines.utils.cost_types import LLMUsage  # noqa: E402


# ============================================================================
# Environment Configuration
# ============================================================================


@pytest.fixture(scope="session", autouse=True)
def setup_test_environment() -> Generator[None, None, None]:
    """
    Set up test environment variables before any tests run.

    This ensures tests run with predictable configuration, overriding
    any values from .env files to ensure test isolation.
    """
    original_env = os.environ.copy()

    test_env = {
        "POSTGRES_HOST": os.environ.get("POSTGRES_HOST", "localhost"),
        "POSTGRES_PORT": os.environ.get("POSTGRES_PORT", "5432"),
        "POSTGRES_USER": os.environ.get("POSTGRES_TEST_USER", "testuser"),
        "POSTGRES_PASSWORD": os.environ.get("POSTGRES_TEST_PASSWORD", "testpass"),
        "POSTGRES_DB": os.environ.get("POSTGRES_TEST_DB", "testdb"),
        "OPENAI_API_KEY": os.environ.get("OPENAI_API_KEY", "test-api-key"),
        "DEBUG": "true",
    }
    os.environ.update(test_env)

    yield

    os.environ.clear()
    os.environ.update(original_env)


# ============================================================================
# Settings
# ============================================================================


def make_settings(**overrides: Any) -> IngestionSettings:
    """Ingestion settings without politeness delays or retry waits."""
    values = {
        "POLITE_DELAY_MIN_SECONDS": 0.0,
        "POLITE_DELAY_MAX_SECONDS": 0.0,
        "PERSISTENCE_RETRY_BASE_SECONDS": 0.0,
        "LLM_RETRY_BASE_MS": 0,
        "LLM_RETRY_MAX_MS": 0,
        "SHUTDOWN_GRACE_SECONDS": 2.0,
        "PROGRESS_EMIT_INTERVAL_SECONDS": 0.0,
        "PROGRESS_EMIT_MIN_DELTA": 0.0,
    }
    values.update(overrides)
    return IngestionSettings(**values)


@pytest.fixture
def test_settings() -> IngestionSettings:
    return make_settings()


# ============================================================================
# Source Items
# ============================================================================

_ITEM_TYPES = {
    SourceCategory.PAPERS: PaperItem,
    SourceCategory.REPOS: RepoItem,
    SourceCategory.DOCS: DocItem,
    SourceCategory.VIDEOS: VideoItem,
    SourceCategory.EXPERT: ExpertItem,
    SourceCategory.REPORTS: ReportItem,
}


def make_item(
    category: SourceCategory = SourceCategory.PAPERS,
    title: str = "Introduction to Neural Networks",
    summary: str = "Neural networks and gradient descent explained.",
    score: float = 0.9,
    url: Optional[str] = None,
    **fields: Any,
):
    """Build a scored source item of the given category."""
    item_type = _ITEM_TYPES[SourceCategory(category)]
    return item_type(
        title=title,
        url=url or f"https://example.com/{category.value}/{abs(hash((title, summary))) % 10**8}",
        summary=summary,
        relevance_score=score,
        published_at=fields.pop("published_at", datetime(2024, 1, 1, tzinfo=timezone.utc)),
        **fields,
    )


# ============================================================================
# Adapters
# ============================================================================


class StaticAdapter(BaseSourceAdapter):
    """Adapter returning prepared items, optionally after a delay or with an error."""

    def __init__(
        self,
        category: SourceCategory,
        items: Optional[list] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        started: Optional[asyncio.Event] = None,
        config: Optional[IngestionSettings] = None,
    ):
        super().__init__(config=config)
        self.CATEGORY = SourceCategory(category)
        self.items = list(items or [])
        self.delay = delay
        self.error = error
        self.started = started
        self.calls = 0

    async def fetch_items(self, domain: str, queries: list[str]) -> list:
        return list(self.items)

    async def collect(self, domain: str, now: Optional[datetime] = None) -> list:
        self.calls += 1
        if self.started is not None:
            self.started.set()
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return list(self.items)


def make_registry(
    items_by_category: Optional[dict[SourceCategory, list]] = None,
    config: Optional[IngestionSettings] = None,
    **adapter_kwargs: Any,
) -> AdapterRegistry:
    """Registry with a StaticAdapter for every category."""
    items_by_category = items_by_category or {}
    registry = AdapterRegistry()
    for category in SourceCategory:
        registry.register(
            StaticAdapter(category, items_by_category.get(category, []), config=config, **adapter_kwargs)
        )
    return registry


# ============================================================================
# LLM
# ============================================================================


def make_usage(tokens: int = 100, operation: str = "test") -> LLMUsage:
    return LLMUsage(
        model="openai/gpt-4o-mini",
        provider="openai",
        prompt_tokens=tokens // 2,
        completion_tokens=tokens - tokens // 2,
        total_tokens=tokens,
        operation=operation,
    )


class ScriptedLLM:
    """
    Stand-in for LLMClient answering by operation.

    responses maps an operation value to a list of results consumed in
    order (the last one repeats). A result that is an exception is raised.
    """

    def __init__(self, responses: Optional[dict[str, list]] = None):
        self.responses = responses or {}
        self.calls: list[str] = []

    async def complete(self, operation, messages, **kwargs):
        key = getattr(operation, "value", operation)
        self.calls.append(key)
        queue = self.responses.get(key)
        if not queue:
            raise RuntimeError(f"no scripted response for {key}")
        result = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(result, Exception):
            raise result
        return result, make_usage(operation=key)

    def health_check(self) -> dict[str, Any]:
        return {"status": "healthy", "providers": ["OpenAI"], "model": "openai/gpt-4o-mini"}


@pytest.fixture
def mock_llm_client() -> MagicMock:
    """
    Create a mock LLM client for unit testing.

    complete() returns an empty JSON object and a usage record.
    """
    mock = MagicMock()
    mock.complete = AsyncMock(return_value=({}, make_usage()))
    mock.health_check = MagicMock(return_value={"status": "healthy", "providers": ["OpenAI"]})
    return mock


# ============================================================================
# Persistence
# ============================================================================


@pytest.fixture
def mock_db_session() -> MagicMock:
    """
    Create a mock database session for unit testing.
    """
    mock = MagicMock()
    mock.execute = AsyncMock(return_value=MagicMock())
    mock.commit = AsyncMock()
    mock.rollback = AsyncMock()
    mock.close = AsyncMock()
    return mock


@pytest.fixture
def mock_session_factory(mock_db_session: MagicMock) -> MagicMock:
    """Callable returning an async context manager that yields mock_db_session."""
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=mock_db_session)
    context.__aexit__ = AsyncMock(return_value=False)
    return MagicMock(return_value=context)


@pytest.fixture
def mock_persistence() -> MagicMock:
    """Persistence gateway double recording the sessions it was asked to save."""
    mock = MagicMock()
    mock.saved = []

    async def save_session(session):
        mock.saved.append(session.model_copy(deep=True))
        return str(len(mock.saved))

    mock.save_session = AsyncMock(side_effect=save_session)
    mock.save_documents = AsyncMock(return_value=0)
    mock.load_session = AsyncMock(return_value=None)
    mock.delete_session = AsyncMock(return_value=False)
    mock.list_completed = AsyncMock(return_value=([], 0))
    mock.load_latest_graph = AsyncMock(return_value=None)
    mock.ping = AsyncMock(return_value=True)
    return mock
