"""
Abstract Base Source Adapter

All source adapters inherit from BaseSourceAdapter, which enforces a
consistent collect() flow and provides shared utilities:

- Query building from the curated query map
- Scoring and difficulty classification of every fetched item
- Per-category threshold filtering and ranking
- Politeness delay between external calls
- Scoped HTTP client (injectable for tests)

Collect flow:
    build queries → fetch_items → score → filter (threshold) → sort → truncate

Adapters never retry and never swallow cancellation: timeouts are applied
by the orchestrator, and an adapter that raises contributes nothing.

Usage:
    from app.pipelines.base import AdapterRegistry

    registry = AdapterRegistry()
    registry.register(PaperAdapter())
    items = await registry.get(SourceCategory.PAPERS).collect("machine learning")
"""

import asyncio
import logging
import random
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Optional

import httpx

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.enums.ingestion import SourceCategory
from app.models.sources import SourceItemBase
from app.pipelines.utils.http_fetcher import create_http_client
from app.services.ingestion.catalog import domain_keywords, queries_for_domain
from app.services.ingestion.scoring import passes_threshold, score_item


def build_queries(domain: str) -> list[str]:
    """
    Search queries for a domain.

    Exact lookup in the curated query map; otherwise "{domain} tutorial",
    "{domain} programming guide" and "{domain} implementation".
    """
    return queries_for_domain(domain)


def rank_items(items: Iterable[SourceItemBase]) -> list[SourceItemBase]:
    """Sort by score descending, then id for a deterministic order."""
    return sorted(items, key=lambda item: (-item.relevance_score, item.id))


def apply_category_filter(
    items: Iterable[SourceItemBase],
    category: SourceCategory,
    config: Optional[IngestionSettings] = None,
) -> list[SourceItemBase]:
    """
    Keep items meeting the category threshold, ranked and truncated.

    Idempotent: filtering an already-filtered list returns it unchanged.

    Args:
        items: Scored items of one category
        category: Category whose threshold and limit apply
        config: Ingestion settings (defaults to the global instance)

    Returns:
        Surviving items, best first, at most limit_for(category) long
    """
    config = config or ingestion_settings
    kept = [item for item in items if passes_threshold(item, config)]
    return rank_items(kept)[: config.limit_for(category)]


class BaseSourceAdapter(ABC):
    """Abstract base class for all source adapters."""

    # Subclasses set their category and query budget
    CATEGORY: SourceCategory
    MAX_QUERIES: int = 3

    def __init__(
        self,
        config: Optional[IngestionSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize the adapter.

        Args:
            config: Ingestion settings (thresholds, limits, delays)
            http_client: Optional shared client; when omitted each collect
                opens and closes its own
        """
        self.config: IngestionSettings = config or ingestion_settings
        self._http_client = http_client
        self.logger: logging.Logger = logging.getLogger(self.__class__.__name__)

    @property
    def category(self) -> SourceCategory:
        return self.CATEGORY

    @property
    def threshold(self) -> float:
        return self.config.threshold_for(self.CATEGORY)

    @property
    def limit(self) -> int:
        return self.config.limit_for(self.CATEGORY)

    def build_queries(self, domain: str) -> list[str]:
        """Queries this adapter will run, capped at MAX_QUERIES."""
        return build_queries(domain)[: self.MAX_QUERIES]

    @abstractmethod
    async def fetch_items(self, domain: str, queries: list[str]) -> list[SourceItemBase]:
        """
        Retrieve unscored items from the provider.

        Args:
            domain: Domain being ingested
            queries: Search queries (already capped)

        Returns:
            Items of this adapter's category; scores are assigned by collect()
        """
        pass

    async def collect(self, domain: str, now: Optional[datetime] = None) -> list[SourceItemBase]:
        """
        Run the full collect flow for one domain.

        Args:
            domain: Domain being ingested
            now: Reference time for recency scoring

        Returns:
            Filtered, ranked and truncated items
        """
        queries = self.build_queries(domain)
        raw = await self.fetch_items(domain, queries)
        scored = [score_item(item, domain, now) for item in raw]
        kept = apply_category_filter(scored, self.CATEGORY, self.config)
        self.logger.info(
            f"[{domain}] {self.CATEGORY.value}: {len(raw)} fetched, {len(kept)} kept "
            f"(threshold {self.threshold:.2f}, limit {self.limit})"
        )
        return kept

    async def polite_delay(self) -> None:
        """Sleep a random 1-3 s (configurable) between external calls."""
        low = self.config.POLITE_DELAY_MIN_SECONDS
        high = self.config.POLITE_DELAY_MAX_SECONDS
        if high > 0:
            await asyncio.sleep(random.uniform(low, high))

    @asynccontextmanager
    async def http_client(self, **kwargs) -> AsyncIterator[httpx.AsyncClient]:
        """Yield the injected client, or a fresh one closed on exit."""
        if self._http_client is not None:
            yield self._http_client
        else:
            async with create_http_client(**kwargs) as client:
                yield client


class AdapterRegistry:
    """
    Registry of source adapters, iterated in category order.

    Example:
        >>> registry = AdapterRegistry()
        >>> registry.register(PaperAdapter())
        >>> registry.register(RepoAdapter())
        >>> [a.category.value for a in registry.adapters()]
        ['papers', 'repos']
    """

    def __init__(self) -> None:
        self._adapters: dict[SourceCategory, BaseSourceAdapter] = {}
        self.logger: logging.Logger = logging.getLogger(self.__class__.__name__)

    def register(self, adapter: BaseSourceAdapter) -> None:
        """
        Register an adapter, replacing any previous one for its category.

        Args:
            adapter: The adapter instance to register
        """
        self._adapters[adapter.category] = adapter
        self.logger.info(f"Registered adapter: {adapter.__class__.__name__} ({adapter.category.value})")

    def get(self, category: SourceCategory) -> Optional[BaseSourceAdapter]:
        return self._adapters.get(SourceCategory(category))

    def adapters(self, categories: Optional[Iterable[SourceCategory]] = None) -> list[BaseSourceAdapter]:
        """
        Registered adapters in category order.

        Args:
            categories: Optional subset of categories to return

        Returns:
            Adapters ordered papers, repos, docs, videos, expert, reports
        """
        wanted = {SourceCategory(c) for c in categories} if categories else None
        return [
            self._adapters[category]
            for category in SourceCategory
            if category in self._adapters and (wanted is None or category in wanted)
        ]

    def list_adapters(self) -> list[dict[str, Any]]:
        """
        List registered adapters with their budgets.

        Returns:
            List of dicts with name, category, threshold and limit
        """
        return [
            {
                "name": adapter.__class__.__name__,
                "category": adapter.category.value,
                "threshold": adapter.threshold,
                "limit": adapter.limit,
            }
            for adapter in self.adapters()
        ]


# =============================================================================
# Item Helpers
# =============================================================================


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp (with optional trailing Z); None if invalid."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def matched_keywords(text: str, domain: str, extra: Iterable[str] = ()) -> list[str]:
    """
    Curated domain keywords (plus extra candidates) that occur in text.

    Used to give every item a keyword set the processor can fall back on.
    """
    text_lower = (text or "").lower()
    candidates = domain_keywords(domain) + [e for e in extra if e]
    return [kw for kw in dict.fromkeys(candidates) if kw.lower() in text_lower]
