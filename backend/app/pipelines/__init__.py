"""
Source Collection Pipelines Package

This package contains the source adapters that collect learning material
for a domain, one adapter per content category.

Adapters (via registry, in category order):
- PaperAdapter: arXiv papers
- RepoAdapter: GitHub repositories (token optional, raises rate limits)
- DocsAdapter: Documentation sites, crawled with the shared browser pool
- VideoAdapter: YouTube tutorials (simulated without an API key)
- ExpertAdapter: Expert blog articles extracted with Trafilatura
- ReportAdapter: Simulated industry reports

Core Types:
- BaseSourceAdapter: Shared collect flow (query, fetch, score, filter)
- AdapterRegistry: Category-ordered adapter lookup

Usage:
    from app.pipelines import get_registry

    # Get the default registry (singleton, lazily initialized)
    registry = get_registry(browser_pool=pool)

    for adapter in registry.adapters():
        items = await adapter.collect("machine learning")

    # Direct adapter usage (bypasses registry)
    from app.pipelines import PaperAdapter
    papers = await PaperAdapter().collect("machine learning")
"""

from typing import Optional

from app.pipelines.base import (
    AdapterRegistry,
    BaseSourceAdapter,
    apply_category_filter,
    build_queries,
)
from app.pipelines.sources import (
    DocsAdapter,
    ExpertAdapter,
    PaperAdapter,
    ReportAdapter,
    RepoAdapter,
    VideoAdapter,
)
from app.pipelines.utils.browser_pool import BrowserPool

__all__ = [
    # Core types
    "AdapterRegistry",
    "BaseSourceAdapter",
    "apply_category_filter",
    "build_queries",
    # Registry access
    "create_registry",
    "get_registry",
    "reset_registry",
    # Adapters
    "PaperAdapter",
    "RepoAdapter",
    "DocsAdapter",
    "VideoAdapter",
    "ExpertAdapter",
    "ReportAdapter",
]

# Singleton registry instance
_registry: Optional[AdapterRegistry] = None


def get_registry(browser_pool: Optional[BrowserPool] = None) -> AdapterRegistry:
    """
    Get the default adapter registry (singleton).

    The registry is lazily initialized on first access and configured with
    all six adapters using settings from app.config. The browser pool is
    only consulted on first initialization.

    Args:
        browser_pool: Shared browser pool handed to the docs adapter

    Returns:
        Pre-configured AdapterRegistry with all adapters registered.
    """
    global _registry

    if _registry is None:
        _registry = create_registry(browser_pool)

    return _registry


def create_registry(browser_pool: Optional[BrowserPool] = None) -> AdapterRegistry:
    """
    Create and configure a new adapter registry.

    Every category gets an adapter. Missing API credentials degrade the
    affected adapter (single GitHub query, simulated videos) rather than
    removing it.
    """
    from app.config import settings

    registry = AdapterRegistry()

    registry.register(PaperAdapter())
    registry.register(RepoAdapter(access_token=settings.GITHUB_ACCESS_TOKEN or None))
    registry.register(DocsAdapter(browser_pool=browser_pool))
    registry.register(VideoAdapter(api_key=settings.YOUTUBE_API_KEY or None))
    registry.register(ExpertAdapter())
    registry.register(ReportAdapter())

    return registry


def reset_registry() -> None:
    """
    Reset the singleton registry (useful for testing).

    The next call to get_registry() will create a fresh instance.
    """
    global _registry
    _registry = None
