"""
Technical Documentation Adapter

Crawls curated documentation sites for a domain with the shared headless
browser pool. When the pool cannot provide a browser (or the crawl fails)
the start page is fetched over plain HTTP instead and the resulting items
are marked with source_provider=fallback.

Usage:
    from app.pipelines.sources.docs import DocsAdapter

    adapter = DocsAdapter(browser_pool=pool)
    docs = await adapter.collect("machine learning")
"""

from typing import Optional

import httpx

from app.config.ingestion import IngestionSettings
from app.enums.ingestion import SourceCategory, SourceProvider
from app.models.sources import DocItem
from app.pipelines.base import BaseSourceAdapter, matched_keywords
from app.pipelines.utils.browser_pool import BrowserPool, BrowserUnavailableError
from app.pipelines.utils.http_fetcher import FetchedPage, FetchError, fetch_page
from app.pipelines.utils.text_utils import truncate_text
from app.services.ingestion.catalog import sources_for_domain

MAX_SITES = 4
SUMMARY_MAX_CHARS = 500
MAX_CODE_BLOCKS = 5


class DocsAdapter(BaseSourceAdapter):
    """Documentation crawler with an HTTP fallback."""

    CATEGORY = SourceCategory.DOCS
    MAX_QUERIES = 1

    def __init__(
        self,
        browser_pool: Optional[BrowserPool] = None,
        config: Optional[IngestionSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the docs adapter.

        Args:
            browser_pool: Shared browser pool; None forces the HTTP path
            config: Ingestion settings
            http_client: Optional shared client for the fallback path
        """
        super().__init__(config=config, http_client=http_client)
        self.browser_pool = browser_pool

    def site_urls(self, domain: str) -> list[str]:
        return sources_for_domain(domain).get("docs", [])[:MAX_SITES]

    async def fetch_items(self, domain: str, queries: list[str]) -> list[DocItem]:
        search_term = queries[0] if queries else domain
        items: dict[str, DocItem] = {}

        for index, site in enumerate(self.site_urls(domain)):
            if index > 0:
                await self.polite_delay()
            for item in await self._collect_site(site, domain, search_term):
                items.setdefault(item.url, item)

        return list(items.values())

    async def _collect_site(self, site: str, domain: str, search_term: str) -> list[DocItem]:
        if self.config.BROWSER_ENABLED and self.browser_pool is not None:
            try:
                pages = await self.browser_pool.crawl_site(site, domain, max_pages=self.config.MAX_PAGES_PER_SITE)
                return [page_to_doc(page, domain, search_term, SourceProvider.REAL) for page in pages]
            except BrowserUnavailableError as e:
                self.logger.warning(f"[{domain}] Browser unavailable for {site}, using HTTP fallback: {e}")
            except Exception as e:
                self.logger.warning(f"[{domain}] Browser crawl of {site} failed, using HTTP fallback: {type(e).__name__}: {e}")

        return await self._fetch_fallback(site, domain, search_term)

    async def _fetch_fallback(self, site: str, domain: str, search_term: str) -> list[DocItem]:
        try:
            async with self.http_client() as client:
                page = await fetch_page(site, client=client)
        except FetchError as e:
            self.logger.warning(f"[{domain}] HTTP fallback failed: {e}")
            return []
        return [page_to_doc(page, domain, search_term, SourceProvider.FALLBACK)]


def page_to_doc(page: FetchedPage, domain: str, search_term: str, provider: SourceProvider) -> DocItem:
    """Convert a fetched page into an unscored DocItem."""
    return DocItem(
        title=page.title,
        url=page.url,
        summary=truncate_text(page.content, SUMMARY_MAX_CHARS),
        headings=page.headings,
        word_count=page.word_count,
        code_blocks=page.code_blocks[:MAX_CODE_BLOCKS],
        content=page.content,
        search_term=search_term,
        source_provider=provider,
        keywords=matched_keywords(f"{page.title} {' '.join(page.headings)} {page.content}", domain),
    )
