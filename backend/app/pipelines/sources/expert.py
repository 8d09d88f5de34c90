"""
Expert Content Adapter

Collects long-form expert articles from curated blogs. The landing page
of each site is fetched over HTTP, relevant article links are selected,
and each article is extracted with Trafilatura (title, author, date and
main text).

Articles are kept only when they carry an author (or an inline "by"
byline) and run longer than MIN_WORDS words; the category threshold is
applied afterwards by collect().

Usage:
    from app.pipelines.sources.expert import ExpertAdapter

    adapter = ExpertAdapter()
    posts = await adapter.collect("machine learning")
"""

import asyncio
from typing import Any, Optional

import httpx
from trafilatura import bare_extraction

from app.enums.ingestion import SourceCategory
from app.models.sources import ExpertItem
from app.pipelines.base import BaseSourceAdapter, matched_keywords, parse_timestamp
from app.pipelines.utils.http_fetcher import FetchError, fetch_html, parse_html
from app.pipelines.utils.text_utils import count_words, truncate_text
from app.services.ingestion.catalog import SKIP_PATHS, sources_for_domain
from app.services.ingestion.scoring import select_relevant_links

MAX_SITES = 3
PAGES_PER_SITE = 5
MIN_WORDS = 800
SUMMARY_MAX_CHARS = 500

# Blog and news paths are where expert articles live
ARTICLE_SKIP_PATHS = tuple(p for p in SKIP_PATHS if p not in ("blog", "news"))


async def extract_article(html: str) -> dict[str, Any]:
    """
    Run Trafilatura's metadata-aware extraction off the event loop.

    Returns:
        Dict with title, author, date and text (empty if nothing extracted)
    """
    extraction = await asyncio.to_thread(
        bare_extraction,
        html,
        include_comments=False,
        include_tables=True,
        include_links=False,
    )
    if extraction is None:
        return {}
    # Newer Trafilatura releases return a Document instead of a dict
    if hasattr(extraction, "as_dict"):
        extraction = extraction.as_dict()
    return dict(extraction)


def has_byline(author: Optional[str], text: str) -> bool:
    return bool(author) or "by " in text[:2000].lower()


class ExpertAdapter(BaseSourceAdapter):
    """Curated expert blog crawler."""

    CATEGORY = SourceCategory.EXPERT
    MAX_QUERIES = 1

    def site_urls(self, domain: str) -> list[str]:
        return sources_for_domain(domain).get("expert", [])[:MAX_SITES]

    async def fetch_items(self, domain: str, queries: list[str]) -> list[ExpertItem]:
        search_term = queries[0] if queries else domain
        items: dict[str, ExpertItem] = {}

        async with self.http_client() as client:
            for site in self.site_urls(domain):
                try:
                    landing = await fetch_html(site, client=client)
                except FetchError as e:
                    self.logger.warning(f"[{domain}] Expert site unavailable: {e}")
                    continue

                links = select_relevant_links(
                    parse_html(site, landing).links,
                    site,
                    limit=PAGES_PER_SITE,
                    skip_paths=ARTICLE_SKIP_PATHS,
                )
                for url in links:
                    await self.polite_delay()
                    item = await self._fetch_article(client, url, domain, search_term)
                    if item is not None:
                        items.setdefault(item.url, item)

        return list(items.values())

    async def _fetch_article(
        self,
        client: httpx.AsyncClient,
        url: str,
        domain: str,
        search_term: str,
    ) -> Optional[ExpertItem]:
        try:
            html = await fetch_html(url, client=client)
        except FetchError as e:
            self.logger.debug(f"[{domain}] Skipping article: {e}")
            return None

        extraction = await extract_article(html)
        text = extraction.get("text") or ""
        author = extraction.get("author")
        word_count = count_words(text)

        if not has_byline(author, text) or word_count <= MIN_WORDS:
            self.logger.debug(f"[{domain}] Rejected {url}: author={bool(author)}, words={word_count}")
            return None

        title = extraction.get("title") or url
        return ExpertItem(
            title=title,
            url=url,
            summary=truncate_text(text, SUMMARY_MAX_CHARS),
            published_at=parse_timestamp(extraction.get("date")),
            author=author,
            word_count=word_count,
            content=text,
            search_term=search_term,
            keywords=matched_keywords(f"{title} {text}", domain),
        )
