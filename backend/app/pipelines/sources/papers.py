"""
Academic Paper Adapter

Searches the arXiv Atom API for papers in the machine learning, AI,
statistics and computer vision categories.

Usage:
    from app.pipelines.sources.papers import PaperAdapter

    adapter = PaperAdapter()
    papers = await adapter.collect("machine learning")
"""

import httpx
from bs4 import BeautifulSoup

from app.enums.ingestion import SourceCategory
from app.models.sources import PaperItem
from app.pipelines.base import BaseSourceAdapter, matched_keywords, parse_timestamp
from app.pipelines.utils.text_utils import normalize_whitespace, truncate_text
from app.services.ingestion.catalog import ACADEMIC_TERMS

ARXIV_API_URL = "http://export.arxiv.org/api/query"
ARXIV_CATEGORIES = ("cs.LG", "cs.AI", "stat.ML", "cs.CV")
ARXIV_MAX_RESULTS = 25
SUMMARY_MAX_CHARS = 600


class PaperAdapter(BaseSourceAdapter):
    """
    arXiv paper search.

    Runs up to three queries, preferring the curated academic term map
    over the general query map.
    """

    CATEGORY = SourceCategory.PAPERS
    MAX_QUERIES = 3

    def build_queries(self, domain: str) -> list[str]:
        curated = ACADEMIC_TERMS.get(domain.lower().strip())
        if curated:
            return list(curated[: self.MAX_QUERIES])
        return super().build_queries(domain)

    async def fetch_items(self, domain: str, queries: list[str]) -> list[PaperItem]:
        papers: dict[str, PaperItem] = {}

        async with self.http_client() as client:
            for index, query in enumerate(queries):
                if index > 0:
                    await self.polite_delay()
                try:
                    for paper in await self._search(client, domain, query):
                        papers.setdefault(paper.url, paper)
                except httpx.HTTPError as e:
                    self.logger.warning(f"[{domain}] arXiv query {query!r} failed: {type(e).__name__}")

        return list(papers.values())

    async def _search(self, client: httpx.AsyncClient, domain: str, query: str) -> list[PaperItem]:
        categories = " OR ".join(f"cat:{c}" for c in ARXIV_CATEGORIES)
        response = await client.get(
            ARXIV_API_URL,
            params={
                "search_query": f'all:"{query}" AND ({categories})',
                "start": 0,
                "max_results": ARXIV_MAX_RESULTS,
                "sortBy": "relevance",
                "sortOrder": "descending",
            },
        )
        response.raise_for_status()
        return parse_arxiv_feed(response.text, domain, query)


def parse_arxiv_feed(xml: str, domain: str, query: str) -> list[PaperItem]:
    """
    Parse an arXiv Atom feed into PaperItems.

    Entries without a title or summary are skipped.

    Args:
        xml: Atom feed body
        domain: Domain being ingested (for keyword tagging)
        query: Query that produced the feed

    Returns:
        Unscored PaperItems
    """
    soup = BeautifulSoup(xml, "xml")
    papers = []

    for entry in soup.find_all("entry"):
        title_tag = entry.find("title")
        summary_tag = entry.find("summary")
        if title_tag is None or summary_tag is None:
            continue

        title = normalize_whitespace(title_tag.get_text())
        summary = normalize_whitespace(summary_tag.get_text())
        if not title or not summary:
            continue

        id_tag = entry.find("id")
        category_tag = entry.find("category")
        published_tag = entry.find("published")
        authors = [
            normalize_whitespace(name.get_text())
            for name in (author.find("name") for author in entry.find_all("author"))
            if name is not None
        ]

        papers.append(
            PaperItem(
                title=title,
                url=id_tag.get_text().strip() if id_tag else "",
                summary=truncate_text(summary, SUMMARY_MAX_CHARS),
                published_at=parse_timestamp(published_tag.get_text() if published_tag else None),
                authors=authors,
                category_label=category_tag.get("term", "") if category_tag else "",
                search_term=query,
                keywords=matched_keywords(f"{title} {summary}", domain),
            )
        )

    return papers
