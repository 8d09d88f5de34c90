"""
Code Repository Adapter

Searches the GitHub repository search API for Python repositories,
sorted by stars.

Without GITHUB_ACCESS_TOKEN the unauthenticated rate limit is low, so
only the first query is run and a warning is logged.

Usage:
    from app.pipelines.sources.repos import RepoAdapter

    adapter = RepoAdapter(access_token=settings.GITHUB_ACCESS_TOKEN)
    repos = await adapter.collect("machine learning")
"""

from typing import Optional

import httpx

from app.config.ingestion import IngestionSettings
from app.enums.ingestion import SourceCategory
from app.models.sources import RepoItem
from app.pipelines.base import BaseSourceAdapter, matched_keywords, parse_timestamp
from app.services.ingestion.catalog import GITHUB_TERMS

GITHUB_SEARCH_URL = "https://api.github.com/search/repositories"
GITHUB_PER_PAGE = 20


class RepoAdapter(BaseSourceAdapter):
    """GitHub repository search."""

    CATEGORY = SourceCategory.REPOS
    MAX_QUERIES = 3

    def __init__(
        self,
        access_token: Optional[str] = None,
        config: Optional[IngestionSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the repo adapter.

        Args:
            access_token: Optional GitHub token; raises the rate limit
            config: Ingestion settings
            http_client: Optional shared client
        """
        super().__init__(config=config, http_client=http_client)
        self.access_token = access_token

    def build_queries(self, domain: str) -> list[str]:
        curated = GITHUB_TERMS.get(domain.lower().strip())
        queries = list(curated) if curated else super().build_queries(domain)
        if not self.access_token:
            self.logger.warning("No GitHub token configured; rate-limited to one search query")
            return queries[:1]
        return queries[: self.MAX_QUERIES]

    def _headers(self) -> dict[str, str]:
        headers = {"Accept": "application/vnd.github.v3+json"}
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    async def fetch_items(self, domain: str, queries: list[str]) -> list[RepoItem]:
        repos: dict[str, RepoItem] = {}

        async with self.http_client() as client:
            for index, query in enumerate(queries):
                if index > 0:
                    await self.polite_delay()
                try:
                    response = await client.get(
                        GITHUB_SEARCH_URL,
                        params={
                            "q": f"{query} language:python",
                            "sort": "stars",
                            "order": "desc",
                            "per_page": GITHUB_PER_PAGE,
                        },
                        headers=self._headers(),
                    )
                    response.raise_for_status()
                except httpx.HTTPError as e:
                    self.logger.warning(f"[{domain}] GitHub query {query!r} failed: {type(e).__name__}")
                    continue

                for raw in response.json().get("items", []):
                    repo = repo_from_api(raw, domain, query)
                    repos.setdefault(repo.url, repo)

        return list(repos.values())


def repo_from_api(raw: dict, domain: str, query: str) -> RepoItem:
    """Map one GitHub search result onto a RepoItem."""
    name = raw.get("name") or raw.get("full_name") or "unknown"
    description = raw.get("description") or ""
    topics = raw.get("topics") or []
    updated = parse_timestamp(raw.get("updated_at"))

    return RepoItem(
        title=name,
        url=raw.get("html_url") or f"https://github.com/{raw.get('full_name', name)}",
        summary=description,
        published_at=updated,
        stars=raw.get("stargazers_count") or 0,
        forks=raw.get("forks_count") or 0,
        language=raw.get("language"),
        topics=topics,
        last_updated=updated,
        search_term=query,
        keywords=matched_keywords(f"{name} {description} {' '.join(topics)}", domain, extra=topics),
    )
