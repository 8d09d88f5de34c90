"""
Video Tutorial Adapter

Searches YouTube through the Data API v3 when YOUTUBE_API_KEY is set.
Without a key, or once the API answers 403/429 (quota or rate limit),
results for the remaining terms are simulated deterministically from the
search term and marked with source_provider=simulated.

Usage:
    from app.pipelines.sources.videos import VideoAdapter

    adapter = VideoAdapter(api_key=settings.YOUTUBE_API_KEY)
    videos = await adapter.collect("machine learning")
"""

import re
from datetime import datetime, timedelta, timezone
from typing import Optional

import httpx

from app.config.ingestion import IngestionSettings
from app.enums.ingestion import SourceCategory, SourceProvider
from app.models.sources import VideoItem
from app.pipelines.base import BaseSourceAdapter, matched_keywords, parse_timestamp
from app.pipelines.utils.hash_utils import calculate_content_hash, seeded_rng
from app.services.ingestion.catalog import (
    DEFAULT_VIDEO_TITLE_TEMPLATES,
    SIMULATED_CHANNELS,
    SIMULATED_VIDEO_TITLES,
)

YOUTUBE_SEARCH_URL = "https://www.googleapis.com/youtube/v3/search"
YOUTUBE_VIDEOS_URL = "https://www.googleapis.com/youtube/v3/videos"
YOUTUBE_MAX_RESULTS = 25
QUOTA_STATUS_CODES = (403, 429)

SIMULATED_PER_TERM = 5

ISO_DURATION_PATTERN = re.compile(r"^P(?:(\d+)D)?(?:T(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?)?$")


class QuotaExceededError(Exception):
    """Raised when the YouTube API refuses further requests."""


def parse_iso_duration(value: Optional[str]) -> int:
    """
    Convert an ISO-8601 duration (e.g. "PT1H2M3S") to seconds.

    Unparseable values yield 0.
    """
    match = ISO_DURATION_PATTERN.match((value or "").strip())
    if not match:
        return 0
    days, hours, minutes, seconds = (int(part) if part else 0 for part in match.groups())
    return days * 86400 + hours * 3600 + minutes * 60 + seconds


def simulated_titles(term: str) -> list[str]:
    """Titles for a simulated search, from the curated table or templates."""
    term_lower = term.lower()
    matches = [key for key in SIMULATED_VIDEO_TITLES if key in term_lower]
    if matches:
        return list(SIMULATED_VIDEO_TITLES[max(matches, key=len)])
    return [template.format(term=term.title()) for template in DEFAULT_VIDEO_TITLE_TEMPLATES]


def simulate_videos(term: str, now: Optional[datetime] = None) -> list[VideoItem]:
    """
    Deterministic stand-in results for one search term.

    The same term always produces the same titles, channels, counts and
    durations; publication dates fall within the year before `now`.

    Args:
        term: Search term
        now: Reference time for publication dates

    Returns:
        Five unscored VideoItems
    """
    now = now or datetime.now(timezone.utc)
    seed = calculate_content_hash(term.lower())
    rng = seeded_rng(term)
    videos = []

    for index, title in enumerate(simulated_titles(term)[:SIMULATED_PER_TERM]):
        views = rng.randint(10_000, 510_000)
        description = f"Comprehensive tutorial covering {term}. Perfect for beginners and intermediate learners."
        videos.append(
            VideoItem(
                title=title,
                url=f"https://www.youtube.com/watch?v=sim{seed[:8]}{index}",
                summary=description,
                published_at=now - timedelta(days=rng.randint(0, 364)),
                channel=rng.choice(SIMULATED_CHANNELS),
                duration_s=rng.randint(600, 3000),
                views=views,
                likes=int(views * rng.uniform(0.01, 0.06)),
                search_term=term,
                source_provider=SourceProvider.SIMULATED,
                keywords=[term, "tutorial", "programming", "course", "education"],
            )
        )

    return videos


class VideoAdapter(BaseSourceAdapter):
    """YouTube search with deterministic simulation when unavailable."""

    CATEGORY = SourceCategory.VIDEOS
    MAX_QUERIES = 3

    def __init__(
        self,
        api_key: Optional[str] = None,
        config: Optional[IngestionSettings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        super().__init__(config=config, http_client=http_client)
        self.api_key = api_key

    async def fetch_items(self, domain: str, queries: list[str]) -> list[VideoItem]:
        videos: dict[str, VideoItem] = {}
        use_api = bool(self.api_key)
        if not use_api:
            self.logger.info(f"[{domain}] No YouTube API key configured, simulating video results")

        async with self.http_client() as client:
            for index, term in enumerate(queries):
                found: list[VideoItem] = []
                if use_api:
                    if index > 0:
                        await self.polite_delay()
                    try:
                        found = await self._search(client, domain, term)
                    except QuotaExceededError as e:
                        self.logger.warning(f"[{domain}] {e}; simulating remaining terms")
                        use_api = False
                    except httpx.HTTPError as e:
                        self.logger.warning(f"[{domain}] YouTube query {term!r} failed: {type(e).__name__}")
                        continue
                if not use_api:
                    found = simulate_videos(term)
                for video in found:
                    videos.setdefault(video.url, video)

        return list(videos.values())

    async def _get(self, client: httpx.AsyncClient, url: str, params: dict) -> dict:
        response = await client.get(url, params={"key": self.api_key, **params})
        if response.status_code in QUOTA_STATUS_CODES:
            raise QuotaExceededError(f"YouTube API returned {response.status_code}")
        response.raise_for_status()
        return response.json()

    async def _search(self, client: httpx.AsyncClient, domain: str, term: str) -> list[VideoItem]:
        search = await self._get(
            client,
            YOUTUBE_SEARCH_URL,
            {
                "q": f"{term} tutorial programming course",
                "part": "snippet",
                "type": "video",
                "order": "relevance",
                "maxResults": YOUTUBE_MAX_RESULTS,
                "videoDuration": "medium",
                "safeSearch": "strict",
                "relevanceLanguage": "en",
            },
        )
        video_ids = [
            entry["id"]["videoId"]
            for entry in search.get("items", [])
            if isinstance(entry.get("id"), dict) and entry["id"].get("videoId")
        ]
        if not video_ids:
            return []

        details = await self._get(
            client,
            YOUTUBE_VIDEOS_URL,
            {"part": "contentDetails,statistics,snippet", "id": ",".join(video_ids)},
        )
        return [video_from_api(raw, domain, term) for raw in details.get("items", [])]


def video_from_api(raw: dict, domain: str, term: str) -> VideoItem:
    """Map one YouTube /videos entry onto a VideoItem."""
    snippet = raw.get("snippet", {})
    statistics = raw.get("statistics", {})
    title = snippet.get("title", "")
    description = snippet.get("description", "")
    tags = snippet.get("tags") or []

    return VideoItem(
        title=title,
        url=f"https://www.youtube.com/watch?v={raw.get('id', '')}",
        summary=description,
        published_at=parse_timestamp(snippet.get("publishedAt")),
        channel=snippet.get("channelTitle", ""),
        duration_s=parse_iso_duration(raw.get("contentDetails", {}).get("duration")),
        views=int(statistics.get("viewCount", 0) or 0),
        likes=int(statistics.get("likeCount", 0) or 0),
        search_term=term,
        keywords=matched_keywords(f"{title} {description}", domain, extra=tags),
    )
