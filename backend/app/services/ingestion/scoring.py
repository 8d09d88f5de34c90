"""
Relevance Scorer

Computes a relevance score in [0, 1] for every source item by summing
weighted signals and applying a freshness multiplier once at the end.
Difficulty is classified in the same pass.

Shared signals:
- Exact query substring in title / summary
- Domain keyword hits (+0.05 each, capped at +0.30)
- Technical-term density (capped at +0.20)

Category-specific boosts cover repo stars and recency, video channel and
engagement, documentation URL and quality indicators, expert bylines and
report publishers.

Usage:
    from app.services.ingestion.scoring import score_item

    scored = score_item(item, domain="machine learning")
    print(scored.relevance_score, scored.difficulty_level)
"""

import logging
import re
from datetime import datetime, timezone
from typing import Optional
from urllib.parse import urldefrag, urljoin, urlparse

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.enums.ingestion import DifficultyLevel
from app.models.sources import (
    DocItem,
    ExpertItem,
    PaperItem,
    ReportItem,
    RepoItem,
    SourceItemBase,
    VideoItem,
)
from app.services.ingestion.catalog import (
    DIFFICULTY_KEYWORDS,
    EDUCATIONAL_CHANNEL_INDICATORS,
    FOUNDATIONAL_KEYWORDS,
    NEGATIVE_INDICATORS,
    POSITIVE_INDICATORS,
    PRIORITY_PATHS,
    QUALITY_INDICATORS,
    REPORT_COMPANIES,
    SKIP_PATHS,
    TECHNICAL_TERMS,
    URL_INDICATORS,
    domain_keywords,
)

logger = logging.getLogger(__name__)

_YEAR_PATTERN = re.compile(r"\d{4}")

# Pages shorter than this are never considered relevant content
MIN_CONTENT_CHARS = 200
MAX_FOLLOWED_LINKS = 5


# =============================================================================
# Shared Signals
# =============================================================================


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(value, high))


def query_match_score(text: Optional[str], query: str, weight: float) -> float:
    """Return weight when the lowercased query occurs in text."""
    if not text or not query:
        return 0.0
    return weight if query.lower() in text.lower() else 0.0


def keyword_score(text: str, keywords: list[str], per_hit: float = 0.05, cap: float = 0.30) -> float:
    """Score keyword hits in text, capped."""
    if not text or not keywords:
        return 0.0
    text_lower = text.lower()
    hits = sum(1 for kw in keywords if kw.lower() in text_lower)
    return min(hits * per_hit, cap)


def technical_term_score(text: str) -> float:
    """Score technical-term density, capped at 0.20."""
    if not text:
        return 0.0
    text_lower = text.lower()
    hits = sum(1 for term in TECHNICAL_TERMS if term in text_lower)
    return min(hits * 0.033, 0.20)


def is_foundational(title: Optional[str]) -> bool:
    title_lower = (title or "").lower()
    return any(kw in title_lower for kw in FOUNDATIONAL_KEYWORDS)


def freshness_multiplier(
    published_at: Optional[datetime],
    title: Optional[str] = None,
    now: Optional[datetime] = None,
) -> float:
    """
    Multiplier rewarding recent items.

    <6 months 1.2, <12 months 1.1, <24 months 1.0, <36 months 0.9, older 0.8.
    Undated items and items with a foundational title keyword get 1.0.

    Args:
        published_at: Publication or last-update time
        title: Item title, checked for foundational keywords
        now: Reference time (defaults to current UTC time)

    Returns:
        Multiplier applied to the base score
    """
    if published_at is None or is_foundational(title):
        return 1.0

    now = now or datetime.now(timezone.utc)
    if published_at.tzinfo is None:
        published_at = published_at.replace(tzinfo=timezone.utc)
    age_months = max((now - published_at).days / 30.44, 0.0)

    if age_months < 6:
        return 1.2
    if age_months < 12:
        return 1.1
    if age_months < 24:
        return 1.0
    if age_months < 36:
        return 0.9
    return 0.8


def classify_difficulty(text: str) -> DifficultyLevel:
    """
    Classify text by counting beginner/intermediate/advanced keyword hits.

    The level with the most hits wins; ties and zero hits default to
    intermediate.
    """
    text_lower = (text or "").lower()
    scores = {
        level: sum(1 for kw in keywords if kw in text_lower)
        for level, keywords in DIFFICULTY_KEYWORDS.items()
    }
    best = max(scores.values())
    if best == 0:
        return DifficultyLevel.INTERMEDIATE
    leaders = [level for level, score in scores.items() if score == best]
    if len(leaders) > 1:
        return DifficultyLevel.INTERMEDIATE
    return DifficultyLevel(leaders[0])


def _keywords_for(item: SourceItemBase, domain: str) -> list[str]:
    keywords = domain_keywords(domain) + domain_keywords(item.search_term)
    return list(dict.fromkeys(keywords))


def _months_since(moment: Optional[datetime], now: datetime) -> Optional[float]:
    if moment is None:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return max((now - moment).days / 30.44, 0.0)


# =============================================================================
# Category Scorers (base score, before freshness)
# =============================================================================


def score_paper(item: PaperItem, domain: str) -> float:
    query = item.search_term
    summary = item.summary or ""
    full_text = f"{item.title} {summary}"

    score = query_match_score(item.title, query, 0.30)
    score += query_match_score(summary, query, 0.10)
    score += keyword_score(full_text, _keywords_for(item, domain))
    score += technical_term_score(full_text)
    if len(summary) > 300:
        score += 0.05
    if _YEAR_PATTERN.search(item.title):
        score += 0.05
    return score


def _term_variants(term: str) -> list[str]:
    term = term.lower()
    return list(dict.fromkeys([term, term.replace(" ", "-"), term.replace("-", " ")]))


def score_repo(item: RepoItem, domain: str, now: datetime) -> float:
    variants = _term_variants(item.search_term) if item.search_term else []
    name = item.title.lower()
    description = (item.summary or "").lower()

    score = 0.0
    if any(v in name for v in variants):
        score += 0.25
    if any(v in description for v in variants):
        score += 0.15

    if item.stars >= 100:
        score += 0.10
    if item.stars >= 1000:
        score += 0.10
    if item.stars >= 5000:
        score += 0.05

    # Foundational repos get no recency boost
    months_old = None if is_foundational(item.title) else _months_since(item.last_updated or item.published_at, now)
    if months_old is not None:
        if months_old < 6:
            score += 0.10
        if months_old < 12:
            score += 0.05
        if months_old < 24:
            score += 0.05

    keywords = _keywords_for(item, domain)
    topic_hits = sum(
        1
        for topic in item.topics
        if any(kw.lower().replace(" ", "-") in topic.lower() for kw in keywords)
    )
    score += min(topic_hits * 0.05, 0.15)
    score += keyword_score(f"{name} {description}", keywords)
    return score


def content_relevance(content: str, url: str, domain: str = "") -> float:
    """
    Score a crawled page from its URL and text.

    Base 0.2, URL indicators +0.025 each, quality indicators +0.04 each
    (capped at 0.4), domain keywords, and +0.05 for each of the >1000 and
    >3000 character length tiers.
    """
    content_lower = (content or "").lower()
    url_lower = (url or "").lower()

    score = 0.2
    score += sum(1 for ind in URL_INDICATORS if ind in url_lower) * 0.025
    score += min(sum(1 for ind in QUALITY_INDICATORS if ind in content_lower) * 0.04, 0.4)
    if domain:
        score += keyword_score(content_lower, domain_keywords(domain))
    if len(content or "") > 1000:
        score += 0.05
    if len(content or "") > 3000:
        score += 0.05
    return score


def score_doc(item: DocItem, domain: str) -> float:
    return content_relevance(item.content or item.summary or "", item.url, domain)


def score_video(item: VideoItem) -> float:
    query = item.search_term
    title = item.title.lower()
    description = (item.summary or "").lower()
    channel = item.channel.lower()

    score = query_match_score(title, query, 0.25)
    if "tutorial" in title or "course" in title:
        score += 0.10
    score += query_match_score(description, query, 0.15)
    if "learn" in description or "beginner" in description:
        score += 0.05

    if any(ind in channel for ind in EDUCATIONAL_CHANNEL_INDICATORS):
        score += 0.15
    else:
        score += 0.05

    if item.views >= 1000:
        score += 0.05
    if item.views >= 10000:
        score += 0.05
    if item.views >= 100000:
        score += 0.05
    if item.views > 0 and item.likes / item.views > 0.01:
        score += 0.05

    if 300 <= item.duration_s <= 3600:
        score += 0.10
    return score


def score_expert(item: ExpertItem, domain: str) -> float:
    score = content_relevance(item.content or item.summary or "", item.url, domain)
    if item.author:
        score += 0.05
    return score


def score_report(item: ReportItem, domain: str) -> float:
    findings = " ".join(item.key_findings)
    title = item.title.lower()

    score = 0.0
    if domain.lower() in title or (item.search_term and item.search_term.lower() in title):
        score += 0.25
    score += query_match_score(item.summary, item.search_term, 0.15)
    score += keyword_score(f"{findings} {item.summary or ''}", _keywords_for(item, domain))
    score += technical_term_score(findings)
    if item.company in REPORT_COMPANIES:
        score += 0.10
    return score


def base_score(item: SourceItemBase, domain: str, now: datetime) -> float:
    """Category-specific score before the freshness multiplier."""
    if isinstance(item, PaperItem):
        return score_paper(item, domain)
    if isinstance(item, RepoItem):
        return score_repo(item, domain, now)
    if isinstance(item, DocItem):
        return score_doc(item, domain)
    if isinstance(item, VideoItem):
        return score_video(item)
    if isinstance(item, ExpertItem):
        return score_expert(item, domain)
    if isinstance(item, ReportItem):
        return score_report(item, domain)
    raise TypeError(f"Unsupported source item type: {type(item).__name__}")


def _difficulty_text(item: SourceItemBase) -> str:
    parts = [item.title, item.summary or ""]
    if isinstance(item, DocItem):
        parts.extend(item.headings)
    return " ".join(parts)


def score_item(
    item: SourceItemBase,
    domain: str,
    now: Optional[datetime] = None,
):
    """
    Score and classify one item.

    Args:
        item: Any SourceItem variant
        domain: Domain being ingested
        now: Reference time for recency and freshness

    Returns:
        Copy of the item with relevance_score and difficulty_level set
    """
    now = now or datetime.now(timezone.utc)
    published = item.published_at
    if published is None and isinstance(item, RepoItem):
        published = item.last_updated

    raw = base_score(item, domain, now)
    score = clamp(raw * freshness_multiplier(published, item.title, now))
    return item.model_copy(
        update={
            "relevance_score": round(score, 4),
            "difficulty_level": classify_difficulty(_difficulty_text(item)),
        }
    )


def passes_threshold(item: SourceItemBase, config: Optional[IngestionSettings] = None) -> bool:
    """
    True when an item meets its category threshold.

    Repos with at least REPO_STAR_OVERRIDE_MIN_STARS stars are admitted
    from REPO_STAR_OVERRIDE_MIN_SCORE.
    """
    config = config or ingestion_settings
    if (
        isinstance(item, RepoItem)
        and item.stars >= config.REPO_STAR_OVERRIDE_MIN_STARS
        and item.relevance_score >= config.REPO_STAR_OVERRIDE_MIN_SCORE
    ):
        return True
    return item.relevance_score >= config.threshold_for(item.category)


# =============================================================================
# Crawled Page Helpers
# =============================================================================


def is_relevant_content(title: str, content: str, url: str) -> bool:
    """
    Decide whether a crawled page is worth keeping.

    Requires at least MIN_CONTENT_CHARS of text and more positive indicator
    hits (title or content) than negative ones (title or URL).
    """
    if not content or len(content.strip()) < MIN_CONTENT_CHARS:
        return False
    title_lower = (title or "").lower()
    content_lower = content.lower()
    url_lower = (url or "").lower()

    positives = sum(1 for ind in POSITIVE_INDICATORS if ind in title_lower or ind in content_lower)
    negatives = sum(1 for ind in NEGATIVE_INDICATORS if ind in title_lower or ind in url_lower)
    return positives > negatives


def select_relevant_links(
    links: list[str],
    base_url: str,
    limit: int = MAX_FOLLOWED_LINKS,
    skip_paths: tuple[str, ...] = SKIP_PATHS,
) -> list[str]:
    """
    Pick same-host links worth following from a crawled page.

    Links whose path contains a skip segment (blog, login, ...) are dropped.
    Priority paths (docs, tutorial, api, ...) are always taken; other links
    only fill the first three slots.

    Args:
        links: Raw href values (absolute or relative)
        base_url: URL of the page the links were found on
        limit: Maximum links returned
        skip_paths: Path segments that disqualify a link

    Returns:
        Absolute URLs without fragments, in page order
    """
    base_host = urlparse(base_url).hostname
    selected: list[str] = []

    for link in links:
        absolute, _ = urldefrag(urljoin(base_url, link))
        parsed = urlparse(absolute)
        if parsed.scheme not in ("http", "https") or parsed.hostname != base_host:
            continue
        if absolute in selected or absolute.rstrip("/") == base_url.rstrip("/"):
            continue

        path = parsed.path.lower()
        if any(skip in path for skip in skip_paths):
            continue

        if any(priority in path for priority in PRIORITY_PATHS) or len(selected) < 3:
            selected.append(absolute)
        if len(selected) >= limit:
            break

    return selected
