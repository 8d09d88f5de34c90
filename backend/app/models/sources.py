"""
Source Item Models

Typed items produced by the six source adapters. Every variant shares a
common envelope (title, url, relevance score, difficulty, provenance) so
downstream stages (scoring, deduplication, extraction) handle them
uniformly and never inspect provider-specific dictionaries.

The `kind` field discriminates the union:

    SourceItem = PaperItem | RepoItem | DocItem | VideoItem | ExpertItem | ReportItem

Usage:
    from app.models.sources import PaperItem, SourceItemAdapter

    paper = PaperItem(title="Attention Is All You Need", url="...", authors=["Vaswani"])
    item = SourceItemAdapter.validate_python({"kind": "repo", "title": "...", "url": "..."})
"""

import uuid
from datetime import datetime, timezone
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter

from app.enums.ingestion import (
    DifficultyLevel,
    SourceCategory,
    SourceProvider,
)


def _new_item_id() -> str:
    return uuid.uuid4().hex[:16]


class SourceItemBase(BaseModel):
    """
    Envelope shared by every source item.

    Attributes:
        id: Item identifier, unique within a session
        title: Display title
        url: Canonical location of the item
        summary: Abstract, description or leading body text
        published_at: Publication or last-update time, when known
        relevance_score: Clamped relevance in [0, 1]
        difficulty_level: Classified learning difficulty
        search_term: Query that produced the item
        source_provider: real, simulated or fallback
        duplicate: Set when the deduplicator discards the item
        keywords: Adapter-provided keyword set (topics, headings, tags)
    """

    id: str = Field(default_factory=_new_item_id)
    title: str
    url: str
    summary: Optional[str] = None
    published_at: Optional[datetime] = None
    relevance_score: float = Field(default=0.0, ge=0.0, le=1.0)
    difficulty_level: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    search_term: str = ""
    source_provider: SourceProvider = SourceProvider.REAL
    duplicate: bool = False
    keywords: list[str] = Field(default_factory=list)

    @property
    def category(self) -> SourceCategory:
        return KIND_CATEGORIES[self.kind]

    @property
    def body_text(self) -> str:
        """Text used for fingerprinting and keyword matching."""
        return self.summary or ""

    def age_months(self, now: Optional[datetime] = None) -> Optional[float]:
        """Months since publication, or None when undated."""
        if self.published_at is None:
            return None
        now = now or datetime.now(timezone.utc)
        published = self.published_at
        if published.tzinfo is None:
            published = published.replace(tzinfo=timezone.utc)
        return max((now - published).days / 30.44, 0.0)


class PaperItem(SourceItemBase):
    """Academic paper (e.g., an arXiv entry)."""

    kind: Literal["paper"] = "paper"
    authors: list[str] = Field(default_factory=list)
    category_label: str = ""  # Provider category, e.g. "cs.LG"


class RepoItem(SourceItemBase):
    """Code repository."""

    kind: Literal["repo"] = "repo"
    stars: int = 0
    forks: int = 0
    language: Optional[str] = None
    topics: list[str] = Field(default_factory=list)
    last_updated: Optional[datetime] = None


class DocItem(SourceItemBase):
    """Technical documentation page."""

    kind: Literal["doc"] = "doc"
    headings: list[str] = Field(default_factory=list)
    word_count: int = 0
    code_blocks: list[str] = Field(default_factory=list)
    content: str = ""

    @property
    def body_text(self) -> str:
        return self.summary or self.content


class VideoItem(SourceItemBase):
    """Video tutorial."""

    kind: Literal["video"] = "video"
    channel: str = ""
    duration_s: int = 0
    views: int = 0
    likes: int = 0


class ExpertItem(SourceItemBase):
    """Expert blog post or interview."""

    kind: Literal["expert"] = "expert"
    author: Optional[str] = None
    word_count: int = 0
    content: str = ""

    @property
    def body_text(self) -> str:
        return self.summary or self.content


class ReportItem(SourceItemBase):
    """Industry report."""

    kind: Literal["report"] = "report"
    company: str = ""
    year: int = 0
    key_findings: list[str] = Field(default_factory=list)


SourceItem = Annotated[
    Union[PaperItem, RepoItem, DocItem, VideoItem, ExpertItem, ReportItem],
    Field(discriminator="kind"),
]

SourceItemAdapter: TypeAdapter = TypeAdapter(SourceItem)
SourceItemListAdapter: TypeAdapter = TypeAdapter(list[SourceItem])

KIND_CATEGORIES = {
    "paper": SourceCategory.PAPERS,
    "repo": SourceCategory.REPOS,
    "doc": SourceCategory.DOCS,
    "video": SourceCategory.VIDEOS,
    "expert": SourceCategory.EXPERT,
    "report": SourceCategory.REPORTS,
}


class CollectionSummary(BaseModel):
    """Aggregate statistics over the filtered collection."""

    content_breakdown: dict[str, int] = Field(default_factory=dict)
    total_items: int = 0
    average_relevance: float = 0.0
    high_quality_items: int = 0  # relevance >= 0.7
    video_hours: float = 0.0
    total_stars: int = 0
    simulated_items: int = 0


class CollectionResult(BaseModel):
    """
    Output of the collect stage.

    Attributes:
        domain: Domain being ingested
        items: Surviving items keyed by category value
        counts: Item counts keyed by summary label (academic_papers, ...)
        errors: Number of adapters that failed or timed out
        failed_categories: Categories whose adapter raised
        timed_out_categories: Categories whose adapter hit the hard timeout
        duplicates_removed: Items discarded by cross-category deduplication
        summary: Aggregate statistics
    """

    domain: str
    items: dict[str, list[SourceItem]] = Field(default_factory=dict)
    counts: dict[str, int] = Field(default_factory=dict)
    errors: int = 0
    failed_categories: list[str] = Field(default_factory=list)
    timed_out_categories: list[str] = Field(default_factory=list)
    duplicates_removed: int = 0
    summary: CollectionSummary = Field(default_factory=CollectionSummary)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def all_items(self) -> list:
        """Every surviving item, in category order."""
        ordered = []
        for category in SourceCategory:
            ordered.extend(self.items.get(category.value, []))
        return ordered
