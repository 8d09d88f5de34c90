"""
SQLAlchemy Database Models

These models define the PostgreSQL schema for the domain ingestion service.
Each completed (or partially completed) ingestion session is stored as one
record holding every stage output that was reached.

Tables:
- ingestion_records: One row per session id with stage outputs and stats
- knowledge_graphs: Final graph and pathways of a session, for graph lookups
- crawled_documents: Individually stored source items, keyed by url

Stage outputs are stored as JSONB documents produced by the Pydantic models
in app.models (model_dump(mode="json")), so the schema does not change when
a stage output grows a field.
"""

from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    Integer,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class IngestionRecord(Base):
    """
    Persisted ingestion session.

    Written by the persistence gateway when a session completes, fails or
    is interrupted. Only the outputs of stages that completed are stored;
    the remaining JSONB columns stay NULL.
    """

    __tablename__ = "ingestion_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    domain: Mapped[str] = mapped_column(String(200), index=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(20), index=True)
    progress: Mapped[float] = mapped_column(Float, default=0.0)
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    success: Mapped[bool] = mapped_column(Boolean, default=False)
    error: Mapped[Optional[str]] = mapped_column(Text)
    error_kind: Mapped[Optional[str]] = mapped_column(String(30))

    # Stage outputs (NULL until the stage completed)
    analysis: Mapped[Optional[dict]] = mapped_column(JSONB)
    collection: Mapped[Optional[dict]] = mapped_column(JSONB)
    processing: Mapped[Optional[dict]] = mapped_column(JSONB)
    knowledge_graph: Mapped[Optional[dict]] = mapped_column(JSONB)
    optimization: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Bookkeeping
    stats: Mapped[Optional[dict]] = mapped_column(JSONB)
    steps: Mapped[Optional[dict]] = mapped_column(JSONB)
    requester: Mapped[Optional[dict]] = mapped_column(JSONB)

    # Timestamps (timezone-aware UTC)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), index=True
    )
    failed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    interrupted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    processing_time_ms: Mapped[Optional[int]] = mapped_column(Integer)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )


class KnowledgeGraphRecord(Base):
    """
    Knowledge graph and learning pathways of one session.

    Stored alongside the ingestion record so the latest graph for a domain
    can be served without loading the full collection payload.
    """

    __tablename__ = "knowledge_graphs"

    id: Mapped[int] = mapped_column(primary_key=True)
    session_id: Mapped[str] = mapped_column(
        String(64), unique=True, index=True, nullable=False
    )
    domain: Mapped[str] = mapped_column(String(200), index=True)

    nodes: Mapped[list] = mapped_column(JSONB, default=list)
    edges: Mapped[list] = mapped_column(JSONB, default=list)
    pathways: Mapped[list] = mapped_column(JSONB, default=list)
    learning_sequences: Mapped[dict] = mapped_column(JSONB, default=dict)
    graph_stats: Mapped[dict] = mapped_column(JSONB, default=dict)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, index=True
    )


class CrawledDocument(Base):
    """
    A single collected source item.

    Documents are upserted by url, so re-ingesting a domain refreshes the
    stored copy instead of duplicating it.
    """

    __tablename__ = "crawled_documents"

    id: Mapped[int] = mapped_column(primary_key=True)
    url: Mapped[str] = mapped_column(String(2000), unique=True, nullable=False)
    domain: Mapped[str] = mapped_column(String(200), index=True)
    source_type: Mapped[str] = mapped_column(String(20), index=True)
    title: Mapped[str] = mapped_column(String(1000))

    # {summary, full_text, extracted_concepts, key_points}
    content: Mapped[Optional[dict]] = mapped_column(JSONB)
    metadata_json: Mapped[Optional[dict]] = mapped_column(JSONB)

    relevance_score: Mapped[float] = mapped_column(Float, default=0.0)
    processing_status: Mapped[str] = mapped_column(String(20), default="raw")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utc_now, onupdate=_utc_now
    )
