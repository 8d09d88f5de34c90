"""
Client API Models

Request and response bodies for the ingestion client API. Requests use
StrictRequest (unknown fields rejected, strings stripped), or DomainRequest
when they name a domain; responses use StrictResponse.

Usage:
    from app.models.api import StartRequest, StartResponse

    body = StartRequest(domain="  machine learning ")  # domain == "machine learning"
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from app.enums.ingestion import ErrorKind, SessionStatus, SourceCategory, StepStatus
from app.models.base import DomainRequest, StrictRequest, StrictResponse
from app.models.knowledge import Concept, KnowledgeGraph, Relationship
from app.models.session import SessionStats
from app.models.sources import SourceItem


# =============================================================================
# Session Lifecycle
# =============================================================================


class StartRequest(DomainRequest):
    """Body of POST /api/ingest/start."""


class StartResponse(StrictResponse):
    """Acknowledgement of a started ingestion."""

    session_id: str
    domain: str
    status: str = "started"
    estimated_time: str = "3-8 minutes"
    progress_endpoint: str
    status_endpoint: str
    data_endpoint: str


class StepDetail(StrictResponse):
    """Per-step view inside a progress snapshot."""

    key: str
    name: str
    step_number: int
    status: StepStatus
    is_active: bool
    is_completed: bool
    progress: float
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None


class TimingInfo(StrictResponse):
    """Elapsed and estimated durations in milliseconds."""

    elapsed_ms: int
    elapsed_formatted: str
    estimated_total_ms: Optional[int] = None
    estimated_remaining_ms: Optional[int] = None


class ProgressResponse(StrictResponse):
    """Full session snapshot."""

    session_id: str
    domain: str
    status: SessionStatus
    progress: float
    current_step: int
    details: str = ""
    step_details: list[StepDetail]
    stats: SessionStats
    timing: TimingInfo
    is_active: bool
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None


class StatusResponse(StrictResponse):
    """Lightweight session snapshot."""

    session_id: str
    status: SessionStatus
    progress: float
    current_step: int
    stats: SessionStats
    success: Optional[bool] = None
    error: Optional[str] = None
    completed_at: Optional[datetime] = None


class DeleteResponse(StrictResponse):
    """Outcome of deleting a session."""

    session_id: str
    deleted_from: dict[str, bool]


class ActiveSessionSummary(StrictResponse):
    """One row of the active-session listing."""

    session_id: str
    domain: str
    status: SessionStatus
    progress: float
    current_step: int
    created_at: datetime
    last_update: datetime
    elapsed_formatted: str
    error: Optional[str] = None


class ActiveSessionsResponse(StrictResponse):
    """Sessions held in memory plus a status summary."""

    sessions: list[ActiveSessionSummary]
    summary: dict[str, Any]


class RecentSessionsResponse(StrictResponse):
    """Completed sessions, paged."""

    sessions: list[dict[str, Any]]
    pagination: dict[str, Any]


class HealthResponse(StrictResponse):
    """Service health."""

    status: str
    pool_info: dict[str, Any]
    active_count: int
    uptime_seconds: float
    llm: dict[str, Any] = Field(default_factory=dict)
    database: dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# Standalone Stage Operations
# =============================================================================


class AnalyzeRequest(DomainRequest):
    """Body of POST /api/ingest/analyze."""


class CrawlRequest(DomainRequest):
    """Body of POST /api/ingest/crawl."""

    categories: Optional[list[SourceCategory]] = None


class ProcessRequest(DomainRequest):
    """Body of POST /api/ingest/process."""

    items: list[SourceItem] = Field(default_factory=list)


class BuildRequest(DomainRequest):
    """Body of POST /api/ingest/build."""

    concepts: list[Concept] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)


class OptimizeRequest(StrictRequest):
    """Body of POST /api/ingest/optimize."""

    graph: KnowledgeGraph
    max_pathways: int = Field(default=5, ge=1, le=20)


class OptimalPathRequest(StrictRequest):
    """Body of POST /api/ingest/optimize/path."""

    graph: KnowledgeGraph
    start_node: str
    end_node: str
