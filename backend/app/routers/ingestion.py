"""
Domain Ingestion Router

Client API for starting domain ingestions, polling their progress and
retrieving the resulting knowledge graph and learning pathways.

Endpoints:
- POST /api/ingest/start - Start an ingestion for a domain
- GET /api/ingest/progress/{session_id} - Full progress snapshot
- GET /api/ingest/status/{session_id} - Lightweight status
- GET /api/ingest/data/{session_id} - Session artifact (or snapshot while running)
- DELETE /api/ingest/{session_id} - Cancel and remove a session
- GET /api/ingest/active - Sessions held in memory
- GET /api/ingest/recent - Completed sessions, newest first
- GET /api/ingest/health - Service health
- GET /api/ingest/graph/latest - Most recent knowledge graph
- GET /api/ingest/crawler/stats - Browser pool and adapter counters
- POST /api/ingest/analyze|crawl|process|build|optimize - Single stages
- POST /api/ingest/optimize/path - Shortest learning path between two nodes

Usage:
    curl -X POST /api/ingest/start -H "Content-Type: application/json" \
         -d '{"domain": "machine learning"}'
    curl /api/ingest/progress/1729250000000_ab12cd34e
"""

from typing import Any, Optional

from fastapi import APIRouter, Query, Request

from app.middleware.rate_limit import limit_graph, limit_stage, limit_start
from app.models.api import (
    ActiveSessionsResponse,
    AnalyzeRequest,
    BuildRequest,
    CrawlRequest,
    DeleteResponse,
    HealthResponse,
    OptimalPathRequest,
    OptimizeRequest,
    ProcessRequest,
    ProgressResponse,
    RecentSessionsResponse,
    StartRequest,
    StartResponse,
    StatusResponse,
)
from app.models.knowledge import DomainAnalysis, KnowledgeGraph, OptimizationResult, ProcessingResult
from app.models.session import RequesterInfo
from app.models.sources import CollectionResult
from app.services.ingestion.pipeline import IngestionOrchestrator

router = APIRouter(prefix="/api/ingest", tags=["ingestion"])


def get_orchestrator(request: Request) -> IngestionOrchestrator:
    """Orchestrator created by the application lifespan."""
    return request.app.state.orchestrator


def requester_of(request: Request) -> RequesterInfo:
    forwarded_for = request.headers.get("X-Forwarded-For")
    if forwarded_for:
        ip = forwarded_for.split(",")[0].strip()
    else:
        ip = request.client.host if request.client else None
    return RequesterInfo(ip=ip, user_agent=request.headers.get("User-Agent"))


# =============================================================================
# Session Lifecycle
# =============================================================================


@router.post("/start", response_model=StartResponse, status_code=202)
@limit_start
async def start_ingestion(request: Request, body: StartRequest) -> StartResponse:
    """
    Start a domain ingestion.

    Returns immediately with the session id; poll the progress endpoint
    until the status is completed, failed or interrupted.
    """
    return await get_orchestrator(request).start(body.domain, requester_of(request))


@router.get("/progress/{session_id}", response_model=ProgressResponse)
async def get_progress(request: Request, session_id: str) -> ProgressResponse:
    """Full progress snapshot with per-step details and timing."""
    return await get_orchestrator(request).progress(session_id)


@router.get("/status/{session_id}", response_model=StatusResponse)
async def get_status(request: Request, session_id: str) -> StatusResponse:
    """Lightweight status for frequent polling."""
    return await get_orchestrator(request).status(session_id)


@router.get("/data/{session_id}")
async def get_data(request: Request, session_id: str) -> dict[str, Any]:
    """
    Session artifact.

    While the session runs this returns the progress snapshot with
    is_active=true. Evicted sessions are loaded from the database.
    """
    return await get_orchestrator(request).data(session_id)


@router.get("/active", response_model=ActiveSessionsResponse)
async def list_active(request: Request) -> ActiveSessionsResponse:
    """All sessions currently held in memory."""
    return await get_orchestrator(request).list_active()


@router.get("/recent", response_model=RecentSessionsResponse)
async def list_recent(
    request: Request,
    page: int = Query(1),
    limit: int = Query(10),
) -> RecentSessionsResponse:
    """Completed sessions, newest first (limit at most 50)."""
    return await get_orchestrator(request).list_recent(page=page, limit=limit)


@router.get("/health", response_model=HealthResponse)
async def ingestion_health(request: Request) -> HealthResponse:
    """Browser pool, active sessions, LLM and database health."""
    return await get_orchestrator(request).health()


@router.get("/graph/latest")
async def latest_graph(request: Request, domain: Optional[str] = None) -> dict[str, Any]:
    """Most recent completed knowledge graph, optionally for one domain."""
    return await get_orchestrator(request).latest_graph(domain)


@router.get("/crawler/stats")
async def crawler_stats(request: Request) -> dict[str, Any]:
    """Browser pool info, category budgets and lifetime adapter counters."""
    return get_orchestrator(request).crawler_statistics()


# =============================================================================
# Standalone Stages
# =============================================================================


@router.post("/analyze", response_model=DomainAnalysis)
@limit_stage
async def analyze_domain(request: Request, body: AnalyzeRequest) -> DomainAnalysis:
    """Run domain analysis only."""
    return await get_orchestrator(request).analyze(body.domain)


@router.post("/crawl", response_model=CollectionResult)
@limit_stage
async def crawl_domain(request: Request, body: CrawlRequest) -> CollectionResult:
    """Collect, de-duplicate and filter items without starting a session."""
    return await get_orchestrator(request).crawl(body.domain, body.categories)


@router.post("/process", response_model=ProcessingResult)
@limit_stage
async def process_documents(request: Request, body: ProcessRequest) -> ProcessingResult:
    """Extract concepts and relationships from the given items."""
    return await get_orchestrator(request).process(body.domain, body.items)


@router.post("/build", response_model=KnowledgeGraph)
@limit_graph
async def build_graph(request: Request, body: BuildRequest) -> KnowledgeGraph:
    """Build a knowledge graph from the given concepts and relationships."""
    return await get_orchestrator(request).build(body.domain, body.concepts, body.relationships)


@router.post("/optimize", response_model=OptimizationResult)
@limit_graph
async def optimize_graph(request: Request, body: OptimizeRequest) -> OptimizationResult:
    """Compute learning pathways for the given graph."""
    return await get_orchestrator(request).optimize(body.graph, k=body.max_pathways)


@router.post("/optimize/path")
@limit_graph
async def optimal_path(request: Request, body: OptimalPathRequest) -> dict[str, Any]:
    """Shortest learning path between two nodes of the given graph."""
    return await get_orchestrator(request).optimal_path(body.graph, body.start_node, body.end_node)


# Declared last so it does not shadow the fixed GET routes above
@router.delete("/{session_id}", response_model=DeleteResponse)
async def delete_session(request: Request, session_id: str) -> DeleteResponse:
    """Cancel a running session and remove it from memory and the database."""
    return await get_orchestrator(request).delete(session_id)
