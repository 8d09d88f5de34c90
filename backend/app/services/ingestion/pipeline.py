"""
Domain Ingestion Orchestrator

Runs the five ingestion stages for a domain, strictly in order, and
reports progress through the session manager.

Pipeline stages (progress reached when the stage completes):
1. Analysis (20) - Category, complexity, subdomains, prerequisites
2. Collection (45) - Six adapters in parallel, dedup, final filter
3. Processing (70) - Concept and relationship extraction
4. Knowledge Graph (90) - Node/edge graph and statistics
5. Optimization (95) - Learning pathways
Persisting the session moves it to 100 and completed.

Stage control:
    Each stage returns a StageResult (ok, value, error_kind, message) and
    _finish() is the single place that turns the outcome into a terminal
    session state. Components never touch sessions directly; they publish
    events to the session manager.

Backpressure:
    At most MAX_CONCURRENT_SESSIONS ingestions run at once. start() rejects
    with RetryLaterError instead of queueing.

Cancellation:
    A cancelled run (shutdown, delete) marks the session interrupted,
    keeps the last progress value and persists only the stages that had
    completed.

Usage:
    from app.services.ingestion.pipeline import IngestionOrchestrator

    orchestrator = IngestionOrchestrator()
    response = await orchestrator.start("machine learning")
    snapshot = await orchestrator.progress(response.session_id)
"""

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Iterable, Optional

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.enums.ingestion import (
    ErrorKind,
    IngestionStep,
    SessionStatus,
    SourceCategory,
    SourceProvider,
)
from app.middleware.error_handling import (
    InputError,
    NotFoundError,
    PersistenceError,
    RetryLaterError,
    error_kind_of,
    summarize_error,
)
from app.models.api import (
    ActiveSessionSummary,
    ActiveSessionsResponse,
    DeleteResponse,
    HealthResponse,
    ProgressResponse,
    RecentSessionsResponse,
    StartResponse,
    StatusResponse,
)
from app.models.base import MAX_DOMAIN_LENGTH
from app.models.knowledge import (
    Concept,
    DomainAnalysis,
    KnowledgeGraph,
    OptimizationResult,
    ProcessingResult,
    Relationship,
)
from app.models.session import (
    AnySessionEvent,
    IngestionSession,
    ProgressEvent,
    RequesterInfo,
    SessionCompleted,
    SessionFailed,
    SessionInterrupted,
    StatsDelta,
    StepCompleted,
    StepFailed,
    StepStarted,
)
from app.models.sources import CollectionResult, CollectionSummary, SourceItemBase, VideoItem, RepoItem
from app.pipelines import AdapterRegistry, BaseSourceAdapter, apply_category_filter, get_registry
from app.pipelines.utils.browser_pool import BrowserPool
from app.pipelines.utils.cost_types import LLMUsage, StageUsage
from app.pipelines.utils.text_utils import normalize_whitespace
from app.services.ingestion.dedup import deduplicate
from app.services.ingestion.persistence import PersistenceGateway
from app.services.ingestion.session_manager import (
    SessionManager,
    format_duration,
    mark_completed,
    progress_snapshot,
)
from app.services.ingestion.stages.analysis import analyze_domain
from app.services.ingestion.stages.extraction import process_items
from app.services.ingestion.stages.graph import build_knowledge_graph
from app.services.ingestion.stages.pathways import (
    DEFAULT_MAX_PATHWAYS,
    find_optimal_path,
    optimize_pathways,
)
from app.services.llm.client import LLMClient, get_llm_client

logger = logging.getLogger(__name__)

MAX_RECENT_LIMIT = 50
ESTIMATED_TIME = "3-8 minutes"
HIGH_QUALITY_SCORE = 0.7

# Overall progress when each stage completes; persistence takes it to 100
STAGE_PROGRESS = {
    IngestionStep.ANALYSIS: 20.0,
    IngestionStep.COLLECTION: 45.0,
    IngestionStep.PROCESSING: 70.0,
    IngestionStep.KNOWLEDGE_GRAPH: 90.0,
    IngestionStep.OPTIMIZATION: 95.0,
}


# =============================================================================
# Helpers
# =============================================================================


def validate_domain(domain: Any) -> str:
    """
    Normalize a submitted domain.

    Raises:
        InputError: If the domain is not a string, blank, or too long
    """
    if not isinstance(domain, str):
        raise InputError("Domain must be a non-empty string")
    cleaned = normalize_whitespace(domain)
    if not cleaned:
        raise InputError("Domain must be a non-empty string")
    if len(cleaned) > MAX_DOMAIN_LENGTH:
        raise InputError(f"Domain must be at most {MAX_DOMAIN_LENGTH} characters")
    return cleaned


def is_significant_progress(previous: float, current: float) -> bool:
    """Progress worth an INFO log: reaching 100, crossing a multiple of 25, or a 10-point jump."""
    if current <= previous:
        return False
    if current >= 100:
        return True
    if int(current // 25) > int(previous // 25):
        return True
    return current - previous >= 10


def summarize_collection(items_by_category: dict[str, list[SourceItemBase]]) -> CollectionSummary:
    """Aggregate statistics over the final filtered items."""
    items = [item for category in SourceCategory for item in items_by_category.get(category.value, [])]
    total = len(items)
    return CollectionSummary(
        content_breakdown={
            category.count_key: len(items_by_category.get(category.value, [])) for category in SourceCategory
        },
        total_items=total,
        average_relevance=round(sum(i.relevance_score for i in items) / total, 3) if total else 0.0,
        high_quality_items=sum(1 for i in items if i.relevance_score >= HIGH_QUALITY_SCORE),
        video_hours=round(sum(i.duration_s for i in items if isinstance(i, VideoItem)) / 3600, 2),
        total_stars=sum(i.stars for i in items if isinstance(i, RepoItem)),
        simulated_items=sum(1 for i in items if i.source_provider == SourceProvider.SIMULATED),
    )


def session_artifact(session: IngestionSession) -> dict[str, Any]:
    """
    Client-facing artifact of a session (complete or partial).

    Stage outputs that were never reached are returned empty.
    """
    processing = session.processing
    graph = session.knowledge_graph
    optimization = session.optimization
    collection = session.collection

    return {
        "session_id": session.session_id,
        "domain": session.domain,
        "status": session.status.value,
        "success": session.success,
        "error": session.error,
        "error_kind": session.error_kind.value if session.error_kind else None,
        "is_active": session.is_active,
        "analysis": session.analysis.model_dump(mode="json") if session.analysis else None,
        "collection_summary": {
            "counts": collection.counts,
            "errors": collection.errors,
            "timed_out_categories": collection.timed_out_categories,
            "duplicates_removed": collection.duplicates_removed,
            **collection.summary.model_dump(mode="json"),
        }
        if collection
        else None,
        "concepts": [c.model_dump(mode="json") for c in processing.concepts] if processing else [],
        "relationships": [r.model_dump(mode="json") for r in processing.relationships] if processing else [],
        "knowledge_graph": {
            "nodes": [n.model_dump(mode="json") for n in graph.nodes] if graph else [],
            "edges": [e.model_dump(mode="json") for e in graph.edges] if graph else [],
            "stats": graph.stats.model_dump(mode="json") if graph else {},
        },
        "optimization": {
            "pathways": [p.model_dump(mode="json") for p in optimization.pathways] if optimization else [],
            "learning_sequences": optimization.learning_sequences if optimization else {},
            "stats": optimization.stats.model_dump(mode="json") if optimization else {},
        },
        "metadata": {
            "created_at": session.created_at.isoformat(),
            "completed_at": session.completed_at.isoformat() if session.completed_at else None,
            "processing_time_ms": session.processing_time_ms,
            "processing_time": format_duration(session.processing_time_ms),
            "stats": session.stats.model_dump(mode="json"),
            "saved": session.saved,
            "ingestion_id": session.ingestion_id,
            "used_fallback": processing.used_fallback if processing else False,
        },
    }


def graph_view(session: IngestionSession) -> dict[str, Any]:
    """Latest-graph view of an in-memory session."""
    graph = session.knowledge_graph
    optimization = session.optimization
    return {
        "session_id": session.session_id,
        "domain": session.domain,
        "nodes": [n.model_dump(mode="json") for n in graph.nodes],
        "edges": [e.model_dump(mode="json") for e in graph.edges],
        "pathways": [p.model_dump(mode="json") for p in optimization.pathways] if optimization else [],
        "learning_sequences": optimization.learning_sequences if optimization else {},
        "stats": graph.stats.model_dump(mode="json"),
        "created_at": (session.completed_at or session.created_at).isoformat(),
        "source": "memory",
    }


@dataclass
class StageResult:
    """Tagged outcome of one stage."""

    step: IngestionStep
    ok: bool
    value: Any = None
    error_kind: Optional[ErrorKind] = None
    message: str = ""

    @classmethod
    def success(cls, step: IngestionStep, value: Any) -> "StageResult":
        return cls(step=step, ok=True, value=value)

    @classmethod
    def failure(cls, step: IngestionStep, error_kind: ErrorKind, message: str) -> "StageResult":
        return cls(step=step, ok=False, error_kind=error_kind, message=message)

    @property
    def interrupted(self) -> bool:
        return not self.ok and self.error_kind == ErrorKind.INTERRUPTED


class CrawlerStats:
    """Lifetime adapter counters."""

    def __init__(self) -> None:
        self.collected: Counter = Counter()
        self.failures: Counter = Counter()
        self.timeouts: Counter = Counter()
        self.runs = 0

    def record(self, category: SourceCategory, count: int, outcome: str) -> None:
        self.collected[category.value] += count
        if outcome == "error":
            self.failures[category.value] += 1
        elif outcome == "timeout":
            self.timeouts[category.value] += 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "collection_runs": self.runs,
            "items_collected": {c.value: self.collected[c.value] for c in SourceCategory},
            "adapter_failures": {c.value: self.failures[c.value] for c in SourceCategory},
            "adapter_timeouts": {c.value: self.timeouts[c.value] for c in SourceCategory},
        }


# =============================================================================
# Orchestrator
# =============================================================================


class IngestionOrchestrator:
    """
    Runs ingestion sessions and answers client queries about them.

    Attributes:
        sessions: Session manager (single writer of session state)
        persistence: Persistence gateway, or None to run memory-only
        llm_client: LLM client shared by the analysis and extraction stages
        registry: Source adapter registry
        browser_pool: Shared headless browser pool, if any
        config: Ingestion settings
    """

    def __init__(
        self,
        session_manager: Optional[SessionManager] = None,
        persistence: Optional[PersistenceGateway] = None,
        llm_client: Optional[LLMClient] = None,
        adapter_registry: Optional[AdapterRegistry] = None,
        browser_pool: Optional[BrowserPool] = None,
        config: Optional[IngestionSettings] = None,
    ):
        self.config = config or ingestion_settings
        self.sessions = session_manager or SessionManager(config=self.config)
        self.persistence = persistence
        self.llm_client = llm_client or get_llm_client()
        self.browser_pool = browser_pool
        self.registry = adapter_registry or get_registry(browser_pool)
        self.crawler_stats = CrawlerStats()

        self._semaphore = asyncio.Semaphore(self.config.MAX_CONCURRENT_SESSIONS)
        self._tasks: dict[str, asyncio.Task] = {}
        self._last_progress: dict[str, float] = {}
        self._started_at = time.monotonic()
        self._closing = False

    # =========================================================================
    # Session lifecycle
    # =========================================================================

    async def start(self, domain: Any, requester: Optional[RequesterInfo] = None) -> StartResponse:
        """
        Validate the domain and start an ingestion in the background.

        Args:
            domain: Domain as submitted by the client
            requester: Client ip and user agent

        Returns:
            StartResponse with the session id and polling endpoints

        Raises:
            InputError: Blank or malformed domain (no session is created)
            RetryLaterError: Concurrent-session bound reached or shutting down
        """
        domain = validate_domain(domain)
        if self._closing:
            raise RetryLaterError("Service is shutting down, retry later")
        if self._semaphore.locked():
            raise RetryLaterError(
                f"Too many concurrent ingestions ({self.config.MAX_CONCURRENT_SESSIONS}), retry later"
            )

        await self._semaphore.acquire()
        try:
            session_id = await self.sessions.create(domain, requester)
        except BaseException:
            self._semaphore.release()
            raise

        self._tasks[session_id] = asyncio.create_task(
            self._run_guarded(session_id), name=f"ingestion-{session_id}"
        )
        logger.info(f"[{session_id}] Ingestion started for '{domain}'")

        return StartResponse(
            session_id=session_id,
            domain=domain,
            estimated_time=ESTIMATED_TIME,
            progress_endpoint=f"/api/ingest/progress/{session_id}",
            status_endpoint=f"/api/ingest/status/{session_id}",
            data_endpoint=f"/api/ingest/data/{session_id}",
        )

    async def wait(self, session_id: str, timeout: Optional[float] = None) -> Optional[IngestionSession]:
        """Wait for a session's run to finish and return its final snapshot."""
        task = self._tasks.get(session_id)
        if task is not None:
            await asyncio.wait({task}, timeout=timeout)
        return await self.sessions.get(session_id)

    async def _run_guarded(self, session_id: str) -> None:
        try:
            await self.run(session_id)
        except asyncio.CancelledError:
            logger.info(f"[{session_id}] Ingestion task cancelled")
            raise
        except Exception as e:
            # Programming error outside any stage
            logger.exception(f"[{session_id}] Ingestion crashed: {type(e).__name__}: {e}")
            await self._apply(
                SessionFailed(
                    session_id=session_id,
                    error_kind=ErrorKind.INTERNAL,
                    message=f"{ErrorKind.INTERNAL.value}: {summarize_error(e)}",
                )
            )
        finally:
            self._semaphore.release()
            self._tasks.pop(session_id, None)
            self._last_progress.pop(session_id, None)

    async def run(self, session_id: str) -> None:
        """
        Execute the five stages in order and finish the session.

        Args:
            session_id: Session created by start()
        """
        session = await self.sessions.get(session_id)
        if session is None:
            logger.warning(f"[{session_id}] Run requested for unknown session")
            return
        domain = session.domain
        start = time.perf_counter()

        try:
            analysis_result = await self._run_stage(
                session_id, IngestionStep.ANALYSIS, lambda: self._analyze(session_id, domain)
            )
            if not analysis_result.ok:
                return await self._finish(session_id, analysis_result)
            analysis: DomainAnalysis = analysis_result.value

            collect_result = await self._run_stage(
                session_id, IngestionStep.COLLECTION, lambda: self._collect_for_session(session_id, domain)
            )
            if not collect_result.ok:
                return await self._finish(session_id, collect_result)
            collection: CollectionResult = collect_result.value

            process_result = await self._run_stage(
                session_id,
                IngestionStep.PROCESSING,
                lambda: self._process(session_id, domain, collection, analysis),
            )
            if not process_result.ok:
                return await self._finish(session_id, process_result)

            build_result = await self._run_stage(
                session_id,
                IngestionStep.KNOWLEDGE_GRAPH,
                lambda: self._build(session_id, domain, process_result.value),
            )
            if not build_result.ok:
                return await self._finish(session_id, build_result)

            optimize_result = await self._run_stage(
                session_id,
                IngestionStep.OPTIMIZATION,
                lambda: self._optimize(build_result.value),
            )
            await self._finish(session_id, optimize_result)

        except asyncio.CancelledError:
            current = await self.sessions.get(session_id)
            step = current.current_step_key if current else None
            await self._finish(
                session_id,
                StageResult.failure(step or IngestionStep.ANALYSIS, ErrorKind.INTERRUPTED, "cancelled"),
            )
            raise
        finally:
            logger.info(
                f"[{session_id}] Run for '{domain}' ended after "
                f"{format_duration((time.perf_counter() - start) * 1000)}"
            )

    async def _run_stage(
        self,
        session_id: str,
        step: IngestionStep,
        runner: Callable[[], Awaitable[tuple[Any, list[LLMUsage]]]],
    ) -> StageResult:
        """
        Run one stage between StepStarted and StepCompleted events.

        Exceptions become a failed StageResult; cancellation propagates.
        """
        await self._apply(StepStarted(session_id=session_id, step=step))
        logger.info(f"[{session_id}] Stage {step.number}/5 started: {step.display_name}")
        try:
            value, usages = await runner()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{session_id}] Stage {step.value} failed: {type(e).__name__}: {e}")
            return StageResult.failure(step, error_kind_of(e), summarize_error(e))

        usage = StageUsage.from_usages(usages)
        if usage.tokens:
            await self._apply(StatsDelta(session_id=session_id, llm_tokens=usage.tokens))
        await self._apply(
            StepCompleted(session_id=session_id, step=step, progress=STAGE_PROGRESS[step], output=value)
        )
        logger.info(f"[{session_id}] Stage {step.number}/5 completed: {step.display_name} ({usage})")
        return StageResult.success(step, value)

    async def _finish(self, session_id: str, result: StageResult) -> None:
        """
        Interpret the last stage result into the terminal session state.

        - ok: persist a completed view, then complete (or fail on a
          persistence error)
        - interrupted: mark interrupted, persist completed stages
        - failure: mark the step and session failed, persist completed stages
        """
        session = await self.sessions.get(session_id)
        if session is None:
            logger.info(f"[{session_id}] Session removed before finishing")
            return

        if result.ok:
            await self._apply(ProgressEvent(session_id=session_id, progress=95.0, details="Saving results"))
            ingestion_id = None
            if self.persistence is not None:
                final = mark_completed(session.model_copy(deep=True), datetime.now(timezone.utc))
                try:
                    ingestion_id = await self.persistence.save_session(final)
                except PersistenceError as e:
                    message = f"{e.error_kind.value}: {summarize_error(e)}"
                    await self._apply(StepFailed(
                        session_id=session_id,
                        step=IngestionStep.OPTIMIZATION,
                        error_kind=e.error_kind,
                        message=message,
                    ))
                    await self._apply(SessionFailed(session_id=session_id, error_kind=e.error_kind, message=message))
                    return
            await self._apply(
                SessionCompleted(session_id=session_id, ingestion_id=ingestion_id, saved=ingestion_id is not None)
            )
            return

        if result.interrupted:
            await self._apply(SessionInterrupted(session_id=session_id, reason=result.message))
        else:
            message = f"{result.error_kind.value}: {result.message}"
            await self._apply(
                StepFailed(session_id=session_id, step=result.step, error_kind=result.error_kind, message=message)
            )
            await self._apply(SessionFailed(session_id=session_id, error_kind=result.error_kind, message=message))
        await self._persist_partial(session_id)

    async def _persist_partial(self, session_id: str) -> None:
        """Persist a terminal, non-completed session (only completed stage outputs are written)."""
        if self.persistence is None:
            return
        session = await self.sessions.get(session_id)
        if session is None:
            return
        try:
            ingestion_id = await self.persistence.save_session(session)
        except PersistenceError as e:
            logger.warning(f"[{session_id}] Could not persist {session.status.value} session: {e.message}")
            return
        await self.sessions.update(session_id, {"saved": True, "ingestion_id": ingestion_id})

    async def _apply(self, event: AnySessionEvent) -> Optional[IngestionSession]:
        """Apply an event and log significant progress moves."""
        snapshot = await self.sessions.apply(event)
        if snapshot is not None:
            previous = self._last_progress.get(event.session_id, 0.0)
            if is_significant_progress(previous, snapshot.progress):
                logger.info(
                    f"[{event.session_id}] Progress {snapshot.progress:.0f}% "
                    f"({snapshot.status.value}): {snapshot.details}"
                )
            self._last_progress[event.session_id] = max(previous, snapshot.progress)
        return snapshot

    # =========================================================================
    # Stage runners
    # =========================================================================

    async def _analyze(self, session_id: Optional[str], domain: str) -> tuple[DomainAnalysis, list[LLMUsage]]:
        analysis, usages = await analyze_domain(domain, self.llm_client, session_id=session_id)
        if session_id is not None:
            await self._apply(
                ProgressEvent(
                    session_id=session_id,
                    progress=15.0,
                    details=f"Identified {len(analysis.primary_concepts)} primary concepts",
                )
            )
        return analysis, usages

    async def _collect_for_session(self, session_id: str, domain: str) -> tuple[CollectionResult, list[LLMUsage]]:
        collection = await self.collect(domain, session_id=session_id)
        return collection, []

    async def _process(
        self,
        session_id: str,
        domain: str,
        collection: CollectionResult,
        analysis: DomainAnalysis,
    ) -> tuple[ProcessingResult, list[LLMUsage]]:
        processing, usages = await process_items(
            domain,
            collection.all_items(),
            analysis,
            self.llm_client,
            session_id=session_id,
            config=self.config,
        )
        await self._apply(
            StatsDelta(
                session_id=session_id,
                documents_processed=processing.total_documents,
                concepts_extracted=len(processing.concepts),
                warnings=1 if processing.used_fallback else 0,
            )
        )
        return processing, usages

    async def _build(
        self, session_id: str, domain: str, processing: ProcessingResult
    ) -> tuple[KnowledgeGraph, list[LLMUsage]]:
        graph = build_knowledge_graph(domain, session_id, processing)
        await self._apply(StatsDelta(session_id=session_id, neural_connections=graph.stats.edge_count))
        return graph, []

    async def _optimize(self, graph: KnowledgeGraph) -> tuple[OptimizationResult, list[LLMUsage]]:
        return optimize_pathways(graph, k=DEFAULT_MAX_PATHWAYS), []

    # =========================================================================
    # Collection
    # =========================================================================

    async def _run_adapter(
        self,
        adapter: BaseSourceAdapter,
        domain: str,
    ) -> tuple[SourceCategory, list[SourceItemBase], str]:
        """
        Run one adapter under the hard timeout.

        Returns:
            Tuple of (category, items, outcome) where outcome is ok, timeout
            or error; failed adapters contribute no items
        """
        category = adapter.category
        try:
            items = await asyncio.wait_for(adapter.collect(domain), timeout=self.config.ADAPTER_TIMEOUT_SECONDS)
            return category, list(items), "ok"
        except asyncio.TimeoutError:
            logger.warning(
                f"[{domain}] {category.value} adapter timed out after {self.config.ADAPTER_TIMEOUT_SECONDS}s"
            )
            return category, [], "timeout"
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"[{domain}] {category.value} adapter failed: {type(e).__name__}: {e}")
            return category, [], "error"

    async def collect(
        self,
        domain: str,
        session_id: Optional[str] = None,
        categories: Optional[Iterable[SourceCategory]] = None,
    ) -> CollectionResult:
        """
        Collect, de-duplicate and filter items from every adapter.

        Adapter failures and timeouts are tolerated: they contribute empty
        lists and are counted in stats.errors.

        Args:
            domain: Domain being ingested
            session_id: Session to report progress to (None for standalone crawls)
            categories: Restrict to these categories

        Returns:
            CollectionResult with per-category items, counts and summary
        """
        adapters = self.registry.adapters(categories)
        total = len(adapters)
        done = 0
        self.crawler_stats.runs += 1

        async def tracked(adapter: BaseSourceAdapter):
            nonlocal done
            category, items, outcome = await self._run_adapter(adapter, domain)
            self.crawler_stats.record(category, len(items), outcome)
            done += 1
            if session_id is not None:
                await self._apply(
                    StatsDelta(
                        session_id=session_id,
                        total_crawled=len(items),
                        errors=0 if outcome == "ok" else 1,
                    )
                )
                await self._apply(
                    ProgressEvent(
                        session_id=session_id,
                        progress=STAGE_PROGRESS[IngestionStep.ANALYSIS] + 25.0 * done / max(total, 1) * 0.96,
                        details=f"Collected {len(items)} {category.value} ({done}/{total} sources)",
                    )
                )
            return category, items, outcome

        results = await asyncio.gather(*(tracked(adapter) for adapter in adapters))

        raw: dict[str, list[SourceItemBase]] = {category.value: [] for category in SourceCategory}
        failed, timed_out = [], []
        for category, items, outcome in results:
            raw[category.value] = items
            if outcome == "error":
                failed.append(category.value)
            elif outcome == "timeout":
                timed_out.append(category.value)

        deduped, removed = deduplicate(raw)
        final = {
            category.value: apply_category_filter(deduped.get(category.value, []), category, self.config)
            for category in SourceCategory
        }

        collection = CollectionResult(
            domain=domain,
            items=final,
            counts={category.count_key: len(final[category.value]) for category in SourceCategory},
            errors=len(failed) + len(timed_out),
            failed_categories=failed,
            timed_out_categories=timed_out,
            duplicates_removed=removed,
            summary=summarize_collection(final),
        )
        logger.info(
            f"[{domain}] Collected {collection.summary.total_items} items "
            f"({removed} duplicates removed, {collection.errors} adapter errors)"
        )

        if session_id is not None and self.persistence is not None and self.config.STORE_CRAWLED_DOCUMENTS:
            await self._store_documents(session_id, domain, collection)
        return collection

    async def _store_documents(self, session_id: str, domain: str, collection: CollectionResult) -> None:
        items = collection.all_items()
        if not items:
            return
        try:
            await self.persistence.save_documents(domain, items)
        except PersistenceError as e:
            logger.warning(f"[{session_id}] Crawled documents not stored: {e.message}")
            await self._apply(StatsDelta(session_id=session_id, warnings=1))

    # =========================================================================
    # Client queries
    # =========================================================================

    async def _find_session(self, session_id: str) -> IngestionSession:
        """Session from memory, else from persistence."""
        session = await self.sessions.get(session_id)
        if session is None and self.persistence is not None:
            session = await self.persistence.load_session(session_id)
        if session is None:
            raise NotFoundError(f"Session {session_id} not found")
        return session

    async def progress(self, session_id: str) -> ProgressResponse:
        """Full snapshot of a session."""
        return progress_snapshot(await self._find_session(session_id))

    async def status(self, session_id: str) -> StatusResponse:
        """Lightweight snapshot of a session."""
        session = await self._find_session(session_id)
        return StatusResponse(
            session_id=session.session_id,
            status=session.status,
            progress=round(session.progress, 2),
            current_step=session.current_step,
            stats=session.stats,
            success=session.success if not session.is_active else None,
            error=session.error,
            completed_at=session.completed_at,
        )

    async def data(self, session_id: str) -> dict[str, Any]:
        """
        Artifact of a session.

        Running sessions return their progress snapshot (is_active=true);
        completed sessions return the full artifact; failed and interrupted
        sessions return the partial artifact that was reached.
        """
        session = await self._find_session(session_id)
        if session.is_active:
            return progress_snapshot(session).model_dump(mode="json")
        return session_artifact(session)

    async def delete(self, session_id: str) -> DeleteResponse:
        """
        Remove a session from memory and persistence.

        A running session is cancelled first (bounded by the shutdown grace).

        Raises:
            NotFoundError: If the session exists in neither place
        """
        task = self._tasks.get(session_id)
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task}, timeout=self.config.SHUTDOWN_GRACE_SECONDS)

        in_memory = await self.sessions.evict(session_id)
        in_database = False
        if self.persistence is not None:
            try:
                in_database = await self.persistence.delete_session(session_id)
            except PersistenceError as e:
                logger.warning(f"[{session_id}] Could not delete stored session: {e.message}")

        if not in_memory and not in_database:
            raise NotFoundError(f"Session {session_id} not found")
        logger.info(f"[{session_id}] Deleted (memory={in_memory}, database={in_database})")
        return DeleteResponse(
            session_id=session_id,
            deleted_from={"active_memory": in_memory, "database": in_database},
        )

    async def list_active(self) -> ActiveSessionsResponse:
        """Sessions held in memory, with a status summary."""
        sessions = await self.sessions.list_sessions()
        now = datetime.now(timezone.utc)
        rows = [
            ActiveSessionSummary(
                session_id=s.session_id,
                domain=s.domain,
                status=s.status,
                progress=round(s.progress, 2),
                current_step=s.current_step,
                created_at=s.created_at,
                last_update=s.last_update,
                elapsed_formatted=format_duration(s.elapsed_ms(now)),
                error=s.error,
            )
            for s in sessions
        ]
        by_status = Counter(s.status for s in sessions)
        summary = {
            "total": len(sessions),
            "completed": by_status[SessionStatus.COMPLETED],
            "running": sum(1 for s in sessions if s.is_active),
            "failed": by_status[SessionStatus.FAILED],
            "interrupted": by_status[SessionStatus.INTERRUPTED],
            "avg_progress": round(sum(s.progress for s in sessions) / len(sessions), 2) if sessions else 0.0,
        }
        return ActiveSessionsResponse(sessions=rows, summary=summary)

    async def list_recent(self, page: int = 1, limit: int = 10) -> RecentSessionsResponse:
        """
        Completed sessions, newest first.

        Raises:
            InputError: If page < 1 or limit is outside 1..50
        """
        if page < 1:
            raise InputError("page must be >= 1")
        if limit < 1 or limit > MAX_RECENT_LIMIT:
            raise InputError(f"limit must be between 1 and {MAX_RECENT_LIMIT}")

        if self.persistence is not None:
            rows, total = await self.persistence.list_completed(page=page, limit=limit)
        else:
            completed = [
                s for s in await self.sessions.list_sessions() if s.status == SessionStatus.COMPLETED
            ]
            completed.sort(key=lambda s: s.completed_at, reverse=True)
            total = len(completed)
            rows = [
                {
                    "session_id": s.session_id,
                    "domain": s.domain,
                    "status": s.status.value,
                    "completed_at": s.completed_at.isoformat(),
                    "processing_time_ms": s.processing_time_ms,
                    "stats": s.stats.model_dump(mode="json"),
                }
                for s in completed[(page - 1) * limit : page * limit]
            ]

        pages = (total + limit - 1) // limit
        return RecentSessionsResponse(
            sessions=rows,
            pagination={
                "page": page,
                "limit": limit,
                "total": total,
                "pages": pages,
                "has_next": page < pages,
                "has_prev": page > 1,
            },
        )

    async def health(self) -> HealthResponse:
        """Service health: healthy unless the database is unreachable."""
        database_ok = True
        if self.persistence is not None:
            database_ok = await self.persistence.ping()
        return HealthResponse(
            status="healthy" if database_ok else "unhealthy",
            pool_info=self.pool_info(),
            active_count=self.sessions.active_count,
            uptime_seconds=round(time.monotonic() - self._started_at, 1),
            llm=self.llm_client.health_check(),
            database={"configured": self.persistence is not None, "connected": database_ok},
        )

    def pool_info(self) -> dict[str, Any]:
        if self.browser_pool is None:
            return {"size": 0, "launched": 0, "connected": 0, "replacements": 0, "enabled": False}
        return {**self.browser_pool.pool_info(), "enabled": self.config.BROWSER_ENABLED}

    async def latest_graph(self, domain: Optional[str] = None) -> dict[str, Any]:
        """
        Most recent completed knowledge graph, from memory or persistence.

        Args:
            domain: Restrict to this domain (case-insensitive)

        Raises:
            NotFoundError: If no graph is available
        """
        wanted = domain.strip().lower() if domain else None
        candidates = [
            s
            for s in await self.sessions.list_sessions()
            if s.status == SessionStatus.COMPLETED
            and s.knowledge_graph is not None
            and (wanted is None or s.domain.lower() == wanted)
        ]
        if candidates:
            latest = max(candidates, key=lambda s: s.completed_at)
            return graph_view(latest)

        if self.persistence is not None:
            stored = await self.persistence.load_latest_graph(domain)
            if stored is not None:
                return stored
        raise NotFoundError(f"No knowledge graph available{f' for {domain}' if domain else ''}")

    def crawler_statistics(self) -> dict[str, Any]:
        """Browser pool state, per-category budgets and lifetime adapter counters."""
        return {
            "pool_info": self.pool_info(),
            "adapters": self.registry.list_adapters(),
            "budgets": self.config.category_budget(),
            "counters": self.crawler_stats.to_dict(),
        }

    # =========================================================================
    # Standalone stage operations
    # =========================================================================

    async def analyze(self, domain: Any) -> DomainAnalysis:
        """Run the analysis stage without a session."""
        analysis, _ = await self._analyze(None, validate_domain(domain))
        return analysis

    async def crawl(self, domain: Any, categories: Optional[list[SourceCategory]] = None) -> CollectionResult:
        """Collect, de-duplicate and filter without a session."""
        return await self.collect(validate_domain(domain), categories=categories)

    async def process(self, domain: Any, items: list[SourceItemBase]) -> ProcessingResult:
        """Extract concepts and relationships from caller-supplied items."""
        processing, _ = await process_items(
            validate_domain(domain), list(items), None, self.llm_client, config=self.config
        )
        return processing

    async def build(self, domain: Any, concepts: list[Concept], relationships: list[Relationship]) -> KnowledgeGraph:
        """Build a knowledge graph from caller-supplied concepts and relationships."""
        processing = ProcessingResult(concepts=list(concepts), relationships=list(relationships))
        return build_knowledge_graph(validate_domain(domain), None, processing)

    async def optimize(self, graph: KnowledgeGraph, k: int = DEFAULT_MAX_PATHWAYS) -> OptimizationResult:
        """Compute learning pathways over a caller-supplied graph."""
        return optimize_pathways(graph, k=k)

    async def optimal_path(self, graph: KnowledgeGraph, start_node: str, end_node: str) -> dict[str, Any]:
        """Shortest learning path between two nodes of a caller-supplied graph."""
        path = find_optimal_path(graph, start_node, end_node)
        nodes = graph.node_index()
        return {
            "start_node": start_node,
            "end_node": end_node,
            "found": bool(path),
            "path": path,
            "steps": [{"node_id": n, "name": nodes[n].name} for n in path],
            "length": len(path),
        }

    # =========================================================================
    # Maintenance
    # =========================================================================

    async def evict_expired(self) -> int:
        """Drop terminal sessions past their TTL."""
        return await self.sessions.evict_expired()

    async def shutdown(self, grace: Optional[float] = None) -> list[str]:
        """
        Stop accepting sessions, cancel running ones and release resources.

        Cancelled runs persist their completed stages while the grace period
        lasts. Sessions still active afterwards are marked interrupted.

        Args:
            grace: Seconds to wait for cancelled runs (defaults to SHUTDOWN_GRACE_SECONDS)

        Returns:
            Ids of the sessions that were interrupted
        """
        grace = self.config.SHUTDOWN_GRACE_SECONDS if grace is None else grace
        self._closing = True

        running = {sid: task for sid, task in self._tasks.items() if not task.done()}
        for task in running.values():
            task.cancel()
        if running:
            logger.info(f"Shutdown: cancelling {len(running)} running ingestions (grace {grace}s)")
            _, pending = await asyncio.wait(set(running.values()), timeout=grace)
            if pending:
                logger.warning(f"Shutdown: {len(pending)} ingestions did not finish within {grace}s")

        stragglers = await self.sessions.interrupt_all("shutdown")
        if self.browser_pool is not None:
            await self.browser_pool.shutdown()

        interrupted = sorted(set(running) | set(stragglers))
        logger.info(f"Shutdown complete ({len(interrupted)} sessions interrupted)")
        return interrupted
