"""
Ingestion Persistence Gateway

Durable storage for ingestion sessions, their knowledge graphs and the
individually crawled documents. All writes go through PostgreSQL upserts,
so saving the same session twice leaves exactly one record.

Guarantees:
- save_session is idempotent on session_id and serialized per session id
- Only the outputs of steps that completed are written; an interrupted
  session never receives build or optimize payloads
- Transient database errors (connection drops, OSError) are retried 3 times
  with 2/4/8 s exponential waits; anything still failing is raised as
  PersistenceError

The converters session_to_record / record_to_session are pure, so the
round trip can be checked without a database.

Usage:
    from app.services.ingestion.persistence import PersistenceGateway

    gateway = PersistenceGateway()
    ingestion_id = await gateway.save_session(session)
    restored = await gateway.load_session(session.session_id)
"""

import asyncio
import logging
import weakref
from collections.abc import Mapping
from typing import Any, Awaitable, Callable, Optional, TypeVar

from sqlalchemy import delete, func, select, text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import DBAPIError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.db.models import CrawledDocument, IngestionRecord, KnowledgeGraphRecord
from app.enums.ingestion import (
    DocumentProcessingStatus,
    ErrorKind,
    IngestionStep,
    SessionStatus,
    StepStatus,
)
from app.middleware.error_handling import PersistenceError
from app.pipelines.utils.hash_utils import normalize_url
from app.models.knowledge import (
    DomainAnalysis,
    KnowledgeGraph,
    OptimizationResult,
    ProcessingResult,
)
from app.models.session import (
    IngestionSession,
    RequesterInfo,
    SessionStats,
    StepState,
)
from app.models.sources import CollectionResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Errors worth retrying: dropped connections, pool timeouts, socket errors
TRANSIENT_ERRORS = (DBAPIError, OSError)

# Session fields that are never persisted
IN_MEMORY_FIELDS = frozenset({"details", "last_update"})

STEP_OUTPUT_MODELS = {
    IngestionStep.ANALYSIS: ("analysis", DomainAnalysis),
    IngestionStep.COLLECTION: ("collection", CollectionResult),
    IngestionStep.PROCESSING: ("processing", ProcessingResult),
    IngestionStep.KNOWLEDGE_GRAPH: ("knowledge_graph", KnowledgeGraph),
    IngestionStep.OPTIMIZATION: ("optimization", OptimizationResult),
}


# =============================================================================
# Converters
# =============================================================================


def _step_completed(session: IngestionSession, step: IngestionStep) -> bool:
    state = session.steps.get(step.value)
    return state is not None and state.status == StepStatus.COMPLETED


def session_to_record(session: IngestionSession) -> dict[str, Any]:
    """
    Column values of the ingestion_records row for a session.

    Stage outputs are included only for steps whose status is completed.

    Args:
        session: Session snapshot to persist

    Returns:
        Dict keyed by IngestionRecord column name (without the primary key)
    """
    record: dict[str, Any] = {
        "session_id": session.session_id,
        "domain": session.domain,
        "status": session.status.value,
        "progress": session.progress,
        "current_step": session.current_step,
        "success": session.success,
        "error": session.error,
        "error_kind": session.error_kind.value if session.error_kind else None,
        "stats": session.stats.model_dump(mode="json"),
        "steps": {key: state.model_dump(mode="json") for key, state in session.steps.items()},
        "requester": session.requester.model_dump(mode="json"),
        "created_at": session.created_at,
        "completed_at": session.completed_at,
        "failed_at": session.failed_at,
        "interrupted_at": session.interrupted_at,
        "processing_time_ms": session.processing_time_ms,
    }
    for step, (field, _) in STEP_OUTPUT_MODELS.items():
        output = getattr(session, field)
        if output is not None and _step_completed(session, step):
            record[field] = output.model_dump(mode="json")
        else:
            record[field] = None
    return record


def record_to_session(record: Any) -> IngestionSession:
    """
    Rebuild a session from a stored record.

    Accepts an IngestionRecord row or a plain mapping of its columns. The
    primary key, when present, becomes ingestion_id and marks the session
    as saved.

    Args:
        record: IngestionRecord or mapping

    Returns:
        IngestionSession (details and last_update are reconstructed)
    """
    if isinstance(record, Mapping):
        get = record.get
    else:
        def get(key):
            return getattr(record, key, None)

    steps = {step.value: StepState() for step in IngestionStep}
    for key, value in (get("steps") or {}).items():
        steps[key] = StepState.model_validate(value)

    record_id = get("id")
    created_at = get("created_at")
    session = IngestionSession(
        session_id=get("session_id"),
        domain=get("domain"),
        status=SessionStatus(get("status")),
        progress=get("progress") or 0.0,
        current_step=get("current_step") or 0,
        steps=steps,
        stats=SessionStats.model_validate(get("stats") or {}),
        requester=RequesterInfo.model_validate(get("requester") or {}),
        created_at=created_at,
        last_update=get("completed_at") or get("failed_at") or get("interrupted_at") or created_at,
        completed_at=get("completed_at"),
        failed_at=get("failed_at"),
        interrupted_at=get("interrupted_at"),
        processing_time_ms=get("processing_time_ms"),
        success=bool(get("success")),
        error=get("error"),
        error_kind=ErrorKind(get("error_kind")) if get("error_kind") else None,
        ingestion_id=str(record_id) if record_id is not None else None,
        saved=record_id is not None,
        details="Loaded from storage",
    )
    for field, model in STEP_OUTPUT_MODELS.values():
        payload = get(field)
        if payload is not None:
            setattr(session, field, model.model_validate(payload))
    return session


def graph_to_record(session: IngestionSession) -> Optional[dict[str, Any]]:
    """knowledge_graphs row for a session, or None if the graph step never completed."""
    graph = session.knowledge_graph
    if graph is None or not _step_completed(session, IngestionStep.KNOWLEDGE_GRAPH):
        return None

    optimization = session.optimization
    if optimization is not None and not _step_completed(session, IngestionStep.OPTIMIZATION):
        optimization = None

    return {
        "session_id": session.session_id,
        "domain": session.domain,
        "nodes": [node.model_dump(mode="json") for node in graph.nodes],
        "edges": [edge.model_dump(mode="json") for edge in graph.edges],
        "pathways": [p.model_dump(mode="json") for p in optimization.pathways] if optimization else [],
        "learning_sequences": optimization.learning_sequences if optimization else {},
        "graph_stats": graph.stats.model_dump(mode="json"),
    }


def graph_record_to_dict(record: KnowledgeGraphRecord) -> dict[str, Any]:
    """Client-facing view of a stored knowledge graph."""
    return {
        "session_id": record.session_id,
        "domain": record.domain,
        "nodes": record.nodes or [],
        "edges": record.edges or [],
        "pathways": record.pathways or [],
        "learning_sequences": record.learning_sequences or {},
        "stats": record.graph_stats or {},
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "source": "database",
    }


def document_to_record(domain: str, item: Any) -> dict[str, Any]:
    """crawled_documents row for one source item."""
    full_text = getattr(item, "content", "") or ""
    metadata = item.model_dump(mode="json", exclude={"title", "url", "summary", "content"})
    return {
        "url": normalize_url(item.url),
        "domain": domain,
        "source_type": item.category.document_type,
        "title": item.title[:1000],
        "content": {
            "summary": item.summary or "",
            "full_text": full_text,
            "extracted_concepts": [],
            "key_points": list(getattr(item, "key_findings", []) or []),
        },
        "metadata_json": metadata,
        "relevance_score": item.relevance_score,
        "processing_status": DocumentProcessingStatus.RAW.value,
    }


def record_summary(record: IngestionRecord) -> dict[str, Any]:
    """One row of the recent-sessions listing."""
    graph = record.knowledge_graph or {}
    optimization = record.optimization or {}
    processing = record.processing or {}
    return {
        "session_id": record.session_id,
        "ingestion_id": str(record.id),
        "domain": record.domain,
        "status": record.status,
        "completed_at": record.completed_at.isoformat() if record.completed_at else None,
        "processing_time_ms": record.processing_time_ms,
        "stats": record.stats or {},
        "concepts": len(processing.get("concepts", [])),
        "nodes": len(graph.get("nodes", [])),
        "pathways": len(optimization.get("pathways", [])),
    }


# =============================================================================
# Gateway
# =============================================================================


class PersistenceGateway:
    """
    Async PostgreSQL gateway for ingestion results.

    Attributes:
        config: Ingestion settings (retry attempts and base wait)
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Any]] = None,
        config: Optional[IngestionSettings] = None,
    ):
        """
        Initialize the gateway.

        Args:
            session_factory: Callable returning an AsyncSession context
                manager (defaults to app.db.base.async_session_maker)
            config: Ingestion settings
        """
        if session_factory is None:
            from app.db.base import async_session_maker

            session_factory = async_session_maker
        self._session_factory = session_factory
        self.config = config or ingestion_settings
        # Entries live only while a write for that session holds or awaits the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()

    def _lock_for(self, session_id: str) -> asyncio.Lock:
        lock = self._locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[session_id] = lock
        return lock

    async def _run(
        self,
        description: str,
        operation: Callable[[AsyncSession], Awaitable[T]],
    ) -> T:
        """
        Run one unit of work in its own transaction, with retries.

        Raises:
            PersistenceError: After the retries are exhausted or on a
                non-transient database error
        """
        base = self.config.PERSISTENCE_RETRY_BASE_SECONDS
        try:
            async for attempt in AsyncRetrying(
                stop=stop_after_attempt(self.config.PERSISTENCE_MAX_ATTEMPTS),
                wait=wait_exponential(multiplier=base, min=base, max=base * 4),
                retry=retry_if_exception_type(TRANSIENT_ERRORS),
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    async with self._session_factory() as db:
                        result = await operation(db)
                        await db.commit()
                        return result
        except TRANSIENT_ERRORS as e:
            logger.error(f"Persistence failed ({description}) after retries: {type(e).__name__}")
            raise PersistenceError(f"Database unavailable while trying to {description}") from e
        except SQLAlchemyError as e:
            logger.error(f"Persistence failed ({description}): {type(e).__name__}: {e}")
            raise PersistenceError(f"Database error while trying to {description}") from e

    # =========================================================================
    # Sessions
    # =========================================================================

    async def save_session(self, session: IngestionSession) -> str:
        """
        Upsert a session record (and its knowledge graph, when built).

        Args:
            session: Session snapshot

        Returns:
            Ingestion id (primary key of the record) as a string
        """
        record = session_to_record(session)
        graph_record = graph_to_record(session)

        async def _save(db: AsyncSession) -> str:
            update_columns = {k: v for k, v in record.items() if k != "session_id"}
            update_columns["updated_at"] = func.now()
            stmt = (
                pg_insert(IngestionRecord)
                .values(**record)
                .on_conflict_do_update(index_elements=["session_id"], set_=update_columns)
                .returning(IngestionRecord.id)
            )
            result = await db.execute(stmt)
            ingestion_id = result.scalar_one()

            if graph_record is not None:
                graph_stmt = pg_insert(KnowledgeGraphRecord).values(**graph_record)
                graph_stmt = graph_stmt.on_conflict_do_update(
                    index_elements=["session_id"],
                    set_={k: v for k, v in graph_record.items() if k != "session_id"},
                )
                await db.execute(graph_stmt)
            return str(ingestion_id)

        async with self._lock_for(session.session_id):
            ingestion_id = await self._run(f"save session {session.session_id}", _save)

        logger.info(
            f"Saved session {session.session_id} ({session.status.value}) as ingestion {ingestion_id}"
        )
        return ingestion_id

    async def load_session(self, session_id: str) -> Optional[IngestionSession]:
        """Stored session by id, or None."""

        async def _load(db: AsyncSession) -> Optional[IngestionRecord]:
            result = await db.execute(
                select(IngestionRecord).where(IngestionRecord.session_id == session_id)
            )
            return result.scalar_one_or_none()

        row = await self._run(f"load session {session_id}", _load)
        return record_to_session(row) if row is not None else None

    async def load_latest_for_domain(self, domain: str) -> Optional[IngestionSession]:
        """Most recently completed session for a domain (case-insensitive), or None."""

        async def _load(db: AsyncSession) -> Optional[IngestionRecord]:
            result = await db.execute(
                select(IngestionRecord)
                .where(func.lower(IngestionRecord.domain) == domain.strip().lower())
                .where(IngestionRecord.status == SessionStatus.COMPLETED.value)
                .order_by(IngestionRecord.completed_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

        row = await self._run(f"load latest session for '{domain}'", _load)
        return record_to_session(row) if row is not None else None

    async def load_latest_completed(self) -> Optional[IngestionSession]:
        """Most recently completed session of any domain, or None."""

        async def _load(db: AsyncSession) -> Optional[IngestionRecord]:
            result = await db.execute(
                select(IngestionRecord)
                .where(IngestionRecord.status == SessionStatus.COMPLETED.value)
                .order_by(IngestionRecord.completed_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

        row = await self._run("load latest completed session", _load)
        return record_to_session(row) if row is not None else None

    async def list_completed(self, page: int = 1, limit: int = 10) -> tuple[list[dict[str, Any]], int]:
        """
        Completed sessions, newest first.

        Args:
            page: 1-based page number
            limit: Page size

        Returns:
            Tuple of (summary rows for the page, total completed count)
        """

        async def _list(db: AsyncSession) -> tuple[list[dict[str, Any]], int]:
            completed = IngestionRecord.status == SessionStatus.COMPLETED.value
            count_result = await db.execute(
                select(func.count()).select_from(IngestionRecord).where(completed)
            )
            total = count_result.scalar_one()

            result = await db.execute(
                select(IngestionRecord)
                .where(completed)
                .order_by(IngestionRecord.completed_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
            )
            return [record_summary(row) for row in result.scalars().all()], total

        return await self._run("list completed sessions", _list)

    async def delete_session(self, session_id: str) -> bool:
        """
        Delete a session record and its knowledge graph.

        Returns:
            True if a session record existed
        """

        async def _delete(db: AsyncSession) -> bool:
            await db.execute(
                delete(KnowledgeGraphRecord).where(KnowledgeGraphRecord.session_id == session_id)
            )
            result = await db.execute(
                delete(IngestionRecord).where(IngestionRecord.session_id == session_id)
            )
            return (result.rowcount or 0) > 0

        async with self._lock_for(session_id):
            deleted = await self._run(f"delete session {session_id}", _delete)
        if deleted:
            logger.info(f"Deleted stored session {session_id}")
        return deleted

    # =========================================================================
    # Knowledge graphs
    # =========================================================================

    async def load_latest_graph(self, domain: Optional[str] = None) -> Optional[dict[str, Any]]:
        """
        Most recent stored knowledge graph.

        Args:
            domain: Restrict to this domain (case-insensitive)

        Returns:
            Graph view dict, or None when nothing is stored
        """

        async def _load(db: AsyncSession) -> Optional[KnowledgeGraphRecord]:
            query = select(KnowledgeGraphRecord)
            if domain:
                query = query.where(func.lower(KnowledgeGraphRecord.domain) == domain.strip().lower())
            result = await db.execute(query.order_by(KnowledgeGraphRecord.created_at.desc()).limit(1))
            return result.scalar_one_or_none()

        row = await self._run("load latest knowledge graph", _load)
        return graph_record_to_dict(row) if row is not None else None

    # =========================================================================
    # Crawled documents
    # =========================================================================

    async def save_documents(self, domain: str, items: list) -> int:
        """
        Upsert crawled documents by normalized url.

        Args:
            domain: Domain the items were collected for
            items: Source items (any variant)

        Returns:
            Number of documents written
        """
        records = list({record["url"]: record for record in (document_to_record(domain, i) for i in items)}.values())
        if not records:
            return 0

        async def _save(db: AsyncSession) -> int:
            for record in records:
                stmt = pg_insert(CrawledDocument).values(**record)
                stmt = stmt.on_conflict_do_update(
                    index_elements=["url"],
                    set_={
                        "domain": stmt.excluded.domain,
                        "source_type": stmt.excluded.source_type,
                        "title": stmt.excluded.title,
                        "content": stmt.excluded.content,
                        "metadata_json": stmt.excluded.metadata_json,
                        "relevance_score": stmt.excluded.relevance_score,
                        "updated_at": func.now(),
                    },
                )
                await db.execute(stmt)
            return len(records)

        written = await self._run(f"save {len(records)} documents for '{domain}'", _save)
        logger.info(f"[{domain}] Stored {written} crawled documents")
        return written

    # =========================================================================
    # Health
    # =========================================================================

    async def ping(self) -> bool:
        """True if the database answers a trivial query."""
        try:
            async with self._session_factory() as db:
                await db.execute(text("SELECT 1"))
            return True
        except (SQLAlchemyError, OSError) as e:
            logger.warning(f"Database ping failed: {type(e).__name__}")
            return False
