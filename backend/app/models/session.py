"""
Ingestion Session Models

State of one end-to-end ingestion, plus the events components publish to
the session manager. Only the session manager mutates sessions; every
other component describes what happened by emitting an event.

Usage:
    from app.models.session import IngestionSession, ProgressEvent, StepStarted

    await manager.apply(StepStarted(session_id=sid, step=IngestionStep.COLLECTION))
    await manager.apply(ProgressEvent(session_id=sid, progress=32.5, details="papers done"))
"""

from datetime import datetime, timezone
from typing import Optional, Union

from pydantic import BaseModel, Field

from app.enums.ingestion import (
    ErrorKind,
    IngestionStep,
    SessionStatus,
    StepStatus,
)
from app.models.knowledge import (
    DomainAnalysis,
    KnowledgeGraph,
    OptimizationResult,
    ProcessingResult,
)
from app.models.sources import CollectionResult


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StepState(BaseModel):
    """Lifecycle of one pipeline step."""

    status: StepStatus = StepStatus.PENDING
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None


class SessionStats(BaseModel):
    """Counters accumulated while a session runs."""

    documents_processed: int = 0
    concepts_extracted: int = 0
    neural_connections: int = 0
    errors: int = 0
    warnings: int = 0
    total_crawled: int = 0
    llm_tokens: int = 0


class RequesterInfo(BaseModel):
    """Who started the session."""

    ip: Optional[str] = None
    user_agent: Optional[str] = None


def _default_steps() -> dict[str, StepState]:
    return {step.value: StepState() for step in IngestionStep}


class IngestionSession(BaseModel):
    """
    Full state of one ingestion.

    Invariants (enforced by the session manager):
        - progress never decreases
        - status=completed implies progress=100 and every step completed
        - status=failed implies the current step is failed and progress <= 99
    """

    session_id: str
    domain: str
    status: SessionStatus = SessionStatus.STARTING
    progress: float = Field(default=0.0, ge=0.0, le=100.0)
    current_step: int = Field(default=0, ge=0, le=5)
    steps: dict[str, StepState] = Field(default_factory=_default_steps)
    stats: SessionStats = Field(default_factory=SessionStats)
    details: str = ""

    created_at: datetime = Field(default_factory=_utc_now)
    last_update: datetime = Field(default_factory=_utc_now)
    completed_at: Optional[datetime] = None
    failed_at: Optional[datetime] = None
    interrupted_at: Optional[datetime] = None
    processing_time_ms: Optional[int] = None

    success: bool = False
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    requester: RequesterInfo = Field(default_factory=RequesterInfo)

    ingestion_id: Optional[str] = None
    saved: bool = False

    analysis: Optional[DomainAnalysis] = None
    collection: Optional[CollectionResult] = None
    processing: Optional[ProcessingResult] = None
    knowledge_graph: Optional[KnowledgeGraph] = None
    optimization: Optional[OptimizationResult] = None

    @property
    def is_active(self) -> bool:
        return not self.status.is_terminal

    @property
    def current_step_key(self) -> Optional[IngestionStep]:
        if 1 <= self.current_step <= len(IngestionStep):
            return list(IngestionStep)[self.current_step - 1]
        return None

    def elapsed_ms(self, now: Optional[datetime] = None) -> int:
        end = self.completed_at or self.failed_at or self.interrupted_at
        end = end or now or _utc_now()
        return max(int((end - self.created_at).total_seconds() * 1000), 0)


# =============================================================================
# Session Events
# =============================================================================


class SessionEvent(BaseModel):
    """Base class for events published to the session manager."""

    session_id: str
    timestamp: datetime = Field(default_factory=_utc_now)


class ProgressEvent(SessionEvent):
    """Intermediate progress inside a running step."""

    progress: float
    details: Optional[str] = None


class StepStarted(SessionEvent):
    """A step began executing."""

    step: IngestionStep
    details: Optional[str] = None


class StepCompleted(SessionEvent):
    """A step finished; its output is attached to the session."""

    step: IngestionStep
    progress: float
    output: Optional[
        Union[
            DomainAnalysis,
            CollectionResult,
            ProcessingResult,
            KnowledgeGraph,
            OptimizationResult,
        ]
    ] = None
    details: Optional[str] = None


class StepFailed(SessionEvent):
    """A step raised; recorded on the step before the session fails."""

    step: IngestionStep
    error_kind: ErrorKind
    message: str


class StatsDelta(SessionEvent):
    """Counter increments; unset fields leave counters unchanged."""

    documents_processed: int = 0
    concepts_extracted: int = 0
    neural_connections: int = 0
    errors: int = 0
    warnings: int = 0
    total_crawled: int = 0
    llm_tokens: int = 0


class SessionCompleted(SessionEvent):
    """All stages and persistence finished."""

    ingestion_id: Optional[str] = None
    saved: bool = False


class SessionFailed(SessionEvent):
    """A stage failed; the current step is marked failed."""

    error_kind: ErrorKind
    message: str


class SessionInterrupted(SessionEvent):
    """Cancelled by shutdown or external cancellation."""

    reason: str = "cancelled"


AnySessionEvent = Union[
    ProgressEvent,
    StepStarted,
    StepCompleted,
    StepFailed,
    StatsDelta,
    SessionCompleted,
    SessionFailed,
    SessionInterrupted,
]
