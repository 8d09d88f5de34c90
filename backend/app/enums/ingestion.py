"""
Domain ingestion enums.

Defines enums for session lifecycle, source categories, knowledge graph
typing, and document processing status.
"""

from enum import Enum


class SessionStatus(str, Enum):
    """
    Lifecycle status of an ingestion session.

    Forward order: starting → analyzing → collecting → processing →
    building → optimizing → completed. Failed and interrupted are terminal
    and may be entered from any non-terminal state.
    """

    STARTING = "starting"
    ANALYZING = "analyzing"
    COLLECTING = "collecting"
    PROCESSING = "processing"
    BUILDING = "building"
    OPTIMIZING = "optimizing"
    COMPLETED = "completed"
    FAILED = "failed"
    INTERRUPTED = "interrupted"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {SessionStatus.COMPLETED, SessionStatus.FAILED, SessionStatus.INTERRUPTED}
)


class StepStatus(str, Enum):
    """Status of a single pipeline step within a session."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class IngestionStep(str, Enum):
    """
    The five pipeline steps, in execution order.

    The value doubles as the key in IngestionSession.steps.
    """

    ANALYSIS = "analysis"
    COLLECTION = "collection"
    PROCESSING = "processing"
    KNOWLEDGE_GRAPH = "knowledge_graph"
    OPTIMIZATION = "optimization"

    @property
    def number(self) -> int:
        """1-based step number."""
        return list(IngestionStep).index(self) + 1

    @property
    def display_name(self) -> str:
        return STEP_DISPLAY_NAMES[self]

    @property
    def weight(self) -> int:
        """Share of overall progress owned by this step."""
        return STEP_WEIGHTS[self]

    @property
    def running_status(self) -> "SessionStatus":
        """Session status while this step runs."""
        return STEP_SESSION_STATUS[self]


STEP_DISPLAY_NAMES = {
    IngestionStep.ANALYSIS: "Domain Analysis",
    IngestionStep.COLLECTION: "Knowledge Collection",
    IngestionStep.PROCESSING: "Information Processing",
    IngestionStep.KNOWLEDGE_GRAPH: "Knowledge Graph Building",
    IngestionStep.OPTIMIZATION: "Neural Pathway Optimization",
}

STEP_WEIGHTS = {
    IngestionStep.ANALYSIS: 20,
    IngestionStep.COLLECTION: 25,
    IngestionStep.PROCESSING: 25,
    IngestionStep.KNOWLEDGE_GRAPH: 20,
    IngestionStep.OPTIMIZATION: 10,
}

STEP_SESSION_STATUS = {
    IngestionStep.ANALYSIS: SessionStatus.ANALYZING,
    IngestionStep.COLLECTION: SessionStatus.COLLECTING,
    IngestionStep.PROCESSING: SessionStatus.PROCESSING,
    IngestionStep.KNOWLEDGE_GRAPH: SessionStatus.BUILDING,
    IngestionStep.OPTIMIZATION: SessionStatus.OPTIMIZING,
}


class SourceCategory(str, Enum):
    """
    Source categories, in deduplication tie-break order.

    Earlier categories win ties: papers > repos > docs > videos > expert > reports.
    """

    PAPERS = "papers"
    REPOS = "repos"
    DOCS = "docs"
    VIDEOS = "videos"
    EXPERT = "expert"
    REPORTS = "reports"

    @property
    def order(self) -> int:
        return list(SourceCategory).index(self)

    @property
    def count_key(self) -> str:
        """Key used in collection count summaries."""
        return CATEGORY_COUNT_KEYS[self]

    @property
    def document_type(self) -> str:
        """Source type label stored with crawled documents."""
        return CATEGORY_DOCUMENT_TYPES[self]


CATEGORY_COUNT_KEYS = {
    SourceCategory.PAPERS: "academic_papers",
    SourceCategory.REPOS: "code_repos",
    SourceCategory.DOCS: "technical_docs",
    SourceCategory.VIDEOS: "video_tutorials",
    SourceCategory.EXPERT: "expert_interviews",
    SourceCategory.REPORTS: "industry_reports",
}

CATEGORY_DOCUMENT_TYPES = {
    SourceCategory.PAPERS: "academic_paper",
    SourceCategory.REPOS: "code_repo",
    SourceCategory.DOCS: "technical_doc",
    SourceCategory.VIDEOS: "video_tutorial",
    SourceCategory.EXPERT: "expert_interview",
    SourceCategory.REPORTS: "industry_report",
}


class SourceProvider(str, Enum):
    """Where a source item came from."""

    REAL = "real"  # Live provider response
    SIMULATED = "simulated"  # Deterministic synthetic data
    FALLBACK = "fallback"  # Secondary path (e.g., HTTP instead of browser)


class DifficultyLevel(str, Enum):
    """Learning difficulty of a source item, concept or pathway."""

    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @property
    def rank(self) -> int:
        return {"beginner": 0, "intermediate": 1, "advanced": 2}[self.value]


class ConceptType(str, Enum):
    """Kind of knowledge a concept represents."""

    FUNDAMENTAL = "fundamental"
    THEORY = "theory"
    ALGORITHM = "algorithm"
    TOOL = "tool"
    APPLICATION = "application"
    CONCEPT = "concept"
    SKILL = "skill"
    FRAMEWORK = "framework"


class RelationshipType(str, Enum):
    """Typed edge between two concepts."""

    PREREQUISITE = "prerequisite"
    RELATED_TO = "related_to"
    BUILDS_UPON = "builds_upon"
    APPLIED_IN = "applied_in"
    COMPONENT_OF = "component_of"
    DEPENDS_ON = "depends_on"
    EXTENDS = "extends"
    IMPLEMENTS = "implements"


class EdgeDifficulty(str, Enum):
    """Effort needed to traverse a relationship while learning."""

    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class EvidenceMethod(str, Enum):
    """How a concept or relationship was derived."""

    LLM = "llm"
    PATTERN = "pattern"
    FALLBACK = "fallback"


class AnalysisSource(str, Enum):
    """Origin of a domain analysis."""

    LLM = "llm"
    FALLBACK = "fallback"


class DocumentProcessingStatus(str, Enum):
    """Processing status of an individually stored crawled document."""

    RAW = "raw"
    PROCESSED = "processed"
    ANALYZED = "analyzed"
    INTEGRATED = "integrated"


class ErrorKind(str, Enum):
    """
    Bounded error tags surfaced to clients.

    Raw provider error text never reaches clients; only one of these tags
    plus a short summary.
    """

    INPUT_ERROR = "input_error"
    RETRY_LATER = "retry_later"
    RATE_LIMITED = "rate_limited"
    LLM_FAILURE = "llm_failure"
    INVALID_RESPONSE = "invalid_response"
    STAGE_FAILURE = "stage_failure"
    PERSISTENCE_FAILURE = "persistence_failure"
    TIMEOUT = "timeout"
    INTERRUPTED = "interrupted"
    INTERNAL = "internal"
