"""
Centralized enum definitions for the application.

All enums are organized by domain:
- pipeline.py: Pipeline names and LLM operations
- ingestion.py: Session lifecycle, steps, source categories, knowledge types, error kinds
- api.py: Rate limit categories

Usage:
    from app.enums import SessionStatus, IngestionStep, SourceCategory

    # Or import from specific module
    from app.enums.ingestion import RelationshipType
"""

from app.enums.api import RateLimitType
from app.enums.pipeline import (
    PipelineName,
    PipelineOperation,
)
from app.enums.ingestion import (
    TERMINAL_STATUSES,
    AnalysisSource,
    ConceptType,
    DifficultyLevel,
    DocumentProcessingStatus,
    EdgeDifficulty,
    ErrorKind,
    EvidenceMethod,
    IngestionStep,
    RelationshipType,
    SessionStatus,
    SourceCategory,
    SourceProvider,
    StepStatus,
)

__all__ = [
    # API
    "RateLimitType",
    # Pipeline
    "PipelineName",
    "PipelineOperation",
    # Session lifecycle
    "SessionStatus",
    "StepStatus",
    "IngestionStep",
    "TERMINAL_STATUSES",
    "ErrorKind",
    # Sources
    "SourceCategory",
    "SourceProvider",
    "DifficultyLevel",
    "DocumentProcessingStatus",
    # Knowledge
    "ConceptType",
    "RelationshipType",
    "EdgeDifficulty",
    "EvidenceMethod",
    "AnalysisSource",
]
