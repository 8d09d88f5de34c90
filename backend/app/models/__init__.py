"""Pydantic models for the application."""

from app.models.knowledge import (
    Concept,
    DomainAnalysis,
    KnowledgeGraph,
    OptimizationResult,
    Pathway,
    ProcessingResult,
    Relationship,
)
from app.models.session import IngestionSession, SessionStats
from app.models.sources import (
    CollectionResult,
    SourceItem,
    SourceItemAdapter,
)

__all__ = [
    "CollectionResult",
    "Concept",
    "DomainAnalysis",
    "IngestionSession",
    "KnowledgeGraph",
    "OptimizationResult",
    "Pathway",
    "ProcessingResult",
    "Relationship",
    "SessionStats",
    "SourceItem",
    "SourceItemAdapter",
]
