"""
Knowledge Artifact Models

Pydantic models for the outputs of the analyze, process, build and optimize
stages: domain analysis, concepts, typed relationships, the knowledge graph
and learning pathways.

One canonical graph schema is used everywhere (in memory, in API responses
and in persistence): nodes carry `name` and `importance`, edges carry
`relationship` and `strength`.

Usage:
    from app.models.knowledge import Concept, Relationship, KnowledgeGraph

    concept = Concept(name="Gradient Descent", type=ConceptType.ALGORITHM)
    edge = Relationship(source="linear-algebra", target="gradient-descent",
                        relationship=RelationshipType.PREREQUISITE)
"""

import uuid
from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from app.enums.ingestion import (
    AnalysisSource,
    ConceptType,
    DifficultyLevel,
    EdgeDifficulty,
    EvidenceMethod,
    RelationshipType,
)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


# =============================================================================
# Analysis
# =============================================================================


class DomainAnalysis(BaseModel):
    """
    Structured analysis of a domain, produced by the analyze stage.

    Attributes:
        domain: Domain as submitted
        technical_category: Broad field (e.g., "Artificial Intelligence")
        complexity: Overall learning complexity
        subdomains: Major areas within the domain
        primary_concepts: Core concepts a learner must cover
        prerequisites: Knowledge assumed before starting
        learning_path: Coarse ordered milestones
        source: llm, or fallback when the curated pattern table was used
        recommendations: Learning recommendations derived from the analysis
    """

    domain: str
    technical_category: str = "General Technology"
    complexity: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    subdomains: list[str] = Field(default_factory=list)
    primary_concepts: list[str] = Field(default_factory=list)
    prerequisites: list[str] = Field(default_factory=list)
    learning_path: list[str] = Field(default_factory=list)
    source: AnalysisSource = AnalysisSource.LLM
    recommendations: list[str] = Field(default_factory=list)
    timestamp: datetime = Field(default_factory=_utc_now)


# =============================================================================
# Concepts and Relationships
# =============================================================================


class Concept(BaseModel):
    """
    A concept extracted from collected sources.

    Attributes:
        id: Stable slug of the name
        name: Display name, unique (case-insensitive) within a session
        description: One or two sentence explanation
        type: Kind of knowledge
        importance: 1 (peripheral) .. 10 (essential)
        difficulty: Learning difficulty
        category: Free-form grouping (e.g., "Core Concepts")
        evidence_sources: Ids of the source items supporting the concept
        evidence_method: llm, pattern or fallback
        confidence: Extraction confidence in [0, 1]
    """

    id: str = ""
    name: str
    description: str = ""
    type: ConceptType = ConceptType.CONCEPT
    importance: int = Field(default=5, ge=1, le=10)
    difficulty: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    category: str = "Core Concepts"
    evidence_sources: list[str] = Field(default_factory=list)
    evidence_method: EvidenceMethod = EvidenceMethod.LLM
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("concept name must not be empty")
        return v


class EdgeEvidence(BaseModel):
    """Evidence backing a relationship."""

    ai_generated: bool = False
    pattern_based: bool = False
    source_count: int = 0
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class Relationship(BaseModel):
    """
    Typed, directed relationship between two concepts.

    Invariants:
        - source != target
        - prerequisite edges are never bidirectional
    """

    id: str = Field(default_factory=lambda: f"rel_{uuid.uuid4().hex[:12]}")
    source: str
    target: str
    relationship: RelationshipType = RelationshipType.RELATED_TO
    strength: float = Field(default=0.5, ge=0.0, le=1.0)
    bidirectional: bool = False
    evidence: EdgeEvidence = Field(default_factory=EdgeEvidence)
    learning_weight: float = Field(default=0.5, ge=0.0, le=1.0)
    difficulty: EdgeDifficulty = EdgeDifficulty.MEDIUM

    @model_validator(mode="after")
    def _check_invariants(self) -> "Relationship":
        if self.source == self.target:
            raise ValueError("relationship source and target must differ")
        if self.relationship == RelationshipType.PREREQUISITE and self.bidirectional:
            self.bidirectional = False
        return self


class ProcessingResult(BaseModel):
    """Output of the process stage."""

    concepts: list[Concept] = Field(default_factory=list)
    relationships: list[Relationship] = Field(default_factory=list)
    total_documents: int = 0
    used_fallback: bool = False
    timestamp: datetime = Field(default_factory=_utc_now)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "total_documents": self.total_documents,
            "concepts_extracted": len(self.concepts),
            "relationships_identified": len(self.relationships),
        }


# =============================================================================
# Knowledge Graph
# =============================================================================


class GraphNode(BaseModel):
    """A node in the knowledge graph, materialized from one concept."""

    id: str
    name: str
    description: str = ""
    type: ConceptType = ConceptType.CONCEPT
    importance: int = Field(default=5, ge=1, le=10)
    difficulty: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    category: str = "Core Concepts"
    sources: list[str] = Field(default_factory=list)
    extracted_from: EvidenceMethod = EvidenceMethod.LLM
    confidence: float = Field(default=0.5, ge=0.0, le=1.0)


class GraphStats(BaseModel):
    """Size and shape statistics of a knowledge graph."""

    node_count: int = 0
    edge_count: int = 0
    avg_connections: float = 0.0
    density: float = Field(default=0.0, ge=0.0, le=1.0)
    complexity_score: float = Field(default=0.0, ge=0.0, le=100.0)


class KnowledgeGraph(BaseModel):
    """
    Node/edge graph for one session.

    Invariant: every edge endpoint refers to an existing node id.
    """

    domain: str
    session_id: Optional[str] = None
    nodes: list[GraphNode] = Field(default_factory=list)
    edges: list[Relationship] = Field(default_factory=list)
    stats: GraphStats = Field(default_factory=GraphStats)
    timestamp: datetime = Field(default_factory=_utc_now)

    def node_index(self) -> dict[str, GraphNode]:
        return {node.id: node for node in self.nodes}


# =============================================================================
# Pathways
# =============================================================================


class PathwayStep(BaseModel):
    """One ordered step of a learning pathway."""

    node_id: str
    name: str = ""
    order: int
    estimated_time: str = "3-5 hours"
    difficulty: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    prerequisites: list[str] = Field(default_factory=list)


class Pathway(BaseModel):
    """
    Ordered learning sequence over one component of the prerequisite graph.

    Invariant: steps are a topological order of the prerequisite sub-DAG
    of the nodes they reference; each node appears once.
    """

    id: str
    name: str
    description: str = ""
    steps: list[PathwayStep] = Field(default_factory=list)
    difficulty: DifficultyLevel = DifficultyLevel.INTERMEDIATE
    estimated_time: str = ""
    estimated_hours_min: int = 0
    estimated_hours_max: int = 0
    coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    completion_rate: float = Field(default=0.0, ge=0.0, le=1.0)


class OptimizationStats(BaseModel):
    """Aggregate statistics over the produced pathways."""

    total_pathways: int = 0
    average_path_length: float = 0.0
    complexity_score: float = 0.0
    recommended_learning_time: str = "0 hours"


class OptimizationResult(BaseModel):
    """Output of the optimize stage."""

    pathways: list[Pathway] = Field(default_factory=list)
    learning_sequences: dict[str, list[str]] = Field(default_factory=dict)
    stats: OptimizationStats = Field(default_factory=OptimizationStats)
    timestamp: datetime = Field(default_factory=_utc_now)
