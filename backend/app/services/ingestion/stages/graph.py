"""
Knowledge Graph Building Stage

The fourth ingestion stage. Materializes one node per unique concept slug
and keeps only edges whose endpoints both exist, then computes size and
shape statistics.

Usage:
    from app.services.ingestion.stages.graph import build_knowledge_graph

    graph = build_knowledge_graph(domain, session_id, processing)
    print(f"{graph.stats.node_count} nodes, density {graph.stats.density}")
"""

import logging
from typing import Optional

from app.models.knowledge import (
    Concept,
    GraphNode,
    GraphStats,
    KnowledgeGraph,
    ProcessingResult,
    Relationship,
)
from app.pipelines.utils.text_utils import slugify

logger = logging.getLogger(__name__)

# Sizes at which the node and edge terms of the complexity score saturate
COMPLEXITY_NODE_CAP = 50
COMPLEXITY_EDGE_CAP = 100


def concept_to_node(concept: Concept) -> GraphNode:
    return GraphNode(
        id=slugify(concept.name),
        name=concept.name,
        description=concept.description,
        type=concept.type,
        importance=concept.importance,
        difficulty=concept.difficulty,
        category=concept.category,
        sources=list(concept.evidence_sources),
        extracted_from=concept.evidence_method,
        confidence=concept.confidence,
    )


def build_knowledge_graph(
    domain: str,
    session_id: Optional[str],
    processing: ProcessingResult,
) -> KnowledgeGraph:
    """
    Build the knowledge graph from processed concepts and relationships.

    Edge endpoints are remapped from concept ids to node slugs. Edges that
    point at missing nodes, self-loops after remapping and repeated
    (source, target, type) triples are dropped.

    Args:
        domain: Domain being ingested
        session_id: Owning session (None for standalone builds)
        processing: Output of the process stage

    Returns:
        KnowledgeGraph with computed stats
    """
    nodes: dict[str, GraphNode] = {}
    concept_slugs: dict[str, str] = {}

    for concept in processing.concepts:
        node = concept_to_node(concept)
        if concept.id:
            concept_slugs[concept.id] = node.id
        concept_slugs[concept.name.lower()] = node.id
        if node.id not in nodes:
            nodes[node.id] = node

    def resolve(endpoint: str) -> Optional[str]:
        slug = concept_slugs.get(endpoint) or concept_slugs.get(endpoint.lower()) or slugify(endpoint)
        return slug if slug in nodes else None

    edges: list[Relationship] = []
    seen: set[tuple[str, str, str]] = set()
    dropped = 0

    for relationship in processing.relationships:
        source = resolve(relationship.source)
        target = resolve(relationship.target)
        if source is None or target is None or source == target:
            dropped += 1
            continue
        key = (source, target, relationship.relationship.value)
        if key in seen:
            dropped += 1
            continue
        seen.add(key)
        edges.append(relationship.model_copy(update={"source": source, "target": target}))

    node_list = list(nodes.values())
    graph = KnowledgeGraph(
        domain=domain,
        session_id=session_id,
        nodes=node_list,
        edges=edges,
        stats=compute_graph_stats(node_list, edges),
    )

    if dropped:
        logger.debug(f"[{domain}] Dropped {dropped} dangling or duplicate edges")
    logger.info(
        f"[{domain}] Built graph: {graph.stats.node_count} nodes, {graph.stats.edge_count} edges, "
        f"complexity {graph.stats.complexity_score}"
    )
    return graph


def compute_graph_stats(nodes: list[GraphNode], edges: list[Relationship]) -> GraphStats:
    """
    Size and shape statistics.

    avg_connections = 2|E|/|V|; density = 2|E|/(|V|(|V|-1)) for |V| > 1;
    complexity_score weighs node count (40), edge count (30) and average
    importance (30), each saturating, on a 0-100 scale.
    """
    node_count = len(nodes)
    edge_count = len(edges)
    if node_count == 0:
        return GraphStats()

    avg_connections = 2 * edge_count / node_count
    density = 2 * edge_count / (node_count * (node_count - 1)) if node_count > 1 else 0.0
    avg_importance = sum(node.importance for node in nodes) / node_count

    complexity = (
        40 * min(node_count, COMPLEXITY_NODE_CAP) / COMPLEXITY_NODE_CAP
        + 30 * min(edge_count, COMPLEXITY_EDGE_CAP) / COMPLEXITY_EDGE_CAP
        + 30 * avg_importance / 10
    )

    return GraphStats(
        node_count=node_count,
        edge_count=edge_count,
        avg_connections=round(avg_connections, 3),
        density=round(min(density, 1.0), 4),
        complexity_score=round(min(max(complexity, 0.0), 100.0), 2),
    )
