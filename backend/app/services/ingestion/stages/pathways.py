"""
Learning Pathway Optimization Stage

The fifth ingestion stage. Overlays ordered learning pathways on the
knowledge graph:

1. Restrict the graph to learning edges (prerequisite, builds_upon); in
   both the source is learned before the target
2. Split the restricted graph into weakly connected components (isolated
   nodes form single-node components)
3. Order each component with Kahn's algorithm, always releasing the
   available node with the smallest (difficulty, -importance, name) key
4. Rank pathways by coverage, then by average difficulty, and keep the
   top K

Cycles are broken deterministically: whenever the queue drains while
nodes are still waiting (a component without a zero in-degree node, or
nodes stuck behind a cycle), the waiting node with the smallest key is
released. Every node therefore appears exactly once, and every edge
outside a cycle is honoured.

Usage:
    from app.services.ingestion.stages.pathways import optimize_pathways, find_optimal_path

    result = optimize_pathways(graph, k=5)
    path = find_optimal_path(graph, "statistics", "model-training")
"""

import heapq
import logging
from collections import deque

from app.enums.ingestion import DifficultyLevel, RelationshipType
from app.models.knowledge import (
    GraphNode,
    KnowledgeGraph,
    OptimizationResult,
    OptimizationStats,
    Pathway,
    PathwayStep,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_PATHWAYS = 5

LEARNING_EDGE_TYPES = frozenset({RelationshipType.PREREQUISITE, RelationshipType.BUILDS_UPON})

# Estimated study hours per step, by difficulty
STEP_HOURS: dict[DifficultyLevel, tuple[int, int]] = {
    DifficultyLevel.BEGINNER: (1, 2),
    DifficultyLevel.INTERMEDIATE: (3, 5),
    DifficultyLevel.ADVANCED: (6, 10),
}


def format_hours(low: int, high: int) -> str:
    return f"{low}-{high} hours"


def node_key(node: GraphNode) -> tuple[int, int, str]:
    """Ordering key: easier first, then more important, then by name."""
    return (node.difficulty.rank, -node.importance, node.name.lower())


def learning_adjacency(graph: KnowledgeGraph) -> tuple[dict[str, set[str]], dict[str, set[str]]]:
    """
    Successor and predecessor sets over learning edges only.

    Returns:
        Tuple of (successors, predecessors) keyed by every node id
    """
    successors: dict[str, set[str]] = {node.id: set() for node in graph.nodes}
    predecessors: dict[str, set[str]] = {node.id: set() for node in graph.nodes}
    for edge in graph.edges:
        if edge.relationship not in LEARNING_EDGE_TYPES:
            continue
        if edge.source not in successors or edge.target not in successors or edge.source == edge.target:
            continue
        successors[edge.source].add(edge.target)
        predecessors[edge.target].add(edge.source)
    return successors, predecessors


def weakly_connected_components(
    node_ids: list[str],
    successors: dict[str, set[str]],
    predecessors: dict[str, set[str]],
) -> list[list[str]]:
    """Components of the undirected view, each listed in discovery order."""
    seen: set[str] = set()
    components = []
    for start in node_ids:
        if start in seen:
            continue
        component = []
        queue = deque([start])
        seen.add(start)
        while queue:
            current = queue.popleft()
            component.append(current)
            for neighbour in sorted(successors[current] | predecessors[current]):
                if neighbour not in seen:
                    seen.add(neighbour)
                    queue.append(neighbour)
        components.append(component)
    return components


def order_component(
    component: list[str],
    nodes: dict[str, GraphNode],
    successors: dict[str, set[str]],
    predecessors: dict[str, set[str]],
) -> list[str]:
    """
    Topological order of one component with deterministic cycle breaking.

    Args:
        component: Node ids of one weakly connected component
        nodes: Node lookup
        successors: Learning-edge successors
        predecessors: Learning-edge predecessors

    Returns:
        Every node id of the component exactly once
    """
    members = set(component)
    in_degree = {node_id: len(predecessors[node_id] & members) for node_id in component}
    heap = [(node_key(nodes[n]), n) for n in component if in_degree[n] == 0]
    heapq.heapify(heap)
    by_key = sorted(component, key=lambda n: node_key(nodes[n]))

    ordered: list[str] = []
    placed: set[str] = set()
    while len(ordered) < len(component):
        if not heap:
            # Cycle: release the smallest-key node still waiting
            stuck = next(n for n in by_key if n not in placed)
            heapq.heappush(heap, (node_key(nodes[stuck]), stuck))
        _, current = heapq.heappop(heap)
        if current in placed:
            continue
        placed.add(current)
        ordered.append(current)
        for successor in successors[current] & members:
            in_degree[successor] -= 1
            if in_degree[successor] == 0 and successor not in placed:
                heapq.heappush(heap, (node_key(nodes[successor]), successor))

    return ordered


def _aggregate_difficulty(levels: list[DifficultyLevel]) -> DifficultyLevel:
    average = sum(level.rank for level in levels) / len(levels)
    by_rank = {level.rank: level for level in DifficultyLevel}
    return by_rank[min(by_rank, key=lambda rank: (abs(rank - average), rank))]


def build_pathway(
    index: int,
    ordered: list[str],
    nodes: dict[str, GraphNode],
    predecessors: dict[str, set[str]],
    total_nodes: int,
) -> Pathway:
    """Materialize an ordered component as a Pathway."""
    members = set(ordered)
    steps = []
    low_total = high_total = 0
    for order, node_id in enumerate(ordered, 1):
        node = nodes[node_id]
        low, high = STEP_HOURS[node.difficulty]
        low_total += low
        high_total += high
        steps.append(
            PathwayStep(
                node_id=node_id,
                name=node.name,
                order=order,
                estimated_time=format_hours(low, high),
                difficulty=node.difficulty,
                prerequisites=sorted(predecessors[node_id] & members),
            )
        )

    first, last = nodes[ordered[0]], nodes[ordered[-1]]
    name = first.name if len(ordered) == 1 else f"{first.name} to {last.name}"
    return Pathway(
        id=f"pathway_{index}",
        name=name,
        description=f"Learning sequence of {len(ordered)} concept(s) starting with {first.name}",
        steps=steps,
        difficulty=_aggregate_difficulty([nodes[n].difficulty for n in ordered]),
        estimated_time=format_hours(low_total, high_total),
        estimated_hours_min=low_total,
        estimated_hours_max=high_total,
        coverage=round(len(ordered) / total_nodes, 4) if total_nodes else 0.0,
        completion_rate=0.0,
    )


def optimize_pathways(graph: KnowledgeGraph, k: int = DEFAULT_MAX_PATHWAYS) -> OptimizationResult:
    """
    Produce up to k learning pathways over the knowledge graph.

    Args:
        graph: Knowledge graph from the build stage
        k: Maximum pathways returned

    Returns:
        OptimizationResult with ranked pathways, per-difficulty sequences
        and aggregate stats
    """
    if not graph.nodes:
        logger.info(f"[{graph.domain}] Empty graph, no pathways to optimize")
        return OptimizationResult()

    nodes = graph.node_index()
    node_ids = sorted(nodes, key=lambda n: node_key(nodes[n]))
    successors, predecessors = learning_adjacency(graph)

    candidates = []
    for component in weakly_connected_components(node_ids, successors, predecessors):
        ordered = order_component(component, nodes, successors, predecessors)
        average_rank = sum(nodes[n].difficulty.rank for n in ordered) / len(ordered)
        candidates.append((ordered, average_rank))

    candidates.sort(key=lambda c: (-len(c[0]), c[1], node_key(nodes[c[0][0]])))
    pathways = [
        build_pathway(index, ordered, nodes, predecessors, len(nodes))
        for index, (ordered, _) in enumerate(candidates[: max(k, 0)], 1)
    ]

    learning_sequences: dict[str, list[str]] = {level.value: [] for level in DifficultyLevel}
    for node_id in node_ids:
        learning_sequences[nodes[node_id].difficulty.value].append(node_id)

    low_total = sum(STEP_HOURS[node.difficulty][0] for node in graph.nodes)
    high_total = sum(STEP_HOURS[node.difficulty][1] for node in graph.nodes)
    stats = OptimizationStats(
        total_pathways=len(pathways),
        average_path_length=round(sum(len(p.steps) for p in pathways) / len(pathways), 2) if pathways else 0.0,
        complexity_score=graph.stats.complexity_score,
        recommended_learning_time=format_hours(low_total, high_total),
    )

    logger.info(
        f"[{graph.domain}] Optimized {len(pathways)} pathways from {len(candidates)} components "
        f"(recommended {stats.recommended_learning_time})"
    )
    return OptimizationResult(pathways=pathways, learning_sequences=learning_sequences, stats=stats)


def find_optimal_path(graph: KnowledgeGraph, start_id: str, end_id: str) -> list[str]:
    """
    Shortest learning-edge path between two nodes (unweighted BFS).

    Args:
        graph: Knowledge graph
        start_id: Node id to start from
        end_id: Node id to reach

    Returns:
        Node ids from start to end inclusive, or [] if either node is
        unknown or end is unreachable
    """
    successors, _ = learning_adjacency(graph)
    if start_id not in successors or end_id not in successors:
        return []
    if start_id == end_id:
        return [start_id]

    parents: dict[str, str] = {}
    queue = deque([start_id])
    visited = {start_id}
    while queue:
        current = queue.popleft()
        for successor in sorted(successors[current]):
            if successor in visited:
                continue
            visited.add(successor)
            parents[successor] = current
            if successor == end_id:
                path = [end_id]
                while path[-1] != start_id:
                    path.append(parents[path[-1]])
                return list(reversed(path))
            queue.append(successor)
    return []
