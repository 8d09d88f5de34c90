"""
Unit tests for learning pathway optimization.
"""

from app.enums.ingestion import DifficultyLevel, RelationshipType
from app.models.knowledge import Concept, GraphNode, KnowledgeGraph, ProcessingResult, Relationship
from app.services.ingestion.stages.graph import build_knowledge_graph
from app.services.ingestion.stages.pathways import find_optimal_path, optimize_pathways

BEGINNER = DifficultyLevel.BEGINNER
INTERMEDIATE = DifficultyLevel.INTERMEDIATE
ADVANCED = DifficultyLevel.ADVANCED


def node(node_id: str, difficulty=INTERMEDIATE, importance: int = 5) -> GraphNode:
    return GraphNode(id=node_id, name=node_id.title(), difficulty=difficulty, importance=importance)


def edge(source: str, target: str, kind=RelationshipType.PREREQUISITE) -> Relationship:
    return Relationship(source=source, target=target, relationship=kind)


def graph(nodes, edges) -> KnowledgeGraph:
    return KnowledgeGraph(domain="test", nodes=nodes, edges=edges)


def step_ids(pathway) -> list[str]:
    return [step.node_id for step in pathway.steps]


class TestOptimizePathways:
    """Tests for optimize_pathways."""

    def test_empty_graph(self):
        result = optimize_pathways(graph([], []))

        assert result.pathways == []
        assert result.stats.total_pathways == 0

    def test_single_node_graph(self):
        g = build_knowledge_graph(
            "test", None, ProcessingResult(concepts=[Concept(name="Recursion")], relationships=[])
        )

        result = optimize_pathways(g)

        assert g.stats.density == 0.0
        assert len(result.pathways) == 1
        assert step_ids(result.pathways[0]) == ["recursion"]
        assert result.stats.average_path_length == 1.0

    def test_prerequisites_respected(self):
        # Hard prerequisite before an easy node must still come first
        g = graph(
            [node("calculus", ADVANCED), node("gradients", BEGINNER), node("training", INTERMEDIATE)],
            [edge("calculus", "gradients"), edge("gradients", "training")],
        )

        result = optimize_pathways(g)

        assert len(result.pathways) == 1
        assert step_ids(result.pathways[0]) == ["calculus", "gradients", "training"]
        assert result.pathways[0].steps[1].prerequisites == ["calculus"]
        assert result.pathways[0].coverage == 1.0

    def test_builds_upon_is_a_learning_edge(self):
        g = graph(
            [node("b", BEGINNER), node("a", ADVANCED)],
            [edge("a", "b", RelationshipType.BUILDS_UPON)],
        )

        assert step_ids(optimize_pathways(g).pathways[0]) == ["a", "b"]

    def test_related_edges_do_not_connect(self):
        g = graph([node("a"), node("b")], [edge("a", "b", RelationshipType.RELATED_TO)])

        result = optimize_pathways(g)

        assert len(result.pathways) == 2
        assert all(len(p.steps) == 1 for p in result.pathways)

    def test_ties_broken_by_difficulty_then_importance(self):
        g = graph(
            [
                node("root", BEGINNER),
                node("hard", ADVANCED, importance=9),
                node("easy", BEGINNER, importance=3),
                node("key", BEGINNER, importance=8),
            ],
            [edge("root", "hard"), edge("root", "easy"), edge("root", "key")],
        )

        assert step_ids(optimize_pathways(g).pathways[0]) == ["root", "key", "easy", "hard"]

    def test_cycle_broken_deterministically(self):
        g = graph(
            [node("x", INTERMEDIATE), node("y", BEGINNER), node("z", ADVANCED)],
            [edge("x", "y"), edge("y", "z"), edge("z", "x")],
        )

        first = step_ids(optimize_pathways(g).pathways[0])
        second = step_ids(optimize_pathways(g).pathways[0])

        assert first == second == ["y", "z", "x"]

    def test_ranking_and_k(self):
        g = graph(
            [node("a"), node("b"), node("c"), node("solo-easy", BEGINNER), node("solo-hard", ADVANCED)],
            [edge("a", "b"), edge("b", "c")],
        )

        result = optimize_pathways(g, k=2)

        assert [len(p.steps) for p in result.pathways] == [3, 1]
        assert step_ids(result.pathways[1]) == ["solo-easy"]
        assert result.stats.total_pathways == 2
        assert result.stats.average_path_length == 2.0

    def test_time_estimates_and_sequences(self):
        g = graph([node("a", BEGINNER), node("b", ADVANCED)], [edge("a", "b")])

        result = optimize_pathways(g)
        pathway = result.pathways[0]

        assert pathway.estimated_hours_min == 7
        assert pathway.estimated_hours_max == 12
        assert pathway.estimated_time == "7-12 hours"
        assert pathway.name == "A to B"
        assert result.learning_sequences == {"beginner": ["a"], "intermediate": [], "advanced": ["b"]}
        assert result.stats.recommended_learning_time == "7-12 hours"


class TestFindOptimalPath:
    """Tests for find_optimal_path."""

    def test_shortest_path(self):
        g = graph(
            [node("a"), node("b"), node("c"), node("d")],
            [edge("a", "b"), edge("b", "c"), edge("c", "d"), edge("a", "d")],
        )

        assert find_optimal_path(g, "a", "d") == ["a", "d"]
        assert find_optimal_path(g, "a", "c") == ["a", "b", "c"]

    def test_unreachable_and_unknown(self):
        g = graph([node("a"), node("b")], [edge("a", "b")])

        assert find_optimal_path(g, "b", "a") == []
        assert find_optimal_path(g, "a", "missing") == []
        assert find_optimal_path(g, "a", "a") == ["a"]
