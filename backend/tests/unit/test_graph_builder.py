"""
Unit tests for knowledge graph building.
"""

import pytest

from app.enums.ingestion import RelationshipType
from app.models.knowledge import Concept, ProcessingResult, Relationship
from app.services.ingestion.stages.graph import build_knowledge_graph, compute_graph_stats


def edge(source: str, target: str, kind=RelationshipType.PREREQUISITE) -> Relationship:
    return Relationship(source=source, target=target, relationship=kind)


class TestBuildKnowledgeGraph:
    """Tests for build_knowledge_graph."""

    def test_nodes_and_edges(self):
        processing = ProcessingResult(
            concepts=[
                Concept(id="linear-algebra", name="Linear Algebra", importance=9),
                Concept(id="neural-networks", name="Neural Networks", importance=7, evidence_sources=["i1"]),
            ],
            relationships=[edge("linear-algebra", "neural-networks")],
        )

        graph = build_knowledge_graph("machine learning", "sid", processing)

        assert graph.session_id == "sid"
        assert [n.id for n in graph.nodes] == ["linear-algebra", "neural-networks"]
        assert graph.nodes[1].sources == ["i1"]
        assert len(graph.edges) == 1
        assert graph.stats.node_count == 2
        assert graph.stats.edge_count == 1

    def test_dangling_and_duplicate_edges_dropped(self):
        processing = ProcessingResult(
            concepts=[Concept(name="A"), Concept(name="B")],
            relationships=[
                edge("A", "B"),
                edge("a", "b"),
                edge("a", "missing"),
                edge("a", "b", RelationshipType.RELATED_TO),
            ],
        )

        graph = build_knowledge_graph("x", None, processing)

        assert [(e.source, e.target, e.relationship) for e in graph.edges] == [
            ("a", "b", RelationshipType.PREREQUISITE),
            ("a", "b", RelationshipType.RELATED_TO),
        ]
        node_ids = {n.id for n in graph.nodes}
        assert all(e.source in node_ids and e.target in node_ids for e in graph.edges)

    def test_duplicate_slugs_collapse(self):
        processing = ProcessingResult(concepts=[Concept(name="Neural Networks"), Concept(name="neural  networks")])

        graph = build_knowledge_graph("x", None, processing)

        assert len(graph.nodes) == 1
        assert graph.nodes[0].name == "Neural Networks"

    def test_empty(self):
        graph = build_knowledge_graph("x", None, ProcessingResult())

        assert graph.nodes == []
        assert graph.stats.node_count == 0
        assert graph.stats.density == 0.0


class TestGraphStats:
    """Tests for compute_graph_stats."""

    def test_stats_formulae(self):
        processing = ProcessingResult(
            concepts=[Concept(name=n, importance=10) for n in ("A", "B", "C", "D")],
            relationships=[edge("a", "b"), edge("b", "c"), edge("c", "d")],
        )
        graph = build_knowledge_graph("x", None, processing)

        stats = compute_graph_stats(graph.nodes, graph.edges)

        assert stats.avg_connections == 1.5
        assert stats.density == 0.5
        # 40 * 4/50 + 30 * 3/100 + 30 * 10/10
        assert stats.complexity_score == pytest.approx(34.1)

    def test_single_node_density(self):
        graph = build_knowledge_graph("x", None, ProcessingResult(concepts=[Concept(name="Solo")]))
        assert graph.stats.density == 0.0
        assert graph.stats.avg_connections == 0.0
