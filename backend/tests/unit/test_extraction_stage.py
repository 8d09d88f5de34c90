"""
Unit tests for concept and relationship extraction.
"""

import pytest

from app.enums.ingestion import (
    ConceptType,
    DifficultyLevel,
    EdgeDifficulty,
    EvidenceMethod,
    RelationshipType,
    SourceCategory,
)
from app.middleware.error_handling import LLMError
from app.models.knowledge import Concept, DomainAnalysis
from app.services.ingestion.stages.extraction import (
    attach_evidence,
    build_digest,
    dedupe_concepts,
    fallback_concepts,
    fallback_relationships,
    find_evidence,
    normalize_concept,
    normalize_relationship_type,
    normalize_relationships,
    process_items,
)
from tests.conftest import ScriptedLLM, make_item, make_settings


def concept(name: str, difficulty=DifficultyLevel.INTERMEDIATE, evidence=None) -> Concept:
    from app.pipelines.utils.text_utils import slugify

    return Concept(id=slugify(name), name=name, difficulty=difficulty, evidence_sources=evidence or [])


@pytest.fixture
def items():
    return [
        make_item(SourceCategory.PAPERS, "Gradient Descent Revisited", "Convergence of gradient descent.", 0.9),
        make_item(
            SourceCategory.REPOS,
            "nn-from-scratch",
            "Neural networks in numpy.",
            0.8,
            keywords=["backpropagation"],
        ),
    ]


class TestProcessItems:
    """Tests for process_items."""

    @pytest.mark.asyncio
    async def test_no_items_makes_no_llm_calls(self):
        llm = ScriptedLLM()

        result, usages = await process_items("ml", [], None, llm)

        assert result.total_documents == 0
        assert result.concepts == []
        assert llm.calls == []
        assert usages == []

    @pytest.mark.asyncio
    async def test_unsupported_concepts_dropped(self, items):
        llm = ScriptedLLM(
            {
                "CONCEPT_EXTRACTION": [
                    {
                        "concepts": [
                            {"name": "Gradient Descent", "type": "algorithm", "difficulty": "beginner"},
                            {"name": "Backprop", "keywords": ["backpropagation"]},
                            {"name": "Quantum Annealing"},
                        ]
                    }
                ],
                "RELATIONSHIP_EXTRACTION": [
                    {
                        "relationships": [
                            {"source": "Gradient Descent", "target": "Backprop", "type": "prerequisite", "strength": 0.9},
                            {"source": "Gradient Descent", "target": "Quantum Annealing", "type": "related_to"},
                        ]
                    }
                ],
            }
        )

        result, usages = await process_items("ml", items, None, llm, config=make_settings())

        names = [c.name for c in result.concepts]
        assert names == ["Gradient Descent", "Backprop"]
        assert result.concepts[0].type == ConceptType.ALGORITHM
        assert result.concepts[1].evidence_sources == [items[1].id]
        assert len(result.relationships) == 1
        edge = result.relationships[0]
        assert (edge.source, edge.target) == ("gradient-descent", "backprop")
        assert edge.relationship == RelationshipType.PREREQUISITE
        assert result.used_fallback is False
        assert result.total_documents == 2
        assert len(usages) == 2

    @pytest.mark.asyncio
    async def test_concept_prompt_retried_once(self, items):
        llm = ScriptedLLM(
            {
                "CONCEPT_EXTRACTION": [LLMError("boom"), {"concepts": [{"name": "Gradient Descent"}]}],
                "RELATIONSHIP_EXTRACTION": [{"relationships": []}],
            }
        )

        result, _ = await process_items("ml", items, None, llm, config=make_settings())

        assert [c.name for c in result.concepts] == ["Gradient Descent"]
        assert llm.calls.count("CONCEPT_EXTRACTION") == 2
        assert result.used_fallback is False

    @pytest.mark.asyncio
    async def test_bare_list_responses_accepted(self, items):
        llm = ScriptedLLM(
            {
                "CONCEPT_EXTRACTION": [[{"name": "Gradient Descent"}, "not a concept"]],
                "RELATIONSHIP_EXTRACTION": [[]],
            }
        )

        result, _ = await process_items("ml", items, None, llm, config=make_settings())

        assert [c.name for c in result.concepts] == ["Gradient Descent"]
        assert llm.calls.count("CONCEPT_EXTRACTION") == 1
        assert result.used_fallback is False

    @pytest.mark.asyncio
    async def test_pattern_fallback_after_two_failures(self, items):
        llm = ScriptedLLM({"CONCEPT_EXTRACTION": [LLMError("boom")]})
        analysis = DomainAnalysis(
            domain="machine learning",
            primary_concepts=["supervised learning", "neural networks", "model training"],
        )

        result, usages = await process_items("machine learning", items, analysis, llm, config=make_settings())

        assert result.used_fallback is True
        assert llm.calls == ["CONCEPT_EXTRACTION", "CONCEPT_EXTRACTION"]
        names = [c.name for c in result.concepts]
        assert names[:3] == ["supervised learning", "neural networks", "model training"]
        assert "backpropagation" in names
        assert all(c.evidence_method == EvidenceMethod.FALLBACK for c in result.concepts)
        pairs = {(r.source, r.target) for r in result.relationships}
        assert ("supervised-learning", "model-training") in pairs
        assert ("neural-networks", "model-training") in pairs
        assert usages == []

    @pytest.mark.asyncio
    async def test_relationship_failure_uses_template(self, items):
        llm = ScriptedLLM(
            {
                "CONCEPT_EXTRACTION": [{"concepts": [{"name": "Gradient Descent"}, {"name": "Neural Networks"}]}],
                "RELATIONSHIP_EXTRACTION": [{"unexpected": True}],
            }
        )
        analysis = DomainAnalysis(domain="x", learning_path=["Gradient Descent", "Neural Networks"])

        result, _ = await process_items("x", items, analysis, llm, config=make_settings())

        assert result.used_fallback is True
        assert [(r.source, r.target) for r in result.relationships] == [("gradient-descent", "neural-networks")]


class TestEvidence:
    """Tests for evidence matching and the prompt digest."""

    def test_find_evidence_matches_title_summary_keywords(self, items):
        assert find_evidence(["gradient descent"], items) == [items[0].id]
        assert find_evidence(["BACKPROPAGATION"], items) == [items[1].id]
        assert find_evidence(["", "  "], items) == []

    def test_attach_evidence_keeps_unsupported_by_default(self, items):
        result = attach_evidence([concept("Transformers")], items)
        assert result[0].evidence_sources == []
        assert attach_evidence([concept("Transformers")], items, drop_unsupported=True) == []

    def test_digest_ranks_and_truncates(self, items):
        digest = build_digest(items, make_settings(EXTRACTION_MAX_ITEMS=1))

        assert digest.startswith("1. (papers) Gradient Descent Revisited")
        assert "nn-from-scratch" not in digest


class TestNormalization:
    """Tests for concept and relationship normalization."""

    def test_normalize_concept_defaults(self):
        result = normalize_concept({"name": " Attention ", "type": "magic", "difficulty": "hard", "importance": "42"})

        assert result.id == "attention"
        assert result.type == ConceptType.CONCEPT
        assert result.difficulty == DifficultyLevel.INTERMEDIATE
        assert result.importance == 10

    def test_normalize_concept_without_name(self):
        assert normalize_concept({"name": "  "}) is None

    def test_dedupe_concepts_case_insensitive(self):
        result = dedupe_concepts([concept("Neural Networks"), concept("neural networks"), concept("Tensors")])
        assert [c.name for c in result] == ["Neural Networks", "Tensors"]

    @pytest.mark.parametrize(
        "label,expected",
        [
            ("prerequisite", RelationshipType.PREREQUISITE),
            ("Leads To", RelationshipType.PREREQUISITE),
            ("builds-on", RelationshipType.BUILDS_UPON),
            ("is_a", RelationshipType.EXTENDS),
            ("implements", RelationshipType.IMPLEMENTS),
            ("vaguely connected", RelationshipType.RELATED_TO),
            (None, RelationshipType.RELATED_TO),
        ],
    )
    def test_relationship_type_mapping(self, label, expected):
        assert normalize_relationship_type(label) == expected

    def test_normalize_relationships_drops_invalid(self):
        concepts = [concept("A", evidence=["i1"]), concept("B", DifficultyLevel.ADVANCED, evidence=["i1"])]
        raw = [
            {"source": "A", "target": "B", "type": "prerequisite", "strength": 3, "bidirectional": True},
            {"source": "a", "target": "b", "type": "prerequisite"},
            {"source": "A", "target": "A", "type": "related_to"},
            {"source": "A", "target": "Missing"},
            {"source": "b", "target": "a", "type": "related", "bidirectional": True},
        ]

        result = normalize_relationships(raw, concepts)

        assert len(result) == 2
        first, second = result
        assert first.strength == 1.0
        assert first.bidirectional is False
        assert first.difficulty == EdgeDifficulty.HARD
        assert first.evidence.source_count == 1
        assert first.learning_weight == 1.0
        assert second.relationship == RelationshipType.RELATED_TO
        assert second.bidirectional is True
        assert second.learning_weight == 0.25


class TestFallback:
    """Tests for pattern extraction."""

    def test_fallback_concepts_order(self):
        items = [
            make_item(SourceCategory.PAPERS, "A", "x", 0.9, keywords=["pandas", "numpy"]),
            make_item(SourceCategory.DOCS, "B", "y", 0.9, keywords=["numpy"]),
        ]
        analysis = DomainAnalysis(domain="data science", primary_concepts=["statistics"])

        result = fallback_concepts(items, analysis)

        assert [c.name for c in result] == ["statistics", "numpy", "pandas"]
        assert result[0].importance == 8
        assert result[1].importance == 6
        assert result[1].evidence_sources == [items[0].id, items[1].id]

    def test_fallback_relationships_chain_over_learning_path(self):
        concepts = [concept("Ownership"), concept("Borrowing"), concept("Lifetimes")]
        analysis = DomainAnalysis(domain="rust", learning_path=["Ownership", "Borrowing", "Lifetimes"])

        result = fallback_relationships("rust", concepts, analysis)

        assert [(r.source, r.target) for r in result] == [("ownership", "borrowing"), ("borrowing", "lifetimes")]
        assert all(r.relationship == RelationshipType.PREREQUISITE for r in result)
        assert all(r.strength == 0.6 for r in result)

    def test_fallback_relationships_none_without_order(self):
        assert fallback_relationships("rust", [concept("Ownership")], DomainAnalysis(domain="rust")) == []
