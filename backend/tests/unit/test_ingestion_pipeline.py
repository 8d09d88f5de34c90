"""
Unit tests for the ingestion orchestrator.

Runs whole sessions against in-memory adapters, a scripted LLM and a
mocked persistence gateway: happy path, validation, adapter timeouts,
malformed LLM output, cross-category duplicates, shutdown and the
failure paths.
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest

from app.enums.ingestion import (
    ErrorKind,
    IngestionStep,
    SessionStatus,
    SourceCategory,
    StepStatus,
)
from app.middleware.error_handling import (
    InputError,
    NotFoundError,
    PersistenceError,
    RetryLaterError,
)
from app.services.ingestion.pipeline import (
    IngestionOrchestrator,
    is_significant_progress,
    validate_domain,
)
from app.services.ingestion.session_manager import SessionManager
from app.services.llm.client import LLMClient
from tests.conftest import ScriptedLLM, make_item, make_registry, make_settings

CONCEPT_NAMES = [
    "Linear Regression",
    "Loss Functions",
    "Gradient Descent",
    "Overfitting",
    "Regularization",
    "Cross Validation",
    "Decision Trees",
    "Feature Engineering",
    "Neural Networks",
    "Backpropagation",
    "Convolutional Networks",
    "Model Evaluation",
]

CONCEPT_TEXT = ", ".join(name.lower() for name in CONCEPT_NAMES)

ANALYSIS_RESPONSE = {
    "technical_category": "Artificial Intelligence",
    "complexity": "intermediate",
    "subdomains": ["Supervised Learning", "Deep Learning"],
    "primary_concepts": CONCEPT_NAMES[:6],
    "prerequisites": ["Python", "Linear Algebra"],
    "learning_path": ["Foundations", "Classical Models", "Deep Learning"],
}

LEVELS = ["beginner", "intermediate", "advanced"]

CONCEPTS_RESPONSE = {
    "concepts": [
        {
            "name": name,
            "description": f"{name} in machine learning",
            "type": "concept",
            "importance": 10 - index % 5,
            "difficulty": LEVELS[index // 4],
        }
        for index, name in enumerate(CONCEPT_NAMES)
    ]
}

RELATIONSHIPS_RESPONSE = {
    "relationships": [
        {"source": source, "target": target, "type": "prerequisite", "strength": 0.8}
        for source, target in zip(CONCEPT_NAMES, CONCEPT_NAMES[1:])
    ]
}


def ml_items() -> dict:
    """One well-scored item per category, each mentioning every concept."""
    return {
        SourceCategory.PAPERS: [
            make_item(SourceCategory.PAPERS, "A Survey of Machine Learning", f"Covers {CONCEPT_TEXT}.", 0.92)
        ],
        SourceCategory.REPOS: [
            make_item(SourceCategory.REPOS, "ml-course", f"Notebooks on {CONCEPT_TEXT}.", 0.8, stars=1200)
        ],
        SourceCategory.DOCS: [
            make_item(SourceCategory.DOCS, "scikit-learn User Guide", f"Guide to {CONCEPT_TEXT}.", 0.85)
        ],
        SourceCategory.VIDEOS: [
            make_item(SourceCategory.VIDEOS, "ML Crash Course", f"Lectures on {CONCEPT_TEXT}.", 0.75, duration_s=5400)
        ],
        SourceCategory.EXPERT: [
            make_item(SourceCategory.EXPERT, "Lessons from Practice", f"Essay on {CONCEPT_TEXT}.", 0.7)
        ],
        SourceCategory.REPORTS: [
            make_item(SourceCategory.REPORTS, "State of ML 2024", f"Industry use of {CONCEPT_TEXT}.", 0.8)
        ],
    }


def scripted_llm() -> ScriptedLLM:
    return ScriptedLLM(
        {
            "DOMAIN_ANALYSIS": [dict(ANALYSIS_RESPONSE)],
            "CONCEPT_EXTRACTION": [CONCEPTS_RESPONSE],
            "RELATIONSHIP_EXTRACTION": [RELATIONSHIPS_RESPONSE],
        }
    )


def make_orchestrator(registry=None, llm=None, persistence=None, **overrides) -> IngestionOrchestrator:
    config = make_settings(**overrides)
    return IngestionOrchestrator(
        session_manager=SessionManager(config=config),
        persistence=persistence,
        llm_client=llm or scripted_llm(),
        adapter_registry=registry or make_registry(ml_items(), config=config),
        config=config,
    )


def drain_statuses(queue: asyncio.Queue) -> list[SessionStatus]:
    statuses = []
    while not queue.empty():
        status = queue.get_nowait().status
        if not statuses or statuses[-1] != status:
            statuses.append(status)
    return statuses


class TestHelpers:
    """Tests for module-level helpers."""

    def test_validate_domain_collapses_whitespace(self):
        assert validate_domain("  machine   learning ") == "machine learning"

    @pytest.mark.parametrize("value", ["", "   ", None, 42])
    def test_validate_domain_rejects_blank_or_non_string(self, value):
        with pytest.raises(InputError):
            validate_domain(value)

    def test_validate_domain_rejects_long_domain(self):
        with pytest.raises(InputError):
            validate_domain("x" * 201)

    def test_significant_progress(self):
        assert is_significant_progress(20, 45)
        assert is_significant_progress(24, 25)
        assert is_significant_progress(95, 100)
        assert is_significant_progress(30, 41)
        assert not is_significant_progress(30, 33)
        assert not is_significant_progress(50, 50)


class TestHappyPath:
    """Full ingestion with every stage succeeding."""

    @pytest.mark.asyncio
    async def test_machine_learning_completes(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)
        queue = orchestrator.sessions.subscribe()

        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        assert session.status == SessionStatus.COMPLETED
        assert session.progress == 100
        assert session.success is True
        assert session.saved is True
        assert session.ingestion_id == "1"
        assert all(step.status == StepStatus.COMPLETED for step in session.steps.values())
        assert drain_statuses(queue) == [
            SessionStatus.ANALYZING,
            SessionStatus.COLLECTING,
            SessionStatus.PROCESSING,
            SessionStatus.BUILDING,
            SessionStatus.OPTIMIZING,
            SessionStatus.COMPLETED,
        ]

        assert len(session.knowledge_graph.nodes) >= 10
        assert len(session.optimization.pathways) >= 1
        assert set(session.collection.counts) == {c.count_key for c in SourceCategory}
        assert all(count >= 0 for count in session.collection.counts.values())

    @pytest.mark.asyncio
    async def test_start_response_and_stats(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)

        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        assert response.estimated_time == "3-8 minutes"
        assert response.progress_endpoint == f"/api/ingest/progress/{response.session_id}"
        assert response.data_endpoint == f"/api/ingest/data/{response.session_id}"
        assert session.stats.total_crawled == 6
        assert session.stats.documents_processed == 6
        assert session.stats.concepts_extracted == len(CONCEPT_NAMES)
        assert session.stats.neural_connections == len(CONCEPT_NAMES) - 1
        assert session.stats.llm_tokens == 300
        assert session.stats.errors == 0

    @pytest.mark.asyncio
    async def test_completed_view_is_persisted(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)

        response = await orchestrator.start("machine learning")
        await orchestrator.wait(response.session_id, timeout=10)

        saved = mock_persistence.saved[-1]
        assert saved.status == SessionStatus.COMPLETED
        assert saved.progress == 100
        assert saved.knowledge_graph is not None
        assert saved.optimization is not None
        mock_persistence.save_documents.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_collection_summary(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)

        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        summary = session.collection.summary
        assert summary.total_items == 6
        assert summary.video_hours == 1.5
        assert summary.total_stars == 1200
        assert summary.high_quality_items == 6

    @pytest.mark.asyncio
    async def test_runs_without_persistence(self):
        orchestrator = make_orchestrator(persistence=None)

        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        assert session.status == SessionStatus.COMPLETED
        assert session.saved is False
        assert session.ingestion_id is None


class TestValidation:
    """Rejected starts create no session."""

    @pytest.mark.asyncio
    async def test_blank_domain(self):
        orchestrator = make_orchestrator()

        with pytest.raises(InputError) as exc_info:
            await orchestrator.start("   ")

        assert exc_info.value.error_kind == ErrorKind.INPUT_ERROR
        assert await orchestrator.sessions.list_sessions() == []

    @pytest.mark.asyncio
    async def test_concurrency_bound_rejects(self):
        config = make_settings(MAX_CONCURRENT_SESSIONS=1)
        registry = make_registry(ml_items(), config=config, delay=30)
        orchestrator = make_orchestrator(registry=registry, MAX_CONCURRENT_SESSIONS=1)

        await orchestrator.start("machine learning")
        with pytest.raises(RetryLaterError):
            await orchestrator.start("databases")

        await orchestrator.shutdown(grace=2)
        assert len(await orchestrator.sessions.list_sessions()) == 1


class TestAdapterFailures:
    """Adapter timeouts and errors never fail the session."""

    @pytest.mark.asyncio
    async def test_all_adapters_time_out(self, mock_persistence):
        config = make_settings(ADAPTER_TIMEOUT_SECONDS=0.05)
        registry = make_registry(ml_items(), config=config, delay=5)
        orchestrator = make_orchestrator(
            registry=registry, persistence=mock_persistence, ADAPTER_TIMEOUT_SECONDS=0.05
        )

        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        assert session.status == SessionStatus.COMPLETED
        assert session.stats.errors == 6
        assert session.collection.summary.total_items == 0
        assert sorted(session.collection.timed_out_categories) == sorted(c.value for c in SourceCategory)
        assert session.processing.concepts == []
        assert session.knowledge_graph.nodes == []
        assert session.optimization.pathways == []

    @pytest.mark.asyncio
    async def test_adapter_error_contributes_nothing(self, mock_persistence):
        config = make_settings()
        registry = make_registry(ml_items(), config=config)
        registry.get(SourceCategory.VIDEOS).error = RuntimeError("quota exceeded")
        orchestrator = make_orchestrator(registry=registry, persistence=mock_persistence)

        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        assert session.status == SessionStatus.COMPLETED
        assert session.stats.errors == 1
        assert session.collection.counts["video_tutorials"] == 0
        assert session.collection.failed_categories == ["videos"]
        stats = orchestrator.crawler_statistics()
        assert stats["counters"]["adapter_failures"]["videos"] == 1


class TestMalformedLLMOutput:
    """Prose-wrapped JSON from the provider is repaired."""

    @pytest.mark.asyncio
    async def test_prose_wrapped_analysis_is_repaired(self, mock_persistence):
        import json

        def response(content: str):
            return SimpleNamespace(
                choices=[SimpleNamespace(message=SimpleNamespace(content=content))],
                usage=SimpleNamespace(prompt_tokens=60, completion_tokens=40, total_tokens=100),
                _hidden_params={"response_cost": 0.0001},
            )

        async def fake_completion(**kwargs):
            prompt = kwargs["messages"][-1]["content"]
            if "Analyze the technical domain" in prompt:
                return response(f"Here is the analysis you asked for: {json.dumps(ANALYSIS_RESPONSE)} Hope it helps!")
            if "Extract the key learning concepts" in prompt:
                return response(json.dumps(CONCEPTS_RESPONSE))
            return response(json.dumps(RELATIONSHIPS_RESPONSE))

        config = make_settings()
        llm = LLMClient(config=config)
        orchestrator = make_orchestrator(llm=llm, persistence=mock_persistence)

        with patch("app.services.llm.client.acompletion", new=AsyncMock(side_effect=fake_completion)):
            response_ = await orchestrator.start("machine learning")
            session = await orchestrator.wait(response_.session_id, timeout=10)

        assert session.status == SessionStatus.COMPLETED
        assert session.analysis.source.value == "llm"
        assert session.analysis.technical_category == "Artificial Intelligence"
        assert len(session.knowledge_graph.nodes) == len(CONCEPT_NAMES)


class TestDeduplication:
    """Cross-category duplicates keep the best-scored copy."""

    @pytest.mark.asyncio
    async def test_duplicate_kept_in_papers(self, mock_persistence):
        title = "Attention Is All You Need"
        summary = "The transformer architecture relies entirely on attention mechanisms."
        config = make_settings()
        registry = make_registry(
            {
                SourceCategory.PAPERS: [make_item(SourceCategory.PAPERS, title, summary, 0.81)],
                SourceCategory.DOCS: [make_item(SourceCategory.DOCS, title, summary, 0.77)],
            },
            config=config,
        )
        orchestrator = make_orchestrator(registry=registry, persistence=mock_persistence)

        response = await orchestrator.start("transformers")
        session = await orchestrator.wait(response.session_id, timeout=10)

        items = session.collection.all_items()
        assert len(items) == 1
        assert items[0].relevance_score == 0.81
        assert items[0].category == SourceCategory.PAPERS
        assert session.collection.items["docs"] == []
        assert session.collection.duplicates_removed == 1


class TestShutdown:
    """Cancellation marks sessions interrupted and persists completed stages only."""

    @pytest.mark.asyncio
    async def test_shutdown_mid_collect(self, mock_persistence):
        config = make_settings()
        started = asyncio.Event()
        registry = make_registry(ml_items(), config=config, delay=30, started=started)
        orchestrator = make_orchestrator(registry=registry, persistence=mock_persistence)

        response = await orchestrator.start("machine learning")
        await asyncio.wait_for(started.wait(), timeout=5)
        before = await orchestrator.sessions.get(response.session_id)

        interrupted = await orchestrator.shutdown(grace=2)

        session = await orchestrator.sessions.get(response.session_id)
        assert response.session_id in interrupted
        assert session.status == SessionStatus.INTERRUPTED
        assert session.error_kind == ErrorKind.INTERRUPTED
        assert session.progress == before.progress
        assert 20 <= session.progress < 45
        assert session.steps["collection"].status == StepStatus.FAILED

        saved = mock_persistence.saved[-1]
        assert saved.status == SessionStatus.INTERRUPTED
        assert saved.analysis is not None
        assert saved.collection is None
        assert saved.knowledge_graph is None
        assert saved.optimization is None

    @pytest.mark.asyncio
    async def test_start_rejected_after_shutdown(self):
        orchestrator = make_orchestrator()
        await orchestrator.shutdown(grace=0)

        with pytest.raises(RetryLaterError):
            await orchestrator.start("machine learning")


class TestStageFailures:
    """A failing stage fails the session with a bounded error."""

    @pytest.mark.asyncio
    async def test_build_failure(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)

        with patch(
            "app.services.ingestion.pipeline.build_knowledge_graph",
            side_effect=RuntimeError("secret provider text"),
        ):
            response = await orchestrator.start("machine learning")
            session = await orchestrator.wait(response.session_id, timeout=10)

        assert session.status == SessionStatus.FAILED
        assert session.success is False
        assert session.progress <= 99
        assert session.error_kind == ErrorKind.INTERNAL
        assert session.error == "internal: RuntimeError during processing"
        assert "secret" not in session.error
        assert session.steps["knowledge_graph"].status == StepStatus.FAILED
        assert session.steps["processing"].status == StepStatus.COMPLETED

        saved = mock_persistence.saved[-1]
        assert saved.status == SessionStatus.FAILED
        assert saved.processing is not None
        assert saved.knowledge_graph is None
        assert session.saved is True

    @pytest.mark.asyncio
    async def test_persistence_failure_fails_session(self, mock_persistence):
        mock_persistence.save_session = AsyncMock(side_effect=PersistenceError("Database unavailable"))
        orchestrator = make_orchestrator(persistence=mock_persistence)

        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        assert session.status == SessionStatus.FAILED
        assert session.error_kind == ErrorKind.PERSISTENCE_FAILURE
        assert session.progress <= 99
        assert session.saved is False

    @pytest.mark.asyncio
    async def test_crash_between_stages_fails_next_step(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)
        run_stage = orchestrator._run_stage

        async def crash_after_analysis(session_id, step, runner):
            result = await run_stage(session_id, step, runner)
            if step == IngestionStep.ANALYSIS:
                raise KeyError("analysis")
            return result

        orchestrator._run_stage = crash_after_analysis
        response = await orchestrator.start("machine learning")
        session = await orchestrator.wait(response.session_id, timeout=10)

        assert session.status == SessionStatus.FAILED
        assert session.error_kind == ErrorKind.INTERNAL
        assert session.steps["analysis"].status == StepStatus.COMPLETED
        assert session.steps["collection"].status == StepStatus.FAILED
        assert session.steps["collection"].error == session.error
        assert session.current_step == IngestionStep.COLLECTION.number


class TestClientQueries:
    """Snapshots, artifacts, listing and deletion."""

    @pytest.mark.asyncio
    async def test_progress_status_and_data(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)
        response = await orchestrator.start("machine learning")
        await orchestrator.wait(response.session_id, timeout=10)

        progress = await orchestrator.progress(response.session_id)
        status = await orchestrator.status(response.session_id)
        data = await orchestrator.data(response.session_id)

        assert progress.progress == 100
        assert progress.is_active is False
        assert [d.status for d in progress.step_details] == [StepStatus.COMPLETED] * 5
        assert status.success is True
        assert data["status"] == "completed"
        assert len(data["concepts"]) == len(CONCEPT_NAMES)
        assert data["knowledge_graph"]["stats"]["node_count"] == len(CONCEPT_NAMES)
        assert data["metadata"]["saved"] is True

    @pytest.mark.asyncio
    async def test_unknown_session_falls_back_to_persistence(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)

        with pytest.raises(NotFoundError):
            await orchestrator.progress("missing")
        mock_persistence.load_session.assert_awaited_once_with("missing")

    @pytest.mark.asyncio
    async def test_delete(self, mock_persistence):
        mock_persistence.delete_session = AsyncMock(return_value=True)
        orchestrator = make_orchestrator(persistence=mock_persistence)
        response = await orchestrator.start("machine learning")
        await orchestrator.wait(response.session_id, timeout=10)

        result = await orchestrator.delete(response.session_id)

        assert result.deleted_from == {"active_memory": True, "database": True}
        assert await orchestrator.sessions.get(response.session_id) is None

    @pytest.mark.asyncio
    async def test_delete_unknown(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)

        with pytest.raises(NotFoundError):
            await orchestrator.delete("missing")

    @pytest.mark.asyncio
    async def test_list_active_summary(self):
        orchestrator = make_orchestrator()
        response = await orchestrator.start("machine learning")
        await orchestrator.wait(response.session_id, timeout=10)

        active = await orchestrator.list_active()

        assert active.summary["total"] == 1
        assert active.summary["completed"] == 1
        assert active.summary["running"] == 0
        assert active.summary["avg_progress"] == 100
        assert active.sessions[0].session_id == response.session_id

    @pytest.mark.asyncio
    async def test_list_recent_paging(self, mock_persistence):
        mock_persistence.list_completed = AsyncMock(return_value=([{"session_id": "a"}], 21))
        orchestrator = make_orchestrator(persistence=mock_persistence)

        recent = await orchestrator.list_recent(page=2, limit=10)

        assert recent.pagination == {
            "page": 2,
            "limit": 10,
            "total": 21,
            "pages": 3,
            "has_next": True,
            "has_prev": True,
        }

    @pytest.mark.asyncio
    @pytest.mark.parametrize("page,limit", [(0, 10), (1, 0), (1, 51)])
    async def test_list_recent_rejects_bad_arguments(self, page, limit):
        orchestrator = make_orchestrator()

        with pytest.raises(InputError):
            await orchestrator.list_recent(page=page, limit=limit)

    @pytest.mark.asyncio
    async def test_health_reflects_database(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)
        assert (await orchestrator.health()).status == "healthy"

        mock_persistence.ping = AsyncMock(return_value=False)
        health = await orchestrator.health()
        assert health.status == "unhealthy"
        assert health.database["connected"] is False

    @pytest.mark.asyncio
    async def test_latest_graph_from_memory_then_storage(self, mock_persistence):
        orchestrator = make_orchestrator(persistence=mock_persistence)
        response = await orchestrator.start("machine learning")
        await orchestrator.wait(response.session_id, timeout=10)

        graph = await orchestrator.latest_graph("Machine Learning")
        assert graph["source"] == "memory"
        assert graph["session_id"] == response.session_id

        mock_persistence.load_latest_graph = AsyncMock(return_value={"source": "database", "domain": "rust"})
        assert (await orchestrator.latest_graph("rust"))["source"] == "database"

        mock_persistence.load_latest_graph = AsyncMock(return_value=None)
        with pytest.raises(NotFoundError):
            await orchestrator.latest_graph("haskell")


class TestStandaloneOperations:
    """Single stages without a session."""

    @pytest.mark.asyncio
    async def test_crawl_subset(self):
        orchestrator = make_orchestrator()

        result = await orchestrator.crawl("machine learning", [SourceCategory.PAPERS, SourceCategory.REPOS])

        assert result.counts["academic_papers"] == 1
        assert result.counts["code_repositories"] == 1
        assert result.counts["technical_docs"] == 0

    @pytest.mark.asyncio
    async def test_process_build_optimize(self):
        orchestrator = make_orchestrator()
        items = ml_items()[SourceCategory.PAPERS]

        processing = await orchestrator.process("machine learning", items)
        graph = await orchestrator.build("machine learning", processing.concepts, processing.relationships)
        optimization = await orchestrator.optimize(graph, k=3)
        path = await orchestrator.optimal_path(graph, "linear-regression", "model-evaluation")

        assert len(graph.nodes) == len(CONCEPT_NAMES)
        assert len(optimization.pathways) == 1
        assert path["found"] is True
        assert path["path"][0] == "linear-regression"
        assert path["length"] == len(CONCEPT_NAMES)

    @pytest.mark.asyncio
    async def test_analyze_rejects_blank(self):
        orchestrator = make_orchestrator()

        with pytest.raises(InputError):
            await orchestrator.analyze("  ")


class TestEviction:
    """Expired sessions leave memory."""

    @pytest.mark.asyncio
    async def test_evict_expired(self):
        orchestrator = make_orchestrator(TTL_COMPLETED_SECONDS=0)
        response = await orchestrator.start("machine learning")
        await orchestrator.wait(response.session_id, timeout=10)
        await asyncio.sleep(0.01)

        assert await orchestrator.evict_expired() == 1
        assert await orchestrator.sessions.get(response.session_id) is None
