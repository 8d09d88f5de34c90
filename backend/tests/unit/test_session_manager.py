"""
Unit tests for the in-memory session manager.
"""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from app.enums.ingestion import ErrorKind, IngestionStep, SessionStatus, StepStatus
from app.models.session import (
    ProgressEvent,
    SessionCompleted,
    SessionFailed,
    SessionInterrupted,
    StatsDelta,
    StepCompleted,
    StepFailed,
    StepStarted,
)
from app.services.ingestion.session_manager import (
    InvalidTransitionError,
    SessionManager,
    format_duration,
    generate_session_id,
    progress_snapshot,
    step_progress_bounds,
)
from tests.conftest import make_settings

START = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Mutable clock returning a fixed UTC time."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def manager(clock):
    return SessionManager(config=make_settings(), clock=clock)


class TestHelpers:
    """Tests for module-level helpers."""

    def test_session_id_format(self):
        session_id = generate_session_id()
        epoch, suffix = session_id.split("_")

        assert epoch.isdigit()
        assert len(suffix) == 9
        assert suffix.isalnum()

    @pytest.mark.parametrize(
        "ms,expected",
        [(3_723_000, "1h 2m 3s"), (123_000, "2m 3s"), (3_000, "3s"), (None, "0s")],
    )
    def test_format_duration(self, ms, expected):
        assert format_duration(ms) == expected

    def test_step_bounds(self):
        assert step_progress_bounds(IngestionStep.ANALYSIS) == (0, 20)
        assert step_progress_bounds(IngestionStep.COLLECTION) == (20, 45)
        assert step_progress_bounds(IngestionStep.OPTIMIZATION) == (90, 100)


class TestTransitions:
    """Tests for event application and session invariants."""

    @pytest.mark.asyncio
    async def test_create(self, manager):
        session_id = await manager.create("machine learning")

        session = await manager.get(session_id)
        assert session.status == SessionStatus.STARTING
        assert session.progress == 0.0
        assert session_id in manager
        assert len(manager) == 1

    @pytest.mark.asyncio
    async def test_step_lifecycle(self, manager):
        session_id = await manager.create("ml")

        await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.ANALYSIS))
        session = await manager.apply(
            StepCompleted(session_id=session_id, step=IngestionStep.ANALYSIS, progress=20)
        )

        assert session.status == SessionStatus.ANALYZING
        assert session.current_step == 1
        assert session.steps["analysis"].status == StepStatus.COMPLETED
        assert session.steps["analysis"].start_time == START
        assert session.progress == 20.0

    @pytest.mark.asyncio
    async def test_progress_never_decreases(self, manager):
        session_id = await manager.create("ml")

        await manager.apply(ProgressEvent(session_id=session_id, progress=30))
        session = await manager.apply(ProgressEvent(session_id=session_id, progress=10))

        assert session.progress == 30.0

    @pytest.mark.asyncio
    async def test_progress_capped_before_completion(self, manager):
        session_id = await manager.create("ml")

        session = await manager.apply(ProgressEvent(session_id=session_id, progress=100))

        assert session.progress == 99.0

    @pytest.mark.asyncio
    async def test_status_cannot_move_backwards(self, manager):
        session_id = await manager.create("ml")
        await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.COLLECTION))

        with pytest.raises(InvalidTransitionError):
            await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.ANALYSIS))

    @pytest.mark.asyncio
    async def test_completed_invariants(self, manager, clock):
        session_id = await manager.create("ml")
        await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.ANALYSIS))
        clock.advance(seconds=90)

        session = await manager.apply(SessionCompleted(session_id=session_id, ingestion_id="42", saved=True))

        assert session.status == SessionStatus.COMPLETED
        assert session.progress == 100.0
        assert session.success is True
        assert all(state.status == StepStatus.COMPLETED for state in session.steps.values())
        assert session.processing_time_ms == 90_000
        assert session.ingestion_id == "42"
        assert session.saved is True

    @pytest.mark.asyncio
    async def test_failed_invariants(self, manager):
        session_id = await manager.create("ml")
        await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.COLLECTION))
        await manager.apply(ProgressEvent(session_id=session_id, progress=30))
        await manager.apply(
            StepFailed(
                session_id=session_id,
                step=IngestionStep.COLLECTION,
                error_kind=ErrorKind.STAGE_FAILURE,
                message="stage_failure: boom",
            )
        )

        session = await manager.apply(
            SessionFailed(session_id=session_id, error_kind=ErrorKind.STAGE_FAILURE, message="stage_failure: boom")
        )

        assert session.status == SessionStatus.FAILED
        assert session.success is False
        assert session.error_kind == ErrorKind.STAGE_FAILURE
        assert session.steps["collection"].status == StepStatus.FAILED
        assert session.steps["collection"].error == "stage_failure: boom"
        assert session.progress == 30.0
        assert session.failed_at == START

    @pytest.mark.asyncio
    async def test_failure_before_any_step_fails_analysis(self, manager):
        session_id = await manager.create("ml")

        session = await manager.apply(
            SessionFailed(session_id=session_id, error_kind=ErrorKind.INTERNAL, message="internal: boom")
        )

        assert session.steps["analysis"].status == StepStatus.FAILED

    @pytest.mark.asyncio
    async def test_failure_between_stages_fails_next_step(self, manager):
        session_id = await manager.create("ml")
        await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.ANALYSIS))
        await manager.apply(StepCompleted(session_id=session_id, step=IngestionStep.ANALYSIS, progress=20))

        session = await manager.apply(
            SessionFailed(session_id=session_id, error_kind=ErrorKind.INTERNAL, message="internal: KeyError")
        )

        assert session.steps["analysis"].status == StepStatus.COMPLETED
        assert session.steps["analysis"].error is None
        assert session.steps["collection"].status == StepStatus.FAILED
        assert session.steps["collection"].error == "internal: KeyError"
        assert session.current_step == IngestionStep.COLLECTION.number

    @pytest.mark.asyncio
    async def test_failure_after_last_step_recorded_on_it(self, manager):
        session_id = await manager.create("ml")
        for step in IngestionStep:
            await manager.apply(StepStarted(session_id=session_id, step=step))
            await manager.apply(StepCompleted(session_id=session_id, step=step, progress=90))

        session = await manager.apply(
            SessionFailed(session_id=session_id, error_kind=ErrorKind.INTERNAL, message="internal: KeyError")
        )

        assert session.status == SessionStatus.FAILED
        assert session.steps["optimization"].status == StepStatus.FAILED
        assert session.steps["optimization"].error == "internal: KeyError"
        assert session.current_step == IngestionStep.OPTIMIZATION.number

    @pytest.mark.asyncio
    async def test_terminal_status_is_sticky(self, manager):
        session_id = await manager.create("ml")
        await manager.apply(SessionCompleted(session_id=session_id))

        session = await manager.apply(
            SessionFailed(session_id=session_id, error_kind=ErrorKind.INTERNAL, message="late")
        )

        assert session.status == SessionStatus.COMPLETED
        assert session.error is None

    @pytest.mark.asyncio
    async def test_stats_accumulate(self, manager):
        session_id = await manager.create("ml")

        await manager.apply(StatsDelta(session_id=session_id, llm_tokens=100, errors=1))
        session = await manager.apply(StatsDelta(session_id=session_id, llm_tokens=50, concepts_extracted=4))

        assert session.stats.llm_tokens == 150
        assert session.stats.errors == 1
        assert session.stats.concepts_extracted == 4

    @pytest.mark.asyncio
    async def test_unknown_session_ignored(self, manager):
        assert await manager.apply(ProgressEvent(session_id="nope", progress=10)) is None
        assert await manager.update("nope", {"progress": 10}) is None

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, manager):
        session_id = await manager.create("ml")

        snapshot = await manager.get(session_id)
        snapshot.progress = 80.0
        snapshot.stats.errors = 9

        fresh = await manager.get(session_id)
        assert fresh.progress == 0.0
        assert fresh.stats.errors == 0


class TestUpdate:
    """Tests for field patches."""

    @pytest.mark.asyncio
    async def test_progress_merged_with_max(self, manager):
        session_id = await manager.create("ml")
        await manager.update(session_id, {"progress": 40})

        session = await manager.update(session_id, {"progress": 20, "details": "working"})

        assert session.progress == 40.0
        assert session.details == "working"

    @pytest.mark.asyncio
    async def test_backwards_status_rejected(self, manager):
        session_id = await manager.create("ml")
        await manager.update(session_id, {"status": "processing"})

        with pytest.raises(InvalidTransitionError):
            await manager.update(session_id, {"status": "analyzing"})

    @pytest.mark.asyncio
    async def test_terminal_session_accepts_bookkeeping_only(self, manager):
        session_id = await manager.create("ml")
        await manager.apply(SessionCompleted(session_id=session_id))

        session = await manager.update(session_id, {"saved": True, "ingestion_id": "7", "progress": 10})

        assert session.saved is True
        assert session.ingestion_id == "7"
        assert session.progress == 100.0


class TestInterruptAndEvict:
    """Tests for shutdown interruption and TTL eviction."""

    @pytest.mark.asyncio
    async def test_interrupt_all(self, manager):
        running = await manager.create("ml")
        done = await manager.create("rust")
        await manager.apply(StepStarted(session_id=running, step=IngestionStep.PROCESSING))
        await manager.apply(SessionCompleted(session_id=done))

        interrupted = await manager.interrupt_all("shutdown")

        assert interrupted == [running]
        session = await manager.get(running)
        assert session.status == SessionStatus.INTERRUPTED
        assert session.error_kind == ErrorKind.INTERRUPTED
        assert session.steps["processing"].status == StepStatus.FAILED
        assert (await manager.get(done)).status == SessionStatus.COMPLETED
        assert manager.active_count == 0

    @pytest.mark.asyncio
    async def test_evict_expired(self, manager, clock):
        completed = await manager.create("a")
        failed = await manager.create("b")
        active = await manager.create("c")
        await manager.apply(SessionCompleted(session_id=completed))
        await manager.apply(SessionFailed(session_id=failed, error_kind=ErrorKind.INTERNAL, message="x"))

        # Failed TTL (3600 s) passed, completed TTL (7200 s) not yet
        clock.advance(seconds=3601)
        assert await manager.evict_expired() == 1
        assert failed not in manager
        assert completed in manager

        clock.advance(seconds=3600)
        assert await manager.evict_expired() == 1
        assert completed not in manager
        assert active in manager

    @pytest.mark.asyncio
    async def test_evict_exactly_at_ttl_keeps_session(self, manager, clock):
        session_id = await manager.create("a")
        await manager.apply(SessionCompleted(session_id=session_id))

        clock.advance(seconds=7200)

        assert await manager.evict_expired() == 0

    @pytest.mark.asyncio
    async def test_explicit_evict(self, manager):
        session_id = await manager.create("a")

        assert await manager.evict(session_id) is True
        assert await manager.evict(session_id) is False
        assert await manager.get(session_id) is None


class TestSubscribers:
    """Tests for progress snapshots and subscriber queues."""

    @pytest.mark.asyncio
    async def test_snapshot_contents(self, manager, clock):
        session_id = await manager.create("ml")
        await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.COLLECTION))
        await manager.apply(ProgressEvent(session_id=session_id, progress=32.5))
        clock.advance(seconds=65)

        snapshot = progress_snapshot(await manager.get(session_id), clock())

        assert snapshot.progress == 32.5
        assert snapshot.current_step == 2
        assert snapshot.is_active is True
        collection = snapshot.step_details[1]
        assert collection.key == "collection"
        assert collection.is_active is True
        assert collection.progress == 50.0
        assert snapshot.timing.elapsed_formatted == "1m 5s"
        assert snapshot.timing.estimated_total_ms == 200_000

    @pytest.mark.asyncio
    async def test_subscriber_receives_filtered_snapshots(self, manager):
        first = await manager.create("ml")
        second = await manager.create("rust")
        queue = manager.subscribe(first)

        await manager.apply(ProgressEvent(session_id=first, progress=10))
        await manager.apply(ProgressEvent(session_id=second, progress=10))

        snapshot = queue.get_nowait()
        assert snapshot.session_id == first
        assert queue.empty()

        manager.unsubscribe(queue)
        await manager.apply(ProgressEvent(session_id=first, progress=20))
        assert queue.empty()

    @pytest.mark.asyncio
    async def test_emission_throttled(self, clock):
        manager = SessionManager(
            config=make_settings(PROGRESS_EMIT_MIN_DELTA=1.0, PROGRESS_EMIT_INTERVAL_SECONDS=60.0),
            clock=clock,
        )
        session_id = await manager.create("ml")
        queue = manager.subscribe()

        await manager.apply(ProgressEvent(session_id=session_id, progress=10.0))
        await manager.apply(ProgressEvent(session_id=session_id, progress=10.5))
        await manager.apply(ProgressEvent(session_id=session_id, progress=11.0))

        received = []
        while not queue.empty():
            received.append(queue.get_nowait().progress)
        assert received == [10.0, 11.0]

    @pytest.mark.asyncio
    async def test_full_queue_drops_oldest(self, manager):
        session_id = await manager.create("ml")
        queue = manager.subscribe(session_id)

        for progress in range(1, 106):
            await manager.apply(ProgressEvent(session_id=session_id, progress=float(progress) * 0.9))

        assert queue.qsize() == 100
        assert queue.get_nowait().progress == pytest.approx(5.4)
        assert isinstance(queue, asyncio.Queue)
