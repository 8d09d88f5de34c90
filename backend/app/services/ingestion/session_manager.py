"""
Ingestion Session Manager

In-memory index of ingestion sessions. The session manager is the only
writer of session state: the orchestrator and stages describe what
happened by applying events (or patches), and the manager enforces the
session invariants while applying them.

Invariants enforced on every mutation:
- Progress never decreases
- Status only moves forward (starting → analyzing → … → completed);
  failed and interrupted may be entered from any non-terminal status
- Completed implies progress 100, every step completed and success=True
- Failed implies the current step is failed and progress ≤ 99
- Terminal statuses are sticky: later events are ignored

Concurrency:
- One asyncio.Lock per session guards that session's mutations
- A short-lived index lock guards insert and evict only

Subscribers (subscribe()) receive ProgressResponse snapshots whenever the
step or status changes, progress moves by ≥ 1, or 2 s have passed since
the previous emission for that session.

Usage:
    from app.services.ingestion.session_manager import SessionManager

    manager = SessionManager()
    session_id = await manager.create("machine learning")
    await manager.apply(StepStarted(session_id=session_id, step=IngestionStep.ANALYSIS))
    snapshot = progress_snapshot(await manager.get(session_id))
"""

import asyncio
import logging
import secrets
import string
import time
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.enums.ingestion import (
    ErrorKind,
    IngestionStep,
    SessionStatus,
    StepStatus,
)
from app.models.api import ProgressResponse, StepDetail, TimingInfo
from app.models.session import (
    AnySessionEvent,
    IngestionSession,
    ProgressEvent,
    RequesterInfo,
    SessionCompleted,
    SessionFailed,
    SessionInterrupted,
    StatsDelta,
    StepCompleted,
    StepFailed,
    StepStarted,
)

logger = logging.getLogger(__name__)

# Forward order of non-terminal statuses
STATUS_ORDER = [
    SessionStatus.STARTING,
    SessionStatus.ANALYZING,
    SessionStatus.COLLECTING,
    SessionStatus.PROCESSING,
    SessionStatus.BUILDING,
    SessionStatus.OPTIMIZING,
    SessionStatus.COMPLETED,
]

# Field on IngestionSession that holds each step's output
STEP_OUTPUT_FIELDS = {
    IngestionStep.ANALYSIS: "analysis",
    IngestionStep.COLLECTION: "collection",
    IngestionStep.PROCESSING: "processing",
    IngestionStep.KNOWLEDGE_GRAPH: "knowledge_graph",
    IngestionStep.OPTIMIZATION: "optimization",
}

# Fields a patch may still set once a session is terminal
TERMINAL_PATCHABLE = frozenset({"saved", "ingestion_id", "processing_time_ms"})

MAX_PROGRESS_BEFORE_COMPLETION = 99.0
ESTIMATE_MIN_PROGRESS = 5.0
SUBSCRIBER_QUEUE_SIZE = 100

_ID_ALPHABET = string.ascii_lowercase + string.digits


class InvalidTransitionError(Exception):
    """Raised when a mutation would move a session backwards."""


def generate_session_id() -> str:
    """Session id of the form <epoch_ms>_<9 random chars>."""
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(9))
    return f"{int(time.time() * 1000)}_{suffix}"


def format_duration(ms: Optional[float]) -> str:
    """
    Human-readable duration.

    Examples:
        >>> format_duration(3_723_000)
        '1h 2m 3s'
        >>> format_duration(123_000)
        '2m 3s'
        >>> format_duration(3_000)
        '3s'
    """
    total_seconds = int((ms or 0) // 1000)
    hours, remainder = divmod(total_seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def step_progress_bounds(step: IngestionStep) -> tuple[int, int]:
    """Overall-progress range owned by a step (e.g. collection is 20-45)."""
    start = sum(s.weight for s in IngestionStep if s.number < step.number)
    return start, start + step.weight


def progress_snapshot(session: IngestionSession, now: Optional[datetime] = None) -> ProgressResponse:
    """
    Full client-facing snapshot of a session.

    Args:
        session: Session to describe
        now: Reference time for elapsed time (defaults to now)

    Returns:
        ProgressResponse with per-step details and timing
    """
    step_details = []
    for step in IngestionStep:
        state = session.steps.get(step.value)
        status = state.status if state else StepStatus.PENDING
        start, end = step_progress_bounds(step)
        if status == StepStatus.COMPLETED:
            within = 100.0
        elif status in (StepStatus.RUNNING, StepStatus.FAILED):
            within = min(max((session.progress - start) / (end - start) * 100, 0.0), 100.0)
        else:
            within = 0.0
        step_details.append(
            StepDetail(
                key=step.value,
                name=step.display_name,
                step_number=step.number,
                status=status,
                is_active=session.current_step == step.number and status == StepStatus.RUNNING,
                is_completed=status == StepStatus.COMPLETED,
                progress=round(within, 1),
                start_time=state.start_time if state else None,
                end_time=state.end_time if state else None,
                error=state.error if state else None,
            )
        )

    elapsed = session.elapsed_ms(now)
    timing = TimingInfo(elapsed_ms=elapsed, elapsed_formatted=format_duration(elapsed))
    if session.status == SessionStatus.COMPLETED:
        timing.estimated_total_ms = elapsed
        timing.estimated_remaining_ms = 0
    elif session.is_active and session.progress > ESTIMATE_MIN_PROGRESS:
        total = int(elapsed * 100 / session.progress)
        timing.estimated_total_ms = total
        timing.estimated_remaining_ms = max(total - elapsed, 0)

    return ProgressResponse(
        session_id=session.session_id,
        domain=session.domain,
        status=session.status,
        progress=round(session.progress, 2),
        current_step=session.current_step,
        details=session.details,
        step_details=step_details,
        stats=session.stats,
        timing=timing,
        is_active=session.is_active,
        error=session.error,
        error_kind=session.error_kind,
    )


def mark_completed(session: IngestionSession, now: datetime) -> IngestionSession:
    """
    Put a session in the completed state in place.

    Sets progress 100, every step completed and success=True. The
    orchestrator applies it to a copy to persist the final record before
    the live session is completed.
    """
    session.status = SessionStatus.COMPLETED
    session.progress = 100.0
    session.current_step = len(IngestionStep)
    for state in session.steps.values():
        state.status = StepStatus.COMPLETED
        state.start_time = state.start_time or now
        state.end_time = state.end_time or now
    session.success = True
    session.error = None
    session.error_kind = None
    session.completed_at = now
    session.processing_time_ms = session.elapsed_ms(now)
    session.details = "Ingestion completed"
    return session


class _SessionCell:
    """A session plus its lock and emission bookkeeping."""

    def __init__(self, session: IngestionSession):
        self.session = session
        self.lock = asyncio.Lock()
        self.emitted_progress: Optional[float] = None
        self.emitted_status: Optional[SessionStatus] = None
        self.emitted_step: Optional[int] = None
        self.emitted_at: float = 0.0


class SessionManager:
    """
    In-memory session index with TTL eviction.

    Attributes:
        config: Ingestion settings (TTLs, emission throttle)
    """

    def __init__(
        self,
        config: Optional[IngestionSettings] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        """
        Initialize the manager.

        Args:
            config: Ingestion settings
            clock: Optional callable returning the current UTC time (tests)
        """
        self.config = config or ingestion_settings
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._cells: dict[str, _SessionCell] = {}
        self._index_lock = asyncio.Lock()
        self._subscribers: list[tuple[Optional[str], asyncio.Queue]] = []

    # =========================================================================
    # Index
    # =========================================================================

    async def create(self, domain: str, requester: Optional[RequesterInfo] = None) -> str:
        """
        Register a new session in the starting state.

        Returns:
            The new session id
        """
        now = self._clock()
        session = IngestionSession(
            session_id=generate_session_id(),
            domain=domain,
            created_at=now,
            last_update=now,
            requester=requester or RequesterInfo(),
            details="Session created",
        )
        async with self._index_lock:
            while session.session_id in self._cells:
                session.session_id = generate_session_id()
            self._cells[session.session_id] = _SessionCell(session)
        logger.info(f"Created session {session.session_id} for domain '{domain}'")
        return session.session_id

    async def insert(self, session: IngestionSession) -> None:
        """Place an existing session (e.g. restored from persistence) in the index."""
        async with self._index_lock:
            self._cells[session.session_id] = _SessionCell(session.model_copy(deep=True))

    async def get(self, session_id: str) -> Optional[IngestionSession]:
        """Deep-copied snapshot of a session, or None if unknown or evicted."""
        cell = self._cells.get(session_id)
        if cell is None:
            return None
        async with cell.lock:
            return cell.session.model_copy(deep=True)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._cells

    def __len__(self) -> int:
        return len(self._cells)

    async def list_sessions(self) -> list[IngestionSession]:
        """Snapshots of every session in memory, oldest first."""
        sessions = []
        for cell in list(self._cells.values()):
            async with cell.lock:
                sessions.append(cell.session.model_copy(deep=True))
        return sorted(sessions, key=lambda s: s.created_at)

    async def list_active(self) -> list[IngestionSession]:
        """Snapshots of sessions that have not reached a terminal status."""
        return [s for s in await self.list_sessions() if s.is_active]

    @property
    def active_count(self) -> int:
        return sum(1 for cell in self._cells.values() if cell.session.is_active)

    async def evict(self, session_id: str) -> bool:
        """Remove a session from memory. Returns True if it was present."""
        async with self._index_lock:
            removed = self._cells.pop(session_id, None) is not None
        if removed:
            logger.debug(f"Evicted session {session_id}")
        return removed

    async def evict_expired(self, now: Optional[datetime] = None) -> int:
        """
        Evict terminal sessions older than their TTL.

        Completed sessions live TTL_COMPLETED_SECONDS after completion;
        failed and interrupted sessions live TTL_FAILED_SECONDS.

        Returns:
            Number of sessions evicted
        """
        now = now or self._clock()
        expired = []
        for session_id, cell in list(self._cells.items()):
            session = cell.session
            if session.is_active:
                continue
            ended = session.completed_at or session.failed_at or session.interrupted_at or session.last_update
            ttl = (
                self.config.TTL_COMPLETED_SECONDS
                if session.status == SessionStatus.COMPLETED
                else self.config.TTL_FAILED_SECONDS
            )
            if (now - ended).total_seconds() > ttl:
                expired.append(session_id)

        async with self._index_lock:
            for session_id in expired:
                self._cells.pop(session_id, None)

        if expired:
            logger.info(f"Evicted {len(expired)} expired sessions ({len(self._cells)} remaining)")
        return len(expired)

    async def interrupt_all(self, reason: str = "shutdown") -> list[str]:
        """
        Mark every active session interrupted.

        Returns:
            Ids of the sessions that were interrupted
        """
        interrupted = []
        for session_id in list(self._cells):
            session = await self.apply(SessionInterrupted(session_id=session_id, reason=reason))
            if session is not None and session.status == SessionStatus.INTERRUPTED:
                interrupted.append(session_id)
        return interrupted

    # =========================================================================
    # Mutation
    # =========================================================================

    def _check_transition(self, session: IngestionSession, target: SessionStatus) -> None:
        if target == session.status or target in (SessionStatus.FAILED, SessionStatus.INTERRUPTED):
            return
        if STATUS_ORDER.index(target) < STATUS_ORDER.index(session.status):
            raise InvalidTransitionError(
                f"Session {session.session_id}: illegal transition {session.status.value} -> {target.value}"
            )

    async def update(self, session_id: str, patch: dict[str, Any]) -> Optional[IngestionSession]:
        """
        Merge a field patch into a session.

        Progress is merged with max(); status changes must move forward;
        terminal sessions only accept bookkeeping fields.

        Args:
            session_id: Session to update
            patch: Field name to value

        Returns:
            Snapshot after the update, or None if the session is unknown

        Raises:
            InvalidTransitionError: If the patch moves status backwards
        """
        cell = self._cells.get(session_id)
        if cell is None:
            return None

        async with cell.lock:
            session = cell.session
            if not session.is_active:
                patch = {k: v for k, v in patch.items() if k in TERMINAL_PATCHABLE}
                if not patch:
                    return session.model_copy(deep=True)

            patch = dict(patch)
            if "status" in patch:
                patch["status"] = SessionStatus(patch["status"])
                self._check_transition(session, patch["status"])
            if "progress" in patch:
                patch["progress"] = max(session.progress, float(patch["progress"]))

            for key, value in patch.items():
                setattr(session, key, value)
            session.last_update = self._clock()
            self._emit(cell)
            return session.model_copy(deep=True)

    async def apply(self, event: AnySessionEvent) -> Optional[IngestionSession]:
        """
        Apply one session event.

        Events for unknown sessions are ignored (the session may have been
        evicted or deleted). Events for terminal sessions are ignored.

        Returns:
            Snapshot after the event, or None if the session is unknown
        """
        cell = self._cells.get(event.session_id)
        if cell is None:
            logger.debug(f"Ignoring {type(event).__name__} for unknown session {event.session_id}")
            return None

        async with cell.lock:
            session = cell.session
            if not session.is_active:
                logger.debug(f"Ignoring {type(event).__name__} for terminal session {session.session_id}")
                return session.model_copy(deep=True)

            now = self._clock()
            self._apply_event(session, event, now)
            session.last_update = max(now, session.last_update)
            self._emit(cell)
            return session.model_copy(deep=True)

    def _raise_progress(self, session: IngestionSession, value: float) -> None:
        capped = min(value, MAX_PROGRESS_BEFORE_COMPLETION)
        session.progress = max(session.progress, capped)

    def _fail_current_step(self, session: IngestionSession, message: str, now: datetime) -> None:
        """
        Record a failure on the step it interrupted.

        A crash between stages leaves the current step completed, so the
        failure moves to the next step that has not completed, which becomes
        the current step. With every step completed (a crash while finishing)
        the last step carries it, as a failed save does.
        """
        steps = list(IngestionStep)
        remaining = steps[max(session.current_step, 1) - 1 :]
        step = next(
            (s for s in remaining if session.steps[s.value].status != StepStatus.COMPLETED),
            steps[-1],
        )
        session.current_step = step.number
        state = session.steps[step.value]
        state.status = StepStatus.FAILED
        state.error = state.error or message
        state.end_time = state.end_time or now

    def _apply_event(self, session: IngestionSession, event: AnySessionEvent, now: datetime) -> None:
        if isinstance(event, ProgressEvent):
            self._raise_progress(session, event.progress)
            if event.details:
                session.details = event.details

        elif isinstance(event, StepStarted):
            self._check_transition(session, event.step.running_status)
            session.status = event.step.running_status
            session.current_step = event.step.number
            state = session.steps[event.step.value]
            state.status = StepStatus.RUNNING
            state.start_time = now
            session.details = event.details or f"{event.step.display_name} started"

        elif isinstance(event, StepCompleted):
            state = session.steps[event.step.value]
            state.status = StepStatus.COMPLETED
            state.end_time = now
            self._raise_progress(session, event.progress)
            if event.output is not None:
                setattr(session, STEP_OUTPUT_FIELDS[event.step], event.output)
            session.details = event.details or f"{event.step.display_name} completed"

        elif isinstance(event, StepFailed):
            state = session.steps[event.step.value]
            state.status = StepStatus.FAILED
            state.error = event.message
            state.end_time = now
            session.details = f"{event.step.display_name} failed"

        elif isinstance(event, StatsDelta):
            stats = session.stats
            for field in type(stats).model_fields:
                setattr(stats, field, getattr(stats, field) + getattr(event, field))

        elif isinstance(event, SessionCompleted):
            mark_completed(session, now)
            session.ingestion_id = event.ingestion_id
            session.saved = event.saved
            logger.info(
                f"Session {session.session_id} completed in {format_duration(session.processing_time_ms)}"
            )

        elif isinstance(event, SessionFailed):
            self._fail_current_step(session, event.message, now)
            session.status = SessionStatus.FAILED
            session.progress = min(session.progress, MAX_PROGRESS_BEFORE_COMPLETION)
            session.success = False
            session.error = event.message
            session.error_kind = event.error_kind
            session.failed_at = now
            session.processing_time_ms = session.elapsed_ms(now)
            session.details = f"Failed: {event.message}"
            logger.warning(f"Session {session.session_id} failed ({event.error_kind.value}): {event.message}")

        elif isinstance(event, SessionInterrupted):
            step = session.current_step_key
            if step is not None and session.steps[step.value].status == StepStatus.RUNNING:
                self._fail_current_step(session, f"Interrupted: {event.reason}", now)
            session.status = SessionStatus.INTERRUPTED
            session.success = False
            session.error = f"Interrupted: {event.reason}"
            session.error_kind = ErrorKind.INTERRUPTED
            session.interrupted_at = now
            session.processing_time_ms = session.elapsed_ms(now)
            session.details = "Ingestion interrupted"
            logger.warning(f"Session {session.session_id} interrupted: {event.reason}")

    # =========================================================================
    # Subscribers
    # =========================================================================

    def subscribe(self, session_id: Optional[str] = None) -> asyncio.Queue:
        """
        Register a subscriber queue for progress snapshots.

        Args:
            session_id: Only receive snapshots of this session (None for all)

        Returns:
            Queue of ProgressResponse snapshots
        """
        queue: asyncio.Queue = asyncio.Queue(maxsize=SUBSCRIBER_QUEUE_SIZE)
        self._subscribers.append((session_id, queue))
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        self._subscribers = [(sid, q) for sid, q in self._subscribers if q is not queue]

    def _should_emit(self, cell: _SessionCell) -> bool:
        session = cell.session
        if cell.emitted_progress is None:
            return True
        if session.status != cell.emitted_status or session.current_step != cell.emitted_step:
            return True
        if abs(session.progress - cell.emitted_progress) >= self.config.PROGRESS_EMIT_MIN_DELTA:
            return True
        return time.monotonic() - cell.emitted_at >= self.config.PROGRESS_EMIT_INTERVAL_SECONDS

    def _emit(self, cell: _SessionCell) -> None:
        if not self._should_emit(cell):
            return

        session = cell.session
        cell.emitted_progress = session.progress
        cell.emitted_status = session.status
        cell.emitted_step = session.current_step
        cell.emitted_at = time.monotonic()

        if not self._subscribers:
            return
        snapshot = progress_snapshot(session, self._clock())
        for session_filter, queue in self._subscribers:
            if session_filter is not None and session_filter != session.session_id:
                continue
            if queue.full():
                # Slow subscriber: drop its oldest snapshot
                queue.get_nowait()
            queue.put_nowait(snapshot)
