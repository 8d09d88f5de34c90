"""
Scheduled Job Configuration

Configures periodic maintenance jobs using APScheduler:
- Session eviction every EVICTION_INTERVAL_SECONDS (default 5 minutes)

Execution Context:
    The scheduler runs IN-PROCESS with FastAPI. It is started/stopped via
    FastAPI's lifespan context manager in app/main.py.

    Flow:
        uvicorn starts FastAPI -> lifespan() calls start_scheduler(orchestrator)
        -> APScheduler runs in the event loop -> evict_expired() drops
        terminal sessions past their TTL from memory

Limitations:
    - Single instance only: each replica evicts its own in-memory sessions,
      which is what we want since sessions are not shared between replicas.

Usage:
    # Automatic (via FastAPI lifespan in main.py):
    start_scheduler(orchestrator)  # On app startup
    stop_scheduler()               # On app shutdown

    # Manual trigger for testing:
    from app.services.scheduler import trigger_job_now
    trigger_job_now("session_eviction")
"""

import logging
from datetime import datetime, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from app.config.ingestion import ingestion_settings

logger = logging.getLogger(__name__)

EVICTION_JOB_ID = "session_eviction"

# Global scheduler instance (recreated on each start so it binds to the running loop)
scheduler: Optional[AsyncIOScheduler] = None


async def evict_expired_sessions(orchestrator) -> int:
    """Drop terminal sessions whose TTL has elapsed."""
    evicted = await orchestrator.evict_expired()
    if evicted:
        logger.info(f"Session eviction: removed {evicted} expired sessions")
    return evicted


def setup_scheduled_jobs(orchestrator, interval_seconds: Optional[float] = None) -> None:
    """Configure the maintenance jobs."""
    interval = interval_seconds or ingestion_settings.EVICTION_INTERVAL_SECONDS

    scheduler.add_job(
        evict_expired_sessions,
        IntervalTrigger(seconds=interval),
        args=[orchestrator],
        id=EVICTION_JOB_ID,
        name="Session Eviction",
        replace_existing=True,
        coalesce=True,
        max_instances=1,
        misfire_grace_time=int(interval),
    )

    logger.info("Scheduled jobs configured:")
    logger.info(f"  - Session eviction: every {interval:g}s")


def start_scheduler(orchestrator, interval_seconds: Optional[float] = None) -> AsyncIOScheduler:
    """Start the scheduler and configure jobs."""
    global scheduler
    if scheduler is not None and scheduler.running:
        logger.warning("Scheduler already running")
        return scheduler

    scheduler = AsyncIOScheduler(timezone=timezone.utc)
    setup_scheduled_jobs(orchestrator, interval_seconds)
    scheduler.start()
    logger.info("Scheduler started")
    return scheduler


def stop_scheduler() -> None:
    """Stop the scheduler without waiting for a running eviction."""
    global scheduler
    if scheduler is None or not scheduler.running:
        logger.warning("Scheduler not running")
        return

    scheduler.shutdown(wait=False)
    scheduler = None
    logger.info("Scheduler stopped")


def get_scheduled_jobs() -> list[dict]:
    """Get list of scheduled jobs with their next run times."""
    if scheduler is None:
        return []
    jobs = []
    for job in scheduler.get_jobs():
        jobs.append(
            {
                "id": job.id,
                "name": job.name,
                "next_run": (
                    job.next_run_time.isoformat() if job.next_run_time else None
                ),
                "trigger": str(job.trigger),
            }
        )
    return jobs


def trigger_job_now(job_id: str) -> bool:
    """
    Manually trigger a scheduled job immediately.

    Args:
        job_id: ID of the job to trigger

    Returns:
        True if triggered successfully
    """
    job = scheduler.get_job(job_id) if scheduler is not None else None
    if job:
        job.modify(next_run_time=datetime.now(timezone.utc))
        logger.info(f"Manually triggered job: {job_id}")
        return True

    logger.warning(f"Job not found: {job_id}")
    return False
