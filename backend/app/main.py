"""
Domain Ingestion API

FastAPI application exposing the ingestion client API under /api/ingest.

Lifespan:
    startup  -> logging, database tables, browser pool, orchestrator,
                eviction scheduler
    shutdown -> scheduler stop, in-flight sessions interrupted (bounded by
                SHUTDOWN_GRACE_SECONDS), browser pool closed, engine disposed

Usage:
    uvicorn app.main:app --host 0.0.0.0 --port 8000
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError

from app.config import ingestion_settings, settings
from app.middleware import setup_error_handling, setup_rate_limiting
from app.pipelines.utils.browser_pool import BrowserPool
from app.routers import health_router, ingestion_router
from app.services.ingestion.persistence import PersistenceGateway
from app.services.ingestion.pipeline import IngestionOrchestrator
from app.services.scheduler import start_scheduler, stop_scheduler

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


async def build_orchestrator() -> IngestionOrchestrator:
    """Create the orchestrator with its database and browser resources."""
    from app.db import init_db

    try:
        await init_db()
    except (SQLAlchemyError, OSError) as e:
        # Sessions still run; persistence calls will fail and health reports it
        logger.error(f"Database initialization failed: {type(e).__name__}: {e}")

    browser_pool = BrowserPool(config=ingestion_settings) if ingestion_settings.BROWSER_ENABLED else None
    return IngestionOrchestrator(
        persistence=PersistenceGateway(config=ingestion_settings),
        browser_pool=browser_pool,
        config=ingestion_settings,
    )


def create_app(orchestrator: Optional[IngestionOrchestrator] = None) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        orchestrator: Pre-built orchestrator (tests); when given, the
            lifespan does not touch the database engine

    Returns:
        Configured FastAPI app
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        owns_resources = orchestrator is None
        app.state.orchestrator = orchestrator or await build_orchestrator()
        start_scheduler(app.state.orchestrator)
        logger.info(f"{settings.APP_NAME} started")

        yield

        stop_scheduler()
        interrupted = await app.state.orchestrator.shutdown(ingestion_settings.SHUTDOWN_GRACE_SECONDS)
        if interrupted:
            logger.warning(f"Interrupted {len(interrupted)} sessions on shutdown")
        if owns_resources:
            from app.db import close_db

            await close_db()
        logger.info(f"{settings.APP_NAME} stopped")

    app = FastAPI(
        title=settings.APP_NAME,
        description="Turns a domain name into a knowledge graph and learning pathways",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    setup_error_handling(app, debug=settings.DEBUG)
    setup_rate_limiting(app, enabled=settings.ENABLE_RATE_LIMITING)

    app.include_router(health_router.router)
    app.include_router(ingestion_router.router)

    @app.get("/")
    async def root():
        return {"message": settings.APP_NAME, "docs": "/docs"}

    return app


app = create_app()
