"""
Domain Ingestion Services

Session bookkeeping, persistence and the supporting algorithms used by the
ingestion orchestrator (app.services.ingestion.pipeline).

Key Components:
- session_manager.py: In-memory sessions, events and progress snapshots
- persistence.py: PostgreSQL gateway for sessions, graphs and documents
- scoring.py: Relevance scoring for collected items
- dedup.py: Cross-category de-duplication
- catalog.py: Curated fallback data for simulated sources
- stages/: Analysis, extraction, graph and pathway stages

The orchestrator is not imported here so adapters and stages can import
this package without pulling in the whole pipeline.
"""

from app.services.ingestion.dedup import deduplicate
from app.services.ingestion.session_manager import (
    SessionManager,
    format_duration,
    progress_snapshot,
)

__all__ = [
    "SessionManager",
    "deduplicate",
    "format_duration",
    "progress_snapshot",
]
