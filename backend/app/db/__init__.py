"""Database package."""

from app.db.base import engine, async_session_maker, Base, init_db, close_db
from app.db.models import CrawledDocument, IngestionRecord, KnowledgeGraphRecord

__all__ = [
    "engine",
    "async_session_maker",
    "Base",
    "init_db",
    "close_db",
    "CrawledDocument",
    "IngestionRecord",
    "KnowledgeGraphRecord",
]
