"""Source adapters, one per content category."""

from app.pipelines.sources.docs import DocsAdapter
from app.pipelines.sources.expert import ExpertAdapter
from app.pipelines.sources.papers import PaperAdapter
from app.pipelines.sources.reports import ReportAdapter
from app.pipelines.sources.repos import RepoAdapter
from app.pipelines.sources.videos import VideoAdapter

__all__ = [
    "PaperAdapter",
    "RepoAdapter",
    "DocsAdapter",
    "VideoAdapter",
    "ExpertAdapter",
    "ReportAdapter",
]
