"""
Ingestion Stages

Stage functions are plain coroutines or functions returning stage outputs;
LLM-backed stages also return their LLMUsage records.
"""

from app.services.ingestion.stages.analysis import (
    analyze_domain,
    fallback_analysis,
    generate_recommendations,
)
from app.services.ingestion.stages.extraction import process_items
from app.services.ingestion.stages.graph import build_knowledge_graph, compute_graph_stats
from app.services.ingestion.stages.pathways import find_optimal_path, optimize_pathways

__all__ = [
    "analyze_domain",
    "build_knowledge_graph",
    "compute_graph_stats",
    "fallback_analysis",
    "find_optimal_path",
    "generate_recommendations",
    "optimize_pathways",
    "process_items",
]
