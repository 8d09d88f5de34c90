"""
Domain Analysis Stage

The first ingestion stage. Determines the technical category, complexity,
subdomains, primary concepts, prerequisites and a coarse learning path of
the submitted domain. The analysis steers query building, concept
extraction and the pattern fallback downstream.

When the LLM call fails (provider error, exhausted rate-limit retries or
unrepairable JSON), a canned analysis from the curated pattern table is
returned instead, marked with source=fallback. The stage itself never
fails.

Usage:
    from app.services.ingestion.stages.analysis import analyze_domain

    analysis, usages = await analyze_domain("machine learning", llm_client)
    print(f"Complexity: {analysis.complexity}, Concepts: {analysis.primary_concepts}")
"""

import logging
from typing import Optional

from app.config.ingestion import ingestion_settings
from app.enums.ingestion import AnalysisSource, DifficultyLevel
from app.enums.pipeline import PipelineOperation
from app.models.knowledge import DomainAnalysis
from app.pipelines.utils.cost_types import LLMUsage
from app.pipelines.utils.text_utils import unwrap_llm_single_object_response
from app.services.ingestion.catalog import (
    FALLBACK_CATEGORIES,
    FALLBACK_PATTERNS,
    FALLBACK_PREREQUISITES,
    GENERIC_FALLBACK_CONCEPTS,
    GENERIC_FALLBACK_PREREQUISITES,
    match_fallback_pattern,
)
from app.services.llm.client import LLMClient

logger = logging.getLogger(__name__)

_VALID_COMPLEXITY = {e.value for e in DifficultyLevel}

MAX_LIST_ITEMS = 12


ANALYSIS_PROMPT = """Analyze the technical domain "{domain}" for a learner who wants to master it.

Provide the analysis in JSON format:
{{
  "technical_category": "Broad field, e.g. Artificial Intelligence",
  "complexity": "{complexity_options}",
  "subdomains": ["subdomain1", "subdomain2"],
  "primary_concepts": ["concept1", "concept2", "concept3"],
  "prerequisites": ["prerequisite1", "prerequisite2"],
  "learning_path": ["milestone1", "milestone2", "milestone3"]
}}

Guidelines:
- "beginner": approachable without prior background in the field
- "intermediate": assumes general programming or math background
- "advanced": requires substantial specialized knowledge
- primary_concepts should be 5-10 specific concepts, not generic categories
- learning_path should be 3-6 coarse milestones in the order they are learned
"""


def _string_list(value, limit: int = MAX_LIST_ITEMS) -> list[str]:
    """Coerce an LLM field to a list of non-empty, de-duplicated strings."""
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return []
    cleaned = [str(v).strip() for v in value if v is not None and str(v).strip()]
    return list(dict.fromkeys(cleaned))[:limit]


async def analyze_domain(
    domain: str,
    llm_client: LLMClient,
    session_id: Optional[str] = None,
) -> tuple[DomainAnalysis, list[LLMUsage]]:
    """
    Analyze a domain to guide the rest of the ingestion.

    Args:
        domain: Domain as submitted (already trimmed)
        llm_client: LLM client for completion
        session_id: Session id for usage attribution

    Returns:
        Tuple of (DomainAnalysis, list of LLMUsage for cost tracking)
    """
    prompt = ANALYSIS_PROMPT.format(
        domain=domain,
        complexity_options="|".join(e.value for e in DifficultyLevel),
    )

    try:
        data, usage = await llm_client.complete(
            operation=PipelineOperation.DOMAIN_ANALYSIS,
            messages=[{"role": "user", "content": prompt}],
            temperature=ingestion_settings.ANALYSIS_TEMPERATURE,
            max_tokens=ingestion_settings.ANALYSIS_MAX_TOKENS,
            json_mode=True,
            session_id=session_id,
        )
        data = unwrap_llm_single_object_response(data)
        if not data:
            raise ValueError("expected a JSON object")

        # Validate and normalize values against enums
        complexity = str(data.get("complexity", "intermediate")).lower().strip()
        if complexity not in _VALID_COMPLEXITY:
            complexity = DifficultyLevel.INTERMEDIATE.value

        analysis = DomainAnalysis(
            domain=domain,
            technical_category=str(data.get("technical_category") or "General Technology").strip(),
            complexity=DifficultyLevel(complexity),
            subdomains=_string_list(data.get("subdomains")),
            primary_concepts=_string_list(data.get("primary_concepts")),
            prerequisites=_string_list(data.get("prerequisites")),
            learning_path=_string_list(data.get("learning_path")),
            source=AnalysisSource.LLM,
        )
        if not analysis.primary_concepts:
            raise ValueError("analysis has no primary concepts")

        analysis.recommendations = generate_recommendations(analysis)
        logger.info(
            f"[{domain}] Analysis: {analysis.technical_category}, {analysis.complexity.value}, "
            f"{len(analysis.primary_concepts)} concepts"
        )
        return analysis, [usage]

    except Exception as e:
        logger.error(f"[{domain}] Domain analysis failed, using fallback: {e}")
        return fallback_analysis(domain), []


def fallback_analysis(domain: str) -> DomainAnalysis:
    """
    Canned analysis from the curated pattern table.

    The longest pattern key contained in the lowercased domain selects the
    entry; unknown domains get a generic analysis.
    """
    key = match_fallback_pattern(domain)
    if key is not None:
        concepts = list(FALLBACK_PATTERNS[key])
        category = FALLBACK_CATEGORIES.get(key, "General Technology")
        prerequisites = list(FALLBACK_PREREQUISITES.get(key, GENERIC_FALLBACK_PREREQUISITES))
    else:
        concepts = list(GENERIC_FALLBACK_CONCEPTS)
        category = "General Technology"
        prerequisites = list(GENERIC_FALLBACK_PREREQUISITES)

    analysis = DomainAnalysis(
        domain=domain,
        technical_category=category,
        complexity=DifficultyLevel.INTERMEDIATE,
        subdomains=concepts[:3],
        primary_concepts=concepts,
        prerequisites=prerequisites,
        learning_path=["Fundamentals", "Core Concepts", "Practical Applications", "Advanced Topics"],
        source=AnalysisSource.FALLBACK,
    )
    analysis.recommendations = generate_recommendations(analysis)
    return analysis


def generate_recommendations(analysis: DomainAnalysis) -> list[str]:
    """
    Learning recommendations derived from an analysis.

    Args:
        analysis: Completed domain analysis

    Returns:
        Ordered recommendation strings (never empty)
    """
    recommendations = []

    if analysis.complexity == DifficultyLevel.ADVANCED:
        recommendations.append("Consider starting with fundamental concepts before diving into advanced topics")
        recommendations.append("Allocate extra time for understanding complex relationships")
    elif analysis.complexity == DifficultyLevel.BEGINNER:
        recommendations.append("This domain is beginner-friendly - perfect for getting started quickly")
        recommendations.append("Focus on hands-on practice to reinforce learning")

    if len(analysis.primary_concepts) > 10:
        recommendations.append("This domain has many concepts - consider breaking learning into smaller chunks")

    if len(analysis.prerequisites) > 5:
        recommendations.append("Review prerequisites thoroughly before starting the main content")

    if analysis.subdomains:
        focus = ", ".join(analysis.subdomains[:3])
        recommendations.append(f"Focus first on the core subdomains: {focus}")

    if not recommendations:
        recommendations.append("Proceed with the ingestion to get detailed learning pathways")
        recommendations.append("The system will generate optimized learning sequences based on your domain")

    return recommendations
