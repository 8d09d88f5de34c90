"""
Pipeline-related enums.

Defines enums for LLM operation attribution and model selection.
"""

from enum import Enum


class PipelineName(str, Enum):
    """
    Pipeline names for LLM usage attribution.

    Used by LLMClient to tag usage records with the caller.
    """

    DOMAIN_INGESTION = "DOMAIN_INGESTION"
    STANDALONE = "STANDALONE"


class PipelineOperation(str, Enum):
    """
    Operation types for LLM calls.

    Used for both:
    1. Model selection: LLMClient maps each operation to a configured model
    2. Usage tracking: operations are recorded on every LLMUsage

    Analyzer, extractor and optimizer models are configured separately.
    """

    # Analyzer
    DOMAIN_ANALYSIS = "DOMAIN_ANALYSIS"

    # Extractor
    CONCEPT_EXTRACTION = "CONCEPT_EXTRACTION"
    RELATIONSHIP_EXTRACTION = "RELATIONSHIP_EXTRACTION"

    # Optimizer
    PATHWAY_OPTIMIZATION = "PATHWAY_OPTIMIZATION"

    # Connectivity check
    HEALTH_CHECK = "HEALTH_CHECK"
