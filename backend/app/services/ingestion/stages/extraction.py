"""
Concept and Relationship Extraction Stage

The third ingestion stage. Turns the filtered source items into a
de-duplicated concept list and a typed relationship list:

1. Concept prompt (two attempts) over a compact digest of the items
2. Evidence matching: every concept is linked to the items that mention
   it; LLM concepts without supporting items are dropped
3. Relationship prompt (two attempts) over the surviving concepts
4. Relationship normalization: free-form types mapped onto the enum,
   endpoints resolved to concept ids, self-loops and duplicates dropped

If the concept prompt fails twice, pattern extraction takes over:
concepts come from the adapters' keyword sets plus the analysis's
primary concepts, and relationships from the curated per-domain
prerequisite templates (or a chain over the analysis's learning order).

Usage:
    from app.services.ingestion.stages.extraction import process_items

    result, usages = await process_items(domain, items, analysis, llm_client)
    for concept in result.concepts:
        print(f"{concept.name}: {concept.evidence_sources}")
"""

import logging
from typing import Any, Iterable, Optional

from app.config.ingestion import IngestionSettings, ingestion_settings
from app.enums.ingestion import (
    ConceptType,
    DifficultyLevel,
    EdgeDifficulty,
    EvidenceMethod,
    RelationshipType,
)
from app.enums.pipeline import PipelineOperation
from app.models.knowledge import (
    Concept,
    DomainAnalysis,
    EdgeEvidence,
    ProcessingResult,
    Relationship,
)
from app.models.sources import SourceItemBase
from app.pipelines.utils.cost_types import LLMUsage
from app.pipelines.utils.text_utils import normalize_llm_json_response, slugify, truncate_text
from app.services.ingestion.catalog import PREREQUISITE_TEMPLATES, match_fallback_pattern
from app.services.ingestion.scoring import classify_difficulty
from app.services.llm.client import LLMClient

logger = logging.getLogger(__name__)

_VALID_CONCEPT_TYPES = {e.value for e in ConceptType}
_VALID_DIFFICULTY = {e.value for e in DifficultyLevel}

MAX_FALLBACK_CONCEPTS = 40

# Free-form relationship labels the LLM tends to produce
RELATIONSHIP_ALIASES: dict[str, RelationshipType] = {
    "prerequisite": RelationshipType.PREREQUISITE,
    "prerequisite_of": RelationshipType.PREREQUISITE,
    "prerequisite_for": RelationshipType.PREREQUISITE,
    "leads_to": RelationshipType.PREREQUISITE,
    "precedes": RelationshipType.PREREQUISITE,
    "foundation_for": RelationshipType.PREREQUISITE,
    "builds_upon": RelationshipType.BUILDS_UPON,
    "builds_on": RelationshipType.BUILDS_UPON,
    "based_on": RelationshipType.BUILDS_UPON,
    "applied_in": RelationshipType.APPLIED_IN,
    "used_in": RelationshipType.APPLIED_IN,
    "application_of": RelationshipType.APPLIED_IN,
    "component_of": RelationshipType.COMPONENT_OF,
    "part_of": RelationshipType.COMPONENT_OF,
    "subset_of": RelationshipType.COMPONENT_OF,
    "depends_on": RelationshipType.DEPENDS_ON,
    "requires": RelationshipType.DEPENDS_ON,
    "uses": RelationshipType.DEPENDS_ON,
    "extends": RelationshipType.EXTENDS,
    "is_a": RelationshipType.EXTENDS,
    "type_of": RelationshipType.EXTENDS,
    "specializes": RelationshipType.EXTENDS,
    "implements": RelationshipType.IMPLEMENTS,
    "implementation_of": RelationshipType.IMPLEMENTS,
    "related_to": RelationshipType.RELATED_TO,
    "related": RelationshipType.RELATED_TO,
    "similar_to": RelationshipType.RELATED_TO,
}

LEARNING_EDGE_TYPES = (RelationshipType.PREREQUISITE, RelationshipType.BUILDS_UPON)

_EDGE_DIFFICULTY = {
    DifficultyLevel.BEGINNER: EdgeDifficulty.EASY,
    DifficultyLevel.INTERMEDIATE: EdgeDifficulty.MEDIUM,
    DifficultyLevel.ADVANCED: EdgeDifficulty.HARD,
}


CONCEPT_PROMPT = """Extract the key learning concepts of the domain "{domain}" from these sources.

Domain complexity: {complexity}
Primary concepts identified so far: {primary_concepts}

Sources:
{digest}

Provide the concepts in JSON format:
{{
  "concepts": [
    {{
      "name": "Concept name",
      "description": "One or two sentence explanation",
      "type": "{type_options}",
      "importance": 1-10,
      "difficulty": "{difficulty_options}",
      "category": "Grouping, e.g. Core Concepts",
      "keywords": ["alternative names or terms that identify it in the sources"]
    }}
  ]
}}

Guidelines:
- Only include concepts that the sources actually discuss
- Use specific names ("Gradient Descent"), not generic categories ("Methods")
- importance 10 means essential for mastering the domain
- Return at most 25 concepts
"""

RELATIONSHIP_PROMPT = """Identify relationships between these concepts of the domain "{domain}".

Concepts:
{concepts}

Provide the relationships in JSON format:
{{
  "relationships": [
    {{
      "source": "Concept name",
      "target": "Concept name",
      "type": "{type_options}",
      "strength": 0.0-1.0,
      "bidirectional": true|false
    }}
  ]
}}

Guidelines:
- "prerequisite" means source must be learned before target
- "builds_upon" means target extends what source teaches
- Use only concept names from the list above
- Return at most 40 relationships
"""


# =============================================================================
# Stage Entry Point
# =============================================================================


async def process_items(
    domain: str,
    items: list[SourceItemBase],
    analysis: Optional[DomainAnalysis],
    llm_client: LLMClient,
    session_id: Optional[str] = None,
    config: Optional[IngestionSettings] = None,
) -> tuple[ProcessingResult, list[LLMUsage]]:
    """
    Extract concepts and relationships from collected items.

    Args:
        domain: Domain being ingested
        items: Filtered, de-duplicated source items
        analysis: Output of the analyze stage (may be None for standalone use)
        llm_client: LLM client for completion
        session_id: Session id for usage attribution
        config: Ingestion settings (defaults to the global instance)

    Returns:
        Tuple of (ProcessingResult, list of LLMUsage for cost tracking)
    """
    config = config or ingestion_settings
    analysis = analysis or DomainAnalysis(domain=domain)
    usages: list[LLMUsage] = []

    if not items:
        logger.info(f"[{domain}] No items to process, skipping extraction")
        return ProcessingResult(total_documents=0), usages

    digest = build_digest(items, config)
    used_fallback = False

    raw_concepts = await _complete_with_attempts(
        llm_client,
        PipelineOperation.CONCEPT_EXTRACTION,
        CONCEPT_PROMPT.format(
            domain=domain,
            complexity=analysis.complexity.value,
            primary_concepts=", ".join(analysis.primary_concepts) or "none",
            digest=digest,
            type_options="|".join(e.value for e in ConceptType),
            difficulty_options="|".join(e.value for e in DifficultyLevel),
        ),
        "concepts",
        config,
        session_id,
        usages,
    )

    concepts: list[Concept] = []
    if raw_concepts is not None:
        aliases: dict[str, list[str]] = {}
        for raw in raw_concepts:
            concept = normalize_concept(raw)
            if concept is None:
                continue
            concepts.append(concept)
            keywords = raw.get("keywords")
            if isinstance(keywords, list):
                aliases.setdefault(concept.id, []).extend(str(k) for k in keywords if k)
        concepts = dedupe_concepts(concepts)
        concepts = attach_evidence(concepts, items, drop_unsupported=True, aliases=aliases)
        if not concepts:
            logger.warning(f"[{domain}] No LLM concept is supported by the sources, using pattern extraction")

    if not concepts:
        used_fallback = True
        concepts = fallback_concepts(items, analysis)
        relationships = fallback_relationships(domain, concepts, analysis)
    else:
        raw_relationships = await _complete_with_attempts(
            llm_client,
            PipelineOperation.RELATIONSHIP_EXTRACTION,
            RELATIONSHIP_PROMPT.format(
                domain=domain,
                concepts="\n".join(f"- {c.name}: {c.description}" for c in concepts),
                type_options="|".join(e.value for e in RelationshipType),
            ),
            "relationships",
            config,
            session_id,
            usages,
        )
        if raw_relationships is None:
            used_fallback = True
            relationships = fallback_relationships(domain, concepts, analysis)
        else:
            relationships = normalize_relationships(raw_relationships, concepts)

    result = ProcessingResult(
        concepts=concepts,
        relationships=relationships,
        total_documents=len(items),
        used_fallback=used_fallback,
    )
    logger.info(
        f"[{domain}] Extracted {len(concepts)} concepts and {len(relationships)} relationships "
        f"from {len(items)} items{' (pattern fallback)' if used_fallback else ''}"
    )
    return result, usages


async def _complete_with_attempts(
    llm_client: LLMClient,
    operation: PipelineOperation,
    prompt: str,
    key: str,
    config: IngestionSettings,
    session_id: Optional[str],
    usages: list[LLMUsage],
) -> Optional[list[dict]]:
    """
    Run one extraction prompt, retrying once on any failure.

    Returns:
        The list under `key`, or None when every attempt failed
    """
    attempts = max(config.LLM_ATTEMPTS_PER_PROMPT, 1)
    for attempt in range(1, attempts + 1):
        try:
            data, usage = await llm_client.complete(
                operation=operation,
                messages=[{"role": "user", "content": prompt}],
                temperature=config.EXTRACTION_TEMPERATURE,
                max_tokens=config.EXTRACTION_MAX_TOKENS,
                json_mode=True,
                session_id=session_id,
            )
            usages.append(usage)
            entries = normalize_llm_json_response(data, key).get(key)
            if not isinstance(entries, list):
                raise ValueError(f"response has no '{key}' list")
            return [entry for entry in entries if isinstance(entry, dict)]
        except Exception as e:
            logger.warning(f"{operation.value} attempt {attempt}/{attempts} failed: {e}")
    return None


# =============================================================================
# Digest and Evidence
# =============================================================================


def build_digest(items: list[SourceItemBase], config: Optional[IngestionSettings] = None) -> str:
    """Compact numbered listing of the best items for the concept prompt."""
    config = config or ingestion_settings
    ranked = sorted(items, key=lambda item: (-item.relevance_score, item.id))[: config.EXTRACTION_MAX_ITEMS]
    lines = []
    for index, item in enumerate(ranked, 1):
        summary = truncate_text(item.body_text or "", config.EXTRACTION_ITEM_SUMMARY_CHARS)
        keywords = f" [keywords: {', '.join(item.keywords[:8])}]" if item.keywords else ""
        lines.append(f"{index}. ({item.category.value}) {item.title}: {summary}{keywords}")
    return "\n".join(lines)


def _item_text(item: SourceItemBase) -> str:
    return f"{item.title} {item.summary or ''} {' '.join(item.keywords)}".lower()


def find_evidence(terms: Iterable[str], items: list[SourceItemBase]) -> list[str]:
    """Ids of the items whose title, summary or keywords mention any term."""
    needles = [t.lower().strip() for t in terms if t and t.strip()]
    if not needles:
        return []
    return [item.id for item in items if any(needle in _item_text(item) for needle in needles)]


def attach_evidence(
    concepts: list[Concept],
    items: list[SourceItemBase],
    drop_unsupported: bool = False,
    aliases: Optional[dict[str, list[str]]] = None,
) -> list[Concept]:
    """
    Link concepts to the items that mention them.

    Args:
        concepts: Concepts to link
        items: Candidate supporting items
        drop_unsupported: Drop concepts no item mentions
        aliases: Extra matching terms per concept id

    Returns:
        Concepts with evidence_sources set
    """
    aliases = aliases or {}
    linked = []
    for concept in concepts:
        evidence = find_evidence([concept.name, *aliases.get(concept.id, [])], items)
        if drop_unsupported and not evidence:
            logger.debug(f"Dropping unsupported concept: {concept.name}")
            continue
        linked.append(concept.model_copy(update={"evidence_sources": evidence}))
    return linked


# =============================================================================
# Normalization
# =============================================================================


def _coerce_importance(value: Any) -> int:
    try:
        return min(max(int(round(float(value))), 1), 10)
    except (TypeError, ValueError):
        return 5


def normalize_concept(raw: dict, method: EvidenceMethod = EvidenceMethod.LLM) -> Optional[Concept]:
    """
    Validate one LLM concept entry against the enums.

    Returns:
        Concept, or None when the entry has no usable name
    """
    name = str(raw.get("name") or "").strip()
    if not name:
        return None

    concept_type = str(raw.get("type", "concept")).lower().strip()
    if concept_type not in _VALID_CONCEPT_TYPES:
        concept_type = ConceptType.CONCEPT.value

    difficulty = str(raw.get("difficulty", "intermediate")).lower().strip()
    if difficulty not in _VALID_DIFFICULTY:
        difficulty = DifficultyLevel.INTERMEDIATE.value

    return Concept(
        id=slugify(name),
        name=name,
        description=str(raw.get("description") or "").strip(),
        type=ConceptType(concept_type),
        importance=_coerce_importance(raw.get("importance", 5)),
        difficulty=DifficultyLevel(difficulty),
        category=str(raw.get("category") or "Core Concepts").strip(),
        evidence_method=method,
        confidence=0.8 if method == EvidenceMethod.LLM else 0.5,
    )


def dedupe_concepts(concepts: list[Concept]) -> list[Concept]:
    """Keep the first concept per case-insensitive name (and per slug)."""
    seen: set[str] = set()
    unique = []
    for concept in concepts:
        keys = {concept.name.lower(), concept.id}
        if keys & seen:
            continue
        seen |= keys
        unique.append(concept)
    return unique


def normalize_relationship_type(value: Any) -> RelationshipType:
    """Map a free-form relationship label onto the enum; unknown labels become related_to."""
    label = str(value or "").lower().strip().replace("-", "_").replace(" ", "_")
    if label in RELATIONSHIP_ALIASES:
        return RELATIONSHIP_ALIASES[label]
    try:
        return RelationshipType(label)
    except ValueError:
        return RelationshipType.RELATED_TO


def _coerce_strength(value: Any, default: float = 0.5) -> float:
    try:
        return min(max(float(value), 0.0), 1.0)
    except (TypeError, ValueError):
        return default


def make_relationship(
    source: Concept,
    target: Concept,
    relationship: RelationshipType,
    strength: float,
    bidirectional: bool = False,
    ai_generated: bool = False,
    confidence: float = 0.5,
) -> Relationship:
    """Build a relationship between two concepts with derived weight and difficulty."""
    shared_sources = set(source.evidence_sources) & set(target.evidence_sources)
    learning_weight = strength if relationship in LEARNING_EDGE_TYPES else strength * 0.5
    return Relationship(
        source=source.id,
        target=target.id,
        relationship=relationship,
        strength=round(strength, 3),
        bidirectional=bidirectional and relationship != RelationshipType.PREREQUISITE,
        evidence=EdgeEvidence(
            ai_generated=ai_generated,
            pattern_based=not ai_generated,
            source_count=len(shared_sources),
            confidence=confidence,
        ),
        learning_weight=round(learning_weight, 3),
        difficulty=_EDGE_DIFFICULTY[target.difficulty],
    )


def normalize_relationships(raw_relationships: list[dict], concepts: list[Concept]) -> list[Relationship]:
    """
    Resolve LLM relationship entries onto concept ids.

    Entries naming unknown concepts, self-loops and repeated
    (source, target, type) triples are dropped.
    """
    by_key: dict[str, Concept] = {}
    for concept in concepts:
        by_key[concept.name.lower()] = concept
        by_key[concept.id] = concept

    def resolve(name: Any) -> Optional[Concept]:
        text = str(name or "").strip()
        return by_key.get(text.lower()) or by_key.get(slugify(text)) if text else None

    relationships = []
    seen: set[tuple[str, str, str]] = set()
    for raw in raw_relationships:
        source = resolve(raw.get("source"))
        target = resolve(raw.get("target"))
        if source is None or target is None or source.id == target.id:
            continue

        relationship_type = normalize_relationship_type(raw.get("type") or raw.get("relationship"))
        key = (source.id, target.id, relationship_type.value)
        if key in seen:
            continue
        seen.add(key)

        relationships.append(
            make_relationship(
                source,
                target,
                relationship_type,
                _coerce_strength(raw.get("strength")),
                bidirectional=bool(raw.get("bidirectional", False)),
                ai_generated=True,
                confidence=0.8,
            )
        )
    return relationships


# =============================================================================
# Pattern Fallback
# =============================================================================


def fallback_concepts(items: list[SourceItemBase], analysis: DomainAnalysis) -> list[Concept]:
    """
    Concepts from the analysis's primary concepts plus item keyword sets.

    Primary concepts come first with high importance; keywords follow,
    weighted by how many items carry them.
    """
    keyword_counts: dict[str, int] = {}
    display: dict[str, str] = {}
    for item in items:
        for keyword in dict.fromkeys(k.strip() for k in item.keywords if k and k.strip()):
            key = keyword.lower()
            keyword_counts[key] = keyword_counts.get(key, 0) + 1
            display.setdefault(key, keyword)

    candidates: list[Concept] = []
    for name in analysis.primary_concepts:
        candidates.append(
            Concept(
                id=slugify(name),
                name=name,
                description=f"Primary concept of {analysis.domain}",
                type=ConceptType.CONCEPT,
                importance=8,
                difficulty=classify_difficulty(name),
                category="Core Concepts",
                evidence_method=EvidenceMethod.FALLBACK,
                confidence=0.4,
            )
        )

    for key, count in sorted(keyword_counts.items(), key=lambda kv: (-kv[1], kv[0])):
        candidates.append(
            Concept(
                id=slugify(display[key]),
                name=display[key],
                description=f"Topic mentioned by {count} source(s)",
                type=ConceptType.CONCEPT,
                importance=min(4 + count, 9),
                difficulty=classify_difficulty(display[key]),
                category="Related Topics",
                evidence_method=EvidenceMethod.FALLBACK,
                confidence=0.3,
            )
        )

    concepts = dedupe_concepts(candidates)[:MAX_FALLBACK_CONCEPTS]
    return attach_evidence(concepts, items)


def fallback_relationships(
    domain: str,
    concepts: list[Concept],
    analysis: Optional[DomainAnalysis] = None,
) -> list[Relationship]:
    """
    Prerequisite edges from the curated per-domain template.

    When the template yields nothing (unknown domain or concepts absent),
    a prerequisite chain is laid over the analysis's learning order.
    """
    by_name = {concept.name.lower(): concept for concept in concepts}
    relationships: list[Relationship] = []
    seen: set[tuple[str, str]] = set()

    def link(source: Optional[Concept], target: Optional[Concept], strength: float) -> None:
        if source is None or target is None or source.id == target.id:
            return
        if (source.id, target.id) in seen:
            return
        seen.add((source.id, target.id))
        relationships.append(make_relationship(source, target, RelationshipType.PREREQUISITE, strength))

    template = PREREQUISITE_TEMPLATES.get(match_fallback_pattern(domain) or "", [])
    for prerequisite, concept in template:
        link(by_name.get(prerequisite.lower()), by_name.get(concept.lower()), 0.8)

    if not relationships and analysis is not None:
        ordered = [by_name[name.lower()] for name in analysis.learning_path if name.lower() in by_name]
        if len(ordered) < 2:
            ordered = [by_name[name.lower()] for name in analysis.primary_concepts if name.lower() in by_name]
        for source, target in zip(ordered, ordered[1:]):
            link(source, target, 0.6)

    return relationships
