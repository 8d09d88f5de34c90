"""
Cross-Category Deduplicator

Removes items that share a content fingerprint across the six source
categories. For each fingerprint the highest-scoring item survives; ties
go to the earlier category (papers > repos > docs > videos > expert >
reports) and then to the smaller item id, so the result depends only on
the multiset of input items, never on adapter completion order.

Usage:
    from app.services.ingestion.dedup import deduplicate

    kept, removed = deduplicate(items_by_category)
"""

import logging

from app.enums.ingestion import SourceCategory
from app.models.sources import SourceItemBase
from app.pipelines.utils.hash_utils import content_fingerprint, short_hash

logger = logging.getLogger(__name__)


def fingerprint(item: SourceItemBase) -> str:
    """Content fingerprint of an item (title + leading body text)."""
    return content_fingerprint(item.title, item.body_text)


def _rank_key(item: SourceItemBase) -> tuple:
    # Lower sorts first: higher score, earlier category, smaller id
    return (-item.relevance_score, item.category.order, item.id)


def deduplicate(
    items_by_category: dict[str, list[SourceItemBase]],
) -> tuple[dict[str, list[SourceItemBase]], int]:
    """
    Reduce items sharing a fingerprint to a single winner.

    Losers are marked duplicate and discarded. Category lists keep their
    relative order. Applying the function to its own output changes
    nothing.

    Args:
        items_by_category: Items keyed by SourceCategory value

    Returns:
        Tuple of (surviving items keyed by category value, number removed)
    """
    winners: dict[str, SourceItemBase] = {}
    for category in SourceCategory:
        for item in items_by_category.get(category.value, []):
            fp = fingerprint(item)
            current = winners.get(fp)
            if current is None or _rank_key(item) < _rank_key(current):
                winners[fp] = item

    winning_ids = {id(item) for item in winners.values()}
    emitted: set[int] = set()
    kept: dict[str, list[SourceItemBase]] = {}
    removed = 0

    for category in SourceCategory:
        survivors = []
        for item in items_by_category.get(category.value, []):
            if id(item) in emitted:
                # Same object listed twice
                removed += 1
            elif id(item) in winning_ids:
                emitted.add(id(item))
                survivors.append(item)
            else:
                item.duplicate = True
                removed += 1
                logger.debug(
                    f"Duplicate {category.value} item dropped: {item.title[:60]!r} "
                    f"({short_hash(fingerprint(item))})"
                )
        kept[category.value] = survivors

    if removed:
        logger.info(f"Deduplication removed {removed} items across categories")
    return kept, removed
