"""
Unit tests for cross-category deduplication.
"""

from app.enums.ingestion import SourceCategory
from app.services.ingestion.dedup import deduplicate, fingerprint
from tests.conftest import make_item

PAPERS = SourceCategory.PAPERS.value
DOCS = SourceCategory.DOCS.value
VIDEOS = SourceCategory.VIDEOS.value


class TestFingerprint:
    """Tests for item fingerprints."""

    def test_case_and_whitespace_insensitive(self):
        a = make_item(SourceCategory.PAPERS, "Attention  Is All You Need", "Transformers.")
        b = make_item(SourceCategory.DOCS, "attention is all you need", "transformers.")

        assert fingerprint(a) == fingerprint(b)

    def test_different_content(self):
        a = make_item(SourceCategory.PAPERS, "Attention", "Transformers.")
        b = make_item(SourceCategory.PAPERS, "Attention", "Recurrent nets.")

        assert fingerprint(a) != fingerprint(b)


class TestDeduplicate:
    """Tests for deduplicate."""

    def test_highest_score_survives(self):
        paper = make_item(SourceCategory.PAPERS, "Same Title", "Same body.", 0.7)
        doc = make_item(SourceCategory.DOCS, "Same Title", "Same body.", 0.9)

        kept, removed = deduplicate({PAPERS: [paper], DOCS: [doc]})

        assert removed == 1
        assert kept[PAPERS] == []
        assert kept[DOCS] == [doc]
        assert paper.duplicate is True

    def test_tie_goes_to_earlier_category(self):
        video = make_item(SourceCategory.VIDEOS, "Same Title", "Same body.", 0.8)
        paper = make_item(SourceCategory.PAPERS, "Same Title", "Same body.", 0.8)

        kept, removed = deduplicate({VIDEOS: [video], PAPERS: [paper]})

        assert removed == 1
        assert kept[PAPERS] == [paper]
        assert kept[VIDEOS] == []

    def test_order_independent(self):
        a = make_item(SourceCategory.PAPERS, "T", "B", 0.8)
        b = make_item(SourceCategory.DOCS, "T", "B", 0.8)
        c = make_item(SourceCategory.DOCS, "Other", "B", 0.5)

        first, _ = deduplicate({PAPERS: [a], DOCS: [b, c]})
        second, _ = deduplicate({DOCS: [c, b], PAPERS: [a]})

        assert [i.id for i in first[PAPERS]] == [i.id for i in second[PAPERS]] == [a.id]
        assert [i.id for i in first[DOCS]] == [i.id for i in second[DOCS]] == [c.id]

    def test_idempotent_and_preserves_order(self):
        items = [make_item(SourceCategory.DOCS, f"Doc {i}", "body", 0.5) for i in range(3)]

        kept, removed = deduplicate({DOCS: items})
        again, removed_again = deduplicate(kept)

        assert removed == removed_again == 0
        assert again[DOCS] == items

    def test_same_object_listed_twice(self):
        item = make_item(SourceCategory.PAPERS, "T", "B", 0.8)

        kept, removed = deduplicate({PAPERS: [item, item]})

        assert kept[PAPERS] == [item]
        assert removed == 1
        assert item.duplicate is False

    def test_every_category_present_in_output(self):
        kept, removed = deduplicate({})

        assert removed == 0
        assert set(kept) == {c.value for c in SourceCategory}
