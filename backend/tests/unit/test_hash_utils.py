"""
Unit tests for hash utilities.
"""

from app.pipelines.utils.hash_utils import (
    calculate_content_hash,
    content_fingerprint,
    normalize_url,
    seeded_rng,
    short_hash,
)


class TestHashUtils:
    """Tests for hash utility functions."""

    def test_calculate_content_hash(self):
        """Test content hash calculation."""
        hash1 = calculate_content_hash("test")
        hash2 = calculate_content_hash("test")
        hash3 = calculate_content_hash("different")

        assert hash1 == hash2
        assert hash1 != hash3
        assert len(hash1) == 64

    def test_normalize_url(self):
        assert normalize_url("HTTPS://Docs.Example.com/guide/") == "https://docs.example.com/guide"
        assert normalize_url("https://docs.example.com") == "https://docs.example.com/"

    def test_normalize_url_query_order(self):
        assert normalize_url("https://example.com/?b=2&a=1") == normalize_url("https://example.com/?a=1&b=2")

    def test_normalize_url_drops_fragment(self):
        assert normalize_url("https://example.com/page#intro") == "https://example.com/page"

    def test_seeded_rng_is_deterministic(self):
        first = [seeded_rng("Machine Learning", "pytorch").random() for _ in range(3)]
        second = [seeded_rng("machine learning", "PyTorch").random() for _ in range(3)]

        assert first == second
        assert seeded_rng("rust").random() != seeded_rng("go").random()

    def test_short_hash(self):
        """Test hash shortening."""
        full_hash = "a" * 64
        short = short_hash(full_hash, length=8)

        assert short == "aaaaaaaa"
        assert len(short) == 8


class TestContentFingerprint:
    """Tests for cross-category item fingerprints."""

    def test_formatting_differences_ignored(self):
        assert content_fingerprint("Deep  Learning", "An intro\nto nets") == content_fingerprint(
            "deep learning", "AN INTRO to nets"
        )

    def test_only_leading_body_counts(self):
        body = "x" * 200
        assert content_fingerprint("Title", body + " tail one") == content_fingerprint("Title", body + " tail two")

    def test_title_participates(self):
        assert content_fingerprint("Title A", "same body") != content_fingerprint("Title B", "same body")

    def test_empty_body(self):
        assert content_fingerprint("Title", "") == content_fingerprint("Title", None)
