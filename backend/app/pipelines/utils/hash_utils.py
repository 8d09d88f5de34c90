"""
Hash Utilities for Source Items

Fingerprints used for cross-category de-duplication, URL normalization for
the crawled-document store, and deterministic random generators for the
simulated adapters (the same term always yields the same videos/reports).

Usage:
    from app.pipelines.utils.hash_utils import content_fingerprint, seeded_rng

    fp = content_fingerprint("Deep Learning Basics", "An introduction to ...")
    rng = seeded_rng("machine learning", "neural networks")
"""

import hashlib
import random
from urllib.parse import parse_qs, urlencode, urlparse

# Leading body characters that participate in a fingerprint
FINGERPRINT_BODY_CHARS = 200


def calculate_content_hash(content: str) -> str:
    """sha256 hex digest of UTF-8 text."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def content_fingerprint(title: str, body: str = "") -> str:
    """
    Fingerprint an item by its title and leading body text.

    The title and the first FINGERPRINT_BODY_CHARS characters of the body
    are concatenated, lowercased and whitespace-collapsed before hashing,
    so formatting differences between providers do not defeat matching.

    Args:
        title: Item title
        body: Summary, description or content

    Returns:
        sha256 hex digest
    """
    raw = f"{title or ''} {(body or '')[:FINGERPRINT_BODY_CHARS]}"
    normalized = " ".join(raw.lower().split())
    return calculate_content_hash(normalized)


def normalize_url(url: str) -> str:
    """
    Canonical form of a URL for document keys.

    Lowercases scheme and host, drops the trailing slash and fragment and
    sorts query parameters, so equivalent links map to one stored document.
    """
    parsed = urlparse(url.strip())
    path = parsed.path.rstrip("/") or "/"
    normalized = f"{parsed.scheme.lower()}://{parsed.netloc.lower()}{path}"
    if parsed.query:
        params = parse_qs(parsed.query, keep_blank_values=True)
        normalized += f"?{urlencode(sorted(params.items()), doseq=True)}"
    return normalized


def seeded_rng(*parts: str) -> random.Random:
    """
    Random generator seeded from the lowercased parts.

    Args:
        parts: Strings identifying the simulation (e.g., domain and term)

    Returns:
        random.Random that produces the same sequence for the same parts
    """
    digest = calculate_content_hash("|".join(part.lower() for part in parts))
    return random.Random(int(digest[:16], 16))


def short_hash(hash_value: str, length: int = 8) -> str:
    """Leading characters of a hash, for log lines."""
    return hash_value[:length]
