"""
Text Processing Utilities

Provides LLM JSON repair and shaping plus the small text helpers
used across source adapters and processing stages.

Usage:
    from app.pipelines.utils.text_utils import (
        clean_and_parse_json,
        normalize_llm_json_response,
        slugify,
    )

    data = clean_and_parse_json(llm_response)  # repairs fences, prose, stringified arrays
    data = normalize_llm_json_response(data, "concepts")  # ensure dict structure
    node_id = slugify("Gradient Descent")  # "gradient-descent"
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

_FENCE_PATTERN = re.compile(r"```(?:json)?\s*", re.IGNORECASE)
_LEADING_PROSE_PATTERN = re.compile(r"^(?:here (?:is|are)|sure|certainly)[^\n{\[]*?:\s*", re.IGNORECASE)
_BAREWORD_KEY_PATTERN = re.compile(r"([\{,]\s*)([a-zA-Z0-9_]+)(\s*):")


class JSONRepairError(ValueError):
    """Raised when an LLM response cannot be repaired into JSON."""


def normalize_llm_json_response(data: Any, expected_key: str) -> dict:
    """
    Normalize an LLM JSON response to ensure it's a dict with expected structure.

    Use this for responses that should have a list under a specific key,
    like {"concepts": [...]} or {"relationships": [...]}.

    Sometimes LLMs return a list directly instead of a dict with the expected key.
    This function handles that case by wrapping the list in a dict.

    Args:
        data: Parsed JSON from LLM (could be dict or list)
        expected_key: The key that should contain the list (e.g., "concepts")

    Returns:
        Normalized dict with the expected key
    """
    if isinstance(data, dict):
        return data
    elif isinstance(data, list):
        return {expected_key: data}
    else:
        return {}


def unwrap_llm_single_object_response(data: Any) -> dict:
    """
    Unwrap an LLM JSON response that should be a single object.

    Sometimes LLMs wrap the object in a list: [{"complexity": "...", ...}]
    This function handles that case by extracting the first item.

    Args:
        data: Parsed JSON from LLM (could be dict or list with one dict)

    Returns:
        The dict object (unwrapped from list if necessary)
    """
    if isinstance(data, dict):
        return data
    elif isinstance(data, list) and len(data) > 0 and isinstance(data[0], dict):
        return data[0]
    else:
        return {}


def _outermost_span(text: str, open_char: str, close_char: str) -> str | None:
    start = text.find(open_char)
    end = text.rfind(close_char)
    if start != -1 and end > start:
        return text[start : end + 1]
    return None


def _repair_stringified(value: str) -> Any:
    """Parse a string that holds a JSON-ish array or object."""
    fixed = value.replace("'", '"')
    fixed = _BAREWORD_KEY_PATTERN.sub(r'\1"\2"\3:', fixed)
    return json.loads(fixed)


def fix_stringified_values(obj: Any) -> Any:
    """
    Recursively replace string-encoded arrays/objects with parsed values.

    LLMs sometimes emit {"prerequisites": "['python', 'statistics']"}.
    Such values are re-parsed after swapping single quotes for double quotes
    and quoting bareword keys. Values that still fail to parse become an
    empty list (or empty dict for object-shaped strings).

    Args:
        obj: Parsed JSON value

    Returns:
        The value with stringified containers expanded
    """
    if isinstance(obj, list):
        return [fix_stringified_values(item) for item in obj]
    if not isinstance(obj, dict):
        return obj

    result = {}
    for key, value in obj.items():
        if isinstance(value, str):
            stripped = value.strip()
            is_array = stripped.startswith("[") and stripped.endswith("]")
            is_object = stripped.startswith("{") and stripped.endswith("}")
            if is_array or is_object:
                try:
                    result[key] = fix_stringified_values(_repair_stringified(stripped))
                except json.JSONDecodeError as e:
                    logger.warning(f"Failed to parse stringified value for key {key}: {e}")
                    result[key] = [] if is_array else {}
                continue
        if isinstance(value, (dict, list)):
            result[key] = fix_stringified_values(value)
        else:
            result[key] = value
    return result


def clean_and_parse_json(response_text: str) -> Any:
    """
    Repair and parse an LLM response that should contain one JSON object.

    Steps:
        1. Strip code-fence markers and leading prose ("Here is the JSON:")
        2. Take the outermost {...} span (or [...] when no object is present)
        3. Parse
        4. Expand string-encoded arrays/objects (see fix_stringified_values)

    Args:
        response_text: Raw LLM response text

    Returns:
        Parsed JSON value

    Raises:
        JSONRepairError: If no parseable JSON can be recovered
    """
    if not response_text or not response_text.strip():
        raise JSONRepairError("Empty LLM response")

    text = _FENCE_PATTERN.sub("", response_text.strip())
    text = _LEADING_PROSE_PATTERN.sub("", text.strip())

    candidate = _outermost_span(text, "{", "}") or _outermost_span(text, "[", "]") or text

    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError as e:
        logger.error(f"JSON parsing failed: {e} (response: {response_text[:200]}...)")
        raise JSONRepairError(f"Failed to parse LLM response as JSON: {e}") from e

    return fix_stringified_values(parsed)


def truncate_text(text: str, max_length: int, suffix: str = "...") -> str:
    """
    Truncate text to a maximum length, adding suffix if truncated.

    Tries to break at word boundaries when possible.

    Args:
        text: Text to truncate
        max_length: Maximum length (including suffix)
        suffix: String to append if truncated

    Returns:
        Truncated text
    """
    if not text or len(text) <= max_length:
        return text

    target_length = max_length - len(suffix)

    if target_length <= 0:
        return suffix[:max_length]

    truncated = text[:target_length]

    last_space = truncated.rfind(" ")
    if last_space > target_length * 0.7:  # Only break at word if not too far back
        truncated = truncated[:last_space]

    return truncated + suffix


def normalize_whitespace(text: str) -> str:
    """
    Normalize all whitespace to single spaces.

    Args:
        text: Input text

    Returns:
        Text with normalized whitespace
    """
    return " ".join(text.split())


def slugify(name: str) -> str:
    """
    Build a stable, URL-safe identifier from a display name.

    "Gradient Descent (SGD)" -> "gradient-descent-sgd"

    Args:
        name: Display name

    Returns:
        Lowercase kebab-case slug; "node" if nothing alphanumeric remains
    """
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "node"


def count_words(text: str) -> int:
    """Count whitespace-separated words."""
    return len(text.split()) if text else 0
