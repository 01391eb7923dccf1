"""Content hashing over canonical JSON.

The full 64-character SHA-256 hex digest is the identity of a document and the
only value ever compared. ``short_hash`` exists for presentation (UI fields such
as ``bodyHash`` or ``contentHash``) and must not be used for equality checks.
"""

import hashlib
from typing import Any

from guardrail_engine.core.canonical import UnorderedFields, canonical_json

DIGEST_HEX_LENGTH = 64
DEFAULT_PREFIX_LENGTH = 12


def content_hash(value: Any, unordered: UnorderedFields | None = None) -> str:
    """Compute the SHA-256 hex digest of a value's canonical JSON encoding.

    Args:
        value: Any JSON-compatible value or pydantic model.
        unordered: Field paths whose arrays are sets, mapped to their comparator.

    Returns:
        The 64-character lowercase hex digest.

    Raises:
        CanonicalizationError: If the value cannot be canonically encoded.
    """
    return hash_text(canonical_json(value, unordered))


def hash_text(text: str) -> str:
    """Compute the SHA-256 hex digest of a text's UTF-8 bytes."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def short_hash(digest: str, length: int = DEFAULT_PREFIX_LENGTH) -> str:
    """Truncate a full digest for display.

    Args:
        digest: Full hex digest.
        length: Number of leading characters to keep.

    Returns:
        The display prefix.

    Raises:
        ValueError: If the length is not positive or exceeds the digest.
    """
    if length <= 0 or length > len(digest):
        raise ValueError(f"Prefix length must be between 1 and {len(digest)}, got {length}")
    return digest[:length]
