"""Canonical JSON encoding.

Produces a byte-stable serialization for JSON-compatible values so that two
semantically equal values always encode, and therefore hash, identically:

- Object keys are sorted by code point (equal to UTF-8 byte order) at every level.
- Strings and keys are NFC-normalized.
- Arrays keep their order unless their field path is registered as unordered,
  in which case elements are deduplicated and sorted by that field's comparator.
- Integral floats encode as integers; NaN and Infinity are rejected.
- Pydantic models are dumped by alias with ``None`` fields omitted, so an
  optional field is either present with a value or absent, never ``null``.

Unordered field paths are dotted, with ``[]`` marking "every element of an
array", e.g. ``automationPolicy.policies[].allowedEnvs``, and ``*`` matching any
single object key, e.g. ``evidence.requiredKindsByCategory.*``. The comparator is
``None`` for "sort strings by code point and anything else by its canonical JSON"
or a key function applied to the canonical element.

Nothing here mutates its input or performs I/O.
"""

import json
import math
import unicodedata
from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel

from guardrail_engine.errors import CanonicalizationError

SortKey = Callable[[Any], Any]
UnorderedFields = Mapping[str, SortKey | None]


def canonicalize(value: Any, unordered: UnorderedFields | None = None) -> Any:
    """Return the canonical form of a JSON-compatible value.

    The result is a new structure of dicts (keys in canonical order), lists,
    strings, numbers, booleans and ``None``.

    Args:
        value: The value to canonicalize.
        unordered: Field paths whose arrays are sets, mapped to their comparator.

    Returns:
        The canonical value.

    Raises:
        CanonicalizationError: If the value contains a cycle, a non-string key,
            a non-finite number, or a type with no JSON representation.
    """
    return _canonical_value(value, "", "", unordered or {}, set())


def canonical_json(value: Any, unordered: UnorderedFields | None = None) -> str:
    """Serialize a value to its canonical JSON text.

    Args:
        value: The value to encode.
        unordered: Field paths whose arrays are sets, mapped to their comparator.

    Returns:
        Compact JSON with sorted keys and no insignificant whitespace.

    Raises:
        CanonicalizationError: See ``canonicalize``.
    """
    return _dumps(canonicalize(value, unordered))


def _dumps(canonical: Any) -> str:
    return json.dumps(canonical, sort_keys=True, separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _canonical_value(
    value: Any,
    path: str,
    field_path: str,
    unordered: UnorderedFields,
    active: set[int],
) -> Any:
    if isinstance(value, BaseModel):
        value = value.model_dump(mode="json", by_alias=True, exclude_none=True)

    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, int):
        return int(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise CanonicalizationError("Non-finite number has no JSON representation", path or "root")
        return int(value) if value.is_integer() else value
    if isinstance(value, str):
        return unicodedata.normalize("NFC", value)

    if isinstance(value, Mapping):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError("Cyclic reference", path or "root")
        active.add(marker)
        try:
            entries: dict[str, Any] = {}
            for key, item in value.items():
                if not isinstance(key, str):
                    raise CanonicalizationError(
                        f"Object key of type {type(key).__name__} is not a string", path or "root"
                    )
                normalized_key = unicodedata.normalize("NFC", key)
                if normalized_key in entries:
                    raise CanonicalizationError(
                        f"Duplicate key '{normalized_key}' after normalization", path or "root"
                    )
                entries[normalized_key] = _canonical_value(
                    item,
                    _join(path, normalized_key),
                    _join(field_path, normalized_key),
                    unordered,
                    active,
                )
        finally:
            active.discard(marker)
        return {key: entries[key] for key in sorted(entries)}

    if isinstance(value, (list, tuple)):
        marker = id(value)
        if marker in active:
            raise CanonicalizationError("Cyclic reference", path or "root")
        active.add(marker)
        try:
            items = [
                _canonical_value(item, _join(path, str(index)), f"{field_path}[]", unordered, active)
                for index, item in enumerate(value)
            ]
        finally:
            active.discard(marker)
        registered, sort_key = _comparator_for(field_path, unordered)
        if registered:
            return _sort_unordered(items, sort_key)
        return items

    raise CanonicalizationError(f"Value of type {type(value).__name__} has no JSON representation", path or "root")


def _comparator_for(field_path: str, unordered: UnorderedFields) -> tuple[bool, SortKey | None]:
    """Find the comparator registered for an array path; ``*`` matches any one object key."""
    if field_path in unordered:
        return True, unordered[field_path]
    segments = field_path.split(".")
    for pattern, sort_key in unordered.items():
        if "*" not in pattern:
            continue
        pattern_segments = pattern.split(".")
        if len(pattern_segments) == len(segments) and all(
            expected in ("*", actual) for expected, actual in zip(pattern_segments, segments)
        ):
            return True, sort_key
    return False, None


def _sort_unordered(items: list[Any], sort_key: SortKey | None) -> list[Any]:
    """Deduplicate by canonical JSON and sort.

    Strings compare by code point, everything else by canonical JSON. Ties under
    a key function are broken by canonical JSON.
    """
    unique: dict[str, Any] = {}
    for item in items:
        unique.setdefault(_dumps(item), item)
    if sort_key is None:
        if all(isinstance(item, str) for item in unique.values()):
            return sorted(unique.values())
        return [unique[encoded] for encoded in sorted(unique)]
    ordered = sorted(unique.items(), key=lambda entry: (sort_key(entry[1]), entry[0]))
    return [item for _, item in ordered]


def _join(path: str, segment: str) -> str:
    return f"{path}.{segment}" if path else segment
