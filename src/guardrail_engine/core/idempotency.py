"""Idempotency and run key construction.

A key is ``<scope>:<action_id>:<sha256(canonical inputs)>``. Inputs that differ
only in object key order produce the same key, so persisting records under a
unique key constraint makes "create or return existing" idempotent.
"""

from typing import Any

from guardrail_engine.core.hashing import content_hash

KEY_SEPARATOR = ":"


def compute_inputs_hash(inputs: Any) -> str:
    """Hash the inputs part of a key. Alias of ``content_hash`` kept for readability at call sites."""
    return content_hash(inputs)


def build_idempotency_key(scope: str, action_id: str, inputs: Any) -> str:
    """Build a stable key for a scoped action and its inputs.

    Args:
        scope: Logical scope, e.g. an incident key or an action type.
        action_id: Action identifier within the scope, e.g. a playbook ID.
        inputs: JSON-compatible inputs; key order is irrelevant.

    Returns:
        The key ``scope:action_id:inputs_hash``.

    Raises:
        ValueError: If scope or action_id is empty.
        CanonicalizationError: If the inputs cannot be canonically encoded.
    """
    if not scope:
        raise ValueError("scope must not be empty")
    if not action_id:
        raise ValueError("action_id must not be empty")
    return KEY_SEPARATOR.join((scope, action_id, compute_inputs_hash(inputs)))
