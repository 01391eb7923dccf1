"""Schema registry: ``validate`` and ``normalize`` by schema ID.

``validate`` parses strictly, normalizes, and re-validates the normalized form,
so a successful result always carries a normalized document. ``normalize`` is
exposed separately for callers that already hold a validated document.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

from guardrail_engine.errors import ValidationError
from guardrail_engine.schemas import change_request, issue_draft, lawbook, work_plan
from guardrail_engine.schemas.common import (
    MAX_VALIDATION_ERRORS,
    StrictDocument,
    ValidationResult,
    finalize_issues,
    parse_document,
)

SCHEMA_LAWBOOK = "lawbook"
SCHEMA_ISSUE_DRAFT = "issue_draft"
SCHEMA_CHANGE_REQUEST = "change_request"
SCHEMA_WORK_PLAN = "work_plan"


@dataclass(frozen=True)
class SchemaEntry:
    model: type[StrictDocument]
    normalizer: Callable[[Any], StrictDocument]
    hasher: Callable[[Any], str]
    empty_messages: Mapping[str, str]


_REGISTRY: dict[str, SchemaEntry] = {
    SCHEMA_LAWBOOK: SchemaEntry(
        lawbook.LawbookV1,
        lawbook.normalize_lawbook,
        lawbook.compute_lawbook_hash,
        {},
    ),
    SCHEMA_ISSUE_DRAFT: SchemaEntry(
        issue_draft.IssueDraft,
        issue_draft.normalize_issue_draft,
        issue_draft.compute_issue_draft_hash,
        issue_draft.EMPTY_ARRAY_MESSAGES,
    ),
    SCHEMA_CHANGE_REQUEST: SchemaEntry(
        change_request.ChangeRequest,
        change_request.normalize_change_request,
        change_request.compute_change_request_hash,
        change_request.EMPTY_ARRAY_MESSAGES,
    ),
    SCHEMA_WORK_PLAN: SchemaEntry(
        work_plan.WorkPlanContent,
        work_plan.normalize_work_plan,
        work_plan.compute_work_plan_hash,
        {},
    ),
}

SCHEMA_IDS: tuple[str, ...] = tuple(sorted(_REGISTRY))


def get_schema(schema_id: str) -> SchemaEntry:
    """Look up a registered schema.

    Raises:
        ValueError: If the schema ID is not registered.
    """
    try:
        return _REGISTRY[schema_id]
    except KeyError:
        raise ValueError(f"Unknown schema '{schema_id}'. Expected one of: {', '.join(SCHEMA_IDS)}") from None


def validate(schema_id: str, raw: Any, max_errors: int = MAX_VALIDATION_ERRORS) -> ValidationResult[Any]:
    """Validate and normalize a raw document.

    Args:
        schema_id: One of ``SCHEMA_IDS``.
        raw: The untrusted input.
        max_errors: Cap on the number of returned issues.

    Returns:
        Success with the normalized document, or failure with issues sorted
        by path and capped at ``max_errors``.

    Raises:
        ValueError: If the schema ID is not registered.
    """
    entry = get_schema(schema_id)
    parsed = parse_document(entry.model, raw, entry.empty_messages, max_errors)
    if not parsed.success or parsed.data is None:
        return parsed
    try:
        return ValidationResult.ok(entry.normalizer(parsed.data))
    except ValidationError as exc:
        return ValidationResult.failed(finalize_issues(exc.issues, max_errors))


def normalize(schema_id: str, validated: StrictDocument) -> StrictDocument:
    """Normalize an already validated document.

    Raises:
        ValueError: If the schema ID is unknown or the document is of another type.
        ValidationError: If the normalized document no longer validates.
    """
    entry = get_schema(schema_id)
    if not isinstance(validated, entry.model):
        raise ValueError(f"Expected {entry.model.__name__} for schema '{schema_id}', got {type(validated).__name__}")
    return entry.normalizer(validated)


def document_hash(schema_id: str, document: StrictDocument) -> str:
    """Compute the identity hash of a validated document using its schema's set fields."""
    return get_schema(schema_id).hasher(document)
