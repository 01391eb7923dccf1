"""Shared building blocks for document schemas.

Every document model extends ``StrictDocument``: unknown keys are rejected at
every nesting level, wire names are camelCase, and instances are immutable.

Validation never raises for a bad document. Pydantic errors are translated into
``ValidationIssue`` values with a dotted path, a short code and a message that
names the violated limit, then sorted by path and capped so the same input
always yields the same bounded list.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

import pydantic
from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from guardrail_engine.errors import ValidationError

MAX_VALIDATION_ERRORS = 100
ROOT_PATH = "root"
NORMALIZATION_PREFIX = "Normalization error: "

DocumentT = TypeVar("DocumentT", bound="StrictDocument")


class StrictDocument(BaseModel):
    """Base model for closed, camelCase, immutable documents."""

    model_config = ConfigDict(
        extra="forbid",
        alias_generator=to_camel,
        frozen=True,
        hide_input_in_errors=True,
    )

    def to_document(self) -> dict[str, Any]:
        """Dump to the wire form: camelCase keys, absent optionals omitted."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation problem.

    Attributes:
        path: Dotted location, ``root`` for the document itself.
        message: Human-readable message naming the violated rule.
        code: Short machine code (required, unrecognized_key, too_long, ...).
    """

    path: str
    message: str
    code: str = "invalid_value"

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message, "code": self.code}


@dataclass(frozen=True)
class ValidationResult(Generic[DocumentT]):
    """Tagged success/failure result of validating a document.

    Attributes:
        success: True when the document is valid.
        data: The normalized document on success, otherwise None.
        errors: Ordered, capped issues on failure, otherwise empty.
    """

    success: bool
    data: DocumentT | None = None
    errors: tuple[ValidationIssue, ...] = field(default_factory=tuple)

    @classmethod
    def ok(cls, data: DocumentT) -> "ValidationResult[DocumentT]":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, errors: Iterable[ValidationIssue]) -> "ValidationResult[DocumentT]":
        return cls(success=False, errors=tuple(errors))

    def to_dict(self) -> dict[str, Any]:
        if self.success and self.data is not None:
            return {"success": True, "data": self.data.to_document()}
        return {"success": False, "errors": [issue.to_dict() for issue in self.errors]}


# ---------------------------------------------------------------------------
# Error translation
# ---------------------------------------------------------------------------


def format_path(loc: Iterable[Any]) -> str:
    """Join a pydantic location tuple into a dotted path."""
    parts = [str(part) for part in loc]
    return ".".join(parts) if parts else ROOT_PATH


def finalize_issues(issues: Iterable[ValidationIssue], max_errors: int = MAX_VALIDATION_ERRORS) -> list[ValidationIssue]:
    """Deduplicate, sort by (path, message, code) and cap an issue list."""
    unique = set(issues)
    ordered = sorted(unique, key=lambda issue: (issue.path, issue.message, issue.code))
    return ordered[:max_errors]


def translate_errors(
    exc: pydantic.ValidationError,
    empty_messages: Mapping[str, str] | None = None,
) -> list[ValidationIssue]:
    """Translate pydantic errors into validation issues.

    Args:
        exc: The pydantic validation error.
        empty_messages: Per-path messages for arrays that are present but empty,
            so "missing" and "empty" stay distinguishable.

    Returns:
        Unsorted issues, one per pydantic error.
    """
    empty_messages = empty_messages or {}
    issues = []
    for error in exc.errors(include_url=False, include_input=False):
        loc = tuple(error.get("loc", ()))
        error_type = error["type"]
        ctx = error.get("ctx") or {}

        if error_type == "extra_forbidden":
            issues.append(ValidationIssue(format_path(loc), f"Unrecognized key: '{loc[-1]}'", "unrecognized_key"))
            continue

        path = format_path(loc)
        if error_type == "too_short" and ctx.get("actual_length") == 0 and path in empty_messages:
            issues.append(ValidationIssue(path, empty_messages[path], "too_short"))
            continue

        formatter = _FORMATTERS.get(error_type)
        if formatter is not None:
            code, message = formatter(ctx)
        elif error_type.endswith("_type") or error_type.endswith("_parsing"):
            code, message = "invalid_type", error["msg"]
        elif error_type in _CUSTOM_CODES:
            code, message = error_type, error["msg"]
        else:
            code, message = "invalid_value", error["msg"]
        issues.append(ValidationIssue(path, message, code))
    return issues


def _min_string(ctx: Mapping[str, Any]) -> tuple[str, str]:
    minimum = ctx.get("min_length", 1)
    if minimum == 1:
        return "too_short", "Must not be empty"
    return "too_short", f"Must be at least {minimum} characters"


_FORMATTERS: dict[str, Callable[[Mapping[str, Any]], tuple[str, str]]] = {
    "missing": lambda ctx: ("required", "Required"),
    "string_too_short": _min_string,
    "string_too_long": lambda ctx: ("too_long", f"Must not exceed {ctx.get('max_length')} characters"),
    "too_short": lambda ctx: ("too_short", f"Must contain at least {ctx.get('min_length')} item(s)"),
    "too_long": lambda ctx: ("too_long", f"Must contain at most {ctx.get('max_length')} items"),
    "string_pattern_mismatch": lambda ctx: ("invalid_format", f"Must match pattern {ctx.get('pattern')}"),
    "literal_error": lambda ctx: ("invalid_value", f"Invalid value; expected {ctx.get('expected')}"),
    "greater_than_equal": lambda ctx: ("invalid_value", f"Must be greater than or equal to {ctx.get('ge')}"),
    "greater_than": lambda ctx: ("invalid_value", f"Must be greater than {ctx.get('gt')}"),
    "less_than_equal": lambda ctx: ("invalid_value", f"Must be less than or equal to {ctx.get('le')}"),
}

# Error types raised through PydanticCustomError by field validators in this package.
_CUSTOM_CODES = frozenset({"invalid_format", "secret_detected"})


# ---------------------------------------------------------------------------
# Parse and re-validate
# ---------------------------------------------------------------------------


def parse_document(
    model: type[DocumentT],
    raw: Any,
    empty_messages: Mapping[str, str] | None = None,
    max_errors: int = MAX_VALIDATION_ERRORS,
) -> ValidationResult[DocumentT]:
    """Strictly parse a raw value into a document model, collecting every issue."""
    try:
        document = model.model_validate(raw)
    except pydantic.ValidationError as exc:
        return ValidationResult.failed(finalize_issues(translate_errors(exc, empty_messages), max_errors))
    return ValidationResult.ok(document)


def revalidate(
    model: type[DocumentT],
    data: dict[str, Any],
    empty_messages: Mapping[str, str] | None = None,
) -> DocumentT:
    """Validate a normalized wire dict back into its model.

    Raises:
        ValidationError: If normalization produced an invalid document. Issue
            messages carry the ``Normalization error:`` prefix.
    """
    try:
        return model.model_validate(data)
    except pydantic.ValidationError as exc:
        issues = [
            ValidationIssue(issue.path, f"{NORMALIZATION_PREFIX}{issue.message}", issue.code)
            for issue in translate_errors(exc, empty_messages)
        ]
        raise ValidationError(
            message=f"{model.__name__} is invalid after normalization",
            issues=finalize_issues(issues),
        ) from exc


# ---------------------------------------------------------------------------
# Normalization helpers
# ---------------------------------------------------------------------------


def trim_strings(values: Iterable[str]) -> list[str]:
    """Trim each string, preserving order."""
    return [value.strip() for value in values]


def dedupe_sorted(values: Iterable[str]) -> list[str]:
    """Trim, drop empties and duplicates, and sort."""
    return sorted({value.strip() for value in values if value.strip()})
