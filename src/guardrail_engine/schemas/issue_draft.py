"""Issue draft schema (version 1.0).

An issue draft is the structured, reviewable form of a GitHub issue before it
is published. Labels and dependencies are sets; acceptance criteria and verify
commands are ordered because their order is meaningful to the reader.
"""

import re
from typing import Annotated, Literal

from pydantic import AfterValidator, Field, StringConstraints
from pydantic_core import PydanticCustomError

from guardrail_engine.core.canonical import UnorderedFields
from guardrail_engine.core.hashing import content_hash
from guardrail_engine.schemas.common import StrictDocument, dedupe_sorted, revalidate, trim_strings

ISSUE_DRAFT_VERSION = "1.0"

CANONICAL_ID_PATTERN = re.compile(r"^(I8\d{2}|E81\.\d+|CID:(I8\d{2}|E81\.\d+|TBD))$")
CANONICAL_ID_MESSAGE = "Canonical ID must match format: I8xx, E81.x, or CID:<identifier>"

EMPTY_ARRAY_MESSAGES = {
    "acceptanceCriteria": "At least one acceptance criterion is required",
    "verify.commands": "At least one verification command is required",
    "verify.expected": "At least one expected outcome is required",
}


def _check_canonical_id(value: str) -> str:
    if not CANONICAL_ID_PATTERN.match(value.strip()):
        raise PydanticCustomError("invalid_format", CANONICAL_ID_MESSAGE)
    return value


CanonicalId = Annotated[
    str,
    StringConstraints(strict=True, min_length=1, max_length=50),
    AfterValidator(_check_canonical_id),
]
Title = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=200)]
Body = Annotated[str, StringConstraints(strict=True, min_length=10, max_length=10000)]
Label = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=100)]
Criterion = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=1000)]
VerifyLine = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=500)]
Intent = Annotated[str, StringConstraints(strict=True, max_length=200)]


class IssueDraftKpi(StrictDocument):
    dcu: Literal[0.5, 1, 2] | None = None
    intent: Intent | None = None


class IssueDraftVerify(StrictDocument):
    commands: list[VerifyLine] = Field(min_length=1, max_length=10)
    expected: list[VerifyLine] = Field(min_length=1, max_length=10)


class IssueDraftGuards(StrictDocument):
    env: Literal["staging", "development"]
    prod_blocked: Literal[True]


class IssueDraft(StrictDocument):
    """Issue draft document.

    Attributes:
        issue_draft_version: Schema discriminator, always ``1.0``.
        title: Issue title, 1-200 characters.
        body: Markdown body, 10-10000 characters.
        type: ``epic`` or ``issue``.
        canonical_id: Canonical identifier (I8xx, E81.x or CID:...).
        labels: Up to 50 labels; a set.
        depends_on: Up to 20 canonical IDs this issue depends on; a set.
        priority: P0, P1 or P2.
        kpi: Optional KPI annotation.
        acceptance_criteria: 1-20 ordered criteria.
        verify: Ordered verification commands and expected outcomes.
        guards: Deployment guards; production is always blocked.
    """

    issue_draft_version: Literal["1.0"]
    title: Title
    body: Body
    type: Literal["epic", "issue"]
    canonical_id: CanonicalId
    labels: list[Label] = Field(max_length=50)
    depends_on: list[CanonicalId] = Field(max_length=20)
    priority: Literal["P0", "P1", "P2"]
    kpi: IssueDraftKpi | None = None
    acceptance_criteria: list[Criterion] = Field(min_length=1, max_length=20)
    verify: IssueDraftVerify
    guards: IssueDraftGuards


def normalize_issue_draft(draft: IssueDraft) -> IssueDraft:
    """Trim text, dedupe and sort labels and dependencies, keep ordered lists in order.

    Raises:
        ValidationError: If the normalized draft no longer validates (e.g. a
            title that was only whitespace).
    """
    data = draft.to_document()
    data["title"] = data["title"].strip()
    data["body"] = data["body"].strip()
    data["canonicalId"] = data["canonicalId"].strip()
    data["labels"] = dedupe_sorted(data["labels"])
    data["dependsOn"] = dedupe_sorted(data["dependsOn"])
    data["acceptanceCriteria"] = trim_strings(data["acceptanceCriteria"])
    data["verify"] = {
        "commands": trim_strings(data["verify"]["commands"]),
        "expected": trim_strings(data["verify"]["expected"]),
    }
    if "kpi" in data and "intent" in data["kpi"]:
        data["kpi"]["intent"] = data["kpi"]["intent"].strip()
    return revalidate(IssueDraft, data, EMPTY_ARRAY_MESSAGES)


ISSUE_DRAFT_UNORDERED_FIELDS: UnorderedFields = {
    "labels": None,
    "dependsOn": None,
}


def compute_issue_draft_hash(draft: IssueDraft) -> str:
    """Compute the issue draft's identity hash (full SHA-256 hex)."""
    return content_hash(draft.to_document(), ISSUE_DRAFT_UNORDERED_FIELDS)
