"""Change request schema (version 0.7.0) and its typed evidence union.

A change request describes a code change before it is made: motivation,
targets, file-level changes, tests, risks, rollout and the evidence it was
derived from. Structural bounds here cap worst-case payload size. The tighter
editorial limits (title length, file count, evidence count) are enforced by
``change_request_policy`` so they surface as ``CR_SIZE_LIMIT`` findings.

Evidence is a set. Each kind has its own comparator:
- file_snippet: repo ``owner/repo``, branch, path, start line, end line
- github_issue / github_pr: repo ``owner/repo``, number
- afu9_artifact: artifact type, artifact ID
Kinds are ordered by kind name first.
"""

from typing import Annotated, Any, Literal

from pydantic import Field, StrictInt, StringConstraints

from guardrail_engine.core.canonical import UnorderedFields, canonicalize
from guardrail_engine.core.hashing import content_hash
from guardrail_engine.schemas.common import StrictDocument, revalidate

CR_VERSION = "0.7.0"

EMPTY_ARRAY_MESSAGES = {
    "acceptanceCriteria": "At least one acceptance criterion is required",
    "tests.required": "At least one required test must be specified",
    "evidence": "At least one evidence entry is required",
}

Short = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=200)]
Line = Annotated[str, StringConstraints(strict=True, max_length=2000)]
RequiredLine = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=2000)]
LongText = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=20000)]
FilePath = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=1000)]
Timestamp = Annotated[
    str,
    StringConstraints(
        strict=True,
        max_length=40,
        pattern=r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$",
    ),
]
LineNumber = Annotated[StrictInt, Field(ge=1)]

KpiTarget = Literal["D2D", "HSH", "DCU", "AVS", "MTTR", "IncidentRate", "AutoFixRate"]


# ---------------------------------------------------------------------------
# Evidence (used sources)
# ---------------------------------------------------------------------------


class RepoRef(StrictDocument):
    owner: Short
    repo: Short

    @property
    def full_name(self) -> str:
        return f"{self.owner}/{self.repo}"


class FileSnippetSource(StrictDocument):
    kind: Literal["file_snippet"]
    repo: RepoRef
    branch: Short
    path: FilePath
    start_line: LineNumber
    end_line: LineNumber
    snippet_hash: Short | None = None


class GithubIssueSource(StrictDocument):
    kind: Literal["github_issue"]
    repo: RepoRef
    number: LineNumber
    title: Line | None = None


class GithubPrSource(StrictDocument):
    kind: Literal["github_pr"]
    repo: RepoRef
    number: LineNumber
    title: Line | None = None


class ArtifactRef(StrictDocument):
    description: Line | None = None


class ArtifactSource(StrictDocument):
    kind: Literal["afu9_artifact"]
    artifact_type: Short
    artifact_id: Short
    ref: ArtifactRef | None = None


SourceRef = Annotated[
    FileSnippetSource | GithubIssueSource | GithubPrSource | ArtifactSource,
    Field(discriminator="kind"),
]


def evidence_sort_key(item: dict[str, Any]) -> tuple[Any, ...]:
    """Comparator key for a canonical (wire form) evidence entry."""
    kind = item["kind"]
    if kind == "file_snippet":
        repo = f"{item['repo']['owner']}/{item['repo']['repo']}"
        return kind, repo, item["branch"], item["path"], item["startLine"], item["endLine"]
    if kind in ("github_issue", "github_pr"):
        return kind, f"{item['repo']['owner']}/{item['repo']['repo']}", item["number"]
    return kind, item["artifactType"], item["artifactId"]


# ---------------------------------------------------------------------------
# Change request sections
# ---------------------------------------------------------------------------


class CrScope(StrictDocument):
    summary: RequiredLine
    in_scope: list[Line] = Field(max_length=100)
    out_of_scope: list[Line] = Field(max_length=100)


class CrTargets(StrictDocument):
    repo: RepoRef
    branch: Short
    components: list[Short] | None = Field(default=None, max_length=50)


class CrFileChange(StrictDocument):
    path: FilePath
    change_type: Literal["create", "modify", "delete"]
    rationale: Line | None = None
    references: list[Line] | None = Field(default=None, max_length=50)


class CrApiChange(StrictDocument):
    method: Short
    route: Short
    change_type: Short
    notes: Line | None = None


class CrDbChange(StrictDocument):
    migration: Short | None = None
    change_type: Short
    notes: Line | None = None


class CrChanges(StrictDocument):
    files: list[CrFileChange] = Field(max_length=1000)
    api: list[CrApiChange] | None = Field(default=None, max_length=200)
    db: list[CrDbChange] | None = Field(default=None, max_length=200)


class CrTests(StrictDocument):
    required: list[RequiredLine] = Field(min_length=1, max_length=100)
    added_or_updated: list[Line] | None = Field(default=None, max_length=100)
    manual: list[Line] | None = Field(default=None, max_length=100)


class CrRiskItem(StrictDocument):
    risk: RequiredLine
    impact: Literal["low", "medium", "high"]
    mitigation: RequiredLine


class CrRisks(StrictDocument):
    items: list[CrRiskItem] = Field(max_length=100)


class CrRollout(StrictDocument):
    steps: list[Line] = Field(max_length=100)
    rollback_plan: RequiredLine
    feature_flags: list[Short] | None = Field(default=None, max_length=50)


class CrConstraints(StrictDocument):
    determinism_notes: list[Line] | None = Field(default=None, max_length=50)
    idempotency_notes: list[Line] | None = Field(default=None, max_length=50)
    lawbook_version: Short | None = None


class CrMetadata(StrictDocument):
    created_at: Timestamp
    created_by: Literal["intent", "admin"]
    tags: list[Short] | None = Field(default=None, max_length=50)
    kpi_targets: list[KpiTarget] | None = Field(default=None, max_length=7)


class ChangeRequest(StrictDocument):
    """Change request document, version 0.7.0."""

    cr_version: Literal["0.7.0"]
    canonical_id: Short
    title: Annotated[str, StringConstraints(strict=True, min_length=1, max_length=500)]
    motivation: LongText
    scope: CrScope
    targets: CrTargets
    changes: CrChanges
    acceptance_criteria: list[RequiredLine] = Field(min_length=1, max_length=100)
    tests: CrTests
    risks: CrRisks
    rollout: CrRollout
    evidence: list[SourceRef] = Field(min_length=1, max_length=500)
    constraints: CrConstraints
    metadata: CrMetadata


CHANGE_REQUEST_UNORDERED_FIELDS: UnorderedFields = {
    "evidence": evidence_sort_key,
    "metadata.tags": None,
    "metadata.kpiTargets": None,
    "targets.components": None,
    "rollout.featureFlags": None,
}


def normalize_change_request(change_request: ChangeRequest) -> ChangeRequest:
    """Sort and deduplicate evidence and the other set-valued fields.

    Raises:
        ValidationError: If the normalized document no longer validates.
    """
    data = canonicalize(change_request.to_document(), CHANGE_REQUEST_UNORDERED_FIELDS)
    return revalidate(ChangeRequest, data, EMPTY_ARRAY_MESSAGES)


def compute_change_request_hash(change_request: ChangeRequest) -> str:
    """Compute the change request's identity hash (full SHA-256 hex)."""
    return content_hash(change_request.to_document(), CHANGE_REQUEST_UNORDERED_FIELDS)
