"""Semantic policy checks for change requests.

Runs after structural validation and reports coded findings:

- CR_SCHEMA_INVALID: structural validation failed (one finding per issue)
- CR_SIZE_LIMIT: editorial size limits (title, motivation, files, evidence)
- CR_PATH_INVALID: absolute, drive-lettered, backslashed or ``..`` file paths
- CR_TARGET_NOT_ALLOWED: target repository (error) or branch (warning) not allow-listed
- CR_LAWBOOK_VERSION_MISSING: warning when the CR does not pin a lawbook version

Findings are sorted by (path, code, severity, message).
"""

import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from guardrail_engine.errors import ValidationError
from guardrail_engine.schemas.change_request import (
    EMPTY_ARRAY_MESSAGES,
    ChangeRequest,
    compute_change_request_hash,
    normalize_change_request,
)
from guardrail_engine.schemas.common import parse_document

VALIDATOR_VERSION = "0.7.0"

SEVERITY_ERROR = "error"
SEVERITY_WARN = "warn"

TITLE_LIMIT = 120
MOTIVATION_LIMIT = 5000
FILES_LIMIT = 100
EVIDENCE_LIMIT = 50

_DRIVE_LETTER = re.compile(r"^[a-zA-Z]:")


@dataclass(frozen=True)
class PolicyFinding:
    """A coded change request finding."""

    code: str
    message: str
    path: str
    severity: str = SEVERITY_ERROR
    details: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "code": self.code,
            "message": self.message,
            "path": self.path,
            "severity": self.severity,
        }
        if self.details:
            body["details"] = self.details
        return body


@dataclass(frozen=True)
class ChangeRequestReport:
    """Outcome of a change request policy check.

    Attributes:
        ok: True when there are no error findings. Warnings do not fail a CR.
        errors: Sorted error findings.
        warnings: Sorted warning findings.
        cr_version: Version of the checked CR, when it parsed.
        validated_at: ISO-8601 time of the check.
        lawbook_version: Lawbook version pinned by the CR, if any.
        hash: Full content hash of the normalized CR, when it parsed.
        change_request: The normalized CR, when it parsed.
    """

    ok: bool
    errors: tuple[PolicyFinding, ...]
    warnings: tuple[PolicyFinding, ...]
    validated_at: str
    cr_version: str | None = None
    lawbook_version: str | None = None
    hash: str | None = None
    change_request: ChangeRequest | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.ok,
            "errors": [finding.to_dict() for finding in self.errors],
            "warnings": [finding.to_dict() for finding in self.warnings],
            "meta": {
                "crVersion": self.cr_version,
                "validatedAt": self.validated_at,
                "validatorVersion": VALIDATOR_VERSION,
                "lawbookVersion": self.lawbook_version,
                "hash": self.hash,
            },
        }


def has_forbidden_path_pattern(path: str) -> bool:
    """Return True for absolute, drive-lettered, backslashed or parent-traversing paths."""
    if path.startswith("/") or "\\" in path or _DRIVE_LETTER.match(path):
        return True
    return any(segment == ".." for segment in path.split("/"))


def validate_change_request_policy(
    raw: Any,
    allowed_repos: Iterable[tuple[str, str]] | None = None,
    allowed_branches: Iterable[str] | None = None,
    now: datetime | None = None,
) -> ChangeRequestReport:
    """Validate a change request structurally and against policy limits.

    Args:
        raw: The submitted change request.
        allowed_repos: ``(owner, repo)`` pairs the CR may target. Empty or None disables the check.
        allowed_branches: Branches the CR may target. Empty or None disables the check.
        now: Time of validation; read from the clock when omitted.

    Returns:
        The report. Never raises for an invalid document.
    """
    validated_at = (now or datetime.now(UTC)).isoformat()
    parsed = parse_document(ChangeRequest, raw, EMPTY_ARRAY_MESSAGES)
    issues = list(parsed.errors)
    change_request: ChangeRequest | None = None
    if parsed.success and parsed.data is not None:
        try:
            change_request = normalize_change_request(parsed.data)
        except ValidationError as exc:
            issues = exc.issues
    if change_request is None:
        schema_errors = [
            PolicyFinding("CR_SCHEMA_INVALID", issue.message, issue.path, details={"issue": issue.code})
            for issue in issues
        ]
        return ChangeRequestReport(
            ok=False,
            errors=_sorted(schema_errors),
            warnings=(),
            validated_at=validated_at,
        )

    errors: list[PolicyFinding] = []
    warnings: list[PolicyFinding] = []

    errors.extend(_size_findings(change_request))

    for index, file_change in enumerate(change_request.changes.files):
        if has_forbidden_path_pattern(file_change.path):
            errors.append(
                PolicyFinding(
                    "CR_PATH_INVALID",
                    'File path contains forbidden pattern (no "..", backslashes, or absolute paths): '
                    f"{file_change.path}",
                    f"changes.files.{index}.path",
                    details={"invalidPath": file_change.path},
                )
            )

    repos = set(allowed_repos or ())
    target = change_request.targets.repo
    if repos and (target.owner, target.repo) not in repos:
        errors.append(
            PolicyFinding(
                "CR_TARGET_NOT_ALLOWED",
                f"Target repository {target.full_name} is not in the allowed list",
                "targets.repo",
            )
        )

    branches = sorted(set(allowed_branches or ()))
    if branches and change_request.targets.branch not in branches:
        warnings.append(
            PolicyFinding(
                "CR_TARGET_NOT_ALLOWED",
                f'Target branch "{change_request.targets.branch}" is not in the allowed list',
                "targets.branch",
                severity=SEVERITY_WARN,
                details={"allowedBranches": branches},
            )
        )

    if not change_request.constraints.lawbook_version:
        warnings.append(
            PolicyFinding(
                "CR_LAWBOOK_VERSION_MISSING",
                "lawbookVersion is not specified in constraints",
                "constraints.lawbookVersion",
                severity=SEVERITY_WARN,
            )
        )

    return ChangeRequestReport(
        ok=not errors,
        errors=_sorted(errors),
        warnings=_sorted(warnings),
        validated_at=validated_at,
        cr_version=change_request.cr_version,
        lawbook_version=change_request.constraints.lawbook_version,
        hash=compute_change_request_hash(change_request),
        change_request=change_request,
    )


def _size_findings(change_request: ChangeRequest) -> list[PolicyFinding]:
    checks = [
        ("title", len(change_request.title), TITLE_LIMIT, "Title exceeds maximum length of {limit} characters"),
        (
            "motivation",
            len(change_request.motivation),
            MOTIVATION_LIMIT,
            "Motivation exceeds maximum length of {limit} characters",
        ),
        ("changes.files", len(change_request.changes.files), FILES_LIMIT, "Number of files exceeds maximum of {limit}"),
        (
            "evidence",
            len(change_request.evidence),
            EVIDENCE_LIMIT,
            "Number of evidence entries exceeds maximum of {limit}",
        ),
    ]
    return [
        PolicyFinding("CR_SIZE_LIMIT", template.format(limit=limit), path, details={"limit": limit, "actual": actual})
        for path, actual, limit, template in checks
        if actual > limit
    ]


def _sorted(findings: Iterable[PolicyFinding]) -> tuple[PolicyFinding, ...]:
    return tuple(sorted(findings, key=lambda f: (f.path, f.code, f.severity, f.message)))
