"""Tests for the document schemas and the schema registry.

Tests verify:
- Unknown keys are rejected at every nesting level
- Issues carry dotted paths, stable codes and are sorted and capped
- Normalization sorts set-valued fields and re-validates the result
- Identity hashes ignore the order of set-valued fields
- Change request policy findings (size, paths, targets, lawbook pin)
"""

from typing import Any

import pytest

from guardrail_engine.schemas.change_request_policy import (
    SEVERITY_WARN,
    has_forbidden_path_pattern,
    validate_change_request_policy,
)
from guardrail_engine.schemas.issue_draft import CANONICAL_ID_MESSAGE
from guardrail_engine.schemas.registry import (
    SCHEMA_CHANGE_REQUEST,
    SCHEMA_IDS,
    SCHEMA_ISSUE_DRAFT,
    SCHEMA_LAWBOOK,
    SCHEMA_WORK_PLAN,
    document_hash,
    normalize,
    validate,
)

ALLOWED_REPOS = [("adaefler-art", "codefactory-control")]


def _paths(result: Any) -> list[str]:
    return [issue.path for issue in result.errors]


class TestRegistry:
    """Tests for schema lookup."""

    def test_schema_ids(self) -> None:
        assert SCHEMA_IDS == ("change_request", "issue_draft", "lawbook", "work_plan")

    def test_unknown_schema_raises(self) -> None:
        with pytest.raises(ValueError, match="Unknown schema"):
            validate("nope", {})

    def test_normalize_rejects_wrong_document_type(self, lawbook: Any) -> None:
        with pytest.raises(ValueError):
            normalize(SCHEMA_ISSUE_DRAFT, lawbook)

    @pytest.mark.parametrize("raw", [None, "lawbook", 42, []])
    def test_non_object_input_fails_without_raising(self, raw: Any) -> None:
        result = validate(SCHEMA_LAWBOOK, raw)

        assert not result.success
        assert result.data is None
        assert result.errors


class TestLawbookSchema:
    """Tests for lawbook validation and identity."""

    def test_valid_lawbook_is_normalized(self, lawbook_document: dict[str, Any]) -> None:
        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert result.success
        assert result.data.remediation.allowed_playbooks == [
            "redeploy-lkg",
            "rerun-post-deploy-verification",
            "service-health-reset",
        ]
        assert result.data.lawbook_version == "2025-12-30.1"

    def test_unknown_top_level_key_rejected(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["surprise"] = True

        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert not result.success
        assert result.errors[0].path == "surprise"
        assert result.errors[0].code == "unrecognized_key"

    def test_unknown_nested_key_rejected(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["remediation"]["autoApprove"] = True

        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert not result.success
        assert "remediation.autoApprove" in _paths(result)

    def test_missing_section_is_required(self, lawbook_document: dict[str, Any]) -> None:
        del lawbook_document["remediation"]

        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert not result.success
        assert result.errors[0].path == "remediation"
        assert result.errors[0].code == "required"

    def test_enforcement_mode_only_strict(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["automationPolicy"]["enforcementMode"] = "advisory"

        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert not result.success
        assert _paths(result) == ["automationPolicy.enforcementMode"]

    def test_duplicate_action_type_rejected(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["automationPolicy"]["policies"].append({"actionType": "merge_pr", "allowedEnvs": ["prod"]})

        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert not result.success
        assert _paths(result) == ["automationPolicy.policies"]
        assert result.errors[0].code == "invalid_value"
        assert result.errors[0].message == "Each actionType may have only one policy (duplicated: merge_pr)"

    def test_identical_duplicate_policy_rejected(self, lawbook_document: dict[str, Any]) -> None:
        policies = lawbook_document["automationPolicy"]["policies"]
        policies.append(dict(policies[0]))

        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert not result.success
        assert "rerun_job" in result.errors[0].message

    def test_issues_sorted_by_path(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["version"] = "9.9.9"
        lawbook_document["createdBy"] = "robot"
        lawbook_document["zzz"] = 1

        result = validate(SCHEMA_LAWBOOK, lawbook_document)

        assert _paths(result) == sorted(_paths(result))
        assert len(result.errors) == 3

    def test_issues_capped(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["version"] = "9.9.9"
        lawbook_document["createdBy"] = "robot"
        lawbook_document["zzz"] = 1

        result = validate(SCHEMA_LAWBOOK, lawbook_document, max_errors=1)

        assert len(result.errors) == 1

    def test_hash_ignores_allow_list_order(self, lawbook_document: dict[str, Any]) -> None:
        first = validate(SCHEMA_LAWBOOK, lawbook_document).data
        lawbook_document["remediation"]["allowedActions"].reverse()
        lawbook_document["automationPolicy"]["policies"].reverse()
        lawbook_document["github"]["allowedRepos"][0]["branches"] = ["develop", "main", "main"]
        second = validate(SCHEMA_LAWBOOK, lawbook_document).data

        assert document_hash(SCHEMA_LAWBOOK, first) == document_hash(SCHEMA_LAWBOOK, second)

    def test_hash_changes_with_content(self, lawbook_document: dict[str, Any]) -> None:
        first = validate(SCHEMA_LAWBOOK, lawbook_document).data
        lawbook_document["remediation"]["cooldownMinutes"] = 30
        second = validate(SCHEMA_LAWBOOK, lawbook_document).data

        assert document_hash(SCHEMA_LAWBOOK, first) != document_hash(SCHEMA_LAWBOOK, second)

    def test_required_evidence_kinds(self, lawbook: Any) -> None:
        assert lawbook.required_evidence_kinds("workflow_failure") == ["error_log", "workflow_run"]
        assert lawbook.required_evidence_kinds("unknown") == []
        assert lawbook.required_evidence_kinds(None) == []


class TestIssueDraftSchema:
    """Tests for issue draft validation and normalization."""

    def test_valid_draft(self, issue_draft_document: dict[str, Any]) -> None:
        result = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)

        assert result.success
        assert result.data.canonical_id == "I811"

    def test_title_at_limit_accepted(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["title"] = "t" * 200

        assert validate(SCHEMA_ISSUE_DRAFT, issue_draft_document).success

    def test_title_over_limit_rejected(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["title"] = "t" * 201

        result = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)

        assert not result.success
        assert result.errors[0].path == "title"
        assert result.errors[0].code == "too_long"
        assert result.errors[0].message == "Must not exceed 200 characters"

    def test_labels_deduplicated_and_sorted(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["labels"] = ["v0.8", "guardrails", " guardrails ", "epic:E81"]

        result = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)

        assert result.data.labels == ["epic:E81", "guardrails", "v0.8"]

    def test_acceptance_criteria_keep_order(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["acceptanceCriteria"] = ["Zeta", " Alpha "]

        result = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)

        assert result.data.acceptance_criteria == ["Zeta", "Alpha"]

    def test_empty_criteria_message(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["acceptanceCriteria"] = []

        result = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)

        assert result.errors[0].path == "acceptanceCriteria"
        assert result.errors[0].message == "At least one acceptance criterion is required"

    def test_invalid_canonical_id(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["canonicalId"] = "JIRA-1"

        result = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)

        assert result.errors[0].path == "canonicalId"
        assert result.errors[0].code == "invalid_format"
        assert result.errors[0].message == CANONICAL_ID_MESSAGE

    def test_prod_never_unblocked(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["guards"]["prodBlocked"] = False

        assert _paths(validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)) == ["guards.prodBlocked"]

    def test_whitespace_title_fails_after_normalization(self, issue_draft_document: dict[str, Any]) -> None:
        issue_draft_document["title"] = "   "

        result = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document)

        assert not result.success
        assert result.errors[0].path == "title"
        assert result.errors[0].message.startswith("Normalization error: ")

    def test_hash_ignores_label_order(self, issue_draft_document: dict[str, Any]) -> None:
        first = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document).data
        issue_draft_document["labels"].reverse()
        second = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document).data

        assert document_hash(SCHEMA_ISSUE_DRAFT, first) == document_hash(SCHEMA_ISSUE_DRAFT, second)

    def test_to_document_round_trips(self, issue_draft_document: dict[str, Any]) -> None:
        draft = validate(SCHEMA_ISSUE_DRAFT, issue_draft_document).data

        again = validate(SCHEMA_ISSUE_DRAFT, draft.to_document()).data

        assert again == draft


class TestChangeRequestSchema:
    """Tests for change request validation."""

    def test_valid_change_request_sorts_evidence(self, change_request_document: dict[str, Any]) -> None:
        result = validate(SCHEMA_CHANGE_REQUEST, change_request_document)

        assert result.success
        assert [item.kind for item in result.data.evidence] == ["file_snippet", "github_issue"]

    def test_empty_evidence_message(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["evidence"] = []

        result = validate(SCHEMA_CHANGE_REQUEST, change_request_document)

        assert result.errors[0].path == "evidence"
        assert result.errors[0].message == "At least one evidence entry is required"

    def test_unknown_evidence_kind_rejected(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["evidence"][0]["kind"] = "slack_message"

        assert not validate(SCHEMA_CHANGE_REQUEST, change_request_document).success

    def test_hash_ignores_evidence_order(self, change_request_document: dict[str, Any]) -> None:
        first = validate(SCHEMA_CHANGE_REQUEST, change_request_document).data
        change_request_document["evidence"].reverse()
        second = validate(SCHEMA_CHANGE_REQUEST, change_request_document).data

        assert document_hash(SCHEMA_CHANGE_REQUEST, first) == document_hash(SCHEMA_CHANGE_REQUEST, second)


class TestWorkPlanSchema:
    """Tests for work plan validation."""

    def test_valid_work_plan_defaults_version(self, work_plan_document: dict[str, Any]) -> None:
        result = validate(SCHEMA_WORK_PLAN, work_plan_document)

        assert result.success
        assert result.data.work_plan_version == "1.0.0"

    def test_empty_work_plan_is_valid(self) -> None:
        assert validate(SCHEMA_WORK_PLAN, {}).success

    def test_secret_rejected(self, work_plan_document: dict[str, Any]) -> None:
        work_plan_document["notes"] = "The admin password is hunter2"

        result = validate(SCHEMA_WORK_PLAN, work_plan_document)

        assert not result.success
        assert result.errors[0].code == "secret_detected"
        assert "password" in result.errors[0].message

    def test_goal_id_must_be_uuid(self, work_plan_document: dict[str, Any]) -> None:
        work_plan_document["goals"][0]["id"] = "goal-1"

        result = validate(SCHEMA_WORK_PLAN, work_plan_document)

        assert _paths(result) == ["goals.0.id"]
        assert result.errors[0].code == "invalid_format"

    def test_order_preserved(self, work_plan_document: dict[str, Any]) -> None:
        result = validate(SCHEMA_WORK_PLAN, work_plan_document)

        assert [todo.text for todo in result.data.todos] == ["Write tests", "Add API"]


class TestChangeRequestPolicy:
    """Tests for validate_change_request_policy."""

    def test_valid_change_request_is_ok(self, change_request_document: dict[str, Any]) -> None:
        report = validate_change_request_policy(change_request_document, ALLOWED_REPOS, ["develop", "main"])

        assert report.ok
        assert report.errors == ()
        assert report.warnings == ()
        assert report.lawbook_version == "2025-12-30.1"
        assert len(report.hash) == 64

    def test_schema_failure_reported_as_findings(self, change_request_document: dict[str, Any]) -> None:
        del change_request_document["motivation"]

        report = validate_change_request_policy(change_request_document)

        assert not report.ok
        assert [finding.code for finding in report.errors] == ["CR_SCHEMA_INVALID"]
        assert report.errors[0].path == "motivation"
        assert report.to_dict()["meta"]["hash"] is None

    def test_title_size_limit(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["title"] = "x" * 121

        report = validate_change_request_policy(change_request_document)

        assert not report.ok
        assert report.errors[0].code == "CR_SIZE_LIMIT"
        assert report.errors[0].details == {"limit": 120, "actual": 121}

    @pytest.mark.parametrize(
        "path",
        ["/etc/passwd", "src/../secrets.txt", "C:/repo/file.py", "src\\file.py", ".."],
    )
    def test_forbidden_paths(self, path: str) -> None:
        assert has_forbidden_path_pattern(path)

    @pytest.mark.parametrize("path", ["src/app.py", "docs/..hidden/readme.md", "a/b/c.txt"])
    def test_allowed_paths(self, path: str) -> None:
        assert not has_forbidden_path_pattern(path)

    def test_forbidden_path_finding(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["changes"]["files"][0]["path"] = "../outside.py"

        report = validate_change_request_policy(change_request_document)

        assert report.errors[0].code == "CR_PATH_INVALID"
        assert report.errors[0].path == "changes.files.0.path"

    def test_target_repo_not_allowed_is_error(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["targets"]["repo"] = {"owner": "someone", "repo": "elsewhere"}

        report = validate_change_request_policy(change_request_document, ALLOWED_REPOS)

        assert not report.ok
        assert report.errors[0].code == "CR_TARGET_NOT_ALLOWED"
        assert report.errors[0].path == "targets.repo"

    def test_target_branch_not_allowed_is_warning(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["targets"]["branch"] = "feature/x"

        report = validate_change_request_policy(change_request_document, ALLOWED_REPOS, ["main", "develop"])

        assert report.ok
        assert report.warnings[0].code == "CR_TARGET_NOT_ALLOWED"
        assert report.warnings[0].severity == SEVERITY_WARN
        assert report.warnings[0].details == {"allowedBranches": ["develop", "main"]}

    def test_missing_lawbook_version_warns(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["constraints"] = {}

        report = validate_change_request_policy(change_request_document)

        assert report.ok
        assert [finding.code for finding in report.warnings] == ["CR_LAWBOOK_VERSION_MISSING"]

    def test_findings_sorted_by_path(self, change_request_document: dict[str, Any]) -> None:
        change_request_document["title"] = "x" * 121
        change_request_document["changes"]["files"][0]["path"] = "/abs.py"
        change_request_document["targets"]["repo"] = {"owner": "someone", "repo": "elsewhere"}

        report = validate_change_request_policy(change_request_document, ALLOWED_REPOS)

        assert [finding.path for finding in report.errors] == ["changes.files.0.path", "targets.repo", "title"]
