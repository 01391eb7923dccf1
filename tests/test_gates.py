"""Tests for the deny-by-default gate evaluator.

Tests verify:
- Every gate denies with LAWBOOK_MISSING when no lawbook is supplied
- Malformed parameters deny with PARAMS_INVALID
- Allow-lists, evidence, run count, cooldown, rate and approval checks
- HOLD is produced only by the determinism gate
- Verdicts are deterministic: sorted reasons, stable inputs hash
"""

from datetime import datetime, timedelta
from typing import Any

import pytest

from guardrail_engine.core.hashing import content_hash
from guardrail_engine.gates.evaluator import (
    GATE_KINDS,
    LAWBOOK_MISSING_MESSAGE,
    UNENCODABLE_PARAMS,
    gate,
    gate_action_allowed,
    gate_automation_action,
    gate_determinism_required,
    gate_evidence,
    gate_idempotency_key_format,
    gate_playbook_allowed,
    gate_repo_allowed,
)
from guardrail_engine.gates.verdict import build_verdict, reason
from guardrail_engine.schemas.lawbook import LawbookV1
from guardrail_engine.schemas.registry import SCHEMA_LAWBOOK, validate

VALID_PARAMS: dict[str, dict[str, Any]] = {
    "action": {"actionType": "ROLLBACK_DEPLOY"},
    "automation": {"actionType": "rerun_job", "deploymentEnv": "staging"},
    "determinism": {"hasDeterminismReport": True, "determinismReportStatus": "PASS"},
    "evidence": {"incidentCategory": "workflow_failure", "presentKinds": ["workflow_run", "error_log"]},
    "idempotency_key": {"key": "incident-1:redeploy-lkg:abc"},
    "playbook": {"playbookId": "redeploy-lkg"},
    "repo": {"owner": "adaefler-art", "repo": "codefactory-control", "branch": "main"},
}


def _lawbook(document: dict[str, Any]) -> LawbookV1:
    result = validate(SCHEMA_LAWBOOK, document)
    assert result.success, result.errors
    return result.data


def _codes(verdict: Any) -> list[str]:
    return [item.code for item in verdict.reasons]


class TestDenyByDefault:
    """A missing lawbook always denies."""

    def test_every_kind_has_params(self) -> None:
        assert sorted(VALID_PARAMS) == list(GATE_KINDS)

    @pytest.mark.parametrize("kind", sorted(VALID_PARAMS))
    def test_missing_lawbook_denies(self, kind: str) -> None:
        verdict = gate(kind, VALID_PARAMS[kind], None)

        assert verdict.verdict == "DENY"
        assert _codes(verdict) == ["LAWBOOK_MISSING"]
        assert verdict.reasons[0].message == LAWBOOK_MISSING_MESSAGE
        assert verdict.lawbook_version is None

    @pytest.mark.parametrize("kind", sorted(VALID_PARAMS))
    def test_valid_params_allowed_with_lawbook(self, kind: str, lawbook: LawbookV1) -> None:
        verdict = gate(kind, VALID_PARAMS[kind], lawbook)

        assert verdict.verdict == "ALLOW"
        assert verdict.lawbook_version == "2025-12-30.1"
        assert verdict.reasons[0].severity == "INFO"

    def test_missing_lawbook_wins_over_invalid_params(self) -> None:
        verdict = gate_playbook_allowed({"bogus": 1}, None)

        assert _codes(verdict) == ["LAWBOOK_MISSING"]

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), {"redeploy-lkg"}])
    def test_unencodable_params_without_lawbook(self, value: Any) -> None:
        verdict = gate("playbook", {"playbookId": value}, None)

        assert verdict.verdict == "DENY"
        assert _codes(verdict) == ["LAWBOOK_MISSING"]
        assert verdict.lawbook_version is None
        assert verdict.inputs_hash == content_hash(UNENCODABLE_PARAMS)

    @pytest.mark.parametrize("value", [float("nan"), float("inf"), {"redeploy-lkg"}])
    def test_unencodable_params_with_lawbook(self, value: Any, lawbook: LawbookV1) -> None:
        verdict = gate("playbook", {"playbookId": value}, lawbook)

        assert verdict.verdict == "DENY"
        assert _codes(verdict) == ["PARAMS_INVALID"]
        assert verdict.lawbook_version == "2025-12-30.1"
        assert verdict.inputs_hash == content_hash(UNENCODABLE_PARAMS)

    def test_encodable_invalid_params_hash_as_given(self, lawbook: LawbookV1) -> None:
        verdict = gate("playbook", {"bogus": 1}, lawbook)

        assert _codes(verdict) == ["PARAMS_INVALID"]
        assert verdict.inputs_hash == content_hash({"bogus": 1})

    def test_unknown_kind_raises(self, lawbook: LawbookV1) -> None:
        with pytest.raises(ValueError, match="Unknown gate kind"):
            gate("deploy", {}, lawbook)


class TestParams:
    """Parameter validation."""

    def test_unknown_param_key_denied(self, lawbook: LawbookV1) -> None:
        verdict = gate_action_allowed({"actionType": "RUN_VERIFICATION", "force": True}, lawbook)

        assert verdict.verdict == "DENY"
        assert _codes(verdict) == ["PARAMS_INVALID"]
        assert "force" in verdict.reasons[0].message

    def test_missing_required_param_denied(self, lawbook: LawbookV1) -> None:
        verdict = gate_repo_allowed({"owner": "adaefler-art"}, lawbook)

        assert _codes(verdict) == ["PARAMS_INVALID"]

    def test_snake_case_names_accepted(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        verdict = gate_action_allowed({"action_type": "RUN_VERIFICATION", "now": fixed_now}, lawbook)

        assert verdict.allowed


class TestPlaybookGate:
    """Tests for gate_playbook_allowed."""

    def test_playbook_not_allowed(self, lawbook: LawbookV1) -> None:
        verdict = gate_playbook_allowed({"playbookId": "wipe-database"}, lawbook)

        assert verdict.verdict == "DENY"
        assert _codes(verdict) == ["PLAYBOOK_NOT_ALLOWED"]
        assert verdict.reasons[0].rule_id == "remediation.allowedPlaybooks"

    def test_remediation_disabled(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["remediation"]["enabled"] = False

        verdict = gate_playbook_allowed({"playbookId": "redeploy-lkg"}, _lawbook(lawbook_document))

        assert _codes(verdict) == ["REMEDIATION_DISABLED"]

    def test_category_evidence_missing(self, lawbook: LawbookV1) -> None:
        verdict = gate_playbook_allowed(
            {"playbookId": "redeploy-lkg", "incidentCategory": "workflow_failure", "evidenceKinds": ["workflow_run"]},
            lawbook,
        )

        assert _codes(verdict) == ["EVIDENCE_MISSING"]
        assert verdict.reasons[0].message == "Missing required evidence kinds: error_log"

    def test_category_evidence_present(self, lawbook: LawbookV1) -> None:
        verdict = gate_playbook_allowed(
            {
                "playbookId": "redeploy-lkg",
                "incidentCategory": "workflow_failure",
                "evidenceKinds": ["error_log", "workflow_run"],
            },
            lawbook,
        )

        assert verdict.allowed

    def test_max_runs_reached(self, lawbook: LawbookV1) -> None:
        verdict = gate_playbook_allowed({"playbookId": "redeploy-lkg", "currentRunCount": 3}, lawbook)

        assert _codes(verdict) == ["MAX_RUNS_EXCEEDED"]
        assert verdict.reasons[0].message == "Maximum runs per incident (3) exceeded"

    def test_below_max_runs(self, lawbook: LawbookV1) -> None:
        verdict = gate_playbook_allowed({"playbookId": "redeploy-lkg", "currentRunCount": 2}, lawbook)

        assert verdict.allowed

    def test_cooldown_active(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        last_run = fixed_now - timedelta(minutes=5)

        verdict = gate_playbook_allowed(
            {"playbookId": "redeploy-lkg", "lastRunTimestamp": last_run, "now": fixed_now},
            lawbook,
        )

        assert _codes(verdict) == ["COOLDOWN_ACTIVE"]
        assert verdict.reasons[0].message == "Cooldown active. Wait 10 more minutes"
        assert verdict.next_allowed_at == (last_run + timedelta(minutes=15)).isoformat()

    def test_cooldown_elapsed(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        verdict = gate_playbook_allowed(
            {
                "playbookId": "redeploy-lkg",
                "lastRunTimestamp": fixed_now - timedelta(minutes=20),
                "now": fixed_now,
            },
            lawbook,
        )

        assert verdict.allowed
        assert verdict.next_allowed_at is None

    def test_naive_timestamp_treated_as_utc(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        naive = (fixed_now - timedelta(minutes=5)).replace(tzinfo=None)

        verdict = gate_playbook_allowed(
            {"playbookId": "redeploy-lkg", "lastRunTimestamp": naive, "now": fixed_now},
            lawbook,
        )

        assert _codes(verdict) == ["COOLDOWN_ACTIVE"]


class TestActionGate:
    """Tests for gate_action_allowed."""

    def test_action_not_allowed(self, lawbook: LawbookV1) -> None:
        verdict = gate_action_allowed({"actionType": "DELETE_CLUSTER"}, lawbook)

        assert _codes(verdict) == ["ACTION_NOT_ALLOWED"]
        assert verdict.reasons[0].rule_id == "remediation.allowedActions"

    def test_action_denied_when_remediation_disabled(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["remediation"]["enabled"] = False

        verdict = gate_action_allowed({"actionType": "RUN_VERIFICATION"}, _lawbook(lawbook_document))

        assert _codes(verdict) == ["REMEDIATION_DISABLED"]


class TestEvidenceGate:
    """Tests for gate_evidence."""

    def test_category_requirements_from_lawbook(self, lawbook: LawbookV1) -> None:
        verdict = gate_evidence({"incidentCategory": "workflow_failure", "presentKinds": ["workflow_run"]}, lawbook)

        assert verdict.verdict == "DENY"
        assert verdict.reasons[0].message == "Missing required evidence kinds: error_log"
        assert verdict.reasons[0].rule_id == "evidence.requiredKindsByCategory.workflow_failure"

    def test_all_missing_kinds_listed_sorted(self, lawbook: LawbookV1) -> None:
        verdict = gate_evidence({"incidentCategory": "workflow_failure"}, lawbook)

        assert verdict.reasons[0].message == "Missing required evidence kinds: error_log, workflow_run"

    def test_records_count_as_present(self, lawbook: LawbookV1) -> None:
        verdict = gate_evidence(
            {
                "incidentCategory": "workflow_failure",
                "evidence": [{"kind": "workflow_run", "ref": {"runId": 1}}, {"kind": "error_log"}],
            },
            lawbook,
        )

        assert verdict.allowed

    def test_explicit_required_kinds_override(self, lawbook: LawbookV1) -> None:
        verdict = gate_evidence({"requiredKinds": ["http"], "incidentCategory": "workflow_failure"}, lawbook)

        assert verdict.reasons[0].message == "Missing required evidence kinds: http"

    def test_unknown_category_requires_nothing(self, lawbook: LawbookV1) -> None:
        assert gate_evidence({"incidentCategory": "cosmic_rays"}, lawbook).allowed

    def test_predicate_field_missing(self, lawbook: LawbookV1) -> None:
        verdict = gate_evidence(
            {
                "requiredKinds": [],
                "predicates": [{"kind": "ecs", "requiredFields": ["ref.service", "ref.cluster"]}],
                "evidence": [{"kind": "ecs", "ref": {"cluster": "prod"}}],
            },
            lawbook,
        )

        assert verdict.reasons[0].message == "Missing required evidence kinds: ecs(ref.cluster, ref.service)"

    def test_predicate_satisfied(self, lawbook: LawbookV1) -> None:
        verdict = gate_evidence(
            {
                "requiredKinds": [],
                "predicates": [{"kind": "ecs", "requiredFields": ["ref.cluster", "ref.service"]}],
                "evidence": [{"kind": "ecs", "ref": {"cluster": "prod", "service": "api"}}],
            },
            lawbook,
        )

        assert verdict.allowed


class TestDeterminismGate:
    """Tests for gate_determinism_required."""

    def test_missing_report_holds(self, lawbook: LawbookV1) -> None:
        verdict = gate_determinism_required({"hasDeterminismReport": False}, lawbook)

        assert verdict.verdict == "HOLD"
        assert _codes(verdict) == ["DETERMINISM_REPORT_MISSING"]

    def test_pending_report_holds(self, lawbook: LawbookV1) -> None:
        verdict = gate_determinism_required(
            {"hasDeterminismReport": True, "determinismReportStatus": "PENDING"},
            lawbook,
        )

        assert verdict.verdict == "HOLD"
        assert verdict.reasons[0].severity == "WARNING"

    def test_failed_report_denies(self, lawbook: LawbookV1) -> None:
        verdict = gate_determinism_required({"hasDeterminismReport": True, "determinismReportStatus": "FAIL"}, lawbook)

        assert verdict.verdict == "DENY"
        assert _codes(verdict) == ["DETERMINISM_REPORT_FAILED"]

    def test_unknown_status_denies(self, lawbook: LawbookV1) -> None:
        verdict = gate_determinism_required({"hasDeterminismReport": True, "determinismReportStatus": "MAYBE"}, lawbook)

        assert _codes(verdict) == ["DETERMINISM_REPORT_UNKNOWN"]

    def test_not_required(self, lawbook_document: dict[str, Any]) -> None:
        lawbook_document["determinism"]["requireDeterminismGate"] = False

        verdict = gate_determinism_required({"hasDeterminismReport": False}, _lawbook(lawbook_document))

        assert verdict.allowed
        assert _codes(verdict) == ["DETERMINISM_NOT_REQUIRED"]


class TestIdempotencyKeyGate:
    """Tests for gate_idempotency_key_format."""

    def test_key_too_long(self, lawbook: LawbookV1) -> None:
        verdict = gate_idempotency_key_format({"key": "k" * 257}, lawbook)

        assert _codes(verdict) == ["KEY_TOO_LONG"]
        assert "(actual: 257)" in verdict.reasons[0].message

    def test_key_at_limit(self, lawbook: LawbookV1) -> None:
        assert gate_idempotency_key_format({"key": "k" * 256}, lawbook).allowed

    def test_custom_max_length(self, lawbook: LawbookV1) -> None:
        assert _codes(gate_idempotency_key_format({"key": "abcdef", "maxLength": 5}, lawbook)) == ["KEY_TOO_LONG"]

    @pytest.mark.parametrize("key", ["has space", "slash/key", "", "dot.key"])
    def test_invalid_characters(self, key: str, lawbook: LawbookV1) -> None:
        assert _codes(gate_idempotency_key_format({"key": key}, lawbook)) == ["KEY_INVALID_CHARS"]


class TestRepoGate:
    """Tests for gate_repo_allowed."""

    def test_repo_not_allowed(self, lawbook: LawbookV1) -> None:
        verdict = gate_repo_allowed({"owner": "adaefler-art", "repo": "other"}, lawbook)

        assert _codes(verdict) == ["REPO_NOT_ALLOWED"]

    def test_branch_not_allowed(self, lawbook: LawbookV1) -> None:
        verdict = gate_repo_allowed(
            {"owner": "adaefler-art", "repo": "codefactory-control", "branch": "feature/x"},
            lawbook,
        )

        assert _codes(verdict) == ["BRANCH_NOT_ALLOWED"]

    def test_repo_without_branch(self, lawbook: LawbookV1) -> None:
        assert gate_repo_allowed({"owner": "adaefler-art", "repo": "codefactory-control"}, lawbook).allowed

    def test_repo_without_branch_list_allows_any_branch(self, lawbook_document: dict[str, Any]) -> None:
        del lawbook_document["github"]["allowedRepos"][0]["branches"]

        verdict = gate_repo_allowed(
            {"owner": "adaefler-art", "repo": "codefactory-control", "branch": "feature/x"},
            _lawbook(lawbook_document),
        )

        assert verdict.allowed


class TestAutomationGate:
    """Tests for gate_automation_action."""

    def test_allowed_sets_approval_flags(self, lawbook: LawbookV1) -> None:
        verdict = gate_automation_action({"actionType": "rerun_job", "deploymentEnv": "prod"}, lawbook)

        assert verdict.allowed
        assert verdict.approval_required is False
        assert verdict.approval_met is True

    def test_no_policy_for_action(self, lawbook: LawbookV1) -> None:
        verdict = gate_automation_action({"actionType": "delete_branch", "deploymentEnv": "staging"}, lawbook)

        assert _codes(verdict) == ["AUTOMATION_ACTION_NOT_ALLOWED"]

    def test_no_automation_section(self, lawbook_document: dict[str, Any]) -> None:
        del lawbook_document["automationPolicy"]

        verdict = gate_automation_action(
            {"actionType": "rerun_job", "deploymentEnv": "staging"},
            _lawbook(lawbook_document),
        )

        assert _codes(verdict) == ["AUTOMATION_DISABLED"]

    def test_env_not_allowed(self, lawbook: LawbookV1) -> None:
        verdict = gate_automation_action({"actionType": "merge_pr", "deploymentEnv": "prod"}, lawbook)

        assert _codes(verdict) == ["ENV_NOT_ALLOWED"]
        assert verdict.reasons[0].rule_id == "automationPolicy.policies.merge_pr.allowedEnvs"

    def test_unspecified_env_denied(self, lawbook: LawbookV1) -> None:
        verdict = gate_automation_action({"actionType": "rerun_job"}, lawbook)

        assert _codes(verdict) == ["ENV_NOT_ALLOWED"]
        assert "unspecified environment" in verdict.reasons[0].message

    def test_cooldown_active(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        last = fixed_now - timedelta(seconds=60)

        verdict = gate_automation_action(
            {"actionType": "rerun_job", "deploymentEnv": "staging", "lastExecutionAt": last, "now": fixed_now},
            lawbook,
        )

        assert _codes(verdict) == ["COOLDOWN_ACTIVE"]
        assert verdict.next_allowed_at == (last + timedelta(seconds=300)).isoformat()

    def test_rate_limit_exceeded(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        verdict = gate_automation_action(
            {"actionType": "rerun_job", "deploymentEnv": "staging", "executionsInWindow": 3, "now": fixed_now},
            lawbook,
        )

        assert _codes(verdict) == ["RATE_LIMIT_EXCEEDED"]
        assert verdict.next_allowed_at == (fixed_now + timedelta(seconds=3600)).isoformat()

    def test_approval_required(self, lawbook: LawbookV1) -> None:
        verdict = gate_automation_action(
            {"actionType": "merge_pr", "deploymentEnv": "staging", "approvals": 1},
            lawbook,
        )

        assert _codes(verdict) == ["APPROVAL_REQUIRED"]
        assert verdict.approval_required is True
        assert verdict.approval_met is False

    def test_approval_met(self, lawbook: LawbookV1) -> None:
        verdict = gate_automation_action(
            {"actionType": "merge_pr", "deploymentEnv": "staging", "approvals": 2},
            lawbook,
        )

        assert verdict.allowed
        assert verdict.approval_met is True


class TestVerdictDeterminism:
    """Verdicts are pure functions of parameters and lawbook."""

    def test_reasons_sorted_by_code(self) -> None:
        verdict = build_verdict(
            "DENY",
            [reason("ZETA", "z"), reason("ALPHA", "a"), reason("MIDDLE", "m")],
            "v1",
            {},
            "2026-01-01T00:00:00+00:00",
        )

        assert _codes(verdict) == ["ALPHA", "MIDDLE", "ZETA"]

    def test_repeated_evaluation_identical(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        params = {"playbookId": "redeploy-lkg", "currentRunCount": 1, "now": fixed_now}

        assert gate_playbook_allowed(params, lawbook) == gate_playbook_allowed(params, lawbook)

    def test_inputs_hash_ignores_key_order_and_clock(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        first = gate_repo_allowed({"owner": "adaefler-art", "repo": "codefactory-control", "now": fixed_now}, lawbook)
        second = gate_repo_allowed(
            {"repo": "codefactory-control", "owner": "adaefler-art", "now": fixed_now + timedelta(hours=1)},
            lawbook,
        )

        assert first.inputs_hash == second.inputs_hash
        assert first.generated_at != second.generated_at

    def test_generated_at_uses_pinned_clock(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        verdict = gate_action_allowed({"actionType": "RUN_VERIFICATION", "now": fixed_now}, lawbook)

        assert verdict.generated_at == fixed_now.isoformat()

    def test_wire_form(self, lawbook: LawbookV1, fixed_now: datetime) -> None:
        wire = gate_action_allowed({"actionType": "RUN_VERIFICATION", "now": fixed_now}, lawbook).to_wire()

        assert wire["verdict"] == "ALLOW"
        assert wire["lawbookVersion"] == "2025-12-30.1"
        assert wire["reasons"][0]["code"] == "ACTION_ALLOWED"
        assert "approvalRequired" not in wire
        assert "nextAllowedAt" not in wire

    def test_wire_form_keeps_null_lawbook_version(self) -> None:
        wire = gate_action_allowed({"actionType": "RUN_VERIFICATION"}, None).to_wire()

        assert wire["lawbookVersion"] is None
