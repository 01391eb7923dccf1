"""Deny-by-default guardrail gate evaluation.

Each gate is a pure function of (parameters, lawbook snapshot). Checks run in a
fixed order and the first failing check decides the verdict:

1. Policy presence: no lawbook means DENY ``LAWBOOK_MISSING`` with a null lawbook version.
2. Parameter validity: malformed parameters mean DENY ``PARAMS_INVALID``.
3. Section enabled: a disabled policy section means DENY ``*_DISABLED``.
4. Allow-list membership: anything not explicitly listed is denied (``*_NOT_ALLOWED``).
5. Evidence sufficiency: every missing kind is reported in one sorted message.
6. Rate and cooldown limits.
7. Approval policy (automation gate).
8. Otherwise ALLOW with an INFO reason.

``HOLD`` is produced only by the determinism gate, for a report that is missing
or still pending. Retrying is the caller's decision.

The evaluator never raises for a missing policy and reads the clock at most once
per call, at entry, unless the parameters pin ``now``.
"""

import math
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import pydantic

from guardrail_engine.core.canonical import canonicalize
from guardrail_engine.errors import CanonicalizationError
from guardrail_engine.gates.evidence import unsatisfied_predicates
from guardrail_engine.gates.params import (
    ActionGateParams,
    AutomationGateParams,
    DeterminismGateParams,
    EvidenceGateParams,
    GateParams,
    IdempotencyKeyGateParams,
    PlaybookGateParams,
    RepoGateParams,
)
from guardrail_engine.gates.verdict import (
    SEVERITY_INFO,
    SEVERITY_WARNING,
    VERDICT_ALLOW,
    VERDICT_DENY,
    VERDICT_HOLD,
    GateReason,
    GateVerdict,
    Verdict,
    build_verdict,
    reason,
)
from guardrail_engine.schemas.common import finalize_issues, translate_errors
from guardrail_engine.schemas.lawbook import LawbookV1

GATE_PLAYBOOK = "playbook"
GATE_ACTION = "action"
GATE_EVIDENCE = "evidence"
GATE_DETERMINISM = "determinism"
GATE_IDEMPOTENCY_KEY = "idempotency_key"
GATE_REPO = "repo"
GATE_AUTOMATION = "automation"

LAWBOOK_MISSING_MESSAGE = "No active lawbook configuration found"

IDEMPOTENCY_KEY_PATTERN = re.compile(r"^[a-zA-Z0-9_:-]+$")

# Hashed in place of rejected parameters that have no JSON encoding (NaN, sets, bytes).
UNENCODABLE_PARAMS = {"paramsInvalid": True}


@dataclass(frozen=True)
class _Evaluation:
    """Per-call context: the hashed inputs, the lawbook version and the pinned clock."""

    inputs: Any
    lawbook_version: str | None
    now: datetime

    def decide(self, verdict: Verdict, *reasons: GateReason, **extra: Any) -> GateVerdict:
        return build_verdict(verdict, list(reasons), self.lawbook_version, self.inputs, self.now.isoformat(), **extra)

    def deny(self, *reasons: GateReason, **extra: Any) -> GateVerdict:
        return self.decide(VERDICT_DENY, *reasons, **extra)

    def allow(self, *reasons: GateReason, **extra: Any) -> GateVerdict:
        return self.decide(VERDICT_ALLOW, *reasons, **extra)

    def hold(self, *reasons: GateReason, **extra: Any) -> GateVerdict:
        return self.decide(VERDICT_HOLD, *reasons, **extra)


def _rejected_inputs(params: Any) -> Any:
    try:
        return canonicalize(params)
    except CanonicalizationError:
        return UNENCODABLE_PARAMS


def _as_utc(moment: datetime) -> datetime:
    return moment.replace(tzinfo=UTC) if moment.tzinfo is None else moment.astimezone(UTC)


def _evaluate(
    model: type[GateParams],
    params: Any,
    lawbook: LawbookV1 | None,
    check: Callable[[Any, LawbookV1, _Evaluation], GateVerdict],
) -> GateVerdict:
    lawbook_version = lawbook.lawbook_version if lawbook is not None else None
    try:
        parsed = params if isinstance(params, model) else model.model_validate(params)
    except pydantic.ValidationError as exc:
        evaluation = _Evaluation(_rejected_inputs(params), lawbook_version, datetime.now(UTC))
        if lawbook is None:
            return evaluation.deny(reason("LAWBOOK_MISSING", LAWBOOK_MISSING_MESSAGE))
        details = "; ".join(f"{issue.path}: {issue.message}" for issue in finalize_issues(translate_errors(exc)))
        return evaluation.deny(reason("PARAMS_INVALID", f"Invalid gate parameters: {details}"))

    now = _as_utc(parsed.now) if parsed.now is not None else datetime.now(UTC)
    try:
        inputs = canonicalize(parsed.hash_inputs())
    except CanonicalizationError as exc:
        evaluation = _Evaluation(UNENCODABLE_PARAMS, lawbook_version, now)
        if lawbook is None:
            return evaluation.deny(reason("LAWBOOK_MISSING", LAWBOOK_MISSING_MESSAGE))
        return evaluation.deny(reason("PARAMS_INVALID", f"Invalid gate parameters: {exc.message}"))

    evaluation = _Evaluation(inputs, lawbook_version, now)
    if lawbook is None:
        return evaluation.deny(reason("LAWBOOK_MISSING", LAWBOOK_MISSING_MESSAGE))
    return check(parsed, lawbook, evaluation)


# ---------------------------------------------------------------------------
# Playbook and action gates
# ---------------------------------------------------------------------------


def _remediation_disabled(evaluation: _Evaluation) -> GateVerdict:
    return evaluation.deny(reason("REMEDIATION_DISABLED", "Remediation is disabled in lawbook", "remediation.enabled"))


def _check_playbook(params: PlaybookGateParams, lawbook: LawbookV1, evaluation: _Evaluation) -> GateVerdict:
    remediation = lawbook.remediation
    if not remediation.enabled:
        return _remediation_disabled(evaluation)

    if params.playbook_id not in remediation.allowed_playbooks:
        return evaluation.deny(
            reason(
                "PLAYBOOK_NOT_ALLOWED",
                f"Playbook '{params.playbook_id}' is not in allowed list",
                "remediation.allowedPlaybooks",
            )
        )

    if params.incident_category is not None:
        required = lawbook.required_evidence_kinds(params.incident_category)
        missing = sorted(set(required) - set(params.evidence_kinds or []))
        if missing:
            return evaluation.deny(
                reason(
                    "EVIDENCE_MISSING",
                    f"Missing required evidence kinds: {', '.join(missing)}",
                    f"evidence.requiredKindsByCategory.{params.incident_category}",
                )
            )

    max_runs = remediation.max_runs_per_incident
    if max_runs is not None and params.current_run_count is not None and params.current_run_count >= max_runs:
        return evaluation.deny(
            reason(
                "MAX_RUNS_EXCEEDED",
                f"Maximum runs per incident ({max_runs}) exceeded",
                "remediation.maxRunsPerIncident",
            )
        )

    cooldown = remediation.cooldown_minutes
    if cooldown and params.last_run_timestamp is not None:
        last_run = _as_utc(params.last_run_timestamp)
        elapsed_minutes = (evaluation.now - last_run).total_seconds() / 60
        if elapsed_minutes < cooldown:
            remaining = math.ceil(cooldown - elapsed_minutes)
            return evaluation.deny(
                reason(
                    "COOLDOWN_ACTIVE",
                    f"Cooldown active. Wait {remaining} more minutes",
                    "remediation.cooldownMinutes",
                ),
                next_allowed_at=(last_run + timedelta(minutes=cooldown)).isoformat(),
            )

    return evaluation.allow(
        reason("PLAYBOOK_ALLOWED", f"Playbook '{params.playbook_id}' is allowed", severity=SEVERITY_INFO)
    )


def _check_action(params: ActionGateParams, lawbook: LawbookV1, evaluation: _Evaluation) -> GateVerdict:
    if not lawbook.remediation.enabled:
        return _remediation_disabled(evaluation)
    if params.action_type not in lawbook.remediation.allowed_actions:
        return evaluation.deny(
            reason(
                "ACTION_NOT_ALLOWED",
                f"Action type '{params.action_type}' is not in allowed list",
                "remediation.allowedActions",
            )
        )
    return evaluation.allow(
        reason("ACTION_ALLOWED", f"Action type '{params.action_type}' is allowed", severity=SEVERITY_INFO)
    )


# ---------------------------------------------------------------------------
# Evidence gate
# ---------------------------------------------------------------------------


def _check_evidence(params: EvidenceGateParams, lawbook: LawbookV1, evaluation: _Evaluation) -> GateVerdict:
    if params.required_kinds is not None:
        required = set(params.required_kinds)
        rule_id = None
    else:
        required = set(lawbook.required_evidence_kinds(params.incident_category))
        rule_id = f"evidence.requiredKindsByCategory.{params.incident_category}" if params.incident_category else None

    present = set(params.present_kinds) | {record.kind for record in params.evidence}
    missing = required - present
    missing.update(predicate.describe() for predicate in unsatisfied_predicates(params.predicates, params.evidence))

    if missing:
        return evaluation.deny(
            reason("EVIDENCE_MISSING", f"Missing required evidence kinds: {', '.join(sorted(missing))}", rule_id)
        )
    return evaluation.allow(
        reason("EVIDENCE_SATISFIED", "All required evidence kinds are present", severity=SEVERITY_INFO)
    )


# ---------------------------------------------------------------------------
# Determinism gate
# ---------------------------------------------------------------------------

_DETERMINISM_RULE = "determinism.requireDeterminismGate"


def _check_determinism(params: DeterminismGateParams, lawbook: LawbookV1, evaluation: _Evaluation) -> GateVerdict:
    if not lawbook.determinism.require_determinism_gate:
        return evaluation.allow(
            reason("DETERMINISM_NOT_REQUIRED", "Determinism gate is not required by lawbook", severity=SEVERITY_INFO)
        )
    if not params.has_determinism_report:
        return evaluation.hold(
            reason("DETERMINISM_REPORT_MISSING", "Determinism gate required but no report found", _DETERMINISM_RULE)
        )

    status = params.determinism_report_status
    if status == "PENDING":
        return evaluation.hold(
            reason(
                "DETERMINISM_REPORT_PENDING",
                "Determinism report is pending",
                _DETERMINISM_RULE,
                severity=SEVERITY_WARNING,
            )
        )
    if status == "FAIL":
        return evaluation.deny(reason("DETERMINISM_REPORT_FAILED", "Determinism report failed", _DETERMINISM_RULE))
    if status == "PASS":
        return evaluation.allow(
            reason("DETERMINISM_REPORT_PASSED", "Determinism report passed", _DETERMINISM_RULE, SEVERITY_INFO)
        )
    return evaluation.deny(
        reason("DETERMINISM_REPORT_UNKNOWN", "Determinism report status is unknown", _DETERMINISM_RULE)
    )


# ---------------------------------------------------------------------------
# Idempotency key gate
# ---------------------------------------------------------------------------


def _check_idempotency_key(
    params: IdempotencyKeyGateParams,
    lawbook: LawbookV1,
    evaluation: _Evaluation,
) -> GateVerdict:
    if len(params.key) > params.max_length:
        return evaluation.deny(
            reason(
                "KEY_TOO_LONG",
                f"Idempotency key exceeds max length of {params.max_length} characters (actual: {len(params.key)})",
            )
        )
    if not IDEMPOTENCY_KEY_PATTERN.match(params.key):
        return evaluation.deny(
            reason(
                "KEY_INVALID_CHARS",
                "Idempotency key contains invalid characters (only alphanumeric, hyphen, underscore, colon allowed)",
            )
        )
    return evaluation.allow(reason("KEY_FORMAT_VALID", "Idempotency key format is valid", severity=SEVERITY_INFO))


# ---------------------------------------------------------------------------
# Repository gate
# ---------------------------------------------------------------------------


def _check_repo(params: RepoGateParams, lawbook: LawbookV1, evaluation: _Evaluation) -> GateVerdict:
    full_name = f"{params.owner}/{params.repo}"
    matches = [
        allowed
        for allowed in lawbook.github.allowed_repos
        if allowed.owner == params.owner and allowed.repo == params.repo
    ]
    if not matches:
        return evaluation.deny(
            reason("REPO_NOT_ALLOWED", f"Repository '{full_name}' is not in allowed list", "github.allowedRepos")
        )

    if params.branch is not None:
        restricted = [allowed for allowed in matches if allowed.branches is not None]
        if len(restricted) == len(matches) and not any(params.branch in allowed.branches for allowed in restricted):
            return evaluation.deny(
                reason(
                    "BRANCH_NOT_ALLOWED",
                    f"Branch '{params.branch}' is not allowed for repository '{full_name}'",
                    "github.allowedRepos.branches",
                )
            )

    return evaluation.allow(reason("REPO_ALLOWED", f"Repository '{full_name}' is allowed", severity=SEVERITY_INFO))


# ---------------------------------------------------------------------------
# Automation gate
# ---------------------------------------------------------------------------


def _check_automation(params: AutomationGateParams, lawbook: LawbookV1, evaluation: _Evaluation) -> GateVerdict:
    if lawbook.automation_policy is None:
        return evaluation.deny(
            reason("AUTOMATION_DISABLED", "Lawbook declares no automation policy", "automationPolicy")
        )

    policy = lawbook.policy_for(params.action_type)
    if policy is None:
        return evaluation.deny(
            reason(
                "AUTOMATION_ACTION_NOT_ALLOWED",
                f"No automation policy found for action type '{params.action_type}'",
                "automationPolicy.policies",
            )
        )

    rule_prefix = f"automationPolicy.policies.{policy.action_type}"
    if params.deployment_env is None or params.deployment_env not in policy.allowed_envs:
        env_label = f"'{params.deployment_env}'" if params.deployment_env else "unspecified environment"
        return evaluation.deny(
            reason(
                "ENV_NOT_ALLOWED",
                f"Action not allowed in {env_label} (allowed: {', '.join(sorted(policy.allowed_envs))})",
                f"{rule_prefix}.allowedEnvs",
            )
        )

    needed = (policy.approvals_required or 1) if policy.requires_approval else 0
    approval_flags = {
        "approval_required": policy.requires_approval,
        "approval_met": params.approvals >= needed,
    }

    if policy.cooldown_seconds > 0 and params.last_execution_at is not None:
        cooldown_end = _as_utc(params.last_execution_at) + timedelta(seconds=policy.cooldown_seconds)
        if evaluation.now < cooldown_end:
            return evaluation.deny(
                reason(
                    "COOLDOWN_ACTIVE",
                    f"Cooldown active: {policy.cooldown_seconds}s since last execution",
                    f"{rule_prefix}.cooldownSeconds",
                ),
                next_allowed_at=cooldown_end.isoformat(),
                **approval_flags,
            )

    if policy.max_runs_per_window and policy.window_seconds:
        if params.executions_in_window >= policy.max_runs_per_window:
            return evaluation.deny(
                reason(
                    "RATE_LIMIT_EXCEEDED",
                    f"Rate limit exceeded: {params.executions_in_window}/{policy.max_runs_per_window} "
                    f"executions in {policy.window_seconds}s window",
                    f"{rule_prefix}.maxRunsPerWindow",
                ),
                next_allowed_at=(evaluation.now + timedelta(seconds=policy.window_seconds)).isoformat(),
                **approval_flags,
            )

    if not approval_flags["approval_met"]:
        return evaluation.deny(
            reason(
                "APPROVAL_REQUIRED",
                f"Action requires {needed} approval(s); {params.approvals} granted",
                f"{rule_prefix}.requiresApproval",
            ),
            **approval_flags,
        )

    return evaluation.allow(
        reason("AUTOMATION_ALLOWED", "All policy checks passed", severity=SEVERITY_INFO),
        **approval_flags,
    )


# ---------------------------------------------------------------------------
# Public gate functions and dispatcher
# ---------------------------------------------------------------------------


def gate_playbook_allowed(params: PlaybookGateParams | Mapping[str, Any], lawbook: LawbookV1 | None) -> GateVerdict:
    """Decide whether a remediation playbook may run for an incident."""
    return _evaluate(PlaybookGateParams, params, lawbook, _check_playbook)


def gate_action_allowed(params: ActionGateParams | Mapping[str, Any], lawbook: LawbookV1 | None) -> GateVerdict:
    """Decide whether a remediation step action type is permitted."""
    return _evaluate(ActionGateParams, params, lawbook, _check_action)


def gate_evidence(params: EvidenceGateParams | Mapping[str, Any], lawbook: LawbookV1 | None) -> GateVerdict:
    """Decide whether the presented evidence satisfies the required kinds and predicates."""
    return _evaluate(EvidenceGateParams, params, lawbook, _check_evidence)


def gate_determinism_required(
    params: DeterminismGateParams | Mapping[str, Any],
    lawbook: LawbookV1 | None,
) -> GateVerdict:
    """Decide on the determinism report; HOLD while a required report is missing or pending."""
    return _evaluate(DeterminismGateParams, params, lawbook, _check_determinism)


def gate_idempotency_key_format(
    params: IdempotencyKeyGateParams | Mapping[str, Any],
    lawbook: LawbookV1 | None,
) -> GateVerdict:
    """Check an idempotency or run key against the length limit and allowed characters."""
    return _evaluate(IdempotencyKeyGateParams, params, lawbook, _check_idempotency_key)


def gate_repo_allowed(params: RepoGateParams | Mapping[str, Any], lawbook: LawbookV1 | None) -> GateVerdict:
    """Decide whether a repository (and optionally a branch) may be targeted."""
    return _evaluate(RepoGateParams, params, lawbook, _check_repo)


def gate_automation_action(
    params: AutomationGateParams | Mapping[str, Any],
    lawbook: LawbookV1 | None,
) -> GateVerdict:
    """Decide whether an automated action may execute now under its automation policy."""
    return _evaluate(AutomationGateParams, params, lawbook, _check_automation)


GATES: dict[str, Callable[[Any, LawbookV1 | None], GateVerdict]] = {
    GATE_PLAYBOOK: gate_playbook_allowed,
    GATE_ACTION: gate_action_allowed,
    GATE_EVIDENCE: gate_evidence,
    GATE_DETERMINISM: gate_determinism_required,
    GATE_IDEMPOTENCY_KEY: gate_idempotency_key_format,
    GATE_REPO: gate_repo_allowed,
    GATE_AUTOMATION: gate_automation_action,
}

GATE_KINDS: tuple[str, ...] = tuple(sorted(GATES))


def gate(kind: str, params: Any, policy: LawbookV1 | None) -> GateVerdict:
    """Evaluate a gate by kind.

    Args:
        kind: One of ``GATE_KINDS``.
        params: Gate parameters as a mapping or the kind's parameter model.
        policy: Immutable lawbook snapshot, or None when none is active.

    Returns:
        The verdict. A missing policy always yields DENY with a null lawbook version.

    Raises:
        ValueError: If the gate kind is unknown.
    """
    try:
        evaluate = GATES[kind]
    except KeyError:
        raise ValueError(f"Unknown gate kind '{kind}'. Expected one of: {', '.join(GATE_KINDS)}") from None
    return evaluate(params, policy)
