"""Lawbook schema (version 0.7.0).

The lawbook is the versioned policy document consulted by every guardrail
gate: which repositories may be touched, which remediation playbooks and
actions are permitted, how often they may run, what evidence each incident
category requires, and which automation actions need approval.

A lawbook's identity is the SHA-256 hash of its canonical form. Allow-lists
and other set-valued fields are registered in ``LAWBOOK_UNORDERED_FIELDS`` so
two lawbooks that differ only in list order hash identically.
"""

from collections import Counter
from typing import Annotated, Any, Literal

from pydantic import Field, StrictBool, StrictInt, StringConstraints, field_validator
from pydantic_core import PydanticCustomError

from guardrail_engine.core.canonical import UnorderedFields, canonicalize
from guardrail_engine.core.hashing import content_hash
from guardrail_engine.schemas.common import StrictDocument, revalidate

LAWBOOK_SCHEMA_VERSION = "0.7.0"
DEFAULT_LAWBOOK_ID = "AFU9-LAWBOOK"

Name = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=100)]
Identifier = Annotated[str, StringConstraints(strict=True, min_length=1, max_length=200)]
Note = Annotated[str, StringConstraints(strict=True, max_length=2000)]
Timestamp = Annotated[
    str,
    StringConstraints(
        strict=True,
        max_length=40,
        pattern=r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d+)?(Z|[+-]\d{2}:\d{2})$",
    ),
]
NonNegativeInt = Annotated[StrictInt, Field(ge=0)]
PositiveInt = Annotated[StrictInt, Field(ge=1)]
KindList = Annotated[list[Name], Field(max_length=50)]

DeploymentEnv = Literal["staging", "prod", "development"]


class AllowedRepo(StrictDocument):
    owner: Name
    repo: Name
    branches: list[Name] | None = Field(default=None, max_length=100)


class LawbookGithub(StrictDocument):
    allowed_repos: list[AllowedRepo] = Field(max_length=100)


class LawbookDeterminism(StrictDocument):
    require_determinism_gate: StrictBool
    require_post_deploy_verification: StrictBool


class LawbookRemediation(StrictDocument):
    """Remediation policy.

    Attributes:
        enabled: Master switch; a disabled section denies every playbook and action.
        allowed_playbooks: Playbook IDs that may run.
        allowed_actions: Action types that playbook steps may use.
        max_runs_per_incident: Ceiling on runs per incident.
        cooldown_minutes: Minimum minutes between runs for one incident.
    """

    enabled: StrictBool
    allowed_playbooks: list[Identifier] = Field(max_length=100)
    allowed_actions: list[Identifier] = Field(max_length=100)
    max_runs_per_incident: PositiveInt | None = None
    cooldown_minutes: NonNegativeInt | None = None


class AutomationActionPolicy(StrictDocument):
    """Per-action automation policy.

    Attributes:
        action_type: Action type the policy governs.
        allowed_envs: Deployment environments where the action may run.
        cooldown_seconds: Minimum seconds between executions on one target.
        max_runs_per_window: Rate limit ceiling within ``window_seconds``.
        window_seconds: Rate limit window.
        idempotency_key_template: Context fields that make up the action's idempotency key.
        requires_approval: Whether explicit approval is required.
        approvals_required: Number of approvals needed when approval is required; one if omitted.
        description: Free text.
    """

    action_type: Identifier
    allowed_envs: list[DeploymentEnv] = Field(default_factory=lambda: ["staging"], max_length=3)
    cooldown_seconds: NonNegativeInt = 0
    max_runs_per_window: PositiveInt | None = None
    window_seconds: PositiveInt | None = None
    idempotency_key_template: list[Name] = Field(default_factory=list, max_length=20)
    requires_approval: StrictBool = False
    approvals_required: PositiveInt | None = None
    description: Note | None = None


class LawbookAutomationPolicy(StrictDocument):
    enforcement_mode: Literal["strict"] = "strict"
    policies: list[AutomationActionPolicy] = Field(default_factory=list, max_length=100)

    @field_validator("policies")
    @classmethod
    def _unique_action_types(cls, policies: list[AutomationActionPolicy]) -> list[AutomationActionPolicy]:
        counts = Counter(policy.action_type for policy in policies)
        duplicates = sorted(action_type for action_type, count in counts.items() if count > 1)
        if duplicates:
            raise PydanticCustomError(
                "invalid_value",
                "Each actionType may have only one policy (duplicated: {action_types})",
                {"action_types": ", ".join(duplicates)},
            )
        return policies


class LawbookEvidence(StrictDocument):
    max_evidence_items: PositiveInt | None = None
    required_kinds_by_category: dict[Name, KindList] | None = Field(default=None, max_length=100)


class LawbookEnforcement(StrictDocument):
    required_fields: list[Name] = Field(max_length=50)
    strict_mode: StrictBool


class LawbookUi(StrictDocument):
    display_name: Name | None = None


class LawbookV1(StrictDocument):
    """Lawbook document, version 0.7.0."""

    version: Literal["0.7.0"]
    lawbook_id: Name = DEFAULT_LAWBOOK_ID
    lawbook_version: Name
    created_at: Timestamp
    created_by: Literal["admin", "system"]
    notes: Note | None = None
    github: LawbookGithub
    determinism: LawbookDeterminism
    remediation: LawbookRemediation
    automation_policy: LawbookAutomationPolicy | None = None
    evidence: LawbookEvidence
    enforcement: LawbookEnforcement
    ui: LawbookUi

    def policy_for(self, action_type: str) -> AutomationActionPolicy | None:
        """Return the automation policy for an action type, if one is declared."""
        if self.automation_policy is None:
            return None
        for policy in self.automation_policy.policies:
            if policy.action_type == action_type:
                return policy
        return None

    def required_evidence_kinds(self, category: str | None) -> list[str]:
        """Return the sorted evidence kinds required for an incident category."""
        if category is None or not self.evidence.required_kinds_by_category:
            return []
        return sorted(set(self.evidence.required_kinds_by_category.get(category, [])))


def _repo_key(repo: dict[str, Any]) -> tuple[str, str]:
    return repo["owner"], repo["repo"]


def _policy_key(policy: dict[str, Any]) -> str:
    return policy["actionType"]


LAWBOOK_UNORDERED_FIELDS: UnorderedFields = {
    "github.allowedRepos": _repo_key,
    "github.allowedRepos[].branches": None,
    "remediation.allowedPlaybooks": None,
    "remediation.allowedActions": None,
    "automationPolicy.policies": _policy_key,
    "automationPolicy.policies[].allowedEnvs": None,
    "automationPolicy.policies[].idempotencyKeyTemplate": None,
    "evidence.requiredKindsByCategory.*": None,
    "enforcement.requiredFields": None,
}


def normalize_lawbook(lawbook: LawbookV1) -> LawbookV1:
    """Return the lawbook with every set-valued field deduplicated and sorted.

    Raises:
        ValidationError: If the normalized document no longer validates.
    """
    return revalidate(LawbookV1, canonicalize(lawbook.to_document(), LAWBOOK_UNORDERED_FIELDS))


def compute_lawbook_hash(lawbook: LawbookV1) -> str:
    """Compute the lawbook's identity hash (full SHA-256 hex)."""
    return content_hash(lawbook.to_document(), LAWBOOK_UNORDERED_FIELDS)
