"""Playbook definitions and the built-in catalog.

A playbook is a fixed, ordered list of steps that remediates one family of
incidents. It declares which incident categories it applies to and the
evidence predicates that must all hold before it may be planned. Whether a
playbook or any of its action types may actually run is decided by the
lawbook, never by the definition.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from guardrail_engine.gates.evidence import EvidencePredicate

ACTION_RUN_VERIFICATION = "RUN_VERIFICATION"
ACTION_ROLLBACK_DEPLOY = "ROLLBACK_DEPLOY"
ACTION_SNAPSHOT_SERVICE_STATE = "SNAPSHOT_SERVICE_STATE"
ACTION_FORCE_NEW_DEPLOYMENT = "FORCE_NEW_DEPLOYMENT"
ACTION_POLL_SERVICE_HEALTH = "POLL_SERVICE_HEALTH"
ACTION_UPDATE_INCIDENT_STATUS = "UPDATE_INCIDENT_STATUS"

ACTION_TYPES: tuple[str, ...] = (
    ACTION_FORCE_NEW_DEPLOYMENT,
    ACTION_POLL_SERVICE_HEALTH,
    ACTION_ROLLBACK_DEPLOY,
    ACTION_RUN_VERIFICATION,
    ACTION_SNAPSHOT_SERVICE_STATE,
    ACTION_UPDATE_INCIDENT_STATUS,
)


class PlaybookStep(BaseModel):
    """One step of a playbook.

    Attributes:
        step_id: Identifier unique within the playbook.
        action_type: Action type gated by ``remediation.allowedActions``.
        title: Human-readable step title.
    """

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    step_id: str = Field(..., min_length=1, max_length=100, description="Step identifier within the playbook")
    action_type: str = Field(..., min_length=1, max_length=100, description="Gated action type")
    title: str = Field(..., min_length=1, max_length=200, description="Human-readable title")


class PlaybookDefinition(BaseModel):
    """A versioned remediation playbook."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., min_length=1, max_length=100, description="Playbook identifier")
    version: str = Field(..., min_length=1, max_length=50, description="Semantic version of the definition")
    title: str = Field(..., min_length=1, max_length=200)
    applicable_categories: tuple[str, ...] = Field(..., min_length=1)
    required_evidence: tuple[EvidencePredicate, ...] = Field(default=())
    steps: tuple[PlaybookStep, ...] = Field(..., min_length=1)

    @property
    def action_types(self) -> list[str]:
        """Distinct action types used by the steps, sorted."""
        return sorted({step.action_type for step in self.steps})

    def applies_to(self, category: str | None) -> bool:
        return category is not None and category in self.applicable_categories


def _step(step_id: str, action_type: str, title: str) -> PlaybookStep:
    return PlaybookStep(step_id=step_id, action_type=action_type, title=title)


def _needs(kind: str, *fields: str) -> EvidencePredicate:
    return EvidencePredicate(kind=kind, required_fields=fields)


RERUN_POST_DEPLOY_VERIFICATION = PlaybookDefinition(
    id="rerun-post-deploy-verification",
    version="1.0.0",
    title="Re-run Post-Deploy Verification",
    applicable_categories=("DEPLOY_VERIFICATION_FAILED", "ALB_TARGET_UNHEALTHY"),
    required_evidence=(
        _needs("verification", "ref.env"),
        _needs("deploy_status", "ref.env"),
    ),
    steps=(
        _step("run-verification", ACTION_RUN_VERIFICATION, "Run post-deploy verification"),
        _step("ingest-incident-update", ACTION_RUN_VERIFICATION, "Ingest verification result into the incident"),
    ),
)

REDEPLOY_LKG = PlaybookDefinition(
    id="redeploy-lkg",
    version="1.0.0",
    title="Redeploy Last Known Good",
    applicable_categories=("DEPLOY_VERIFICATION_FAILED", "ALB_TARGET_UNHEALTHY", "ECS_TASK_CRASHLOOP"),
    required_evidence=(
        _needs("deploy_status", "ref.env"),
        _needs("verification", "ref.env"),
    ),
    steps=(
        _step("select-lkg", ACTION_ROLLBACK_DEPLOY, "Find the last known good deployment for the environment"),
        _step("dispatch-deploy", ACTION_ROLLBACK_DEPLOY, "Trigger the deploy workflow with the LKG reference"),
        _step("post-deploy-verification", ACTION_RUN_VERIFICATION, "Verify the rolled back deployment"),
        _step("update-deploy-status", ACTION_RUN_VERIFICATION, "Record the resulting deploy status"),
    ),
)

SERVICE_HEALTH_RESET = PlaybookDefinition(
    id="service-health-reset",
    version="1.0.0",
    title="Service Health Reset (Safe Scale/Bounce)",
    applicable_categories=("ALB_TARGET_UNHEALTHY", "ECS_TASK_CRASHLOOP"),
    required_evidence=(
        _needs("ecs", "ref.cluster", "ref.service"),
        _needs("alb", "ref.targetGroup"),
    ),
    steps=(
        _step("snapshot-state", ACTION_SNAPSHOT_SERVICE_STATE, "Snapshot current service state"),
        _step("apply-reset", ACTION_FORCE_NEW_DEPLOYMENT, "Force a new deployment of the service"),
        _step("wait-observe", ACTION_POLL_SERVICE_HEALTH, "Wait for the service to report healthy"),
        _step("post-verification", ACTION_RUN_VERIFICATION, "Run post-reset verification"),
        _step("update-status", ACTION_UPDATE_INCIDENT_STATUS, "Update the incident status"),
    ),
)

BUILTIN_PLAYBOOKS: dict[str, PlaybookDefinition] = {
    playbook.id: playbook for playbook in (RERUN_POST_DEPLOY_VERIFICATION, REDEPLOY_LKG, SERVICE_HEALTH_RESET)
}


def get_playbook(playbook_id: str) -> PlaybookDefinition | None:
    """Look up a built-in playbook by ID."""
    return BUILTIN_PLAYBOOKS.get(playbook_id)


def playbooks_for_category(category: str) -> list[PlaybookDefinition]:
    """Return the built-in playbooks applicable to an incident category, ordered by ID."""
    return [BUILTIN_PLAYBOOKS[key] for key in sorted(BUILTIN_PLAYBOOKS) if BUILTIN_PLAYBOOKS[key].applies_to(category)]
