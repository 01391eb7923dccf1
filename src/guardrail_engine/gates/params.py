"""Closed parameter models for each gate kind.

Parameters accept both camelCase (wire) and snake_case (Python) names and
reject unknown keys. ``now`` pins the evaluation clock; it is excluded from the
inputs hash because it is the observation time, not an input.
"""

from datetime import datetime
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, StrictInt
from pydantic.alias_generators import to_camel

from guardrail_engine.gates.evidence import EvidencePredicate, EvidenceRecord

DEFAULT_KEY_MAX_LENGTH = 256

NonEmpty = Annotated[str, Field(min_length=1, max_length=200)]
Count = Annotated[StrictInt, Field(ge=0)]


class GateParams(BaseModel):
    """Base class for gate parameters."""

    model_config = ConfigDict(extra="forbid", frozen=True, alias_generator=to_camel, populate_by_name=True)

    now: datetime | None = Field(default=None, exclude=True, description="Evaluation clock override")

    def hash_inputs(self) -> dict[str, Any]:
        """Return the canonicalizable inputs used for ``inputsHash``."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class PlaybookGateParams(GateParams):
    playbook_id: NonEmpty
    incident_category: NonEmpty | None = None
    evidence_kinds: list[NonEmpty] | None = Field(default=None, max_length=100)
    current_run_count: Count | None = None
    last_run_timestamp: datetime | None = None


class ActionGateParams(GateParams):
    action_type: NonEmpty


class EvidenceGateParams(GateParams):
    """Evidence gate parameters.

    ``required_kinds`` overrides the lawbook's per-category requirement; when it
    is omitted the requirement for ``incident_category`` is used.
    """

    required_kinds: list[NonEmpty] | None = Field(default=None, max_length=100)
    incident_category: NonEmpty | None = None
    present_kinds: list[NonEmpty] = Field(default_factory=list, max_length=100)
    predicates: list[EvidencePredicate] = Field(default_factory=list, max_length=50)
    evidence: list[EvidenceRecord] = Field(default_factory=list, max_length=200)


class DeterminismGateParams(GateParams):
    has_determinism_report: bool
    determinism_report_status: Annotated[str, Field(max_length=50)] | None = None


class IdempotencyKeyGateParams(GateParams):
    key: Annotated[str, Field(max_length=10000)]
    max_length: Annotated[StrictInt, Field(ge=1)] = DEFAULT_KEY_MAX_LENGTH


class RepoGateParams(GateParams):
    owner: NonEmpty
    repo: NonEmpty
    branch: NonEmpty | None = None


class AutomationGateParams(GateParams):
    """Automation action gate parameters.

    Counters and timestamps are supplied by the caller; the gate performs no I/O.
    """

    action_type: NonEmpty
    deployment_env: NonEmpty | None = None
    target_identifier: NonEmpty | None = None
    approvals: Count = 0
    last_execution_at: datetime | None = None
    executions_in_window: Count = 0
